"""
Exception taxonomy.

Fatal conditions are exceptions; recoverable import conditions (schema
detection fallback, skipped cards, media problems) are only logged and
counted on ImportResult.
"""
from __future__ import annotations


class DeckflowError(Exception):
    """Base class for every error raised by deckflow itself."""


class ImportFailed(DeckflowError):
    """A package import aborted. ``stage`` names the pipeline step."""

    def __init__(self, stage: str, message: str, cause: BaseException | None = None):
        self.stage = stage
        self.cause = cause
        detail = f"{message} (stage={stage})"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)


class InvalidPackage(ImportFailed):
    """No recognizable (or a corrupt) embedded database in the package."""


class TransactionFailure(ImportFailed):
    """The commit transaction failed and was rolled back."""


class StorageEngineError(DeckflowError):
    """The in-memory storage engine could not be initialized."""

    def __init__(self, stage: str, message: str, cause: BaseException | None = None):
        self.stage = stage
        self.cause = cause
        detail = f"{message} (stage={stage})"
        if cause is not None:
            detail = f"{detail}: {cause}"
        super().__init__(detail)


class StorageEngineInitTimeout(StorageEngineError):
    """Engine initialization did not finish within the configured bound."""


class SessionError(DeckflowError):
    """An action is not valid in the study session's current state."""


class SessionNotFound(SessionError):
    pass


class SessionBusy(SessionError):
    """Another rating for the same session is still in flight."""
