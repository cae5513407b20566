from pathlib import Path
from typing import Literal

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".deckflow" / "data"
    sqlite_filename: str = "deckflow.db"
    media_dirname: str = "media"
    snapshot_dirname: str = "snapshots"
    snapshot_key: str = "deckflow_db"
    storage_backend: Literal["native", "memory", "auto"] = "auto"
    save_debounce_seconds: float = 1.0
    engine_init_timeout: float = 10.0  # seconds; in-memory engine only
    session_size: int = 20
    desired_retention: float = 0.9
    maximum_interval: int = 36500  # days
    duplicate_policy: Literal["insert", "upsert"] = "upsert"
    unmapped_deck_policy: Literal["first_deck", "skip"] = "first_deck"
    log_level: str = "INFO"

    model_config = {"env_prefix": "DECKFLOW_"}

    @property
    def media_dir(self) -> Path:
        return self.data_dir / self.media_dirname

    @property
    def snapshot_dir(self) -> Path:
        return self.data_dir / self.snapshot_dirname


settings = Settings()
