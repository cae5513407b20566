"""Media manifest handling and media references inside card text."""
from __future__ import annotations

import json
import logging
import re
import shutil
import zipfile
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath

logger = logging.getLogger(__name__)

MANIFEST_MEMBER = "media"

_SOUND_RE = re.compile(r"\[sound:([^\]]+)\]")
_IMG_RE = re.compile(r"""<img[^>]*?\ssrc\s*=\s*["']?([^"'>\s]+)""", re.IGNORECASE)


@dataclass
class MediaReport:
    extracted: int = 0
    warnings: list[str] = field(default_factory=list)


def media_references(*texts: str) -> list[str]:
    """Filenames referenced by ``[sound:...]`` and ``<img src=...>``, first occurrence order."""
    seen: dict[str, None] = {}
    for text in texts:
        for match in (*_SOUND_RE.finditer(text), *_IMG_RE.finditer(text)):
            seen.setdefault(match.group(1).strip(), None)
    return [name for name in seen if name]


def safe_media_name(filename: str) -> str | None:
    """Strip any directory part; None if nothing usable is left."""
    name = PurePosixPath(filename.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return None
    return name


def read_manifest(archive: zipfile.ZipFile) -> tuple[dict[str, str], list[str]]:
    """Parse the ``media`` member: a JSON object mapping zip entry -> filename."""
    if MANIFEST_MEMBER not in archive.namelist():
        return {}, []
    try:
        raw = archive.read(MANIFEST_MEMBER)
        manifest = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError, zipfile.BadZipFile, OSError) as e:
        # Modern packages store a protobuf manifest here, not JSON
        return {}, [f"Media manifest unreadable, media skipped: {e}"]
    if not isinstance(manifest, dict):
        return {}, ["Media manifest is not a JSON object, media skipped"]
    return {str(k): str(v) for k, v in manifest.items()}, []


def extract_media(archive: zipfile.ZipFile, media_dir: Path) -> MediaReport:
    """Copy every manifest entry into ``media_dir``. Problems become warnings."""
    manifest, warnings = read_manifest(archive)
    report = MediaReport(warnings=warnings)
    if not manifest:
        return report

    media_dir.mkdir(parents=True, exist_ok=True)
    names = set(archive.namelist())
    for entry, filename in manifest.items():
        target = safe_media_name(filename)
        if target is None:
            report.warnings.append(f"Media entry {entry}: invalid filename {filename!r}")
            continue
        if entry not in names:
            report.warnings.append(f"Media entry {entry} ({target}) missing from package")
            continue
        try:
            with archive.open(entry) as src, open(media_dir / target, "wb") as out:
                shutil.copyfileobj(src, out)
        except (OSError, zipfile.BadZipFile) as e:
            report.warnings.append(f"Media entry {entry} ({target}) not extracted: {e}")
            continue
        report.extracted += 1

    for warning in report.warnings:
        logger.warning(warning)
    logger.info("Extracted %d/%d media files to %s", report.extracted, len(manifest), media_dir)
    return report
