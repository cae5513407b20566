import logging
import tempfile
from pathlib import Path

from fastapi import APIRouter, Depends, HTTPException, UploadFile

from deckflow.config import Settings
from deckflow.db.base import Database
from deckflow.dependencies import get_db, get_settings
from deckflow.errors import ImportFailed, InvalidPackage
from deckflow.models.importing import ImportResult
from deckflow.services.package_importer import PackageImporter

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/import", response_model=ImportResult, status_code=201)
async def import_package(
    file: UploadFile,
    db: Database = Depends(get_db),
    cfg: Settings = Depends(get_settings),
):
    if not file.filename or not file.filename.lower().endswith(".apkg"):
        raise HTTPException(400, "Only .apkg packages are supported")

    content = await file.read()
    importer = PackageImporter(
        db,
        cfg.media_dir,
        duplicate_policy=cfg.duplicate_policy,
        unmapped_deck_policy=cfg.unmapped_deck_policy,
    )

    with tempfile.TemporaryDirectory(prefix="deckflow-upload-") as tmp:
        dest = Path(tmp) / "package.apkg"
        dest.write_bytes(content)
        try:
            return await importer.import_package(dest, package_name=Path(file.filename).stem)
        except InvalidPackage as e:
            logger.warning("Rejected package %s: %s", file.filename, e)
            raise HTTPException(400, {"message": "import failed", "stage": e.stage, "error": str(e)})
        except ImportFailed as e:
            logger.error("Import of %s failed: %s", file.filename, e)
            raise HTTPException(500, {"message": "import failed", "stage": e.stage, "error": str(e)})
