from fastapi import APIRouter, Depends

from deckflow.db.base import Database
from deckflow.dependencies import get_db

router = APIRouter()


@router.get("/health")
async def health(db: Database = Depends(get_db)) -> dict:
    return {"status": "ok", "backend": db.backend_name}
