from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.schemas import ConnectionPut
from lifeapp.settings import TRACKING_PERIODS, get_settings

router = APIRouter()

CONNECTION_KINDS = ("media", "people", "todos", *[f"tracking_{period}" for period in TRACKING_PERIODS])


@router.get("/v1/connections")
async def list_connections(user_id: str = Depends(require_user_id)):
    stored = await repositories.list_database_ids(user_id)
    settings = get_settings()
    connections = {}
    for kind in CONNECTION_KINDS:
        database_id = stored.get(kind) or settings.default_database_id(kind)
        connections[kind] = {
            "database_id": database_id,
            "source": "user" if stored.get(kind) else ("default" if database_id else None),
        }
    return {"connections": connections}


@router.put("/v1/connections/{kind}")
async def put_connection(kind: str, payload: ConnectionPut, user_id: str = Depends(require_user_id)):
    if kind not in CONNECTION_KINDS:
        raise HTTPException(status_code=400, detail="Unknown connection kind")
    database_id = payload.database_id.strip().replace("-", "")
    if not database_id:
        raise HTTPException(status_code=400, detail="database_id is required")
    await repositories.set_database_id(user_id, kind, database_id)
    return {"success": True, "kind": kind, "database_id": database_id}
