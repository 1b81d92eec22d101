from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.schemas import PersonCreate
from lifeapp.settings import get_settings
from lifeapp.services import notion_service, notion_sync, people_service
from lifeapp.services import notion_properties as props
from lifeapp.services.notion_service import NotionAPIError

logger = logging.getLogger(__name__)

router = APIRouter()


async def _people_database(user_id: str) -> str:
    try:
        return await notion_sync.resolve_database_id(user_id, "people")
    except notion_sync.MissingConnectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/v1/people")
async def list_people(user_id: str = Depends(require_user_id)):
    items = await repositories.list_people(user_id)
    return {"people": jsonable_encoder(items)}


@router.post("/v1/people")
async def create_person(payload: PersonCreate, user_id: str = Depends(require_user_id)):
    person = payload.model_dump()
    person["name"] = (person.get("name") or "").strip()
    if not person["name"]:
        raise HTTPException(status_code=400, detail="Name is required")

    database_id = await _people_database(user_id)
    schema = await notion_service.database_schema(database_id)
    mapping = get_settings().property_map("people")

    upload_id = None
    if person.get("image_url") and props.resolve_property(schema, mapping, "image"):
        upload_id = await notion_service.upload_image_url(person["image_url"], person["name"])

    properties = people_service.build_person_properties(person, schema, mapping, image_upload_id=upload_id)
    try:
        page = await notion_service.create_page(database_id, properties)
    except (NotionAPIError, httpx.HTTPError, ValueError) as exc:
        logger.exception("Failed to create Notion page for person: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Failed to create person")

    record = people_service.person_row_from_page(page, database_id, mapping)
    try:
        row = await repositories.insert_person(user_id, record)
    except SQLAlchemyError as exc:
        logger.exception("Failed to store person row for page %s: %s", page["id"], exc)
        row = {"id": None, **record}
    return {"success": True, "person": jsonable_encoder(row)}


@router.post("/v1/people/sync")
async def sync_people(user_id: str = Depends(require_user_id)):
    database_id = await _people_database(user_id)
    mapping = get_settings().property_map("people")
    try:
        result = await notion_sync.sync_database(
            repositories.PEOPLE_TABLE,
            user_id,
            database_id,
            lambda page: people_service.person_row_from_page(page, database_id, mapping),
        )
    except (NotionAPIError, httpx.HTTPError) as exc:
        logger.exception("People sync failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return {"success": True, **result}
