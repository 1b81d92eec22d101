from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.schemas import MediaFromLink, MediaPatch
from lifeapp.settings import get_settings
from lifeapp.services import media_service, notion_service, notion_sync, recommendation_service
from lifeapp.services import notion_properties as props
from lifeapp.services.ai_gateway import AIGatewayError
from lifeapp.services.media_service import InvalidMediaLinkError, LOOKUP_ERRORS
from lifeapp.services.notion_service import NotionAPIError

logger = logging.getLogger(__name__)

router = APIRouter()

NOTION_ERRORS = (NotionAPIError, httpx.HTTPError, ValueError)


async def _require_media(user_id: str, media_id: str) -> dict:
    media = await repositories.get_media(user_id, media_id)
    if not media:
        raise HTTPException(status_code=404, detail="Media entry not found")
    return media


async def _media_database(user_id: str) -> str:
    try:
        return await notion_sync.resolve_database_id(user_id, "media")
    except notion_sync.MissingConnectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/v1/media")
async def list_media(user_id: str = Depends(require_user_id)):
    items = await repositories.list_media(user_id)
    return {"media": jsonable_encoder(items)}


@router.post("/v1/media/create-from-link")
async def create_media_from_link(payload: MediaFromLink, user_id: str = Depends(require_user_id)):
    url = (payload.url or "").strip()
    if not url:
        raise HTTPException(status_code=400, detail="URL is required")
    try:
        metadata = await media_service.resolve_link_metadata(url)
    except InvalidMediaLinkError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except LOOKUP_ERRORS as exc:
        logger.exception("Media lookup for %s failed: %s", url, exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Failed to fetch media data")
    if not metadata.get("name"):
        raise HTTPException(status_code=500, detail="Failed to extract media data")

    database_id = await _media_database(user_id)
    schema = await notion_service.database_schema(database_id)
    mapping = get_settings().property_map("media")

    upload_id = None
    if metadata.get("thumbnail") and props.resolve_property(schema, mapping, "thumbnail"):
        upload_id = await notion_service.upload_image_url(metadata["thumbnail"], metadata["name"])

    page_icon = media_service.create_icon(metadata.get("category"))
    properties = media_service.build_media_properties(metadata, url, schema, mapping, thumbnail_upload_id=upload_id)
    try:
        try:
            page = await notion_service.create_page(database_id, properties, page_icon)
        except NotionAPIError as exc:
            if not exc.is_property_error:
                raise
            logger.warning("Notion property error, retrying without synopsis: %s", exc)
            properties = media_service.build_media_properties(
                metadata, url, schema, mapping, thumbnail_upload_id=upload_id, include_synopsis=False
            )
            page = await notion_service.create_page(database_id, properties, page_icon)
    except NOTION_ERRORS as exc:
        logger.exception("Failed to create Notion page for %s: %s", url, exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Failed to create media entry")

    record = {
        "notion_page_id": page["id"],
        "notion_database_id": database_id,
        "name": metadata["name"],
        "category": metadata.get("category"),
        "url": url,
        "by": metadata.get("by") or [],
        "topic": [],
        "thumbnail": media_service.thumbnail_files(metadata.get("thumbnail")),
        "ai_synopsis": metadata.get("ai_synopsis"),
        "created": media_service.to_iso_date(metadata.get("created")),
    }
    try:
        row = await repositories.insert_media(user_id, record)
    except SQLAlchemyError as exc:
        # The Notion page exists; the next sync backfills the row.
        logger.exception("Failed to store media row for page %s: %s", page["id"], exc)
        row = {"id": None, **record}
    return {"success": True, "media": jsonable_encoder(row), "notion_page_id": page["id"]}


@router.patch("/v1/media/{media_id}")
async def patch_media(media_id: str, payload: MediaPatch, user_id: str = Depends(require_user_id)):
    media = await _require_media(user_id, media_id)
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "name" in patch:
        patch["name"] = (patch["name"] or "").strip()
        if not patch["name"]:
            raise HTTPException(status_code=400, detail="Name cannot be empty")
    if "status" in patch:
        patch["status"] = media_service.normalize_status(patch["status"])

    if media.get("notion_page_id"):
        try:
            schema = await notion_service.database_schema(media["notion_database_id"])
            mapping = get_settings().property_map("media")
            properties = media_service.build_patch_properties(patch, schema, mapping)
            page_icon = media_service.status_icon(media.get("category"), patch.get("status"))
            if properties or page_icon:
                await notion_service.update_page(media["notion_page_id"], properties, page_icon)
        except NOTION_ERRORS as exc:
            logger.warning("Notion update for media %s failed, continuing: %s", media_id, exc)

    try:
        row = await repositories.update_media(user_id, media_id, patch)
    except SQLAlchemyError as exc:
        logger.exception("Failed to update media %s: %s", media_id, exc)
        raise HTTPException(status_code=500, detail="Failed to update media entry")
    return {"success": True, "media": jsonable_encoder(row)}


@router.delete("/v1/media/{media_id}")
async def delete_media(media_id: str, user_id: str = Depends(require_user_id)):
    media = await _require_media(user_id, media_id)
    if media.get("notion_page_id"):
        try:
            await notion_service.archive_page(media["notion_page_id"])
        except NOTION_ERRORS as exc:
            logger.warning("Archiving Notion page for media %s failed, continuing: %s", media_id, exc)
    try:
        await repositories.delete_media(user_id, media_id)
    except SQLAlchemyError as exc:
        logger.exception("Failed to delete media %s: %s", media_id, exc)
        raise HTTPException(status_code=500, detail="Failed to delete media entry")
    return {"success": True}


@router.post("/v1/media/{media_id}/fill-description")
async def fill_description(media_id: str, user_id: str = Depends(require_user_id)):
    media = await _require_media(user_id, media_id)
    if (media.get("ai_synopsis") or "").strip():
        raise HTTPException(status_code=400, detail="Description already exists")
    if not media.get("url"):
        raise HTTPException(status_code=400, detail="Media entry does not have a URL to fetch description from")
    try:
        synopsis = await media_service.lookup_description(media)
    except InvalidMediaLinkError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    except LOOKUP_ERRORS as exc:
        logger.exception("Description lookup for media %s failed: %s", media_id, exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Failed to fill description")
    if not synopsis:
        raise HTTPException(status_code=500, detail="Could not fetch description from API")

    if media.get("notion_page_id"):
        try:
            schema = await notion_service.database_schema(media["notion_database_id"])
            mapping = get_settings().property_map("media")
            properties = media_service.build_patch_properties({"ai_synopsis": synopsis}, schema, mapping)
            if properties:
                await notion_service.update_page(media["notion_page_id"], properties)
        except NOTION_ERRORS as exc:
            logger.warning("Notion synopsis update for media %s failed, continuing: %s", media_id, exc)

    try:
        row = await repositories.update_media(user_id, media_id, {"ai_synopsis": synopsis})
    except SQLAlchemyError as exc:
        logger.exception("Failed to store synopsis for media %s: %s", media_id, exc)
        raise HTTPException(status_code=500, detail="Failed to update media entry")
    return {"success": True, "ai_synopsis": synopsis, "media": jsonable_encoder(row)}


@router.post("/v1/media/sync")
async def sync_media(user_id: str = Depends(require_user_id)):
    database_id = await _media_database(user_id)
    mapping = get_settings().property_map("media")
    try:
        result = await notion_sync.sync_database(
            repositories.MEDIA_TABLE,
            user_id,
            database_id,
            lambda page: media_service.media_row_from_page(page, database_id, mapping),
        )
    except (NotionAPIError, httpx.HTTPError) as exc:
        logger.exception("Media sync failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return {"success": True, **result}


@router.post("/v1/media/recommendations")
async def media_recommendations(user_id: str = Depends(require_user_id)):
    library = await repositories.list_media(user_id)
    try:
        grouped = await recommendation_service.recommend(library)
    except (AIGatewayError, recommendation_service.RecommendationParseError) as exc:
        logger.error("Error generating AI recommendations: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to generate recommendations")
    return {"recommendations": grouped}
