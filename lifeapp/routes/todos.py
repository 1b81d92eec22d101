from __future__ import annotations

import logging

import httpx
from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from sqlalchemy.exc import SQLAlchemyError

from lifeapp import repositories
from lifeapp.auth import require_user_id
from lifeapp.schemas import TodoCreate, TodoPatch
from lifeapp.settings import get_settings
from lifeapp.services import notion_service, notion_sync, todo_service
from lifeapp.services.notion_service import NotionAPIError

logger = logging.getLogger(__name__)

router = APIRouter()

NOTION_ERRORS = (NotionAPIError, httpx.HTTPError, ValueError)


async def _todos_database(user_id: str) -> str:
    try:
        return await notion_sync.resolve_database_id(user_id, "todos")
    except notion_sync.MissingConnectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


async def _require_todo(user_id: str, todo_id: str) -> dict:
    todo = await repositories.get_todo(user_id, todo_id)
    if not todo:
        raise HTTPException(status_code=404, detail="Todo not found")
    return todo


@router.get("/v1/todos")
async def list_todos(user_id: str = Depends(require_user_id)):
    items = await repositories.list_todos(user_id)
    return {"todos": jsonable_encoder(items)}


@router.post("/v1/todos")
async def create_todo(payload: TodoCreate, user_id: str = Depends(require_user_id)):
    todo = payload.model_dump()
    todo["title"] = (todo.get("title") or "").strip()
    if not todo["title"]:
        raise HTTPException(status_code=400, detail="Title is required")
    database_id = await _todos_database(user_id)
    schema = await notion_service.database_schema(database_id)
    mapping = get_settings().property_map("todos")
    properties = todo_service.build_todo_properties(todo, schema, mapping)
    try:
        page = await notion_service.create_page(database_id, properties)
    except NOTION_ERRORS as exc:
        logger.exception("Failed to create Notion todo: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc) or "Failed to create todo")

    record = todo_service.todo_row_from_page(page, database_id, mapping)
    try:
        row = await repositories.insert_todo(user_id, record)
    except SQLAlchemyError as exc:
        logger.exception("Failed to store todo row for page %s: %s", page["id"], exc)
        row = {"id": None, **record}
    return {"success": True, "todo": jsonable_encoder(row)}


@router.patch("/v1/todos/{todo_id}")
async def patch_todo(todo_id: str, payload: TodoPatch, user_id: str = Depends(require_user_id)):
    todo = await _require_todo(user_id, todo_id)
    patch = payload.model_dump(exclude_unset=True)
    if not patch:
        raise HTTPException(status_code=400, detail="No fields to update")
    if "title" in patch:
        patch["title"] = (patch["title"] or "").strip()
        if not patch["title"]:
            raise HTTPException(status_code=400, detail="Title cannot be empty")

    if todo.get("notion_page_id"):
        try:
            schema = await notion_service.database_schema(todo["notion_database_id"])
            properties = todo_service.build_todo_properties(patch, schema, get_settings().property_map("todos"))
            if properties:
                await notion_service.update_page(todo["notion_page_id"], properties)
        except NOTION_ERRORS as exc:
            logger.warning("Notion update for todo %s failed, continuing: %s", todo_id, exc)

    try:
        row = await repositories.update_todo(user_id, todo_id, patch)
    except SQLAlchemyError as exc:
        logger.exception("Failed to update todo %s: %s", todo_id, exc)
        raise HTTPException(status_code=500, detail="Failed to update todo")
    return {"success": True, "todo": jsonable_encoder(row)}


@router.delete("/v1/todos/{todo_id}")
async def delete_todo(todo_id: str, user_id: str = Depends(require_user_id)):
    todo = await _require_todo(user_id, todo_id)
    if todo.get("notion_page_id"):
        try:
            await notion_service.archive_page(todo["notion_page_id"])
        except NOTION_ERRORS as exc:
            logger.warning("Archiving Notion page for todo %s failed, continuing: %s", todo_id, exc)
    try:
        await repositories.delete_todo(user_id, todo_id)
    except SQLAlchemyError as exc:
        logger.exception("Failed to delete todo %s: %s", todo_id, exc)
        raise HTTPException(status_code=500, detail="Failed to delete todo")
    return {"success": True}


@router.post("/v1/todos/sync")
async def sync_todos(user_id: str = Depends(require_user_id)):
    database_id = await _todos_database(user_id)
    mapping = get_settings().property_map("todos")
    try:
        result = await notion_sync.sync_database(
            repositories.TODOS_TABLE,
            user_id,
            database_id,
            lambda page: todo_service.todo_row_from_page(page, database_id, mapping),
        )
    except (NotionAPIError, httpx.HTTPError) as exc:
        logger.exception("Todo sync failed: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc))
    return {"success": True, **result}
