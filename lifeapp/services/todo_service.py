from __future__ import annotations

from lifeapp.services import media_service
from lifeapp.services import notion_properties as props

TODO_FIELD_TYPES = {
    "title": "title",
    "status": "status",
    "priority": "select",
    "do_date": "date",
    "due_date": "date",
    "mega_tags": "multi_select",
}


def build_todo_properties(todo: dict, schema: dict | None, mapping: dict) -> dict:
    properties: dict = {}
    for field, default_type in TODO_FIELD_TYPES.items():
        if field not in todo:
            continue
        key = props.resolve_property(schema, mapping, field)
        if not key:
            continue
        properties[key] = props.build_property_value(todo[field], props.property_type(schema, key, default_type))
    return properties


def todo_row_from_page(page: dict, database_id: str, mapping: dict) -> dict:
    properties = page.get("properties") or {}
    mapped_names = set(mapping.values())
    values = props.read_mapped(page, mapping)
    extra = {
        name: {"type": prop.get("type"), "value": props.get_property_value(prop)}
        for name, prop in properties.items()
        if name not in mapped_names
    }
    tags = values.get("mega_tags")
    return {
        "notion_page_id": page["id"],
        "notion_database_id": database_id,
        "title": values.get("title") or props.page_title(page) or "Untitled",
        "status": values.get("status"),
        "priority": values.get("priority"),
        "do_date": values.get("do_date"),
        "due_date": media_service.to_iso_date(values.get("due_date")),
        "mega_tags": tags if isinstance(tags, list) else ([tags] if tags else []),
        "gcal_id": values.get("gcal_id") or None,
        "properties": extra,
    }
