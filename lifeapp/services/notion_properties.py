"""Read and build Notion property values.

Pages carry a ``properties`` dict keyed by property name; each value is a
typed object (``{"type": "select", "select": {"name": ...}}``). Database
schemas use the same keys with ``{"id", "name", "type"}`` entries.
"""
from __future__ import annotations

from typing import Any, Dict, Mapping


def _plain_text(items) -> str:
    return "".join(item.get("plain_text") or item.get("text", {}).get("content", "") for item in items or [])


def get_property_value(prop: Mapping | None, prop_type: str | None = None) -> Any:
    if not prop:
        return None
    prop_type = prop_type or prop.get("type")
    if prop_type in {"title", "rich_text"}:
        return _plain_text(prop.get(prop_type))
    if prop_type in {"select", "status"}:
        option = prop.get(prop_type)
        return option.get("name") if option else None
    if prop_type == "multi_select":
        return [item.get("name") for item in prop.get("multi_select") or [] if item.get("name")]
    if prop_type == "date":
        value = prop.get("date")
        return value.get("start") if value else None
    if prop_type in {"number", "url", "email", "phone_number", "created_time", "last_edited_time"}:
        return prop.get(prop_type)
    if prop_type == "checkbox":
        return bool(prop.get("checkbox"))
    if prop_type == "people":
        return [person.get("name") or person.get("id") for person in prop.get("people") or []]
    if prop_type == "relation":
        return [rel.get("id") for rel in prop.get("relation") or [] if rel.get("id")]
    if prop_type == "files":
        return list(prop.get("files") or [])
    if prop_type == "formula":
        formula = prop.get("formula") or {}
        kind = formula.get("type")
        if kind == "date":
            value = formula.get("date")
            return value.get("start") if value else None
        if kind in {"number", "string", "boolean"}:
            return formula.get(kind)
        return None
    return None


def build_property_value(value: Any, prop_type: str) -> Dict[str, Any]:
    if prop_type in {"title", "rich_text"}:
        text = "" if value is None else str(value)
        # Notion caps a single text object at 2000 characters.
        return {prop_type: [{"text": {"content": text[:2000]}}]}
    if prop_type in {"select", "status"}:
        return {prop_type: {"name": str(value)} if value else None}
    if prop_type == "multi_select":
        names = value if isinstance(value, (list, tuple)) else ([value] if value else [])
        return {"multi_select": [{"name": str(name).replace(",", " ")} for name in names if name]}
    if prop_type == "date":
        return {"date": {"start": str(value)} if value else None}
    if prop_type == "number":
        if value is None or value == "":
            return {"number": None}
        return {"number": float(value)}
    if prop_type == "checkbox":
        return {"checkbox": bool(value)}
    if prop_type in {"url", "email", "phone_number"}:
        return {prop_type: value or None}
    if prop_type == "relation":
        return {"relation": [{"id": page_id} for page_id in value or []]}
    if prop_type == "files":
        urls = value if isinstance(value, (list, tuple)) else ([value] if value else [])
        return files_from_urls(urls)
    raise ValueError(f"Unsupported Notion property type: {prop_type}")


def files_from_urls(urls, name: str = "image") -> Dict[str, Any]:
    return {
        "files": [
            {"type": "external", "name": f"{name}-{index + 1}"[:100], "external": {"url": url}}
            for index, url in enumerate(urls)
            if url
        ]
    }


def files_from_upload(upload_id: str) -> Dict[str, Any]:
    return {"files": [{"type": "file_upload", "file_upload": {"id": upload_id}}]}


def first_file_url(files) -> str | None:
    for item in files or []:
        kind = item.get("type")
        url = (item.get(kind) or {}).get("url") if kind else None
        if url:
            return url
    return None


def resolve_property(schema: Mapping | None, mapping: Mapping[str, str], field: str) -> str | None:
    """Return the property key configured for ``field`` if the database has it.

    With no schema (the database could not be retrieved) the configured name
    is trusted as-is.
    """
    name = mapping.get(field)
    if not name:
        return None
    if schema is None:
        return name
    if name in schema:
        return name
    lowered = name.strip().lower()
    for key in schema:
        if key.strip().lower() == lowered:
            return key
    return None


def property_type(schema: Mapping | None, key: str, default: str) -> str:
    if schema and key in schema:
        return schema[key].get("type") or default
    return default


def title_property(schema: Mapping | None) -> str | None:
    for key, prop in (schema or {}).items():
        if prop.get("type") == "title":
            return key
    return None


def page_title(page: Mapping) -> str:
    for prop in (page.get("properties") or {}).values():
        if prop.get("type") == "title":
            return get_property_value(prop, "title") or ""
    return ""


def read_mapped(page: Mapping, mapping: Mapping[str, str]) -> Dict[str, Any]:
    """Pull every mapped field out of a page, keyed by logical field name."""
    properties = page.get("properties") or {}
    values: Dict[str, Any] = {}
    for field, name in mapping.items():
        prop = properties.get(name)
        if prop is None:
            continue
        values[field] = get_property_value(prop)
    return values
