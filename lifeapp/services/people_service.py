from __future__ import annotations

from lifeapp.services import notion_properties as props

# Logical field -> Notion type used when the database schema is unavailable.
PERSON_FIELD_TYPES = {
    "name": "title",
    "star_sign": "select",
    "occupation": "rich_text",
    "currently_at": "rich_text",
    "from_location": "select",
    "contact_freq": "select",
    "birth_date": "date",
    "tier": "multi_select",
    "origin_of_connection": "multi_select",
}


def build_person_properties(person: dict, schema: dict | None, mapping: dict, image_upload_id: str | None = None) -> dict:
    properties: dict = {}
    for field, default_type in PERSON_FIELD_TYPES.items():
        value = person.get(field)
        if value in (None, "", []):
            continue
        key = props.resolve_property(schema, mapping, field)
        if not key:
            continue
        properties[key] = props.build_property_value(value, props.property_type(schema, key, default_type))
    image_key = props.resolve_property(schema, mapping, "image")
    if image_key:
        if image_upload_id:
            properties[image_key] = props.files_from_upload(image_upload_id)
        elif person.get("image_url"):
            properties[image_key] = props.files_from_urls([person["image_url"]])
    return properties


def person_row_from_page(page: dict, database_id: str, mapping: dict) -> dict:
    values = props.read_mapped(page, mapping)

    def as_list(value):
        if value is None:
            return []
        return value if isinstance(value, list) else [value]

    return {
        "notion_page_id": page["id"],
        "notion_database_id": database_id,
        "name": values.get("name") or props.page_title(page) or "Untitled",
        "origin_of_connection": as_list(values.get("origin_of_connection")),
        "star_sign": values.get("star_sign"),
        "image": values.get("image") or [],
        "currently_at": values.get("currently_at"),
        "tier": as_list(values.get("tier")),
        "occupation": values.get("occupation"),
        "contact_freq": values.get("contact_freq"),
        "from_location": values.get("from_location"),
        "birth_date": values.get("birth_date"),
        "last_edited_time": page.get("last_edited_time"),
    }
