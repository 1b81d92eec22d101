from __future__ import annotations

import json
import logging
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

TRACKING_PERIODS = ("daily", "weekly", "monthly", "quarterly", "yearly")

# Logical field -> Notion property name. Overridden per deployment with NOTION_PROPERTY_MAP.
DEFAULT_PROPERTY_MAP: Dict[str, Dict[str, str]] = {
    "media": {
        "name": "Name",
        "url": "URL",
        "category": "Category",
        "by": "By",
        "topic": "Topic",
        "status": "Status",
        "synopsis": "Synopsys",
        "created": "Created",
        "thumbnail": "Thumbnail",
    },
    "people": {
        "name": "Name",
        "star_sign": "Star sign",
        "image": "Image",
        "currently_at": "Currently at",
        "tier": "Tier",
        "occupation": "Occupation",
        "contact_freq": "Contact Freq",
        "from_location": "From",
        "birth_date": "Birth Date",
        "origin_of_connection": "Origin of Connection",
    },
    "todos": {
        "title": "Action Item",
        "status": "Status",
        "priority": "Priority",
        "do_date": "Do-Date",
        "due_date": "Due-Date",
        "mega_tags": "Mega Tag",
        "gcal_id": "GCal_ID",
    },
}


class Settings(BaseSettings):
    database_url: str = Field(..., alias="DATABASE_URL")
    token_encryption_key: str = Field(..., alias="TOKEN_ENCRYPTION_KEY")
    backend_session_secret: str = Field(..., alias="BACKEND_SESSION_SECRET")
    environment: str = Field("development", alias="ENVIRONMENT")

    allowed_emails_raw: str = Field("", alias="ALLOWED_EMAILS")

    notion_api_key: str | None = Field(None, alias="NOTION_API_KEY")
    notion_media_database_id: str | None = Field(None, alias="NOTION_MEDIA_DATABASE_ID")
    notion_people_database_id: str | None = Field(None, alias="NOTION_PEOPLE_DATABASE_ID")
    notion_todos_database_id: str | None = Field(None, alias="NOTION_TODOS_DATABASE_ID")
    notion_tracking_database_ids_raw: str = Field("", alias="NOTION_TRACKING_DATABASE_IDS")
    notion_property_map_raw: str = Field("", alias="NOTION_PROPERTY_MAP")

    omdb_api_key: str | None = Field(None, alias="OMDB_API_KEY")
    google_books_api_key: str | None = Field(None, alias="GOOGLE_BOOKS_API_KEY")
    youtube_api_key: str | None = Field(None, alias="YOUTUBE_API_KEY")

    spotify_client_id: str | None = Field(None, alias="SPOTIFY_CLIENT_ID")
    spotify_client_secret: str | None = Field(None, alias="SPOTIFY_CLIENT_SECRET")
    spotify_redirect_uri: str | None = Field(None, alias="SPOTIFY_REDIRECT_URI")

    google_client_id: str | None = Field(None, alias="GOOGLE_CLIENT_ID")
    google_client_secret: str | None = Field(None, alias="GOOGLE_CLIENT_SECRET")
    google_redirect_uri: str | None = Field(None, alias="GOOGLE_REDIRECT_URI")

    ai_gateway_api_key: str | None = Field(None, alias="AI_GATEWAY_API_KEY")
    ai_gateway_base_url: str = Field("https://ai-gateway.vercel.sh/v1", alias="AI_GATEWAY_BASE_URL")
    ai_gateway_model: str = Field("groq/llama-3.1-8b-instant", alias="AI_GATEWAY_MODEL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def allowed_emails(self) -> List[str]:
        return [email.strip().lower() for email in self.allowed_emails_raw.split(",") if email.strip()]

    @property
    def is_production(self) -> bool:
        return self.environment.strip().lower() == "production"

    @property
    def tracking_database_ids(self) -> Dict[str, str]:
        raw = self.notion_tracking_database_ids_raw.strip()
        if not raw:
            return {}
        try:
            payload = json.loads(raw)
        except ValueError:
            logger.warning("NOTION_TRACKING_DATABASE_IDS is not valid JSON; ignoring it.")
            return {}
        if not isinstance(payload, dict):
            return {}
        return {str(k): str(v) for k, v in payload.items() if k in TRACKING_PERIODS and v}

    def property_map(self, kind: str) -> Dict[str, str]:
        mapping = dict(DEFAULT_PROPERTY_MAP.get(kind, {}))
        raw = self.notion_property_map_raw.strip()
        if not raw:
            return mapping
        try:
            overrides = json.loads(raw)
        except ValueError:
            logger.warning("NOTION_PROPERTY_MAP is not valid JSON; using defaults.")
            return mapping
        section = overrides.get(kind) if isinstance(overrides, dict) else None
        if isinstance(section, dict):
            mapping.update({str(k): str(v) for k, v in section.items() if v})
        return mapping

    def default_database_id(self, kind: str) -> str | None:
        if kind == "media":
            return self.notion_media_database_id
        if kind == "people":
            return self.notion_people_database_id
        if kind == "todos":
            return self.notion_todos_database_id
        if kind.startswith("tracking_"):
            return self.tracking_database_ids.get(kind[len("tracking_") :])
        return None


_settings: Settings | None = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    global _settings
    _settings = None
