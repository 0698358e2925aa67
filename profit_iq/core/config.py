from functools import lru_cache
import json
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _parse_list_value(value: str) -> list[str]:
    if not value:
        return []
    if isinstance(value, str):
        raw = value.strip()
        if raw == "":
            return []
        try:
            parsed = json.loads(raw)
            if isinstance(parsed, list):
                return [str(item).strip() for item in parsed if str(item).strip()]
        except Exception:
            pass
        return [item.strip() for item in raw.split(",") if item.strip()]
    if isinstance(value, list):
        return [str(item).strip() for item in value if str(item).strip()]
    return []


def _parse_models_value(value: str) -> dict[str, list[str]]:
    """Parse ``AI_ALLOWED_MODELS``.

    Accepts a JSON object (``{"claude": ["claude-sonnet-4-5"]}``) or a
    ``provider:model`` CSV (``claude:claude-sonnet-4-5,openai:gpt-4o``).
    """
    raw = (value or "").strip()
    if not raw:
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict):
        return {
            str(provider).strip().lower(): [str(m).strip() for m in (models or []) if str(m).strip()]
            for provider, models in parsed.items()
        }

    result: dict[str, list[str]] = {}
    for item in raw.split(","):
        if ":" not in item:
            continue
        provider, model = item.split(":", 1)
        provider = provider.strip().lower()
        model = model.strip()
        if provider and model:
            result.setdefault(provider, []).append(model)
    return result


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="forbid",
        validate_by_name=True,
        populate_by_name=True,
    )
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: str = ""
    supabase_jwt_secret: str = ""
    supabase_jwt_audience: str = ""
    database_url: str = ""

    storage_bucket: str = Field(
        default="profit-iq",
        validation_alias=AliasChoices("STORAGE_BUCKET", "BLOB_BUCKET"),
    )
    max_upload_bytes: int = 10 * 1024 * 1024

    # --- AI ---
    ai_allowed_providers_raw: str = Field(
        default="mock,claude,openai",
        validation_alias=AliasChoices("AI_ALLOWED_PROVIDERS"),
    )
    ai_allowed_models_raw: str = Field(
        default="",
        validation_alias=AliasChoices("AI_ALLOWED_MODELS"),
    )
    anthropic_api_key: str = ""
    openai_api_key: str = ""
    ai_extract_provider: str = "claude"
    ai_extract_model: str = ""
    ai_extract_timeout_seconds: float = 60.0
    ai_extract_max_tokens: int = 4096
    ai_chat_provider: str = "claude"
    ai_chat_model: str = ""
    ai_chat_timeout_seconds: float = 60.0
    ai_chat_max_tokens: int = 2048
    ai_chat_max_steps: int = 5
    ai_temperature: float = 0.1
    ai_fetch_timeout_seconds: float = 20.0
    ai_debug_store_raw: bool = True

    # --- Email ingest ---
    enable_email_ingest: bool = True
    email_min_attachment_bytes: int = 1000
    rate_limit_ingest_ip_per_min: int = 30
    trusted_proxy_cidrs: list[str] = Field(default_factory=list)

    docs_enabled: bool = Field(default=True)
    openapi_enabled: bool = Field(default=True)
    expose_error_details: bool = False

    security_headers_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("SECURITY_HEADERS_ENABLED", "SECURE_HEADERS_ENABLED"),
    )

    cors_allow_origins: list[str] = Field(default_factory=list)
    cors_allow_methods: list[str] = Field(default_factory=lambda: [
        "GET",
        "POST",
        "PUT",
        "DELETE",
        "OPTIONS",
    ])
    cors_allow_headers: list[str] = Field(default_factory=lambda: [
        "Authorization",
        "Content-Type",
        "Accept",
    ])

    @field_validator(
        "cors_allow_origins",
        "cors_allow_methods",
        "cors_allow_headers",
        "trusted_proxy_cidrs",
        mode="before",
    )
    @classmethod
    def _split_csv(cls, value):
        if value is None:
            return []
        if isinstance(value, str):
            if value.strip() == "":
                return []
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @property
    def ai_allowed_providers(self) -> list[str]:
        return [item.lower() for item in _parse_list_value(self.ai_allowed_providers_raw)]

    @property
    def ai_allowed_models(self) -> dict[str, list[str]]:
        return _parse_models_value(self.ai_allowed_models_raw)

@lru_cache

def get_settings() -> Settings:
    return Settings()
