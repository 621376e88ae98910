"""
functions/utils/settings.py

WHAT THIS FILE IS FOR
---------------------
This module defines the *single source of truth* for runtime configuration
of the Resume ATS Scorer API.

It is responsible for:
- Defining all supported configuration fields (via Pydantic BaseSettings)
- Loading default values from parameters/parameters.yaml
- Overriding defaults with environment variables (RESUME_SCORER_*)
- Validating required settings (Gemini endpoint + credential pool)
- Exposing a cached, fully-validated Settings object to the application

LOAD & PRECEDENCE MODEL
-----------------------
Configuration is loaded in the following order (last wins):

1) YAML defaults from:
       parameters/parameters.yaml
2) Environment variables:
       RESUME_SCORER_*

Credentials (gemini_api_keys) are expected to come from the environment
in deployed setups; the YAML file only carries non-secret defaults.

CREDENTIAL POOL FORMAT
----------------------
gemini_api_keys is a comma-separated string, e.g.

    RESUME_SCORER_GEMINI_API_KEYS="key-a,key-b,key-c"

Order matters: the gateway starts at index 0 and rotates forward
on failure. Blank entries are dropped.

WHAT THIS FILE IS NOT FOR
-------------------------
This module is NOT responsible for:
- Building the credential pool or rotating it
- HTTP calls
- Request handling

It should only define *configuration structure and loading rules*.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Literal, Optional, Tuple

import structlog
import yaml
from pydantic import AnyHttpUrl, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = structlog.get_logger(__name__)

PARAMETERS_PATH = Path(__file__).resolve().parents[2] / "parameters" / "parameters.yaml"

DEFAULT_GEMINI_API_URL = (
    "https://generativelanguage.googleapis.com/v1beta/models/gemini-2.0-flash:generateContent"
)


class Settings(BaseSettings):
    """
    Runtime settings for the Resume ATS Scorer API.

    Load order / precedence:
        1) YAML defaults (parameters/parameters.yaml)
        2) Environment variables (RESUME_SCORER_*), overriding YAML
    """

    model_config = SettingsConfigDict(
        env_prefix="RESUME_SCORER_",
        extra="ignore",
    )

    # Service metadata
    service_name: str = "resume_ats_scorer"
    environment: str = "local"
    log_level: str = "INFO"
    log_json: bool = False

    # Upstream generative endpoint
    gemini_api_url: AnyHttpUrl = Field(default=DEFAULT_GEMINI_API_URL)
    gemini_api_keys: str = Field(
        default="",
        description="Comma-separated credential pool, tried in order with rotation on failure.",
    )
    credential_placement: Literal["query", "header"] = Field(
        default="query",
        description="Send the credential as ?key=... (query) or as the x-goog-api-key header.",
    )

    # Per-attempt timeout; a timeout counts as a transport failure and rotates the pool
    upstream_timeout_seconds: float = 60.0

    # Text extraction
    extraction_length_tolerance: int = Field(
        default=5,
        ge=1,
        description="Two extraction passes must differ in length by less than this to be trusted.",
    )
    default_file_name_prefix: str = "untitled_resume_"

    # Persistence (mongo_url unset -> in-memory store)
    mongo_url: Optional[str] = None
    mongo_database: str = "ats_scorer"
    mongo_collection: str = "atsResults"

    # Feature flags
    enable_debug_metadata: bool = Field(
        default=False,
        description="If true, extra diagnostic fields (segment counts, attempt counts) are logged.",
    )

    def credential_tokens(self) -> Tuple[str, ...]:
        """Split gemini_api_keys into an ordered tuple of non-blank tokens."""
        return tuple(k.strip() for k in self.gemini_api_keys.split(",") if k.strip())


@lru_cache(maxsize=1)
def _load_yaml_parameters() -> Dict[str, Any]:
    """
    Load base configuration from parameters/parameters.yaml.

    Cached to:
    - Avoid repeated disk I/O
    - Guarantee consistent config during process lifetime
    """
    if not PARAMETERS_PATH.exists():
        logger.warning("parameters_yaml_missing", expected=str(PARAMETERS_PATH))
        return {}

    try:
        with PARAMETERS_PATH.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            logger.warning(
                "parameters_yaml_not_dict",
                path=str(PARAMETERS_PATH),
                type=type(data).__name__,
            )
            return {}
        logger.info("parameters_yaml_loaded", path=str(PARAMETERS_PATH))
        return data
    except Exception as exc:  # noqa: BLE001
        logger.error("parameters_yaml_load_error", path=str(PARAMETERS_PATH), error=str(exc))
        return {}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Construct and return the final validated Settings object.

    This function is:
    - Cached (singleton per process)
    - The ONLY supported way to access runtime settings
    """
    # 1) YAML defaults
    yaml_data = _load_yaml_parameters()

    # 2) env overrides (partial)
    try:
        env_settings = Settings()
        env_data = env_settings.model_dump(exclude_unset=True)
        logger.info("settings_loaded_env_only_partial", fields=list(env_data.keys()))
    except ValidationError as exc:
        logger.warning("settings_env_validation_error", errors=exc.errors())
        env_data = {}

    # 3) merge
    merged: Dict[str, Any] = {**yaml_data, **env_data}

    # 4) final validation
    settings = Settings.model_validate(merged)

    # 5) the gateway cannot run without at least one credential
    if not settings.credential_tokens():
        logger.error("settings_missing_credentials", yaml_path=str(PARAMETERS_PATH))
        raise RuntimeError(
            "Missing required setting: gemini_api_keys. "
            "Set RESUME_SCORER_GEMINI_API_KEYS to a comma-separated list of keys."
        )

    logger.info(
        "settings_loaded",
        environment=settings.environment,
        service_name=settings.service_name,
        gemini_api_url=str(settings.gemini_api_url),
        credential_count=len(settings.credential_tokens()),
        credential_placement=settings.credential_placement,
        upstream_timeout_seconds=settings.upstream_timeout_seconds,
        extraction_length_tolerance=settings.extraction_length_tolerance,
        persistence="mongo" if settings.mongo_url else "memory",
        enable_debug_metadata=settings.enable_debug_metadata,
    )

    return settings
