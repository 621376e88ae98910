# -------------------------------------------------------------------
# schemas/input_schema.py
#
# WHAT THIS FILE IS FOR
# --------------------
# Public request shapes for the Resume ATS Scorer API.
#
# The scoring endpoint itself is multipart (file upload), so its fields
# are declared as Form parameters in api.py and gathered into
# ScoreRequest there. JSON endpoints (chat) use the models below directly.
#
# KEY DESIGN DECISION
# -------------------
# Like every public schema in this service, JSON field names are accepted
# in both camelCase and snake_case:
#   - snake_case: job_title, job_description, user_email
#   - camelCase:  jobTitle, jobDescription, userEmail
#
# implemented via alias_generator=to_camel + populate_by_name=True.
#
# WHAT THIS FILE IS NOT FOR
# ------------------------
# This module does NOT:
# - Perform business logic
# - Call downstream services
# - Handle API routing or HTTP concerns
# -------------------------------------------------------------------

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ScoringMode(str, Enum):
    """quick = rough structural score, detailed = job-aware analysis with feedback."""

    QUICK = "quick"
    DETAILED = "detailed"


class ScoreRequest(BaseModel):
    """
    Everything the scoring pipeline needs for one request.

    user_email is an opaque persistence key; it is NOT authenticated here.
    When it is absent the score is still computed but not stored.
    """

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        frozen=True,
    )

    document_bytes: bytes = Field(..., repr=False)
    file_name: Optional[str] = None
    mode: ScoringMode = ScoringMode.QUICK
    job_title: Optional[str] = None
    job_description: Optional[str] = None
    user_email: Optional[str] = None
    user_id: Optional[str] = None


class ChatRequest(BaseModel):
    """Free-form prompt forwarded through the credential pool."""

    model_config = ConfigDict(
        populate_by_name=True,
        alias_generator=to_camel,
        json_schema_extra={"example": {"prompt": "Suggest three stronger verbs than 'worked on'."}},
    )

    prompt: str = Field(..., min_length=1, description="Prompt text sent verbatim as a single part")
