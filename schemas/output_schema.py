# -------------------------------------------------------------------
# schemas/output_schema.py
#
# WHAT THIS FILE IS FOR
# --------------------
# Response and record schemas used by the Resume ATS Scorer API.
#
# NAMING CONVENTION (IMPORTANT)
# -----------------------------
# Fields are snake_case in Python. Public response models serialize to
# camelCase via alias_generator=to_camel; api.py always dumps them with
# by_alias=True.
#
# ScoringRecord is the persisted entity. It is stored snake_case as-is
# (no aliases) so that Mongo documents keep stable field names.
# -------------------------------------------------------------------

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ScoreResponse(BaseModel):
    """
    Outcome of one scoring request.

    - score: parsed integer (0 when the reply has no score)
    - feedback_markdown: raw upstream reply
    - extracted_text: verified resume text
    - error / error_message: set on fatal failures and on degraded saves
    """

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    score: int = 0
    feedback_markdown: str = ""
    extracted_text: str = ""
    error: bool = False
    error_message: Optional[str] = None


class ExtractTextResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    file_name: str
    extracted_text: str
    length: int


class ChatResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    reply: str


class ScoringRecord(BaseModel):
    """
    Durable scoring result, unique per (user_email, file_name).

    Created on first scoring of a pair; overwritten in place on re-scoring.
    """

    model_config = ConfigDict(extra="ignore")

    user_email: str
    file_name: str
    user_id: Optional[str] = None
    job_title: Optional[str] = None
    job_description: Optional[str] = None
    extracted_text: str = ""
    raw_reply: str = ""
    score: int = 0
    checked_at: datetime = Field(default_factory=utc_now)


class ScoringRecordView(BaseModel):
    """Public view of a stored record (history endpoint)."""

    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    file_name: str
    job_title: Optional[str] = None
    score: int
    feedback_markdown: str
    checked_at: datetime

    @classmethod
    def from_record(cls, record: ScoringRecord) -> "ScoringRecordView":
        return cls(
            file_name=record.file_name,
            job_title=record.job_title,
            score=record.score,
            feedback_markdown=record.raw_reply,
            checked_at=record.checked_at,
        )


class ScoringHistoryResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel)

    user_email: str
    records: List[ScoringRecordView] = Field(default_factory=list)
