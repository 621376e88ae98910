"""
functions/scoring/resume_scoring_service.py

WHAT THIS FILE IS FOR
---------------------
This module runs the end-to-end scoring pipeline for one request:

    TextExtractor.aextract()          (worker thread)
      -> PromptComposer.compose()
      -> AIGateway.dispatch()         (credential rotation)
      -> parse_score()
      -> ResultStore.upsert()         (only when user_email is known)
      -> ScoreResponse

Stages run strictly in this order; nothing is speculative or reordered.

CALL FLOW CONTEXT
-----------------
FastAPI (api.py)
  -> ResumeScoringService.score(ScoreRequest)

ERROR HANDLING RULES
--------------------
- DocumentReadError / UnreliableExtractionError / EmptyInputError
  / UpstreamExhaustedError are raised to the caller unchanged
  (api.py maps them to 400 / 502 with a sanitized message).
- PersistenceError is NOT raised: the computed score is still returned,
  with error=True and a message saying the save failed.
- Each fatal error is logged once here, with stage + underlying cause.

WHAT THIS FILE IS NOT FOR
-------------------------
This module MUST NOT:
- Perform HTTP routing or build HTTP responses
- Authenticate users (user_email is an opaque key)
- Log resume text, prompt text, or credentials
"""

from __future__ import annotations

import time
from typing import Optional

import structlog

from functions.scoring.ai_gateway import AIGateway, AIReply
from functions.scoring.prompt_composer import EvaluationParameters, PromptComposer
from functions.scoring.result_store import ResultStore
from functions.scoring.score_parser import parse_score
from functions.scoring.text_extractor import Document, TextExtractor
from functions.utils.errors import PersistenceError, ScoringError, UnreliableExtractionError
from schemas.input_schema import ScoreRequest
from schemas.output_schema import ScoreResponse

logger = structlog.get_logger(__name__)


class ResumeScoringService:
    """
    Orchestrates extraction, prompting, dispatch, parsing and persistence.

    All collaborators are injected so tests can swap any stage.
    """

    def __init__(
        self,
        *,
        extractor: TextExtractor,
        gateway: AIGateway,
        store: ResultStore,
        composer: Optional[PromptComposer] = None,
        default_file_name_prefix: str = "untitled_resume_",
    ) -> None:
        self.extractor = extractor
        self.gateway = gateway
        self.store = store
        self.composer = composer or PromptComposer()
        self._default_prefix = default_file_name_prefix

    def resolve_file_name(self, file_name: Optional[str]) -> str:
        if file_name and file_name.strip():
            return file_name.strip()
        return f"{self._default_prefix}{int(time.time() * 1000)}.pdf"

    async def extract_verified_text(self, document: Document) -> str:
        """Extract + verify, raising UnreliableExtractionError on disagreement."""
        extracted = await self.extractor.aextract(document)
        if not extracted.reliable:
            raise UnreliableExtractionError(
                f"Extraction passes disagreed for {document.file_name!r}",
                details={"file_name": document.file_name},
            )
        return extracted.text

    async def score(self, request: ScoreRequest) -> ScoreResponse:
        file_name = self.resolve_file_name(request.file_name)
        log = logger.bind(file_name=file_name, mode=request.mode.value)

        try:
            text = await self.extract_verified_text(Document(request.document_bytes, file_name))

            params = EvaluationParameters(
                mode=request.mode,
                job_title=request.job_title,
                job_description=request.job_description,
            )
            segments = self.composer.compose(text, params)

            reply: AIReply = await self.gateway.dispatch(segments)
        except ScoringError as exc:
            log.warning("scoring_failed", **exc.to_dict())
            raise

        score = parse_score(reply.text)
        log.info(
            "resume_scored",
            score=score,
            credential_index=reply.credential_index,
            attempts=reply.attempts,
            text_length=len(text),
        )

        response = ScoreResponse(
            score=score,
            feedback_markdown=reply.text,
            extracted_text=text,
        )

        if not request.user_email:
            log.info("user_email_missing_result_not_saved")
            return response

        try:
            await self.store.upsert(
                request.user_email,
                file_name,
                score=score,
                raw_reply=reply.text,
                extracted_text=text,
                job_title=request.job_title,
                job_description=request.job_description,
                user_id=request.user_id,
            )
        except PersistenceError as exc:
            log.error("scoring_result_save_failed", **exc.to_dict())
            response = response.model_copy(
                update={"error": True, "error_message": exc.public_message}
            )

        return response
