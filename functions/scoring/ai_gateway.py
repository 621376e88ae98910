"""
functions/scoring/ai_gateway.py

WHAT THIS FILE IS FOR
---------------------
This module is the *only* boundary between the scoring pipeline and the
upstream generative-language endpoint (Gemini generateContent).

It is responsible for:
- Holding the credential pool and its rotation cursor
- Building the {"contents":[{"parts":[{"text": ...}, ...]}]} request body
- Sending each attempt asynchronously (httpx.AsyncClient) with a bounded timeout
- Validating the reply shape: candidates[0].content.parts[0].text
- Rotating to the next credential on any failure, at most once per credential

ROTATION STATE MACHINE (per dispatch)
-------------------------------------
    tried = {}
    until every index is in tried:
        i = pool.cursor, or the next untried index after it
        send with credential i
        success              -> return reply, cursor stays on i
        failure of any kind  -> cursor = (i + 1) % len(pool), try again
    all failed               -> UpstreamExhaustedError(last underlying error)

"Failure" covers HTTP status >= 400 (UpstreamHTTPError), transport errors,
timeouts, non-JSON bodies, and structurally invalid JSON
(UpstreamStructuralError).

CONCURRENCY
-----------
- Pool membership is immutable after construction.
- The cursor is the only shared mutable state; `advance(i)` sets it to
  (i + 1) % len(pool) under a lock. Concurrent calls failing on the same
  credential all land on the same next one instead of skipping ahead.
- Each dispatch tracks the indices it has tried, so a cursor moved by
  another call never makes it skip a credential or retry one twice.
- Whole dispatches are NOT serialized. Rotation is load spreading, not
  mutual exclusion.
- asyncio.CancelledError is never caught; cancelling the caller cancels the
  in-flight attempt.

WHAT THIS FILE IS NOT FOR
-------------------------
This module MUST NOT:
- Build prompts (prompt_composer.py)
- Parse scores (score_parser.py)
- Cache replies, back off, or circuit-break
- Log credentials or prompt bodies (only indices, lengths and status codes;
  error text is scrubbed of the credential before it is logged or raised)
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional, Sequence, Set, Tuple

import anyio
import httpx
import structlog

from functions.utils.errors import (
    ScoringError,
    UpstreamExhaustedError,
    UpstreamHTTPError,
    UpstreamStructuralError,
    UpstreamTransportError,
)

logger = structlog.get_logger(__name__)

API_KEY_HEADER = "x-goog-api-key"


class CredentialPool:
    """Ordered, fixed, non-empty set of credentials plus a rotation cursor."""

    def __init__(self, tokens: Sequence[str]) -> None:
        cleaned = tuple(t for t in tokens if t)
        if not cleaned:
            raise ValueError("CredentialPool requires at least one credential")
        self._tokens: Tuple[str, ...] = cleaned
        self._cursor = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._tokens)

    @property
    def cursor(self) -> int:
        return self._cursor

    def token_at(self, index: int) -> str:
        return self._tokens[index]

    def advance(self, from_index: int) -> int:
        """Point the cursor just past `from_index`, the credential that failed."""
        with self._lock:
            self._cursor = (from_index + 1) % len(self._tokens)
            return self._cursor


@dataclass(frozen=True)
class AIReply:
    text: str
    credential_index: int
    attempts: int


def build_request_body(segments: Sequence[str]) -> Dict[str, Any]:
    return {"contents": [{"parts": [{"text": s} for s in segments]}]}


def extract_reply_text(payload: Any) -> str:
    """
    Return candidates[0].content.parts[0].text or raise UpstreamStructuralError.
    """
    if not isinstance(payload, dict):
        raise UpstreamStructuralError("Reply body is not a JSON object")

    candidates = payload.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        raise UpstreamStructuralError("Reply has no candidates")

    first = candidates[0]
    content = first.get("content") if isinstance(first, dict) else None
    if not isinstance(content, dict):
        raise UpstreamStructuralError("First candidate has no content object")

    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        raise UpstreamStructuralError("Candidate content has no parts")

    text = parts[0].get("text")
    if not isinstance(text, str):
        raise UpstreamStructuralError(
            f"First part text is {type(text).__name__}, expected str"
        )
    return text


def _scrub(text: str, token: str) -> str:
    return text.replace(token, "***") if token else text


def _scrubbed_failure(exc: Exception, token: str) -> ScoringError:
    """
    Turn an attempt failure into a ScoringError whose text never carries the
    credential. Foreign exceptions keep only their scrubbed message, not the
    original object, since httpx errors embed the request URL.
    """
    if isinstance(exc, ScoringError):
        return exc
    return UpstreamTransportError(_scrub(f"{type(exc).__name__}: {exc}", token))


class AIGateway:
    """
    Multi-credential client for the generative endpoint.

    Construct once per process and share the instance; the rotation cursor
    lives on its CredentialPool.
    """

    def __init__(
        self,
        pool: CredentialPool,
        api_url: str,
        *,
        timeout_seconds: float = 60.0,
        credential_placement: Literal["query", "header"] = "query",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.pool = pool
        self._api_url = str(api_url)
        self._timeout = timeout_seconds
        self._placement = credential_placement
        self._transport = transport

    async def dispatch(self, segments: Sequence[str]) -> AIReply:
        if not segments:
            raise ValueError("dispatch requires at least one prompt segment")
        return await self._send_with_rotation(build_request_body(segments), segment_count=len(segments))

    async def dispatch_text(self, prompt: str) -> AIReply:
        return await self.dispatch((prompt,))

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _next_untried(self, tried: Set[int]) -> int:
        """The cursor's index, or the first index after it this call has not tried yet."""
        start = self.pool.cursor
        size = len(self.pool)
        for step in range(size):
            index = (start + step) % size
            if index not in tried:
                return index
        raise RuntimeError("every credential has already been tried")

    async def _send_with_rotation(self, body: Dict[str, Any], *, segment_count: int) -> AIReply:
        attempts = len(self.pool)
        tried: Set[int] = set()
        last_error: Optional[ScoringError] = None

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            while len(tried) < attempts:
                index = self._next_untried(tried)
                token = self.pool.token_at(index)
                tried.add(index)
                attempt = len(tried)
                try:
                    text = await self._attempt(client, token, body)
                    logger.info(
                        "gateway_attempt_succeeded",
                        credential_index=index,
                        attempt=attempt,
                        segment_count=segment_count,
                        reply_length=len(text),
                    )
                    return AIReply(text=text, credential_index=index, attempts=attempt)

                except Exception as exc:  # noqa: BLE001
                    last_error = _scrubbed_failure(exc, token)
                    next_index = self.pool.advance(index)
                    logger.warning(
                        "gateway_attempt_failed",
                        credential_index=index,
                        next_credential_index=next_index,
                        attempt=attempt,
                        max_attempts=attempts,
                        error_type=type(exc).__name__,
                        error=last_error.message,
                    )

        logger.error(
            "gateway_exhausted",
            attempts=attempts,
            error_type=type(last_error).__name__,
            error=last_error.message if last_error else None,
        )
        raise UpstreamExhaustedError(
            f"All {attempts} credential(s) failed; last error: {last_error.message if last_error else None}",
            attempts=attempts,
            cause=last_error,
        ) from last_error

    async def _attempt(self, client: httpx.AsyncClient, token: str, body: Dict[str, Any]) -> str:
        params: Dict[str, str] = {}
        headers = {"Content-Type": "application/json"}
        if self._placement == "header":
            headers[API_KEY_HEADER] = token
        else:
            params["key"] = token

        # httpx timeouts are per phase; fail_after bounds the whole attempt
        with anyio.fail_after(self._timeout):
            resp = await client.post(self._api_url, json=body, params=params, headers=headers)

        if resp.status_code >= 400:
            logger.warning(
                "gateway_http_error",
                status_code=resp.status_code,
                response_snippet=_scrub((resp.text or "")[:500], token),
            )
            raise UpstreamHTTPError(resp.status_code)

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamStructuralError(
                f"Upstream returned non-JSON (status={resp.status_code})", cause=exc
            ) from exc

        return extract_reply_text(data)
