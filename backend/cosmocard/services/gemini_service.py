"""
CosmoCard Backend — Google Gemini Service Implementation
==========================================================

What:  Concrete AI collaborator: prompt (+ file attachments) → JSON via Gemini.
Why:   Gemini reads both the extracted text and raw label/INCI images, and
       returns structured JSON for the label and composition fields.
How:   Sends prompt + inline attachments, strips markdown code fences from the
       reply, parses it as JSON. Calls are wrapped in tenacity retry and a
       circuit breaker.

Failure policy:
    Every failure (no API key, network, quota, retries exhausted, open
    circuit, malformed JSON) becomes an AIUnavailable result. The caller
    leaves the AI columns blank and reports aiAvailable=false; nothing
    placeholder-shaped is ever written to the card.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter for transient failures
    2. Circuit breaker to stop calling Gemini while it is failing
    3. Per-call timeout passed through request_options
"""

import json
import logging
import re
import time
import uuid
from typing import Any, Dict, List, Optional, Sequence

import google.generativeai as genai
from tenacity import (
    RetryError,
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from cosmocard.config import settings
from cosmocard.exceptions import CircuitBreakerOpenError, LLMServiceError
from cosmocard.services.llm_base import (
    AIUnavailable,
    Attachment,
    InciAnalysis,
    InciResult,
    LabelAnalysis,
    LabelResult,
    LLMService,
)
from cosmocard.services.prompts import build_inci_prompt, build_label_prompt

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)


class MalformedResponseError(ValueError):
    """Gemini answered, but not with a JSON object."""


def parse_json_response(text: str) -> Dict[str, Any]:
    """Strip ```json fences and parse the model reply as a JSON object."""
    cleaned = _FENCE_RE.sub("", text or "").strip()
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise MalformedResponseError(f"Response is not valid JSON: {e}") from e
    if not isinstance(data, dict):
        raise MalformedResponseError("Response JSON is not an object")
    return data


def _as_text(value: Any) -> str:
    """Lists become ", "-joined strings; None becomes empty."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(item).strip() for item in value if str(item).strip())
    return str(value).strip()


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Circuit breaker for Gemini calls.

    State Machine:
        CLOSED → failure_count reaches threshold → OPEN
        OPEN → recovery_timeout elapsed → HALF_OPEN (one test call)
        HALF_OPEN → success → CLOSED, failure → OPEN

    Not thread-safe; the app runs as one async process per worker.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True if a call may proceed.

        Raises:
            CircuitBreakerOpenError if OPEN and the recovery timeout hasn't elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info("Circuit breaker transitioning to HALF_OPEN after %.1fs", elapsed)
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (service recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Gemini Service
# ══════════════════════════════════════════════════════════════════════════

class GeminiService(LLMService):
    """
    Gemini implementation of label and INCI analysis.

    Error Handling Chain:
        API call fails → tenacity retries (retry_max_attempts with backoff)
        → all retries fail → LLMServiceError, circuit breaker failure recorded
        → threshold reached → calls rejected instantly with CircuitBreakerOpenError
        → every one of these becomes AIUnavailable at the public methods
    """

    def __init__(self):
        self.enabled = bool(settings.gemini_api_key)
        if self.enabled:
            genai.configure(api_key=settings.gemini_api_key)
        else:
            logger.warning("GEMINI_API_KEY is not set; AI analysis will report unavailable")

        self.model = genai.GenerativeModel(settings.gemini_model)
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )

        logger.info(
            "GeminiService initialized with model=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.gemini_model,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    # ── Public analyses ───────────────────────────────────────────────────

    async def analyze_label(
        self,
        product_name: str,
        label_text: str,
        attachments: Sequence[Attachment] = (),
    ) -> LabelResult:
        prompt = build_label_prompt(product_name, label_text)
        data = await self.generate_json(prompt, attachments)
        if isinstance(data, AIUnavailable):
            return data
        return LabelAnalysis(
            label_info=_as_text(data.get("labelInfo")),
            suggested_purpose=_as_text(data.get("suggestedPurpose")),
            suggested_application=_as_text(data.get("suggestedApplication")),
        )

    async def analyze_inci(
        self,
        product_name: str,
        purpose: str,
        inci_text: str,
        attachments: Sequence[Attachment] = (),
        keep_percentages: bool = False,
    ) -> InciResult:
        prompt = build_inci_prompt(product_name, purpose, inci_text, keep_percentages)
        data = await self.generate_json(prompt, attachments)
        if isinstance(data, AIUnavailable):
            return data
        return InciAnalysis(
            active_ingredients_ru=_as_text(data.get("activeIngredients")),
            active_ingredients_en=_as_text(data.get("activeIngredientsEn")),
            booklet_composition_ru=_as_text(data.get("bookletComposition")),
            booklet_composition_en=_as_text(data.get("bookletCompositionEn")),
            full_composition_ru=_as_text(data.get("fullComposition")),
            full_composition_en=_as_text(data.get("fullCompositionEn")),
        )

    async def generate_json(
        self,
        prompt: str,
        attachments: Sequence[Attachment] = (),
    ) -> Any:
        """
        Prompt + attachments → parsed JSON object, or AIUnavailable.

        Flow:
            1. Refuse early when no API key is configured
            2. Check circuit breaker (may reject immediately)
            3. Call Gemini with retry
            4. Parse fenced JSON; a malformed reply counts as a failure
        """
        request_id = str(uuid.uuid4())[:8]

        if not self.enabled:
            return AIUnavailable(reason="Gemini API key is not configured")

        try:
            self.circuit_breaker.can_execute()
        except CircuitBreakerOpenError as e:
            logger.warning("[%s] Skipping Gemini call: %s", request_id, e.message)
            return AIUnavailable(reason=e.message)

        try:
            text = await self._call_gemini_with_retry(prompt, list(attachments), request_id)
            data = parse_json_response(text)
        except RetryError as e:
            self.circuit_breaker.record_failure()
            error = LLMServiceError(
                message="AI analysis failed after multiple attempts",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )
            logger.error(
                "[%s] All Gemini retries exhausted: %s",
                request_id,
                str(e.last_attempt.exception()) if e.last_attempt else "Unknown error",
            )
            return AIUnavailable(reason=error.message)
        except MalformedResponseError as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gemini returned malformed JSON: %s", request_id, e)
            return AIUnavailable(reason=str(e))
        except Exception as e:
            self.circuit_breaker.record_failure()
            logger.error("[%s] Gemini call failed: %s", request_id, str(e), exc_info=True)
            return AIUnavailable(reason=f"{type(e).__name__}: {e}")

        self.circuit_breaker.record_success()
        return data

    # ── Transport ─────────────────────────────────────────────────────────

    @retry(
        retry=retry_if_exception_type(Exception),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
    )
    async def _call_gemini_with_retry(
        self,
        prompt: str,
        attachments: List[Attachment],
        request_id: str,
    ) -> str:
        start_time = time.time()
        parts: List[Any] = [prompt]
        parts.extend({"mime_type": a.mime_type, "data": a.content} for a in attachments)

        try:
            response = await self.model.generate_content_async(
                parts,
                request_options={"timeout": settings.gemini_timeout},
            )
        except Exception as e:
            logger.warning(
                "[%s] Gemini API call failed after %.0fms: %s",
                request_id,
                (time.time() - start_time) * 1000,
                str(e),
            )
            raise

        text = response.text or ""
        logger.info(
            "[%s] Gemini call completed in %.0fms (%d attachments, %d chars)",
            request_id,
            (time.time() - start_time) * 1000,
            len(attachments),
            len(text),
        )
        return text

    async def health_check(self) -> bool:
        if not self.enabled:
            return False
        try:
            models = genai.list_models()
            target = f"models/{settings.gemini_model}"
            if target not in [m.name for m in models]:
                logger.warning("Configured model %s not found in available models", target)
            return True
        except Exception as e:
            logger.warning("Gemini health check failed: %s", str(e))
            return False


gemini_service = GeminiService()
