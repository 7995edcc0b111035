"""
Fee-type classification for paid invoices.

Deterministic keyword matching is the default and always runs first. When it
is inconclusive, an optional semantic classifier (an OpenRouter-hosted LLM
via langchain) may be consulted. Any failure of that fallback degrades to
FeeType.UNKNOWN so the record surfaces for manual classification.
"""

import logging
import re
from typing import Literal, Optional, Protocol

import pybreaker
from langchain_openai import ChatOpenAI
from pydantic import BaseModel, Field

from database.models import FeeType
from shared.circuit_breaker import call_with_breaker, fee_classifier_breaker
from shared.config import Settings, get_settings

logger = logging.getLogger(__name__)

MOVE_IN_PATTERN = re.compile(r"\b(move in|moving in|movein|move-in|into)\b")
MOVE_OUT_PATTERN = re.compile(r"\b(move out|moving out|moveout|move-out|out|exit|vacate)\b")

_NON_ALNUM = re.compile(r"[^a-z0-9 ]")


def normalize_fee_text(text: str) -> str:
    """Lowercase and replace anything but letters, digits and spaces with a space."""
    return _NON_ALNUM.sub(" ", text.lower())


def classify_by_keywords(text: str) -> Optional[FeeType]:
    """
    Keyword classification. Move-in vocabulary wins when both match.

    Returns:
        FeeType.MOVE_IN, FeeType.MOVE_OUT, or None if inconclusive
    """
    normalized = normalize_fee_text(text)
    if MOVE_IN_PATTERN.search(normalized):
        return FeeType.MOVE_IN
    if MOVE_OUT_PATTERN.search(normalized):
        return FeeType.MOVE_OUT
    return None


class FeeClassifier(Protocol):
    """Pluggable fallback: returns a fee type or None when it cannot decide."""

    async def classify(self, text: str) -> Optional[FeeType]: ...


class KeywordFeeClassifier:
    """Default classifier; never consults anything external."""

    async def classify(self, text: str) -> Optional[FeeType]:
        return classify_by_keywords(text)


class FeeTypeClassification(BaseModel):
    """Structured output requested from the LLM."""

    fee_type: Literal["move_in", "move_out", "unknown"] = Field(
        description="move_in for move-in fees, move_out for move-out fees, unknown otherwise"
    )


class LLMFeeClassifier:
    """
    OpenRouter-backed fallback classifier.

    Guarded by the fee_classifier circuit breaker. Returns None on any error
    or on an "unknown" answer.
    """

    def __init__(self, settings: Settings | None = None, llm: ChatOpenAI | None = None):
        settings = settings or get_settings()
        self.llm = llm or ChatOpenAI(
            model=settings.FEE_CLASSIFIER_MODEL,
            base_url="https://openrouter.ai/api/v1",
            api_key=settings.OPENROUTER_API_KEY,
            temperature=0,
            request_timeout=15.0,
            max_retries=1,
        )

    async def _ask(self, text: str) -> FeeTypeClassification:
        structured_llm = self.llm.with_structured_output(FeeTypeClassification)
        prompt = f"""Classify this building invoice line item as a move-in fee or a move-out fee.

Line item: "{text}"

Answer move_in or move_out. Answer unknown if the item is neither."""
        return await structured_llm.ainvoke(prompt)

    async def classify(self, text: str) -> Optional[FeeType]:
        try:
            result = await call_with_breaker(fee_classifier_breaker, self._ask, text)
        except pybreaker.CircuitBreakerError:
            logger.warning("Fee classifier circuit open, leaving fee type unknown")
            return None
        except Exception as e:
            logger.warning(f"Fee classifier failed: {type(e).__name__}: {e}")
            return None

        if result.fee_type == "move_in":
            return FeeType.MOVE_IN
        if result.fee_type == "move_out":
            return FeeType.MOVE_OUT
        return None


async def classify_fee_type(text: str, fallback: FeeClassifier | None = None) -> FeeType:
    """
    Classify an invoice's product/description text.

    Args:
        text: Product key and notes joined by a space
        fallback: Optional semantic classifier consulted when keywords are inconclusive

    Returns:
        FeeType; UNKNOWN when neither keywords nor fallback decide
    """
    keyword_result = classify_by_keywords(text)
    if keyword_result is not None:
        return keyword_result

    if fallback is not None:
        try:
            fallback_result = await fallback.classify(text)
        except Exception as e:
            logger.warning(f"Fallback fee classifier raised {type(e).__name__}: {e}")
            fallback_result = None
        if fallback_result is not None:
            logger.info(f"Fee type resolved by fallback classifier: {fallback_result.value}")
            return fallback_result

    return FeeType.UNKNOWN


def build_fee_classifier(settings: Settings | None = None) -> FeeClassifier | None:
    """LLM fallback when enabled and keyed, otherwise None (keywords only)."""
    settings = settings or get_settings()
    if settings.FEE_CLASSIFIER_ENABLED and settings.OPENROUTER_API_KEY != "sk-or-placeholder":
        return LLMFeeClassifier(settings)
    return None
