"""
Fallback Policy

Converts any unrecovered pipeline failure into one of four fixed replies.
Classification only inspects the error that was raised (its type, transport
kind, status code and message); it never re-derives the failure.
"""

import enum
import logging
from typing import Dict, Optional, Tuple

from kardia_engine.llm.base import MalformedResponse, ResponseContractError, TransportFailure
from kardia_engine.models.reply import CanonicalReply

logger = logging.getLogger(__name__)


class FallbackCategory(str, enum.Enum):
    CONNECTIVITY = "connectivity"
    QUOTA = "quota"
    MALFORMED = "malformed-response"
    UNKNOWN = "unknown"


QUOTA_MARKERS = ("quota", "rate limit", "rate-limit", "resource_exhausted", "too many requests")
CONNECTIVITY_STATUSES = frozenset({502, 503, 504})


def classify_error(error: BaseException) -> FallbackCategory:
    """Map a failure onto a fallback category."""
    if isinstance(error, TransportFailure):
        if error.kind in ("connection", "timeout"):
            return FallbackCategory.CONNECTIVITY
        if error.kind == "envelope":
            return FallbackCategory.MALFORMED
        detail = f"{error} {error.detail}".lower()
        if error.status_code == 429 or any(marker in detail for marker in QUOTA_MARKERS):
            return FallbackCategory.QUOTA
        if error.status_code in CONNECTIVITY_STATUSES:
            return FallbackCategory.CONNECTIVITY
        return FallbackCategory.UNKNOWN

    if isinstance(error, MalformedResponse):
        return FallbackCategory.MALFORMED

    # Parsed but off-contract replies get the generic message
    if isinstance(error, ResponseContractError):
        return FallbackCategory.UNKNOWN

    if isinstance(error, (TimeoutError, ConnectionError)):
        return FallbackCategory.CONNECTIVITY

    return FallbackCategory.UNKNOWN


# (apology/explanation, alternative action) per language
_ALTERNATIVE_EN = (
    "In the meantime, you could try asking a simpler question, or contact "
    "your doctor directly for a health consultation."
)
_ALTERNATIVE_ID = (
    "Sebagai alternatif, Anda dapat mencoba mengajukan pertanyaan yang lebih "
    "sederhana atau menghubungi dokter langsung untuk konsultasi kesehatan."
)

FALLBACK_TEXTS: Dict[str, Dict[FallbackCategory, Tuple[str, str]]] = {
    "en": {
        FallbackCategory.CONNECTIVITY: (
            "Sorry, the connection to the AI service is unstable right now. "
            "Please try again in a few moments.",
            _ALTERNATIVE_EN,
        ),
        FallbackCategory.QUOTA: (
            "The AI service is under heavy load at the moment. Please try again later.",
            _ALTERNATIVE_EN,
        ),
        FallbackCategory.MALFORMED: (
            "Something went wrong while processing the AI response. "
            "Our technical team has been notified.",
            _ALTERNATIVE_EN,
        ),
        FallbackCategory.UNKNOWN: (
            "Sorry, I ran into a technical problem. Please try again, or contact "
            "support if the problem continues.",
            _ALTERNATIVE_EN,
        ),
    },
    "id": {
        FallbackCategory.CONNECTIVITY: (
            "Maaf, koneksi ke layanan AI sedang tidak stabil. "
            "Silakan coba lagi dalam beberapa saat.",
            _ALTERNATIVE_ID,
        ),
        FallbackCategory.QUOTA: (
            "Layanan AI sedang mengalami beban tinggi. Silakan coba lagi nanti.",
            _ALTERNATIVE_ID,
        ),
        FallbackCategory.MALFORMED: (
            "Terjadi kesalahan dalam memproses respons AI. Tim teknis telah diberi tahu.",
            _ALTERNATIVE_ID,
        ),
        FallbackCategory.UNKNOWN: (
            "Maaf, saya mengalami sedikit kendala teknis. Silakan coba lagi atau "
            "hubungi dukungan jika masalah berlanjut.",
            _ALTERNATIVE_ID,
        ),
    },
}

_INDONESIAN_NAMES = {"id", "indonesian", "bahasa indonesia", "indonesia"}


def language_code(language: Optional[str]) -> str:
    """Fallback text language for a profile language preference."""
    if language and language.strip().lower() in _INDONESIAN_NAMES:
        return "id"
    return "en"


class FallbackPolicy:
    """Deterministic replacement replies for failed generations."""

    def __init__(self, texts: Optional[Dict[str, Dict[FallbackCategory, Tuple[str, str]]]] = None):
        self.texts = texts or FALLBACK_TEXTS

    def reply_for(self, category: FallbackCategory, language: Optional[str] = None) -> CanonicalReply:
        explanation, alternative = self.texts[language_code(language)][category]
        return CanonicalReply.of_paragraphs(explanation, alternative)

    def handle(self, error: BaseException, language: Optional[str] = None) -> Tuple[FallbackCategory, CanonicalReply]:
        """Classify ``error`` and return the matching fixed reply."""
        category = classify_error(error)
        logger.info(f"[FALLBACK] {type(error).__name__} classified as {category.value}")
        return category, self.reply_for(category, language)
