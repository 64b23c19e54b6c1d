"""Emotional tone analysis.

Two analyzers share one interface: a keyword heuristic that needs no
network access, and an LLM-backed analyzer using structured output.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, Field

from wellness_companion.config import create_model, settings
from wellness_companion.errors import UpstreamError
from wellness_companion.logging import format_log_context, get_logger, truncate_log_text

logger = get_logger(__name__)

Tone = Literal["positive", "neutral", "negative"]
TONES: tuple[str, ...] = ("positive", "neutral", "negative")

POSITIVE_WORDS = ("good", "great", "happy", "excited")
NEGATIVE_WORDS = ("bad", "sad", "angry", "worried", "anxious")


def normalize_tone(value: object) -> str:
    """Lower-case a tone; anything unrecognised becomes neutral."""
    if not isinstance(value, str):
        return "neutral"
    tone = value.strip().lower()
    return tone if tone in TONES else "neutral"


class ToneAnalysis(BaseModel):
    """Result of analyzing one user message."""

    tone: Tone = Field(default="neutral", description="positive, neutral or negative")
    intensity: int = Field(default=5, ge=1, le=10, description="Strength of the feeling, 1-10")
    keywords: list[str] = Field(default_factory=list, description="Key emotional words")

    @classmethod
    def default(cls) -> ToneAnalysis:
        return cls(tone="neutral", intensity=5, keywords=[])


class ToneAnalyzer(ABC):
    """Classifies a free-text reply into a ``ToneAnalysis``."""

    @abstractmethod
    async def analyze(self, text: str) -> ToneAnalysis:
        """Analyze text. Raises ``UpstreamError`` when the backend fails."""


class KeywordToneAnalyzer(ToneAnalyzer):
    """Substring heuristic; positive words are checked first."""

    async def analyze(self, text: str) -> ToneAnalysis:
        return self.analyze_sync(text)

    def analyze_sync(self, text: str) -> ToneAnalysis:
        lowered = (text or "").lower()

        positive = [word for word in POSITIVE_WORDS if word in lowered]
        if positive:
            return ToneAnalysis(tone="positive", intensity=7, keywords=positive)

        negative = [word for word in NEGATIVE_WORDS if word in lowered]
        if negative:
            return ToneAnalysis(tone="negative", intensity=7, keywords=negative)

        return ToneAnalysis.default()


TONE_PROMPT = """Analyze the emotional tone of the user's message below.

Classify the tone as exactly one of: positive, neutral, negative.
Rate the intensity from 1 (barely noticeable) to 10 (overwhelming).
List up to five key emotional words from the message.

MESSAGE:
{message}
"""


class LLMToneAnalyzer(ToneAnalyzer):
    """Asks a chat model for a structured ``ToneAnalysis``."""

    def __init__(self, provider: str | None = None) -> None:
        self.provider = provider

    async def analyze(self, text: str) -> ToneAnalysis:
        try:
            llm = create_model(self.provider, temperature=0.0)
            structured = llm.with_structured_output(ToneAnalysis)
            result = await structured.ainvoke(TONE_PROMPT.format(message=text))
        except Exception as e:
            ctx = format_log_context("tone", component="tone", provider=self.provider)
            logger.warning(f"{ctx} analysis failed for '{truncate_log_text(text, 80)}': {e}")
            raise UpstreamError(f"Tone analysis failed: {e}", capability="tone") from e

        if isinstance(result, dict):
            result = ToneAnalysis.model_validate(result)
        return result


def get_tone_analyzer(provider: str | None = None) -> ToneAnalyzer:
    """Build the analyzer selected by ``TONE_ANALYZER``."""
    if settings.TONE_ANALYZER == "llm":
        return LLMToneAnalyzer(provider)
    return KeywordToneAnalyzer()
