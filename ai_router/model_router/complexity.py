"""Request complexity analysis for tier selection.

The ComplexityAnalyzer turns a RouteRequest into a 0-100 score and a tier
hint. It is a pure function of the request: no I/O, no clock, no shared
state, so analyzing the same request twice yields the same score.

Factors analyzed (points):
- Message turns: 4 per turn, capped at 20
- Long history (more than 10 turns): +10
- Total text length: 1 per 100 characters, capped at 20
- Images: 15 per image, capped at 30
- requires_analysis: +25
- Language multiplier applied to the raw sum (some scripts need a
  stronger model for acceptable quality)

Score → tier mapping:
- 0-25: simple
- 25-50: moderate
- 50-100: complex
"""

from __future__ import annotations

from collections.abc import Mapping

from ai_router.model_router.types import ComplexityScore, RouteRequest, Tier

DEFAULT_LANGUAGE_MULTIPLIERS: Mapping[str, float] = {"en": 1.0, "zh": 1.2, "ms": 1.1}


class ComplexityAnalyzer:
    """Scores requests with fixed weights and maps the score to a tier."""

    MODERATE_THRESHOLD = 25.0
    COMPLEX_THRESHOLD = 50.0
    MAX_SCORE = 100.0

    TURN_WEIGHT = 4.0
    TURN_CAP = 20.0
    LONG_HISTORY_TURNS = 10
    LONG_HISTORY_BONUS = 10.0
    CHARS_PER_POINT = 100.0
    LENGTH_CAP = 20.0
    IMAGE_WEIGHT = 15.0
    IMAGE_CAP = 30.0
    ANALYSIS_BONUS = 25.0

    def __init__(self, language_multipliers: Mapping[str, float] | None = None) -> None:
        """Initialize analyzer.

        Args:
            language_multipliers: Score multiplier per language tag. Tags are
                matched case-insensitively on their primary subtag, so
                "zh-Hans" uses the "zh" multiplier. Unknown tags use 1.0.
        """
        source = (
            language_multipliers
            if language_multipliers is not None
            else DEFAULT_LANGUAGE_MULTIPLIERS
        )
        self._multipliers = {tag.lower(): value for tag, value in source.items()}

    def analyze(self, request: RouteRequest) -> ComplexityScore:
        """Score a request.

        Args:
            request: Normalized request

        Returns:
            ComplexityScore with tier, score and contributing factor names
        """
        turn_count = len(request.messages)
        image_count = len(request.images)

        if turn_count == 0 and image_count == 0:
            return ComplexityScore(
                tier=Tier.SIMPLE,
                score=0.0,
                factors=("no_content_supplied",),
            )

        factors: list[str] = []
        raw = 0.0

        if turn_count:
            raw += min(turn_count * self.TURN_WEIGHT, self.TURN_CAP)
            factors.append("message_turns")
        if turn_count > self.LONG_HISTORY_TURNS:
            raw += self.LONG_HISTORY_BONUS
            factors.append("long_history")

        text_length = request.text_length
        if text_length:
            raw += min(text_length / self.CHARS_PER_POINT, self.LENGTH_CAP)
            factors.append("text_length")

        if image_count:
            raw += min(image_count * self.IMAGE_WEIGHT, self.IMAGE_CAP)
            factors.append("images")

        if request.requires_analysis:
            raw += self.ANALYSIS_BONUS
            factors.append("requires_analysis")

        multiplier = self._language_multiplier(request.language)
        if multiplier != 1.0:
            factors.append(f"language_{request.language.lower()}")

        score = min(raw * multiplier, self.MAX_SCORE)

        if image_count and not request.has_text and score < self.MODERATE_THRESHOLD:
            score = self.MODERATE_THRESHOLD
            factors.append("image_only_boost")

        score = round(max(0.0, score), 2)
        return ComplexityScore(
            tier=self.tier_for(score),
            score=score,
            factors=tuple(factors),
        )

    @classmethod
    def tier_for(cls, score: float) -> Tier:
        """Map a score to its tier. Monotonic non-decreasing in score."""
        if score >= cls.COMPLEX_THRESHOLD:
            return Tier.COMPLEX
        if score >= cls.MODERATE_THRESHOLD:
            return Tier.MODERATE
        return Tier.SIMPLE

    def _language_multiplier(self, language: str) -> float:
        tag = (language or "").lower()
        if tag in self._multipliers:
            return self._multipliers[tag]
        primary = tag.split("-", 1)[0]
        return self._multipliers.get(primary, 1.0)
