"""
Quality Assessor - Aggregate evidence quality for routing decisions.

The router recomputes a QualityAssessment from the accumulated citations on
every decision. The calculation is a weighted sum of three components:

1. Average relevance of the citations (50%)
2. Source diversity: distinct domains per citation (30%)
3. Content richness: total content length against a target (20%)

Everything here is pure: same citations in, bit-identical assessment out.
"""

import logging
from dataclasses import dataclass
from typing import Sequence

from adaptive_research.workflow.models import Citation, QualityAssessment

logger = logging.getLogger(__name__)

RICHNESS_TARGET_CHARS = 10_000


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class QualityWeights:
    """Weights for the overall quality score."""

    relevance_weight: float = 0.5
    diversity_weight: float = 0.3
    richness_weight: float = 0.2

    def __post_init__(self):
        """Ensure weights sum to 1.0."""
        total = self.relevance_weight + self.diversity_weight + self.richness_weight
        if total <= 0:
            raise ValueError("Quality weights must sum to a positive value")
        if abs(total - 1.0) > 0.01:
            logger.warning("Quality weights sum to %.2f, normalizing to 1.0", total)
            self.relevance_weight /= total
            self.diversity_weight /= total
            self.richness_weight /= total


DEFAULT_WEIGHTS = QualityWeights()


# =============================================================================
# QUALITY CALCULATION
# =============================================================================


def assess_quality(
    citations: Sequence[Citation],
    context: str = "",
    weights: QualityWeights | None = None,
    richness_target_chars: int = RICHNESS_TARGET_CHARS,
) -> QualityAssessment:
    """
    Compute the aggregate quality of a citation set.

    Args:
        citations: Accumulated citations (order does not matter)
        context: Label stored on the assessment, usually the step name
        weights: Custom weights (defaults to 50/30/20)
        richness_target_chars: Content length that counts as fully rich

    Returns:
        QualityAssessment with every component in [0, 1]
    """
    weights = weights or DEFAULT_WEIGHTS
    count = len(citations)

    if count == 0:
        return QualityAssessment(context=context)

    avg_relevance = sum(max(0.0, min(1.0, c.relevance_score)) for c in citations) / count
    distinct_domains = {c.domain for c in citations if c.domain}
    source_diversity = len(distinct_domains) / count
    total_chars = sum(len(c.content) for c in citations)
    content_richness = min(1.0, total_chars / richness_target_chars)

    overall = (
        weights.relevance_weight * avg_relevance
        + weights.diversity_weight * source_diversity
        + weights.richness_weight * content_richness
    )

    return QualityAssessment(
        avg_relevance=avg_relevance,
        source_diversity=source_diversity,
        content_richness=content_richness,
        overall=overall,
        citation_count=count,
        context=context,
    )


def format_quality(assessment: QualityAssessment) -> str:
    """One-line summary for log output."""
    return (
        f"overall={assessment.overall:.2f} "
        f"(relevance={assessment.avg_relevance:.2f}, "
        f"diversity={assessment.source_diversity:.2f}, "
        f"richness={assessment.content_richness:.2f}, "
        f"citations={assessment.citation_count})"
    )


class QualityAssessor:
    """Holds quality weights so callers can share one configured instance."""

    def __init__(
        self,
        weights: QualityWeights | None = None,
        richness_target_chars: int = RICHNESS_TARGET_CHARS,
    ):
        self.weights = weights or DEFAULT_WEIGHTS
        self.richness_target_chars = richness_target_chars

    @classmethod
    def from_config(cls, config) -> "QualityAssessor":
        """Build from a QualityConfig settings section."""
        weights = QualityWeights(
            relevance_weight=config.relevance_weight,
            diversity_weight=config.diversity_weight,
            richness_weight=config.richness_weight,
        )
        return cls(weights=weights, richness_target_chars=config.richness_target_chars)

    def assess(self, citations: Sequence[Citation], context: str = "") -> QualityAssessment:
        assessment = assess_quality(
            citations,
            context=context,
            weights=self.weights,
            richness_target_chars=self.richness_target_chars,
        )
        logger.debug("Quality [%s]: %s", context or "-", format_quality(assessment))
        return assessment
