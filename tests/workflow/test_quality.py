import pytest

from adaptive_research.config.settings import QualityConfig
from adaptive_research.workflow.quality import (
    QualityAssessor,
    QualityWeights,
    assess_quality,
    format_quality,
)
from fakes import make_citation


def test_empty_citation_set_scores_zero():
    assessment = assess_quality([], context="citation_fetch")

    assert assessment.overall == 0.0
    assert assessment.avg_relevance == 0.0
    assert assessment.source_diversity == 0.0
    assert assessment.content_richness == 0.0
    assert assessment.citation_count == 0
    assert assessment.context == "citation_fetch"


def test_overall_is_the_weighted_sum_of_the_components():
    citations = [
        make_citation(1, relevance=0.8, domain="a.com", content_chars=1000),
        make_citation(2, relevance=0.4, domain="b.com", content_chars=1000),
    ]

    assessment = assess_quality(citations)

    assert assessment.avg_relevance == pytest.approx(0.6)
    assert assessment.source_diversity == pytest.approx(1.0)
    assert assessment.content_richness == pytest.approx(0.2)
    assert assessment.overall == pytest.approx(0.5 * 0.6 + 0.3 * 1.0 + 0.2 * 0.2)


def test_diversity_counts_distinct_domains_per_citation():
    citations = [
        make_citation(1, domain="same.org"),
        make_citation(2, domain="same.org"),
        make_citation(3, domain="other.org"),
        make_citation(4, domain="same.org"),
    ]
    assert assess_quality(citations).source_diversity == pytest.approx(0.5)


def test_richness_is_capped_at_one():
    citations = [make_citation(1, content_chars=50_000)]
    assert assess_quality(citations).content_richness == 1.0


def test_assessment_is_deterministic():
    citations = [make_citation(i, relevance=0.1 * i) for i in range(1, 6)]
    assert assess_quality(citations) == assess_quality(list(citations))


def test_components_stay_in_unit_range():
    citations = [make_citation(i, relevance=1.0, content_chars=20_000) for i in range(3)]
    assessment = assess_quality(citations)

    for value in (
        assessment.avg_relevance,
        assessment.source_diversity,
        assessment.content_richness,
        assessment.overall,
    ):
        assert 0.0 <= value <= 1.0


def test_weights_are_normalized():
    weights = QualityWeights(relevance_weight=1.0, diversity_weight=1.0, richness_weight=0.0)

    assert weights.relevance_weight == pytest.approx(0.5)
    assert weights.diversity_weight == pytest.approx(0.5)
    assert weights.richness_weight == 0.0


def test_non_positive_weights_are_rejected():
    with pytest.raises(ValueError):
        QualityWeights(relevance_weight=0.0, diversity_weight=0.0, richness_weight=0.0)


def test_assessor_from_config_uses_the_configured_target():
    assessor = QualityAssessor.from_config(QualityConfig(richness_target_chars=100))
    assessment = assessor.assess([make_citation(1, content_chars=50)], context="x")

    assert assessment.content_richness == pytest.approx(0.5)
    assert assessment.context == "x"


def test_format_quality_mentions_every_component():
    text = format_quality(assess_quality([make_citation(1)]))
    for label in ("overall", "relevance", "diversity", "richness", "citations=1"):
        assert label in text
