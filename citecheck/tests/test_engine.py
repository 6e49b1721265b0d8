"""Tests for the passage analysis engine."""

import pytest

from citecheck.core.config import EngineConfig
from citecheck.core.engine import (
    EngineError,
    PassageAnalysisReport,
    analyze_document,
    analyze_passages,
    analyze_with_config,
    reassign,
    set_force_include,
)
from citecheck.core.models import FailureMode, Passage, Query, SimilarityPair, Tier


# -----------------------------------------------------------------------------
# Test fixtures
# -----------------------------------------------------------------------------

INSTALL_BODY = (
    "Node.js 20 can be installed on Ubuntu Linux with the NodeSource repository. "
    "Run the setup script, then install the nodejs package with apt. "
    "The installer adds npm 10 as well, and the node binary lands in /usr/bin."
)


def make_pair(value: float) -> SimilarityPair:
    """Cosine and chamfer equal, so the relevance score is value * 100."""
    return SimilarityPair(cosine=value, chamfer=value)


@pytest.fixture
def passages():
    return [
        Passage.from_text(0, "## Install\n\n" + INSTALL_BODY, ["Guide", "Install"]),
        Passage.from_text(1, "This topic is great. It really matters."),
    ]


@pytest.fixture
def similarities():
    # rows: passages, columns: ["install nodejs", "upgrade npm"]
    return [
        [make_pair(1.0), make_pair(0.2)],
        [make_pair(0.4), make_pair(0.5)],
    ]


@pytest.fixture
def report(passages, similarities):
    return analyze_passages(passages, ["install nodejs", "upgrade npm"], similarities)


class FakeProvider:
    """SimilarityProvider returning a fixed grid."""

    def __init__(self, grid):
        self.grid = grid
        self.calls = []

    def similarities(self, passages, queries):
        self.calls.append((list(passages), list(queries)))
        return self.grid


class TestAnalyzePassages:
    """Tests for the full analysis pipeline."""

    def test_returns_report(self, report):
        assert isinstance(report, PassageAnalysisReport)

    def test_scores(self, report):
        assert report.score_for(0, "install nodejs") == 100
        assert report.score_for(0, "upgrade npm") == 20
        assert report.score_for(1, "install nodejs") == 40
        assert report.score_for(1, "upgrade npm") == 50
        assert report.score_for(5, "install nodejs") is None

    def test_passage_scores_normalized(self, report):
        assert report.passage_scores[1].score_for("upgrade npm") == pytest.approx(0.5)

    def test_assignments(self, report):
        placements = {
            a.query: a.assigned_passage_index for a in report.assignment_map.assignments
        }
        assert placements == {"install nodejs": 0, "upgrade npm": 1}
        assert report.content_gaps == ()

    def test_first_query_is_primary(self, report):
        assert [q.is_primary for q in report.queries] == [True, False]

    def test_diagnoses(self, report):
        assert [d.passage_index for d in report.diagnoses] == [0, 1]
        assert report.diagnoses[0].primary_failure_mode == FailureMode.ALREADY_OPTIMIZED
        assert report.diagnoses[1].score == 50
        assert report.diagnoses[1].primary_failure_mode == FailureMode.VOCABULARY_GAP

    def test_targets(self, report):
        targets = {t.query: t for t in report.targets}
        assert targets["install nodejs"].tier == Tier.EXCELLENT
        assert targets["install nodejs"].excluded
        assert not targets["upgrade npm"].excluded

    def test_threshold(self, passages, similarities):
        report = analyze_passages(
            passages, ["install nodejs", "upgrade npm"], similarities, threshold=0.6
        )
        assert report.content_gaps == ("upgrade npm",)

    def test_force_include(self, passages, similarities):
        report = analyze_passages(
            passages, ["install nodejs", "upgrade npm"], similarities, force_include=[0]
        )
        targets = {t.query: t for t in report.targets}
        assert targets["install nodejs"].already_optimal
        assert not targets["install nodejs"].excluded

    def test_passages_in_any_order(self, passages, similarities):
        report = analyze_passages(
            list(reversed(passages)),
            ["install nodejs", "upgrade npm"],
            list(reversed(similarities)),
        )
        assert [p.index for p in report.passages] == [0, 1]
        assert report.score_for(0, "install nodejs") == 100

    def test_duplicate_queries_collapsed(self, passages):
        grid = [[make_pair(0.9), make_pair(0.1)], [make_pair(0.1), make_pair(0.9)]]
        report = analyze_passages(passages, ["install nodejs", "install nodejs"], grid)
        assert [q.text for q in report.queries] == ["install nodejs"]
        assert report.score_for(0, "install nodejs") == 90

    def test_query_objects(self, passages, similarities):
        queries = [Query("install nodejs"), Query("upgrade npm", is_primary=True)]
        report = analyze_passages(passages, queries, similarities)
        assert report.assignment_map.assignment_for("upgrade npm").is_primary

    def test_no_queries(self, passages):
        report = analyze_passages(passages, [], [[], []])
        assert report.assignment_map.assignments == ()
        assert all(d.assigned_query is None for d in report.diagnoses)

    def test_wrong_row_count_raises(self, passages):
        with pytest.raises(EngineError, match="similarity rows"):
            analyze_passages(passages, ["q"], [[make_pair(0.5)]])

    def test_wrong_column_count_raises(self, passages):
        with pytest.raises(EngineError, match="one per query"):
            analyze_passages(passages, ["q1", "q2"], [[make_pair(0.5)], [make_pair(0.5)]])

    def test_duplicate_passage_indices_raise(self):
        passages = [Passage.from_text(0, "a"), Passage.from_text(0, "b")]
        with pytest.raises(EngineError, match="unique"):
            analyze_passages(passages, ["q"], [[make_pair(0.5)], [make_pair(0.5)]])

    def test_to_dict(self, report):
        data = report.to_dict()
        assert data["scores"][0] == {"passage_index": 0, "query": "install nodejs", "score": 100}
        assert len(data["scores"]) == 4
        assert data["diagnoses"][0]["primary_failure_mode"] == "already_optimized"
        assert data["assignment_map"]["unassigned_queries"] == []

    def test_from_dict(self, report):
        restored = PassageAnalysisReport.from_dict(report.to_dict())

        assert restored == report
        assert restored.score_for(1, "upgrade npm") == 50


class TestReassign:
    """Tests for manual overrides on a report."""

    def test_override_recomputes_diagnoses(self, report):
        updated = reassign(report, "upgrade npm", 0)

        assert updated.assignment_map.assignment_for("upgrade npm").assigned_passage_index == 0
        assert updated.content_gaps == ("install nodejs",)
        assert updated.diagnoses[0].assigned_query == "upgrade npm"
        assert updated.diagnoses[0].score == 20
        assert updated.diagnoses[1].assigned_query is None
        assert updated.diagnoses[1].primary_failure_mode == FailureMode.TOPIC_MISMATCH

    def test_original_report_untouched(self, report):
        reassign(report, "upgrade npm", 0)
        assert report.content_gaps == ()

    def test_scores_unchanged(self, report):
        assert reassign(report, "upgrade npm", 0).scores == report.scores

    def test_unknown_query(self, report):
        updated = reassign(report, "nope", 0)
        assert updated.assignment_map == report.assignment_map

    def test_set_force_include(self, report):
        updated = set_force_include(report, [0])
        targets = {t.query: t for t in updated.targets}
        assert not targets["install nodejs"].excluded
        assert updated.force_include == (0,)


class TestAnalyzeDocument:
    """Tests for provider-backed analysis."""

    def test_uses_provider(self, passages, similarities):
        provider = FakeProvider(similarities)
        report = analyze_document(passages, ["install nodejs", "upgrade npm"], provider=provider)

        _, queries = provider.calls[0]
        assert [q.text for q in queries] == ["install nodejs", "upgrade npm"]
        assert report.score_for(1, "upgrade npm") == 50

    def test_config(self, passages, similarities):
        provider = FakeProvider(similarities)
        config = EngineConfig(assignment_threshold=0.6, force_include=(0,))
        report = analyze_document(passages, ["install nodejs", "upgrade npm"], provider, config)

        assert report.content_gaps == ("upgrade npm",)
        assert not report.targets[0].excluded

    def test_analyze_with_config(self, passages, similarities):
        config = EngineConfig(assignment_threshold=0.45)
        report = analyze_with_config(passages, ["install nodejs", "upgrade npm"], similarities, config)
        assert report.content_gaps == ()
