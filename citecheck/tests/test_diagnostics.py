"""Tests for passage-level diagnostics."""

import pytest

from citecheck.core.assignment import resolve_assignments
from citecheck.core.diagnostics import (
    FAILURE_MODE_PRECEDENCE,
    RECOMMENDED_FIXES,
    count_pronouns,
    diagnose,
    diagnose_assignments,
    has_specifics,
    query_terms,
    summarize_fix_priorities,
)
from citecheck.core.models import (
    FailureMode,
    FixPriority,
    IssueSeverity,
    Passage,
    PassageScores,
)


# -----------------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------------

LONG_SPECIFIC_BODY = (
    "Node.js 20 can be installed on Ubuntu Linux with the NodeSource repository. "
    "Run the setup script, then install the nodejs package with apt. "
    "The installer adds npm 10 as well, and the node binary lands in /usr/bin. "
    "Verify the install with node --version before continuing."
)


def make_passage(text: str, heading_path=None, index: int = 0) -> Passage:
    """Helper to create a Passage from body text."""
    return Passage.from_text(index, text, heading_path)


def severities(diagnosis) -> list:
    return [issue.severity for issue in diagnosis.issues]


def messages(diagnosis) -> str:
    return " | ".join(issue.message for issue in diagnosis.issues)


class TestHelpers:
    """Tests for the text heuristics."""

    def test_query_terms_filters_short_words(self):
        assert query_terms("install nodejs on linux") == ["install", "nodejs", "linux"]

    def test_query_terms_strips_punctuation_and_case(self):
        assert query_terms("What is Kubernetes?") == ["what", "kubernetes"]

    def test_query_terms_deduplicates(self):
        assert query_terms("python python tips") == ["python", "tips"]

    def test_count_pronouns(self):
        assert count_pronouns("This is it. They said that those were these.") == 6

    def test_count_pronouns_whole_words_only(self):
        assert count_pronouns("Thistle items theyre") == 0

    def test_has_specifics_number(self):
        assert has_specifics("Costs 30 dollars")

    def test_has_specifics_proper_noun(self):
        assert has_specifics("Built by Grace Hopper")

    def test_no_specifics(self):
        assert not has_specifics("this is rather vague text")


class TestDiagnose:
    """Tests for single-passage diagnosis."""

    def test_vocabulary_gap_scenario(self):
        """Short, headingless, vague passage missing every query term."""
        passage = make_passage("This topic is great. It really matters.")
        diagnosis = diagnose(passage, "install nodejs on linux", 30)

        assert diagnosis.primary_failure_mode == FailureMode.VOCABULARY_GAP
        assert diagnosis.fix_priority == FixPriority.CRITICAL
        assert "Query keywords not found: install, nodejs, linux" in messages(diagnosis)
        assert "Very short content" in messages(diagnosis)
        assert "No heading context" in messages(diagnosis)
        assert "High pronoun usage" not in messages(diagnosis)
        assert diagnosis.missing_terms == ("install", "nodejs", "linux")

    def test_all_checks_reported(self):
        """Checks do not short-circuit; every triggered issue is listed."""
        passage = make_passage("This topic is great. It really matters.")
        diagnosis = diagnose(passage, "install nodejs on linux", 30)
        assert severities(diagnosis) == [
            IssueSeverity.WARNING,  # short
            IssueSeverity.WARNING,  # no heading
            IssueSeverity.ERROR,    # keywords
            IssueSeverity.INFO,     # no specifics
        ]

    @pytest.mark.parametrize("raw,expected", [
        (float("nan"), 0),
        (float("-inf"), 0),
        (float("inf"), 100),
        (-12, 0),
        (140, 100),
    ])
    def test_out_of_range_score_clamped(self, raw, expected):
        """Non-finite and out-of-range scores still produce a diagnosis."""
        passage = make_passage("This topic is great. It really matters.")
        diagnosis = diagnose(passage, "install nodejs on linux", raw)

        assert diagnosis.score == expected
        if expected == 100:
            assert diagnosis.primary_failure_mode == FailureMode.ALREADY_OPTIMIZED
        else:
            assert diagnosis.primary_failure_mode == FailureMode.VOCABULARY_GAP

    def test_unassigned_is_topic_mismatch(self):
        passage = make_passage(LONG_SPECIFIC_BODY, ["Install"])
        diagnosis = diagnose(passage, None, 20)

        assert diagnosis.primary_failure_mode == FailureMode.TOPIC_MISMATCH
        assert diagnosis.fix_priority == FixPriority.CRITICAL
        assert diagnosis.issues[0].severity == IssueSeverity.ERROR
        assert "No query assigned" in diagnosis.issues[0].message

    def test_topic_mismatch_outranks_everything(self):
        passage = make_passage("vague words only here")
        diagnosis = diagnose(passage, "", 10)
        assert diagnosis.primary_failure_mode == FailureMode.TOPIC_MISMATCH

    def test_high_pronoun_usage(self):
        body = LONG_SPECIFIC_BODY + " This is it, and that is what they want."
        diagnosis = diagnose(make_passage(body, ["Install"]), "install nodejs linux", 50)
        assert "High pronoun usage (4)" in messages(diagnosis)

    def test_missing_terms_truncated(self):
        passage = make_passage(LONG_SPECIFIC_BODY, ["Install"])
        diagnosis = diagnose(passage, "configure systemd journald rotation retention", 40)
        assert "Query keywords not found: configure, systemd, journald..." in messages(diagnosis)
        assert len(diagnosis.missing_terms) == 5

    def test_missing_specifics_mode(self):
        body = (
            "installing nodejs on linux is usually simple. the package manager "
            "handles most of the work and the runtime becomes available right "
            "after the installation finishes. most distributions ship a recent "
            "enough version for everyday development work on linux machines."
        )
        diagnosis = diagnose(make_passage(body, ["Install"]), "install nodejs linux", 45)
        assert diagnosis.primary_failure_mode == FailureMode.MISSING_SPECIFICS
        assert diagnosis.fix_priority == FixPriority.LOW

    def test_structure_problem_mode(self):
        diagnosis = diagnose(make_passage(LONG_SPECIFIC_BODY), "install nodejs linux", 45)
        assert diagnosis.primary_failure_mode == FailureMode.STRUCTURE_PROBLEM
        assert diagnosis.fix_priority == FixPriority.MEDIUM

    def test_clean_low_score_is_no_direct_answer(self):
        passage = make_passage(LONG_SPECIFIC_BODY, ["Install"])
        diagnosis = diagnose(passage, "install nodejs linux", 45)
        assert diagnosis.issues == ()
        assert diagnosis.primary_failure_mode == FailureMode.NO_DIRECT_ANSWER
        assert diagnosis.fix_priority == FixPriority.LOW

    def test_high_score_not_diagnosed(self):
        passage = make_passage("This topic is great. It really matters.")
        diagnosis = diagnose(passage, "install nodejs on linux", 60)

        assert diagnosis.primary_failure_mode == FailureMode.ALREADY_OPTIMIZED
        assert diagnosis.fix_priority == FixPriority.NONE
        assert diagnosis.issues == ()
        assert diagnosis.expected_improvement == 0
        assert not diagnosis.needs_fix

    def test_expected_improvement_capped_by_headroom(self):
        passage = make_passage("This topic is great. It really matters.")
        assert diagnose(passage, "install nodejs on linux", 30).expected_improvement == 25
        assert diagnose(passage, "install nodejs on linux", 59).expected_improvement == 25
        assert diagnose(passage, None, 0).expected_improvement == 30

    def test_score_clamped(self):
        passage = make_passage("This topic is great.")
        assert diagnose(passage, "anything", 150).score == 100
        assert diagnose(passage, "anything", -5).score == 0

    def test_heading_echo_not_counted_as_body(self):
        """Query terms present only in the echoed heading are still missing."""
        passage = make_passage("## Install Nodejs\n\nSome short text.", ["Install Nodejs"])
        diagnosis = diagnose(passage, "install nodejs", 30)
        assert diagnosis.missing_terms == ("install", "nodejs")

    def test_recommended_fix_follows_mode(self):
        passage = make_passage("This topic is great. It really matters.")
        diagnosis = diagnose(passage, "install nodejs on linux", 30)
        assert diagnosis.recommended_fix == RECOMMENDED_FIXES[FailureMode.VOCABULARY_GAP]

    def test_empty_passage_is_total(self):
        diagnosis = diagnose(make_passage(""), None, 0)
        assert diagnosis.primary_failure_mode == FailureMode.TOPIC_MISMATCH


class TestPrecedence:
    """Tests for failure mode precedence."""

    def test_order(self):
        assert FAILURE_MODE_PRECEDENCE == (
            FailureMode.TOPIC_MISMATCH,
            FailureMode.VOCABULARY_GAP,
            FailureMode.MISSING_SPECIFICS,
            FailureMode.STRUCTURE_PROBLEM,
            FailureMode.BURIED_ANSWER,
            FailureMode.NO_DIRECT_ANSWER,
        )

    def test_every_mode_has_a_fix(self):
        assert set(RECOMMENDED_FIXES) == set(FailureMode)


class TestDiagnoseAssignments:
    """Tests for diagnosing a whole assignment map."""

    @pytest.fixture
    def setup(self):
        passages = [
            make_passage("This topic is great. It really matters.", index=0),
            make_passage(LONG_SPECIFIC_BODY, ["Install"], index=1),
            make_passage("Unrelated filler about weather.", index=2),
        ]
        passage_scores = [
            PassageScores(0, (("install nodejs", 0.35), ("node version", 0.4))),
            PassageScores(1, (("install nodejs", 0.8), ("node version", 0.5))),
            PassageScores(2, (("install nodejs", 0.2), ("node version", 0.25))),
        ]
        scores = {
            (ps.passage_index, query): round(value * 100)
            for ps in passage_scores
            for query, value in ps.scores
        }
        assignment_map = resolve_assignments(passage_scores, ["install nodejs", "node version"])
        return passages, assignment_map, scores

    def test_one_diagnosis_per_passage(self, setup):
        passages, assignment_map, scores = setup
        diagnoses = diagnose_assignments(passages, assignment_map, scores)
        assert [d.passage_index for d in diagnoses] == [0, 1, 2]

    def test_assigned_passages_use_their_query(self, setup):
        passages, assignment_map, scores = setup
        diagnoses = diagnose_assignments(passages, assignment_map, scores)

        assert diagnoses[1].assigned_query == "install nodejs"
        assert diagnoses[1].score == 80
        assert diagnoses[1].primary_failure_mode == FailureMode.ALREADY_OPTIMIZED
        assert diagnoses[0].assigned_query == "node version"
        assert diagnoses[0].score == 40
        assert diagnoses[0].primary_failure_mode == FailureMode.VOCABULARY_GAP

    def test_unassigned_passage_uses_best_score(self, setup):
        passages, assignment_map, scores = setup
        diagnoses = diagnose_assignments(passages, assignment_map, scores)

        assert diagnoses[2].assigned_query is None
        assert diagnoses[2].score == 25
        assert diagnoses[2].primary_failure_mode == FailureMode.TOPIC_MISMATCH

    def test_summarize_fix_priorities(self, setup):
        passages, assignment_map, scores = setup
        counts = summarize_fix_priorities(diagnose_assignments(passages, assignment_map, scores))
        assert counts == {"critical": 2, "high": 0, "medium": 0, "low": 0, "none": 1}
