"""Tests for the QC checkers and the aggregator."""

import json
from unittest.mock import Mock

import pytest

from novel_loop.config import QCConfig
from novel_loop.exceptions import GenerationError
from novel_loop.models import (
    ChapterContext,
    ChapterGoal,
    CharacterSnapshot,
    CheckerResult,
    EventStatus,
    EventType,
    IssueCategory,
    PacingTarget,
    QCIssue,
    QCResult,
    Severity,
    TimelineEvent,
    TimelineState,
)
from novel_loop.qc import (
    CharacterChecker,
    DuplicationChecker,
    GoalChecker,
    PacingChecker,
    aggregate_score,
    check_premature_ending,
    check_structural_integrity,
    format_qc_result,
    generate_suggestions,
    quick_ending_heuristic,
    run_multi_dimensional_qc,
    run_quick_qc,
)
from novel_loop.qc.structure import looks_like_json_payload, max_consecutive_dialogue


def _issue(severity, category=IssueCategory.PLOT, description="problem"):
    return QCIssue(category=category, severity=severity, description=description)


# ---------------------------------------------------------------------------
# Premature ending
# ---------------------------------------------------------------------------


class TestPrematureEnding:
    """Tests for the ending heuristic."""

    def test_english_signals(self):
        assert quick_ending_heuristic("And they lived happily ever after.")
        assert quick_ending_heuristic("Thank you for reading this far!")
        assert quick_ending_heuristic("The battle was over.\n\nThe End\n")

    def test_chinese_signals(self):
        assert quick_ending_heuristic("从此以后，他们过上了幸福的生活。（全文完）")
        assert quick_ending_heuristic("感谢大家一路以来的支持")

    def test_no_false_positive_on_the_end_of_a_hall(self):
        assert quick_ending_heuristic("He walked to the end of the hall and waited.") == []

    def test_mid_book_ending_is_critical(self):
        result = check_premature_ending("They lived happily ever after.", 5, 100)
        assert result.score == 0
        assert result.issues[0].severity == Severity.CRITICAL
        assert result.issues[0].category == IssueCategory.ENDING

    def test_final_chapter_is_exempt(self):
        assert check_premature_ending("They lived happily ever after.", 100, 100).score == 100


# ---------------------------------------------------------------------------
# Structure
# ---------------------------------------------------------------------------


class TestStructuralIntegrity:
    """Tests for the rule-based structure checker."""

    def test_clean_chapter_scores_full(self, english_chapter):
        result = check_structural_integrity(english_chapter, QCConfig())
        assert result.score == 100
        assert result.issues == ()

    def test_json_payload_is_critical(self):
        payload = '{"title": "Chapter 3", "content": "Ren ran."}'
        assert looks_like_json_payload(payload)
        result = check_structural_integrity(payload, QCConfig())
        assert result.score == 0
        assert result.issues[0].severity == Severity.CRITICAL

    def test_short_untitled_chapter(self):
        result = check_structural_integrity("Ren ran into the night.", QCConfig())
        descriptions = " ".join(i.description for i in result.issues)
        assert "too short" in descriptions
        assert "no title" in descriptions
        # short -30, no title -5, little dialogue -10, few paragraphs -5
        assert result.score == 50

    def test_summary_narration_flagged(self):
        text = "Chapter 1\n\nOver the following weeks Ren trained. Months passed before anyone noticed."
        result = check_structural_integrity(text, QCConfig(min_chapter_length=1))
        assert any("Summary-style" in i.description for i in result.issues)

    def test_dialogue_runs(self):
        lines = "\n".join(f'"Line {i}," he said.' for i in range(6))
        assert max_consecutive_dialogue(lines) == 6


# ---------------------------------------------------------------------------
# Model-backed checkers
# ---------------------------------------------------------------------------


class TestModelBackedCheckers:
    """Tests for the character, pacing and goal checkers."""

    def _context(self, text="Ren fought.", **kwargs):
        return ChapterContext(chapter_text=text, chapter_index=3, total_chapters=10, **kwargs)

    def test_character_checker_skips_without_snapshots(self, fake_generator):
        assert CharacterChecker(fake_generator(), QCConfig()).check(self._context()) is None

    def test_character_checker_maps_issues(self, fake_generator):
        response = json.dumps({
            "score": 62.5,
            "issues": [{"characterName": "Ren", "type": "speech", "severity": "major",
                        "description": "Ren suddenly talks like a scholar", "evidence": "Indeed, quoth he"}],
        })
        checker = CharacterChecker(fake_generator([response]), QCConfig())
        result = checker.check(self._context(characters=[CharacterSnapshot(character_id="c1", name="Ren")]))
        assert result.score == 62
        assert result.issues[0].severity == Severity.MAJOR
        assert result.issues[0].description.startswith("[Ren]")
        assert result.issues[0].location == "Indeed, quoth he"

    def test_character_checker_malformed_falls_back(self, fake_generator):
        checker = CharacterChecker(fake_generator(["no idea"]), QCConfig(checker_fallback_score=65))
        result = checker.check(self._context(characters=[CharacterSnapshot(name="Ren")]))
        assert result.score == 65
        assert result.issues == ()

    def test_pacing_checker_flags_tension_gap(self, fake_generator):
        response = json.dumps({
            "actualPacing": {"tensionLevel": 9, "emotionalTone": "frantic"},
            "alignment": {"tensionMatch": False, "emotionalToneMatch": False},
            "score": 55,
        })
        checker = PacingChecker(fake_generator([response]), QCConfig())
        target = PacingTarget(tension=3, emotional_tone="calm", length_range=(1, 100))
        result = checker.check(self._context(pacing=target))
        assert result.score == 55
        severities = [i.severity for i in result.issues]
        assert severities == [Severity.MAJOR, Severity.MINOR]

    def test_pacing_checker_falls_back_to_length_rules(self, fake_generator):
        checker = PacingChecker(fake_generator(["garbled"]), QCConfig())
        result = checker.check(self._context(pacing=PacingTarget(length_range=(1000, 2000))))
        assert result.score == 70

    def test_goal_checker_primary_goal_missed_is_critical(self, fake_generator):
        response = json.dumps({
            "primaryGoalAchieved": False,
            "successCriteriaResults": [{"criterion": "Ren escapes", "achieved": False}],
            "scenesMissing": ["the chase"],
            "hookEffectiveness": 2,
            "foreshadowingMissed": ["the ring"],
            "score": 40,
        })
        checker = GoalChecker(fake_generator([response]), QCConfig())
        result = checker.check(self._context(goal=ChapterGoal(primary="Ren escapes the city")))
        by_severity = {s: [i for i in result.issues if i.severity == s] for s in Severity}
        assert len(by_severity[Severity.CRITICAL]) == 1
        assert len(by_severity[Severity.MAJOR]) == 2  # failed criterion, weak hook
        assert len(by_severity[Severity.MINOR]) == 2  # one missing scene, missed foreshadowing

    def test_goal_checker_malformed_falls_back(self, fake_generator):
        checker = GoalChecker(fake_generator(["{}"]), QCConfig())
        assert checker.check(self._context(goal=ChapterGoal(primary="x"))).score == 80


# ---------------------------------------------------------------------------
# Duplication checker
# ---------------------------------------------------------------------------


class TestDuplicationChecker:
    """Tests for the ledger-backed duplication dimension."""

    def _timeline(self):
        event = TimelineEvent(
            id="evt_1", type=EventType.BATTLE, summary="Ren fights the guard captain",
            description="", character_ids=("c_ren",), status=EventStatus.COMPLETED,
            unique_key="battle:c_ren:fight_captain", created_at="", updated_at="", completed_chapter=4,
        )
        return TimelineState(events=(event,))

    def test_skipped_without_completed_events(self):
        context = ChapterContext("text", 5, 10, timeline=TimelineState())
        assert DuplicationChecker().check(context) is None

    def test_repeat_is_major_issue(self):
        context = ChapterContext(
            "Ren raised his sword. The guard captain tried to strike first.", 5, 10,
            timeline=self._timeline(), character_names={"Ren": "c_ren"},
        )
        result = DuplicationChecker().check(context)
        assert result.score == 70
        assert result.issues[0].category == IssueCategory.DUPLICATION
        assert result.issues[0].severity == Severity.MAJOR


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


class TestAggregator:
    """Tests for aggregate_score and run_multi_dimensional_qc."""

    def test_weighted_mean(self):
        config = QCConfig()
        scores = {"ending": 100, "character": 50, "pacing": 100, "goal": 100, "structure": 100, "duplication": 100}
        # 100 - 50 * 0.2
        assert aggregate_score(scores, [], config) == 90

    def test_critical_issue_caps_score(self):
        scores = {"ending": 100, "structure": 100}
        assert aggregate_score(scores, [_issue(Severity.CRITICAL)], QCConfig()) == 50

    def test_adding_critical_issue_never_raises_score(self):
        scores = {"ending": 40, "structure": 40}
        config = QCConfig()
        assert aggregate_score(scores, [_issue(Severity.CRITICAL)], config) <= aggregate_score(scores, [], config)

    def test_checker_exception_gets_fallback_score(self, english_chapter):
        broken = Mock()
        broken.name = "character"
        broken.check.side_effect = GenerationError("server down")
        ok = Mock()
        ok.name = "goal"
        ok.check.return_value = CheckerResult(score=90)

        context = ChapterContext(english_chapter, 3, 10)
        result = run_multi_dimensional_qc(context, checkers=[broken, ok])
        assert result.dimension_scores["character"] == 80
        assert result.dimension_scores["goal"] == 90
        assert result.passed

    def test_rule_based_dimensions_only_without_generator(self, english_chapter):
        events = []
        context = ChapterContext(english_chapter, 3, 10)
        result = run_multi_dimensional_qc(context, progress=lambda e, p: events.append(p["checker"]))
        assert events == ["ending", "structure"]
        assert result.score == 100
        assert result.passed

    def test_premature_ending_fails_qc(self, english_chapter):
        context = ChapterContext(english_chapter + "\n\nAnd they lived happily ever after.", 3, 10)
        result = run_multi_dimensional_qc(context)
        assert not result.passed
        assert result.score <= 50
        assert len(result.critical_issues) == 1

    def test_passed_depends_only_on_critical_issues(self):
        assert QCResult(score=20).passed
        assert QCResult(score=35, issues=(_issue(Severity.MAJOR), _issue(Severity.MINOR))).passed
        assert not QCResult(score=95, issues=(_issue(Severity.CRITICAL),)).passed


class TestQuickQCAndReports:
    """Tests for run_quick_qc, suggestions and the text report."""

    def test_quick_qc_clean_chapter(self, english_chapter):
        result = run_quick_qc(english_chapter, 3, 10)
        assert result.score == 100
        assert result.passed

    def test_quick_qc_caps_on_critical(self, english_chapter):
        result = run_quick_qc(english_chapter + "\n\nThank you for reading!", 3, 10)
        assert result.score == 50
        assert not result.passed

    def test_suggestions_list_critical_first(self):
        issues = [
            QCIssue(IssueCategory.PACING, Severity.MAJOR, "slow middle", suggestion="cut scene two"),
            QCIssue(IssueCategory.ENDING, Severity.CRITICAL, "ends the book"),
            QCIssue(IssueCategory.STYLE, Severity.MINOR, "adverbs"),
        ]
        lines = generate_suggestions(issues)
        assert lines[0].startswith("[Must fix]")
        assert "ends the book" in lines[1]
        assert any("cut scene two" in line for line in lines)
        assert not any("adverbs" in line for line in lines)

    def test_format_report(self):
        result = QCResult(
            score=45,
            issues=(QCIssue(IssueCategory.ENDING, Severity.CRITICAL, "ends the book"),),
            dimension_scores={"ending": 0, "structure": 90},
        )
        report = format_qc_result(result)
        assert "FAILED" in report
        assert "45/100" in report
        assert "[critical] [ending] ends the book" in report


@pytest.mark.parametrize("text,expected", [
    ("Ren ran.", False),
    ('```json\n{"content": "x"}\n```', True),
])
def test_json_payload_detection(text, expected):
    assert looks_like_json_payload(text) is expected
