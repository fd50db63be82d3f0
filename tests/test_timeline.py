"""Tests for the event ledger and the event extractor."""

import json
from dataclasses import asdict

import pytest

from novel_loop.config import TimelineConfig
from novel_loop.models import (
    EventAnalysis,
    EventStatus,
    EventType,
    OutlineChapter,
    OutlineDocument,
    OutlineVolume,
    ProposedEvent,
    TimelineState,
)
from novel_loop.timeline import (
    analyze_chapter_for_events,
    apply_event_analysis,
    check_event_duplication,
    find_characters_in_text,
    format_timeline_context,
    generate_unique_key,
    get_timeline_stats,
    infer_event_type,
    initialize_timeline_from_outline,
    recently_completed_events,
    summary_fragments,
    update_event_status,
)

NAMES = {"Ren": "c_ren", "Mira": "c_mira", "任远": "c_ren"}


def _proposal(summary="Ren fights the guard captain", ids=("c_ren",), action="fight captain", completed=True,
              event_type=EventType.BATTLE):
    return ProposedEvent(
        type=event_type,
        summary=summary,
        description=summary,
        character_ids=ids,
        unique_key=generate_unique_key(event_type, ids, action),
        completed=completed,
    )


def _ledger(*proposals, chapter=4, timepoint="Night of the siege"):
    return apply_event_analysis(TimelineState(), EventAnalysis(tuple(proposals), timepoint), chapter)


# ---------------------------------------------------------------------------
# Keys and helpers
# ---------------------------------------------------------------------------


class TestKeysAndHelpers:
    """Tests for unique keys, type inference and name lookup."""

    def test_unique_key_ignores_character_order_and_case(self):
        a = generate_unique_key(EventType.ALLIANCE, ["c_mira", "c_ren"], "Join  Forces")
        b = generate_unique_key(EventType.ALLIANCE, ["c_ren", "c_mira"], "join forces")
        assert a == b == "alliance:c_mira_c_ren:join_forces"

    @pytest.mark.parametrize("text,expected", [
        ("The coronation of the new king", EventType.CEREMONY),
        ("Ren and Mira fight the bandits", EventType.BATTLE),
        ("Mira discovers the truth", EventType.REVELATION),
        ("主角在祭坛前觉醒", EventType.CEREMONY),
        ("两人结盟", EventType.ALLIANCE),
        ("A quiet morning", EventType.CUSTOM),
    ])
    def test_infer_event_type(self, text, expected):
        assert infer_event_type(text) == expected

    def test_find_characters_whole_word(self):
        assert find_characters_in_text("Ren met Mira at the gate", NAMES) == ["c_ren", "c_mira"]
        assert find_characters_in_text("Renault cars everywhere", NAMES) == []
        assert find_characters_in_text("任远来到城门", NAMES) == ["c_ren"]

    def test_summary_fragments(self):
        assert summary_fragments("Ren fights the guard captain") == ["Ren fights", "guard captain"]
        assert summary_fragments("Ren fights the captain in the hall") == ["Ren fights"]
        assert summary_fragments("任远击败守卫队长，夺回城门") == ["任远击败守卫队长", "夺回城门"]


# ---------------------------------------------------------------------------
# Ingesting events
# ---------------------------------------------------------------------------


class TestApplyEventAnalysis:
    """Tests for adding extractor proposals to the ledger."""

    def test_adds_completed_and_in_progress(self):
        timeline = _ledger(
            _proposal(),
            _proposal("Mira plans the escape", ("c_mira",), "plan escape", completed=False,
                      event_type=EventType.DECISION),
        )
        assert len(timeline.events) == 2
        assert timeline.events[0].status == EventStatus.COMPLETED
        assert timeline.events[0].completed_chapter == 4
        assert timeline.events[1].status == EventStatus.IN_PROGRESS
        assert timeline.events[1].started_chapter == 4
        assert timeline.current_timepoint == "Night of the siege"
        assert timeline.last_updated_chapter == 4
        assert timeline.events[0].id.startswith("evt_battle_ch4_")

    @pytest.mark.parametrize("order", [(0, 1), (1, 0)])
    def test_same_key_admitted_once_in_either_order(self, order):
        proposals = [
            _proposal("Ren fights the guard captain", ("c_ren",), "fight captain"),
            _proposal("Ren duels the captain of the guard", ("c_ren",), "Fight  Captain"),
        ]
        first, second = (proposals[i] for i in order)
        timeline = _ledger(first)
        timeline = apply_event_analysis(timeline, EventAnalysis((second,), ""), 5)
        assert len(timeline.events) == 1
        assert timeline.events[0].summary == first.summary
        assert timeline.current_timepoint == "Night of the siege"

    def test_duplicate_within_one_batch(self):
        timeline = _ledger(_proposal(), _proposal("Ren fights again"))
        assert len(timeline.events) == 1

    def test_does_not_mutate_input(self):
        base = _ledger(_proposal())
        apply_event_analysis(base, EventAnalysis((_proposal("x", ("c_mira",), "other"),), ""), 5)
        assert len(base.events) == 1


# ---------------------------------------------------------------------------
# Status updates
# ---------------------------------------------------------------------------


class TestUpdateEventStatus:
    """Tests for moving events through their lifecycle."""

    def test_in_progress_to_completed(self):
        timeline = _ledger(_proposal(completed=False))
        event_id = timeline.events[0].id
        updated = update_event_status(timeline, event_id, EventStatus.COMPLETED, 7)
        assert updated.events[0].status == EventStatus.COMPLETED
        assert updated.events[0].completed_chapter == 7
        assert updated.events[0].started_chapter == 4

    def test_completed_cannot_move_back(self):
        timeline = _ledger(_proposal())
        with pytest.raises(ValueError):
            update_event_status(timeline, timeline.events[0].id, EventStatus.IN_PROGRESS, 6)

    def test_unknown_event(self):
        with pytest.raises(ValueError):
            update_event_status(TimelineState(), "evt_missing", EventStatus.COMPLETED, 1)


# ---------------------------------------------------------------------------
# Duplicate detection
# ---------------------------------------------------------------------------


class TestDuplicateCheck:
    """Tests for the post-hoc repeated-event check."""

    def test_character_fragment_and_keyword_flag_repeat(self):
        timeline = _ledger(_proposal())
        text = "Ren lowered his shoulder. The guard captain moved to strike before he could speak."
        report = check_event_duplication(text, timeline, NAMES)
        assert report.has_duplication
        assert report.duplicated_events[0].summary == "Ren fights the guard captain"
        assert "completed in chapter 4" in report.warnings[0]

    @pytest.mark.parametrize("text", [
        "The guard captain moved to strike the prisoner.",  # no character
        "Ren moved to strike the wall in anger.",  # no summary fragment
        "Ren spoke quietly with the guard captain over supper.",  # no battle keyword
    ])
    def test_requires_all_three_signals(self, text):
        report = check_event_duplication(text, _ledger(_proposal()), NAMES)
        assert not report.has_duplication

    def test_stopword_pairs_are_not_evidence(self):
        timeline = _ledger(_proposal("Ren fights the captain in the hall"))
        text = "Ren sat in the garden, remembering how the village had come under attack years ago."
        assert not check_event_duplication(text, timeline, NAMES).has_duplication

    def test_any_alias_of_a_character_counts(self):
        timeline = _ledger(_proposal())
        text = "任远 lowered his shoulder. The guard captain moved to strike."
        assert check_event_duplication(text, timeline, NAMES).has_duplication

    def test_in_progress_events_are_not_checked(self):
        timeline = _ledger(_proposal(completed=False))
        text = "Ren lowered his shoulder. The guard captain moved to strike."
        assert not check_event_duplication(text, timeline, NAMES).has_duplication

    def test_chinese_repeat(self):
        timeline = _ledger(_proposal("任远击败守卫队长", ("c_ren",), "击败队长"))
        text = "任远再次拔剑，与守卫队长交手。任远击败守卫队长后离开。"
        assert check_event_duplication(text, timeline, NAMES).has_duplication


# ---------------------------------------------------------------------------
# Seeding, context and stats
# ---------------------------------------------------------------------------


class TestSeedingAndContext:
    """Tests for outline seeding, prompt context and statistics."""

    def _outline(self):
        chapters = (
            OutlineChapter(1, "Dawn", "Ren and Mira fight the bandits at the ford"),
            OutlineChapter(2, "Secrets", "Mira discovers the truth about the ring"),
            OutlineChapter(3, "Empty", ""),
            OutlineChapter(4, "Again", "Ren and Mira fight the bandits at the ford"),
        )
        return OutlineDocument(volumes=(OutlineVolume("V1", 1, 4, chapters=chapters),))

    def test_seed_planned_events(self):
        timeline = initialize_timeline_from_outline(self._outline(), NAMES)
        assert [e.planned_chapter for e in timeline.events] == [1, 2]
        assert all(e.status == EventStatus.PLANNED for e in timeline.events)
        assert timeline.events[0].type == EventType.BATTLE
        assert timeline.events[0].character_ids == ("c_ren", "c_mira")
        assert timeline.events[1].type == EventType.REVELATION
        assert len(timeline.events[0].summary) <= 50

    def test_recently_completed(self):
        timeline = _ledger(_proposal(), chapter=4)
        assert recently_completed_events(timeline, 6) == list(timeline.events)
        assert recently_completed_events(timeline, 8) == []
        assert recently_completed_events(timeline, 4) == []

    def test_context_sections(self):
        timeline = _ledger(
            _proposal(),
            _proposal("Mira plans the escape", ("c_mira",), "plan escape", completed=False,
                      event_type=EventType.DECISION),
        )
        context = format_timeline_context(timeline, 5, NAMES)
        assert context.startswith("[Current Story Timepoint]\nNight of the siege")
        assert "[Completed Events - Do Not Repeat]" in context
        assert "- [Chapter 4] Ren fights the guard captain (involves: Ren)" in context
        assert "[Events In Progress]" in context
        assert "[Happened Recently]" in context

    def test_context_in_chinese(self):
        context = format_timeline_context(_ledger(_proposal()), 5, NAMES, language="zh")
        assert "【已完成事件 - 严禁重复】" in context

    def test_completed_window(self):
        proposals = [_proposal(f"event {i}", ("c_ren",), f"action {i}") for i in range(5)]
        timeline = _ledger(*proposals)
        context = format_timeline_context(timeline, 20, NAMES, TimelineConfig(recent_completed_window=2))
        assert "event 4" in context and "event 3" in context
        assert "event 2" not in context

    def test_stats(self):
        timeline = _ledger(_proposal(), _proposal("x", ("c_mira",), "y", completed=False))
        stats = get_timeline_stats(timeline)
        assert stats == {
            "total_events": 2,
            "completed_events": 1,
            "active_events": 1,
            "planned_events": 0,
            "by_type": {"battle": 2},
        }

    def test_round_trip_through_dict(self):
        timeline = _ledger(_proposal())
        restored = TimelineState.from_dict(json.loads(json.dumps(asdict(timeline))))
        assert restored == timeline


# ---------------------------------------------------------------------------
# Extraction
# ---------------------------------------------------------------------------


class TestAnalyzeChapter:
    """Tests for the model-backed event extractor."""

    def test_extracts_events_and_drops_unknown_names(self, fake_generator):
        raw = json.dumps({
            "newEvents": [{
                "type": "battle",
                "summary": "Ren fights the guard captain on the wall " * 3,
                "characterNames": ["Ren", "Stranger"],
                "coreAction": "Fight Captain",
                "isCompleted": True,
            }],
            "currentTimepoint": "Dawn after the siege",
        })
        gen = fake_generator([raw])
        analysis = analyze_chapter_for_events(gen, "Ren fought.", 5, TimelineState(), NAMES)
        event = analysis.new_events[0]
        assert event.character_ids == ("c_ren",)
        assert event.unique_key == "battle:c_ren:fight_captain"
        assert len(event.summary) <= 50
        assert analysis.current_timepoint == "Dawn after the siege"

    def test_prompt_lists_recent_completed_events(self, fake_generator):
        proposals = [_proposal(f"event {i}", ("c_ren",), f"action {i}") for i in range(12)]
        gen = fake_generator([json.dumps({"newEvents": [], "currentTimepoint": "t"})])
        analyze_chapter_for_events(gen, "Ren fought.", 5, _ledger(*proposals), NAMES)
        prompt = gen.calls[0]["prompt"]
        assert "event 11" in prompt and "event 2" in prompt
        assert "- event 1\n" not in prompt

    def test_malformed_response_adds_nothing(self, fake_generator):
        timeline = _ledger(_proposal())
        analysis = analyze_chapter_for_events(fake_generator(["oops"]), "text", 5, timeline, NAMES)
        assert analysis.new_events == ()
        assert analysis.current_timepoint == "Night of the siege"

    def test_chinese_chapter_uses_chinese_prompt(self, fake_generator, chinese_chapter):
        gen = fake_generator([json.dumps({"newEvents": [], "currentTimepoint": "破晓"})])
        analyze_chapter_for_events(gen, chinese_chapter, 12, TimelineState(), NAMES)
        assert "【第12章原文】" in gen.calls[0]["prompt"]
