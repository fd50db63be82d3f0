"""Tests for the tiered rolling summary memory."""

import json

import pytest

from novel_loop.config import MemoryConfig
from novel_loop.exceptions import GenerationError
from novel_loop.memory import (
    RollingSummaryMemory,
    compress_rolling_summary,
    format_rolling_summary_memory,
    normalize_rolling_summary,
    parse_rolling_summary_memory,
    parse_summary_update_response,
    split_legacy_summary,
    split_sentences,
    truncate_by_sentences,
    update_rolling_summary,
)

TIERED = (
    "[Long-term Memory]\nRen was born in the river city. His father was the old king.\n\n"
    "[Mid-term Memory]\nRen fled north with Mira. They joined the smugglers.\n\n"
    "[Recent Memory]\nThe smugglers sold them out. Ren is held at the border fort."
)

TIERED_ZH = (
    "【长期记忆】\n任远出生在河城。他的父亲是老国王。\n\n"
    "【中期记忆】\n任远与米拉北逃。他们加入了走私者。\n\n"
    "【近期记忆】\n走私者出卖了他们。任远被关在边境要塞。"
)


# ---------------------------------------------------------------------------
# Sentences
# ---------------------------------------------------------------------------


class TestSentences:
    """Tests for sentence splitting and sentence-aware truncation."""

    def test_split_mixed_punctuation(self):
        assert split_sentences("One. Two! 三。四？") == ["One. ", "Two! ", "三。", "四？"]

    def test_leading_punctuation_is_kept(self):
        text = "?! Ren ran. Mira hid."
        assert split_sentences(text) == ["?! Ren ran. ", "Mira hid."]
        assert "".join(split_sentences(text)) == text
        assert truncate_by_sentences("。甲乙丙。丁戊己。", 6) == "。甲乙丙。"

    def test_keep_head(self):
        text = "First sentence here. Second sentence here. Third sentence here."
        assert truncate_by_sentences(text, 45) == "First sentence here. Second sentence here."

    def test_keep_tail(self):
        text = "First sentence here. Second sentence here. Third sentence here."
        assert truncate_by_sentences(text, 45, keep_tail=True) == "Second sentence here. Third sentence here."

    def test_hard_slice_when_no_sentence_fits(self):
        text = "x" * 100
        assert truncate_by_sentences(text, 10) == "x" * 10
        assert truncate_by_sentences("abc " * 30, 8, keep_tail=True) == "abc abc"


# ---------------------------------------------------------------------------
# Parse / format
# ---------------------------------------------------------------------------


class TestParseAndFormat:
    """Tests for parsing, formatting and normalizing tiered summaries."""

    def test_parse_tiers(self):
        memory = parse_rolling_summary_memory(TIERED)
        assert memory.long_term.startswith("Ren was born")
        assert memory.mid_term.startswith("Ren fled north")
        assert memory.recent.endswith("border fort.")

    @pytest.mark.parametrize("summary", [TIERED, TIERED_ZH])
    def test_round_trip(self, summary):
        formatted = format_rolling_summary_memory(parse_rolling_summary_memory(summary))
        assert formatted == normalize_rolling_summary(summary)
        assert formatted == summary

    def test_parsed_memory_keeps_heading_language(self):
        memory = parse_rolling_summary_memory(TIERED_ZH)
        assert memory.language == "zh"
        assert format_rolling_summary_memory(memory).startswith("【长期记忆】")
        assert format_rolling_summary_memory(memory, language="en").startswith("[Long-term Memory]")

    def test_missing_tier_is_empty(self):
        memory = parse_rolling_summary_memory("[Recent Memory]\nOnly recent things.")
        assert memory == RollingSummaryMemory(recent="Only recent things.")

    def test_empty_input(self):
        assert parse_rolling_summary_memory("").is_empty()
        assert compress_rolling_summary("") == ""

    def test_legacy_summary_never_raises(self):
        legacy = "Ren woke in a cell. " * 60
        memory = parse_rolling_summary_memory(legacy)
        assert memory.recent
        assert len(memory.recent) <= 500

    def test_short_legacy_summary_is_all_recent(self):
        assert split_legacy_summary("Ren woke.") == RollingSummaryMemory(recent="Ren woke.")

    def test_legacy_split_sizes(self):
        memory = split_legacy_summary("a" * 1000, recent_chars=500, mid_chars=380)
        assert (len(memory.long_term), len(memory.mid_term), len(memory.recent)) == (120, 380, 500)


# ---------------------------------------------------------------------------
# Compression
# ---------------------------------------------------------------------------


class TestCompress:
    """Tests for compress_rolling_summary."""

    def _long_summary(self):
        long_term = " ".join(f"Old fact {i}." for i in range(60))
        mid_term = " ".join(f"Middle beat {i}." for i in range(60))
        recent = " ".join(f"Recent event {i}." for i in range(80))
        return (
            f"[Long-term Memory]\n{long_term}\n\n[Mid-term Memory]\n{mid_term}\n\n[Recent Memory]\n{recent}"
        )

    def test_budget_split_and_ends_kept(self):
        compressed = compress_rolling_summary(self._long_summary(), max_tokens=200)
        memory = parse_rolling_summary_memory(compressed)
        # 400 chars: 80 / 120 / 200
        assert len(memory.long_term) <= 80
        assert len(memory.mid_term) <= 120
        assert len(memory.recent) <= 200
        assert memory.long_term.startswith("Old fact 0.")
        assert memory.mid_term.endswith("Middle beat 59.")
        assert memory.recent.endswith("Recent event 79.")

    def test_minimum_budget(self):
        compressed = compress_rolling_summary(self._long_summary(), max_tokens=10)
        memory = parse_rolling_summary_memory(compressed)
        # floor of 240 chars: 48 / 72 / 120
        assert len(memory.recent) <= 120
        assert memory.recent

    def test_short_summary_unchanged(self):
        assert compress_rolling_summary(TIERED) == TIERED

    def test_keeps_chinese_headings(self):
        assert compress_rolling_summary(TIERED_ZH).startswith("【长期记忆】")


# ---------------------------------------------------------------------------
# Summary updates
# ---------------------------------------------------------------------------


class TestSummaryUpdate:
    """Tests for parse_summary_update_response and update_rolling_summary."""

    def test_tiered_response(self):
        raw = json.dumps({
            "longTermMemory": "Ren is the lost heir of the river city.",
            "midTermMemory": "He escaped north and was betrayed.",
            "recentMemory": "He broke out of the border fort tonight.",
            "openLoops": [f"loop {i}" for i in range(20)],
        })
        update = parse_summary_update_response(raw, TIERED, ["old loop"])
        assert update.changed
        assert update.summary.startswith("[Long-term Memory]\nRen is the lost heir")
        assert len(update.open_loops) == 12

    def test_legacy_single_field(self):
        raw = json.dumps({"rollingSummary": "Everything so far happened in one long paragraph."})
        update = parse_summary_update_response(raw, TIERED, ["keep me"])
        assert update.changed
        assert update.summary == "[Recent Memory]\nEverything so far happened in one long paragraph."
        assert update.open_loops == ["keep me"]

    def test_malformed_keeps_previous(self):
        update = parse_summary_update_response("I could not summarize", TIERED, ["a", "b"])
        assert not update.changed
        assert update.summary == TIERED
        assert update.open_loops == ["a", "b"]

    def test_too_short_fields_keep_previous(self):
        update = parse_summary_update_response(json.dumps({"recentMemory": "short"}), TIERED, [])
        assert not update.changed

    def test_chinese_headings_follow_previous_summary(self):
        raw = json.dumps({"recentMemory": "任远今夜逃出了边境要塞，米拉下落不明。"})
        update = parse_summary_update_response(raw, TIERED_ZH, [])
        assert update.summary.startswith("【近期记忆】")

    def test_update_calls_generator_with_digest(self, fake_generator, english_chapter):
        raw = json.dumps({"recentMemory": "Ren held the gate until it split open.", "openLoops": ["who opened it"]})
        gen = fake_generator([raw])
        update = update_rolling_summary(gen, TIERED, ["who betrayed them"], english_chapter, bible="Bible")
        assert update.open_loops == ["who opened it"]
        prompt = gen.calls[0]["prompt"]
        assert "who betrayed them" in prompt
        assert "[...]" in prompt
        assert gen.calls[0]["temperature"] == 0.2

    def test_update_propagates_generation_error(self, fake_generator):
        gen = fake_generator([GenerationError("server down")])
        with pytest.raises(GenerationError):
            update_rolling_summary(gen, TIERED, [], "chapter")

    def test_open_loop_cap_is_configurable(self):
        raw = json.dumps({"recentMemory": "A long enough recent memory.", "openLoops": ["a", "b", "c"]})
        update = parse_summary_update_response(raw, "", [], MemoryConfig(max_open_loops=2))
        assert update.open_loops == ["a", "b"]
