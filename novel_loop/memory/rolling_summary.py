"""Tiered rolling summary: long-term, mid-term and recent memory.

The summary is stored as one text blob with a heading per tier::

    [Long-term Memory]
    ...
    [Mid-term Memory]
    ...
    [Recent Memory]
    ...

Chinese headings (【长期记忆】 etc.) are accepted as well. Summaries written
before tiering existed have no headings at all; those are split by position,
newest text last.
"""

import re
from dataclasses import dataclass, field
from typing import Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..config import MemoryConfig
from ..llm.generator import TextGenerator
from ..utils.structured import parse_structured
from ..utils.text import build_chapter_digest

HEADINGS = {
    "en": {
        "long_term": "[Long-term Memory]",
        "mid_term": "[Mid-term Memory]",
        "recent": "[Recent Memory]",
    },
    "zh": {
        "long_term": "【长期记忆】",
        "mid_term": "【中期记忆】",
        "recent": "【近期记忆】",
    },
}

_HEADING_TO_TIER = {
    heading: tier for headings in HEADINGS.values() for tier, heading in headings.items()
}
_HEADING_RE = re.compile("|".join(re.escape(h) for h in _HEADING_TO_TIER))

SENTENCE_ENDINGS = "。！？!?；;."
_SENTENCE_RE = re.compile(rf"[{SENTENCE_ENDINGS}]*[^{SENTENCE_ENDINGS}]+(?:[{SENTENCE_ENDINGS}]+|$)\s*")


@dataclass(frozen=True)
class RollingSummaryMemory:
    long_term: str = ""
    mid_term: str = ""
    recent: str = ""
    language: str = "en"

    def is_empty(self) -> bool:
        return not (self.long_term or self.mid_term or self.recent)


@dataclass(frozen=True)
class SummaryUpdate:
    summary: str
    open_loops: list[str] = field(default_factory=list)
    changed: bool = True


class SummaryUpdateSchema(BaseModel):
    long_term_memory: Optional[str] = Field(default=None, alias="longTermMemory", min_length=8)
    mid_term_memory: Optional[str] = Field(default=None, alias="midTermMemory", min_length=8)
    recent_memory: Optional[str] = Field(default=None, alias="recentMemory", min_length=8)
    rolling_summary: Optional[str] = Field(default=None, alias="rollingSummary", min_length=8)
    open_loops: Optional[list[str]] = Field(default=None, alias="openLoops")

    model_config = {"populate_by_name": True}


def _normalize(text: str) -> str:
    return text.replace("\r\n", "\n").strip()


def split_sentences(text: str) -> list[str]:
    """Split on the sentence punctuation set, keeping punctuation and spacing."""
    sentences = [m.group(0) for m in _SENTENCE_RE.finditer(text) if m.group(0).strip()]
    if not sentences and text.strip():
        sentences = [text]
    return sentences


def truncate_by_sentences(text: str, max_chars: int, keep_tail: bool = False) -> str:
    """Trim ``text`` to ``max_chars`` without cutting a sentence in half.

    With ``keep_tail`` the newest (last) sentences survive, otherwise the
    oldest. If not even one whole sentence fits, a hard slice from the same
    end is returned.
    """
    normalized = _normalize(text)
    if not normalized:
        return ""
    if len(normalized) <= max_chars:
        return normalized

    sentences = split_sentences(normalized)
    ordered = list(reversed(sentences)) if keep_tail else sentences
    selected = []
    total = 0
    for sentence in ordered:
        if total + len(sentence) > max_chars:
            break
        selected.append(sentence)
        total += len(sentence)

    if not selected:
        return normalized[-max_chars:].strip() if keep_tail else normalized[:max_chars].strip()

    if keep_tail:
        selected.reverse()
    return _normalize("".join(selected))


def split_legacy_summary(
    summary: str, recent_chars: int = 500, mid_chars: int = 380
) -> RollingSummaryMemory:
    """Split a heading-less summary from the tail: recent, then mid, then the rest."""
    normalized = _normalize(summary)
    if not normalized:
        return RollingSummaryMemory()

    split_recent = max(0, len(normalized) - recent_chars)
    recent = normalized[split_recent:]
    before_recent = normalized[:split_recent]
    split_mid = max(0, len(before_recent) - mid_chars)
    return RollingSummaryMemory(
        long_term=_normalize(before_recent[:split_mid]),
        mid_term=_normalize(before_recent[split_mid:]),
        recent=_normalize(recent),
    )


def parse_rolling_summary_memory(
    summary: str, config: Optional[MemoryConfig] = None
) -> RollingSummaryMemory:
    """Parse the tiers out of a summary blob. Never raises."""
    config = config or MemoryConfig()
    normalized = _normalize(summary or "")
    if not normalized:
        return RollingSummaryMemory()

    try:
        matches = list(_HEADING_RE.finditer(normalized))
        if not matches:
            return split_legacy_summary(normalized, config.legacy_recent_chars, config.legacy_mid_chars)

        tiers = {"long_term": "", "mid_term": "", "recent": ""}
        for i, match in enumerate(matches):
            end = matches[i + 1].start() if i + 1 < len(matches) else len(normalized)
            tiers[_HEADING_TO_TIER[match.group(0)]] = _normalize(normalized[match.end():end])

        memory = RollingSummaryMemory(**tiers, language=detect_heading_language(normalized))
        if memory.is_empty():
            return split_legacy_summary(normalized, config.legacy_recent_chars, config.legacy_mid_chars)
        return memory
    except Exception as e:
        logger.warning(f"Could not parse rolling summary, keeping it as recent memory: {e}")
        return RollingSummaryMemory(recent=normalized)


def detect_heading_language(summary: str) -> str:
    match = _HEADING_RE.search(summary or "")
    if match and match.group(0) in HEADINGS["zh"].values():
        return "zh"
    return "en"


def format_rolling_summary_memory(memory: RollingSummaryMemory, language: Optional[str] = None) -> str:
    """Render the tiers under headings in ``language``, defaulting to the language the memory was parsed from."""
    headings = HEADINGS.get(language or memory.language, HEADINGS["en"])
    parts = []
    for tier in ("long_term", "mid_term", "recent"):
        content = _normalize(getattr(memory, tier))
        if content:
            parts.append(f"{headings[tier]}\n{content}")
    return "\n\n".join(parts).strip()


def normalize_rolling_summary(summary: str, config: Optional[MemoryConfig] = None) -> str:
    return format_rolling_summary_memory(parse_rolling_summary_memory(summary, config))


def compress_rolling_summary(
    summary: str,
    max_tokens: Optional[int] = None,
    config: Optional[MemoryConfig] = None,
) -> str:
    """Fit the summary into a budget split 20/30/50 across the tiers.

    Long-term memory keeps its oldest sentences, the other tiers their newest.
    The budget is roughly two characters per token.
    """
    if not summary:
        return ""
    config = config or MemoryConfig()
    max_tokens = max_tokens or config.max_tokens
    max_chars = max(240, max_tokens * 2)

    memory = parse_rolling_summary_memory(summary, config)
    long_budget = int(max_chars * config.long_term_ratio)
    mid_budget = int(max_chars * config.mid_term_ratio)
    recent_budget = max(80, max_chars - long_budget - mid_budget)

    compressed = RollingSummaryMemory(
        long_term=truncate_by_sentences(memory.long_term, long_budget, keep_tail=False),
        mid_term=truncate_by_sentences(memory.mid_term, mid_budget, keep_tail=True),
        recent=truncate_by_sentences(memory.recent, recent_budget, keep_tail=True),
        language=memory.language,
    )
    return format_rolling_summary_memory(compressed)


def parse_summary_update_response(
    raw_response: str,
    previous_summary: str,
    previous_open_loops: list[str],
    config: Optional[MemoryConfig] = None,
) -> SummaryUpdate:
    """Normalize a summarizer response into the tiered format.

    Accepts the tiered fields or the older single ``rollingSummary`` field.
    Anything unusable returns the previous summary and open loops untouched.
    """
    config = config or MemoryConfig()
    unchanged = SummaryUpdate(
        summary=previous_summary, open_loops=list(previous_open_loops), changed=False
    )
    language = detect_heading_language(previous_summary)

    result = parse_structured(raw_response, SummaryUpdateSchema)
    if not result.ok:
        logger.warning(f"Summary update was not usable, keeping previous memory: {result.error}")
        return unchanged

    parsed = result.value
    loops = parsed.open_loops[: config.max_open_loops] if parsed.open_loops else list(previous_open_loops)

    if parsed.long_term_memory or parsed.mid_term_memory or parsed.recent_memory:
        memory = RollingSummaryMemory(
            long_term=_normalize(parsed.long_term_memory or ""),
            mid_term=_normalize(parsed.mid_term_memory or ""),
            recent=_normalize(parsed.recent_memory or ""),
        )
        summary = format_rolling_summary_memory(memory, language=language)
        if summary:
            return SummaryUpdate(summary=summary, open_loops=loops)

    if parsed.rolling_summary:
        legacy = parse_rolling_summary_memory(parsed.rolling_summary, config)
        return SummaryUpdate(
            summary=format_rolling_summary_memory(legacy, language=language),
            open_loops=loops,
        )

    logger.warning("Summary update carried no memory fields, keeping previous memory")
    return unchanged


SUMMARY_SYSTEM = """You are a fiction editor's assistant. Update the rolling plot summary and the list of unresolved plot threads.
Output strict JSON only, no other text.

Format:
{
  "longTermMemory": "Compressed earlier chapters: stable setting facts, long-term character goals, core causality (180-320 words)",
  "midTermMemory": "Stage progress and key turns that bridge old and new (220-380 words)",
  "recentMemory": "The last 3-5 chapters in detail: open conflicts, immediate motives (280-520 words, most complete)",
  "openLoops": ["unresolved thread", "..."]
}"""


def update_rolling_summary(
    generator: TextGenerator,
    previous_summary: str,
    previous_open_loops: list[str],
    chapter_text: str,
    bible: str = "",
    config: Optional[MemoryConfig] = None,
    temperature: float = 0.2,
) -> SummaryUpdate:
    """Ask the summarizer to fold one more chapter into the memory.

    GenerationError from the generator propagates; a malformed answer does not.
    """
    config = config or MemoryConfig()
    loops = "\n".join(f"{i + 1}. {x}" for i, x in enumerate(previous_open_loops)) or "(none)"
    prompt = (
        f"## Story Bible\n{bible[:1200]}\n\n"
        f"## Previous Rolling Summary\n{normalize_rolling_summary(previous_summary, config) or '(none)'}\n\n"
        f"## Previous Open Loops\n{loops}\n\n"
        f"## This Chapter (excerpt: opening and ending)\n"
        f"{build_chapter_digest(chapter_text, config.digest_max_chars)}\n\n"
        f"Return the updated JSON. The closer in time, the more detail; the further back, the more compressed. "
        f"Keep 3-8 open loops."
    )
    raw = generator.generate(SUMMARY_SYSTEM, prompt, temperature=temperature)
    return parse_summary_update_response(raw, previous_summary, previous_open_loops, config)
