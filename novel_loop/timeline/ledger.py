"""Event ledger: what has already happened in the story.

All functions are pure over ``TimelineState`` and return a new state where
they change anything.
"""

import re
import uuid
from collections import Counter
from dataclasses import replace
from datetime import datetime
from typing import Mapping, Optional

from loguru import logger

from ..config import TimelineConfig
from ..models.outline import OutlineDocument
from ..models.timeline import (
    DuplicationReport,
    EventAnalysis,
    EventStatus,
    EventType,
    TimelineEvent,
    TimelineState,
)

# Keywords that must co-occur with a character and a summary fragment before
# a chapter is flagged as restating a completed event.
TYPE_KEYWORDS: dict[EventType, tuple[str, ...]] = {
    EventType.CEREMONY: ("仪式", "典礼", "开始", "进行", "举行",
                         "ceremony", "ritual", "rite", "coronation", "wedding"),
    EventType.BATTLE: ("战斗", "交手", "打", "攻击", "防御",
                       "fight", "strike", "defend", "attack", "battle", "duel"),
    EventType.REVELATION: ("发现", "得知", "揭露", "原来", "真相",
                           "discover", "learn", "reveal", "truth", "secret"),
    EventType.ENCOUNTER: ("遇到", "见到", "初次", "重逢", "相见",
                          "meet", "met", "encounter", "reunite"),
    EventType.DEPARTURE: ("离开", "告别", "分别", "离去", "出发",
                          "leave", "left", "depart", "farewell", "set out"),
    EventType.ACQUISITION: ("获得", "得到", "突破", "觉醒", "习得",
                            "obtain", "gain", "breakthrough", "awaken", "acquire"),
    EventType.DEATH: ("死", "亡", "牺牲", "陨落", "殒命",
                      "die", "dead", "death", "killed", "sacrifice"),
    EventType.DECISION: ("决定", "选择", "决心", "下定",
                         "decide", "choose", "chose", "resolve"),
    EventType.CONFLICT: ("争吵", "冲突", "对峙", "矛盾", "激烈",
                         "argue", "quarrel", "clash", "confront", "standoff"),
    EventType.ALLIANCE: ("结盟", "联手", "合作", "共同",
                         "ally", "alliance", "join forces", "cooperate", "team up"),
    EventType.BETRAYAL: ("背叛", "出卖", "反水", "叛变",
                         "betray", "traitor", "sell out", "double-cross"),
    EventType.CUSTOM: (),
}

# First match wins, so the order matters (a coronation is a ceremony before
# it is anything else).
TYPE_PATTERNS: list[tuple[EventType, re.Pattern]] = [
    (EventType.CEREMONY, re.compile(r"仪式|典礼|登基|婚礼|葬礼|祭祀|觉醒|测试|\b(?:ceremony|ritual|coronation|wedding|funeral)", re.I)),
    (EventType.BATTLE, re.compile(r"战斗|打|杀|击败|对战|交手|比武|决斗|\b(?:fight|battle|duel|defeat|kill|attack)", re.I)),
    (EventType.REVELATION, re.compile(r"揭露|暴露|发现|真相|秘密|身份|得知|\b(?:reveal|discover|truth|secret|identity)", re.I)),
    (EventType.ENCOUNTER, re.compile(r"相遇|初见|重逢|邂逅|遇到|碰到|\b(?:meet|meets|encounter|reunite)", re.I)),
    (EventType.DEPARTURE, re.compile(r"离开|分别|告别|离去|出发|远行|\b(?:leave|leaves|depart|farewell|set out|sets out)", re.I)),
    (EventType.ACQUISITION, re.compile(r"获得|得到|突破|晋升|觉醒|习得|\b(?:obtain|gain|acquire|breakthrough|awaken)", re.I)),
    (EventType.DEATH, re.compile(r"死亡|牺牲|陨落|去世|殒命|\b(?:dies|death|sacrifice|perish)", re.I)),
    (EventType.DECISION, re.compile(r"决定|选择|抉择|决心|\b(?:decide|choose|resolve)", re.I)),
    (EventType.CONFLICT, re.compile(r"争吵|冲突|对峙|矛盾|撕破脸|\b(?:argue|quarrel|clash|confront)", re.I)),
    (EventType.ALLIANCE, re.compile(r"结盟|联手|合作|同盟|\b(?:ally|alliance|join forces|team up)", re.I)),
    (EventType.BETRAYAL, re.compile(r"背叛|出卖|反水|叛变|\b(?:betray|double-cross)", re.I)),
]

_FRAGMENT_SPLIT_RE = re.compile(r"[，,。、.;；!?！？]")


def _now() -> str:
    return datetime.now().isoformat()


def generate_unique_key(event_type: EventType, character_ids, core_action: str) -> str:
    """Deduplication fingerprint: type, sorted participants, normalized core action."""
    chars = "_".join(sorted(character_ids))
    action = re.sub(r"\s+", "_", core_action.strip().lower())
    return f"{EventType(event_type).value}:{chars}:{action}"


def generate_event_id(event_type: EventType, chapter_index: Optional[int]) -> str:
    return f"evt_{EventType(event_type).value}_ch{chapter_index or 0}_{uuid.uuid4().hex[:8]}"


def infer_event_type(text: str) -> EventType:
    for event_type, pattern in TYPE_PATTERNS:
        if pattern.search(text):
            return event_type
    return EventType.CUSTOM


def _contains(text: str, term: str, whole_word: bool = False) -> bool:
    """Substring test; ASCII terms match case-insensitively on word boundaries."""
    if not term:
        return False
    if not term.isascii():
        return term in text
    pattern = r"\b" + re.escape(term) + (r"\b" if whole_word else "")
    return re.search(pattern, text, re.IGNORECASE) is not None


def find_characters_in_text(text: str, character_names: Mapping[str, str]) -> list[str]:
    """Return the ids of known characters named in ``text``, in map order, deduplicated."""
    found = []
    for name, char_id in character_names.items():
        if _contains(text, name, whole_word=True) and char_id not in found:
            found.append(char_id)
    return found


def _names_by_id(character_names: Mapping[str, str]) -> dict[str, list[str]]:
    """Invert the name map; one id may have several names (aliases, translations)."""
    names: dict[str, list[str]] = {}
    for name, char_id in character_names.items():
        names.setdefault(char_id, []).append(name)
    return names


# Word pairs made of these carry no evidence that an event is being restated.
_STOPWORDS = frozenset({
    "a", "an", "the", "and", "or", "but", "of", "to", "in", "on", "at", "by", "for", "with",
    "from", "into", "onto", "over", "under", "his", "her", "their", "its", "he", "she",
    "they", "him", "them", "is", "was", "are", "were", "be", "been", "has", "had", "have",
    "that", "this", "who", "as", "up", "out", "off", "again",
})


def _is_content_word(word: str) -> bool:
    word = word.strip("'\"").lower()
    return len(word) >= 3 and word not in _STOPWORDS


def summary_fragments(summary: str) -> list[str]:
    """Pieces of an event summary long enough to count as evidence of a restatement.

    Chinese fragments are used whole. Spaced (English) fragments are broken
    into word pairs so a paraphrase that keeps a two-word phrase still matches;
    pairs with a stopword or a word under three letters are dropped.
    """
    fragments = []
    for part in _FRAGMENT_SPLIT_RE.split(summary):
        part = part.strip()
        if " " in part:
            words = part.split()
            fragments.extend(
                f"{a} {b}" for a, b in zip(words, words[1:])
                if _is_content_word(a) and _is_content_word(b)
            )
        elif len(part) > 2:
            fragments.append(part)
    return fragments


def apply_event_analysis(
    timeline: TimelineState, analysis: EventAnalysis, chapter_index: int
) -> TimelineState:
    """Admit the extractor's proposals, skipping any whose unique key is taken."""
    now = _now()
    seen = {e.unique_key: e for e in timeline.events}
    added = []

    for proposal in analysis.new_events:
        existing = seen.get(proposal.unique_key)
        if existing is not None:
            logger.warning(
                f"Skipping duplicate event: {proposal.summary} (same key as '{existing.summary}')"
            )
            continue

        status = EventStatus.COMPLETED if proposal.completed else EventStatus.IN_PROGRESS
        event = TimelineEvent(
            id=generate_event_id(proposal.type, chapter_index),
            type=proposal.type,
            summary=proposal.summary,
            description=proposal.description,
            character_ids=tuple(proposal.character_ids),
            status=status,
            unique_key=proposal.unique_key,
            created_at=now,
            updated_at=now,
            started_chapter=chapter_index,
            completed_chapter=chapter_index if proposal.completed else None,
            evidence=proposal.evidence or None,
        )
        seen[event.unique_key] = event
        added.append(event)

    logger.debug(f"Chapter {chapter_index}: {len(added)} event(s) added to the timeline")
    return replace(
        timeline,
        events=timeline.events + tuple(added),
        last_updated_chapter=chapter_index,
        current_timepoint=analysis.current_timepoint or timeline.current_timepoint,
    )


def update_event_status(
    timeline: TimelineState,
    event_id: str,
    new_status: EventStatus,
    chapter_index: int,
    completed_chapter: Optional[int] = None,
) -> TimelineState:
    """Move one event forward in its lifecycle.

    Raises:
        ValueError: if the event is unknown or is already completed and the
            new status is not ``completed``.
    """
    new_status = EventStatus(new_status)
    target = next((e for e in timeline.events if e.id == event_id), None)
    if target is None:
        raise ValueError(f"Unknown event id: {event_id}")
    if target.status == EventStatus.COMPLETED and new_status != EventStatus.COMPLETED:
        raise ValueError(f"Event {event_id} is completed and cannot move back to {new_status.value}")

    updated = replace(
        target,
        status=new_status,
        started_chapter=target.started_chapter or (
            chapter_index if new_status != EventStatus.PLANNED else None
        ),
        completed_chapter=(
            completed_chapter or target.completed_chapter or chapter_index
            if new_status == EventStatus.COMPLETED
            else target.completed_chapter
        ),
        updated_at=_now(),
    )
    return replace(
        timeline,
        events=tuple(updated if e.id == event_id else e for e in timeline.events),
        last_updated_chapter=chapter_index,
    )


def recently_completed_events(
    timeline: TimelineState, current_chapter: int, lookback_chapters: int = 3
) -> list[TimelineEvent]:
    floor = current_chapter - lookback_chapters
    return [
        e for e in timeline.completed_events()
        if e.completed_chapter is not None and floor <= e.completed_chapter < current_chapter
    ]


def check_event_duplication(
    chapter_text: str,
    timeline: TimelineState,
    character_names: Mapping[str, str],
) -> DuplicationReport:
    """Flag completed events the new chapter appears to play out again.

    An event is flagged only when the chapter names one of its characters,
    contains a fragment of its summary and uses a keyword of its type.
    """
    names_by_id = _names_by_id(character_names)
    duplicated = []
    warnings = []

    for event in timeline.completed_events():
        names = [name for cid in event.character_ids for name in names_by_id.get(cid, ())]
        if not any(_contains(chapter_text, name, whole_word=True) for name in names):
            continue
        if not any(_contains(chapter_text, frag) for frag in summary_fragments(event.summary)):
            continue
        if not any(_contains(chapter_text, kw) for kw in TYPE_KEYWORDS.get(event.type, ())):
            continue
        duplicated.append(event)
        warnings.append(
            f'Possible repeat of "{event.summary}" (completed in chapter {event.completed_chapter})'
        )

    return DuplicationReport(
        has_duplication=bool(duplicated),
        duplicated_events=tuple(duplicated),
        warnings=tuple(warnings),
    )


def initialize_timeline_from_outline(
    outline: OutlineDocument,
    character_names: Mapping[str, str],
    config: Optional[TimelineConfig] = None,
) -> TimelineState:
    """Seed one planned event per outline chapter that has a goal."""
    config = config or TimelineConfig()
    now = _now()
    events = []
    seen = set()

    for chapter in outline.iter_chapters():
        goal = chapter.goal.strip()
        if not goal:
            continue
        character_ids = find_characters_in_text(goal, character_names)
        event_type = infer_event_type(goal)
        key = generate_unique_key(event_type, character_ids, goal[: config.core_action_max_chars])
        if key in seen:
            logger.debug(f"Chapter {chapter.index}: planned event duplicates an earlier chapter, skipped")
            continue
        seen.add(key)
        events.append(TimelineEvent(
            id=generate_event_id(event_type, chapter.index),
            type=event_type,
            summary=goal[: config.summary_max_chars],
            description=goal,
            character_ids=tuple(character_ids),
            status=EventStatus.PLANNED,
            unique_key=key,
            created_at=now,
            updated_at=now,
            planned_chapter=chapter.index,
        ))

    return TimelineState(events=tuple(events))


_CONTEXT_HEADINGS = {
    "en": {
        "timepoint": "[Current Story Timepoint]",
        "completed": "[Completed Events - Do Not Repeat]",
        "active": "[Events In Progress]",
        "recent": "[Happened Recently]",
        "involves": "involves",
        "chapter": "Chapter {n}",
        "since": "since chapter {n}",
    },
    "zh": {
        "timepoint": "【当前故事时间点】",
        "completed": "【已完成事件 - 严禁重复】",
        "active": "【进行中事件】",
        "recent": "【近期发生】",
        "involves": "涉及",
        "chapter": "第{n}章",
        "since": "从第{n}章开始",
    },
}


def format_timeline_context(
    timeline: TimelineState,
    current_chapter: int,
    character_names: Mapping[str, str],
    config: Optional[TimelineConfig] = None,
    language: str = "en",
) -> str:
    """Render the ledger as a prompt block for the next chapter's generation."""
    config = config or TimelineConfig()
    h = _CONTEXT_HEADINGS.get(language, _CONTEXT_HEADINGS["en"])
    names_by_id = _names_by_id(character_names)

    def who(event: TimelineEvent) -> str:
        return ", ".join(names_by_id.get(cid, [cid])[0] for cid in event.character_ids) or "-"

    lines = [h["timepoint"], timeline.current_timepoint, ""]

    completed = timeline.completed_events()[-config.recent_completed_window:]
    if completed:
        lines.append(h["completed"])
        for e in completed:
            chapter = h["chapter"].format(n=e.completed_chapter)
            lines.append(f"- [{chapter}] {e.summary} ({h['involves']}: {who(e)})")
        lines.append("")

    active = timeline.active_events()
    if active:
        lines.append(h["active"])
        for e in active:
            lines.append(f"- {e.summary} ({h['involves']}: {who(e)}, {h['since'].format(n=e.started_chapter)})")
        lines.append("")

    recent = recently_completed_events(timeline, current_chapter, config.context_lookback_chapters)
    if recent:
        lines.append(h["recent"])
        for e in recent:
            lines.append(f"- {h['chapter'].format(n=e.completed_chapter)}: {e.summary}")

    return "\n".join(lines).strip()


def get_timeline_stats(timeline: TimelineState) -> dict:
    status_counts = Counter(e.status for e in timeline.events)
    return {
        "total_events": len(timeline.events),
        "completed_events": status_counts[EventStatus.COMPLETED],
        "active_events": status_counts[EventStatus.IN_PROGRESS],
        "planned_events": status_counts[EventStatus.PLANNED],
        "by_type": dict(Counter(e.type.value for e in timeline.events)),
    }
