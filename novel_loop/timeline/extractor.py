"""Event extractor: ask the model which story events a chapter completed."""

from typing import Literal, Mapping, Optional

from loguru import logger
from pydantic import BaseModel, Field

from ..config import TimelineConfig
from ..llm.generator import TextGenerator
from ..models.timeline import EventAnalysis, EventType, ProposedEvent, TimelineState
from ..utils.structured import parse_structured
from ..utils.text import detect_language
from .ledger import generate_unique_key

SYSTEM_EN = """You are a plot analyst for a novel. Extract the important events from a chapter.

Rules:
1. Only extract significant, landmark events. Ignore small talk and transitions.
2. An event must actually happen on the page, not be a character's thought or plan.
3. Describe each event briefly.
4. Distinguish events completed in this chapter from ones still in progress.

Output JSON only, no other text."""

SYSTEM_ZH = """你是小说剧情分析助手。你的任务是从章节内容中提取重要事件。

规则：
1. 只提取重要的、有标志性的事件，忽略日常对话和过渡性描写
2. 事件必须是明确发生的，不是角色的想法或计划
3. 用简洁的语言描述事件
4. 区分"已完成"和"进行中"的事件

只输出 JSON 格式，不要有任何其他文字。"""

EventTypeName = Literal[
    "ceremony", "battle", "revelation", "encounter", "departure", "acquisition",
    "death", "decision", "conflict", "alliance", "betrayal", "custom",
]


class ExtractedEvent(BaseModel):
    type: EventTypeName = "custom"
    summary: str
    description: str = ""
    character_names: list[str] = Field(default_factory=list, alias="characterNames")
    core_action: str = Field(alias="coreAction")
    evidence: str = ""
    is_completed: bool = Field(default=True, alias="isCompleted")

    model_config = {"populate_by_name": True}


class EventAnalysisSchema(BaseModel):
    new_events: list[ExtractedEvent] = Field(default_factory=list, alias="newEvents")
    current_timepoint: str = Field(alias="currentTimepoint")

    model_config = {"populate_by_name": True}


def build_extraction_prompt(
    chapter_text: str,
    chapter_index: int,
    timeline: TimelineState,
    character_names: Mapping[str, str],
    config: TimelineConfig,
    language: str,
) -> str:
    completed = timeline.completed_events()[-config.recent_completed_window:]
    completed_lines = "\n".join(f"- {e.summary}" for e in completed)
    names = ", ".join(character_names)
    schema = (
        '{\n'
        '  "newEvents": [\n'
        '    {\n'
        '      "type": "ceremony|battle|revelation|encounter|departure|acquisition|death|decision|conflict|alliance|betrayal|custom",\n'
        f'      "summary": "short summary (max {config.summary_max_chars} chars)",\n'
        '      "description": "detailed description",\n'
        '      "characterNames": ["names of the characters involved"],\n'
        f'      "coreAction": "core action keywords (max {config.core_action_max_chars} chars, used for dedup)",\n'
        '      "evidence": "key sentence from the chapter",\n'
        '      "isCompleted": true\n'
        '    }\n'
        '  ],\n'
        '  "currentTimepoint": "where the story now stands in time"\n'
        '}'
    )

    if language == "zh":
        return (
            f"【本书角色列表】\n{names or '（未提供）'}\n\n"
            f"【已记录的完成事件】\n{completed_lines or '（暂无）'}\n\n"
            f"【第{chapter_index}章原文】\n{chapter_text}\n\n"
            f"请分析本章发生的重要事件，输出 JSON 格式：\n{schema}"
        )
    return (
        f"## Characters\n{names or '(not provided)'}\n\n"
        f"## Events Already Completed\n{completed_lines or '(none yet)'}\n\n"
        f"## Chapter {chapter_index} Text\n{chapter_text}\n\n"
        f"Analyze the important events of this chapter and return JSON:\n{schema}"
    )


def analyze_chapter_for_events(
    generator: TextGenerator,
    chapter_text: str,
    chapter_index: int,
    timeline: TimelineState,
    character_names: Mapping[str, str],
    config: Optional[TimelineConfig] = None,
) -> EventAnalysis:
    """Propose the events a chapter contains.

    Character names the extractor reports but ``character_names`` does not
    know are dropped. A malformed response yields no events and keeps the
    current timepoint; GenerationError propagates.
    """
    config = config or TimelineConfig()
    language = detect_language(chapter_text)
    system = SYSTEM_ZH if language == "zh" else SYSTEM_EN
    prompt = build_extraction_prompt(
        chapter_text, chapter_index, timeline, character_names, config, language
    )

    raw = generator.generate(system, prompt, temperature=config.extractor_temperature)
    result = parse_structured(raw, EventAnalysisSchema)
    if not result.ok:
        logger.warning(f"Chapter {chapter_index}: event extraction unusable, no events added: {result.error}")
        return EventAnalysis(new_events=(), current_timepoint=timeline.current_timepoint)

    proposals = []
    for evt in result.value.new_events:
        character_ids = []
        for name in evt.character_names:
            char_id = character_names.get(name)
            if char_id is None:
                logger.debug(f"Dropping unknown character name from event: {name}")
            elif char_id not in character_ids:
                character_ids.append(char_id)

        event_type = EventType(evt.type)
        core_action = evt.core_action[: config.core_action_max_chars]
        proposals.append(ProposedEvent(
            type=event_type,
            summary=evt.summary[: config.summary_max_chars],
            description=evt.description,
            character_ids=tuple(character_ids),
            unique_key=generate_unique_key(event_type, character_ids, core_action),
            evidence=evt.evidence,
            completed=evt.is_completed,
        ))

    return EventAnalysis(
        new_events=tuple(proposals),
        current_timepoint=result.value.current_timepoint or timeline.current_timepoint,
    )
