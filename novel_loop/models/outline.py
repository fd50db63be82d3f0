"""Outline document models and their normalization from generated JSON."""

import json
import re
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class OutlineChapter:
    index: int = 0
    title: str = ""
    goal: str = ""
    hook: str = ""


@dataclass(frozen=True)
class OutlineVolume:
    title: str = ""
    start_chapter: int = 0
    end_chapter: int = 0
    goal: str = ""
    conflict: str = ""
    climax: str = ""
    end_state: str = ""
    chapters: tuple[OutlineChapter, ...] = ()


@dataclass(frozen=True)
class OutlineDocument:
    total_chapters: int = 0
    target_word_count: int = 0
    main_goal: str = ""
    milestones: tuple[str, ...] = ()
    volumes: tuple[OutlineVolume, ...] = ()

    def iter_chapters(self):
        for volume in self.volumes:
            yield from volume.chapters

    @property
    def chapter_count(self) -> int:
        return sum(len(v.chapters) for v in self.volumes)

    @classmethod
    def from_dict(cls, data: dict) -> "OutlineDocument":
        raw_volumes = [v for v in data.get("volumes", []) if isinstance(v, dict)]
        volumes = tuple(
            normalize_volume(vol, i, vol.get("chapters", []))
            for i, vol in enumerate(raw_volumes)
        )
        return cls(
            total_chapters=_as_int(_first(data, "total_chapters", "totalChapters"), 0),
            target_word_count=_as_int(_first(data, "target_word_count", "targetWordCount"), 0),
            main_goal=data.get("main_goal", data.get("mainGoal", "")) or "",
            milestones=normalize_milestones(data.get("milestones", [])),
            volumes=volumes,
        )


@dataclass(frozen=True)
class OutlineMetrics:
    coverage: float = 0.0
    title_quality: float = 0.0
    goal_quality: float = 0.0
    structure: float = 0.0
    milestone_quality: float = 0.0


@dataclass(frozen=True)
class OutlineEvaluation:
    score: float = 0.0  # 0-10
    passed: bool = False
    issues: tuple[str, ...] = ()
    metrics: OutlineMetrics = field(default_factory=OutlineMetrics)


def _first(data: dict, *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return default


def _as_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def normalize_chapter(ch: dict, fallback_index: int) -> OutlineChapter:
    index = _as_int(_first(ch, "index", "chapter_id", "chapter_number", "chapterNumber"), fallback_index)
    return OutlineChapter(
        index=index,
        title=str(_first(ch, "title", default=f"Chapter {fallback_index}")),
        goal=str(_first(ch, "goal", "outline", "description", "plot_summary", default="")),
        hook=str(_first(ch, "hook", default="")),
    )


def normalize_volume(vol: dict, vol_index: int, chapters: list) -> OutlineVolume:
    """Build a volume, defaulting to 80-chapter ranges when bounds are missing."""
    start = _as_int(_first(vol, "start_chapter", "startChapter", "start"), vol_index * 80 + 1)
    end = _as_int(_first(vol, "end_chapter", "endChapter", "end"), (vol_index + 1) * 80)
    return OutlineVolume(
        title=str(_first(vol, "title", "volumeTitle", "volume_title", default=f"Volume {vol_index + 1}")),
        start_chapter=start,
        end_chapter=end,
        goal=str(_first(vol, "goal", "summary", "volume_goal", default="")),
        conflict=str(_first(vol, "conflict", default="")),
        climax=str(_first(vol, "climax", default="")),
        end_state=str(_first(vol, "end_state", "volumeEndState", "volume_end_state", default="")),
        chapters=tuple(
            normalize_chapter(ch, start + i) for i, ch in enumerate(chapters) if isinstance(ch, dict)
        ),
    )


def normalize_milestones(milestones: Any) -> tuple[str, ...]:
    if not isinstance(milestones, list):
        return ()
    out = []
    for m in milestones:
        if isinstance(m, str):
            out.append(m)
        elif isinstance(m, dict):
            out.append(str(_first(m, "milestone", "description", "title", default=json.dumps(m, ensure_ascii=False))))
    return tuple(out)


_PLACEHOLDER_RE = re.compile(r"^(第?\d+章?|chapter\s*\d+)$", re.IGNORECASE)


def is_placeholder_title(title: str) -> bool:
    title = title.strip()
    return not title or bool(_PLACEHOLDER_RE.match(title)) or "待补充" in title or "TBD" in title
