"""Story timeline models used to stop plot beats from repeating."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class EventType(str, Enum):
    CEREMONY = "ceremony"
    BATTLE = "battle"
    REVELATION = "revelation"
    ENCOUNTER = "encounter"
    DEPARTURE = "departure"
    ACQUISITION = "acquisition"
    DEATH = "death"
    DECISION = "decision"
    CONFLICT = "conflict"
    ALLIANCE = "alliance"
    BETRAYAL = "betrayal"
    CUSTOM = "custom"


class EventStatus(str, Enum):
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class TimelineEvent:
    id: str
    type: EventType
    summary: str
    description: str
    character_ids: tuple[str, ...]
    status: EventStatus
    unique_key: str
    created_at: str
    updated_at: str
    planned_chapter: Optional[int] = None
    started_chapter: Optional[int] = None
    completed_chapter: Optional[int] = None
    evidence: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TimelineEvent":
        def _get(*keys, default=None):
            for key in keys:
                if data.get(key) is not None:
                    return data[key]
            return default

        return cls(
            id=str(data["id"]),
            type=EventType(_get("type", default=EventType.CUSTOM.value)),
            summary=str(_get("summary", default="")),
            description=str(_get("description", default="")),
            character_ids=tuple(_get("character_ids", "characterIds", default=())),
            status=EventStatus(_get("status", default=EventStatus.PLANNED.value)),
            unique_key=str(_get("unique_key", "uniqueKey", default="")),
            created_at=str(_get("created_at", "createdAt", default="")),
            updated_at=str(_get("updated_at", "updatedAt", default="")),
            planned_chapter=_get("planned_chapter", "plannedChapter"),
            started_chapter=_get("started_chapter", "startedChapter"),
            completed_chapter=_get("completed_chapter", "completedChapter"),
            evidence=_get("evidence"),
        )


@dataclass(frozen=True)
class ProposedEvent:
    """An event suggested by the extractor, not yet admitted to the ledger."""
    type: EventType
    summary: str
    description: str
    character_ids: tuple[str, ...]
    unique_key: str
    evidence: str = ""
    completed: bool = True


@dataclass(frozen=True)
class EventAnalysis:
    new_events: tuple[ProposedEvent, ...] = ()
    current_timepoint: str = ""


@dataclass(frozen=True)
class TimelineState:
    events: tuple[TimelineEvent, ...] = ()
    last_updated_chapter: int = 0
    current_timepoint: str = "Story start"
    version: str = "1.0.0"

    @classmethod
    def from_dict(cls, data: dict) -> "TimelineState":
        return cls(
            events=tuple(TimelineEvent.from_dict(e) for e in data.get("events", []) if isinstance(e, dict)),
            last_updated_chapter=int(data.get("last_updated_chapter", data.get("lastUpdatedChapter", 0)) or 0),
            current_timepoint=data.get("current_timepoint", data.get("currentTimepoint")) or "Story start",
            version=data.get("version", "1.0.0"),
        )

    def completed_events(self) -> list[TimelineEvent]:
        return [e for e in self.events if e.status == EventStatus.COMPLETED]

    def active_events(self) -> list[TimelineEvent]:
        return [e for e in self.events if e.status == EventStatus.IN_PROGRESS]

    def find_by_key(self, unique_key: str) -> Optional[TimelineEvent]:
        return next((e for e in self.events if e.unique_key == unique_key), None)


@dataclass(frozen=True)
class DuplicationReport:
    has_duplication: bool
    duplicated_events: tuple[TimelineEvent, ...] = ()
    warnings: tuple[str, ...] = ()
