"""Quality-control value types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class Severity(str, Enum):
    CRITICAL = "critical"
    MAJOR = "major"
    MINOR = "minor"


class IssueCategory(str, Enum):
    STRUCTURE = "structure"
    CHARACTER = "character"
    PLOT = "plot"
    PACING = "pacing"
    STYLE = "style"
    ENDING = "ending"
    DUPLICATION = "duplication"


@dataclass(frozen=True)
class QCIssue:
    category: IssueCategory
    severity: Severity
    description: str
    location: Optional[str] = None
    suggestion: Optional[str] = None


@dataclass(frozen=True)
class CheckerResult:
    score: int  # 0-100
    issues: tuple[QCIssue, ...] = ()


@dataclass(frozen=True)
class QCResult:
    score: int  # 0-100
    issues: tuple[QCIssue, ...] = ()
    dimension_scores: dict[str, int] = field(default_factory=dict)
    timestamp: str = ""

    @property
    def passed(self) -> bool:
        """A chapter passes unless a critical issue remains; the score alone never fails it."""
        return not self.critical_issues

    @property
    def critical_issues(self) -> list[QCIssue]:
        return [i for i in self.issues if i.severity == Severity.CRITICAL]

    @property
    def major_issues(self) -> list[QCIssue]:
        return [i for i in self.issues if i.severity == Severity.MAJOR]

    @property
    def minor_issues(self) -> list[QCIssue]:
        return [i for i in self.issues if i.severity == Severity.MINOR]


@dataclass(frozen=True)
class RepairResult:
    chapter_text: str
    attempts: int
    final_qc: QCResult
    success: bool
    repair_log: tuple[str, ...] = ()
    initial_score: Optional[int] = None
