"""Premature-ending detection.

Serialized fiction dies when a mid-book chapter starts sounding like the
last one. These patterns catch the explicit signals (ending words, thanking
readers) and the structural ones (looking back on the whole journey, every
mystery solved at once).
"""

import re

from ..models.qc import CheckerResult, IssueCategory, QCIssue, Severity

ENDING_PATTERNS = [
    # explicit ending words
    re.compile(r"全书完|完结|大结局|终章|尾声|后记|番外"),
    re.compile(r"感谢(大家|读者|各位|支持)"),
    re.compile(r"（完）|\(完\)|（全文完）|\(全文完\)"),
    # "The End" standing on its own line, not "the end of the hall"
    re.compile(r"^\W*the\s+end\W*$", re.I | re.M),
    re.compile(r"\b(epilogue|afterword|final chapter)\b", re.I),
    re.compile(r"\bthank(s| you) (for reading|to (all )?(my )?readers)", re.I),
    # looking back over the whole story
    re.compile(r"回顾(一路|过往|这些年|这一切)"),
    re.compile(r"从此(以后|之后).{0,10}(幸福|安稳|平静)"),
    re.compile(r"故事(就|也|便)(到此|到这|至此|结束)"),
    re.compile(r"至此.{0,5}(落幕|结束|告一段落)"),
    re.compile(r"\b(lived )?happily ever after\b", re.I),
    re.compile(r"\b(and so|thus) (ends|ended) (our|the|this) (story|tale|journey)\b", re.I),
    # everything resolved at once
    re.compile(r"所有的(谜团|伏笔|悬念).{0,10}(揭开|解开|真相大白)"),
    re.compile(r"一切(都|终于|终究)(尘埃落定|水落石出)"),
    re.compile(r"\b(every|all the) (mystery|mysteries|secret|secrets) (was|were|had been) (solved|revealed|laid bare)\b", re.I),
]


def quick_ending_heuristic(chapter_text: str) -> list[str]:
    """Return the matched ending signals; empty when none fire."""
    reasons = []
    for pattern in ENDING_PATTERNS:
        match = pattern.search(chapter_text)
        if match:
            reasons.append(f'matched "{match.group(0)}"')
    return reasons


def check_premature_ending(chapter_text: str, chapter_index: int, total_chapters: int) -> CheckerResult:
    if chapter_index >= total_chapters:
        return CheckerResult(score=100)

    reasons = quick_ending_heuristic(chapter_text)
    if not reasons:
        return CheckerResult(score=100)

    return CheckerResult(
        score=0,
        issues=(QCIssue(
            category=IssueCategory.ENDING,
            severity=Severity.CRITICAL,
            description=f"Premature ending signals detected: {'; '.join(reasons)}",
            suggestion="Remove the concluding language and keep the tension and open questions alive",
        ),),
    )
