"""Rule-based structural and prose-texture checks on a chapter."""

import re

from ..config import QCConfig
from ..models.qc import CheckerResult, IssueCategory, QCIssue, Severity
from ..utils.text import text_length

_TITLE_RE = re.compile(r"^(第[一二三四五六七八九十百千零\d]+章|chapter\s+[\w-]+)", re.I)
_QUOTE_RE = re.compile(r"[\"「『“”]")
_PARAGRAPH_SPLIT_RE = re.compile(r"\n\s*\n")

_SENSORY_RE = re.compile(
    r"看到|听到|听见|闻到|触感|温度|疼痛|灼热|冰冷|刺骨|芳香|恶臭|轰鸣|震颤|柔软|粗糙|明亮|昏暗|刺眼|微光|"
    r"血腥|甘甜|苦涩|酸|辣|颤抖|麻痹|目光|眼神|瞳孔|嘴角|眉头|拳头|指尖|掌心|呼吸|心跳|脉搏|汗水|泪水|血液|伤口|"
    r"\b(saw|see|heard|hear|smell|smelled|scent|taste|cold|warm|hot|pain|ache|bright|dim|glow|blood|sweat|"
    r"tears|breath|breathing|heartbeat|trembl\w*|shiver\w*|rough|soft|eyes|gaze|lips|fist|fingertips|palm|wound)\b",
    re.I,
)

_SUMMARY_PATTERNS = [
    re.compile(r"(?:接下来|之后|后来)(?:的|一)(?:几天|几日|几个月|一段时间|些日子)"),
    re.compile(r"(?:日子|时间|时光)(?:一天天|一天一天|就这样|就这么)(?:过去|流逝)"),
    re.compile(r"不知不觉.{0,5}(?:过去了|已经|便是)"),
    re.compile(r"(?:经过|花了|用了).{0,5}(?:几天|数日|半个月|一个月|数月).{0,10}(?:终于|总算|才)"),
    re.compile(r"\b(?:over|in) the (?:following|next|coming) (?:few )?(?:days|weeks|months)\b", re.I),
    re.compile(r"\b(?:days|weeks|months) (?:passed|went by|slipped by|turned into)\b", re.I),
    re.compile(r"\bbefore (?:he|she|they|I) knew it\b", re.I),
    re.compile(r"\bafter (?:several|a few|many) (?:days|weeks|months)\b.{0,20}\bfinally\b", re.I),
]

_DIDACTIC_PATTERNS = [
    re.compile(r"他(?:深深地?)?(?:知道|明白|清楚|意识到|感受到)"),
    re.compile(r"他(?:在心中|暗暗|默默)(?:发誓|下定决心|告诉自己)"),
    re.compile(r"这(?:一刻|一瞬|一天).*?(?:永远|终生|一辈子).*?(?:铭记|记住|忘不了)"),
    re.compile(r"(?:望着|看着|凝视).{0,10}(?:远方|天空|背影).{0,5}(?:他知道|心中)"),
    re.compile(r"\b(?:he|she|they) (?:finally )?(?:knew|understood|realized) (?:deep down|now|then|that)\b", re.I),
    re.compile(r"\b(?:swore|vowed|promised) (?:to )?(?:himself|herself|themselves)\b", re.I),
    re.compile(r"\bwould never forget (?:this|that) (?:moment|day|night)\b", re.I),
    re.compile(r"\b(?:gazing|staring|looking) (?:out )?at the (?:horizon|sky|distance)\b", re.I),
]

_DIALOGUE_LINE_RE = re.compile(r"^[\"「“『]|^[^\n]*?[\"「“『].*?[\"」”』]\s*$")


def looks_like_json_payload(chapter_text: str) -> bool:
    """The model returned its JSON envelope instead of prose."""
    trimmed = chapter_text.strip()
    has_content = re.search(r'"content"\s*:', trimmed) is not None
    if re.match(r"^```json", trimmed, re.I) and has_content:
        return True
    return trimmed[:1] in ("{", "[") and has_content and re.search(r'"title"\s*:', trimmed) is not None


def max_consecutive_dialogue(chapter_text: str) -> int:
    run = best = 0
    for line in chapter_text.split("\n"):
        line = line.strip()
        if not line:
            continue
        if _DIALOGUE_LINE_RE.search(line):
            run += 1
            best = max(best, run)
        else:
            run = 0
    return best


def check_structural_integrity(chapter_text: str, config: QCConfig) -> CheckerResult:
    """Score 100 minus a fixed penalty per defect found, floored at 0."""
    if looks_like_json_payload(chapter_text):
        return CheckerResult(score=0, issues=(QCIssue(
            category=IssueCategory.STRUCTURE,
            severity=Severity.CRITICAL,
            description="Chapter content is a JSON payload instead of prose",
            suggestion="Output only the chapter text (with its title), no JSON or code block",
        ),))

    issues = []
    score = 100

    def flag(category, severity, penalty, description, suggestion):
        nonlocal score
        issues.append(QCIssue(category=category, severity=severity, description=description, suggestion=suggestion))
        score -= penalty

    length = text_length(chapter_text)
    if length < config.min_chapter_length:
        flag(IssueCategory.STRUCTURE, Severity.MAJOR, 30,
             f"Chapter is too short ({length}); the minimum is {config.min_chapter_length}",
             "Expand the chapter with scene description or character interaction")
    elif length > config.max_chapter_length:
        flag(IssueCategory.STRUCTURE, Severity.MINOR, 10,
             f"Chapter is too long ({length}); the maximum is {config.max_chapter_length}",
             "Consider splitting the chapter or trimming redundant description")

    if not _TITLE_RE.match(chapter_text.strip()):
        flag(IssueCategory.STRUCTURE, Severity.MINOR, 5,
             "Chapter has no title line",
             'Start the chapter with a title such as "Chapter 12: ..." or "第十二章 ..."')

    if len(_QUOTE_RE.findall(chapter_text)) < 4:
        flag(IssueCategory.STRUCTURE, Severity.MINOR, 10,
             "Very little dialogue; the chapter may read flat",
             "Add character dialogue to improve readability")

    paragraphs = [p for p in _PARAGRAPH_SPLIT_RE.split(chapter_text) if p.strip()]
    if len(paragraphs) < 3:
        flag(IssueCategory.STRUCTURE, Severity.MINOR, 5,
             "Too few paragraph breaks",
             "Break the text into paragraphs so it reads more smoothly")

    bland = sum(
        1 for p in paragraphs
        if len(p) > 200 and not _SENSORY_RE.search(p) and not _QUOTE_RE.search(p)
    )
    if bland >= 3:
        flag(IssueCategory.STYLE, Severity.MAJOR, 15,
             f"{bland} long paragraphs have neither sensory detail nor dialogue",
             "Add concrete sight, sound and touch details so the scene can be pictured")

    summary_hits = [m.group(0) for m in (p.search(chapter_text) for p in _SUMMARY_PATTERNS) if m]
    if len(summary_hits) >= 2:
        flag(IssueCategory.STYLE, Severity.MAJOR, 15,
             f"Summary-style narration skips over scenes ({'; '.join(summary_hits)})",
             "Replace the time-skip narration with one key scene played out in full")

    tail = chapter_text[-300:]
    if any(p.search(tail) for p in _DIDACTIC_PATTERNS):
        flag(IssueCategory.STYLE, Severity.MINOR, 10,
             "Chapter ends on a reflective moral instead of a hook",
             "End on suspense, a reversal or a crisis that makes the reader turn the page")

    long_paragraphs = sum(1 for p in paragraphs if len(p.strip()) > 500)
    if long_paragraphs >= 2:
        flag(IssueCategory.STRUCTURE, Severity.MINOR, 5,
             f"{long_paragraphs} paragraphs run over 500 characters",
             "Split long paragraphs and interleave dialogue or short beats")

    run = max_consecutive_dialogue(chapter_text)
    if run >= 5:
        flag(IssueCategory.STYLE, Severity.MINOR, 10,
             f"{run} consecutive lines of bare dialogue with no action or expression",
             "Interleave actions, expressions and thoughts between lines of dialogue")

    return CheckerResult(score=max(0, score), issues=tuple(issues))
