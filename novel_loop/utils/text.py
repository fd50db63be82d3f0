"""Text helpers shared by the QC, memory and timeline modules."""

import re

_SENTENCE_BOUNDARIES = (". ", "。", "！", "？", "! ", "? ", "\n")


def _is_cjk(c: str) -> bool:
    return '\u4e00' <= c <= '\u9fff'


def detect_language(text: str) -> str:
    """"zh" when CJK characters make up more than 30% of the letters in the opening, else "en"."""
    sample = text[:500]
    cjk = sum(1 for c in sample if _is_cjk(c))
    letters = sum(1 for c in sample if c.isalpha() or _is_cjk(c))
    return "zh" if cjk / max(1, letters) > 0.3 else "en"


def text_length(text: str) -> int:
    """Length in the unit writers budget in: characters for Chinese, words otherwise."""
    if detect_language(text) == "zh":
        return len(re.sub(r"\s+", "", text))
    return len(text.split())


def normalize_newlines(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def truncate_text(text: str, max_chars: int, from_end: bool = False, slack: int = 200) -> str:
    """Cut ``text`` to at most ``max_chars``, preferring a sentence boundary.

    A boundary is used only when it gives up no more than ``slack`` characters;
    otherwise the cut is hard. The cut side is marked with "...".

    Args:
        text: The text to truncate.
        max_chars: Maximum number of characters kept.
        from_end: Keep the end of the text instead of the beginning.
        slack: How far from ``max_chars`` a boundary may lie.
    """
    if len(text) <= max_chars:
        return text

    if from_end:
        window = text[-max_chars:]
        cuts = [window.find(sep) + len(sep) for sep in _SENTENCE_BOUNDARIES if sep in window]
        cut = min(cuts, default=None)
        if cut is not None and cut <= slack:
            return window[cut:].lstrip()
        return "..." + window

    window = text[:max_chars]
    cuts = [window.rfind(sep) + len(sep) for sep in _SENTENCE_BOUNDARIES if sep in window]
    cut = max(cuts, default=0)
    if cut and cut >= max_chars - slack:
        return window[:cut].rstrip() + "..."
    return window + "..."


def build_chapter_digest(chapter_text: str, max_chars: int = 2400) -> str:
    """Condense a chapter into an opening/closing excerpt for summarization.

    The closing excerpt gets the larger share since it carries the state the
    next chapter starts from.
    """
    normalized = normalize_newlines(chapter_text)
    if len(normalized) <= max_chars:
        return normalized

    head_budget = max_chars * 2 // 5
    tail = truncate_text(normalized, max_chars - head_budget, from_end=True)
    head = truncate_text(normalized, head_budget)
    return f"{head}\n[...]\n{tail}"
