from .rolling_summary import (
    RollingSummaryMemory,
    SummaryUpdate,
    split_sentences,
    truncate_by_sentences,
    split_legacy_summary,
    parse_rolling_summary_memory,
    format_rolling_summary_memory,
    normalize_rolling_summary,
    compress_rolling_summary,
    parse_summary_update_response,
    update_rolling_summary,
)

__all__ = [
    "RollingSummaryMemory",
    "SummaryUpdate",
    "split_sentences",
    "truncate_by_sentences",
    "split_legacy_summary",
    "parse_rolling_summary_memory",
    "format_rolling_summary_memory",
    "normalize_rolling_summary",
    "compress_rolling_summary",
    "parse_summary_update_response",
    "update_rolling_summary",
]
