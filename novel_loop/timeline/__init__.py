from .ledger import (
    TYPE_KEYWORDS,
    generate_unique_key,
    generate_event_id,
    infer_event_type,
    find_characters_in_text,
    summary_fragments,
    apply_event_analysis,
    update_event_status,
    recently_completed_events,
    check_event_duplication,
    initialize_timeline_from_outline,
    format_timeline_context,
    get_timeline_stats,
)
from .extractor import analyze_chapter_for_events

__all__ = [
    "TYPE_KEYWORDS",
    "generate_unique_key",
    "generate_event_id",
    "infer_event_type",
    "find_characters_in_text",
    "summary_fragments",
    "apply_event_analysis",
    "update_event_status",
    "recently_completed_events",
    "check_event_duplication",
    "initialize_timeline_from_outline",
    "format_timeline_context",
    "get_timeline_stats",
    "analyze_chapter_for_events",
]
