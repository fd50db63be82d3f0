from .generator import (
    TextGenerator,
    LLMTextGenerator,
    GenerationLog,
    classify_error,
    retry_delay,
)

__all__ = [
    "TextGenerator",
    "LLMTextGenerator",
    "GenerationLog",
    "classify_error",
    "retry_delay",
]
