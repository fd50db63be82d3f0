import copy
from pathlib import Path
from typing import Any, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, Field, model_validator


class LLMConfig(BaseModel):
    provider: Literal["gemini", "qwen"] = Field(default="gemini")
    api_key: str = Field(default="")
    model: str = Field(default="gemini-2.5-pro")
    base_url: Optional[str] = Field(default=None)
    temperature: float = Field(default=0.7, ge=0, le=2)
    max_output_tokens: int = Field(default=8192, gt=0)


class RetryConfig(BaseModel):
    max_retries: int = Field(default=5, gt=0)
    rate_limit_base_delay: float = Field(default=10.0, ge=0)
    server_error_base_delay: float = Field(default=3.0, ge=0)
    other_error_base_delay: float = Field(default=2.0, ge=0)


class AgentConfig(BaseModel):
    goal: str = Field(
        default="Produce a structurally complete outline that covers every target chapter"
    )
    target_score: float = Field(default=8.0, ge=0, le=10)
    max_retries: int = Field(default=2, ge=0)
    use_llm_planner: bool = Field(default=True)
    planner_temperature: float = Field(default=0.2, ge=0, le=2)
    generation_temperature: float = Field(default=0.7, ge=0, le=2)


class QCConfig(BaseModel):
    acceptance_floor: int = Field(default=70, ge=0, le=100)
    max_repair_attempts: int = Field(default=2, ge=0)
    major_issue_cap: int = Field(default=5, gt=0)
    critical_score_cap: int = Field(default=50, ge=0, le=100)
    min_chapter_length: int = Field(default=1500, gt=0)
    max_chapter_length: int = Field(default=5000, gt=0)
    checker_fallback_score: int = Field(default=80, ge=0, le=100)
    repair_temperature: float = Field(default=0.7, ge=0, le=2)
    checker_temperature: float = Field(default=0.2, ge=0, le=2)
    weights: dict[str, float] = Field(
        default_factory=lambda: {
            "ending": 0.25,
            "character": 0.2,
            "pacing": 0.15,
            "goal": 0.2,
            "structure": 0.1,
            "duplication": 0.1,
        }
    )

    @model_validator(mode="after")
    def _check_lengths(self) -> "QCConfig":
        if self.max_chapter_length < self.min_chapter_length:
            raise ValueError("max_chapter_length must be >= min_chapter_length")
        if any(w < 0 for w in self.weights.values()):
            raise ValueError("QC weights must be non-negative")
        return self


class MemoryConfig(BaseModel):
    max_tokens: int = Field(default=900, gt=0)
    long_term_ratio: float = Field(default=0.2, ge=0, le=1)
    mid_term_ratio: float = Field(default=0.3, ge=0, le=1)
    legacy_recent_chars: int = Field(default=500, gt=0)
    legacy_mid_chars: int = Field(default=380, gt=0)
    max_open_loops: int = Field(default=12, gt=0)
    digest_max_chars: int = Field(default=2400, gt=0)

    @model_validator(mode="after")
    def _check_ratios(self) -> "MemoryConfig":
        if self.long_term_ratio + self.mid_term_ratio >= 1:
            raise ValueError("long_term_ratio + mid_term_ratio must leave room for recent memory")
        return self


class TimelineConfig(BaseModel):
    recent_completed_window: int = Field(default=10, gt=0)
    summary_max_chars: int = Field(default=50, gt=0)
    core_action_max_chars: int = Field(default=30, gt=0)
    context_lookback_chapters: int = Field(default=3, ge=0)
    extractor_temperature: float = Field(default=0.2, ge=0, le=2)


class Config(BaseModel):
    llm: LLMConfig = Field(default_factory=LLMConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    qc: QCConfig = Field(default_factory=QCConfig)
    memory: MemoryConfig = Field(default_factory=MemoryConfig)
    timeline: TimelineConfig = Field(default_factory=TimelineConfig)
    log_level: str = Field(default="INFO")

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path):
        with open(path, "w", encoding="utf-8") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False, allow_unicode=True)

    def for_project(
        self, project_id: Optional[str], overrides: Mapping[str, Mapping[str, Any]]
    ) -> "Config":
        """Return a new Config with the project's override map merged in.

        Projects without an entry get an unchanged copy.
        """
        override = overrides.get(project_id) if project_id else None
        if not override:
            return self.model_copy(deep=True)
        return Config(**deep_merge(self.model_dump(), override))


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into a copy of ``base``.

    Nested mappings merge key by key; any other value (lists included) replaces
    the base value. ``None`` in the override leaves the base value in place.
    Neither argument is modified.
    """
    result = copy.deepcopy(dict(base))
    for key, value in override.items():
        if value is None:
            continue
        current = result.get(key)
        if isinstance(value, Mapping) and isinstance(current, Mapping):
            result[key] = deep_merge(current, value)
        else:
            result[key] = copy.deepcopy(value)
    return result
