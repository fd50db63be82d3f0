"""Exception hierarchy for the generation/evaluation loops."""


class NovelLoopError(Exception):
    """Base class for all novel_loop errors."""


class GenerationError(NovelLoopError):
    """The text generator failed after exhausting its retries."""

    def __init__(self, message: str, error_type: str = "unknown"):
        super().__init__(message)
        self.error_type = error_type


class ToolConfigurationError(NovelLoopError, ValueError):
    """A tool was looked up, registered or invoked incorrectly."""


class AgentPipelineError(NovelLoopError):
    """The agent finished without the minimum generate/evaluate cycle."""
