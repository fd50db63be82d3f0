from rich.progress import Progress, SpinnerColumn, TextColumn, BarColumn, TaskProgressColumn, TimeElapsedColumn
from typing import Any, Callable, Optional

# (event, payload): the loops report ordered, named notifications and leave
# their presentation to the caller.
ProgressCallback = Callable[[str, dict], None]


def _noop_progress(event: str, payload: dict) -> None:
    pass


def create_progress() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TaskProgressColumn(),
        TimeElapsedColumn(),
    )


def progress_reporter(
    progress: Progress,
    task_id: Any,
    advance_on: tuple[str, ...] = (),
) -> ProgressCallback:
    """Adapt loop notifications to a rich progress bar.

    Every event rewrites the task description; events named in ``advance_on``
    also advance the bar by one.
    """

    def _report(event: str, payload: dict) -> None:
        message: Optional[str] = payload.get("message")
        description = f"{event}: {message}" if message else event
        progress.update(task_id, description=description)
        if event in advance_on:
            progress.update(task_id, advance=1)

    return _report
