# captain/cli/utils/progress.py
"""Progress display utilities"""

from contextlib import contextmanager
from typing import Callable, Generator, Optional, Tuple

from rich.console import Console
from rich.progress import (
    BarColumn,
    DownloadColumn,
    Progress,
    TaskID,
    TextColumn,
    TimeRemainingColumn,
    TransferSpeedColumn,
)


def progress_callback(progress: Progress, task_id: TaskID) -> Callable[[int, int], None]:
    """Create a progress callback function

    Returns a function that can be used as a progress callback
    with signature (completed, total).
    """

    def callback(completed: int, total: int) -> None:
        if progress and task_id is not None:
            progress.update(task_id, completed=completed, total=total)

    return callback


@contextmanager
def buffer_progress(label: str,
                    console: Optional[Console] = None,
                    disable: bool = False
                    ) -> Generator[Tuple[Progress, Callable[[int, int], None]], None, None]:
    """Progress bar for buffer writes

    Yields the progress display and a callback for BufferWriter.
    """
    with Progress(
            TextColumn("[bold blue]{task.fields[label]}", justify="right"),
            BarColumn(bar_width=None),
            "[progress.percentage]{task.percentage:>3.1f}%",
            "•",
            DownloadColumn(),
            "•",
            TransferSpeedColumn(),
            "•",
            TimeRemainingColumn(),
            console=console,
            disable=disable,
            transient=True,
    ) as progress:
        task_id = progress.add_task("write", total=None, label=label)
        yield progress, progress_callback(progress, task_id)
