"""CLI entrypoint for video-forge."""

from collections.abc import Callable
from pathlib import Path
from typing import TypeVar

import rich_click as click

from video_forge import __version__
from video_forge.transcoder.controllers import (
    DbPathCommand,
    TaskEnqueueCommand,
    TaskListCommand,
    TaskMutateCommand,
    TranscodeCliController,
    VideoAddCommand,
    VideoListCommand,
    VideoShowCommand,
    WorkerRunCommand,
)
from video_forge.transcoder.models import TaskStatus
from video_forge.transcoder.variants import SUPPORTED_VARIANTS

click.rich_click.USE_MARKDOWN = True
CONTROLLER = TranscodeCliController()
_C = TypeVar("_C")


@click.group()
@click.version_option(version=__version__, prog_name="video-forge")
def video_forge() -> None:
    """Video transcoding queue CLI."""


@video_forge.group()
def video() -> None:
    """Source video commands."""


@video.command("add")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--name", default=None, help="Display name; defaults to the file name.")
@click.argument("source", type=click.Path(path_type=Path, exists=True, dir_okay=False))
def video_add(db_path: Path | None, name: str | None, source: Path) -> None:
    """Copy a source video into storage and register it."""

    _emit_lines(
        _run(
            CONTROLLER.add_video,
            VideoAddCommand(db_path=db_path, source_path=source, original_name=name),
        ),
    )


@video.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max videos to print.",
)
def video_list(db_path: Path | None, limit: int) -> None:
    """List videos, newest first, with their tasks."""

    _emit_lines(_run(CONTROLLER.list_videos, VideoListCommand(db_path=db_path, limit=limit)))


@video.command("show")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("video_id")
def video_show(db_path: Path | None, video_id: str) -> None:
    """Show one video with its tasks."""

    _emit_lines(
        _run(CONTROLLER.show_video, VideoShowCommand(db_path=db_path, video_id=video_id)),
    )


@video_forge.group()
def task() -> None:
    """Transcode task commands."""


@task.command("enqueue")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--variant",
    "variants",
    multiple=True,
    type=click.Choice(SUPPORTED_VARIANTS),
    help="Variant such as `WebM-720p`. Can be repeated; defaults to all variants.",
)
@click.argument("video_id")
def task_enqueue(db_path: Path | None, variants: tuple[str, ...], video_id: str) -> None:
    """Queue transcode tasks for a registered video."""

    _emit_lines(
        _run(
            CONTROLLER.enqueue,
            TaskEnqueueCommand(db_path=db_path, video_id=video_id, variants=variants),
        ),
    )


@task.command("list")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--status",
    type=click.Choice([status.value for status in TaskStatus], case_sensitive=False),
    default=None,
    help="Optional status filter.",
)
@click.option(
    "--limit",
    type=click.IntRange(min=1, max=500),
    default=50,
    show_default=True,
    help="Max tasks to print.",
)
def task_list(db_path: Path | None, status: str | None, limit: int) -> None:
    """List transcode tasks."""

    _emit_lines(
        _run(
            CONTROLLER.list_tasks,
            TaskListCommand(db_path=db_path, status=status, limit=limit),
        ),
    )


@task.command("inspect")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def task_inspect(db_path: Path | None, task_id: str) -> None:
    """Inspect one task with event history."""

    _emit_lines(
        _run(CONTROLLER.inspect_task, TaskMutateCommand(db_path=db_path, task_id=task_id)),
    )


@task.command("delete")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.argument("task_id")
def task_delete(db_path: Path | None, task_id: str) -> None:
    """Delete a task and its output file."""

    _emit_lines(
        _run(CONTROLLER.delete_task, TaskMutateCommand(db_path=db_path, task_id=task_id)),
    )


@video_forge.group()
def worker() -> None:
    """Worker commands."""


@worker.command("run")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option(
    "--until-idle/--forever",
    default=False,
    show_default=True,
    help="Exit once the queue is empty and no task is running.",
)
@click.option(
    "--concurrency",
    type=click.IntRange(min=1),
    default=None,
    help="Override VIDEO_FORGE_CONCURRENCY_LIMIT.",
)
def worker_run(db_path: Path | None, until_idle: bool, concurrency: int | None) -> None:
    """Recover stale tasks, then run the transcode scheduler."""

    _emit_lines(
        _run(
            CONTROLLER.run_worker,
            WorkerRunCommand(
                db_path=db_path,
                until_idle=until_idle,
                concurrency_limit=concurrency,
            ),
        ),
    )


@worker.command("recover")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
def worker_recover(db_path: Path | None) -> None:
    """Requeue tasks left PROCESSING by a dead worker."""

    _emit_lines(_run(CONTROLLER.recover, DbPathCommand(db_path=db_path)))


@video_forge.command("clear")
@click.option("--db-path", type=click.Path(path_type=Path), default=None, help="SQLite DB path.")
@click.option("--yes", is_flag=True, default=False, help="Confirm deleting everything.")
def clear(db_path: Path | None, yes: bool) -> None:
    """Delete all videos, tasks, uploads and outputs."""

    if not yes:
        raise click.ClickException("Refusing to clear without --yes.")
    _emit_lines(_run(CONTROLLER.clear, DbPathCommand(db_path=db_path)))


def _run(handler: Callable[[_C], list[str]], command: _C) -> list[str]:
    try:
        return handler(command)
    except (RuntimeError, ValueError) as error:
        raise click.ClickException(str(error)) from error


def _emit_lines(lines: list[str]) -> None:
    for line in lines:
        click.echo(line)


if __name__ == "__main__":  # pragma: no cover
    video_forge()
