"""Main CLI entry point for studio-shot.

Serve the FastAPI backend for the browser app, or drive the same job
operations from the terminal. Settings come from flags or STUDIO_* env vars.
"""

import asyncio
import logging
import mimetypes
import os
import webbrowser
from pathlib import Path
from typing import Awaitable, Callable, Optional, Tuple, TypeVar

import click
import uvicorn
from rich.logging import RichHandler

from .jobs import StudioError, UploadedFile
from .server import create_app
from .studio import StudioShot, build_studio_from_env
from .ui import StudioUI


T = TypeVar("T")

PROVIDERS = ["gemini", "openai", "remote"]


def configure_logging(level: str = "INFO", log_dir: Optional[str] = None) -> None:
    handlers: list[logging.Handler] = [RichHandler(markup=False, rich_tracebacks=True, show_path=False)]
    if log_dir:
        Path(log_dir).mkdir(parents=True, exist_ok=True)
        handler = logging.FileHandler(os.path.join(log_dir, "studio.log"), encoding="utf-8")
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        handlers.append(handler)
    logging.basicConfig(level=level.upper(), format="%(message)s", handlers=handlers, force=True)


def _build(ctx: click.Context) -> StudioShot:
    opts = ctx.obj
    return build_studio_from_env(
        provider=opts["provider"],
        model=opts["model"],
        db_path=opts["db_path"],
        initial_credits=opts["credits"],
    )


def run_session(ctx: click.Context, action: Callable[[StudioShot], Awaitable[T]]) -> T:
    """Open a session, run ``action`` on it and close it again."""

    async def runner() -> T:
        async with _build(ctx) as studio:
            return await action(studio)

    try:
        return asyncio.run(runner())
    except StudioError as e:
        raise click.ClickException(str(e))


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "--db",
    "db_path",
    type=click.Path(dir_okay=False, path_type=str),
    default=lambda: os.getenv("STUDIO_DB_PATH"),
    help="SQLite file holding images and the job list (env: STUDIO_DB_PATH)",
)
@click.option(
    "--credits",
    type=click.IntRange(min=0),
    default=lambda: os.getenv("STUDIO_INITIAL_CREDITS"),
    help="Credits available for this session (env: STUDIO_INITIAL_CREDITS, default 5)",
)
@click.option(
    "--provider",
    type=click.Choice(PROVIDERS, case_sensitive=False),
    default=lambda: os.getenv("STUDIO_PROVIDER", "gemini"),
    show_default="gemini",
    help="Image provider (env: STUDIO_PROVIDER)",
)
@click.option("--model", "-m", default=lambda: os.getenv("STUDIO_MODEL"), help="Model name (env: STUDIO_MODEL)")
@click.option("--log-level", default=lambda: os.getenv("STUDIO_LOG_LEVEL", "INFO"), show_default="INFO")
@click.pass_context
def main_cli(ctx, db_path, credits, provider, model, log_level):
    """Turn product photos into studio shots."""
    configure_logging(log_level, os.getenv("STUDIO_LOG_DIR"))
    ctx.obj = {
        "db_path": db_path,
        "credits": credits,
        "provider": provider,
        "model": model,
        "ui": StudioUI(),
    }


@main_cli.command()
@click.option("--host", default=os.getenv("HOST", "0.0.0.0"), show_default=True, help="Server host")
@click.option("--port", default=int(os.getenv("PORT", "8000")), show_default=True, help="Server port", type=int)
@click.option("--open-browser/--no-open-browser", default=True, show_default=True, help="Open browser at startup")
@click.pass_context
def serve(ctx, host: str, port: int, open_browser: bool):
    """Serve the HTTP API for the browser app."""
    studio = _build(ctx)
    app = create_app(studio)

    url = f"http://{host}:{port}"
    print(f"Starting Studio Shot on {url}")
    # Honor env override to disable browser in CI/tests
    if os.getenv("STUDIO_NO_BROWSER"):
        open_browser = False
    if open_browser:
        try:
            webbrowser.open(url)
        except webbrowser.Error:
            pass
    uvicorn.run(app, host=host, port=port, timeout_keep_alive=5)


@main_cli.command()
@click.argument("files", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def add(ctx, files: Tuple[Path, ...]):
    """Add image FILES as pending jobs."""
    uploads = []
    for path in files:
        media_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
        uploads.append(UploadedFile(name=path.name, data=path.read_bytes(), media_type=media_type))

    async def action(studio: StudioShot):
        return await studio.manager.intake(uploads)

    result = run_session(ctx, action)
    ctx.obj["ui"].display_intake(result)
    if result.failures and not result.jobs:
        raise click.ClickException("No image could be stored")


@main_cli.command(name="list")
@click.pass_context
def list_jobs(ctx):
    """Show all images and their status."""

    async def action(studio: StudioShot):
        return studio.manager.jobs, studio.credits.balance, studio.manager.processable_count

    jobs, balance, to_process = run_session(ctx, action)
    ui = ctx.obj["ui"]
    ui.display_jobs(jobs)
    ui.display_credits(balance, to_process)


@main_cli.command()
@click.argument("job_ids", nargs=-1)
@click.option("--all", "process_all", is_flag=True, help="Generate every pending or failed image")
@click.pass_context
def process(ctx, job_ids: Tuple[str, ...], process_all: bool):
    """Generate studio shots for JOB_IDS (or --all)."""
    if not job_ids and not process_all:
        raise click.UsageError("Give one or more job ids, or --all")

    async def action(studio: StudioShot):
        manager = studio.manager
        if process_all:
            finished = await manager.process_all()
        else:
            tasks = [manager.dispatch(job_id) for job_id in job_ids]
            finished = list(await asyncio.gather(*tasks))
        return finished, studio.progress_tracker.get_stats(), manager.counts()

    finished, stats, counts = run_session(ctx, action)
    ui = ctx.obj["ui"]
    ui.display_jobs(finished, title="📷 Processed")
    ui.display_summary(stats, counts)


@main_cli.command()
@click.argument("job_ids", nargs=-1, required=True)
@click.pass_context
def delete(ctx, job_ids: Tuple[str, ...]):
    """Delete JOB_IDS and their stored images."""

    async def action(studio: StudioShot):
        manager = studio.manager
        for job_id in job_ids:
            manager.set_selected(job_id)
        return await manager.delete_selected()

    removed = run_session(ctx, action)
    click.echo(f"Deleted {len(removed)} images")


@main_cli.command()
@click.argument("job_ids", nargs=-1)
@click.option(
    "--out",
    "out_dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=Path("."),
    show_default=True,
    help="Directory for the zip archive",
)
@click.pass_context
def export(ctx, job_ids: Tuple[str, ...], out_dir: Path):
    """Zip the studio shots of JOB_IDS (default: every finished image)."""

    async def action(studio: StudioShot):
        manager = studio.manager
        if job_ids:
            for job_id in job_ids:
                manager.set_selected(job_id)
        else:
            manager.select_all(True)
        return await manager.export_selected()

    archive = run_session(ctx, action)
    out_dir.mkdir(parents=True, exist_ok=True)
    target = out_dir / archive.filename
    target.write_bytes(archive.data)
    ctx.obj["ui"].display_export(str(target), list(archive.entries))


def main():
    """Main entry point."""
    main_cli()


if __name__ == "__main__":
    main()
