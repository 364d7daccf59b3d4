"""Entry-point for the Lecture Notes application."""

from __future__ import annotations

import inspect
import logging
from enum import Enum
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from lecture_notes.bootstrap import initialize_app
from lecture_notes.config import AppConfig
from lecture_notes.logging_utils import build_handlers, configure_logging, get_log_file_path
from lecture_notes.processing import (
    TranscriptionError,
    build_note_generator,
    build_transcription_engine,
)
from lecture_notes.services.fallback import build_storage
from lecture_notes.services.ingestion import IngestionError, RecordingProcessor
from lecture_notes.ui.console import ConsoleUI
from lecture_notes.ui.modern import ModernUI
from lecture_notes.web.server import create_app, get_max_upload_bytes


LOGGER = logging.getLogger("lecture_notes.cli")


cli = typer.Typer(add_completion=False, help="Lecture Notes management commands")


def _prepare_logging(storage_root: Path) -> None:
    configure_logging(handlers=build_handlers(get_log_file_path(storage_root)))


def _startup() -> AppConfig:
    """Load the configuration, prepare storage and start file logging."""

    config = initialize_app()
    _prepare_logging(config.storage_root)
    return config


class UIStyle(str, Enum):
    MODERN = "modern"
    CONSOLE = "console"


style_option = typer.Option(
    UIStyle.MODERN,
    "--style",
    "-s",
    help="Select the overview presentation style.",
    show_default=True,
)


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the web server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip().rstrip("/")
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the web server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the web server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="LECTURE_NOTES_ROOT_PATH",
    ),
) -> None:
    """Run the JSON API server."""

    app_config = _startup()

    storage = build_storage(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(storage, config=app_config, root_path=normalized_root)

    config_kwargs = {}
    max_upload_bytes = get_max_upload_bytes()
    if max_upload_bytes > 0:
        config_signature = inspect.signature(uvicorn.Config.__init__)
        if "limit_max_request_size" in config_signature.parameters:
            config_kwargs["limit_max_request_size"] = max_upload_bytes
        else:
            LOGGER.debug("uvicorn.Config has no 'limit_max_request_size'; relying on app limit")

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
        **config_kwargs,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving Lecture Notes API on http://%s:%s%s/api", host, port, normalized_root)
    server.run()


@cli.command()
def overview(style: UIStyle = style_option) -> None:
    """Render an overview of stored recordings using the chosen UI style."""

    config = _startup()

    storage = build_storage(config)
    if style is UIStyle.MODERN:
        ui = ModernUI(storage)
    else:
        ui = ConsoleUI(storage)
    ui.run()


@cli.command()
def transcribe_audio(
    audio: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="Path to the audio file to transcribe.",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output",
        "-o",
        help="Where to write the transcript (defaults to <audio>_transcript.txt).",
    ),
) -> None:
    """Transcribe a local audio file with the configured provider."""

    config = _startup()

    typer.echo(f"Transcribing audio: {audio} (provider: {config.transcription_provider})")
    engine = build_transcription_engine(config)
    try:
        result = engine.transcribe(audio)
    except TranscriptionError as error:
        typer.echo(f"Transcription failed: {error}")
        raise typer.Exit(code=1) from error

    target = output or audio.parent / f"{audio.stem}_transcript.txt"
    target.write_text(result.text, encoding="utf-8")
    typer.echo(f"Transcript saved to: {target}")
    if result.duration:
        typer.echo(f"Audio duration: {result.duration:.0f}s")


@cli.command()
def generate_notes(
    recording_id: int = typer.Argument(..., help="Identifier of a transcribed recording."),
) -> None:
    """Generate study notes for a stored, transcribed recording."""

    config = _startup()

    storage = build_storage(config)
    processor = RecordingProcessor(config, storage, note_writer=build_note_generator(config))
    try:
        note = processor.generate_notes(recording_id)
    except IngestionError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error
    except Exception as error:
        typer.echo(f"Note generation failed: {error}")
        raise typer.Exit(code=1) from error

    typer.echo(note.content)


if __name__ == "__main__":
    cli()
