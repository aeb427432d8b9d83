"""Entry-point for the AudioScholar service."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Optional

import typer
import uvicorn

from audioscholar.bootstrap import initialize_app
from audioscholar.logging_utils import DEFAULT_LOG_FORMAT, configure_logging, get_log_file_path
from audioscholar.processing import FasterWhisperTranscription
from audioscholar.services.storage import AudioScholarRepository
from audioscholar.ui.overview import OverviewUI
from audioscholar.web import create_app


LOGGER = logging.getLogger("audioscholar.cli")


cli = typer.Typer(add_completion=False, help="AudioScholar management commands")


DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000


def _prepare_logging(storage_root: Path) -> None:
    log_file = get_log_file_path(storage_root)
    formatter = logging.Formatter(DEFAULT_LOG_FORMAT)
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    configure_logging(handlers=[file_handler, stream_handler])


def _normalize_root_path(root_path: Optional[str]) -> str:
    if root_path is None:
        return ""
    normalized = root_path.strip()
    if not normalized:
        return ""
    if not normalized.startswith("/"):
        normalized = f"/{normalized}"
    return normalized.rstrip("/")


@cli.callback(invoke_without_command=True)
def main(ctx: typer.Context) -> None:
    """Launch the API server when no explicit command is provided."""

    if ctx.invoked_subcommand is None:
        ctx.invoke(serve, host=DEFAULT_HOST, port=DEFAULT_PORT, root_path=None)


@cli.command()
def serve(
    host: str = typer.Option(DEFAULT_HOST, help="Host interface for the API server"),
    port: int = typer.Option(DEFAULT_PORT, help="Port for the API server"),
    root_path: Optional[str] = typer.Option(
        None,
        help="Prefix the application expects when mounted behind a proxy",
        envvar="AUDIOSCHOLAR_ROOT_PATH",
    ),
) -> None:
    """Run the AudioScholar REST API."""

    app_config = initialize_app()
    _prepare_logging(app_config.storage_root)

    repository = AudioScholarRepository(app_config)
    normalized_root = _normalize_root_path(root_path)
    app = create_app(repository, config=app_config, root_path=normalized_root)

    server_config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_config=None,
        root_path=normalized_root,
    )
    server = uvicorn.Server(server_config)
    app.state.server = server
    LOGGER.info("Serving AudioScholar on http://%s:%s%s", host, port, normalized_root or "/")
    server.run()


@cli.command()
def overview() -> None:
    """Render users, recordings and their processing status."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = AudioScholarRepository(config)
    OverviewUI(repository, timeout_seconds=config.processing.upload_timeout_seconds).run()


@cli.command("grant-role")
def grant_role(
    email: str = typer.Argument(..., help="Email address of the account"),
    role: str = typer.Option("ROLE_ADMIN", "--role", "-r", help="Role to add"),
) -> None:
    """Add *role* to the account registered under *email*."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    repository = AudioScholarRepository(config)
    user = repository.find_user_by_email(email)
    if user is None:
        typer.echo(f"No user registered with email {email}", err=True)
        raise typer.Exit(code=1)

    cleaned = role.strip()
    if not cleaned:
        raise typer.BadParameter("Role must not be blank.", param_hint="--role")
    if cleaned in user.roles:
        typer.echo(f"{email} already has {cleaned}.")
        return

    repository.set_user_roles(user.id, [*user.roles, cleaned])
    LOGGER.info("Granted %s to user %s", cleaned, user.id)
    typer.echo(f"Granted {cleaned} to {email}.")


@cli.command("transcribe-audio")
def transcribe_audio(
    audio: Path = typer.Argument(
        ...,
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
        help="Path to the audio file to transcribe.",
    ),
    whisper_model: Optional[str] = typer.Option(None, help="Whisper model size to download"),
) -> None:
    """Transcribe *audio* with the same engine the upload pipeline uses."""

    config = initialize_app()
    _prepare_logging(config.storage_root)

    transcription = FasterWhisperTranscription(whisper_model or config.processing.whisper_model)

    audio_path = audio.resolve()
    output_dir = audio_path.parent / f"{audio_path.stem}_transcription"
    output_dir.mkdir(parents=True, exist_ok=True)

    typer.echo(f"Transcribing audio: {audio_path}")
    result = transcription.transcribe(audio_path, output_dir)

    final_transcript = audio_path.parent / f"{audio_path.stem}_transcript.txt"
    shutil.copy2(result.text_path, final_transcript)
    typer.echo(f"Transcript saved to: {final_transcript}")


if __name__ == "__main__":
    cli()
