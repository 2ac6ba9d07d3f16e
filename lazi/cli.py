"""Command line interface for the lazi application."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Dict, Optional

import typer
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn

from . import __version__
from . import config as config_mod
from .classifier import ContextClassifier
from .clipboard import copy_to_pasteboard
from .config import ConfigError, recordings_dir
from .errors import LaziError
from .logging_utils import setup_logging
from .models import Checking, ContextError, ContextResult, Failure, Idle, Success, Transcribing, TranscriptionFailure
from .panel import CallQueue, PanelController
from .permissions import MicrophonePermission
from .recorder import AudioRecorder
from .storage import StorageError, TranscriptStore
from .transcriber import WhisperClient

app = typer.Typer(add_completion=False, help="Record voice notes, transcribe them and recall earlier ones.")
console = Console()


def _fail(message: str) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1)


def _load_config() -> config_mod.Config:
    try:
        return config_mod.load_config()
    except ConfigError as exc:
        _fail(str(exc))


def _transcription_progress() -> Progress:
    return Progress(
        TextColumn("[bold blue]Transcribing…"),
        BarColumn(),
        TaskProgressColumn(),
        console=console,
        transient=True,
    )


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", help="Write debug output to the log file"),
    version: bool = typer.Option(False, "--version", "-v", help="Show version and exit"),
) -> None:
    if version:
        typer.echo(f"lazi v{__version__}")
        raise typer.Exit()

    setup_logging(level=logging.DEBUG if verbose else logging.INFO)

    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command()
def record(
    compressed: Optional[bool] = typer.Option(
        None, "--compressed/--uncompressed", help="Record AAC (.m4a) instead of WAV."
    ),
    check_context: bool = typer.Option(
        False, "--check-context", help="Ask whether the new note refers to earlier ones."
    ),
    copy: bool = typer.Option(False, "--copy", help="Copy the transcript to the clipboard."),
) -> None:
    """Record from the microphone until Enter is pressed, then transcribe."""

    cfg = _load_config()
    store = TranscriptStore()
    store.log_summary()

    MicrophonePermission.init()
    try:
        recorder = AudioRecorder(recordings_dir(cfg))
    except RuntimeError as exc:
        _fail(str(exc))

    transcriber = WhisperClient.from_config(cfg)
    classifier = ContextClassifier.from_config(cfg)
    calls = CallQueue()
    panel = PanelController(
        recorder,
        transcriber,
        store,
        classifier=classifier,
        dispatch=calls,
        history_limit=cfg.history_limit,
        compressed=cfg.compressed if compressed is None else compressed,
    )
    try:
        _drive_panel(panel, calls, recorder, check_context, copy)
    finally:
        transcriber.close()
        classifier.close()


def _drive_panel(
    panel: PanelController, calls: CallQueue, recorder: AudioRecorder, check_context: bool, copy: bool
) -> None:
    panel.toggle()
    if isinstance(panel.state, Failure):
        _fail(f"Recording error: {panel.state.message}")

    typer.secho(f"Recording to {recorder.session.file_path}", fg=typer.colors.BLUE)
    typer.prompt("Press Enter to stop", default="", show_default=False, prompt_suffix="")
    panel.toggle()

    if isinstance(panel.state, Idle):
        _fail("Recording could not be saved; nothing to transcribe.")

    with _transcription_progress() as progress:
        task = progress.add_task("upload", total=1.0)

        def on_change(state, _context) -> None:
            if isinstance(state, Transcribing):
                progress.update(task, completed=state.progress)

        panel.subscribe(on_change)
        calls.run_until(lambda: not isinstance(panel.state, Transcribing))

    state = panel.state
    if isinstance(state, Failure):
        _fail(f"Transcription failed: {state.message}")
    if isinstance(state, Success):
        typer.echo(state.text)
        if copy:
            _copy(panel.copy_text)

    if check_context and panel.check_context():
        with console.status("Checking context…"):
            calls.run_until(lambda: not isinstance(panel.context_state, Checking))
        _print_context(panel.context_state)


def _copy(action) -> None:
    try:
        action()
    except RuntimeError as exc:
        typer.secho(f"Could not copy to clipboard: {exc}", fg=typer.colors.YELLOW, err=True)
        return
    typer.secho("Copied to clipboard.", fg=typer.colors.BLUE)


def _print_context(context) -> None:
    if isinstance(context, ContextResult):
        if context.refers:
            typer.secho("Refers to earlier notes.", fg=typer.colors.GREEN)
        else:
            typer.echo("No reference to earlier notes.")
    elif isinstance(context, ContextError):
        typer.secho(f"Context check failed: {context.message}", fg=typer.colors.RED, err=True)


@app.command()
def transcribe(
    audio: Path = typer.Argument(..., exists=True, readable=True, help="Path to the audio file."),
    save: bool = typer.Option(True, "--save/--no-save", help="Persist transcript to the library."),
    copy: bool = typer.Option(False, "--copy", help="Copy the transcript to the clipboard."),
) -> None:
    """Transcribe an existing audio file."""

    cfg = _load_config()
    client = WhisperClient.from_config(cfg)
    try:
        with _transcription_progress() as progress:
            task = progress.add_task("upload", total=1.0)
            result = client.transcribe(audio, on_progress=lambda value: progress.update(task, completed=value))
    finally:
        client.close()

    if isinstance(result, TranscriptionFailure):
        _fail(f"Transcription failed: {result.message}")

    typer.echo(result.text)
    if copy:
        _copy(lambda: copy_to_pasteboard(result.text))
    if save:
        record = TranscriptStore().save(result.text)
        typer.secho(f"\nSaved transcript with id {record.id}.", fg=typer.colors.BLUE)


@app.command()
def check(
    text: str = typer.Argument(..., help="The new utterance."),
    limit: Optional[int] = typer.Option(None, "--limit", help="How many stored transcripts to compare with."),
) -> None:
    """Ask whether TEXT refers to previously stored transcripts."""

    cfg = _load_config()
    history = TranscriptStore().fetch_latest(limit or cfg.history_limit)
    classifier = ContextClassifier.from_config(cfg)
    try:
        with console.status("Checking context…"):
            refers = classifier.classify(text, history)
    except LaziError as exc:
        _fail(f"Context check failed: {exc}")
    finally:
        classifier.close()
    _print_context(ContextResult(refers))


@app.command("list")
def list_command(
    limit: Optional[int] = typer.Option(None, "--limit", help="Show at most this many transcripts."),
) -> None:
    """List stored transcripts, newest first."""

    rows = list(TranscriptStore().list_transcripts())
    if limit is not None:
        rows = rows[:limit]
    if not rows:
        typer.echo("No transcripts found. Use `lazi record` to create one.")
        return
    header = f"{'ID':<4}  {'Created':<20}  {'Text':<50}"
    typer.echo(header)
    typer.echo("-" * len(header))
    for record in rows:
        created = record.created_at.strftime("%Y-%m-%d %H:%M")
        preview = record.text.replace("\n", " ")[:50]
        typer.echo(f"{record.id:<4}  {created:<20}  {preview:<50}")


@app.command()
def show(
    transcript_id: int = typer.Argument(..., help="Identifier of the transcript to display."),
) -> None:
    """Show a stored transcript."""

    try:
        record = TranscriptStore().get(transcript_id)
    except StorageError as exc:
        _fail(str(exc))
    typer.echo(f"Created: {record.created_at:%Y-%m-%d %H:%M:%S}")
    typer.echo("\n" + record.text)


@app.command()
def delete(
    transcript_id: int = typer.Argument(..., help="Identifier of the transcript to delete."),
) -> None:
    """Delete a stored transcript."""

    try:
        TranscriptStore().delete(transcript_id)
    except StorageError as exc:
        _fail(str(exc))
    typer.secho(f"Transcript {transcript_id} deleted.", fg=typer.colors.BLUE)


@app.command()
def stats() -> None:
    """Show how many transcripts are stored and the most recent ones."""

    total, recent = TranscriptStore().summary()
    typer.echo(f"Total transcripts stored: {total}")
    for index, record in enumerate(recent, start=1):
        typer.echo(f"#{index}: [{record.created_at:%Y-%m-%d %H:%M}] {record.text[:80]}")


@app.command()
def config(
    openai_api_key: Optional[str] = typer.Option(None, help="API key used when OPENAI_API_KEY is not set."),
    api_base_url: Optional[str] = typer.Option(None, help="Base URL of the OpenAI compatible API."),
    transcription_model: Optional[str] = typer.Option(None, help="Model id for transcription."),
    chat_model: Optional[str] = typer.Option(None, help="Model id for context checks."),
    language: Optional[str] = typer.Option(None, help="Spoken language hint for transcription."),
    upload_timeout: Optional[float] = typer.Option(None, help="Upload timeout in seconds."),
    chat_timeout: Optional[float] = typer.Option(None, help="Context check timeout in seconds."),
    history_limit: Optional[int] = typer.Option(None, help="Transcripts compared during a context check."),
    compressed: Optional[bool] = typer.Option(
        None, "--compressed/--uncompressed", help="Default recording format."
    ),
    recordings_dir_opt: Optional[str] = typer.Option(None, "--recordings-dir", help="Where recordings are written."),
    show: bool = typer.Option(False, "--show", help="Display the active configuration."),
) -> None:
    """Update or inspect configuration settings."""

    updates: Dict[str, object] = {
        key: value
        for key, value in {
            "openai_api_key": openai_api_key,
            "api_base_url": api_base_url,
            "transcription_model": transcription_model,
            "chat_model": chat_model,
            "language": language,
            "upload_timeout": upload_timeout,
            "chat_timeout": chat_timeout,
            "history_limit": history_limit,
            "compressed": compressed,
            "recordings_dir": recordings_dir_opt,
        }.items()
        if value is not None
    }

    if show or not updates:
        cfg = _load_config()
        data = asdict(cfg)
        if data.get("openai_api_key"):
            data["openai_api_key"] = "***"
        typer.echo(json.dumps(data, indent=2, default=str))
        return

    try:
        config_mod.update_config(**updates)
    except ConfigError as exc:
        _fail(str(exc))
    typer.secho("Configuration updated.", fg=typer.colors.BLUE)


if __name__ == "__main__":  # pragma: no cover
    app()
