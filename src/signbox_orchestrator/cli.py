from __future__ import annotations

import json
import logging
from pathlib import Path
import sys
from typing import Optional

import httpx
import typer

from .config import Settings
from .errors import ApiError
from .exporter import ArtifactExporter, read_session, write_session
from .models import DocumentMetadata
from .service import SigningSessionOrchestrator
from .util import guess_content_type, parse_fields

app = typer.Typer(no_args_is_help=True, add_completion=False)


@app.callback()
def main_options(
        log_level: str = typer.Option("WARNING", help="Logging level (DEBUG, INFO, WARNING, ERROR)"),
) -> None:
    """Start and complete SignBox signing sessions."""
    logging.basicConfig(level=log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")


def _load_settings() -> Settings:
    try:
        return Settings()
    except Exception as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(code=2)


def _fail(e: ApiError) -> None:
    typer.echo(json.dumps(e.to_payload(), indent=2), err=True)
    raise typer.Exit(code=1)


@app.command()
def start(
        file: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Document to sign"),
        document_type: Optional[str] = typer.Option(None, help="Archive document type, e.g. Contract"),
        object_name: Optional[str] = typer.Option(None, help="Archive object name (defaults to the file name)"),
        field: list[str] = typer.Option([], "--field", help="Custom field as key=value (repeatable)"),
        session_out: Optional[Path] = typer.Option(None, help="Write the session JSON to this file"),
) -> None:
    """Upload a document and print the signing redirect URL."""
    settings = _load_settings()
    try:
        custom_fields = parse_fields(field)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--field")
    metadata = DocumentMetadata(
        filename=file.name,
        object_name=object_name or file.name,
        document_type=document_type,
        content_type=guess_content_type(file.name),
        custom_fields=custom_fields,
    )

    with httpx.Client(timeout=httpx.Timeout(settings.http_timeout_s)) as http:
        try:
            orchestrator = SigningSessionOrchestrator.from_settings(settings, http)
            session = orchestrator.start_session(file.read_bytes(), metadata)
        except ApiError as e:
            if session_out and e.session is not None:
                write_session(e.session, session_out)
            _fail(e)

    if session_out:
        write_session(session, session_out)
    typer.echo(session.model_dump_json(indent=2))


@app.command()
def complete(
        session_file: Path = typer.Argument(..., exists=True, dir_okay=False, help="Session JSON written by 'start'"),
        version: Optional[str] = typer.Option(None, help="Archive document version (default: latest)"),
        out: Path = typer.Option(Path("./out"), help="Output directory"),
) -> None:
    """Download the signed artifact once the user returned from signing."""
    settings = _load_settings()
    session = read_session(session_file)

    with httpx.Client(timeout=httpx.Timeout(settings.http_timeout_s)) as http:
        try:
            orchestrator = SigningSessionOrchestrator.from_settings(settings, http)
            stream = orchestrator.complete_session(session, version=version)
            out_path = ArtifactExporter(out).write(session.document_id or "document", stream, session.filename)
        except ApiError as e:
            write_session(session, session_file)
            _fail(e)

    write_session(session, session_file)
    typer.echo(json.dumps({"status": session.status.value, "document_id": session.document_id, "file": str(out_path)}, indent=2))


def main() -> None:
    app()


if __name__ == "__main__":
    sys.exit(main())
