"""Output formatters for human-readable and JSON output."""

import json
import sys
from typing import Any

import click

from .oauth.tokens import ServiceToken


def _dump(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str)


def json_success(data: Any) -> str:
    """Wrap data in the {"success": true, "data": ...} envelope."""
    return _dump({"success": True, "data": data})


def json_failure(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    """Describe an error in the {"success": false, "error": {...}} envelope.

    Only the exception type and message are reported, never a traceback.
    """
    return _dump(
        {
            "success": False,
            "error": {
                "type": error_type or type(error).__name__,
                "message": str(error),
                "help": help_text or "",
            },
        }
    )


def service_token_summary(token: ServiceToken) -> dict[str, Any]:
    """Describe a service token without its bearer credential."""
    return {
        "token_id": token.token_id,
        "authentication_url": token.authentication_url,
        "services": {s.service_type: s.service_endpoint for s in token.supported_services},
        "expiration": token.expiration,
    }


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Output success response."""
        if self.json_mode:
            click.echo(json_success(data))
        elif human_message:
            click.echo(human_message)
        else:
            click.echo(json.dumps(data, indent=2, default=str))

    def info(self, message: str) -> None:
        """Output a progress message (stderr in JSON mode, to keep stdout parseable)."""
        click.echo(message, err=self.json_mode)

    def warning(self, message: str) -> None:
        """Output a warning on stderr."""
        click.secho(f"Warning: {message}", fg="yellow", err=True)

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> None:
        """Output error response and exit with status 1."""
        if self.json_mode:
            click.echo(json_failure(error, error_type, help_text))
        else:
            click.secho(f"Error: {error}", fg="red", err=True)
            if help_text:
                click.echo(f"\n{help_text}", err=True)
        sys.exit(1)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Output a table (human mode only, JSON mode outputs raw data)."""
        if self.json_mode:
            click.echo(json_success([dict(zip(headers, row)) for row in rows]))
            return

        widths = [len(h) for h in headers]
        for row in rows:
            for i, cell in enumerate(row):
                widths[i] = max(widths[i], len(str(cell)))

        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))

        for row in rows:
            click.echo("  ".join(str(c).ljust(widths[i]) for i, c in enumerate(row)))
