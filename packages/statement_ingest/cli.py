"""CLI for the ``statement_ingest`` package.

Typer-based console interface over :mod:`statement_ingest.api`. A local
``.env`` is loaded with ``python-dotenv`` before any command runs (existing
environment variables win), so ``DATABASE_URL`` and the ``SI_*`` settings can
live there.

Commands
--------
- ``parse FILE``: print the review payload for a statement as JSON.
- ``add-account NAME``: create an account in the database and print its id.
- ``import FILE --account-id ID``: parse a statement and import every
  transaction into the account.
"""

from __future__ import annotations

import dataclasses
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Annotated, Any

import typer
from dotenv import load_dotenv

from .logging_setup import configure_logging

# ---- Small module-level helpers used by CLI commands -------------------------


def _fail(message: str, code: int = 1) -> typer.Exit:
    print(f"Error: {message}", file=sys.stderr)
    return typer.Exit(code)


def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        raise _fail(f"File not found: {path}") from None
    except PermissionError:
        raise _fail(f"Permission denied: {path}") from None
    except IsADirectoryError:
        raise _fail(f"Not a file: {path}") from None


def _options(ctx: typer.Context) -> dict[str, Any]:
    return ctx.obj if isinstance(ctx.obj, dict) else {}


def _parse_or_exit(path: Path, mime_type: str | None, *, preview_limit: int | None = None):
    # Deferred imports keep `--help` fast
    from .api import parse_statement
    from .config import IngestSettings
    from .errors import CorruptFile, IngestError

    try:
        settings = IngestSettings.from_env()
    except ValueError as e:
        raise _fail(f"invalid configuration: {e}") from None
    if preview_limit is not None:
        settings = dataclasses.replace(settings, preview_limit=preview_limit)

    data = _read_file(path)
    try:
        return parse_statement(data, path.name, mime_type, settings=settings)
    except CorruptFile as e:
        raise _fail(e.user_message(debug=settings.debug)) from None
    except IngestError as e:
        raise _fail(str(e)) from None


def _repository(ctx: typer.Context):
    from .persistence import SqlAlchemyRepository

    return SqlAlchemyRepository(database_url=_options(ctx).get("database_url"))


# ---- Typer-based console interface -------------------------------------------


app = typer.Typer(
    name="statement-ingest",
    no_args_is_help=True,
    add_completion=False,
    help=(
        "Parse bank statements (CSV, Excel, PDF, OFX) and import transactions into "
        "an account. Loads DATABASE_URL and SI_* settings from a local .env."
    ),
)


@app.command("parse")
def parse_cmd(
    file: Annotated[Path, typer.Argument(help="Statement file to parse.", dir_okay=False)],
    *,
    mime_type: Annotated[
        str | None, typer.Option("--mime-type", help="Declared MIME type of the file.")
    ] = None,
    limit: Annotated[
        int | None,
        typer.Option("--limit", min=0, help="Preview size (0 = all). Defaults to SI_PREVIEW_LIMIT."),
    ] = None,
) -> None:
    """Print the review payload (parse job id, preview, errors) as JSON."""

    from .models import amounts_total

    job = _parse_or_exit(file, mime_type, preview_limit=limit)
    typer.echo(json.dumps(job.to_response(), indent=2))
    print(
        f"{job.total_transactions} transaction(s), net {amounts_total(job.transactions)}, "
        f"{len(job.preview_data.errors)} warning(s)",
        file=sys.stderr,
    )


@app.command("add-account")
def add_account_cmd(
    ctx: typer.Context,
    name: Annotated[str, typer.Argument(help="Display name of the account.")],
    *,
    account_type: Annotated[
        str, typer.Option("--type", help="Account type (e.g. checking, savings, credit).")
    ] = "checking",
    balance: Annotated[str, typer.Option("--balance", help="Opening balance.")] = "0",
    institution: Annotated[
        str | None, typer.Option("--institution", help="Institution name.")
    ] = None,
    masked_number: Annotated[
        str | None, typer.Option("--masked-number", help="Masked account number, e.g. ****1234.")
    ] = None,
) -> None:
    """Create an account and print its id."""

    from .api import create_account

    try:
        opening = Decimal(balance.replace(",", ""))
    except InvalidOperation:
        raise _fail(f"invalid balance: {balance!r}") from None
    try:
        account = create_account(
            _repository(ctx),
            name,
            account_type,
            balance=opening,
            masked_number=masked_number,
            institution_name=institution,
        )
    except ValueError as e:
        raise _fail(str(e)) from None
    typer.echo(account.id)


@app.command("import")
def import_cmd(
    ctx: typer.Context,
    file: Annotated[Path, typer.Argument(help="Statement file to import.", dir_okay=False)],
    *,
    account_id: Annotated[str, typer.Option("--account-id", help="Target account id.")],
    mime_type: Annotated[
        str | None, typer.Option("--mime-type", help="Declared MIME type of the file.")
    ] = None,
    update_balance: Annotated[
        bool,
        typer.Option(
            "--update-balance/--no-update-balance",
            help="Set the account balance from the statement's latest balance snapshot.",
        ),
    ] = False,
) -> None:
    """Parse FILE and import all of its transactions into the account."""

    from .api import import_transactions
    from .errors import IngestError

    job = _parse_or_exit(file, mime_type)
    for warning in job.preview_data.errors:
        print(f"Warning: {warning}", file=sys.stderr)

    try:
        result = import_transactions(
            _repository(ctx),
            account_id,
            job.transactions,
            update_account_balance=update_balance,
        )
    except IngestError as e:
        raise _fail(str(e)) from None
    typer.echo(json.dumps(result.to_dict()))


@app.callback(invoke_without_command=True)
def _root(
    ctx: typer.Context,
    *,
    database_url: Annotated[
        str | None,
        typer.Option("--database-url", help="Override DATABASE_URL (falls back to env var)."),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level", help="Logging level (defaults to STATEMENT_INGEST_LOG_LEVEL or INFO)."
        ),
    ] = None,
) -> None:
    """Root command: load ``.env``, configure logging, stash global options."""

    # Load environment from .env in CWD (override=False to keep existing env)
    load_dotenv(dotenv_path=Path.cwd() / ".env", override=False)

    # Central logging setup so child loggers inherit configuration
    configure_logging(log_level)

    ctx.obj = {"database_url": database_url}

    if ctx.invoked_subcommand is None:
        typer.echo("No subcommand provided. Use --help to see available commands.")
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    # Running as a module: `python -m statement_ingest.cli`
    main()
