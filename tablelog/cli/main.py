"""Command line interface for stored log records."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, NoReturn

import click
from pydantic import ValidationError as PydanticValidationError

from tablelog.exceptions import RepositoryError, SchemaError
from tablelog.models.base import create_engine_for_settings
from tablelog.models.repository import LogRepository
from tablelog.models.schema import SchemaManager
from tablelog.pipeline.logger import ChannelLogger
from tablelog.pipeline.registry import ChannelRegistry, DefaultLoggerFactory, set_registry
from tablelog.schemas.record import Level
from tablelog.utils.config import ConsoleSettings, GlobalSettings, get_settings
from tablelog.utils.logging import set_diagnostics_level

from .output import CHANNEL_FORMATS, LIST_FORMATS, format_items, parse_fields

DEFAULT_LIST_FIELDS = "id,channel,level_name,message,created_at"
CLI_CHANNEL = "tablelog"


@dataclass
class CliState:
    """Lazily built services shared by the subcommands."""

    settings: GlobalSettings
    database_url: str | None = None
    timezone: str | None = None
    debug: bool = False
    _repository: LogRepository | None = field(default=None, repr=False)
    _schema_manager: SchemaManager | None = field(default=None, repr=False)
    _registry: ChannelRegistry | None = field(default=None, repr=False)

    @property
    def repository(self) -> LogRepository:
        if self._repository is None:
            engine = create_engine_for_settings(self.settings, database_url=self.database_url)
            self._repository = LogRepository(
                engine,
                timezone=self.timezone or self.settings.resolved_timezone(),
            )
        return self._repository

    @property
    def schema_manager(self) -> SchemaManager:
        if self._schema_manager is None:
            self._schema_manager = SchemaManager(self.repository.engine)
        return self._schema_manager

    def channel_logger(self, channel: str = CLI_CHANNEL) -> ChannelLogger:
        """Return a channel logger that also echoes to the terminal."""

        if self._registry is None:
            console = ConsoleSettings(
                enabled=True,
                level=self.settings.console.level,
                debug=self.debug or self.settings.console.debug,
            )
            factory = DefaultLoggerFactory(
                self.repository,
                settings=self.settings.model_copy(update={"console": console}),
                schema_manager=self.schema_manager,
            )
            self._registry = ChannelRegistry(factory)
            set_registry(self._registry)
        return self._registry.get(channel)


def _state(ctx: click.Context) -> CliState:
    state = ctx.find_object(CliState)
    if state is None:
        raise click.UsageError("tablelog commands must be invoked through the tablelog group")
    return state


def _fail(message: str) -> NoReturn:
    click.echo(f"Error: {message}", err=True)
    raise click.Abort()


@click.group()
@click.option(
    "--database-url", default=None, help="Database URL (defaults to TABLELOG_DATABASE_URL)"
)
@click.option("--timezone", "tz_name", default=None, help="IANA timezone for local timestamps")
@click.option("--debug", is_flag=True, help="Show debug output, including executed queries")
@click.pass_context
def cli(ctx: click.Context, database_url: str | None, tz_name: str | None, debug: bool) -> None:
    """Inspect and purge log records stored by tablelog."""

    if debug:
        set_diagnostics_level("DEBUG")
    ctx.obj = CliState(
        settings=get_settings(),
        database_url=database_url,
        timezone=tz_name,
        debug=debug,
    )


@cli.command()
@click.pass_context
def install(ctx: click.Context) -> None:
    """Create or upgrade the log table."""

    state = _state(ctx)
    try:
        applied = state.schema_manager.ensure_schema()
    except SchemaError as exc:
        _fail(str(exc))

    version = state.schema_manager.installed_version()
    if applied:
        click.secho(f"Success: Installed log table schema version {version}.", fg="green")
    else:
        click.echo(f"Log table schema already at version {version}.")


@cli.command("list")
@click.option("--channel", default=None, help="Exact channel name")
@click.option("--level", default=None, help="Exact level (number or name)")
@click.option("--level-name", default=None, help="Exact level name")
@click.option("--message", default=None, help="Case-insensitive message substring")
@click.option("--site-id", type=int, default=None, help="Only records from this site")
@click.option("--after", default=None, help="Created at or after (e.g. 2024-01-31, '7 days ago')")
@click.option("--before", default=None, help="Created at or before")
@click.option("--paged", type=int, default=1, show_default=True, help="Page of results")
@click.option(
    "--per-page", type=int, default=10, show_default=True, help="Records per page (0 = all)"
)
@click.option("--order-by", default="id", show_default=True, help="Column used for sorting")
@click.option("--order", default="DESC", show_default=True, help="ASC or DESC")
@click.option(
    "--fields", default=DEFAULT_LIST_FIELDS, show_default=True, help="Comma separated fields"
)
@click.option(
    "--format",
    "output_format",
    type=click.Choice(LIST_FORMATS),
    default="table",
    show_default=True,
)
@click.pass_context
def list_records(
    ctx: click.Context,
    fields: str,
    output_format: str,
    **filters: Any,
) -> None:
    """
    List log records stored in the database.

    Default fields are id, channel, level_name, message and created_at;
    level, extra, context and created_at_gmt are also available.

    Examples:

        tablelog list --channel auth --level-name ERROR

        tablelog list --after "7 days ago" --per-page 0 --format count

        tablelog list --fields id,message,context --format json
    """
    state = _state(ctx)
    selected = ["id"] if output_format == "ids" else parse_fields(fields)

    try:
        records = state.repository.find_by_query(filters)
    except (PydanticValidationError, ValueError) as exc:
        raise click.UsageError(str(exc)) from exc
    except RepositoryError as exc:
        _fail(str(exc))

    format_items(output_format, [record.to_dict() for record in records], selected)


@cli.command("list-channels")
@click.option("--site-id", type=int, default=None, help="Only channels used on this site")
@click.option(
    "--format",
    "output_format",
    type=click.Choice(CHANNEL_FORMATS),
    default="table",
    show_default=True,
)
@click.pass_context
def list_channels(ctx: click.Context, site_id: int | None, output_format: str) -> None:
    """List log channels with their record count and last record time."""

    state = _state(ctx)
    try:
        channels = state.repository.find_channels({"site_id": site_id})
    except RepositoryError as exc:
        _fail(str(exc))

    format_items(
        output_format,
        [summary.to_dict() for summary in channels],
        ["channel", "count", "last_record"],
    )


@cli.command("get")
@click.argument("record_id", type=int)
@click.pass_context
def get_record(ctx: click.Context, record_id: int) -> None:
    """Show a single record as JSON."""

    state = _state(ctx)
    try:
        record = state.repository.get(record_id)
    except RepositoryError as exc:
        _fail(str(exc))

    if record is None:
        _fail(f"Record with ID {record_id} not found.")
    click.echo(json.dumps(record.to_dict(), indent=4, ensure_ascii=False, default=str))


@cli.command("purge-records")
@click.argument("max_age", type=int, required=False)
@click.option("--dry-run", is_flag=True, help="Only report how many records would be deleted")
@click.option("--site-id", type=int, default=None, help="Only purge records from this site")
@click.pass_context
def purge_records(
    ctx: click.Context,
    max_age: int | None,
    dry_run: bool,
    site_id: int | None,
) -> None:
    """
    Delete records older than MAX_AGE days (default 90).

    Records created before midnight, MAX_AGE days ago, in the configured
    timezone are removed.
    """
    state = _state(ctx)
    max_age_days = state.settings.purge_max_age_days if max_age is None else max_age
    if max_age_days < 0:
        raise click.BadParameter("MAX_AGE must be zero or a positive number of days")

    repository = state.repository
    cutoff = datetime.now(repository.timezone).date() - timedelta(days=max_age_days)
    filters: dict[str, Any] = {"before": cutoff, "per_page": 0, "site_id": site_id}

    try:
        if dry_run:
            matched = len(repository.find_by_query(filters))
            click.secho(
                f"Success: Using --dry-run: {matched} old log record(s) older than "
                f"{max_age_days} days would've been deleted.",
                fg="green",
            )
            return
        deleted = repository.delete_by_query(filters) or 0
    except RepositoryError as exc:
        _fail(str(exc))

    click.secho(
        f"Success: Deleted {deleted} old log record(s) older than {max_age_days} days.",
        fg="green",
    )
    if deleted:
        state.channel_logger().log(
            Level.NOTICE,
            "Purged {deleted} log record(s) created before {cutoff}",
            {"deleted": deleted, "cutoff": cutoff, "site_id": site_id},
        )


if __name__ == "__main__":
    cli()
