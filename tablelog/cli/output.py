"""Output formatting for the tablelog CLI."""

from __future__ import annotations

import csv
import io
import json
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Final

import click
import yaml
from rich import box
from rich.console import Console
from rich.table import Table

LIST_FORMATS: Final[tuple[str, ...]] = ("table", "csv", "json", "yaml", "ids", "count")
CHANNEL_FORMATS: Final[tuple[str, ...]] = ("table", "csv", "json", "yaml")


def parse_fields(fields: str | Sequence[str]) -> list[str]:
    """Split a comma separated field list, dropping blanks."""

    if isinstance(fields, str):
        fields = fields.split(",")
    return [field.strip() for field in fields if field.strip()]


def pick_fields(item: Mapping[str, Any], fields: Sequence[str]) -> dict[str, Any]:
    """Keep only the requested keys, in the requested order."""

    return {field: item.get(field) for field in fields if field in item}


def _cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (Mapping, list)):
        return json.dumps(value, ensure_ascii=False, default=str)
    return str(value)


def render_table(items: Sequence[Mapping[str, Any]], fields: Sequence[str]) -> None:
    """Render items as a rich table on standard output."""

    console = Console(soft_wrap=True)
    table = Table(box=box.SIMPLE_HEAVY)
    for field in fields:
        table.add_column(field, overflow="fold")
    for item in items:
        table.add_row(*(_cell(item.get(field)) for field in fields))
    console.print(table)


def render_csv(items: Sequence[Mapping[str, Any]], fields: Sequence[str]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(fields), extrasaction="ignore")
    writer.writeheader()
    for item in items:
        writer.writerow({field: _cell(item.get(field)) for field in fields})
    return buffer.getvalue()


def format_items(
    output_format: str,
    items: Iterable[Mapping[str, Any]],
    fields: Sequence[str],
) -> None:
    """
    Print items in one of the supported output formats.

    Args:
        output_format: One of ``LIST_FORMATS``
        items: Mappings to print (already restricted to ``fields`` or not)
        fields: Columns to show, in order
    """
    rows = [pick_fields(item, fields) for item in items]

    if output_format == "count":
        click.echo(len(rows))
    elif output_format == "ids":
        click.echo(" ".join(str(row.get("id")) for row in rows))
    elif output_format == "json":
        click.echo(json.dumps(rows, ensure_ascii=False, default=str))
    elif output_format == "yaml":
        click.echo(
            yaml.safe_dump(
                json.loads(json.dumps(rows, default=str)),
                sort_keys=False,
                allow_unicode=True,
            ),
            nl=False,
        )
    elif output_format == "csv":
        click.echo(render_csv(rows, fields), nl=False)
    elif output_format == "table":
        render_table(rows, fields)
    else:
        raise click.BadParameter(
            f"Unsupported format '{output_format}'. Choose from: {', '.join(LIST_FORMATS)}",
            param_hint="--format",
        )
