"""Table commands -- CRUD on any table through the Table API.

Typical workflow::

    snowkit table list incident --query active=true --fields number,short_description --limit 10
    snowkit table get incident 9d385017c611228701d22104cc95c371
    snowkit table create incident --field short_description="Disk full" --field urgency=2
    snowkit table update incident <sys_id> --data '{"state": "6"}'
    snowkit table delete incident <sys_id> --force
    snowkit table count incident --query active=true --group-by priority
"""

from __future__ import annotations

from typing import Any, Optional

import typer

from snowkit.commands.common import cli_errors, connect, parse_json_object, parse_pairs
from snowkit.output import format_response, info, print_records, success

table_app = typer.Typer(no_args_is_help=True)


def _record_from_options(data: Optional[str], field: Optional[list[str]]) -> dict[str, Any]:
    record: dict[str, Any] = parse_json_object(data, "--data") if data else {}
    record.update(parse_pairs(field or [], "--field"))
    if not record:
        raise typer.BadParameter("provide --data or at least one --field")
    return record


@table_app.command("list")
def table_list(
    ctx: typer.Context,
    table: str = typer.Argument(help="Table name, e.g. incident."),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Encoded query."),
    fields: Optional[str] = typer.Option(
        None, "--fields", help="Comma-separated field names to return."
    ),
    limit: Optional[int] = typer.Option(None, "--limit", "-l", min=1, help="Maximum records."),
    offset: Optional[int] = typer.Option(None, "--offset", min=0, help="Records to skip."),
    display_value: Optional[str] = typer.Option(
        None, "--display-value", help="true, false, or all."
    ),
) -> None:
    """List records of a table."""
    field_list = [f.strip() for f in fields.split(",") if f.strip()] if fields else None
    with cli_errors(), connect(ctx) as sn:
        records = sn.table(table).list(
            query=query,
            fields=field_list,
            limit=limit,
            offset=offset,
            display_value=display_value,
        )
    if not records:
        info(f"No records found in {table}.")
        return
    print_records(records, title=table)


@table_app.command("get")
def table_get(
    ctx: typer.Context,
    table: str = typer.Argument(help="Table name."),
    sys_id: str = typer.Argument(help="Record sys_id."),
) -> None:
    """Show one record."""
    with cli_errors(), connect(ctx) as sn:
        format_response(sn.table(table).get(sys_id))


@table_app.command("create")
def table_create(
    ctx: typer.Context,
    table: str = typer.Argument(help="Table name."),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Record as a JSON object."),
    field: Optional[list[str]] = typer.Option(
        None, "--field", "-f", help="Field as key=value. Repeatable."
    ),
) -> None:
    """Create a record."""
    record = _record_from_options(data, field)
    with cli_errors(), connect(ctx) as sn:
        created = sn.table(table).create(record)
    success(f"Created {table} record {_sys_id(created)}")
    format_response(created)


@table_app.command("update")
def table_update(
    ctx: typer.Context,
    table: str = typer.Argument(help="Table name."),
    sys_id: str = typer.Argument(help="Record sys_id."),
    data: Optional[str] = typer.Option(None, "--data", "-d", help="Fields as a JSON object."),
    field: Optional[list[str]] = typer.Option(
        None, "--field", "-f", help="Field as key=value. Repeatable."
    ),
) -> None:
    """Update fields of a record."""
    record = _record_from_options(data, field)
    with cli_errors(), connect(ctx) as sn:
        updated = sn.table(table).update(sys_id, record)
    success(f"Updated {table} record {sys_id}")
    format_response(updated)


@table_app.command("delete")
def table_delete(
    ctx: typer.Context,
    table: str = typer.Argument(help="Table name."),
    sys_id: str = typer.Argument(help="Record sys_id."),
    force: bool = typer.Option(False, "--force", help="Skip the confirmation prompt."),
) -> None:
    """Delete a record."""
    if not force and not typer.confirm(f"Delete {table} record {sys_id}?"):
        info("Cancelled.")
        raise typer.Exit()
    with cli_errors(), connect(ctx) as sn:
        sn.table(table).delete(sys_id)
    success(f"Deleted {table} record {sys_id}")


@table_app.command("count")
def table_count(
    ctx: typer.Context,
    table: str = typer.Argument(help="Table name."),
    query: Optional[str] = typer.Option(None, "--query", "-q", help="Encoded query."),
    group_by: Optional[str] = typer.Option(
        None, "--group-by", "-g", help="Count per value of this field."
    ),
) -> None:
    """Count records through the Aggregate API."""
    with cli_errors(), connect(ctx) as sn:
        stats = sn.aggregate(table)
        if group_by:
            counts = stats.count_by(group_by, query)
        else:
            total = stats.count(query)
    if group_by:
        print_records([{group_by: value, "count": n} for value, n in counts.items()], title=table)
    else:
        format_response({"table": table, "count": total})


def _sys_id(record: Any) -> str:
    if isinstance(record, dict):
        return str(record.get("sys_id", ""))
    return ""
