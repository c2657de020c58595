from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer

from .aggregation import ReportSnapshot
from .config import as_dict as config_as_dict, get_config
from .models import Role, ValidationError
from .policy import Actor, PermissionDeniedError
from .reports import generate_pdf_report, generate_report_plots
from .services import (
    build_throw_report,
    list_training_sessions,
    load_actor,
    seed_demo_data,
    session_status_counts,
)
from .storage import PersistenceError, ThrowsStore

app = typer.Typer(help="Plan, log, and report on throwing training sessions.")


def _fail(message: str, *, code: int = 1) -> None:
    typer.secho(message, fg=typer.colors.RED, err=True)
    raise typer.Exit(code=code)


def _store(db_file: Optional[Path]) -> ThrowsStore:
    return ThrowsStore(db_file)


def _actor(store: ThrowsStore, user_id: str) -> Actor:
    user = store.get_user(user_id)
    if user is None:
        _fail(f"Unknown user {user_id!r}.")
    return load_actor(store, user["id"], Role(user["role"]))


def _snapshot(
    store: ThrowsStore,
    user_id: str,
    athlete: Optional[str],
    days: Optional[int],
) -> ReportSnapshot:
    actor = _actor(store, user_id)
    try:
        return build_throw_report(store, actor, athlete_id=athlete, window_days=days)
    except PermissionDeniedError as exc:
        _fail(str(exc), code=2)
    except ValidationError as exc:
        raise typer.BadParameter(str(exc), param_name="days") from exc


def render_summary_table(snapshot: ReportSnapshot) -> str:
    """Render the summary and per-day bests as a fixed-width table."""
    summary = snapshot.summary
    lines = [
        f"Window: last {snapshot.window_days} days ({snapshot.window.start.date()} – {snapshot.window.end.date()})",
        f"Throws: {summary.total_throws} total, {summary.valid_throws} valid, "
        f"{summary.total_fouls} fouls ({summary.foul_rate_pct:.1f}%)",
        f"Best: {summary.best_distance:.2f} m  Average: {summary.average_distance:.2f} m",
    ]
    series = snapshot.distance_progression
    if series.labels:
        width = max(len(label) for label in series.labels)
        lines.append("")
        lines.append(f"{'DATE'.ljust(width)}  BEST")
        lines.extend(f"{label.ljust(width)}  {value:.2f}" for label, value in zip(series.labels, series.values))
    if snapshot.foul_breakdown.labels:
        lines.append("")
        lines.append(
            "Fouls: "
            + ", ".join(
                f"{label} x{int(value)}"
                for label, value in zip(snapshot.foul_breakdown.labels, snapshot.foul_breakdown.values)
            )
        )
    if snapshot.recent_logs:
        lines.append("")
        lines.append("Recent throws:")
        for item in snapshot.recent_logs:
            distance = f"{item.distance:.2f} m" if item.distance is not None else "-"
            lines.append(
                f"  {item.created_at:%Y-%m-%d %H:%M}  {item.athlete_label}  {item.drill_label}  {distance}  {item.status}"
            )
    return "\n".join(lines)


@app.command("init-db")
def init_db(
    db_file: Optional[Path] = typer.Option(None, "--db-file", help="SQLite database path."),
) -> None:
    """Create the database schema if it does not exist yet."""
    store = _store(db_file)
    store.ensure_schema()
    typer.echo(f"Database ready at {store.db_path}")


@app.command()
def seed(
    db_file: Optional[Path] = typer.Option(None, "--db-file", help="SQLite database path."),
) -> None:
    """Insert demo users, a completed session and an assigned workout."""
    store = _store(db_file)
    try:
        ids = seed_demo_data(store)
    except (ValidationError, PersistenceError) as exc:
        _fail(f"Could not seed demo data: {exc}")
    typer.echo(json.dumps(ids, indent=2))


@app.command()
def report(
    user: str = typer.Option(..., "--user", "-u", help="Id of the coach or athlete requesting the report."),
    athlete: Optional[str] = typer.Option(None, "--athlete", "-a", help="Limit to one athlete id."),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Time range in days (e.g. 7, 30, 90, 365)."),
    as_json: bool = typer.Option(False, "--json", help="Print the chart payload as JSON."),
    db_file: Optional[Path] = typer.Option(None, "--db-file", help="SQLite database path."),
) -> None:
    """
    Summarise throws, fouls and daily bests.

    Examples:
        throws-coach report --user <coach-id> --days 30
        throws-coach report --user <coach-id> --athlete <athlete-id> --json
    """
    snapshot = _snapshot(_store(db_file), user, athlete, days)
    if as_json:
        typer.echo(json.dumps(snapshot.to_dict(), indent=2))
        return
    if not snapshot.summary.total_throws:
        typer.echo("No throw logs matched the provided filters.")
        raise typer.Exit(code=0)
    typer.echo(render_summary_table(snapshot))


@app.command()
def plot(
    user: str = typer.Option(..., "--user", "-u", help="Id of the coach or athlete requesting the plots."),
    athlete: Optional[str] = typer.Option(None, "--athlete", "-a", help="Limit to one athlete id."),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Time range in days."),
    output_dir: Path = typer.Option(Path("data/plots"), "--output-dir", help="Where PNG files are written."),
    db_file: Optional[Path] = typer.Option(None, "--db-file", help="SQLite database path."),
) -> None:
    """Create distance, weekly volume and foul charts."""
    snapshot = _snapshot(_store(db_file), user, athlete, days)
    try:
        paths = generate_report_plots(snapshot, output_dir=output_dir)
    except ValueError as exc:
        _fail(str(exc), code=0)
    for path in paths:
        typer.echo(f"Saved plot to {path}")


@app.command("pdf-report")
def pdf_report(
    user: str = typer.Option(..., "--user", "-u", help="Id of the coach or athlete requesting the report."),
    athlete: Optional[str] = typer.Option(None, "--athlete", "-a", help="Limit to one athlete id."),
    days: Optional[int] = typer.Option(None, "--days", "-d", help="Time range in days."),
    output: Path = typer.Option(Path("reports/throwing_report.pdf"), "--output", "-o", help="PDF destination."),
    db_file: Optional[Path] = typer.Option(None, "--db-file", help="SQLite database path."),
) -> None:
    """Build a PDF report with summary statistics and charts."""
    store = _store(db_file)
    snapshot = _snapshot(store, user, athlete, days)
    label = None
    if athlete:
        profile = store.get_user(athlete)
        label = (profile or {}).get("name") or athlete
    try:
        path = generate_pdf_report(snapshot, output_path=output, athlete_label=label)
    except ValueError as exc:
        _fail(str(exc), code=0)
    typer.echo(f"Saved report to {path}")


@app.command()
def sessions(
    user: str = typer.Option(..., "--user", "-u", help="Id of the coach or athlete listing sessions."),
    athlete: Optional[str] = typer.Option(None, "--athlete", "-a", help="Limit to one athlete id."),
    db_file: Optional[Path] = typer.Option(None, "--db-file", help="SQLite database path."),
) -> None:
    """List the training sessions visible to a coach or athlete."""
    store = _store(db_file)
    actor = _actor(store, user)
    try:
        found = list_training_sessions(store, actor, athlete_id=athlete)
    except PermissionDeniedError as exc:
        _fail(str(exc), code=2)
    if not found:
        typer.echo("No sessions matched the provided filters.")
        raise typer.Exit(code=0)
    for item in found:
        rpe = f"RPE {item.session_rpe}" if item.session_rpe is not None else "RPE n/a"
        typer.echo(f"{item.date.isoformat()}  {item.status.value:<11}  {rpe:<8}  {item.focus}  [{item.id}]")
    counts = session_status_counts(found)
    typer.echo("Totals: " + ", ".join(f"{status}={count}" for status, count in counts.items() if count))


@app.command("config")
def config_show() -> None:
    """Print the effective configuration."""
    get_config.cache_clear()
    typer.echo(json.dumps(config_as_dict(), indent=2))


def main() -> None:  # pragma: no cover - console entry point
    app()


if __name__ == "__main__":  # pragma: no cover
    main()
