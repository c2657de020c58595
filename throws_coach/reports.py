from __future__ import annotations

import tempfile
from datetime import datetime
from importlib import metadata
from pathlib import Path
from typing import Any

from reportlab.lib import colors
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .aggregation import ChartSeries, ReportSnapshot
from .config import as_dict as config_as_dict

PIE_COLOURS = ["#ef4444", "#f97316", "#eab308", "#22c55e", "#3b82f6", "#8b5cf6", "#ec4899", "#6b7280"]


def generate_report_plots(
    snapshot: ReportSnapshot,
    *,
    output_dir: Path,
    stamp: str | None = None,
) -> list[Path]:
    """Render distance progression, weekly volume and foul breakdown charts as PNG files."""
    import matplotlib

    matplotlib.use("Agg")
    import matplotlib.pyplot as plt

    if not snapshot.summary.total_throws:
        raise ValueError("No throw logs available to plot.")

    output_dir.mkdir(parents=True, exist_ok=True)
    timestamp = stamp or datetime.now().strftime("%Y%m%d-%H%M%S")

    paths = [
        _create_distance_plot(snapshot.distance_progression, output_dir / f"best_distance_{timestamp}.png", plt),
        _create_volume_plot(snapshot.weekly_volume, output_dir / f"weekly_volume_{timestamp}.png", plt),
    ]
    if snapshot.foul_breakdown.values:
        paths.append(_create_foul_plot(snapshot.foul_breakdown, output_dir / f"foul_breakdown_{timestamp}.png", plt))
    return paths


def generate_pdf_report(
    snapshot: ReportSnapshot,
    *,
    output_path: Path,
    athlete_label: str | None = None,
) -> Path:
    """Build a one-page PDF with the summary table and the charts."""
    output_path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory() as tmp_dir:
        plots = generate_report_plots(snapshot, output_dir=Path(tmp_dir), stamp="report")
        _build_pdf(output_path, snapshot, plots, athlete_label or snapshot.athlete_id or "All athletes")
    return output_path


def _create_distance_plot(series: ChartSeries, path: Path, plt: Any) -> Path:
    fig, ax = plt.subplots()
    ax.plot(series.labels, series.values, marker="o", linewidth=2, color="#3b82f6", label=series.title)
    ax.set_title("Distance Progression")
    ax.set_xlabel("Date")
    ax.set_ylabel("Best Distance (m)")
    ax.grid(True, linestyle="--", alpha=0.3)
    ax.legend(loc="upper left")
    fig.autofmt_xdate()
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def _create_volume_plot(series: ChartSeries, path: Path, plt: Any) -> Path:
    fig, ax = plt.subplots()
    ax.bar(series.labels, series.values, color="#22c55e", label=series.title)
    ax.set_title("Weekly Throw Volume")
    ax.set_xlabel("Week")
    ax.set_ylabel("Throws Recorded")
    if series.labels:
        plt.setp(ax.get_xticklabels(), rotation=45, ha="right")
    ax.grid(axis="y", linestyle="--", alpha=0.4)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def _create_foul_plot(series: ChartSeries, path: Path, plt: Any) -> Path:
    fig, ax = plt.subplots()
    ax.pie(
        series.values,
        labels=series.labels,
        colors=PIE_COLOURS[: len(series.values)],
        autopct="%1.0f%%",
        startangle=90,
    )
    ax.set_title("Foul Analysis")
    ax.axis("equal")
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    return path


def _build_pdf(destination: Path, snapshot: ReportSnapshot, plots: list[Path], athlete_label: str) -> None:
    story = []
    styles = getSampleStyleSheet()
    summary = snapshot.summary
    window = snapshot.window

    story.append(
        Paragraph(
            f"Throwing Report: {window.start.date()} – {window.end.date()}",
            styles["Title"],
        )
    )
    story.append(Paragraph(f"Athlete: <b>{athlete_label}</b>", styles["BodyText"]))
    config = config_as_dict()
    story.append(
        Paragraph(
            f"App v{_app_version()} | Week starts {config['week_start']} | Config source: {config['source']}",
            styles["BodyText"],
        )
    )
    story.append(Spacer(1, 0.2 * inch))

    table_data = [
        ["Metric", "Value"],
        ["Total Throws", str(summary.total_throws)],
        ["Valid Throws", str(summary.valid_throws)],
        ["Fouls", f"{summary.total_fouls} ({summary.foul_rate_pct:.1f}%)"],
        ["Best Distance (m)", f"{summary.best_distance:.2f}"],
        ["Average Distance (m)", f"{summary.average_distance:.2f}"],
    ]
    table = Table(table_data, hAlign="LEFT", colWidths=[2.5 * inch, 3.5 * inch])
    table.setStyle(
        TableStyle(
            [
                ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#1F3C88")),
                ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
                ("ALIGN", (0, 0), (-1, -1), "LEFT"),
                ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
                ("BOTTOMPADDING", (0, 0), (-1, 0), 8),
                ("BACKGROUND", (0, 1), (-1, -1), colors.whitesmoke),
                ("GRID", (0, 0), (-1, -1), 0.5, colors.lightgrey),
            ]
        )
    )
    story.append(table)
    story.append(Spacer(1, 0.3 * inch))

    headings = ["Distance Progression", "Weekly Throw Volume", "Foul Analysis"]
    for heading, plot in zip(headings, plots):
        story.append(Paragraph(heading, styles["Heading2"]))
        story.append(Image(str(plot), width=6.0 * inch, height=3.2 * inch))
        story.append(Spacer(1, 0.2 * inch))

    doc = SimpleDocTemplate(str(destination), pagesize=letter, title="Throwing Report")
    doc.build(story)


def _app_version() -> str:
    try:
        return metadata.version("throws-coach")
    except metadata.PackageNotFoundError:  # pragma: no cover - local dev fallback
        return "0.0.0"
