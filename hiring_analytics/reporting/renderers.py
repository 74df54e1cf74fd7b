"""Export renderers: turn a report payload into a downloadable artifact."""

import csv
import io
import logging
from abc import ABC, abstractmethod
from pathlib import Path

from hiring_analytics.core.schemas import ExportFormat, ReportPayload

logger = logging.getLogger(__name__)


class ExportRenderer(ABC):
    """Base class that every export backend must implement."""

    @property
    @abstractmethod
    def format_id(self) -> ExportFormat:
        """The export format this renderer produces."""

    @abstractmethod
    def render(self, payload: ReportPayload, report_id: str) -> str:
        """Write the artifact and return a reference to download it."""


class CsvReportRenderer(ExportRenderer):
    """Writes one sectioned CSV file per report under ``output_dir``.

    Sections are separated by a blank row and start with a title row, so the
    file reads naturally in a spreadsheet.
    """

    def __init__(self, output_dir: str | Path) -> None:
        self._output_dir = Path(output_dir)

    @property
    def format_id(self) -> ExportFormat:
        return ExportFormat.CSV

    def render(self, payload: ReportPayload, report_id: str) -> str:
        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")

        if payload.summary is not None:
            s = payload.summary
            _section(writer, "Analytics Summary", ["Metric", "Value"], [
                ["Total Applications", s.total_applications],
                ["Total Hires", s.total_hires],
                ["Active Positions", s.active_positions],
                ["Average Time to Fill (days)", _num(s.time_to_fill.average_days)],
                ["Median Time to Fill (days)", _num(s.time_to_fill.median_days)],
                ["Overall Conversion Rate (%)", _num(s.conversion_rates.overall_conversion)],
            ])

        if payload.bottlenecks is not None:
            _section(
                writer,
                "Pipeline Analysis",
                ["Stage", "Drop-off Rate (%)", "Average Time (days)", "Candidates in Stage", "Is Bottleneck"],
                [
                    [b.stage.value, _num(b.drop_off_rate), _num(b.average_time_in_stage),
                     b.candidates_in_stage, b.is_bottleneck]
                    for b in payload.bottlenecks
                ],
            )

        if payload.stage_performance is not None:
            _section(
                writer,
                "Stage Performance",
                ["Stage", "Candidates", "Average Time (days)"],
                [
                    [p.stage.value, p.total_candidates, _num(p.average_time_in_stage)]
                    for p in payload.stage_performance
                ],
            )

        if payload.sources is not None:
            _section(
                writer,
                "Source Performance",
                ["Source", "Total Candidates", "Qualified Candidates", "Hired Candidates",
                 "Conversion Rate (%)", "Quality Score", "ROI"],
                [
                    [src.source, src.total_candidates, src.qualified_candidates, src.hired_candidates,
                     _num(src.conversion_rate), _num(src.quality_score),
                     "N/A" if src.roi is None else _num(src.roi)]
                    for src in payload.sources
                ],
            )

        if payload.diversity is not None:
            d = payload.diversity
            _section(writer, "Diversity Analytics", ["Metric", "Value"], [
                ["Total Applicants", d.total_applicants],
                ["Total Hired", d.total_hired],
                ["Diversity Index", _num(d.diversity_index)],
            ])
            _section(writer, "Gender Distribution - Applicants", ["Gender", "Count"],
                     sorted(d.gender_balance.applicants.items()))
            _section(writer, "Gender Distribution - Hired", ["Gender", "Count"],
                     sorted(d.gender_balance.hired.items()))
            if d.bias_alerts:
                _section(writer, "Bias Alerts", ["Alert"], [[alert] for alert in d.bias_alerts])

        if payload.trends is not None:
            t = payload.trends
            for title, column, points in (
                ("Applications Trend", "Applications", t.applications),
                ("Hires Trend", "Hires", t.hires),
                ("Time to Fill Trend", "Days", t.time_to_fill),
            ):
                _section(writer, title, ["Date", column],
                         [[p.period.isoformat(), _num(p.value)] for p in points])

        path = self._output_dir / f"{report_id}.csv"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(buffer.getvalue())
        logger.info("Wrote CSV report %s", path)
        return str(path)


def _section(writer, title: str, header: list[str], rows) -> None:  # type: ignore[no-untyped-def]
    writer.writerow([title])
    writer.writerow(header)
    writer.writerows(rows)
    writer.writerow([])


def _num(value: float) -> str:
    return f"{value:.2f}"
