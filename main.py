"""CLI entry point for the hiring analytics engine."""

import argparse
import asyncio
import json
import logging
import sqlite3
import sys
import threading
from datetime import date
from typing import Any

from pydantic import TypeAdapter

from hiring_analytics.analytics.aggregation import AggregationEngine
from hiring_analytics.analytics.query import QueryEngine
from hiring_analytics.analytics.service import AnalyticsService
from hiring_analytics.cache.analytics_cache import AnalyticsCache
from hiring_analytics.core.config import Settings
from hiring_analytics.core.db import init_db
from hiring_analytics.core.errors import AnalyticsError
from hiring_analytics.core.metrics_store import MetricsStore
from hiring_analytics.core.schemas import AnalyticsQuery, ExportFormat, Granularity, ReportSection
from hiring_analytics.records.sqlite import SqliteRecordSource
from hiring_analytics.reporting.orchestrator import ReportingOrchestrator
from hiring_analytics.reporting.renderers import CsvReportRenderer

METRICS = (
    "summary",
    "time-to-fill",
    "conversion-rates",
    "bottlenecks",
    "stage-performance",
    "source-performance",
    "top-sources",
    "diversity",
    "bias-indicators",
)


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--config",
        help="Path to settings YAML file (defaults are used when omitted)",
    )
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )


def _add_filters(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--company", help="Company id")
    parser.add_argument("--job", help="Job variant id")
    parser.add_argument("--source", help="Candidate source")
    parser.add_argument("--start", type=date.fromisoformat, help="Start date (YYYY-MM-DD)")
    parser.add_argument("--end", type=date.fromisoformat, help="End date (YYYY-MM-DD)")
    parser.add_argument(
        "--granularity",
        default=Granularity.DAILY.value,
        choices=[g.value for g in Granularity],
        help="Trend bucket size (default: daily)",
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Hiring analytics - aggregate recruiting records and query funnel metrics",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    # --- init-db subcommand ---
    init_parser = subparsers.add_parser("init-db", help="Create the database schema")
    _add_common(init_parser)

    # --- aggregate subcommand ---
    aggregate_parser = subparsers.add_parser(
        "aggregate",
        help="Recompute metric rows for one date bucket",
    )
    aggregate_parser.add_argument("--company", help="Restrict to one company")
    aggregate_parser.add_argument(
        "--date",
        type=date.fromisoformat,
        help="Date bucket (YYYY-MM-DD, default: yesterday)",
    )
    aggregate_parser.add_argument(
        "--isolated",
        action="store_true",
        help="Aggregate each company independently and report failures",
    )
    _add_common(aggregate_parser)

    # --- query subcommand ---
    query_parser = subparsers.add_parser("query", help="Print one analytics metric as JSON")
    query_parser.add_argument("metric", choices=METRICS)
    query_parser.add_argument("--limit", type=int, default=5, help="Limit for top-sources (default: 5)")
    _add_filters(query_parser)
    _add_common(query_parser)

    # --- dashboard subcommand ---
    dashboard_parser = subparsers.add_parser("dashboard", help="Print the dashboard payload as JSON")
    _add_filters(dashboard_parser)
    _add_common(dashboard_parser)

    # --- report subcommand ---
    report_parser = subparsers.add_parser("report", help="Render a report to disk")
    report_parser.add_argument(
        "--sections",
        nargs="+",
        default=[s.value for s in ReportSection],
        choices=[s.value for s in ReportSection],
        help="Sections to include (default: all)",
    )
    report_parser.add_argument(
        "--format",
        default=ExportFormat.CSV.value,
        choices=[f.value for f in ExportFormat],
        help="Export format (default: csv)",
    )
    _add_filters(report_parser)
    _add_common(report_parser)

    # --- bias-report subcommand ---
    bias_parser = subparsers.add_parser(
        "bias-report",
        help="Print the diversity report with bias detection for a company",
    )
    bias_parser.add_argument("company", help="Company id")
    bias_parser.add_argument("--job", help="Job variant id")
    bias_parser.add_argument("--start", type=date.fromisoformat, help="Start date (YYYY-MM-DD)")
    bias_parser.add_argument("--end", type=date.fromisoformat, help="End date (YYYY-MM-DD)")
    _add_common(bias_parser)

    return parser.parse_args(argv)


def setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def load_settings(path: str | None) -> Settings:
    return Settings.from_yaml(path) if path else Settings()


def build_query(args: argparse.Namespace) -> AnalyticsQuery:
    return AnalyticsQuery(
        start_date=args.start,
        end_date=args.end,
        company_id=args.company,
        job_variant_id=args.job,
        source=args.source,
        granularity=args.granularity,
    )


def build_services(
    conn: sqlite3.Connection,
    settings: Settings,
) -> tuple[AnalyticsService, ReportingOrchestrator]:
    """Wire the engines over one shared connection and its lock."""
    conn_lock = threading.RLock()
    records = SqliteRecordSource(conn, conn_lock)
    store = MetricsStore(conn, conn_lock)
    service = AnalyticsService(
        QueryEngine(store, records, settings),
        AggregationEngine(records, store, settings.aggregation),
        AnalyticsCache(config=settings.cache),
    )
    orchestrator = ReportingOrchestrator(
        service,
        settings,
        [CsvReportRenderer(settings.reporting.output_dir)],
    )
    return service, orchestrator


def print_json(value: object) -> None:
    print(json.dumps(TypeAdapter(Any).dump_python(value, mode="json"), indent=2))


def run_query(service: AnalyticsService, args: argparse.Namespace) -> object:
    query = build_query(args)
    if args.metric in ("top-sources", "bias-indicators") and not query.company_id:
        msg = f"--company is required for {args.metric}"
        raise ValueError(msg)

    handlers = {
        "summary": lambda: service.get_analytics_summary(query),
        "time-to-fill": lambda: service.get_time_to_fill_metrics(query),
        "conversion-rates": lambda: service.get_conversion_rates(query),
        "bottlenecks": lambda: service.get_bottlenecks(query),
        "stage-performance": lambda: service.get_stage_performance(query),
        "source-performance": lambda: service.get_source_performance(query),
        "top-sources": lambda: service.get_top_performing_sources(query.company_id, args.limit),
        "diversity": lambda: service.get_diversity_analytics(query),
        "bias-indicators": lambda: service.calculate_bias_indicators(query.company_id, query.job_variant_id),
    }
    return handlers[args.metric]()


async def run(args: argparse.Namespace, settings: Settings) -> None:
    conn = init_db(settings.database.path)
    try:
        service, orchestrator = build_services(conn, settings)

        if args.command == "init-db":
            print(f"Database ready at {settings.database.path}")
        elif args.command == "aggregate":
            if args.isolated:
                companies = [args.company] if args.company else None
                outcomes = await asyncio.to_thread(service.run_isolated, companies, args.date)
                print_json(outcomes)
                if any(not o.succeeded for o in outcomes):
                    sys.exit(1)
            else:
                invalidated = await service.refresh_metrics(args.company, args.date)
                print(f"Aggregation complete; {invalidated} cache entries invalidated.")
        elif args.command == "query":
            print_json(run_query(service, args))
        elif args.command == "dashboard":
            print_json(await orchestrator.get_dashboard_data(build_query(args)))
        elif args.command == "report":
            result = await orchestrator.generate_report(args.sections, args.format, build_query(args))
            print_json(result)
        elif args.command == "bias-report":
            query = AnalyticsQuery(
                start_date=args.start,
                end_date=args.end,
                company_id=args.company,
                job_variant_id=args.job,
            )
            print_json(orchestrator.get_diversity_report(args.company, query))
    finally:
        conn.close()


def main(argv: list[str] | None = None) -> None:
    args = parse_args(argv)
    setup_logging(args.verbose)

    try:
        settings = load_settings(args.config)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        asyncio.run(run(args, settings))
    except (FileNotFoundError, ValueError, AnalyticsError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
