"""Reporting orchestrator: composes dashboards, reports and diversity reports.

Data flow for the dashboard:
  1. Cache check (dashboard TTL)
  2. Summary, bottlenecks, sources, diversity and trends computed in parallel
  3. Assemble with a ``last_updated`` timestamp
  4. Cache write
"""

import asyncio
import logging
import uuid
from collections.abc import Iterable, Sequence
from datetime import date, datetime, timedelta

from hiring_analytics.analytics.service import AnalyticsService
from hiring_analytics.cache.analytics_cache import CacheKind
from hiring_analytics.core.config import Settings
from hiring_analytics.core.schemas import (
    AnalyticsQuery,
    BiasDetection,
    DashboardData,
    DateRange,
    DiversityReport,
    ExportFormat,
    ReportPayload,
    ReportResult,
    ReportSection,
    TrendData,
)
from hiring_analytics.reporting.bias import build_bias_detection, build_diversity_report
from hiring_analytics.reporting.renderers import ExportRenderer

logger = logging.getLogger(__name__)


class ReportingOrchestrator:
    """Builds the composite dashboard payload and rendered reports.

    Usage::

        orchestrator = ReportingOrchestrator(service, settings, [CsvReportRenderer("data/reports")])
        dashboard = await orchestrator.get_dashboard_data(AnalyticsQuery(company_id="acme"))
        result = await orchestrator.generate_report([ReportSection.SUMMARY], ExportFormat.CSV, query)
    """

    def __init__(
        self,
        service: AnalyticsService,
        settings: Settings | None = None,
        renderers: Iterable[ExportRenderer] = (),
    ) -> None:
        self._service = service
        self._settings = settings or Settings()
        self._renderers = {renderer.format_id: renderer for renderer in renderers}

    async def get_dashboard_data(self, query: AnalyticsQuery) -> DashboardData:
        cached = self._service.cache.get(CacheKind.DASHBOARD, query)
        if cached is not None:
            logger.debug("Dashboard served from cache")
            return cached  # type: ignore[no-any-return]

        logger.info("Building dashboard for %s", query.model_dump(mode="json"))
        summary, bottlenecks, sources, diversity, trends = await asyncio.gather(
            asyncio.to_thread(self._service.get_analytics_summary, query),
            asyncio.to_thread(self._service.get_bottlenecks, query),
            asyncio.to_thread(self._service.get_source_performance, query),
            asyncio.to_thread(self._service.get_diversity_analytics, query),
            asyncio.to_thread(self.get_trend_data, query),
        )
        dashboard = DashboardData(
            summary=summary,
            pipeline_bottlenecks=bottlenecks,
            source_performance=sources,
            diversity_analytics=diversity,
            trend_data=trends,
            last_updated=datetime.now(),
        )
        self._service.cache.set(CacheKind.DASHBOARD, query, dashboard)
        return dashboard

    def get_trend_data(self, query: AnalyticsQuery) -> TrendData:
        return self._service.queries.get_trend_data(query, self._settings.reporting.trend_days)

    async def generate_report(
        self,
        sections: Sequence[ReportSection | str],
        export_format: ExportFormat | str,
        query: AnalyticsQuery,
    ) -> ReportResult:
        """Collect the requested sections and hand them to the format's renderer.

        Raises:
            ValueError: unknown section, or a format with no registered renderer.
        """
        requested = [ReportSection(section) for section in sections]
        fmt = ExportFormat(export_format)
        renderer = self._renderers.get(fmt)
        if renderer is None:
            msg = f"Unsupported report format: {fmt.value}"
            raise ValueError(msg)

        payload = await asyncio.to_thread(self._collect, requested, query)
        report_id = f"report_{uuid.uuid4().hex}"
        download_url = await asyncio.to_thread(renderer.render, payload, report_id)
        logger.info("Generated %s report %s with sections %s", fmt.value, report_id, [s.value for s in requested])
        return ReportResult(
            report_id=report_id,
            format=fmt,
            sections=requested,
            download_url=download_url,
        )

    async def export_dashboard(self, export_format: ExportFormat | str, query: AnalyticsQuery) -> ReportResult:
        """Render every section of the dashboard in one export."""
        return await self.generate_report(list(ReportSection), export_format, query)

    def get_bias_detection(self, company_id: str, job_variant_id: str | None = None) -> list[BiasDetection]:
        indicators = self._service.calculate_bias_indicators(company_id, job_variant_id)
        return build_bias_detection(indicators, self._settings.bias_detection)

    def get_diversity_report(self, company_id: str, query: AnalyticsQuery | None = None) -> DiversityReport:
        query = (query or AnalyticsQuery()).model_copy(update={"company_id": company_id})
        logger.info("Building diversity report for company %s", company_id)
        analytics = self._service.get_diversity_analytics(query)
        indicators = self._service.calculate_bias_indicators(company_id, query.job_variant_id)
        return build_diversity_report(
            company_id,
            self._date_range(query),
            analytics,
            indicators,
            self._settings.bias_detection,
        )

    def _collect(self, sections: list[ReportSection], query: AnalyticsQuery) -> ReportPayload:
        data = {}
        if ReportSection.SUMMARY in sections:
            data["summary"] = self._service.get_analytics_summary(query)
        if ReportSection.PIPELINE in sections:
            data["bottlenecks"] = self._service.get_bottlenecks(query)
            data["stage_performance"] = self._service.get_stage_performance(query)
        if ReportSection.SOURCES in sections:
            data["sources"] = self._service.get_source_performance(query)
        if ReportSection.DIVERSITY in sections:
            data["diversity"] = self._service.get_diversity_analytics(query)
        if ReportSection.TRENDS in sections:
            data["trends"] = self.get_trend_data(query)
        return ReportPayload(**data)

    def _date_range(self, query: AnalyticsQuery) -> DateRange:
        end = query.end_date or date.today()
        start = query.start_date or end - timedelta(days=self._settings.reporting.default_window_days)
        return DateRange(start_date=start, end_date=end)
