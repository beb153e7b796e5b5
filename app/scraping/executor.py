"""
Job run executor: fetch -> extract -> normalize -> ingest for one job invocation.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from app.scraping.control import RunControl
from app.scraping.errors import ErrorKind, ParseError, ScrapeError
from app.scraping.fetcher import PageFetcher
from app.scraping.logging_utils import log_run_event
from app.scraping.normalization import ValueNormalizer
from app.scraping.parsing import SelectorExtractor
from app.scraping.storage import IngestionStore
from app.scraping.types import (
    REQUIRED_FIELDS,
    ExtractedRecord,
    RunResult,
    RunStatus,
    RunTrigger,
    ScrapeJobDefinition,
    UpsertCounts,
)

logger = logging.getLogger(__name__)


class JobRunExecutor:
    """
    Runs one scrape job and always returns a terminal RunResult.
    """

    def __init__(
        self,
        *,
        fetcher: PageFetcher,
        store: IngestionStore,
        extractor: SelectorExtractor | None = None,
        normalizer: ValueNormalizer | None = None,
    ) -> None:
        self._fetcher = fetcher
        self._store = store
        self._extractor = extractor or SelectorExtractor()
        self._normalizer = normalizer or ValueNormalizer()

    def execute(
        self,
        job: ScrapeJobDefinition,
        *,
        run: RunResult | None = None,
        control: RunControl | None = None,
    ) -> RunResult:
        run = run or RunResult(job_id=job.id, trigger=RunTrigger.MANUAL)
        control = control or RunControl()
        control.begin()
        if run.status == RunStatus.PENDING:
            run.mark_running()

        log_run_event(
            logger,
            logging.INFO,
            "job_run_started",
            job_id=job.id,
            run_id=run.id,
            job_name=job.name,
            target_url=job.target_url,
            trigger=run.trigger,
        )

        try:
            markup = self._fetcher.fetch(
                job.target_url,
                rate_limit_per_second=job.rate_limit_per_second,
                control=control,
            )
            control.checkpoint("extraction")
            records = self._extract_records(job=job, markup=markup, run=run)
            control.checkpoint("storage write")
            counts = self._store.upsert_batch(records) if records else UpsertCounts()
            run.record_counts(counts)
        except ScrapeError as exc:
            return self._fail(job=job, run=run, kind=exc.kind, message=exc.message)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Unexpected failure in scrape job %s", job.id)
            return self._fail(job=job, run=run, kind=ErrorKind.INTERNAL, message=str(exc))

        if run.items_failed and counts.ingested == 0:
            run.finish(
                RunStatus.FAILED,
                error_kind=ErrorKind.PARSE,
                error_message=f"No listing could be parsed ({run.items_failed} container(s) failed).",
            )
        elif run.items_failed:
            run.finish(
                RunStatus.PARTIALLY_FAILED,
                error_kind=ErrorKind.PARSE,
                error_message=(
                    f"{run.items_failed} of {run.items_found} container(s) failed to parse."
                ),
            )
        else:
            run.finish(RunStatus.SUCCEEDED)

        log_run_event(
            logger,
            logging.INFO,
            "job_run_finished",
            job_id=job.id,
            run_id=run.id,
            status=run.status,
            items_found=run.items_found,
            items_new=run.items_new,
            items_updated=run.items_updated,
            items_skipped=run.items_skipped,
            items_failed=run.items_failed,
        )
        return run

    def _extract_records(
        self,
        *,
        job: ScrapeJobDefinition,
        markup: str,
        run: RunResult,
    ) -> list[ExtractedRecord]:
        soup = self._extractor.parse_document(markup)
        containers, strategy = self._extractor.find_containers(
            soup,
            root_selector=job.container_selector,
        )
        run.record_found(len(containers))
        log_run_event(
            logger,
            logging.DEBUG,
            "listing_containers_found",
            job_id=job.id,
            run_id=run.id,
            strategy=strategy,
            count=len(containers),
        )

        whole_document = strategy == "document"
        selector_map = (
            dict(job.selectors) if whole_document else self._extractor.with_defaults(job.selectors)
        )
        scraped_at = datetime.now(timezone.utc)
        records: list[ExtractedRecord] = []

        for index, container in enumerate(containers):
            raw = self._extractor.extract(container, selector_map, base_url=job.target_url)
            if whole_document and not raw.get("source_url"):
                raw["source_url"] = job.target_url

            missing = [field for field in REQUIRED_FIELDS if not raw.get(field)]
            if missing:
                run.record_failure(f"container {index}: missing required field(s) {', '.join(missing)}")
                continue
            try:
                records.append(self._normalizer.normalize(raw, scraped_at=scraped_at))
            except ParseError as exc:
                run.record_failure(f"container {index}: {exc.message}")

        return records

    @staticmethod
    def _fail(*, job: ScrapeJobDefinition, run: RunResult, kind: str, message: str) -> RunResult:
        run.finish(RunStatus.FAILED, error_kind=kind, error_message=message)
        log_run_event(
            logger,
            logging.ERROR,
            "job_run_failed",
            job_id=job.id,
            run_id=run.id,
            error_kind=kind,
            error=message,
        )
        return run
