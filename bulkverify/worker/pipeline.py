"""Bulk verification pipeline: parse, enrich in batches, verify, report progress.

Batches are processed strictly one after another with a pacing pause between
them to stay inside the Keepa token budget. A failed batch is verified without
enrichment instead of failing the job. Every job keeps its state in its own
``VerificationJob`` and result list, so several pipelines may run at once.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import (
    AbstractSet,
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
    Union,
)
from uuid import uuid4

from bulkverify.config import settings
from bulkverify.detect.engine import (
    VerificationStatus,
    VerifiedProduct,
    skipped_product,
    verify_product,
)
from bulkverify.detect.rules import RuleSet
from bulkverify.ingest.column_mapper import ColumnMapping, auto_detect_columns
from bulkverify.ingest.keepa_client import BatchFetchResult, EnrichmentRecord, KeepaClient
from bulkverify.ingest.pacing import BatchPacer, build_pacer
from bulkverify.ingest.product_parser import ParsedProduct, ParseResult, parse_products
from bulkverify.logging_config import get_logger
from bulkverify import metrics

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], Union[None, Awaitable[None]]]

CANCELLED_MESSAGE = "Verification cancelled"


class JobStatus(str, Enum):
    """Lifecycle of a verification job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class VerificationJob:
    """Mutable progress record for one verification run."""

    id: str = field(default_factory=lambda: uuid4().hex)
    file_name: str = ""
    total_products: int = 0
    processed_products: int = 0
    pass_count: int = 0
    warning_count: int = 0
    fail_count: int = 0
    status: JobStatus = JobStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    def start(self, total: int) -> None:
        self.total_products = total
        self.status = JobStatus.PROCESSING
        self.started_at = datetime.now(timezone.utc)

    def record(self, results: Sequence[VerifiedProduct]) -> None:
        """Count a finished batch."""
        for result in results:
            if result.status == VerificationStatus.PASS:
                self.pass_count += 1
            elif result.status == VerificationStatus.WARNING:
                self.warning_count += 1
            elif result.status == VerificationStatus.FAIL:
                self.fail_count += 1
        self.processed_products += len(results)

    def complete(self) -> None:
        self.status = JobStatus.COMPLETED
        self.completed_at = datetime.now(timezone.utc)

    def fail(self, error: str) -> None:
        self.status = JobStatus.FAILED
        self.error = error
        self.completed_at = datetime.now(timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "file_name": self.file_name,
            "total_products": self.total_products,
            "processed_products": self.processed_products,
            "pass_count": self.pass_count,
            "warning_count": self.warning_count,
            "fail_count": self.fail_count,
            "status": self.status.value,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "error": self.error,
        }


@dataclass
class JobOutcome:
    """Everything a caller needs after a job: state, results and parse stats."""

    job: VerificationJob
    mapping: ColumnMapping
    parse_result: ParseResult
    results: List[VerifiedProduct] = field(default_factory=list)


class VerificationPipeline:
    """
    Drives candidates through batched enrichment and rule evaluation.

    Args:
        enrichment_client: Keepa client (or anything with ``is_configured`` and
            ``fetch_batch``); None verifies without enrichment
        rules: Rule set, defaults to the configured one
        batch_size: ASINs per enrichment batch
        pacer: Pause strategy between batches
    """

    def __init__(
        self,
        enrichment_client: Optional[KeepaClient] = None,
        rules: Optional[RuleSet] = None,
        batch_size: Optional[int] = None,
        pacer: Optional[BatchPacer] = None,
    ):
        self.enrichment_client = enrichment_client
        self.rules = rules or RuleSet.from_settings()
        self.batch_size = batch_size or settings.verify_batch_size
        if self.batch_size <= 0:
            raise ValueError("batch_size must be positive")
        self.pacer = pacer if pacer is not None else build_pacer()

    def enrichment_available(self) -> bool:
        return self.enrichment_client is not None and self.enrichment_client.is_configured()

    async def verify_products(
        self,
        products: Sequence[ParsedProduct],
        existing_asins: AbstractSet[str],
        *,
        use_enrichment: bool = True,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        job: Optional[VerificationJob] = None,
    ) -> List[VerifiedProduct]:
        """
        Verify candidates, enriching them in batches when possible.

        Output order equals input order. Batch failures degrade that batch to
        unenriched verification; nothing is raised for them.

        Args:
            products: Parsed candidates
            existing_asins: ASINs already in the catalog
            use_enrichment: Set False to skip Keepa even if configured
            on_progress: Called with (processed, total) after each batch
            cancel_event: Checked before each batch; once set, remaining
                candidates are returned as skipped
            job: Progress record updated as batches complete

        Returns:
            One VerifiedProduct per candidate
        """
        log = get_logger(__name__, job_id=job.id if job else None)
        total = len(products)
        results: List[VerifiedProduct] = []

        if not (use_enrichment and self.enrichment_available()):
            log.info(f"Verifying {total} products without enrichment")
            results = [
                verify_product(product, None, existing_asins, self.rules)
                for product in products
            ]
            self._record(job, results)
            await _notify(on_progress, total, total)
            return results

        batch_count = (total + self.batch_size - 1) // self.batch_size
        log.info(f"Verifying {total} products in {batch_count} batches of {self.batch_size}")

        for batch_number, start in enumerate(range(0, total, self.batch_size), start=1):
            if cancel_event is not None and cancel_event.is_set():
                log.warning(
                    f"Verification cancelled before batch {batch_number}/{batch_count}; "
                    f"skipping {total - start} products"
                )
                skipped = [
                    skipped_product(product, existing_asins, CANCELLED_MESSAGE)
                    for product in products[start:]
                ]
                results.extend(skipped)
                metrics.verified_products_total.labels(
                    status=VerificationStatus.SKIPPED.value
                ).inc(len(skipped))
                if job is not None:
                    job.fail(CANCELLED_MESSAGE)
                return results

            batch = products[start:start + self.batch_size]
            enrichment = await self._fetch_enrichment(batch, batch_number, batch_count, log)

            batch_results = [
                verify_product(product, enrichment.get(product.asin), existing_asins, self.rules)
                for product in batch
            ]
            results.extend(batch_results)
            self._record(job, batch_results)

            await _notify(on_progress, min(start + self.batch_size, total), total)

            if start + self.batch_size < total:
                next_batch = products[start + self.batch_size:start + 2 * self.batch_size]
                await self.pacer.wait(len({p.asin for p in next_batch}))

        return results

    async def _fetch_enrichment(
        self,
        batch: Sequence[ParsedProduct],
        batch_number: int,
        batch_count: int,
        log: logging.LoggerAdapter,
    ) -> Dict[str, EnrichmentRecord]:
        """Enrichment records by ASIN; empty when the batch failed."""
        asins = [product.asin for product in batch]
        try:
            response: BatchFetchResult = await self.enrichment_client.fetch_batch(asins)
        except Exception:
            log.exception(
                f"Enrichment batch {batch_number}/{batch_count} raised; "
                "verifying batch without enrichment"
            )
            return {}

        if not response.success:
            log.warning(
                f"Enrichment batch {batch_number}/{batch_count} failed ({response.error}); "
                "verifying batch without enrichment"
            )
            return {}

        return {record.asin: record for record in response.records}

    @staticmethod
    def _record(job: Optional[VerificationJob], results: Sequence[VerifiedProduct]) -> None:
        if job is not None:
            job.record(results)
        for result in results:
            metrics.verified_products_total.labels(status=result.status.value).inc()

    async def run_job(
        self,
        headers: Sequence[str],
        rows: Sequence[Mapping[str, Any]],
        existing_asins: AbstractSet[str],
        *,
        mapping: Optional[ColumnMapping] = None,
        file_name: str = "",
        use_enrichment: bool = True,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> JobOutcome:
        """
        Run a whole sheet through detection, parsing and verification.

        A configuration error (no ASIN column) fails the job before any row
        is processed; the message is on ``outcome.job.error``.

        Args:
            headers: Sheet headers in order
            rows: Row dicts keyed by header
            existing_asins: ASINs already in the catalog
            mapping: Operator-reviewed mapping; auto-detected when omitted
            file_name: Name of the uploaded file, for the job record

        Returns:
            JobOutcome with the terminal job record and results
        """
        job = VerificationJob(file_name=file_name)
        log = get_logger(__name__, job_id=job.id)

        mapping = mapping or auto_detect_columns(headers)
        parse_result = parse_products(rows, mapping)
        outcome = JobOutcome(job=job, mapping=mapping, parse_result=parse_result)

        if not parse_result.success:
            job.fail(parse_result.error)
            log.error(f"Verification job {job.id} failed: {parse_result.error}")
            metrics.verification_jobs_total.labels(status=job.status.value).inc()
            return outcome

        job.start(len(parse_result.products))
        log.info(
            f"Verification job {job.id} started: {job.total_products} products "
            f"({len(parse_result.dropped_rows)} rows dropped)"
        )

        outcome.results = await self.verify_products(
            parse_result.products,
            existing_asins,
            use_enrichment=use_enrichment,
            on_progress=on_progress,
            cancel_event=cancel_event,
            job=job,
        )

        if not job.is_terminal:
            job.complete()

        metrics.verification_jobs_total.labels(status=job.status.value).inc()
        log.info(
            f"Verification job {job.id} {job.status.value}: {job.pass_count} pass, "
            f"{job.warning_count} warning, {job.fail_count} fail"
        )
        return outcome


async def _notify(callback: Optional[ProgressCallback], processed: int, total: int) -> None:
    if callback is None:
        return
    outcome = callback(processed, total)
    if inspect.isawaitable(outcome):
        await outcome
