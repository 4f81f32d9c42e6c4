"""Bulk verification routes."""

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from pydantic import BaseModel, Field

from bulkverify.api.deps import get_enrichment_client, get_pacer, get_rule_set
from bulkverify.detect.engine import filter_by_status
from bulkverify.detect.rules import RuleSet
from bulkverify.ingest.column_mapper import auto_detect_columns, get_suggested_mappings
from bulkverify.ingest.keepa_client import KeepaClient
from bulkverify.ingest.pacing import BatchPacer
from bulkverify.notify.formatters import format_csv, format_json
from bulkverify.reporting.summary import estimate_cost, summarize
from bulkverify.worker.pipeline import JobOutcome, VerificationPipeline

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/verify", tags=["verify"])

# In-memory store of recent job outcomes (oldest evicted first)
MAX_STORED_JOBS = 50
_recent_jobs: "OrderedDict[str, JobOutcome]" = OrderedDict()


def store_outcome(outcome: JobOutcome) -> None:
    """Keep a finished job around for later export."""
    _recent_jobs[outcome.job.id] = outcome
    while len(_recent_jobs) > MAX_STORED_JOBS:
        _recent_jobs.popitem(last=False)


def get_outcome(job_id: str) -> JobOutcome:
    outcome = _recent_jobs.get(job_id)
    if outcome is None:
        raise HTTPException(status_code=404, detail="Verification job not found")
    return outcome


class ColumnsRequest(BaseModel):
    headers: List[str]


class ColumnSuggestionResponse(BaseModel):
    field: str
    header: str
    confidence: str


class ColumnsResponse(BaseModel):
    mapping: Dict[str, Optional[str]]
    suggestions: List[ColumnSuggestionResponse]


class VerifyRequest(BaseModel):
    """A sheet to verify: headers, row dicts and the current catalog."""

    headers: List[str]
    rows: List[Dict[str, Any]]
    existing_asins: List[str] = Field(default_factory=list)
    mapping: Optional[Dict[str, Optional[str]]] = None  # overrides on the detected mapping
    rules: Optional[Dict[str, Any]] = None  # overrides on the default rule set
    file_name: str = ""
    use_enrichment: bool = True


class EstimateRequest(BaseModel):
    product_count: int = Field(..., ge=0)
    use_keepa: bool = True
    use_deep_enrichment: bool = True
    estimated_pass_rate: Optional[float] = Field(None, ge=0, le=1)


class ExportRequest(BaseModel):
    job_id: str
    status: str = "all"


def _outcome_response(outcome: JobOutcome) -> dict:
    return {
        "job": outcome.job.to_dict(),
        "mapping": outcome.mapping.to_dict(),
        "dropped_rows": [
            {"row_index": row.row_index, "reason": row.reason}
            for row in outcome.parse_result.dropped_rows
        ],
        "summary": summarize(outcome.results).to_dict(),
        "results": [result.to_dict() for result in outcome.results],
    }


@router.post("/columns", response_model=ColumnsResponse)
async def detect_columns(request: ColumnsRequest):
    """Auto-detect the column mapping for a sheet's headers."""
    mapping = auto_detect_columns(request.headers)
    suggestions = get_suggested_mappings(request.headers)
    return ColumnsResponse(
        mapping=mapping.to_dict(),
        suggestions=[
            ColumnSuggestionResponse(field=s.field, header=s.header, confidence=s.confidence)
            for s in suggestions
        ],
    )


@router.post("")
async def run_verification(
    request: VerifyRequest,
    enrichment_client: KeepaClient = Depends(get_enrichment_client),
    default_rules: RuleSet = Depends(get_rule_set),
    pacer: BatchPacer = Depends(get_pacer),
):
    """Verify a sheet and return the job record, summary and per-row results."""
    mapping = auto_detect_columns(request.headers)
    if request.mapping:
        try:
            mapping = mapping.with_overrides(**request.mapping)
        except ValueError as e:
            raise HTTPException(status_code=422, detail=str(e))

    rules = default_rules
    if request.rules:
        try:
            rules = RuleSet.from_dict({**default_rules.to_dict(), **request.rules})
        except (TypeError, ValueError, ArithmeticError) as e:
            raise HTTPException(status_code=422, detail=f"Invalid rules: {e}")
        errors = rules.validate()
        if errors:
            raise HTTPException(status_code=422, detail=errors)

    pipeline = VerificationPipeline(
        enrichment_client=enrichment_client,
        rules=rules,
        pacer=pacer,
    )
    existing_asins = {asin.strip().upper() for asin in request.existing_asins}

    outcome = await pipeline.run_job(
        request.headers,
        request.rows,
        existing_asins,
        mapping=mapping,
        file_name=request.file_name,
        use_enrichment=request.use_enrichment,
    )

    if not outcome.parse_result.success:
        raise HTTPException(status_code=422, detail=outcome.job.error)

    store_outcome(outcome)
    return _outcome_response(outcome)


@router.get("/jobs/{job_id}")
async def get_job(job_id: str):
    """Get a recent job with its summary."""
    outcome = get_outcome(job_id)
    return {
        "job": outcome.job.to_dict(),
        "summary": summarize(outcome.results).to_dict(),
    }


@router.post("/estimate")
async def estimate(request: EstimateRequest):
    """Estimate enrichment cost and time for a sheet of a given size."""
    try:
        result = estimate_cost(
            request.product_count,
            use_keepa=request.use_keepa,
            use_deep_enrichment=request.use_deep_enrichment,
            estimated_pass_rate=request.estimated_pass_rate,
        )
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return result.to_dict()


@router.post("/export")
async def export_results(
    request: ExportRequest,
    format: Literal["csv", "json"] = Query("csv"),
):
    """Export a recent job's results, optionally filtered by status."""
    outcome = get_outcome(request.job_id)

    try:
        results = filter_by_status(outcome.results, request.status)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown status: {request.status}")

    filename = f"verification-{outcome.job.id}.{format}"
    headers = {"Content-Disposition": f'attachment; filename="{filename}"'}
    logger.info(f"Exporting {len(results)} results of job {outcome.job.id} as {format}")

    if format == "json":
        return Response(content=format_json(results), media_type="application/json", headers=headers)
    return Response(content=format_csv(results), media_type="text/csv", headers=headers)
