"""Prometheus metrics for bulk product verification."""

from prometheus_client import Counter, Histogram, Info

# Application info
app_info = Info("bulk_verify", "Bulk product verification application info")
app_info.info({"version": "0.1.0", "name": "bulk-verify"})

# Job metrics
verification_jobs_total = Counter(
    "verification_jobs_total",
    "Total number of verification jobs finished",
    ["status"],
)

verified_products_total = Counter(
    "verified_products_total",
    "Total number of candidates classified",
    ["status"],
)

# Parsing metrics
parsed_rows_total = Counter(
    "parsed_rows_total",
    "Total number of spreadsheet rows seen by the parser",
    ["outcome"],
)

# Enrichment metrics
enrichment_batches_total = Counter(
    "enrichment_batches_total",
    "Total number of enrichment batch requests",
    ["status"],
)

enrichment_batch_duration_seconds = Histogram(
    "enrichment_batch_duration_seconds",
    "Time spent fetching one enrichment batch",
    buckets=[0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0],
)
