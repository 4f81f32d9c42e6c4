"""FastAPI dependencies."""

from bulkverify.detect.rules import RuleSet
from bulkverify.ingest.keepa_client import KeepaClient, keepa_client
from bulkverify.ingest.pacing import BatchPacer, build_pacer


async def get_enrichment_client() -> KeepaClient:
    """Dependency for the shared Keepa client."""
    return keepa_client


async def get_rule_set() -> RuleSet:
    """Dependency for the configured default rule set."""
    return RuleSet.from_settings()


async def get_pacer() -> BatchPacer:
    """Dependency for the configured inter-batch pacer."""
    return build_pacer()
