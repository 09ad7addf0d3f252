"""
Usage Recorder

Per-service invocation counters, recorded after a costed operation has
been charged and run. Best-effort: a failure here is logged and dropped,
it never gates a request and never undoes a deduction.
"""

from typing import Any, Dict, Optional
import structlog

from core.catalog import CostCatalog
from core.clock import Clock, SystemClock
from persistence.store import UsageStat, UsageStatStore

logger = structlog.get_logger()


class UsageRecorder:
    """Fire-and-forget usage statistics."""

    def __init__(
        self,
        store: UsageStatStore,
        catalog: Optional[CostCatalog] = None,
        clock: Optional[Clock] = None,
    ):
        self.store = store
        self.catalog = catalog or CostCatalog()
        self.clock = clock or SystemClock()

    def record(self, user_id: str, service_type: str) -> Optional[UsageStat]:
        """Increment the (user, service) counter. Returns None if recording failed."""
        try:
            stat = self.store.increment(user_id, service_type, self.clock.now())
        except Exception as e:
            logger.warning(
                "usage_record_failed",
                user_id=user_id,
                service_type=service_type,
                error=str(e),
            )
            return None

        logger.debug("usage_recorded", user_id=user_id, service_type=service_type, count=stat.count)
        return stat

    def stats(self, user_id: str) -> Dict[str, Any]:
        """
        Invocation counts per catalog service type plus a total.

        Service types no longer in the catalog still count toward the total.
        """
        counts: Dict[str, Any] = {service_type: 0 for service_type in self.catalog.service_types}
        counts["total"] = 0

        try:
            stats = self.store.get_by_user(user_id)
        except Exception as e:
            logger.warning("usage_stats_failed", user_id=user_id, error=str(e))
            return counts

        for stat in stats:
            if stat.service_type in counts and stat.service_type != "total":
                counts[stat.service_type] = stat.count
            counts["total"] += stat.count

        return counts
