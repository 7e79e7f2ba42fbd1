"""Billing activity log.

Synopsis:
Persists tenant-scoped audit entries for every subscription transition.
Recording never interrupts the billing operation that triggered it.
"""

import logging
from typing import Any, Dict, Optional

from ..extensions import db
from ..models import ActivityLog
from ..utils.timezone_utils import TimezoneUtils

logger = logging.getLogger(__name__)


# --- ActivityLogger ---
# Purpose: Add an ActivityLog row to the caller's unit of work.
# Inputs: Tenant id, event type, JSON payload.
# Outputs: The pending ActivityLog row (or None on guarded failure).
class ActivityLogger:

    @staticmethod
    def record(tenant_id: Optional[int], event_type: str, payload: Optional[Dict[str, Any]] = None) -> Optional[ActivityLog]:
        try:
            entry = ActivityLog(
                tenant_id=tenant_id,
                event_type=event_type,
                payload=payload or {},
                occurred_at=TimezoneUtils.utc_now(),
            )
            db.session.add(entry)
            return entry
        except Exception:
            logger.warning("Failed to record activity %s for tenant %s", event_type, tenant_id, exc_info=True)
            return None


record = ActivityLogger.record
