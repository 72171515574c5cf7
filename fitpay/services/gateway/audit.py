"""Best-effort audit trail writer.

`AuditTrail.record` returns nothing and never raises: a failed audit insert is
logged and counted, and the business flow carries on.
"""

from fitpay.common.clock import Clock, utcnow
from fitpay.common.logging import logger
from fitpay.common.masking import mask_sensitive
from fitpay.common.metrics import audit_write_failures_total
from fitpay.common.validation import sanitize_string
from fitpay.services.gateway.models import AuditEntry
from fitpay.services.gateway.schemas import AuditContext


class AuditTrail:
    def __init__(self, session_factory, clock: Clock = utcnow) -> None:
        self.session_factory = session_factory
        self.clock = clock

    def record(
        self,
        table_name: str,
        record_id,
        action: str,
        changed_fields: dict | None = None,
        context: AuditContext | None = None,
        user_id: int | None = None,
    ) -> None:
        context = context or AuditContext()
        try:
            with self.session_factory() as db:
                db.add(
                    AuditEntry(
                        table_name=sanitize_string(table_name, 100),
                        record_id=None if record_id is None else str(record_id),
                        action=sanitize_string(action, 30),
                        changed_fields=mask_sensitive(changed_fields) if changed_fields else None,
                        user_id=user_id if user_id is not None else context.user_id,
                        ip_address=context.ip_address,
                        user_agent=context.user_agent,
                        created_at=self.clock(),
                    )
                )
                db.commit()
        except Exception as exc:
            audit_write_failures_total.labels(target="audit_entries").inc()
            logger.error("audit write failed table=%s action=%s error=%s", table_name, action, exc)
