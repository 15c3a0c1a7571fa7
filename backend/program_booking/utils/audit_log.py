from __future__ import annotations

import json
import logging
from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from .request_id import get_request_id

AuditAction = Literal[
    "reservation.created",
    "reservation.updated",
    "reservation.cancelled",
    "reservation.deleted",
]
AuditInitiator = Literal["guest", "staff"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    reservation_id: int,
    program: Optional[str],
    slot: Optional[str],
    date: Optional[date | str],
    status_from: Optional[str],
    status_to: Optional[str],
    actor: Optional[str] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit one structured JSON audit line. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "actor": actor,
        "request_id": get_request_id(),
        "reservation_id": reservation_id,
        "program": _to_str(program),
        "slot": _to_str(slot),
        "date": _to_str(date),
        "status_from": _to_str(status_from),
        "status_to": _to_str(status_to),
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update(extra)

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=False, default=_to_str))
    except Exception as exc:  # pragma: no cover
        raise RuntimeError("failed to emit audit log") from exc
