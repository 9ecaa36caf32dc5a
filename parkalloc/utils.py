from __future__ import annotations

import json
import math
from typing import Any, Optional

from sqlalchemy.orm import Session

from . import models


def log_event(
    db: Session,
    event_type: str,
    actor_type: str = "system",
    actor_id: Optional[str] = None,
    request_id: Optional[str] = None,
    slot_id: Optional[str] = None,
    payload: Optional[dict] = None,
):
    """Stage an audit event; it commits together with the caller's change."""
    db.add(models.Event(
        ts=models.utcnow(),
        event_type=event_type,
        actor_type=actor_type,
        actor_id=actor_id,
        request_id=request_id,
        slot_id=slot_id,
        payload_json=json.dumps(_safe_json(payload or {})),
    ))


def page_of(items: list, total: int, page: int, limit: int) -> dict:
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def _safe_json(x: Any) -> Any:
    try:
        json.dumps(x)
        return x
    except (TypeError, ValueError):
        return json.loads(json.dumps(x, default=str))
