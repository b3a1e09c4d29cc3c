"""
Guard Shift Kanban
Shift Service — create, fetch and clone shifts.

Raises ``app.core.exceptions`` types; blueprints and the bulk runner
translate them.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.audit import write_audit
from app.models.shift import MAX_PRIORITY, MIN_PRIORITY, DEFAULT_PRIORITY, Shift

logger = logging.getLogger(__name__)


def parse_datetime(value, field: str) -> datetime:
    """ISO-8601 string (or datetime) → UTC-aware datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, str) and value.strip():
        try:
            dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", details={field: value}) from exc
    else:
        raise ValidationError(f"{field} is required", details={field: "required"})
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_priority(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or not MIN_PRIORITY <= value <= MAX_PRIORITY:
        raise ValidationError(
            f"priority must be an integer between {MIN_PRIORITY} and {MAX_PRIORITY}",
            details={"priority": value},
        )
    return value


def create_shift(data: dict, created_by: str | None = None) -> Shift:
    """Validate *data* and insert a new ``unassigned`` shift (committed)."""
    title = (data.get("title") or "").strip()
    if not title:
        raise ValidationError("title is required", details={"title": "required"})

    start = parse_datetime(data.get("start_time"), "start_time")
    end = parse_datetime(data.get("end_time"), "end_time")
    if end <= start:
        raise ValidationError("end_time must be after start_time", details={"end_time": data.get("end_time")})

    priority = parse_priority(data.get("priority", DEFAULT_PRIORITY))

    certs = data.get("required_certifications") or []
    if not isinstance(certs, list) or not all(isinstance(c, str) for c in certs):
        raise ValidationError("required_certifications must be a list of strings",
                              details={"required_certifications": certs})

    shift = Shift(
        title=title,
        start_time=start,
        end_time=end,
        status="unassigned",
        priority=priority,
        required_certifications=certs,
        client_info=data.get("client_info") or {},
        location_data=data.get("location_data") or {},
        created_by=created_by,
    )
    db.session.add(shift)
    db.session.flush()
    write_audit(entity_type="shift", entity_id=shift.id, action="shift.create",
                actor=created_by or "system", diff={"title": title})
    db.session.commit()
    logger.info("Shift created: %s (%s)", shift.id, title, extra={"shift_id": shift.id})
    return shift


def get_shift(shift_id: str) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError(resource="Shift", resource_id=shift_id)
    return shift


def clone_shift(shift_id: str, offset_days: int = 7, created_by: str | None = None) -> Shift:
    """
    Copy a shift ``offset_days`` later as a fresh ``unassigned`` shift.

    Guard, assignments and alerts are not carried over.  Uses ``flush``;
    the caller commits.
    """
    source = get_shift(shift_id)
    offset = timedelta(days=offset_days)
    clone = Shift(
        title=source.title,
        start_time=source.start_time + offset,
        end_time=source.end_time + offset,
        status="unassigned",
        priority=source.priority,
        required_certifications=list(source.required_certifications or []),
        client_info=dict(source.client_info or {}),
        location_data=dict(source.location_data or {}),
        created_by=created_by,
    )
    db.session.add(clone)
    db.session.flush()
    write_audit(entity_type="shift", entity_id=clone.id, action="shift.clone",
                actor=created_by or "system", diff={"source_shift_id": source.id, "offset_days": offset_days})
    return clone
