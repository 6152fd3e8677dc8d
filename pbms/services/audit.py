"""
Admin activity log.
Append-only entries with an integrity hash over their canonical JSON.
"""
import hashlib
import json
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import AdminActivityLog, User


def compute_integrity_hash(data: Dict[str, Any], secret: str) -> str:
    canonical = {k: v for k, v in data.items() if v is not None}
    canonical_json = json.dumps(canonical, sort_keys=True, default=str)
    return hashlib.sha256(f"{canonical_json}:{secret}".encode()).hexdigest()


def log_activity(
    db: Session,
    actor: Optional[User],
    action: str,
    entity_type: str,
    entity_id,
    changes: Optional[Dict] = None,
    context: Optional[Dict] = None,
    integrity_secret: Optional[str] = None,
) -> AdminActivityLog:
    """
    Append an activity entry to the session.

    Args:
        actor: User performing the action (None for system jobs)
        action: CREATE|UPDATE|DELETE|APPROVE|REJECT
        entity_type: project|expense|budget_category|budget_version|business_unit|user|...
        changes: Before/after diff, see ``compute_diff``
        context: Extra lookup keys (project_id, ...)

    The entry is flushed with the caller's transaction, so the log and the
    mutation commit or roll back together.
    """
    timestamp_utc = datetime.utcnow()
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    actor_id = actor.id if actor is not None else None
    actor_role = actor.role if actor is not None else "system"

    integrity_hash = None
    if secret:
        integrity_hash = compute_integrity_hash(
            {
                "entity_type": entity_type,
                "entity_id": str(entity_id),
                "action": action,
                "actor_id": str(actor_id) if actor_id else None,
                "actor_role": actor_role,
                "timestamp_utc": timestamp_utc.isoformat(),
                "changes": changes,
                "context": context,
            },
            secret,
        )

    entry = AdminActivityLog(
        actor_id=actor_id,
        actor_role=actor_role,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        changes_json=_jsonable(changes),
        context=_jsonable(context),
        timestamp_utc=timestamp_utc,
        integrity_hash=integrity_hash,
    )
    db.add(entry)
    return entry


def verify_entry(entry: AdminActivityLog, integrity_secret: Optional[str] = None) -> bool:
    secret = integrity_secret if integrity_secret is not None else settings.jwt_secret
    if not entry.integrity_hash or not secret:
        return False
    ts = entry.timestamp_utc.replace(tzinfo=None) if entry.timestamp_utc else None
    expected = compute_integrity_hash(
        {
            "entity_type": entry.entity_type,
            "entity_id": str(entry.entity_id),
            "action": entry.action,
            "actor_id": str(entry.actor_id) if entry.actor_id else None,
            "actor_role": entry.actor_role,
            "timestamp_utc": ts.isoformat() if ts else None,
            "changes": entry.changes_json,
            "context": entry.context,
        },
        secret,
    )
    return expected == entry.integrity_hash


def _jsonable(value):
    if value is None:
        return None
    return json.loads(json.dumps(value, default=str))


def compute_diff(before: Dict, after: Dict) -> Dict:
    """Before/after pairs for keys whose values differ."""
    diff = {}
    for key in set(before) | set(after):
        before_val = before.get(key)
        after_val = after.get(key)
        if before_val != after_val:
            diff[key] = {"before": before_val, "after": after_val}
    return diff
