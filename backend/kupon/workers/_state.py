"""Persistent worker state: last completed cycle per worker, kept across restarts.

Uses a lightweight `worker_state` collection in MongoDB.
"""

from datetime import datetime
from typing import Optional

import kupon.database as _db
from kupon.utils import ensure_utc, utcnow


async def get_synced_at(worker_id: str) -> Optional[datetime]:
    """Get the last synced_at timestamp for a worker."""
    doc = await _db.db.worker_state.find_one({"_id": worker_id})
    if not doc or not doc.get("synced_at"):
        return None
    return ensure_utc(doc["synced_at"])


async def set_synced(worker_id: str, summary: Optional[dict] = None) -> None:
    """Mark a worker as just synced, optionally keeping the cycle summary."""
    fields: dict = {"synced_at": utcnow()}
    if summary is not None:
        fields["last_summary"] = summary
    await _db.db.worker_state.update_one(
        {"_id": worker_id},
        {"$set": fields},
        upsert=True,
    )
