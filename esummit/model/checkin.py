"""
QR check-in at event entrances.

A scan is:
  1) admin check for the scanner (cached for 5 minutes)
  2) ticket lookup by QR secret (cache first, database second)
  3) insert of an event_logs row; the (ticket_id, event_id) unique
     constraint decides whether this is the first scan or a duplicate,
     so two scanners racing on the same ticket cannot both succeed.
"""

from __future__ import annotations
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, AsyncContextManager, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ..helpers import format_scan_time, now_ts, to_iso
from ..infra.sql import is_unique_violation
from . import cache
from .cache import CacheStore
from .db import EventLog, Profile, Ticket, ADMIN_ROLES, PAY_PAID

logger = logging.getLogger(__name__)

Gated = Callable[[], AsyncContextManager[None]]

ADMIN_CACHE_TTL = 5 * 60
TICKET_CACHE_TTL = 5 * 60

SUCCESS = "SUCCESS"
DUPLICATE = "DUPLICATE"
INVALID = "INVALID"
ERROR = "ERROR"


@dataclass
class ScanResult:
    status: str
    message: str
    http_status: int = 200
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.status == SUCCESS

    def to_dict(self, started: Optional[float] = None) -> Dict[str, Any]:
        body = {"success": self.success, "status": self.status,
                "message": self.message}
        body.update(self.extra)
        if started is not None and self.http_status == 200:
            body["ms"] = int((time.perf_counter() - started) * 1000)
        return body


async def scanner_status(db: AsyncSession, store: CacheStore,
                         user_id: str) -> Dict[str, Any]:
    """{"isAdmin": bool, "name": str}, cached per scanner."""
    key = cache.admin_key(user_id)
    hit = await store.get(key)
    if isinstance(hit, dict) and "isAdmin" in hit:
        return hit

    profile = await db.get(Profile, user_id)
    status = {
        "isAdmin": bool(profile and profile.role in ADMIN_ROLES),
        "name": (profile.full_name if profile else None) or "Admin",
    }
    await store.set(key, status, ADMIN_CACHE_TTL)
    return status


async def lookup_ticket(db: AsyncSession, store: CacheStore,
                        qr_secret: str) -> Optional[Dict[str, Any]]:
    key = cache.ticket_qr_key(qr_secret)
    hit = await store.get(key)
    if isinstance(hit, dict) and hit.get("id"):
        return hit

    row = (await db.execute(
        select(Ticket, Profile)
        .outerjoin(Profile, Ticket.user_id == Profile.id)
        .where(Ticket.qr_secret == qr_secret)
    )).first()
    if row is None:
        return None
    t, p = row
    found = {
        "id": t.id,
        "type": t.type,
        "status": t.status,
        "pax_count": t.pax_count,
        "holder_name": (p.full_name if p else None) or t.pending_name or "Guest",
    }
    # paid is final for a given secret; anything else may still change
    if t.status == PAY_PAID:
        await store.set(key, found, TICKET_CACHE_TTL)
    return found


async def verify_scan(
    db: AsyncSession,
    gated: Gated,
    store: CacheStore,
    *,
    scanner_id: str,
    qr_secret: str,
    event_id: str,
    event_name: Optional[str] = None,
) -> ScanResult:
    async with gated():
        async with db.begin():
            scanner = await scanner_status(db, store, scanner_id)
            if not scanner["isAdmin"]:
                return ScanResult(ERROR, "Admin required", http_status=403)
            ticket = await lookup_ticket(db, store, qr_secret)

    if ticket is None:
        return ScanResult(INVALID, "Invalid QR code")
    if ticket["status"] != PAY_PAID:
        return ScanResult(INVALID, f"Status: {ticket['status']}")

    try:
        async with gated():
            async with db.begin():
                db.add(EventLog(
                    ticket_id=ticket["id"],
                    event_id=event_id,
                    event_name=event_name or "Event",
                    scanned_by=scanner_id,
                    scanned_at=now_ts(),
                ))
    except IntegrityError as e:
        if not is_unique_violation(e):
            logger.error("[Scan] insert error: %s", e)
            return ScanResult(ERROR, "Log failed", http_status=500)
        scanned_at = await _first_scan_time(db, gated, ticket["id"], event_id)
        when = format_scan_time(scanned_at) if scanned_at else "Earlier"
        logger.info("[Scan] duplicate %s @ %s", ticket["id"], event_id)
        return ScanResult(DUPLICATE, f"Already scanned at {when}")

    logger.info("[Scan] %s admitted to %s by %s",
                ticket["id"], event_id, scanner["name"])
    return ScanResult(SUCCESS, "Access granted", extra={
        "ticketType": ticket["type"],
        "paxCount": ticket["pax_count"],
        "holderName": ticket["holder_name"],
    })


async def _first_scan_time(db: AsyncSession, gated: Gated,
                           ticket_id: str, event_id: str) -> Optional[float]:
    async with gated():
        async with db.begin():
            return (await db.execute(
                select(EventLog.scanned_at).where(
                    EventLog.ticket_id == ticket_id,
                    EventLog.event_id == event_id,
                )
            )).scalar_one_or_none()


async def scan_history(
    db: AsyncSession,
    *,
    event_id: Optional[str] = None,
    start_ts: Optional[float] = None,
    end_ts: Optional[float] = None,
    page: int = 1,
    limit: int = 50,
) -> Dict[str, Any]:
    page = max(1, page)
    limit = max(1, min(limit, 500))

    filters = []
    if event_id:
        filters.append(EventLog.event_id == event_id)
    if start_ts is not None:
        filters.append(EventLog.scanned_at >= start_ts)
    if end_ts is not None:
        filters.append(EventLog.scanned_at <= end_ts)

    total = (await db.execute(
        select(func.count(EventLog.id)).where(*filters)
    )).scalar_one()

    holder = aliased(Profile)
    scanner = aliased(Profile)
    rows = (await db.execute(
        select(EventLog, Ticket, holder, scanner)
        .join(Ticket, EventLog.ticket_id == Ticket.id)
        .outerjoin(holder, Ticket.user_id == holder.id)
        .outerjoin(scanner, EventLog.scanned_by == scanner.id)
        .where(*filters)
        .order_by(EventLog.scanned_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )).all()

    data: List[Dict[str, Any]] = []
    for log, t, h, s in rows:
        data.append({
            "id": log.id,
            "event_id": log.event_id,
            "event_name": log.event_name,
            "scanned_at": to_iso(log.scanned_at),
            "ticket": {
                "type": t.type,
                "user": {
                    "full_name": (h.full_name if h else None) or t.pending_name,
                    "email": (h.email if h else None) or t.pending_email,
                },
            },
            "scanned_by_profile": {"full_name": s.full_name if s else None},
        })

    return {
        "data": data,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": -(-total // limit),
        },
    }
