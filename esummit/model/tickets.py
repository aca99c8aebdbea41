"""
Ticket booking, manual payment verification, band issuance and the admin
exports built on the tickets table.

Every function expects to run inside the caller's transaction
(`async with db.begin(): ...`).
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from io import BytesIO
from typing import Any, Dict, List, Optional, Tuple

import qrcode
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound, ValidationError
from ..helpers import (
    is_valid_email, new_qr_secret, now_ts, pending_qr_secret, to_iso,
)
from .db import (
    BookingGroup, EventLog, Profile, Ticket,
    PAY_FAILED, PAY_PAID, PAY_PENDING_VERIFICATION,
)
from .pricing import TICKET_PRICES
from .validation import validate_phone_number

logger = logging.getLogger(__name__)


@dataclass
class Attendee:
    name: str
    email: str
    phone: str


def parse_attendees(raw: Optional[List[Dict[str, Any]]]) -> List[Attendee]:
    out = []
    for a in raw or []:
        out.append(Attendee(
            name=str(a.get("name") or "").strip(),
            email=str(a.get("email") or "").strip().lower(),
            phone=str(a.get("phone") or "").strip(),
        ))
    return out


def _validate_attendees(attendees: List[Attendee], pax: int) -> None:
    if len(attendees) != pax:
        raise ValidationError(f"This pass needs details for {pax} attendees")
    for i, a in enumerate(attendees, start=1):
        if not a.name or not a.email or not a.phone:
            raise ValidationError(f"Please fill in all details for Attendee {i}")
        if not is_valid_email(a.email):
            raise ValidationError(f"Please enter a valid email for Attendee {i}")
        check = validate_phone_number(a.phone)
        if not check.is_valid:
            raise ValidationError(f"Attendee {i}: {check.error}")
        a.phone = check.formatted
    emails = [a.email for a in attendees]
    if len(set(emails)) != len(emails):
        raise ValidationError("Each attendee must have a unique email address")


async def book_tickets(
    db: AsyncSession,
    purchaser: Profile,
    pass_type: str,
    attendees: List[Attendee],
    *,
    utr: Optional[str] = None,
    payment_owner_name: Optional[str] = None,
    screenshot_path: Optional[str] = None,
) -> List[Ticket]:
    info = TICKET_PRICES.get(pass_type)
    if info is None:
        raise ValidationError("invalid pass type")
    utr = (utr or "").strip() or None
    if not utr and not screenshot_path:
        raise ValidationError(
            "Please provide EITHER a Transaction UTR OR a Payment Screenshot"
        )

    if info.pax == 1 and not attendees:
        attendees = [Attendee(
            name=purchaser.full_name or "",
            email=purchaser.email,
            phone=purchaser.phone or "",
        )]
    _validate_attendees(attendees, info.pax)

    created = now_ts()
    group_id = None
    if info.pax > 1:
        group = BookingGroup(
            purchaser_id=purchaser.id,
            ticket_type=pass_type,
            total_amount=info.amount,
            pax_count=info.pax,
            created_at=created,
        )
        db.add(group)
        await db.flush()
        group_id = group.id

    tickets = []
    for index, a in enumerate(attendees):
        is_purchaser = a.email == purchaser.email.lower()
        holder_id = purchaser.id if is_purchaser else None
        if not is_purchaser:
            existing = (await db.execute(
                select(Profile.id).where(Profile.email == a.email)
            )).scalar_one_or_none()
            holder_id = existing
        linked = holder_id is not None
        first = index == 0
        t = Ticket(
            user_id=holder_id,
            pending_email=None if linked else a.email,
            pending_name=None if linked else a.name,
            pending_phone=None if linked else a.phone,
            type=pass_type,
            amount=info.amount // info.pax,
            status=PAY_PENDING_VERIFICATION,
            pax_count=1,
            qr_secret=pending_qr_secret(index),
            screenshot_path=screenshot_path if first else None,
            utr=utr if first else None,
            payment_owner_name=payment_owner_name if (first and utr) else None,
            booking_group_id=group_id,
            created_at=created,
        )
        db.add(t)
        tickets.append(t)
    await db.flush()
    logger.info("[Tickets] %s booked %s x%d (group=%s)",
                purchaser.id, pass_type, info.pax, group_id)
    return tickets


def ticket_to_dict(t: Ticket, holder: Optional[Profile] = None) -> Dict[str, Any]:
    return {
        "id": t.id,
        "type": t.type,
        "amount": t.amount,
        "status": t.status,
        "pax_count": t.pax_count,
        "booking_group_id": t.booking_group_id,
        "holder_name": (holder.full_name if holder else None) or t.pending_name,
        "holder_email": (holder.email if holder else None) or t.pending_email,
        "utr": t.utr,
        "screenshot_path": t.screenshot_path,
        "band_issued_at": to_iso(t.band_issued_at),
        "created_at": to_iso(t.created_at),
    }


async def load_holders(db: AsyncSession, tickets: List[Ticket]) -> Dict[str, Profile]:
    """Profiles of the linked holders, keyed by profile id."""
    ids = {t.user_id for t in tickets if t.user_id}
    if not ids:
        return {}
    rows = (await db.execute(
        select(Profile).where(Profile.id.in_(ids))
    )).scalars().all()
    return {p.id: p for p in rows}


async def my_tickets(db: AsyncSession, profile: Profile) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(Ticket)
        .where(or_(Ticket.user_id == profile.id,
                   Ticket.pending_email == profile.email))
        .order_by(Ticket.created_at.desc())
    )).scalars().all()

    items = []
    for t in rows:
        logs = (await db.execute(
            select(EventLog)
            .where(EventLog.ticket_id == t.id)
            .order_by(EventLog.scanned_at.desc())
        )).scalars().all()
        d = ticket_to_dict(t, profile if t.user_id == profile.id else None)
        # the QR secret is only meaningful once the ticket is paid
        d["qr_secret"] = t.qr_secret if t.status == PAY_PAID else None
        d["events_attended"] = [{
            "event_id": e.event_id,
            "event_name": e.event_name,
            "scanned_at": to_iso(e.scanned_at),
        } for e in logs]
        items.append(d)
    return items


async def pending_verifications(db: AsyncSession) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(Ticket, Profile)
        .outerjoin(Profile, Ticket.user_id == Profile.id)
        .where(Ticket.status == PAY_PENDING_VERIFICATION)
        .order_by(Ticket.created_at.asc())
    )).all()
    return [ticket_to_dict(t, p) for t, p in rows]


async def verify_ticket(db: AsyncSession, ticket_id: str, action: str) -> List[Ticket]:
    """approve -> paid with a fresh QR secret, reject -> failed.

    Tickets bought together are verified together.
    """
    if action not in ("approve", "reject"):
        raise ValidationError("action must be 'approve' or 'reject'")
    ticket = await db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFound("Ticket not found")
    if ticket.status != PAY_PENDING_VERIFICATION:
        raise ValidationError(f"Ticket is already {ticket.status}")

    if ticket.booking_group_id:
        batch = (await db.execute(
            select(Ticket).where(
                Ticket.booking_group_id == ticket.booking_group_id,
                Ticket.status == PAY_PENDING_VERIFICATION,
            )
        )).scalars().all()
    else:
        batch = [ticket]

    for t in batch:
        if action == "approve":
            t.status = PAY_PAID
            t.qr_secret = new_qr_secret()
        else:
            t.status = PAY_FAILED
    await db.flush()
    logger.info("[Verify] %s %d ticket(s) starting at %s",
                action, len(batch), ticket_id)
    return list(batch)


@dataclass
class BandIssue:
    issued_count: int
    issued_at: float


async def issue_band(
    db: AsyncSession,
    admin_id: str,
    ticket_id: Optional[str] = None,
    booking_group_id: Optional[str] = None,
) -> BandIssue:
    if not ticket_id and not booking_group_id:
        raise ValidationError("ticketId or bookingGroupId required")

    now = now_ts()

    async def _issue_group(group_id: str) -> int:
        res = await db.execute(
            update(Ticket)
            .where(
                Ticket.booking_group_id == group_id,
                Ticket.status == PAY_PAID,
                Ticket.band_issued_at.is_(None),
            )
            .values(band_issued_at=now, band_issued_by=admin_id)
        )
        return res.rowcount or 0

    if booking_group_id:
        return BandIssue(await _issue_group(booking_group_id), now)

    ticket = await db.get(Ticket, ticket_id)
    if ticket is None:
        raise NotFound("Ticket not found")
    if ticket.status != PAY_PAID:
        raise ValidationError("Ticket not paid")
    if ticket.band_issued_at:
        raise ValidationError("Band already issued")

    if ticket.booking_group_id:
        return BandIssue(await _issue_group(ticket.booking_group_id), now)

    ticket.band_issued_at = now
    ticket.band_issued_by = admin_id
    await db.flush()
    return BandIssue(1, now)


async def band_queue(db: AsyncSession) -> List[Dict[str, Any]]:
    """Paid tickets in purchase order, for the band desk."""
    rows = (await db.execute(
        select(Ticket, Profile)
        .outerjoin(Profile, Ticket.user_id == Profile.id)
        .where(Ticket.status == PAY_PAID)
        .order_by(Ticket.created_at.asc())
    )).all()
    items = []
    for t, p in rows:
        d = ticket_to_dict(t, p)
        d["holder_phone"] = (p.phone if p else None) or t.pending_phone
        items.append(d)
    return items


def group_by_booking(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Ticket dicts folded into one entry per booking group or solo ticket.

    The lead is the first member carrying the payment proof, else the first
    member seen.
    """
    groups: Dict[str, Dict[str, Any]] = {}
    for t in items:
        key = t["booking_group_id"] or t["id"]
        g = groups.get(key)
        if g is None:
            g = groups[key] = {
                "key": key,
                "booking_group_id": t["booking_group_id"],
                "lead": t,
                "members": [],
            }
        elif (t["utr"] or t["screenshot_path"]) and not (
                g["lead"]["utr"] or g["lead"]["screenshot_path"]):
            g["lead"] = t
        g["members"].append(t)
    out = list(groups.values())
    for g in out:
        g["amount"] = sum(m["amount"] for m in g["members"])
        g["issued"] = all(m["band_issued_at"] for m in g["members"])
    return out


async def export_tickets(db: AsyncSession) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(Ticket, Profile)
        .outerjoin(Profile, Ticket.user_id == Profile.id)
        .order_by(Ticket.created_at.desc())
    )).all()

    # group leader: first ticket carrying the payment proof, else the first seen
    leaders: Dict[str, str] = {}
    for t, _ in rows:
        if t.booking_group_id and t.booking_group_id not in leaders:
            if t.screenshot_path or t.utr:
                leaders[t.booking_group_id] = t.id
    for t, _ in rows:
        if t.booking_group_id and t.booking_group_id not in leaders:
            leaders[t.booking_group_id] = t.id

    sizes: Dict[str, int] = {}
    for t, _ in rows:
        if t.booking_group_id:
            sizes[t.booking_group_id] = sizes.get(t.booking_group_id, 0) + 1

    out = []
    for t, p in rows:
        gid = t.booking_group_id
        if t.band_issued_at:
            band_status = "Issued"
        elif t.status == PAY_PAID:
            band_status = "Pending"
        else:
            band_status = "N/A"
        out.append({
            "ticket_id": t.id,
            "user_name": (p.full_name if p else None) or t.pending_name or "Not Registered",
            "user_email": (p.email if p else None) or t.pending_email or "N/A",
            "user_phone": (p.phone if p else None) or t.pending_phone or "N/A",
            "college": (p.college_name if p else None) or "N/A",
            "ticket_type": t.type,
            "amount": t.amount,
            "payment_status": t.status,
            "pax_count": sizes.get(gid, 1) if gid else 1,
            "group_id": gid or "-",
            "group_leader": ("Yes" if leaders.get(gid) == t.id else "No") if gid else "-",
            "band_status": band_status,
            "band_issued_at": to_iso(t.band_issued_at) or "-",
            "utr": t.utr or "-",
            "created_at": to_iso(t.created_at),
        })
    return out


async def admin_stats(db: AsyncSession) -> Dict[str, Any]:
    rows = (await db.execute(
        select(Ticket, Profile).outerjoin(Profile, Ticket.user_id == Profile.id)
    )).all()

    paid = [(t, p) for t, p in rows if t.status == PAY_PAID]
    pending = [t for t, _ in rows if t.status == PAY_PENDING_VERIFICATION]

    # one request per booking group (or per solo ticket) that has a proof
    pending_requests = {
        t.booking_group_id or t.id
        for t in pending if t.screenshot_path or t.utr
    }

    by_type = {name: 0 for name in TICKET_PRICES}
    for t, _ in paid:
        if t.type in by_type:
            by_type[t.type] += 1

    recent = sorted(paid, key=lambda tp: tp[0].created_at, reverse=True)[:5]
    return {
        "revenue": sum(t.amount for t, _ in paid),
        "ticketsSold": len(paid),
        "pending": len(pending_requests),
        "byType": by_type,
        "recent": [ticket_to_dict(t, p) for t, p in recent],
    }


async def paid_holder_contacts(db: AsyncSession) -> List[Tuple[str, str]]:
    """(email, name) of every paid ticket's holder, registered or not."""
    rows = (await db.execute(
        select(Ticket, Profile)
        .outerjoin(Profile, Ticket.user_id == Profile.id)
        .where(Ticket.status == PAY_PAID)
        .order_by(Ticket.created_at.asc())
    )).all()
    out = []
    for t, p in rows:
        if p is not None:
            out.append((p.email, p.full_name or "Attendee"))
        elif t.pending_email:
            out.append((t.pending_email, t.pending_name or "Attendee"))
    return out


def qr_png(data: str) -> bytes:
    img = qrcode.make(data)
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()
