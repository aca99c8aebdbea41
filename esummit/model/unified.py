"""
One admin table over tickets, merch orders and accommodation requests.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..helpers import to_iso
from .db import (
    AccommodationRequest, MerchOrder, Profile, Ticket,
    PAY_PAID, PAY_PENDING_VERIFICATION,
)

NA = "N/A"


def _payment_label(status: Optional[str]) -> str:
    if status == PAY_PAID:
        return "Paid"
    if status == PAY_PENDING_VERIFICATION:
        return "Pending Verification"
    return "Pending"


def _record(rid, name, email, category, kind, status, fulfillment,
            amount, created_at, phone) -> Dict[str, Any]:
    return {
        "id": rid,
        "user_name": name or NA,
        "user_email": email or NA,
        "category": category,
        "type": kind or NA,
        "status": status,
        "fulfillment_status": fulfillment,
        "amount": amount or 0,
        "created_at": created_at,
        "phone_number": phone or NA,
    }


async def unified_records(db: AsyncSession) -> List[Dict[str, Any]]:
    records = []
    sort_keys = []

    rows = (await db.execute(
        select(Ticket, Profile).outerjoin(Profile, Ticket.user_id == Profile.id)
    )).all()
    for t, p in rows:
        records.append(_record(
            f"ticket-{t.id}",
            (p.full_name if p else None) or t.pending_name,
            (p.email if p else None) or t.pending_email,
            "Ticket",
            (t.type or "").upper(),
            _payment_label(t.status),
            "Issued" if t.band_issued_at else "Not Issued",
            t.amount,
            to_iso(t.created_at),
            (p.phone if p else None) or t.pending_phone,
        ))
        sort_keys.append(t.created_at)

    for o in (await db.execute(select(MerchOrder))).scalars().all():
        fulfillment = {"delivered": "Delivered", "confirmed": "Confirmed"}
        records.append(_record(
            f"merch-{o.id}", o.name, o.email, "Merchandise",
            (o.bundle_type or "").upper(),
            _payment_label(o.payment_status),
            fulfillment.get(o.status, "Not Issued"),
            o.amount, to_iso(o.created_at), o.phone_number,
        ))
        sort_keys.append(o.created_at)

    for a in (await db.execute(select(AccommodationRequest))).scalars().all():
        fulfillment = {"approved": "Approved", "rejected": "Rejected"}
        records.append(_record(
            f"accom-{a.id}", a.name, a.email, "Accommodation",
            f"{(a.gender or '').upper()} - {a.date_of_arrival} to {a.date_of_departure}",
            _payment_label(a.payment_status),
            fulfillment.get(a.status, "Pending"),
            a.payment_amount, to_iso(a.created_at), a.phone_number,
        ))
        sort_keys.append(a.created_at)

    order = sorted(range(len(records)), key=lambda i: sort_keys[i] or 0, reverse=True)
    return [records[i] for i in order]
