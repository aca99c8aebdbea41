from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Conflict, NotFound, ValidationError
from ..helpers import is_valid_email, now_ts, to_iso
from .db import AccommodationRequest, Profile, PAY_PENDING_VERIFICATION
from .pricing import ACCOMMODATION_DATES, get_accommodation_price
from .validation import validate_phone_number

logger = logging.getLogger(__name__)

REQ_PENDING = "pending"
REQ_APPROVED = "approved"
REQ_REJECTED = "rejected"

GENDERS = ("Male", "Female")
_VALID_DATES = [d["date"] for d in ACCOMMODATION_DATES]


def request_to_dict(r: AccommodationRequest) -> Dict[str, Any]:
    return {
        "id": r.id,
        "user_id": r.user_id,
        "name": r.name,
        "email": r.email,
        "phone_number": r.phone_number,
        "college_name": r.college_name,
        "gender": r.gender,
        "selected_days": r.selected_days.split(",") if r.selected_days else [],
        "date_of_arrival": r.date_of_arrival,
        "date_of_departure": r.date_of_departure,
        "payment_amount": r.payment_amount,
        "payment_status": r.payment_status,
        "payment_utr": r.payment_utr,
        "payment_screenshot_path": r.payment_screenshot_path,
        "status": r.status,
        "admin_notes": r.admin_notes,
        "created_at": to_iso(r.created_at),
    }


def _selected_days(days: Optional[Sequence[str]]) -> List[str]:
    picked = sorted(set(days or []))
    if not 1 <= len(picked) <= len(_VALID_DATES):
        raise ValidationError("Please select between 1 and 3 days")
    unknown = [d for d in picked if d not in _VALID_DATES]
    if unknown:
        raise ValidationError(f"Unknown accommodation date: {unknown[0]}")
    return picked


async def create_accommodation_request(
    db: AsyncSession,
    user: Profile,
    *,
    name: Optional[str],
    email: Optional[str],
    phone_number: Optional[str],
    gender: Optional[str],
    selected_days: Optional[Sequence[str]],
    college_name: Optional[str] = None,
    utr: Optional[str] = None,
    screenshot_path: Optional[str] = None,
) -> AccommodationRequest:
    """One request per user; the unique user_id column enforces it."""
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name:
        raise ValidationError("Please enter your name")
    if not is_valid_email(email):
        raise ValidationError("Please enter a valid email")
    phone = validate_phone_number(phone_number)
    if not phone.is_valid:
        raise ValidationError(phone.error)
    if gender not in GENDERS:
        raise ValidationError("Please select a gender")
    days = _selected_days(selected_days)

    utr = (utr or "").strip() or None
    if not utr and not screenshot_path:
        raise ValidationError(
            "Please provide EITHER a Transaction UTR OR a Payment Screenshot"
        )

    existing = (await db.execute(
        select(AccommodationRequest.id)
        .where(AccommodationRequest.user_id == user.id)
    )).scalar_one_or_none()
    if existing:
        raise Conflict("You have already submitted an accommodation request")

    req = AccommodationRequest(
        user_id=user.id,
        name=name,
        email=email,
        phone_number=phone.formatted,
        college_name=(college_name or user.college_name or "").strip() or None,
        gender=gender,
        selected_days=",".join(days),
        date_of_arrival=days[0],
        date_of_departure=days[-1],
        payment_amount=get_accommodation_price(len(days)),
        payment_status=PAY_PENDING_VERIFICATION,
        payment_utr=utr,
        payment_screenshot_path=screenshot_path,
        status=REQ_PENDING,
        created_at=now_ts(),
    )
    db.add(req)
    await db.flush()
    logger.info("[Accommodation] request %s by %s (%d days)",
                req.id, user.id, len(days))
    return req


async def my_request(db: AsyncSession, user_id: str) -> Optional[Dict[str, Any]]:
    r = (await db.execute(
        select(AccommodationRequest)
        .where(AccommodationRequest.user_id == user_id)
    )).scalars().first()
    return request_to_dict(r) if r else None


async def delete_rejected_request(db: AsyncSession, user_id: str) -> None:
    r = (await db.execute(
        select(AccommodationRequest)
        .where(AccommodationRequest.user_id == user_id)
    )).scalars().first()
    if r is None:
        raise NotFound("No accommodation request found")
    if r.status != REQ_REJECTED:
        raise ValidationError("Only rejected requests can be withdrawn")
    await db.delete(r)
    await db.flush()


async def list_requests(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    gender: Optional[str] = None,
) -> List[Dict[str, Any]]:
    q = select(AccommodationRequest).order_by(AccommodationRequest.created_at.desc())
    if status and status != "all":
        q = q.where(AccommodationRequest.status == status)
    if gender and gender != "all":
        q = q.where(AccommodationRequest.gender == gender)
    return [request_to_dict(r) for r in (await db.execute(q)).scalars().all()]


async def _pending(db: AsyncSession, request_id: str) -> AccommodationRequest:
    r = await db.get(AccommodationRequest, request_id)
    if r is None:
        raise NotFound("Request not found")
    if r.status != REQ_PENDING:
        raise ValidationError(f"Request is already {r.status}")
    return r


async def approve_request(db: AsyncSession, request_id: str, admin_id: str,
                          notes: Optional[str] = None) -> AccommodationRequest:
    r = await _pending(db, request_id)
    r.status = REQ_APPROVED
    r.admin_notes = (notes or "").strip() or None
    r.reviewed_by = admin_id
    r.reviewed_at = now_ts()
    return r


async def reject_request(db: AsyncSession, request_id: str, admin_id: str,
                         notes: Optional[str]) -> AccommodationRequest:
    notes = (notes or "").strip()
    if not notes:
        raise ValidationError("Please add a note explaining the rejection")
    r = await _pending(db, request_id)
    r.status = REQ_REJECTED
    r.admin_notes = notes
    r.reviewed_by = admin_id
    r.reviewed_at = now_ts()
    return r
