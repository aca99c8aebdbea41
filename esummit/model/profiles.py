from __future__ import annotations
import logging
import os
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound, ValidationError
from ..helpers import now_ts, to_iso
from ..identity import Identity
from .db import (
    Profile, Ticket, ROLE_EXTERNAL, ROLE_INTERNAL, ADMIN_ROLES,
)
from .validation import validate_phone_number

logger = logging.getLogger(__name__)

INTERNAL_EMAIL_DOMAIN = os.environ.get("INTERNAL_EMAIL_DOMAIN", "iiitdm.ac.in")


def is_internal_email(email: Optional[str]) -> bool:
    return bool(email) and email.lower().endswith("@" + INTERNAL_EMAIL_DOMAIN)


def is_admin(profile: Optional[Profile]) -> bool:
    return profile is not None and profile.role in ADMIN_ROLES


def is_complete(profile: Optional[Profile]) -> bool:
    return bool(profile and profile.phone and profile.college_name)


async def get_profile(db: AsyncSession, user_id: str) -> Optional[Profile]:
    return await db.get(Profile, user_id)


async def get_profile_by_email(db: AsyncSession, email: str) -> Optional[Profile]:
    result = await db.execute(
        select(Profile).where(Profile.email == email.lower())
    )
    return result.scalars().first()


async def sync_profile_on_login(db: AsyncSession, ident: Identity) -> Profile:
    """
    Create the profile on first sign-in and enforce the role rules:
      - institute e-mail addresses are always 'internal'
      - everyone else starts as 'external'
      - admins and super admins are never touched
    """
    profile = await db.get(Profile, ident.id)
    if profile is None:
        profile = Profile(
            id=ident.id,
            email=ident.email.lower(),
            full_name=ident.full_name,
            role=ROLE_INTERNAL if is_internal_email(ident.email) else ROLE_EXTERNAL,
            created_at=now_ts(),
        )
        db.add(profile)
        await db.flush()
        logger.info("[Auth] new profile %s (%s)", profile.id, profile.role)
        return profile

    if profile.role not in ADMIN_ROLES:
        target = (
            ROLE_INTERNAL if is_internal_email(profile.email)
            else (profile.role or ROLE_EXTERNAL)
        )
        if profile.role != target:
            logger.info("[Auth] role %s -> %s for %s",
                        profile.role, target, profile.id)
            profile.role = target
            profile.updated_at = now_ts()
    if not profile.full_name and ident.full_name:
        profile.full_name = ident.full_name
    return profile


def landing_path_after_login(profile: Profile, next_path: Optional[str]) -> str:
    if not is_complete(profile) and not is_admin(profile):
        return "/onboarding"
    if is_admin(profile):
        return "/admin"
    # only same-site paths
    if not next_path or not next_path.startswith("/") or next_path.startswith("//"):
        return "/dashboard"
    return next_path


async def complete_onboarding(
    db: AsyncSession,
    user_id: str,
    *,
    full_name: Optional[str],
    phone: Optional[str],
    college_name: Optional[str],
    roll_number: Optional[str] = None,
) -> Profile:
    profile = await db.get(Profile, user_id)
    if profile is None:
        raise NotFound("Profile not found")

    full_name = (full_name or "").strip()
    college_name = (college_name or "").strip()
    if not full_name:
        raise ValidationError("Full name is required")
    if not college_name:
        raise ValidationError("College name is required")

    check = validate_phone_number(phone)
    if not check.is_valid:
        raise ValidationError(check.error)

    profile.full_name = full_name
    profile.phone = check.formatted
    profile.college_name = college_name
    profile.roll_number = (roll_number or "").strip() or None
    profile.updated_at = now_ts()
    return profile


def profile_to_dict(p: Profile) -> Dict[str, Any]:
    return {
        "id": p.id,
        "email": p.email,
        "full_name": p.full_name,
        "phone": p.phone,
        "college_name": p.college_name,
        "roll_number": p.roll_number,
        "role": p.role,
        "created_at": to_iso(p.created_at),
        "updated_at": to_iso(p.updated_at),
    }


async def list_users(db: AsyncSession) -> List[Dict[str, Any]]:
    """Admin user list: every profile with its tickets and group mates."""
    profiles = (await db.execute(
        select(Profile).order_by(Profile.created_at.desc())
    )).scalars().all()
    tickets = (await db.execute(select(Ticket))).scalars().all()

    by_id = {p.id: p for p in profiles}
    members: Dict[str, List[Dict[str, Any]]] = {}
    for t in tickets:
        if not t.booking_group_id:
            continue
        owner = by_id.get(t.user_id) if t.user_id else None
        members.setdefault(t.booking_group_id, []).append({
            "name": (owner.full_name if owner else None) or t.pending_name or "Unknown",
            "email": (owner.email if owner else None) or t.pending_email or "",
            "isRegistered": t.user_id is not None,
        })

    items = []
    for p in profiles:
        own = [t for t in tickets if t.user_id == p.id]
        row = profile_to_dict(p)
        row["tickets"] = [{
            "id": t.id,
            "type": t.type,
            "status": t.status,
            "amount": t.amount,
            "booking_group_id": t.booking_group_id,
            "group_members": members.get(t.booking_group_id, []) if t.booking_group_id else [],
        } for t in own]
        items.append(row)
    return items
