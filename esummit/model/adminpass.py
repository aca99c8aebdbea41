"""
Shared admin passwords.

A super admin mints passwords (optionally limited in uses and lifetime); an
internal user who knows one can promote themselves to admin. The promotion
is one transaction: conditional use-count increment, role change, access
log row.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any, Dict, List, Optional

import bcrypt
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import Forbidden, NotFound, ValidationError
from ..helpers import from_iso, now_ts, to_iso
from .db import (
    AdminAccessLog, AdminPassword, Profile,
    ADMIN_ROLES, ROLE_ADMIN, ROLE_INTERNAL,
)

logger = logging.getLogger(__name__)

SALT_ROUNDS = 10
MIN_PASSWORD_LENGTH = 6


def hash_password(password: str) -> str:
    salt = bcrypt.gensalt(rounds=SALT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # malformed hash in the table
        return False


def first_match(password: str, hashes: List[str]) -> Optional[int]:
    for i, h in enumerate(hashes):
        if check_password(password, h):
            return i
    return None


def password_to_dict(p: AdminPassword) -> Dict[str, Any]:
    return {
        "id": p.id,
        "label": p.label,
        "is_active": p.is_active,
        "max_uses": p.max_uses,
        "current_uses": p.current_uses,
        "created_at": to_iso(p.created_at),
        "expires_at": to_iso(p.expires_at),
    }


def _max_uses(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        n = int(value)
    except (TypeError, ValueError):
        raise ValidationError("maxUses must be a number")
    return n if n > 0 else None


def _expires(value: Any) -> Optional[float]:
    if not value:
        return None
    try:
        return from_iso(str(value))
    except ValueError:
        raise ValidationError("expiresAt must be an ISO timestamp")


async def list_passwords(db: AsyncSession) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(AdminPassword).order_by(AdminPassword.created_at.desc())
    )).scalars().all()
    return [password_to_dict(p) for p in rows]


async def create_password(
    db: AsyncSession,
    created_by: str,
    *,
    password: Optional[str],
    label: Optional[str],
    max_uses: Any = None,
    expires_at: Any = None,
) -> AdminPassword:
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )
    if not label or not label.strip():
        raise ValidationError("Label is required")

    row = AdminPassword(
        password_hash=await asyncio.to_thread(hash_password, password),
        label=label.strip(),
        is_active=True,
        max_uses=_max_uses(max_uses),
        current_uses=0,
        expires_at=_expires(expires_at),
        created_by=created_by,
        created_at=now_ts(),
    )
    db.add(row)
    await db.flush()
    logger.info("[AdminPasswords] created %s (%s)", row.id, row.label)
    return row


_UNSET = object()


async def update_password(
    db: AsyncSession,
    password_id: Optional[str],
    *,
    is_active: Any = _UNSET,
    max_uses: Any = _UNSET,
    expires_at: Any = _UNSET,
) -> AdminPassword:
    if not password_id:
        raise ValidationError("Password ID is required")

    updates: Dict[str, Any] = {}
    if isinstance(is_active, bool):
        updates["is_active"] = is_active
    if max_uses is not _UNSET:
        updates["max_uses"] = _max_uses(max_uses)
    if expires_at is not _UNSET:
        updates["expires_at"] = _expires(expires_at)
    if not updates:
        raise ValidationError("No updates provided")

    row = await db.get(AdminPassword, password_id)
    if row is None:
        raise NotFound("Password not found")
    for k, v in updates.items():
        setattr(row, k, v)
    await db.flush()
    return row


async def delete_password(db: AsyncSession, password_id: Optional[str]) -> None:
    if not password_id:
        raise ValidationError("Password ID is required")
    row = await db.get(AdminPassword, password_id)
    if row is None:
        raise NotFound("Password not found")
    await db.delete(row)
    await db.flush()


async def active_passwords(db: AsyncSession) -> List[AdminPassword]:
    now = now_ts()
    return list((await db.execute(
        select(AdminPassword).where(
            AdminPassword.is_active.is_(True),
            or_(AdminPassword.expires_at.is_(None),
                AdminPassword.expires_at > now),
            or_(AdminPassword.max_uses.is_(None),
                AdminPassword.current_uses < AdminPassword.max_uses),
        ).order_by(AdminPassword.created_at.asc())
    )).scalars().all())


async def redeem_password(db: AsyncSession, user_id: str,
                          password: Optional[str]) -> AdminPassword:
    """Promote an internal user to admin. Returns the password used."""
    profile = await db.get(Profile, user_id)
    if profile is None:
        raise NotFound("Profile not found")
    if profile.role in ADMIN_ROLES:
        raise ValidationError("You already have admin access", alreadyAdmin=True)
    if profile.role != ROLE_INTERNAL:
        raise Forbidden(
            "Only internal users can become admin. Please sign in with "
            "your institute email.",
            notInternal=True,
        )
    if not password:
        raise ValidationError("Password is required")

    candidates = await active_passwords(db)
    if not candidates:
        raise ValidationError(
            "No admin passwords are currently active. Contact a super admin."
        )

    # bcrypt blocks for tens of ms per hash; run it in a worker thread
    hashes = [p.password_hash for p in candidates]
    index = await asyncio.to_thread(first_match, password, hashes)
    if index is None:
        raise ValidationError(
            "Invalid password. Please check with a super admin for the "
            "correct password."
        )
    matched = candidates[index]

    # the use-count guard lives in the WHERE clause so concurrent
    # redemptions cannot overshoot max_uses
    res = await db.execute(
        update(AdminPassword)
        .where(
            AdminPassword.id == matched.id,
            AdminPassword.is_active.is_(True),
            or_(AdminPassword.max_uses.is_(None),
                AdminPassword.current_uses < AdminPassword.max_uses),
        )
        .values(current_uses=AdminPassword.current_uses + 1)
        .execution_options(synchronize_session=False)
    )
    if not res.rowcount:
        raise ValidationError("This admin password has just been used up")

    profile.role = ROLE_ADMIN
    profile.updated_at = now_ts()
    db.add(AdminAccessLog(
        user_id=profile.id,
        user_email=profile.email,
        password_label=matched.label,
        granted_by_password=matched.id,
        granted_at=now_ts(),
    ))
    await db.flush()
    logger.info("[AdminVerify] %s promoted via '%s'", profile.id, matched.label)
    return matched


async def access_logs(db: AsyncSession, limit: int = 100) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(AdminAccessLog, Profile)
        .outerjoin(Profile, AdminAccessLog.user_id == Profile.id)
        .order_by(AdminAccessLog.granted_at.desc())
        .limit(limit)
    )).all()
    return [{
        "id": log.id,
        "user_id": log.user_id,
        "user_email": log.user_email,
        "password_label": log.password_label,
        "granted_at": to_iso(log.granted_at),
        "granted_by_password": log.granted_by_password,
        "user": {
            "full_name": p.full_name if p else None,
            "role": p.role if p else None,
        },
    } for log, p in rows]
