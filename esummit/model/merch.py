from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..errors import NotFound, ValidationError
from ..helpers import is_valid_email, now_ts, to_iso
from .db import MerchOrder, Profile, PAY_PAID, PAY_PENDING_VERIFICATION
from .pricing import (
    MERCH_BUNDLES, MERCH_ITEMS, MERCH_SIZES,
    bundle_for_quantity, calculate_bundle_price,
)
from .validation import validate_phone_number

logger = logging.getLogger(__name__)

# order lifecycle
ORDER_PENDING = "pending"
ORDER_CONFIRMED = "confirmed"
ORDER_REJECTED = "rejected"
ORDER_DELIVERED = "delivered"


def order_to_dict(o: MerchOrder) -> Dict[str, Any]:
    return {
        "id": o.id,
        "user_id": o.user_id,
        "name": o.name,
        "email": o.email,
        "phone_number": o.phone_number,
        "item_name": o.item_name,
        "size": o.size,
        "bundle_type": o.bundle_type,
        "quantity": o.quantity,
        "amount": o.amount,
        "payment_status": o.payment_status,
        "payment_utr": o.payment_utr,
        "payment_screenshot_path": o.payment_screenshot_path,
        "status": o.status,
        "admin_notes": o.admin_notes,
        "created_at": to_iso(o.created_at),
    }


async def create_merch_order(
    db: AsyncSession,
    user: Profile,
    *,
    name: Optional[str],
    email: Optional[str],
    phone_number: Optional[str],
    item: Optional[str],
    size: Optional[str],
    bundle_type: Optional[str] = None,
    quantity: Optional[int] = None,
    utr: Optional[str] = None,
    screenshot_path: Optional[str] = None,
) -> MerchOrder:
    name = (name or "").strip()
    email = (email or "").strip().lower()
    if not name:
        raise ValidationError("Please enter your name")
    if not is_valid_email(email):
        raise ValidationError("Please enter a valid email")
    phone = validate_phone_number(phone_number)
    if not phone.is_valid:
        raise ValidationError(phone.error)
    if item not in MERCH_ITEMS:
        raise ValidationError("Please select an item")
    if size not in MERCH_SIZES:
        raise ValidationError("Please select a size")

    if not bundle_type and quantity is not None:
        try:
            bundle_type = bundle_for_quantity(int(quantity))
        except (TypeError, ValueError):
            raise ValidationError("Please select a bundle")
    if bundle_type not in MERCH_BUNDLES:
        raise ValidationError("Please select a bundle")

    utr = (utr or "").strip() or None
    if not utr and not screenshot_path:
        raise ValidationError(
            "Please provide EITHER a Transaction UTR OR a Payment Screenshot"
        )

    order = MerchOrder(
        user_id=user.id,
        name=name,
        email=email,
        phone_number=phone.formatted,
        item_name=MERCH_ITEMS[item]["label"],
        size=size,
        bundle_type=bundle_type,
        quantity=MERCH_BUNDLES[bundle_type].quantity,
        amount=calculate_bundle_price(bundle_type),
        payment_status=PAY_PENDING_VERIFICATION,
        payment_utr=utr,
        payment_screenshot_path=screenshot_path,
        status=ORDER_PENDING,
        created_at=now_ts(),
    )
    db.add(order)
    await db.flush()
    logger.info("[Merch] order %s by %s (%s, %s)",
                order.id, user.id, bundle_type, order.amount)
    return order


async def my_orders(db: AsyncSession, user_id: str) -> List[Dict[str, Any]]:
    rows = (await db.execute(
        select(MerchOrder)
        .where(MerchOrder.user_id == user_id)
        .order_by(MerchOrder.created_at.desc())
    )).scalars().all()
    return [order_to_dict(o) for o in rows]


async def list_orders(
    db: AsyncSession,
    *,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
) -> List[Dict[str, Any]]:
    q = select(MerchOrder).order_by(MerchOrder.created_at.desc())
    if status and status != "all":
        q = q.where(MerchOrder.status == status)
    if payment_status and payment_status != "all":
        q = q.where(MerchOrder.payment_status == payment_status)
    return [order_to_dict(o) for o in (await db.execute(q)).scalars().all()]


async def _get(db: AsyncSession, order_id: str) -> MerchOrder:
    order = await db.get(MerchOrder, order_id)
    if order is None:
        raise NotFound("Order not found")
    return order


def _review(order: MerchOrder, admin_id: str) -> None:
    order.reviewed_by = admin_id
    order.reviewed_at = now_ts()


async def verify_payment(db: AsyncSession, order_id: str, admin_id: str) -> MerchOrder:
    order = await _get(db, order_id)
    order.payment_status = PAY_PAID
    _review(order, admin_id)
    return order


async def confirm_order(db: AsyncSession, order_id: str, admin_id: str,
                        notes: Optional[str] = None) -> MerchOrder:
    order = await _get(db, order_id)
    if order.status != ORDER_PENDING:
        raise ValidationError(f"Order is already {order.status}")
    order.status = ORDER_CONFIRMED
    order.admin_notes = (notes or "").strip() or None
    _review(order, admin_id)
    return order


async def reject_order(db: AsyncSession, order_id: str, admin_id: str,
                       notes: Optional[str]) -> MerchOrder:
    notes = (notes or "").strip()
    if not notes:
        raise ValidationError("Please add a note explaining the rejection")
    order = await _get(db, order_id)
    if order.status != ORDER_PENDING:
        raise ValidationError(f"Order is already {order.status}")
    order.status = ORDER_REJECTED
    order.admin_notes = notes
    _review(order, admin_id)
    return order


async def mark_delivered(db: AsyncSession, order_id: str, admin_id: str) -> MerchOrder:
    order = await _get(db, order_id)
    if order.status != ORDER_CONFIRMED:
        raise ValidationError("Only confirmed orders can be delivered")
    order.status = ORDER_DELIVERED
    _review(order, admin_id)
    return order
