import uuid

from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    ForeignKey,
    UniqueConstraint,
)


Base = declarative_base()


def new_id() -> str:
    return uuid.uuid4().hex


# roles
ROLE_EXTERNAL = "external"
ROLE_INTERNAL = "internal"
ROLE_ADMIN = "admin"
ROLE_SUPER_ADMIN = "super_admin"
ADMIN_ROLES = (ROLE_ADMIN, ROLE_SUPER_ADMIN)

# payment statuses (tickets, merch, accommodation)
PAY_PENDING = "pending"
PAY_PENDING_VERIFICATION = "pending_verification"
PAY_PAID = "paid"
PAY_FAILED = "failed"


# ----------------------------
# ORM models
# ----------------------------
class Profile(Base):
    __tablename__ = "profiles"
    id = Column(String, primary_key=True)  # identity provider's user id
    email = Column(String, nullable=False, unique=True)
    full_name = Column(String, nullable=True)
    phone = Column(String, nullable=True)  # +91XXXXXXXXXX
    college_name = Column(String, nullable=True)
    roll_number = Column(String, nullable=True)

    # external | internal | admin | super_admin
    role = Column(String, nullable=False, default=ROLE_EXTERNAL)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=True)


class BookingGroup(Base):
    __tablename__ = "booking_groups"
    id = Column(String, primary_key=True, default=new_id)
    purchaser_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    ticket_type = Column(String, nullable=False)
    total_amount = Column(Integer, nullable=False)
    pax_count = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=True)

    # attendee details while the attendee has no profile yet
    pending_email = Column(String, nullable=True)
    pending_name = Column(String, nullable=True)
    pending_phone = Column(String, nullable=True)

    # solo | duo | quad | bumper
    type = Column(String, nullable=False)
    amount = Column(Integer, nullable=False)  # INR
    # pending_verification | paid | failed
    status = Column(String, nullable=False, default=PAY_PENDING_VERIFICATION)
    pax_count = Column(Integer, nullable=False, default=1)
    qr_secret = Column(String, nullable=False, unique=True)

    screenshot_path = Column(String, nullable=True)
    utr = Column(String, nullable=True)
    payment_owner_name = Column(String, nullable=True)
    booking_group_id = Column(
        String, ForeignKey("booking_groups.id"), nullable=True, index=True
    )

    band_issued_at = Column(Float, nullable=True)
    band_issued_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class EventLog(Base):
    __tablename__ = "event_logs"
    __table_args__ = (
        # one scan per ticket per event; duplicates are detected by this
        UniqueConstraint("ticket_id", "event_id", name="uq_event_logs_ticket_event"),
    )
    id = Column(String, primary_key=True, default=new_id)
    ticket_id = Column(String, ForeignKey("tickets.id"), nullable=False)
    event_id = Column(String, nullable=False, index=True)
    event_name = Column(String, nullable=False)
    scanned_by = Column(String, ForeignKey("profiles.id"), nullable=False)
    scanned_at = Column(Float, nullable=False)


class MerchOrder(Base):
    __tablename__ = "merch_orders"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone_number = Column(String, nullable=False)
    item_name = Column(String, nullable=False)
    size = Column(String, nullable=False)
    bundle_type = Column(String, nullable=False)
    quantity = Column(Integer, nullable=False)
    amount = Column(Integer, nullable=False)

    payment_status = Column(String, nullable=False, default=PAY_PENDING_VERIFICATION)
    payment_utr = Column(String, nullable=True)
    payment_screenshot_path = Column(String, nullable=True)

    # pending | confirmed | rejected | delivered
    status = Column(String, nullable=False, default="pending")
    admin_notes = Column(String, nullable=True)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class AccommodationRequest(Base):
    __tablename__ = "accommodation_requests"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False, unique=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False)
    phone_number = Column(String, nullable=False)
    college_name = Column(String, nullable=True)
    gender = Column(String, nullable=False)
    selected_days = Column(String, nullable=False)  # comma separated ISO dates
    date_of_arrival = Column(String, nullable=False)
    date_of_departure = Column(String, nullable=False)
    payment_amount = Column(Integer, nullable=False)

    payment_status = Column(String, nullable=False, default=PAY_PENDING_VERIFICATION)
    payment_utr = Column(String, nullable=True)
    payment_screenshot_path = Column(String, nullable=True)

    # pending | approved | rejected
    status = Column(String, nullable=False, default="pending")
    admin_notes = Column(String, nullable=True)
    reviewed_by = Column(String, nullable=True)
    reviewed_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class AdminPassword(Base):
    __tablename__ = "admin_passwords"
    id = Column(String, primary_key=True, default=new_id)
    password_hash = Column(String, nullable=False)
    label = Column(String, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    max_uses = Column(Integer, nullable=True)  # NULL = unlimited
    current_uses = Column(Integer, nullable=False, default=0)
    expires_at = Column(Float, nullable=True)
    created_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class AdminAccessLog(Base):
    __tablename__ = "admin_access_logs"
    id = Column(String, primary_key=True, default=new_id)
    user_id = Column(String, ForeignKey("profiles.id"), nullable=False)
    user_email = Column(String, nullable=False)
    password_label = Column(String, nullable=False)
    granted_by_password = Column(String, nullable=True)
    granted_at = Column(Float, nullable=False)
