from __future__ import annotations

import logging
import os
import time
from pathlib import Path
from typing import Optional
from urllib.parse import quote, urlencode

import httpx
import redis.asyncio as redis
from fastapi import Depends, FastAPI, Form, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import (
    HTMLResponse, ORJSONResponse, RedirectResponse, Response,
)
from fastapi.staticfiles import StaticFiles
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware
from starlette.status import HTTP_303_SEE_OTHER

from .errors import (
    Conflict, DomainError, Forbidden, NotFound, Unauthorized, ValidationError,
)
from .helpers import from_iso, is_valid_email, now_ts, to_iso
from .identity import (
    AuthFailed, IdentityAdapter, new_adapter, mint_code,
    AUTH_URL, BACKEND as AUTH_BACKEND,
)
from .infra.sql import create_schema, is_unique_violation, make_async_engine
from .mailer import Mailer, Recipient, unique_recipients
from .model import (
    accommodation, adminpass, cache, checkin, merch, profiles, tickets,
)
from .model.cache import CacheStore, BACKEND as CACHE_BACKEND
from .model.db import Base, Profile, Ticket, PAY_PAID, ROLE_SUPER_ADMIN
from .model.pricing import (
    ACCOMMODATION_DATES, ACCOMMODATION_PRICES, MERCH_BUNDLES, MERCH_ITEMS,
    MERCH_SIZES, TICKET_PRICES, calculate_ticket_price,
)
from .model.unified import unified_records
from .model.validation import format_phone_for_display
from .sheets import SheetSync

# ----------------------------
# Config & Constants
# ----------------------------
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./esummit.db")
SESSION_SECRET = os.environ.get("SESSION_SECRET", "dev-secret-change-me")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
REDIS_URL = os.getenv("REDIS_URL", "redis://127.0.0.1:6379")

PROFILE_CACHE_TTL = 5 * 60
UNIFIED_CACHE_CONTROL = "public, s-maxage=300, stale-while-revalidate=600"

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).parent
templates = Jinja2Templates(directory=str(BASE_DIR / "templates"))
templates.env.filters["phone"] = format_phone_for_display

engine, SessionAsync, _, gated = make_async_engine(DATABASE_URL)


async def get_db() -> AsyncSession:
    async with SessionAsync() as session:
        yield session


app = FastAPI(
    title="E-Summit",
    default_response_class=ORJSONResponse,
)
app.mount("/static", StaticFiles(directory=str(BASE_DIR / "static")), name="static")
app.add_middleware(SessionMiddleware, secret_key=SESSION_SECRET)


@app.exception_handler(DomainError)
async def _domain_error(request: Request, exc: DomainError):
    return ORJSONResponse(
        {"success": False, "error": exc.message, **exc.extra},
        status_code=exc.status_code,
    )


@app.exception_handler(RequestValidationError)
async def _request_error(request: Request, exc: RequestValidationError):
    fields = [".".join(str(p) for p in e["loc"][1:]) for e in exc.errors()]
    return ORJSONResponse(
        {"success": False, "error": "Invalid request", "fields": fields},
        status_code=422,
    )


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    print('\n' * 2)
    print('=' * 50)
    print('E-Summit is starting up...')
    print(f'   - Cache    Backend: {"Redis" if CACHE_BACKEND == "redis" else "Memory"}')
    print(f'   - Identity Backend: {"Remote" if AUTH_BACKEND == "remote" else "Mock"}')
    print('=' * 50)
    print('\n' * 2)


@app.on_event("startup")
async def _db_init():
    await create_schema(engine, Base.metadata)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=10.0,
        limits=httpx.Limits(
            max_connections=100, max_keepalive_connections=20
        ),
    )
    app.state.identity = new_adapter(app.state.http)
    app.state.mailer = Mailer(app.state.http)
    app.state.sheets = SheetSync()


@app.on_event("startup")
async def _cache_start():
    if CACHE_BACKEND == "redis":
        app.state.redis = redis.from_url(
            REDIS_URL,
            decode_responses=True,
            max_connections=int(os.getenv("REDIS_MAX_CONN", "64")),
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )
    app.state.cache = cache.new_store(r=getattr(app.state, "redis", None))


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.close()
        app.state.redis = None


@app.on_event("shutdown")
async def _db_stop():
    await engine.dispose()


# ----------------------------
# Dependencies
# ----------------------------
def cache_store() -> CacheStore:
    return app.state.cache


def identity_adapter() -> IdentityAdapter:
    return app.state.identity


def mailer() -> Mailer:
    return app.state.mailer


def sheet_sync() -> SheetSync:
    return app.state.sheets


async def current_profile(request: Request,
                          db: AsyncSession = Depends(get_db)) -> Profile:
    user_id = request.session.get("user_id")
    if not user_id:
        raise Unauthorized("Unauthorized")
    async with gated():
        async with db.begin():
            profile = await profiles.get_profile(db, user_id)
    if profile is None:
        raise Unauthorized("Unauthorized")
    return profile


async def current_admin(profile: Profile = Depends(current_profile)) -> Profile:
    if not profiles.is_admin(profile):
        raise Forbidden("Forbidden")
    return profile


async def current_super_admin(profile: Profile = Depends(current_profile)) -> Profile:
    if profile.role != ROLE_SUPER_ADMIN:
        raise Forbidden("Super admin access required")
    return profile


# ----------------------------
# Session profile cache & route guard
# ----------------------------
def _cache_profile(request: Request, p: Profile) -> dict:
    cached = {
        "id": p.id,
        "email": p.email,
        "full_name": p.full_name,
        "role": p.role,
        "is_admin": profiles.is_admin(p),
        "is_complete": profiles.is_complete(p),
        "cached_at": now_ts(),
    }
    request.session["profile"] = cached
    return cached


async def _page_profile(request: Request, db: AsyncSession) -> Optional[dict]:
    user_id = request.session.get("user_id")
    if not user_id:
        return None
    cached = request.session.get("profile")
    if (cached and cached.get("id") == user_id
            and now_ts() - cached.get("cached_at", 0) < PROFILE_CACHE_TTL):
        return cached
    async with gated():
        async with db.begin():
            p = await profiles.get_profile(db, user_id)
    if p is None:
        request.session.clear()
        return None
    return _cache_profile(request, p)


def _guard(path: str, profile: Optional[dict]) -> Optional[str]:
    """Where to send a page request instead, or None to serve it."""
    protected = path.startswith(("/dashboard", "/admin", "/onboarding"))
    if profile is None:
        if protected:
            return "/login?" + urlencode({"next": path})
        return None
    if path == "/login":
        return "/admin" if profile["is_admin"] else "/dashboard"
    if path == "/onboarding":
        return "/dashboard" if profile["is_complete"] else None
    if not profile["is_complete"] and not profile["is_admin"] and protected:
        return "/onboarding"
    if path.startswith("/admin") and not profile["is_admin"]:
        return "/dashboard"
    if (path.startswith("/admin/settings")
            and profile.get("role") != ROLE_SUPER_ADMIN):
        return "/admin"
    return None


async def _guarded(request: Request, db: AsyncSession):
    profile = await _page_profile(request, db)
    dest = _guard(request.url.path, profile)
    if dest is not None:
        return profile, RedirectResponse(url=dest, status_code=HTTP_303_SEE_OTHER)
    return profile, None


# ----------------------------
# Auth
# ----------------------------
@app.get("/auth/callback")
async def auth_callback(
    request: Request,
    code: Optional[str] = None,
    next: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    ident: IdentityAdapter = Depends(identity_adapter),
):
    failed = RedirectResponse(url="/login?error=auth_failed",
                              status_code=HTTP_303_SEE_OTHER)
    if not code:
        return failed
    try:
        who = await ident.exchange_code(code)
    except AuthFailed as e:
        logger.warning("[Auth] callback rejected: %s", e)
        return failed

    async with gated():
        async with db.begin():
            profile = await profiles.sync_profile_on_login(db, who)
    request.session["user_id"] = profile.id
    _cache_profile(request, profile)
    return RedirectResponse(
        url=profiles.landing_path_after_login(profile, next),
        status_code=HTTP_303_SEE_OTHER,
    )


@app.get("/login", response_class=HTMLResponse)
async def login_page(request: Request, next: Optional[str] = None,
                     error: Optional[str] = None,
                     db: AsyncSession = Depends(get_db)):
    _, redirect = await _guarded(request, db)
    if redirect:
        return redirect
    provider_url = None
    if AUTH_BACKEND == "remote":
        callback = str(request.url_for("auth_callback"))
        if next:
            callback += "?" + urlencode({"next": next})
        provider_url = (
            f"{AUTH_URL.rstrip('/')}/auth/v1/authorize?provider=google"
            f"&redirect_to={quote(callback, safe='')}"
        )
    return _render(request, "login.html", None, next=next, error=error,
                   provider_url=provider_url)


# Stand-in for the provider's hosted sign-in page when AUTH_BACKEND=mock.
@app.post("/login")
async def login_post(
    email: str = Form(...),
    full_name: str = Form(""),
    next: str = Form(""),
):
    if AUTH_BACKEND != "mock":
        raise NotFound("Not found")
    if not is_valid_email(email):
        return RedirectResponse(url="/login?error=auth_failed",
                                status_code=HTTP_303_SEE_OTHER)
    params = {"code": mint_code(email.strip(), full_name.strip() or None)}
    if next:
        params["next"] = next
    return RedirectResponse(url="/auth/callback?" + urlencode(params),
                            status_code=HTTP_303_SEE_OTHER)


@app.get("/logout")
async def logout(request: Request):
    request.session.clear()
    return RedirectResponse(url="/", status_code=HTTP_303_SEE_OTHER)


# ----------------------------
# Pages
# ----------------------------
def _render(request: Request, name: str, profile: Optional[dict], **ctx):
    return templates.TemplateResponse(request, name, {"profile": profile, **ctx})


async def _page(request: Request, db: AsyncSession, name: str,
                load=None, **ctx):
    """Guarded page; `load(db, profile)` returns extra context read in one
    transaction."""
    profile, redirect = await _guarded(request, db)
    if redirect:
        return redirect
    if load is not None:
        async with gated():
            async with db.begin():
                ctx.update(await load(db, profile))
    return _render(request, name, profile, **ctx)


@app.get("/", response_class=HTMLResponse)
async def landing_page(request: Request, db: AsyncSession = Depends(get_db)):
    profile = await _page_profile(request, db)
    return _render(
        request, "landing.html", profile,
        site_name="E-Summit '26",
        conf_date="Jan 30 - Feb 1, 2026",
        passes=TICKET_PRICES,
    )


@app.get("/onboarding", response_class=HTMLResponse)
async def onboarding_page(request: Request, db: AsyncSession = Depends(get_db)):
    return await _page(request, db, "onboarding.html")


@app.get("/dashboard", response_class=HTMLResponse)
async def dashboard_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, profile):
        me = await profiles.get_profile(db, profile["id"])
        return {
            "me": profiles.profile_to_dict(me),
            "tickets": await tickets.my_tickets(db, me),
            "accommodation": await accommodation.my_request(db, me.id),
            "orders": await merch.my_orders(db, me.id),
        }
    return await _page(request, db, "dashboard.html", load)


@app.get("/dashboard/pass", response_class=HTMLResponse)
async def pass_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, profile):
        me = await profiles.get_profile(db, profile["id"])
        return {
            "me": profiles.profile_to_dict(me),
            "tickets": await tickets.my_tickets(db, me),
        }
    return await _page(request, db, "pass.html", load, passes=TICKET_PRICES)


@app.get("/dashboard/merch", response_class=HTMLResponse)
async def merch_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, profile):
        return {"orders": await merch.my_orders(db, profile["id"])}
    return await _page(request, db, "merch.html", load,
                       items=MERCH_ITEMS, sizes=MERCH_SIZES,
                       bundles=MERCH_BUNDLES)


@app.get("/dashboard/accommodation", response_class=HTMLResponse)
async def accommodation_page(request: Request,
                             db: AsyncSession = Depends(get_db)):
    async def load(db, profile):
        return {"stay": await accommodation.my_request(db, profile["id"])}
    return await _page(request, db, "accommodation.html", load,
                       dates=ACCOMMODATION_DATES, prices=ACCOMMODATION_PRICES,
                       genders=accommodation.GENDERS)


@app.get("/dashboard/request-access", response_class=HTMLResponse)
async def request_access_page(request: Request,
                              db: AsyncSession = Depends(get_db)):
    return await _page(request, db, "request_access.html")


@app.get("/admin", response_class=HTMLResponse)
async def admin_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        return {"stats": await tickets.admin_stats(db)}
    return await _page(request, db, "admin.html", load)


@app.get("/admin/verify", response_class=HTMLResponse)
async def admin_verify_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        pending = await tickets.pending_verifications(db)
        return {"requests": tickets.group_by_booking(pending)}
    return await _page(request, db, "admin_verify.html", load)


@app.get("/admin/bands", response_class=HTMLResponse)
async def admin_bands_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        return {"groups": tickets.group_by_booking(await tickets.band_queue(db))}
    return await _page(request, db, "admin_bands.html", load)


@app.get("/admin/merch", response_class=HTMLResponse)
async def admin_merch_page(request: Request, status: Optional[str] = None,
                           db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        return {"orders": await merch.list_orders(db, status=status)}
    return await _page(request, db, "admin_merch.html", load,
                       status=status or "all")


@app.get("/admin/accommodation", response_class=HTMLResponse)
async def admin_accommodation_page(request: Request,
                                   status: Optional[str] = None,
                                   gender: Optional[str] = None,
                                   db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        return {"requests": await accommodation.list_requests(
            db, status=status, gender=gender)}
    return await _page(request, db, "admin_accommodation.html", load,
                       status=status or "all", gender=gender or "all",
                       genders=accommodation.GENDERS)


@app.get("/admin/users", response_class=HTMLResponse)
async def admin_users_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        return {"users": await profiles.list_users(db)}
    return await _page(request, db, "admin_users.html", load)


@app.get("/admin/unified", response_class=HTMLResponse)
async def admin_unified_page(request: Request, category: Optional[str] = None,
                             db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        rows = await unified_records(db)
        if category:
            rows = [r for r in rows if r["category"] == category]
        return {"rows": rows}
    return await _page(request, db, "admin_unified.html", load,
                       category=category or "")


@app.get("/admin/reminder", response_class=HTMLResponse)
async def admin_reminder_page(request: Request, db: AsyncSession = Depends(get_db)):
    return await _page(request, db, "admin_reminder.html")


@app.get("/admin/settings", response_class=HTMLResponse)
async def admin_settings_page(request: Request, db: AsyncSession = Depends(get_db)):
    async def load(db, _):
        return {
            "passwords": await adminpass.list_passwords(db),
            "logs": await adminpass.access_logs(db),
        }
    return await _page(request, db, "admin_settings.html", load)


@app.get("/admin/scan", response_class=HTMLResponse)
async def admin_scan_page(request: Request, db: AsyncSession = Depends(get_db)):
    return await _page(request, db, "scan.html")


# ----------------------------
# API: profile
# ----------------------------
@app.get("/api/profile")
async def api_profile(profile: Profile = Depends(current_profile)):
    return {"profile": profiles.profile_to_dict(profile)}


@app.post("/api/profile/onboarding")
async def api_onboarding(
    payload: dict,
    request: Request,
    profile: Profile = Depends(current_profile),
    db: AsyncSession = Depends(get_db),
    sheets: SheetSync = Depends(sheet_sync),
):
    async with gated():
        async with db.begin():
            p = await profiles.complete_onboarding(
                db, profile.id,
                full_name=payload.get("fullName"),
                phone=payload.get("phone"),
                college_name=payload.get("collegeName"),
                roll_number=payload.get("rollNumber"),
            )
    _cache_profile(request, p)
    data = profiles.profile_to_dict(p)
    await sheets.sync_user(data)
    return {"success": True, "profile": data,
            "redirect": profiles.landing_path_after_login(p, None)}


@app.post("/api/profile/clear-cache")
async def api_clear_profile_cache(request: Request):
    request.session.pop("profile", None)
    return {"success": True}


# ----------------------------
# API: pricing
# ----------------------------
@app.get("/api/pricing")
async def api_pricing():
    return {
        "passes": {k: {"amount": v.amount, "pax": v.pax, "label": v.label}
                   for k, v in TICKET_PRICES.items()},
        "merch": {
            "items": MERCH_ITEMS,
            "sizes": list(MERCH_SIZES),
            "bundles": {k: {"quantity": b.quantity, "price": b.early_bird_price,
                            "actualPrice": b.actual_price, "label": b.label}
                        for k, b in MERCH_BUNDLES.items()},
        },
        "accommodation": {"dates": ACCOMMODATION_DATES,
                          "prices": ACCOMMODATION_PRICES},
    }


@app.get("/api/pricing/quote")
async def api_pricing_quote(count: int, role: str = "external"):
    if count < 1:
        raise ValidationError("count must be at least 1")
    calc = calculate_ticket_price(count, role)
    return {
        "totalAmount": calc.total_amount,
        "pricePerHead": calc.price_per_head,
        "label": calc.label,
        "isExternal": calc.is_external,
    }


# ----------------------------
# API: tickets
# ----------------------------
@app.post("/api/tickets/book")
async def api_book_tickets(
    payload: dict,
    profile: Profile = Depends(current_profile),
    db: AsyncSession = Depends(get_db),
    sheets: SheetSync = Depends(sheet_sync),
):
    if not profiles.is_complete(profile):
        raise ValidationError("Please complete your profile first")
    async with gated():
        async with db.begin():
            booked = await tickets.book_tickets(
                db, profile,
                payload.get("passType"),
                tickets.parse_attendees(payload.get("attendees")),
                utr=payload.get("utr"),
                payment_owner_name=payload.get("paymentOwnerName"),
                screenshot_path=payload.get("screenshotPath"),
            )
            holders = await tickets.load_holders(db, booked)
    items = [tickets.ticket_to_dict(t, holders.get(t.user_id)) for t in booked]
    for t in items:
        await sheets.sync_ticket({**t, "pax_count": len(items)},
                                 t["holder_name"], t["holder_email"])
    return {
        "success": True,
        "bookingGroupId": booked[0].booking_group_id,
        "tickets": items,
    }


@app.get("/api/tickets/mine")
async def api_my_tickets(profile: Profile = Depends(current_profile),
                         db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            items = await tickets.my_tickets(db, profile)
    return {"tickets": items}


@app.get("/api/tickets/{ticket_id}/qr")
async def api_ticket_qr(ticket_id: str,
                        profile: Profile = Depends(current_profile),
                        db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            t = await db.get(Ticket, ticket_id)
    owns = t is not None and (
        t.user_id == profile.id or t.pending_email == profile.email
    )
    if t is None or not (owns or profiles.is_admin(profile)):
        raise NotFound("Ticket not found")
    if t.status != PAY_PAID:
        raise ValidationError("Ticket not paid yet")
    return Response(content=tickets.qr_png(t.qr_secret), media_type="image/png",
                    headers={"Cache-Control": "private, no-store"})


@app.get("/api/admin/tickets/pending")
async def api_pending_tickets(_: Profile = Depends(current_admin),
                              db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            items = await tickets.pending_verifications(db)
    return {"tickets": items}


@app.post("/api/admin/tickets/{ticket_id}/verify")
async def api_verify_ticket(
    ticket_id: str,
    payload: dict,
    admin: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    async with gated():
        async with db.begin():
            batch = await tickets.verify_ticket(db, ticket_id, payload.get("action"))
    logger.info("[Verify] %s by %s", payload.get("action"), admin.id)
    return {"success": True, "updated": len(batch),
            "status": batch[0].status if batch else None}


@app.post("/api/admin/issue-band")
async def api_issue_band(
    payload: dict,
    admin: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    async with gated():
        async with db.begin():
            res = await tickets.issue_band(
                db, admin.id,
                ticket_id=payload.get("ticketId"),
                booking_group_id=payload.get("bookingGroupId"),
            )
    return {"success": True, "issuedCount": res.issued_count,
            "issuedAt": to_iso(res.issued_at)}


@app.get("/api/admin/bands")
async def api_band_queue(_: Profile = Depends(current_admin),
                         db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            items = await tickets.band_queue(db)
    return {"tickets": items}


@app.get("/api/admin/export-tickets")
async def api_export_tickets(_: Profile = Depends(current_admin),
                             db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            rows = await tickets.export_tickets(db)
    return {"success": True, "data": rows, "count": len(rows)}


@app.get("/api/admin/stats")
async def api_admin_stats(_: Profile = Depends(current_admin),
                          db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            return await tickets.admin_stats(db)


@app.get("/api/admin/users")
async def api_admin_users(_: Profile = Depends(current_admin),
                          db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            users = await profiles.list_users(db)
    return {"users": users}


# ----------------------------
# API: check-in
# ----------------------------
@app.post("/api/scan/verify")
async def api_scan_verify(
    payload: dict,
    request: Request,
    db: AsyncSession = Depends(get_db),
    store: CacheStore = Depends(cache_store),
):
    started = time.perf_counter()
    qr_secret = payload.get("qrSecret")
    event_id = payload.get("eventId")
    if not qr_secret or not event_id:
        res = checkin.ScanResult(checkin.ERROR, "Missing data", http_status=400)
        return ORJSONResponse(res.to_dict(), status_code=400)

    user_id = request.session.get("user_id")
    if not user_id:
        res = checkin.ScanResult(checkin.ERROR, "Unauthorized", http_status=401)
        return ORJSONResponse(res.to_dict(), status_code=401)

    try:
        res = await checkin.verify_scan(
            db, gated, store,
            scanner_id=user_id,
            qr_secret=str(qr_secret),
            event_id=str(event_id),
            event_name=payload.get("eventName"),
        )
    except Exception as e:
        logger.exception("[Scan] verification failed: %s", e)
        res = checkin.ScanResult(checkin.ERROR, "Server error", http_status=500)
    return ORJSONResponse(res.to_dict(started), status_code=res.http_status)


@app.get("/api/admin/scan-history")
async def api_scan_history(
    event_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = 1,
    limit: int = 50,
    _: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        start_ts = from_iso(start_date)
        end_ts = from_iso(end_date)
    except ValueError:
        raise ValidationError("Dates must be ISO timestamps")
    async with gated():
        async with db.begin():
            return await checkin.scan_history(
                db, event_id=event_id, start_ts=start_ts, end_ts=end_ts,
                page=page, limit=limit,
            )


# ----------------------------
# API: admin passwords
# ----------------------------
@app.get("/api/admin/passwords")
async def api_list_passwords(_: Profile = Depends(current_super_admin),
                             db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            items = await adminpass.list_passwords(db)
    return {"passwords": items}


@app.post("/api/admin/passwords")
async def api_create_password(
    payload: dict,
    su: Profile = Depends(current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    async with gated():
        async with db.begin():
            row = await adminpass.create_password(
                db, su.id,
                password=payload.get("password"),
                label=payload.get("label"),
                max_uses=payload.get("maxUses"),
                expires_at=payload.get("expiresAt"),
            )
    # the only time the plain password leaves the server
    return {"success": True, "password": adminpass.password_to_dict(row),
            "plainPassword": payload.get("password")}


@app.patch("/api/admin/passwords")
async def api_update_password(
    payload: dict,
    _: Profile = Depends(current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    changes = {}
    if "isActive" in payload:
        changes["is_active"] = payload["isActive"]
    if "maxUses" in payload:
        changes["max_uses"] = payload["maxUses"]
    if "expiresAt" in payload:
        changes["expires_at"] = payload["expiresAt"]
    async with gated():
        async with db.begin():
            row = await adminpass.update_password(db, payload.get("id"), **changes)
    return {"success": True, "password": adminpass.password_to_dict(row)}


@app.delete("/api/admin/passwords")
async def api_delete_password(
    id: Optional[str] = None,
    _: Profile = Depends(current_super_admin),
    db: AsyncSession = Depends(get_db),
):
    async with gated():
        async with db.begin():
            await adminpass.delete_password(db, id)
    return {"success": True}


@app.post("/api/admin/verify-password")
async def api_verify_admin_password(
    payload: dict,
    request: Request,
    profile: Profile = Depends(current_profile),
    db: AsyncSession = Depends(get_db),
    store: CacheStore = Depends(cache_store),
):
    async with gated():
        async with db.begin():
            used = await adminpass.redeem_password(db, profile.id,
                                                   payload.get("password"))
    await store.delete(cache.admin_key(profile.id))
    request.session.pop("profile", None)
    return {"success": True, "message": "Admin access granted!",
            "label": used.label}


@app.get("/api/admin/access-logs")
async def api_access_logs(_: Profile = Depends(current_super_admin),
                          db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            logs = await adminpass.access_logs(db)
    return {"logs": logs}


# ----------------------------
# API: merch
# ----------------------------
@app.post("/api/merch/orders")
async def api_create_merch_order(
    payload: dict,
    profile: Profile = Depends(current_profile),
    db: AsyncSession = Depends(get_db),
):
    async with gated():
        async with db.begin():
            order = await merch.create_merch_order(
                db, profile,
                name=payload.get("name") or profile.full_name,
                email=payload.get("email") or profile.email,
                phone_number=payload.get("phoneNumber") or profile.phone,
                item=payload.get("item"),
                size=payload.get("size"),
                bundle_type=payload.get("bundleType"),
                quantity=payload.get("quantity"),
                utr=payload.get("utr"),
                screenshot_path=payload.get("screenshotPath"),
            )
    return {"success": True, "order": merch.order_to_dict(order)}


@app.get("/api/merch/orders")
async def api_my_merch_orders(profile: Profile = Depends(current_profile),
                              db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            items = await merch.my_orders(db, profile.id)
    return {"orders": items}


@app.get("/api/admin/merch")
async def api_admin_merch(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    _: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    async with gated():
        async with db.begin():
            items = await merch.list_orders(db, status=status,
                                            payment_status=payment_status)
    return {"orders": items}


@app.post("/api/admin/merch/{order_id}/{action}")
async def api_admin_merch_action(
    order_id: str,
    action: str,
    request: Request,
    admin: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = await _optional_json(request)
    notes = payload.get("notes")
    async with gated():
        async with db.begin():
            if action == "verify-payment":
                order = await merch.verify_payment(db, order_id, admin.id)
            elif action == "confirm":
                order = await merch.confirm_order(db, order_id, admin.id, notes)
            elif action == "reject":
                order = await merch.reject_order(db, order_id, admin.id, notes)
            elif action == "deliver":
                order = await merch.mark_delivered(db, order_id, admin.id)
            else:
                raise NotFound("Unknown action")
    return {"success": True, "order": merch.order_to_dict(order)}


async def _optional_json(request: Request) -> dict:
    body = await request.body()
    if not body:
        return {}
    try:
        data = await request.json()
    except ValueError:
        raise ValidationError("Invalid JSON body")
    return data if isinstance(data, dict) else {}


# ----------------------------
# API: accommodation
# ----------------------------
@app.post("/api/accommodation")
async def api_create_accommodation(
    payload: dict,
    profile: Profile = Depends(current_profile),
    db: AsyncSession = Depends(get_db),
):
    try:
        async with gated():
            async with db.begin():
                req = await accommodation.create_accommodation_request(
                    db, profile,
                    name=payload.get("name") or profile.full_name,
                    email=payload.get("email") or profile.email,
                    phone_number=payload.get("phoneNumber") or profile.phone,
                    gender=payload.get("gender"),
                    selected_days=payload.get("selectedDays"),
                    college_name=payload.get("collegeName"),
                    utr=payload.get("utr"),
                    screenshot_path=payload.get("screenshotPath"),
                )
    except IntegrityError as e:
        # two submissions racing past the existence check
        if not is_unique_violation(e):
            raise
        raise Conflict("You have already submitted an accommodation request")
    return {"success": True, "request": accommodation.request_to_dict(req)}


@app.get("/api/accommodation")
async def api_my_accommodation(profile: Profile = Depends(current_profile),
                               db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            req = await accommodation.my_request(db, profile.id)
    return {"request": req}


@app.delete("/api/accommodation")
async def api_withdraw_accommodation(profile: Profile = Depends(current_profile),
                                     db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            await accommodation.delete_rejected_request(db, profile.id)
    return {"success": True}


@app.get("/api/admin/accommodation")
async def api_admin_accommodation(
    status: Optional[str] = None,
    gender: Optional[str] = None,
    _: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    async with gated():
        async with db.begin():
            items = await accommodation.list_requests(db, status=status,
                                                      gender=gender)
    return {"requests": items}


@app.post("/api/admin/accommodation/{request_id}/approve")
async def api_approve_accommodation(
    request_id: str,
    request: Request,
    admin: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = await _optional_json(request)
    async with gated():
        async with db.begin():
            req = await accommodation.approve_request(
                db, request_id, admin.id, payload.get("notes"))
    return {"success": True, "request": accommodation.request_to_dict(req)}


@app.post("/api/admin/accommodation/{request_id}/reject")
async def api_reject_accommodation(
    request_id: str,
    request: Request,
    admin: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
):
    payload = await _optional_json(request)
    async with gated():
        async with db.begin():
            req = await accommodation.reject_request(
                db, request_id, admin.id, payload.get("notes"))
    return {"success": True, "request": accommodation.request_to_dict(req)}


# ----------------------------
# API: unified admin view
# ----------------------------
@app.get("/api/admin/unified-view")
async def api_unified_view(_: Profile = Depends(current_admin),
                           db: AsyncSession = Depends(get_db)):
    async with gated():
        async with db.begin():
            data = await unified_records(db)
    return ORJSONResponse(
        {"success": True, "data": data, "cached_at": to_iso(now_ts())},
        headers={"Cache-Control": UNIFIED_CACHE_CONTROL},
    )


# ----------------------------
# API: e-mail
# ----------------------------
def _payment_mail_args(payload: dict):
    to = payload.get("to")
    user_name = payload.get("userName")
    ticket_type = payload.get("ticketType")
    amount = payload.get("amount")
    if not to or not user_name or not ticket_type or amount is None:
        raise ValidationError("Missing required fields")
    return to, user_name, ticket_type, amount


@app.post("/api/email/send-approval")
async def api_send_approval(payload: dict,
                            _: Profile = Depends(current_admin),
                            mail: Mailer = Depends(mailer)):
    res = await mail.send_payment_approval(*_payment_mail_args(payload))
    if not res.success:
        return ORJSONResponse({"success": False, "error": res.error},
                              status_code=500)
    return {"success": True}


@app.post("/api/email/send-rejection")
async def api_send_rejection(payload: dict,
                             _: Profile = Depends(current_admin),
                             mail: Mailer = Depends(mailer)):
    res = await mail.send_payment_rejection(*_payment_mail_args(payload))
    if not res.success:
        return ORJSONResponse({"success": False, "error": res.error},
                              status_code=500)
    return {"success": True}


@app.post("/api/admin/send-reminder")
async def api_send_reminder(
    payload: dict,
    _: Profile = Depends(current_admin),
    db: AsyncSession = Depends(get_db),
    mail: Mailer = Depends(mailer),
):
    subject = (payload.get("subject") or "").strip()
    message = (payload.get("message") or "").strip()
    if not subject or not message:
        raise ValidationError("Subject and message are required")

    test_email = payload.get("testEmail")
    if payload.get("testMode") and test_email:
        res = await mail.send_reminder(Recipient(test_email, "Test User"),
                                       subject, message, test=True)
        if not res.success:
            return ORJSONResponse(
                {"success": False, "error": f"Resend API error: {res.error}"},
                status_code=500,
            )
        return {"success": True, "message": "Test email sent", "emailId": res.id}

    async with gated():
        async with db.begin():
            contacts = await tickets.paid_holder_contacts(db)
    recipients = unique_recipients(contacts)
    if not recipients:
        raise ValidationError("No ticket holders found")

    out = await mail.send_reminders(recipients, subject, message)
    return {
        "success": True,
        "totalRecipients": out.total,
        "sent": out.sent,
        "failed": out.failed,
        "errors": out.errors,
    }


# ----------------------------
# API: Google Sheets mirror
# ----------------------------
@app.post("/api/sync/sheets")
async def api_sync_sheets(payload: dict,
                          _: Profile = Depends(current_profile),
                          sheets: SheetSync = Depends(sheet_sync)):
    kind = payload.get("type")
    data = payload.get("data")
    if not kind or not data:
        raise ValidationError("Missing type or data")
    if kind == "user":
        ok = await sheets.sync_user(data)
    elif kind == "ticket":
        ok = await sheets.sync_ticket(data.get("ticket") or {},
                                      data.get("userName"), data.get("userEmail"))
    else:
        raise ValidationError('Invalid type. Use "user" or "ticket"')
    return {"success": ok}
