import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from redis.asyncio import Redis
from sqlalchemy.orm import Session

from . import config
from .admin import router as admin_router
from .audit import record_decision
from .checkout import start_checkout
from .clock import Clock, SystemClock
from .db import Base, SessionLocal, engine, get_db
from .errors import BookingError, BookingNotFound, InvalidSignature
from .fulfillment import FulfillmentService, get_booking_by_session
from .gateway import PaymentGateway, build_gateway
from .idempotency import IdempotencyCache
from .intent import IntentCodec
from .logging_config import setup_logging
from .notifications import Notifier, build_notifier
from .rate_limit import TokenBucket
from .redemption import redeem
from .scheduler import Scheduler
from .schemas import (
    BookingOut,
    CheckoutReq,
    CheckoutResp,
    FreeBookingReq,
    HeldSeatsResp,
    HoldSeatsReq,
    HoldSeatsResp,
    RedeemReq,
    ReleaseReq,
)
from .seat_locks import acquire_or_renew, list_held_seats, release
from .storage import ArtifactStorage, LocalArtifactStorage
from .sweeper import build_sweep_task
from .ticketing import TicketIssuer

setup_logging()


def configure(
    app: FastAPI,
    *,
    clock: Clock | None = None,
    redis=None,
    gateway: PaymentGateway | None = None,
    storage: ArtifactStorage | None = None,
    notifier: Notifier | None = None,
) -> None:
    """Wire collaborators onto app.state. Called once at import; tests call it again with fakes."""
    clock = clock or SystemClock()
    redis = redis if redis is not None else Redis.from_url(config.REDIS_URL, decode_responses=False)
    gateway = gateway or build_gateway()
    storage = storage or LocalArtifactStorage(config.ARTIFACT_DIR, config.ARTIFACT_BASE_URL)
    notifier = notifier or build_notifier()

    codec = IntentCodec(config.INTENT_ENCRYPTION_KEY)
    issuer = TicketIssuer(config.TICKET_SIGNING_SECRET, storage, clock)

    app.state.clock = clock
    app.state.redis = redis
    app.state.gateway = gateway
    app.state.codec = codec
    app.state.issuer = issuer
    app.state.fulfillment = FulfillmentService(gateway, codec, issuer, notifier, clock)
    app.state.idempotency = IdempotencyCache(redis, scope="redeem", ttl_seconds=config.IDEMPOTENCY_TTL_SECONDS)
    app.state.redeem_bucket = TokenBucket(
        redis,
        scope="redeem",
        capacity=config.REDEEM_RATE_CAPACITY,
        refill_per_sec=config.REDEEM_RATE_PER_MINUTE / 60,
    )

    scheduler = Scheduler()
    scheduler.add(build_sweep_task(SessionLocal, clock))
    app.state.scheduler = scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.RUN_SWEEPER_IN_APP:
        app.state.scheduler.start()
    logger.info(f"boxoffice started gateway={app.state.gateway.name}")
    yield
    await app.state.scheduler.shutdown()
    await app.state.redis.aclose()
    logger.info("boxoffice stopped")


app = FastAPI(title="Box Office", version="1.0.0", lifespan=lifespan)
app.mount("/artifacts", StaticFiles(directory=config.ARTIFACT_DIR, check_dir=False), name="artifacts")
app.include_router(admin_router)

# Create DB tables at import time; migrations are out of scope
Base.metadata.create_all(bind=engine)

configure(app)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _client(request: Request) -> tuple[str, str]:
    ip = request.client.host if request.client else "unknown"
    return ip, request.headers.get("user-agent", "")


# -------------------------
# Seat holds
# -------------------------
@app.post("/locks", response_model=HoldSeatsResp)
def hold_seats(req: HoldSeatsReq, request: Request, db: Session = Depends(get_db)):
    clock = request.app.state.clock
    session_id = req.session_id or str(uuid.uuid4())
    grant = acquire_or_renew(db, req.event_id, session_id, req.seat_numbers, req.user_id, clock=clock)
    remaining = int((grant.expiry_time - clock.now()).total_seconds())
    return HoldSeatsResp(
        session_id=grant.session_id,
        event_id=grant.event_id,
        seat_numbers=grant.seat_numbers,
        expiry_time=grant.expiry_time,
        remaining_seconds=remaining,
    )


@app.get("/locks", response_model=HeldSeatsResp)
def held_seats(event_id: str, request: Request, db: Session = Depends(get_db)):
    seats = list_held_seats(db, event_id, clock=request.app.state.clock)
    return HeldSeatsResp(event_id=event_id, seats=sorted(seats))


@app.post("/locks/release")
def release_seats(req: ReleaseReq, db: Session = Depends(get_db)):
    return {"released": release(db, req.session_id, req.event_id)}


# -------------------------
# Payment
# -------------------------
@app.post("/checkout", response_model=CheckoutResp)
def checkout(req: CheckoutReq, request: Request, db: Session = Depends(get_db)):
    state = request.app.state
    session = start_checkout(
        db,
        state.gateway,
        state.codec,
        user_id=req.user_id,
        event_id=req.event_id,
        seat_numbers=req.seat_numbers,
        total_price=req.total_price,
        ticket_type=req.ticket_type,
        booking_date=req.booking_date,
        hold_session_id=req.hold_session_id,
        customer_email=req.customer_email,
        clock=state.clock,
    )
    return CheckoutResp(session_id=session.session_id, url=session.url)


@app.post("/webhooks/payment")
async def payment_webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
):
    decision_id = str(uuid.uuid4())
    ip, ua = _client(request)
    payload = await request.body()

    try:
        booking = await request.app.state.fulfillment.fulfill(payload, stripe_signature)
    except InvalidSignature as e:
        await run_in_threadpool(
            record_decision, decision_id, "FULFILL", "REJECTED", e.reason_code, ip=ip, user_agent=ua, detail=e.message,
        )
        return JSONResponse(status_code=400, content={**e.to_dict(), "decision_id": decision_id})
    except BookingError as e:
        # payment already captured; retrying cannot help, so acknowledge and leave it to operators
        await run_in_threadpool(
            record_decision, decision_id, "FULFILL", "REJECTED", e.reason_code,
            event_id=e.details.get("event_id"), ip=ip, user_agent=ua, detail=f"{e.message} {e.details}",
        )
        return {"received": True, "status": "REJECTED", "reason_code": e.reason_code, "decision_id": decision_id}

    if booking is None:
        return {"received": True, "status": "IGNORED", "decision_id": decision_id}

    await run_in_threadpool(
        record_decision, decision_id, "FULFILL", "ACCEPTED", "OK",
        event_id=booking.event_id, booking_id=booking.id, ip=ip, user_agent=ua, detail=booking.gateway_session_id,
    )
    return {"received": True, "status": "FULFILLED", "booking_id": booking.id, "decision_id": decision_id}


@app.post("/bookings/free", response_model=BookingOut)
async def book_free_event(req: FreeBookingReq, request: Request):
    decision_id = str(uuid.uuid4())
    ip, ua = _client(request)
    try:
        booking = await request.app.state.fulfillment.fulfill_free(
            user_id=req.user_id,
            event_id=req.event_id,
            seat_numbers=req.seat_numbers,
            ticket_type=req.ticket_type,
            booking_date=req.booking_date,
            hold_session_id=req.hold_session_id,
            customer_email=req.customer_email,
        )
    except BookingError as e:
        await run_in_threadpool(
            record_decision, decision_id, "FULFILL", "REJECTED", e.reason_code,
            event_id=req.event_id, ip=ip, user_agent=ua, detail=e.message,
        )
        raise

    await run_in_threadpool(
        record_decision, decision_id, "FULFILL", "ACCEPTED", "OK",
        event_id=booking.event_id, booking_id=booking.id, ip=ip, user_agent=ua, detail="free",
    )
    return booking


@app.get("/bookings/session/{session_id}", response_model=BookingOut)
def booking_for_session(session_id: str, db: Session = Depends(get_db)):
    booking = get_booking_by_session(db, session_id)
    if booking is None:
        raise BookingNotFound("no booking for this checkout session", session_id=session_id)
    return booking


# -------------------------
# Gate
# -------------------------
def _redeem_and_audit(req: RedeemReq, clock, decision_id: str, ip: str, ua: str) -> dict:
    with SessionLocal() as db:
        try:
            result = redeem(db, req.token, req.event_id, config.TICKET_SIGNING_SECRET, clock=clock)
        except BookingError as e:
            resp = {
                "status": "REJECTED",
                "reason_code": e.reason_code,
                "booking_id": e.details.get("booking_id"),
                "decision_id": decision_id,
            }
            record_decision(
                decision_id, "REDEEM", "REJECTED", e.reason_code,
                event_id=req.event_id, booking_id=resp["booking_id"], ip=ip, user_agent=ua, detail=e.message, db=db,
            )
            return resp

        resp = {
            "status": "ACCEPTED" if not result.already_redeemed else "ALREADY_REDEEMED",
            "reason_code": "OK" if not result.already_redeemed else "ALREADY_REDEEMED",
            "booking_id": result.booking_id,
            "seat_numbers": result.seat_numbers,
            "ticket_type": result.ticket_type,
            "redeemed_at": result.redeemed_at.isoformat() if result.redeemed_at else None,
            "decision_id": decision_id,
        }
        record_decision(
            decision_id, "REDEEM", resp["status"], resp["reason_code"],
            event_id=req.event_id, booking_id=result.booking_id, ip=ip, user_agent=ua, db=db,
        )
        return resp


@app.post("/redeem")
async def redeem_ticket(
    req: RedeemReq,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    state = request.app.state
    decision_id = str(uuid.uuid4())
    ip, ua = _client(request)

    cached = await state.idempotency.get(idempotency_key)
    if cached:
        return cached

    bucket = await state.redeem_bucket.take(ip)
    if not bucket.allowed:
        resp = {"status": "REJECTED", "reason_code": "RATE_LIMITED", "booking_id": None, "decision_id": decision_id}
        await state.idempotency.put(idempotency_key, resp)
        await run_in_threadpool(
            record_decision, decision_id, "REDEEM", "REJECTED", "RATE_LIMITED", event_id=req.event_id, ip=ip, user_agent=ua,
        )
        return resp

    # store work runs off the event loop, and the session is closed before the cache write
    resp = await run_in_threadpool(_redeem_and_audit, req, state.clock, decision_id, ip, ua)
    await state.idempotency.put(idempotency_key, resp)
    return resp
