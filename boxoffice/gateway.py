"""Payment gateways: Stripe for real accounts, a self-signing sandbox for local runs and tests."""

import hashlib
import hmac
import json
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import stripe
from loguru import logger

from . import config
from .errors import InvalidSignature

COMPLETED_EVENT = "checkout.session.completed"


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


@dataclass(frozen=True)
class PaymentNotification:
    event_type: str
    session_id: str
    payment_id: str | None
    payment_status: str
    status: str
    metadata: dict = field(default_factory=dict)
    customer_email: str | None = None

    @property
    def completed(self) -> bool:
        return self.event_type == COMPLETED_EVENT and self.payment_status == "paid" and self.status == "complete"


def parse_notification(payload: bytes) -> PaymentNotification:
    """Read a Stripe-shaped checkout event. Signature must already be checked."""
    try:
        event = json.loads(payload)
        obj = event["data"]["object"]
    except (ValueError, KeyError, TypeError):
        raise InvalidSignature("notification payload is not a gateway event")
    details = obj.get("customer_details") or {}
    return PaymentNotification(
        event_type=event.get("type", ""),
        session_id=obj.get("id", ""),
        payment_id=obj.get("payment_intent"),
        payment_status=obj.get("payment_status", ""),
        status=obj.get("status", ""),
        metadata=dict(obj.get("metadata") or {}),
        customer_email=details.get("email") or obj.get("customer_email"),
    )


class PaymentGateway(ABC):
    name = "abstract"

    @abstractmethod
    def create_checkout_session(
        self,
        line_items: list[dict],
        metadata: dict,
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
    ) -> CheckoutSession: ...

    @abstractmethod
    def verify_notification(self, payload: bytes, signature: str | None) -> PaymentNotification:
        """Authenticate a callback and parse it. Raises InvalidSignature."""


class StripeGateway(PaymentGateway):
    name = "stripe"

    def __init__(self, api_key: str, webhook_secret: str):
        if not api_key or not webhook_secret:
            raise ValueError("StripeGateway needs STRIPE_SECRET_KEY and STRIPE_WEBHOOK_SECRET")
        self._api_key = api_key
        self._webhook_secret = webhook_secret

    def create_checkout_session(self, line_items, metadata, success_url, cancel_url, customer_email=None):
        session = stripe.checkout.Session.create(
            api_key=self._api_key,
            mode="payment",
            payment_method_types=["card"],
            line_items=line_items,
            metadata=metadata,
            success_url=success_url,
            cancel_url=cancel_url,
            customer_email=customer_email,
        )
        return CheckoutSession(session_id=session.id, url=session.url)

    def verify_notification(self, payload, signature):
        if not signature:
            raise InvalidSignature("missing gateway signature")
        try:
            stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"stripe webhook signature rejected: {e}")
            raise InvalidSignature("gateway signature verification failed")
        except ValueError:
            raise InvalidSignature("notification payload is not a gateway event")
        return parse_notification(payload)


class SandboxGateway(PaymentGateway):
    """In-process gateway. Sessions are remembered so a payment can be simulated."""

    name = "sandbox"

    def __init__(self, webhook_secret: str):
        self._secret = webhook_secret.encode("utf-8")
        self.sessions: dict[str, dict] = {}

    def create_checkout_session(self, line_items, metadata, success_url, cancel_url, customer_email=None):
        session_id = f"cs_test_{uuid.uuid4().hex[:24]}"
        self.sessions[session_id] = {
            "line_items": line_items,
            "metadata": dict(metadata),
            "customer_email": customer_email,
        }
        return CheckoutSession(session_id=session_id, url=f"{config.FRONTEND_URL}/sandbox-checkout/{session_id}")

    def sign(self, payload: bytes) -> str:
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def verify_notification(self, payload, signature):
        if not signature or not hmac.compare_digest(self.sign(payload), signature):
            raise InvalidSignature("gateway signature verification failed")
        return parse_notification(payload)

    def completed_notification(
        self,
        session_id: str,
        metadata: dict | None = None,
        customer_email: str | None = None,
        payment_id: str | None = None,
    ) -> tuple[bytes, str]:
        """Build a signed ``checkout.session.completed`` callback for a session."""
        known = self.sessions.get(session_id, {})
        event = {
            "id": f"evt_{uuid.uuid4().hex[:24]}",
            "type": COMPLETED_EVENT,
            "data": {
                "object": {
                    "id": session_id,
                    "payment_intent": payment_id or f"pi_test_{uuid.uuid4().hex[:24]}",
                    "payment_status": "paid",
                    "status": "complete",
                    "metadata": metadata if metadata is not None else known.get("metadata", {}),
                    "customer_details": {"email": customer_email or known.get("customer_email")},
                }
            },
        }
        payload = json.dumps(event).encode("utf-8")
        return payload, self.sign(payload)


def build_gateway() -> PaymentGateway:
    if config.PAYMENT_GATEWAY == "stripe":
        return StripeGateway(config.STRIPE_SECRET_KEY, config.STRIPE_WEBHOOK_SECRET)
    if config.PAYMENT_GATEWAY == "sandbox":
        logger.warning("payment gateway running in sandbox mode; callbacks are self-signed")
        return SandboxGateway(config.SANDBOX_WEBHOOK_SECRET)
    raise ValueError(f"unknown PAYMENT_GATEWAY {config.PAYMENT_GATEWAY!r}")
