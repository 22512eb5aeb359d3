import os

# --- Store / cache ---
DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite:///./boxoffice.db")
REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# --- Secrets ---
TICKET_SIGNING_SECRET = os.environ.get("TICKET_SIGNING_SECRET", "dev_secret_change_me")
INTENT_ENCRYPTION_KEY = os.environ.get("INTENT_ENCRYPTION_KEY", "dev_intent_key_change_me")

# --- Payment gateway ---
PAYMENT_GATEWAY = os.environ.get("PAYMENT_GATEWAY", "sandbox").lower()
STRIPE_SECRET_KEY = os.environ.get("STRIPE_SECRET_KEY", "")
STRIPE_WEBHOOK_SECRET = os.environ.get("STRIPE_WEBHOOK_SECRET", "")
SANDBOX_WEBHOOK_SECRET = os.environ.get("SANDBOX_WEBHOOK_SECRET", "sandbox_webhook_secret")
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
CURRENCY = os.environ.get("CURRENCY", "eur").lower()
SERVICE_FEE_RATE = float(os.environ.get("SERVICE_FEE_RATE", "0.05"))

# --- Seat holds ---
SEAT_HOLD_MINUTES = int(os.environ.get("SEAT_HOLD_MINUTES", "7"))
SWEEP_INTERVAL_SECONDS = int(os.environ.get("SWEEP_INTERVAL_SECONDS", "120"))
RUN_SWEEPER_IN_APP = os.environ.get("RUN_SWEEPER_IN_APP", "true").lower() == "true"

# --- Redemption artifacts ---
ARTIFACT_DIR = os.environ.get("ARTIFACT_DIR", "./artifacts")
ARTIFACT_BASE_URL = os.environ.get("ARTIFACT_BASE_URL", "http://localhost:8000/artifacts")

# --- Mail ---
SMTP_HOST = os.environ.get("SMTP_HOST", "")
SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
SMTP_USER = os.environ.get("SMTP_USER", "")
SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD", "")
MAIL_FROM = os.environ.get("MAIL_FROM", SMTP_USER or "tickets@localhost")
# "org_1:ops@example.com,org_2:box@example.org"
ORGANIZER_EMAILS = dict(
    pair.strip().split(":", 1) for pair in os.environ.get("ORGANIZER_EMAILS", "").split(",") if ":" in pair
)

# --- Scanner protections ---
REDEEM_RATE_CAPACITY = int(os.environ.get("REDEEM_RATE_CAPACITY", "10"))
REDEEM_RATE_PER_MINUTE = float(os.environ.get("REDEEM_RATE_PER_MINUTE", "10"))
IDEMPOTENCY_TTL_SECONDS = int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "300"))

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()
