import os
import tempfile
from datetime import datetime, timezone

# must be set before boxoffice.config is imported
_tmp = tempfile.mkdtemp(prefix="boxoffice-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp}/test.db"
os.environ["ARTIFACT_DIR"] = os.path.join(_tmp, "artifacts")
os.environ["PAYMENT_GATEWAY"] = "sandbox"
os.environ["RUN_SWEEPER_IN_APP"] = "false"
os.environ["SMTP_HOST"] = ""

import fakeredis.aioredis
import httpx
import pytest
import pytest_asyncio

from boxoffice.clock import FrozenClock
from boxoffice.db import Base, SessionLocal, engine
from boxoffice.gateway import SandboxGateway
from boxoffice.main import app, configure
from boxoffice.rate_limit import TokenBucket
from boxoffice.storage import LocalArtifactStorage
from tests.helpers import RecordingNotifier

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def gateway():
    return SandboxGateway("test_webhook_secret")


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage(tmp_path):
    return LocalArtifactStorage(str(tmp_path / "artifacts"), "http://test/artifacts")


@pytest_asyncio.fixture(scope="function")
async def redis():
    r = fakeredis.aioredis.FakeRedis()
    try:
        yield r
    finally:
        await r.aclose()


@pytest_asyncio.fixture(scope="function")
async def fresh_app(clock, redis, gateway, storage, notifier):
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    configure(app, clock=clock, redis=redis, gateway=gateway, storage=storage, notifier=notifier)
    # gate tests fire many scans from one client; the limiter has its own test
    app.state.redeem_bucket = TokenBucket(redis, scope="redeem", capacity=1000, refill_per_sec=1000)
    yield app
    await app.state.scheduler.shutdown()


@pytest_asyncio.fixture(scope="function")
async def client(fresh_app):
    transport = httpx.ASGITransport(app=fresh_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test", timeout=10.0) as c:
        yield c


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
