import base64
import json
import os
import time
from datetime import datetime, timezone

# Settings are read at import time; make the webhook secret available before importing the app.
TEST_WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"identity-sync-test-secret").decode("ascii")
os.environ.setdefault("CLERK_WEBHOOK_SECRET", TEST_WEBHOOK_SECRET)
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from svix.webhooks import Webhook

from identity_sync.core.base import Base
from identity_sync.core import config as app_config
from identity_sync.core.database import get_db

# Import models so they register with SQLAlchemy metadata.
from identity_sync.models.user import User  # noqa: F401
from identity_sync.models.webhook_event import WebhookEvent  # noqa: F401


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests with StaticPool; reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests sometimes tweak global settings (app_config.settings.*). Because that object is
    process-global, restore values after each test to avoid cross-test coupling.
    """
    keys = [
        "CLERK_WEBHOOK_SECRET",
        "WEBHOOK_UPSERT_ON_UPDATE",
        "CLERK_ISSUER",
        "CLERK_JWKS_URL",
        "CLERK_JWT_AUDIENCE",
    ]
    original = {k: getattr(app_config.settings, k) for k in keys}
    app_config.settings.CLERK_WEBHOOK_SECRET = TEST_WEBHOOK_SECRET
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)


@pytest.fixture()
def app(db_session):
    from identity_sync.main import app as fastapi_app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def signed_delivery():
    """
    Build (body, headers) for a webhook delivery signed with the test secret.

    Usage:
        body, headers = signed_delivery(payload, msg_id="msg_1")
    """

    def _signed(payload: dict, *, msg_id: str = "msg_test", timestamp: int | None = None):
        body = json.dumps(payload).encode("utf-8")
        ts = int(timestamp if timestamp is not None else time.time())
        headers = {
            "svix-id": msg_id,
            "svix-timestamp": str(ts),
            "svix-signature": Webhook(TEST_WEBHOOK_SECRET).sign(
                msg_id, datetime.fromtimestamp(ts, tz=timezone.utc), body.decode("utf-8")
            ),
            "content-type": "application/json",
        }
        return body, headers

    return _signed


def user_created_payload(
    subject_id: str = "u1",
    *,
    email: str | None = "a@b.com",
    first_name: str | None = "A",
    last_name: str | None = "B",
    image_url: str | None = None,
    event_type: str = "user.created",
) -> dict:
    data: dict = {
        "id": subject_id,
        "object": "user",
        "email_addresses": [{"id": "idn_1", "email_address": email}] if email else [],
        "first_name": first_name,
        "last_name": last_name,
    }
    if image_url:
        data["image_url"] = image_url
    return {"type": event_type, "object": "event", "data": data}


@pytest.fixture()
def user_payload():
    return user_created_payload
