from __future__ import annotations

import itertools
import os

os.environ.setdefault("DB_URL", "sqlite://")

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from marketplace import engine, marketplace_error_handler
from marketplace.business import broadcast, realtime, telemetry
from marketplace.business.auth import Actor
from marketplace.business.draft import DRAFT_ROUTER, ADMIN_DRAFT_ROUTER
from marketplace.business.extension import (
    EXTENSION_ROUTER, ADMIN_EXTENSION_ROUTER, ExtensionManager,
)
from marketplace.business.notification import NOTIFICATION_ROUTER
from marketplace.business.user import USER_ROUTER, ADMIN_USER_ROUTER
from marketplace.errors import MarketplaceError
from marketplace.schemas.extension import ExtensionSubmission
from marketplace.schemas.user import UserModel, UserRole

ADMIN_PASSWORD = "letmein"


@pytest.fixture(autouse=True)
def store(monkeypatch):
    db_engine = engine.create_db_engine("sqlite://")
    monkeypatch.setattr(engine, "SQLDB_ENGINE", db_engine)
    engine.init_db()
    yield db_engine
    db_engine.dispose()


@pytest.fixture(autouse=True)
def aggregator(tmp_path, monkeypatch):
    fresh = telemetry.TelemetryAggregator(tmp_path / "analytics.json")
    monkeypatch.setattr(telemetry, "AGGREGATOR", fresh)
    return fresh


@pytest.fixture(autouse=True)
def hub(monkeypatch):
    fresh = broadcast.BroadcastHub()
    monkeypatch.setattr(broadcast, "HUB", fresh)
    monkeypatch.setattr(realtime, "ADMIN_PASSWORD", ADMIN_PASSWORD)
    return fresh


@pytest.fixture
def make_user():
    counter = itertools.count(1)

    def make(username: str | None = None, role: UserRole = UserRole.USER, **fields) -> UserModel:
        n = next(counter)
        with engine.transaction() as db:
            user = UserModel(
                external_id=f"idp-{n}",
                username=username or f"user{n}",
                role=role,
                **fields,
            )
            db.add(user)
            db.flush()
        return user

    return make


@pytest.fixture
def owner(make_user) -> Actor:
    return Actor.of(make_user("owner"))


@pytest.fixture
def admin(make_user) -> Actor:
    return Actor.of(make_user("moderator", role=UserRole.ADMIN))


@pytest.fixture
def submit(owner):
    """Submit an extension as `owner` unless another actor is given."""

    def do_submit(identifier: str = "cool-mod", actor: Actor | None = None, **fields):
        fields.setdefault("name", "Cool Mod")
        fields.setdefault("file_path", f"/uploads/{identifier}-1.0.0.zip")
        submission = ExtensionSubmission(identifier=identifier, **fields)
        return ExtensionManager.submit(actor or owner, submission)

    return do_submit


@pytest.fixture
def client():
    app = FastAPI()
    app.add_exception_handler(MarketplaceError, marketplace_error_handler)
    for router in (
        EXTENSION_ROUTER,
        DRAFT_ROUTER,
        realtime.TELEMETRY_ROUTER,
        USER_ROUTER,
        NOTIFICATION_ROUTER,
        ADMIN_EXTENSION_ROUTER,
        ADMIN_DRAFT_ROUTER,
        ADMIN_USER_ROUTER,
    ):
        app.include_router(router)
    # one portal, so every socket shares the same event loop
    with TestClient(app) as test_client:
        yield test_client
