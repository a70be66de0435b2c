"""Shared fixtures: app factory variants, a controllable clock, stores."""

import re
from datetime import datetime, timedelta
from types import SimpleNamespace

import pytest

from app import create_app
from config import TestConfig
from models import db
from repositories import (
    MemoryOtpRepository,
    MemoryRateLimitRepository,
    MemoryRefreshTokenRepository,
    MemoryUserRepository,
    SqlOtpRepository,
    SqlRateLimitRepository,
    SqlRefreshTokenRepository,
    SqlUserRepository,
)
from utils.emailer import MockEmailDispatcher

CODE_RE = re.compile(r"Your login code: (\d+)")


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mailer():
    return MockEmailDispatcher()


@pytest.fixture
def make_app(mailer):
    """Builds an app from TestConfig with attribute overrides."""
    built = []

    def _make(mailer_override=None, **overrides):
        config = type("OverriddenConfig", (TestConfig,), overrides)
        app = create_app(config, mailer=mailer_override or mailer)
        if config.STORAGE_BACKEND == "sql":
            ctx = app.app_context()
            ctx.push()
            db.create_all()
            built.append(ctx)
        return app

    yield _make

    for ctx in built:
        db.session.remove()
        db.drop_all()
        ctx.pop()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def sql_app(make_app):
    return make_app(STORAGE_BACKEND="sql")


def _memory_stores():
    return SimpleNamespace(
        otps=MemoryOtpRepository(),
        users=MemoryUserRepository(),
        tokens=MemoryRefreshTokenRepository(),
        limits=MemoryRateLimitRepository(),
    )


def _sql_stores():
    return SimpleNamespace(
        otps=SqlOtpRepository(),
        users=SqlUserRepository(),
        tokens=SqlRefreshTokenRepository(),
        limits=SqlRateLimitRepository(),
    )


@pytest.fixture(params=["memory", "sql"])
def stores(request):
    if request.param == "sql":
        request.getfixturevalue("sql_app")
        return _sql_stores()
    return _memory_stores()


def extract_code(mailer, email):
    message = mailer.last_for(email)
    assert message is not None, f"no email sent to {email}"
    match = CODE_RE.search(message.text)
    assert match, message.text
    return match.group(1)


def set_cookies(resp):
    """name -> raw Set-Cookie header."""
    out = {}
    for header in resp.headers.getlist("Set-Cookie"):
        name = header.split("=", 1)[0]
        out[name] = header
    return out


def cookie_value(resp, name):
    header = set_cookies(resp).get(name)
    if header is None:
        return None
    return header.split("=", 1)[1].split(";", 1)[0]
