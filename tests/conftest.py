# Pytest configuration for the GoRentals API tests.
# Forces a local SQLite DB, disables Redis/Stripe network calls and pins secrets for deterministic runs.
import os
from typing import Iterator

import pytest
from fastapi.testclient import TestClient

# Test-time environment: local SQLite DB, Redis disabled, predictable JWT and webhook secrets
os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("GORENTALS_JWT_SECRET", "test-secret")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["SMTP_HOST"] = ""

import sys
# Ensure the repo root is on sys.path so 'gorentals' resolves when running pytest from anywhere
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from gorentals.main import app  # noqa: E402
from gorentals.db import Base, engine  # noqa: E402
from gorentals.store_memory import memory_store  # noqa: E402


@pytest.fixture(autouse=True)
def _clean_db() -> Iterator[None]:
    """
    Function-level isolation: drop and recreate schema before each test.
    """
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture()
def client() -> Iterator[TestClient]:
    """
    FastAPI TestClient bound to the application for HTTP-level tests.
    """
    with TestClient(app) as c:
        yield c


@pytest.fixture()
def store():
    """Fresh in-memory document store for engine-level tests."""
    return memory_store()
