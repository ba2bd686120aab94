"""
Shared fixtures

Settings are pinned through the environment before anything from
audience_sync is imported, so tests never read a developer's .env values
for credentials, scheduling or file logging.
"""
import os

os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["LOG_TO_FILE"] = "false"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["ANTHROPIC_API_KEY"] = ""
os.environ["SHOPIFY_STORE_DOMAIN"] = "test-store.myshopify.com"
os.environ["SHOPIFY_ADMIN_ACCESS_TOKEN"] = "shpat_test"
os.environ["SHOPIFY_WEBHOOK_SECRET"] = "test-secret"
os.environ["INCREMENTAL_SYNC_START_DATE"] = ""
os.environ["WRITE_BACK_TO_SHOPIFY"] = "false"
os.environ["SYNC_GENDER_TO_TAGS"] = "false"

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import audience_sync.models  # noqa: F401
from audience_sync.models.base import Base
from audience_sync.services.customer_store import CustomerStore


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db):
    return CustomerStore(db)


@pytest.fixture
def add_customer(store):
    """Insert a customer row with sensible defaults; returns the stored Customer"""

    def _add(external_id, **fields):
        row = {
            "external_id": external_id,
            "first_name": f"Customer{external_id}",
            "email": f"customer{external_id}@example.com",
            "orders_count": 0,
            "total_spent": 0,
            "enrichment_status": "pending",
        }
        row.update(fields)
        return store.upsert_customer(row)

    return _add
