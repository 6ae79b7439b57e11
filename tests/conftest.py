"""
Test configuration and fixtures for the CRM OTP API.

Routes run against a throwaway SQLite file and a fake email transport;
service-level tests get their own in-memory database.
"""

import os
import tempfile
from typing import Generator

from dotenv import load_dotenv

load_dotenv()

test_db_path = tempfile.mktemp(suffix=".db")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{test_db_path}"
os.environ["MAIL_MAILER"] = "mock"

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from crm_otp.features.otp.dependencies.otp import get_otp_service
from crm_otp.features.otp.services.otp_service import OTPConfig, OTPService
from crm_otp.platform.db.base import Base
from crm_otp.platform.utils.rate_limit import reset_rate_limits
from fakes import FakeTransport


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def otp_service(transport):
    config = OTPConfig(from_address="crm@example.com", from_name="CRM System", send_timeout=0.5)
    return OTPService(config, transport)


@pytest_asyncio.fixture
async def db_session():
    """Fresh in-memory database per test."""
    from crm_otp.features.otp.models import otp  # noqa: F401

    engine = create_async_engine("sqlite+aiosqlite://")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Session factory over a file database, so separate sessions use separate connections."""
    from crm_otp.features.otp.models import otp  # noqa: F401

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'otp.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(scope="session")
def test_app():
    """Create FastAPI test application."""
    from crm_otp.main import app

    return app


@pytest.fixture(scope="function")
def client(test_app, otp_service) -> Generator[TestClient, None, None]:
    """
    Test client with the OTP service swapped for one using the fake transport.
    Rate limits are cleared so each test starts with a full allowance.
    """
    reset_rate_limits()
    test_app.dependency_overrides[get_otp_service] = lambda: otp_service

    with TestClient(test_app) as test_client:
        yield test_client

    test_app.dependency_overrides.pop(get_otp_service, None)
