"""Shared pytest fixtures for the identity and entitlement tests."""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import httpx
import pytest
import pytest_asyncio
from mongomock_motor import AsyncMongoMockClient

from imagevault.database import create_indexes, get_database
from imagevault.main import app
from imagevault.models.token_models import VerificationPurpose
from imagevault.services.api_key_service import ApiKeyService
from imagevault.services.credential_store import CredentialStore
from imagevault.services.email_service import EmailService, get_email_service
from imagevault.services.token_service import TokenIssuer
from imagevault.services.usage_meter import UsageMeter
from imagevault.services.verification_tokens import VerificationTokenIssuer
from imagevault.utils.cache import SimpleCache

PASSWORD = "Sup3rSecret!"


class RecordingEmailService(EmailService):
    """Keeps every outgoing email instead of sending it"""

    def __init__(self):
        super().__init__(frontend_url="https://app.example.com")
        self.sent = []

    async def send_verification_email(self, email, token):
        self.sent.append((VerificationPurpose.VERIFY_EMAIL, email, token))
        return True

    async def send_password_reset_email(self, email, token):
        self.sent.append((VerificationPurpose.RESET_PASSWORD, email, token))
        return True

    def last_token(self, purpose, email=None):
        for sent_purpose, sent_email, token in reversed(self.sent):
            if sent_purpose == purpose and (email is None or sent_email == email):
                return token
        return None


@pytest_asyncio.fixture
async def db():
    """Fresh in-memory database with the production indexes."""
    database = AsyncMongoMockClient()["imagevault_test"]
    await create_indexes(database)
    return database


@pytest.fixture
def emails():
    return RecordingEmailService()


@pytest.fixture
def token_issuer(db):
    return TokenIssuer(db, cache=SimpleCache())


@pytest.fixture
def verification(db):
    return VerificationTokenIssuer(db)


@pytest.fixture
def store(db, token_issuer, verification, emails):
    return CredentialStore(db, token_issuer, verification=verification, email_service=emails)


@pytest.fixture
def meter(db):
    return UsageMeter(db)


@pytest.fixture
def api_keys(db):
    return ApiKeyService(db)


@pytest_asyncio.fixture
async def verified_user(store, emails):
    """A registered user who has confirmed their email."""
    user = await store.register("alice@example.com", PASSWORD, "Alice")
    await store.verify_email(emails.last_token(VerificationPurpose.VERIFY_EMAIL, "alice@example.com"))
    return {**user, "password": PASSWORD}


@pytest_asyncio.fixture
async def client(db, emails):
    """HTTP client against the app, wired to the test database."""

    async def override_database():
        return db

    app.dependency_overrides[get_database] = override_database
    app.dependency_overrides[get_email_service] = lambda: emails

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http

    app.dependency_overrides.clear()


async def login(client, email, password=PASSWORD):
    response = await client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()["access_token"]


def bearer(token):
    return {"Authorization": f"Bearer {token}"}
