"""Tests for registration, login and password management."""

import pytest

from conftest import PASSWORD
from imagevault.errors import (
    AccountDisabledError,
    DuplicateEmailError,
    EmailNotVerifiedError,
    InvalidCredentialsError,
    TokenRevokedError,
    UserNotFoundError,
    ValidationError,
    WeakPasswordError
)
from imagevault.models.token_models import VerificationPurpose
from imagevault.models.usage_models import Plan
from imagevault.services.auth_service import verify_password


@pytest.mark.asyncio
async def test_register_creates_unverified_free_user(db, store, emails):
    user = await store.register("Bob@Example.com", PASSWORD, "Bob")

    assert user["email"] == "bob@example.com"
    assert user["plan"] == "free"
    assert user["email_verified"] is False
    assert user["is_admin"] is False
    assert "password_hash" not in user

    stored = await db.users.find_one({"email": "bob@example.com"})
    assert stored["password_hash"] != PASSWORD
    assert verify_password(PASSWORD, stored["password_hash"])
    assert emails.last_token(VerificationPurpose.VERIFY_EMAIL, "bob@example.com")


@pytest.mark.asyncio
async def test_duplicate_email_rejected_case_insensitively(store):
    await store.register("carol@example.com", PASSWORD)

    with pytest.raises(DuplicateEmailError) as exc_info:
        await store.register("CAROL@example.com", PASSWORD)
    assert exc_info.value.status_code == 409


@pytest.mark.parametrize("password", ["short1!", "alllowercaseletters", "aaaaaaaaaaaa", "x" * 129])
@pytest.mark.asyncio
async def test_weak_passwords_rejected(store, password):
    with pytest.raises(WeakPasswordError):
        await store.register("dave@example.com", password)


@pytest.mark.asyncio
async def test_unverified_user_cannot_log_in(store):
    await store.register("erin@example.com", PASSWORD)

    with pytest.raises(EmailNotVerifiedError):
        await store.authenticate("erin@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_wrong_password_and_unknown_email_look_the_same(store, verified_user):
    with pytest.raises(InvalidCredentialsError) as wrong:
        await store.authenticate("alice@example.com", "Wr0ngPassword!")
    with pytest.raises(InvalidCredentialsError) as unknown:
        await store.authenticate("nobody@example.com", PASSWORD)

    assert wrong.value.message == unknown.value.message


@pytest.mark.asyncio
async def test_wrong_password_does_not_reveal_verification_state(store):
    await store.register("frank@example.com", PASSWORD)

    with pytest.raises(InvalidCredentialsError):
        await store.authenticate("frank@example.com", "Wr0ngPassword!")


@pytest.mark.asyncio
async def test_verified_user_logs_in(store, verified_user):
    identity = await store.authenticate("ALICE@example.com", PASSWORD)

    assert identity == {
        "id": verified_user["id"],
        "email": "alice@example.com",
        "plan": "free",
        "is_admin": False
    }


@pytest.mark.asyncio
async def test_disabled_account_rejected(db, store, verified_user):
    await db.users.update_one({"email": "alice@example.com"}, {"$set": {"is_active": False}})

    with pytest.raises(AccountDisabledError):
        await store.authenticate("alice@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_change_password_revokes_existing_sessions(store, token_issuer, verified_user):
    identity = await store.authenticate("alice@example.com", PASSWORD)
    token, _ = token_issuer.issue(identity)

    await store.change_password(verified_user["id"], PASSWORD, "N3w-Password!")

    with pytest.raises(TokenRevokedError):
        await token_issuer.verify(token)
    with pytest.raises(InvalidCredentialsError):
        await store.authenticate("alice@example.com", PASSWORD)

    identity = await store.authenticate("alice@example.com", "N3w-Password!")
    new_token, _ = token_issuer.issue(identity)
    claims = await token_issuer.verify(new_token)
    assert claims.user_id == verified_user["id"]


@pytest.mark.asyncio
async def test_change_password_requires_current_password(store, verified_user):
    with pytest.raises(InvalidCredentialsError):
        await store.change_password(verified_user["id"], "Wr0ngPassword!", "N3w-Password!")


@pytest.mark.asyncio
async def test_password_reset_flow(store, emails, token_issuer, verified_user):
    identity = await store.authenticate("alice@example.com", PASSWORD)
    token, _ = token_issuer.issue(identity)

    assert await store.request_password_reset("alice@example.com") is True
    reset_token = emails.last_token(VerificationPurpose.RESET_PASSWORD, "alice@example.com")

    await store.reset_password(reset_token, "R3set-Password!")

    with pytest.raises(TokenRevokedError):
        await token_issuer.verify(token)
    assert await store.authenticate("alice@example.com", "R3set-Password!")


@pytest.mark.asyncio
async def test_weak_reset_password_leaves_token_usable(store, emails, verified_user):
    await store.request_password_reset("alice@example.com")
    reset_token = emails.last_token(VerificationPurpose.RESET_PASSWORD)

    with pytest.raises(WeakPasswordError):
        await store.reset_password(reset_token, "weak")

    await store.reset_password(reset_token, "R3set-Password!")


@pytest.mark.asyncio
async def test_reset_for_unknown_email_sends_nothing(store, emails):
    assert await store.request_password_reset("ghost@example.com") is False
    assert emails.sent == []


@pytest.mark.asyncio
async def test_resend_verification(store, emails, db):
    user = await store.register("gina@example.com", PASSWORD)
    first = emails.last_token(VerificationPurpose.VERIFY_EMAIL)
    # Open the resend window
    await db.issuance_limits.delete_many({})

    await store.resend_verification(email="gina@example.com")
    second = emails.last_token(VerificationPurpose.VERIFY_EMAIL)
    assert second != first

    assert await store.verify_email(second) == user["id"]

    with pytest.raises(ValidationError):
        await store.resend_verification(user_id=user["id"])


@pytest.mark.asyncio
async def test_resend_verification_unknown_email(store):
    with pytest.raises(UserNotFoundError):
        await store.resend_verification(email="ghost@example.com")


@pytest.mark.asyncio
async def test_set_plan(store, verified_user):
    user = await store.set_plan(verified_user["id"], Plan.ENTERPRISE)
    assert user["plan"] == "enterprise"
    assert (await store.get_user(verified_user["id"]))["plan"] == "enterprise"


@pytest.mark.asyncio
async def test_federated_login_takes_over_unverified_account(db, store):
    await store.register("hank@example.com", PASSWORD)

    user, created = await store.find_or_create_federated("hank@example.com", "Hank")

    assert created is False
    assert user["email_verified"] is True
    assert user["password_hash"] is None
    with pytest.raises(InvalidCredentialsError):
        await store.authenticate("hank@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_federated_login_keeps_verified_password(store, verified_user):
    user, created = await store.find_or_create_federated("alice@example.com")

    assert created is False
    assert str(user["_id"]) == verified_user["id"]
    assert await store.authenticate("alice@example.com", PASSWORD)


@pytest.mark.asyncio
async def test_lookups_never_expose_password_hash(store, verified_user):
    by_email = await store.get_by_email(" Alice@Example.com ")
    by_id = await store.get_user(verified_user["id"])

    assert by_email == by_id
    assert by_email["has_password"] is True
    assert "password_hash" not in by_email
    assert await store.get_by_email("ghost@example.com") is None


@pytest.mark.asyncio
async def test_failed_revocation_keeps_old_password(db, store, token_issuer, verified_user, monkeypatch):
    identity = await store.authenticate("alice@example.com", PASSWORD)
    token, _ = token_issuer.issue(identity)
    before = (await db.users.find_one({"email": "alice@example.com"}))["password_hash"]

    async def unavailable(user_id, reason):
        raise RuntimeError("revocation store unavailable")

    monkeypatch.setattr(token_issuer, "revoke_user", unavailable)

    with pytest.raises(RuntimeError):
        await store.change_password(verified_user["id"], PASSWORD, "N3w-Password!")

    assert (await db.users.find_one({"email": "alice@example.com"}))["password_hash"] == before
    assert await store.authenticate("alice@example.com", PASSWORD)
    assert (await token_issuer.verify(token)).user_id == verified_user["id"]


@pytest.mark.asyncio
async def test_failed_revocation_aborts_password_reset(db, store, emails, token_issuer, verified_user, monkeypatch):
    await store.request_password_reset("alice@example.com")
    reset_token = emails.last_token(VerificationPurpose.RESET_PASSWORD)
    before = (await db.users.find_one({"email": "alice@example.com"}))["password_hash"]

    async def unavailable(user_id, reason):
        raise RuntimeError("revocation store unavailable")

    monkeypatch.setattr(token_issuer, "revoke_user", unavailable)

    with pytest.raises(RuntimeError):
        await store.reset_password(reset_token, "R3set-Password!")

    assert (await db.users.find_one({"email": "alice@example.com"}))["password_hash"] == before
    monkeypatch.undo()
    # The reset link was released and still works
    await store.reset_password(reset_token, "R3set-Password!")
    assert await store.authenticate("alice@example.com", "R3set-Password!")
