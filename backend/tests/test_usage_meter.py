"""Tests for the atomic usage meter."""

import asyncio

import pytest

from imagevault.errors import QuotaExceededError, UserNotFoundError, ValidationError
from imagevault.models.usage_models import Plan, Resource
from imagevault.services.entitlements import GB
from imagevault.utils.timeutils import current_period


async def _set_counter(db, user_id, **fields):
    await db.usage_counters.update_one(
        {"user_id": user_id, "period": current_period()},
        {"$set": fields},
        upsert=True
    )


@pytest.mark.asyncio
async def test_consume_increments_counter(meter, verified_user):
    snapshot = await meter.try_consume(verified_user["id"], Resource.IMAGES, 3)

    assert snapshot["usage"]["images"] == 3
    assert snapshot["limits"]["images"] == 100
    assert snapshot["plan"] == "free"
    assert snapshot["period"] == current_period()


@pytest.mark.asyncio
async def test_fresh_period_reads_as_zero(meter, verified_user):
    usage = await meter.current_usage(verified_user["id"])

    assert usage["usage"] == {"api_calls": 0, "storage": 0, "images": 0, "folders": 0}
    assert usage["percentages"]["storage"] == 0.0


@pytest.mark.asyncio
async def test_denied_consume_changes_nothing(db, meter, store, verified_user):
    user_id = verified_user["id"]
    await store.set_plan(user_id, Plan.STARTER)
    await meter.try_consume(user_id, Resource.STORAGE, 0)
    await _set_counter(db, user_id, storage_bytes=int(24.9 * GB))

    with pytest.raises(QuotaExceededError) as exc_info:
        await meter.try_consume(user_id, Resource.STORAGE, 200 * 1024 * 1024)

    error = exc_info.value
    assert error.status_code == 403
    assert error.data == {
        "resource": "storage",
        "current_usage": int(24.9 * GB),
        "limit": 25 * GB
    }
    usage = await meter.current_usage(user_id)
    assert usage["usage"]["storage"] == int(24.9 * GB)


@pytest.mark.asyncio
async def test_concurrent_consumers_cannot_overshoot(db, meter, verified_user):
    user_id = verified_user["id"]
    await meter.try_consume(user_id, Resource.IMAGES, 0)
    await _set_counter(db, user_id, image_count=99)

    results = await asyncio.gather(
        meter.try_consume(user_id, Resource.IMAGES, 1),
        meter.try_consume(user_id, Resource.IMAGES, 1),
        return_exceptions=True
    )

    successes = [r for r in results if isinstance(r, dict)]
    denials = [r for r in results if isinstance(r, QuotaExceededError)]
    assert len(successes) == 1
    assert len(denials) == 1
    assert (await meter.current_usage(user_id))["usage"]["images"] == 100


@pytest.mark.asyncio
async def test_many_concurrent_consumers_stop_at_limit(meter, verified_user):
    user_id = verified_user["id"]

    results = await asyncio.gather(
        *[meter.try_consume(user_id, Resource.FOLDERS, 1) for _ in range(12)],
        return_exceptions=True
    )

    assert sum(1 for r in results if isinstance(r, dict)) == 5
    assert (await meter.current_usage(user_id))["usage"]["folders"] == 5


@pytest.mark.asyncio
async def test_plan_upgrade_applies_to_next_check(meter, store, verified_user):
    user_id = verified_user["id"]
    await meter.try_consume(user_id, Resource.FOLDERS, 5)

    with pytest.raises(QuotaExceededError):
        await meter.try_consume(user_id, Resource.FOLDERS, 1)

    await store.set_plan(user_id, Plan.PRO)
    snapshot = await meter.try_consume(user_id, Resource.FOLDERS, 1)
    assert snapshot["usage"]["folders"] == 6
    assert snapshot["limits"]["folders"] == 100


@pytest.mark.asyncio
async def test_unknown_stored_plan_is_metered_as_free(db, meter, verified_user):
    user_id = verified_user["id"]
    await db.users.update_one({"email": "alice@example.com"}, {"$set": {"plan": "diamond"}})

    snapshot = await meter.try_consume(user_id, Resource.API_CALLS, 1)
    assert snapshot["plan"] == "free"
    assert snapshot["limits"]["api_calls"] == 5000


@pytest.mark.asyncio
async def test_negative_delta_rejected(meter, verified_user):
    with pytest.raises(ValidationError):
        await meter.try_consume(verified_user["id"], Resource.STORAGE, -10)


@pytest.mark.asyncio
async def test_unknown_user(meter):
    with pytest.raises(UserNotFoundError):
        await meter.try_consume("507f1f77bcf86cd799439011", Resource.IMAGES, 1)
