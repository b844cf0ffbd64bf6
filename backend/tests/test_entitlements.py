"""Tests for plan limits and entitlement decisions."""

import pytest

from imagevault.errors import ValidationError
from imagevault.models.usage_models import Allowed, Denied, Plan, Resource
from imagevault.services import entitlements
from imagevault.services.entitlements import GB


def test_every_plan_has_limits():
    for plan in Plan:
        assert entitlements.limits_for(plan) is entitlements.PLAN_LIMITS[plan]


@pytest.mark.parametrize("plan,storage,api,images,folders", [
    (Plan.FREE, 2 * GB, 5000, 100, 5),
    (Plan.STARTER, 25 * GB, 25000, 1000, 20),
    (Plan.PRO, 100 * GB, 100000, 10000, 100),
    (Plan.ENTERPRISE, 500 * GB, 1000000, 100000, 1000),
])
def test_plan_limit_table(plan, storage, api, images, folders):
    limits = entitlements.limits_for(plan)
    assert limits.storage_limit == storage
    assert limits.api_requests_limit == api
    assert limits.images_limit == images
    assert limits.folders_limit == folders


@pytest.mark.parametrize("stored", ["platinum", "", None, "FREE ", "Pro"])
def test_unknown_plan_never_gets_more_than_free(stored):
    limits = entitlements.limits_for(stored)
    if str(stored).strip().lower() == "pro":
        assert limits == entitlements.PLAN_LIMITS[Plan.PRO]
    else:
        assert limits == entitlements.PLAN_LIMITS[Plan.FREE]


def test_starter_upload_over_storage_limit_is_denied():
    limits = entitlements.limits_for(Plan.STARTER)
    current = int(24.9 * GB)

    decision = entitlements.check(Resource.STORAGE, limits, current, 200 * 1024 * 1024)

    assert isinstance(decision, Denied)
    assert decision.resource == Resource.STORAGE
    assert decision.current_usage == current
    assert decision.limit == 25 * GB


def test_usage_exactly_at_limit_is_allowed():
    limits = entitlements.limits_for(Plan.FREE)
    assert isinstance(entitlements.check(Resource.IMAGES, limits, 99, 1), Allowed)
    assert isinstance(entitlements.check(Resource.IMAGES, limits, 100, 0), Allowed)
    assert isinstance(entitlements.check(Resource.IMAGES, limits, 100, 1), Denied)


def test_negative_delta_is_rejected():
    with pytest.raises(ValidationError):
        entitlements.check(Resource.FOLDERS, entitlements.limits_for(Plan.FREE), 0, -1)


def test_usage_percentage_is_capped():
    assert entitlements.usage_percentage(50, 100) == 50.0
    assert entitlements.usage_percentage(250, 100) == 100.0
    assert entitlements.usage_percentage(1, 3) == 33.33


def test_plan_catalogue_lists_all_plans():
    catalogue = entitlements.plan_catalogue()
    assert [entry["plan"] for entry in catalogue] == [plan.value for plan in Plan]
    assert catalogue[0]["limits"]["folders_limit"] == 5
