"""
Usage metering
Per-user, per-period resource counters with atomic check-and-increment
"""
import logging
from typing import Dict

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from imagevault.errors import QuotaExceededError, UserNotFoundError, ValidationError
from imagevault.models.usage_models import Denied, Resource
from imagevault.services import entitlements
from imagevault.utils.ids import parse_object_id
from imagevault.utils.timeutils import current_period, next_period_start, utcnow

logger = logging.getLogger(__name__)

COUNTER_FIELDS = {
    Resource.API_CALLS: "api_calls",
    Resource.STORAGE: "storage_bytes",
    Resource.IMAGES: "image_count",
    Resource.FOLDERS: "folder_count",
}


class UsageMeter:
    """
    Tracks consumption against plan limits

    ``try_consume`` is the only way counters change. The limit check and the
    increment are a single conditional update executed by MongoDB, so
    concurrent requests (from any number of service instances) cannot
    overshoot a limit between them.
    """

    def __init__(self, db):
        self.db = db
        self.counters = db.usage_counters

    async def try_consume(self, user_id: str, resource: Resource, delta: int) -> Dict:
        """
        Reserve ``delta`` units of ``resource`` for the user

        Raises:
            ValidationError: negative delta
            UserNotFoundError: unknown user
            QuotaExceededError: the increment would exceed the plan limit;
                nothing was changed
        """
        resource = Resource(resource)
        if delta < 0:
            raise ValidationError("Usage delta must not be negative")

        plan = await self._plan_of(user_id)
        limits = entitlements.limits_for(plan)
        limit = limits.limit_for(resource)
        field = COUNTER_FIELDS[resource]

        key = {"user_id": str(user_id), "period": current_period()}
        await self._materialize(key)

        counter = await self.counters.find_one_and_update(
            {**key, field: {"$lte": limit - delta}},
            {"$inc": {field: delta}},
            return_document=ReturnDocument.AFTER
        )

        if counter is None:
            current = await self.counters.find_one(key)
            current_value = current.get(field, 0) if current else 0
            decision = entitlements.check(resource, limits, current_value, delta)
            if not isinstance(decision, Denied):
                # The counter moved under us but only upwards; report as denied
                decision = Denied(resource=resource, current_usage=current_value, limit=limit)

            logger.warning(
                f"Quota denied for user {user_id}: {resource.value} "
                f"{decision.current_usage}+{delta} > {decision.limit}"
            )
            raise QuotaExceededError(
                resource.value,
                decision.current_usage,
                decision.limit
            )

        return self._snapshot(counter, plan)

    async def current_usage(self, user_id: str) -> Dict:
        """Read-only snapshot of all counters for the active period"""
        plan = await self._plan_of(user_id)
        counter = await self.counters.find_one(
            {"user_id": str(user_id), "period": current_period()}
        )
        return self._snapshot(counter or {}, plan)

    async def _plan_of(self, user_id: str) -> str:
        oid = parse_object_id(user_id)
        user = await self.db.users.find_one({"_id": oid}, {"plan": 1}) if oid else None
        if not user:
            raise UserNotFoundError("User not found")
        return entitlements.parse_plan(user.get("plan")).value

    async def _materialize(self, key: Dict) -> None:
        """Create the zeroed counter for a new period on first access"""
        zeros = {field: 0 for field in COUNTER_FIELDS.values()}
        try:
            await self.counters.update_one(
                key,
                {"$setOnInsert": {**zeros, "created_at": utcnow()}},
                upsert=True
            )
        except DuplicateKeyError:
            # A concurrent request created it first
            pass

    def _snapshot(self, counter: Dict, plan: str) -> Dict:
        limits = entitlements.limits_for(plan)
        usage = {}
        limit_values = {}
        percentages = {}
        for resource, field in COUNTER_FIELDS.items():
            used = counter.get(field, 0)
            limit = limits.limit_for(resource)
            usage[resource.value] = used
            limit_values[resource.value] = limit
            percentages[resource.value] = entitlements.usage_percentage(used, limit)

        return {
            "period": counter.get("period", current_period()),
            "plan": plan,
            "usage": usage,
            "limits": limit_values,
            "percentages": percentages,
            "resets_at": next_period_start().isoformat()
        }
