"""
Rate Limiter Service
Fixed-window limiter for sensitive issuance actions (verification emails,
password reset links). State lives in MongoDB so every instance of the
service shares the same windows.
"""

import logging
import math
from datetime import timedelta

from pymongo.errors import DuplicateKeyError

from imagevault.errors import RateLimitError
from imagevault.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


class IssuanceRateLimiter:
    """
    Allows one action per key per window

    The window check and the timestamp update are one conditional write, so
    two concurrent requests cannot both pass.
    """

    def __init__(self, db):
        self.limits = db.issuance_limits

    async def hit(self, key: str, window_seconds: int) -> None:
        """
        Record an action for ``key``

        Raises:
            RateLimitError: the previous action was less than
                ``window_seconds`` ago
        """
        if window_seconds <= 0:
            return

        now = utcnow()
        window = timedelta(seconds=window_seconds)

        claimed = await self.limits.find_one_and_update(
            {"_id": key, "last_issued_at": {"$lte": now - window}},
            {"$set": {"last_issued_at": now, "expires_at": now + window}}
        )
        if claimed is not None:
            return

        try:
            await self.limits.insert_one({
                "_id": key,
                "last_issued_at": now,
                "expires_at": now + window
            })
            return
        except DuplicateKeyError:
            pass

        existing = await self.limits.find_one({"_id": key})
        elapsed = (now - existing["last_issued_at"]).total_seconds() if existing else 0
        retry_after = max(1, math.ceil(window_seconds - elapsed))

        logger.warning(f"Rate limit hit for {key}, retry in {retry_after}s")

        raise RateLimitError(
            f"Please wait {retry_after} seconds before requesting another email",
            retry_after=retry_after
        )
