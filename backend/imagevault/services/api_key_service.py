"""
API key service
Long-lived credentials for programmatic access. Only a SHA-256 of each key
is stored; the plaintext is shown once, at creation.
"""
import logging
from typing import Dict, List, Optional

from imagevault.errors import ValidationError
from imagevault.services.auth_service import generate_api_key, hash_secret
from imagevault.utils.ids import parse_object_id
from imagevault.utils.timeutils import utcnow

logger = logging.getLogger(__name__)


def _format_key(key: Dict) -> Dict:
    return {
        "id": str(key["_id"]),
        "name": key["name"],
        "key_preview": f"{key['key_prefix']}...",
        "permissions": key.get("permissions", []),
        "request_count": key.get("request_count", 0),
        "last_used_at": key["last_used_at"].isoformat() if key.get("last_used_at") else None,
        "created_at": key["created_at"].isoformat(),
        "is_active": key.get("is_active", True)
    }


class ApiKeyService:

    def __init__(self, db):
        self.api_keys = db.api_keys

    async def create(self, user_id: str, name: str, permissions: List[str]) -> Dict:
        api_key = generate_api_key()

        api_key_doc = {
            "user_id": str(user_id),
            "key_hash": hash_secret(api_key),
            "key_prefix": api_key[:10],
            "name": name,
            "permissions": sorted(set(permissions)),
            "request_count": 0,
            "last_used_at": None,
            "created_at": utcnow(),
            "is_active": True
        }

        result = await self.api_keys.insert_one(api_key_doc)
        api_key_doc["_id"] = result.inserted_id

        logger.info(f"Created API key {result.inserted_id} for user {user_id}")

        return {**_format_key(api_key_doc), "key": api_key}

    async def list_for_user(self, user_id: str) -> List[Dict]:
        cursor = self.api_keys.find({"user_id": str(user_id)}, sort=[("created_at", -1)])
        return [_format_key(key) for key in await cursor.to_list(length=100)]

    async def set_active(self, user_id: str, key_id: str, is_active: bool) -> None:
        result = await self.api_keys.update_one(
            {"_id": self._key_oid(key_id), "user_id": str(user_id)},
            {"$set": {"is_active": is_active}}
        )
        if result.matched_count == 0:
            raise ValidationError("API key not found", status_code=404)

    async def delete(self, user_id: str, key_id: str) -> None:
        result = await self.api_keys.delete_one({"_id": self._key_oid(key_id), "user_id": str(user_id)})
        if result.deleted_count == 0:
            raise ValidationError("API key not found", status_code=404)

    async def find_by_key(self, api_key: str) -> Optional[Dict]:
        return await self.api_keys.find_one({"key_hash": hash_secret(api_key)})

    async def record_use(self, key_id) -> None:
        await self.api_keys.update_one(
            {"_id": key_id},
            {"$set": {"last_used_at": utcnow()}, "$inc": {"request_count": 1}}
        )

    def _key_oid(self, key_id: str):
        oid = parse_object_id(key_id)
        if oid is None:
            raise ValidationError("Invalid key ID format")
        return oid
