"""
MongoDB database connection
Using motor (async MongoDB driver)
"""
import logging
from motor.motor_asyncio import AsyncIOMotorClient
from imagevault.config import settings
from typing import Optional

logger = logging.getLogger(__name__)

# Global database client
mongodb_client: Optional[AsyncIOMotorClient] = None
database = None

async def connect_db():
    """Connect to MongoDB"""
    global mongodb_client, database

    try:
        # Revocations must survive a primary failover once acknowledged
        mongodb_client = AsyncIOMotorClient(settings.MONGODB_URL, w="majority")
        database = mongodb_client[settings.DATABASE_NAME]

        # Test connection
        await mongodb_client.admin.command('ping')
        logger.info(f"Connected to MongoDB: {settings.DATABASE_NAME}")

        await create_indexes(database)

    except Exception as e:
        logger.error(f"MongoDB connection failed: {e}")
        raise

async def close_db():
    """Close MongoDB connection"""
    global mongodb_client

    if mongodb_client:
        mongodb_client.close()
        logger.info("MongoDB connection closed")

async def get_database():
    """Get database instance"""
    return database

async def create_indexes(db):
    """
    Create the indexes the identity core relies on

    Several of them are correctness constraints, not just performance:
    unique email, unique (provider, external_id), unique token hashes and
    one usage counter per (user, period).
    """

    # Users
    await db.users.create_index("email", unique=True)

    # OAuth identities and pending authorization states
    await db.oauth_identities.create_index(
        [("provider", 1), ("external_id", 1)], unique=True
    )
    await db.oauth_identities.create_index("user_id")
    await db.oauth_states.create_index("state", unique=True)
    await db.oauth_states.create_index("expires_at", expireAfterSeconds=0)

    # Verification tokens (email verification, password reset)
    await db.verification_tokens.create_index("token_hash", unique=True)
    await db.verification_tokens.create_index([("user_id", 1), ("purpose", 1)])
    await db.verification_tokens.create_index("purge_at", expireAfterSeconds=0)
    await db.issuance_limits.create_index("expires_at", expireAfterSeconds=0)

    # Revocation list, entries disappear once every token they cover has expired
    await db.revocations.create_index("token_id")
    await db.revocations.create_index("user_id")
    await db.revocations.create_index("expires_at", expireAfterSeconds=0)

    # API keys
    await db.api_keys.create_index("key_hash", unique=True)
    await db.api_keys.create_index("user_id")

    # Usage counters
    await db.usage_counters.create_index([("user_id", 1), ("period", 1)], unique=True)

    logger.info("Database indexes created")
