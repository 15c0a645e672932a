# /backend/wardround/database.py

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING
from wardround.config import settings


class Database:
    client: AsyncIOMotorClient = None


db = Database()


async def connect_to_mongo():
    """Connect to MongoDB"""
    db.client = AsyncIOMotorClient(settings.MONGODB_URL)
    print(f"✅ Connected to MongoDB at {settings.MONGODB_URL}")


async def close_mongo_connection():
    """Close MongoDB connection"""
    if db.client is not None:
        db.client.close()
    print("❌ Closed MongoDB connection")


async def ensure_indexes():
    """Create the indexes the patient, user and audit queries rely on"""
    database = get_database()
    await database.users.create_index("email", unique=True)
    await database.patients.create_index([("room", ASCENDING)])
    await database.patients.create_index([("admissionDate", DESCENDING)])
    await database.patients.create_index([("acuity", ASCENDING)])
    await database.audit_logs.create_index([("userId", ASCENDING), ("timestamp", DESCENDING)])
    await database.audit_logs.create_index([("resource", ASCENDING), ("resourceId", ASCENDING)])


def get_database():
    """Get database instance"""
    return db.client[settings.DATABASE_NAME]
