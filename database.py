# database.py
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
import logging

import config

logger = logging.getLogger(__name__)

client = AsyncIOMotorClient(config.MONGODB_URI)
db = client[config.MONGODB_DB]


async def get_db() -> AsyncIOMotorDatabase:
    """Database dependency"""
    return db


async def init_db(database: AsyncIOMotorDatabase = db):
    logger.info(f"Creating indexes on {database.name}")
    for collection in (
        "courses", "teachers", "students", "syllabi", "articles",
        "outcomes", "schedules", "weekly_plans", "credit_points", "attendance",
        "lectures", "assignments", "announcements", "discussions", "supplementary_content",
    ):
        await database[collection].create_index("id", unique=True)
    await database.teachers.create_index("email", unique=True)
    await database.teachers.create_index("user")
    await database.teachers.create_index("courseCodes")
    await database.students.create_index("user")
    await database.students.create_index([("teacher", 1), ("courseCodes", 1)])
    await database.students.create_index("courses")
    await database.courses.create_index([("teacher", 1), ("isActive", 1)])
    await database.courses.create_index([("teacher", 1), ("courseCode", 1)])
    await database.courses.create_index("courseCode")
    await database.syllabi.create_index("course", unique=True)
    for collection in ("articles", "lectures", "assignments", "announcements", "discussions", "supplementary_content"):
        await database[collection].create_index("course")
