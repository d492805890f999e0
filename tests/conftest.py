"""
Pytest configuration and shared fixtures

The database is an in-memory mongomock-motor instance; mongomock has no
sessions, so units of work commit without a transaction here.
"""
import os

os.environ["MONGODB_TRANSACTIONS"] = "false"
os.environ["JWT_SECRET"] = "test_jwt_secret"

from uuid import uuid4

import pytest
from mongomock_motor import AsyncMongoMockClient

import config
from models.storage import StoredObject, Upload
from services.errors import UploadError


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def no_transactions(monkeypatch):
    monkeypatch.setattr(config, "MONGODB_TRANSACTIONS", False)


@pytest.fixture
def db():
    client = AsyncMongoMockClient()
    return client[f"course_test_{uuid4().hex[:8]}"]


class RecordingObjectStore:
    """In-memory object store that records every call."""

    def __init__(self):
        self.uploads = []
        self.delete_calls = []
        self.fail_uploads = False
        self.failing_deletes = set()

    async def upload(self, upload: Upload, path: str) -> StoredObject:
        if self.fail_uploads:
            raise UploadError(f"Object store rejected {upload.filename}")
        key = f"{path}/{len(self.uploads) + 1}-{upload.filename}"
        self.uploads.append(key)
        return StoredObject(url=f"https://blobs.test/{key}", key=key)

    async def delete(self, key: str) -> None:
        self.delete_calls.append(key)
        if key in self.failing_deletes:
            raise RuntimeError("blob service unavailable")


@pytest.fixture
def store():
    return RecordingObjectStore()


def make_upload(filename="notes.pdf", content_type="application/pdf", size=128):
    return Upload(filename=filename, content_type=content_type, data=b"x" * size)


@pytest.fixture
def make_teacher(db):
    async def _make(codes=("CS101",), email=None, user=None):
        teacher = {
            "id": str(uuid4()),
            "user": user or str(uuid4()),
            "email": email or f"{uuid4().hex[:6]}@school.test",
            "courseCodes": list(codes),
            "courses": [],
        }
        await db.teachers.insert_one(dict(teacher))
        return teacher
    return _make


@pytest.fixture
def make_student(db):
    async def _make(teacher, codes=("CS101",), courses=(), user=None):
        student = {
            "id": str(uuid4()),
            "user": user or str(uuid4()),
            "teacher": teacher["id"] if teacher else None,
            "teacherEmail": teacher["email"] if teacher else None,
            "courseCodes": list(codes),
            "courses": list(courses),
        }
        await db.students.insert_one(dict(student))
        return student
    return _make


def teacher_identity(teacher):
    return {"id": teacher["user"], "role": "teacher"}


ADMIN = {"id": "admin-user", "role": "admin"}


async def fetch(db, collection, id):
    return await db[collection].find_one({"id": id}, {"_id": 0})
