"""
Shared fixtures: an in-memory stand-in for the Motor collections and a
scripted completion provider.
"""

import re
import copy
import uuid
from types import SimpleNamespace

import pytest

from wardround import database
from wardround.services.completion_provider import CompletionResponse


# ---------------------------------------------------------------------------
# In-memory Motor
# ---------------------------------------------------------------------------


def _matches(document: dict, query: dict) -> bool:
    for key, condition in (query or {}).items():
        if key == "$or":
            if not any(_matches(document, sub) for sub in condition):
                return False
        elif isinstance(condition, dict) and "$regex" in condition:
            flags = re.IGNORECASE if "i" in condition.get("$options", "") else 0
            if not re.search(condition["$regex"], str(document.get(key) or ""), flags):
                return False
        elif document.get(key) != condition:
            return False
    return True


class FakeCursor:
    def __init__(self, documents):
        self._documents = documents

    def sort(self, key, direction=1):
        self._documents.sort(
            key=lambda d: (d.get(key) is None, d.get(key) if d.get(key) is not None else ""),
            reverse=direction == -1,
        )
        return self

    def skip(self, count):
        self._documents = self._documents[count:]
        return self

    def limit(self, count):
        if count:
            self._documents = self._documents[:count]
        return self

    async def to_list(self, length=None):
        return self._documents if length is None else self._documents[:length]


class FakeCollection:
    def __init__(self):
        self.documents = []

    async def find_one(self, query):
        for document in self.documents:
            if _matches(document, query):
                return copy.deepcopy(document)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor([copy.deepcopy(d) for d in self.documents if _matches(d, query)])

    async def insert_one(self, document):
        document = copy.deepcopy(document)
        document.setdefault("_id", str(uuid.uuid4()))
        self.documents.append(document)
        return SimpleNamespace(inserted_id=document["_id"])

    async def replace_one(self, query, replacement):
        for index, document in enumerate(self.documents):
            if _matches(document, query):
                self.documents[index] = copy.deepcopy(replacement)
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def update_one(self, query, update):
        for document in self.documents:
            if _matches(document, query):
                document.update(copy.deepcopy(update.get("$set", {})))
                return SimpleNamespace(matched_count=1, modified_count=1)
        return SimpleNamespace(matched_count=0, modified_count=0)

    async def delete_one(self, query):
        for index, document in enumerate(self.documents):
            if _matches(document, query):
                del self.documents[index]
                return SimpleNamespace(deleted_count=1)
        return SimpleNamespace(deleted_count=0)

    async def count_documents(self, query):
        return sum(1 for d in self.documents if _matches(d, query))

    async def create_index(self, *args, **kwargs):
        return "index"


class FakeDatabase:
    def __init__(self):
        self._collections = {}

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return self._collections.setdefault(name, FakeCollection())


class FakeClient:
    def __init__(self):
        self.database = FakeDatabase()

    def __getitem__(self, name):
        return self.database

    def close(self):
        pass


@pytest.fixture
def fake_db(monkeypatch):
    client = FakeClient()
    monkeypatch.setattr(database.db, "client", client)
    return client.database


# ---------------------------------------------------------------------------
# Completion provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """Answers each call with the next scripted reply; records the requests."""

    def __init__(self, *replies, error=None):
        self.replies = list(replies)
        self.error = error
        self.requests = []

    async def complete(self, request, timeout=None):
        self.requests.append(request)
        if self.error:
            return CompletionResponse(error=self.error)
        text = self.replies.pop(0) if self.replies else ""
        return CompletionResponse(text=text)


@pytest.fixture
def make_provider():
    return FakeProvider


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@pytest.fixture
def resident():
    return {
        "_id": "user-resident",
        "email": "resident@hospital.org",
        "name": "Dr. Resident",
        "role": "Resident",
        "status": "Active",
        "hashed_password": "not-a-real-hash",
    }


@pytest.fixture
def attending():
    return {
        "_id": "user-attending",
        "email": "attending@hospital.org",
        "name": "Dr. Attending",
        "role": "Attending",
        "status": "Active",
        "hashed_password": "not-a-real-hash",
    }
