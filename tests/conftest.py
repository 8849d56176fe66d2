"""Shared fakes for SSRM tests - stand in for Motor collections and cursors."""

import asyncio
import sys
import os

import mongomock
import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


class FakeCursor:
    def __init__(self, docs):
        self.docs = docs
        self.closed = False

    async def to_list(self, length=None):
        return list(self.docs)

    async def close(self):
        self.closed = True


class FakeCollection:
    """Records aggregate() calls and returns canned documents.

    Only `$skip` and `$limit` stages are applied to the documents, which is
    enough to exercise windowing on ungrouped queries.
    """

    def __init__(self, docs=None, error=None):
        self.docs = list(docs or [])
        self.error = error
        self.calls = []

    def aggregate(self, pipeline, **kwargs):
        self.calls.append((pipeline, kwargs))
        if self.error is not None:
            raise self.error
        docs = list(self.docs)
        for stage in pipeline:
            if "$skip" in stage:
                docs = docs[stage["$skip"]:]
            elif "$limit" in stage:
                docs = docs[:stage["$limit"]]
        return FakeCursor(docs)


@pytest.fixture
def make_collection():
    return FakeCollection


class BlockingCursor:
    """A cursor whose results never arrive until the awaiting task is cancelled."""

    def __init__(self):
        self.closed = False
        self.started = asyncio.Event()

    async def to_list(self, length=None):
        self.started.set()
        await asyncio.sleep(3600)

    async def close(self):
        self.closed = True


class BlockingCollection:
    def __init__(self):
        self.cursor = BlockingCursor()

    def aggregate(self, pipeline, **kwargs):
        return self.cursor


@pytest.fixture
def blocking_collection():
    return BlockingCollection()


class InMemoryCollection:
    """Motor-shaped wrapper running pipelines on an in-memory mongomock collection"""

    def __init__(self, collection):
        self.collection = collection
        self.calls = []

    def insert_many(self, docs):
        self.collection.insert_many([dict(doc) for doc in docs])

    def aggregate(self, pipeline, **kwargs):
        self.calls.append((pipeline, kwargs))
        return FakeCursor(list(self.collection.aggregate(pipeline)))


@pytest.fixture
def orders():
    """Empty in-memory `orders` collection"""
    return InMemoryCollection(mongomock.MongoClient()["ssrm_test"]["orders"])
