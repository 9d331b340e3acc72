"""
Pytest configuration and shared test helpers for backend tests.
"""
import copy
import os
import sys
from pathlib import Path

# Skip server startup (MongoDB, scheduler) when running under pytest.
os.environ.setdefault("PYTEST_RUNNING", "1")

BACKEND_DIR = Path(__file__).resolve().parent.parent
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

import pytest
from fastapi.testclient import TestClient
from pymongo import ReturnDocument


# ---------------------------------------------------------------------------
# In-memory stand-in for the motor collections used by the services
# ---------------------------------------------------------------------------

_MISSING = object()


def _get_path(doc, dotted):
    value = doc
    for part in dotted.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def _set_path(doc, dotted, value):
    parts = dotted.split(".")
    target = doc
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def _match_value(actual, expected):
    if isinstance(expected, dict) and any(k.startswith("$") for k in expected):
        value = None if actual is _MISSING else actual
        for op, operand in expected.items():
            if op == "$lt" and not (value is not None and value < operand):
                return False
            if op == "$ne" and value == operand:
                return False
            if op == "$in" and value not in operand:
                return False
        return True
    return (None if actual is _MISSING else actual) == expected


def matches(doc, query):
    for key, expected in query.items():
        if key == "$or":
            if not any(matches(doc, sub) for sub in expected):
                return False
        elif not _match_value(_get_path(doc, key), expected):
            return False
    return True


def _project(doc, projection):
    result = copy.deepcopy(doc)
    if projection and projection.get("_id") == 0:
        result.pop("_id", None)
    return result


class FakeCursor:
    def __init__(self, docs):
        self._docs = docs
        self._limit = None

    def sort(self, key, direction=None):
        keys = key if isinstance(key, list) else [(key, direction if direction is not None else 1)]
        for field, order in reversed(keys):
            self._docs.sort(
                key=lambda d: (_get_path(d, field) is not _MISSING, _get_path(d, field) if _get_path(d, field) is not _MISSING else ""),
                reverse=order == -1,
            )
        return self

    def limit(self, n):
        self._limit = n
        return self

    async def to_list(self, length=None):
        docs = self._docs
        for bound in (self._limit, length):
            if bound:
                docs = docs[:bound]
        return docs


class UpdateResult:
    def __init__(self, matched_count):
        self.matched_count = matched_count
        self.modified_count = matched_count


class FakeCollection:
    def __init__(self):
        self.docs = []

    async def insert_one(self, doc):
        stored = copy.deepcopy(doc)
        stored.setdefault("_id", f"oid-{len(self.docs) + 1}")
        self.docs.append(stored)
        return UpdateResult(1)

    async def find_one(self, query, projection=None):
        for doc in self.docs:
            if matches(doc, query):
                return _project(doc, projection)
        return None

    def find(self, query=None, projection=None):
        return FakeCursor([_project(d, projection) for d in self.docs if matches(d, query or {})])

    @staticmethod
    def _apply(doc, update):
        for key, value in update.get("$set", {}).items():
            _set_path(doc, key, copy.deepcopy(value))
        for key, value in update.get("$inc", {}).items():
            current = _get_path(doc, key)
            _set_path(doc, key, (0 if current in (_MISSING, None) else current) + value)

    async def update_one(self, query, update):
        for doc in self.docs:
            if matches(doc, query):
                self._apply(doc, update)
                return UpdateResult(1)
        return UpdateResult(0)

    async def find_one_and_update(self, query, update, projection=None, return_document=ReturnDocument.BEFORE):
        for doc in self.docs:
            if matches(doc, query):
                before = _project(doc, projection)
                self._apply(doc, update)
                return _project(doc, projection) if return_document == ReturnDocument.AFTER else before
        return None


class FakeDatabase:
    def __init__(self):
        self.opportunities = FakeCollection()
        self.audit_logs = FakeCollection()


@pytest.fixture
def fake_db():
    return FakeDatabase()


@pytest.fixture
def client():
    """Return a TestClient for the main FastAPI app (server:app). Use for unit-style API tests."""
    from server import app
    return TestClient(app)


# ---------------------------------------------------------------------------
# Sample data
# ---------------------------------------------------------------------------

def sample_submission(**overrides):
    data = {
        "locationId": "loc-1",
        "pipelineId": "pipe-1",
        "stageId": "stage-1",
        "name": "Acme Corp - HSA/FSA",
        "employerName": "Acme Corp",
        "brokerAgency": "Best Brokers",
        "monetaryValue": "1200",
        "assignedTo": "user-7",
        "contact": {
            "name": "Jane Broker",
            "email": "Jane@Brokers.com ",
            "companyName": "Acme Corp",
        },
        "products": [
            {"product": "HSA", "rate": "3.25", "isOverride": False},
            {"product": "FSA", "rate": "4.50", "isOverride": False},
        ],
        "customFields": [
            {"id": "cf1", "key": "opportunity.rfp_effective_date", "field_value": "2026-01-01"},
            {"id": "cf2", "key": "opportunity.total_employees", "field_value": "120"},
            {"id": "cf3", "key": "opportunity.monthly_total", "field_value": "100"},
            {"id": "cf4", "key": "opportunity.yearly_total", "field_value": "1200"},
        ],
    }
    data.update(overrides)
    return data


def override_products():
    return [
        {"product": "HSA", "rate": "2.00", "isOverride": True, "justification": "Competitive bid"},
        {"product": "FSA", "rate": "4.50", "isOverride": False},
    ]


@pytest.fixture
def make_submission():
    return sample_submission


@pytest.fixture
def fake_ghl():
    """GHLService stand-in; every operation is an AsyncMock with a realistic default."""
    from unittest.mock import AsyncMock, MagicMock

    ghl = MagicMock()
    ghl.location_id = "NFWWwK7qd0rXqtNyOINy"
    ghl.upsert_contact = AsyncMock(return_value={"contact": {"id": "contact-1"}, "new": True})
    ghl.get_contact = AsyncMock(return_value={"contact": {"id": "contact-1", "email": "jane@brokers.com"}})
    ghl.search_contacts = AsyncMock(return_value={"contacts": []})
    ghl.add_contact_note = AsyncMock(return_value={})
    ghl.create_opportunity = AsyncMock(return_value={"opportunity": {"id": "opp-1", "name": "Acme Corp"}})
    ghl.update_opportunity = AsyncMock(return_value={})
    ghl.add_opportunity_note = AsyncMock(return_value={})
    ghl.get_users = AsyncMock(return_value={"users": [{"id": "user-7", "email": "owner@nuesynergy.com"}]})
    ghl.send_message = AsyncMock(return_value={"messageId": "msg-1"})
    ghl.upload_file = AsyncMock(return_value={"url": "https://files.example.com/proposal.pdf"})
    return ghl
