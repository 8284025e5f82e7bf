import json
import os
import re

# Settings are read from the environment at import time.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SYNC_BATCH_DELAY_MS", "0")
os.environ.setdefault("HISTORY_BACKGROUND", "false")

import httpx
import pytest
from sqlalchemy.orm import sessionmaker

# FORCE model registration
import residuals.models  # noqa

from residuals.core.config import Settings
from residuals.db.base import Base
from residuals.db.session import make_engine
from residuals.services.airtable_client import AirtableClient
from residuals.services.deal_service import DealService
from residuals.services.duplicate_repair import DuplicateMidRepair
from residuals.services.event_service import EventService
from residuals.services.history_service import ActionHistoryService
from residuals.services.import_service import ImportService
from residuals.services.payout_service import PayoutService
from residuals.services.sync_service import SyncService
from residuals.tests.factories import PARTICIPANTS


# ---------------------------
# In-memory Airtable table
# ---------------------------

class FakeAirtable:
    """Enough of the Airtable records API for list / create / update."""

    _MONTH_FORMULA = re.compile(r"\{Payout Month\}='([^']*)'")

    def __init__(self):
        self.records = {}
        self.calls = []
        self.fail_writes = False
        self._seq = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.calls.append(request.method)
        if request.method == "GET":
            return self._list(request)
        if self.fail_writes:
            return httpx.Response(500, text="upstream unavailable")
        body = json.loads(request.content)
        if len(body["records"]) > 10:
            return httpx.Response(422, text="too many records")
        if request.method == "POST":
            return self._create(body["records"])
        if request.method == "PATCH":
            return self._update(body["records"])
        return httpx.Response(405)

    def _list(self, request):
        recs = list(self.records.values())
        formula = request.url.params.get("filterByFormula")
        if formula:
            m = self._MONTH_FORMULA.search(formula)
            if m:
                recs = [r for r in recs if r["fields"].get("Payout Month") == m.group(1)]
        size = int(request.url.params.get("pageSize", 100))
        start = int(request.url.params.get("offset", 0))
        page = recs[start: start + size]
        body = {"records": page}
        if start + size < len(recs):
            body["offset"] = str(start + size)
        return httpx.Response(200, json=body)

    def _create(self, records):
        out = []
        for r in records:
            self._seq += 1
            rec = {"id": f"rec{self._seq:05d}", "fields": dict(r["fields"])}
            self.records[rec["id"]] = rec
            out.append(rec)
        return httpx.Response(200, json={"records": out})

    def _update(self, records):
        out = []
        for r in records:
            if r["id"] not in self.records:
                return httpx.Response(422, text=f"unknown record {r['id']}")
            self.records[r["id"]]["fields"].update(r["fields"])
            out.append(self.records[r["id"]])
        return httpx.Response(200, json={"records": out})

    def by_payout_id(self, payout_id):
        for r in self.records.values():
            if r["fields"].get("Payout ID") == str(payout_id):
                return r
        return None


# ---------------------------
# Database
# ---------------------------

@pytest.fixture(scope="function")
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'residuals.db'}")
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ---------------------------
# Services
# ---------------------------

@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite://",
        airtable_api_key="key-test",
        sync_batch_delay_ms=0,
        sync_page_size=3,
        payout_page_size=2,
        history_background=False,
    )


@pytest.fixture
def history(session_factory):
    return ActionHistoryService(session_factory, background=False)


@pytest.fixture
def airtable():
    return FakeAirtable()


@pytest.fixture
def airtable_client(settings, airtable):
    return AirtableClient(settings, transport=httpx.MockTransport(airtable.handler))


@pytest.fixture
def sync_service(airtable_client, history, settings):
    return SyncService(airtable_client, history, settings)


@pytest.fixture
def deal_service(history, settings):
    return DealService(history, settings)


@pytest.fixture
def event_service(history, settings, sync_service):
    return EventService(history, settings, sync_service=sync_service)


@pytest.fixture
def payout_service(history, settings):
    return PayoutService(history, settings)


@pytest.fixture
def import_service(history):
    return ImportService(history)


@pytest.fixture
def repair(history, settings):
    return DuplicateMidRepair(history, settings)


@pytest.fixture
def participants():
    return [dict(p) for p in PARTICIPANTS]


# ---------------------------
# API
# ---------------------------

@pytest.fixture
def client(session_factory, history, airtable_client):
    from fastapi.testclient import TestClient

    from residuals.api.deps import get_airtable_client, get_history_service
    from residuals.db.session import get_db
    from residuals.main import create_app

    app = create_app()

    def _db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_history_service] = lambda: history
    app.dependency_overrides[get_airtable_client] = lambda: airtable_client

    with TestClient(app) as c:
        yield c
