import uuid

import pytest
from fastapi import Depends
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

import homeledger.main as main_module
from homeledger.auth import hash_secret
from homeledger.config import settings
from homeledger.db import get_async_session
from homeledger.categories import seed_system_categories
from homeledger.chat import ChatService
from homeledger.dependencies import get_advisor, get_chat_service, get_pipeline
from homeledger.main import app
from homeledger.models import ApiKey, Base
from homeledger.pipeline import DocumentPipeline
from homeledger.suggestions import MaintenanceAdvisor
from tests.conftest import memory_engine
from tests.fakes import FURNACE_EXTRACTION, FakeBlobStore, FakeExtractor, FakeLLM, FakeResolver

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
SECRETS = {"alice": "hl_alice-test-secret", "bob": "hl_bob-test-secret"}


class Api:
    def __init__(self, client, blobs, users, chat_llm):
        self.client = client
        self.blobs = blobs
        self.users = users
        self.chat_llm = chat_llm

    def headers(self, who="alice"):
        return {"Authorization": f"Bearer {SECRETS[who]}"}

    def get(self, url, who="alice", **kwargs):
        return self.client.get(url, headers=self.headers(who), **kwargs)

    def post(self, url, who="alice", **kwargs):
        return self.client.post(url, headers=self.headers(who), **kwargs)

    def patch(self, url, who="alice", **kwargs):
        return self.client.patch(url, headers=self.headers(who), **kwargs)

    def delete(self, url, who="alice", **kwargs):
        return self.client.delete(url, headers=self.headers(who), **kwargs)


@pytest.fixture
def api():
    engine = memory_engine()
    sessions = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    users = {name: uuid.uuid4() for name in SECRETS}
    blobs = FakeBlobStore()
    chat_llm = FakeLLM("Check the condensate line first.")
    ready = []

    async def override_session():
        # tables are created on the app's own event loop, on first use
        if not ready:
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            async with sessions() as session:
                for name, secret in SECRETS.items():
                    session.add(ApiKey(user_id=users[name], name=name, key_hash=hash_secret(secret)))
                await session.commit()
                await seed_system_categories(session)
            ready.append(True)
        async with sessions() as session:
            yield session

    def override_pipeline(session: AsyncSession = Depends(get_async_session)):
        return DocumentPipeline(session, blobs, FakeExtractor(FURNACE_EXTRACTION), FakeResolver())

    def override_chat(session: AsyncSession = Depends(get_async_session)):
        return ChatService(session, chat_llm, model="test-model")

    def override_advisor():
        return MaintenanceAdvisor(FakeLLM({"suggestions": [
            {"name": "Replace filter", "intervalMonths": 3},
            {"name": "Annual tune-up", "intervalMonths": 12},
        ]}), model="test-model")

    app.dependency_overrides[get_async_session] = override_session
    app.dependency_overrides[get_pipeline] = override_pipeline
    app.dependency_overrides[get_advisor] = override_advisor
    app.dependency_overrides[get_chat_service] = override_chat
    try:
        with TestClient(app) as client:
            yield Api(client, blobs, users, chat_llm)
            client.portal.call(engine.dispose)
    finally:
        app.dependency_overrides.clear()


def _create_property(api, who="alice", name="Maple House"):
    resp = api.post("/properties", who=who, json={"name": name, "yearBuilt": 1978})
    assert resp.status_code == 201, resp.text
    return resp.json()


def _upload(api, property_id, name="plate.png", data=PNG, content_type="image/png"):
    return api.post(f"/properties/{property_id}/documents/upload", files={"file": (name, data, content_type)})


def test_requests_without_a_valid_key_are_rejected(api):
    resp = api.client.get("/properties")
    assert resp.status_code == 401
    assert resp.json()["error"] == "unauthorized"

    resp = api.client.get("/properties", headers={"Authorization": "Bearer hl_nope"})
    assert resp.status_code == 401


def test_property_crud_and_ownership(api):
    prop = _create_property(api)
    assert prop["userId"] == str(api.users["alice"])
    assert prop["yearBuilt"] == 1978

    resp = api.patch(f"/properties/{prop['id']}", json={"name": None, "city": "Portland"})
    assert resp.status_code == 200
    assert resp.json()["name"] == "Maple House"
    assert resp.json()["city"] == "Portland"

    resp = api.get(f"/properties/{prop['id']}", who="bob")
    assert resp.status_code == 404
    assert resp.json() == {"error": "not_found", "detail": "Property not found"}
    assert api.get("/properties", who="bob").json() == []

    assert api.delete(f"/properties/{prop['id']}").status_code == 204
    assert api.get("/properties").json() == []


def test_invalid_body_is_a_bad_request(api):
    resp = api.post("/properties", json={"yearBuilt": 1978})
    assert resp.status_code == 400
    assert resp.json()["error"] == "bad_request"


def test_oversized_upload_is_rejected_before_storage(api, monkeypatch):
    prop = _create_property(api)
    monkeypatch.setattr(settings, "max_upload_size", 16)

    resp = _upload(api, prop["id"])

    assert resp.status_code == 400
    assert resp.json()["error"] == "bad_request"
    assert api.blobs.puts == []
    assert api.get(f"/properties/{prop['id']}/documents").json() == []


def test_upload_process_confirm_flow(api):
    prop = _create_property(api)

    resp = _upload(api, prop["id"], name="furnace.png")
    assert resp.status_code == 201, resp.text
    doc_id = resp.json()["id"]
    assert resp.json()["status"] == "pending"

    resp = api.post(f"/documents/{doc_id}/process")
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "ready_for_review"
    assert resp.json()["resolveData"]["action"] == "NEW_ITEM"

    resp = api.get(f"/documents/{doc_id}/url")
    assert resp.json()["signedUrl"].startswith(f"https://blobs.test/{prop['id']}/")

    resp = api.post(f"/documents/{doc_id}/confirm", json={"name": "Basement Furnace"})
    assert resp.status_code == 200, resp.text
    confirmed = resp.json()
    assert confirmed["action"] == "NEW_ITEM"

    items = api.get(f"/properties/{prop['id']}/items").json()
    assert [(i["id"], i["name"], i["serialNumber"]) for i in items] == [
        (confirmed["itemId"], "Basement Furnace", "2319A12345")
    ]

    resp = api.post(f"/documents/{doc_id}/confirm")
    assert resp.status_code == 409
    assert resp.json()["error"] == "status_conflict"

    assert api.get(f"/documents/{doc_id}", who="bob").status_code == 404


def test_document_status_filter(api):
    prop = _create_property(api)
    kept = _upload(api, prop["id"], name="a.png").json()["id"]
    dropped = _upload(api, prop["id"], name="b.png").json()["id"]
    assert api.post(f"/documents/{dropped}/discard").json()["status"] == "discarded"

    pending = api.get(f"/properties/{prop['id']}/documents", params={"status": "pending"}).json()
    assert [d["id"] for d in pending] == [kept]
    assert api.get(f"/properties/{prop['id']}/documents", params={"status": "bogus"}).status_code == 400


def test_maintenance_routes(api):
    prop = _create_property(api)
    item = api.post(f"/properties/{prop['id']}/items", json={"name": "Furnace", "category": "hvac"}).json()

    resp = api.post(f"/items/{item['id']}/maintenance",
                    json={"name": "Replace filter", "intervalMonths": 3, "nextDueDate": "2024-01-01"})
    assert resp.status_code == 201, resp.text
    task = resp.json()
    assert task["overdue"] is True
    assert task["source"] == "user_created"

    resp = api.post(f"/maintenance/{task['id']}/snooze")
    assert resp.json()["nextDueDate"] == "2024-04-01"

    resp = api.post(f"/maintenance/{task['id']}/complete", json={"date": "2024-02-15", "cost": 30})
    assert resp.json()["nextDueDate"] == "2024-05-15"
    assert resp.json()["lastCompletedAt"] == "2024-02-15"
    events = api.get(f"/items/{item['id']}/events").json()
    assert [e["type"] for e in events] == ["maintenance"]

    upcoming = api.get("/maintenance/upcoming").json()
    assert [t["id"] for t in upcoming] == [task["id"]]
    assert api.get("/maintenance/upcoming", who="bob").json() == []
    assert api.get(f"/maintenance/{task['id']}", who="bob").status_code == 404

    assert api.post(f"/maintenance/{task['id']}/dismiss").json()["status"] == "dismissed"
    assert api.post(f"/maintenance/{task['id']}/resume").status_code == 409


def test_generate_maintenance_inline(api):
    prop = _create_property(api)
    item = api.post(f"/properties/{prop['id']}/items", json={"name": "Furnace", "category": "hvac"}).json()

    resp = api.post(f"/items/{item['id']}/maintenance/generate")

    assert resp.json() == {"success": True, "method": "inline", "count": 2}
    tasks = api.get(f"/items/{item['id']}/maintenance").json()
    assert sorted(t["name"] for t in tasks) == ["Annual tune-up", "Replace filter"]
    assert all(t["source"] == "ai_suggested" for t in tasks)


def test_api_key_lifecycle(api):
    resp = api.post("/api-keys", json={"name": "cli"})
    assert resp.status_code == 201
    secret = resp.json()["secret"]
    assert secret.startswith("hl_")

    resp = api.client.get("/api-keys", headers={"Authorization": f"Bearer {secret}"})
    assert sorted(k["name"] for k in resp.json()) == ["alice", "cli"]

    assert api.delete(f"/api-keys/{resp.json()[0]['id']}", who="bob").status_code == 404


def test_email_intake_flow(api):
    prop = _create_property(api)

    resp = api.post(f"/properties/{prop['id']}/documents/email",
                    json={"body": "Your furnace tune-up is booked for May 3.", "sourceEmail": "alerts@acmehvac.com"})
    assert resp.status_code == 201, resp.text
    doc_id = resp.json()["id"]
    assert resp.json()["status"] == "pending"
    assert resp.json()["fileName"].endswith(".txt")

    resp = api.post(f"/documents/{doc_id}/extract")
    assert resp.status_code == 422

    resp = api.post(f"/documents/{doc_id}/resolve-email")
    assert resp.status_code == 200, resp.text
    assert resp.json()["action"] == "NEW_ITEM"

    doc = api.get(f"/documents/{doc_id}").json()
    assert doc["status"] == "ready_for_review"
    assert doc["source"] == "email"
    assert doc["sourceEmail"] == "alerts@acmehvac.com"
    assert doc["extractedData"]["documentType"] == "email"

    resp = api.post(f"/properties/{prop['id']}/documents/email",
                    json={"body": "hi", "sourceEmail": "not-an-address"})
    assert resp.status_code == 400
    resp = api.post(f"/properties/{prop['id']}/documents/email", who="bob",
                    json={"body": "hi", "sourceEmail": "bob@example.com"})
    assert resp.status_code == 404


def test_category_routes(api):
    resp = api.get("/categories")
    system = resp.json()
    assert "hvac" in [c["slug"] for c in system]
    assert all(c["isSystem"] for c in system)
    hvac_id = next(c["id"] for c in system if c["slug"] == "hvac")

    resp = api.post("/categories", json={"slug": "pool", "name": "Pool", "icon": "waves"})
    assert resp.status_code == 201, resp.text
    pool = resp.json()
    assert pool["isSystem"] is False

    assert api.post("/categories", json={"slug": "pool", "name": "Again"}).status_code == 409
    assert api.post("/categories", json={"slug": "hvac", "name": "Mine"}).status_code == 409
    assert api.post("/categories", json={"slug": "Pool Toys", "name": "Bad slug"}).status_code == 400

    resp = api.patch(f"/categories/{pool['id']}", json={"name": "Pool & Spa"})
    assert resp.json()["name"] == "Pool & Spa"
    assert api.patch(f"/categories/{hvac_id}", json={"name": "Heat"}).status_code == 403
    assert api.delete(f"/categories/{hvac_id}").status_code == 403
    assert api.get(f"/categories/{pool['id']}", who="bob").status_code == 404
    assert api.delete(f"/categories/{pool['id']}", who="bob").status_code == 404
    assert "pool" not in [c["slug"] for c in api.get("/categories", who="bob").json()]

    prop = _create_property(api)
    item = api.post(f"/properties/{prop['id']}/items", json={"name": "Pump", "category": "pool"}).json()
    resp = api.delete(f"/categories/{pool['id']}")
    assert resp.status_code == 409
    assert resp.json()["error"] == "conflict"

    assert api.delete(f"/items/{item['id']}").status_code == 204
    assert api.delete(f"/categories/{pool['id']}").status_code == 204


def test_items_require_a_known_category(api):
    prop = _create_property(api)
    bob_prop = _create_property(api, who="bob")
    api.post("/categories", json={"slug": "pool", "name": "Pool"})

    resp = api.post(f"/properties/{prop['id']}/items", json={"name": "Pump", "category": "spa"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "bad_request", "detail": "Unknown category: spa"}

    resp = api.post(f"/properties/{bob_prop['id']}/items", who="bob", json={"name": "Pump", "category": "pool"})
    assert resp.status_code == 400

    item = api.post(f"/properties/{prop['id']}/items", json={"name": "Pump", "category": "pool"}).json()
    assert api.patch(f"/items/{item['id']}", json={"category": "spa"}).status_code == 400
    assert api.patch(f"/items/{item['id']}", json={"category": "plumbing"}).json()["category"] == "plumbing"


def test_confirm_override_with_unknown_category_is_a_bad_request(api):
    prop = _create_property(api)
    doc_id = _upload(api, prop["id"]).json()["id"]
    api.post(f"/documents/{doc_id}/process")

    resp = api.post(f"/documents/{doc_id}/confirm", json={"category": "spa"})

    assert resp.status_code == 400
    assert api.get(f"/documents/{doc_id}").json()["status"] == "ready_for_review"
    assert api.get(f"/properties/{prop['id']}/items").json() == []


def test_chat_routes(api):
    prop = _create_property(api)
    item = api.post(f"/properties/{prop['id']}/items", json={"name": "Furnace", "category": "hvac"}).json()

    resp = api.post(f"/properties/{prop['id']}/conversations", json={"itemId": item["id"]})
    assert resp.status_code == 201, resp.text
    conv = resp.json()
    assert conv["itemId"] == item["id"]

    resp = api.post(f"/conversations/{conv['id']}/messages", json={"content": "Water pooling under the unit"})
    assert resp.status_code == 200, resp.text
    reply = resp.json()
    assert reply["userMessage"]["role"] == "user"
    assert reply["assistantMessage"]["content"] == "Check the condensate line first."
    assert "- Furnace (hvac) [focal]" in api.chat_llm.calls[-1][1][0]["content"]

    listed = api.get(f"/properties/{prop['id']}/conversations").json()
    assert listed[0]["title"] == "Furnace: Water pooling under the unit"
    assert listed[0]["messageCount"] == 2
    assert listed[0]["lastMessage"]["role"] == "assistant"

    detail = api.get(f"/conversations/{conv['id']}").json()
    assert [m["role"] for m in detail["messages"]] == ["user", "assistant"]

    assert api.patch(f"/conversations/{conv['id']}", json={"title": "Leak"}).json()["title"] == "Leak"
    assert api.post(f"/conversations/{conv['id']}/messages", json={"content": ""}).status_code == 400
    assert api.get(f"/conversations/{conv['id']}", who="bob").status_code == 404
    assert api.post(f"/conversations/{conv['id']}/messages", who="bob", json={"content": "hi"}).status_code == 404
    assert api.get(f"/properties/{prop['id']}/conversations", who="bob").status_code == 404

    assert api.delete(f"/conversations/{conv['id']}").status_code == 204
    assert api.get(f"/properties/{prop['id']}/conversations").json() == []


def test_chat_model_failure_is_a_bad_gateway(api):
    prop = _create_property(api)
    conv = api.post(f"/properties/{prop['id']}/conversations", json={}).json()
    api.chat_llm.reply = None

    resp = api.post(f"/conversations/{conv['id']}/messages", json={"content": "Is my roof okay?"})

    assert resp.status_code == 502
    assert resp.json()["error"] == "chat_error"
    messages = api.get(f"/conversations/{conv['id']}").json()["messages"]
    assert [m["content"] for m in messages] == ["Is my roof okay?"]


class FakeRedis:
    def __init__(self, up=True):
        self.up = up

    async def ping(self):
        if not self.up:
            raise ConnectionError("redis down")
        return True


def test_healthz(api, monkeypatch):
    async def ping_ok():
        return None

    monkeypatch.setattr(main_module, "ping_database", ping_ok)
    monkeypatch.setattr(main_module, "get_redis", lambda: FakeRedis())
    resp = api.client.get("/healthz")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "database": "ok", "redis": "ok"}

    monkeypatch.setattr(main_module, "get_redis", lambda: FakeRedis(up=False))
    resp = api.client.get("/healthz")
    assert resp.status_code == 503
    assert resp.json()["status"] == "degraded"
    assert resp.json()["redis"] == "error"
