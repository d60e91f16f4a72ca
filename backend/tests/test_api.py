import asyncio
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from receiptscan.api.dependencies import get_db_session, get_pipeline, get_task_enqueuer
from receiptscan.api.main import app
from receiptscan.core.database import build_session_factory, init_db
from receiptscan.core.security import create_access_token
from receiptscan.models.tables import Category, User
from receiptscan.services.ingestion_service import IngestionPipeline

from fakes import FIXED_NOW, FakeAnalyzer, FakeClassifier

IMAGE = b"\xff\xd8\xff api receipt"
UPLOAD = "/api/v1/receipts/upload"


async def _prepare(engine, factory):
    await init_db(engine)
    async with factory() as session:
        owner = User(email="owner@example.com", name="Owner")
        other = User(email="other@example.com", name="Other")
        session.add_all([owner, other])
        await session.flush()
        category = Category(name="Groceries", user_id=owner.id)
        session.add(category)
        await session.commit()
        return owner.id, other.id, category.id


@pytest.fixture
def api(tmp_path):
    # NullPool: TestClient serves requests on its own event loop
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    factory = build_session_factory(engine)
    owner_id, other_id, category_id = asyncio.run(_prepare(engine, factory))

    classifier, analyzer = FakeClassifier(), FakeAnalyzer()
    pipeline = IngestionPipeline(factory, classifier, analyzer, now=lambda: FIXED_NOW)
    enqueued = []

    def enqueue(receipt_id):
        enqueued.append(receipt_id)
        return "msg-1"

    async def _db():
        async with factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _db
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_task_enqueuer] = lambda: enqueue

    yield SimpleNamespace(
        client=TestClient(app),
        headers={"Authorization": f"Bearer {create_access_token(owner_id)}"},
        other_headers={"Authorization": f"Bearer {create_access_token(other_id)}"},
        category_id=category_id,
        classifier=classifier,
        enqueued=enqueued,
    )
    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())


def _upload(api, image=IMAGE, params=None):
    return api.client.post(
        UPLOAD,
        params=params,
        headers=api.headers,
        files={"receipt": ("receipt.jpg", image, "image/jpeg")},
        data={"category_id": api.category_id},
    )


def test_upload_returns_completed_receipt(api):
    resp = _upload(api)
    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == 201
    assert body["errors"] is None
    assert body["data"]["status"] == "completed"
    assert body["data"]["merchant"] == "Corner Cafe"
    assert "image" not in body["data"]


def test_duplicate_upload_is_conflict(api):
    assert _upload(api).status_code == 201
    resp = _upload(api)
    assert resp.status_code == 409
    body = resp.json()
    assert body["errors"]["code"] == "duplicate_receipt"
    assert api.classifier.calls == 1


def test_upload_without_file_is_bad_request(api):
    resp = api.client.post(UPLOAD, headers=api.headers, data={"category_id": api.category_id})
    assert resp.status_code == 400
    assert resp.json()["errors"]["code"] == "missing_file"


def test_not_a_receipt_is_unprocessable(api):
    api.classifier.confidence = 0.42
    resp = _upload(api)
    assert resp.status_code == 422
    assert resp.json()["errors"]["context"]["confidence"] == 0.42


def test_upload_requires_a_token(api):
    resp = api.client.post(UPLOAD, files={"receipt": ("r.jpg", IMAGE, "image/jpeg")})
    assert resp.status_code == 401
    assert resp.json()["status"] == 401

    resp = api.client.get("/api/v1/receipts", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401


def test_background_upload_is_accepted(api):
    resp = _upload(api, params={"background": "true"})
    assert resp.status_code == 202
    data = resp.json()["data"]
    assert data["status"] == "pending"
    assert data["task_id"] == "msg-1"
    assert api.enqueued == [data["id"]]
    assert api.classifier.calls == 0


def test_list_get_and_delete(api):
    receipt_id = _upload(api).json()["data"]["id"]

    listed = api.client.get("/api/v1/receipts", headers=api.headers).json()["data"]
    assert [r["id"] for r in listed] == [receipt_id]
    assert api.client.get("/api/v1/receipts", headers=api.other_headers).json()["data"] == []

    assert api.client.get(f"/api/v1/receipts/{receipt_id}", headers=api.headers).status_code == 200
    assert api.client.get(f"/api/v1/receipts/{receipt_id}", headers=api.other_headers).status_code == 404

    assert api.client.delete(f"/api/v1/receipts/{receipt_id}", headers=api.headers).status_code == 200
    assert api.client.get("/api/v1/receipts", headers=api.headers).json()["data"] == []
    assert api.client.get(f"/api/v1/receipts/{receipt_id}", headers=api.headers).status_code == 404

    # Deleting frees the content hash
    assert _upload(api).status_code == 201


def test_health(api):
    resp = api.client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"


def test_db_debug_info_hides_credentials(api):
    resp = api.client.get("/debug/db")
    assert resp.status_code == 200
    assert resp.json()["drivername"] == "sqlite+aiosqlite"


def test_background_upload_fails_cleanly_when_queue_is_down(api):
    def broken_enqueue(receipt_id):
        raise ConnectionError("broker unreachable")

    app.dependency_overrides[get_task_enqueuer] = lambda: broken_enqueue
    resp = _upload(api, params={"background": "true"})
    assert resp.status_code == 503
    errors = resp.json()["errors"]
    assert errors["code"] == "task_enqueue_failed"
    assert errors["operation"] == "task.enqueue"

    # The abandoned receipt is hidden and no longer blocks the same bytes
    assert api.client.get("/api/v1/receipts", headers=api.headers).json()["data"] == []
    app.dependency_overrides[get_task_enqueuer] = lambda: lambda receipt_id: "msg-2"
    resp = _upload(api, params={"background": "true"})
    assert resp.status_code == 202
    assert resp.json()["data"]["task_id"] == "msg-2"
