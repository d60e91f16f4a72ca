import pytest
from dramatiq.brokers.stub import StubBroker

from receiptscan.core import tasks
from receiptscan.models.enums import ReceiptStatus
from receiptscan.services import ingestion_service
from receiptscan.services.ingestion_service import IngestionPipeline

from fakes import FIXED_NOW, FakeAnalyzer, FakeClassifier


def test_stub_broker_is_used_without_broker_url():
    assert isinstance(tasks.broker, StubBroker)


def test_enqueue_processing_sends_a_message():
    tasks.broker.flush_all()
    message_id = tasks.enqueue_processing("receipt-1")

    assert isinstance(message_id, str) and message_id
    assert tasks.broker.queues[tasks.process_receipt_task.queue_name].qsize() == 1
    tasks.broker.flush_all()


def test_actor_runs_processing(monkeypatch):
    seen = []

    async def fake_run(receipt_id, session_factory=None):
        seen.append(receipt_id)
        return ReceiptStatus.COMPLETED.value

    monkeypatch.setattr(tasks, "run_processing", fake_run)
    tasks.process_receipt_task.fn("receipt-2")
    assert seen == ["receipt-2"]


@pytest.mark.asyncio
async def test_run_processing_completes_pending_receipt(session_factory, seeded, monkeypatch):
    pipeline = IngestionPipeline(session_factory, FakeClassifier(), FakeAnalyzer(), now=lambda: FIXED_NOW)
    pending = await pipeline.accept(seeded["user_id"], seeded["category_id"], b"queued receipt")
    monkeypatch.setattr(ingestion_service, "build_default_pipeline", lambda factory=None: pipeline)

    assert await tasks.run_processing(pending.id, session_factory) == "completed"


def test_worker_module_registers_actor():
    from receiptscan import worker

    assert worker.process_receipt_task is tasks.process_receipt_task
    assert worker.broker is tasks.broker
