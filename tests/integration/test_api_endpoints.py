"""Integration tests for the bridge's local control API."""

import os
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from tmux_bridge.server import create_app


@pytest.fixture
def mock_bot():
    bot = MagicMock()
    bot.connected = True
    return bot


@pytest.fixture
def test_client(context, outbox, lock, mock_bot):
    """Create a FastAPI TestClient wired to real state in tmp_path."""
    app = create_app(
        context=context,
        outbox=outbox,
        lock=lock,
        telegram_bot=mock_bot,
        config={},
    )
    return TestClient(app)


class TestHealth:
    def test_health(self, test_client):
        response = test_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestStatus:
    def test_status_snapshot(self, test_client, context, outbox):
        context.set_recipient("42")
        outbox.enqueue("waiting")

        response = test_client.get("/status")

        assert response.status_code == 200
        data = response.json()
        assert data["pid"] == os.getpid()
        assert data["target_pane"] == "%7"
        assert data["recipient_id"] == "42"
        assert data["telegram_connected"] is True
        assert data["lock_owner_pid"] is None
        assert data["pending_notifications"] == 1

    def test_status_reports_lock_owner(self, test_client, lock):
        lock.lock_file.write_text(str(os.getpid()))

        data = test_client.get("/status").json()

        assert data["lock_owner_pid"] == os.getpid()

    def test_status_disconnected_bot(self, test_client, mock_bot):
        mock_bot.connected = False
        assert test_client.get("/status").json()["telegram_connected"] is False


class TestNotify:
    def test_notify_without_recipient(self, test_client, outbox):
        response = test_client.post("/notify", json={"message": "hello"})

        assert response.status_code == 409
        assert outbox.count() == 0

    def test_notify_queues_message(self, test_client, context, outbox):
        context.set_recipient("42")

        response = test_client.post("/notify", json={"message": "deploy finished"})

        assert response.status_code == 200
        queued = response.json()["queued"]
        [entry] = outbox.pending()
        assert entry.name == queued
        assert outbox.read(entry) == "deploy finished"

    def test_notify_requires_message(self, test_client, context):
        context.set_recipient("42")
        response = test_client.post("/notify", json={})
        assert response.status_code == 422

    def test_notify_write_failure(self, test_client, context, outbox):
        context.set_recipient("42")

        with patch.object(outbox, "enqueue", side_effect=OSError("disk full")):
            response = test_client.post("/notify", json={"message": "x"})

        assert response.status_code == 500
        assert "disk full" in response.json()["detail"]
