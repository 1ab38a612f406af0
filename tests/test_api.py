"""HTTP API tests with a fake transport and a real dispatcher."""

import base64
from unittest.mock import MagicMock, patch

import pytest
import requests
from fastapi.testclient import TestClient

from helpers import FAKE_PNG, connect
from wabridge.api.factory import create_app
from wabridge.settings import Settings

POST = "wabridge.webhooks.dispatcher.requests.post"


@pytest.fixture
def client(manager, dispatcher):
    # No `with`: lifespan (session start) is not run, tests drive the manager
    return TestClient(create_app(Settings(), manager=manager, dispatcher=dispatcher))


def _ok_response() -> MagicMock:
    response = MagicMock(status_code=200)
    response.raise_for_status.return_value = None
    return response


class TestStatus:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}

    def test_index(self, client):
        assert client.get("/").json() == {"service": "wabridge", "status": "disconnected"}

    def test_status_disconnected(self, client):
        body = client.get("/status").json()

        assert body["connected"] is False
        assert body["status"] == "disconnected"
        assert body["qrCode"] is None
        assert body["hasQR"] is False
        assert "timestamp" in body

    def test_status_connected(self, client, manager, transport_factory):
        connect(manager, transport_factory)
        body = client.get("/status").json()

        assert body["connected"] is True
        assert body["status"] == "connected"

    def test_correlation_id_echoed(self, client):
        response = client.get("/status", headers={"X-Correlation-ID": "abc-123"})
        assert response.headers["X-Correlation-ID"] == "abc-123"


class TestQr:
    def _qr_ready(self, manager, transport_factory):
        manager.start()
        transport_factory.latest.emit_qr("2@token")
        manager.drain()

    def test_qr_png(self, client, manager, transport_factory):
        self._qr_ready(manager, transport_factory)

        response = client.get("/qr")

        assert response.status_code == 200
        assert response.headers["content-type"] == "image/png"
        assert response.content == FAKE_PNG

    def test_qr_json(self, client, manager, transport_factory):
        self._qr_ready(manager, transport_factory)

        body = client.get("/qr-json").json()

        assert body["qrCodeText"] == "2@token"
        assert body["status"] == "qr_ready"
        prefix = "data:image/png;base64,"
        assert body["qrCodeImage"].startswith(prefix)
        assert base64.b64decode(body["qrCodeImage"][len(prefix):]) == FAKE_PNG

    @pytest.mark.parametrize("path", ["/qr", "/qr-json"])
    def test_qr_missing_is_404(self, client, path):
        response = client.get(path)

        assert response.status_code == 404
        assert response.json() == {"error": "QR code not available", "status": "disconnected"}

    def test_qr_gone_after_connect(self, client, manager, transport_factory):
        self._qr_ready(manager, transport_factory)
        transport_factory.latest.emit_open()
        manager.drain()

        assert client.get("/qr").status_code == 404


class TestRestart:
    def test_restart(self, client, manager, transport_factory):
        transport = connect(manager, transport_factory)

        response = client.post("/restart")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Connection restart initiated"}
        assert transport.logged_out is True
        assert client.get("/status").json()["status"] == "restarting"

    def test_restart_without_transport(self, dispatcher):
        from wabridge.session.manager import SessionManager

        mgr = SessionManager(None, dispatcher, background=False)
        client = TestClient(create_app(Settings(), manager=mgr, dispatcher=dispatcher))

        response = client.post("/restart")

        assert response.status_code == 500
        assert "error" in response.json()


class TestSend:
    def test_send_message_while_disconnected(self, client):
        response = client.post("/send-message", json={"to": "628123", "message": "hello"})

        assert response.status_code == 400
        assert response.json() == {"error": "WhatsApp not connected"}

    def test_send_message(self, client, manager, transport_factory):
        transport = connect(manager, transport_factory)

        response = client.post("/send-message", json={"to": "628123", "message": "hello"})

        assert response.status_code == 200
        assert response.json() == {"success": True, "messageId": "MSG001", "timestamp": 1700000000}
        assert transport.sent == [("628123@s.whatsapp.net", {"text": "hello"})]

    def test_send_message_transport_failure(self, client, manager, transport_factory):
        transport = connect(manager, transport_factory)
        transport.send_error = RuntimeError("socket closed")

        response = client.post("/send-message", json={"to": "628123", "message": "hello"})

        assert response.status_code == 500
        assert response.json() == {"error": "socket closed"}

    def test_send_message_missing_fields(self, client):
        assert client.post("/send-message", json={"to": "628123"}).status_code == 422

    def test_send_media(self, client, manager, transport_factory):
        transport = connect(manager, transport_factory)

        response = client.post(
            "/send-media",
            json={"to": "628123", "mediaUrl": "https://x/doc.pdf", "mediaType": "document", "caption": "c"},
        )

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert transport.sent == [
            ("628123@s.whatsapp.net", {"document": {"url": "https://x/doc.pdf"}, "caption": "c"})
        ]

    def test_send_media_invalid_type(self, client, manager, transport_factory):
        connect(manager, transport_factory)

        response = client.post(
            "/send-media",
            json={"to": "628123", "mediaUrl": "https://x/a", "mediaType": "sticker"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid media type"}

    def test_send_media_while_disconnected(self, client):
        response = client.post(
            "/send-media",
            json={"to": "628123", "mediaUrl": "https://x/a", "mediaType": "image"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "WhatsApp not connected"}


class TestMessages:
    def test_messages(self, client, manager, transport_factory):
        transport = connect(manager, transport_factory)
        transport.history = [{"id": "a"}, {"id": "b"}, {"id": "c"}]

        response = client.get("/messages/628123", params={"limit": 2})

        assert response.json() == {"success": True, "messages": [{"id": "a"}, {"id": "b"}]}
        assert transport.fetches == [("628123@s.whatsapp.net", 2)]

    def test_messages_default_limit(self, client, manager, transport_factory):
        transport = connect(manager, transport_factory)

        client.get("/messages/628123@s.whatsapp.net")

        assert transport.fetches == [("628123@s.whatsapp.net", 20)]

    def test_messages_with_binary_fields(self, client, manager, transport_factory):
        transport = connect(manager, transport_factory)
        transport.history = [{"id": "a", "message": {"imageMessage": {"mediaKey": b"\x00\xff"}}}]

        response = client.get("/messages/628123")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["messages"][0]["id"] == "a"
        assert isinstance(body["messages"][0]["message"]["imageMessage"]["mediaKey"], str)

    def test_messages_while_disconnected(self, client):
        response = client.get("/messages/628123")

        assert response.status_code == 400
        assert response.json() == {"error": "WhatsApp not connected"}


class TestWebhooks:
    def test_set_then_list(self, client):
        response = client.post("/set-webhook", json={"url": "https://x/y", "type": "message"})

        assert response.json() == {
            "success": True,
            "webhookUrls": {"message": "https://x/y", "status": None, "group": None},
        }
        assert client.get("/webhooks").json()["webhookUrls"]["message"] == "https://x/y"

    def test_set_defaults_to_message(self, client):
        client.post("/set-webhook", json={"url": "https://x/m"})
        assert client.get("/webhooks").json()["webhookUrls"]["message"] == "https://x/m"

    def test_set_invalid_type(self, client):
        response = client.post("/set-webhook", json={"url": "https://x/y", "type": "presence"})
        assert response.status_code == 400

    def test_check_without_url(self, client):
        response = client.post("/test-webhook", json={"type": "group"})

        assert response.status_code == 400
        assert response.json() == {"error": "No webhook URL set for type: group"}

    def test_check_success(self, client):
        client.post("/set-webhook", json={"url": "https://x/y", "type": "message"})

        with patch(POST, return_value=_ok_response()) as mock_post:
            response = client.post("/test-webhook", json={})

        assert response.json() == {"success": True, "message": "Test webhook sent"}
        assert mock_post.call_args.args[0] == "https://x/y"

    def test_check_failure(self, client):
        client.post("/set-webhook", json={"url": "https://x/y", "type": "status"})

        with patch(POST, side_effect=requests.ConnectionError("refused")):
            response = client.post("/test-webhook", json={"type": "status"})

        assert response.status_code == 500
        assert "refused" in response.json()["error"]

    def test_echo_endpoint(self, client):
        assert client.post("/webhook", json={"anything": 1}).json() == {"received": True}


class TestEndToEnd:
    def test_inbound_message_reaches_registered_webhook(self, client, manager, transport_factory, dispatcher):
        from helpers import make_message
        from wabridge.session.manager import SessionManager
        from wabridge.session.transport import MessagesUpsert

        client.post("/set-webhook", json={"url": "https://hooks.example.com/in", "type": "message"})
        mgr = SessionManager(transport_factory, dispatcher, background=False, qr_renderer=lambda t: FAKE_PNG)
        transport = connect(mgr, transport_factory)

        with patch(POST, return_value=_ok_response()) as mock_post:
            transport.emit(MessagesUpsert(messages=[make_message()]))
            mgr.drain()
            dispatcher.shutdown(wait=True)

        assert mock_post.call_count == 1
        assert mock_post.call_args.args[0] == "https://hooks.example.com/in"
        mgr.stop()
