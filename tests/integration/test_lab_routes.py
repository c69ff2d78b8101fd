"""Integration tests for lab session routes."""

import time
import uuid
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from src.schemas.chat import ChatResponse
from src.services.chat_errors import ChatNetworkError
from tests.conftest import FakeChatBackend

SESSION_URL = "/api/v1/lab/session"


def wait_for_phase(client: TestClient, phase: str, attempts: int = 50) -> dict:
    """Poll the session until the scheduled transition has run."""
    data = client.get(SESSION_URL).json()
    for _ in range(attempts):
        if data["snapshot"]["currentPhase"] == phase:
            break
        time.sleep(0.02)
        data = client.get(SESSION_URL).json()
    return data


def walk_to_base(client: TestClient) -> None:
    client.post(f"{SESSION_URL}/messages", json={"content": "爽やかな香りがいい"})
    client.post(f"{SESSION_URL}/messages", json={"content": "朝の森"})
    client.post(f"{SESSION_URL}/choices", json={"choice": "森林浴"})
    client.post(f"{SESSION_URL}/choices", json={"choice": "レモン"})
    client.post(f"{SESSION_URL}/choices", json={"choice": {"name": "ローズ", "description": "華やか"}})


class TestGetSession:
    """Tests for GET /api/v1/lab/session."""

    def test_new_client_gets_welcome(self, client: TestClient) -> None:
        response = client.get(SESSION_URL)

        assert response.status_code == 200
        data = response.json()
        assert data["snapshot"]["currentPhase"] == "welcome"
        assert data["snapshot"]["messages"][0]["content"] == "今日はどんな香りつくる？"
        assert data["phaseDisplayName"] == "ようこそ"
        assert data["progress"] == {"step": 0, "totalSteps": 7, "percentage": 0}
        assert data["isOrderButtonEnabled"] is False

    def test_client_id_issued(self, client: TestClient) -> None:
        """Test that a new client receives an id cookie and header."""
        response = client.get(SESSION_URL)

        client_id = response.headers["x-client-id"]
        assert uuid.UUID(client_id)
        assert response.cookies.get("fragrance_lab_client") == client_id

    def test_same_client_same_session(self, client: TestClient) -> None:
        """Test that the cookie keeps the client on its session."""
        first = client.get(SESSION_URL).json()["snapshot"]["sessionId"]

        assert client.get(SESSION_URL).json()["snapshot"]["sessionId"] == first

    def test_header_selects_client(self, client: TestClient) -> None:
        client_id = str(uuid.uuid4())

        response = client.get(SESSION_URL, headers={"X-Client-Id": client_id})

        assert "x-client-id" not in response.headers


class TestMessages:
    """Tests for POST /api/v1/lab/session/messages."""

    def test_send_advances_phase(self, scripted_client: tuple[TestClient, FakeChatBackend]) -> None:
        client, backend = scripted_client
        backend.script.append(ChatResponse(content="素敵ですね"))

        data = client.post(f"{SESSION_URL}/messages", json={"content": "こんにちは"}).json()

        assert data["snapshot"]["currentPhase"] == "intro"
        assert [m["content"] for m in data["snapshot"]["messages"][1:]] == ["こんにちは", "素敵ですね"]

    def test_backend_failure_in_view(self, scripted_client: tuple[TestClient, FakeChatBackend]) -> None:
        """Test that a failed exchange is reported in the view, not as an HTTP error."""
        client, backend = scripted_client
        backend.script.append(ChatNetworkError("NetworkError: refused"))

        response = client.post(f"{SESSION_URL}/messages", json={"content": "こんにちは"})

        assert response.status_code == 200
        data = response.json()
        assert data["error"] == "NetworkError: refused"
        assert data["snapshot"]["currentPhase"] == "welcome"
        assert data["snapshot"]["messages"][-1]["content"].startswith("申し訳ありません。")

    def test_empty_message_rejected(self, client: TestClient) -> None:
        assert client.post(f"{SESSION_URL}/messages", json={"content": ""}).status_code == 422


class TestChoices:
    """Tests for POST /api/v1/lab/session/choices."""

    def test_full_flow_to_order(self, scripted_client: tuple[TestClient, FakeChatBackend]) -> None:
        """Test the guided flow through to the order hand-off."""
        client, _ = scripted_client
        walk_to_base(client)

        response = client.post(f"{SESSION_URL}/choices", json={"choice": "バニラ"})
        data = response.json()
        assert data["selection"] == {
            "ok": True,
            "category": "base",
            "reason": None,
            "autoTransitionScheduled": True,
        }
        assert data["snapshot"]["selectedScents"] == {"top": ["レモン"], "middle": ["ローズ"], "base": ["バニラ"]}

        data = wait_for_phase(client, "finalized")
        assert data["snapshot"]["currentPhase"] == "finalized"
        assert data["isOrderButtonEnabled"] is True

        order = client.post(f"{SESSION_URL}/order").json()
        assert order["allowed"] is True
        assert order["redirectUrl"].endswith("/custom-order?mode=lab")
        assert order["recipe"]["baseNotes"] == ["バニラ"]

    def test_choice_outside_note_phase(self, scripted_client: tuple[TestClient, FakeChatBackend]) -> None:
        client, _ = scripted_client

        data = client.post(f"{SESSION_URL}/choices", json={"choice": "海"}).json()

        assert data["selection"] is None


class TestPhase:
    """Tests for POST /api/v1/lab/session/phase."""

    def test_invalid_transition_is_soft_failure(self, client: TestClient) -> None:
        response = client.post(f"{SESSION_URL}/phase", json={"phase": "finalized"})

        assert response.status_code == 200
        data = response.json()
        assert data["ok"] is False
        assert data["reason"] == "invalid_transition"
        assert data["snapshot"]["currentPhase"] == "welcome"

    def test_valid_transition(self, client: TestClient) -> None:
        data = client.post(f"{SESSION_URL}/phase", json={"phase": "intro"}).json()

        assert data["ok"] is True
        assert data["snapshot"]["currentPhase"] == "intro"

    def test_shortcut(self, client: TestClient) -> None:
        client.post(f"{SESSION_URL}/phase", json={"phase": "intro"})

        data = client.post(f"{SESSION_URL}/phase", json={"phase": "base", "shortcut": "omakase"}).json()

        assert data["ok"] is True
        assert data["snapshot"]["currentPhase"] == "base"


class TestAutoCreate:
    """Tests for POST /api/v1/lab/session/auto-create."""

    def test_creates_recipe_and_completes(self, client: TestClient) -> None:
        response = client.post(f"{SESSION_URL}/auto-create")

        data = response.json()
        assert data["ok"] is True
        assert data["recipe"]["name"] == "リラックスブレンド"
        assert data["recipe"]["topNotes"] == ["レモン"]

        data = wait_for_phase(client, "complete")
        assert data["snapshot"]["currentPhase"] == "complete"
        assert client.post(f"{SESSION_URL}/order").json()["allowed"] is True

    def test_refused_late(self, client: TestClient) -> None:
        for phase in ("intro", "themeSelected", "top", "middle"):
            client.post(f"{SESSION_URL}/phase", json={"phase": phase})

        data = client.post(f"{SESSION_URL}/auto-create").json()

        assert data["ok"] is False
        assert data["reason"] == "phase_too_late"


class TestOrder:
    """Tests for POST /api/v1/lab/session/order."""

    def test_not_ready(self, client: TestClient) -> None:
        data = client.post(f"{SESSION_URL}/order").json()

        assert data["allowed"] is False
        assert data["reason"] == "order_not_ready"
        assert data["redirectUrl"] is None


class TestReset:
    """Tests for POST /api/v1/lab/session/reset."""

    def test_reset(self, client: TestClient) -> None:
        client.post(f"{SESSION_URL}/auto-create")

        data = client.post(f"{SESSION_URL}/reset").json()

        assert data["snapshot"]["currentPhase"] == "welcome"
        assert len(data["snapshot"]["messages"]) == 1
        assert data["recipe"] is None


class TestSave:
    """Tests for POST /api/v1/lab/session/save."""

    @patch("src.services.session_archive_service.get_supabase_client")
    def test_archives_snapshot(self, mock_archive_supabase: MagicMock, client: TestClient) -> None:
        mock_archive_supabase.return_value.table.return_value.upsert.return_value.execute.return_value.data = []
        session_id = client.get(SESSION_URL).json()["snapshot"]["sessionId"]

        response = client.post(f"{SESSION_URL}/save")

        assert response.status_code == 201
        assert response.json() == {"success": True, "sessionId": session_id}
        row = mock_archive_supabase.return_value.table.return_value.upsert.call_args.args[0]
        assert row["id"] == session_id
        assert row["phase"] == "welcome"
