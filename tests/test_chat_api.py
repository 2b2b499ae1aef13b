"""Integration tests for the Chat API endpoint.

Tests the /chat endpoint that hands each turn to the resolution
orchestrator, plus the root and health endpoints.
"""

from unittest.mock import AsyncMock, patch

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage, HumanMessage

from media_concierge.api.chat import ChatHistoryEntry, to_messages
from media_concierge.main import app
from media_concierge.models.context_models import ContextKind


@pytest.fixture
def client():
    """Create a test client for the API."""
    return TestClient(app)


@pytest.fixture
def pending_reply():
    """Orchestrator output for a turn that listed candidates."""
    return {
        "reply": "I found 2 matches:\n1. The Matrix (1999)\n2. The Matrix Reloaded (2003)",
        "images": ["https://image.example/603.jpg"],
        "phase": "pending",
        "structured_data": {
            "images": ["https://image.example/603.jpg"],
            "phase": "pending",
            "selected": None,
            "outcome": None,
            "suspicious_titles": [],
        },
    }


def patch_process(**kwargs):
    return patch(
        "media_concierge.api.chat.process_chat_message", new_callable=AsyncMock, **kwargs
    )


# =============================================================================
# Request Validation Tests
# =============================================================================


class TestChatRequestValidation:
    """Tests for chat request validation."""

    def test_requires_message_field(self, client):
        """Should return 422 when message field is missing."""
        response = client.post("/chat/", json={"user_id": "u1"})
        assert response.status_code == 422

    def test_requires_user_id(self, client):
        """Should return 422 when user_id is missing."""
        response = client.post("/chat/", json={"message": "add the matrix"})
        assert response.status_code == 422

    def test_rejects_empty_message(self, client):
        """Should return 422 for an empty message."""
        response = client.post("/chat/", json={"message": "", "user_id": "u1"})
        assert response.status_code == 422

    def test_rejects_unknown_operation(self, client):
        """Should return 422 for an operation outside the known kinds."""
        response = client.post(
            "/chat/",
            json={"message": "the matrix", "user_id": "u1", "operation": "book-add"},
        )
        assert response.status_code == 422

    def test_rejects_unknown_history_role(self, client):
        """Should return 422 for a history entry with an unknown role."""
        response = client.post(
            "/chat/",
            json={
                "message": "2",
                "user_id": "u1",
                "history": [{"role": "system", "content": "hi"}],
            },
        )
        assert response.status_code == 422

    def test_accepts_minimal_request(self, client, pending_reply):
        """Should accept request with just message and user_id."""
        with patch_process(return_value=pending_reply) as mock_process:
            response = client.post("/chat/", json={"message": "add the matrix", "user_id": "u1"})

            assert response.status_code == 200
            mock_process.assert_awaited_once()
            kwargs = mock_process.call_args.kwargs
            assert kwargs["message"] == "add the matrix"
            assert kwargs["user_id"] == "u1"
            assert kwargs["history"] == []
            assert kwargs["operation"] is None


# =============================================================================
# Request Forwarding Tests
# =============================================================================


class TestRequestForwarding:
    """Tests for what the endpoint passes to the orchestrator."""

    def test_passes_explicit_operation(self, client, pending_reply):
        """Should forward the operation as a ContextKind."""
        with patch_process(return_value=pending_reply) as mock_process:
            client.post(
                "/chat/",
                json={"message": "the office", "user_id": "u1", "operation": "series-remove"},
            )

            assert mock_process.call_args.kwargs["operation"] is ContextKind.SERIES_REMOVE

    def test_converts_history_to_messages(self, client, pending_reply):
        """Should turn history entries into LangChain messages in order."""
        with patch_process(return_value=pending_reply) as mock_process:
            client.post(
                "/chat/",
                json={
                    "message": "2",
                    "user_id": "u1",
                    "history": [
                        {"role": "user", "content": "add the matrix"},
                        {"role": "assistant", "content": "Which one?"},
                    ],
                },
            )

            history = mock_process.call_args.kwargs["history"]
            assert isinstance(history[0], HumanMessage)
            assert history[0].content == "add the matrix"
            assert isinstance(history[1], AIMessage)
            assert history[1].content == "Which one?"

    def test_to_messages_empty(self):
        """Should return an empty list for no history."""
        assert to_messages([]) == []

    def test_to_messages_roles(self):
        """Should map user to human and assistant to AI."""
        messages = to_messages(
            [
                ChatHistoryEntry(role="assistant", content="Hello"),
                ChatHistoryEntry(role="user", content="add dune"),
            ]
        )

        assert [type(m) for m in messages] == [AIMessage, HumanMessage]


# =============================================================================
# Response Format Tests
# =============================================================================


class TestResponseFormat:
    """Tests for response format."""

    def test_response_contains_required_fields(self, client, pending_reply):
        """Should include reply, images, phase and structured_data."""
        with patch_process(return_value=pending_reply):
            response = client.post("/chat/", json={"message": "add the matrix", "user_id": "u1"})

        data = response.json()
        assert data["reply"].startswith("I found 2 matches")
        assert data["images"] == ["https://image.example/603.jpg"]
        assert data["phase"] == "pending"
        assert data["structured_data"]["selected"] is None

    def test_resolved_turn(self, client):
        """Should pass a resolved outcome through unchanged."""
        reply = {
            "reply": "Added The Office (season 2).",
            "images": [],
            "phase": "resolved",
            "structured_data": {"outcome": {"success": True, "warnings": []}},
        }
        with patch_process(return_value=reply):
            response = client.post("/chat/", json={"message": "season 2", "user_id": "u1"})

        data = response.json()
        assert data["phase"] == "resolved"
        assert data["images"] == []
        assert data["structured_data"]["outcome"]["success"] is True


# =============================================================================
# Error Handling Tests
# =============================================================================


class TestErrorHandling:
    """Tests for error handling in the chat endpoint."""

    def test_returns_500_on_processing_error(self, client):
        """Should return 500 when the orchestrator raises."""
        with patch_process(side_effect=RuntimeError("graph exploded")):
            response = client.post("/chat/", json={"message": "add dune", "user_id": "u1"})

        assert response.status_code == 500
        assert "Chat processing failed" in response.json()["detail"]
        assert "graph exploded" in response.json()["detail"]


# =============================================================================
# Root, Health and Middleware Tests
# =============================================================================


class TestServiceEndpoints:
    """Tests for the root and health endpoints."""

    def test_root(self, client):
        """Should describe the API."""
        response = client.get("/")

        assert response.status_code == 200
        assert response.json()["message"] == "Media Concierge API"

    def test_health_reports_pending_contexts(self, client):
        """Should report healthy with the pending-context count."""
        with patch("media_concierge.main.get_context_store") as mock_store:
            mock_store.return_value.size.return_value = 3
            response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "pending_contexts": 3}


class TestRequestIdHeader:
    """Tests for the correlation id added by the logging middleware."""

    def test_generates_request_id(self, client):
        """Should add an X-Request-ID header to every response."""
        response = client.get("/")

        assert response.headers["X-Request-ID"]

    def test_reuses_inbound_request_id(self, client):
        """Should echo an inbound X-Request-ID instead of generating one."""
        response = client.get("/", headers={"X-Request-ID": "turn-42"})

        assert response.headers["X-Request-ID"] == "turn-42"
