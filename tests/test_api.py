"""Tests for the HTTP and WebSocket API."""

from workflow_core.api import endpoints
from workflow_core.core.execution_engine import CancellationToken


def _linear_payload(initial_input=5, **extra):
    payload = {
        "nodes": [
            {"id": "S", "type": "start", "position": {"x": 0, "y": 0}, "data": {}},
            {"id": "J", "type": "javascript", "position": {"x": 200, "y": 0}, "data": {"code": "return input1+1"}},
            {"id": "E", "type": "end", "position": {"x": 400, "y": 0}, "data": {}},
        ],
        "edges": [
            {"id": "e1", "source": "S", "target": "J"},
            {"id": "e2", "source": "J", "target": "E"},
        ],
        "context": {"variables": {"initialInput": initial_input}},
    }
    payload.update(extra)
    return payload


class TestHealthEndpoints:
    """Test cases for service health endpoints."""

    def test_root(self, client):
        """The root endpoint reports the service is running."""
        response = client.get("/")

        assert response.status_code == 200
        assert "is running" in response.json()["message"]
        assert "X-Request-ID" in response.headers

    def test_health(self, client):
        """The health endpoint lists the registered node types."""
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert "javascript" in data["node_types"]


class TestValidationEndpoints:
    """Test cases for the validation endpoints."""

    def test_validate_scores_graph(self, client):
        """A text model node without a model scores 30 and grade F."""
        response = client.post("/api/v1/workflow/validate", json={
            "nodes": [{"id": "T", "type": "textModel", "data": {}}],
            "edges": [],
        })

        assert response.status_code == 200
        data = response.json()
        assert data["score"] == 30
        assert data["grade"] == "F"
        assert data["can_execute"] is False
        assert any(issue["field"] == "model" for issue in data["issues"])

    def test_validate_clean_graph(self, client):
        """A connected start to end graph is valid."""
        response = client.post("/api/v1/workflow/validate", json={
            "nodes": [{"id": "S", "type": "start"}, {"id": "E", "type": "end"}],
            "edges": [{"id": "e", "source": "S", "target": "E"}],
        })

        data = response.json()
        assert data["valid"] is True
        assert data["score"] == 100
        assert data["grade"] == "A"

    def test_validate_with_credentials(self, client):
        """Supplied credentials are checked as part of validation."""
        response = client.post("/api/v1/workflow/validate", json={
            "nodes": [
                {"id": "S", "type": "start"},
                {"id": "T", "type": "textModel", "data": {"model": "openai/gpt-4o"}},
            ],
            "edges": [{"id": "e", "source": "S", "target": "T"}],
            "credentials": {},
        })

        issues = response.json()["issues"]
        assert [issue["field"] for issue in issues if issue["severity"] == "error"] == ["openai"]

    def test_validate_credentials(self, client):
        """The credentials endpoint reports missing providers only."""
        response = client.post("/api/v1/workflow/validate/credentials", json={
            "nodes": [
                {"id": "T", "type": "textModel", "data": {"model": "openai/gpt-4o"}},
                {"id": "I", "type": "imageGeneration"},
            ],
            "credentials": {"openai": "sk-test"},
        })

        assert response.status_code == 200
        assert [issue["field"] for issue in response.json()["issues"]] == ["google"]

    def test_invalid_body(self, client):
        """Nodes without an ID are rejected."""
        response = client.post("/api/v1/workflow/validate", json={"nodes": [{"type": "start"}]})

        assert response.status_code == 422


class TestExecutionEndpoints:
    """Test cases for the execution endpoints."""

    def test_execute(self, client):
        """The run result and every update are returned."""
        response = client.post("/api/v1/workflow/execute", json=_linear_payload(run_id="run-1"))

        assert response.status_code == 200
        data = response.json()
        assert data["run_id"] == "run-1"
        assert data["result"]["success"] is True
        assert data["result"]["results"] == {"S": 5, "J": 6, "E": 6}
        assert [update["type"] for update in data["updates"]] == [
            "node_start", "node_complete", "node_start", "node_complete",
            "node_start", "node_complete", "complete",
        ]
        assert "run-1" not in endpoints._active_runs

    def test_execute_generates_run_id(self, client):
        """A run ID is generated when none is supplied."""
        response = client.post("/api/v1/workflow/execute", json=_linear_payload())

        assert response.json()["run_id"]

    def test_execute_cycle_is_a_failed_result(self, client):
        """Cycles fail the run without an HTTP error."""
        response = client.post("/api/v1/workflow/execute", json={
            "nodes": [{"id": "A", "type": "javascript"}, {"id": "B", "type": "javascript"}],
            "edges": [
                {"id": "e1", "source": "A", "target": "B"},
                {"id": "e2", "source": "B", "target": "A"},
            ],
        })

        assert response.status_code == 200
        result = response.json()["result"]
        assert result["success"] is False
        assert result["error"].startswith("Workflow contains cycles")

    def test_execute_rejects_active_run_id(self, client):
        """A run ID that is already in flight is a conflict."""
        endpoints._active_runs["busy"] = CancellationToken()
        try:
            response = client.post("/api/v1/workflow/execute", json=_linear_payload(run_id="busy"))
        finally:
            endpoints._active_runs.pop("busy", None)

        assert response.status_code == 409
        assert response.json()["detail"]["error"] == "RunAlreadyActive"

    def test_cancel_active_run(self, client):
        """Cancelling an in-flight run trips its token."""
        token = CancellationToken()
        endpoints._active_runs["live"] = token
        try:
            response = client.post("/api/v1/workflow/cancel/live")
        finally:
            endpoints._active_runs.pop("live", None)

        assert response.json() == {"run_id": "live", "cancelled": True}
        assert token.is_aborted

    def test_cancel_unknown_run(self, client):
        """Cancelling a run that is not in flight reports false."""
        response = client.post("/api/v1/workflow/cancel/nope")

        assert response.status_code == 200
        assert response.json() == {"run_id": "nope", "cancelled": False}

    def test_node_types(self, client):
        """The built-in node types are listed."""
        response = client.get("/api/v1/node-types")

        assert response.status_code == 200
        assert response.json()["node_types"] == ["start", "end", "prompt", "javascript", "conditional"]


class TestWebSocketExecution:
    """Test cases for streamed execution over WebSocket."""

    def test_stream_updates_then_result(self, client):
        """Updates arrive in order, followed by the final result."""
        with client.websocket_connect("/api/v1/ws/execute") as websocket:
            websocket.send_json(_linear_payload(initial_input=1, run_id="ws-run"))

            messages = []
            while True:
                message = websocket.receive_json()
                messages.append(message)
                if message["type"] == "result":
                    break

        assert [m["type"] for m in messages] == [
            "node_start", "node_complete", "node_start", "node_complete",
            "node_start", "node_complete", "complete", "result",
        ]
        assert messages[1]["node_id"] == "S"
        assert messages[-1]["run_id"] == "ws-run"
        assert messages[-1]["result"]["results"] == {"S": 1, "J": 2, "E": 2}

    def test_stream_failure(self, client):
        """A failing node is streamed as node_error then error."""
        payload = {
            "nodes": [{"id": "J", "type": "javascript", "data": {"code": "return nope"}}],
            "edges": [],
        }
        with client.websocket_connect("/api/v1/ws/execute") as websocket:
            websocket.send_json(payload)

            messages = []
            while True:
                message = websocket.receive_json()
                messages.append(message)
                if message["type"] == "result":
                    break

        assert [m["type"] for m in messages] == ["node_start", "node_error", "error", "result"]
        assert messages[-1]["result"]["success"] is False

    def test_invalid_request(self, client):
        """A malformed request gets an error message."""
        with client.websocket_connect("/api/v1/ws/execute") as websocket:
            websocket.send_json({"nodes": [{"type": "start"}]})

            message = websocket.receive_json()

        assert message["type"] == "error"
        assert message["message"].startswith("Invalid execute request")
