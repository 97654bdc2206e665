"""
Tests for the verification API endpoints.

Tests the FastAPI endpoints including:
- Request/response validation
- Error handling
- Integration with the verification engine
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import Mock

from codementor.api.dependencies.engine import get_engine, get_model_manager
from codementor.api.main import create_app
from codementor.models.manager import ModelManager
from codementor.pipeline.verification.aggregator import aggregate
from codementor.pipeline.verification.verification import VerificationEngine
from codementor.pipeline.verification.verification_types import TestOutcome, VerificationSettings
from codementor.pipeline.verification.workspace import WorkspaceError

from conftest import EVEN_SUM_CONSTANT, EVEN_SUM_TESTS


@pytest.fixture
def engine():
    engine = Mock(spec=VerificationEngine)
    engine.settings = VerificationSettings()
    return engine


@pytest.fixture
def model_manager():
    manager = Mock(spec=ModelManager)
    manager.health_check.return_value = False
    return manager


@pytest.fixture
def client(engine, model_manager):
    """Test client for the FastAPI app."""
    app = create_app()

    # Override the lifespan-created objects for testing
    app.dependency_overrides[get_engine] = lambda: engine
    app.dependency_overrides[get_model_manager] = lambda: model_manager
    return TestClient(app)


@pytest.fixture
def sample_verify_request():
    """Sample verification request payload."""
    return {
        "exerciseId": "even-sum",
        "exercise": {
            "referenceTestSource": EVEN_SUM_TESTS,
            "problemStatement": "Return the sum of the even numbers in a list.",
            "concepts": ["loops"],
        },
        "code": EVEN_SUM_CONSTANT,
    }


@pytest.fixture
def failing_report():
    return aggregate([
        TestOutcome(name="TestEvenSum.test_basic", passed=False, failure_message="AssertionError: 0 != 12",
                    hint="Your method ignores its input."),
        TestOutcome(name="TestEvenSum.test_edge_empty", passed=True),
    ], exercise_id="even-sum")


class TestVerificationAPI:
    """Test the verification API endpoints."""

    def test_verify_success(self, client, engine, sample_verify_request, failing_report):
        """
        Test: Verify endpoint with a valid payload
        How: Post a camelCase request; the engine returns a report with one failure
        Ensures: The report is returned in camelCase and the engine received the parsed exercise
        """
        engine.verify_submission.return_value = failing_report

        response = client.post("/api/v1/verification/verify", json=sample_verify_request)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "1/2 tests passed"
        data = body["data"]
        assert data["exerciseId"] == "even-sum"
        assert data["allTestsPassed"] is False
        assert (data["totalTests"], data["passedTests"], data["failedTests"]) == (2, 1, 1)
        assert data["outcomes"][0]["hint"] == "Your method ignores its input."

        exercise, submission, exercise_id = engine.verify_submission.call_args[0]
        assert exercise.reference_test_source == EVEN_SUM_TESTS
        assert exercise.concepts == ["loops"]
        assert submission.code == EVEN_SUM_CONSTANT
        assert exercise_id == "even-sum"

    def test_verify_compilation_error(self, client, engine, sample_verify_request):
        engine.verify_submission.return_value = aggregate([], compilation_error="Compilation errors:\nline 2: SyntaxError")

        body = client.post("/api/v1/verification/verify", json=sample_verify_request).json()

        assert body["success"] is True
        assert body["message"] == "Compilation failed"
        assert body["data"]["compilationError"].startswith("Compilation errors")
        assert body["data"]["outcomes"] == []

    def test_verify_workspace_unavailable(self, client, engine, sample_verify_request):
        engine.verify_submission.side_effect = WorkspaceError("disk full")

        response = client.post("/api/v1/verification/verify", json=sample_verify_request)

        assert response.status_code == 503
        detail = response.json()["detail"]
        assert detail["error"] == "disk full"
        assert detail["error_code"] == "workspace_unavailable"

    def test_verify_unexpected_error(self, client, engine, sample_verify_request):
        engine.verify_submission.side_effect = RuntimeError("kaboom")

        body = client.post("/api/v1/verification/verify", json=sample_verify_request).json()

        assert body["success"] is False
        assert "kaboom" in body["message"]
        assert body["data"] is None

    @pytest.mark.parametrize("payload", [
        {"exercise": {"referenceTestSource": "x"}},
        {"code": "x = 1"},
        {"exercise": {}, "code": "x = 1"},
    ])
    def test_verify_validation_errors(self, client, engine, payload):
        response = client.post("/api/v1/verification/verify", json=payload)

        assert response.status_code == 422
        engine.verify_submission.assert_not_called()

    def test_hint_endpoint(self, client, engine):
        engine.hint_for_failure.return_value = "Check the loop condition."

        response = client.post("/api/v1/verification/hint", json={
            "testName": "TestEvenSum.test_basic",
            "testCode": EVEN_SUM_TESTS,
            "studentCode": EVEN_SUM_CONSTANT,
            "errorMessage": "AssertionError: 0 != 12",
        })

        assert response.status_code == 200
        assert response.json() == {"hint": "Check the loop condition."}
        engine.hint_for_failure.assert_called_once_with(
            test_name="TestEvenSum.test_basic",
            test_source=EVEN_SUM_TESTS,
            submission_source=EVEN_SUM_CONSTANT,
            failure_message="AssertionError: 0 != 12",
            problem_statement="",
        )


class TestHealthAPI:
    def test_root(self, client):
        body = client.get("/").json()
        assert body["status"] == "operational"
        assert body["endpoints"]["verification"] == "/api/v1/verification"

    def test_health(self, client, model_manager):
        body = client.get("/health/").json()

        assert body["status"] in ("healthy", "degraded")
        assert "Unreachable" in body["dependencies"]["hint_provider"]
        assert set(body["environment"]) >= {"interpreter", "harness", "workspace", "overall_status"}
        model_manager.health_check.assert_called_once_with("hints")

    def test_ready(self, client):
        assert client.get("/health/ready").json()["ready"] is True

    def test_not_ready_without_interpreter(self, client, engine):
        engine.settings = VerificationSettings(interpreter="/nonexistent/python")

        body = client.get("/health/ready").json()

        assert body["ready"] is False
        assert "Toolchain unavailable" in body["reason"]
