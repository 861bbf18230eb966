# Shop Ledger Live API Test Suite - Shared Configuration and Fixtures
#
# This module provides:
# - Test database provisioning (ephemeral SQLite per test run)
# - A real Flask server process the tests talk to over HTTP
# - Failure message formatting
# - Catalog and bill data factories

import os
import sys
import time
import tempfile
import subprocess
import shutil
from pathlib import Path
from typing import Generator, Optional, Dict, Any, List
from dataclasses import dataclass

import pytest
import httpx

# Add backend to path for imports
REPO_ROOT = Path(__file__).parent.parent
BACKEND_DIR = REPO_ROOT / "backend"
sys.path.insert(0, str(BACKEND_DIR))


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class TestConfig:
    """Test configuration with environment variable overrides."""
    backend_base_url: str = os.environ.get("TEST_BACKEND_URL", "http://127.0.0.1:5001")

    # Timeouts
    request_timeout: float = float(os.environ.get("TEST_REQUEST_TIMEOUT", "30"))
    server_startup_timeout: float = float(os.environ.get("TEST_SERVER_STARTUP_TIMEOUT", "30"))

    # Simultaneous clients in the parallel bill creation test
    parallel_clients: int = int(os.environ.get("TEST_PARALLEL_CLIENTS", "10"))


# =============================================================================
# FAILURE MESSAGE HELPER
# =============================================================================

class TestFailure(Exception):
    """
    Custom exception with detailed, human-readable failure messages.

    Structure:
    1. Scenario: What was being tested
    2. Expected: What should have happened
    3. Actual: What actually happened
    4. Likely Cause: Most probable reason for failure
    5. Code Location: Where to look in the codebase
    """

    def __init__(
        self,
        scenario: str,
        expected: str,
        actual: str,
        likely_cause: str,
        code_location: str,
        response: Optional[httpx.Response] = None,
        extra_context: Optional[Dict[str, Any]] = None
    ):
        self.scenario = scenario
        self.expected = expected
        self.actual = actual
        self.likely_cause = likely_cause
        self.code_location = code_location
        self.response = response
        self.extra_context = extra_context or {}

        super().__init__(self._format_message())

    def _format_message(self) -> str:
        lines = [
            "",
            "=" * 80,
            "TEST FAILURE DETAILS",
            "=" * 80,
            f"SCENARIO: {self.scenario}",
            "-" * 80,
            f"EXPECTED: {self.expected}",
            f"ACTUAL: {self.actual}",
            "-" * 80,
            f"LIKELY CAUSE: {self.likely_cause}",
            f"CODE LOCATION: {self.code_location}",
        ]

        if self.response is not None:
            lines.extend([
                "-" * 80,
                f"HTTP STATUS: {self.response.status_code}",
                f"RESPONSE BODY: {self.response.text[:1000]}",
            ])

        if self.extra_context:
            lines.append("-" * 80)
            lines.append("EXTRA CONTEXT:")
            for key, value in self.extra_context.items():
                lines.append(f"  {key}: {value}")

        lines.append("=" * 80)
        return "\n".join(lines)


def assert_response(
    response: httpx.Response,
    expected_status: int,
    scenario: str,
    code_location: str,
    expected_body_contains: Optional[str] = None
):
    """
    Assert HTTP response status and optionally body content.
    Raises TestFailure with detailed message on failure.
    """
    if response.status_code != expected_status:
        raise TestFailure(
            scenario=scenario,
            expected=f"HTTP {expected_status}",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location=code_location,
            response=response
        )

    if expected_body_contains and expected_body_contains not in response.text:
        raise TestFailure(
            scenario=scenario,
            expected=f"Response body contains: {expected_body_contains}",
            actual=f"Response body: {response.text[:500]}",
            likely_cause="Response format changed or wrong endpoint hit",
            code_location=code_location,
            response=response
        )


def _infer_cause(response: httpx.Response) -> str:
    """Infer likely cause from the response's error code."""
    try:
        code = response.json().get("code")
    except ValueError:
        code = None

    if code == "INSUFFICIENT_STOCK":
        return "Manual decrease would take stock below zero"
    if code == "ADVANCE_EXCEEDS_TOTAL":
        return "Advance larger than the bill total (ALLOW_ADVANCE_OVER_TOTAL is off)"
    if code == "SERIAL_CONFLICT":
        return "Bill number allocation kept colliding - check sequence_service"
    if response.status_code == 404:
        return "Resource not found - wrong ID or already deleted"
    elif response.status_code == 400:
        return "Invalid request - missing required field or validation failed"
    elif response.status_code == 409:
        return "Conflict - concurrent writers collided"
    elif response.status_code == 500:
        return "Server error - check backend logs for stack trace"
    else:
        return f"Unexpected status code {response.status_code}"


# =============================================================================
# HTTP CLIENT
# =============================================================================

class APIClient:
    """HTTP client wrapper with convenience methods."""

    def __init__(self, base_url: str, timeout: float = 30.0):
        self.base_url = base_url.rstrip("/")
        self.client = httpx.Client(timeout=timeout)

    def _headers(self, extra: Optional[Dict] = None) -> Dict:
        headers = {"Content-Type": "application/json"}
        if extra:
            headers.update(extra)
        return headers

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.get(
            f"{self.base_url}{path}",
            headers=self._headers(),
            params=params,
            **kwargs
        )

    def post(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.post(
            f"{self.base_url}{path}",
            headers=self._headers(),
            json=json,
            **kwargs
        )

    def put(self, path: str, json: Optional[Dict] = None, **kwargs) -> httpx.Response:
        return self.client.put(
            f"{self.base_url}{path}",
            headers=self._headers(),
            json=json,
            **kwargs
        )

    def delete(self, path: str, **kwargs) -> httpx.Response:
        return self.client.delete(
            f"{self.base_url}{path}",
            headers=self._headers(),
            **kwargs
        )

    def close(self):
        """Close the HTTP client."""
        self.client.close()


# =============================================================================
# SERVER MANAGEMENT
# =============================================================================

class ServerManager:
    """
    Manages Flask backend server lifecycle for tests.
    """

    def __init__(self, config: TestConfig):
        self.config = config
        self.process: Optional[subprocess.Popen] = None
        self.db_file: Optional[Path] = None

    def start(self) -> bool:
        """Create the schema in a temp database, then start the Flask server on it."""
        temp_dir = tempfile.mkdtemp(prefix="shopledger_test_")
        self.db_file = Path(temp_dir) / "test_shopledger.sqlite3"

        self.initialize_db()

        env = os.environ.copy()
        env["DATABASE_URL"] = f"sqlite:///{self.db_file}"
        env["FLASK_APP"] = "wsgi.py"

        self.process = subprocess.Popen(
            [sys.executable, "-m", "flask", "run", "--port", "5001", "--with-threads"],
            cwd=str(BACKEND_DIR),
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )

        return self._wait_for_server()

    def _wait_for_server(self) -> bool:
        """Wait for server to be responsive."""
        start_time = time.time()
        while time.time() - start_time < self.config.server_startup_timeout:
            try:
                response = httpx.get(f"{self.config.backend_base_url}/api/health", timeout=2.0)
                if response.status_code in (200, 503):  # 503 means unhealthy but running
                    return True
            except (httpx.ConnectError, httpx.TimeoutException):
                pass
            time.sleep(0.5)
        return False

    def stop(self):
        """Stop the Flask server and cleanup."""
        if self.process:
            self.process.terminate()
            try:
                self.process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                self.process.kill()
            self.process = None

        if self.db_file and self.db_file.parent.exists():
            shutil.rmtree(self.db_file.parent, ignore_errors=True)

    def initialize_db(self):
        """Create tables directly (no HTTP endpoint exists for schema setup)."""
        from shopledger import create_app
        from shopledger.extensions import db

        app = create_app({"SQLALCHEMY_DATABASE_URI": f"sqlite:///{self.db_file}"})

        with app.app_context():
            db.create_all()
            db.engine.dispose()


# =============================================================================
# TEST DATA FACTORIES
# =============================================================================

class TestDataFactory:
    """
    Factory for creating test data via API calls.
    """

    def __init__(self, client: APIClient):
        self.client = client
        self._counter = 0

    def _next_id(self) -> int:
        self._counter += 1
        return self._counter

    def create_product(
        self,
        name: Optional[str] = None,
        stock: int = 10,
        rate_cents: int = 1000,
        product_type: str = "sales",
        min_stock_level: int = 2,
    ) -> Dict:
        """Create a product via API. Names get a run-unique suffix."""
        n = self._next_id()
        response = self.client.post("/api/products", json={
            "name": name or f"Test Product {n}-{time.time_ns()}",
            "rate_cents": rate_cents,
            "product_type": product_type,
            "stock_quantity": stock,
            "min_stock_level": min_stock_level,
        })
        if response.status_code == 201:
            return response.json()
        raise TestFailure(
            scenario="Create test product",
            expected="HTTP 201",
            actual=f"HTTP {response.status_code}",
            likely_cause="Product creation failed - check validation",
            code_location="backend/shopledger/routes/products.py:create_product_route",
            response=response
        )

    def get_product(self, product_id: int) -> Dict:
        response = self.client.get(f"/api/products/{product_id}")
        assert_response(
            response, 200,
            scenario="Fetch product",
            code_location="backend/shopledger/routes/products.py:get_product_route"
        )
        return response.json()

    def create_bill(self, variant: str, items: List[Dict], **extra) -> Dict:
        """Create a sales or rental bill via API; returns {"bill", "warnings"}."""
        payload = {
            "customer_name": "Live Test Customer",
            "customer_phone": "9000000000",
            "items": items,
        }
        if variant == "rental":
            payload["from_date"] = "2024-06-01T10:00:00Z"
            payload["to_date"] = "2024-06-03T10:00:00Z"
        payload.update(extra)

        response = self.client.post(f"/api/{variant}-bills", json=payload)
        if response.status_code == 201:
            return response.json()
        raise TestFailure(
            scenario=f"Create {variant} bill",
            expected="HTTP 201",
            actual=f"HTTP {response.status_code}",
            likely_cause=_infer_cause(response),
            code_location="backend/shopledger/services/billing_service.py:create_bill",
            response=response
        )


# =============================================================================
# PYTEST FIXTURES
# =============================================================================

@pytest.fixture(scope="session")
def test_config() -> TestConfig:
    """Provide test configuration."""
    return TestConfig()


@pytest.fixture(scope="session")
def server_manager(test_config: TestConfig) -> Generator[ServerManager, None, None]:
    """
    Manage test server lifecycle.
    Server is started once per test session.
    """
    manager = ServerManager(test_config)

    # For CI/external server mode, don't manage server
    if os.environ.get("TEST_EXTERNAL_SERVER"):
        yield manager
    else:
        if not manager.start():
            manager.stop()
            pytest.fail("Failed to start test server")
        yield manager
        manager.stop()


@pytest.fixture(scope="session")
def api_client(test_config: TestConfig, server_manager: ServerManager) -> Generator[APIClient, None, None]:
    """Provide API client for session-scoped tests."""
    client = APIClient(test_config.backend_base_url, timeout=test_config.request_timeout)
    yield client
    client.close()


@pytest.fixture
def client(api_client: APIClient) -> APIClient:
    return api_client


@pytest.fixture
def factory(client: APIClient) -> TestDataFactory:
    """Provide test data factory."""
    return TestDataFactory(client)


# =============================================================================
# TEST MARKERS
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "smoke: Quick smoke tests for critical paths")
    config.addinivalue_line("markers", "full: Full regression tests")
    config.addinivalue_line("markers", "stress: Load/stress tests")
    config.addinivalue_line("markers", "products: Product catalog and stock tests")
    config.addinivalue_line("markers", "bills: Sales and rental bill tests")
    config.addinivalue_line("markers", "concurrent: Concurrency tests")
