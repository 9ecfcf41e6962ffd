"""
Shared test fixtures for the agent core backend.
"""
import json
import os
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session

# Force test settings before any app import
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///test.db")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-not-for-prod")
os.environ.setdefault("RECONCILIATION_ENABLED", "false")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.setdefault("TRANSFER_RATE_LIMIT_PER_MINUTE", "10000")

# Import Base and ALL models so they register with metadata
from app.persistence.database import Base
import app.persistence.models  # noqa: F401  registers all models
from app.providers.base import ProviderError
from app.providers.payment_provider import PaymentCompletion, TransactionStatusResult


@pytest.fixture(scope="session")
def db_engine():
    """Create a test SQLite engine, shared across the session."""
    engine = create_engine(
        "sqlite:///test.db",
        connect_args={"check_same_thread": False},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session(db_engine):
    """Per-test DB session with automatic rollback."""
    connection = db_engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection)
    yield session
    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture()
def user_id():
    return uuid.uuid4()


@pytest.fixture()
def auth_headers(user_id):
    from app.auth.security import create_access_token

    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture()
def make_agent(db_session, user_id):
    from app.persistence.models import Agent, AgentStatus

    def _make(**overrides):
        values = {
            "id": uuid.uuid4(),
            "owner_id": user_id,
            "name": "booking-agent",
            "status": AgentStatus.active,
            "tools_enabled": ["search_venues", "wallet_transfer"],
            "requires_approval": False,
        }
        values.update(overrides)
        agent = Agent(**values)
        db_session.add(agent)
        db_session.commit()
        return agent

    return _make


@pytest.fixture()
def test_agent(make_agent):
    return make_agent()


class FakeLLM:
    """Scripted chat provider: each call pops the next content string or raises it."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def chat(self, prompt, **kwargs):
        self.calls.append({"prompt": prompt, **kwargs})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if not isinstance(item, str):
            item = json.dumps(item)
        return {"content": item, "usage": {"input_tokens": 0, "output_tokens": 0}}


class FakePaymentProvider:
    def __init__(self):
        self.create_error = None
        self.complete_results = []
        self.statuses = {}
        self.created = []
        self.completed = []
        self._next_tx = 0

    def create_payment(self, **kwargs):
        self.created.append(kwargs)
        if self.create_error:
            raise self.create_error
        payment_id = f"pay_{len(self.created)}"
        return {"id": payment_id, "link": f"https://pay.example/{payment_id}"}

    def complete_payment(self, payment_id, *, from_address=None, auth_token=None):
        self.completed.append(payment_id)
        if self.complete_results:
            result = self.complete_results.pop(0)
            if isinstance(result, Exception):
                raise result
            return result
        self._next_tx += 1
        return PaymentCompletion(insufficient_funds=False, provider_transaction_id=f"ptx_{self._next_tx}")

    def get_transaction_status(self, provider_transaction_id):
        result = self.statuses.get(provider_transaction_id, TransactionStatusResult(status="pending"))
        if isinstance(result, Exception):
            raise result
        return result

    def token_balance(self, chain_id, token_address, owner_address):
        return {"displayValue": "12.5", "symbol": "USDC", "decimals": 6}

    def native_balance_wei(self, chain_id, address):
        return 1_500_000_000_000_000_000


class FakeToolServer:
    def __init__(self, outputs=None, failures=None):
        self.outputs = outputs or {}
        self.failures = failures or {}
        self.calls = []

    def invoke(self, tool, tool_input, *, correlation_id):
        self.calls.append({"tool": tool, "input": tool_input, "correlation_id": correlation_id})
        failure = self.failures.get(tool)
        if failure is not None:
            if isinstance(failure, list):
                if failure:
                    raise failure.pop(0)
            else:
                raise failure
        return self.outputs.get(tool, {"ok": True})


@pytest.fixture()
def fake_llm():
    return FakeLLM


@pytest.fixture()
def payment_provider():
    return FakePaymentProvider()


@pytest.fixture()
def tool_server():
    return FakeToolServer()


@pytest.fixture()
def provider_error():
    def _make(message="upstream exploded", status_code=500):
        return ProviderError(message, status_code=status_code)

    return _make


@pytest.fixture()
def api_client(db_session, payment_provider):
    """FastAPI test client bound to the per-test session and fake payment provider."""
    from fastapi.testclient import TestClient

    from app.api.deps import get_payment_client
    from app.main import app
    from app.persistence.database import get_db

    def _db():
        yield db_session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_payment_client] = lambda: payment_provider
    yield TestClient(app)
    app.dependency_overrides.clear()
