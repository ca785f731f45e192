"""
Shared pytest configuration and fixtures for ClaimDesk tests.
"""

import os
import tempfile

# Settings load at import time, so point them at a scratch home first
os.environ.setdefault("CLAIMDESK_HOME", tempfile.mkdtemp(prefix="claimdesk-test-"))

from datetime import datetime, timezone
from typing import Any, Dict, List
from unittest.mock import AsyncMock

import pytest

from claimdesk.automation_actions import ActionExecutor
from claimdesk.automation_runner import AutomationRunner
from claimdesk.automation_triggers import AutomationTriggers
from claimdesk.claims import ClaimManager
from claimdesk.database import Database
from claimdesk.retry_utils import retry_manager
from claimdesk.storage import FileStorage

FIXED_NOW = datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)


class MockLLMProvider:
    """Records prompts and replays canned responses."""

    def __init__(self, responses: List[str] = None):
        self.responses = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    async def generate(self, system: str, messages: List[dict], max_tokens: int = 1500, temperature: float = 0.3) -> str:
        self.calls.append({
            "system": system,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": temperature,
        })
        if self.responses:
            return self.responses.pop(0)
        return "Just checking in on the status of this claim.\n\nFreedom Claims Team"

    async def test_connection(self) -> bool:
        return True


@pytest.fixture(autouse=True)
def reset_retry_state():
    """Circuit breakers and budgets are global; start every test clean."""
    retry_manager.reset()
    yield
    retry_manager.reset()


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def clock(now):
    return lambda: now


@pytest.fixture
def db(tmp_path):
    return Database(tmp_path / "claimdesk.db")


@pytest.fixture
def storage(tmp_path):
    return FileStorage(
        root=tmp_path / "files",
        signing_key=b"test-signing-key",
        public_base_url="http://testserver"
    )


@pytest.fixture
def triggers(db):
    return AutomationTriggers(db)


@pytest.fixture
def claims(db, triggers, clock):
    return ClaimManager(db, triggers, clock=clock)


@pytest.fixture
def mock_email():
    email = AsyncMock()
    email.send.return_value = {"status": 200, "id": "email-123"}
    return email


@pytest.fixture
def mock_sms():
    sms = AsyncMock()
    sms.send.return_value = {"to": "+15551234567", "from": "+15550000000", "message_id": "sms-123"}
    return sms


@pytest.fixture
def mock_webhook():
    webhook = AsyncMock()
    webhook.post.return_value = {"status": 200}
    return webhook


@pytest.fixture
def mock_llm():
    return MockLLMProvider()


@pytest.fixture
def actions(db, claims, storage, mock_email, mock_sms, mock_webhook, clock):
    return ActionExecutor(db, claims, storage, mock_email, mock_sms, mock_webhook, clock=clock)


@pytest.fixture
def runner(db, triggers, actions, clock):
    return AutomationRunner(db, triggers, actions, clock=clock)


@pytest.fixture
def sample_claim(claims):
    """An open claim with full contact details."""
    return claims.create_claim({
        "claim_number": "FC-1001",
        "policy_number": "HO-12/345",
        "status": "New",
        "loss_type": "Hail",
        "loss_date": "2025-02-20",
        "loss_description": "Hail storm damaged roof shingles",
        "policyholder_name": "Dana Rivera",
        "policyholder_email": "dana@example.com",
        "policyholder_phone": "(555) 123-4567",
        "policyholder_address": "12 Oak St, Trenton, NJ 08608",
        "insurance_company": "Acme Mutual",
        "adjuster_name": "Sam Lee",
        "adjuster_email": "sam.lee@acme.example",
        "adjuster_phone": "555-987-6543",
    })


@pytest.fixture
def make_automation(db):
    """Insert automation rows directly."""
    def _make(trigger_type: str, actions: List[Dict[str, Any]] = None, **extra: Any) -> Dict[str, Any]:
        values = {
            "name": f"{trigger_type} automation",
            "trigger_type": trigger_type,
            "trigger_config": extra.pop("trigger_config", {}),
            "actions": actions or [],
            "is_active": extra.pop("is_active", True),
        }
        values.update(extra)
        return db.insert("automations", values)
    return _make
