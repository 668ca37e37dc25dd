import importlib.util
from pathlib import Path

import pytest
from pydantic import ValidationError

from elsie.service.runtime import get_runtime

_SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "seed_user.py"


@pytest.fixture
def seed_module():
    spec = importlib.util.spec_from_file_location("seed_user", _SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


async def test_seed_creates_then_reports_existing(seed_module):
    created = await seed_module.seed_user("Alice", "Alice@Example.com", "Wonderland123!")
    assert created["status"] == "created"
    assert get_runtime().store.get_user(created["user_id"]).email == "alice@example.com"

    again = await seed_module.seed_user("Alice", "alice@example.com", "Wonderland123!")
    assert again == {"user_id": created["user_id"], "email": "alice@example.com", "status": "exists"}


async def test_seed_dry_run_creates_nothing(seed_module):
    result = await seed_module.seed_user("Bob", "bob@example.com", "Builder12345!", dry_run=True)

    assert result["status"] == "dry_run"
    assert get_runtime().store.get_user_by_email("bob@example.com") is None


async def test_seed_validates_input(seed_module):
    with pytest.raises(ValidationError):
        await seed_module.seed_user("Eve", "not-an-email", "Wonderland123!")
