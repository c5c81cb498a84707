"""Shared test fixtures."""

import tempfile
from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from txintel.config import DatabaseConfig, PipelineConfig
from txintel.db.models import Account, Category, Transaction
from txintel.db.repository import Repository

USER_ID = "user-1"


def make_txn(
    id: int | None = 1,
    account_id: int = 1,
    on: date = date(2024, 3, 1),
    amount: str = "-10.00",
    description: str = "",
    merchant_name: str | None = None,
    **kwargs,
) -> Transaction:
    """Helper to create test transactions."""
    return Transaction(
        id=id,
        account_id=account_id,
        date=on,
        amount=Decimal(amount),
        description=description,
        merchant_name=merchant_name,
        **kwargs,
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir):
    """Create a temporary database path."""
    return temp_dir / "test.db"


@pytest.fixture
def database_config(temp_db_path):
    """Create a test database config."""
    return DatabaseConfig(path=temp_db_path)


@pytest.fixture
def pipeline_config():
    """Create a pipeline config with small chunks."""
    return PipelineConfig(write_chunk_size=2)


@pytest.fixture
async def repository(temp_db_path):
    """Create a repository with a temporary database."""
    repo = Repository(temp_db_path)
    await repo.connect()
    yield repo
    await repo.close()


@pytest.fixture
async def accounts(repository):
    """Create a checking and a savings account for the test user."""
    checking = await repository.save_account(Account(id=None, user_id=USER_ID, name="Checking"))
    savings = await repository.save_account(Account(id=None, user_id=USER_ID, name="Savings"))
    return checking, savings


@pytest.fixture
async def system_categories(repository):
    """Create a few system categories keyed by name."""
    created = {}
    for name, type_ in [
        ("Income", "income"),
        ("Subscriptions", "expense"),
        ("Entertainment & Going Out", "expense"),
        ("Transfer", "transfer"),
    ]:
        created[name] = await repository.save_category(
            Category(id=None, user_id=None, name=name, type=type_)
        )
    return created
