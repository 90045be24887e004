from __future__ import annotations

from decimal import Decimal
from typing import Iterable, Optional, Sequence, Tuple

import pytest

from splitsaathi.app import create_app
from splitsaathi.config import Config
from splitsaathi.models import Expense, ExpenseDraft, Payer, Split, SplitType
from splitsaathi.service import LedgerService
from splitsaathi.store import MemoryStore

MEMBERS = ("Alice", "Bob", "Carol")


class SettingsForTests(Config):
    STORE_BACKEND = "memory"
    CORS_ORIGINS = ["*"]
    AMOUNT_TOLERANCE = Decimal("0.01")
    PERCENT_TOLERANCE = Decimal("0.1")
    REMOVED_MEMBER_POLICY = "retain"
    LOG_LEVEL = "DEBUG"


def make_draft(
    amount: str,
    payers: Iterable[Tuple[str, str]],
    splits: Sequence,
    split_type: SplitType = SplitType.UNEQUAL,
    group_id: int = 1,
) -> ExpenseDraft:
    """Build a draft from plain tuples.

    ``splits`` entries are ``(name, amount)`` or ``(name, amount, percentage, units)``;
    an amount of ``None`` leaves the share to be derived.
    """
    built = []
    for entry in splits:
        name, share = entry[0], entry[1]
        percentage = entry[2] if len(entry) > 2 else None
        units = entry[3] if len(entry) > 3 else None
        built.append(
            Split(
                name,
                None if share is None else Decimal(share),
                None if percentage is None else Decimal(percentage),
                None if units is None else Decimal(units),
            )
        )
    return ExpenseDraft(
        group_id=group_id,
        description="Dinner",
        amount=Decimal(amount),
        payers=tuple(Payer(name, Decimal(paid)) for name, paid in payers),
        splits=tuple(built),
        split_type=split_type,
        date="2024-05-01",
    )


def make_expense(
    amount: str,
    payers: Iterable[Tuple[str, str]],
    splits: Iterable[Tuple[str, str]],
    expense_id: Optional[int] = None,
) -> Expense:
    return Expense(
        group_id=1,
        description="Dinner",
        amount=Decimal(amount),
        payers=tuple(Payer(name, Decimal(paid)) for name, paid in payers),
        splits=tuple(Split(name, Decimal(share)) for name, share in splits),
        split_type=SplitType.UNEQUAL,
        date="2024-05-01",
        id=expense_id,
    )


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def ledger(store):
    return LedgerService(store)


@pytest.fixture
def group(ledger):
    return ledger.create_group("Weekend trip", list(MEMBERS))


@pytest.fixture
def app(store):
    app = create_app(store=store, settings=SettingsForTests())
    app.config["TESTING"] = True
    return app


@pytest.fixture
def client(app):
    return app.test_client()
