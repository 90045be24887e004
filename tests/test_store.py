from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal

import pytest

from splitsaathi.config import Config
from splitsaathi.errors import ExpenseNotFound, GroupNotFound
from splitsaathi.models import SplitType
from splitsaathi.store import MemoryStore, MySQLStore, build_store

from .conftest import make_expense

CREATED = datetime(2024, 5, 1, 12, 0, 0)

GROUP_ROW = {"id": 1, "name": "Trip", "description": "", "invite_code": "ABCD1234", "created_at": CREATED}
MEMBER_ROWS = [{"name": "Alice"}, {"name": "Bob"}]
EXPENSE_ROW = {
    "id": 7,
    "group_id": 1,
    "description": "Dinner",
    "amount": Decimal("90.00"),
    "split_type": "shares",
    "expense_date": date(2024, 5, 1),
    "reverses": None,
    "created_at": CREATED,
}
PAYER_ROWS = [{"expense_id": 7, "name": "Alice", "amount_paid": Decimal("90.00")}]
SPLIT_ROWS = [
    {"expense_id": 7, "name": "Alice", "share_amount": Decimal("60.00"), "percentage": None, "share_units": Decimal("2.0000")},
    {"expense_id": 7, "name": "Bob", "share_amount": Decimal("30.00"), "percentage": None, "share_units": Decimal("1.0000")},
]


class FakeCursor:
    def __init__(self):
        self.statements = []
        self.lastrowid = 0

    def execute(self, query, params=()):
        self.statements.append((" ".join(query.split()), tuple(params)))
        self.lastrowid += 1


class FakeDatabase:
    """Answers reads by matching a fragment of the query text."""

    def __init__(self, rows=None):
        self.rows = rows or {}
        self.transactions = []
        self.locks = []
        self.executed = []

    @contextmanager
    def transaction(self):
        cursor = FakeCursor()
        self.transactions.append(cursor)
        yield cursor

    @contextmanager
    def named_lock(self, name, timeout):
        self.locks.append((name, timeout))
        yield

    def fetch_one(self, query, params=None):
        return self._lookup(query)

    def fetch_all(self, query, params=None):
        return self._lookup(query) or []

    def execute(self, query, params=None):
        self.executed.append(" ".join(query.split()))

    def _lookup(self, query):
        for fragment, result in self.rows.items():
            if fragment in query:
                return result
        return None


def mysql_rows():
    return {
        "FROM `groups` WHERE id": GROUP_ROW,
        "FROM group_members": MEMBER_ROWS,
        "FROM expense_payers": PAYER_ROWS,
        "FROM expense_splits": SPLIT_ROWS,
        "FROM expenses": [EXPENSE_ROW],
    }


def test_memory_store_round_trip():
    store = MemoryStore()
    group = store.create_group("Trip", ["Alice", "Bob"])
    stored = store.add_expense(make_expense("10", [("Alice", "10")], [("Bob", "10")]))

    assert stored.id == 1
    assert store.get_expense(1) == stored
    assert store.find_by_invite_code(group.invite_code) == group
    assert store.add_member(group.id, "Carol").members == ("Alice", "Bob", "Carol")


def test_memory_store_delete_removes_expenses():
    store = MemoryStore()
    group = store.create_group("Trip", ["Alice", "Bob"])
    stored = store.add_expense(make_expense("10", [("Alice", "10")], [("Bob", "10")]))
    store.delete_group(group.id)

    with pytest.raises(ExpenseNotFound):
        store.get_expense(stored.id)
    with pytest.raises(GroupNotFound):
        store.list_expenses(group.id)
    with pytest.raises(GroupNotFound):
        with store.locked(group.id):
            pass


def test_mysql_store_reads_group_with_members():
    store = MySQLStore(FakeDatabase(mysql_rows()))
    group = store.get_group(1)

    assert group.members == ("Alice", "Bob")
    assert group.invite_code == "ABCD1234"


def test_mysql_store_missing_group():
    store = MySQLStore(FakeDatabase())
    with pytest.raises(GroupNotFound):
        store.get_group(5)
    with pytest.raises(ExpenseNotFound):
        store.get_expense(5)


def test_mysql_store_assembles_expenses():
    store = MySQLStore(FakeDatabase(mysql_rows()))
    [expense] = store.list_expenses(1)

    assert expense.id == 7
    assert expense.date == "2024-05-01"
    assert expense.split_type == SplitType.SHARES
    assert expense.paid_by == "Alice"
    assert [(s.name, s.share_amount, s.share_units) for s in expense.splits] == [
        ("Alice", Decimal("60.00"), Decimal("2")),
        ("Bob", Decimal("30.00"), Decimal("1")),
    ]


def test_mysql_store_writes_expense_in_one_transaction():
    db = FakeDatabase(mysql_rows())
    store = MySQLStore(db)
    expense = make_expense("90", [("Alice", "90")], [("Alice", "45"), ("Bob", "45")])

    stored = store.add_expense(expense)

    [cursor] = db.transactions
    tables = [query.split()[2] for query, _ in cursor.statements]
    assert tables == ["expenses", "expense_payers", "expense_splits", "expense_splits"]
    assert stored.id == 1
    assert cursor.statements[1][1] == (1, "Alice", "90")


def test_mysql_store_delete_cascades():
    db = FakeDatabase(mysql_rows())
    MySQLStore(db).delete_group(1)

    [cursor] = db.transactions
    assert [query.split()[2] for query, _ in cursor.statements] == [
        "expense_payers",
        "expense_splits",
        "expenses",
        "group_members",
        "`groups`",
    ]


def test_mysql_store_locks_by_group_name():
    db = FakeDatabase(mysql_rows())

    with MySQLStore(db, lock_timeout=3).locked(1):
        pass

    assert db.locks == [("splitsaathi.group.1", 3)]


def test_mysql_store_lock_needs_existing_group():
    db = FakeDatabase()
    with pytest.raises(GroupNotFound):
        with MySQLStore(db).locked(1):
            pass
    assert db.locks == []


def test_create_schema_runs_every_statement():
    db = FakeDatabase()
    MySQLStore(db).create_schema()
    assert len(db.executed) == 5
    assert db.executed[0].startswith("CREATE TABLE IF NOT EXISTS `groups`")


def test_build_store():
    class Settings(Config):
        STORE_BACKEND = "memory"

    assert isinstance(build_store(Settings()), MemoryStore)

    Settings.STORE_BACKEND = "sqlite"
    with pytest.raises(ValueError):
        build_store(Settings())
