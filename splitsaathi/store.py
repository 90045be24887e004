"""Storage collaborators.

The core never talks to a database directly. It is handed a ``GroupStore``
that can look groups up, list a group's expenses, persist a validated
expense and delete a group together with its expenses.
"""
from __future__ import annotations

import logging
import threading
import uuid
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .db import Database
from .errors import ExpenseNotFound, GroupNotFound
from .models import Expense, Group, Payer, Split, SplitType
from .money import to_decimal, to_number

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _invite_code() -> str:
    return uuid.uuid4().hex[:8].upper()


class GroupStore(ABC):
    @abstractmethod
    def create_group(self, name: str, members: Sequence[str], description: str = "") -> Group:
        ...

    @abstractmethod
    def get_group(self, group_id: int) -> Group:
        ...

    @abstractmethod
    def list_groups(self) -> List[Group]:
        ...

    @abstractmethod
    def find_by_invite_code(self, invite_code: str) -> Group:
        ...

    @abstractmethod
    def add_member(self, group_id: int, name: str) -> Group:
        ...

    @abstractmethod
    def list_expenses(self, group_id: int) -> List[Expense]:
        ...

    @abstractmethod
    def get_expense(self, expense_id: int) -> Expense:
        ...

    @abstractmethod
    def add_expense(self, expense: Expense) -> Expense:
        ...

    @abstractmethod
    def delete_group(self, group_id: int) -> None:
        ...

    @abstractmethod
    def locked(self, group_id: int):
        """Context manager that keeps other writers out of one group."""


class MemoryStore(GroupStore):
    def __init__(self) -> None:
        self._groups: Dict[int, Group] = {}
        self._expenses: Dict[int, List[Expense]] = {}
        self._expense_index: Dict[int, Expense] = {}
        self._group_locks: Dict[int, threading.RLock] = {}
        self._next_group_id = 1
        self._next_expense_id = 1
        self._lock = threading.RLock()

    def create_group(self, name: str, members: Sequence[str], description: str = "") -> Group:
        with self._lock:
            group = Group(
                id=self._next_group_id,
                name=name,
                members=tuple(members),
                invite_code=_invite_code(),
                created_at=_now(),
                description=description,
            )
            self._next_group_id += 1
            self._groups[group.id] = group
            self._expenses[group.id] = []
            self._group_locks[group.id] = threading.RLock()
            return group

    def get_group(self, group_id: int) -> Group:
        with self._lock:
            group = self._groups.get(group_id)
        if group is None:
            raise GroupNotFound(group_id)
        return group

    def list_groups(self) -> List[Group]:
        with self._lock:
            return sorted(self._groups.values(), key=lambda g: g.created_at, reverse=True)

    def find_by_invite_code(self, invite_code: str) -> Group:
        code = invite_code.strip().upper()
        with self._lock:
            for group in self._groups.values():
                if group.invite_code == code:
                    return group
        raise GroupNotFound(code)

    def add_member(self, group_id: int, name: str) -> Group:
        with self._lock:
            group = self.get_group(group_id)
            updated = Group(
                id=group.id,
                name=group.name,
                members=group.members + (name,),
                invite_code=group.invite_code,
                created_at=group.created_at,
                description=group.description,
            )
            self._groups[group_id] = updated
            return updated

    def list_expenses(self, group_id: int) -> List[Expense]:
        with self._lock:
            if group_id not in self._groups:
                raise GroupNotFound(group_id)
            return list(self._expenses[group_id])

    def get_expense(self, expense_id: int) -> Expense:
        with self._lock:
            expense = self._expense_index.get(expense_id)
        if expense is None:
            raise ExpenseNotFound(expense_id)
        return expense

    def add_expense(self, expense: Expense) -> Expense:
        with self._lock:
            if expense.group_id not in self._groups:
                raise GroupNotFound(expense.group_id)
            stored = expense.stored(self._next_expense_id, _now())
            self._next_expense_id += 1
            self._expenses[stored.group_id].append(stored)
            self._expense_index[stored.id] = stored
            return stored

    def delete_group(self, group_id: int) -> None:
        with self._lock:
            if group_id not in self._groups:
                raise GroupNotFound(group_id)
            for expense in self._expenses.pop(group_id):
                self._expense_index.pop(expense.id, None)
            del self._groups[group_id]
            self._group_locks.pop(group_id, None)

    @contextmanager
    def locked(self, group_id: int) -> Iterator[None]:
        with self._lock:
            group_lock = self._group_locks.get(group_id)
        if group_lock is None:
            raise GroupNotFound(group_id)
        with group_lock:
            yield


SCHEMA: Tuple[str, ...] = (
    """
    CREATE TABLE IF NOT EXISTS `groups` (
        id INT AUTO_INCREMENT PRIMARY KEY,
        name VARCHAR(100) NOT NULL,
        description VARCHAR(500) NOT NULL DEFAULT '',
        invite_code CHAR(8) NOT NULL UNIQUE,
        created_at DATETIME(6) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS group_members (
        id INT AUTO_INCREMENT PRIMARY KEY,
        group_id INT NOT NULL,
        name VARCHAR(100) NOT NULL,
        position INT NOT NULL,
        UNIQUE KEY uq_group_member (group_id, name),
        FOREIGN KEY (group_id) REFERENCES `groups`(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expenses (
        id INT AUTO_INCREMENT PRIMARY KEY,
        group_id INT NOT NULL,
        description VARCHAR(200) NOT NULL,
        amount DECIMAL(12, 2) NOT NULL,
        split_type VARCHAR(16) NOT NULL,
        expense_date DATE NOT NULL,
        reverses INT NULL,
        created_at DATETIME(6) NOT NULL,
        INDEX ix_expenses_group (group_id, created_at),
        FOREIGN KEY (group_id) REFERENCES `groups`(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expense_payers (
        id INT AUTO_INCREMENT PRIMARY KEY,
        expense_id INT NOT NULL,
        name VARCHAR(100) NOT NULL,
        amount_paid DECIMAL(12, 2) NOT NULL,
        FOREIGN KEY (expense_id) REFERENCES expenses(id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS expense_splits (
        id INT AUTO_INCREMENT PRIMARY KEY,
        expense_id INT NOT NULL,
        name VARCHAR(100) NOT NULL,
        share_amount DECIMAL(12, 2) NOT NULL,
        percentage DECIMAL(7, 3) NULL,
        share_units DECIMAL(12, 4) NULL,
        FOREIGN KEY (expense_id) REFERENCES expenses(id)
    )
    """,
)


class MySQLStore(GroupStore):
    def __init__(self, db: Optional[Database] = None, lock_timeout: int = 10) -> None:
        self.db = db or Database()
        self.lock_timeout = lock_timeout

    def create_schema(self) -> None:
        for statement in SCHEMA:
            self.db.execute(statement)

    def create_group(self, name: str, members: Sequence[str], description: str = "") -> Group:
        with self.db.transaction() as cursor:
            cursor.execute(
                "INSERT INTO `groups` (name, description, invite_code, created_at) VALUES (%s, %s, %s, %s)",
                (name, description, _invite_code(), _now()),
            )
            group_id = cursor.lastrowid
            for position, member in enumerate(members):
                cursor.execute(
                    "INSERT INTO group_members (group_id, name, position) VALUES (%s, %s, %s)",
                    (group_id, member, position),
                )
        logger.debug("stored group %s with %d members", group_id, len(members))
        return self.get_group(group_id)

    def get_group(self, group_id: int) -> Group:
        row = self.db.fetch_one(
            "SELECT id, name, description, invite_code, created_at FROM `groups` WHERE id=%s",
            (group_id,),
        )
        if not row:
            raise GroupNotFound(group_id)
        return self._group_from_row(row)

    def list_groups(self) -> List[Group]:
        rows = self.db.fetch_all(
            "SELECT id, name, description, invite_code, created_at FROM `groups` ORDER BY created_at DESC"
        )
        return [self._group_from_row(row) for row in rows]

    def find_by_invite_code(self, invite_code: str) -> Group:
        code = invite_code.strip().upper()
        row = self.db.fetch_one(
            "SELECT id, name, description, invite_code, created_at FROM `groups` WHERE invite_code=%s",
            (code,),
        )
        if not row:
            raise GroupNotFound(code)
        return self._group_from_row(row)

    def add_member(self, group_id: int, name: str) -> Group:
        group = self.get_group(group_id)
        self.db.execute(
            "INSERT INTO group_members (group_id, name, position) VALUES (%s, %s, %s)",
            (group_id, name, len(group.members)),
        )
        return self.get_group(group_id)

    def list_expenses(self, group_id: int) -> List[Expense]:
        self.get_group(group_id)
        rows = self.db.fetch_all(
            """
            SELECT id, group_id, description, amount, split_type, expense_date, reverses, created_at
            FROM expenses
            WHERE group_id=%s
            ORDER BY id
            """,
            (group_id,),
        )
        return self._expenses_from_rows(list(rows))

    def get_expense(self, expense_id: int) -> Expense:
        row = self.db.fetch_one(
            """
            SELECT id, group_id, description, amount, split_type, expense_date, reverses, created_at
            FROM expenses
            WHERE id=%s
            """,
            (expense_id,),
        )
        if not row:
            raise ExpenseNotFound(expense_id)
        return self._expenses_from_rows([row])[0]

    def add_expense(self, expense: Expense) -> Expense:
        created_at = _now()
        with self.db.transaction() as cursor:
            cursor.execute(
                """
                INSERT INTO expenses (group_id, description, amount, split_type, expense_date, reverses, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    expense.group_id,
                    expense.description,
                    str(expense.amount),
                    expense.split_type.value,
                    expense.date,
                    expense.reverses,
                    created_at,
                ),
            )
            expense_id = cursor.lastrowid

            for payer in expense.payers:
                cursor.execute(
                    "INSERT INTO expense_payers (expense_id, name, amount_paid) VALUES (%s, %s, %s)",
                    (expense_id, payer.name, str(payer.amount_paid)),
                )

            for split in expense.splits:
                cursor.execute(
                    """
                    INSERT INTO expense_splits (expense_id, name, share_amount, percentage, share_units)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (
                        expense_id,
                        split.name,
                        str(split.share_amount),
                        None if split.percentage is None else str(split.percentage),
                        None if split.share_units is None else str(split.share_units),
                    ),
                )

        return expense.stored(expense_id, created_at)

    def delete_group(self, group_id: int) -> None:
        self.get_group(group_id)
        with self.db.transaction() as cursor:
            for table in ("expense_payers", "expense_splits"):
                cursor.execute(
                    f"DELETE FROM {table} WHERE expense_id IN (SELECT id FROM expenses WHERE group_id=%s)",
                    (group_id,),
                )
            cursor.execute("DELETE FROM expenses WHERE group_id=%s", (group_id,))
            cursor.execute("DELETE FROM group_members WHERE group_id=%s", (group_id,))
            cursor.execute("DELETE FROM `groups` WHERE id=%s", (group_id,))

    @contextmanager
    def locked(self, group_id: int) -> Iterator[None]:
        # A named lock rather than FOR UPDATE: the writes issued while it is
        # held run on other pooled connections and must not wait on it.
        self.get_group(group_id)
        with self.db.named_lock(f"splitsaathi.group.{group_id}", self.lock_timeout):
            yield

    def _group_from_row(self, row: Dict[str, Any]) -> Group:
        members = self.db.fetch_all(
            "SELECT name FROM group_members WHERE group_id=%s ORDER BY position",
            (row["id"],),
        )
        return Group(
            id=row["id"],
            name=row["name"],
            members=tuple(member["name"] for member in members),
            invite_code=row["invite_code"],
            created_at=row["created_at"],
            description=row.get("description") or "",
        )

    def _expenses_from_rows(self, rows: List[Dict[str, Any]]) -> List[Expense]:
        if not rows:
            return []

        expense_ids = [row["id"] for row in rows]
        placeholders = ", ".join(["%s"] * len(expense_ids))
        payers_map: Dict[int, List[Payer]] = {}
        splits_map: Dict[int, List[Split]] = {}

        payers = self.db.fetch_all(
            f"""
            SELECT expense_id, name, amount_paid
            FROM expense_payers
            WHERE expense_id IN ({placeholders})
            ORDER BY id
            """,
            expense_ids,
        )
        for payer in payers:
            payers_map.setdefault(payer["expense_id"], []).append(
                Payer(payer["name"], to_decimal(payer["amount_paid"]))
            )

        splits = self.db.fetch_all(
            f"""
            SELECT expense_id, name, share_amount, percentage, share_units
            FROM expense_splits
            WHERE expense_id IN ({placeholders})
            ORDER BY id
            """,
            expense_ids,
        )
        for split in splits:
            splits_map.setdefault(split["expense_id"], []).append(
                Split(
                    split["name"],
                    to_decimal(split["share_amount"]),
                    _optional_number(split["percentage"]),
                    _optional_number(split["share_units"]),
                )
            )

        return [
            Expense(
                group_id=row["group_id"],
                description=row["description"],
                amount=to_decimal(row["amount"]),
                payers=tuple(payers_map.get(row["id"], [])),
                splits=tuple(splits_map.get(row["id"], [])),
                split_type=SplitType(row["split_type"]),
                date=str(row["expense_date"]),
                id=row["id"],
                created_at=row["created_at"],
                reverses=row.get("reverses"),
            )
            for row in rows
        ]


def _optional_number(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    return to_number(value)


def build_store(settings) -> GroupStore:
    if settings.STORE_BACKEND == "mysql":
        return MySQLStore(Database(settings))
    if settings.STORE_BACKEND == "memory":
        return MemoryStore()
    raise ValueError(f"Unknown STORE_BACKEND {settings.STORE_BACKEND!r}")
