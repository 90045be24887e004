from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date as date_type, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import InvalidMember, InvalidPayload
from .money import to_decimal, to_number

MULTIPLE_PAYERS = "Multiple"


class MemberName(str):
    """A group member's display name.

    Stored and matched exactly as entered after trimming; ``key`` gives the
    case-folded form used only to keep names unique within a group.
    """

    @classmethod
    def parse(cls, raw: Any) -> "MemberName":
        if not isinstance(raw, str) or not raw.strip():
            raise InvalidMember([str(raw) if raw is not None else ""], "member name must not be blank")
        return cls(raw.strip())

    @staticmethod
    def key(name: str) -> str:
        return name.strip().casefold()


class SplitType(str, Enum):
    EQUAL = "equal"
    UNEQUAL = "unequal"
    PERCENTAGE = "percentage"
    SHARES = "shares"

    @classmethod
    def parse(cls, raw: Any) -> "SplitType":
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            raise InvalidPayload("splitType", f"must be one of {', '.join(t.value for t in cls)}") from None


@dataclass(frozen=True)
class Payer:
    name: str
    amount_paid: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "amountPaid": float(self.amount_paid)}


@dataclass(frozen=True)
class Split:
    name: str
    share_amount: Optional[Decimal] = None
    percentage: Optional[Decimal] = None
    share_units: Optional[Decimal] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "participant": self.name,
            "amount": None if self.share_amount is None else float(self.share_amount),
        }
        if self.percentage is not None:
            data["percentage"] = float(self.percentage)
        if self.share_units is not None:
            data["shareUnits"] = float(self.share_units)
        return data


@dataclass(frozen=True)
class Group:
    id: int
    name: str
    members: Tuple[str, ...]
    invite_code: str
    created_at: datetime
    description: str = ""

    def has_member(self, name: str) -> bool:
        return name in self.members

    def member_key_map(self) -> Dict[str, str]:
        return {MemberName.key(member): member for member in self.members}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "members": list(self.members),
            "inviteCode": self.invite_code,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Expense:
    group_id: int
    description: str
    amount: Decimal
    payers: Tuple[Payer, ...]
    splits: Tuple[Split, ...]
    split_type: SplitType
    date: str
    id: Optional[int] = None
    created_at: Optional[datetime] = None
    reverses: Optional[int] = None

    @property
    def paid_by(self) -> str:
        if len(self.payers) == 1:
            return self.payers[0].name
        return MULTIPLE_PAYERS

    @property
    def participants(self) -> List[str]:
        return [split.name for split in self.splits]

    def stored(self, expense_id: int, created_at: datetime) -> "Expense":
        return replace(self, id=expense_id, created_at=created_at)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "groupId": self.group_id,
            "description": self.description,
            "amount": float(self.amount),
            "paidBy": self.paid_by,
            "payers": [payer.to_dict() for payer in self.payers],
            "participants": self.participants,
            "splits": [split.to_dict() for split in self.splits],
            "splitType": self.split_type.value,
            "date": self.date,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "reverses": self.reverses,
        }


@dataclass(frozen=True)
class ExpenseDraft:
    """A candidate expense as submitted, before any rule has been checked."""

    group_id: int
    description: str
    amount: Decimal
    payers: Tuple[Payer, ...]
    splits: Tuple[Split, ...]
    split_type: SplitType = SplitType.EQUAL
    date: str = field(default_factory=lambda: date_type.today().isoformat())
    reverses: Optional[int] = None

    @classmethod
    def from_payload(cls, group_id: int, payload: Dict[str, Any]) -> "ExpenseDraft":
        description = str(payload.get("description") or "").strip()
        if not description:
            raise InvalidPayload("description")
        if len(description) > 200:
            raise InvalidPayload("description", "must be at most 200 characters")

        amount = parse_amount(payload.get("amount"), "amount")
        split_type = SplitType.parse(payload.get("splitType") or SplitType.EQUAL.value)
        expense_date = parse_date(payload.get("date"))

        payers_payload = payload.get("payers") or []
        if payers_payload:
            if not isinstance(payers_payload, list):
                raise InvalidPayload("payers", "must be a list")
            payers = tuple(_parse_payer(item, index) for index, item in enumerate(payers_payload))
        elif payload.get("paidBy") is not None:
            payers = (Payer(_parse_name(payload["paidBy"]), amount),)
        else:
            payers = ()

        splits = parse_splits(payload)

        return cls(
            group_id=group_id,
            description=description,
            amount=amount,
            payers=payers,
            splits=splits,
            split_type=split_type,
            date=expense_date,
        )


def parse_splits(payload: Dict[str, Any]) -> Tuple[Split, ...]:
    splits_payload = payload.get("splits") or []
    if splits_payload:
        if not isinstance(splits_payload, list):
            raise InvalidPayload("splits", "must be a list")
        return tuple(_parse_split(item, index) for index, item in enumerate(splits_payload))
    participants = payload.get("participants") or []
    if not isinstance(participants, list):
        raise InvalidPayload("participants", "must be a list")
    # simple form: a list of names, shares derived centrally
    return tuple(Split(_parse_name(name)) for name in participants)


def _parse_name(raw: Any) -> str:
    if isinstance(raw, str):
        return raw.strip()
    raise InvalidPayload("name", "must be a string")


def parse_amount(raw: Any, field_name: str) -> Decimal:
    if raw is None:
        raise InvalidPayload(field_name)
    try:
        return to_decimal(raw)
    except ValueError:
        raise InvalidPayload(field_name, "must be a valid number") from None


def _parse_optional(raw: Any, field_name: str) -> Optional[Decimal]:
    if raw is None or raw == "":
        return None
    try:
        return to_number(raw)
    except ValueError:
        raise InvalidPayload(field_name, "must be a valid number") from None


def _parse_payer(item: Any, index: int) -> Payer:
    if not isinstance(item, dict):
        raise InvalidPayload(f"payers[{index}]")
    amount_paid = item.get("amountPaid", item.get("amount"))
    return Payer(
        _parse_name(item.get("name")),
        parse_amount(amount_paid, f"payers[{index}].amountPaid"),
    )


def _parse_split(item: Any, index: int) -> Split:
    if not isinstance(item, dict):
        raise InvalidPayload(f"splits[{index}]")
    raw_amount = item.get("amount", item.get("shareAmount"))
    return Split(
        _parse_name(item.get("participant", item.get("name"))),
        None if raw_amount is None else parse_amount(raw_amount, f"splits[{index}].amount"),
        _parse_optional(item.get("percentage"), f"splits[{index}].percentage"),
        _parse_optional(item.get("shareUnits"), f"splits[{index}].shareUnits"),
    )


def parse_date(raw: Any) -> str:
    if raw is None or raw == "":
        return date_type.today().isoformat()
    try:
        return datetime.strptime(str(raw).strip()[:10], "%Y-%m-%d").date().isoformat()
    except ValueError:
        raise InvalidPayload("date", "must be formatted YYYY-MM-DD") from None
