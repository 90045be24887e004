from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional

from .money import format_amount


class SplitError(Exception):
    """Base class for every rejection the core reports to its callers.

    ``code`` is the stable, machine-distinguishable reason; ``message`` names
    the rule that failed together with the numbers involved; ``detail`` holds
    the same numbers as JSON-ready values.
    """

    code = "split-error"
    status = 400

    def __init__(self, message: str, detail: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "detail": self.detail}


def _names(names: Iterable[str]) -> List[str]:
    return [str(name) for name in names]


class NonPositiveAmount(SplitError):
    code = "non-positive-amount"

    def __init__(self, amount: Decimal) -> None:
        super().__init__(
            f"amount ({format_amount(amount)}) must be greater than 0",
            {"amount": str(amount)},
        )
        self.amount = amount


class EmptySet(SplitError):
    code = "empty-set"
    which = "set"

    def __init__(self) -> None:
        super().__init__(f"at least one {self.which} is required", {"set": self.which})


class EmptyPayerSet(EmptySet):
    which = "payer"


class EmptyParticipantSet(EmptySet):
    which = "participant"


class EmptyMemberSet(EmptySet):
    which = "member"


class InvalidMember(SplitError):
    code = "invalid-member"

    def __init__(self, names: Iterable[str], reason: str = "not a member of the group") -> None:
        self.names = _names(names)
        super().__init__(
            f"{', '.join(self.names) or '(blank)'}: {reason}",
            {"names": self.names},
        )


class NegativeAmount(SplitError):
    code = "negative-amount"

    def __init__(self, name: str, value: Decimal) -> None:
        super().__init__(
            f"amount for {name} ({format_amount(value)}) must not be negative",
            {"name": str(name), "value": str(value)},
        )


class DuplicateEntry(SplitError):
    code = "duplicate-entry"

    def __init__(self, role: str, names: Iterable[str]) -> None:
        self.names = _names(names)
        super().__init__(
            f"{role} listed more than once: {', '.join(self.names)}",
            {"role": role, "names": self.names},
        )


class DuplicateMember(SplitError):
    code = "duplicate-member"
    status = 409

    def __init__(self, names: Iterable[str]) -> None:
        self.names = _names(names)
        super().__init__(
            f"member names must be unique ignoring case: {', '.join(self.names)}",
            {"names": self.names},
        )


class PaymentMismatch(SplitError):
    code = "payment-mismatch"

    def __init__(self, total_paid: Decimal, amount: Decimal) -> None:
        super().__init__(
            f"total paid ({format_amount(total_paid)}) must equal total amount ({format_amount(amount)})",
            {"total_paid": str(total_paid), "amount": str(amount), "difference": str(total_paid - amount)},
        )
        self.total_paid = total_paid
        self.amount = amount


class SplitMismatch(SplitError):
    code = "split-mismatch"

    def __init__(self, total_split: Decimal, amount: Decimal) -> None:
        super().__init__(
            f"total split ({format_amount(total_split)}) must equal total amount ({format_amount(amount)})",
            {"total_split": str(total_split), "amount": str(amount), "difference": str(total_split - amount)},
        )
        self.total_split = total_split
        self.amount = amount


class PercentageError(SplitError):
    code = "percentage-error"

    def __init__(
        self,
        total: Optional[Decimal],
        missing: Iterable[str] = (),
        negative: Iterable[str] = (),
    ) -> None:
        self.total = total
        self.missing = _names(missing)
        self.negative = _names(negative)
        if self.missing:
            message = f"percentage is required for {', '.join(self.missing)}"
        elif self.negative:
            message = f"percentage must not be negative for {', '.join(self.negative)}"
        else:
            message = f"total percentage ({total}%) must equal 100%"
        super().__init__(
            message,
            {
                "total_percentage": None if total is None else str(total),
                "missing": self.missing,
                "negative": self.negative,
            },
        )


class ShareUnitsError(SplitError):
    code = "share-units-error"

    def __init__(self, names: Iterable[str]) -> None:
        self.names = _names(names)
        super().__init__(
            f"share units must be greater than 0 for {', '.join(self.names)}",
            {"names": self.names},
        )


class ShareAmountMismatch(SplitError):
    code = "share-amount-mismatch"

    def __init__(self, name: str, expected: Decimal, actual: Decimal) -> None:
        super().__init__(
            f"share for {name} ({format_amount(actual)}) must equal {format_amount(expected)}",
            {"name": str(name), "expected": str(expected), "actual": str(actual)},
        )


class UnsettledBalances(SplitError):
    code = "unsettled-balances"
    status = 409

    def __init__(self, residuals: Mapping[str, Decimal]) -> None:
        self.residuals = dict(residuals)
        listed = ", ".join(f"{name} ({format_amount(value)})" for name, value in self.residuals.items())
        super().__init__(
            f"all balances must be settled before the group can be deleted: {listed}",
            {"balances": {name: str(value) for name, value in self.residuals.items()}},
        )


class GroupNotFound(SplitError):
    code = "group-not-found"
    status = 404

    def __init__(self, group_id: Any) -> None:
        super().__init__(f"group {group_id} not found", {"group_id": group_id})


class ExpenseNotFound(SplitError):
    code = "expense-not-found"
    status = 404

    def __init__(self, expense_id: Any) -> None:
        super().__init__(f"expense {expense_id} not found", {"expense_id": expense_id})


class AlreadyReversed(SplitError):
    code = "already-reversed"
    status = 409

    def __init__(self, expense_id: Any) -> None:
        super().__init__(f"expense {expense_id} has already been reversed", {"expense_id": expense_id})


class InvalidPayload(SplitError):
    code = "invalid-payload"

    def __init__(self, field: str, reason: str = "is missing or invalid") -> None:
        super().__init__(f"{field} {reason}", {"field": field})
