"""Balance engine.

Balances are never stored. They are replayed from a group's expenses every
time they are needed: each payer is credited what they paid and each
participant is debited their share. Positive means the member is owed money,
negative means they owe.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Sequence, Tuple

from .errors import InvalidMember, UnsettledBalances
from .models import Expense
from .money import AMOUNT_TOLERANCE, ZERO


class RemovedMemberPolicy(str, Enum):
    RETAIN = "retain"
    REJECT = "reject"


@dataclass
class BalanceReport:
    balances: Dict[str, Decimal]
    total_expenses: Decimal = ZERO
    # amounts tied to names that are no longer group members
    departed: Dict[str, Decimal] = field(default_factory=dict)

    def net_total(self) -> Decimal:
        return sum(self.balances.values(), ZERO) + sum(self.departed.values(), ZERO)

    def to_dict(self) -> Dict[str, object]:
        return {
            "balances": {name: float(value) for name, value in self.balances.items()},
            "totalExpenses": float(self.total_expenses),
            "departed": {name: float(value) for name, value in self.departed.items()},
        }


def expense_effect(expense: Expense) -> Dict[str, Decimal]:
    effect: Dict[str, Decimal] = {}
    for payer in expense.payers:
        effect[payer.name] = effect.get(payer.name, ZERO) + payer.amount_paid
    for split in expense.splits:
        effect[split.name] = effect.get(split.name, ZERO) - split.share_amount
    return effect


def apply_expense(
    report: BalanceReport,
    expense: Expense,
    policy: RemovedMemberPolicy = RemovedMemberPolicy.RETAIN,
) -> BalanceReport:
    """Add one expense into a running report, in place."""
    effect = expense_effect(expense)
    unknown = [name for name in effect if name not in report.balances]
    if unknown and policy == RemovedMemberPolicy.REJECT:
        raise InvalidMember(unknown, f"referenced by expense {expense.id} but no longer a member")

    for name, delta in effect.items():
        if name in report.balances:
            report.balances[name] += delta
        else:
            report.departed[name] = report.departed.get(name, ZERO) + delta
    report.total_expenses += expense.amount
    return report


def empty_report(members: Iterable[str]) -> BalanceReport:
    return BalanceReport(balances={name: ZERO for name in members})


def compute_balances(
    members: Iterable[str],
    expenses: Iterable[Expense],
    policy: RemovedMemberPolicy = RemovedMemberPolicy.RETAIN,
) -> BalanceReport:
    report = empty_report(members)
    for expense in expenses:
        apply_expense(report, expense, policy)
    return report


def replay(
    members: Sequence[str],
    expenses: Iterable[Expense],
    policy: RemovedMemberPolicy = RemovedMemberPolicy.RETAIN,
) -> Iterator[Tuple[Expense, BalanceReport]]:
    """Yield a snapshot of the running report after each expense."""
    report = empty_report(members)
    for expense in expenses:
        apply_expense(report, expense, policy)
        yield expense, BalanceReport(dict(report.balances), report.total_expenses, dict(report.departed))


def residuals(report: BalanceReport, tolerance: Decimal = AMOUNT_TOLERANCE) -> Dict[str, Decimal]:
    out = {name: value for name, value in report.balances.items() if abs(value) > tolerance}
    out.update({name: value for name, value in report.departed.items() if abs(value) > tolerance})
    return out


def is_settled(report: BalanceReport, tolerance: Decimal = AMOUNT_TOLERANCE) -> bool:
    return not residuals(report, tolerance)


def ensure_settled(report: BalanceReport, tolerance: Decimal = AMOUNT_TOLERANCE) -> None:
    unsettled = residuals(report, tolerance)
    if unsettled:
        raise UnsettledBalances(unsettled)


def simplify_debts(
    balances: Dict[str, Decimal],
    tolerance: Decimal = AMOUNT_TOLERANCE,
) -> List[Tuple[str, str, Decimal]]:
    """Suggest (debtor, creditor, amount) transfers that clear every balance."""
    creditors = [[name, value] for name, value in balances.items() if value > tolerance]
    debtors = [[name, -value] for name, value in balances.items() if value < -tolerance]
    creditors.sort(key=lambda item: (-item[1], item[0]))
    debtors.sort(key=lambda item: (-item[1], item[0]))

    settlements: List[Tuple[str, str, Decimal]] = []
    debtor_idx = 0
    creditor_idx = 0

    while debtor_idx < len(debtors) and creditor_idx < len(creditors):
        debtor = debtors[debtor_idx]
        creditor = creditors[creditor_idx]

        settled_amount = min(debtor[1], creditor[1])
        if settled_amount > ZERO:
            settlements.append((debtor[0], creditor[0], settled_amount))

        debtor[1] -= settled_amount
        creditor[1] -= settled_amount

        if debtor[1] <= tolerance:
            debtor_idx += 1
        if creditor[1] <= tolerance:
            creditor_idx += 1

    return settlements
