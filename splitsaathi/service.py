from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from .balances import (
    BalanceReport,
    RemovedMemberPolicy,
    compute_balances,
    ensure_settled,
    residuals,
    simplify_debts,
)
from .errors import (
    AlreadyReversed,
    DuplicateMember,
    EmptyMemberSet,
    InvalidMember,
    InvalidPayload,
    SplitError,
)
from .models import Expense, ExpenseDraft, Group, MemberName, Payer, Split, SplitType, parse_date
from .money import AMOUNT_TOLERANCE, PERCENT_TOLERANCE, to_decimal
from .store import GroupStore
from .validator import derive_splits, validate_expense

logger = logging.getLogger(__name__)


class LedgerService:
    def __init__(
        self,
        store: GroupStore,
        amount_tolerance: Decimal = AMOUNT_TOLERANCE,
        percent_tolerance: Decimal = PERCENT_TOLERANCE,
        policy: RemovedMemberPolicy = RemovedMemberPolicy.RETAIN,
    ) -> None:
        self.store = store
        self.amount_tolerance = amount_tolerance
        self.percent_tolerance = percent_tolerance
        self.policy = policy

    @classmethod
    def from_config(cls, store: GroupStore, settings) -> "LedgerService":
        return cls(
            store,
            amount_tolerance=settings.AMOUNT_TOLERANCE,
            percent_tolerance=settings.PERCENT_TOLERANCE,
            policy=RemovedMemberPolicy(settings.REMOVED_MEMBER_POLICY),
        )

    # ---------- groups ----------

    def create_group(self, name: str, members: Iterable[str], description: str = "") -> Group:
        name = (name or "").strip()
        if not name:
            raise InvalidPayload("name")
        if len(name) > 100:
            raise InvalidPayload("name", "must be at most 100 characters")

        names: List[str] = []
        seen = {}
        clashes: List[str] = []
        for raw in members:
            if not isinstance(raw, str) or not raw.strip():
                continue
            member = MemberName.parse(raw)
            key = MemberName.key(member)
            if key in seen:
                clashes.extend(n for n in (seen[key], member) if n not in clashes)
                continue
            seen[key] = member
            names.append(member)

        if clashes:
            raise DuplicateMember(clashes)
        if not names:
            raise EmptyMemberSet()

        group = self.store.create_group(name, names, (description or "").strip())
        logger.info("created group %s (%s) with %d members", group.id, group.name, len(group.members))
        return group

    def get_group(self, group_id: int) -> Group:
        return self.store.get_group(group_id)

    def list_groups(self) -> List[Group]:
        return self.store.list_groups()

    def join_group(self, group_id: int, name: str) -> Tuple[Group, bool]:
        member = MemberName.parse(name)
        with self.store.locked(group_id):
            group = self.store.get_group(group_id)
            if MemberName.key(member) in group.member_key_map():
                return group, False
            group = self.store.add_member(group_id, member)
        logger.info("%s joined group %s", member, group_id)
        return group, True

    def join_by_invite_code(self, invite_code: str, name: str) -> Tuple[Group, bool]:
        if not invite_code or not invite_code.strip():
            raise InvalidPayload("inviteCode")
        group = self.store.find_by_invite_code(invite_code)
        return self.join_group(group.id, name)

    def delete_group(self, group_id: int) -> None:
        with self.store.locked(group_id):
            report = self._report(*self._snapshot(group_id))
            try:
                ensure_settled(report, self.amount_tolerance)
            except SplitError as exc:
                logger.warning("refused to delete group %s: %s", group_id, exc.code)
                raise
            self.store.delete_group(group_id)
        logger.info("deleted group %s", group_id)

    # ---------- expenses ----------

    def list_expenses(self, group_id: int) -> List[Expense]:
        return self.store.list_expenses(group_id)

    def record_expense(self, draft: ExpenseDraft) -> Expense:
        with self.store.locked(draft.group_id):
            stored = self._validate_and_store(draft)
        logger.info(
            "recorded expense %s in group %s: %s split of %s",
            stored.id, stored.group_id, stored.split_type.value, stored.amount,
        )
        return stored

    def quote_splits(
        self,
        group_id: int,
        amount: Decimal,
        split_type: SplitType,
        entries: Sequence[Split],
    ) -> Tuple[Split, ...]:
        group = self.store.get_group(group_id)
        invalid = [split.name for split in entries if not group.has_member(split.name)]
        if invalid:
            raise InvalidMember(invalid)
        return derive_splits(amount, split_type, entries, self.percent_tolerance)

    def record_settlement(
        self,
        group_id: int,
        payer: str,
        payee: str,
        amount,
        date: Optional[str] = None,
    ) -> Expense:
        """Record a direct payment from one member to another as an expense."""
        payer = MemberName.parse(payer)
        payee = MemberName.parse(payee)
        if payer == payee:
            raise InvalidPayload("payee", "must differ from the payer")
        try:
            value = to_decimal(amount)
        except ValueError:
            raise InvalidPayload("amount", "must be a valid number") from None
        fields = dict(
            group_id=group_id,
            description=f"Settlement: {payer} paid {payee}",
            amount=value,
            payers=(Payer(payer, value),),
            splits=(Split(payee, value),),
            split_type=SplitType.UNEQUAL,
        )
        if date:
            fields["date"] = parse_date(date)
        return self.record_expense(ExpenseDraft(**fields))

    def reverse_expense(self, expense_id: int) -> Expense:
        """Append the compensating entry for an expense.

        Participants become payers of their shares and payers become the
        participants owing what they paid, so the reversal's effect on every
        balance is exactly the negation of the original's.
        """
        original = self.store.get_expense(expense_id)
        with self.store.locked(original.group_id):
            if any(e.reverses == expense_id for e in self.store.list_expenses(original.group_id)):
                raise AlreadyReversed(expense_id)
            draft = ExpenseDraft(
                group_id=original.group_id,
                description=f"Reversal: {original.description}"[:200],
                amount=original.amount,
                payers=tuple(Payer(split.name, split.share_amount) for split in original.splits),
                splits=tuple(Split(payer.name, payer.amount_paid) for payer in original.payers),
                split_type=SplitType.UNEQUAL,
                date=original.date,
                reverses=original.id,
            )
            stored = self._validate_and_store(draft)
        logger.info("reversed expense %s with %s in group %s", expense_id, stored.id, stored.group_id)
        return stored

    # ---------- balances ----------

    def get_balances(self, group_id: int) -> BalanceReport:
        with self.store.locked(group_id):
            return self._report(*self._snapshot(group_id))

    def unsettled(self, report: BalanceReport) -> Dict[str, Decimal]:
        return residuals(report, self.amount_tolerance)

    def settle_up(self, report: BalanceReport) -> List[Tuple[str, str, Decimal]]:
        return simplify_debts(report.balances, self.amount_tolerance)

    def _validate_and_store(self, draft: ExpenseDraft) -> Expense:
        # caller holds the group lock
        group = self.store.get_group(draft.group_id)
        try:
            expense = validate_expense(draft, group.members, self.amount_tolerance, self.percent_tolerance)
        except SplitError as exc:
            logger.warning("rejected expense for group %s: %s", draft.group_id, exc.code)
            raise
        return self.store.add_expense(expense)

    def _snapshot(self, group_id: int) -> Tuple[Group, List[Expense]]:
        group = self.store.get_group(group_id)
        return group, self.store.list_expenses(group_id)

    def _report(self, group: Group, expenses: List[Expense]) -> BalanceReport:
        return compute_balances(group.members, expenses, self.policy)
