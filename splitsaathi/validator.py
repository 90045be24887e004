"""Split validation.

``validate_expense`` is the single authoritative check an expense goes
through before it may be stored. It is a pure function of the draft and the
group's member names at the time of the call.
"""
from __future__ import annotations

import logging
from dataclasses import replace
from decimal import Decimal
from typing import Iterable, List, Sequence, Tuple

from .errors import (
    DuplicateEntry,
    EmptyParticipantSet,
    EmptyPayerSet,
    InvalidMember,
    InvalidPayload,
    NegativeAmount,
    NonPositiveAmount,
    PaymentMismatch,
    PercentageError,
    ShareAmountMismatch,
    ShareUnitsError,
    SplitMismatch,
)
from .models import Expense, ExpenseDraft, Split, SplitType
from .money import (
    AMOUNT_TOLERANCE,
    PERCENT_TOLERANCE,
    absorb_remainder,
    allocate,
    amounts_close,
    percent_close,
    split_equally,
)

logger = logging.getLogger(__name__)


def validate_expense(
    draft: ExpenseDraft,
    members: Iterable[str],
    amount_tolerance: Decimal = AMOUNT_TOLERANCE,
    percent_tolerance: Decimal = PERCENT_TOLERANCE,
) -> Expense:
    amount = draft.amount
    if amount <= 0:
        raise NonPositiveAmount(amount)
    if not draft.payers:
        raise EmptyPayerSet()
    if not draft.splits:
        raise EmptyParticipantSet()

    _check_members(draft, set(members))
    _check_duplicates("payer", [payer.name for payer in draft.payers])
    _check_duplicates("participant", [split.name for split in draft.splits])

    for payer in draft.payers:
        if payer.amount_paid < 0:
            raise NegativeAmount(payer.name, payer.amount_paid)

    splits = _resolve_share_amounts(draft, percent_tolerance)
    for split in splits:
        if split.share_amount < 0:
            raise NegativeAmount(split.name, split.share_amount)

    total_paid = sum((payer.amount_paid for payer in draft.payers), Decimal("0.00"))
    if not amounts_close(total_paid, amount, amount_tolerance):
        raise PaymentMismatch(total_paid, amount)

    total_split = sum((split.share_amount for split in splits), Decimal("0.00"))
    if not amounts_close(total_split, amount, amount_tolerance):
        raise SplitMismatch(total_split, amount)

    if draft.split_type == SplitType.PERCENTAGE:
        _check_percentages(splits, percent_tolerance)
    elif draft.split_type == SplitType.SHARES:
        _check_share_units(splits)
        total_units = sum((split.share_units for split in splits), Decimal(0))
        for split in splits:
            _check_share(split, amount * split.share_units / total_units, amount_tolerance)
    elif draft.split_type == SplitType.EQUAL:
        expected = amount / len(splits)
        for split in splits:
            _check_share(split, expected, amount_tolerance)

    # stored totals must match the amount exactly or balances drift from zero
    paid = absorb_remainder(amount, [payer.amount_paid for payer in draft.payers])
    shares = absorb_remainder(amount, [split.share_amount for split in splits])
    if total_paid != amount or total_split != amount:
        logger.debug(
            "absorbed rounding difference for group %s: paid %s, split %s, amount %s",
            draft.group_id, total_paid, total_split, amount,
        )

    return Expense(
        group_id=draft.group_id,
        description=draft.description,
        amount=amount,
        payers=tuple(replace(payer, amount_paid=value) for payer, value in zip(draft.payers, paid)),
        splits=tuple(replace(split, share_amount=value) for split, value in zip(splits, shares)),
        split_type=draft.split_type,
        date=draft.date,
        reverses=draft.reverses,
    )


def derive_splits(
    amount: Decimal,
    split_type: SplitType,
    entries: Sequence[Split],
    percent_tolerance: Decimal = PERCENT_TOLERANCE,
) -> Tuple[Split, ...]:
    """Compute share amounts from the split method's inputs.

    Equal splits divide by head count, percentage splits by percentage and
    share splits by share units. Cents that do not divide evenly are handed
    out by ``money.allocate``, so the result sums exactly to ``amount``.
    """
    if amount <= 0:
        raise NonPositiveAmount(amount)
    if not entries:
        raise EmptyParticipantSet()

    if split_type == SplitType.EQUAL:
        amounts = split_equally(amount, len(entries))
    elif split_type == SplitType.PERCENTAGE:
        _check_percentages(entries, percent_tolerance)
        amounts = allocate(amount, [split.percentage for split in entries])
    elif split_type == SplitType.SHARES:
        _check_share_units(entries)
        amounts = allocate(amount, [split.share_units for split in entries])
    else:
        raise InvalidPayload("splits.amount", "is required for unequal splits")

    return tuple(
        Split(split.name, share, split.percentage, split.share_units)
        for split, share in zip(entries, amounts)
    )


def _resolve_share_amounts(draft: ExpenseDraft, percent_tolerance: Decimal) -> Tuple[Split, ...]:
    missing = [split.name for split in draft.splits if split.share_amount is None]
    if not missing:
        return tuple(draft.splits)
    if len(missing) < len(draft.splits):
        raise InvalidPayload("splits.amount", f"is missing for {', '.join(missing)}")
    logger.debug("deriving %s split of %s for group %s", draft.split_type.value, draft.amount, draft.group_id)
    return derive_splits(draft.amount, draft.split_type, draft.splits, percent_tolerance)


def _check_members(draft: ExpenseDraft, members: set) -> None:
    invalid: List[str] = []
    for name in [payer.name for payer in draft.payers] + [split.name for split in draft.splits]:
        if name not in members and name not in invalid:
            invalid.append(name)
    if invalid:
        raise InvalidMember(invalid)


def _check_duplicates(role: str, names: List[str]) -> None:
    seen = set()
    duplicates: List[str] = []
    for name in names:
        if name in seen and name not in duplicates:
            duplicates.append(name)
        seen.add(name)
    if duplicates:
        raise DuplicateEntry(role, duplicates)


def _check_percentages(splits: Sequence[Split], tolerance: Decimal) -> None:
    missing = [split.name for split in splits if split.percentage is None]
    negative = [split.name for split in splits if split.percentage is not None and split.percentage < 0]
    if missing or negative:
        raise PercentageError(None, missing, negative)
    total = sum((split.percentage for split in splits), Decimal(0))
    if not percent_close(total, tolerance):
        raise PercentageError(total)


def _check_share_units(splits: Sequence[Split]) -> None:
    invalid = [split.name for split in splits if split.share_units is None or split.share_units <= 0]
    if invalid:
        raise ShareUnitsError(invalid)


def _check_share(split: Split, expected: Decimal, tolerance: Decimal) -> None:
    if not amounts_close(split.share_amount, expected, tolerance):
        raise ShareAmountMismatch(split.name, _round(expected), split.share_amount)


def _round(value: Decimal) -> Decimal:
    return value.quantize(Decimal("0.01"))
