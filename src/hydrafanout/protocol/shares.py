"""
hydrafanout/protocol/shares.py

Proportional share allocation.

Converts raw member balances into share units that sum exactly to a fixed
total (100 by default):

1. Members below the eligibility threshold get 0
2. Eligible members get balance / sum(eligible balances) * total,
   rounded half away from zero at the declared precision
3. Any rounding residual goes to the eligible member with the largest
   balance (first such member in input order)

Usage:
    from hydrafanout.protocol.shares import allocate_shares

    shares = allocate_shares(
        [("Addr1...", 200000), ("Addr2...", 150000)],
        threshold_min=100000,
    )
"""

import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation, localcontext
from typing import Any, Callable, Iterable, List, Optional, Sequence, Union

from ..config import (
    DEFAULT_TOTAL_SHARES,
    SHARE_EPSILON,
    is_valid_address,
    short_address,
)
from ..errors import ValidationError

logger = logging.getLogger("hydrafanout.protocol.shares")

Number = Union[Decimal, int, float, str]

# Digits carried past the quantum while dividing
GUARD_DIGITS = 10


@dataclass(frozen=True)
class MemberBalance:
    """A candidate member and the balance its share is computed from."""
    address: str
    balance: Decimal


@dataclass(frozen=True)
class MemberShare:
    """A member with its allocated share units."""
    address: str
    share_units: Decimal
    balance: Optional[Decimal] = None
    eligible: bool = True

    def to_dict(self) -> dict:
        return {
            'address': self.address,
            'share_units': str(self.share_units),
            'balance': str(self.balance) if self.balance is not None else None,
            'eligible': self.eligible,
        }


def _to_decimal(value: Number, what: str) -> Decimal:
    if isinstance(value, float):
        value = repr(value)
    try:
        result = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Invalid {what}: {value!r}")
    if not result.is_finite():
        raise ValidationError(f"Invalid {what}: {value!r}")
    return result


def _normalize_members(members: Iterable[Any]) -> List[MemberBalance]:
    normalized = []
    for member in members:
        if isinstance(member, MemberBalance):
            normalized.append(member)
        elif isinstance(member, dict):
            normalized.append(MemberBalance(
                address=member.get('address'),
                balance=_to_decimal(member.get('balance', 0), "balance"),
            ))
        else:
            address, balance = member
            normalized.append(MemberBalance(address=address, balance=_to_decimal(balance, "balance")))
    return normalized


def validate_members(
    members: Sequence[MemberBalance],
    address_validator: Callable[[object], bool] = is_valid_address,
) -> None:
    """
    Check member addresses and balances.

    Raises:
        ValidationError: On a malformed or duplicated address, or a
            negative balance
    """
    seen = set()
    for member in members:
        if not address_validator(member.address):
            raise ValidationError(f"Invalid member address: {member.address!r}")
        if member.address in seen:
            raise ValidationError(f"Duplicate member address: {member.address}")
        seen.add(member.address)
        if member.balance < 0:
            raise ValidationError(
                f"Negative balance for {member.address}: {member.balance}"
            )


def _quantum(precision: int) -> Decimal:
    return Decimal(1).scaleb(-precision)


def _working_digits(total: Decimal, precision: int) -> int:
    """Significant digits needed to hold any share of `total` at `precision`."""
    return max(total.adjusted() + 1, 1) + precision + GUARD_DIGITS


def allocate_shares(
    members: Iterable[Any],
    threshold_min: Number = 0,
    total: Number = DEFAULT_TOTAL_SHARES,
    precision: int = 0,
    address_validator: Callable[[object], bool] = is_valid_address,
) -> List[MemberShare]:
    """
    Allocate share units proportionally to balances.

    Args:
        members: (address, balance) pairs, {'address', 'balance'} dicts or
            MemberBalance objects, in the order shares should be reported
        threshold_min: Minimum balance to be eligible
        total: Share units to split (e.g. 100)
        precision: Fractional digits of each share (0 = whole shares)
        address_validator: Address syntax check

    Returns:
        One MemberShare per input member, same order. If no member is
        eligible every share is 0; callers must reject that before
        submitting anything.

    Raises:
        ValidationError: On bad addresses, duplicates, negative balances
            or an invalid total/precision
    """
    if precision < 0:
        raise ValidationError(f"Precision cannot be negative: {precision}")
    total = _to_decimal(total, "total")
    if total <= 0:
        raise ValidationError(f"Total shares must be positive: {total}")
    threshold = _to_decimal(threshold_min, "threshold")

    candidates = _normalize_members(members)
    validate_members(candidates, address_validator)

    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, _working_digits(total, precision))
        return _allocate(candidates, threshold, total, precision)


def _allocate(
    candidates: Sequence[MemberBalance],
    threshold: Decimal,
    total: Decimal,
    precision: int,
) -> List[MemberShare]:
    quantum = _quantum(precision)
    eligible = [m.balance >= threshold and m.balance > 0 for m in candidates]
    eligible_sum = sum((m.balance for m, ok in zip(candidates, eligible) if ok), Decimal(0))

    for member, ok in zip(candidates, eligible):
        if not ok:
            logger.warning(
                f"{short_address(member.address)} holds {member.balance}, below "
                f"{threshold}; share set to 0"
            )

    if eligible_sum == 0:
        logger.warning("No eligible members; all shares are 0")
        return [
            MemberShare(address=m.address, share_units=Decimal(0).quantize(quantum), balance=m.balance, eligible=False)
            for m in candidates
        ]

    units = []
    for member, ok in zip(candidates, eligible):
        if ok:
            raw = member.balance / eligible_sum * total
            units.append(raw.quantize(quantum, rounding=ROUND_HALF_UP))
        else:
            units.append(Decimal(0).quantize(quantum))

    residual = total - sum(units, Decimal(0))
    if residual != 0:
        _apply_residual(units, candidates, eligible, residual)

    return [
        MemberShare(address=m.address, share_units=u, balance=m.balance, eligible=ok)
        for m, u, ok in zip(candidates, units, eligible)
    ]


def _apply_residual(
    units: List[Decimal],
    candidates: Sequence[MemberBalance],
    eligible: Sequence[bool],
    residual: Decimal,
) -> None:
    """
    Fold the rounding residual into the largest eligible balance.

    Ties go to the first member in input order. A negative residual larger
    than that member's share carries on to the next-largest balance so no
    share goes below zero.
    """
    order = sorted(
        (i for i, ok in enumerate(eligible) if ok),
        key=lambda i: (-candidates[i].balance, i),
    )
    logger.debug(
        f"Rounding residual {residual} assigned to {short_address(candidates[order[0]].address)}"
    )
    for i in order:
        if residual >= 0:
            units[i] += residual
            return
        take = max(residual, -units[i])
        units[i] += take
        residual -= take
        if residual == 0:
            return


def total_share_units(shares: Iterable[Any]) -> Decimal:
    """Sum the share units of MemberShare-like objects."""
    return sum((Decimal(s.share_units) for s in shares), Decimal(0))


def validate_share_total(
    shares: Sequence[Any],
    total: Number = DEFAULT_TOTAL_SHARES,
    epsilon: Decimal = SHARE_EPSILON,
) -> None:
    """
    Check a share assignment before it is submitted.

    Raises:
        ValidationError: If there are no members, a share is negative, or
            the shares do not add up to `total`
    """
    if not shares:
        raise ValidationError("Please specify at least one member")
    total = _to_decimal(total, "total")
    for s in shares:
        if Decimal(s.share_units) < 0:
            raise ValidationError(f"Negative share for {s.address}: {s.share_units}")
    share_sum = total_share_units(shares)
    if share_sum == 0:
        raise ValidationError("No member is eligible for a share")
    if abs(share_sum - total) > epsilon:
        raise ValidationError(f"Sum of all shares must equal {total}, got {share_sum}")
