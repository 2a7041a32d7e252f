"""
Module: supply_engines.netting
Responsibility:
    Net a selection of bills against a selection of returns into one
    payment figure, and total a counterparty's outstanding documents into a
    statement (overall and consignment-only).

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - net_amount == sold_total - return_total, exactly, after both totals
      are rounded to the currency's decimal places (ROUND_HALF_UP).
    - A document id may appear at most once in one netting call.

Failure modes:
    - ValueError on a negative document amount or a duplicated id.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from supply_engines.tracer import traced_engine

ZERO = Decimal("0")


@dataclass(frozen=True)
class DocumentAmount:
    """The payable amount of one bill or return."""

    document_id: UUID
    amount: Decimal
    is_consignment: bool = False

    def __post_init__(self) -> None:
        if self.amount < ZERO:
            raise ValueError(f"Document amount must be non-negative, got {self.amount}")


@dataclass(frozen=True)
class NettingResult:
    sold_total: Decimal
    return_total: Decimal
    net_amount: Decimal


@dataclass(frozen=True)
class StatementTotals:
    total_before_return: Decimal
    return_total: Decimal
    total_after_return: Decimal
    consignment_before_return: Decimal
    consignment_return_total: Decimal
    consignment_after_return: Decimal


def _quantum(places: int) -> Decimal:
    return Decimal(1).scaleb(-places)


def _round(amount: Decimal, places: int) -> Decimal:
    return amount.quantize(_quantum(places), rounding=ROUND_HALF_UP)


def _check_unique(documents: Sequence[DocumentAmount], label: str) -> None:
    seen: set[UUID] = set()
    for doc in documents:
        if doc.document_id in seen:
            raise ValueError(f"{label} {doc.document_id} selected more than once")
        seen.add(doc.document_id)


def _sum(documents: Sequence[DocumentAmount]) -> Decimal:
    return sum((d.amount for d in documents), ZERO)


class NettingCalculator:
    """
    Bill/return netting.

    Contract:
        Pure.  Rounds each total once, then subtracts, so the three figures
        always reconcile to the last decimal place.
    """

    def __init__(self, money_places: int = 2):
        if money_places < 0:
            raise ValueError("money_places must be non-negative")
        self._places = money_places

    @traced_engine("payment_netting", "1.0")
    def net(
        self,
        *,
        bills: Sequence[DocumentAmount],
        returns: Sequence[DocumentAmount],
    ) -> NettingResult:
        _check_unique(bills, "bill")
        _check_unique(returns, "return")
        sold = _round(_sum(bills), self._places)
        returned = _round(_sum(returns), self._places)
        return NettingResult(sold_total=sold, return_total=returned, net_amount=sold - returned)

    @traced_engine("statement_totals", "1.0")
    def statement(
        self,
        *,
        bills: Sequence[DocumentAmount],
        returns: Sequence[DocumentAmount],
    ) -> StatementTotals:
        overall = self.net(bills=bills, returns=returns)
        consignment = self.net(
            bills=[b for b in bills if b.is_consignment],
            returns=[r for r in returns if r.is_consignment],
        )
        return StatementTotals(
            total_before_return=overall.sold_total,
            return_total=overall.return_total,
            total_after_return=overall.net_amount,
            consignment_before_return=consignment.sold_total,
            consignment_return_total=consignment.return_total,
            consignment_after_return=consignment.net_amount,
        )
