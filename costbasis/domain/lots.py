# costbasis/domain/lots.py
"""
Lot stack operations.
Opening lots and consuming them under FIFO, LIFO, or weighted-average (AVG).
"""

from datetime import datetime
from typing import List, Optional

from costbasis.domain.models import (
    Action,
    Consumption,
    CostLot,
    Discipline,
    LotStack,
)


def margin_for(raw_notional: float, leverage: Optional[float], fee_value: float, notional: float) -> float:
    """
    Cash committed for a newly opened lot.

    Equal to the notional at 1x; otherwise raw/leverage plus fee, never above the notional.
    """
    if leverage is None or leverage <= 1:
        return notional
    return min(raw_notional / leverage + fee_value, notional)


def open_lot(
    stack: LotStack,
    quantity: float,
    notional_cost: float,
    margin_cost: float,
    epsilon: float,
    opened_at: Optional[datetime] = None,
    source: Optional[Action] = None,
    exchange: Optional[str] = None,
    leverage: Optional[float] = None,
    event_id: Optional[str] = None,
) -> Optional[CostLot]:
    """Append a lot to the stack. Zero quantity opens nothing."""
    if quantity <= epsilon:
        return None

    lot = CostLot(
        quantity_remaining=quantity,
        notional_cost=notional_cost,
        margin_cost=margin_cost,
        opened_at=opened_at,
        source=source,
        exchange=exchange,
        leverage=leverage if leverage is not None and leverage > 1 else None,
        event_id=event_id,
    )
    stack.lots.append(lot)
    return lot


def consume(stack: LotStack, quantity: float, discipline: Discipline, epsilon: float) -> Consumption:
    """
    Remove `quantity` from the stack under `discipline`.

    Requests beyond the open quantity are capped; the stack never goes negative.
    An emptied stack forgets its short-open mode.
    """
    if quantity <= epsilon or not stack.lots:
        return Consumption()

    if discipline == Discipline.AVG:
        consumed = _consume_average(stack.lots, quantity)
    elif discipline == Discipline.LIFO:
        consumed = _consume_ordered(list(reversed(stack.lots)), quantity, epsilon)
    else:
        consumed = _consume_ordered(stack.lots, quantity, epsilon)

    stack.lots = [lot for lot in stack.lots if lot.quantity_remaining > epsilon]
    if not stack.lots:
        stack.reset()

    return consumed


def _consume_ordered(ordered: List[CostLot], quantity: float, epsilon: float) -> Consumption:
    """Walk lots in the given order, splitting the last one proportionally."""
    consumed = Consumption()
    remaining = quantity

    for lot in ordered:
        if remaining <= epsilon:
            break
        take = min(lot.quantity_remaining, remaining)
        ratio = take / lot.quantity_remaining if lot.quantity_remaining > 0 else 0.0
        notional = lot.notional_cost * ratio
        margin = lot.margin_cost * ratio

        consumed.absorb(take, notional, margin, lot.opened_at)

        lot.quantity_remaining -= take
        lot.notional_cost -= notional
        lot.margin_cost -= margin
        remaining -= take

    return consumed


def _consume_average(lots: List[CostLot], quantity: float) -> Consumption:
    """Scale every lot down by the same ratio so the blended average is unchanged."""
    consumed = Consumption()
    total_qty = sum(lot.quantity_remaining for lot in lots)
    if total_qty <= 0:
        return consumed

    take = min(quantity, total_qty)
    ratio = take / total_qty

    for lot in lots:
        lot_take = lot.quantity_remaining * ratio
        notional = lot.notional_cost * ratio
        margin = lot.margin_cost * ratio

        consumed.absorb(lot_take, notional, margin, lot.opened_at)

        lot.quantity_remaining -= lot_take
        lot.notional_cost -= notional
        lot.margin_cost -= margin

    return consumed


def blended_notional_per_unit(stacks: List[LotStack]) -> Optional[float]:
    """Notional cost per unit pooled across stacks, or None if nothing is open."""
    qty = sum(stack.quantity for stack in stacks)
    if qty <= 0:
        return None
    return sum(stack.notional_cost for stack in stacks) / qty


def ordered_for_report(lots: List[CostLot], discipline: Discipline) -> List[CostLot]:
    """Lots in the order a close would consume them (newest first for LIFO)."""
    if discipline == Discipline.LIFO:
        return list(reversed(lots))
    return list(lots)
