# costbasis/domain/valuation.py
"""Position aggregation and live valuation."""

import copy
import logging
import math
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from costbasis.config import EngineConfig
from costbasis.domain.lots import ordered_for_report
from costbasis.domain.models import Direction, Discipline, LotStack, ReportablePosition

logger = logging.getLogger(__name__)

PriceLookup = Callable[[str], Optional[float]]


def price_lookup_from_mapping(prices: Mapping[str, float]) -> PriceLookup:
    """Wrap a {symbol: price} mapping as a lookup; unknown or non-finite prices are None."""
    table = {str(k).upper(): v for k, v in prices.items()}

    def lookup(instrument: str) -> Optional[float]:
        value = table.get(instrument.upper())
        if value is None:
            return None
        try:
            price = float(value)
        except (TypeError, ValueError):
            return None
        return price if math.isfinite(price) else None

    return lookup


def aggregate_positions(
    stacks: Dict[Tuple[str, Direction], LotStack],
    discipline: Discipline,
    config: EngineConfig,
    account_id: Optional[str] = None,
) -> List[ReportablePosition]:
    """
    One ReportablePosition per non-empty, non-cash stack.

    Positions are ordered by instrument then direction (LONG first).
    """
    positions = []
    eps = config.epsilon

    for (instrument, direction), stack in sorted(stacks.items(), key=lambda kv: (kv[0][0], kv[0][1] != Direction.LONG)):
        if config.is_stable(instrument) or stack.is_empty(eps):
            continue

        qty = stack.quantity
        invested = stack.margin_cost
        notional = stack.notional_cost

        exchanges = {lot.exchange for lot in stack.lots if lot.exchange}
        if len(exchanges) == 1:
            exchange = exchanges.pop()
        elif exchanges:
            exchange = "MULTI"
        else:
            exchange = None

        leverages = [lot.leverage for lot in stack.lots if lot.leverage is not None and lot.leverage > 1]

        positions.append(ReportablePosition(
            instrument=instrument,
            direction=direction,
            quantity_open=qty,
            invested=invested,
            notional_open=notional,
            avg_cost_margin=invested / qty,
            avg_cost_notional=notional / qty,
            realized_pl=stack.realized_pl,
            short_open_mode=stack.short_open_mode,
            account_id=account_id,
            exchange=exchange,
            leverage=max(leverages) if leverages else None,
            lots=[copy.copy(lot) for lot in ordered_for_report(stack.lots, discipline)],
        ))

    return positions


def value_position(position: ReportablePosition, price: Optional[float], epsilon: float) -> ReportablePosition:
    """Fill live fields on the position from `price`; a missing price leaves them None."""
    if price is None:
        position.price_live = None
        position.unrealized_pl = None
        position.value_live = None
        position.pl_pct = None
        return position

    market = position.quantity_open * price
    if position.direction == Direction.SHORT:
        unrealized = position.notional_open - market
    else:
        unrealized = market - position.notional_open

    position.price_live = price
    position.unrealized_pl = unrealized
    position.value_live = position.invested + unrealized
    position.pl_pct = (unrealized / position.invested * 100) if abs(position.invested) > epsilon else None
    return position


def value_positions(
    positions: List[ReportablePosition],
    price_lookup: Optional[PriceLookup],
    epsilon: float,
) -> List[ReportablePosition]:
    for position in positions:
        price = price_lookup(position.instrument) if price_lookup is not None else None
        if price is None:
            logger.debug(f"No live price for {position.instrument}")
        value_position(position, price, epsilon)
    return positions
