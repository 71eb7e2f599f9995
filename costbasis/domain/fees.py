# costbasis/domain/fees.py
"""Fee valuation into the common (stable) valuation currency."""

import logging
from typing import Dict, Optional, Tuple

from costbasis.config import EngineConfig
from costbasis.domain.lots import blended_notional_per_unit
from costbasis.domain.models import Direction, LotStack

logger = logging.getLogger(__name__)


class FeeValuator:
    """Values fees against the stacks open at the time of the event."""

    @staticmethod
    def value(
        fee_amount: float,
        fee_currency: str,
        stacks: Dict[Tuple[str, Direction], LotStack],
        config: EngineConfig,
    ) -> Tuple[float, Optional[str]]:
        """
        Convert a fee to the valuation currency.

        Args:
            fee_amount: Fee in `fee_currency` units
            fee_currency: Symbol the fee was paid in
            stacks: Current stacks of the account, keyed by (instrument, direction)
            config: Engine configuration (stable set)

        Returns:
            (fee_value, caveat) where caveat is set when the fee could not be priced
        """
        if not fee_amount or fee_amount <= 0:
            return 0.0, None

        currency = (fee_currency or "").upper()
        if config.is_stable(currency):
            return fee_amount, None

        open_stacks = [
            stacks[key]
            for key in ((currency, Direction.LONG), (currency, Direction.SHORT))
            if key in stacks
        ]
        per_unit = blended_notional_per_unit(open_stacks)
        if per_unit is None:
            caveat = f"Unpriced fee: {fee_amount} {currency} has no open stack, valued at 0"
            logger.debug(caveat)
            return 0.0, caveat

        return fee_amount * per_unit, None
