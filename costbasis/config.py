# costbasis/config.py
"""Engine configuration: lot discipline, cash-equivalent symbols, epsilon."""

import os
from dataclasses import dataclass, field, replace
from typing import FrozenSet, Iterable, Optional

DEFAULT_STABLES = frozenset({
    "USD", "EUR", "GBP", "CHF",
    "USDT", "USDC", "DAI", "BUSD", "TUSD", "USDP", "GUSD", "FDUSD",
})

# Quantities and costs at or below this are treated as zero everywhere.
DEFAULT_EPSILON = 1e-9

VALID_DISCIPLINES = ("LIFO", "FIFO", "AVG")


@dataclass(frozen=True)
class EngineConfig:
    """Settings shared by every computation."""
    discipline: str = "AVG"
    stable_currencies: FrozenSet[str] = field(default_factory=lambda: DEFAULT_STABLES)
    epsilon: float = DEFAULT_EPSILON
    default_price_currency: str = "USDT"
    default_fee_currency: str = "USDT"
    timezone: str = "UTC"  # Applied to naive timestamps

    def is_stable(self, symbol: Optional[str]) -> bool:
        return bool(symbol) and symbol.upper() in self.stable_currencies

    def with_stables(self, stables: Optional[Iterable[str]]) -> "EngineConfig":
        if stables is None:
            return self
        return replace(self, stable_currencies=frozenset(s.strip().upper() for s in stables if s.strip()))


def load_config() -> EngineConfig:
    """Build config from environment, falling back to defaults."""
    discipline = os.getenv("COSTBASIS_DISCIPLINE", "AVG").strip().upper()
    if discipline not in VALID_DISCIPLINES:
        raise ValueError(f"COSTBASIS_DISCIPLINE must be one of {VALID_DISCIPLINES}, got {discipline!r}")

    stables_env = os.getenv("COSTBASIS_STABLES")
    stables = (
        frozenset(s.strip().upper() for s in stables_env.split(",") if s.strip())
        if stables_env
        else DEFAULT_STABLES
    )

    epsilon = float(os.getenv("COSTBASIS_EPSILON", str(DEFAULT_EPSILON)))

    return EngineConfig(
        discipline=discipline,
        stable_currencies=stables,
        epsilon=epsilon,
        timezone=os.getenv("COSTBASIS_TIMEZONE", "UTC"),
    )
