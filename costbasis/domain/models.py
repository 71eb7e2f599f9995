# costbasis/domain/models.py
"""Domain value objects."""

from enum import Enum
from typing import Optional, List
from dataclasses import dataclass, field
from datetime import datetime


class Action(str, Enum):
    """Normalized event verb. OPEN/CLOSE aliases never reach this type."""
    BUY = "BUY"
    SELL = "SELL"
    DEPOSIT = "DEPOSIT"
    WITHDRAWAL = "WITHDRAWAL"
    SWAP = "SWAP"
    AIRDROP = "AIRDROP"


class Direction(str, Enum):
    LONG = "LONG"
    SHORT = "SHORT"


class Discipline(str, Enum):
    """Rule deciding which lots a close consumes."""
    LIFO = "LIFO"
    FIFO = "FIFO"
    AVG = "AVG"

    @classmethod
    def parse(cls, value) -> "Discipline":
        if isinstance(value, Discipline):
            return value
        return cls(str(value or "AVG").strip().upper())


class ShortOpenMode(str, Enum):
    """Which verb opened the exposure on a SHORT stack."""
    UNSET = "UNSET"
    OPENED_VIA_BUY = "OPENED_VIA_BUY"
    OPENED_VIA_SELL = "OPENED_VIA_SELL"


@dataclass(frozen=True)
class Event:
    """A normalized financial event. Immutable input to the lot fold."""
    timestamp: datetime
    action: Action
    instrument: str
    quantity: float
    unit_price: float
    direction: Direction = Direction.LONG
    price_currency: str = "USDT"
    fee_amount: float = 0.0
    fee_currency: str = "USDT"
    leverage: Optional[float] = None
    from_instrument: Optional[str] = None
    to_instrument: Optional[str] = None
    event_id: Optional[str] = None
    account_id: Optional[str] = None
    exchange: Optional[str] = None
    notes: Optional[str] = None

    @property
    def received_instrument(self) -> str:
        """SWAP leg that comes in."""
        return self.to_instrument or self.instrument

    @property
    def paid_instrument(self) -> str:
        """SWAP leg that goes out."""
        return self.from_instrument or self.price_currency

    @property
    def effective_leverage(self) -> float:
        if self.leverage is not None and self.leverage > 1:
            return self.leverage
        return 1.0


@dataclass
class CostLot:
    """An open slice of quantity carrying its own entry cost."""
    quantity_remaining: float
    notional_cost: float
    margin_cost: float
    quantity_original: float = 0.0
    opened_at: Optional[datetime] = None
    source: Optional[Action] = None
    exchange: Optional[str] = None
    leverage: Optional[float] = None
    event_id: Optional[str] = None

    def __post_init__(self):
        if not self.quantity_original:
            self.quantity_original = self.quantity_remaining

    @property
    def notional_per_unit(self) -> float:
        return self.notional_cost / self.quantity_remaining if self.quantity_remaining > 0 else 0.0


@dataclass
class Consumption:
    """What a consume call took out of a stack."""
    quantity: float = 0.0
    notional_cost: float = 0.0
    margin_cost: float = 0.0
    earliest_opened_at: Optional[datetime] = None

    def absorb(self, quantity: float, notional: float, margin: float, opened_at: Optional[datetime]):
        self.quantity += quantity
        self.notional_cost += notional
        self.margin_cost += margin
        if opened_at is not None and (
            self.earliest_opened_at is None or opened_at < self.earliest_opened_at
        ):
            self.earliest_opened_at = opened_at


@dataclass
class LotStack:
    """Open lots for one (instrument, direction) key plus realized P/L so far."""
    instrument: str
    direction: Direction
    lots: List[CostLot] = field(default_factory=list)
    realized_pl: float = 0.0
    short_open_mode: ShortOpenMode = ShortOpenMode.UNSET

    @property
    def quantity(self) -> float:
        return sum(lot.quantity_remaining for lot in self.lots)

    @property
    def notional_cost(self) -> float:
        return sum(lot.notional_cost for lot in self.lots)

    @property
    def margin_cost(self) -> float:
        return sum(lot.margin_cost for lot in self.lots)

    def is_empty(self, epsilon: float) -> bool:
        return self.quantity <= epsilon

    def reset(self):
        """Drop remaining lots and forget the short-open mode."""
        self.lots = []
        self.short_open_mode = ShortOpenMode.UNSET


@dataclass
class ClosedTrade:
    """Realized result of one closing event."""
    instrument: str
    direction: Direction
    action: Action
    quantity_closed: float
    entry_price: float
    exit_price: float
    invested_cost: float
    proceeds: float
    fee_value: float
    realized_pl: float
    pl_pct: Optional[float]
    closed_at: datetime
    opened_at: Optional[datetime] = None
    holding_days: Optional[int] = None
    quantity_remaining: float = 0.0
    status: str = "PARTIAL"  # CLOSED or PARTIAL
    event_id: Optional[str] = None
    account_id: Optional[str] = None
    leverage: Optional[float] = None
    notes: Optional[str] = None


@dataclass
class CashLedger:
    """Stable-currency balance of one account."""
    balance: float = 0.0
    net_deposits: float = 0.0
    fees_paid: float = 0.0


@dataclass
class ReportablePosition:
    """Open position derived from a non-empty stack."""
    instrument: str
    direction: Direction
    quantity_open: float
    invested: float
    notional_open: float
    avg_cost_margin: float
    avg_cost_notional: float
    realized_pl: float
    short_open_mode: ShortOpenMode = ShortOpenMode.UNSET
    account_id: Optional[str] = None
    exchange: Optional[str] = None
    leverage: Optional[float] = None
    lots: List[CostLot] = field(default_factory=list)
    price_live: Optional[float] = None
    unrealized_pl: Optional[float] = None
    value_live: Optional[float] = None
    pl_pct: Optional[float] = None
