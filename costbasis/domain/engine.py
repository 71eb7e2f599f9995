# costbasis/domain/engine.py
"""
Engine entry points.
One fold shared by every view: single account, per exchange, wallet tree.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from costbasis.config import EngineConfig, load_config
from costbasis.domain.models import (
    CashLedger,
    ClosedTrade,
    Direction,
    Discipline,
    LotStack,
    ReportablePosition,
)
from costbasis.domain.normalizer import EventNormalizer
from costbasis.domain.reconstructor import AccountLedger, LotReconstructor
from costbasis.domain.transfers import TransferCostPool
from costbasis.domain.valuation import PriceLookup, aggregate_positions, value_positions

logger = logging.getLogger(__name__)


@dataclass
class AccountInput:
    """Events of one account and the discipline to close them under."""
    events: Iterable[Any]
    discipline: Optional[Union[str, Discipline]] = None


@dataclass
class AccountResult:
    account_id: Optional[str]
    discipline: Discipline
    positions: List[ReportablePosition]
    closed_trades: List[ClosedTrade]
    cash: CashLedger
    realized_pl: float
    stacks: Dict[Tuple[str, Direction], LotStack]
    warnings: List[str] = field(default_factory=list)
    transfer_pool: Optional[TransferCostPool] = None

    @property
    def invested(self) -> float:
        return sum(p.invested for p in self.positions)

    @property
    def unrealized_pl(self) -> float:
        """Sum over priced positions only."""
        return sum(p.unrealized_pl for p in self.positions if p.unrealized_pl is not None)

    @property
    def value_live(self) -> float:
        return sum(p.value_live for p in self.positions if p.value_live is not None)

    @property
    def unpriced_positions(self) -> int:
        return sum(1 for p in self.positions if p.value_live is None)


@dataclass
class PortfolioResult:
    accounts: Dict[str, AccountResult]
    transfer_pool: TransferCostPool
    warnings: List[str] = field(default_factory=list)

    @property
    def positions(self) -> List[ReportablePosition]:
        return [p for result in self.accounts.values() for p in result.positions]

    @property
    def closed_trades(self) -> List[ClosedTrade]:
        trades = [t for result in self.accounts.values() for t in result.closed_trades]
        return sorted(trades, key=lambda t: t.closed_at)


def _resolve_config(
    config: Optional[EngineConfig],
    stables: Optional[Iterable[str]] = None,
) -> EngineConfig:
    base = config if config is not None else load_config()
    return base.with_stables(stables)


def _build_result(
    ledger: AccountLedger,
    config: EngineConfig,
    price_lookup: Optional[PriceLookup],
    warnings: List[str],
) -> AccountResult:
    positions = aggregate_positions(ledger.stacks, ledger.discipline, config, ledger.account_id)
    value_positions(positions, price_lookup, config.epsilon)

    return AccountResult(
        account_id=ledger.account_id,
        discipline=ledger.discipline,
        positions=positions,
        closed_trades=ledger.closed_trades,
        cash=ledger.cash,
        realized_pl=ledger.realized_pl_total,
        stacks=ledger.stacks,
        warnings=warnings + ledger.warnings,
    )


def compute_positions(
    events: Iterable[Any],
    discipline: Union[str, Discipline] = "AVG",
    stables: Optional[Iterable[str]] = None,
    price_lookup: Optional[PriceLookup] = None,
    config: Optional[EngineConfig] = None,
    transfer_pool: Optional[TransferCostPool] = None,
) -> AccountResult:
    """
    Reconstruct one account's positions from its events.

    Args:
        events: Raw event mappings and/or Events, in any order
        discipline: LIFO, FIFO or AVG
        stables: Cash-equivalent symbols; overrides the config's set
        price_lookup: instrument -> live price or None
        config: Engine configuration (defaults from the environment)
        transfer_pool: Carry-over pool; copied, never mutated

    Returns:
        AccountResult with positions, closed trades, cash, warnings and the updated pool
    """
    cfg = _resolve_config(config, stables)
    pool = transfer_pool.copy() if transfer_pool is not None else TransferCostPool(cfg.epsilon)

    normalized, warnings = EventNormalizer.normalize_batch(events, cfg)
    account_ids = {e.account_id for e in normalized if e.account_id is not None}
    account_id = account_ids.pop() if len(account_ids) == 1 else None

    ledger = LotReconstructor.reconstruct_account(
        normalized, Discipline.parse(discipline), cfg, transfer_pool=pool, account_id=account_id,
    )
    result = _build_result(ledger, cfg, price_lookup, warnings)
    result.transfer_pool = pool

    logger.info(
        f"Computed {len(result.positions)} open positions from {ledger.events_applied} events "
        f"({len(result.warnings)} warnings)"
    )
    return result


def compute_accounts(
    accounts: Mapping[str, Union[AccountInput, Iterable[Any]]],
    price_lookup: Optional[PriceLookup] = None,
    config: Optional[EngineConfig] = None,
    transfer_pool: Optional[TransferCostPool] = None,
) -> PortfolioResult:
    """
    Reconstruct several accounts in one pass so transfers carry cost between them.

    Args:
        accounts: account_id -> AccountInput (or a bare event iterable, using the config discipline)
        price_lookup: instrument -> live price or None
        config: Engine configuration (defaults from the environment)
        transfer_pool: Carry-over pool; copied, never mutated

    Returns:
        PortfolioResult with one AccountResult per account and the updated pool
    """
    cfg = _resolve_config(config)
    pool = transfer_pool.copy() if transfer_pool is not None else TransferCostPool(cfg.epsilon)

    events_by_account = {}
    disciplines = {}
    warnings_by_account: Dict[str, List[str]] = {}

    for account_id, account_input in accounts.items():
        if not isinstance(account_input, AccountInput):
            account_input = AccountInput(events=account_input)
        normalized, warnings = EventNormalizer.normalize_batch(account_input.events, cfg)
        try:
            discipline = Discipline.parse(account_input.discipline or cfg.discipline)
        except ValueError:
            discipline = Discipline.parse(cfg.discipline)
            warnings.append(f"Unknown accounting method {account_input.discipline!r}, using {discipline.value}")
            logger.warning(f"[{account_id}] {warnings[-1]}")
        events_by_account[account_id] = normalized
        disciplines[account_id] = discipline
        warnings_by_account[account_id] = warnings

    ledgers = LotReconstructor.reconstruct_accounts(events_by_account, disciplines, cfg, pool)

    results = {
        account_id: _build_result(ledger, cfg, price_lookup, warnings_by_account[account_id])
        for account_id, ledger in ledgers.items()
    }
    for result in results.values():
        result.transfer_pool = pool

    pending = pool.instruments()
    portfolio_warnings = [
        f"Withdrawn {pool.pending(instrument)} {instrument} not yet deposited"
        for instrument in pending
    ]
    if pending:
        logger.info(f"Transfer pool carries {len(pool)} fragments over ({', '.join(pending)})")

    return PortfolioResult(accounts=results, transfer_pool=pool, warnings=portfolio_warnings)


def compute_by_exchange(
    events: Iterable[Any],
    discipline: Union[str, Discipline] = "AVG",
    price_lookup: Optional[PriceLookup] = None,
    config: Optional[EngineConfig] = None,
    transfer_pool: Optional[TransferCostPool] = None,
) -> PortfolioResult:
    """
    Treat each exchange as its own account.

    Moving an asset between exchanges carries its cost through the shared transfer pool.
    Events without an exchange are grouped under UNKNOWN.
    """
    cfg = _resolve_config(config)
    normalized, warnings = EventNormalizer.normalize_batch(events, cfg)

    by_exchange: Dict[str, List[Any]] = {}
    for event in normalized:
        by_exchange.setdefault(event.exchange or "UNKNOWN", []).append(event)

    result = compute_accounts(
        {name: AccountInput(events=evs, discipline=discipline) for name, evs in by_exchange.items()},
        price_lookup=price_lookup,
        config=cfg,
        transfer_pool=transfer_pool,
    )
    result.warnings = warnings + result.warnings
    return result
