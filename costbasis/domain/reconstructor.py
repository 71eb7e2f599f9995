# costbasis/domain/reconstructor.py
"""
Lot reconstruction from events.
Folds a time-ordered event list into per-(instrument, direction) lot stacks,
realized P/L, closed-trade records, and a stable-cash ledger.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from costbasis.config import EngineConfig
from costbasis.domain.fees import FeeValuator
from costbasis.domain.lots import consume, margin_for, open_lot
from costbasis.domain.models import (
    Action,
    CashLedger,
    ClosedTrade,
    Consumption,
    Direction,
    Discipline,
    Event,
    LotStack,
    ShortOpenMode,
)
from costbasis.domain.transfers import TransferCostPool

logger = logging.getLogger(__name__)

# Same-instant tie-break: withdrawals resolve before the deposits that inherit from them
ACTION_RANK = {Action.WITHDRAWAL: 0, Action.DEPOSIT: 1}


@dataclass
class AccountLedger:
    """Mutable state of one account while its events are folded."""
    account_id: Optional[str]
    discipline: Discipline
    stacks: Dict[Tuple[str, Direction], LotStack] = field(default_factory=dict)
    cash: CashLedger = field(default_factory=CashLedger)
    closed_trades: List[ClosedTrade] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    events_applied: int = 0

    def stack(self, instrument: str, direction: Direction) -> LotStack:
        key = (instrument, direction)
        if key not in self.stacks:
            self.stacks[key] = LotStack(instrument=instrument, direction=direction)
        return self.stacks[key]

    @property
    def realized_pl_total(self) -> float:
        return sum(s.realized_pl for s in self.stacks.values())


class LotReconstructor:
    """Reconstructs lot stacks from events under a selectable discipline."""

    @staticmethod
    def sort_events(events: Sequence[Event]) -> List[Event]:
        """Chronological order; WITHDRAWAL < DEPOSIT < everything else on ties."""
        return sorted(events, key=lambda e: (e.timestamp, ACTION_RANK.get(e.action, 2)))

    @staticmethod
    def reconstruct_account(
        events: Sequence[Event],
        discipline: Discipline,
        config: EngineConfig,
        transfer_pool: Optional[TransferCostPool] = None,
        account_id: Optional[str] = None,
    ) -> AccountLedger:
        """
        Full reconstruction of one account from its events.
        Idempotent: state is built from scratch on every call.

        Args:
            events: Normalized events of the account, any order
            discipline: Lot consumption rule
            config: Engine configuration
            transfer_pool: Pool shared with other accounts (mutated in place)
            account_id: Account the events belong to

        Returns:
            AccountLedger with stacks, cash, closed trades and warnings
        """
        pool = transfer_pool if transfer_pool is not None else TransferCostPool(config.epsilon)
        ledger = AccountLedger(account_id=account_id, discipline=Discipline.parse(discipline))

        for event in LotReconstructor.sort_events(events):
            LotReconstructor.apply_event(ledger, event, pool, config)

        return ledger

    @staticmethod
    def reconstruct_accounts(
        events_by_account: Dict[str, Sequence[Event]],
        disciplines: Dict[str, Discipline],
        config: EngineConfig,
        transfer_pool: TransferCostPool,
    ) -> Dict[str, AccountLedger]:
        """
        Reconstruct several accounts in one global time-ordered pass.

        Stacks stay per account; the transfer pool is shared so a withdrawal
        in one account can hand its cost to a deposit in another.
        """
        ledgers = {
            account_id: AccountLedger(
                account_id=account_id,
                discipline=Discipline.parse(disciplines.get(account_id, config.discipline)),
            )
            for account_id in events_by_account
        }

        tagged = [
            (account_id, event)
            for account_id, events in events_by_account.items()
            for event in events
        ]
        tagged.sort(key=lambda pair: (pair[1].timestamp, ACTION_RANK.get(pair[1].action, 2)))

        for account_id, event in tagged:
            LotReconstructor.apply_event(ledgers[account_id], event, transfer_pool, config)

        return ledgers

    @staticmethod
    def apply_event(
        ledger: AccountLedger,
        event: Event,
        pool: TransferCostPool,
        config: EngineConfig,
    ) -> None:
        """Apply one event to the ledger."""
        eps = config.epsilon

        if event.quantity <= eps:
            logger.debug(f"Zero-quantity {event.action.value} {event.instrument} ignored")
            return

        # Fee is valued against the state before this event mutates anything
        fee_value, caveat = FeeValuator.value(event.fee_amount, event.fee_currency, ledger.stacks, config)
        if caveat:
            ledger.warnings.append(f"{caveat} (event {event.event_id})")

        LotReconstructor._update_cash(ledger, event, fee_value, config)

        if event.action == Action.AIRDROP:
            stack = ledger.stack(event.instrument, Direction.LONG)
            open_lot(stack, event.quantity, 0.0, 0.0, eps,
                     opened_at=event.timestamp, source=Action.AIRDROP,
                     exchange=event.exchange, event_id=event.event_id)

        elif event.action == Action.DEPOSIT:
            LotReconstructor._apply_deposit(ledger, event, pool, config)

        elif event.action == Action.WITHDRAWAL:
            LotReconstructor._apply_withdrawal(ledger, event, pool, config)

        elif event.action == Action.BUY:
            LotReconstructor._apply_buy(ledger, event, fee_value, config)

        elif event.action == Action.SELL:
            LotReconstructor._apply_sell(ledger, event, fee_value, config)

        elif event.action == Action.SWAP:
            LotReconstructor._apply_swap(ledger, event, fee_value, config)

        ledger.events_applied += 1

    @staticmethod
    def _apply_deposit(ledger: AccountLedger, event: Event, pool: TransferCostPool, config: EngineConfig) -> None:
        if config.is_stable(event.instrument):
            return  # Cash ledger only

        stack = ledger.stack(event.instrument, Direction.LONG)
        inherited = pool.consume(event.instrument, event.quantity)

        if inherited.quantity > config.epsilon:
            open_lot(stack, inherited.quantity, inherited.notional_cost, inherited.margin_cost, config.epsilon,
                     opened_at=event.timestamp, source=Action.DEPOSIT,
                     exchange=event.exchange, event_id=event.event_id)

        leftover = event.quantity - inherited.quantity
        if leftover > config.epsilon:
            # Unknown origin: opens at zero cost
            open_lot(stack, leftover, 0.0, 0.0, config.epsilon,
                     opened_at=event.timestamp, source=Action.DEPOSIT,
                     exchange=event.exchange, event_id=event.event_id)

    @staticmethod
    def _apply_withdrawal(ledger: AccountLedger, event: Event, pool: TransferCostPool, config: EngineConfig) -> None:
        if config.is_stable(event.instrument):
            return  # Cash ledger only

        stack = ledger.stack(event.instrument, Direction.LONG)
        removed = LotReconstructor._consume(ledger, stack, event.quantity, config, event)
        pool.enqueue(event.instrument, removed.quantity, removed.notional_cost, removed.margin_cost)

    @staticmethod
    def resolve_short_mode(stack: LotStack, epsilon: float) -> ShortOpenMode:
        """
        Effective short-open mode of a SHORT stack.

        A stack holding lots without a recorded mode was opened by SELL.
        """
        if stack.short_open_mode != ShortOpenMode.UNSET:
            return stack.short_open_mode
        if not stack.is_empty(epsilon):
            return ShortOpenMode.OPENED_VIA_SELL
        return ShortOpenMode.UNSET

    @staticmethod
    def _apply_buy(ledger: AccountLedger, event: Event, fee_value: float, config: EngineConfig) -> None:
        eps = config.epsilon
        qty = event.quantity

        if not config.is_stable(event.price_currency):
            # Receiving leg of a two-row swap: quantity only
            if event.direction == Direction.SHORT:
                stack = ledger.stack(event.instrument, Direction.SHORT)
                LotReconstructor._consume(ledger, stack, qty, config, event)
            else:
                stack = ledger.stack(event.instrument, Direction.LONG)
                open_lot(stack, qty, 0.0, 0.0, eps,
                         opened_at=event.timestamp, source=Action.BUY,
                         exchange=event.exchange, event_id=event.event_id)
            return

        raw_notional = qty * event.unit_price
        notional = raw_notional + fee_value
        margin = margin_for(raw_notional, event.leverage, fee_value, notional)

        if event.direction == Direction.LONG:
            stack = ledger.stack(event.instrument, Direction.LONG)
            open_lot(stack, qty, notional, margin, eps,
                     opened_at=event.timestamp, source=Action.BUY, exchange=event.exchange,
                     leverage=event.leverage, event_id=event.event_id)
            return

        stack = ledger.stack(event.instrument, Direction.SHORT)
        mode = LotReconstructor.resolve_short_mode(stack, eps)

        if mode in (ShortOpenMode.UNSET, ShortOpenMode.OPENED_VIA_BUY):
            open_lot(stack, qty, notional, margin, eps,
                     opened_at=event.timestamp, source=Action.BUY, exchange=event.exchange,
                     leverage=event.leverage, event_id=event.event_id)
            stack.short_open_mode = ShortOpenMode.OPENED_VIA_BUY
            return

        # Opened via SELL: this BUY covers the short
        consumed = LotReconstructor._consume(ledger, stack, qty, config, event)
        if consumed.quantity <= eps:
            return
        close_cost = notional * (consumed.quantity / qty)
        realized = consumed.notional_cost - close_cost
        stack.realized_pl += realized
        LotReconstructor._record_close(
            ledger, stack, event, consumed,
            proceeds=consumed.notional_cost, close_amount=close_cost,
            fee_value=fee_value, realized=realized, epsilon=eps,
        )

    @staticmethod
    def _apply_sell(ledger: AccountLedger, event: Event, fee_value: float, config: EngineConfig) -> None:
        eps = config.epsilon
        qty = event.quantity

        if not config.is_stable(event.price_currency):
            # Paying leg of a two-row swap: quantity only
            if event.direction == Direction.SHORT:
                stack = ledger.stack(event.instrument, Direction.SHORT)
                open_lot(stack, qty, 0.0, 0.0, eps,
                         opened_at=event.timestamp, source=Action.SELL,
                         exchange=event.exchange, event_id=event.event_id)
            else:
                stack = ledger.stack(event.instrument, Direction.LONG)
                LotReconstructor._consume(ledger, stack, qty, config, event)
            return

        raw_notional = qty * event.unit_price
        proceeds = raw_notional - fee_value

        if event.direction == Direction.LONG:
            stack = ledger.stack(event.instrument, Direction.LONG)
            consumed = LotReconstructor._consume(ledger, stack, qty, config, event)
            if consumed.quantity <= eps:
                return
            proceeds_part = proceeds * (consumed.quantity / qty)
            realized = proceeds_part - consumed.notional_cost
            stack.realized_pl += realized
            LotReconstructor._record_close(
                ledger, stack, event, consumed,
                proceeds=proceeds_part, close_amount=proceeds_part,
                fee_value=fee_value, realized=realized, epsilon=eps,
            )
            return

        stack = ledger.stack(event.instrument, Direction.SHORT)
        mode = LotReconstructor.resolve_short_mode(stack, eps)

        if mode == ShortOpenMode.OPENED_VIA_BUY:
            consumed = LotReconstructor._consume(ledger, stack, qty, config, event)
            if consumed.quantity <= eps:
                return
            proceeds_part = proceeds * (consumed.quantity / qty)
            realized = consumed.notional_cost - proceeds_part
            stack.realized_pl += realized
            LotReconstructor._record_close(
                ledger, stack, event, consumed,
                proceeds=consumed.notional_cost, close_amount=proceeds_part,
                fee_value=fee_value, realized=realized, epsilon=eps,
            )
            return

        # Borrow-and-sell: the entry "cost" is what was received
        margin = margin_for(raw_notional, event.leverage, fee_value, proceeds)
        open_lot(stack, qty, proceeds, margin, eps,
                 opened_at=event.timestamp, source=Action.SELL, exchange=event.exchange,
                 leverage=event.leverage, event_id=event.event_id)
        stack.short_open_mode = ShortOpenMode.OPENED_VIA_SELL

    @staticmethod
    def _apply_swap(ledger: AccountLedger, event: Event, fee_value: float, config: EngineConfig) -> None:
        eps = config.epsilon
        received = event.received_instrument
        paid = event.paid_instrument
        received_qty = event.quantity
        paid_qty = event.quantity * event.unit_price

        if not received or not paid or paid_qty <= eps:
            message = f"Skipped swap {event.event_id}: nothing paid for {received_qty} {received}"
            logger.warning(message)
            ledger.warnings.append(message)
            return

        if config.is_stable(paid):
            notional = paid_qty + fee_value
            margin = notional
        else:
            removed = LotReconstructor._consume(
                ledger, ledger.stack(paid, Direction.LONG), paid_qty, config, event
            )
            # Cost basis passes through unchanged, re-denominated in the received instrument
            notional = removed.notional_cost + fee_value
            margin = removed.margin_cost + fee_value

        open_lot(ledger.stack(received, Direction.LONG), received_qty, notional, margin, eps,
                 opened_at=event.timestamp, source=Action.SWAP,
                 exchange=event.exchange, event_id=event.event_id)

    @staticmethod
    def _consume(
        ledger: AccountLedger,
        stack: LotStack,
        quantity: float,
        config: EngineConfig,
        event: Event,
    ) -> Consumption:
        """Consume under the account discipline, noting any shortfall."""
        consumed = consume(stack, quantity, ledger.discipline, config.epsilon)
        shortfall = quantity - consumed.quantity
        if shortfall > config.epsilon:
            message = (
                f"Over-consumption: {event.action.value} of {quantity} {stack.instrument} "
                f"{stack.direction.value} with only {consumed.quantity} open "
                f"(event {event.event_id})"
            )
            logger.debug(message)
            ledger.warnings.append(message)
        return consumed

    @staticmethod
    def _record_close(
        ledger: AccountLedger,
        stack: LotStack,
        event: Event,
        consumed: Consumption,
        proceeds: float,
        close_amount: float,
        fee_value: float,
        realized: float,
        epsilon: float,
    ) -> None:
        """Append a ClosedTrade for a closing event."""
        qty = consumed.quantity
        remaining = stack.quantity
        opened_at = consumed.earliest_opened_at
        holding_days = (event.timestamp - opened_at).days if opened_at is not None else None

        ledger.closed_trades.append(ClosedTrade(
            instrument=stack.instrument,
            direction=stack.direction,
            action=event.action,
            quantity_closed=qty,
            entry_price=consumed.notional_cost / qty,
            exit_price=close_amount / qty,
            invested_cost=consumed.margin_cost,
            proceeds=proceeds,
            fee_value=fee_value,
            realized_pl=realized,
            pl_pct=(realized / consumed.margin_cost * 100) if consumed.margin_cost > epsilon else None,
            closed_at=event.timestamp,
            opened_at=opened_at,
            holding_days=holding_days,
            quantity_remaining=remaining,
            status="CLOSED" if remaining <= epsilon else "PARTIAL",
            event_id=event.event_id,
            account_id=ledger.account_id,
            leverage=event.leverage if event.leverage is not None and event.leverage > 1 else None,
            notes=event.notes,
        ))

    @staticmethod
    def _update_cash(ledger: AccountLedger, event: Event, fee_value: float, config: EngineConfig) -> None:
        """
        Track the stable-currency balance the account holds.

        Stable fees come out of cash only on withdrawals, stable-priced trades and swaps;
        a deposit's fee and a fee on a token-priced trade leave the balance alone.
        """
        cash = ledger.cash
        qty = event.quantity
        stable_fee = event.fee_amount if config.is_stable(event.fee_currency) else 0.0

        if event.action == Action.DEPOSIT and config.is_stable(event.instrument):
            cash.balance += qty
            cash.net_deposits += qty
        elif event.action == Action.WITHDRAWAL and config.is_stable(event.instrument):
            cash.balance -= qty + stable_fee
            cash.net_deposits -= qty
        elif event.action == Action.BUY and config.is_stable(event.price_currency):
            cash.balance -= qty * event.unit_price / event.effective_leverage + stable_fee
        elif event.action == Action.SELL and config.is_stable(event.price_currency):
            cash.balance += qty * event.unit_price / event.effective_leverage - stable_fee
        elif event.action == Action.SWAP:
            if config.is_stable(event.paid_instrument):
                cash.balance -= qty * event.unit_price
            elif config.is_stable(event.received_instrument):
                cash.balance += qty
            cash.balance -= stable_fee

        cash.fees_paid += fee_value
