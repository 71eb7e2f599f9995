# costbasis/domain/metrics.py
"""Metrics and reporting tables over engine results."""

from typing import Dict, Iterable, List, Sequence, Tuple

import pandas as pd
import pytz

from costbasis.config import EngineConfig
from costbasis.domain.models import ClosedTrade, Event, ReportablePosition

POSITION_COLUMNS = [
    "account_id", "exchange", "instrument", "direction", "quantity_open",
    "avg_cost_margin", "avg_cost_notional", "invested", "notional_open", "leverage",
    "price_live", "value_live", "unrealized_pl", "pl_pct", "realized_pl",
]

CLOSED_TRADE_COLUMNS = [
    "closed_at", "opened_at", "holding_days", "account_id", "instrument", "direction",
    "action", "quantity_closed", "entry_price", "exit_price", "invested_cost", "proceeds",
    "fee_value", "realized_pl", "pl_pct", "quantity_remaining", "status", "leverage",
]


class PositionMetrics:
    """Reporting frames for positions, closed trades and fees."""

    @staticmethod
    def positions_frame(positions: Sequence[ReportablePosition]) -> pd.DataFrame:
        """Open positions, largest invested first."""
        if not positions:
            return pd.DataFrame(columns=POSITION_COLUMNS)

        rows = [
            {
                "account_id": p.account_id,
                "exchange": p.exchange,
                "instrument": p.instrument,
                "direction": p.direction.value,
                "quantity_open": p.quantity_open,
                "avg_cost_margin": p.avg_cost_margin,
                "avg_cost_notional": p.avg_cost_notional,
                "invested": p.invested,
                "notional_open": p.notional_open,
                "leverage": p.leverage,
                "price_live": p.price_live,
                "value_live": p.value_live,
                "unrealized_pl": p.unrealized_pl,
                "pl_pct": p.pl_pct,
                "realized_pl": p.realized_pl,
            }
            for p in positions
        ]
        df = pd.DataFrame(rows, columns=POSITION_COLUMNS)
        return df.sort_values("invested", ascending=False).reset_index(drop=True)

    @staticmethod
    def exchange_summary(positions: Sequence[ReportablePosition]) -> pd.DataFrame:
        """
        Open exposure grouped by exchange.

        Unpriced positions count toward invested but not toward value or unrealized P/L.
        """
        columns = ["exchange", "positions", "invested", "value_live", "unrealized_pl", "unpriced"]
        if not positions:
            return pd.DataFrame(columns=columns)

        df = pd.DataFrame(
            [
                {
                    "exchange": p.exchange or "UNKNOWN",
                    "invested": p.invested,
                    "value_live": p.value_live if p.value_live is not None else 0.0,
                    "unrealized_pl": p.unrealized_pl if p.unrealized_pl is not None else 0.0,
                    "unpriced": 1 if p.value_live is None else 0,
                }
                for p in positions
            ]
        )
        out = (
            df.groupby("exchange", as_index=False)
            .agg(
                positions=("invested", "count"),
                invested=("invested", "sum"),
                value_live=("value_live", "sum"),
                unrealized_pl=("unrealized_pl", "sum"),
                unpriced=("unpriced", "sum"),
            )
            .sort_values("invested", ascending=False)
            .reset_index(drop=True)
        )
        return out[columns]

    @staticmethod
    def closed_trades_frame(
        trades: Sequence[ClosedTrade],
        report_timezone: str = "UTC",
    ) -> pd.DataFrame:
        """Closed trades, most recent first, with dates in the report timezone."""
        if not trades:
            return pd.DataFrame(columns=CLOSED_TRADE_COLUMNS)

        tz = pytz.timezone(report_timezone)
        rows = []
        for t in trades:
            rows.append(
                {
                    "closed_at": t.closed_at.astimezone(tz),
                    "opened_at": t.opened_at.astimezone(tz) if t.opened_at else None,
                    "holding_days": t.holding_days,
                    "account_id": t.account_id,
                    "instrument": t.instrument,
                    "direction": t.direction.value,
                    "action": t.action.value,
                    "quantity_closed": t.quantity_closed,
                    "entry_price": t.entry_price,
                    "exit_price": t.exit_price,
                    "invested_cost": t.invested_cost,
                    "proceeds": t.proceeds,
                    "fee_value": t.fee_value,
                    "realized_pl": t.realized_pl,
                    "pl_pct": t.pl_pct,
                    "quantity_remaining": t.quantity_remaining,
                    "status": t.status,
                    "leverage": t.leverage,
                }
            )

        df = pd.DataFrame(rows, columns=CLOSED_TRADE_COLUMNS)
        return df.sort_values("closed_at", ascending=False).reset_index(drop=True)

    @staticmethod
    def overview_stats(trades: Sequence[ClosedTrade]) -> Dict:
        """Get overall closed-trade statistics."""
        if not trades:
            return {
                "count": 0,
                "winners": 0,
                "losers": 0,
                "win_rate": 0.0,
                "total_pl": 0.0,
                "total_invested": 0.0,
                "total_pl_pct": 0.0,
                "total_fees": 0.0,
                "avg_win": 0.0,
                "avg_loss": 0.0,
                "profit_factor": 0.0,
            }

        wins = [t for t in trades if t.realized_pl > 0]
        losses = [t for t in trades if t.realized_pl < 0]

        total_pl = sum(t.realized_pl for t in trades)
        total_invested = sum(t.invested_cost for t in trades)
        gross_wins = sum(t.realized_pl for t in wins)
        gross_losses = sum(abs(t.realized_pl) for t in losses)

        return {
            "count": len(trades),
            "winners": len(wins),
            "losers": len(losses),
            "win_rate": len(wins) / len(trades) * 100,
            "total_pl": total_pl,
            "total_invested": total_invested,
            "total_pl_pct": total_pl / total_invested * 100 if total_invested > 0 else 0.0,
            "total_fees": sum(t.fee_value for t in trades),
            "avg_win": gross_wins / len(wins) if wins else 0.0,
            "avg_loss": -gross_losses / len(losses) if losses else 0.0,
            "profit_factor": gross_wins / gross_losses if gross_losses > 0 else 0.0,
        }

    @staticmethod
    def top_performers(
        trades: Sequence[ClosedTrade],
        n: int = 5,
    ) -> Tuple[pd.DataFrame, pd.DataFrame]:
        """(best, worst) instruments by summed realized P/L."""
        columns = ["instrument", "trades", "realized_pl", "invested_cost"]
        if not trades:
            empty = pd.DataFrame(columns=columns)
            return empty, empty.copy()

        df = pd.DataFrame(
            [
                {"instrument": t.instrument, "realized_pl": t.realized_pl, "invested_cost": t.invested_cost}
                for t in trades
            ]
        )
        by_instrument = df.groupby("instrument", as_index=False).agg(
            trades=("realized_pl", "count"),
            realized_pl=("realized_pl", "sum"),
            invested_cost=("invested_cost", "sum"),
        )[columns]

        best = by_instrument.sort_values("realized_pl", ascending=False).head(n).reset_index(drop=True)
        worst = by_instrument.sort_values("realized_pl", ascending=True).head(n).reset_index(drop=True)
        return best, worst

    @staticmethod
    def estimate_fee_value(event: Event, config: EngineConfig) -> float:
        """
        Fee in the valuation currency from the event alone.

        A fee in the traded token is valued at the trade price when that price is in cash.
        """
        if event.fee_amount <= 0:
            return 0.0
        if config.is_stable(event.fee_currency):
            return event.fee_amount
        if (
            event.unit_price > 0
            and config.is_stable(event.price_currency)
            and event.fee_currency in (event.instrument, event.from_instrument)
        ):
            return event.fee_amount * event.unit_price
        return 0.0

    @staticmethod
    def fee_totals(events: Iterable[Event], config: EngineConfig) -> Dict:
        """
        Fee totals split between cash-currency fees and token fees.

        Returns dict with: cash_fees, token_fees_value, total_value, unpriced_count,
        by_currency (currency -> raw amount)
        """
        rows: List[Dict] = []
        for e in events:
            if e.fee_amount <= 0:
                continue
            rows.append(
                {
                    "currency": e.fee_currency,
                    "amount": e.fee_amount,
                    "value": PositionMetrics.estimate_fee_value(e, config),
                    "is_cash": config.is_stable(e.fee_currency),
                }
            )

        if not rows:
            return {
                "cash_fees": 0.0,
                "token_fees_value": 0.0,
                "total_value": 0.0,
                "unpriced_count": 0,
                "by_currency": {},
            }

        df = pd.DataFrame(rows)
        cash = df[df["is_cash"]]
        token = df[~df["is_cash"]]

        return {
            "cash_fees": float(cash["value"].sum()),
            "token_fees_value": float(token["value"].sum()),
            "total_value": float(df["value"].sum()),
            "unpriced_count": int(((~df["is_cash"]) & (df["value"] == 0)).sum()),
            "by_currency": df.groupby("currency")["amount"].sum().to_dict(),
        }
