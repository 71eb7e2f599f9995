# tests/test_metrics_smoke.py
from __future__ import annotations

from costbasis.domain.engine import compute_positions
from costbasis.domain.metrics import CLOSED_TRADE_COLUMNS, POSITION_COLUMNS, PositionMetrics
from costbasis.domain.normalizer import EventNormalizer
from costbasis.domain.valuation import price_lookup_from_mapping


def _result(make_event, config):
    events = [
        make_event("BUY", "ETH", 2, 1000, exchange="binance"),
        make_event("SELL", "ETH", 1, 1300, exchange="binance", fees=0.01, fees_currency="ETH"),
        make_event("BUY", "SOL", 10, 100, exchange="kraken"),
        make_event("SELL", "SOL", 4, 90, exchange="kraken", fees=1),
        make_event("BUY", "DOGE", 100, 0.1, exchange="kraken"),
    ]
    return events, compute_positions(
        events,
        discipline="FIFO",
        config=config,
        price_lookup=price_lookup_from_mapping({"ETH": 1200, "SOL": 95}),
    )


def test_positions_frame_columns_and_order(make_event, config):
    _, result = _result(make_event, config)
    df = PositionMetrics.positions_frame(result.positions)

    assert list(df.columns) == POSITION_COLUMNS
    assert len(df) == 3
    assert df.iloc[0]["instrument"] == "ETH"


def test_exchange_summary(make_event, config):
    _, result = _result(make_event, config)
    df = PositionMetrics.exchange_summary(result.positions)

    kraken = df[df["exchange"] == "KRAKEN"].iloc[0]
    assert kraken["positions"] == 2
    assert kraken["unpriced"] == 1
    assert round(kraken["invested"], 6) == 610.0


def test_closed_trades_and_overview(make_event, config):
    _, result = _result(make_event, config)
    df = PositionMetrics.closed_trades_frame(result.closed_trades)
    assert list(df.columns) == CLOSED_TRADE_COLUMNS
    assert len(df) == 2

    stats = PositionMetrics.overview_stats(result.closed_trades)
    assert stats["count"] == 2
    assert stats["winners"] == 1
    assert stats["losers"] == 1
    assert round(stats["win_rate"], 6) == 50.0


def test_top_performers(make_event, config):
    _, result = _result(make_event, config)
    best, worst = PositionMetrics.top_performers(result.closed_trades, n=1)
    assert best.iloc[0]["instrument"] == "ETH"
    assert worst.iloc[0]["instrument"] == "SOL"


def test_fee_totals_split_cash_and_token(make_event, config):
    events, _ = _result(make_event, config)
    typed, _ = EventNormalizer.normalize_batch(events, config)
    fees = PositionMetrics.fee_totals(typed, config)

    assert round(fees["cash_fees"], 6) == 1.0
    # 0.01 ETH valued at the 1,300 trade price
    assert round(fees["token_fees_value"], 6) == 13.0
    assert fees["by_currency"]["ETH"] == 0.01


def test_empty_inputs():
    assert PositionMetrics.positions_frame([]).empty
    assert PositionMetrics.closed_trades_frame([]).empty
    assert PositionMetrics.overview_stats([])["count"] == 0
    best, worst = PositionMetrics.top_performers([])
    assert best.empty and worst.empty
