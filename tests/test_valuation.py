# tests/test_valuation.py
from __future__ import annotations

from costbasis.domain.engine import compute_positions
from costbasis.domain.models import Direction, ReportablePosition
from costbasis.domain.valuation import price_lookup_from_mapping, value_position


def _position(direction, qty, invested, notional):
    return ReportablePosition(
        instrument="ETH",
        direction=direction,
        quantity_open=qty,
        invested=invested,
        notional_open=notional,
        avg_cost_margin=invested / qty,
        avg_cost_notional=notional / qty,
        realized_pl=0.0,
    )


def test_long_unrealized_and_value():
    pos = value_position(_position(Direction.LONG, 2, 4000, 4000), 2500, 1e-9)
    assert pos.unrealized_pl == 1000
    assert pos.value_live == 5000
    assert round(pos.pl_pct, 6) == 25.0


def test_short_unrealized_is_mirrored():
    pos = value_position(_position(Direction.SHORT, 2, 6000, 6000), 2500, 1e-9)
    assert pos.unrealized_pl == 1000
    assert pos.value_live == 7000


def test_leveraged_pl_pct_against_margin():
    # 1 BTC notional 50,000 on 5,000 margin; +1,000 move is +20% on margin
    pos = value_position(_position(Direction.LONG, 1, 5000, 50_000), 51_000, 1e-9)
    assert pos.unrealized_pl == 1000
    assert pos.value_live == 6000
    assert round(pos.pl_pct, 6) == 20.0


def test_missing_price_leaves_live_fields_none():
    pos = value_position(_position(Direction.LONG, 1, 100, 100), None, 1e-9)
    assert pos.unrealized_pl is None
    assert pos.value_live is None
    assert pos.pl_pct is None


def test_zero_cost_position_has_no_pct():
    pos = value_position(_position(Direction.LONG, 10, 0.0, 0.0), 3, 1e-9)
    assert pos.unrealized_pl == 30
    assert pos.pl_pct is None


def test_mapping_lookup_is_case_insensitive_and_rejects_nan():
    lookup = price_lookup_from_mapping({"eth": 2500, "BAD": float("nan"), "TXT": "n/a"})
    assert lookup("ETH") == 2500.0
    assert lookup("BAD") is None
    assert lookup("TXT") is None
    assert lookup("SOL") is None


def test_engine_values_with_injected_lookup(make_event, config):
    events = [
        make_event("BUY", "ETH", 2, 2000, exchange="binance"),
        make_event("BUY", "ETH", 1, 2300, exchange="kraken"),
        make_event("BUY", "PEPE", 1000, 0.001),
        make_event("DEPOSIT", "USDC", 500),
    ]
    result = compute_positions(
        events, discipline="FIFO", config=config, price_lookup=price_lookup_from_mapping({"ETH": 2500})
    )

    by_ticker = {p.instrument: p for p in result.positions}
    assert set(by_ticker) == {"ETH", "PEPE"}
    eth = by_ticker["ETH"]
    assert eth.exchange == "MULTI"
    assert round(eth.unrealized_pl, 6) == round(3 * 2500 - 6300, 6)
    assert by_ticker["PEPE"].value_live is None
    assert result.unpriced_positions == 1
    assert round(result.value_live, 6) == round(eth.value_live, 6)


def test_custom_stables_exclude_positions(make_event, config):
    events = [make_event("BUY", "PYUSD", 100, 1.0)]
    assert len(compute_positions(events, config=config).positions) == 1
    assert compute_positions(events, config=config, stables=["USDT", "PYUSD"]).positions == []
