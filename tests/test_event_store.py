# tests/test_event_store.py
from __future__ import annotations

from datetime import datetime, timezone

from costbasis.db import session as db_session
from costbasis.db.models import PriceQuote, Transaction, Wallet, WalletSetting
from costbasis.io.event_store import EventStore, build_portfolio_tree


def _seed(session):
    root = Wallet(name="Main", cash_reserve_pct=20)
    session.add(root)
    session.commit()
    session.refresh(root)

    child = Wallet(name="Spot", parent_wallet_id=root.id, target_allocation_pct=100, level=1)
    session.add(child)
    session.commit()
    session.refresh(child)

    session.add(WalletSetting(wallet_id=child.id, accounting_method="lifo"))
    session.add_all(
        [
            Transaction(
                wallet_id=root.id, date=datetime(2025, 1, 1, 9, 0, 0, tzinfo=timezone.utc),
                action="DEPOSIT", ticker="USDT", quantity=5000,
            ),
            Transaction(
                wallet_id=child.id, date=datetime(2025, 1, 2, 9, 0, 0, tzinfo=timezone.utc),
                action="BUY", ticker="BTC", quantity=1.0, price=50_000, fees=10,
            ),
            Transaction(
                wallet_id=child.id, date=datetime(2025, 1, 3, 9, 0, 0, tzinfo=timezone.utc),
                action="SELL", ticker="BTC", quantity=0.4, price=60_000, fees=5,
            ),
            Transaction(
                wallet_id=child.id, date=datetime(2025, 1, 4, 9, 0, 0, tzinfo=timezone.utc),
                action="BUY", ticker="BTC", quantity=-1, price=1,
            ),
        ]
    )
    session.add(PriceQuote(ticker="BTC", price_usd=55_000))
    session.commit()
    return root, child


def test_load_events_and_settings(session):
    root, child = _seed(session)

    events = EventStore.load_events(session)
    assert len(events[root.id]) == 1
    assert [e["action"] for e in events[child.id]] == ["BUY", "SELL", "BUY"]

    assert EventStore.load_disciplines(session) == {child.id: "lifo"}
    assert EventStore.price_lookup(session)("btc") == 55_000


def test_build_portfolio_tree_end_to_end(session, config):
    root, child = _seed(session)

    tree, result = build_portfolio_tree(session, config=config)

    assert result.accounts[child.id].discipline.value == "LIFO"
    assert any("Negative quantity" in w for w in result.accounts[child.id].warnings)

    node = tree.roots[0]
    assert node.id == root.id
    spot = node.children[0]
    assert round(spot.pl_realized, 6) == 3991.0
    assert round(spot.total_invested, 6) == 30006.0
    assert round(spot.pl_unrealized, 6) == round(0.6 * 55_000 - 30006, 6)

    assert round(node.cash_reserve, 6) == 1000.0
    assert round(spot.cash_balance, 6) == 4000.0
    assert round(spot.actual_allocation, 6) == 100.0


def test_build_portfolio_tree_opens_its_own_session(session, config, monkeypatch):
    # No session passed: the pipeline reads through the configured engine
    monkeypatch.setattr(db_session, "engine", session.get_bind())
    db_session.create_db_and_tables(session.get_bind())
    root, child = _seed(session)

    tree, result = build_portfolio_tree(config=config)

    assert tree.roots[0].id == root.id
    assert round(result.accounts[child.id].realized_pl, 6) == 3991.0
    assert round(tree.roots[0].children[0].cash_balance, 6) == 4000.0
