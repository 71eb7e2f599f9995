# costbasis/io/event_store.py
"""Read-only adapter from the wallet/transaction store to the engine."""

import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlmodel import Session, select

from costbasis.config import EngineConfig
from costbasis.db import session as db_session
from costbasis.db.models import PriceQuote, Transaction, Wallet, WalletSetting
from costbasis.domain.engine import AccountInput, PortfolioResult, compute_accounts
from costbasis.domain.rollup import PortfolioTree, WalletNode, build_tree
from costbasis.domain.valuation import PriceLookup, price_lookup_from_mapping

logger = logging.getLogger(__name__)


class EventStore:
    """Loads wallets, settings, transactions and cached prices."""

    @staticmethod
    def load_wallets(session: Session) -> List[WalletNode]:
        wallets = session.exec(select(Wallet).order_by(Wallet.level, Wallet.name)).all()
        return [
            WalletNode(
                id=w.id,
                name=w.name,
                parent_id=w.parent_wallet_id,
                target_allocation_pct=w.target_allocation_pct,
                cash_reserve_pct=w.cash_reserve_pct,
                level=w.level,
            )
            for w in wallets
        ]

    @staticmethod
    def load_disciplines(session: Session) -> Dict[str, str]:
        """wallet_id -> accounting method. Wallets without a setting are absent."""
        settings = session.exec(select(WalletSetting)).all()
        return {s.wallet_id: s.accounting_method for s in settings}

    @staticmethod
    def transaction_to_raw(tx: Transaction) -> Dict[str, Any]:
        """Map a stored row to the normalizer's raw event fields."""
        return {
            "id": tx.id,
            "wallet_id": tx.wallet_id,
            "date": tx.date,
            "action": tx.action,
            "ticker": tx.ticker,
            "direction": tx.direction,
            "quantity": tx.quantity,
            "price": tx.price,
            "price_currency": tx.price_currency,
            "fees": tx.fees,
            "fees_currency": tx.fees_currency,
            "leverage": tx.leverage,
            "from_ticker": tx.from_ticker,
            "to_ticker": tx.to_ticker,
            "exchange": tx.exchange,
            "notes": tx.notes,
        }

    @staticmethod
    def load_events(
        session: Session,
        wallet_ids: Optional[List[str]] = None,
    ) -> Dict[str, List[Dict[str, Any]]]:
        """wallet_id -> raw events, in stored time order."""
        stmt = select(Transaction).order_by(Transaction.date, Transaction.created_at)
        if wallet_ids is not None:
            stmt = stmt.where(Transaction.wallet_id.in_(wallet_ids))

        by_wallet: Dict[str, List[Dict[str, Any]]] = {}
        for tx in session.exec(stmt).all():
            by_wallet.setdefault(tx.wallet_id, []).append(EventStore.transaction_to_raw(tx))
        return by_wallet

    @staticmethod
    def price_lookup(session: Session) -> PriceLookup:
        """Snapshot the price cache into an in-memory lookup."""
        quotes = session.exec(select(PriceQuote)).all()
        return price_lookup_from_mapping({q.ticker: q.price_usd for q in quotes})


def build_portfolio_tree(
    session: Optional[Session] = None,
    config: Optional[EngineConfig] = None,
) -> Tuple[PortfolioTree, PortfolioResult]:
    """
    Run the whole pipeline over the store: events -> positions -> valuation -> tree.

    Args:
        session: Open session; a new one on the configured DATABASE_URL engine if omitted
        config: Engine configuration (defaults from the environment)

    Returns:
        (tree, portfolio_result)
    """
    if session is None:
        with db_session.get_session() as own_session:
            return build_portfolio_tree(own_session, config)

    wallets = EventStore.load_wallets(session)
    disciplines = EventStore.load_disciplines(session)
    events = EventStore.load_events(session, [w.id for w in wallets])

    accounts = {
        w.id: AccountInput(events=events.get(w.id, []), discipline=disciplines.get(w.id))
        for w in wallets
    }

    result = compute_accounts(accounts, price_lookup=EventStore.price_lookup(session), config=config)
    for account_id, account in result.accounts.items():
        for warning in account.warnings:
            logger.debug(f"[{account_id}] {warning}")

    tree = build_tree(wallets, result.accounts)
    logger.info(f"Built portfolio tree: {len(tree.roots)} roots, {len(wallets)} wallets")
    return tree, result
