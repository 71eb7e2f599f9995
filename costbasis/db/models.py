# costbasis/db/models.py
"""
SQLModel definitions for the wallet/transaction store.
Designed for SQLite locally, PostgreSQL in production.
"""

from datetime import datetime, timezone
from typing import Optional, List
from sqlmodel import SQLModel, Field, Relationship
import sqlalchemy
import uuid


class Wallet(SQLModel, table=True):
    """Custodial account. Wallets form a tree through parent_wallet_id."""
    __tablename__ = "wallet"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    name: str = Field(index=True)
    parent_wallet_id: Optional[str] = Field(default=None, foreign_key="wallet.id", index=True)
    level: int = Field(default=0)

    # Allocation settings used by the tree rollup
    target_allocation_pct: Optional[float] = Field(default=None)  # Share of the root's allocatable cash
    cash_reserve_pct: Optional[float] = Field(default=None)  # Roots only

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    settings: List["WalletSetting"] = Relationship(back_populates="wallet", cascade_delete=True)
    transactions: List["Transaction"] = Relationship(back_populates="wallet", cascade_delete=True)


class WalletSetting(SQLModel, table=True):
    """Per-wallet accounting preferences."""
    __tablename__ = "wallet_setting"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    wallet_id: str = Field(foreign_key="wallet.id", index=True)

    accounting_method: str = Field(default="AVG")  # LIFO, FIFO or AVG

    __table_args__ = (
        sqlalchemy.UniqueConstraint('wallet_id', name='uq_wallet_setting'),
    )

    wallet: Wallet = Relationship(back_populates="settings")


class Transaction(SQLModel, table=True):
    """Raw financial event as entered or imported. Read by the engine, never written."""
    __tablename__ = "wallet_transaction"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    wallet_id: str = Field(foreign_key="wallet.id", index=True)

    # Timestamp (timezone-aware, UTC)
    date: datetime = Field(index=True)

    action: str = Field()  # BUY, SELL, DEPOSIT, WITHDRAWAL, SWAP, AIRDROP, OPEN, CLOSE
    ticker: str = Field(index=True)
    direction: str = Field(default="LONG")  # LONG or SHORT

    quantity: float = Field()
    price: Optional[float] = Field(default=None)
    price_currency: str = Field(default="USDT")

    fees: float = Field(default=0.0)
    fees_currency: str = Field(default="USDT")

    leverage: Optional[float] = Field(default=None)

    # SWAP legs
    from_ticker: Optional[str] = Field(default=None)
    to_ticker: Optional[str] = Field(default=None)

    exchange: Optional[str] = Field(default=None, index=True)
    notes: str = Field(default="")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    wallet: Wallet = Relationship(back_populates="transactions")


class PriceQuote(SQLModel, table=True):
    """Cached live price per ticker, refreshed by an external feed."""
    __tablename__ = "price_quote"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    ticker: str = Field(index=True, unique=True)
    price_usd: float = Field()
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
