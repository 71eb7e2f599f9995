# costbasis/domain/rollup.py
"""
Wallet-tree rollup.
Sums account results up a parent/child wallet tree, splits root cash into a reserve
and per-child allocations, and computes target-vs-actual allocation percentages.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence

from costbasis.domain.engine import AccountResult
from costbasis.domain.models import ReportablePosition

logger = logging.getLogger(__name__)


@dataclass
class WalletNode:
    """Tree shape and allocation settings of one wallet."""
    id: str
    name: str
    parent_id: Optional[str] = None
    target_allocation_pct: Optional[float] = None
    cash_reserve_pct: Optional[float] = None
    level: int = 0


@dataclass
class TreeNode:
    id: str
    name: str
    parent_id: Optional[str]
    level: int
    target_allocation: Optional[float]
    cash_reserve_pct: Optional[float]
    actual_allocation: Optional[float] = None

    # Own positions only
    own_invested: float = 0.0
    own_value_live: float = 0.0
    own_pl_unrealized: float = 0.0
    own_pl_realized: float = 0.0
    raw_cash: float = 0.0

    # Own + all descendants
    total_invested: float = 0.0
    total_value_live: float = 0.0
    pl_unrealized: float = 0.0
    pl_realized: float = 0.0
    unpriced_positions: int = 0

    cash_balance: float = 0.0
    cash_reserve: float = 0.0
    cash_available: float = 0.0

    pl_unrealized_pct: float = 0.0
    pl_realized_pct: float = 0.0
    pl_total: float = 0.0
    pl_total_pct: float = 0.0

    positions: List[ReportablePosition] = field(default_factory=list)
    children: List["TreeNode"] = field(default_factory=list)


@dataclass
class PortfolioTree:
    roots: List[TreeNode]
    kpis: Dict[str, float]


def _pct(part: float, whole: float) -> float:
    return part / whole * 100 if whole > 0 else 0.0


def _build_node(
    wallet: WalletNode,
    children_of: Mapping[str, List[WalletNode]],
    results: Mapping[str, AccountResult],
    is_root: bool,
) -> TreeNode:
    result = results.get(wallet.id)
    positions = result.positions if result is not None else []

    node = TreeNode(
        id=wallet.id,
        name=wallet.name,
        parent_id=wallet.parent_id,
        level=wallet.level,
        target_allocation=wallet.target_allocation_pct,
        cash_reserve_pct=wallet.cash_reserve_pct,
        own_invested=sum(p.invested for p in positions),
        own_value_live=sum(p.value_live for p in positions if p.value_live is not None),
        own_pl_unrealized=sum(p.unrealized_pl for p in positions if p.unrealized_pl is not None),
        own_pl_realized=result.realized_pl if result is not None else 0.0,
        raw_cash=result.cash.balance if result is not None else 0.0,
        unpriced_positions=sum(1 for p in positions if p.value_live is None),
        positions=list(positions),
    )

    node.children = [
        _build_node(child, children_of, results, is_root=False)
        for child in children_of.get(wallet.id, [])
    ]

    node.total_invested = node.own_invested + sum(c.total_invested for c in node.children)
    node.total_value_live = node.own_value_live + sum(c.total_value_live for c in node.children)
    node.pl_unrealized = node.own_pl_unrealized + sum(c.pl_unrealized for c in node.children)
    node.pl_realized = node.own_pl_realized + sum(c.pl_realized for c in node.children)
    node.unpriced_positions += sum(c.unpriced_positions for c in node.children)

    if is_root:
        _allocate_root_cash(node)

    node.pl_total = node.pl_unrealized + node.pl_realized
    node.pl_unrealized_pct = _pct(node.pl_unrealized, node.total_invested)
    node.pl_realized_pct = _pct(node.pl_realized, node.total_invested)
    node.pl_total_pct = _pct(node.pl_total, node.total_invested)
    return node


def _allocate_root_cash(root: TreeNode) -> None:
    """Split root cash into reserve + allocatable budget, then hand it to children by target."""
    reserve_pct = root.cash_reserve_pct or 0.0
    root.cash_reserve = root.raw_cash * reserve_pct / 100
    allocatable = root.raw_cash - root.cash_reserve
    root.cash_balance = allocatable

    for child in root.children:
        if child.target_allocation is not None:
            allocated = allocatable * child.target_allocation / 100
            child.cash_balance = allocated
            child.cash_available = allocated - child.total_invested + child.pl_realized

    children_total = sum(c.total_invested + c.cash_balance for c in root.children)
    if children_total > 0:
        for child in root.children:
            child.actual_allocation = (child.total_invested + child.cash_balance) / children_total * 100


def build_tree(
    wallets: Sequence[WalletNode],
    results: Mapping[str, AccountResult],
) -> PortfolioTree:
    """
    Build the wallet tree over per-account results.

    A wallet whose parent is absent from `wallets` is treated as a root.

    Args:
        wallets: Tree shape and allocation settings
        results: account_id -> AccountResult (accounts missing here contribute zeros)

    Returns:
        PortfolioTree with root nodes and global KPIs
    """
    known = {w.id for w in wallets}
    children_of: Dict[str, List[WalletNode]] = {}
    roots = []

    for wallet in wallets:
        if wallet.parent_id is None or wallet.parent_id not in known:
            roots.append(wallet)
        else:
            children_of.setdefault(wallet.parent_id, []).append(wallet)

    tree = [_build_node(w, children_of, results, is_root=True) for w in roots]

    reached = set()
    stack = list(tree)
    while stack:
        node = stack.pop()
        reached.add(node.id)
        stack.extend(node.children)
    for wallet in wallets:
        if wallet.id not in reached:
            logger.warning(f"Wallet {wallet.id} is not reachable from any root (cyclic parent chain)")

    portfolio_cash = sum(r.cash_balance + r.cash_reserve for r in tree)
    portfolio_value = sum(r.total_value_live + r.cash_balance + r.cash_reserve for r in tree)
    for root in tree:
        root_cash = root.cash_balance + root.cash_reserve
        root.target_allocation = _pct(root_cash, portfolio_cash)
        root.actual_allocation = _pct(root.total_value_live + root_cash, portfolio_value)

    return PortfolioTree(roots=tree, kpis=portfolio_kpis(tree, results))


def portfolio_kpis(roots: Sequence[TreeNode], results: Mapping[str, AccountResult]) -> Dict[str, float]:
    """Global totals. Cash is the ledger cash of every account, not the allocated budgets."""
    invested = sum(r.total_invested for r in roots)
    pl_unrealized = sum(r.pl_unrealized for r in roots)
    pl_realized = sum(r.pl_realized for r in roots)
    pl_total = pl_unrealized + pl_realized

    return {
        "total_invested": invested,
        "cash_balance": sum(r.cash.balance for r in results.values()),
        "cash_reserve": sum(r.cash_reserve for r in roots),
        "total_value_live": sum(r.total_value_live for r in roots),
        "pl_unrealized": pl_unrealized,
        "pl_realized": pl_realized,
        "pl_total": pl_total,
        "pl_total_pct": _pct(pl_total, invested),
        "unpriced_positions": sum(r.unpriced_positions for r in roots),
    }
