# costbasis/domain/transfers.py
"""
Transfer-cost pool.
Lets cost basis withdrawn from one account follow the asset into a later deposit.
"""

import copy
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict, List

from costbasis.config import DEFAULT_EPSILON


@dataclass
class TransferFragment:
    quantity: float
    notional_cost: float
    margin_cost: float


@dataclass
class TransferMatch:
    """Cost inherited by a deposit, plus the quantity with no known origin."""
    quantity: float = 0.0
    notional_cost: float = 0.0
    margin_cost: float = 0.0
    unmatched: float = 0.0


class TransferCostPool:
    """FIFO queue of withdrawn cost fragments per instrument."""

    def __init__(self, epsilon: float = DEFAULT_EPSILON):
        self.epsilon = epsilon
        self._queues: Dict[str, Deque[TransferFragment]] = defaultdict(deque)

    def enqueue(self, instrument: str, quantity: float, notional_cost: float, margin_cost: float) -> None:
        if quantity <= self.epsilon:
            return
        self._queues[instrument.upper()].append(
            TransferFragment(quantity=quantity, notional_cost=notional_cost, margin_cost=margin_cost)
        )

    def consume(self, instrument: str, quantity: float) -> TransferMatch:
        """
        Pop fragments from the queue head until `quantity` is matched.

        A fragment larger than what is left is split proportionally.
        """
        key = instrument.upper()
        queue = self._queues.get(key)
        match = TransferMatch()
        remaining = max(0.0, quantity)

        while queue and remaining > self.epsilon:
            head = queue[0]
            take = min(remaining, head.quantity)
            ratio = take / head.quantity if head.quantity > 0 else 0.0
            notional = head.notional_cost * ratio
            margin = head.margin_cost * ratio

            match.quantity += take
            match.notional_cost += notional
            match.margin_cost += margin

            head.quantity -= take
            head.notional_cost -= notional
            head.margin_cost -= margin
            remaining -= take

            if head.quantity <= self.epsilon:
                queue.popleft()

        if queue is not None and not queue:
            del self._queues[key]

        match.unmatched = remaining if remaining > self.epsilon else 0.0
        return match

    def pending(self, instrument: str) -> float:
        """Withdrawn quantity still waiting for a deposit."""
        return sum(f.quantity for f in self._queues.get(instrument.upper(), ()))

    def instruments(self) -> List[str]:
        return sorted(k for k, q in self._queues.items() if q)

    def copy(self) -> "TransferCostPool":
        clone = TransferCostPool(self.epsilon)
        for key, queue in self._queues.items():
            clone._queues[key] = deque(copy.copy(f) for f in queue)
        return clone

    def __len__(self) -> int:
        return sum(len(q) for q in self._queues.values())
