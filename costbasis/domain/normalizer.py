# costbasis/domain/normalizer.py
"""
Raw event normalization.
Canonicalizes loosely typed event rows into typed Events; bad rows are skipped, never raised.
"""

import logging
import math
from dataclasses import replace
from datetime import datetime
from typing import Any, Iterable, List, Mapping, Optional, Tuple

import pytz

from costbasis.config import EngineConfig
from costbasis.domain.models import Action, Direction, Event

logger = logging.getLogger(__name__)

# Actions that move quantity without a trade price
PRICE_OPTIONAL_ACTIONS = (Action.DEPOSIT, Action.WITHDRAWAL, Action.AIRDROP)


class MalformedEventError(ValueError):
    """Raised for a raw event that cannot be normalized."""


class EventNormalizer:
    """Turn raw event mappings into Events."""

    TIMESTAMP_FORMATS = [
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
        "%Y-%m-%d %H:%M:%S%z",
        "%Y-%m-%d %H:%M:%S",
        "%Y-%m-%d, %H:%M:%S",
        "%Y-%m-%d",
    ]

    @staticmethod
    def normalize_action(raw_action: Any, raw_direction: Any) -> Action:
        """
        Resolve OPEN/CLOSE aliases against the declared direction.

        OPEN on a SHORT means SELL, CLOSE on a SHORT means BUY; LONG is the mirror.
        """
        action = str(raw_action or "").strip().upper()
        direction = EventNormalizer.normalize_direction(raw_direction)

        if action == "OPEN":
            return Action.SELL if direction == Direction.SHORT else Action.BUY
        if action == "CLOSE":
            return Action.BUY if direction == Direction.SHORT else Action.SELL

        try:
            return Action(action)
        except ValueError:
            raise MalformedEventError(f"Unknown action: {raw_action!r}")

    @staticmethod
    def normalize_direction(raw_direction: Any) -> Direction:
        return Direction.SHORT if str(raw_direction or "LONG").strip().upper() == "SHORT" else Direction.LONG

    @staticmethod
    def parse_timestamp(value: Any, timezone: str = "UTC") -> datetime:
        """
        Parse a timestamp to an aware UTC datetime.

        Naive values are taken to be in `timezone`.
        """
        if isinstance(value, datetime):
            dt = value
        else:
            ts_str = str(value or "").strip()
            if ts_str.endswith("Z"):
                ts_str = ts_str[:-1] + "+0000"
            dt = None
            for fmt in EventNormalizer.TIMESTAMP_FORMATS:
                try:
                    dt = datetime.strptime(ts_str, fmt)
                    break
                except ValueError:
                    continue

            if dt is None:
                raise MalformedEventError(f"Could not parse timestamp: {value!r}")

        try:
            if dt.tzinfo is None:
                dt = pytz.timezone(timezone).localize(dt)
            return dt.astimezone(pytz.UTC)
        except (OverflowError, ValueError) as e:
            # Out-of-range sentinels such as 0001-01-01 with a positive offset
            raise MalformedEventError(f"Timestamp out of range: {value!r} ({e})")

    @staticmethod
    def _number(raw: Mapping[str, Any], field_name: str, required: bool = True) -> Optional[float]:
        value = raw.get(field_name)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                raise MalformedEventError(f"Missing {field_name}")
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise MalformedEventError(f"Non-numeric {field_name}: {value!r}")
        if not math.isfinite(number):
            raise MalformedEventError(f"Non-finite {field_name}: {value!r}")
        if number < 0:
            raise MalformedEventError(f"Negative {field_name}: {value!r}")
        return number

    @staticmethod
    def _code(value: Any, default: Optional[str] = None) -> Optional[str]:
        code = str(value or "").strip().upper()
        return code or default

    @staticmethod
    def normalize(raw: Mapping[str, Any], config: EngineConfig) -> Tuple[Event, List[str]]:
        """
        Normalize one raw event.

        Args:
            raw: Loosely typed event fields (action, ticker/instrument, quantity, price, ...)
            config: Engine configuration (currency defaults, timezone)

        Returns:
            (event, warnings) where warnings are non-fatal coercions

        Raises:
            MalformedEventError: If the row must be skipped
        """
        warnings: List[str] = []
        event_id = raw.get("id") or raw.get("event_id")
        event_id = str(event_id) if event_id is not None else None

        direction = EventNormalizer.normalize_direction(raw.get("direction"))
        action = EventNormalizer.normalize_action(raw.get("action"), raw.get("direction"))

        instrument = EventNormalizer._code(raw.get("instrument") or raw.get("ticker"))
        if not instrument:
            raise MalformedEventError("Missing instrument")

        timestamp = EventNormalizer.parse_timestamp(
            raw.get("timestamp") or raw.get("date"), config.timezone
        )

        quantity = EventNormalizer._number(raw, "quantity")
        price_key = "unit_price" if raw.get("unit_price") is not None else "price"
        unit_price = EventNormalizer._number(
            raw, price_key, required=action not in PRICE_OPTIONAL_ACTIONS
        )
        if unit_price is None:
            unit_price = 0.0

        fee_key = "fee_amount" if raw.get("fee_amount") is not None else "fees"
        try:
            fee_amount = EventNormalizer._number(raw, fee_key, required=False) or 0.0
        except MalformedEventError as e:
            warnings.append(f"Fee ignored for event {event_id}: {e}")
            fee_amount = 0.0

        leverage = None
        if raw.get("leverage") is not None:
            try:
                leverage = EventNormalizer._number(raw, "leverage", required=False)
            except MalformedEventError as e:
                warnings.append(f"Leverage ignored for event {event_id}: {e}")

        event = Event(
            timestamp=timestamp,
            action=action,
            instrument=instrument,
            quantity=quantity,
            unit_price=unit_price,
            direction=direction,
            price_currency=EventNormalizer._code(
                raw.get("price_currency") or raw.get("price_valuation_currency"),
                config.default_price_currency,
            ),
            fee_amount=fee_amount,
            fee_currency=EventNormalizer._code(raw.get("fee_currency") or raw.get("fees_currency"), config.default_fee_currency),
            leverage=leverage,
            from_instrument=EventNormalizer._code(
                raw.get("from_instrument") or raw.get("from_ticker") or raw.get("transfer_from_instrument")
            ),
            to_instrument=EventNormalizer._code(
                raw.get("to_instrument") or raw.get("to_ticker") or raw.get("transfer_to_instrument")
            ),
            event_id=event_id,
            account_id=str(raw["account_id"]) if raw.get("account_id") is not None else (
                str(raw["wallet_id"]) if raw.get("wallet_id") is not None else None
            ),
            exchange=EventNormalizer._code(raw.get("exchange")),
            notes=raw.get("notes"),
        )
        return event, warnings

    @staticmethod
    def normalize_batch(
        raw_events: Iterable[Any],
        config: EngineConfig,
    ) -> Tuple[List[Event], List[str]]:
        """
        Normalize a batch, skipping malformed rows.

        Already-typed Events pass through with their timestamp coerced to aware UTC.

        Returns:
            (events, warnings)
        """
        events: List[Event] = []
        warnings: List[str] = []

        for index, raw in enumerate(raw_events):
            try:
                if isinstance(raw, Event):
                    event = replace(
                        raw, timestamp=EventNormalizer.parse_timestamp(raw.timestamp, config.timezone)
                    )
                    event_warnings = []
                else:
                    event, event_warnings = EventNormalizer.normalize(raw, config)
            except (MalformedEventError, AttributeError) as e:
                # Log and skip malformed records
                ref = raw.get("id", index) if isinstance(raw, Mapping) else index
                message = f"Skipped event {ref}: {e}"
                logger.warning(message)
                warnings.append(message)
                continue

            warnings.extend(event_warnings)
            events.append(event)

        return events, warnings
