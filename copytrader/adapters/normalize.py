"""
Position Normalization.

Maps venue-specific position payloads onto ``Position``. Supported shapes:

- Hyperliquid asset positions: ``{"position": {"coin", "szi", "entryPx",
  "leverage": {"value"}, "marginUsed"}}`` (side from the sign of ``szi``)
- CCXT-style: ``{"symbol", "side", "contracts", "entryPrice", "leverage",
  "collateral" | "initialMargin"}``
- Generic: ``{"symbol" | "coin" | "asset", "side" | "direction" | "isLong",
  "size" | "qty" | "quantity" | "amount", "entryPrice" | "entry_price" | ...}``

Entries with zero size or invalid numbers are dropped.
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional

from copytrader.core import get_logger
from copytrader.core.exceptions import ValidationError
from copytrader.sync.models.position import Position, PositionSide, to_decimal

logger = get_logger(__name__)

SYMBOL_FIELDS = ("symbol", "coin", "asset", "market", "pair")
SIDE_FIELDS = ("side", "direction", "positionSide")
SIZE_FIELDS = ("size", "contracts", "qty", "quantity", "amount", "positionAmt", "sz")
ENTRY_FIELDS = ("entryPrice", "entry_price", "entryPx", "avgPrice", "avgEntryPrice", "price")
MARGIN_FIELDS = ("margin", "marginUsed", "collateral", "initialMargin", "positionMargin")
STOP_LOSS_FIELDS = ("stopLoss", "stop_loss", "sl", "stopLossPrice")
TAKE_PROFIT_FIELDS = ("takeProfit", "take_profit", "tp", "takeProfitPrice")
OPENED_AT_FIELDS = ("openedAt", "opened_at", "timestamp", "openTime", "createdAt")
LIST_FIELDS = ("positions", "assetPositions", "items", "data", "result")


def _first(raw: Mapping[str, Any], fields: Iterable[str]) -> Any:
    for name in fields:
        value = raw.get(name)
        if value is not None and value != "":
            return value
    return None


def _leverage(value: Any) -> Any:
    # Hyperliquid nests leverage as {"type": "cross", "value": 5}
    if isinstance(value, Mapping):
        return value.get("value", 1)
    return value if value not in (None, "", 0, "0") else 1


def from_hyperliquid(asset_position: Mapping[str, Any]) -> Optional[Position]:
    """Convert a Hyperliquid ``assetPositions`` entry."""
    pos = asset_position.get("position", asset_position)
    signed_size = to_decimal(pos.get("szi", "0"))
    if signed_size == 0:
        return None

    return Position(
        symbol=pos["coin"],
        side=PositionSide.LONG if signed_size > 0 else PositionSide.SHORT,
        size=abs(signed_size),
        entry_price=pos["entryPx"],
        leverage=_leverage(pos.get("leverage")),
        margin=pos.get("marginUsed"),
    )


def from_generic(raw: Mapping[str, Any]) -> Optional[Position]:
    """Convert CCXT-style and generic dict payloads."""
    symbol = _first(raw, SYMBOL_FIELDS)
    if not symbol:
        raise ValidationError("Position has no symbol")

    size = to_decimal(_first(raw, SIZE_FIELDS) or "0")
    if size == 0:
        return None

    side_value = _first(raw, SIDE_FIELDS)
    if side_value is not None:
        side = PositionSide.parse(side_value)
    elif "isLong" in raw:
        side = PositionSide.LONG if raw["isLong"] else PositionSide.SHORT
    else:
        side = PositionSide.LONG if size > 0 else PositionSide.SHORT

    return Position(
        symbol=str(symbol),
        side=side,
        size=abs(size),
        entry_price=_first(raw, ENTRY_FIELDS),
        leverage=_leverage(raw.get("leverage")),
        margin=_first(raw, MARGIN_FIELDS),
        stop_loss=_first(raw, STOP_LOSS_FIELDS),
        take_profit=_first(raw, TAKE_PROFIT_FIELDS),
        opened_at=_first(raw, OPENED_AT_FIELDS),
    )


def normalize_position(raw: Any) -> Optional[Position]:
    """
    Convert one venue payload to a Position.

    Returns:
        Position, or None when the entry is flat (zero size)

    Raises:
        ValidationError: If the payload cannot be interpreted
    """
    if isinstance(raw, Position):
        return raw
    if not isinstance(raw, Mapping):
        raise ValidationError(f"Unsupported position payload: {type(raw).__name__}")

    if "szi" in raw or isinstance(raw.get("position"), Mapping):
        try:
            return from_hyperliquid(raw)
        except KeyError as e:
            raise ValidationError(f"Hyperliquid position missing field {e}") from e
    return from_generic(raw)


def normalize_positions(raw_positions: Iterable[Any]) -> List[Position]:
    """Convert a batch, dropping flat and malformed entries."""
    positions = []
    for raw in raw_positions:
        try:
            position = normalize_position(raw)
        except (ValidationError, TypeError, ValueError) as e:
            logger.debug(f"Dropping malformed position {raw!r}: {e}")
            continue
        if position is not None:
            positions.append(position)
    return positions


def normalize_response(response: Any) -> List[Any]:
    """
    Extract the list of raw positions from a venue response.

    Accepts a list, a mapping with a known list key (``positions``,
    ``assetPositions``, ``items``, ...), or a mapping keyed by symbol.
    """
    if response is None:
        return []
    if isinstance(response, list):
        return response
    if isinstance(response, Mapping):
        for name in LIST_FIELDS:
            value = response.get(name)
            if isinstance(value, list):
                return value
        values = list(response.values())
        if values and all(isinstance(v, Mapping) for v in values):
            return [_with_symbol(key, value) for key, value in response.items()]
        return []
    raise ValidationError(f"Unsupported positions response: {type(response).__name__}")


def _with_symbol(key: str, value: Mapping[str, Any]) -> Dict[str, Any]:
    entry = dict(value)
    if _first(entry, SYMBOL_FIELDS) is None:
        entry["symbol"] = key
    return entry
