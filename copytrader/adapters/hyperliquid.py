"""
Hyperliquid Info API client.

Read-only position source over Hyperliquid's public ``/info`` endpoint:
clearinghouse state for positions and account value, user fills for open
times and trade detection, and open trigger orders for stop loss / take
profit prices.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

import aiohttp

from copytrader.core import get_logger
from copytrader.core.exceptions import FetchError
from copytrader.sync.models import AccountData, FetchResult, Position, PositionSide

from .normalize import normalize_positions

logger = get_logger(__name__)

MAINNET_URL = "https://api.hyperliquid.xyz"
TESTNET_URL = "https://api.hyperliquid-testnet.xyz"

# Trigger orders within 1% of the position size are treated as its SL/TP
TRIGGER_SIZE_TOLERANCE = Decimal("0.01")


def latest_fill_time(fills: List[Dict[str, Any]]) -> Optional[int]:
    """Most recent fill time in epoch milliseconds."""
    times = [int(f["time"]) for f in fills if f.get("time") is not None]
    return max(times) if times else None


def find_opened_at(
    fills: List[Dict[str, Any]],
    coin: str,
    side: PositionSide,
) -> Optional[datetime]:
    """
    When the current position on ``coin`` was opened.

    Replays the coin's fills oldest first, tracking the signed position from
    each fill's ``startPosition`` and ``sz``. The open time is the fill that
    took the position from flat (or the other side) to ``side``; add-ons do
    not move it. A position already open before the first available fill
    gets that fill's time.
    """
    sign = 1 if side == PositionSide.LONG else -1
    coin_fills = sorted(
        (f for f in fills if f.get("coin") == coin and f.get("time") is not None),
        key=lambda f: int(f["time"]),
    )

    position = Decimal("0")
    opened: Optional[int] = None
    for fill in coin_fills:
        if fill.get("startPosition") is not None:
            position = Decimal(str(fill["startPosition"]))
        if opened is None and position * sign > 0:
            opened = int(fill["time"])

        size = Decimal(str(fill.get("sz") or "0"))
        before = position
        position += size if fill.get("side") == "B" else -size

        if position * sign <= 0:
            opened = None
        elif before * sign <= 0:
            opened = int(fill["time"])

    if opened is None:
        return None
    return datetime.fromtimestamp(opened / 1000, tz=timezone.utc)



def find_trigger_prices(
    orders: List[Dict[str, Any]],
    position: Position,
) -> tuple[Optional[Decimal], Optional[Decimal]]:
    """
    Derive stop loss and take profit from open trigger orders.

    Only reduce-side trigger orders on the same coin whose size matches the
    position are considered. For longs a trigger below entry is the stop and
    above entry the target; shorts are mirrored.

    Returns:
        (stop_loss, take_profit)
    """
    closing_side = "A" if position.side == PositionSide.LONG else "B"
    candidates = []
    for order in orders:
        if order.get("coin") != position.symbol or not order.get("isTrigger"):
            continue
        if order.get("side") != closing_side:
            continue
        order_size = Decimal(str(order.get("origSz") or order.get("sz") or "0"))
        if order_size == 0:
            continue
        if abs(order_size - position.size) / position.size > TRIGGER_SIZE_TOLERANCE:
            continue
        candidates.append(order)

    # Newest orders first
    candidates.sort(key=lambda o: o.get("oid") or 0, reverse=True)

    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    entry = position.entry_price

    for order in candidates:
        trigger = Decimal(str(order["triggerPx"]))
        condition = str(order.get("triggerCondition") or "").lower()
        below = "below" in condition
        above = "above" in condition

        if position.side == PositionSide.LONG:
            if below and trigger < entry and stop_loss is None:
                stop_loss = trigger
            elif above and trigger > entry and take_profit is None:
                take_profit = trigger
        else:
            if above and trigger > entry and stop_loss is None:
                stop_loss = trigger
            elif below and trigger < entry and take_profit is None:
                take_profit = trigger

        if stop_loss is not None and take_profit is not None:
            break

    return stop_loss, take_profit


class HyperliquidInfoAPI:
    """
    Hyperliquid public info client implementing the position source interface.

    Example:
        >>> async with HyperliquidInfoAPI() as api:
        ...     result = await api.fetch_positions("0xabc...")
        ...     for position in result.positions:
        ...         print(position.symbol, position.side, position.size)
    """

    def __init__(
        self,
        testnet: bool = False,
        base_url: Optional[str] = None,
        timeout: int = 15,
        max_retries: int = 3,
        retry_delay: float = 1.0,
    ):
        """
        Initialize HyperliquidInfoAPI.

        Args:
            testnet: Use the testnet URL if True
            base_url: Override the API URL
            timeout: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            retry_delay: Initial delay between retries (exponential backoff)
        """
        self._base_url = base_url or (TESTNET_URL if testnet else MAINNET_URL)
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session: Optional[aiohttp.ClientSession] = None
        self._max_retries = max_retries
        self._retry_delay = retry_delay

    # =========================================================================
    # Lifecycle Management
    # =========================================================================

    async def connect(self) -> None:
        """Create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            logger.debug(f"Connected to {self._base_url}")

    async def close(self) -> None:
        """Close HTTP session."""
        if self._session and not self._session.closed:
            await self._session.close()
            self._session = None
            logger.debug("Session closed")

    async def __aenter__(self) -> "HyperliquidInfoAPI":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # =========================================================================
    # Internal Request Methods
    # =========================================================================

    async def _post_info(self, payload: Dict[str, Any]) -> Any:
        """
        POST to /info with retry on transient network errors.

        Raises:
            FetchError: Request failed after retries or returned an error
        """
        if self._session is None or self._session.closed:
            await self.connect()

        url = f"{self._base_url}/info"
        request_type = payload.get("type")

        for attempt in range(self._max_retries + 1):
            try:
                async with self._session.post(url, json=payload) as resp:
                    return await self._handle_response(resp, request_type)
            except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                if attempt < self._max_retries:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"Network error on {request_type}: {e}. "
                        f"Retrying in {delay:.1f}s (attempt {attempt + 1}/{self._max_retries})"
                    )
                    await asyncio.sleep(delay)
                    continue
                raise FetchError(
                    f"{request_type} failed after {self._max_retries + 1} attempts: {e}",
                    address=payload.get("user"),
                ) from e

        raise FetchError(f"{request_type} failed", address=payload.get("user"))

    async def _handle_response(self, response: aiohttp.ClientResponse, request_type: Any) -> Any:
        status = response.status
        if status == 429:
            # Surfaced as a network error so the retry loop backs off
            raise aiohttp.ClientResponseError(
                response.request_info,
                response.history,
                status=status,
                message="rate limited",
            )
        if status >= 400:
            text = await response.text()
            raise FetchError(f"HTTP {status} on {request_type}: {text}", code=str(status))
        return await response.json(content_type=None)

    # =========================================================================
    # Info Endpoints
    # =========================================================================

    async def get_clearinghouse_state(self, address: str) -> Dict[str, Any]:
        data = await self._post_info({"type": "clearinghouseState", "user": address})
        if not isinstance(data, dict):
            raise FetchError("Unexpected clearinghouseState response", address=address)
        return data

    async def get_user_fills(self, address: str) -> List[Dict[str, Any]]:
        data = await self._post_info({"type": "userFills", "user": address})
        return data if isinstance(data, list) else []

    async def get_open_orders(self, address: str) -> List[Dict[str, Any]]:
        data = await self._post_info({"type": "frontendOpenOrders", "user": address})
        return data if isinstance(data, list) else []

    async def _optional(self, coro: Any, what: str, address: str) -> List[Dict[str, Any]]:
        # Fills and orders only enrich positions; a failure there is not fatal
        try:
            return await coro
        except FetchError as e:
            logger.warning(f"Failed to fetch {what} for {address}: {e}")
            return []

    # =========================================================================
    # Position Source Interface
    # =========================================================================

    async def fetch_positions(self, address: str, platform: Optional[str] = None) -> FetchResult:
        """
        Fetch a trader's open positions enriched with open time and SL/TP.

        Raises:
            FetchError: If the clearinghouse state cannot be fetched
        """
        state, orders, fills = await asyncio.gather(
            self.get_clearinghouse_state(address),
            self._optional(self.get_open_orders(address), "orders", address),
            self._optional(self.get_user_fills(address), "fills", address),
        )

        positions = []
        for position in normalize_positions(state.get("assetPositions", [])):
            stop_loss, take_profit = find_trigger_prices(orders, position)
            position.stop_loss = stop_loss
            position.take_profit = take_profit
            position.opened_at = find_opened_at(fills, position.symbol, position.side)
            positions.append(position)

        summary = state.get("marginSummary") or {}
        account_data = AccountData(
            account_value=summary.get("accountValue", "0"),
            withdrawable=state.get("withdrawable", "0"),
            total_margin_used=summary.get("totalMarginUsed", "0"),
        )

        logger.debug(f"Fetched {len(positions)} positions for {address}")
        return FetchResult(positions=positions, account_data=account_data)

    async def fetch_last_trade_timestamp(self, address: str) -> Optional[int]:
        """Most recent fill time for the address (epoch ms), None if it never traded."""
        fills = await self.get_user_fills(address)
        return latest_fill_time(fills)
