"""Yahoo Finance chart API client — daily price history and last price.

Implements ``PriceHistoryProvider`` and ``CurrentPriceProvider``.  Every
provider failure (HTTP error, exhausted retries, missing chart payload)
surfaces as ``Unavailable``.
"""

import logging
import math

import httpx

from turtledesk.config import Config
from turtledesk.errors import Unavailable
from turtledesk.market.http import request_with_retry
from turtledesk.market.models import PricePoint, parse_date

logger = logging.getLogger("turtledesk")

_BASE_URL = "https://query1.finance.yahoo.com"
_HEADERS = {"User-Agent": "Mozilla/5.0 (compatible; turtledesk/0.1)"}


def _range_for(lookback_days: int) -> str:
    """Pick the smallest chart range covering *lookback_days* sessions."""
    if lookback_days <= 20:
        return "1mo"
    if lookback_days <= 60:
        return "3mo"
    if lookback_days <= 120:
        return "6mo"
    if lookback_days <= 250:
        return "1y"
    return "2y"


class YahooPriceClient:
    """Async client for the Yahoo Finance v8 chart endpoint."""

    def __init__(self, config: Config, base_url: str = _BASE_URL) -> None:
        self._suffix = config.yahoo_symbol_suffix
        self._timeout = config.request_timeout_seconds
        self._base_url = base_url

    def to_yahoo_symbol(self, instrument_id: str) -> str:
        """``005930`` → ``005930.KS`` (suffix from config)."""
        if "." in instrument_id:
            return instrument_id
        return f"{instrument_id}{self._suffix}"

    async def _fetch_chart(self, instrument_id: str, params: dict) -> dict:
        symbol = self.to_yahoo_symbol(instrument_id)
        url = f"{self._base_url}/v8/finance/chart/{symbol}"
        try:
            resp = await request_with_retry(
                "get", url, headers=_HEADERS, timeout=self._timeout, params=params,
            )
        except httpx.HTTPError as exc:
            raise Unavailable(f"{instrument_id}: chart request failed ({exc})") from exc

        try:
            payload = resp.json()
        except ValueError as exc:
            raise Unavailable(f"{instrument_id}: chart response is not JSON") from exc
        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            raise Unavailable(f"{instrument_id}: malformed chart response")
        results = chart.get("result") or []
        if not results:
            raise Unavailable(f"{instrument_id}: empty chart response")
        if not isinstance(results, list) or not isinstance(results[0], dict):
            raise Unavailable(f"{instrument_id}: malformed chart result")
        return results[0]

    # ── Price history ────────────────────────────────────────────────────

    async def get_history(self, instrument_id: str, lookback_days: int) -> list[PricePoint]:
        """Fetch daily bars for *instrument_id*, most-recent-first.

        Rows where Yahoo reports ``null`` prices (halts, holidays) are
        dropped; the remaining rows are validated into ``PricePoint``.
        At most *lookback_days* bars are returned.
        """
        result = await self._fetch_chart(
            instrument_id,
            {"range": _range_for(lookback_days), "interval": "1d", "includePrePost": "false"},
        )
        timestamps = result.get("timestamp") or []
        indicators = result.get("indicators") or {}
        quote_list = indicators.get("quote") if isinstance(indicators, dict) else None
        quotes = quote_list[0] if isinstance(quote_list, list) and quote_list else {}
        if not isinstance(timestamps, list) or not isinstance(quotes, dict):
            raise Unavailable(f"{instrument_id}: malformed quote block in chart response")

        points: list[PricePoint] = []
        for idx, ts in enumerate(timestamps):
            row = {
                "date": parse_date(ts),
                "open": _at(quotes.get("open"), idx),
                "high": _at(quotes.get("high"), idx),
                "low": _at(quotes.get("low"), idx),
                "close": _at(quotes.get("close"), idx),
                "volume": _at(quotes.get("volume"), idx),
            }
            if any(row[k] is None for k in ("open", "high", "low", "close")):
                continue
            points.append(PricePoint.from_raw(row))

        points.sort(key=lambda p: p.date, reverse=True)
        logger.debug("%s: %d daily bars from Yahoo", instrument_id, len(points))
        return points[:lookback_days]

    # ── Current price ────────────────────────────────────────────────────

    async def get_current_price(self, instrument_id: str) -> float:
        """Return ``regularMarketPrice`` from the chart metadata."""
        result = await self._fetch_chart(instrument_id, {"range": "1d", "interval": "1d"})
        meta = result.get("meta")
        price = meta.get("regularMarketPrice") if isinstance(meta, dict) else None
        try:
            price = float(price) if price is not None else None
        except (TypeError, ValueError):
            price = None
        if price is None or not math.isfinite(price) or price <= 0:
            raise Unavailable(f"{instrument_id}: no market price in chart metadata")
        return price


def _at(values, idx: int):
    if not isinstance(values, list) or idx >= len(values):
        return None
    return values[idx]
