"""Kiwoom REST API async client.

Read-only account access: OAuth token, account evaluation (kt00018) and
the latest daily quote (ka10086).  Implements ``BrokerAccount`` and
``CurrentPriceProvider``; no order placement.
"""

import asyncio
import logging
from datetime import date
from typing import Optional

import httpx

from turtledesk.config import Config
from turtledesk.errors import Unavailable
from turtledesk.market.http import request_with_retry
from turtledesk.market.models import AccountSummary, BrokerPosition, _number

logger = logging.getLogger("turtledesk")


def _unsigned(raw: dict, key: str, source: str) -> float:
    """Kiwoom prefixes prices with +/- to mark the day's direction."""
    return abs(_number(raw, key, source))


class KiwoomClient:
    """Async client wrapping the Kiwoom REST API."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._base_url = config.kiwoom_base_url
        self._timeout = config.request_timeout_seconds
        self._token: Optional[str] = None
        self._token_lock = asyncio.Lock()

    # ── Auth ─────────────────────────────────────────────────────────────

    async def _get_token(self) -> str:
        async with self._token_lock:
            if self._token is not None:
                return self._token

            url = f"{self._base_url}/oauth2/token"
            body = {
                "grant_type": "client_credentials",
                "appkey": self._config.kiwoom_app_key,
                "secretkey": self._config.kiwoom_secret_key,
            }
            try:
                resp = await request_with_retry(
                    "post", url,
                    headers={"Content-Type": "application/json;charset=UTF-8"},
                    timeout=self._timeout,
                    json=body,
                )
            except httpx.HTTPError as exc:
                raise Unavailable(f"Kiwoom token request failed ({exc})") from exc

            token = resp.json().get("token")
            if not token:
                raise Unavailable(
                    f"Kiwoom token request returned no token: {resp.json().get('return_msg')}"
                )
            logger.info("Kiwoom token issued (expires %s)", resp.json().get("expires_dt"))
            self._token = token
            return token

    async def _post(self, path: str, api_id: str, body: dict) -> dict:
        """POST a TR request and return the payload; ``return_code`` must be 0."""
        token = await self._get_token()
        headers = {
            "Content-Type": "application/json;charset=UTF-8",
            "authorization": f"Bearer {token}",
            "cont-yn": "N",
            "next-key": "",
            "api-id": api_id,
        }
        try:
            resp = await request_with_retry(
                "post", f"{self._base_url}{path}",
                headers=headers, timeout=self._timeout, json=body,
            )
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code == 401:
                # Force a fresh token on the next call
                self._token = None
            raise Unavailable(f"Kiwoom {api_id} failed ({exc})") from exc
        except httpx.HTTPError as exc:
            raise Unavailable(f"Kiwoom {api_id} failed ({exc})") from exc

        data = resp.json()
        if data.get("return_code") != 0:
            raise Unavailable(f"Kiwoom {api_id} error: {data.get('return_msg', 'unknown')}")
        return data

    # ── Account ──────────────────────────────────────────────────────────

    async def _account_evaluation(self) -> dict:
        return await self._post(
            "/api/dostk/acnt", "kt00018", {"qry_tp": "1", "dmst_stex_tp": "KRX"},
        )

    async def get_account_summary(self) -> AccountSummary:
        """Estimated deposit assets, evaluated stock value, and cash."""
        data = await self._account_evaluation()
        total = _number(data, "prsm_dpst_aset_amt", "kt00018")
        stock_value = _number(data, "tot_evlt_amt", "kt00018")
        return AccountSummary(
            total_equity=total,
            cash=total - stock_value,
            stock_value=stock_value,
        )

    async def get_positions(self) -> list[BrokerPosition]:
        """Holdings with a positive remaining quantity."""
        data = await self._account_evaluation()
        positions: list[BrokerPosition] = []
        for item in data.get("acnt_evlt_remn_indv_tot") or []:
            code = str(item.get("stk_cd") or "").strip()
            source = f"kt00018 {code}"
            quantity = _number(item, "rmnd_qty", source)
            if quantity <= 0:
                continue
            positions.append(
                BrokerPosition.from_raw({
                    "instrument_id": code,
                    "name": str(item.get("stk_nm") or "").strip(),
                    "quantity": quantity,
                    "avg_price": _unsigned(item, "pur_pric", source),
                    "current_price": _unsigned(item, "cur_prc", source),
                    "unrealized_pl": item.get("evltv_prft"),
                })
            )
        logger.debug("Kiwoom account holds %d positions", len(positions))
        return positions

    # ── Quotes ───────────────────────────────────────────────────────────

    async def get_current_price(self, instrument_id: str) -> float:
        """Latest close from the daily quote list (ka10086)."""
        body = {
            "stk_cd": instrument_id,
            "qry_dt": date.today().strftime("%Y%m%d"),
            "indc_tp": "0",
        }
        data = await self._post("/api/dostk/mrkcond", "ka10086", body)
        rows = data.get("daly_stkpc") or []
        if not rows:
            raise Unavailable(f"{instrument_id}: no daily quote from Kiwoom")
        price = _unsigned(rows[0], "close_pric", f"ka10086 {instrument_id}")
        if price <= 0:
            raise Unavailable(f"{instrument_id}: non-positive Kiwoom quote {price}")
        return price
