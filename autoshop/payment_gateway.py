"""
Client for the SePay transaction ledger and payment display helpers
"""
from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus

import requests

from . import config

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transaction:
    memo: str
    amount: int


def _parse_amount(value: Any) -> int:
    # SePay sends amounts as strings like "100000.00"
    if value is None or value == "":
        return 0
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        return 0


def parse_transaction(raw: Dict[str, Any]) -> Transaction:
    memo = raw.get("transaction_content") or raw.get("content") or raw.get("description") or ""
    amount = raw.get("amount_in") or raw.get("amount") or 0
    return Transaction(memo=str(memo), amount=_parse_amount(amount))


def transaction_matches(tx: Transaction, token: str, min_amount: int) -> bool:
    """Memo contains the token (case-insensitive) and the amount covers the order.

    Overpayment counts as a match; the excess is not reconciled.
    """
    if not token:
        return False
    return token.upper() in tx.memo.upper() and tx.amount >= min_amount


class SePayClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> None:
        self.api_key = config.SEPAY_API_KEY if api_key is None else api_key
        self.api_url = api_url or config.SEPAY_API_URL
        self.timeout = timeout or config.SEPAY_TIMEOUT_SECONDS

    def list_recent_transactions(self) -> List[Transaction]:
        """Fetch the latest transactions; any failure yields an empty list."""
        try:
            response = requests.get(
                self.api_url,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except requests.exceptions.RequestException as e:
            logger.warning("SePay request failed: %s", e)
            return []
        except ValueError as e:
            logger.warning("SePay returned a non-JSON body: %s", e)
            return []

        raw_transactions = data.get("transactions") if isinstance(data, dict) else None
        if not isinstance(raw_transactions, list):
            logger.warning("SePay response carried no transaction list")
            return []

        logger.debug("SePay returned %d transactions", len(raw_transactions))
        return [parse_transaction(t) for t in raw_transactions if isinstance(t, dict)]

    def find_match(self, token: str, min_amount: int) -> bool:
        return any(transaction_matches(tx, token, min_amount) for tx in self.list_recent_transactions())


def build_qr_url(amount: int, memo: str) -> str:
    return (
        f"{config.QR_IMAGE_BASE_URL}/{config.BANK_BIN}-{config.BANK_ACCOUNT}-compact2.png"
        f"?amount={int(amount)}&addInfo={quote_plus(memo)}"
    )


def build_payment_instructions(amount: int, memo: str, expires_at: dt.datetime) -> Dict[str, Any]:
    """Data the chat bridge needs to show a transfer request."""
    return {
        "bank_name": config.BANK_NAME,
        "bank_account": config.BANK_ACCOUNT,
        "bank_owner": config.BANK_OWNER,
        "memo": memo,
        "amount": int(amount),
        "qr_url": build_qr_url(amount, memo),
        "expires_at": expires_at.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z"),
    }
