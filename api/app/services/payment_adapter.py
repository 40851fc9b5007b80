"""External payment confirmation.

The recharge workflow only needs to know whether a given order has been paid.
`TronGridAdapter` answers that for USDT (TRC20) orders by scanning the receive
wallet's recent transfers on TronGrid.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Protocol

import httpx

from app.config import settings
from app.errors import PaymentVerificationFailed
from app.models.requests import RechargeRequest

logger = logging.getLogger(__name__)

USDT_DECIMALS = 6


@dataclass
class PaymentCheck:
    matched: bool
    proof: dict = field(default_factory=dict)


class PaymentConfirmationAdapter(Protocol):
    async def check_payment_status(self, order: RechargeRequest) -> PaymentCheck:
        ...


def _to_millis(value: datetime) -> int:
    # Stored datetimes are naive UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


class TronGridAdapter:
    """Matches USDT orders against TRC20 transfers into the receive wallet."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        wallet: str | None = None,
        contract: str | None = None,
        base_url: str | None = None,
    ):
        self.client = client
        self.wallet = wallet or settings.usdt_receive_wallet
        self.contract = contract or settings.usdt_contract_address
        self.base_url = (base_url or settings.trongrid_api_url).rstrip('/')

    async def fetch_transfers(self) -> list[dict]:
        url = f'{self.base_url}/v1/accounts/{self.wallet}/transactions/trc20'
        try:
            response = await self.client.get(
                url,
                params={'limit': 50},
                timeout=settings.trongrid_timeout_seconds,
            )
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f'TronGrid lookup failed: {e}')
            raise PaymentVerificationFailed('Unable to verify payment at this time') from e
        return payload.get('data') or []

    def matches(self, tx: dict, order: RechargeRequest) -> bool:
        expected_value = round(order.amount * 10 ** USDT_DECIMALS)
        token = tx.get('token_info') or {}
        try:
            value = int(tx.get('value', '0'))
            block_ts = int(tx.get('block_timestamp', 0))
        except (TypeError, ValueError):
            return False

        window_start = _to_millis(order.requested_at)
        window_end = _to_millis(order.expires_at) if order.expires_at else None
        return (
            tx.get('to') == self.wallet
            and token.get('address') == self.contract
            and value == expected_value
            and block_ts >= window_start
            and (window_end is None or block_ts <= window_end)
        )

    async def check_payment_status(self, order: RechargeRequest) -> PaymentCheck:
        for tx in await self.fetch_transfers():
            if self.matches(tx, order):
                logger.info(f'USDT payment found for {order.request_id}: {tx.get("transaction_id")}')
                return PaymentCheck(
                    matched=True,
                    proof={
                        'transaction_hash': tx.get('transaction_id'),
                        'amount': order.amount,
                        'status': 'paid',
                    },
                )
        return PaymentCheck(matched=False)
