"""Test doubles for the chain client, webhook sender and sleep."""
from datetime import datetime, timezone
from typing import Optional

from application.dtos.chain import ChainConfig, TransactionStatus
from application.dtos.webhooks import WebhookResponse


MERCHANT_WALLET = "0x" + "a" * 40
PAYER_WALLET = "0x" + "b" * 40


def tx_hash(n: int) -> str:
    return "0x" + f"{n:064x}"


class FakeChainClient:
    """Scripted chain: receipts per hash (a value, or an exception to raise)."""

    def __init__(self) -> None:
        self.receipts: dict = {}
        self.block_times: dict[int, datetime] = {}
        self.receipt_calls: list[str] = []

    def confirm(self, hash_: str, block_number: int = 100, at: Optional[datetime] = None) -> None:
        self.receipts[hash_] = TransactionStatus(confirmed=True, block_number=block_number, block_hash="0x" + "c" * 64)
        self.block_times[block_number] = at or datetime.now(timezone.utc)

    def revert(self, hash_: str) -> None:
        self.receipts[hash_] = TransactionStatus(failed=True, block_number=101, error="transaction reverted")

    def break_with(self, hash_: str, exc: Exception) -> None:
        self.receipts[hash_] = exc

    async def get_transaction_receipt(self, tx_hash: str) -> TransactionStatus:
        self.receipt_calls.append(tx_hash)
        outcome = self.receipts.get(tx_hash, TransactionStatus())
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    async def get_transaction(self, tx_hash: str):
        return None

    async def get_block_timestamp(self, block_number: int):
        return self.block_times.get(block_number)

    def explorer_link(self, tx_hash: str) -> str:
        return f"https://explorer.test/tx/{tx_hash}"

    def chain_config(self) -> ChainConfig:
        return ChainConfig(chain_id=1243, rpc_url="https://rpc.test", explorer_url="https://explorer.test/tx")


class RecordingSender:
    """Records every POST; responses are scripted per URL, default 200."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, bytes, dict]] = []
        self.scripts: dict[str, list[WebhookResponse]] = {}

    def script(self, url: str, *status_codes: int, body: str = "") -> None:
        self.scripts[url] = [WebhookResponse(status_code=c, body=body) for c in status_codes]

    async def send(self, url: str, body: bytes, headers: dict) -> WebhookResponse:
        self.calls.append((url, body, dict(headers)))
        script = self.scripts.get(url)
        if script:
            return script.pop(0) if len(script) > 1 else script[0]
        return WebhookResponse(status_code=200, body="ok")


class NoSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)

