"""
Payment Network Client Module

REST client for the external payment network that settles beneficiary
transfers. The ledger debits locally first; the network's answer (or its
silence) decides whether the transfer settles or is reversed.
"""

import httpx
import threading
import time
from dataclasses import dataclass, asdict
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from .errors import PaymentNetworkError, PaymentNetworkTimeoutError
from .logging_config import get_logger

logger = get_logger("retail_ledger.payment_network")


class SettlementStatus(Enum):
    """Network answer for one payment instruction"""
    SETTLED = "settled"
    FAILED = "failed"
    PENDING = "pending"


@dataclass
class PaymentInstruction:
    """What the network needs to pay an external beneficiary"""
    transfer_id: str
    account_number: str
    bank_name: str
    branch_code: str
    amount: Decimal
    currency: str
    reference: str

    def to_payload(self) -> dict:
        payload = asdict(self)
        payload["amount"] = str(self.amount)
        return payload


@dataclass
class SettlementResult:
    """Result returned by the payment network"""
    status: SettlementStatus
    network_reference: Optional[str] = None
    reason: Optional[str] = None
    latency_ms: float = 0.0


class PaymentNetworkClient:
    """REST client for the external payment network"""

    def __init__(
        self,
        base_url: str = "http://localhost:8081",
        timeout: float = 5.0,
        api_key: Optional[str] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.api_key = api_key
        self._client = httpx.Client(timeout=timeout)

    def _headers(self, idempotency_key: str) -> dict:
        headers = {"Idempotency-Key": idempotency_key}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def submit(self, instruction: PaymentInstruction) -> SettlementResult:
        """Submit a payment instruction

        The transfer id doubles as the network idempotency key, so a retried
        submission cannot pay twice.

        Raises:
            PaymentNetworkTimeoutError: The network did not answer in time
            PaymentNetworkError: Connection failure, non-2xx response or
                unreadable body
        """
        headers = self._headers(instruction.transfer_id)

        start = time.time()
        try:
            response = self._client.post(
                f"{self.base_url}/payments",
                json=instruction.to_payload(),
                headers=headers
            )
        except httpx.TimeoutException as e:
            logger.warning(f"Payment network timed out for transfer {instruction.transfer_id}: {e}")
            raise PaymentNetworkTimeoutError(
                "Payment network did not respond in time",
                {"transfer_id": instruction.transfer_id}
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"Payment network connection failed: {e}")
            raise PaymentNetworkError(
                "Payment network is unreachable",
                {"transfer_id": instruction.transfer_id}
            ) from e

        latency_ms = (time.time() - start) * 1000

        if not 200 <= response.status_code < 300:
            logger.warning(f"Payment network returned {response.status_code}: {response.text}")
            raise PaymentNetworkError(
                f"Payment network returned HTTP {response.status_code}",
                {"transfer_id": instruction.transfer_id, "status_code": response.status_code}
            )

        try:
            data = response.json()
            if not isinstance(data, dict):
                raise ValueError("Expected a JSON object")
            status = SettlementStatus(str(data.get("status", "pending")).lower())
        except ValueError as e:
            raise PaymentNetworkError(
                "Payment network returned an unreadable response",
                {"transfer_id": instruction.transfer_id}
            ) from e

        return SettlementResult(
            status=status,
            network_reference=data.get("reference"),
            reason=data.get("reason"),
            latency_ms=latency_ms
        )

    def health_check(self) -> bool:
        """Check if the payment network is healthy"""
        try:
            r = self._client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError:
            return False

    def close(self):
        """Close the HTTP client"""
        self._client.close()


class MockPaymentNetworkClient(PaymentNetworkClient):
    """In-process payment network for tests and the demo

    ``outcome`` is one of settled, failed, pending, error or timeout.
    """

    OUTCOMES = ("settled", "failed", "pending", "error", "timeout")

    def __init__(self, outcome: str = "settled", **kwargs):
        super().__init__(base_url="http://payment-network.invalid", **kwargs)
        self.set_outcome(outcome)
        self.submitted: List[PaymentInstruction] = []
        self._lock = threading.Lock()
        self._counter = 0

    def set_outcome(self, outcome: str) -> None:
        if outcome not in self.OUTCOMES:
            raise ValueError(f"Unknown mock outcome: {outcome}")
        self.outcome = outcome

    def submit(self, instruction: PaymentInstruction) -> SettlementResult:
        """Record the instruction and answer with the configured outcome"""
        with self._lock:
            self.submitted.append(instruction)
            self._counter += 1
            network_reference = f"MOCK{self._counter:08d}"

        if self.outcome == "timeout":
            raise PaymentNetworkTimeoutError(
                "Payment network did not respond in time",
                {"transfer_id": instruction.transfer_id}
            )
        if self.outcome == "error":
            raise PaymentNetworkError(
                "Payment network is unreachable",
                {"transfer_id": instruction.transfer_id}
            )
        if self.outcome == "failed":
            return SettlementResult(
                status=SettlementStatus.FAILED,
                network_reference=network_reference,
                reason="Payee account rejected the payment",
                latency_ms=1.0
            )
        if self.outcome == "pending":
            return SettlementResult(SettlementStatus.PENDING, network_reference, latency_ms=1.0)
        return SettlementResult(SettlementStatus.SETTLED, network_reference, latency_ms=1.0)

    def health_check(self) -> bool:
        """Mock health check always returns True"""
        return True
