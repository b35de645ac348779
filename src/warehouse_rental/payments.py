from __future__ import annotations

import os
import random
import string
import time
from decimal import Decimal
from typing import Protocol

from aws_lambda_powertools import Logger

from .errors import PaymentDeclined
from .models import GatewayResult, PaymentDetails

logger = Logger()
_FAILURE_RATE = float(os.environ.get("PAYMENT_FAILURE_RATE", "0.1"))
_TXN_ALPHABET = string.ascii_lowercase + string.digits


class PaymentGateway(Protocol):
    def charge(self, amount: Decimal, details: PaymentDetails) -> GatewayResult: ...

    def refund(self, transaction_id: str, amount: Decimal) -> None:
        """Reverse a completed charge that could not be recorded."""
        ...


class SimulatedGateway:
    """Card gateway stand-in: declines a fixed share of attempts, settles nothing."""

    def __init__(self, failure_rate: float | None = None, rng: random.Random | None = None) -> None:
        self.failure_rate = _FAILURE_RATE if failure_rate is None else failure_rate
        self._rng = rng or random.Random()

    def _transaction_id(self) -> str:
        suffix = "".join(self._rng.choices(_TXN_ALPHABET, k=9))
        return f"txn_{int(time.time() * 1000)}_{suffix}"

    def charge(self, amount: Decimal, details: PaymentDetails) -> GatewayResult:
        if not details.card_number.strip() or not details.cvv:
            raise PaymentDeclined("Please fill in all required payment fields")

        if self._rng.random() < self.failure_rate:
            logger.info("Simulated gateway declined charge", extra={"amount": str(amount)})
            raise PaymentDeclined()

        return GatewayResult(transaction_id=self._transaction_id(), status="completed", amount=amount)

    def refund(self, transaction_id: str, amount: Decimal) -> None:
        # nothing was settled, so there is nothing to reverse
        logger.info(
            "Simulated gateway refunded charge",
            extra={"transaction_id": transaction_id, "amount": str(amount)},
        )


default_gateway: PaymentGateway = SimulatedGateway()
