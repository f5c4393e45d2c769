"""Value-transfer service clients: HTTP token API and an in-memory book for local runs"""

import logging
import threading
from typing import Dict

import httpx

from peerpool_ledger.config import settings
from peerpool_ledger.domain.exceptions import TransferFailedError
from peerpool_ledger.infrastructure.observability.metrics import transfer_failures_counter

logger = logging.getLogger(__name__)


class TokenClient:
    """Client for the external token transfer API, acting on behalf of the pool account"""

    def __init__(
        self,
        base_url: str | None = None,
        pool_account: str | None = None,
        timeout: float | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url or settings.token_api_base
        self.pool_account = pool_account or settings.pool_account
        self.timeout = timeout or settings.http_timeout_seconds
        self._client = httpx.Client(base_url=self.base_url, timeout=self.timeout, transport=transport)

    def close(self) -> None:
        self._client.close()

    def transfer(self, to: str, amount: int) -> bool:
        """Send `amount` from pool custody to `to`"""
        return self._post_transfer(
            "/token/transfer",
            {"sender": self.pool_account, "to": to, "amount": amount},
        )

    def transfer_from(self, sender: str, to: str, amount: int) -> bool:
        """Pull `amount` from `sender` (pre-approved allowance) to `to`"""
        return self._post_transfer(
            "/token/transfer-from",
            {"spender": self.pool_account, "sender": sender, "to": to, "amount": amount},
        )

    def balance_of(self, account: str) -> int:
        """
        Current token balance of `account`.

        Raises:
            TransferFailedError: On timeout, HTTP errors, or invalid response
        """
        try:
            response = self._client.get("/token/balance", params={"account": account})
            response.raise_for_status()
            return int(response.json()["balance"])

        except httpx.TimeoutException as e:
            raise TransferFailedError(f"Token API timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            raise TransferFailedError(f"Token API error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise TransferFailedError(f"Token API unreachable: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            raise TransferFailedError(f"Invalid balance data from token API: {e}") from e

    def _post_transfer(self, path: str, body: Dict[str, object]) -> bool:
        try:
            response = self._client.post(path, json=body)
            response.raise_for_status()
            success = bool(response.json()["success"])

        except httpx.TimeoutException as e:
            transfer_failures_counter.inc()
            self._log_unknown_outcome(path, body, e)
            raise TransferFailedError(f"Token API timeout after {self.timeout}s") from e
        except httpx.HTTPStatusError as e:
            transfer_failures_counter.inc()
            raise TransferFailedError(f"Token API error: {e.response.status_code}") from e
        except httpx.RequestError as e:
            transfer_failures_counter.inc()
            self._log_unknown_outcome(path, body, e)
            raise TransferFailedError(f"Token API unreachable: {e}") from e
        except (KeyError, ValueError, TypeError) as e:
            transfer_failures_counter.inc()
            raise TransferFailedError(f"Invalid transfer response from token API: {e}") from e

        if not success:
            transfer_failures_counter.inc()
            logger.warning("Token transfer declined", extra={"path": path, "amount": body["amount"]})
        return success

    def _log_unknown_outcome(self, path: str, body: Dict[str, object], error: Exception) -> None:
        # The token service may have applied the transfer even though no answer came back
        logger.error(
            "Token transfer outcome unknown; ledger rolled back, reconcile manually",
            extra={
                "path": path,
                "sender": body["sender"],
                "to": body["to"],
                "amount": body["amount"],
                "error_type": type(error).__name__,
            },
        )


class InMemoryTokenService:
    """Process-local balances with strict debit/credit; used for local runs and tests"""

    def __init__(self, pool_account: str | None = None):
        self.pool_account = pool_account or settings.pool_account
        self._balances: Dict[str, int] = {}
        self._lock = threading.Lock()

    def mint(self, account: str, amount: int) -> None:
        """Credit `amount` out of thin air (test/dev funding)"""
        with self._lock:
            self._balances[account] = self._balances.get(account, 0) + amount

    def transfer(self, to: str, amount: int) -> bool:
        return self._move(self.pool_account, to, amount)

    def transfer_from(self, sender: str, to: str, amount: int) -> bool:
        return self._move(sender, to, amount)

    def balance_of(self, account: str) -> int:
        with self._lock:
            return self._balances.get(account, 0)

    def _move(self, sender: str, to: str, amount: int) -> bool:
        with self._lock:
            if amount < 0 or self._balances.get(sender, 0) < amount:
                transfer_failures_counter.inc()
                return False
            self._balances[sender] = self._balances.get(sender, 0) - amount
            self._balances[to] = self._balances.get(to, 0) + amount
            return True


def build_transfer_service(backend: str | None = None):
    """Pick the value-transfer implementation named by `settings.transfer_backend`"""
    backend = backend or settings.transfer_backend
    if backend == "http":
        return TokenClient()
    if backend == "memory":
        return InMemoryTokenService()
    raise ValueError(f"Unknown transfer backend: {backend}")
