"""
Ethereum JSON-RPC client for the test chain.

One ChainClient is created per process and shared by every run: it is
the chain handle test suites see as self.chain.
"""

import asyncio
import itertools
from typing import Any, Dict, List, Optional

import httpx

from shared.reporter.system_reporter import SystemReporter

from essayeur.domain.exceptions import AccountFetchError, ChainConnectionError, RpcError


def to_hex(value: int) -> str:
    """Encode an integer as a JSON-RPC quantity."""
    return hex(value)


def from_hex(value: Optional[str]) -> Optional[int]:
    """Decode a JSON-RPC quantity."""
    if value is None:
        return None
    return int(value, 16)


class ChainClient:
    """
    Async JSON-RPC client over httpx.

    Attributes:
        url: JSON-RPC endpoint
        timeout: HTTP request timeout in seconds

    Examples:
        async with ChainClient("http://127.0.0.1:8545") as chain:
            accounts = await chain.get_accounts()
    """

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        reporter: Optional[SystemReporter] = None,
    ):
        """
        Initialize chain client.

        Args:
            url: JSON-RPC endpoint (e.g. "http://127.0.0.1:8545")
            timeout: HTTP request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
            reporter: Optional reporter for logging
        """
        self.url = url
        self.timeout = timeout
        self.reporter = reporter or SystemReporter(
            name="chain_client", level=20, verbose=1
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._ids = itertools.count(1)

    @property
    def client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            )
        return self._client

    async def call(self, method: str, params: Optional[list] = None) -> Any:
        """
        Call a JSON-RPC method.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            The response's result field

        Raises:
            ChainConnectionError: Endpoint unreachable
            RpcError: Error response or malformed reply
        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.TransportError as e:
            raise ChainConnectionError(
                f"Cannot reach {self.url}: {e}",
                details={"method": method, "url": self.url},
            ) from e

        if response.status_code != 200:
            raise RpcError(
                f"{method} returned HTTP {response.status_code}",
                details={"method": method, "status": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise RpcError(f"{method} returned invalid JSON", details={"method": method}) from e

        if data.get("error"):
            error = data["error"]
            raise RpcError(
                f"{method} failed: {error.get('message', error)}",
                details={"method": method, "code": error.get("code")},
            )

        return data.get("result")

    # ================================================================
    # CHAIN QUERIES
    # ================================================================

    async def client_version(self) -> str:
        return await self.call("web3_clientVersion")

    async def net_version(self) -> str:
        return str(await self.call("net_version"))

    async def get_accounts(self) -> List[str]:
        return list(await self.call("eth_accounts") or [])

    async def block_number(self) -> int:
        return from_hex(await self.call("eth_blockNumber"))

    async def get_code(self, address: str, block: str = "latest") -> str:
        return await self.call("eth_getCode", [address, block])

    async def get_balance(self, address: str, block: str = "latest") -> int:
        return from_hex(await self.call("eth_getBalance", [address, block]))

    async def get_logs(
        self,
        from_block: int,
        to_block: Optional[int] = None,
        address: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """
        Fetch event logs.

        Args:
            from_block: First block (inclusive)
            to_block: Last block (default: latest)
            address: Only logs emitted by this contract

        Returns:
            Raw log entries
        """
        log_filter: Dict[str, Any] = {
            "fromBlock": to_hex(from_block),
            "toBlock": "latest" if to_block is None else to_hex(to_block),
        }
        if address:
            log_filter["address"] = address
        return list(await self.call("eth_getLogs", [log_filter]) or [])

    # ================================================================
    # TRANSACTIONS
    # ================================================================

    async def send_transaction(self, tx: Dict[str, Any]) -> str:
        """
        Send a transaction from an unlocked account.

        Integer values for gas, gasPrice and value are hex-encoded.

        Returns:
            Transaction hash
        """
        encoded = {
            key: to_hex(value) if isinstance(value, int) else value
            for key, value in tx.items()
        }
        return await self.call("eth_sendTransaction", [encoded])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    async def wait_for_receipt(
        self, tx_hash: str, timeout: float = 30.0, poll_interval: float = 0.1
    ) -> Dict[str, Any]:
        """
        Poll until the transaction is mined.

        Raises:
            RpcError: If no receipt appears within timeout
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout

        while True:
            receipt = await self.get_transaction_receipt(tx_hash)
            if receipt is not None:
                return receipt
            if loop.time() >= deadline:
                raise RpcError(
                    f"No receipt for {tx_hash} after {timeout}s",
                    details={"tx_hash": tx_hash},
                )
            await asyncio.sleep(poll_interval)

    # ================================================================
    # SNAPSHOTS
    # ================================================================

    async def snapshot(self) -> str:
        """Take an evm_snapshot and return its id."""
        return await self.call("evm_snapshot")

    async def revert(self, snapshot_id: str) -> bool:
        """Revert to a snapshot taken with snapshot()."""
        return bool(await self.call("evm_revert", [snapshot_id]))

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class RpcAccountSource:
    """Account source backed by eth_accounts."""

    def __init__(self, chain: ChainClient):
        self.chain = chain

    async def get_accounts(self) -> List[str]:
        """
        Fetch the node's unlocked accounts.

        Raises:
            AccountFetchError: If the node is unreachable or errors
        """
        try:
            accounts = await self.chain.get_accounts()
        except RpcError as e:
            raise AccountFetchError(
                f"Failed to fetch accounts: {e.message}", details=e.details
            ) from e

        if not accounts:
            raise AccountFetchError(
                "Node returned no unlocked accounts", details={"url": self.chain.url}
            )
        return accounts
