"""
JSON-RPC client with endpoint failover and health checking.

Features:
- Multi-RPC endpoint support with automatic failover
- Chain ID validation on connection (security)
- Endpoints that keep failing are moved to the back of the order
- Bounded retries for read-only methods only
- Every transport failure surfaces as ``NetworkError``
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .config import NetworkConfig, RetryConfig, RPCEndpointConfig, validate_chain_id
from .exceptions import NetworkError
from .retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

READ_ONLY_METHODS = frozenset({
    "eth_chainId",
    "eth_blockNumber",
    "eth_gasPrice",
    "eth_getBalance",
    "eth_getCode",
    "eth_getTransactionCount",
    "eth_getTransactionReceipt",
    "eth_estimateGas",
    "eth_call",
})

# Server errors and rate limits; the next endpoint may answer.
_FAILOVER_ERROR_CODES = (-32000, -32005, -32603)


class EndpointStatus(str, Enum):
    """Health of one RPC endpoint, as seen by this client."""
    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"


@dataclass
class _Endpoint:
    """One configured URL and its failure bookkeeping."""
    config: RPCEndpointConfig
    consecutive_failures: int = 0
    total_failures: int = 0
    answered: bool = False
    last_error: Optional[str] = None

    @property
    def status(self) -> EndpointStatus:
        if self.consecutive_failures >= self.config.max_consecutive_failures:
            return EndpointStatus.UNHEALTHY
        return EndpointStatus.HEALTHY if self.answered else EndpointStatus.UNKNOWN

    def sort_key(self) -> Tuple[bool, int, int]:
        # Unhealthy endpoints go last but are still tried.
        return (self.status is EndpointStatus.UNHEALTHY, self.config.priority, self.consecutive_failures)

    def succeeded(self) -> None:
        self.consecutive_failures = 0
        self.answered = True

    def failed(self, error: str) -> None:
        self.consecutive_failures += 1
        self.total_failures += 1
        self.last_error = error


class RPCError(NetworkError):
    """The node answered with a JSON-RPC error object.

    Reverts from ``eth_call``/``eth_estimateGas`` arrive this way; ``data``
    holds the raw revert payload when the node provides it.
    """

    def __init__(
        self,
        message: str,
        code: Optional[int] = None,
        data: Any = None,
        chain_id: Optional[str] = None,
        method: Optional[str] = None,
    ):
        self.rpc_code = code
        self.data = data
        details: Dict[str, Any] = {}
        if code is not None:
            details["rpc_code"] = code
        if data is not None:
            details["data"] = data
        super().__init__(message, chain_id=chain_id, method=method, details=details)

    @property
    def is_revert(self) -> bool:
        return self.rpc_code == 3 or "revert" in self.message.lower()


class RPCClient:
    """
    Async JSON-RPC client for one network.

    Failover walks endpoints healthy-first, then by priority; read-only
    methods are additionally retried with exponential backoff when every
    endpoint failed. ``eth_sendRawTransaction`` is attempted once per
    endpoint and never retried.
    """

    def __init__(
        self,
        network: NetworkConfig,
        retry_config: Optional[RetryConfig] = None,
        validate_chain_id_on_connect: bool = True,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._network = network
        self._validate_chain_id = validate_chain_id_on_connect
        self._request_id = 0
        self._http_client = http_client
        self._connected = False
        self._verified_chain_id: Optional[int] = None
        self._retry_policy = RetryPolicy.from_config(
            retry_config or RetryConfig(),
            retryable_exceptions=(NetworkError,),
            non_retryable_exceptions=(RPCError,),
        )

        self._endpoints = [_Endpoint(config) for config in network.rpc_endpoints]
        if not self._endpoints:
            raise NetworkError(
                f"No RPC endpoints configured for {network.chain_id}",
                chain_id=network.chain_id,
            )

        logger.info(
            f"Initialized RPC client for {network.chain_id} with {len(self._endpoints)} endpoints"
        )

    @property
    def chain_id(self) -> str:
        return self._network.chain_id

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._endpoints[0].config.timeout_seconds, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    async def connect(self) -> None:
        """
        Connect to RPC and validate chain ID.

        SECURITY: Chain ID validation prevents signing or deploying against
        the wrong network.
        """
        if self._connected:
            return

        if self._validate_chain_id:
            result = await self._call_with_retry("eth_chainId", [])
            received = int(result, 16)
            if not validate_chain_id(self._network, received):
                raise NetworkError(
                    f"Chain ID mismatch for {self._network.chain_id}: "
                    f"expected {self._network.numeric_chain_id}, got {received}",
                    chain_id=self._network.chain_id,
                    method="eth_chainId",
                    details={"received_chain_id": received},
                )
            self._verified_chain_id = received
            logger.info(f"Chain ID validated for {self._network.chain_id}: {received}")

        self._connected = True

    def _ordered_endpoints(self) -> List[_Endpoint]:
        return sorted(self._endpoints, key=_Endpoint.sort_key)

    async def _call_once(self, method: str, params: List[Any]) -> Any:
        """One pass over all endpoints in health order."""
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        errors: List[Tuple[str, str]] = []
        for endpoint in self._ordered_endpoints():
            url = endpoint.config.url
            try:
                response = await self._get_client().post(
                    url,
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=endpoint.config.timeout_seconds,
                )
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPError, ValueError) as e:
                endpoint.failed(str(e))
                errors.append((url, str(e)))
                logger.warning(f"RPC {method} to {url} failed: {e}")
                continue

            if body.get("error"):
                error = body["error"]
                code = error.get("code", 0)
                message = error.get("message", str(error))
                if code in _FAILOVER_ERROR_CODES and "revert" not in message.lower():
                    endpoint.failed(message)
                    errors.append((url, message))
                    logger.warning(f"RPC error from {url}: {message}, trying next endpoint")
                    continue
                endpoint.succeeded()
                raise RPCError(
                    message=message,
                    code=code,
                    data=error.get("data"),
                    chain_id=self._network.chain_id,
                    method=method,
                )

            endpoint.succeeded()
            logger.debug(f"RPC call {method} to {url} succeeded")
            return body.get("result")

        summary = "; ".join(f"{url}: {err}" for url, err in errors[:3])
        raise NetworkError(
            f"All RPC endpoints failed for {self._network.chain_id}: {summary}",
            chain_id=self._network.chain_id,
            method=method,
        )

    async def _call_with_retry(self, method: str, params: List[Any]) -> Any:
        if method in READ_ONLY_METHODS:
            return await retry_async(self._call_once, method, params, policy=self._retry_policy)
        return await self._call_once(method, params)

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """
        Make a JSON-RPC call with failover.

        Raises:
            RPCError: the node returned a JSON-RPC error (including reverts)
            NetworkError: every endpoint failed, or chain id validation failed
        """
        if not self._connected:
            await self.connect()
        return await self._call_with_retry(method, params or [])

    async def get_chain_id(self) -> int:
        if self._verified_chain_id is None:
            self._verified_chain_id = int(await self._call_with_retry("eth_chainId", []), 16)
        return self._verified_chain_id

    async def get_block_number(self) -> int:
        return int(await self.call("eth_blockNumber"), 16)

    async def get_gas_price(self) -> int:
        """Get current gas price in wei."""
        return int(await self.call("eth_gasPrice"), 16)

    async def get_balance(self, address: str, block: str = "latest") -> int:
        """Get native token balance for address in wei."""
        return int(await self.call("eth_getBalance", [address, block]), 16)

    async def get_code(self, address: str, block: str = "latest") -> bytes:
        """Get deployed bytecode; empty bytes when no contract exists."""
        result = await self.call("eth_getCode", [address, block])
        if not result or result == "0x":
            return b""
        return bytes.fromhex(result[2:] if result.startswith("0x") else result)

    async def get_nonce(self, address: str, block: str = "pending") -> int:
        """Get transaction count (nonce) for address."""
        return int(await self.call("eth_getTransactionCount", [address, block]), 16)

    async def estimate_gas(self, tx: Dict[str, Any]) -> int:
        return int(await self.call("eth_estimateGas", [tx]), 16)

    async def eth_call(self, tx: Dict[str, Any], block: str = "latest") -> bytes:
        """Execute a call without creating a transaction."""
        result = await self.call("eth_call", [tx, block])
        if not result or result == "0x":
            return b""
        return bytes.fromhex(result[2:])

    async def send_raw_transaction(self, signed_tx: str) -> str:
        """Broadcast signed transaction. Never retried."""
        if not signed_tx.startswith("0x"):
            signed_tx = "0x" + signed_tx
        return await self.call("eth_sendRawTransaction", [signed_tx])

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return await self.call("eth_getTransactionReceipt", [tx_hash])

    def get_endpoint_stats(self) -> List[Dict[str, Any]]:
        return [
            {
                "url": e.config.url,
                "priority": e.config.priority,
                "status": e.status.value,
                "consecutive_failures": e.consecutive_failures,
                "total_failures": e.total_failures,
                "last_error": e.last_error,
            }
            for e in self._endpoints
        ]

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        self._connected = False

