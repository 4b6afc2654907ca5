"""
Safe wallet operations.

Reads wallet state over ``eth_call``, predicts and deploys wallet proxies
through ``SafeProxyFactory.createProxyWithNonce`` and builds the self-calls
that change owners or the threshold. Owner changes are ordinary SafeTxs:
the returned ``TransactionData`` still has to be proposed, signed and
executed.

Proxy address derivation (SafeProxyFactory v1.4.1):
- salt     = keccak256(keccak256(initializer) ++ uint256(saltNonce))
- initCode = proxyCreationCode ++ uint256(uint160(singleton))
- address  = CREATE2(proxyFactory, salt, initCode)
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from eth_abi import encode
from web3 import Web3

from .config import ContractAddresses
from .contracts import PROXY_FACTORY, SAFE, SENTINEL_OWNERS, ZERO_ADDRESS, encode_safe_setup
from .create2 import compute_create2_address
from .exceptions import NetworkError, ValidationError
from .logging_utils import EventLogger, EventType, get_chain_logger
from .nonce_manager import NonceManager
from .registry import NetworkRegistry
from .signatures import ApprovalChecker
from .signer import TransactionSigner
from .submitter import TransactionRequest, TransactionSubmitter
from .transaction import TransactionData, checksum

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalletInfo:
    """On-chain state of a Safe."""
    address: str
    chain_id: str
    owners: List[str]
    threshold: int
    nonce: int
    version: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "chain_id": self.chain_id,
            "owners": list(self.owners),
            "threshold": self.threshold,
            "nonce": self.nonce,
            "version": self.version,
        }


@dataclass(frozen=True)
class WalletDeployment:
    """Result of deploying (or finding) a wallet proxy."""
    address: str
    chain_id: str
    tx_hash: Optional[str]
    gas_used: int
    already_deployed: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "chain_id": self.chain_id,
            "tx_hash": self.tx_hash,
            "gas_used": self.gas_used,
            "already_deployed": self.already_deployed,
        }


def validate_owners(owners: Sequence[str], threshold: int) -> List[str]:
    """
    Checksum an owner set and check ``1 <= threshold <= len(owners)``.

    Raises:
        ValidationError: empty, duplicate or reserved owners, bad threshold
    """
    if not owners:
        raise ValidationError("At least one owner is required", field="owners")
    checked = [checksum(o, "owners") for o in owners]
    if len({o.lower() for o in checked}) != len(checked):
        raise ValidationError("Owners must be unique", field="owners")
    for owner in checked:
        if owner in (ZERO_ADDRESS, SENTINEL_OWNERS):
            raise ValidationError(f"{owner} cannot be an owner", field="owners")
    if not isinstance(threshold, int) or not 1 <= threshold <= len(checked):
        raise ValidationError(
            f"Threshold {threshold} must be between 1 and {len(checked)}",
            field="threshold",
        )
    return checked


def wallet_salt(initializer: bytes, salt_nonce: int) -> bytes:
    return bytes(Web3.keccak(Web3.keccak(initializer) + encode(["uint256"], [salt_nonce])))


def compute_wallet_address(
    proxy_factory: str,
    singleton: str,
    proxy_creation_code: bytes,
    initializer: bytes,
    salt_nonce: int,
) -> str:
    """CREATE2 address of a proxy created with ``createProxyWithNonce``."""
    init_code = proxy_creation_code + encode(["uint256"], [int(singleton, 16)])
    return compute_create2_address(proxy_factory, wallet_salt(initializer, salt_nonce), init_code)


def previous_owner(owners: Sequence[str], owner: str) -> str:
    """Predecessor of ``owner`` in Safe's owner linked list."""
    lowered = [o.lower() for o in owners]
    index = lowered.index(owner.lower())
    return SENTINEL_OWNERS if index == 0 else Web3.to_checksum_address(owners[index - 1])


class WalletManager:
    """Reads, deploys and reconfigures Safe wallets."""

    def __init__(
        self,
        registry: NetworkRegistry,
        nonce_manager: Optional[NonceManager] = None,
        event_logger: Optional[EventLogger] = None,
    ):
        self._registry = registry
        self._nonces = nonce_manager or NonceManager()
        self._events = event_logger or get_chain_logger()

    async def _call(self, chain_id: str, to: str, name: str, *args: Any, interface=SAFE) -> Any:
        rpc = self._registry.get_rpc_client(chain_id)
        raw = await rpc.eth_call({"to": to, "data": "0x" + interface.encode_call(name, *args).hex()})
        return interface.decode_output(name, raw)

    async def _require_wallet(self, chain_id: str, wallet: str) -> str:
        wallet = checksum(wallet, "wallet")
        code = await self._registry.get_rpc_client(chain_id).get_code(wallet)
        if not code:
            raise ValidationError(f"No wallet deployed at {wallet} on {chain_id}", field="wallet")
        return wallet

    async def get_owners(self, chain_id: str, wallet: str) -> List[str]:
        owners = await self._call(chain_id, wallet, "getOwners")
        return [Web3.to_checksum_address(o) for o in owners]

    async def get_threshold(self, chain_id: str, wallet: str) -> int:
        return await self._call(chain_id, wallet, "getThreshold")

    async def get_nonce(self, chain_id: str, wallet: str) -> int:
        return await self._call(chain_id, wallet, "nonce")

    async def get_wallet_info(self, chain_id: str, wallet: str) -> WalletInfo:
        """
        Owners, threshold, nonce and version of a deployed wallet.

        Raises:
            ValidationError: malformed address or no code at it
            NetworkError: RPC failure
        """
        self._registry.resolve(chain_id)
        wallet = await self._require_wallet(chain_id, wallet)
        return WalletInfo(
            address=wallet,
            chain_id=chain_id,
            owners=await self.get_owners(chain_id, wallet),
            threshold=await self.get_threshold(chain_id, wallet),
            nonce=await self.get_nonce(chain_id, wallet),
            version=await self._call(chain_id, wallet, "VERSION"),
        )

    async def is_hash_approved(self, chain_id: str, wallet: str, owner: str, safe_tx_hash: bytes) -> bool:
        approved = await self._call(chain_id, wallet, "approvedHashes", owner, safe_tx_hash)
        return approved != 0

    def approval_checker(self, chain_id: str, wallet: str) -> ApprovalChecker:
        """Bind ``is_hash_approved`` to one wallet for the signature aggregator."""
        async def check(owner: str, safe_tx_hash: bytes) -> bool:
            return await self.is_hash_approved(chain_id, wallet, owner, safe_tx_hash)
        return check

    def _wallet_contracts(self, chain_id: str) -> ContractAddresses:
        contracts = self._registry.get_contracts(chain_id)
        missing = [
            name
            for name in ("wallet_singleton", "proxy_factory", "fallback_handler")
            if not getattr(contracts, name)
        ]
        if missing:
            raise ValidationError(
                f"Safe infrastructure incomplete on {chain_id}: missing {', '.join(missing)}",
                field="contracts",
                details={"missing": missing},
            )
        return contracts

    async def predict_wallet_address(
        self,
        chain_id: str,
        owners: Sequence[str],
        threshold: int,
        salt_nonce: int = 0,
    ) -> str:
        """Counterfactual wallet address; the proxy creation code is read from the factory."""
        self._registry.resolve(chain_id)
        owners = validate_owners(owners, threshold)
        contracts = self._wallet_contracts(chain_id)
        creation_code = await self._call(
            chain_id, contracts.proxy_factory, "proxyCreationCode", interface=PROXY_FACTORY
        )
        initializer = encode_safe_setup(owners, threshold, contracts.fallback_handler)
        return compute_wallet_address(
            contracts.proxy_factory,
            contracts.wallet_singleton,
            creation_code,
            initializer,
            salt_nonce,
        )

    async def deploy_wallet(
        self,
        chain_id: str,
        signer: TransactionSigner,
        owners: Sequence[str],
        threshold: int,
        salt_nonce: int = 0,
        confirmations: Optional[int] = None,
        timeout_seconds: Optional[float] = None,
    ) -> WalletDeployment:
        """
        Deploy a wallet proxy, or return the existing one at the predicted address.

        Raises:
            ValidationError: bad owner set or incomplete infrastructure
            NetworkError: RPC failure or the proxy did not appear
            ConfirmationTimeoutError: deployment not confirmed in time
        """
        owners = validate_owners(owners, threshold)
        address = await self.predict_wallet_address(chain_id, owners, threshold, salt_nonce)
        rpc = self._registry.get_rpc_client(chain_id)
        if await rpc.get_code(address):
            logger.info(f"Wallet {address} already deployed on {chain_id}")
            return WalletDeployment(address, chain_id, None, 0, already_deployed=True)

        contracts = self._wallet_contracts(chain_id)
        network = self._registry.resolve(chain_id)
        settings = self._registry.config.execution
        submitter = TransactionSubmitter(
            rpc,
            chain_id,
            self._nonces,
            event_logger=self._events,
            gas_limit_buffer_percent=settings.gas_limit_buffer_percent,
            poll_interval_seconds=settings.poll_interval_seconds,
        )
        initializer = encode_safe_setup(owners, threshold, contracts.fallback_handler)
        submitted = await submitter.submit(
            signer,
            TransactionRequest(
                to_address=contracts.proxy_factory,
                data=PROXY_FACTORY.encode_call(
                    "createProxyWithNonce", contracts.wallet_singleton, initializer, salt_nonce
                ),
                gas_price=settings.gas_price_wei,
            ),
        )
        receipt, depth = await submitter.wait(
            submitted.tx_hash, *network.wait_settings(confirmations, timeout_seconds, settings)
        )
        if not receipt.succeeded or not await rpc.get_code(address):
            raise NetworkError(
                f"Wallet deployment {submitted.tx_hash} did not create {address}",
                chain_id=chain_id,
                details={"tx_hash": submitted.tx_hash, "address": address},
            )

        self._events.log_event(
            EventType.TRANSACTION_CONFIRMED,
            f"Wallet {address} deployed on {chain_id}",
            chain_id=chain_id,
            tx_hash=submitted.tx_hash,
            address=address,
            owners=owners,
            threshold=threshold,
            gas_used=receipt.gas_used,
            confirmations=depth,
        )
        return WalletDeployment(address, chain_id, submitted.tx_hash, receipt.gas_used, already_deployed=False)

    async def add_owner(
        self,
        chain_id: str,
        wallet: str,
        owner: str,
        threshold: Optional[int] = None,
    ) -> TransactionData:
        """Self-call adding ``owner``; keeps the current threshold unless given."""
        info = await self.get_wallet_info(chain_id, wallet)
        owner = checksum(owner, "owner")
        if owner in info.owners:
            raise ValidationError(f"{owner} is already an owner", field="owner")
        new_threshold = info.threshold if threshold is None else threshold
        validate_owners(info.owners + [owner], new_threshold)
        return TransactionData(
            to=info.address,
            data=SAFE.encode_call("addOwnerWithThreshold", owner, new_threshold),
        )

    async def remove_owner(
        self,
        chain_id: str,
        wallet: str,
        owner: str,
        threshold: Optional[int] = None,
    ) -> TransactionData:
        """Self-call removing ``owner``; the threshold is capped at the new owner count."""
        info = await self.get_wallet_info(chain_id, wallet)
        owner = checksum(owner, "owner")
        if owner not in info.owners:
            raise ValidationError(f"{owner} is not an owner", field="owner")
        remaining = [o for o in info.owners if o != owner]
        new_threshold = min(info.threshold, len(remaining)) if threshold is None else threshold
        validate_owners(remaining, new_threshold)
        return TransactionData(
            to=info.address,
            data=SAFE.encode_call(
                "removeOwner", previous_owner(info.owners, owner), owner, new_threshold
            ),
        )

    async def change_threshold(self, chain_id: str, wallet: str, threshold: int) -> TransactionData:
        info = await self.get_wallet_info(chain_id, wallet)
        validate_owners(info.owners, threshold)
        return TransactionData(
            to=info.address,
            data=SAFE.encode_call("changeThreshold", threshold),
        )
