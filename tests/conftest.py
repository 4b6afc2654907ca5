"""
Shared fixtures for safe_multisig tests.

``FakeChain`` is an in-memory JSON-RPC node served through
``httpx.MockTransport``, so the real ``RPCClient`` (failover, retries,
chain-id check) sits between the code under test and the chain. It knows
just enough EVM to exercise the orchestrator:

- plain CREATE and EIP-2470 ``deploy(bytes,bytes32)``
- ``SafeProxyFactory.createProxyWithNonce`` with a parsed ``setup`` call
- ``Safe.execTransaction`` with signature checks (GS020/GS025/GS026),
  owner management, MultiSend batches and ExecutionSuccess/Failure logs
- reverting targets that answer with ``Error(string)`` data
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from functools import partial
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import httpx
import pytest
import rlp
from eth_abi import decode, encode
from eth_account import Account
from eth_keys import keys
from web3 import Web3

from safe_multisig.artifacts import ContractArtifact, ContractArtifacts
from safe_multisig.config import (
    CANONICAL_SINGLETON_FACTORY,
    CONTRACT_NAMES,
    ContractAddresses,
    DeployerConfig,
    ExecutionConfig,
    NetworkConfig,
    RetryConfig,
    RPCEndpointConfig,
    SafeMultisigConfig,
    set_config,
)
from safe_multisig.contracts import MULTI_SEND, PROXY_FACTORY, SAFE, SENTINEL_OWNERS, SINGLETON_FACTORY, ZERO_ADDRESS
from safe_multisig.create2 import compute_create2_address, compute_create_address
from safe_multisig.logging_utils import RecordingEventLogger
from safe_multisig.registry import NetworkRegistry
from safe_multisig.rpc_client import RPCClient
from safe_multisig.safe import wallet_salt
from safe_multisig.signer import LocalSigner
from safe_multisig.transaction import CanonicalTransaction, decode_multi_send

CHAIN_ID = 31337
NETWORK_ID = "eip155:31337"
ETHER = 10**18
GAS_PRICE = 1_000_000_000

OWNER_A_KEY = "0x" + "a1" * 32
OWNER_B_KEY = "0x" + "b2" * 32
OWNER_C_KEY = "0x" + "c3" * 32
OUTSIDER_KEY = "0x" + "d4" * 32
DEPLOYER_KEY = "0x" + "e5" * 32

WALLET = "0x5afe0000000000000000000000000000000ca7e5"
RECIPIENT = "0x000000000000000000000000000000000000beef"

SAFE_CODE = bytes.fromhex("608060405273ffffffffffffffffffffffffffffffffffffffff")
SAFE_VERSION = "1.4.1"


def _selector(interface, name: str) -> bytes:
    return interface.function(name).selector


def _topic(signature: str) -> str:
    return "0x" + bytes(Web3.keccak(text=signature)).hex()


EXECUTION_SUCCESS_TOPIC = _topic("ExecutionSuccess(bytes32,uint256)")
EXECUTION_FAILURE_TOPIC = _topic("ExecutionFailure(bytes32,uint256)")

_OWNER_CHANGES = {
    _selector(SAFE, "addOwnerWithThreshold"),
    _selector(SAFE, "removeOwner"),
    _selector(SAFE, "changeThreshold"),
}


def error_data(reason: str) -> str:
    """ABI-encoded ``Error(string)`` revert payload."""
    return "0x08c379a0" + encode(["string"], [reason]).hex()


class Revert(Exception):
    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class RpcFault(Exception):
    def __init__(self, code: int, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


@dataclass
class SafeState:
    owners: List[str]
    threshold: int
    nonce: int = 0
    approved: Set[Tuple[str, bytes]] = field(default_factory=set)


@dataclass
class Outcome:
    output: bytes = b""
    effects: List[Callable[[], None]] = field(default_factory=list)
    logs: List[Dict[str, Any]] = field(default_factory=list)


def _recover(message_hash: bytes, signature: bytes, v: int) -> str:
    try:
        sig = keys.Signature(vrs=(
            v - 27,
            int.from_bytes(signature[:32], "big"),
            int.from_bytes(signature[32:64], "big"),
        ))
        return sig.recover_public_key_from_msg_hash(message_hash).to_checksum_address()
    except Exception:
        raise Revert("GS026") from None


class FakeChain:
    """A single-node chain that mines one block per transaction."""

    def __init__(self, chain_id: int = CHAIN_ID):
        self.chain_id = chain_id
        self.block = 1
        self.gas_price = GAS_PRICE
        self.balances: Dict[str, int] = {}
        self.nonces: Dict[str, int] = {}
        self.code: Dict[str, bytes] = {}
        self.receipts: Dict[str, Dict[str, Any]] = {}
        self.held: Dict[str, Dict[str, Any]] = {}
        self.hold_receipts = False
        self.advance_on_poll = False
        self.roles: Dict[bytes, str] = {}
        self.factories: Set[str] = set()
        self.proxy_factories: Set[str] = set()
        self.multi_sends: Set[str] = set()
        self.safes: Dict[str, SafeState] = {}
        self.reverting: Dict[str, str] = {}
        self.failing_init_codes: Set[bytes] = set()
        self.proxy_creation_code = bytes.fromhex("608060405234801561001057600080fd5b50")
        self.requests: List[Tuple[str, list]] = []
        self.on_send: Optional[Callable[[], None]] = None

    # ------------------------------------------------------------------
    # State helpers for tests
    # ------------------------------------------------------------------

    def fund(self, address: str, amount: int) -> None:
        key = address.lower()
        self.balances[key] = self.balances.get(key, 0) + amount

    def balance_of(self, address: str) -> int:
        return self.balances.get(address.lower(), 0)

    def register_artifacts(self, artifacts: ContractArtifacts) -> None:
        for name in CONTRACT_NAMES:
            artifact = getattr(artifacts, name)
            if artifact is not None:
                self.roles[artifact.bytecode] = name

    def install_factory(self, address: str = CANONICAL_SINGLETON_FACTORY) -> str:
        self.code[address.lower()] = b"\x60\x80factory"
        self.factories.add(address.lower())
        return Web3.to_checksum_address(address)

    def install_infrastructure(
        self,
        artifacts: ContractArtifacts,
        factory: str = CANONICAL_SINGLETON_FACTORY,
    ) -> ContractAddresses:
        """Put all five contracts on chain without any transactions."""
        self.register_artifacts(artifacts)
        addresses = {"singleton_factory": self.install_factory(factory)}
        for name in CONTRACT_NAMES[1:]:
            artifact = artifacts.get(name)
            address = compute_create2_address(factory, artifact.salt, artifact.bytecode)
            self._create(address, artifact.bytecode)
            addresses[name] = address
        return ContractAddresses(**addresses)

    def create_safe(
        self,
        address: str,
        owners: List[str],
        threshold: int,
        nonce: int = 0,
        balance: int = 0,
    ) -> str:
        address = Web3.to_checksum_address(address)
        self.code[address.lower()] = SAFE_CODE
        self.safes[address.lower()] = SafeState(
            owners=[Web3.to_checksum_address(o) for o in owners],
            threshold=threshold,
            nonce=nonce,
        )
        if balance:
            self.fund(address, balance)
        return address

    def safe(self, address: str) -> SafeState:
        return self.safes[address.lower()]

    def make_reverting(self, address: str, reason: str) -> str:
        self.code[address.lower()] = b"\xfd"
        self.reverting[address.lower()] = reason
        return Web3.to_checksum_address(address)

    def release_receipts(self) -> None:
        self.receipts.update(self.held)
        self.held.clear()

    def methods(self) -> List[str]:
        return [method for method, _ in self.requests]

    def sent_count(self) -> int:
        return self.methods().count("eth_sendRawTransaction")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        payload = json.loads(request.content)
        method, params = payload["method"], payload.get("params") or []
        self.requests.append((method, params))
        body: Dict[str, Any] = {"jsonrpc": "2.0", "id": payload["id"]}
        rpc = getattr(self, "rpc_" + method, None)
        try:
            if rpc is None:
                raise RpcFault(-32601, f"the method {method} does not exist")
            body["result"] = rpc(*params)
        except Revert as e:
            body["error"] = {
                "code": 3,
                "message": f"execution reverted: {e.reason}",
                "data": error_data(e.reason),
            }
        except RpcFault as e:
            body["error"] = {"code": e.code, "message": e.message}
        return httpx.Response(200, json=body)

    def client_factory(self, network: NetworkConfig) -> RPCClient:
        return RPCClient(
            network,
            retry_config=RetryConfig(max_retries=0),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(self.handler)),
        )

    # ------------------------------------------------------------------
    # JSON-RPC methods
    # ------------------------------------------------------------------

    def rpc_eth_chainId(self) -> str:
        return hex(self.chain_id)

    def rpc_eth_blockNumber(self) -> str:
        current = self.block
        if self.advance_on_poll:
            self.block += 1
        return hex(current)

    def rpc_eth_gasPrice(self) -> str:
        return hex(self.gas_price)

    def rpc_eth_getBalance(self, address: str, block: str = "latest") -> str:
        return hex(self.balance_of(address))

    def rpc_eth_getCode(self, address: str, block: str = "latest") -> str:
        return "0x" + self.code.get(address.lower(), b"").hex()

    def rpc_eth_getTransactionCount(self, address: str, block: str = "pending") -> str:
        return hex(self.nonces.get(address.lower(), 0))

    def rpc_eth_getTransactionReceipt(self, tx_hash: str) -> Optional[Dict[str, Any]]:
        return self.receipts.get(tx_hash)

    def rpc_eth_call(self, tx: Dict[str, Any], block: str = "latest") -> str:
        outcome = self._execute(*self._call_args(tx))
        return "0x" + outcome.output.hex()

    def rpc_eth_estimateGas(self, tx: Dict[str, Any]) -> str:
        if not tx.get("to"):
            return hex(500_000)
        sender, to, value, data = self._call_args(tx)
        self._execute(sender, to, value, data)
        key = to.lower()
        if key in self.safes and data[:4] == _selector(SAFE, "execTransaction"):
            return hex(150_000)
        if key in self.factories or key in self.proxy_factories:
            return hex(300_000)
        return hex(50_000)

    def rpc_eth_sendRawTransaction(self, raw_hex: str) -> str:
        if self.on_send is not None:
            hook, self.on_send = self.on_send, None
            hook()

        raw = bytes.fromhex(raw_hex[2:])
        sender = Account.recover_transaction(raw_hex)
        fields = rlp.decode(raw)
        nonce, gas_price, gas = (int.from_bytes(f, "big") for f in fields[:3])
        to = "0x" + fields[3].hex() if fields[3] else None
        value = int.from_bytes(fields[4], "big")
        data = bytes(fields[5])

        key = sender.lower()
        expected = self.nonces.get(key, 0)
        if nonce != expected:
            raise RpcFault(-32010, f"invalid nonce: expected {expected}, got {nonce}")
        if self.balance_of(sender) < gas * gas_price + value:
            raise RpcFault(-32010, "insufficient funds for gas * price + value")

        tx_hash = "0x" + bytes(Web3.keccak(raw)).hex()
        self.nonces[key] = nonce + 1
        self.block += 1
        receipt = self._mine(sender, to, value, data, nonce, gas, gas_price, tx_hash)
        (self.held if self.hold_receipts else self.receipts)[tx_hash] = receipt
        return tx_hash

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @staticmethod
    def _call_args(tx: Dict[str, Any]) -> Tuple[str, str, int, bytes]:
        data = tx.get("data") or tx.get("input") or "0x"
        return (
            tx.get("from") or ZERO_ADDRESS,
            tx["to"],
            int(tx.get("value") or "0x0", 16),
            bytes.fromhex(data[2:]),
        )

    def _mine(
        self,
        sender: str,
        to: Optional[str],
        value: int,
        data: bytes,
        nonce: int,
        gas: int,
        gas_price: int,
        tx_hash: str,
    ) -> Dict[str, Any]:
        status, logs, contract_address, extra = 1, [], None, 0
        if to is None:
            contract_address = compute_create_address(sender, nonce)
            self._create(contract_address, data)
            extra = 32_000 + 200 * len(data)
        else:
            key = to.lower()
            if key in self.safes:
                extra = 60_000
            elif key in self.proxy_factories:
                extra = 200_000
            elif key in self.factories:
                extra = 40_000
            try:
                outcome = self._execute(sender, to, value, data)
            except Revert:
                status = 0
            else:
                for effect in outcome.effects:
                    effect()
                logs = outcome.logs

        gas_used = min(gas, 21_000 + 16 * len(data) + extra)
        self.balances[sender.lower()] -= gas_used * gas_price
        return {
            "transactionHash": tx_hash,
            "status": hex(status),
            "blockNumber": hex(self.block),
            "blockHash": "0x" + bytes(Web3.keccak(text=f"block-{self.block}")).hex(),
            "gasUsed": hex(gas_used),
            "contractAddress": contract_address,
            "logs": logs,
        }

    def _create(self, address: str, init_code: bytes) -> None:
        key = address.lower()
        self.code[key] = init_code
        role = self.roles.get(init_code)
        if role == "singleton_factory":
            self.factories.add(key)
        elif role == "proxy_factory":
            self.proxy_factories.add(key)
        elif role == "batch_helper":
            self.multi_sends.add(key)

    def _transfer(self, source: str, destination: str, amount: int) -> None:
        self.balances[source.lower()] = self.balance_of(source) - amount
        self.fund(destination, amount)

    def _execute(self, sender: str, to: str, value: int, data: bytes) -> Outcome:
        """Plan a call: the output plus the state changes a mined tx would apply."""
        key = to.lower()
        if key in self.reverting:
            raise Revert(self.reverting[key])
        if value and self.balance_of(sender) < value:
            raise Revert("insufficient balance for transfer")

        outcome = Outcome()
        if value:
            outcome.effects.append(partial(self._transfer, sender, to, value))
        selector, args = data[:4], data[4:]

        if key in self.safes:
            inner = self._safe_call(key, sender, data)
            outcome.output = inner.output
            outcome.effects.extend(inner.effects)
            outcome.logs.extend(inner.logs)
        elif key in self.factories and selector == _selector(SINGLETON_FACTORY, "deploy"):
            init_code, salt = decode(["bytes", "bytes32"], args)
            if init_code in self.failing_init_codes:
                raise Revert("create2 failed")
            address = compute_create2_address(to, salt, init_code)
            outcome.output = encode(["address"], [address])
            if address.lower() not in self.code:
                outcome.effects.append(partial(self._create, address, init_code))
        elif key in self.proxy_factories and selector == _selector(PROXY_FACTORY, "proxyCreationCode"):
            outcome.output = encode(["bytes"], [self.proxy_creation_code])
        elif key in self.proxy_factories and selector == _selector(PROXY_FACTORY, "createProxyWithNonce"):
            singleton, initializer, salt_nonce = decode(["address", "bytes", "uint256"], args)
            init_code = self.proxy_creation_code + encode(["uint256"], [int(singleton, 16)])
            address = compute_create2_address(to, wallet_salt(initializer, salt_nonce), init_code)
            if address.lower() in self.code:
                raise Revert("Create2 call failed")
            owners, threshold = self._parse_setup(initializer)
            outcome.output = encode(["address"], [address])
            outcome.effects.append(partial(self.create_safe, address, owners, threshold))
        elif key in self.multi_sends:
            raise Revert("MultiSend should only be called via delegatecall")
        return outcome

    @staticmethod
    def _parse_setup(initializer: bytes) -> Tuple[List[str], int]:
        if initializer[:4] != _selector(SAFE, "setup"):
            raise Revert("unexpected initializer")
        owners, threshold, *_ = decode(
            ["address[]", "uint256", "address", "bytes", "address", "address", "uint256", "address"],
            initializer[4:],
        )
        if threshold == 0:
            raise Revert("GS202")
        if threshold > len(owners):
            raise Revert("GS201")
        return [Web3.to_checksum_address(o) for o in owners], threshold

    def _safe_call(self, wallet: str, sender: str, data: bytes) -> Outcome:
        safe = self.safes[wallet]
        selector, args = data[:4], data[4:]
        if not data:
            return Outcome()
        if selector == _selector(SAFE, "nonce"):
            return Outcome(encode(["uint256"], [safe.nonce]))
        if selector == _selector(SAFE, "getThreshold"):
            return Outcome(encode(["uint256"], [safe.threshold]))
        if selector == _selector(SAFE, "getOwners"):
            return Outcome(encode(["address[]"], [safe.owners]))
        if selector == _selector(SAFE, "VERSION"):
            return Outcome(encode(["string"], [SAFE_VERSION]))
        if selector == _selector(SAFE, "isOwner"):
            (owner,) = decode(["address"], args)
            owner = Web3.to_checksum_address(owner)
            return Outcome(encode(["bool"], [owner in safe.owners]))
        if selector == _selector(SAFE, "approvedHashes"):
            owner, safe_tx_hash = decode(["address", "bytes32"], args)
            owner = Web3.to_checksum_address(owner)
            return Outcome(encode(["uint256"], [int((owner, safe_tx_hash) in safe.approved)]))
        if selector == _selector(SAFE, "approveHash"):
            (safe_tx_hash,) = decode(["bytes32"], args)
            owner = Web3.to_checksum_address(sender)
            if owner not in safe.owners:
                raise Revert("GS030")
            return Outcome(effects=[partial(safe.approved.add, (owner, safe_tx_hash))])
        if selector == _selector(SAFE, "execTransaction"):
            return self._exec_transaction(wallet, safe, sender, args)
        if selector in _OWNER_CHANGES:
            if sender.lower() != wallet:
                raise Revert("GS031")
            return Outcome(effects=[self._owner_change(safe, selector, args)])
        raise Revert("unsupported call")

    def _exec_transaction(self, wallet: str, safe: SafeState, sender: str, args: bytes) -> Outcome:
        (
            to, value, inner_data, operation, safe_tx_gas, base_gas,
            gas_price, gas_token, refund_receiver, signatures,
        ) = decode(
            ["address", "uint256", "bytes", "uint8", "uint256", "uint256",
             "uint256", "address", "address", "bytes"],
            args,
        )
        tx = CanonicalTransaction(
            wallet=wallet,
            chain_id=f"eip155:{self.chain_id}",
            to=to,
            value=value,
            data=inner_data,
            operation=operation,
            nonce=safe.nonce,
            safe_tx_gas=safe_tx_gas,
            base_gas=base_gas,
            gas_price=gas_price,
            gas_token=gas_token,
            refund_receiver=refund_receiver,
        )
        self._check_signatures(safe, tx.safe_tx_hash, signatures, sender)

        outcome = Outcome(effects=[partial(setattr, safe, "nonce", safe.nonce + 1)])
        try:
            inner = self._inner_call(wallet, to, value, inner_data, operation)
        except Revert:
            if safe_tx_gas == 0 and gas_price == 0:
                raise Revert("GS013") from None
            topic = EXECUTION_FAILURE_TOPIC
        else:
            outcome.effects.extend(inner.effects)
            topic = EXECUTION_SUCCESS_TOPIC

        outcome.output = encode(["bool"], [topic == EXECUTION_SUCCESS_TOPIC])
        outcome.logs.append({
            "address": Web3.to_checksum_address(wallet),
            "topics": [topic, "0x" + tx.safe_tx_hash.hex()],
            "data": "0x" + encode(["uint256"], [0]).hex(),
        })
        return outcome

    def _inner_call(self, wallet: str, to: str, value: int, data: bytes, operation: int) -> Outcome:
        if operation == 1:
            if to.lower() in self.multi_sends and data[:4] == _selector(MULTI_SEND, "multiSend"):
                outcome = Outcome()
                for call in decode_multi_send(data):
                    inner = self._inner_call(wallet, call.to, call.value, call.data, int(call.operation))
                    outcome.effects.extend(inner.effects)
                return outcome
            raise Revert("unsupported delegatecall")
        return self._execute(wallet, to, value, data)

    @staticmethod
    def _check_signatures(safe: SafeState, data_hash: bytes, signatures: bytes, sender: str) -> None:
        if len(signatures) < safe.threshold * 65:
            raise Revert("GS020")
        last = 0
        for i in range(safe.threshold):
            sig = signatures[i * 65 : (i + 1) * 65]
            v = sig[64]
            if v == 0:
                raise Revert("GS021")
            if v == 1:
                owner = Web3.to_checksum_address(sig[12:32])
                if sender.lower() != owner.lower() and (owner, data_hash) not in safe.approved:
                    raise Revert("GS025")
            elif v > 30:
                prefixed = bytes(Web3.keccak(b"\x19Ethereum Signed Message:\n32" + data_hash))
                owner = _recover(prefixed, sig, v - 4)
            else:
                owner = _recover(data_hash, sig, v)
            if int(owner, 16) <= last or owner not in safe.owners:
                raise Revert("GS026")
            last = int(owner, 16)

    @staticmethod
    def _owner_change(safe: SafeState, selector: bytes, args: bytes) -> Callable[[], None]:
        if selector == _selector(SAFE, "addOwnerWithThreshold"):
            owner, threshold = decode(["address", "uint256"], args)
            owner = Web3.to_checksum_address(owner)
            if owner in (ZERO_ADDRESS, SENTINEL_OWNERS):
                raise Revert("GS203")
            if owner in safe.owners:
                raise Revert("GS204")
            # Safe links new owners at the head of the list.
            owners = [owner] + safe.owners
        elif selector == _selector(SAFE, "removeOwner"):
            prev, owner, threshold = decode(["address", "address", "uint256"], args)
            prev, owner = Web3.to_checksum_address(prev), Web3.to_checksum_address(owner)
            if owner not in safe.owners:
                raise Revert("GS205")
            index = safe.owners.index(owner)
            expected = SENTINEL_OWNERS if index == 0 else safe.owners[index - 1]
            if prev != expected:
                raise Revert("GS205")
            owners = [o for o in safe.owners if o != owner]
        else:
            (threshold,) = decode(["uint256"], args)
            owners = list(safe.owners)
        if threshold > len(owners):
            raise Revert("GS201")
        if threshold == 0:
            raise Revert("GS202")

        def apply() -> None:
            safe.owners = owners
            safe.threshold = threshold

        return apply


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def make_artifacts(*names: str) -> ContractArtifacts:
    """Distinct dummy creation code per contract; all five by default."""
    names = names or CONTRACT_NAMES
    return ContractArtifacts(**{
        name: ContractArtifact(bytecode=bytes.fromhex("6080604052") + name.encode())
        for name in names
    })


def make_network(chain_id: int = CHAIN_ID, urls: Tuple[str, ...] = ("http://node.test",)) -> NetworkConfig:
    return NetworkConfig(
        chain_id=f"eip155:{chain_id}",
        name="anvil",
        display_name="Local Anvil",
        rpc_endpoints=tuple(RPCEndpointConfig(url=url, priority=i) for i, url in enumerate(urls)),
        contracts=ContractAddresses(singleton_factory=CANONICAL_SINGLETON_FACTORY),
        is_testnet=True,
        confirmations_required=1,
        confirmation_timeout_seconds=5.0,
    )


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def network() -> NetworkConfig:
    return make_network()


@pytest.fixture
def config(network) -> SafeMultisigConfig:
    cfg = SafeMultisigConfig(
        networks={network.chain_id: network},
        retry=RetryConfig(max_retries=0),
        deployer=DeployerConfig(poll_interval_seconds=0.01),
        execution=ExecutionConfig(poll_interval_seconds=0.01),
    )
    set_config(cfg)
    yield cfg
    set_config(None)


@pytest.fixture
def registry(config, chain) -> NetworkRegistry:
    return NetworkRegistry(config, client_factory=chain.client_factory)


@pytest.fixture
def events() -> RecordingEventLogger:
    return RecordingEventLogger()


@pytest.fixture
def artifacts(chain) -> ContractArtifacts:
    artifacts = make_artifacts()
    chain.register_artifacts(artifacts)
    return artifacts


@pytest.fixture
def infrastructure(chain, registry, artifacts) -> ContractAddresses:
    """All five contracts already on chain and known to the registry."""
    addresses = chain.install_infrastructure(artifacts)
    registry.cache_contracts(NETWORK_ID, addresses)
    return addresses


@pytest.fixture
def owner_a() -> LocalSigner:
    return LocalSigner(OWNER_A_KEY)


@pytest.fixture
def owner_b() -> LocalSigner:
    return LocalSigner(OWNER_B_KEY)


@pytest.fixture
def owner_c() -> LocalSigner:
    return LocalSigner(OWNER_C_KEY)


@pytest.fixture
def outsider() -> LocalSigner:
    return LocalSigner(OUTSIDER_KEY)


@pytest.fixture
def deployer_signer(chain) -> LocalSigner:
    signer = LocalSigner(DEPLOYER_KEY)
    chain.fund(signer.address, 10 * ETHER)
    return signer


@pytest.fixture
def wallet(chain, infrastructure, owner_a, owner_b, owner_c) -> str:
    """A 2-of-3 Safe at nonce 5 holding 5 ETH."""
    return chain.create_safe(
        WALLET,
        [owner_a.address, owner_b.address, owner_c.address],
        threshold=2,
        nonce=5,
        balance=5 * ETHER,
    )
