"""ABI interfaces for the Safe contracts the orchestrator talks to.

One ``ContractInterface`` per logical contract. Calldata is built the same
way throughout: ``Web3.keccak(text=signature)[:4] + encode(types, args)``.

References:
- https://github.com/safe-global/safe-smart-account (v1.4.1)
- https://eips.ethereum.org/EIPS/eip-2470
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
# Head of Safe's owner linked list.
SENTINEL_OWNERS = "0x0000000000000000000000000000000000000001"


def _parse_input_types(signature: str) -> Tuple[str, ...]:
    inner = signature[signature.index("(") + 1 : signature.rindex(")")]
    return tuple(t.strip() for t in inner.split(",")) if inner else ()


@dataclass(frozen=True)
class ContractFunction:
    """A single ABI function: canonical signature plus output types."""
    signature: str
    output_types: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.signature[: self.signature.index("(")]

    @property
    def input_types(self) -> Tuple[str, ...]:
        return _parse_input_types(self.signature)

    @property
    def selector(self) -> bytes:
        return Web3.keccak(text=self.signature)[:4]

    def encode(self, *args: Any) -> bytes:
        return self.selector + encode(list(self.input_types), list(args))

    def decode(self, data: bytes) -> Any:
        values = decode(list(self.output_types), data)
        return values[0] if len(values) == 1 else values


@dataclass(frozen=True)
class ContractInterface:
    """Functions and event topics of one logical contract."""
    name: str
    functions: Dict[str, ContractFunction]
    events: Dict[str, str] = field(default_factory=dict)

    def function(self, name: str) -> ContractFunction:
        try:
            return self.functions[name]
        except KeyError:
            raise KeyError(f"{self.name} has no function {name!r}") from None

    def encode_call(self, name: str, *args: Any) -> bytes:
        return self.function(name).encode(*args)

    def decode_output(self, name: str, data: bytes) -> Any:
        return self.function(name).decode(data)

    def event_topic(self, name: str) -> str:
        return "0x" + Web3.keccak(text=self.events[name]).hex().removeprefix("0x")


def _functions(*entries: ContractFunction) -> Dict[str, ContractFunction]:
    return {f.name: f for f in entries}


SAFE = ContractInterface(
    name="Safe",
    functions=_functions(
        ContractFunction(
            "setup(address[],uint256,address,bytes,address,address,uint256,address)"
        ),
        ContractFunction(
            "execTransaction(address,uint256,bytes,uint8,uint256,uint256,uint256,address,address,bytes)",
            ("bool",),
        ),
        ContractFunction("nonce()", ("uint256",)),
        ContractFunction("getThreshold()", ("uint256",)),
        ContractFunction("getOwners()", ("address[]",)),
        ContractFunction("isOwner(address)", ("bool",)),
        ContractFunction("VERSION()", ("string",)),
        ContractFunction("approvedHashes(address,bytes32)", ("uint256",)),
        ContractFunction("approveHash(bytes32)"),
        ContractFunction("addOwnerWithThreshold(address,uint256)"),
        ContractFunction("removeOwner(address,address,uint256)"),
        ContractFunction("changeThreshold(uint256)"),
    ),
    events={
        "ExecutionSuccess": "ExecutionSuccess(bytes32,uint256)",
        "ExecutionFailure": "ExecutionFailure(bytes32,uint256)",
    },
)

PROXY_FACTORY = ContractInterface(
    name="SafeProxyFactory",
    functions=_functions(
        ContractFunction("createProxyWithNonce(address,bytes,uint256)", ("address",)),
        ContractFunction("proxyCreationCode()", ("bytes",)),
    ),
    events={"ProxyCreation": "ProxyCreation(address,address)"},
)

SINGLETON_FACTORY = ContractInterface(
    name="SingletonFactory",
    functions=_functions(
        ContractFunction("deploy(bytes,bytes32)", ("address",)),
    ),
)

MULTI_SEND = ContractInterface(
    name="MultiSend",
    functions=_functions(
        ContractFunction("multiSend(bytes)"),
    ),
)


def encode_safe_setup(
    owners: Sequence[str],
    threshold: int,
    fallback_handler: str,
) -> bytes:
    """Encode Safe.setup() calldata for a plain multi-owner wallet."""
    return SAFE.encode_call(
        "setup",
        [Web3.to_checksum_address(o) for o in owners],
        threshold,
        ZERO_ADDRESS,  # to (no setup delegatecall)
        b"",  # data
        Web3.to_checksum_address(fallback_handler),
        ZERO_ADDRESS,  # paymentToken
        0,  # payment
        ZERO_ADDRESS,  # paymentReceiver
    )
