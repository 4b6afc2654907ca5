"""
Tests for safe_multisig.signer and safe_multisig.submitter.

Tests cover:
- Local key handling and signing
- Gas estimation with buffer
- Ordered nonces across submissions
- Nonce release when the node refuses a transaction
- A confirmation wait that ends without a receipt
"""
from __future__ import annotations

import pytest
from web3 import Web3

from safe_multisig.confirmation import TrackedTransaction
from safe_multisig.create2 import compute_create_address
from safe_multisig.exceptions import NetworkError, ValidationError
from safe_multisig.logging_utils import EventType
from safe_multisig.nonce_manager import NonceManager
from safe_multisig.rpc_client import RPCError
from safe_multisig.signatures import eth_sign_hash, recover_signer
from safe_multisig.signer import LocalSigner
from safe_multisig.submitter import TransactionRequest, TransactionSubmitter, apply_gas_buffer

from .conftest import DEPLOYER_KEY, ETHER, GAS_PRICE, NETWORK_ID, RECIPIENT

MESSAGE_HASH = bytes(Web3.keccak(text="safe"))


@pytest.fixture
def nonces() -> NonceManager:
    return NonceManager()


@pytest.fixture
def submitter(registry, nonces, events) -> TransactionSubmitter:
    return TransactionSubmitter(
        registry.get_rpc_client(NETWORK_ID),
        NETWORK_ID,
        nonces,
        event_logger=events,
        poll_interval_seconds=0.01,
    )


def transfer(value: int = ETHER) -> TransactionRequest:
    return TransactionRequest(to_address=Web3.to_checksum_address(RECIPIENT), value=value)


class TestLocalSigner:
    """Tests for LocalSigner."""

    def test_invalid_key(self):
        with pytest.raises(ValidationError) as exc_info:
            LocalSigner("0xnot-a-key")
        assert exc_info.value.details == {"field": "private_key"}
        assert exc_info.value.__cause__ is None

    def test_repr_shows_address_only(self):
        signer = LocalSigner(DEPLOYER_KEY)
        assert signer.address in repr(signer)
        assert DEPLOYER_KEY[2:] not in repr(signer)
        assert str(signer) == repr(signer)

    @pytest.mark.asyncio
    async def test_sign_hash(self):
        signer = LocalSigner(DEPLOYER_KEY)
        signature = await signer.sign_hash(MESSAGE_HASH)
        assert len(signature) == 65
        assert signature[64] in (27, 28)
        assert recover_signer(MESSAGE_HASH, signature) == signer.address

    @pytest.mark.asyncio
    async def test_sign_message_hash_uses_prefix(self):
        """Should sign the eth_sign digest of the hash, not the hash itself."""
        signer = LocalSigner(DEPLOYER_KEY)
        signature = await signer.sign_message_hash(MESSAGE_HASH)
        assert recover_signer(eth_sign_hash(MESSAGE_HASH), signature) == signer.address


class TestSubmitter:
    """Tests for TransactionSubmitter."""

    def test_gas_buffer(self):
        assert apply_gas_buffer(100_000, 20) == 120_000
        assert apply_gas_buffer(100_000, 0) == 100_000

    @pytest.mark.asyncio
    async def test_estimate_applies_buffer(self, submitter, deployer_signer):
        assert await submitter.estimate_gas(deployer_signer.address, transfer()) == 60_000

    @pytest.mark.asyncio
    async def test_submit_and_wait(self, submitter, deployer_signer, chain, events):
        submitted = await submitter.submit(deployer_signer, transfer())

        assert submitted.nonce == 0
        assert submitted.gas_limit == 60_000
        assert submitted.gas_price == GAS_PRICE
        receipt, confirmations = await submitter.wait(submitted.tx_hash, confirmations=1, timeout_seconds=1.0)
        assert receipt.succeeded
        assert confirmations >= 1
        assert chain.balance_of(RECIPIENT) == ETHER

        [event] = events.of_type(EventType.TRANSACTION_SUBMITTED)
        assert event["tx_hash"] == submitted.tx_hash
        assert event["from_address"] == deployer_signer.address

    @pytest.mark.asyncio
    async def test_nonces_in_order(self, submitter, deployer_signer, chain):
        first = await submitter.submit(deployer_signer, transfer(1))
        second = await submitter.submit(deployer_signer, transfer(2))
        assert (first.nonce, second.nonce) == (0, 1)
        assert chain.sent_count() == 2

    @pytest.mark.asyncio
    async def test_contract_creation(self, submitter, deployer_signer):
        submitted = await submitter.submit(
            deployer_signer, TransactionRequest(to_address=None, data=b"\x60\x80", gas_limit=100_000),
        )
        receipt, _ = await submitter.wait(submitted.tx_hash, timeout_seconds=1.0)
        assert receipt.contract_address.lower() == compute_create_address(deployer_signer.address, 0).lower()

    @pytest.mark.asyncio
    async def test_refused_transaction_releases_nonce(self, submitter, outsider, nonces):
        """Should give the nonce back when the node rejects the transaction."""
        with pytest.raises(RPCError):
            await submitter.submit(outsider, TransactionRequest(to_address=outsider.address, gas_limit=21_000))
        assert nonces.reserved_nonces(NETWORK_ID, outsider.address) == set()

    @pytest.mark.asyncio
    async def test_wait_without_receipt_is_network_error(self, submitter, monkeypatch):
        async def no_receipt(tx_hash, required_confirmations, timeout_seconds):
            return TrackedTransaction(tx_hash=tx_hash, chain_id=NETWORK_ID)

        monkeypatch.setattr(submitter._tracker, "wait_for_confirmation", no_receipt)
        with pytest.raises(NetworkError) as exc_info:
            await submitter.wait("0x" + "ab" * 32)
        assert exc_info.value.details["method"] == "eth_getTransactionReceipt"
