"""
Tests for safe_multisig.safe.

Tests cover:
- Wallet state reads
- Counterfactual address prediction and idempotent proxy deployment
- Owner and threshold change calldata and its validation
"""
from __future__ import annotations

import pytest
from eth_abi import decode
from web3 import Web3

from safe_multisig.contracts import SAFE, SENTINEL_OWNERS, ZERO_ADDRESS
from safe_multisig.exceptions import ValidationError
from safe_multisig.safe import WalletManager, previous_owner, validate_owners

from .conftest import NETWORK_ID, SAFE_VERSION


@pytest.fixture
def wallets(registry, events) -> WalletManager:
    return WalletManager(registry, event_logger=events)


class TestValidateOwners:
    """Tests for validate_owners."""

    def test_checksums(self, owner_a):
        assert validate_owners([owner_a.address.lower()], 1) == [owner_a.address]

    @pytest.mark.parametrize("owners,threshold", [
        ([], 1),
        (["0x" + "11" * 20], 0),
        (["0x" + "11" * 20], 2),
        (["0x" + "11" * 20, "0x" + "11" * 20], 1),
        ([ZERO_ADDRESS], 1),
        ([SENTINEL_OWNERS], 1),
        (["0xnot-an-address"], 1),
    ])
    def test_rejects(self, owners, threshold):
        with pytest.raises(ValidationError):
            validate_owners(owners, threshold)

    def test_previous_owner(self, owner_a, owner_b, owner_c):
        owners = [owner_a.address, owner_b.address, owner_c.address]
        assert previous_owner(owners, owner_a.address) == SENTINEL_OWNERS
        assert previous_owner(owners, owner_c.address.lower()) == owner_b.address


class TestWalletInfo:
    """Tests for reading wallet state."""

    @pytest.mark.asyncio
    async def test_info(self, wallets, wallet, owner_a, owner_b, owner_c):
        info = await wallets.get_wallet_info(NETWORK_ID, wallet)
        assert info.owners == [owner_a.address, owner_b.address, owner_c.address]
        assert info.threshold == 2
        assert info.nonce == 5
        assert info.version == SAFE_VERSION
        assert info.to_dict()["address"] == wallet

    @pytest.mark.asyncio
    async def test_no_code(self, wallets, infrastructure):
        with pytest.raises(ValidationError) as exc_info:
            await wallets.get_wallet_info(NETWORK_ID, "0x" + "77" * 20)
        assert exc_info.value.details["field"] == "wallet"

    @pytest.mark.asyncio
    async def test_hash_approval(self, wallets, wallet, chain, owner_a):
        checker = wallets.approval_checker(NETWORK_ID, wallet)
        safe_tx_hash = b"\x42" * 32
        assert not await checker(owner_a.address, safe_tx_hash)
        chain.safe(wallet).approved.add((owner_a.address, safe_tx_hash))
        assert await checker(owner_a.address, safe_tx_hash)


class TestWalletDeployment:
    """Tests for predicting and deploying wallets."""

    @pytest.mark.asyncio
    async def test_deploy_matches_prediction(self, wallets, infrastructure, chain, deployer_signer, owner_a, owner_b):
        owners = [owner_a.address, owner_b.address]
        predicted = await wallets.predict_wallet_address(NETWORK_ID, owners, 2, salt_nonce=7)

        deployment = await wallets.deploy_wallet(NETWORK_ID, deployer_signer, owners, 2, salt_nonce=7)

        assert deployment.address == predicted
        assert not deployment.already_deployed
        assert deployment.gas_used > 0
        state = chain.safe(predicted)
        assert state.owners == owners
        assert state.threshold == 2

    @pytest.mark.asyncio
    async def test_redeploy_returns_existing(self, wallets, infrastructure, chain, deployer_signer, owner_a):
        """Should find the existing proxy instead of sending another creation."""
        first = await wallets.deploy_wallet(NETWORK_ID, deployer_signer, [owner_a.address], 1)
        sent = chain.sent_count()
        second = await wallets.deploy_wallet(NETWORK_ID, deployer_signer, [owner_a.address], 1)
        assert second.already_deployed
        assert second.address == first.address
        assert second.tx_hash is None
        assert chain.sent_count() == sent

    @pytest.mark.asyncio
    async def test_salt_and_owners_change_address(self, wallets, infrastructure, owner_a, owner_b):
        base = await wallets.predict_wallet_address(NETWORK_ID, [owner_a.address], 1)
        assert base != await wallets.predict_wallet_address(NETWORK_ID, [owner_a.address], 1, salt_nonce=1)
        assert base != await wallets.predict_wallet_address(NETWORK_ID, [owner_b.address], 1)

    @pytest.mark.asyncio
    async def test_incomplete_infrastructure(self, wallets, owner_a):
        with pytest.raises(ValidationError) as exc_info:
            await wallets.predict_wallet_address(NETWORK_ID, [owner_a.address], 1)
        assert "proxy_factory" in exc_info.value.details["missing"]


class TestOwnerChanges:
    """Tests for owner and threshold change calldata."""

    @pytest.mark.asyncio
    async def test_add_owner_keeps_threshold(self, wallets, wallet, outsider):
        call = await wallets.add_owner(NETWORK_ID, wallet, outsider.address)
        assert call.to == wallet
        assert call.data[:4] == SAFE.function("addOwnerWithThreshold").selector
        owner, threshold = decode(["address", "uint256"], call.data[4:])
        assert (Web3.to_checksum_address(owner), threshold) == (outsider.address, 2)

    @pytest.mark.asyncio
    async def test_add_existing_owner(self, wallets, wallet, owner_a):
        with pytest.raises(ValidationError):
            await wallets.add_owner(NETWORK_ID, wallet, owner_a.address)

    @pytest.mark.asyncio
    async def test_remove_owner_uses_linked_list_predecessor(self, wallets, wallet, owner_b, owner_c):
        call = await wallets.remove_owner(NETWORK_ID, wallet, owner_c.address)
        prev, owner, threshold = decode(["address", "address", "uint256"], call.data[4:])
        assert Web3.to_checksum_address(prev) == owner_b.address
        assert Web3.to_checksum_address(owner) == owner_c.address
        assert threshold == 2

    @pytest.mark.asyncio
    async def test_remove_owner_caps_threshold(self, wallets, chain, infrastructure, owner_a, owner_b):
        wallet = chain.create_safe("0x" + "5a" * 20, [owner_a.address, owner_b.address], 2)
        call = await wallets.remove_owner(NETWORK_ID, wallet, owner_b.address)
        _, _, threshold = decode(["address", "address", "uint256"], call.data[4:])
        assert threshold == 1

    @pytest.mark.asyncio
    async def test_remove_non_owner(self, wallets, wallet, outsider):
        with pytest.raises(ValidationError):
            await wallets.remove_owner(NETWORK_ID, wallet, outsider.address)

    @pytest.mark.asyncio
    async def test_threshold_bounds(self, wallets, wallet):
        call = await wallets.change_threshold(NETWORK_ID, wallet, 3)
        assert decode(["uint256"], call.data[4:]) == (3,)
        with pytest.raises(ValidationError):
            await wallets.change_threshold(NETWORK_ID, wallet, 4)
        with pytest.raises(ValidationError):
            await wallets.change_threshold(NETWORK_ID, wallet, 0)
