import pytest

from dexdeploy.utils.address_resolver import AddressResolver, compute_address, platform_salt, POOL_ROLE
from dexdeploy.utils.errors import DeploymentVerificationError
from dexdeploy.utils.migration_helpers import code_hash
from constants import ZERO_ADDRESS, address


@pytest.fixture
def resolver(local_chain, artifacts):
    return AddressResolver(local_chain, artifacts)


def test_create2_vector():
    # EIP-1014, example 1
    assert compute_address(ZERO_ADDRESS, code_hash("0x00"), b"\x00" * 32) == \
        "0x4D1A2e2bB4F88F0250f26Ffff098B0b30B26BF38"


def test_expected_address_is_pure(resolver, local_chain):
    args = ("token-9-0", "TOKEN-9-0", 9, address(7))
    first = resolver.expected_address(address(1), "TokenRoot", args)

    assert resolver.expected_address(address(1), "TokenRoot", args) == first
    assert resolver.expected_address(address(2), "TokenRoot", args) != first
    assert resolver.expected_address(address(1), "TokenRoot", ("token-9-1", "TOKEN-9-1", 9, address(7))) != first
    assert local_chain.sent == []


def test_expected_address_matches_deployment(migrate, local_chain, ledger, resolver, deployer):
    migrate(local_chain).raise_for_failure()

    token = ledger.address_of("token-6-0")
    assert resolver.expected_address(
        deployer.address, "TokenRoot", ("token-6-0", "TOKEN-6-0", 6, deployer.address)
    ) == token

    root = local_chain.contract("DexRoot", ledger.address_of("DexRoot"))
    left, right = ledger.address_of("token-6-0"), ledger.address_of("token-6-1")
    expected = resolver.expected_pool_address(root.address, [left, right])
    assert expected == ledger.address_of("DexPair_token-6-0_token-6-1")
    assert expected == root.getExpectedPairAddress(left_root=left, right_root=right)["value0"]
    assert resolver.expected_account_address(root.address, deployer.address) == \
        ledger.address_of("DexAccount_DexOwner")
    assert resolver.expected_token_vault_address(root.address, left) == \
        root.getExpectedTokenVaultAddress(token_root=left)["value0"]


def test_pool_address_ignores_token_order(resolver):
    tokens = [address(10), address(11), address(12)]
    assert resolver.expected_pool_address(address(1), tokens) == \
        resolver.expected_pool_address(address(1), list(reversed(tokens)))
    assert platform_salt(POOL_ROLE, tokens) != platform_salt(POOL_ROLE + 1, tokens)


def test_confirm(migrate, local_chain, ledger, resolver):
    migrate(local_chain).raise_for_failure()
    token = ledger.address_of("token-6-0")

    state = resolver.confirm(token, "TokenRoot")
    assert state.exists

    with pytest.raises(DeploymentVerificationError) as e:
        resolver.confirm(token, "DexPair")
    assert e.value.address == token
    assert e.value.actual_code_hash == resolver.class_id("TokenRoot")

    with pytest.raises(DeploymentVerificationError) as e:
        resolver.confirm(address(99), "TokenRoot")
    assert e.value.actual_code_hash is None
