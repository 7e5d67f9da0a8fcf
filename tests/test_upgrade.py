import pytest

from dexdeploy.utils import local_chain as chain_module
from dexdeploy.utils.errors import (CodeInstallRejected, DataPreservationError, DexDeployError,
                                    UpgradeRejected)
from dexdeploy.utils.migration_helpers import code_hash
from dexdeploy.utils.upgrade import (AccountSelector, InstanceSelector, PairSelector, PoolSelector,
                                     TokenVaultSelector, UpgradeCoordinator, UpgradeTarget,
                                     selectors_from_ledger)
from constants import FIRST_PAIR, PAIRS_N, STABLE_POOL, TOKENS_DECIMALS, TOKENS_N, address


@pytest.fixture
def candidate(local_chain, new_code):
    def candidate(kind, version=2):
        artifact = new_code(kind, version)
        local_chain.register_code(artifact.code, artifact.kind)
        return artifact
    yield candidate


@pytest.fixture
def first_pair(dex_root, ledger):
    return PairSelector(ledger.address_of("token-6-0"), ledger.address_of("token-6-1"))


def test_pair_upgrade_preserves_data(coordinator, candidate, first_pair, ledger, local_chain, dex_root):
    new_pair = candidate("DexPair")
    pair_address = ledger.address_of(FIRST_PAIR)
    pair = local_chain.contract("DexPair", pair_address)
    before = coordinator.snapshot("DexPair", pair_address)

    results = coordinator.upgrade(UpgradeTarget("DexPair", new_pair.code), [first_pair])

    assert results[pair_address].success
    assert local_chain.get_state(pair_address).code_hash == new_pair.code_hash
    assert pair.getVersion()["version"] == 2
    assert dex_root.getPairVersion(pool_type=1)["value0"] == 2
    assert coordinator.snapshot("DexPair", pair_address) == before


def test_install_does_not_touch_instances(coordinator, candidate, ledger, local_chain, dex_root):
    new_pair = candidate("DexPair")
    old_hash = local_chain.get_state(ledger.address_of(FIRST_PAIR)).code_hash

    coordinator.install_code("DexPair", new_pair.code)

    assert dex_root.getPairCode(pool_type=1)["value0"] == new_pair.code
    assert local_chain.get_state(ledger.address_of(FIRST_PAIR)).code_hash == old_hash


def test_upgrade_is_idempotent(coordinator, candidate, first_pair, ledger, local_chain):
    new_pair = candidate("DexPair")
    target = UpgradeTarget("DexPair", new_pair.code)
    coordinator.upgrade(target, [first_pair])
    sent = len(local_chain.sent)

    results = coordinator.upgrade(target, [first_pair], install=False)

    assert results == {ledger.address_of(FIRST_PAIR): None}
    assert len(local_chain.sent) == sent


def test_every_pair_from_ledger(coordinator, candidate, ledger, local_chain):
    new_pair = candidate("DexPair")
    selectors = selectors_from_ledger(local_chain, ledger, "DexPair")
    assert len(selectors) == PAIRS_N

    coordinator.upgrade(UpgradeTarget("DexPair", new_pair.code), selectors)

    hashes = {local_chain.get_state(r.address).code_hash for r in ledger.records("DexPair")}
    assert hashes == {new_pair.code_hash}


def test_stable_pool_upgrade(coordinator, candidate, ledger, local_chain, dex_root):
    new_pool = candidate("DexStablePool")
    pool_address = ledger.address_of(STABLE_POOL)
    pool = local_chain.contract("DexStablePool", pool_address)
    roots = pool.getTokenRoots()
    before = coordinator.snapshot("DexStablePool", pool_address)

    selectors = selectors_from_ledger(local_chain, ledger, "DexStablePool")
    assert selectors == [PoolSelector(tuple(roots["roots"]))]

    results = coordinator.upgrade(UpgradeTarget("DexStablePool", new_pool.code), selectors)

    assert results[pool_address].success
    assert "upgradePool" in [m for _, m in local_chain.sent]
    assert local_chain.get_state(pool_address).code_hash == new_pool.code_hash
    assert pool.getVersion()["version"] == 2
    assert pool.getTokenRoots() == roots
    assert coordinator.snapshot("DexStablePool", pool_address) == before
    assert dex_root.getPoolVersion(pool_type=3)["value0"] == 2


def test_pool_upgrade_with_reordered_roots(coordinator, candidate, ledger, local_chain):
    new_pool = candidate("DexStablePool")
    pool_address = ledger.address_of(STABLE_POOL)
    roots = local_chain.contract("DexStablePool", pool_address).getTokenRoots()["roots"]

    coordinator.upgrade(UpgradeTarget("DexStablePool", new_pool.code), [PoolSelector(tuple(reversed(roots)))])

    assert local_chain.get_state(pool_address).code_hash == new_pool.code_hash


def test_token_vault_upgrade(coordinator, candidate, ledger, local_chain, dex_root):
    new_vault = candidate("DexTokenVault")
    selectors = selectors_from_ledger(local_chain, ledger, "DexTokenVault")
    assert len(selectors) == TOKENS_N * len(TOKENS_DECIMALS) + 1

    results = coordinator.upgrade(UpgradeTarget("DexTokenVault", new_vault.code), selectors)

    assert all(tx.success for tx in results.values())
    assert dex_root.getTokenVaultCode()["value0"] == new_vault.code
    for selector in selectors:
        vault_address = coordinator.address_of(selector)
        vault = local_chain.contract("DexTokenVault", vault_address)
        assert local_chain.get_state(vault_address).code_hash == new_vault.code_hash
        assert vault.getTokenRoot()["token_root"] == selector.token_root
        assert vault.getRoot()["value0"] == dex_root.address
        assert vault.getVersion()["version"] == 2


def test_named_token_vault(coordinator, candidate, ledger, local_chain, artifacts):
    new_vault = candidate("DexTokenVault")
    selectors = selectors_from_ledger(local_chain, ledger, "DexTokenVault", names=["token-6-0"])
    assert selectors == [TokenVaultSelector(ledger.address_of("token-6-0"))]
    other = coordinator.address_of(TokenVaultSelector(ledger.address_of("token-6-1")))

    coordinator.upgrade(UpgradeTarget("DexTokenVault", new_vault.code), selectors)

    assert local_chain.get_state(coordinator.address_of(selectors[0])).code_hash == new_vault.code_hash
    assert local_chain.get_state(other).code_hash == artifacts["DexTokenVault"].code_hash


def test_forced_account_upgrade(coordinator, candidate, ledger, local_chain, deployer):
    new_account = candidate("DexAccount")
    account_address = ledger.address_of("DexAccount_DexOwner")

    coordinator.upgrade(UpgradeTarget("DexAccount", new_account.code), [AccountSelector(deployer.address)])

    account = local_chain.contract("DexAccount", account_address)
    assert local_chain.get_state(account_address).code_hash == new_account.code_hash
    assert account.getOwner()["value0"] == deployer.address
    assert account.getVersion()["version"] == 2


def test_account_requested_upgrade(coordinator, candidate, ledger, local_chain):
    new_account = candidate("DexAccount")
    account_address = ledger.address_of("DexAccount_DexOwner")

    coordinator.upgrade(UpgradeTarget("DexAccount", new_account.code), [InstanceSelector(account_address)])

    assert local_chain.get_state(account_address).code_hash == new_account.code_hash
    assert ("requestUpgrade" in [m for _, m in local_chain.sent])


def test_root_upgrade_preserves_data(coordinator, candidate, ledger, local_chain, dex_root):
    new_root = candidate("DexRoot")
    before = coordinator.snapshot("DexRoot", dex_root.address)

    tx = coordinator.upgrade_singleton("DexRoot", dex_root.address, new_root.code)

    assert tx.success
    assert local_chain.get_state(dex_root.address).code_hash == new_root.code_hash
    assert coordinator.snapshot("DexRoot", dex_root.address) == before
    assert before["active"] == {"value0": True}


def test_vault_upgrade(coordinator, candidate, ledger, local_chain):
    new_vault = candidate("DexVault")
    vault = ledger.address_of("DexVault")

    coordinator.upgrade_singleton("DexVault", vault, new_vault.code)

    assert local_chain.get_state(vault).code_hash == new_vault.code_hash


def test_singleton_rejects_foreign_code(coordinator, candidate, dex_root, local_chain):
    new_pair = candidate("DexPair")
    old_hash = local_chain.get_state(dex_root.address).code_hash

    with pytest.raises(UpgradeRejected):
        coordinator.upgrade_singleton("DexRoot", dex_root.address, new_pair.code)

    assert local_chain.get_state(dex_root.address).code_hash == old_hash


##############
# Rejections #
##############


def test_install_rejected_skips_trigger(coordinator, candidate, first_pair, local_chain, stranger, ledger):
    new_pair = candidate("DexPair")
    old_hash = local_chain.get_state(ledger.address_of(FIRST_PAIR)).code_hash
    local_chain.sender = stranger.address
    local_chain.balances[stranger.address] = 100 * 10 ** 9

    with pytest.raises(CodeInstallRejected) as e:
        coordinator.upgrade(UpgradeTarget("DexPair", new_pair.code), [first_pair])

    assert e.value.contract_class == "DexPair"
    assert "upgradePair" not in [m for _, m in local_chain.sent]
    assert local_chain.get_state(ledger.address_of(FIRST_PAIR)).code_hash == old_hash


def test_trigger_rejected_keeps_installed_code(coordinator, candidate, dex_root):
    new_pair = candidate("DexPair")
    missing = PairSelector(address(70), address(71))

    with pytest.raises(UpgradeRejected) as e:
        coordinator.upgrade(UpgradeTarget("DexPair", new_pair.code), [missing])

    assert e.value.selector == missing
    assert dex_root.getPairCode(pool_type=1)["value0"] == new_pair.code


def test_not_root_managed(coordinator, candidate):
    with pytest.raises(DexDeployError):
        coordinator.install_code("TokenRoot", candidate("TokenRoot").code)


def test_retry_upgrade(flaky_chain, migrate, ledger, params, new_code):
    migrate(flaky_chain).raise_for_failure()
    new_pair = new_code("DexPair")
    flaky_chain.register_code(new_pair.code, new_pair.kind)
    root = flaky_chain.contract("DexRoot", ledger.address_of("DexRoot"))
    coordinator = UpgradeCoordinator(flaky_chain, root, params)
    selector = PairSelector(ledger.address_of("token-6-0"), ledger.address_of("token-6-1"))
    coordinator.install_code("DexPair", new_pair.code)

    flaky_chain.fail_send("upgradePair", times=1)
    with pytest.raises(UpgradeRejected):
        coordinator.retry_upgrade("DexPair", selector, attempts=1, delay=0)

    flaky_chain.fail_send("upgradePair", times=1)
    assert coordinator.retry_upgrade("DexPair", selector, attempts=2, delay=0).success
    assert len(flaky_chain.sends("upgradePair")) == 3
    assert flaky_chain.get_state(ledger.address_of(FIRST_PAIR)).code_hash == code_hash(new_pair.code)


def test_lost_data_is_detected(coordinator, candidate, first_pair, ledger, monkeypatch):
    new_pair = candidate("DexPair")
    swap_code = chain_module.DexRoot._swap_code

    def careless_swap(self, chain, address, code, version, **state):
        swap_code(self, chain, address, code, version, **state)
        chain.instances[address].state["active"] = False

    monkeypatch.setattr(chain_module.DexRoot, "_swap_code", careless_swap)

    with pytest.raises(DataPreservationError) as e:
        coordinator.upgrade(UpgradeTarget("DexPair", new_pair.code), [first_pair])

    assert e.value.address == ledger.address_of(FIRST_PAIR)
    assert e.value.changed == ["active"]
