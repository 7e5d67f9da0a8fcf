import time
from dataclasses import dataclass
from typing import Optional

from config.BluePrint import POOL_TYPES
from dexdeploy.utils import log
from dexdeploy.utils.errors import (CodeInstallRejected, DataPreservationError, DexDeployError,
                                    DeploymentVerificationError, UpgradeRejected)
from dexdeploy.utils.migration_helpers import code_hash, execute_transaction


@dataclass(frozen=True)
class PairSelector:
    left: str
    right: str

    def __str__(self):
        return f"pair({self.left}, {self.right})"


@dataclass(frozen=True)
class PoolSelector:
    roots: tuple

    def __str__(self):
        return f"pool({', '.join(self.roots)})"


@dataclass(frozen=True)
class AccountSelector:
    owner: str

    def __str__(self):
        return f"account of {self.owner}"


@dataclass(frozen=True)
class TokenVaultSelector:
    token_root: str

    def __str__(self):
        return f"token vault of {self.token_root}"


@dataclass(frozen=True)
class InstanceSelector:
    address: str

    def __str__(self):
        return self.address


@dataclass(frozen=True)
class UpgradeTarget:
    contract_class: str
    candidate_code: str
    variant_type: Optional[int] = None
    current_code_hash: Optional[str] = None


# root method that installs code for a class into its registry
INSTALL_METHODS = {
    "DexPair": "installOrUpdatePairCode",
    "DexStablePair": "installOrUpdatePairCode",
    "DexStablePool": "installOrUpdatePoolCode",
    "DexAccount": "installOrUpdateAccountCode",
    "DexTokenVault": "installOrUpdateTokenVaultCode",
}

_POOL_SNAPSHOT = (
    ("root", "getRoot", {}),
    ("token_roots", "getTokenRoots", {}),
    ("active", "isActive", {}),
    ("fee_params", "getFeeParams", {}),
)

# views an upgrade must leave untouched: (field, method, args)
SNAPSHOT_FIELDS = {
    "DexRoot": (
        ("owner", "getOwner", {}),
        ("pending_owner", "getPendingOwner", {}),
        ("active", "isActive", {}),
        ("vault", "getVault", {}),
        ("platform_code", "getPlatformCode", {}),
        ("account_code", "getAccountCode", {}),
        ("account_version", "getAccountVersion", {}),
        ("pair_code", "getPairCode", {"pool_type": POOL_TYPES["DexPair"]}),
        ("pair_version", "getPairVersion", {"pool_type": POOL_TYPES["DexPair"]}),
        ("stable_pair_code", "getPairCode", {"pool_type": POOL_TYPES["DexStablePair"]}),
        ("stable_pair_version", "getPairVersion", {"pool_type": POOL_TYPES["DexStablePair"]}),
        ("pool_code", "getPoolCode", {"pool_type": POOL_TYPES["DexStablePool"]}),
        ("pool_version", "getPoolVersion", {"pool_type": POOL_TYPES["DexStablePool"]}),
        ("token_vault_code", "getTokenVaultCode", {}),
        ("token_vault_version", "getTokenVaultVersion", {}),
    ),
    "DexVault": (
        ("root", "getRoot", {}),
        ("owner", "getOwner", {}),
    ),
    "DexPair": _POOL_SNAPSHOT,
    "DexStablePair": _POOL_SNAPSHOT,
    "DexStablePool": _POOL_SNAPSHOT,
    "DexTokenVault": (
        ("root", "getRoot", {}),
        ("token_root", "getTokenRoot", {}),
    ),
    "DexAccount": (
        ("root", "getRoot", {}),
        ("owner", "getOwner", {}),
    ),
}


class UpgradeCoordinator:
    """
    Two-phase upgrades of root-managed instances: the new code is first
    installed into the root's code registry, then selected instances are
    told to switch to it. Singletons (root, vault) take their new code in a
    single call.

    Every upgraded instance is snapshotted before and after the switch;
    a changed field raises `DataPreservationError`.
    """

    def __init__(self, client, root, params):
        self.client = client
        self.root = root
        self.params = params

    ###########
    # Phase 1 #
    ###########

    def install_code(self, contract_class, code, variant_type=None):
        if contract_class not in INSTALL_METHODS:
            raise DexDeployError(f"{contract_class} code is not managed by the root")

        kwargs = {"code": code}
        if contract_class in POOL_TYPES:
            variant_type = variant_type or POOL_TYPES[contract_class]
            kwargs["pool_type"] = variant_type

        log.h2(f"Installing {contract_class} code (variant {variant_type}) into {self.root.address}")
        function = getattr(self.root, INSTALL_METHODS[contract_class])
        tx = execute_transaction(function, value=self.params["INSTALL_CODE_VALUE"], **kwargs)
        if not tx.success:
            raise CodeInstallRejected(contract_class, variant_type, tx.error_code)

        log.h3(f"{contract_class} code {code_hash(code)} installed")
        return tx

    ###########
    # Phase 2 #
    ###########

    def address_of(self, selector):
        if isinstance(selector, PairSelector):
            return self.root.getExpectedPairAddress(left_root=selector.left, right_root=selector.right)["value0"]
        if isinstance(selector, PoolSelector):
            return self.root.getExpectedPoolAddress(roots=list(selector.roots))["value0"]
        if isinstance(selector, AccountSelector):
            return self.root.getExpectedAccountAddress(account_owner=selector.owner)["value0"]
        if isinstance(selector, TokenVaultSelector):
            return self.root.getExpectedTokenVaultAddress(token_root=selector.token_root)["value0"]
        if isinstance(selector, InstanceSelector):
            return selector.address
        raise TypeError(f"Unknown upgrade selector {selector!r}")

    def trigger_upgrade(self, contract_class, selector, variant_type=None):
        """
        Switches the selected instance to the code currently installed for
        its class. A rejected trigger leaves the instance on its old code
        and raises `UpgradeRejected`; the installed code stays in place.
        """
        pool_type = variant_type or POOL_TYPES.get(contract_class)

        if isinstance(selector, PairSelector):
            function = self.root.upgradePair
            kwargs = {"left_root": selector.left, "right_root": selector.right, "pool_type": pool_type}
            value = self.params["UPGRADE_INSTANCE_VALUE"]
        elif isinstance(selector, PoolSelector):
            function = self.root.upgradePool
            kwargs = {"roots": list(selector.roots), "pool_type": pool_type}
            value = self.params["UPGRADE_INSTANCE_VALUE"]
        elif isinstance(selector, AccountSelector):
            function = self.root.forceUpgradeAccount
            kwargs = {"account_owner": selector.owner}
            value = self.params["UPGRADE_ACCOUNT_VALUE"]
        elif isinstance(selector, TokenVaultSelector):
            function = self.root.upgradeTokenVault
            kwargs = {"token_root": selector.token_root}
            value = self.params["UPGRADE_TOKEN_VAULT_VALUE"]
        elif isinstance(selector, InstanceSelector):
            function = self.client.contract(contract_class, selector.address).requestUpgrade
            kwargs = {}
            value = self.params["UPGRADE_ACCOUNT_VALUE"]
        else:
            raise TypeError(f"Unknown upgrade selector {selector!r}")

        log.h2(f"Upgrading {contract_class} {selector} - {function}")
        tx = execute_transaction(function, value=value, **kwargs)
        if not tx.success:
            raise UpgradeRejected(contract_class, selector, tx.error_code)

        log.h3(f"{contract_class} {selector} upgraded")
        return tx

    def retry_upgrade(self, contract_class, selector, variant_type=None, attempts=3, delay=3):
        for attempt in range(1, attempts + 1):
            try:
                return self.trigger_upgrade(contract_class, selector, variant_type)
            except UpgradeRejected as exception:
                if attempt >= attempts:
                    raise
                log.warn(f"{exception} (attempt {attempt}/{attempts}, trying again in {delay} seconds)")
                time.sleep(delay)

    ############
    # Protocol #
    ############

    def upgrade(self, target: UpgradeTarget, selectors, install=True, attempts=1):
        """
        Installs `target.candidate_code` (unless `install` is False) and
        upgrades every selected instance. Instances already running the
        candidate are skipped; rejected triggers are retried up to `attempts`
        times. Returns `{address: TxResult or None}`.
        """
        candidate_hash = code_hash(target.candidate_code)
        if install:
            self.install_code(target.contract_class, target.candidate_code, target.variant_type)

        results = {}
        for selector in selectors:
            address = self.address_of(selector)
            current = self.client.get_state(address)
            if not current.exists:
                raise UpgradeRejected(target.contract_class, selector, f"no instance at {address}")
            if current.code_hash == candidate_hash:
                log.h3(f"{target.contract_class} {selector} already runs {candidate_hash}, skipping")
                results[address] = None
                continue
            if target.current_code_hash and current.code_hash != target.current_code_hash:
                log.warn(f"{target.contract_class} {selector} runs {current.code_hash}, "
                         f"expected {target.current_code_hash}")

            before = self.snapshot(target.contract_class, address)
            results[address] = self.retry_upgrade(
                target.contract_class, selector, target.variant_type, attempts=attempts,
            )
            self._confirm(address, candidate_hash)
            self.check_preserved(address, before, self.snapshot(target.contract_class, address))

        return results

    def upgrade_singleton(self, contract_class, address, code):
        """
        One-call upgrade of the root or the vault: the new code is sent to
        the instance itself.
        """
        value = self.params["UPGRADE_ROOT_VALUE" if contract_class == "DexRoot" else "UPGRADE_VAULT_VALUE"]
        contract = self.client.contract(contract_class, address)

        before = self.snapshot(contract_class, address)
        log.h2(f"Upgrading {contract_class} at {address}")
        tx = execute_transaction(contract.upgrade, code=code, value=value)
        if not tx.success:
            raise UpgradeRejected(contract_class, address, tx.error_code)

        self._confirm(address, code_hash(code))
        self.check_preserved(address, before, self.snapshot(contract_class, address))
        log.h3(f"{contract_class} at {address} upgraded")
        return tx

    #############
    # Snapshots #
    #############

    def snapshot(self, contract_class, address):
        contract = self.client.contract(contract_class, address)
        return {
            name: getattr(contract, method)(**args)
            for name, method, args in SNAPSHOT_FIELDS[contract_class]
        }

    def check_preserved(self, address, before, after):
        changed = [name for name in before if before[name] != after.get(name)]
        if changed:
            raise DataPreservationError(address, changed)

    def _confirm(self, address, expected_hash):
        state = self.client.get_state(address)
        if state.code_hash != expected_hash:
            raise DeploymentVerificationError(address, expected_hash, state.code_hash)


def selectors_from_ledger(client, ledger, contract_class, names=None):
    """
    Upgrade selectors for every `contract_class` record in the ledger
    (or only `names`), read from the instances' own views. Token vaults
    are deployed by the root, not registered, so they are selected by the
    token roots in the ledger.
    """
    if contract_class == "DexTokenVault":
        return [
            TokenVaultSelector(record.address)
            for record in ledger.records("TokenRoot")
            if not names or record.logical_name in names
        ]

    selectors = []
    for record in ledger.records(contract_class):
        if names and record.logical_name not in names:
            continue
        contract = client.contract(contract_class, record.address)
        if contract_class in ("DexPair", "DexStablePair"):
            roots = contract.getTokenRoots()
            selectors.append(PairSelector(roots["left"], roots["right"]))
        elif contract_class == "DexStablePool":
            selectors.append(PoolSelector(tuple(contract.getTokenRoots()["roots"])))
        elif contract_class == "DexAccount":
            selectors.append(AccountSelector(contract.getOwner()["value0"]))
        else:
            selectors.append(InstanceSelector(record.address))
    return selectors
