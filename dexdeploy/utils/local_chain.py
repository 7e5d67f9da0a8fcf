"""
In-process chain used for `--chain local` runs and tests.

Instances hold a kind (which behaviour table answers their methods), their
current code and a state dict. Code upgrades swap `code` and `kind` but
leave `state` untouched, the same guarantee a real upgrade gives.
"""
import itertools
from dataclasses import dataclass, field
from typing import Optional

from eth_utils import keccak, to_checksum_address

from dexdeploy.utils import abi
from dexdeploy.utils.address_resolver import (ACCOUNT_ROLE, POOL_ROLE, TOKEN_VAULT_ROLE, compute_address,
                                              constructor_salt, platform_salt)
from dexdeploy.utils.chain_client import (AccountsPage, ChainClient, DeployedState,
                                          PendingTx, TxResult)
from dexdeploy.utils.errors import ChainClientError
from dexdeploy.utils.migration_helpers import code_hash

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"

DEFAULT_FEE_PARAMS = {
    "denominator": 1_000_000,
    "pool_numerator": 3_000,
    "beneficiary_numerator": 0,
    "referrer_numerator": 0,
    "beneficiary": ZERO_ADDRESS,
    "threshold": [],
    "referrer_threshold": [],
}


class Revert(Exception):
    pass


def require(condition, message):
    if not condition:
        raise Revert(message)


@dataclass
class Instance:
    kind: str
    code: str
    parent: Optional[str] = None
    state: dict = field(default_factory=dict)


class TokenRoot:
    def init(self, chain, instance, name, symbol, decimals, owner):
        instance.state.update(name=name, symbol=symbol, decimals=decimals, owner=owner)

    def name(self, chain, instance):
        return {"value0": instance.state["name"]}

    def symbol(self, chain, instance):
        return {"value0": instance.state["symbol"]}

    def decimals(self, chain, instance):
        return {"value0": instance.state["decimals"]}

    def rootOwner(self, chain, instance):
        return {"value0": instance.state["owner"]}


class DexRoot:
    def init(self, chain, instance, owner, platform_code):
        instance.state.update(
            owner=owner,
            pending_owner=ZERO_ADDRESS,
            active=False,
            vault=ZERO_ADDRESS,
            platform_code=platform_code,
            codes={},
            versions={},
            pools={},
            accounts={},
            token_vaults={},
        )

    def _only_owner(self, chain, instance):
        require(chain.sender == instance.state["owner"], "not owner")

    def _code(self, instance, key):
        return instance.state["codes"].get(key, "0x")

    def _install(self, chain, instance, key, code):
        self._only_owner(chain, instance)
        require(chain.kind_of(code) is not None, "unknown code")
        instance.state["codes"][key] = code
        instance.state["versions"][key] = instance.state["versions"].get(key, 0) + 1

    def _child_address(self, chain, instance, role, addresses):
        class_id = code_hash(instance.state["platform_code"])
        return compute_address(chain.address_of(instance), class_id, platform_salt(role, addresses))

    def _pool(self, chain, instance, roots):
        address = self._child_address(chain, instance, POOL_ROLE, roots)
        require(address in instance.state["pools"].values(), "pool not exists")
        return address

    def _swap_code(self, chain, address, code, version, **state):
        target = chain.instances[address]
        target.code = code
        target.kind = chain.kind_of(code)
        target.state.update(version=version, **state)

    # views

    def getOwner(self, chain, instance):
        return {"dex_owner": instance.state["owner"]}

    def getPendingOwner(self, chain, instance):
        return {"dex_pending_owner": instance.state["pending_owner"]}

    def isActive(self, chain, instance):
        return {"value0": instance.state["active"]}

    def getVault(self, chain, instance):
        return {"value0": instance.state["vault"]}

    def getPlatformCode(self, chain, instance):
        return {"value0": instance.state["platform_code"]}

    def getAccountCode(self, chain, instance):
        return {"value0": self._code(instance, "account")}

    def getAccountVersion(self, chain, instance):
        return {"value0": instance.state["versions"].get("account", 0)}

    def getPairCode(self, chain, instance, pool_type):
        return {"value0": self._code(instance, f"pool:{pool_type}")}

    def getPairVersion(self, chain, instance, pool_type):
        return {"value0": instance.state["versions"].get(f"pool:{pool_type}", 0)}

    getPoolCode = getPairCode
    getPoolVersion = getPairVersion

    def getExpectedPairAddress(self, chain, instance, left_root, right_root):
        return {"value0": self._child_address(chain, instance, POOL_ROLE, [left_root, right_root])}

    def getExpectedPoolAddress(self, chain, instance, roots):
        return {"value0": self._child_address(chain, instance, POOL_ROLE, roots)}

    def getExpectedAccountAddress(self, chain, instance, account_owner):
        return {"value0": self._child_address(chain, instance, ACCOUNT_ROLE, [account_owner])}

    def getTokenVaultCode(self, chain, instance):
        return {"value0": self._code(instance, "token_vault")}

    def getTokenVaultVersion(self, chain, instance):
        return {"value0": instance.state["versions"].get("token_vault", 0)}

    def getExpectedTokenVaultAddress(self, chain, instance, token_root):
        return {"value0": self._child_address(chain, instance, TOKEN_VAULT_ROLE, [token_root])}

    # admin

    def setVault(self, chain, instance, new_vault):
        self._only_owner(chain, instance)
        instance.state["vault"] = new_vault

    def setActive(self, chain, instance, new_active):
        self._only_owner(chain, instance)
        require(not new_active or instance.state["vault"] != ZERO_ADDRESS, "vault not set")
        instance.state["active"] = new_active

    def installOrUpdateAccountCode(self, chain, instance, code):
        self._install(chain, instance, "account", code)

    def installOrUpdatePairCode(self, chain, instance, code, pool_type):
        require(pool_type in (1, 2), "wrong pool type")
        self._install(chain, instance, f"pool:{pool_type}", code)

    def installOrUpdatePoolCode(self, chain, instance, code, pool_type):
        require(pool_type == 3, "wrong pool type")
        self._install(chain, instance, f"pool:{pool_type}", code)

    def installOrUpdateTokenVaultCode(self, chain, instance, code):
        self._install(chain, instance, "token_vault", code)

    # deployments

    def _deploy_token_vault(self, chain, instance, token_root):
        if token_root in instance.state["token_vaults"]:
            return instance.state["token_vaults"][token_root]
        code = self._code(instance, "token_vault")
        require(code != "0x", "token vault code not installed")
        address = self._child_address(chain, instance, TOKEN_VAULT_ROLE, [token_root])
        root_address = chain.address_of(instance)
        chain.create(address, code, parent=root_address, state=dict(
            dex_root=root_address,
            token_root=token_root,
            version=instance.state["versions"]["token_vault"],
        ))
        instance.state["token_vaults"][token_root] = address
        return address

    def _deploy_pool(self, chain, instance, token_roots, pool_type, **state):
        require(instance.state["active"], "root not active")
        require(len(set(token_roots)) == len(token_roots), "duplicate roots")
        code = self._code(instance, f"pool:{pool_type}")
        require(code != "0x", "pool code not installed")
        require(self._code(instance, "token_vault") != "0x", "token vault code not installed")
        address = self._child_address(chain, instance, POOL_ROLE, token_roots)
        require(address not in chain.instances, "pool exists")
        root_address = chain.address_of(instance)
        lp = to_checksum_address(keccak(b"lp" + bytes.fromhex(address[2:]))[12:])
        chain.create(address, code, parent=root_address, state=dict(
            dex_root=root_address,
            lp=lp,
            active=True,
            pool_type=pool_type,
            version=instance.state["versions"][f"pool:{pool_type}"],
            fee_params=dict(DEFAULT_FEE_PARAMS),
            **state,
        ))
        instance.state["pools"][",".join(sorted(token_roots))] = address
        for token_root in token_roots:
            self._deploy_token_vault(chain, instance, token_root)

    def deployPair(self, chain, instance, left_root, right_root):
        self._deploy_pool(chain, instance, [left_root, right_root], 1, left=left_root, right=right_root)

    def deployStablePool(self, chain, instance, roots):
        require(len(roots) >= 3, "not enough roots")
        self._deploy_pool(chain, instance, roots, 3, roots=list(roots))

    def deployAccount(self, chain, instance, account_owner):
        code = self._code(instance, "account")
        require(code != "0x", "account code not installed")
        address = self._child_address(chain, instance, ACCOUNT_ROLE, [account_owner])
        require(address not in chain.instances, "account exists")
        root_address = chain.address_of(instance)
        chain.create(address, code, parent=root_address, state=dict(
            dex_root=root_address,
            owner=account_owner,
            version=instance.state["versions"]["account"],
        ))
        instance.state["accounts"][account_owner] = address

    def setPairFeeParams(self, chain, instance, _roots, _params):
        self._only_owner(chain, instance)
        address = self._pool(chain, instance, _roots)
        params = dict(DEFAULT_FEE_PARAMS, **_params)
        numerators = params["pool_numerator"] + params["beneficiary_numerator"] + params["referrer_numerator"]
        require(params["denominator"] > 0 and numerators <= params["denominator"], "wrong fee params")
        require(params["beneficiary_numerator"] == 0 or params["beneficiary"] != ZERO_ADDRESS, "no beneficiary")
        chain.instances[address].state["fee_params"] = params

    # upgrades

    def upgradePair(self, chain, instance, left_root, right_root, pool_type):
        self.upgradePool(chain, instance, [left_root, right_root], pool_type)

    def upgradePool(self, chain, instance, roots, pool_type):
        self._only_owner(chain, instance)
        address = self._pool(chain, instance, roots)
        code = self._code(instance, f"pool:{pool_type}")
        require(code != "0x", "pool code not installed")
        self._swap_code(chain, address, code, instance.state["versions"][f"pool:{pool_type}"], pool_type=pool_type)

    def forceUpgradeAccount(self, chain, instance, account_owner):
        self._only_owner(chain, instance)
        address = instance.state["accounts"].get(account_owner)
        require(address is not None, "account not exists")
        code = self._code(instance, "account")
        self._swap_code(chain, address, code, instance.state["versions"]["account"])

    def upgradeTokenVault(self, chain, instance, token_root):
        self._only_owner(chain, instance)
        address = instance.state["token_vaults"].get(token_root)
        require(address is not None, "token vault not exists")
        code = self._code(instance, "token_vault")
        self._swap_code(chain, address, code, instance.state["versions"]["token_vault"])

    def upgrade(self, chain, instance, code):
        self._only_owner(chain, instance)
        require(chain.kind_of(code) == instance.kind, "unknown code")
        instance.code = code


class DexVault:
    def init(self, chain, instance, owner, root):
        instance.state.update(owner=owner, dex_root=root)

    def getRoot(self, chain, instance):
        return {"value0": instance.state["dex_root"]}

    def getOwner(self, chain, instance):
        return {"value0": instance.state["owner"]}

    def upgrade(self, chain, instance, code):
        require(chain.sender == instance.state["owner"], "not owner")
        require(chain.kind_of(code) == instance.kind, "unknown code")
        instance.code = code


class DexPool:
    def getRoot(self, chain, instance):
        return {"dex_root": instance.state["dex_root"]}

    def getTokenRoots(self, chain, instance):
        if "roots" in instance.state:
            return {"roots": instance.state["roots"], "lp": instance.state["lp"]}
        return {"left": instance.state["left"], "right": instance.state["right"], "lp": instance.state["lp"]}

    def isActive(self, chain, instance):
        return {"value0": instance.state["active"]}

    def getVersion(self, chain, instance):
        return {"version": instance.state["version"]}

    def getPoolType(self, chain, instance):
        return {"value0": instance.state["pool_type"]}

    def getFeeParams(self, chain, instance):
        return {"value0": instance.state["fee_params"]}


class DexTokenVault:
    def getRoot(self, chain, instance):
        return {"value0": instance.state["dex_root"]}

    def getTokenRoot(self, chain, instance):
        return {"token_root": instance.state["token_root"]}

    def getVersion(self, chain, instance):
        return {"version": instance.state["version"]}


class DexAccount:
    def getRoot(self, chain, instance):
        return {"value0": instance.state["dex_root"]}

    def getOwner(self, chain, instance):
        return {"value0": instance.state["owner"]}

    def getVersion(self, chain, instance):
        return {"version": instance.state["version"]}

    def requestUpgrade(self, chain, instance):
        require(chain.sender == instance.state["owner"], "not owner")
        root = chain.instances[instance.state["dex_root"]]
        code = root.state["codes"].get("account", "0x")
        version = root.state["versions"].get("account", 0)
        require(code != "0x" and version > instance.state["version"], "already up to date")
        instance.code = code
        instance.kind = chain.kind_of(code)
        instance.state["version"] = version


BEHAVIOURS = {
    "TokenRoot": TokenRoot(),
    "DexRoot": DexRoot(),
    "DexVault": DexVault(),
    "DexPlatform": None,
    "DexPair": DexPool(),
    "DexStablePair": DexPool(),
    "DexStablePool": DexPool(),
    "DexTokenVault": DexTokenVault(),
    "DexAccount": DexAccount(),
}


class LocalChain(ChainClient):
    def __init__(self, sender, artifacts=None, balance=0):
        self.sender = to_checksum_address(sender)
        self.instances = {}
        self.balances = {self.sender: balance}
        self.transactions = {}
        self.sent = []
        self._kinds = {}
        self._tx_ids = itertools.count(1)
        for artifact in (artifacts or {}).values():
            self.register_code(artifact.code, artifact.kind)

    def register_code(self, code, kind):
        self._kinds[code_hash(code)] = kind

    def kind_of(self, code):
        return self._kinds.get(code_hash(code))

    def address_of(self, instance):
        return next(a for a, i in self.instances.items() if i is instance)

    def create(self, address, code, parent=None, state=None):
        kind = self.kind_of(code)
        require(kind is not None, "unknown code")
        self.instances[address] = Instance(kind=kind, code=code, parent=parent, state=state or {})
        self.balances.setdefault(address, 0)
        return self.instances[address]

    def _tx_id(self):
        return f"0x{next(self._tx_ids):064x}"

    def _charge(self, funding, recipient):
        require(self.balances.get(self.sender, 0) >= funding, "insufficient funds")
        self.balances[self.sender] -= funding
        self.balances[recipient] = self.balances.get(recipient, 0) + funding

    def _behaviour(self, address, method):
        instance = self.instances.get(address)
        if instance is None:
            raise ChainClientError(f"No account at {address}")
        handler = getattr(BEHAVIOURS.get(instance.kind), method, None)
        if handler is None or method.startswith("_") or method == "init":
            raise ChainClientError(f"{instance.kind} at {address} has no method `{method}`")
        return instance, handler

    def deploy(self, request):
        salt = constructor_salt(request.constructor_types, request.constructor_args)
        address = compute_address(self.sender, code_hash(request.code), salt)
        tx_id = self._tx_id()
        try:
            require(address not in self.instances, "already deployed")
            require(self.balances.get(self.sender, 0) >= request.funding, "insufficient funds")
            instance = self.create(address, request.code, parent=self.sender)
            behaviour = BEHAVIOURS.get(instance.kind)
            if behaviour is not None:
                try:
                    behaviour.init(self, instance, *request.constructor_args)
                except Revert:
                    del self.instances[address]
                    raise
            self._charge(request.funding, address)
            result = TxResult(tx_id, True, address)
        except Revert as revert:
            result = TxResult(tx_id, False, address, str(revert))
        self.transactions[tx_id] = result
        return PendingTx(tx_id, address)

    def wait_finalized(self, pending, timeout=None):
        return self.transactions[pending.tx_id]

    def call(self, address, method, args):
        instance, handler = self._behaviour(address, method)
        if abi.method(instance.kind, method).mutates:
            raise ChainClientError(f"`{method}` is not a getter")
        try:
            return handler(self, instance, **(args or {}))
        except Revert as revert:
            raise ChainClientError(f"{method} reverted: {revert}") from revert

    def send(self, address, method, args, funding=0):
        tx_id = self._tx_id()
        self.sent.append((address, method))
        try:
            require(address in self.instances, "no account")
            require(self.balances.get(self.sender, 0) >= funding, "insufficient funds")
            instance, handler = self._behaviour(address, method)
            handler(self, instance, **(args or {}))
            self._charge(funding, address)
            result = TxResult(tx_id, True, address)
        except Revert as revert:
            result = TxResult(tx_id, False, address, str(revert))
        self.transactions[tx_id] = result
        return result

    def get_instances_by_code_fingerprint(self, fingerprint, continuation=None, limit=50):
        matching = sorted(
            address for address, instance in self.instances.items()
            if code_hash(instance.code) == fingerprint
        )
        if continuation:
            matching = [a for a in matching if a > continuation]
        page = matching[:limit]
        return AccountsPage(page, page[-1] if page else continuation)

    def get_balance(self, address):
        if address not in self.instances and address not in self.balances:
            return None
        return self.balances.get(address, 0)

    def get_state(self, address):
        instance = self.instances.get(address)
        if instance is None:
            return DeployedState(exists=False)
        return DeployedState(exists=True, code_hash=code_hash(instance.code))
