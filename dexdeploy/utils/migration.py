from dataclasses import dataclass
from typing import Callable, Optional

from config.BluePrint import POOL_TYPES
from dexdeploy.utils import log
from dexdeploy.utils.address_resolver import AddressResolver
from dexdeploy.utils.chain_client import DeployRequest
from dexdeploy.utils.deploy_args import DeployArgs
from dexdeploy.utils.errors import (ChainClientError, LedgerError,
                                    PartiallyConfigured, TransactionFailed)
from dexdeploy.utils.ledger import REGISTERED, UNCONFIGURED, DeploymentRecord
from dexdeploy.utils.migration_helpers import args_hash, execute_transaction


@dataclass
class MigrationStep:
    """
    A named unit of work. `outputs` lists the ledger names the step
    produces (or is a callable of the deploy args returning them); when all
    of them are registered the step is skipped.
    """
    tag: str
    run: Callable
    dependencies: tuple = ()
    outputs: object = ()
    filename: Optional[str] = None

    def expected_outputs(self, deploy_args):
        outputs = self.outputs(deploy_args) if callable(self.outputs) else self.outputs
        return list(outputs or ())


class Migration:
    """
    Context handed to a step's `migrate` function. Every deployment goes
    through `NotDeployed -> Submitted -> Verified -> Registered`; every
    stage is re-entrant, so re-running a step never pays for the same
    deployment twice.
    """

    def __init__(self, deploy_args: DeployArgs, ledger, artifacts, tag, force=False):
        self._deploy_args = deploy_args
        self._count = 0
        self.ledger = ledger
        self.artifacts = artifacts
        self.tag = tag
        self.force = force
        self.resolver = AddressResolver(deploy_args.client, artifacts)
        self.warnings = []
        self.spent = 0

    @property
    def client(self):
        return self._deploy_args.client

    @property
    def account(self):
        return self._deploy_args.sender

    @property
    def chain(self):
        return self._deploy_args.chain

    @property
    def blueprint(self):
        return self._deploy_args.blueprint

    @property
    def params(self):
        return self._deploy_args.blueprint.PARAMS

    @property
    def log(self):
        return log

    def get_address(self, name):
        return self.ledger.address_of(name)

    def get_contract(self, name, address=None):
        record = self.ledger.get(name)
        return self.client.contract(self._schema(record.contract_class), address or record.address)

    def _schema(self, class_name):
        # artifacts such as test upgrades share the schema of the class they replace
        artifact = self.artifacts.get(class_name)
        return artifact.kind if artifact else class_name

    ###########
    # Deploys #
    ###########

    def deploy(self, name, *args, label=None, value=None):
        """
        Deploys artifact `name` from the deployer account, or skips if
        already deployed. Returns the deployed contract.
        """
        artifact = self.artifacts[name]
        label = label or name
        value = self.params["DEPLOY_TOKEN_VALUE"] if value is None else value
        expected = self.resolver.expected_address(self.account.address, name, args)

        def submit():
            pending = self.client.deploy(DeployRequest(
                code=artifact.code,
                constructor_types=artifact.constructor_types,
                constructor_args=tuple(args),
                funding=value,
            ))
            return self.client.wait_finalized(pending, timeout=self.params["FINALIZE_TIMEOUT"])

        return self._deploy(
            label, name, expected, submit, value,
            args_hash(artifact.constructor_types, args),
        )

    def deploy_pair(self, root, left, right, label, pool_type=POOL_TYPES["DexPair"], value=None,
                    needs_configuration=True):
        """
        Asks the root to deploy the pool for two token roots. Pairs are
        registered `unconfigured` until `configure` sets their fee params.
        """
        class_name = _pool_class(pool_type)
        expected = self.resolver.expected_pool_address(root.address, [left, right])
        value = self.params["DEPLOY_PAIR_VALUE"] if value is None else value
        return self._deploy(
            label, class_name, expected,
            lambda: execute_transaction(root.deployPair, left_root=left, right_root=right, value=value),
            value, args_hash(("address[]",), (sorted([left, right]),)),
            needs_configuration=needs_configuration,
        )

    def deploy_pool(self, root, roots, label, value=None, needs_configuration=True):
        expected = self.resolver.expected_pool_address(root.address, roots)
        value = self.params["DEPLOY_POOL_VALUE"] if value is None else value
        return self._deploy(
            label, "DexStablePool", expected,
            lambda: execute_transaction(root.deployStablePool, roots=list(roots), value=value),
            value, args_hash(("address[]",), (sorted(roots),)),
            needs_configuration=needs_configuration,
        )

    def deploy_account(self, root, owner, label, value=None):
        expected = self.resolver.expected_account_address(root.address, owner)
        value = self.params["DEPLOY_ACCOUNT_VALUE"] if value is None else value
        return self._deploy(
            label, "DexAccount", expected,
            lambda: execute_transaction(root.deployAccount, account_owner=owner, value=value),
            value, args_hash(("address",), (owner,)),
        )

    def _deploy(self, label, class_name, expected, submit, value, constructor_hash,
                needs_configuration=False):
        self._count += 1
        log.h2(f"Transaction {self._count} for migration step {self.tag} - Deploying {label}")

        if self.ledger.exists(label) and not self.force:
            record = self.ledger.get(label)
            if record.address != expected:
                raise LedgerError(
                    f"`{label}` is registered at {record.address} but its arguments now "
                    f"resolve to {expected}"
                )
            log.h3(f"Skipping deployment of {label}, registered at {record.address}")
            return self.get_contract(label)

        state = self.resolver.verify_deployed(expected)
        if state.exists:
            log.h3(f"{label} already live at {expected}, registering without resubmitting")
        else:
            tx = submit()
            self.spent += value + tx.fees
            if not tx.success:
                raise TransactionFailed(f"Deploying {label}", tx.error_code)
            log.h3(f"Contract {class_name} deployed at {expected}")

        self.resolver.confirm(expected, class_name)

        self.ledger.save(DeploymentRecord(
            logical_name=label,
            contract_class=class_name,
            address=expected,
            args_hash=constructor_hash,
            status=UNCONFIGURED if needs_configuration else REGISTERED,
            step=self.tag,
        ), force=self.force)
        return self.get_contract(label)

    def include_contract(self, name, address, contract_class="Account"):
        """
        Registers an address this step did not deploy, e.g. the owner account.
        """
        if self.ledger.is_complete(name) and self.ledger.address_of(name) == address:
            return self.ledger.get(name)
        return self.ledger.save(DeploymentRecord(
            logical_name=name,
            contract_class=contract_class,
            address=address,
            step=self.tag,
        ), force=self.force)

    ################
    # Transactions #
    ################

    def execute(self, function, value=None, **kwargs):
        """
        Sends a transaction and waits for it to finalize. A failed
        transaction raises `TransactionFailed`.
        """
        self._count += 1
        value = self.params["ADMIN_CALL_VALUE"] if value is None else value
        log.h2(f"Transaction {self._count} for migration step {self.tag} - {function} - {kwargs}")

        tx = execute_transaction(function, value=value, **kwargs)
        self.spent += value + tx.fees
        if not tx.success:
            raise TransactionFailed(str(function), tx.error_code)

        log.h3("Transaction confirmed")
        return tx

    def configure(self, label, function, value=None, **kwargs):
        """
        Follow-up configuration of an `unconfigured` deployment. A failure
        leaves the instance usable under default parameters and is
        collected as a `PartiallyConfigured` warning; the next run retries
        only this call.
        """
        record = self.ledger.get(label)
        if record.status == REGISTERED and not self.force:
            log.h3(f"{label} already configured")
            return None

        self._count += 1
        value = self.params["ADMIN_CALL_VALUE"] if value is None else value
        log.h2(f"Transaction {self._count} for migration step {self.tag} - Configuring {label} - {function}")

        reason = None
        try:
            tx = execute_transaction(function, value=value, **kwargs)
            self.spent += value + tx.fees
            if tx.success:
                self.ledger.set_status(label, REGISTERED)
                log.h3(f"{label} configured")
                return tx
            reason = f"{function} failed (error code: {tx.error_code})"
        except ChainClientError as exception:
            tx = None
            reason = str(exception)

        warning = PartiallyConfigured(label, record.address, reason)
        self.warnings.append(warning)
        log.warn(str(warning))
        return tx

    def end(self):
        """
        Ends the migration step, returns the funding it spent
        """
        log.info(f"Funding spent for migration step {self.tag}: {self.spent}")
        return self.spent


def _pool_class(pool_type):
    for name, value in POOL_TYPES.items():
        if value == pool_type:
            return name
    raise ValueError(f"Unknown pool type {pool_type}")
