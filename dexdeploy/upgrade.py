import sys

import click

from config.BluePrint import PARAMS
from dexdeploy.migrate import CLICK_PROMPTS, MIGRATION_HISTORY_DIR, get_client, param_prompt
from dexdeploy.utils import log
from dexdeploy.utils.errors import DexDeployError, UpgradeRejected
from dexdeploy.utils.ledger import DeploymentLedger
from dexdeploy.utils.migration_helpers import get_account, load_artifacts
from dexdeploy.utils.upgrade import UpgradeCoordinator, UpgradeTarget, selectors_from_ledger

SINGLETONS = ("DexRoot", "DexVault")


@click.command()
@click.option("--silent", is_flag=True, default=False, help="Run command without prompts.")
@click.option(
    "--rpc",
    default=CLICK_PROMPTS["rpc"]["default"],
    help=CLICK_PROMPTS["rpc"]["help"],
    callback=param_prompt,
)
@click.option(
    "--environment",
    default=CLICK_PROMPTS["environment"]["default"],
    help=CLICK_PROMPTS["environment"]["help"],
    callback=param_prompt,
)
@click.option(
    "--chain", "-f",
    default=CLICK_PROMPTS["chain"]["default"],
    help=CLICK_PROMPTS["chain"]["help"],
    callback=param_prompt,
)
@click.option(
    "--account", "-a",
    default=CLICK_PROMPTS["account"]["default"],
    help=CLICK_PROMPTS["account"]["help"],
    callback=param_prompt,
)
@click.option("--artifact", required=True, help="Build artifact holding the new code, e.g. `DexPair`.")
@click.option("--name", "names", multiple=True, help="Upgrade only this ledger entry. Can be repeated.")
@click.option("--variant", type=int, default=None, help="Variant type of the installed code. Defaults to the class's own.")
@click.option("--skip-install", is_flag=True, default=False, help="The code is already installed in the root.")
@click.option("--retries", type=int, default=1, help="Attempts per instance for rejected upgrades.")
def cli(silent, rpc, environment, chain, account, artifact, names, variant, skip_install, retries):
    """
    Upgrades deployed contracts to the code of a build artifact.

    The root and the vault receive the new code directly. Pairs, pools and
    accounts are upgraded in two phases: the code is installed into the
    root's registry, then every instance registered in the ledger (or only
    those named with `--name`) is switched to it.
    """

    if chain == "local":
        log.error("Upgrades need a live chain; the local chain only exists during a migration run.")
        sys.exit(1)

    artifacts = load_artifacts()
    if artifact not in artifacts:
        raise click.BadParameter(f"No artifact `{artifact}` in the build directory", param_hint="--artifact")
    candidate = artifacts[artifact]

    sender = get_account(account)
    client, final_rpc = get_client(chain, rpc, sender, artifacts)
    ledger = DeploymentLedger(f"{MIGRATION_HISTORY_DIR}/{chain}/{environment}").load()

    log.h1("Contract Upgrade")
    log.info(f"Connected to rpc `{final_rpc}`.")
    log.info(f"Deployer account `{sender.address}`.")
    log.info(f"Upgrading {candidate.kind} to {candidate.code_hash}.")

    root = client.contract("DexRoot", ledger.address_of("DexRoot"))
    coordinator = UpgradeCoordinator(client, root, PARAMS[chain])

    try:
        if candidate.kind in SINGLETONS:
            for record in ledger.records(candidate.kind):
                coordinator.upgrade_singleton(candidate.kind, record.address, candidate.code)
        else:
            selectors = selectors_from_ledger(client, ledger, candidate.kind, names)
            log.info(f"{len(selectors)} instances selected.")
            target = UpgradeTarget(candidate.kind, candidate.code, variant)
            if not skip_install:
                coordinator.install_code(target.contract_class, target.candidate_code, target.variant_type)

            rejected = []
            for selector in selectors:
                try:
                    coordinator.upgrade(target, [selector], install=False, attempts=retries)
                except UpgradeRejected as exception:
                    log.error(str(exception))
                    rejected.append(selector)

            if rejected:
                log.error(f"{len(rejected)} instances stay on their old code; run again to retry them.")
                sys.exit(1)

    except DexDeployError as exception:
        log.error(str(exception))
        sys.exit(1)

    log.info("Done.")
    log.info("")


if __name__ == "__main__":
    cli()
