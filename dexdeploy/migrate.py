import os
import sys

import click

from config.BluePrint import PARAMS
from dexdeploy.utils import log
from dexdeploy.utils.chain_client import JsonRpcChainClient
from dexdeploy.utils.deploy_args import DeployArgs
from dexdeploy.utils.ledger import DeploymentLedger
from dexdeploy.utils.local_chain import LocalChain
from dexdeploy.utils.migration_helpers import get_account, load_artifacts
from dexdeploy.utils.migration_runner import MigrationRunner, load_steps, select_steps

MIGRATION_SCRIPTS_DIR = "./migrations"
MIGRATION_HISTORY_DIR = "./migration_history"


CLICK_PROMPTS = {
    "rpc": {
        "prompt": "What is the desired rpc?",
        "default": "",
        "help": "JSON-RPC gateway url of the chain to deploy to. Defaults to `RPC_URL` from the environment.",
    },
    "environment": {
        "prompt": "Inform the environment name",
        "default": "dev",
        "help": f"Environment of manifests that are written and read by migration scripts to pass state from previous migrations. Defaults to `dev`.",
    },
    "blueprint": {
        "prompt": "Blueprint",
        "default": "",
        "help": "Blueprint to use for the migration. Defaults to the chain name.",
    },
    "chain": {
        "prompt": "Chain name",
        "default": "local",
        "help": "Chain name for custom configuration on the deployment (ex: local, testnet, mainnet). Defaults to `local`",
        "type": click.Choice(list(PARAMS), case_sensitive=False),
    },
    "account": {
        "prompt": "Deployer account name",
        "default": "DEPLOYER",
        "help": "Account name for deployment. Defaults to `DEPLOYER`"
    },
    "manifest": {
        "prompt": "Manifest",
        "default": "current",
        "help": "Manifest to use. Defaults to `current`.",
    },
}


def param_prompt(ctx, param, value):
    param_config = CLICK_PROMPTS.get(param.name)
    is_configured_param = not (param_config is None)

    if not is_configured_param:
        return value

    default_val = param_config.get("default")
    prompt = param_config.get("prompt")
    optional = param_config.get("optional", default_val is not None)

    if value != default_val:
        return value

    if prompt is None or (ctx.params.get("silent") and optional):
        return value

    should_prompt = True

    depends = param_config.get("depends")

    if not (depends is None):
        should_prompt = False
        for key in depends.keys():
            dependency_val = ctx.params.get(key)
            if dependency_val == depends[key]:
                should_prompt = True
                break

    if not should_prompt:
        return value

    value = click.prompt(
        f"{prompt} --{param.name.replace('_', '-')}",
        default=default_val,
        hide_input=param.name == "password",
        type=param_config.get("type"),
    )

    return value


def get_client(chain, rpc, sender, artifacts):
    """
    Client for `chain`: an in-process chain for `local`, the JSON-RPC
    gateway at `rpc` (or `RPC_URL`) otherwise.
    """
    params = PARAMS[chain]
    if chain == "local":
        return LocalChain(sender.address, artifacts, params["LOCAL_DEPLOYER_BALANCE"]), "local"

    final_rpc = rpc if rpc else os.environ.get("RPC_URL", "")
    if not final_rpc:
        raise click.UsageError(f"No rpc configured for chain `{chain}`; pass --rpc or set RPC_URL")
    client = JsonRpcChainClient(
        final_rpc,
        sender.address,
        timeout=params["CALL_TIMEOUT"],
        finalize_timeout=params["FINALIZE_TIMEOUT"],
    )
    return client, final_rpc


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
    "--blueprint", "-b",
    default=CLICK_PROMPTS["blueprint"]["default"],
    help=CLICK_PROMPTS["blueprint"]["help"],
    callback=param_prompt,
)
@click.option(
    "--account", "-a",
    default=CLICK_PROMPTS["account"]["default"],
    help=CLICK_PROMPTS["account"]["help"],
    callback=param_prompt,
)
@click.option(
    "--tag", "-t", "tags",
    multiple=True,
    help="Run only this step and the steps it depends on. Can be repeated.",
)
@click.option(
    "--force",
    multiple=True,
    help="Re-run this step even if its outputs are registered. Can be repeated.",
)
def cli(silent, rpc, environment, chain, blueprint, account, tags, force):
    """
    Deploys the DEX by running migration steps.

    Migration steps are located in `./migrations/<chain>/<environment>`.
    Step filenames are prefixed with a number that sets declaration order;
    each step declares a `tag` and the tags it depends on, and runs after
    all of them. Steps whose outputs are already registered are skipped.

    Deployed instances are recorded in a ledger kept in
    `./migration_history/<chain>/<environment>`: `current-manifest.json`
    holds every record, `<tag>-manifest.json` the records one step wrote.
    Re-running after a failure resumes from the failed step.
    """

    sender = get_account(account)
    artifacts = load_artifacts()
    client, final_rpc = get_client(chain, rpc, sender, artifacts)

    deploy_args = DeployArgs(sender, chain, client, blueprint=blueprint or None, rpc=final_rpc)

    log.h1("Contract Migration")
    log.info(f"Connected to rpc `{final_rpc}`.")
    log.info(f"Deployer account `{sender.address}`.")
    log.info(f"Manifests are stored in `{environment}`.")
    log.info(f"Deployment arguments: {deploy_args}")
    log.info(f"Chain: {chain}.")
    log.info("")
    log.info(f"Loaded {len(artifacts)} contract artifacts.")

    steps = load_steps(f"{MIGRATION_SCRIPTS_DIR}/{chain}/{environment}")
    if tags:
        steps = select_steps(steps, tags)
    log.info(f"Loaded {len(steps)} migration steps.")

    ledger = DeploymentLedger(f"{MIGRATION_HISTORY_DIR}/{chain}/{environment}")
    if chain == "local":
        log.info("Local chain starts empty, previous manifests are ignored.")
    else:
        ledger.load()

    log.h2("Running migrations...")
    result = MigrationRunner(deploy_args, artifacts).run(steps, ledger, force=force)

    for outcome in result.outcomes:
        log.info(f"\t{outcome.tag}: {outcome.status.value}")
    for warning in result.warnings:
        log.warn(str(warning))
    log.info(f"Total funding spent: {result.spent}")

    if not result.ok:
        log.error(f"Migration failed at step `{result.failed_tag}`.")
        sys.exit(1)

    log.info("Done.")
    log.info("")


if __name__ == "__main__":
    cli()
