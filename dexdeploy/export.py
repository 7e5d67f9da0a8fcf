import sys

import click

from config.BluePrint import CODE_HASHES, PARAMS
from dexdeploy.migrate import CLICK_PROMPTS, MIGRATION_HISTORY_DIR, get_client, param_prompt
from dexdeploy.utils import log
from dexdeploy.utils.chain_scanner import PROFILES, ChainScanner, export_snapshot, reconcile, recover
from dexdeploy.utils.ledger import DeploymentLedger
from dexdeploy.utils.migration_helpers import get_account, load_artifacts

EXPORTS_DIR = "./exports"


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
@click.option(
    "--profile", "-p",
    type=click.Choice(list(PROFILES)),
    default="pairs",
    help="Instances to export. Defaults to `pairs`.",
)
@click.option("--fingerprint", default="", help="Code hash to scan for. Defaults to the configured hash of the class.")
@click.option("--root", default="", help="Expected root address. Defaults to the ledger's `DexRoot`.")
@click.option("--output", "-o", default="", help="Snapshot file; `.jsonl` writes one record per line.")
@click.option("--reconcile", "check", is_flag=True, default=False, help="Compare the snapshot against the ledger.")
@click.option("--recover", "restore", is_flag=True, default=False, help="Register live instances missing from the ledger.")
def cli(silent, rpc, environment, chain, account, profile, fingerprint, root, output, check, restore):
    """
    Exports every live instance of a class linked to the DEX root.

    Instances are discovered by code hash page by page, then each one's
    root is read back; instances of other roots are dropped. The result is
    written sorted by address to `./exports/<chain>/<profile>.json`.
    """

    if chain == "local":
        log.error("Exports need a live chain; the local chain only exists during a migration run.")
        sys.exit(1)

    scan_profile = PROFILES[profile]
    artifacts = load_artifacts()
    sender = get_account(account)
    client, final_rpc = get_client(chain, rpc, sender, artifacts)
    ledger = DeploymentLedger(f"{MIGRATION_HISTORY_DIR}/{chain}/{environment}").load()

    if not fingerprint:
        fingerprint = CODE_HASHES[chain].get(scan_profile.contract_class)
    if not fingerprint and scan_profile.contract_class in artifacts:
        fingerprint = artifacts[scan_profile.contract_class].code_hash
    if not fingerprint:
        raise click.BadParameter(f"No code hash known for {scan_profile.contract_class}", param_hint="--fingerprint")

    root = root or ledger.address_of("DexRoot")
    output = output or f"{EXPORTS_DIR}/{chain}/{profile}.json"

    log.h1("Instance Export")
    log.info(f"Connected to rpc `{final_rpc}`.")
    log.info(f"Root: {root}.")
    log.info(f"Fingerprint: {fingerprint}.")

    scanner = ChainScanner.from_params(client, PARAMS[chain])
    report = scanner.collect(fingerprint, root, scan_profile)
    export_snapshot(output, report.verified)

    if check or restore:
        result = reconcile(ledger, report.verified, scan_profile.contract_class)
        log.info(f"{len(result.matched)} ledger entries found on chain.")
        if restore:
            records = recover(ledger, report.verified, scan_profile.contract_class)
            log.info(f"{len(records)} instances registered in the ledger.")
        elif not result.ok:
            sys.exit(1)

    log.info("Done.")
    log.info("")


if __name__ == "__main__":
    cli()
