from dexdeploy.utils.migration import Migration
from dexdeploy.utils.migration_helpers import pool_label

tag = "dex-stable"
dependencies = ["owner-account", "tokens", "dex-root"]


def outputs(deploy_args):
    tokens = deploy_args.blueprint.TOKENS
    if not tokens["STABLE_POOL_TOKENS"]:
        return []
    return [pool_label(tokens["STABLE_POOL_TOKENS"]), tokens["STABLE_POOL_LP"]]


def migrate(migration: Migration):
    migration.log.h2("Stable pool")

    tokens = migration.blueprint.TOKENS["STABLE_POOL_TOKENS"]
    if not tokens:
        migration.log.h3("No stable pool configured")
        return

    root = migration.get_contract("DexRoot")
    owner = migration.get_address("DexOwner")
    label = pool_label(tokens)
    roots = [migration.get_address(token) for token in tokens]

    pool = migration.deploy_pool(root, roots, label)
    migration.configure(
        label,
        root.setPairFeeParams,
        _roots=roots,
        _params=dict(migration.blueprint.FEE_PARAMS, beneficiary=owner),
        value=migration.params["SET_FEE_PARAMS_VALUE"],
    )

    lp = pool.getTokenRoots()["lp"]
    migration.include_contract(migration.blueprint.TOKENS["STABLE_POOL_LP"], lp, "TokenRoot")

    migration.log.h3(f"{label} version: {pool.getVersion()['version']}")
    migration.log.h3(f"{label} lp token: {lp}")
