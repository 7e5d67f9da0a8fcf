from dexdeploy.utils.migration import Migration

tag = "dex-root"
dependencies = ["owner-account"]
# completion is tracked by step status, so code installation is re-checked on resume


def _same_code(installed, code):
    return installed.lower() == code.lower()


def migrate(migration: Migration):
    migration.log.h2("DEX root and vault")

    owner = migration.get_address("DexOwner")
    params = migration.params
    artifacts = migration.artifacts
    pool_types = migration.blueprint.POOL_TYPES

    root = migration.deploy(
        "DexRoot",
        owner,
        artifacts["DexPlatform"].code,
        value=params["DEPLOY_ROOT_VALUE"],
    )
    vault = migration.deploy(
        "DexVault",
        owner,
        root.address,
        value=params["DEPLOY_VAULT_VALUE"],
    )

    if root.getVault()["value0"] != vault.address:
        migration.execute(root.setVault, new_vault=vault.address)

    # code registry
    account_code = artifacts["DexAccount"].code
    if not _same_code(root.getAccountCode()["value0"], account_code):
        migration.execute(
            root.installOrUpdateAccountCode,
            code=account_code,
            value=params["INSTALL_CODE_VALUE"],
        )

    for name in ("DexPair", "DexStablePair"):
        code = artifacts[name].code
        if not _same_code(root.getPairCode(pool_type=pool_types[name])["value0"], code):
            migration.execute(
                root.installOrUpdatePairCode,
                code=code,
                pool_type=pool_types[name],
                value=params["INSTALL_CODE_VALUE"],
            )

    pool_code = artifacts["DexStablePool"].code
    if not _same_code(root.getPoolCode(pool_type=pool_types["DexStablePool"])["value0"], pool_code):
        migration.execute(
            root.installOrUpdatePoolCode,
            code=pool_code,
            pool_type=pool_types["DexStablePool"],
            value=params["INSTALL_CODE_VALUE"],
        )

    token_vault_code = artifacts["DexTokenVault"].code
    if not _same_code(root.getTokenVaultCode()["value0"], token_vault_code):
        migration.execute(
            root.installOrUpdateTokenVaultCode,
            code=token_vault_code,
            value=params["INSTALL_CODE_VALUE"],
        )

    if not root.isActive()["value0"]:
        migration.execute(root.setActive, new_active=True)

    migration.log.h3(f"DexRoot active: {root.isActive()['value0']}")
    migration.log.h3(f"DexAccount code version: {root.getAccountVersion()['value0']}")
    migration.log.h3(f"DexPair code version: {root.getPairVersion(pool_type=pool_types['DexPair'])['value0']}")
