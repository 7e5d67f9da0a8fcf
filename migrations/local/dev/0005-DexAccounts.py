from dexdeploy.utils.migration import Migration
from dexdeploy.utils.migration_helpers import fmt_amount

tag = "dex-accounts"
dependencies = ["owner-account", "dex-root"]
outputs = ["DexAccount_DexOwner"]


def migrate(migration: Migration):
    migration.log.h2("Accounts")

    root = migration.get_contract("DexRoot")
    owner = migration.get_address("DexOwner")

    account = migration.deploy_account(root, owner, "DexAccount_DexOwner")

    migration.log.h3(f"DexAccount_DexOwner version: {account.getVersion()['version']}")
    migration.log.h3(f"Owner balance: {fmt_amount(migration.client.get_balance(owner))}")
