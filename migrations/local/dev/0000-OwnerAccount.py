from dexdeploy.utils.migration import Migration

tag = "owner-account"
dependencies = []
outputs = ["DexOwner"]


def migrate(migration: Migration):
    migration.log.h2("Owner account")

    migration.include_contract("DexOwner", migration.account.address)
