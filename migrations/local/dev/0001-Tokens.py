from dexdeploy.utils.migration import Migration
from dexdeploy.utils.migration_helpers import token_label

tag = "tokens"
dependencies = ["owner-account"]


def outputs(deploy_args):
    tokens = deploy_args.blueprint.TOKENS
    return [
        token_label(decimals, i)
        for decimals in tokens["TOKENS_DECIMALS"]
        for i in range(tokens["TOKENS_N"])
    ]


def migrate(migration: Migration):
    migration.log.h2("Test tokens")

    owner = migration.get_address("DexOwner")
    tokens = migration.blueprint.TOKENS

    for decimals in tokens["TOKENS_DECIMALS"]:
        for i in range(tokens["TOKENS_N"]):
            label = token_label(decimals, i)
            migration.deploy(
                "TokenRoot",
                label,
                label.upper(),
                decimals,
                owner,
                label=label,
            )
