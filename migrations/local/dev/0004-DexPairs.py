from dexdeploy.utils.migration import Migration
from dexdeploy.utils.migration_helpers import pair_label, token_pairs

tag = "dex-pairs"
dependencies = ["owner-account", "tokens", "dex-root", "dex-stable"]


def _pairs(blueprint):
    tokens = blueprint.TOKENS
    return token_pairs(tokens["TOKENS_N"], tokens["TOKENS_DECIMALS"])


def _lp_pair(blueprint):
    tokens = blueprint.TOKENS
    if not tokens["STABLE_POOL_TOKENS"] or not tokens["LP_PAIR_TOKEN"]:
        return None
    return tokens["STABLE_POOL_LP"], tokens["LP_PAIR_TOKEN"]


def outputs(deploy_args):
    pairs = _pairs(deploy_args.blueprint)
    lp_pair = _lp_pair(deploy_args.blueprint)
    if lp_pair:
        pairs.append(lp_pair)
    return [pair_label(left, right) for left, right in pairs]


def _log_pair(migration, label, pair):
    version = pair.getVersion()["version"]
    active = pair.isActive()["value0"]
    migration.log.h3(f"{label}: version {version}, active {active}")


def migrate(migration: Migration):
    migration.log.h2("Pairs")

    root = migration.get_contract("DexRoot")
    owner = migration.get_address("DexOwner")
    fee_params = dict(migration.blueprint.FEE_PARAMS, beneficiary=owner)

    for left, right in _pairs(migration.blueprint):
        label = pair_label(left, right)
        left_root = migration.get_address(left)
        right_root = migration.get_address(right)

        pair = migration.deploy_pair(root, left_root, right_root, label)
        migration.configure(
            label,
            root.setPairFeeParams,
            _roots=[left_root, right_root],
            _params=fee_params,
            value=migration.params["SET_FEE_PARAMS_VALUE"],
        )
        _log_pair(migration, label, pair)

    # stable pool lp token against a plain token, default fee params
    lp_pair = _lp_pair(migration.blueprint)
    if lp_pair:
        lp, token = lp_pair
        label = pair_label(lp, token)
        pair = migration.deploy_pair(
            root, migration.get_address(lp), migration.get_address(token), label,
            needs_configuration=False,
        )
        _log_pair(migration, label, pair)
