# native coin (nano units)
ONE_COIN = 10**9

# seconds
FINALIZE_TIMEOUT = 60
CALL_TIMEOUT = 15

LP_DECIMALS = 9


PARAMS = {
    "local": {
        # funding attached to root calls
        "DEPLOY_TOKEN_VALUE": 3 * ONE_COIN,
        "DEPLOY_ROOT_VALUE": 10 * ONE_COIN,
        "DEPLOY_VAULT_VALUE": 5 * ONE_COIN,
        "DEPLOY_PAIR_VALUE": 15 * ONE_COIN,
        "DEPLOY_POOL_VALUE": 20 * ONE_COIN,
        "DEPLOY_ACCOUNT_VALUE": 4 * ONE_COIN,
        "SET_FEE_PARAMS_VALUE": 3 * ONE_COIN // 2,
        "INSTALL_CODE_VALUE": 3 * ONE_COIN,
        "UPGRADE_INSTANCE_VALUE": 10 * ONE_COIN,
        "UPGRADE_ACCOUNT_VALUE": 6 * ONE_COIN,
        "UPGRADE_TOKEN_VAULT_VALUE": 6 * ONE_COIN,
        "UPGRADE_ROOT_VALUE": 11 * ONE_COIN,
        "UPGRADE_VAULT_VALUE": 6 * ONE_COIN,
        "ADMIN_CALL_VALUE": 1 * ONE_COIN,
        # timeouts (seconds)
        "FINALIZE_TIMEOUT": FINALIZE_TIMEOUT,
        "CALL_TIMEOUT": CALL_TIMEOUT,
        # chain scan
        "SCAN_PAGE_SIZE": 50,
        "SCAN_WORKERS": 8,
        "SCAN_TIMEOUT": 120,
        # local chain only
        "LOCAL_DEPLOYER_BALANCE": 100_000 * ONE_COIN,
    },
    "testnet": {
        "DEPLOY_TOKEN_VALUE": 3 * ONE_COIN,
        "DEPLOY_ROOT_VALUE": 10 * ONE_COIN,
        "DEPLOY_VAULT_VALUE": 5 * ONE_COIN,
        "DEPLOY_PAIR_VALUE": 15 * ONE_COIN,
        "DEPLOY_POOL_VALUE": 20 * ONE_COIN,
        "DEPLOY_ACCOUNT_VALUE": 4 * ONE_COIN,
        "SET_FEE_PARAMS_VALUE": 3 * ONE_COIN // 2,
        "INSTALL_CODE_VALUE": 3 * ONE_COIN,
        "UPGRADE_INSTANCE_VALUE": 10 * ONE_COIN,
        "UPGRADE_ACCOUNT_VALUE": 6 * ONE_COIN,
        "UPGRADE_TOKEN_VAULT_VALUE": 6 * ONE_COIN,
        "UPGRADE_ROOT_VALUE": 11 * ONE_COIN,
        "UPGRADE_VAULT_VALUE": 6 * ONE_COIN,
        "ADMIN_CALL_VALUE": 1 * ONE_COIN,
        "FINALIZE_TIMEOUT": 3 * FINALIZE_TIMEOUT,
        "CALL_TIMEOUT": CALL_TIMEOUT,
        "SCAN_PAGE_SIZE": 50,
        "SCAN_WORKERS": 8,
        "SCAN_TIMEOUT": 600,
        "LOCAL_DEPLOYER_BALANCE": 0,
    },
    "mainnet": {
        "DEPLOY_TOKEN_VALUE": 3 * ONE_COIN,
        "DEPLOY_ROOT_VALUE": 10 * ONE_COIN,
        "DEPLOY_VAULT_VALUE": 5 * ONE_COIN,
        "DEPLOY_PAIR_VALUE": 15 * ONE_COIN,
        "DEPLOY_POOL_VALUE": 20 * ONE_COIN,
        "DEPLOY_ACCOUNT_VALUE": 4 * ONE_COIN,
        "SET_FEE_PARAMS_VALUE": 3 * ONE_COIN // 2,
        "INSTALL_CODE_VALUE": 3 * ONE_COIN,
        "UPGRADE_INSTANCE_VALUE": 10 * ONE_COIN,
        "UPGRADE_ACCOUNT_VALUE": 6 * ONE_COIN,
        "UPGRADE_TOKEN_VAULT_VALUE": 6 * ONE_COIN,
        "UPGRADE_ROOT_VALUE": 11 * ONE_COIN,
        "UPGRADE_VAULT_VALUE": 6 * ONE_COIN,
        "ADMIN_CALL_VALUE": 1 * ONE_COIN,
        "FINALIZE_TIMEOUT": 5 * FINALIZE_TIMEOUT,
        "CALL_TIMEOUT": 2 * CALL_TIMEOUT,
        "SCAN_PAGE_SIZE": 50,
        # public gateways throttle hard
        "SCAN_WORKERS": 4,
        "SCAN_TIMEOUT": 1800,
        "LOCAL_DEPLOYER_BALANCE": 0,
    },
}


# test token set: TOKENS_N tokens for every decimals value
TOKENS = {
    "local": {
        "TOKENS_N": 5,
        "TOKENS_DECIMALS": [6, 9, 18],
        "STABLE_POOL_TOKENS": ["token-6-0", "token-9-0", "token-18-0"],
        # ledger name of the stable pool lp token and the token it is paired with
        "STABLE_POOL_LP": "stable-lp",
        "LP_PAIR_TOKEN": "token-9-1",
    },
    "testnet": {
        "TOKENS_N": 3,
        "TOKENS_DECIMALS": [9],
        "STABLE_POOL_TOKENS": ["token-9-0", "token-9-1", "token-9-2"],
        "STABLE_POOL_LP": "stable-lp",
        "LP_PAIR_TOKEN": "token-9-1",
    },
    "mainnet": {
        "TOKENS_N": 0,
        "TOKENS_DECIMALS": [],
        "STABLE_POOL_TOKENS": [],
        "STABLE_POOL_LP": None,
        "LP_PAIR_TOKEN": None,
    },
}


# pool fee params: numerators over denominator, beneficiary filled in by the migration
FEE_PARAMS = {
    "local": {
        "denominator": 1_000_000,
        "pool_numerator": 3_000,
        "beneficiary_numerator": 7_000,
        "referrer_numerator": 0,
        "threshold": [],
        "referrer_threshold": [],
    },
    "testnet": {
        "denominator": 1_000_000,
        "pool_numerator": 3_000,
        "beneficiary_numerator": 7_000,
        "referrer_numerator": 0,
        "threshold": [],
        "referrer_threshold": [],
    },
    "mainnet": {
        "denominator": 1_000_000,
        "pool_numerator": 2_000,
        "beneficiary_numerator": 1_000,
        "referrer_numerator": 500,
        "threshold": [],
        "referrer_threshold": [],
    },
}


# variant types inside the root's code registry
POOL_TYPES = {
    "DexPair": 1,
    "DexStablePair": 2,
    "DexStablePool": 3,
}


# code fingerprints of live classes, used by the export scans
CODE_HASHES = {
    "local": {},
    "testnet": {},
    "mainnet": {},
}
