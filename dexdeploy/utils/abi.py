"""
Per-method request/response schemas for the contract classes the tooling
talks to. Every payload crossing the chain client boundary is checked here,
so the rest of the code only ever sees normalized values: checksum
addresses, `0x` hex strings for code, plain ints and bools.
"""
from dataclasses import dataclass, field

from eth_utils import is_address, is_hexstr, to_checksum_address, to_hex

from dexdeploy.utils.errors import SchemaError


@dataclass(frozen=True)
class Method:
    inputs: dict = field(default_factory=dict)
    outputs: dict = field(default_factory=dict)
    mutates: bool = False


def view(inputs=None, **outputs):
    return Method(inputs=inputs or {}, outputs=outputs)


def tx(**inputs):
    return Method(inputs=inputs, mutates=True)


_POOL_VIEWS = {
    "getRoot": view(dex_root="address"),
    "isActive": view(value0="bool"),
    "getVersion": view(version="uint"),
    "getPoolType": view(value0="uint"),
    "getFeeParams": view(value0="tuple"),
}


METHODS = {
    "TokenRoot": {
        "name": view(value0="string"),
        "symbol": view(value0="string"),
        "decimals": view(value0="uint"),
        "rootOwner": view(value0="address"),
    },
    "DexRoot": {
        "getOwner": view(dex_owner="address"),
        "getPendingOwner": view(dex_pending_owner="address"),
        "isActive": view(value0="bool"),
        "getVault": view(value0="address"),
        "getPlatformCode": view(value0="bytes"),
        "getAccountCode": view(value0="bytes"),
        "getAccountVersion": view(value0="uint"),
        "getPairCode": view({"pool_type": "uint"}, value0="bytes"),
        "getPairVersion": view({"pool_type": "uint"}, value0="uint"),
        "getPoolCode": view({"pool_type": "uint"}, value0="bytes"),
        "getPoolVersion": view({"pool_type": "uint"}, value0="uint"),
        "getExpectedPairAddress": view({"left_root": "address", "right_root": "address"}, value0="address"),
        "getExpectedPoolAddress": view({"roots": "address[]"}, value0="address"),
        "getTokenVaultCode": view(value0="bytes"),
        "getTokenVaultVersion": view(value0="uint"),
        "getExpectedAccountAddress": view({"account_owner": "address"}, value0="address"),
        "getExpectedTokenVaultAddress": view({"token_root": "address"}, value0="address"),
        "setVault": tx(new_vault="address"),
        "setActive": tx(new_active="bool"),
        "installOrUpdateAccountCode": tx(code="bytes"),
        "installOrUpdatePairCode": tx(code="bytes", pool_type="uint"),
        "installOrUpdatePoolCode": tx(code="bytes", pool_type="uint"),
        "installOrUpdateTokenVaultCode": tx(code="bytes"),
        "deployPair": tx(left_root="address", right_root="address"),
        "deployStablePool": tx(roots="address[]"),
        "deployAccount": tx(account_owner="address"),
        "setPairFeeParams": tx(_roots="address[]", _params="tuple"),
        "upgradePair": tx(left_root="address", right_root="address", pool_type="uint"),
        "upgradePool": tx(roots="address[]", pool_type="uint"),
        "forceUpgradeAccount": tx(account_owner="address"),
        "upgradeTokenVault": tx(token_root="address"),
        "upgrade": tx(code="bytes"),
    },
    "DexVault": {
        "getRoot": view(value0="address"),
        "getOwner": view(value0="address"),
        "upgrade": tx(code="bytes"),
    },
    "DexPair": dict(_POOL_VIEWS, getTokenRoots=view(left="address", right="address", lp="address")),
    "DexStablePair": dict(_POOL_VIEWS, getTokenRoots=view(left="address", right="address", lp="address")),
    "DexStablePool": dict(_POOL_VIEWS, getTokenRoots=view(roots="address[]", lp="address")),
    "DexTokenVault": {
        "getRoot": view(value0="address"),
        "getTokenRoot": view(token_root="address"),
        "getVersion": view(version="uint"),
    },
    "DexAccount": {
        "getRoot": view(value0="address"),
        "getOwner": view(value0="address"),
        "getVersion": view(version="uint"),
        "requestUpgrade": tx(),
    },
}


def method(contract_class, name):
    try:
        return METHODS[contract_class][name]
    except KeyError:
        raise SchemaError(f"{contract_class} has no method `{name}`") from None


def normalize(kind, value, where):
    if kind == "address":
        if not isinstance(value, str) or not is_address(value):
            raise SchemaError(f"{where}: expected address, got {value!r}")
        return to_checksum_address(value)
    if kind == "address[]":
        if not isinstance(value, (list, tuple)):
            raise SchemaError(f"{where}: expected address list, got {value!r}")
        return [normalize("address", v, where) for v in value]
    if kind == "uint":
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise SchemaError(f"{where}: expected unsigned int, got {value!r}")
        return value
    if kind == "bool":
        if not isinstance(value, bool):
            raise SchemaError(f"{where}: expected bool, got {value!r}")
        return value
    if kind == "bytes":
        if isinstance(value, (bytes, bytearray)):
            return to_hex(bytes(value))
        if isinstance(value, str) and is_hexstr(value):
            return value if value.startswith("0x") else f"0x{value}"
        raise SchemaError(f"{where}: expected bytes, got {value!r}")
    if kind == "string":
        if not isinstance(value, str):
            raise SchemaError(f"{where}: expected string, got {value!r}")
        return value
    if kind == "tuple":
        if not isinstance(value, dict):
            raise SchemaError(f"{where}: expected struct, got {value!r}")
        return dict(value)
    raise SchemaError(f"{where}: unknown type {kind}")


def _check(fields, payload, where):
    payload = payload or {}
    if not isinstance(payload, dict):
        raise SchemaError(f"{where}: expected an object, got {payload!r}")
    missing = set(fields) - set(payload)
    extra = set(payload) - set(fields)
    if missing or extra:
        raise SchemaError(f"{where}: missing {sorted(missing)}, unexpected {sorted(extra)}")
    return {key: normalize(kind, payload[key], f"{where}.{key}") for key, kind in fields.items()}


def encode_inputs(contract_class, name, args):
    return _check(method(contract_class, name).inputs, args, f"{contract_class}.{name}(args)")


def decode_outputs(contract_class, name, result):
    return _check(method(contract_class, name).outputs, result, f"{contract_class}.{name}(result)")
