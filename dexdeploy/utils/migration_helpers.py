import os
import time
from dataclasses import dataclass

import dotenv
from eth_abi.abi import encode
from eth_account import Account
from eth_utils import keccak, to_hex

from config.BluePrint import ONE_COIN
from dexdeploy.utils import json_file, log
from dexdeploy.utils.errors import ChainClientError, Timeout

dotenv.load_dotenv()

# Define constants for directories
BUILD_DIR = "./build"


TEST_PRIVATE_KEY = '0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80'


@dataclass(frozen=True)
class Artifact:
    name: str
    kind: str
    code: str
    constructor_names: tuple
    constructor_types: tuple

    @property
    def code_hash(self):
        return code_hash(self.code)


def code_hash(code):
    # fingerprint of a compiled class: keccak of its code
    if isinstance(code, str):
        return to_hex(keccak(hexstr=code))
    return to_hex(keccak(code))


def load_artifacts(directories=[BUILD_DIR]):
    """
    Load all contract artifacts from the specified directories and their subdirectories.
    Keys are the file names without the `.json` extension.
    """
    artifacts = {}

    for directory in directories:
        if not os.path.exists(directory):
            continue

        for root, _, files in os.walk(directory):
            for file in sorted(files):
                if not file.endswith('.json'):
                    continue
                content = json_file.load(os.path.join(root, file))
                name = file[:-5]
                constructor = content.get("constructor", [])
                artifacts[name] = Artifact(
                    name=name,
                    kind=content.get("kind", name),
                    code=content["code"],
                    constructor_names=tuple(i["name"] for i in constructor),
                    constructor_types=tuple(i["type"] for i in constructor),
                )

    return artifacts


def get_account(accountName):
    log.h1(f'Connecting to deployer account {accountName}')

    accountKey = os.environ.get(f'{accountName}_PRIVATE_KEY')
    account = Account.from_key(
        accountKey if accountKey else TEST_PRIVATE_KEY)
    log.h2(f'Deployer account {accountName} connected')

    return account


def execute_transaction(transaction, *args, **kwargs):
    """
    Runs `transaction`, retrying transport failures. Timeouts are not retried:
    a timed out send may still finalize. Reverts surface as a failed
    `TxResult` and are returned to the caller as is.
    """
    attempts = 0
    max_attempts = kwargs.pop("max_attempts", 5)
    delay = kwargs.pop("retry_delay", 3)
    if kwargs.pop("no_retry", False):
        max_attempts = 1

    while True:
        attempts += 1
        try:
            return transaction(*args, **kwargs)

        except Timeout:
            raise

        except ChainClientError as exception:
            log.info(
                "\tTransaction Failed "
                + str(attempts)
                + " time"
                + ("s" if attempts > 1 else "")
                + (f" (Trying again in {delay} seconds)" if attempts < max_attempts else "")
            )
            log.error(f"\tException: {str(exception)}\n")
            if attempts >= max_attempts:
                log.error(f"\tMax attempts reached. Exiting.\n")
                raise

            time.sleep(delay)


def encode_constructor_args(types, args) -> str:
    """
    Encode constructor arguments with their declared types.
    Returns hex string without '0x' prefix
    """
    if not types:
        return ""

    # Convert objects with address attribute to their address,
    # hex strings to raw bytes for `bytes` inputs
    processed_args = []
    for kind, arg in zip(types, args):
        if hasattr(arg, 'address'):
            processed_args.append(arg.address)
        elif kind.startswith("bytes") and isinstance(arg, str):
            processed_args.append(bytes.fromhex(arg.removeprefix("0x")))
        else:
            processed_args.append(arg)

    return encode(list(types), processed_args).hex()


def args_hash(types, args):
    return to_hex(keccak(hexstr=encode_constructor_args(types, args) or "0x"))


#########
# Pairs #
#########


def unordered_pairs(items):
    """
    Every unordered pair `(items[i], items[j])` with `i < j`, in input order.
    Repeated items are dropped first, so self pairs never appear.
    """
    items = list(dict.fromkeys(items))
    return [
        (items[i], items[j])
        for i in range(len(items))
        for j in range(i + 1, len(items))
    ]


def token_label(decimals, index):
    return f"token-{decimals}-{index}"


def pair_label(left, right):
    return f"DexPair_{left}_{right}"


def pool_label(tokens):
    return "DexStablePool_" + "_".join(tokens)


def token_pairs(tokens_n, decimals):
    """
    All pairs between tokens of the same decimals: `tokens_n` tokens per
    decimals value, `len(decimals) * n * (n - 1) / 2` pairs in total.
    """
    pairs = []
    for left, right in unordered_pairs(range(tokens_n)):
        for d in decimals:
            pairs.append((token_label(d, left), token_label(d, right)))
    return pairs


def fmt_amount(nano):
    if nano is None:
        return "n/a (account not deployed)"
    return f"{nano / ONE_COIN:,.3f}"
