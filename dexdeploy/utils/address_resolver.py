"""
Deterministic address derivation.

A new instance's address is known before it is deployed:

    keccak(0xff ++ parent ++ salt ++ class_id)[12:]

where `parent` deploys the instance, `class_id` is the code hash of the
init code (the class code for direct deployments, the root's platform code
for instances the root deploys) and `salt` is the keccak of the ABI-encoded
constructor arguments. Steps use it to detect work that is already done and
to know what to register in the ledger without waiting for events.
"""
from eth_utils import keccak, to_bytes, to_canonical_address, to_checksum_address

from dexdeploy.utils.errors import DeploymentVerificationError
from dexdeploy.utils.migration_helpers import encode_constructor_args

# role tags for instances deployed by the root through its platform code
ACCOUNT_ROLE = 0
POOL_ROLE = 1
TOKEN_VAULT_ROLE = 2


def compute_address(parent, class_id, salt):
    digest = keccak(b"\xff" + to_canonical_address(parent) + salt + to_bytes(hexstr=class_id))
    return to_checksum_address(digest[12:])


def constructor_salt(types, args):
    return keccak(hexstr=encode_constructor_args(types, args) or "0x")


def platform_salt(role, addresses):
    # pools are keyed by their token set, whichever order it was given in
    roots = sorted(to_checksum_address(a) for a in addresses)
    return constructor_salt(("uint8", "address[]"), (role, roots))


class AddressResolver:
    def __init__(self, client, artifacts):
        self.client = client
        self.artifacts = artifacts

    def class_id(self, class_name):
        return self.artifacts[class_name].code_hash

    def expected_address(self, parent, class_id, constructor_args, constructor_types=None):
        """
        Pure and local: the address `parent` will create for `class_id` with
        `constructor_args`. `class_id` may be an artifact name, in which case
        the artifact also supplies the constructor types.
        """
        if class_id in self.artifacts:
            artifact = self.artifacts[class_id]
            constructor_types = constructor_types or artifact.constructor_types
            class_id = artifact.code_hash
        salt = constructor_salt(constructor_types or (), constructor_args)
        return compute_address(parent, class_id, salt)

    def expected_pool_address(self, root, roots):
        return compute_address(root, self.class_id("DexPlatform"), platform_salt(POOL_ROLE, roots))

    def expected_account_address(self, root, owner):
        return compute_address(root, self.class_id("DexPlatform"), platform_salt(ACCOUNT_ROLE, [owner]))

    def expected_token_vault_address(self, root, token_root):
        return compute_address(root, self.class_id("DexPlatform"), platform_salt(TOKEN_VAULT_ROLE, [token_root]))

    def verify_deployed(self, address):
        # network call: {exists, code_hash}
        return self.client.get_state(address)

    def confirm(self, address, expected):
        """
        Checks the instance at `address` is live and runs `expected`
        (an artifact name or a code hash).
        """
        expected_hash = self.class_id(expected) if expected in self.artifacts else expected
        state = self.verify_deployed(address)
        if not state.exists:
            raise DeploymentVerificationError(address, expected_hash, None)
        if state.code_hash != expected_hash:
            raise DeploymentVerificationError(address, expected_hash, state.code_hash)
        return state
