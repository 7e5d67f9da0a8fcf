from config.BluePrint import CODE_HASHES, FEE_PARAMS, LP_DECIMALS, ONE_COIN, PARAMS, POOL_TYPES, TOKENS


class Constants:
    ONE_COIN = ONE_COIN
    LP_DECIMALS = LP_DECIMALS
    ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class BluePrint:
    def __init__(self, blueprint):
        self.blueprint = blueprint
        self.PARAMS = PARAMS[blueprint]
        self.TOKENS = TOKENS[blueprint]
        self.FEE_PARAMS = FEE_PARAMS[blueprint]
        self.CODE_HASHES = CODE_HASHES[blueprint]
        self.POOL_TYPES = POOL_TYPES
        self.CONSTANTS = Constants


class DeployArgs:
    def __init__(self, sender, chain, client, blueprint=None, rpc=None):
        self.sender = sender
        self.chain = chain
        self.client = client
        self.blueprint = BluePrint(blueprint or chain)
        self.rpc = rpc

    def __repr__(self):
        return f"DeployArgs(sender={self.sender.address}, chain={self.chain}, blueprint={self.blueprint.blueprint}, rpc={self.rpc})"
