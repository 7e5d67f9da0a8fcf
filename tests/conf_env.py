import os

import pytest


CHAINS = {
    "testnet": {
        "rpc_url": os.environ.get("TESTNET_RPC_URL", ""),
    },
    "mainnet": {
        "rpc_url": os.environ.get("MAINNET_RPC_URL", ""),
    },
}


def pytest_configure(config):
    # Add chain marker
    config.addinivalue_line(
        "markers",
        "chain(name): mark test to run only on specific chain"
    )

    pytest.always = pytest.mark.chain("always")
    pytest.local = pytest.mark.chain("local")
    # Register shorthand markers
    for key in CHAINS.keys():
        setattr(pytest, key, pytest.mark.chain(key))


def pytest_collection_modifyitems(config, items):
    chain = config.getoption("--chain")

    selected = []
    deselected = []

    for item in items:
        markers = [marker for marker in item.iter_markers(name="chain")]
        # Always run tests marked with "always"
        if any("always" in marker.args for marker in markers):
            selected.append(item)
            continue

        if chain == "local":
            # For local, select tests with no chain marker OR local marker
            if not markers or any("local" in marker.args for marker in markers):
                selected.append(item)
            else:
                deselected.append(item)
        else:
            # For testnet/mainnet, only select tests marked for that chain
            if any(chain in marker.args for marker in markers):
                selected.append(item)
            else:
                deselected.append(item)

    items[:] = selected
    if deselected:
        config.hook.pytest_deselected(items=deselected)


def pytest_addoption(parser):
    parser.addoption(
        "--chain",
        action="store",
        default="local",
        choices=["local", "testnet", "mainnet"],
        help="Specify the chain to run tests against"
    )
    parser.addoption(
        "--rpc",
        action="store",
        default=None,
        help="Override RPC URL for the selected chain"
    )


@pytest.fixture(scope="session")
def chain(pytestconfig):
    return pytestconfig.getoption("chain")


@pytest.fixture(scope="session")
def rpc_url(chain, pytestconfig):
    rpc_override = pytestconfig.getoption("rpc")
    if rpc_override:
        return rpc_override
    if chain not in CHAINS or not CHAINS[chain]["rpc_url"]:
        pytest.skip(f"No rpc url configured for `{chain}`")
    return CHAINS[chain]["rpc_url"]
