import os
import shutil

import pytest
from click.testing import CliRunner

from dexdeploy import export, migrate, upgrade
from dexdeploy.utils import json_file
from conf_core import ROOT_DIR
from conf_mock import FlakyChain
from constants import FIRST_PAIR, PAIRS_N


@pytest.fixture
def runner(monkeypatch, tmp_path):
    monkeypatch.chdir(ROOT_DIR)
    monkeypatch.delenv("DEPLOYER_PRIVATE_KEY", raising=False)
    monkeypatch.setattr(migrate, "MIGRATION_HISTORY_DIR", str(tmp_path / "migration_history"))
    monkeypatch.setattr(export, "MIGRATION_HISTORY_DIR", str(tmp_path / "migration_history"))
    return CliRunner()


def test_migrate_local(runner, tmp_path):
    result = runner.invoke(migrate.cli, ["--silent", "--chain", "local"])

    assert result.exit_code == 0, result.output
    assert "dex-pairs: completed" in result.output
    manifest = json_file.load(str(tmp_path / "migration_history" / "local" / "dev" / "current-manifest.json"))
    assert len([c for c in manifest["contracts"].values() if c["contract_class"] == "DexPair"]) == PAIRS_N


def test_migrate_selected_tags(runner, tmp_path):
    result = runner.invoke(migrate.cli, ["--silent", "--chain", "local", "--tag", "dex-root"])

    assert result.exit_code == 0, result.output
    assert "dex-pairs" not in result.output
    assert "dex-root: completed" in result.output


def test_migrate_reports_failed_step(runner, monkeypatch, params):
    def flaky_client(chain, rpc, sender, artifacts):
        client = FlakyChain(sender.address, artifacts, params["LOCAL_DEPLOYER_BALANCE"])
        client.fail_send("setVault")
        return client, "local"

    monkeypatch.setattr(migrate, "get_client", flaky_client)

    result = runner.invoke(migrate.cli, ["--silent", "--chain", "local"])

    assert result.exit_code == 1
    assert "Migration failed at step `dex-root`" in result.output
    assert "dex-pairs: not_run" in result.output


def test_live_only_commands_refuse_local(runner):
    assert runner.invoke(upgrade.cli, ["--silent", "--chain", "local", "--artifact", "DexPair"]).exit_code == 1
    assert runner.invoke(export.cli, ["--silent", "--chain", "local"]).exit_code == 1


def test_export_and_reconcile(runner, monkeypatch, tmp_path, deployed, local_chain, ledger, artifacts):
    history = tmp_path / "migration_history" / "testnet" / "dev"
    os.makedirs(history)
    shutil.copy(ledger.filename, history / "current-manifest.json")
    monkeypatch.setattr(export, "get_client", lambda chain, rpc, sender, artifacts: (local_chain, "local"))
    output = str(tmp_path / "pairs.jsonl")

    result = runner.invoke(export.cli, [
        "--silent", "--chain", "testnet",
        "--fingerprint", artifacts["DexPair"].code_hash,
        "--output", output,
        "--reconcile",
    ])

    assert result.exit_code == 0, result.output
    with open(output) as file:
        assert len(file.readlines()) == PAIRS_N
    assert f"{PAIRS_N} ledger entries found on chain" in result.output


###########
# Upgrade #
###########


@pytest.fixture
def upgrade_cli(runner, monkeypatch, tmp_path, ledger, artifacts, new_code):
    """
    Runs `dexdeploy-upgrade` against `client` as if it were testnet, with a
    `TestNewDexPair` build artifact holding new pair code.
    """
    new_pair = new_code("DexPair")
    monkeypatch.setattr(upgrade, "MIGRATION_HISTORY_DIR", str(tmp_path / "migration_history"))
    monkeypatch.setattr(upgrade, "load_artifacts", lambda: dict(artifacts, TestNewDexPair=new_pair))

    def invoke(client, *args):
        client.register_code(new_pair.code, new_pair.kind)
        history = tmp_path / "migration_history" / "testnet" / "dev"
        os.makedirs(history, exist_ok=True)
        shutil.copy(ledger.filename, history / "current-manifest.json")
        monkeypatch.setattr(upgrade, "get_client", lambda chain, rpc, sender, artifacts: (client, "local"))
        return runner.invoke(upgrade.cli, ["--silent", "--chain", "testnet", "--artifact", "TestNewDexPair", *args])

    invoke.new_pair = new_pair
    return invoke


def installs_of(client):
    return [m for _, m in client.sent].count("installOrUpdatePairCode")


def test_upgrade_every_pair(upgrade_cli, deployed, local_chain, ledger):
    installs = installs_of(local_chain)

    result = upgrade_cli(local_chain)

    assert result.exit_code == 0, result.output
    assert f"{PAIRS_N} instances selected" in result.output
    assert installs_of(local_chain) == installs + 1
    hashes = {local_chain.get_state(r.address).code_hash for r in ledger.records("DexPair")}
    assert hashes == {upgrade_cli.new_pair.code_hash}


def test_upgrade_named_pair(upgrade_cli, deployed, local_chain, ledger, artifacts):
    result = upgrade_cli(local_chain, "--name", FIRST_PAIR)

    assert result.exit_code == 0, result.output
    assert "1 instances selected" in result.output
    assert local_chain.get_state(ledger.address_of(FIRST_PAIR)).code_hash == upgrade_cli.new_pair.code_hash
    others = {r.address for r in ledger.records("DexPair")} - {ledger.address_of(FIRST_PAIR)}
    assert {local_chain.get_state(a).code_hash for a in others} == {artifacts["DexPair"].code_hash}


def test_upgrade_with_installed_code(upgrade_cli, deployed, local_chain, ledger, coordinator):
    local_chain.register_code(upgrade_cli.new_pair.code, "DexPair")
    coordinator.install_code("DexPair", upgrade_cli.new_pair.code)
    installs = installs_of(local_chain)

    result = upgrade_cli(local_chain, "--skip-install", "--name", FIRST_PAIR)

    assert result.exit_code == 0, result.output
    assert installs_of(local_chain) == installs
    assert local_chain.get_state(ledger.address_of(FIRST_PAIR)).code_hash == upgrade_cli.new_pair.code_hash


def test_upgrade_reports_rejected_instances(upgrade_cli, migrate, flaky_chain, ledger):
    migrate(flaky_chain).raise_for_failure()
    flaky_chain.fail_send("upgradePair", times=1)

    result = upgrade_cli(flaky_chain)

    assert result.exit_code == 1
    assert "1 instances stay on their old code" in result.output
    assert len(flaky_chain.sends("upgradePair")) == PAIRS_N
    hashes = [flaky_chain.get_state(r.address).code_hash for r in ledger.records("DexPair")]
    assert hashes.count(upgrade_cli.new_pair.code_hash) == PAIRS_N - 1
