import json
import os

import pytest

from dexdeploy.utils import json_file
from dexdeploy.utils.chain_scanner import (PROFILES, ChainScanner, ScannedInstance, export_snapshot,
                                           reconcile, recover)
from dexdeploy.utils.ledger import DeploymentLedger, DeploymentRecord
from constants import FIRST_PAIR, PAIRS_N, address

ROOT_A = address(0xA)
ROOT_B = address(0xB)


##############
# Pagination #
##############


def test_pages_until_short_page(paged_target):
    target = paged_target([50, 50, 13], ROOT_A)
    scanner = ChainScanner(target, page_size=50)

    candidates = list(scanner.scan("0xfeed"))

    assert len(candidates) == 113
    assert len(set(candidates)) == 113
    assert target.page_requests == [None, "page-1", "page-2"]
    assert scanner.pages == 3


def test_scan_is_lazy(paged_target):
    target = paged_target([50, 50, 13], ROOT_A)
    candidates = ChainScanner(target, page_size=50).scan("0xfeed")

    assert target.page_requests == []
    next(candidates)
    assert target.page_requests == [None]


def test_empty_first_page(paged_target):
    target = paged_target([0], ROOT_A)
    assert list(ChainScanner(target, page_size=50).scan("0xfeed")) == []
    assert len(target.page_requests) == 1


def test_exact_multiple_of_page_size(scan_target):
    target = scan_target({address(i): ROOT_A for i in range(100, 120)})
    candidates = list(ChainScanner(target, page_size=10).scan("0xfeed"))

    assert len(candidates) == 20
    assert target.page_requests == [None, "10", "20"]


################
# Verification #
################


def test_only_expected_root_is_kept(scan_target):
    a1, a2, b1 = address(200), address(201), address(202)
    target = scan_target({a1: ROOT_A, a2: ROOT_A, b1: ROOT_B})

    report = ChainScanner(target).verify([a1, a2, b1], ROOT_A, PROFILES["pairs"])

    assert [i.address for i in report.verified] == [a1, a2]
    assert list(report.discarded) == [b1]
    assert report.failed == {}
    assert report.verified[0].linked == {"left": address(100), "right": address(101), "lp": address(102)}


def test_duplicate_candidates_are_read_once(scan_target):
    a1 = address(200)
    target = scan_target({a1: ROOT_A})

    report = ChainScanner(target).verify([a1, a1, a1], ROOT_A, PROFILES["pairs"])

    assert len(report.verified) == 1


def test_failed_read_is_retried_once(scan_target):
    flaky, broken, fine = address(300), address(301), address(302)
    target = scan_target({flaky: ROOT_A, broken: ROOT_A, fine: ROOT_A})
    target.failures = {flaky: 1, broken: 2}

    report = ChainScanner(target).verify([flaky, broken, fine], ROOT_A, PROFILES["pairs"])

    assert [i.address for i in report.verified] == [flaky, fine]
    assert list(report.failed) == [broken]
    assert "connection reset" in report.failed[broken]


def test_hung_read_is_excluded(scan_target):
    slow, fine = address(400), address(401)
    target = scan_target({slow: ROOT_A, fine: ROOT_A})
    target.hangs = {slow: 1.0}

    report = ChainScanner(target, timeout=0.3).verify([slow, fine], ROOT_A, PROFILES["pairs"])

    assert [i.address for i in report.verified] == [fine]
    assert "timed out" in report.failed[slow]


def test_concurrency_is_bounded(scan_target):
    roots = {address(500 + i): ROOT_A for i in range(24)}
    target = scan_target(roots, delay=0.02)

    report = ChainScanner(target, max_workers=3).verify(list(roots), ROOT_A, PROFILES["pairs"])

    assert len(report.verified) == 24
    assert 1 < target.max_in_flight <= 3


def test_queued_reads_are_not_timed_out(scan_target):
    roots = {address(600 + i): ROOT_A for i in range(10)}
    target = scan_target(roots, delay=0.05)

    # ten reads on one worker outlast a single timeout window
    report = ChainScanner(target, max_workers=1, timeout=0.3).verify(list(roots), ROOT_A, PROFILES["pairs"])

    assert len(report.verified) == 10
    assert report.failed == {}


def test_verify_does_not_report_earlier_pages(deployed, local_chain, ledger, artifacts):
    scanner = ChainScanner(local_chain, page_size=7)
    candidates = list(scanner.scan(artifacts["DexPair"].code_hash))

    report = scanner.verify(candidates, ledger.address_of("DexRoot"), PROFILES["pairs"])

    assert len(report.verified) == PAIRS_N
    assert report.pages == 0


def test_collect_pairs(deployed, local_chain, ledger, artifacts):
    scanner = ChainScanner(local_chain, page_size=7)

    report = scanner.collect(artifacts["DexPair"].code_hash, ledger.address_of("DexRoot"), PROFILES["pairs"])

    assert len(report.verified) == PAIRS_N
    assert report.pages == 5
    assert {i.address for i in report.verified} == {r.address for r in ledger.records("DexPair")}
    first = next(i for i in report.verified if i.address == ledger.address_of(FIRST_PAIR))
    assert first.linked["left"] == ledger.address_of("token-6-0")
    assert first.root == ledger.address_of("DexRoot")


def test_collect_accounts(deployed, local_chain, ledger, artifacts, deployer):
    report = ChainScanner(local_chain).collect(
        artifacts["DexAccount"].code_hash, ledger.address_of("DexRoot"), PROFILES["accounts"],
    )

    assert [i.verified_owner for i in report.verified] == [deployer.address]


###########
# Exports #
###########


def instance(i, root=ROOT_A):
    return ScannedInstance(address=address(i), code_hash="0xfeed", root=root, linked={"lp": address(i + 1)})


def test_export_json(tmp_path):
    filename = str(tmp_path / "exports" / "pairs.json")

    export_snapshot(filename, [instance(3), instance(1), instance(3), instance(2)])

    rows = json_file.load(filename)
    assert [r["entity_address"] for r in rows] == [address(1), address(2), address(3)]
    assert rows[0] == {
        "entity_address": address(1),
        "root": ROOT_A,
        "linked_addresses": {"lp": address(2)},
        "code_hash": "0xfeed",
        "verified_owner": None,
        "verified": True,
    }


def test_export_json_lines(tmp_path):
    filename = str(tmp_path / "pairs.jsonl")

    export_snapshot(filename, [instance(2), instance(1)])

    with open(filename) as file:
        rows = [json.loads(line) for line in file]
    assert [r["entity_address"] for r in rows] == [address(1), address(2)]


def test_export_json_lines_replaces_previous_export(tmp_path):
    filename = str(tmp_path / "pairs.jsonl")
    export_snapshot(filename, [instance(1), instance(2), instance(3)])

    export_snapshot(filename, [instance(4)])

    with open(filename) as file:
        rows = [json.loads(line) for line in file]
    assert [r["entity_address"] for r in rows] == [address(4)]
    assert os.listdir(tmp_path) == ["pairs.jsonl"]


##################
# Reconciliation #
##################


def test_reconcile(ledger):
    ledger.save(DeploymentRecord("DexPair_a_b", "DexPair", address(1)))
    ledger.save(DeploymentRecord("DexPair_a_c", "DexPair", address(2)))

    result = reconcile(ledger, [instance(1), instance(3)], "DexPair")

    assert not result.ok
    assert result.matched == ["DexPair_a_b"]
    assert result.missing_on_chain == ["DexPair_a_c"]
    assert result.missing_in_ledger == [address(3)]


def test_recover_lost_pairs(deployed, local_chain, ledger, artifacts, tmp_path):
    report = ChainScanner(local_chain).collect(
        artifacts["DexPair"].code_hash, ledger.address_of("DexRoot"), PROFILES["pairs"],
    )

    # a ledger that only knows the tokens
    partial = DeploymentLedger(str(tmp_path / "partial"))
    for record in ledger.records("TokenRoot"):
        partial.save(record)

    records = recover(partial, report.verified, "DexPair")

    assert len(records) == PAIRS_N
    assert partial.address_of(FIRST_PAIR) == ledger.address_of(FIRST_PAIR)
    assert reconcile(partial, report.verified, "DexPair").ok


@pytest.mark.testnet
def test_live_pairs(rpc_url, deployer, artifacts):
    from config.BluePrint import CODE_HASHES, PARAMS
    from dexdeploy.utils.chain_client import JsonRpcChainClient

    client = JsonRpcChainClient(rpc_url, deployer.address)
    scanner = ChainScanner.from_params(client, PARAMS["testnet"])
    fingerprint = CODE_HASHES["testnet"].get("DexPair") or artifacts["DexPair"].code_hash

    assert all(isinstance(a, str) for a in scanner.scan(fingerprint))
