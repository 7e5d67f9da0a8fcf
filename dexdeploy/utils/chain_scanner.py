"""
Discovery of deployed instances by code fingerprint.

`scan` pages through every instance running a given code hash; `verify`
keeps the candidates linked to the expected root, reading them on a bounded
thread pool. The verified set can be exported as a snapshot and reconciled
against the deployment ledger.
"""
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Optional

from eth_utils import to_checksum_address

from dexdeploy.utils import json_file, log
from dexdeploy.utils.errors import ChainClientError, SchemaError, Timeout, VerificationFailed
from dexdeploy.utils.ledger import REGISTERED, DeploymentRecord
from dexdeploy.utils.migration_helpers import pair_label


@dataclass(frozen=True)
class ScanProfile:
    contract_class: str
    # view returning the instance owner, if the class has one
    owner_method: Optional[str] = None
    # view returning the addresses the instance links to
    linked_method: Optional[str] = None


PROFILES = {
    "pairs": ScanProfile("DexPair", linked_method="getTokenRoots"),
    "stable-pairs": ScanProfile("DexStablePair", linked_method="getTokenRoots"),
    "pools": ScanProfile("DexStablePool", linked_method="getTokenRoots"),
    "accounts": ScanProfile("DexAccount", owner_method="getOwner"),
}


@dataclass(frozen=True)
class ScannedInstance:
    address: str
    code_hash: str
    root: str
    verified_owner: Optional[str] = None
    linked: dict = field(default_factory=dict)

    def to_dict(self):
        return {
            "entity_address": self.address,
            "root": self.root,
            "linked_addresses": self.linked,
            "code_hash": self.code_hash,
            "verified_owner": self.verified_owner,
            "verified": True,
        }


@dataclass
class ScanReport:
    verified: list = field(default_factory=list)
    # address -> reason, for candidates linked to another root
    discarded: dict = field(default_factory=dict)
    # address -> reason, for candidates that could not be read
    failed: dict = field(default_factory=dict)
    pages: int = 0


@dataclass
class Reconciliation:
    matched: list = field(default_factory=list)
    missing_on_chain: list = field(default_factory=list)
    missing_in_ledger: list = field(default_factory=list)

    @property
    def ok(self):
        return not self.missing_on_chain and not self.missing_in_ledger


def _single(result):
    # views with one output return `{name: value}`
    return next(iter(result.values()))


class ChainScanner:
    def __init__(self, client, page_size=50, max_workers=8, timeout=120):
        self.client = client
        self.page_size = page_size
        self.max_workers = max_workers
        self.timeout = timeout
        self.pages = 0

    @classmethod
    def from_params(cls, client, params):
        return cls(
            client,
            page_size=params["SCAN_PAGE_SIZE"],
            max_workers=params["SCAN_WORKERS"],
            timeout=params["SCAN_TIMEOUT"],
        )

    def scan(self, fingerprint, page_size=None):
        """
        Yields the address of every instance running `fingerprint`. Pages
        are requested one at a time, each with the continuation token of
        the previous one; a page shorter than `page_size` is the last.
        """
        page_size = page_size or self.page_size
        continuation = None
        self.pages = 0

        while True:
            page = self.client.get_instances_by_code_fingerprint(fingerprint, continuation, page_size)
            self.pages += 1
            log.h3(f"Page {self.pages}: {len(page.addresses)} instances of {fingerprint}")
            yield from page.addresses

            if len(page.addresses) < page_size or not page.continuation:
                return
            continuation = page.continuation

    def verify(self, candidates, expected_root, profile: ScanProfile, fingerprint=None):
        """
        Reads every candidate concurrently, at most `max_workers` at a time.

        Candidates whose root differs from `expected_root` are discarded. A
        failed read is retried once; a second failure, or a read still
        running `timeout` seconds after it started, excludes the candidate.
        Candidates waiting for a free worker are never timed out. Neither
        aborts the batch. Verified instances are returned sorted by address.
        """
        expected_root = to_checksum_address(expected_root)
        report = ScanReport()
        # address -> monotonic time its read started
        started = {}

        def read(address):
            started[address] = time.monotonic()
            return self._verify_with_retry(address, expected_root, profile, fingerprint)

        executor = ThreadPoolExecutor(max_workers=self.max_workers)
        try:
            futures = {executor.submit(read, address): address for address in dict.fromkeys(candidates)}
            pending = set(futures)
            while pending:
                done, pending = wait(pending, timeout=self._next_deadline(pending, futures, started),
                                     return_when=FIRST_COMPLETED)
                for future in done:
                    self._record(report, futures[future], future)

                now = time.monotonic()
                for future in [f for f in pending if now - started.get(futures[f], now) >= self.timeout]:
                    pending.discard(future)
                    address = futures[future]
                    exception = Timeout(f"verification of {address}", self.timeout)
                    log.warn(str(VerificationFailed(address, str(exception))))
                    report.failed[address] = str(exception)
        finally:
            # hung reads are abandoned
            executor.shutdown(wait=False, cancel_futures=True)

        report.verified.sort(key=lambda instance: instance.address)
        return report

    def _next_deadline(self, pending, futures, started):
        running = [started[futures[f]] for f in pending if futures[f] in started]
        if not running:
            return self.timeout
        return max(0, min(running) + self.timeout - time.monotonic())

    def _record(self, report, address, future):
        try:
            instance, reason = future.result()
        except VerificationFailed as exception:
            log.warn(str(exception))
            report.failed[address] = exception.reason
            return

        if instance is None:
            log.h3(f"Discarding {address}: {reason}")
            report.discarded[address] = reason
        else:
            report.verified.append(instance)

    def collect(self, fingerprint, expected_root, profile: ScanProfile):
        log.h2(f"Scanning {profile.contract_class} instances of {fingerprint}")
        report = self.verify(self.scan(fingerprint), expected_root, profile, fingerprint)
        report.pages = self.pages
        log.h3(
            f"{len(report.verified)} verified, {len(report.discarded)} discarded, "
            f"{len(report.failed)} failed over {report.pages} pages"
        )
        return report

    def _verify_with_retry(self, address, expected_root, profile, fingerprint):
        try:
            return self._verify_one(address, expected_root, profile, fingerprint)
        except (ChainClientError, SchemaError) as exception:
            log.warn(f"Reading {address} failed ({exception}), trying again")

        try:
            return self._verify_one(address, expected_root, profile, fingerprint)
        except (ChainClientError, SchemaError) as exception:
            raise VerificationFailed(address, str(exception)) from exception

    def _verify_one(self, address, expected_root, profile, fingerprint):
        contract = self.client.contract(profile.contract_class, address)
        root = _single(contract.getRoot())
        if root != expected_root:
            return None, f"linked to root {root}, expected {expected_root}"

        owner = _single(getattr(contract, profile.owner_method)()) if profile.owner_method else None
        linked = getattr(contract, profile.linked_method)() if profile.linked_method else {}
        if fingerprint is None:
            fingerprint = self.client.get_state(contract.address).code_hash

        return ScannedInstance(
            address=contract.address,
            code_hash=fingerprint,
            root=root,
            verified_owner=owner,
            linked=linked,
        ), None


##########
# Export #
##########


def export_snapshot(filename, instances):
    """
    Writes `instances` deduplicated and sorted by address: one JSON object
    per line for a `.jsonl` filename, a JSON array otherwise.
    """
    unique = {instance.address: instance for instance in instances}
    rows = [unique[address].to_dict() for address in sorted(unique)]

    if filename.endswith(".jsonl"):
        json_file.save_lines(filename, rows)
    else:
        json_file.save(filename, rows)

    log.h3(f"{len(rows)} instances exported to {filename}")
    return rows


def reconcile(ledger, instances, contract_class):
    """
    Compares the ledger's `contract_class` records against scanned instances.
    """
    scanned = {to_checksum_address(instance.address) for instance in instances}
    result = Reconciliation()

    registered = set()
    for record in ledger.records(contract_class):
        address = to_checksum_address(record.address)
        registered.add(address)
        if address in scanned:
            result.matched.append(record.logical_name)
        else:
            result.missing_on_chain.append(record.logical_name)

    result.missing_in_ledger = sorted(scanned - registered)

    for name in result.missing_on_chain:
        log.warn(f"{name} is in the ledger but was not found on chain")
    for address in result.missing_in_ledger:
        log.warn(f"{contract_class} at {address} is live but missing from the ledger")
    return result


def recover(ledger, instances, contract_class):
    """
    Registers scanned instances the ledger does not know about. Returns
    the records written.
    """
    reconciliation = reconcile(ledger, instances, contract_class)
    missing = set(reconciliation.missing_in_ledger)

    records = []
    for instance in sorted(instances, key=lambda i: i.address):
        if instance.address not in missing:
            continue
        missing.discard(instance.address)
        records.append(ledger.save(DeploymentRecord(
            logical_name=_recovered_label(ledger, contract_class, instance),
            contract_class=contract_class,
            address=instance.address,
            status=REGISTERED,
        )))
    return records


def _recovered_label(ledger, contract_class, instance):
    linked = instance.linked
    if "left" in linked and "right" in linked:
        left, right = ledger.name_of(linked["left"]), ledger.name_of(linked["right"])
        if left and right:
            return pair_label(left, right)
    if instance.verified_owner:
        owner = ledger.name_of(instance.verified_owner) or instance.verified_owner
        return f"{contract_class}_{owner}"
    return f"{contract_class}_{instance.address}"
