import os
from dataclasses import asdict, dataclass
from typing import Optional

from mergedeep import merge

from dexdeploy.utils import json_file, log
from dexdeploy.utils.errors import LedgerError

# record status
REGISTERED = "registered"
UNCONFIGURED = "unconfigured"

# step status
COMPLETED = "completed"
FAILED = "failed"


@dataclass(frozen=True)
class DeploymentRecord:
    logical_name: str
    contract_class: str
    address: str
    args_hash: str = ""
    status: str = REGISTERED
    step: Optional[str] = None

    def to_dict(self):
        data = asdict(self)
        data.pop("logical_name")
        return data

    @classmethod
    def from_dict(cls, logical_name, data):
        return cls(logical_name=logical_name, **data)


class DeploymentLedger:
    """
    Persisted mapping of logical deployment name to deployed instance.

    Stored in `history_dir` the way migration manifests are:
    `current-manifest.json` holds the whole ledger, `<tag>-manifest.json`
    the records written by one step.
    """

    def __init__(self, history_dir):
        self.history_dir = history_dir
        self._contracts = {}
        self._steps = {}

    def _manifest_filename(self, name):
        return os.path.join(self.history_dir, f"{name}-manifest.json")

    @property
    def filename(self):
        return self._manifest_filename("current")

    def load(self):
        if os.path.exists(self.filename):
            manifest = json_file.load(self.filename)
            log.h3(f"Loaded manifest {self.filename}")
        else:
            manifest = {}
            log.h3(f"No previous manifest: {self.filename}")

        self._contracts = {
            name: DeploymentRecord.from_dict(name, data)
            for name, data in manifest.get("contracts", {}).items()
        }
        self._steps = manifest.get("steps", {})
        return self

    def exists(self, name):
        return name in self._contracts

    def get(self, name):
        try:
            return self._contracts[name]
        except KeyError:
            raise LedgerError(f"No deployment named `{name}` in {self.filename}") from None

    def address_of(self, name):
        return self.get(name).address

    def name_of(self, address):
        for record in self._contracts.values():
            if record.address.lower() == address.lower():
                return record.logical_name
        return None

    def is_complete(self, name):
        return self.exists(name) and self._contracts[name].status == REGISTERED

    def records(self, contract_class=None):
        return [
            r for r in self._contracts.values()
            if contract_class is None or r.contract_class == contract_class
        ]

    def save(self, record, force=False):
        """
        Writes `record` and flushes. A record is immutable once written:
        only its status may change, unless the writing step is forced.
        """
        current = self._contracts.get(record.logical_name)
        if current and not force and (
            current.address != record.address or current.contract_class != record.contract_class
        ):
            raise LedgerError(
                f"`{record.logical_name}` is already registered at {current.address}; "
                f"refusing to overwrite with {record.address}"
            )

        self._contracts[record.logical_name] = record

        if record.step:
            filename = self._manifest_filename(record.step)
            step_manifest = json_file.load(filename) if os.path.exists(filename) else {}
            merge(step_manifest, {"contracts": {record.logical_name: record.to_dict()}})
            json_file.save(filename, step_manifest)

        self.flush()
        log.h3(f"{record.logical_name} added to manifest")
        return record

    def set_status(self, name, status):
        record = self.get(name)
        if record.status != status:
            self.save(DeploymentRecord(**dict(asdict(record), status=status)))
        return self.get(name)

    def step_status(self, tag):
        return self._steps.get(tag, {}).get("status")

    def mark_step(self, tag, status, outputs=()):
        merge(self._steps, {tag: {"status": status, "outputs": list(outputs)}})
        self.flush()

    def flush(self):
        json_file.save(self.filename, self.to_dict())

    def to_dict(self):
        return {
            "contracts": {name: r.to_dict() for name, r in sorted(self._contracts.items())},
            "steps": self._steps,
        }
