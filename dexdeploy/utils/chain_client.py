import itertools
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import requests

from config.BluePrint import CALL_TIMEOUT, FINALIZE_TIMEOUT
from dexdeploy.utils import abi
from dexdeploy.utils.errors import ChainClientError, Timeout


@dataclass(frozen=True)
class DeployRequest:
    code: str
    constructor_types: tuple = ()
    constructor_args: tuple = ()
    funding: int = 0


@dataclass(frozen=True)
class PendingTx:
    tx_id: str
    address: Optional[str] = None


@dataclass(frozen=True)
class TxResult:
    tx_id: str
    success: bool
    address: Optional[str] = None
    error_code: Optional[str] = None
    fees: int = 0


@dataclass(frozen=True)
class AccountsPage:
    addresses: list
    continuation: Optional[str] = None


@dataclass(frozen=True)
class DeployedState:
    exists: bool
    code_hash: Optional[str] = None


class ChainClient(ABC):
    """
    Everything the deployment tooling needs from a chain. Transactions are
    sent on behalf of `sender`.
    """

    sender = None

    @abstractmethod
    def deploy(self, request: DeployRequest) -> PendingTx:
        ...

    @abstractmethod
    def wait_finalized(self, pending: PendingTx, timeout=None) -> TxResult:
        ...

    @abstractmethod
    def call(self, address, method, args) -> dict:
        ...

    @abstractmethod
    def send(self, address, method, args, funding=0) -> TxResult:
        ...

    @abstractmethod
    def get_instances_by_code_fingerprint(self, fingerprint, continuation=None, limit=50) -> AccountsPage:
        ...

    @abstractmethod
    def get_balance(self, address) -> Optional[int]:
        """Returns `None` when no account exists at `address`."""

    @abstractmethod
    def get_state(self, address) -> DeployedState:
        ...

    def contract(self, contract_class, address):
        return Contract(self, contract_class, address)


class Contract:
    """
    Typed handle on a deployed instance. Attribute access returns a
    `ContractFunction` checked against the class schema, e.g.
    `root.getOwner()["dex_owner"]` or `root.setActive(new_active=True, value=fee)`.
    """

    def __init__(self, client, contract_class, address):
        self.client = client
        self.contract_class = contract_class
        self.address = abi.normalize("address", address, contract_class)

    def __getattr__(self, name):
        if name.startswith("_"):
            raise AttributeError(name)
        return ContractFunction(self, name, abi.method(self.contract_class, name))

    def __repr__(self):
        return f"<{self.contract_class} at {self.address}>"


class ContractFunction:
    def __init__(self, contract, name, method):
        self.contract = contract
        self.name = name
        self.method = method

    @property
    def mutates(self):
        return self.method.mutates

    def __call__(self, value=0, **args):
        contract_class = self.contract.contract_class
        payload = abi.encode_inputs(contract_class, self.name, args)
        if self.method.mutates:
            return self.contract.client.send(self.contract.address, self.name, payload, value)
        result = self.contract.client.call(self.contract.address, self.name, payload)
        return abi.decode_outputs(contract_class, self.name, result)

    def __str__(self):
        return f"{self.contract.contract_class}.{self.name}"


class JsonRpcChainClient(ChainClient):
    """
    Client for a JSON-RPC gateway exposing `deploy`, `getTransaction`, `call`,
    `send`, `getAccountsByCodeHash`, `getBalance` and `getAccountState`.
    Messages are signed gateway-side for `sender`.
    """

    def __init__(self, rpc_url, sender, timeout=CALL_TIMEOUT, finalize_timeout=FINALIZE_TIMEOUT,
                 poll_interval=1.0, session=None):
        self.rpc_url = rpc_url
        self.sender = sender
        self.timeout = timeout
        self.finalize_timeout = finalize_timeout
        self.poll_interval = poll_interval
        self.session = session or requests.Session()
        self._ids = itertools.count(1)

    def _request(self, method, params):
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = self.session.post(self.rpc_url, json=body, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except requests.Timeout as exception:
            raise Timeout(method, self.timeout) from exception
        except (requests.RequestException, ValueError) as exception:
            raise ChainClientError(f"{method} request failed: {exception}") from exception

        if payload.get("error"):
            error = payload["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise ChainClientError(f"{method}: {message}")
        return payload.get("result")

    def deploy(self, request):
        result = self._request("deploy", {
            "from": self.sender,
            "code": request.code,
            "constructorTypes": list(request.constructor_types),
            "constructorArgs": list(request.constructor_args),
            "amount": str(request.funding),
        })
        return PendingTx(result["txId"], result.get("address"))

    def wait_finalized(self, pending, timeout=None):
        timeout = timeout or self.finalize_timeout
        deadline = time.monotonic() + timeout
        while True:
            result = self._request("getTransaction", {"txId": pending.tx_id})
            if result and result.get("finalized"):
                return TxResult(
                    tx_id=pending.tx_id,
                    success=bool(result.get("success")),
                    address=result.get("address") or pending.address,
                    error_code=result.get("errorCode"),
                    fees=int(result.get("fees", 0)),
                )
            if time.monotonic() >= deadline:
                raise Timeout(f"finalization of {pending.tx_id}", timeout)
            time.sleep(self.poll_interval)

    def call(self, address, method, args):
        return self._request("call", {"address": address, "method": method, "args": args})

    def send(self, address, method, args, funding=0):
        result = self._request("send", {
            "from": self.sender,
            "address": address,
            "method": method,
            "args": args,
            "amount": str(funding),
        })
        return self.wait_finalized(PendingTx(result["txId"], address))

    def get_instances_by_code_fingerprint(self, fingerprint, continuation=None, limit=50):
        result = self._request("getAccountsByCodeHash", {
            "codeHash": fingerprint,
            "continuation": continuation,
            "limit": limit,
        })
        return AccountsPage(list(result.get("accounts", [])), result.get("continuation"))

    def get_balance(self, address):
        result = self._request("getBalance", {"address": address})
        return None if result is None else int(result)

    def get_state(self, address):
        result = self._request("getAccountState", {"address": address})
        if not result:
            return DeployedState(exists=False)
        return DeployedState(exists=True, code_hash=result.get("codeHash"))
