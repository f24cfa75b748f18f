"""
Ledger client
=============

Everything the deployer knows about the chain goes through a LedgerClient.
Mutations take an explicit ``sender``; each one runs inside a broadcast
session that is released on every exit path.
"""

import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, Optional, Sequence

import requests
from web3 import Web3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware

from .artifacts import ArtifactStore
from .errors import LedgerError
from .signatures import decode_result, encode_call

# what web3 raises for reverts, RPC errors and receipt timeouts, plus
# transport failures from the HTTP provider
NODE_ERRORS = (Web3Exception, requests.RequestException)

logger = logging.getLogger(__name__)

# Deterministic deployment proxy, present at the same address on most networks
CREATE2_DEPLOYER = "0x4e59b44847b379578588920cA78FbF26c0B4956C"


def salt_to_bytes32(salt: str) -> bytes:
    """Hash a human readable salt into the 32-byte CREATE2 salt"""
    return bytes(Web3.keccak(text=salt))


def create2_address(deployer: str, salt: bytes, initcode: bytes) -> str:
    """Address a CREATE2 deployment of ``initcode`` with ``salt`` lands at"""
    digest = Web3.keccak(
        b"\xff" + bytes.fromhex(deployer[2:]) + salt + bytes(Web3.keccak(initcode))
    )
    return Web3.to_checksum_address(bytes(digest)[12:])


class LedgerClient(ABC):
    """Interface to the remote ledger"""

    @abstractmethod
    def current_signer(self) -> str:
        """Default identity used for mutations"""

    @abstractmethod
    def chain_id(self) -> int:
        ...

    @abstractmethod
    def block_number(self) -> int:
        ...

    @abstractmethod
    def block_timestamp(self) -> int:
        ...

    @abstractmethod
    def code_at(self, address: str) -> bytes:
        ...

    @abstractmethod
    def read_storage_slot(self, address: str, slot: int) -> bytes:
        """Raw 32-byte storage word"""

    @abstractmethod
    def call(self, address: str, signature: str, args: Sequence[Any] = ()) -> Any:
        """Read-only call, decoded according to the signature's output types"""

    @abstractmethod
    def send(self, address: str, data: bytes, sender: Optional[str] = None) -> Dict[str, Any]:
        """Submit a transaction with raw calldata and wait for its receipt"""

    @abstractmethod
    def deploy(self, contract: str, constructor_args: Sequence[Any] = (),
               salt: Optional[str] = None, sender: Optional[str] = None) -> str:
        """
        Deploy a contract and return its address

        Args:
            contract: artifact name
            constructor_args: constructor arguments
            salt: makes the address deterministic; an existing deployment at
                the predicted address is returned without a transaction
            sender: identity paying for the deployment
        """

    def transact(self, address: str, signature: str, args: Sequence[Any] = (),
                 sender: Optional[str] = None) -> Dict[str, Any]:
        """Mutating call described by a signature"""
        return self.send(address, encode_call(signature, args), sender=sender)

    def has_code(self, address: str) -> bool:
        return len(self.code_at(address)) > 0


@dataclass
class BroadcastSession:
    """One in-flight submission context for a single identity"""
    sender: str
    nonce: int
    submitted: int = 0


class Web3LedgerClient(LedgerClient):
    """LedgerClient backed by a JSON-RPC node through web3.py"""

    def __init__(self, w3: Web3, private_key: str, artifacts: ArtifactStore, tx_timeout: int = 300):
        self.w3 = w3
        self.artifacts = artifacts
        self.tx_timeout = tx_timeout
        self.account = w3.eth.account.from_key(private_key)
        self._session: Optional[BroadcastSession] = None
        logger.info(f"Using deployer account: {self.account.address}")

    @classmethod
    def connect(cls, rpc_url: str, private_key: str, artifacts: ArtifactStore,
                tx_timeout: int = 300) -> "Web3LedgerClient":
        """Connect to an RPC endpoint"""
        w3 = Web3(Web3.HTTPProvider(rpc_url))
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
        if not w3.is_connected():
            raise LedgerError(f"Could not connect to RPC URL: {rpc_url}")
        logger.info(f"Connected to blockchain at {rpc_url}")
        return cls(w3, private_key, artifacts, tx_timeout=tx_timeout)

    def current_signer(self) -> str:
        return self.account.address

    def chain_id(self) -> int:
        return self.w3.eth.chain_id

    def block_number(self) -> int:
        return self.w3.eth.block_number

    def block_timestamp(self) -> int:
        return self.w3.eth.get_block('latest')['timestamp']

    def code_at(self, address: str) -> bytes:
        return bytes(self.w3.eth.get_code(Web3.to_checksum_address(address)))

    def read_storage_slot(self, address: str, slot: int) -> bytes:
        word = self.w3.eth.get_storage_at(Web3.to_checksum_address(address), slot)
        return bytes(word).rjust(32, b"\x00")

    def call(self, address: str, signature: str, args: Sequence[Any] = ()) -> Any:
        try:
            raw = self.w3.eth.call({
                'to': Web3.to_checksum_address(address),
                'data': encode_call(signature, args),
            })
        except NODE_ERRORS as e:
            raise LedgerError(f"Call {signature} on {address} failed: {e}") from e
        return decode_result(signature, raw)

    @contextmanager
    def broadcast(self, sender: Optional[str] = None) -> Iterator[BroadcastSession]:
        """Acquire the submission context for ``sender``; released on exit"""
        sender = Web3.to_checksum_address(sender or self.account.address)
        if sender != self.account.address:
            raise LedgerError(f"No signing key loaded for {sender}")
        if self._session is not None:
            raise LedgerError("A broadcast is already in progress")

        self._session = BroadcastSession(
            sender=sender,
            nonce=self.w3.eth.get_transaction_count(sender, 'pending'),
        )
        try:
            yield self._session
        finally:
            logger.debug(f"Released broadcast for {sender} after {self._session.submitted} transaction(s)")
            self._session = None

    def _submit(self, session: BroadcastSession, tx: Dict[str, Any], description: str) -> Dict[str, Any]:
        tx.update({
            'from': session.sender,
            'nonce': session.nonce,
            'chainId': self.chain_id(),
            'gasPrice': self.w3.eth.gas_price,
        })
        try:
            tx['gas'] = self.w3.eth.estimate_gas(tx)
        except NODE_ERRORS as e:
            # a revert usually shows up here, before anything is signed
            raise LedgerError(f"Gas estimation for {description} failed: {e}") from e

        signed_tx = self.account.sign_transaction(tx)
        try:
            tx_hash = self.w3.eth.send_raw_transaction(signed_tx.raw_transaction)
        except NODE_ERRORS as e:
            raise LedgerError(f"Submitting {description} failed: {e}") from e
        session.nonce += 1
        session.submitted += 1
        logger.info(f"Transaction sent: {tx_hash.hex()}")

        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(tx_hash, timeout=self.tx_timeout)
        except NODE_ERRORS as e:
            raise LedgerError(f"No receipt for {description} ({tx_hash.hex()}): {e}") from e
        if receipt['status'] != 1:
            raise LedgerError(f"{description} reverted in transaction {tx_hash.hex()}, block {receipt['blockNumber']}")
        logger.info(f"Transaction confirmed in block {receipt['blockNumber']}")
        return dict(receipt)

    def send(self, address: str, data: bytes, sender: Optional[str] = None) -> Dict[str, Any]:
        with self.broadcast(sender) as session:
            return self._submit(session, {'to': Web3.to_checksum_address(address), 'data': data},
                                f"0x{bytes(data[:4]).hex()} on {address}")

    def transact(self, address: str, signature: str, args: Sequence[Any] = (),
                 sender: Optional[str] = None) -> Dict[str, Any]:
        with self.broadcast(sender) as session:
            return self._submit(session, {'to': Web3.to_checksum_address(address),
                                          'data': encode_call(signature, args)},
                                f"{signature} on {address}")

    def deploy(self, contract: str, constructor_args: Sequence[Any] = (),
               salt: Optional[str] = None, sender: Optional[str] = None) -> str:
        initcode = self.artifacts.load(contract).initcode(constructor_args)

        if salt is None:
            with self.broadcast(sender) as session:
                receipt = self._submit(session, {'data': initcode}, f"deployment of {contract}")
            address = receipt.get('contractAddress')
            if not address:
                raise LedgerError(f"Deployment of {contract} returned no contract address")
            return Web3.to_checksum_address(address)

        salt_bytes = salt_to_bytes32(salt)
        address = create2_address(CREATE2_DEPLOYER, salt_bytes, initcode)
        if self.has_code(address):
            logger.info(f"{contract} already deployed at {address}, reusing it")
            return address
        if not self.has_code(CREATE2_DEPLOYER):
            raise LedgerError(f"CREATE2 deployer missing at {CREATE2_DEPLOYER}; cannot deploy {contract} with a salt")

        with self.broadcast(sender) as session:
            self._submit(session, {'to': CREATE2_DEPLOYER, 'data': salt_bytes + initcode},
                         f"salted deployment of {contract}")
        if not self.has_code(address):
            raise LedgerError(f"{contract} not found at predicted address {address} after deployment")
        return address
