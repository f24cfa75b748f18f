"""
Persisted name -> address bindings.

The deployment file holds one flat table per network, keyed by chain id:

    {"31337": {"ProxyAdmin": "0x...", "OptimismPortalProxy": "0x..."}}

Entries are append-only. Re-recording the same address is a no-op, recording
a different one raises ConflictError.
"""

import json
import logging
import os
import tempfile
from typing import Dict, Optional

from web3 import Web3

from .errors import ConfigurationError, ConflictError, NotFoundError

logger = logging.getLogger(__name__)


class AddressRegistry:
    """Name -> address table for a single network, merged into a JSON file on write"""

    def __init__(self, network: str, path: Optional[str] = None):
        self.network = str(network)
        self.path = path
        self._entries: Dict[str, str] = {}
        if path is not None:
            self._entries.update(self._read_table())
            logger.info(f"Loaded {len(self._entries)} recorded addresses for network {self.network} from {path}")

    def _read_file(self) -> Dict[str, Dict[str, str]]:
        if self.path is None or not os.path.exists(self.path):
            return {}
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read deployment file {self.path}: {e}") from e
        if not isinstance(data, dict) or not all(isinstance(t, dict) for t in data.values()):
            raise ConfigurationError(f"Deployment file {self.path} must contain a JSON object")
        return data

    def _read_table(self) -> Dict[str, str]:
        table = self._read_file().get(self.network, {})
        try:
            return {name: Web3.to_checksum_address(address) for name, address in table.items()}
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Deployment file {self.path} holds an invalid address: {e}") from e

    def _write_table(self, entries: Dict[str, str]):
        data = self._read_file()
        merged = dict(data.get(self.network, {}))
        for name, address in entries.items():
            existing = merged.get(name)
            if existing is not None and existing.lower() != address.lower():
                raise ConflictError(name, Web3.to_checksum_address(existing), address)
            merged[name] = address
        data[self.network] = dict(sorted(merged.items()))

        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".deployments-", suffix=".json")
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
                f.write("\n")
            os.replace(tmp_path, self.path)
        except BaseException:
            os.unlink(tmp_path)
            raise

    def put(self, name: str, address: str):
        """Record an address, failing if the name is already bound elsewhere"""
        address = Web3.to_checksum_address(address)
        existing = self._entries.get(name)
        if existing is not None:
            if existing != address:
                raise ConflictError(name, existing, address)
            return
        if self.path is not None:
            # a conflict anywhere in the file leaves the in-memory table as it was
            self._write_table({**self._entries, name: address})
        self._entries[name] = address
        logger.info(f"Recorded {name} at {address}")

    def get(self, name: str) -> str:
        try:
            return self._entries[name]
        except KeyError:
            raise NotFoundError(name) from None

    def has(self, name: str) -> bool:
        return name in self._entries

    def entries(self) -> Dict[str, str]:
        return dict(self._entries)

    def __len__(self) -> int:
        return len(self._entries)
