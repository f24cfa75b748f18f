"""Loads compiled contract artifacts (Hardhat or Foundry layout)"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Sequence

from eth_abi import encode

from .errors import ConfigurationError
from .signatures import prepare_argument

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Artifact:
    """ABI and creation bytecode of one contract"""
    name: str
    abi: List[Dict[str, Any]]
    bytecode: bytes

    @property
    def constructor_types(self) -> List[str]:
        for entry in self.abi:
            if entry.get('type') == 'constructor':
                return [param['type'] for param in entry.get('inputs', [])]
        return []

    def initcode(self, constructor_args: Sequence[Any] = ()) -> bytes:
        """Creation bytecode followed by the encoded constructor arguments"""
        types = self.constructor_types
        if len(types) != len(constructor_args):
            raise ConfigurationError(
                f"{self.name} constructor takes {len(types)} arguments, got {len(constructor_args)}"
            )
        if not types:
            return self.bytecode
        values = [prepare_argument(t, a) for t, a in zip(types, constructor_args)]
        return self.bytecode + encode(types, values)


class ArtifactStore:
    """Finds ``<Name>.json`` artifacts anywhere below a root directory"""

    def __init__(self, root: str):
        self.root = root
        self._cache: Dict[str, Artifact] = {}

    def _find(self, name: str) -> str:
        target = f"{name}.json"
        for dirpath, _, filenames in os.walk(self.root):
            if target in filenames:
                return os.path.join(dirpath, target)
        raise ConfigurationError(f"No artifact {target} under {self.root}")

    def load(self, name: str) -> Artifact:
        if name in self._cache:
            return self._cache[name]

        path = self._find(name)
        try:
            with open(path, 'r') as f:
                data = json.load(f)
            abi = data['abi']
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise ConfigurationError(f"Could not read artifact {path}: {e!r}") from e

        bytecode = data.get('bytecode')
        # Foundry nests the hex under "object"
        if isinstance(bytecode, dict):
            bytecode = bytecode.get('object')
        if not bytecode or bytecode in ("0x", ""):
            raise ConfigurationError(f"Artifact {path} has no creation bytecode (abstract contract or interface?)")

        hex_code = bytecode[2:] if bytecode.startswith("0x") else bytecode
        artifact = Artifact(name=name, abi=abi, bytecode=bytes.fromhex(hex_code))
        self._cache[name] = artifact
        logger.debug(f"Loaded artifact {name} from {path}")
        return artifact
