"""
Fingerprint providers
=====================

Extension registration is parameterized by a 32-byte initial state
fingerprint (the absolute prestate of the fault proof VM). It comes either
from the deploy config or, in restricted contexts, from an artifact produced
by an external command. Whatever the source, the value is untrusted until it
passes parse_fingerprint.
"""

import json
import logging
import re
import shlex
import subprocess
from abc import ABC, abstractmethod
from typing import Any, Optional

from .config import DeployConfig
from .errors import ConfigurationError, ExternalProviderError
from .signatures import ZERO_BYTES32

logger = logging.getLogger(__name__)

_FINGERPRINT_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


def parse_fingerprint(raw: Any, source: str) -> bytes:
    """Validate a fingerprint and return its 32 bytes"""
    if isinstance(raw, (bytes, bytearray)):
        value = bytes(raw)
        if len(value) != 32:
            raise ExternalProviderError(f"{source} returned {len(value)} bytes, expected 32")
    elif isinstance(raw, str):
        text = raw.strip()
        if not _FINGERPRINT_RE.match(text):
            raise ExternalProviderError(f"{source} returned a malformed fingerprint: {text[:80]!r}")
        value = bytes.fromhex(text[2:])
    else:
        raise ExternalProviderError(f"{source} returned no fingerprint")

    if value == ZERO_BYTES32:
        raise ExternalProviderError(f"{source} returned the zero fingerprint")
    return value


class FingerprintProvider(ABC):
    """Source of the extension fingerprint"""

    @abstractmethod
    def fetch(self) -> bytes:
        """Return the validated fingerprint or raise ExternalProviderError"""


class StaticFingerprint(FingerprintProvider):
    """Fingerprint taken verbatim from the deploy config"""

    def __init__(self, value: Optional[str]):
        self.value = value

    def fetch(self) -> bytes:
        if self.value is None:
            raise ExternalProviderError("faultGameAbsolutePrestate is not set in the deploy config")
        return parse_fingerprint(self.value, "deploy config")


class FileFingerprintProvider(FingerprintProvider):
    """
    Reads the fingerprint from a file

    The file is either a JSON object holding the value under ``key`` or a
    plain text file containing only the hex value.
    """

    def __init__(self, path: str, key: str = "pre"):
        self.path = path
        self.key = key

    def fetch(self) -> bytes:
        try:
            with open(self.path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ExternalProviderError(f"Fingerprint artifact {self.path} is unavailable: {e}") from e

        stripped = content.strip()
        if stripped.startswith("{"):
            try:
                data = json.loads(stripped)
            except json.JSONDecodeError as e:
                raise ExternalProviderError(f"Fingerprint artifact {self.path} is not valid JSON: {e}") from e
            if self.key not in data:
                raise ExternalProviderError(f"Fingerprint artifact {self.path} has no {self.key!r} field")
            return parse_fingerprint(data[self.key], self.path)
        return parse_fingerprint(stripped, self.path)


class CommandFingerprintProvider(FingerprintProvider):
    """Runs a command that produces the fingerprint, then reads its output"""

    def __init__(self, command: str, path: Optional[str] = None, key: str = "pre",
                 timeout: int = 1800, cwd: Optional[str] = None):
        self.command = command
        self.path = path
        self.key = key
        self.timeout = timeout
        self.cwd = cwd

    def fetch(self) -> bytes:
        logger.info(f"Running fingerprint command: {self.command}")
        try:
            result = subprocess.run(
                shlex.split(self.command),
                check=True,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                cwd=self.cwd,
            )
        except FileNotFoundError as e:
            raise ExternalProviderError(f"Fingerprint command not found: {self.command}") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()[-500:]
            raise ExternalProviderError(
                f"Fingerprint command {self.command!r} exited with {e.returncode}: {stderr}"
            ) from e
        except subprocess.TimeoutExpired as e:
            raise ExternalProviderError(f"Fingerprint command {self.command!r} timed out after {self.timeout}s") from e

        if self.path is not None:
            return FileFingerprintProvider(self.path, self.key).fetch()

        lines = [line for line in result.stdout.splitlines() if line.strip()]
        if not lines:
            raise ExternalProviderError(f"Fingerprint command {self.command!r} printed nothing")
        return parse_fingerprint(lines[-1], f"command {self.command!r}")


def provider_for_config(config: DeployConfig) -> FingerprintProvider:
    """Restricted contexts build the fingerprint locally, others take it from config"""
    if not config.restricted_context:
        return StaticFingerprint(config.fault_game_absolute_prestate)
    if config.prestate_command:
        return CommandFingerprintProvider(config.prestate_command, config.prestate_path)
    if config.prestate_path:
        return FileFingerprintProvider(config.prestate_path)
    raise ConfigurationError("Restricted context requires prestateCommand or prestatePath in the deploy config")
