"""Error types raised by the deployer. None of them is retried automatically."""

from typing import Any, List, Tuple


class DeploymentError(Exception):
    """Base class for every fatal deployment error"""


class ConflictError(DeploymentError):
    """A registry name is bound to two different addresses"""

    def __init__(self, name: str, existing: str, attempted: str):
        self.name = name
        self.existing = existing
        self.attempted = attempted
        super().__init__(
            f"Registry conflict for {name}: already bound to {existing}, refusing {attempted}"
        )


class NotFoundError(DeploymentError):
    """A required address is missing from the registry"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"No address recorded for {name}; run the earlier phases first")


class InvariantViolation(DeploymentError):
    """A postcondition did not hold after a mutation"""

    def __init__(self, unit: str, mismatches: List[Tuple[str, Any, Any]]):
        self.unit = unit
        self.mismatches = mismatches
        details = "; ".join(
            f"{description}: expected {expected!r}, observed {observed!r}"
            for description, expected, observed in mismatches
        )
        super().__init__(f"Invariant violated for {unit}: {details}")


class ExternalProviderError(DeploymentError):
    """The external fingerprint source is unavailable or returned garbage"""


class LedgerError(DeploymentError):
    """The ledger rejected or could not process a request"""


class ConfigurationError(DeploymentError):
    """Deploy configuration or environment is missing or invalid"""
