"""
Postcondition checks
====================

Every mutation is followed by a list of (read, expected) pairs. A single
mismatch aborts the whole run: later steps build on the addresses and
permissions established by earlier ones.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Sequence

from .errors import InvariantViolation
from .ledger import LedgerClient
from .signatures import normalize, parse_signature, same_value

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Postcondition:
    """A ledger read and the value it must return"""
    description: str
    read: Callable[[], Any]
    expected: Any


class PostconditionVerifier:
    """Evaluates postconditions against the ledger"""

    def __init__(self, ledger: LedgerClient):
        self.ledger = ledger
        self.checks_run = 0

    def expect_call(self, address: str, signature: str, expected: Any,
                    args: Sequence[Any] = (), description: Optional[str] = None) -> Postcondition:
        """Postcondition on the result of a read-only call"""
        return Postcondition(
            description=description or parse_signature(signature).canonical,
            read=lambda: self.ledger.call(address, signature, args),
            expected=expected,
        )

    def check(self, unit: str, postconditions: Sequence[Postcondition]):
        """
        Evaluate all postconditions for a unit

        Raises:
            InvariantViolation: listing every mismatch, if there is any
        """
        mismatches = []
        for postcondition in postconditions:
            observed = postcondition.read()
            self.checks_run += 1
            if not same_value(observed, postcondition.expected):
                mismatches.append((
                    postcondition.description,
                    normalize(postcondition.expected),
                    normalize(observed),
                ))
        if mismatches:
            for description, expected, observed in mismatches:
                logger.error(f"{unit}: {description} expected {expected!r}, observed {observed!r}")
            raise InvariantViolation(unit, mismatches)
        logger.debug(f"{unit}: {len(postconditions)} postcondition(s) hold")


def reconcile_step(unit: str, description: str, read: Callable[[], Any], desired: Any,
                   write: Callable[[], Any], verify: Optional[Callable[[], Any]] = None) -> bool:
    """
    Read-compare-write-verify

    Args:
        unit: unit name used in logs and errors
        description: what is being reconciled, e.g. "owner"
        read: returns the current value
        desired: the value the ledger must end up with
        write: mutation applied when the current value differs
        verify: read used after the write (defaults to ``read``)

    Returns:
        True if a write was issued, False if the ledger already matched
    """
    current = read()
    if same_value(current, desired):
        logger.info(f"{unit}: {description} already {normalize(desired)}")
        return False

    logger.info(f"{unit}: setting {description} from {normalize(current)} to {normalize(desired)}")
    write()

    observed = (verify or read)()
    if not same_value(observed, desired):
        raise InvariantViolation(unit, [(description, normalize(desired), normalize(observed))])
    return True
