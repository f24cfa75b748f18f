#!/usr/bin/env python3
"""
Tests for postcondition checks and the reconcile step
"""

from unittest.mock import MagicMock

import pytest

from deployer.errors import InvariantViolation
from deployer.verifier import Postcondition, PostconditionVerifier, reconcile_step

OWNER = "0x00000000000000000000000000000000000f1a11"
OTHER = "0x0000000000000000000000000000000000000b0b"


class TestPostconditionVerifier:
    """Test class for PostconditionVerifier"""

    def setup_method(self):
        """Set up test fixtures before each test method"""
        self.ledger = MagicMock()
        self.verifier = PostconditionVerifier(self.ledger)

    def test_all_hold(self):
        """Test that matching postconditions pass and are counted"""
        self.verifier.check("Proxy1", [
            Postcondition("value", lambda: 7, 7),
            Postcondition("owner", lambda: OWNER.lower(), OWNER),
        ])
        assert self.verifier.checks_run == 2

    def test_reports_every_mismatch(self):
        """Test that one violation lists all failing postconditions"""
        with pytest.raises(InvariantViolation) as exc_info:
            self.verifier.check("Proxy1", [
                Postcondition("value", lambda: 6, 7),
                Postcondition("paused", lambda: False, False),
                Postcondition("owner", lambda: OTHER, OWNER),
            ])
        violation = exc_info.value
        assert violation.unit == "Proxy1"
        assert [m[0] for m in violation.mismatches] == ["value", "owner"]
        assert self.verifier.checks_run == 3

    def test_expect_call(self):
        """Test a postcondition backed by a ledger call"""
        self.ledger.call.return_value = OWNER
        postcondition = self.verifier.expect_call("0xproxy", "owner()(address)", OWNER)

        assert postcondition.description == "owner()"
        assert postcondition.read() == OWNER
        self.ledger.call.assert_called_once_with("0xproxy", "owner()(address)", ())

    def test_expect_call_with_arguments(self):
        """Test that call arguments and a custom description are kept"""
        postcondition = self.verifier.expect_call(
            "0xfactory", "gameImpls(uint8)(address)", OWNER, args=(0,), description="game 0"
        )
        postcondition.read()
        assert postcondition.description == "game 0"
        self.ledger.call.assert_called_once_with("0xfactory", "gameImpls(uint8)(address)", (0,))


class TestReconcileStep:
    """Test class for reconcile_step"""

    def test_already_converged(self):
        """Test that no write happens when the value already matches"""
        write = MagicMock()
        changed = reconcile_step("ProxyAdmin", "owner", read=lambda: OWNER, desired=OWNER.lower(), write=write)
        assert changed is False
        write.assert_not_called()

    def test_writes_and_verifies(self):
        """Test that a differing value is written once and read back"""
        state = {"owner": OTHER}
        write = MagicMock(side_effect=lambda: state.update(owner=OWNER))

        changed = reconcile_step("ProxyAdmin", "owner", read=lambda: state["owner"], desired=OWNER, write=write)

        assert changed is True
        write.assert_called_once()

    def test_write_without_effect(self):
        """Test that a write the ledger ignored is a violation"""
        with pytest.raises(InvariantViolation) as exc_info:
            reconcile_step("ProxyAdmin", "owner", read=lambda: OTHER, desired=OWNER, write=MagicMock())
        assert exc_info.value.mismatches[0][0] == "owner"

    def test_custom_verify(self):
        """Test that a separate verification read is used after the write"""
        verify = MagicMock(return_value=OWNER)
        changed = reconcile_step("ProxyAdmin", "owner", read=lambda: OTHER, desired=OWNER,
                                 write=MagicMock(), verify=verify)
        assert changed is True
        verify.assert_called_once()


if __name__ == "__main__":
    pytest.main([__file__])
