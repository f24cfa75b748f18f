#!/usr/bin/env python3
"""
Tests for the drift monitor
"""

from unittest.mock import MagicMock, patch

import pytest
import requests

from deployer.errors import InvariantViolation
from deployer.monitor import DriftMonitor

WEBHOOK = "https://hooks.slack.com/services/T000/B000/XXXX"


class TestDriftMonitor:
    """Test class for DriftMonitor"""

    def setup_method(self):
        """Set up test fixtures before each test method"""
        self.reconciler = MagicMock()
        self.monitor = DriftMonitor(self.reconciler, slack_webhook=WEBHOOK, alert_threshold=2)

    def test_successful_check(self):
        """Test that a passing verification is counted"""
        self.reconciler.verify.return_value = 12
        assert self.monitor.run_check() is True
        assert self.monitor.successful_checks == 1
        assert self.monitor.consecutive_failures == 0
        assert self.monitor.last_check_time is not None

    @patch('deployer.monitor.requests.post')
    def test_alert_after_threshold(self, mock_post):
        """Test that an alert is sent once failures reach the threshold"""
        self.reconciler.verify.side_effect = InvariantViolation("ProxyAdmin", [("owner", "0xa", "0xb")])

        assert self.monitor.run_check() is False
        mock_post.assert_not_called()

        assert self.monitor.run_check() is False
        mock_post.assert_called_once()
        args, kwargs = mock_post.call_args
        assert args[0] == WEBHOOK
        assert "ProxyAdmin" in kwargs["json"]["text"]
        assert kwargs["timeout"] == 10
        assert self.monitor.failed_checks == 2

    @patch('deployer.monitor.requests.post')
    def test_recovery_resets_failures(self, mock_post):
        """Test that a passing check resets the consecutive failure count"""
        self.reconciler.verify.side_effect = [InvariantViolation("ProxyAdmin", []), 3, InvariantViolation("ProxyAdmin", [])]
        self.monitor.run_check()
        self.monitor.run_check()
        self.monitor.run_check()

        assert self.monitor.consecutive_failures == 1
        mock_post.assert_not_called()

    @patch('deployer.monitor.requests.post')
    def test_slack_failure_is_logged(self, mock_post):
        """Test that an unreachable webhook does not break the monitor"""
        mock_post.side_effect = requests.ConnectionError("unreachable")
        self.reconciler.verify.side_effect = InvariantViolation("ProxyAdmin", [])
        self.monitor.run_check()
        assert self.monitor.run_check() is False

    @patch('deployer.monitor.requests.post')
    def test_no_webhook(self, mock_post):
        """Test that alerts are only logged without a webhook"""
        monitor = DriftMonitor(self.reconciler, alert_threshold=1)
        self.reconciler.verify.side_effect = InvariantViolation("ProxyAdmin", [])
        monitor.run_check()
        mock_post.assert_not_called()

    def test_schedule_checks(self):
        """Test that checks are scheduled on the monitor's own scheduler"""
        job = self.monitor.schedule_checks(15)
        assert job in self.monitor.scheduler.jobs
        assert job.interval == 15

    @patch('deployer.monitor.time.sleep')
    def test_run_forever_stops_on_interrupt(self, mock_sleep):
        """Test that the loop exits cleanly on Ctrl-C"""
        mock_sleep.side_effect = KeyboardInterrupt
        self.monitor.run_forever(5)
        self.reconciler.verify.assert_called_once()


if __name__ == "__main__":
    pytest.main([__file__])
