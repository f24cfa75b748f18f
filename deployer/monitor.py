"""
Drift monitor: re-verifies a finished deployment on a schedule and alerts
when the on-chain state stops matching it.
"""

import logging
import time
from datetime import datetime
from typing import Optional

import requests
import schedule

from .errors import DeploymentError
from .reconciler import DeploymentReconciler

logger = logging.getLogger(__name__)


class DriftMonitor:
    def __init__(self, reconciler: DeploymentReconciler, slack_webhook: Optional[str] = None,
                 alert_threshold: int = 3):
        self.reconciler = reconciler
        self.slack_webhook = slack_webhook
        self.alert_threshold = alert_threshold
        self.scheduler = schedule.Scheduler()

        # Statistics
        self.successful_checks = 0
        self.failed_checks = 0
        self.last_check_time: Optional[datetime] = None
        self.consecutive_failures = 0

    def run_check(self) -> bool:
        """Run one read-only verification pass"""
        try:
            logger.info("Starting drift check...")
            self.reconciler.verify()
        except DeploymentError as e:
            logger.error(f"Drift check failed: {e}")
            self.failed_checks += 1
            self.consecutive_failures += 1
            if self.consecutive_failures >= self.alert_threshold:
                self._send_alert(f"Deployment drift check failed {self.consecutive_failures} times consecutively: {e}")
            return False
        finally:
            self.last_check_time = datetime.now()

        self.successful_checks += 1
        self.consecutive_failures = 0
        self._log_statistics()
        return True

    def _log_statistics(self):
        """Log check statistics"""
        total_checks = self.successful_checks + self.failed_checks
        success_rate = (self.successful_checks / total_checks * 100) if total_checks > 0 else 0

        logger.info(f"Statistics - Total: {total_checks}, Passed: {self.successful_checks}, "
                    f"Failed: {self.failed_checks}, Pass Rate: {success_rate:.1f}%")

    def _send_alert(self, message: str):
        logger.error(f"ALERT: {message}")
        if self.slack_webhook:
            try:
                self._send_slack_alert(message)
            except requests.RequestException as e:
                logger.error(f"Failed to send Slack alert: {e}")

    def _send_slack_alert(self, message: str):
        payload = {
            "text": f"Deployment drift alert: {message}",
            "attachments": [
                {
                    "fields": [
                        {
                            "title": "Passed Checks",
                            "value": str(self.successful_checks),
                            "short": True
                        },
                        {
                            "title": "Failed Checks",
                            "value": str(self.failed_checks),
                            "short": True
                        }
                    ]
                }
            ]
        }

        response = requests.post(self.slack_webhook, json=payload, timeout=10)
        response.raise_for_status()

    def schedule_checks(self, interval_minutes: int) -> schedule.Job:
        return self.scheduler.every(interval_minutes).minutes.do(self.run_check)

    def run_forever(self, interval_minutes: int):
        """Check now, then every ``interval_minutes`` until interrupted"""
        self.schedule_checks(interval_minutes)
        self.run_check()

        logger.info(f"Starting drift monitor (every {interval_minutes} minutes)...")
        try:
            while True:
                self.scheduler.run_pending()
                time.sleep(30)
        except KeyboardInterrupt:
            logger.info("Drift monitor stopped by user")
