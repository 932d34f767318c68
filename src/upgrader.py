"""
Upgrade campaign across every service instance known to the broker.
"""

import json
import logging
import threading
import time
from datetime import datetime
from typing import List, Optional

from listener import Listener
from models import (
    CampaignReport,
    InstanceUpgradeResult,
    TrackedOp,
    UpgradeOperationType,
    deployment_name_from,
)

logger = logging.getLogger(__name__)


class Upgrader:
    """Drives every service instance through an upgrade."""

    def __init__(
        self,
        broker,
        task_poller,
        listener: Listener,
        polling_interval: float = 60.0,
        max_in_flight: int = 1,
        attempt_limit: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
        report_file: Optional[str] = None,
    ):
        """
        Initialize the upgrader.

        Args:
            broker: Lists instances and triggers upgrades (see clients.BrokerServicesClient)
            task_poller: Reports an operation's current task (see lifecycle.LifecycleRunner)
            listener: Observer notified of campaign progress
            polling_interval: Seconds between task polls and between retry passes
            max_in_flight: Accepted upgrades polled together; 1 upgrades one at a time
            attempt_limit: Passes after which busy instances are failed; None retries forever
            stop_event: Set to stop the campaign at its next checkpoint
            report_file: Optional path for a JSON export of the results
        """
        if max_in_flight < 1:
            raise ValueError("max_in_flight must be >= 1")
        self.broker = broker
        self.task_poller = task_poller
        self.listener = listener
        self.polling_interval = polling_interval
        self.max_in_flight = max_in_flight
        self.attempt_limit = attempt_limit
        self.stop_event = stop_event or threading.Event()
        self.report_file = report_file

        self.report = CampaignReport()
        self.run_start_time: Optional[float] = None
        self.run_end_time: Optional[float] = None

    def stop(self) -> None:
        """Stop the campaign. Operations already running on the director continue."""
        self.stop_event.set()

    def _stopped(self) -> bool:
        return self.stop_event.is_set()

    def _record(self, instance_id: str, status: str, **kwargs) -> None:
        self.report.results.append(
            InstanceUpgradeResult(instance_id=instance_id, status=status, **kwargs)
        )

    def _fail(self, instance_id: str, error: str, **kwargs) -> None:
        logger.error(f"Upgrade FAILED for {instance_id}: {error}")
        self._record(instance_id, "failed", error_message=error, **kwargs)
        self.listener.instance_upgraded(instance_id, "failure")

    def run(self) -> CampaignReport:
        """
        Execute the campaign.

        Returns:
            CampaignReport with the final counters and per-instance outcomes

        Raises:
            RuntimeError: If the instances cannot be listed
        """
        self.report = CampaignReport()
        self.run_start_time = time.time()

        self.listener.starting()
        instances = self.broker.instances()
        # A deployment must never see two upgrades from one campaign.
        pending = list(dict.fromkeys(instances))
        if len(pending) != len(instances):
            logger.warning(
                f"Ignoring {len(instances) - len(pending)} duplicate service instance ids"
            )
        self.listener.instances_to_upgrade(pending)

        while pending:
            self.report.passes += 1
            pending = self._upgrade_pass(pending)

            if (
                pending
                and not self._stopped()
                and self.attempt_limit
                and self.report.passes >= self.attempt_limit
            ):
                for instance_id in pending:
                    self._fail(
                        instance_id,
                        f"operation still in progress after {self.report.passes} attempts",
                    )
                pending = []

            self.report.to_retry_count = len(pending)
            self.listener.progress(
                self.polling_interval,
                self.report.orphan_count,
                self.report.upgraded_count,
                self.report.to_retry_count,
                self.report.deleted_count,
            )

            if not pending or self._stopped():
                break
            if self.stop_event.wait(self.polling_interval):
                break

        self.report.cancelled = self._stopped()
        self.run_end_time = time.time()

        self.listener.finished(
            self.report.orphan_count,
            self.report.upgraded_count,
            self.report.deleted_count,
        )
        self._print_report()
        return self.report

    def _upgrade_pass(self, instances: List[str]) -> List[str]:
        """
        Trigger an upgrade for each instance and wait for the accepted ones.

        Returns:
            Instances to retry in the next pass, in their original order
        """
        active_ops: List[TrackedOp] = []
        to_retry: List[str] = []
        total = len(instances)

        def poll_once(wait: bool = True):
            nonlocal active_ops
            if not active_ops:
                return

            if wait:
                # A stop request ends the wait early; the poll still happens.
                self.stop_event.wait(self.polling_interval)

            remaining: List[TrackedOp] = []
            for item in active_ops:
                deployment_name = deployment_name_from(item.instance_id)
                try:
                    task = self.task_poller.get_task(
                        deployment_name, item.operation_data, logger
                    )
                except Exception as e:
                    self._fail(
                        item.instance_id,
                        f"polling task failed: {e}",
                        bosh_task_id=item.operation_data.bosh_task_id,
                    )
                    continue

                if not task.is_terminal:
                    remaining.append(item)
                    continue

                duration = time.time() - item.start_time
                if task.is_done:
                    logger.info(
                        f"Upgrade COMPLETED for {item.instance_id} in {duration:.1f}s"
                    )
                    self.report.upgraded_count += 1
                    self._record(
                        item.instance_id,
                        "success",
                        bosh_task_id=task.id,
                        duration_seconds=duration,
                    )
                    self.listener.instance_upgraded(item.instance_id, "success")
                else:
                    self._fail(
                        item.instance_id,
                        f"bosh task {task.id} finished in state '{task.state}': {task.result}",
                        bosh_task_id=task.id,
                        duration_seconds=duration,
                    )

            active_ops = remaining

        for index, instance_id in enumerate(instances):
            if self._stopped():
                to_retry.extend(instances[index:])
                break

            # Throttle: keep <= max_in_flight operations being polled
            while len(active_ops) >= self.max_in_flight and not self._stopped():
                poll_once()
            if self._stopped():
                to_retry.extend(instances[index:])
                break

            self.listener.instance_upgrade_starting(instance_id, index, total)
            try:
                operation = self.broker.upgrade_instance(instance_id)
            except Exception as e:
                self.listener.instance_upgrade_start_result(UpgradeOperationType.UNEXPECTED)
                self._fail(instance_id, f"upgrade request failed: {e}")
                continue

            self.listener.instance_upgrade_start_result(operation.type)

            if operation.type == UpgradeOperationType.ACCEPTED:
                task_id = operation.data.bosh_task_id
                self.listener.waiting_for(instance_id, task_id)
                active_ops.append(
                    TrackedOp(
                        instance_id=instance_id,
                        operation_data=operation.data,
                        start_time=time.time(),
                    )
                )
            elif operation.type == UpgradeOperationType.NOT_FOUND:
                self.report.orphan_count += 1
                self._record(instance_id, "orphan")
            elif operation.type == UpgradeOperationType.DELETED:
                self.report.deleted_count += 1
                self._record(instance_id, "deleted")
            elif operation.type == UpgradeOperationType.OPERATION_IN_PROGRESS:
                to_retry.append(instance_id)
            else:
                self._fail(instance_id, operation.detail or "unexpected result")

        # Finish remaining ops
        while active_ops and not self._stopped():
            poll_once()

        if active_ops:
            poll_once(wait=False)
            for item in active_ops:
                logger.warning(
                    f"Stopped polling {item.instance_id}; bosh task "
                    f"{item.operation_data.bosh_task_id} keeps running on the director"
                )
                self._record(
                    item.instance_id,
                    "abandoned",
                    bosh_task_id=item.operation_data.bosh_task_id,
                )

        return to_retry

    def _format_duration(self, seconds: float) -> str:
        """Format duration in human-readable format."""
        if seconds < 60:
            return f"{seconds:.1f}s"
        elif seconds < 3600:
            mins = int(seconds // 60)
            secs = seconds % 60
            return f"{mins}m {secs:.0f}s"
        else:
            hours = int(seconds // 3600)
            mins = int((seconds % 3600) // 60)
            secs = seconds % 60
            return f"{hours}h {mins}m {secs:.0f}s"

    def _print_report(self):
        """Log the per-instance outcomes of the campaign."""
        total_duration = self.run_end_time - self.run_start_time

        logger.info("=" * 70)
        logger.info("UPGRADE REPORT")
        logger.info("=" * 70)
        logger.info(f"Total duration:  {self._format_duration(total_duration)}")
        logger.info(f"Passes:          {self.report.passes}")
        if self.report.cancelled:
            logger.info("Campaign was stopped before completion")

        failed = self.report.failures
        if failed:
            logger.info("")
            logger.info("FAILED UPGRADES")
            logger.info("-" * 40)
            for r in failed:
                logger.info(f"{r.instance_id:<40} {r.error_message or 'Unknown'}")

        abandoned = self.report.abandoned
        if abandoned:
            logger.info("")
            logger.info("STILL RUNNING ON THE DIRECTOR")
            logger.info("-" * 40)
            for r in abandoned:
                logger.info(f"{r.instance_id:<40} bosh task {r.bosh_task_id}")

        logger.info("=" * 70)

        if self.report_file:
            self._export_results_json(self.report_file)

    def _export_results_json(self, filename: str):
        """Export results to JSON file for further processing."""
        report = {
            "start_time": datetime.fromtimestamp(self.run_start_time).isoformat(),
            "end_time": datetime.fromtimestamp(self.run_end_time).isoformat(),
            "total_duration_seconds": self.run_end_time - self.run_start_time,
            "passes": self.report.passes,
            "cancelled": self.report.cancelled,
            "statistics": {
                "orphan": self.report.orphan_count,
                "upgraded": self.report.upgraded_count,
                "to_retry": self.report.to_retry_count,
                "deleted": self.report.deleted_count,
                "failed": len(self.report.failures),
            },
            "results": [
                {
                    "instance_id": r.instance_id,
                    "status": r.status,
                    "bosh_task_id": r.bosh_task_id,
                    "duration_seconds": r.duration_seconds,
                    "error_message": r.error_message,
                }
                for r in self.report.results
            ],
        }

        with open(filename, "w") as f:
            json.dump(report, f, indent=2)
        logger.info(f"Detailed report exported to: {filename}")
