"""
Observers notified by the upgrader at fixed points of a campaign.
"""

import logging
from abc import ABC, abstractmethod
from typing import List

from models import UpgradeOperationType

logger = logging.getLogger(__name__)


class Listener(ABC):
    """Capabilities an upgrade campaign observer must provide."""

    @abstractmethod
    def starting(self) -> None: ...

    @abstractmethod
    def instances_to_upgrade(self, instances: List[str]) -> None: ...

    @abstractmethod
    def instance_upgrade_starting(self, instance: str, index: int, total: int) -> None: ...

    @abstractmethod
    def instance_upgrade_start_result(self, result_type: UpgradeOperationType) -> None: ...

    @abstractmethod
    def waiting_for(self, instance: str, bosh_task_id: int) -> None: ...

    @abstractmethod
    def instance_upgraded(self, instance: str, result: str) -> None: ...

    @abstractmethod
    def progress(
        self,
        polling_interval: float,
        orphan_count: int,
        upgraded_count: int,
        to_retry_count: int,
        deleted_count: int,
    ) -> None: ...

    @abstractmethod
    def finished(self, orphan_count: int, upgraded_count: int, deleted_count: int) -> None: ...


_START_RESULT_MESSAGES = {
    UpgradeOperationType.ACCEPTED: "accepted upgrade",
    UpgradeOperationType.DELETED: "already deleted from the service registry",
    UpgradeOperationType.NOT_FOUND: "orphan service instance detected - no corresponding bosh deployment",
    UpgradeOperationType.OPERATION_IN_PROGRESS: "operation in progress",
}


class LoggingListener(Listener):
    """Reports campaign progress to the operator log."""

    def __init__(self, log: logging.Logger = logger):
        self.log = log

    def starting(self) -> None:
        self.log.info("STARTING UPGRADES")

    def instances_to_upgrade(self, instances: List[str]) -> None:
        self.log.info("Service Instances: " + " ".join(instances))
        self.log.info(f"Total Service Instances found: {len(instances)}")

    def instance_upgrade_starting(self, instance: str, index: int, total: int) -> None:
        self.log.info(
            f"Service instance: {instance}, upgrade attempt starting ({index + 1} of {total})"
        )

    def instance_upgrade_start_result(self, result_type: UpgradeOperationType) -> None:
        message = _START_RESULT_MESSAGES.get(result_type, "unexpected result")
        self.log.info(f"Result: {message}")

    def waiting_for(self, instance: str, bosh_task_id: int) -> None:
        self.log.info(
            f"Waiting for upgrade to complete for {instance}: bosh task id {bosh_task_id}"
        )

    def instance_upgraded(self, instance: str, result: str) -> None:
        self.log.info(f"Result: Service Instance {instance} upgrade {result}")

    def progress(
        self,
        polling_interval: float,
        orphan_count: int,
        upgraded_count: int,
        to_retry_count: int,
        deleted_count: int,
    ) -> None:
        self.log.info("Upgrade progress summary:")
        self.log.info(f"Sleep interval until next attempt: {polling_interval}s")
        self.log.info(f"Number of successful upgrades so far: {upgraded_count}")
        self.log.info(f"Number of service instance orphans detected so far: {orphan_count}")
        self.log.info(
            f"Number of deleted instances before upgrade could occur: {deleted_count}"
        )
        self.log.info(f"Number of operations in progress (to retry) so far: {to_retry_count}")

    def finished(self, orphan_count: int, upgraded_count: int, deleted_count: int) -> None:
        self.log.info("FINISHED UPGRADES")
        self.log.info("Summary:")
        self.log.info(f"Number of successful upgrades: {upgraded_count}")
        self.log.info(f"Number of service instance orphans detected: {orphan_count}")
        self.log.info(f"Number of deleted instances before upgrade could occur: {deleted_count}")
