"""
Data models for the on-demand service broker core.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

DEPLOYMENT_NAME_PREFIX = "service-instance_"


def deployment_name_from(instance_id: str) -> str:
    """Director deployment name for a service instance."""
    return f"{DEPLOYMENT_NAME_PREFIX}{instance_id}"


class OperationType(Enum):
    """Lifecycle operation driven against a deployment."""

    CREATE = "create"
    UPDATE = "update"
    UPGRADE = "upgrade"
    DELETE = "delete"


@dataclass(frozen=True)
class OperationData:
    """
    Tracking data for one in-flight or completed lifecycle operation.

    When bosh_context_id is empty the operation is tracked by its single
    director task (bosh_task_id). Otherwise every task of the operation is
    correlated by the context id and a follow-up errand or deletion may be
    owed once the first task is done.

    post_deploy_errand_name travels with the broker payload for operators
    and clients only. The errand actually run is looked up from the plan
    (plan_id) when the follow-up is due.
    """

    operation_type: OperationType
    bosh_task_id: int = 0
    bosh_context_id: str = ""
    plan_id: str = ""
    post_deploy_errand_name: str = ""

    @property
    def uses_context(self) -> bool:
        return bool(self.bosh_context_id)

    def to_dict(self) -> Dict:
        """Serialise using the broker wire keys."""
        return {
            "OperationType": self.operation_type.value,
            "BoshTaskID": self.bosh_task_id,
            "BoshContextID": self.bosh_context_id,
            "PlanID": self.plan_id,
            "PostDeployErrandName": self.post_deploy_errand_name,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> "OperationData":
        return cls(
            operation_type=OperationType(data["OperationType"]),
            bosh_task_id=int(data.get("BoshTaskID") or 0),
            bosh_context_id=data.get("BoshContextID") or "",
            plan_id=data.get("PlanID") or "",
            post_deploy_errand_name=data.get("PostDeployErrandName") or "",
        )


class TaskState:
    """Director task states."""

    QUEUED = "queued"
    PROCESSING = "processing"
    CANCELLING = "cancelling"
    DONE = "done"
    ERROR = "error"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"

    TERMINAL = frozenset({DONE, ERROR, CANCELLED, TIMEOUT})


@dataclass
class BoshTask:
    """A unit of work tracked by the director."""

    id: int
    state: str
    description: str = ""
    result: str = ""
    context_id: str = ""

    @property
    def is_terminal(self) -> bool:
        return self.state in TaskState.TERMINAL

    @property
    def is_done(self) -> bool:
        return self.state == TaskState.DONE

    @classmethod
    def from_dict(cls, data: Dict) -> "BoshTask":
        """Build a task from the director's JSON representation."""
        return cls(
            id=int(data["id"]),
            state=str(data.get("state", "")),
            description=data.get("description") or "",
            result=data.get("result") or "",
            context_id=data.get("context_id") or "",
        )


class UpgradeOperationType(Enum):
    """Classification of the broker's answer to an upgrade request."""

    ACCEPTED = "accepted"
    NOT_FOUND = "not_found"  # orphan: no deployment behind the instance
    DELETED = "deleted"  # instance deleted before the upgrade could occur
    OPERATION_IN_PROGRESS = "operation_in_progress"
    UNEXPECTED = "unexpected"


@dataclass
class UpgradeOperation:
    """Result of triggering an upgrade for one service instance."""

    type: UpgradeOperationType
    data: Optional[OperationData] = None
    detail: str = ""


@dataclass
class TrackedOp:
    """Accepted upgrade whose task is being polled."""

    instance_id: str
    operation_data: OperationData
    start_time: float


@dataclass
class InstanceUpgradeResult:
    """Outcome of a campaign for one service instance."""

    instance_id: str
    status: str  # "success", "failed", "orphan", "deleted", "abandoned"
    bosh_task_id: Optional[int] = None
    duration_seconds: Optional[float] = None
    error_message: Optional[str] = None


@dataclass
class CampaignReport:
    """Progress counters and outcomes of one upgrade campaign."""

    orphan_count: int = 0
    upgraded_count: int = 0
    to_retry_count: int = 0
    deleted_count: int = 0
    passes: int = 0
    cancelled: bool = False
    results: List[InstanceUpgradeResult] = field(default_factory=list)

    @property
    def failures(self) -> List[InstanceUpgradeResult]:
        return [r for r in self.results if r.status == "failed"]

    @property
    def abandoned(self) -> List[InstanceUpgradeResult]:
        return [r for r in self.results if r.status == "abandoned"]
