"""
Starts lifecycle operations on the director.

The operation data returned here is what LifecycleRunner.get_task later
polls. A context id is used only when a follow-up task may be owed: a
post-deploy errand after create/update/upgrade, or the deployment deletion
after a pre-delete errand.
"""

import logging
import uuid
from typing import Dict, Optional

from adapter import ServiceAdapterClient
from config import Plan, Plans
from models import OperationData, OperationType, deployment_name_from

logger = logging.getLogger(__name__)


class OperationInProgressError(RuntimeError):
    """Another operation is already running against the deployment."""


class DeploymentNotFoundError(RuntimeError):
    """The deployment backing a service instance does not exist."""


class PlanNotFoundError(RuntimeError):
    """The requested plan is not configured."""


class Deployer:
    """Submits deployments, errands and deletions for service instances."""

    def __init__(
        self,
        bosh_client,
        adapter: ServiceAdapterClient,
        plans: Plans,
        service_deployment: Dict,
    ):
        """
        Args:
            bosh_client: Director client (see clients.BoshClient)
            adapter: Service adapter used to generate manifests
            plans: Configured plans
            service_deployment: Releases and stemcell passed to the adapter
        """
        self.bosh_client = bosh_client
        self.adapter = adapter
        self.plans = plans
        self.service_deployment = service_deployment

    def _plan(self, plan_id: str) -> Plan:
        plan = self.plans.find_by_id(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"plan {plan_id} not found")
        return plan

    def _ensure_no_operation_in_progress(self, deployment_name: str) -> None:
        incomplete = [
            t for t in self.bosh_client.get_tasks(deployment_name) if not t.is_terminal
        ]
        if incomplete:
            ids = ", ".join(str(t.id) for t in incomplete)
            raise OperationInProgressError(
                f"deployment {deployment_name} is still in progress: tasks {ids}"
            )

    def create(
        self, instance_id: str, plan_id: str, request_params: Optional[Dict] = None, logger=logger
    ) -> OperationData:
        return self._deploy(
            OperationType.CREATE, instance_id, plan_id, request_params or {}, None, logger
        )

    def update(
        self,
        instance_id: str,
        plan_id: str,
        request_params: Optional[Dict] = None,
        previous_plan_id: Optional[str] = None,
        logger=logger,
    ) -> OperationData:
        return self._deploy(
            OperationType.UPDATE,
            instance_id,
            plan_id,
            request_params or {},
            previous_plan_id or plan_id,
            logger,
        )

    def upgrade(self, instance_id: str, plan_id: str, logger=logger) -> OperationData:
        return self._deploy(OperationType.UPGRADE, instance_id, plan_id, {}, plan_id, logger)

    def _deploy(
        self,
        operation_type: OperationType,
        instance_id: str,
        plan_id: str,
        request_params: Dict,
        previous_plan_id: Optional[str],
        logger,
    ) -> OperationData:
        plan = self._plan(plan_id)
        deployment_name = deployment_name_from(instance_id)

        self._ensure_no_operation_in_progress(deployment_name)

        previous_manifest = None
        previous_plan = None
        if operation_type != OperationType.CREATE:
            previous_manifest = self.bosh_client.get_deployment(deployment_name)
            if previous_manifest is None:
                raise DeploymentNotFoundError(f"deployment {deployment_name} not found")
            found = self.plans.find_by_id(previous_plan_id)
            previous_plan = found.to_adapter_dict() if found else None

        service_deployment = dict(self.service_deployment, deployment_name=deployment_name)
        manifest = self.adapter.generate_manifest(
            service_deployment,
            plan.to_adapter_dict(),
            request_params,
            previous_manifest=previous_manifest,
            previous_plan=previous_plan,
            logger=logger,
        )

        context_id = str(uuid.uuid4()) if plan.post_deploy_errand else ""
        task_id = self.bosh_client.deploy(manifest, context_id)
        logger.info(
            f"Bosh task ID for {operation_type.value} deployment {deployment_name} is {task_id}"
        )

        return OperationData(
            operation_type=operation_type,
            bosh_task_id=task_id,
            bosh_context_id=context_id,
            plan_id=plan_id if context_id else "",
            post_deploy_errand_name=plan.post_deploy_errand,
        )

    def delete(self, instance_id: str, plan_id: str, logger=logger) -> OperationData:
        """
        Start deleting a service instance.

        With a pre-delete errand configured, only the errand is run here;
        LifecycleRunner.get_task deletes the deployment once the errand is
        done. Otherwise the deployment is deleted immediately.
        """
        deployment_name = deployment_name_from(instance_id)
        self._ensure_no_operation_in_progress(deployment_name)

        plan = self.plans.find_by_id(plan_id)
        errand = plan.pre_delete_errand if plan else ""

        if errand:
            context_id = str(uuid.uuid4())
            task_id = self.bosh_client.run_errand(deployment_name, errand, context_id)
            logger.info(
                f"Bosh task ID for pre-delete errand {errand} on {deployment_name} is {task_id}"
            )
            return OperationData(
                operation_type=OperationType.DELETE,
                bosh_task_id=task_id,
                bosh_context_id=context_id,
                plan_id=plan_id,
            )

        task_id = self.bosh_client.delete_deployment(deployment_name)
        logger.info(f"Bosh task ID for delete deployment {deployment_name} is {task_id}")
        return OperationData(operation_type=OperationType.DELETE, bosh_task_id=task_id)
