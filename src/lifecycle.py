"""
Lifecycle runner: reports the director task that represents the current
state of a lifecycle operation, starting the follow-up errand or deletion
the first time the operation's primary task is observed done.

get_task is called on every status poll of an asynchronous operation, so a
follow-up is triggered only while exactly one task exists for the context
id. Two polls racing before the follow-up task becomes visible can both
trigger it; callers serialize polls of the same operation.
"""

import logging
from typing import Optional

from config import Plans
from models import BoshTask, OperationData, OperationType

logger = logging.getLogger(__name__)

MAX_TASKS_PER_CONTEXT = 2


class TaskLookupError(RuntimeError):
    """The director's tasks for a context id contradict the operation."""


class LifecycleRunner:
    """Computes the externally visible task of a lifecycle operation."""

    def __init__(self, bosh_client, plans: Plans):
        """
        Args:
            bosh_client: Director client (see clients.BoshClient)
            plans: Configured plans, used to find post-deploy errands
        """
        self.bosh_client = bosh_client
        self.plans = plans

    def get_task(
        self, deployment_name: str, operation_data: OperationData, logger=logger
    ) -> BoshTask:
        """
        Get the task describing the operation's current state.

        Args:
            deployment_name: Deployment the operation acts on
            operation_data: Tracking data returned when the operation started
            logger: Logger, usually scoped to the broker request

        Returns:
            The director task to report

        Raises:
            TaskLookupError: No tasks, or too many tasks, for the context id
            RuntimeError: Director errors, unchanged
        """
        if not operation_data.uses_context:
            return self.bosh_client.get_task(operation_data.bosh_task_id)

        context_id = operation_data.bosh_context_id
        tasks = self.bosh_client.get_normalised_tasks_by_context(
            deployment_name, context_id
        )

        if not tasks:
            raise TaskLookupError(f"no tasks found for context id: {context_id}")

        if len(tasks) > MAX_TASKS_PER_CONTEXT:
            raise TaskLookupError(
                f"unexpected tasks found with context id: {context_id}, "
                f"found {len(tasks)} tasks, expected at most {MAX_TASKS_PER_CONTEXT}"
            )

        if len(tasks) == MAX_TASKS_PER_CONTEXT:
            # Director lists newest first: the follow-up is already running.
            return tasks[0]

        task = tasks[0]
        if not task.is_done:
            return task

        if operation_data.operation_type == OperationType.DELETE:
            return self._delete_deployment(deployment_name, context_id, logger)

        errand_name = self._post_deploy_errand(operation_data.plan_id)
        if not errand_name:
            return task
        return self._run_errand(deployment_name, errand_name, context_id, logger)

    def _post_deploy_errand(self, plan_id: str) -> Optional[str]:
        plan = self.plans.find_by_id(plan_id)
        if plan is None:
            return None
        return plan.post_deploy_errand or None

    def _delete_deployment(self, deployment_name: str, context_id: str, logger) -> BoshTask:
        logger.info(f"Submitting delete deployment for {deployment_name}")
        task_id = self.bosh_client.delete_deployment(deployment_name, context_id)
        logger.info(f"Bosh task ID for delete deployment {deployment_name} is {task_id}")
        return self.bosh_client.get_task(task_id)

    def _run_errand(
        self, deployment_name: str, errand_name: str, context_id: str, logger
    ) -> BoshTask:
        logger.info(f"Submitting {errand_name} errand for {deployment_name}")
        task_id = self.bosh_client.run_errand(deployment_name, errand_name, context_id)
        logger.info(f"Bosh task ID for {errand_name} errand on {deployment_name} is {task_id}")
        return self.bosh_client.get_task(task_id)
