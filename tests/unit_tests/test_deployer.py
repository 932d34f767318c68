"""
Unit tests for Deployer.
"""

import unittest
from unittest.mock import MagicMock

from config import LifecycleErrands, Plan, Plans
from deployer import (
    Deployer,
    DeploymentNotFoundError,
    OperationInProgressError,
    PlanNotFoundError,
)
from models import BoshTask, OperationType, TaskState

INSTANCE_ID = "instance-1"
DEPLOYMENT_NAME = "service-instance_instance-1"
SERVICE_DEPLOYMENT = {"releases": [{"name": "redis", "version": "1"}], "stemcell": {}}


class DeployerTestCase(unittest.TestCase):
    def setUp(self):
        self.plans = Plans(
            [
                Plan(id="plain", instance_groups=[{"name": "db"}]),
                Plan(
                    id="with-post-deploy",
                    lifecycle_errands=LifecycleErrands(post_deploy="smoke-tests"),
                ),
                Plan(
                    id="with-pre-delete",
                    lifecycle_errands=LifecycleErrands(pre_delete="drain"),
                ),
            ]
        )
        self.bosh = MagicMock()
        self.bosh.get_tasks.return_value = [BoshTask(id=1, state=TaskState.DONE)]
        self.bosh.get_deployment.return_value = "name: old"
        self.bosh.deploy.return_value = 10
        self.bosh.delete_deployment.return_value = 11
        self.bosh.run_errand.return_value = 12
        self.adapter = MagicMock()
        self.adapter.generate_manifest.return_value = "name: new"
        self.deployer = Deployer(self.bosh, self.adapter, self.plans, SERVICE_DEPLOYMENT)


class TestDeploy(DeployerTestCase):
    """Create, update and upgrade."""

    def test_create_without_errand_uses_task_id(self):
        data = self.deployer.create(INSTANCE_ID, "plain", {"a": 1})

        self.assertEqual(data.operation_type, OperationType.CREATE)
        self.assertEqual(data.bosh_task_id, 10)
        self.assertFalse(data.uses_context)
        self.assertEqual(data.plan_id, "")
        self.bosh.deploy.assert_called_once_with("name: new", "")
        self.bosh.get_deployment.assert_not_called()

        args, kwargs = self.adapter.generate_manifest.call_args
        self.assertEqual(args[0]["deployment_name"], DEPLOYMENT_NAME)
        self.assertEqual(args[0]["releases"], SERVICE_DEPLOYMENT["releases"])
        self.assertEqual(args[1], {"instance_groups": [{"name": "db"}], "properties": {}})
        self.assertEqual(args[2], {"a": 1})
        self.assertIsNone(kwargs["previous_manifest"])
        self.assertIsNone(kwargs["previous_plan"])

    def test_create_with_post_deploy_errand_uses_context(self):
        data = self.deployer.create(INSTANCE_ID, "with-post-deploy")

        self.assertTrue(data.uses_context)
        self.assertEqual(data.plan_id, "with-post-deploy")
        self.assertEqual(data.post_deploy_errand_name, "smoke-tests")
        self.bosh.deploy.assert_called_once_with("name: new", data.bosh_context_id)

    def test_each_operation_gets_a_new_context_id(self):
        first = self.deployer.create(INSTANCE_ID, "with-post-deploy")
        second = self.deployer.upgrade(INSTANCE_ID, "with-post-deploy")

        self.assertNotEqual(first.bosh_context_id, second.bosh_context_id)

    def test_update_passes_previous_deployment(self):
        data = self.deployer.update(INSTANCE_ID, "plain", previous_plan_id="with-post-deploy")

        self.assertEqual(data.operation_type, OperationType.UPDATE)
        self.bosh.get_deployment.assert_called_once_with(DEPLOYMENT_NAME)
        kwargs = self.adapter.generate_manifest.call_args[1]
        self.assertEqual(kwargs["previous_manifest"], "name: old")
        self.assertEqual(kwargs["previous_plan"], {"instance_groups": [], "properties": {}})

    def test_upgrade_uses_current_plan_as_previous(self):
        data = self.deployer.upgrade(INSTANCE_ID, "plain")

        self.assertEqual(data.operation_type, OperationType.UPGRADE)
        kwargs = self.adapter.generate_manifest.call_args[1]
        self.assertEqual(
            kwargs["previous_plan"], {"instance_groups": [{"name": "db"}], "properties": {}}
        )

    def test_upgrade_missing_deployment(self):
        self.bosh.get_deployment.return_value = None

        with self.assertRaises(DeploymentNotFoundError):
            self.deployer.upgrade(INSTANCE_ID, "plain")
        self.bosh.deploy.assert_not_called()

    def test_unknown_plan(self):
        with self.assertRaises(PlanNotFoundError):
            self.deployer.create(INSTANCE_ID, "missing")

    def test_operation_in_progress(self):
        self.bosh.get_tasks.return_value = [
            BoshTask(id=3, state=TaskState.PROCESSING),
            BoshTask(id=2, state=TaskState.DONE),
        ]

        with self.assertRaises(OperationInProgressError) as ctx:
            self.deployer.upgrade(INSTANCE_ID, "plain")
        self.assertIn("3", str(ctx.exception))
        self.adapter.generate_manifest.assert_not_called()

    def test_adapter_error_propagates(self):
        self.adapter.generate_manifest.side_effect = RuntimeError("adapter failed")

        with self.assertRaises(RuntimeError):
            self.deployer.create(INSTANCE_ID, "plain")
        self.bosh.deploy.assert_not_called()


class TestDelete(DeployerTestCase):
    """Deletion with and without a pre-delete errand."""

    def test_delete_without_errand(self):
        data = self.deployer.delete(INSTANCE_ID, "plain")

        self.assertEqual(data.operation_type, OperationType.DELETE)
        self.assertEqual(data.bosh_task_id, 11)
        self.assertFalse(data.uses_context)
        self.bosh.delete_deployment.assert_called_once_with(DEPLOYMENT_NAME)
        self.bosh.run_errand.assert_not_called()

    def test_delete_with_unknown_plan_deletes_immediately(self):
        self.deployer.delete(INSTANCE_ID, "missing")

        self.bosh.delete_deployment.assert_called_once_with(DEPLOYMENT_NAME)

    def test_delete_runs_pre_delete_errand_first(self):
        data = self.deployer.delete(INSTANCE_ID, "with-pre-delete")

        self.assertEqual(data.operation_type, OperationType.DELETE)
        self.assertEqual(data.bosh_task_id, 12)
        self.assertTrue(data.uses_context)
        self.assertEqual(data.plan_id, "with-pre-delete")
        self.bosh.run_errand.assert_called_once_with(
            DEPLOYMENT_NAME, "drain", data.bosh_context_id
        )
        self.bosh.delete_deployment.assert_not_called()

    def test_delete_operation_in_progress(self):
        self.bosh.get_tasks.return_value = [BoshTask(id=3, state=TaskState.QUEUED)]

        with self.assertRaises(OperationInProgressError):
            self.deployer.delete(INSTANCE_ID, "plain")


if __name__ == "__main__":
    unittest.main()
