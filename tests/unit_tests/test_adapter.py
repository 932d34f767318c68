"""
Unit tests for the service adapter client.
"""

import json
import unittest
from unittest.mock import MagicMock, patch

from adapter import (
    AdapterInvocationError,
    AdapterNotImplementedError,
    AdapterOutcome,
    AdapterResult,
    AppGuidNotProvidedError,
    BindingAlreadyExistsError,
    BindingNotFoundError,
    CommandRunner,
    ServiceAdapterClient,
    UnknownFailureError,
)

EXTERNAL_BIN_PATH = "/thing"


class AdapterTestCase(unittest.TestCase):
    def setUp(self):
        self.runner = MagicMock()
        self.runner.run.return_value = (b"", b"", 0)
        self.adapter = ServiceAdapterClient(EXTERNAL_BIN_PATH, command_runner=self.runner)


class TestAdapterResult(unittest.TestCase):
    """Exit code classification."""

    def test_classify(self):
        expectations = {
            0: AdapterOutcome.SUCCESS,
            1: AdapterOutcome.UNKNOWN_FAILURE,
            10: AdapterOutcome.NOT_IMPLEMENTED,
            41: AdapterOutcome.BINDING_NOT_FOUND,
            42: AdapterOutcome.APP_GUID_NOT_PROVIDED,
            49: AdapterOutcome.BINDING_ALREADY_EXISTS,
            99: AdapterOutcome.UNKNOWN_FAILURE,
        }
        for exit_code, outcome in expectations.items():
            with self.subTest(exit_code=exit_code):
                self.assertEqual(AdapterResult.classify(exit_code, "out").outcome, outcome)

    def test_unwrap_success_returns_payload(self):
        self.assertEqual(AdapterResult.classify(0, "payload").unwrap(), "payload")

    def test_unwrap_raises_typed_errors(self):
        expectations = {
            10: AdapterNotImplementedError,
            41: BindingNotFoundError,
            42: AppGuidNotProvidedError,
            49: BindingAlreadyExistsError,
            1: UnknownFailureError,
        }
        for exit_code, error_class in expectations.items():
            with self.subTest(exit_code=exit_code):
                with self.assertRaises(error_class):
                    AdapterResult.classify(exit_code, "out").unwrap()


class TestDeleteBinding(AdapterTestCase):
    """delete-binding invocation and error mapping."""

    def setUp(self):
        super().setUp()
        self.binding_id = "the-binding"
        self.topology = {}
        self.manifest = "a-manifest"
        self.request_params = {"plan_id": "some-plan-id", "service_id": "some-service-id"}

    def delete_binding(self):
        self.adapter.delete_binding(
            self.binding_id, self.topology, self.manifest, self.request_params
        )

    def test_invokes_executable_with_arguments(self):
        self.delete_binding()

        self.runner.run.assert_called_once_with(
            [
                EXTERNAL_BIN_PATH,
                "delete-binding",
                self.binding_id,
                json.dumps(self.topology),
                self.manifest,
                json.dumps(self.request_params),
            ]
        )

    def test_success(self):
        self.assertIsNone(self.delete_binding())

    def test_runner_fails_without_exit_code(self):
        self.runner.run.side_effect = OSError("oops")

        with self.assertRaises(AdapterInvocationError) as ctx:
            self.delete_binding()
        self.assertEqual(
            str(ctx.exception),
            "an error occurred running external service adapter at /thing: 'oops'. "
            "stdout: '', stderr: ''",
        )

    def test_generic_failure_message_is_stdout(self):
        self.runner.run.return_value = (b"I'm stdout", b"I'm stderr", 1)

        with self.assertLogs("adapter", level="ERROR") as logs:
            with self.assertRaises(UnknownFailureError) as ctx:
                self.delete_binding()

        self.assertEqual(str(ctx.exception), "I'm stdout")
        self.assertIn(
            "external service adapter exited with 1 at /thing: "
            "stdout: 'I'm stdout', stderr: 'I'm stderr'",
            logs.output[0],
        )

    def test_not_implemented_hides_output(self):
        self.runner.run.return_value = (b"I'm stdout", b"I'm stderr", 10)

        with self.assertLogs("adapter", level="ERROR") as logs:
            with self.assertRaises(AdapterNotImplementedError) as ctx:
                self.delete_binding()

        self.assertNotIn("stdout", str(ctx.exception))
        self.assertNotIn("stderr", str(ctx.exception))
        self.assertIn(
            "external service adapter exited with 10 at /thing: "
            "stdout: 'I'm stdout', stderr: 'I'm stderr'",
            logs.output[0],
        )

    def test_binding_not_found_hides_output(self):
        self.runner.run.return_value = (b"I'm stdout", b"I'm stderr", 41)

        with self.assertLogs("adapter", level="ERROR") as logs:
            with self.assertRaises(BindingNotFoundError) as ctx:
                self.delete_binding()

        self.assertNotIn("I'm stdout", str(ctx.exception))
        self.assertNotIn("I'm stderr", str(ctx.exception))
        self.assertIn("stdout: 'I'm stdout', stderr: 'I'm stderr'", logs.output[0])

    def test_logs_to_request_logger(self):
        self.runner.run.return_value = (b"out", b"err", 41)
        request_logger = MagicMock()

        with self.assertRaises(BindingNotFoundError):
            self.adapter.delete_binding(
                self.binding_id,
                self.topology,
                self.manifest,
                self.request_params,
                logger=request_logger,
            )

        request_logger.error.assert_called_once()


class TestGenerateManifest(AdapterTestCase):
    def test_invokes_executable_and_returns_manifest(self):
        self.runner.run.return_value = (b"name: service-instance_1", b"", 0)
        deployment = {"deployment_name": "service-instance_1"}
        plan = {"instance_groups": [], "properties": {}}

        manifest = self.adapter.generate_manifest(deployment, plan, {"a": 1})

        self.assertEqual(manifest, "name: service-instance_1")
        self.runner.run.assert_called_once_with(
            [
                EXTERNAL_BIN_PATH,
                "generate-manifest",
                json.dumps(deployment),
                json.dumps(plan),
                json.dumps({"a": 1}),
                "",
                "null",
            ]
        )

    def test_passes_previous_deployment(self):
        self.runner.run.return_value = (b"name: x", b"", 0)
        previous_plan = {"instance_groups": [{"name": "db"}], "properties": {}}

        self.adapter.generate_manifest(
            {}, {}, {}, previous_manifest="name: old", previous_plan=previous_plan
        )

        args = self.runner.run.call_args[0][0]
        self.assertEqual(args[5], "name: old")
        self.assertEqual(args[6], json.dumps(previous_plan))

    def test_not_implemented(self):
        self.runner.run.return_value = (b"", b"", 10)

        with self.assertLogs("adapter", level="ERROR"):
            with self.assertRaises(AdapterNotImplementedError):
                self.adapter.generate_manifest({}, {}, {})


class TestCreateBinding(AdapterTestCase):
    def test_returns_parsed_credentials(self):
        self.runner.run.return_value = (b'{"credentials": {"user": "u"}}', b"", 0)

        binding = self.adapter.create_binding("b1", {"db": ["10.0.0.1"]}, "m", {})

        self.assertEqual(binding, {"credentials": {"user": "u"}})
        self.assertEqual(self.runner.run.call_args[0][0][1], "create-binding")

    def test_already_exists(self):
        self.runner.run.return_value = (b"", b"", 49)

        with self.assertLogs("adapter", level="ERROR"):
            with self.assertRaises(BindingAlreadyExistsError):
                self.adapter.create_binding("b1", {}, "m", {})

    def test_invalid_json(self):
        self.runner.run.return_value = (b"not json", b"", 0)

        with self.assertRaises(UnknownFailureError):
            self.adapter.create_binding("b1", {}, "m", {})


class TestDashboardUrl(AdapterTestCase):
    def test_returns_url(self):
        self.runner.run.return_value = (b'{"dashboard_url": "https://dash"}', b"", 0)

        url = self.adapter.generate_dashboard_url("instance-1", {}, "m")

        self.assertEqual(url, "https://dash")
        self.assertEqual(
            self.runner.run.call_args[0][0],
            [EXTERNAL_BIN_PATH, "dashboard-url", "instance-1", "{}", "m"],
        )


class TestCommandRunner(unittest.TestCase):
    @patch("adapter.subprocess.run")
    def test_run_captures_output(self, mock_run):
        mock_run.return_value = MagicMock(stdout=b"out", stderr=b"err", returncode=3)

        result = CommandRunner().run(["/bin/adapter", "generate-manifest"])

        self.assertEqual(result, (b"out", b"err", 3))
        mock_run.assert_called_once_with(
            ["/bin/adapter", "generate-manifest"], capture_output=True, check=False
        )


if __name__ == "__main__":
    unittest.main()
