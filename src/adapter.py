"""
Client for the external service adapter executable.

The adapter is invoked as ``<path> <action> <args...>`` and communicates
only through argv, stdout, stderr and its exit code.
"""

import json
import logging
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

logger = logging.getLogger(__name__)

SUCCESS_EXIT_CODE = 0
ERROR_EXIT_CODE = 1
NOT_IMPLEMENTED_EXIT_CODE = 10
BINDING_NOT_FOUND_EXIT_CODE = 41
APP_GUID_NOT_PROVIDED_EXIT_CODE = 42
BINDING_ALREADY_EXISTS_EXIT_CODE = 49


class AdapterError(Exception):
    """Base class for errors reported by the service adapter."""


class UnknownFailureError(AdapterError):
    """Adapter failed; the message is the adapter's stdout, meant for users."""


class AdapterNotImplementedError(AdapterError):
    def __init__(self):
        super().__init__("command not implemented by service adapter")


class BindingNotFoundError(AdapterError):
    def __init__(self):
        super().__init__("binding not found")


class BindingAlreadyExistsError(AdapterError):
    def __init__(self):
        super().__init__("binding already exists")


class AppGuidNotProvidedError(AdapterError):
    def __init__(self):
        super().__init__("app GUID not provided")


class AdapterInvocationError(AdapterError):
    """The adapter could not be run or did not report an exit code."""


class AdapterOutcome(Enum):
    SUCCESS = "success"
    UNKNOWN_FAILURE = "unknown_failure"
    NOT_IMPLEMENTED = "not_implemented"
    BINDING_NOT_FOUND = "binding_not_found"
    BINDING_ALREADY_EXISTS = "binding_already_exists"
    APP_GUID_NOT_PROVIDED = "app_guid_not_provided"


_OUTCOMES_BY_EXIT_CODE = {
    SUCCESS_EXIT_CODE: AdapterOutcome.SUCCESS,
    NOT_IMPLEMENTED_EXIT_CODE: AdapterOutcome.NOT_IMPLEMENTED,
    BINDING_NOT_FOUND_EXIT_CODE: AdapterOutcome.BINDING_NOT_FOUND,
    APP_GUID_NOT_PROVIDED_EXIT_CODE: AdapterOutcome.APP_GUID_NOT_PROVIDED,
    BINDING_ALREADY_EXISTS_EXIT_CODE: AdapterOutcome.BINDING_ALREADY_EXISTS,
}


@dataclass
class AdapterResult:
    """
    Classified result of one adapter invocation.

    payload is the adapter's stdout. It is the action's output on success
    and the user-facing message on an unknown failure; it is never exposed
    for the other outcomes.
    """

    outcome: AdapterOutcome
    payload: str
    exit_code: int

    @classmethod
    def classify(cls, exit_code: int, stdout: str) -> "AdapterResult":
        outcome = _OUTCOMES_BY_EXIT_CODE.get(exit_code, AdapterOutcome.UNKNOWN_FAILURE)
        return cls(outcome=outcome, payload=stdout, exit_code=exit_code)

    def unwrap(self) -> str:
        """
        Return the payload of a successful invocation.

        Raises:
            AdapterError: Typed error matching the outcome
        """
        if self.outcome == AdapterOutcome.SUCCESS:
            return self.payload
        if self.outcome == AdapterOutcome.NOT_IMPLEMENTED:
            raise AdapterNotImplementedError()
        if self.outcome == AdapterOutcome.BINDING_NOT_FOUND:
            raise BindingNotFoundError()
        if self.outcome == AdapterOutcome.BINDING_ALREADY_EXISTS:
            raise BindingAlreadyExistsError()
        if self.outcome == AdapterOutcome.APP_GUID_NOT_PROVIDED:
            raise AppGuidNotProvidedError()
        raise UnknownFailureError(self.payload)


class CommandRunner:
    """Runs an executable and captures its output."""

    def run(self, args: List[str]) -> Tuple[bytes, bytes, int]:
        """
        Run a command to completion.

        Returns:
            Tuple of (stdout, stderr, exit_code)

        Raises:
            OSError: If the executable cannot be started
        """
        proc = subprocess.run(args, capture_output=True, check=False)
        return proc.stdout, proc.stderr, proc.returncode


def _text(raw: Optional[Union[bytes, str]]) -> str:
    if raw is None:
        return ""
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


class ServiceAdapterClient:
    """Invokes the external service adapter once per action."""

    def __init__(self, external_bin_path: str, command_runner: Optional[CommandRunner] = None):
        """
        Args:
            external_bin_path: Path of the adapter executable
            command_runner: Runner used to execute it
        """
        self.external_bin_path = external_bin_path
        self.command_runner = command_runner or CommandRunner()

    def _invoke(self, action: str, *args: str, logger=logger) -> AdapterResult:
        cmd = [self.external_bin_path, action, *args]
        try:
            stdout, stderr, exit_code = self.command_runner.run(cmd)
        except (OSError, subprocess.SubprocessError) as e:
            # Runner failures carry no captured output.
            raise AdapterInvocationError(
                f"an error occurred running external service adapter at "
                f"{self.external_bin_path}: '{e}'. stdout: '', stderr: ''"
            ) from e

        out, err = _text(stdout), _text(stderr)
        if exit_code is None or exit_code < 0:
            raise AdapterInvocationError(
                f"an error occurred running external service adapter at "
                f"{self.external_bin_path}: 'no exit code'. "
                f"stdout: '{out}', stderr: '{err}'"
            )

        if exit_code != SUCCESS_EXIT_CODE:
            logger.error(
                f"external service adapter exited with {exit_code} at "
                f"{self.external_bin_path}: stdout: '{out}', stderr: '{err}'"
            )
        elif err:
            logger.debug(f"service adapter {action} stderr: '{err}'")

        return AdapterResult.classify(exit_code, out)

    def generate_manifest(
        self,
        service_deployment: Dict,
        plan: Dict,
        request_params: Dict,
        previous_manifest: Optional[str] = None,
        previous_plan: Optional[Dict] = None,
        logger=logger,
    ) -> str:
        """
        Generate a deployment manifest.

        Args:
            service_deployment: Deployment name, releases and stemcell
            plan: Plan being deployed
            request_params: Parameters of the broker request
            previous_manifest: Manifest currently deployed, if any
            previous_plan: Plan currently deployed, if any

        Returns:
            Manifest YAML
        """
        result = self._invoke(
            "generate-manifest",
            json.dumps(service_deployment),
            json.dumps(plan),
            json.dumps(request_params),
            previous_manifest or "",
            json.dumps(previous_plan),
            logger=logger,
        )
        return result.unwrap()

    def create_binding(
        self,
        binding_id: str,
        deployment_topology: Dict,
        manifest: str,
        request_params: Dict,
        logger=logger,
    ) -> Dict:
        """Create a binding and return its credentials document."""
        result = self._invoke(
            "create-binding",
            binding_id,
            json.dumps(deployment_topology),
            manifest,
            json.dumps(request_params),
            logger=logger,
        )
        payload = result.unwrap()
        try:
            return json.loads(payload)
        except ValueError as e:
            raise UnknownFailureError(
                "external service adapter returned invalid JSON for create-binding"
            ) from e

    def delete_binding(
        self,
        binding_id: str,
        deployment_topology: Dict,
        manifest: str,
        request_params: Dict,
        logger=logger,
    ) -> None:
        """
        Delete a binding.

        Raises:
            BindingNotFoundError: The binding is already gone
        """
        result = self._invoke(
            "delete-binding",
            binding_id,
            json.dumps(deployment_topology),
            manifest,
            json.dumps(request_params),
            logger=logger,
        )
        result.unwrap()

    def generate_dashboard_url(
        self, instance_id: str, plan: Dict, manifest: str, logger=logger
    ) -> str:
        result = self._invoke(
            "dashboard-url", instance_id, json.dumps(plan), manifest, logger=logger
        )
        payload = result.unwrap()
        try:
            return json.loads(payload)["dashboard_url"]
        except (ValueError, KeyError) as e:
            raise UnknownFailureError(
                "external service adapter returned invalid JSON for dashboard-url"
            ) from e
