"""
REST API clients for the director and the broker's management API.
"""

import json
import logging
import time
from typing import Dict, List, Optional, Union

import requests
from google.auth.transport.requests import AuthorizedSession, Request

from auth import BasicAuthCredentials, UAAClientCredentials
from config import BoshConfig, BrokerConfig
from models import (
    BoshTask,
    OperationData,
    TaskState,
    UpgradeOperation,
    UpgradeOperationType,
)

logger = logging.getLogger(__name__)

CONTEXT_ID_HEADER = "X-Bosh-Context-Id"


class _RestClient:
    """Shared transport: authorized session, TLS settings and retries."""

    RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}

    def __init__(
        self,
        base_url: str,
        creds,
        ca_cert: Optional[str] = None,
        disable_ssl_validation: bool = False,
        timeout_s: int = 60,
        max_retries: int = 5,
        base_delay: float = 5.0,
    ):
        """
        Initialize the client.

        Args:
            base_url: Root URL of the API
            creds: google.auth credentials building the authorization header
            ca_cert: Optional path to a CA bundle for private endpoints
            disable_ssl_validation: Skip TLS certificate verification
            timeout_s: Request timeout in seconds
            max_retries: Maximum number of retries for transient errors
            base_delay: Base delay for exponential backoff (may be zero)
        """
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.verify = False if disable_ssl_validation else (ca_cert or True)

        # Token requests go through their own session and need the same trust.
        auth_session = requests.Session()
        auth_session.verify = self.verify
        self.session = AuthorizedSession(creds, auth_request=Request(auth_session))
        self.session.verify = self.verify

    def _url(self, path: str) -> str:
        """Construct full API URL from path."""
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request_with_retry(self, method: str, url: str, **kwargs) -> dict:
        """
        Execute HTTP request with exponential backoff retry for transient errors.

        Authorization failures are not retried and propagate to the caller.

        Args:
            method: HTTP method
            url: Request URL
            **kwargs: Additional request parameters

        Returns:
            Dictionary with 'response' and 'status_code' keys

        Raises:
            RuntimeError: If max retries exceeded
        """
        last_error = None

        for attempt in range(self.max_retries + 1):
            last_attempt = attempt == self.max_retries
            try:
                resp = self.session.request(
                    method.upper(), url, timeout=self.timeout_s, **kwargs
                )
            except (
                requests.exceptions.ConnectionError,
                requests.exceptions.Timeout,
            ) as e:
                last_error = str(e)
                if last_attempt:
                    break
                delay = self._calculate_delay(attempt)
                logger.warning(
                    f"Request error: {e}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                time.sleep(delay)
                continue

            if resp.status_code in self.RETRYABLE_STATUS_CODES:
                last_error = f"HTTP {resp.status_code}: {resp.text[:200]}"
                if last_attempt:
                    break
                delay = self._calculate_delay(attempt, resp)
                logger.warning(
                    f"Retryable error {resp.status_code}, attempt {attempt + 1}/{self.max_retries + 1}, waiting {delay:.1f}s..."
                )
                time.sleep(delay)
                continue

            return {"response": resp, "status_code": resp.status_code}

        raise RuntimeError(f"Max retries exceeded. Last error: {last_error}")

    def _calculate_delay(self, attempt: int, resp=None) -> float:
        """
        Calculate delay with exponential backoff and jitter.

        Args:
            attempt: Current attempt number
            resp: Optional response object (to check Retry-After header)

        Returns:
            Delay in seconds
        """
        if resp is not None and "Retry-After" in resp.headers:
            try:
                return float(resp.headers["Retry-After"])
            except ValueError:
                pass

        delay = self.base_delay * (2**attempt)
        jitter = delay * 0.2 * (0.5 - time.time() % 1)
        return min(delay + jitter, 180.0)


class BoshClient(_RestClient):
    """REST client for the director."""

    def __init__(
        self,
        url: str,
        creds,
        disable_ssl_validation: bool = False,
        ca_cert: Optional[str] = None,
        polling_interval: float = 5.0,
        max_retries: int = 5,
        timeout_s: int = 60,
    ):
        super().__init__(
            url,
            creds,
            ca_cert=ca_cert,
            disable_ssl_validation=disable_ssl_validation,
            timeout_s=timeout_s,
            max_retries=max_retries,
            base_delay=polling_interval,
        )
        self.polling_interval = polling_interval

    @classmethod
    def from_config(cls, config: BoshConfig) -> "BoshClient":
        """
        Build a client, choosing UAA or basic authentication.

        The UAA location is discovered from the director's /info endpoint
        when it is not configured.
        """
        if config.uses_uaa:
            uaa_url = config.uaa_url or cls.discover_uaa_url(
                config.url,
                verify=False if config.disable_ssl_validation else (config.ca_cert or True),
            )
            creds = UAAClientCredentials(
                uaa_url, config.uaa_client_id, config.uaa_client_secret
            )
        else:
            creds = BasicAuthCredentials(config.username, config.password)

        return cls(
            config.url,
            creds,
            disable_ssl_validation=config.disable_ssl_validation,
            ca_cert=config.ca_cert,
            polling_interval=config.polling_interval,
            max_retries=config.max_retries,
            timeout_s=config.timeout_s,
        )

    @staticmethod
    def discover_uaa_url(url: str, verify: Union[bool, str] = True) -> str:
        """Read the UAA URL advertised by an unauthenticated /info call."""
        resp = requests.get(f"{url.rstrip('/')}/info", verify=verify, timeout=60)
        if resp.status_code != 200:
            raise RuntimeError(f"Get info failed ({resp.status_code}): {resp.text}")
        auth = resp.json().get("user_authentication", {})
        if auth.get("type") != "uaa":
            raise RuntimeError("director is not configured with UAA authentication")
        return auth["options"]["url"]

    @staticmethod
    def _task_id_from_redirect(resp, action: str) -> int:
        """Extract the task id from the director's redirect to /tasks/<id>."""
        if resp.status_code != 302:
            raise RuntimeError(f"{action} failed ({resp.status_code}): {resp.text}")
        location = resp.headers.get("Location", "")
        try:
            return int(location.rstrip("/").split("/")[-1])
        except ValueError:
            raise RuntimeError(
                f"{action} returned unexpected redirect location: '{location}'"
            )

    @staticmethod
    def _context_headers(context_id: str) -> Dict[str, str]:
        return {CONTEXT_ID_HEADER: context_id} if context_id else {}

    def get_info(self) -> Dict:
        """Get director information."""
        result = self._request_with_retry("GET", self._url("info"))
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(f"Get info failed ({resp.status_code}): {resp.text}")
        return resp.json()

    def deploy(self, manifest: Union[str, bytes], context_id: str = "") -> int:
        """
        Submit a deployment manifest.

        Args:
            manifest: Deployment manifest YAML
            context_id: Optional correlation id for the resulting task

        Returns:
            Director task id
        """
        headers = {"Content-Type": "text/yaml"}
        headers.update(self._context_headers(context_id))
        result = self._request_with_retry(
            "POST",
            self._url("deployments"),
            data=manifest,
            headers=headers,
            allow_redirects=False,
        )
        task_id = self._task_id_from_redirect(result["response"], "deploy")
        logger.info(f"Deploy submitted (task={task_id}, context_id='{context_id}')")
        return task_id

    def delete_deployment(self, deployment_name: str, context_id: str = "") -> int:
        """
        Delete a deployment.

        Args:
            deployment_name: Name of the deployment to delete
            context_id: Optional correlation id for the resulting task

        Returns:
            Director task id
        """
        result = self._request_with_retry(
            "DELETE",
            self._url(f"deployments/{deployment_name}"),
            headers=self._context_headers(context_id),
            allow_redirects=False,
        )
        task_id = self._task_id_from_redirect(result["response"], "delete deployment")
        logger.info(f"Delete submitted for {deployment_name} (task={task_id})")
        return task_id

    def run_errand(
        self, deployment_name: str, errand_name: str, context_id: str = ""
    ) -> int:
        """
        Run an errand against a deployment.

        Args:
            deployment_name: Deployment hosting the errand
            errand_name: Errand to run
            context_id: Optional correlation id for the resulting task

        Returns:
            Director task id
        """
        headers = {"Content-Type": "application/json"}
        headers.update(self._context_headers(context_id))
        result = self._request_with_retry(
            "POST",
            self._url(f"deployments/{deployment_name}/errands/{errand_name}/runs"),
            data="{}",
            headers=headers,
            allow_redirects=False,
        )
        task_id = self._task_id_from_redirect(result["response"], "run errand")
        logger.info(
            f"Errand {errand_name} started for {deployment_name} (task={task_id})"
        )
        return task_id

    def get_task(self, task_id: int) -> BoshTask:
        """
        Get a task by id.

        Raises:
            RuntimeError: If API call fails
        """
        result = self._request_with_retry("GET", self._url(f"tasks/{task_id}"))
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(f"Get task failed ({resp.status_code}): {resp.text}")
        return BoshTask.from_dict(resp.json())

    def _list_tasks(self, params: Dict) -> List[BoshTask]:
        result = self._request_with_retry("GET", self._url("tasks"), params=params)
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(f"Get tasks failed ({resp.status_code}): {resp.text}")
        return [BoshTask.from_dict(item) for item in resp.json()]

    def get_tasks(self, deployment_name: str) -> List[BoshTask]:
        """Recent tasks of a deployment, newest first."""
        return self._list_tasks({"deployment": deployment_name, "verbose": 1})

    def get_tasks_by_context(
        self, deployment_name: str, context_id: str
    ) -> List[BoshTask]:
        """Tasks of a deployment sharing a context id, newest first."""
        return self._list_tasks(
            {"deployment": deployment_name, "context_id": context_id, "verbose": 1}
        )

    def get_task_output(self, task_id: int) -> List[Dict]:
        """
        Get the result output of a task.

        The director returns one JSON document per line (one per errand
        instance for errand tasks).
        """
        result = self._request_with_retry(
            "GET", self._url(f"tasks/{task_id}/output"), params={"type": "result"}
        )
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(
                f"Get task output failed ({resp.status_code}): {resp.text}"
            )
        outputs = []
        for line in resp.text.splitlines():
            line = line.strip()
            if line:
                outputs.append(json.loads(line))
        return outputs

    def get_normalised_tasks_by_context(
        self, deployment_name: str, context_id: str
    ) -> List[BoshTask]:
        """
        Tasks sharing a context id, with errand failures surfaced as errors.

        The director marks an errand task done even when the errand exits
        non-zero; such tasks are reported in the error state instead.
        """
        tasks = self.get_tasks_by_context(deployment_name, context_id)
        for task in tasks:
            if task.state != TaskState.DONE:
                continue
            outputs = self.get_task_output(task.id)
            if outputs and outputs[0].get("exit_code", 0) != 0:
                logger.warning(
                    f"Errand task {task.id} exited with {outputs[0].get('exit_code')}"
                )
                task.state = TaskState.ERROR
        return tasks

    def get_deployment(self, deployment_name: str) -> Optional[str]:
        """
        Get the manifest of a deployment.

        Returns:
            Manifest YAML, or None if the deployment does not exist
        """
        result = self._request_with_retry(
            "GET", self._url(f"deployments/{deployment_name}")
        )
        resp = result["response"]
        if resp.status_code == 404:
            return None
        if resp.status_code != 200:
            raise RuntimeError(
                f"Get deployment failed ({resp.status_code}): {resp.text}"
            )
        return resp.json().get("manifest", "")


class BrokerServicesClient(_RestClient):
    """Client for the broker's management API used by upgrade campaigns."""

    RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

    def __init__(
        self,
        url: str,
        username: str,
        password: str,
        ca_cert: Optional[str] = None,
        disable_ssl_validation: bool = False,
        max_retries: int = 3,
        timeout_s: int = 60,
        base_delay: float = 5.0,
    ):
        super().__init__(
            url,
            BasicAuthCredentials(username, password),
            ca_cert=ca_cert,
            disable_ssl_validation=disable_ssl_validation,
            timeout_s=timeout_s,
            max_retries=max_retries,
            base_delay=base_delay,
        )

    @classmethod
    def from_config(cls, config: BrokerConfig) -> "BrokerServicesClient":
        return cls(
            config.url,
            config.username,
            config.password,
            ca_cert=config.ca_cert,
            disable_ssl_validation=config.disable_ssl_validation,
            max_retries=config.max_retries,
            timeout_s=config.timeout_s,
        )

    def instances(self) -> List[str]:
        """
        List service instance ids in registry order.

        Raises:
            RuntimeError: If API call fails
        """
        result = self._request_with_retry("GET", self._url("mgmt/service_instances"))
        resp = result["response"]
        if resp.status_code != 200:
            raise RuntimeError(
                f"List instances failed ({resp.status_code}): {resp.text}"
            )
        return [item["service_instance_id"] for item in resp.json()]

    def upgrade_instance(self, instance_id: str) -> UpgradeOperation:
        """
        Ask the broker to upgrade one service instance.

        Args:
            instance_id: Service instance id

        Returns:
            UpgradeOperation classifying the broker's answer

        Raises:
            RuntimeError: If the broker cannot be reached
        """
        result = self._request_with_retry(
            "PATCH", self._url(f"mgmt/service_instances/{instance_id}"), json={}
        )
        resp = result["response"]

        if resp.status_code == 202:
            try:
                data = OperationData.from_dict(resp.json())
            except (ValueError, KeyError) as e:
                return UpgradeOperation(
                    UpgradeOperationType.UNEXPECTED,
                    detail=f"invalid operation data: {e}",
                )
            return UpgradeOperation(UpgradeOperationType.ACCEPTED, data=data)
        if resp.status_code == 404:
            return UpgradeOperation(UpgradeOperationType.NOT_FOUND)
        if resp.status_code == 410:
            return UpgradeOperation(UpgradeOperationType.DELETED)
        if resp.status_code == 409:
            return UpgradeOperation(UpgradeOperationType.OPERATION_IN_PROGRESS)
        return UpgradeOperation(
            UpgradeOperationType.UNEXPECTED,
            detail=f"unexpected status {resp.status_code}: {resp.text[:200]}",
        )
