"""
Configuration management for the on-demand service broker core.
"""

import json
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional


@dataclass
class LifecycleErrands:
    """Errands run around deployments of instances on a plan."""

    post_deploy: str = ""
    pre_delete: str = ""


@dataclass
class Plan:
    """Service plan as configured by the operator."""

    id: str
    name: str = ""
    instance_groups: List[Dict] = field(default_factory=list)
    properties: Dict = field(default_factory=dict)
    update: Optional[Dict] = None
    lifecycle_errands: Optional[LifecycleErrands] = None

    @property
    def post_deploy_errand(self) -> str:
        if self.lifecycle_errands is None:
            return ""
        return self.lifecycle_errands.post_deploy

    @property
    def pre_delete_errand(self) -> str:
        if self.lifecycle_errands is None:
            return ""
        return self.lifecycle_errands.pre_delete

    def to_adapter_dict(self) -> Dict:
        """Plan as serialised for the service adapter."""
        data = {
            "instance_groups": self.instance_groups,
            "properties": self.properties,
        }
        if self.update is not None:
            data["update"] = self.update
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> "Plan":
        errands = data.get("lifecycle_errands")
        return cls(
            id=data["plan_id"],
            name=data.get("name", ""),
            instance_groups=data.get("instance_groups", []),
            properties=data.get("properties", {}),
            update=data.get("update"),
            lifecycle_errands=(
                LifecycleErrands(
                    post_deploy=errands.get("post_deploy", ""),
                    pre_delete=errands.get("pre_delete", ""),
                )
                if errands
                else None
            ),
        )


class Plans:
    """Ordered, read-only collection of configured plans."""

    def __init__(self, plans: Optional[List[Plan]] = None):
        self._plans = list(plans or [])

    def __iter__(self) -> Iterator[Plan]:
        return iter(self._plans)

    def __len__(self) -> int:
        return len(self._plans)

    def find_by_id(self, plan_id: str) -> Optional[Plan]:
        """Return the plan with the given id, or None if not configured."""
        for plan in self._plans:
            if plan.id == plan_id:
                return plan
        return None

    @classmethod
    def from_list(cls, items: List[Dict]) -> "Plans":
        return cls([Plan.from_dict(item) for item in items])

    @classmethod
    def load(cls, path: str) -> "Plans":
        """
        Load plans from a JSON file.

        Args:
            path: File holding a list of plan objects

        Returns:
            Plans instance
        """
        with open(path) as f:
            return cls.from_list(json.load(f))


@dataclass
class BoshConfig:
    """Connection settings for the director."""

    url: str
    username: str = ""
    password: str = ""
    uaa_url: str = ""
    uaa_client_id: str = ""
    uaa_client_secret: str = ""
    ca_cert: Optional[str] = None  # path to a PEM bundle
    disable_ssl_validation: bool = False
    polling_interval: float = 5.0
    max_retries: int = 5
    timeout_s: int = 60

    @property
    def uses_uaa(self) -> bool:
        return bool(self.uaa_client_id)


@dataclass
class BrokerConfig:
    """Connection settings for the broker's management API."""

    url: str
    username: str
    password: str
    ca_cert: Optional[str] = None
    disable_ssl_validation: bool = False
    max_retries: int = 3
    timeout_s: int = 60


@dataclass
class UpgraderConfig:
    """Configuration for an upgrade campaign."""

    broker: BrokerConfig
    bosh: BoshConfig
    plans_file: Optional[str] = None
    polling_interval: float = 60.0
    max_in_flight: int = 1
    attempt_limit: Optional[int] = None
    report_file: Optional[str] = None
    verbose: bool = False

    @classmethod
    def from_args(cls, args) -> "UpgraderConfig":
        """
        Create configuration from command-line arguments.

        Args:
            args: Parsed argparse arguments

        Returns:
            UpgraderConfig instance
        """
        return cls(
            broker=BrokerConfig(
                url=args.broker_url,
                username=args.broker_username,
                password=args.broker_password,
                ca_cert=args.broker_ca_cert,
                disable_ssl_validation=args.disable_ssl_validation,
            ),
            bosh=BoshConfig(
                url=args.bosh_url,
                username=args.bosh_username or "",
                password=args.bosh_password or "",
                uaa_url=args.bosh_uaa_url or "",
                uaa_client_id=args.bosh_client_id or "",
                uaa_client_secret=args.bosh_client_secret or "",
                ca_cert=args.bosh_ca_cert,
                disable_ssl_validation=args.disable_ssl_validation,
            ),
            plans_file=args.plans_file,
            polling_interval=args.polling_interval,
            max_in_flight=args.max_in_flight,
            attempt_limit=args.attempt_limit,
            report_file=args.report_file,
            verbose=args.verbose,
        )
