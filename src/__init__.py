"""
On-demand service broker core: lifecycle operations and upgrade campaigns.
"""

from adapter import ServiceAdapterClient
from clients import BoshClient, BrokerServicesClient
from config import Plan, Plans, UpgraderConfig
from deployer import Deployer
from lifecycle import LifecycleRunner
from listener import Listener, LoggingListener
from log_utils import request_logger, setup_logging
from models import BoshTask, CampaignReport, OperationData, OperationType
from upgrader import Upgrader

__all__ = [
    "ServiceAdapterClient",
    "BoshClient",
    "BrokerServicesClient",
    "Plan",
    "Plans",
    "UpgraderConfig",
    "Deployer",
    "LifecycleRunner",
    "Listener",
    "LoggingListener",
    "request_logger",
    "setup_logging",
    "BoshTask",
    "CampaignReport",
    "OperationData",
    "OperationType",
    "Upgrader",
]
