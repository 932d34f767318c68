"""Console entry point for the upgrade-all-service-instances CLI."""

from __future__ import annotations

import argparse
import signal
from typing import List

from clients import BoshClient, BrokerServicesClient
from config import Plans, UpgraderConfig
from lifecycle import LifecycleRunner
from listener import LoggingListener
from log_utils import setup_logging
from upgrader import Upgrader


def build_parser() -> argparse.ArgumentParser:
    """Build and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        description="Upgrade every on-demand service instance to its plan's latest manifest"
    )

    broker = parser.add_argument_group("broker")
    broker.add_argument("--broker-url", required=True, help="Broker base URL")
    broker.add_argument("--broker-username", required=True)
    broker.add_argument("--broker-password", required=True)
    broker.add_argument("--broker-ca-cert", help="CA bundle for the broker")

    bosh = parser.add_argument_group("bosh director")
    bosh.add_argument("--bosh-url", required=True, help="Director base URL")
    bosh.add_argument("--bosh-username", help="Basic auth user")
    bosh.add_argument("--bosh-password", help="Basic auth password")
    bosh.add_argument(
        "--bosh-uaa-url", help="UAA URL (discovered from the director if omitted)"
    )
    bosh.add_argument("--bosh-client-id", help="UAA client id")
    bosh.add_argument("--bosh-client-secret", help="UAA client secret")
    bosh.add_argument("--bosh-ca-cert", help="CA bundle for the director")

    parser.add_argument("--disable-ssl-validation", action="store_true")
    parser.add_argument(
        "--plans-file", help="JSON file with the plans and their lifecycle errands"
    )
    parser.add_argument(
        "--polling-interval",
        type=float,
        default=60.0,
        help="Seconds between task polls and between retry passes (default: 60)",
    )
    parser.add_argument(
        "--max-in-flight",
        type=int,
        default=1,
        help="Upgrades awaited concurrently (default: 1)",
    )
    parser.add_argument(
        "--attempt-limit",
        type=int,
        help="Passes after which busy instances are reported as failed",
    )
    parser.add_argument("--report-file", help="Write a JSON report to this path")
    parser.add_argument("--verbose", action="store_true")
    return parser


def main(argv: List[str] | None = None) -> int:
    """CLI main for console_scripts entry point."""
    parser = build_parser()
    args = parser.parse_args(args=argv)

    setup_logging(verbose=args.verbose, log_file="upgrade-all-service-instances.log")

    config = UpgraderConfig.from_args(args)
    if config.bosh.uses_uaa == bool(config.bosh.username):
        parser.error(
            "provide either --bosh-username/--bosh-password or "
            "--bosh-client-id/--bosh-client-secret"
        )

    plans = Plans.load(config.plans_file) if config.plans_file else Plans()

    runner = Upgrader(
        broker=BrokerServicesClient.from_config(config.broker),
        task_poller=LifecycleRunner(BoshClient.from_config(config.bosh), plans),
        listener=LoggingListener(),
        polling_interval=config.polling_interval,
        max_in_flight=config.max_in_flight,
        attempt_limit=config.attempt_limit,
        report_file=config.report_file,
    )

    def abort(signum, frame):
        runner.stop()

    previous = {
        sig: signal.signal(sig, abort) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        report = runner.run()
    finally:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return 1 if report.failures else 0
