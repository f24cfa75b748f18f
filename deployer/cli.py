#!/usr/bin/env python3
"""
chain-deployer command line

    chain-deployer deploy [--phase NAME ...]
    chain-deployer verify
    chain-deployer watch [--interval MINUTES]

Exit code 0 when the deployment converged (or verified), 1 on any fatal error.
"""

import argparse
import logging
import sys
from typing import List, Optional

from .artifacts import ArtifactStore
from .config import DeployConfig, Settings
from .errors import ConfigurationError, DeploymentError
from .ledger import Web3LedgerClient
from .monitor import DriftMonitor
from .reconciler import DeploymentReconciler, Phase
from .registry import AddressRegistry

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(log_file: Optional[str], verbose: bool = False):
    handlers: List[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.insert(0, logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="chain-deployer", description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("--env-file", help="dotenv file to load (default: .env lookup)")
    parser.add_argument("--config", help="deploy config JSON (default: $DEPLOY_CONFIG_PATH)")
    parser.add_argument("--log-file", help="log file (default: $DEPLOYER_LOG_FILE)")
    parser.add_argument("-v", "--verbose", action="store_true")

    commands = parser.add_subparsers(dest="command", required=True)
    deploy = commands.add_parser("deploy", help="run the reconciliation phases")
    deploy.add_argument("--phase", action="append", default=[], choices=[p.value for p in Phase],
                        help="run only this phase (repeatable)")
    commands.add_parser("verify", help="check the deployed state without writing")
    watch = commands.add_parser("watch", help="verify on a schedule and alert on drift")
    watch.add_argument("--interval", type=int, default=60, help="minutes between checks")
    return parser


def build_reconciler(settings: Settings, config: DeployConfig) -> DeploymentReconciler:
    ledger = Web3LedgerClient.connect(
        settings.rpc_url,
        settings.private_key,
        ArtifactStore(settings.artifacts_dir),
        tx_timeout=settings.tx_timeout,
    )
    registry = AddressRegistry(str(ledger.chain_id()), settings.deployment_outfile)
    return DeploymentReconciler(ledger, registry, config, impl_salt=settings.impl_salt)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env(args.env_file)
    except ConfigurationError as e:
        configure_logging(args.log_file, args.verbose)
        logger.error(f"Invalid environment: {e}")
        return 1
    configure_logging(args.log_file or settings.log_file, args.verbose)

    try:
        config = DeployConfig.from_file(args.config or settings.deploy_config_path)
        reconciler = build_reconciler(settings, config)

        if args.command == "deploy":
            reconciler.run([Phase(p) for p in args.phase] or None)
        elif args.command == "verify":
            reconciler.verify()
        elif args.command == "watch":
            DriftMonitor(reconciler, slack_webhook=settings.slack_webhook).run_forever(args.interval)
    except DeploymentError as e:
        logger.error(f"Deployment aborted: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
