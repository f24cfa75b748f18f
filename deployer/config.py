"""
Deployer configuration.

Two sources:
- DeployConfig: the per-network deploy config JSON (camelCase keys)
- Settings: process environment, optionally loaded from a .env file
"""

import json
import logging
import os
import re
from dataclasses import MISSING, dataclass, fields
from typing import Any, Dict, Optional, Tuple

from dotenv import load_dotenv
from web3 import Web3

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

_CAMEL_RE = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")

_ADDRESS_FIELDS = {
    "final_system_owner",
    "portal_guardian",
    "l2_output_oracle_proposer",
    "l2_output_oracle_challenger",
    "batch_sender_address",
    "p2p_sequencer_address",
}


def camel_to_snake(key: str) -> str:
    return _CAMEL_RE.sub("_", key).lower()


@dataclass(frozen=True)
class DeployConfig:
    """Named parameters consumed read-only by the reconciler"""
    l1_chain_id: int
    final_system_owner: str
    portal_guardian: str
    l2_output_oracle_submission_interval: int
    l2_block_time: int
    l2_output_oracle_proposer: str
    l2_output_oracle_challenger: str
    finalization_period_seconds: int
    batch_sender_address: str
    gas_price_oracle_overhead: int
    gas_price_oracle_scalar: int
    l2_genesis_block_gas_limit: int
    p2p_sequencer_address: str
    # None means "current block"; 0 is a legitimate override
    l2_output_oracle_starting_block_number: Optional[int] = None
    l2_output_oracle_starting_timestamp: Optional[int] = None
    fault_game_absolute_prestate: Optional[str] = None
    fault_game_max_depth: int = 30
    fault_game_max_duration: int = 300
    restricted_context: bool = False
    skip_extensions_on_provider_error: bool = False
    prestate_command: Optional[str] = None
    prestate_path: Optional[str] = None
    production_chain_ids: Tuple[int, ...] = (1,)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "DeployConfig":
        """Build from a mapping with camelCase or snake_case keys"""
        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in raw.items():
            name = camel_to_snake(key)
            if name not in known:
                logger.warning(f"Ignoring unknown deploy config key {key}")
                continue
            values[name] = value

        required = [f.name for f in fields(cls) if f.default is MISSING]
        missing = [name for name in required if name not in values]
        if missing:
            raise ConfigurationError(f"Deploy config is missing required fields: {missing}")

        for name in _ADDRESS_FIELDS:
            value = values[name]
            if not isinstance(value, str) or not Web3.is_address(value):
                raise ConfigurationError(f"Deploy config field {name} is not an address: {value!r}")
            values[name] = Web3.to_checksum_address(value)

        if "production_chain_ids" in values:
            values["production_chain_ids"] = tuple(int(c) for c in values["production_chain_ids"])
        return cls(**values)

    @classmethod
    def from_file(cls, path: str) -> "DeployConfig":
        try:
            with open(path, 'r') as f:
                raw = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Could not read deploy config {path}: {e}") from e
        logger.info(f"Loaded deploy config from {path}")
        return cls.from_dict(raw)

    def get(self, key: str) -> Any:
        if key not in {f.name for f in fields(self)}:
            raise ConfigurationError(f"Unknown deploy config field {key}")
        return getattr(self, key)

    def is_production(self, chain_id: int) -> bool:
        return chain_id in self.production_chain_ids


@dataclass(frozen=True)
class Settings:
    """Environment driven settings"""
    rpc_url: str
    private_key: str
    deploy_config_path: str
    deployment_outfile: str
    artifacts_dir: str
    impl_salt: str
    log_file: str
    tx_timeout: int
    slack_webhook: Optional[str] = None

    @classmethod
    def from_env(cls, dotenv_path: Optional[str] = None) -> "Settings":
        load_dotenv(dotenv_path)

        private_key = os.getenv("PRIVATE_KEY")
        if not private_key:
            raise ConfigurationError("PRIVATE_KEY not found in environment")

        return cls(
            rpc_url=os.getenv("RPC_URL", "http://localhost:8545"),
            private_key=private_key,
            deploy_config_path=os.getenv("DEPLOY_CONFIG_PATH", "deploy-config.json"),
            deployment_outfile=os.getenv("DEPLOYMENT_OUTFILE", "deployments.json"),
            artifacts_dir=os.getenv("ARTIFACTS_DIR", "artifacts"),
            impl_salt=os.getenv("IMPL_SALT", "ethers phoenix"),
            log_file=os.getenv("DEPLOYER_LOG_FILE", "deployer.log"),
            tx_timeout=int(os.getenv("TX_TIMEOUT", "300")),
            slack_webhook=os.getenv("SLACK_WEBHOOK"),
        )
