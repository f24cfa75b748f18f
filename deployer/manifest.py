"""
Default deployment table for the L1 side of the rollup.

One entry per unit. The reconciler walks these tables; nothing here talks to
the ledger.
"""

from .signatures import ZERO_ADDRESS
from .units import (
    CURRENT_BLOCK,
    CURRENT_TIMESTAMP,
    FINGERPRINT,
    SIGNER,
    AsBytes32,
    Expect,
    ExtensionSpec,
    ImplementationSpec,
    Manifest,
    OwnedEntity,
    Param,
    ProxyKind,
    ProxySpec,
    Ref,
)

# L2 predeploys the L1 bridges point at
L2_STANDARD_BRIDGE = "0x4200000000000000000000000000000000000010"
L2_ERC721_BRIDGE = "0x4200000000000000000000000000000000000014"

DEAD_ADDRESS = "0x000000000000000000000000000000000000dEaD"

CANNON_GAME_TYPE = 0

IMPLEMENTATIONS = (
    ImplementationSpec(
        "OptimismPortal", "OptimismPortal",
        constructor_args=(Ref("L2OutputOracleProxy"), Param("portal_guardian"), True, Ref("SystemConfigProxy")),
        fresh=(
            Expect("L2_ORACLE()(address)", Ref("L2OutputOracleProxy")),
            Expect("GUARDIAN()(address)", Param("portal_guardian")),
            Expect("SYSTEM_CONFIG()(address)", Ref("SystemConfigProxy")),
            Expect("paused()(bool)", True),
        ),
    ),
    ImplementationSpec(
        "L2OutputOracle", "L2OutputOracle",
        constructor_args=(
            Param("l2_output_oracle_submission_interval"),
            Param("l2_block_time"),
            Param("l2_output_oracle_proposer"),
            Param("l2_output_oracle_challenger"),
            Param("finalization_period_seconds"),
        ),
        fresh=(
            Expect("SUBMISSION_INTERVAL()(uint256)", Param("l2_output_oracle_submission_interval")),
            Expect("L2_BLOCK_TIME()(uint256)", Param("l2_block_time")),
            Expect("PROPOSER()(address)", Param("l2_output_oracle_proposer")),
            Expect("CHALLENGER()(address)", Param("l2_output_oracle_challenger")),
            Expect("FINALIZATION_PERIOD_SECONDS()(uint256)", Param("finalization_period_seconds")),
            Expect("startingBlockNumber()(uint256)", 0),
        ),
    ),
    ImplementationSpec(
        "SystemConfig", "SystemConfig",
        fresh=(Expect("owner()(address)", DEAD_ADDRESS),),
    ),
    ImplementationSpec(
        "L1CrossDomainMessenger", "L1CrossDomainMessenger",
        constructor_args=(Ref("OptimismPortalProxy"),),
        fresh=(Expect("PORTAL()(address)", Ref("OptimismPortalProxy")),),
    ),
    ImplementationSpec(
        "L1StandardBridge", "L1StandardBridge",
        constructor_args=(Ref("L1CrossDomainMessengerProxy"),),
        fresh=(
            Expect("MESSENGER()(address)", Ref("L1CrossDomainMessengerProxy")),
            Expect("OTHER_BRIDGE()(address)", L2_STANDARD_BRIDGE),
        ),
    ),
    ImplementationSpec(
        "L1ERC721Bridge", "L1ERC721Bridge",
        constructor_args=(Ref("L1CrossDomainMessengerProxy"), L2_ERC721_BRIDGE),
        fresh=(
            Expect("MESSENGER()(address)", Ref("L1CrossDomainMessengerProxy")),
            Expect("OTHER_BRIDGE()(address)", L2_ERC721_BRIDGE),
        ),
    ),
    ImplementationSpec(
        "OptimismMintableERC20Factory", "OptimismMintableERC20Factory",
        constructor_args=(Ref("L1StandardBridgeProxy"),),
        fresh=(Expect("BRIDGE()(address)", Ref("L1StandardBridgeProxy")),),
    ),
    ImplementationSpec(
        "DisputeGameFactory", "DisputeGameFactory",
        fresh=(Expect("owner()(address)", ZERO_ADDRESS),),
    ),
)

PROXIES = (
    ProxySpec(
        "OptimismPortalProxy", ProxyKind.ERC1967, "OptimismPortal",
        initializer="initialize(bool)",
        init_args=(False,),
        postconditions=(
            Expect("L2_ORACLE()(address)", Ref("L2OutputOracleProxy")),
            Expect("GUARDIAN()(address)", Param("portal_guardian")),
            Expect("SYSTEM_CONFIG()(address)", Ref("SystemConfigProxy")),
            Expect("paused()(bool)", False),
        ),
    ),
    ProxySpec(
        "L2OutputOracleProxy", ProxyKind.ERC1967, "L2OutputOracle",
        initializer="initialize(uint256,uint256)",
        init_args=(
            Param("l2_output_oracle_starting_block_number", fallback=CURRENT_BLOCK),
            Param("l2_output_oracle_starting_timestamp", fallback=CURRENT_TIMESTAMP),
        ),
        postconditions=(
            Expect("startingBlockNumber()(uint256)",
                   Param("l2_output_oracle_starting_block_number", fallback=CURRENT_BLOCK)),
            Expect("startingTimestamp()(uint256)",
                   Param("l2_output_oracle_starting_timestamp", fallback=CURRENT_TIMESTAMP)),
            Expect("SUBMISSION_INTERVAL()(uint256)", Param("l2_output_oracle_submission_interval")),
            Expect("PROPOSER()(address)", Param("l2_output_oracle_proposer")),
            Expect("CHALLENGER()(address)", Param("l2_output_oracle_challenger")),
        ),
    ),
    ProxySpec(
        "SystemConfigProxy", ProxyKind.ERC1967, "SystemConfig",
        initializer="initialize(address,uint256,uint256,bytes32,uint64,address)",
        init_args=(
            Param("final_system_owner"),
            Param("gas_price_oracle_overhead"),
            Param("gas_price_oracle_scalar"),
            AsBytes32(Param("batch_sender_address")),
            Param("l2_genesis_block_gas_limit"),
            Param("p2p_sequencer_address"),
        ),
        postconditions=(
            Expect("owner()(address)", Param("final_system_owner")),
            Expect("overhead()(uint256)", Param("gas_price_oracle_overhead")),
            Expect("scalar()(uint256)", Param("gas_price_oracle_scalar")),
            Expect("batcherHash()(bytes32)", AsBytes32(Param("batch_sender_address"))),
            Expect("gasLimit()(uint64)", Param("l2_genesis_block_gas_limit")),
            Expect("unsafeBlockSigner()(address)", Param("p2p_sequencer_address")),
        ),
    ),
    ProxySpec(
        "L1CrossDomainMessengerProxy", ProxyKind.RESOLVED, "L1CrossDomainMessenger",
        initializer="initialize()",
        postconditions=(Expect("PORTAL()(address)", Ref("OptimismPortalProxy")),),
        resolved_name="OVM_L1CrossDomainMessenger",
    ),
    ProxySpec(
        "L1StandardBridgeProxy", ProxyKind.CHUGSPLASH, "L1StandardBridge",
        postconditions=(
            Expect("MESSENGER()(address)", Ref("L1CrossDomainMessengerProxy")),
            Expect("OTHER_BRIDGE()(address)", L2_STANDARD_BRIDGE),
        ),
    ),
    ProxySpec(
        "L1ERC721BridgeProxy", ProxyKind.ERC1967, "L1ERC721Bridge",
        postconditions=(
            Expect("MESSENGER()(address)", Ref("L1CrossDomainMessengerProxy")),
            Expect("OTHER_BRIDGE()(address)", L2_ERC721_BRIDGE),
        ),
    ),
    ProxySpec(
        "OptimismMintableERC20FactoryProxy", ProxyKind.ERC1967, "OptimismMintableERC20Factory",
        postconditions=(Expect("BRIDGE()(address)", Ref("L1StandardBridgeProxy")),),
    ),
    ProxySpec(
        "DisputeGameFactoryProxy", ProxyKind.ERC1967, "DisputeGameFactory",
        initializer="initialize(address)",
        init_args=(SIGNER,),
        # handed to the final owner once extensions are registered
        postconditions=(Expect("owner()(address)", SIGNER, transient=True),),
    ),
)

OWNED = (
    OwnedEntity("ProxyAdmin"),
    OwnedEntity("DisputeGameFactoryProxy"),
)

EXTENSIONS = (
    ExtensionSpec(
        "FaultDisputeGame", "FaultDisputeGame",
        factory="DisputeGameFactoryProxy",
        type_tag=CANNON_GAME_TYPE,
        constructor_args=(
            CANNON_GAME_TYPE,
            FINGERPRINT,
            Param("fault_game_max_depth"),
            Param("fault_game_max_duration"),
            Ref("L2OutputOracleProxy"),
        ),
    ),
)


def default_manifest() -> Manifest:
    manifest = Manifest(
        implementations=IMPLEMENTATIONS,
        proxies=PROXIES,
        owned=OWNED,
        extensions=EXTENSIONS,
    )
    manifest.validate()
    return manifest
