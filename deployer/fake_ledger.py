"""
In-memory ledger for tests.

Simulates just enough contract behaviour to exercise the reconciler: the
proxy administrator, the three proxy kinds, the name table, the game factory
and the implementation contracts of the default manifest. Calldata is
decoded with the same signature codec the real client uses. A transaction
that reverts leaves no state behind.
"""

import copy
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from eth_abi import encode
from web3 import Web3

from .config import DeployConfig
from .errors import LedgerError
from .ledger import LedgerClient
from .manifest import DEAD_ADDRESS, L2_STANDARD_BRIDGE
from .proxies import EIP1967_ADMIN_SLOT
from .signatures import (
    ZERO_ADDRESS,
    ZERO_BYTES32,
    address_from_word,
    decode_arguments,
    decode_result,
    encode_call,
    parse_signature,
    same_value,
)
from .units import (
    CURRENT_BLOCK,
    FINGERPRINT,
    SIGNER,
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

DEPLOYER = Web3.to_checksum_address("0x00000000000000000000000000000000000d3910")


class FakeRevert(LedgerError):
    pass


def _word(address: str) -> bytes:
    return bytes.fromhex(address[2:]).rjust(32, b"\x00")


class FakeContract:
    SIGNATURES: Tuple[str, ...] = ()

    def __init__(self, ledger: "FakeLedger", address: str):
        self.ledger = ledger
        self.address = address
        self.storage: Dict[int, bytes] = {}
        self.constructor_args: Tuple[Any, ...] = ()

    @property
    def sender(self) -> str:
        return self.ledger.msg_sender

    def require(self, condition: bool, reason: str):
        if not condition:
            raise FakeRevert(f"{type(self).__name__} at {self.address}: {reason}")

    def signatures(self) -> Tuple[str, ...]:
        return self.SIGNATURES

    def resolve(self, name: str):
        if name in {parse_signature(s).name for s in self.signatures()}:
            return getattr(self, name)
        raise FakeRevert(f"{type(self).__name__} has no function {name}")

    def match(self, data: bytes) -> str:
        for signature in self.signatures():
            if parse_signature(signature).selector == bytes(data[:4]):
                return signature
        raise FakeRevert(f"{type(self).__name__}: unknown selector 0x{bytes(data[:4]).hex()}")

    def clone(self, address: str) -> "FakeContract":
        """Fresh copy of this implementation running in a proxy's storage"""
        twin = type(self)(self.ledger, address, *self.constructor_args)
        twin.constructor_args = self.constructor_args
        twin._initialized = False
        return twin


class Ownable:
    OWNABLE = ("owner()(address)", "transferOwnership(address)")
    _owner = ZERO_ADDRESS

    def owner(self):
        return self._owner

    def transferOwnership(self, new_owner):
        self._only_owner()
        self._owner = new_owner

    def _only_owner(self):
        self.require(same_value(self.sender, self._owner), "caller is not the owner")


class Initializable:
    _initialized = False

    def _initializer(self):
        self.require(not self._initialized, "already initialized")
        self._initialized = True


class FakeImplementation(Initializable, FakeContract):
    """Implementation whose constructor arguments are exposed as getters"""
    IMMUTABLES: Tuple[Tuple[str, str], ...] = ()

    def __init__(self, ledger, address, *args):
        super().__init__(ledger, address)
        self.require(len(args) == len(self.IMMUTABLES), "wrong number of constructor arguments")
        self.immutables = {name: value for (name, _), value in zip(self.IMMUTABLES, args)}
        # implementations cannot be initialized directly
        self._initialized = True

    def signatures(self):
        return self.SIGNATURES + tuple(f"{name}()({abi_type})" for name, abi_type in self.IMMUTABLES)

    def resolve(self, name):
        if name in self.immutables:
            return lambda: self.immutables[name]
        return super().resolve(name)


# --- controllers ---

class FakeAddressManager(Ownable, FakeContract):
    SIGNATURES = Ownable.OWNABLE + ("getAddress(string)(address)", "setAddress(string,address)")

    def __init__(self, ledger, address):
        super().__init__(ledger, address)
        self._owner = ledger.msg_sender
        self.addresses: Dict[str, str] = {}

    def getAddress(self, name):
        return self.addresses.get(name, ZERO_ADDRESS)

    def setAddress(self, name, address):
        self._only_owner()
        self.addresses[name] = address


class FakeProxyAdmin(Ownable, FakeContract):
    SIGNATURES = Ownable.OWNABLE + (
        "addressManager()(address)",
        "setAddressManager(address)",
        "proxyType(address)(uint8)",
        "setProxyType(address,uint8)",
        "implementationName(address)(string)",
        "setImplementationName(address,string)",
        "getProxyImplementation(address)(address)",
        "changeProxyAdmin(address,address)",
        "upgrade(address,address)",
        "upgradeAndCall(address,address,bytes)",
    )

    def __init__(self, ledger, address, owner):
        super().__init__(ledger, address)
        self._owner = Web3.to_checksum_address(owner)
        self._address_manager = ZERO_ADDRESS
        self.proxy_types: Dict[str, int] = {}
        self.implementation_names: Dict[str, str] = {}

    def addressManager(self):
        return self._address_manager

    def setAddressManager(self, address_manager):
        self._only_owner()
        self._address_manager = address_manager

    def proxyType(self, proxy):
        return self.proxy_types.get(proxy, 0)

    def setProxyType(self, proxy, kind):
        self._only_owner()
        self.proxy_types[proxy] = kind

    def implementationName(self, proxy):
        return self.implementation_names.get(proxy, "")

    def setImplementationName(self, proxy, name):
        self._only_owner()
        self.implementation_names[proxy] = name

    def _invoke(self, target, name, args=()):
        return self.ledger.invoke(target, name, args, sender=self.address)

    def getProxyImplementation(self, proxy):
        kind = self.proxyType(proxy)
        if kind == 0:
            return self._invoke(proxy, "implementation")
        if kind == 1:
            return self._invoke(proxy, "getImplementation")
        return self._invoke(self._address_manager, "getAddress", (self.implementationName(proxy),))

    def changeProxyAdmin(self, proxy, new_admin):
        self._only_owner()
        kind = self.proxyType(proxy)
        if kind == 0:
            self._invoke(proxy, "changeAdmin", (new_admin,))
        elif kind == 1:
            self._invoke(proxy, "setOwner", (new_admin,))
        else:
            self._invoke(self._address_manager, "transferOwnership", (new_admin,))

    def upgrade(self, proxy, implementation):
        self._only_owner()
        kind = self.proxyType(proxy)
        if kind == 0:
            self._invoke(proxy, "upgradeTo", (implementation,))
        elif kind == 1:
            self._invoke(proxy, "setImplementation", (implementation,))
        else:
            self._invoke(self._address_manager, "setAddress", (self.implementationName(proxy), implementation))

    def upgradeAndCall(self, proxy, implementation, data):
        self._only_owner()
        if self.proxyType(proxy) == 0:
            self._invoke(proxy, "upgradeToAndCall", (implementation, data))
        else:
            self.upgrade(proxy, implementation)
            self.ledger.execute(proxy, data, sender=self.address)


# --- proxies ---

class FakeProxyBase(FakeContract):
    OWN: Tuple[str, ...] = ()

    def __init__(self, ledger, address):
        super().__init__(ledger, address)
        self.delegate: Optional[FakeContract] = None
        self._implementation = ZERO_ADDRESS

    def _set_implementation(self, implementation):
        self._implementation = Web3.to_checksum_address(implementation)
        self.delegate = self.ledger.contract(implementation).clone(self.address)

    def _current_delegate(self) -> Optional[FakeContract]:
        return self.delegate

    def signatures(self):
        delegate = self._current_delegate()
        return self.OWN + (delegate.signatures() if delegate else ())

    def resolve(self, name):
        if name in {parse_signature(s).name for s in self.OWN}:
            return getattr(self, name)
        delegate = self._current_delegate()
        self.require(delegate is not None, f"no implementation behind proxy for {name}")
        return delegate.resolve(name)

    def _admin(self):
        return address_from_word(self.storage.get(EIP1967_ADMIN_SLOT, ZERO_BYTES32))

    def _only_admin(self):
        self.require(same_value(self.sender, self._admin()), "caller is not the admin")


class FakeProxy(FakeProxyBase):
    OWN = (
        "upgradeTo(address)",
        "upgradeToAndCall(address,bytes)",
        "changeAdmin(address)",
        "admin()(address)",
        "implementation()(address)",
    )

    def __init__(self, ledger, address, admin):
        super().__init__(ledger, address)
        self.storage[EIP1967_ADMIN_SLOT] = _word(admin)

    def upgradeTo(self, implementation):
        self._only_admin()
        self._set_implementation(implementation)

    def upgradeToAndCall(self, implementation, data):
        self._only_admin()
        self._set_implementation(implementation)
        self.ledger.execute(self.address, data, sender=self.sender)

    def changeAdmin(self, new_admin):
        self._only_admin()
        self.storage[EIP1967_ADMIN_SLOT] = _word(new_admin)

    def admin(self):
        return self._admin()

    def implementation(self):
        return self._implementation


class FakeChugSplashProxy(FakeProxyBase):
    OWN = (
        "setOwner(address)",
        "setImplementation(address)",
        "getOwner()(address)",
        "getImplementation()(address)",
    )

    def __init__(self, ledger, address, owner):
        super().__init__(ledger, address)
        self.storage[EIP1967_ADMIN_SLOT] = _word(owner)

    def setOwner(self, new_owner):
        self._only_admin()
        self.storage[EIP1967_ADMIN_SLOT] = _word(new_owner)

    def setImplementation(self, implementation):
        self._only_admin()
        self._set_implementation(implementation)

    def getOwner(self):
        return self._admin()

    def getImplementation(self):
        return self._implementation


class FakeResolvedDelegateProxy(FakeProxyBase):
    def __init__(self, ledger, address, address_manager, name):
        super().__init__(ledger, address)
        self.address_manager = Web3.to_checksum_address(address_manager)
        self.name = name

    def _current_delegate(self):
        target = self.ledger.contract(self.address_manager).getAddress(self.name)
        if not same_value(target, ZERO_ADDRESS) and not same_value(target, self._implementation):
            self._set_implementation(target)
        return self.delegate


# --- implementations ---

class FakeDisputeGameFactory(Ownable, Initializable, FakeContract):
    SIGNATURES = Ownable.OWNABLE + (
        "initialize(address)",
        "gameImpls(uint8)(address)",
        "setImplementation(uint8,address)",
    )

    def __init__(self, ledger, address):
        super().__init__(ledger, address)
        self.game_impls: Dict[int, str] = {}
        self._initialized = True

    def initialize(self, owner):
        self._initializer()
        self._owner = owner

    def gameImpls(self, game_type):
        return self.game_impls.get(game_type, ZERO_ADDRESS)

    def setImplementation(self, game_type, implementation):
        self._only_owner()
        self.game_impls[game_type] = implementation


class FakeFaultDisputeGame(FakeImplementation):
    IMMUTABLES = (
        ("gameType", "uint8"),
        ("absolutePrestate", "bytes32"),
        ("MAX_GAME_DEPTH", "uint256"),
        ("GAME_DURATION", "uint256"),
        ("L2_OUTPUT_ORACLE", "address"),
    )


class FakeWidget(Ownable, FakeImplementation):
    """Small initializable implementation used by the unit tests"""
    SIGNATURES = Ownable.OWNABLE + ("initialize(address,uint256)", "value()(uint256)")
    IMMUTABLES = (("BRIDGE", "address"),)

    def __init__(self, ledger, address, *args):
        super().__init__(ledger, address, *args)
        self._value = 0

    def initialize(self, owner, value):
        self._initializer()
        self._owner = owner
        self._value = value

    def value(self):
        return self._value


class FakeGadget(FakeImplementation):
    IMMUTABLES = (("MESSENGER", "address"),)


class FakeOptimismPortal(FakeImplementation):
    SIGNATURES = ("initialize(bool)", "paused()(bool)")
    IMMUTABLES = (
        ("L2_ORACLE", "address"),
        ("GUARDIAN", "address"),
        ("INITIAL_PAUSED", "bool"),
        ("SYSTEM_CONFIG", "address"),
    )

    def __init__(self, ledger, address, *args):
        super().__init__(ledger, address, *args)
        self._paused = self.immutables["INITIAL_PAUSED"]

    def initialize(self, paused):
        self._initializer()
        self._paused = paused

    def paused(self):
        return self._paused


class FakeL2OutputOracle(FakeImplementation):
    SIGNATURES = (
        "initialize(uint256,uint256)",
        "startingBlockNumber()(uint256)",
        "startingTimestamp()(uint256)",
    )
    IMMUTABLES = (
        ("SUBMISSION_INTERVAL", "uint256"),
        ("L2_BLOCK_TIME", "uint256"),
        ("PROPOSER", "address"),
        ("CHALLENGER", "address"),
        ("FINALIZATION_PERIOD_SECONDS", "uint256"),
    )

    def __init__(self, ledger, address, *args):
        super().__init__(ledger, address, *args)
        self._starting_block_number = 0
        self._starting_timestamp = 0

    def initialize(self, starting_block_number, starting_timestamp):
        self._initializer()
        self._starting_block_number = starting_block_number
        self._starting_timestamp = starting_timestamp

    def startingBlockNumber(self):
        return self._starting_block_number

    def startingTimestamp(self):
        return self._starting_timestamp


class FakeSystemConfig(Ownable, FakeImplementation):
    SIGNATURES = Ownable.OWNABLE + (
        "initialize(address,uint256,uint256,bytes32,uint64,address)",
        "overhead()(uint256)",
        "scalar()(uint256)",
        "batcherHash()(bytes32)",
        "gasLimit()(uint64)",
        "unsafeBlockSigner()(address)",
    )

    def __init__(self, ledger, address, *args):
        super().__init__(ledger, address, *args)
        self._owner = DEAD_ADDRESS
        self.values = {"overhead": 0, "scalar": 0, "batcherHash": ZERO_BYTES32,
                       "gasLimit": 0, "unsafeBlockSigner": ZERO_ADDRESS}

    def initialize(self, owner, overhead, scalar, batcher_hash, gas_limit, unsafe_block_signer):
        self._initializer()
        self._owner = owner
        self.values.update(overhead=overhead, scalar=scalar, batcherHash=batcher_hash,
                           gasLimit=gas_limit, unsafeBlockSigner=unsafe_block_signer)

    def resolve(self, name):
        if name in self.values:
            return lambda: self.values[name]
        return super().resolve(name)


class FakeL1CrossDomainMessenger(FakeImplementation):
    SIGNATURES = ("initialize()",)
    IMMUTABLES = (("PORTAL", "address"),)

    def initialize(self):
        self._initializer()


class FakeL1StandardBridge(FakeImplementation):
    SIGNATURES = ("OTHER_BRIDGE()(address)",)
    IMMUTABLES = (("MESSENGER", "address"),)

    def OTHER_BRIDGE(self):
        return L2_STANDARD_BRIDGE


class FakeL1ERC721Bridge(FakeImplementation):
    IMMUTABLES = (("MESSENGER", "address"), ("OTHER_BRIDGE", "address"))


class FakeOptimismMintableERC20Factory(FakeImplementation):
    IMMUTABLES = (("BRIDGE", "address"),)


MODELS = {
    "AddressManager": FakeAddressManager,
    "ProxyAdmin": FakeProxyAdmin,
    "Proxy": FakeProxy,
    "L1ChugSplashProxy": FakeChugSplashProxy,
    "ResolvedDelegateProxy": FakeResolvedDelegateProxy,
    "DisputeGameFactory": FakeDisputeGameFactory,
    "FaultDisputeGame": FakeFaultDisputeGame,
    "Widget": FakeWidget,
    "Gadget": FakeGadget,
    "OptimismPortal": FakeOptimismPortal,
    "L2OutputOracle": FakeL2OutputOracle,
    "SystemConfig": FakeSystemConfig,
    "L1CrossDomainMessenger": FakeL1CrossDomainMessenger,
    "L1StandardBridge": FakeL1StandardBridge,
    "L1ERC721Bridge": FakeL1ERC721Bridge,
    "OptimismMintableERC20Factory": FakeOptimismMintableERC20Factory,
}


class FakeLedger(LedgerClient):
    """LedgerClient holding every contract in memory and recording each mutation"""

    def __init__(self, signer: str = DEPLOYER, chain_id: int = 31337,
                 block_number: int = 1000, timestamp: int = 1_700_000_000):
        self.signer = Web3.to_checksum_address(signer)
        self._chain_id = chain_id
        self._block_number = block_number
        self._timestamp = timestamp
        self.contracts: Dict[str, FakeContract] = {}
        self.models = dict(MODELS)
        self.mutations: List[Tuple[str, str, str]] = []
        self.msg_sender = ZERO_ADDRESS
        self.open_broadcasts = 0
        self._next_address = 1

    def current_signer(self) -> str:
        return self.signer

    def chain_id(self) -> int:
        return self._chain_id

    def block_number(self) -> int:
        return self._block_number

    def block_timestamp(self) -> int:
        return self._timestamp

    def mine(self, blocks: int = 1):
        self._block_number += blocks
        self._timestamp += 12 * blocks

    def contract(self, address: str) -> FakeContract:
        try:
            return self.contracts[Web3.to_checksum_address(address)]
        except KeyError:
            raise FakeRevert(f"No contract at {address}") from None

    def code_at(self, address: str) -> bytes:
        return b"\x60\x80\x60\x40" if Web3.to_checksum_address(address) in self.contracts else b""

    def read_storage_slot(self, address: str, slot: int) -> bytes:
        return self.contract(address).storage.get(slot, ZERO_BYTES32)

    def invoke(self, address: str, name: str, args: Sequence[Any] = (), sender: Optional[str] = None) -> Any:
        """Dispatch a call by function name, as ``sender``"""
        function = self.contract(address).resolve(name)
        previous = self.msg_sender
        self.msg_sender = Web3.to_checksum_address(sender) if sender else ZERO_ADDRESS
        try:
            return function(*args)
        finally:
            self.msg_sender = previous

    def execute(self, address: str, data: bytes, sender: Optional[str] = None) -> Any:
        """Dispatch raw calldata"""
        signature = self.contract(address).match(data)
        return self.invoke(address, parse_signature(signature).name, decode_arguments(signature, data), sender)

    def call(self, address: str, signature: str, args: Sequence[Any] = ()) -> Any:
        parsed = parse_signature(signature)
        # round-trip through the codec so arguments and results carry ABI types
        decoded_args = decode_arguments(signature, encode_call(signature, args))
        result = self.invoke(address, parsed.name, decoded_args)
        if not parsed.outputs:
            return None
        values = list(result) if len(parsed.outputs) > 1 else [result]
        return decode_result(signature, encode(list(parsed.outputs), values))

    @contextmanager
    def broadcast(self, sender: Optional[str] = None) -> Iterator[str]:
        self.open_broadcasts += 1
        try:
            yield Web3.to_checksum_address(sender or self.signer)
        finally:
            self.open_broadcasts -= 1

    def send(self, address: str, data: bytes, sender: Optional[str] = None) -> Dict[str, Any]:
        with self.broadcast(sender) as origin:
            signature = self.contract(address).match(data)
            self.mutations.append(("call", Web3.to_checksum_address(address), parse_signature(signature).name))
            snapshot = copy.deepcopy(self.contracts, {id(self): self})
            try:
                self.execute(address, data, sender=origin)
            except LedgerError:
                self.contracts = snapshot
                raise
        return {"status": 1, "blockNumber": self._block_number}

    def deploy(self, contract: str, constructor_args: Sequence[Any] = (),
               salt: Optional[str] = None, sender: Optional[str] = None) -> str:
        model = self.models.get(contract)
        if model is None:
            raise FakeRevert(f"No fake model for {contract}")

        if salt is not None:
            digest = Web3.keccak(text=f"{contract}:{salt}:{tuple(constructor_args)!r}")
            address = Web3.to_checksum_address(bytes(digest)[12:])
            if address in self.contracts:
                return address
        else:
            address = Web3.to_checksum_address(f"0x{0xC0DE0000 + self._next_address:040x}")
            self._next_address += 1

        with self.broadcast(sender) as origin:
            self.mutations.append(("deploy", address, contract))
            previous = self.msg_sender
            self.msg_sender = origin
            try:
                instance = model(self, address, *constructor_args)
            finally:
                self.msg_sender = previous
            instance.constructor_args = tuple(constructor_args)
            self.contracts[address] = instance
        return address

    @property
    def deployments(self) -> List[Tuple[str, str, str]]:
        return [m for m in self.mutations if m[0] == "deploy"]

    @property
    def transactions(self) -> List[Tuple[str, str, str]]:
        return [m for m in self.mutations if m[0] == "call"]


# --- shared test inputs ---

FINAL_OWNER = Web3.to_checksum_address("0x00000000000000000000000000000000000f1a11")
SAMPLE_PRESTATE = "0x03" + "ab" * 31


def sample_config(**overrides) -> DeployConfig:
    """Deploy config for the local chain the FakeLedger reports"""
    raw = {
        "l1ChainID": 31337,
        "finalSystemOwner": FINAL_OWNER,
        "portalGuardian": "0x00000000000000000000000000000000000a0a0d",
        "l2OutputOracleSubmissionInterval": 6,
        "l2BlockTime": 2,
        "l2OutputOracleProposer": "0x0000000000000000000000000000000000000b0b",
        "l2OutputOracleChallenger": "0x0000000000000000000000000000000000000c0c",
        "finalizationPeriodSeconds": 12,
        "batchSenderAddress": "0x0000000000000000000000000000000000000bac",
        "gasPriceOracleOverhead": 2100,
        "gasPriceOracleScalar": 1000000,
        "l2GenesisBlockGasLimit": 30000000,
        "p2pSequencerAddress": "0x0000000000000000000000000000000000000500",
        "faultGameAbsolutePrestate": SAMPLE_PRESTATE,
    }
    raw.update(overrides)
    return DeployConfig.from_dict(raw)


def widget_manifest(extensions: bool = True) -> Manifest:
    """One proxy of each kind in front of the small Widget and Gadget contracts"""
    manifest = Manifest(
        implementations=(
            ImplementationSpec(
                "Widget", "Widget",
                constructor_args=(Ref("Proxy2"),),
                fresh=(Expect("BRIDGE()(address)", Ref("Proxy2")), Expect("owner()(address)", ZERO_ADDRESS)),
            ),
            ImplementationSpec(
                "Gadget", "Gadget",
                constructor_args=(Param("final_system_owner"),),
                fresh=(Expect("MESSENGER()(address)", Param("final_system_owner")),),
            ),
            ImplementationSpec(
                "DisputeGameFactory", "DisputeGameFactory",
                fresh=(Expect("owner()(address)", ZERO_ADDRESS),),
            ),
        ),
        proxies=(
            ProxySpec(
                "Proxy1", ProxyKind.ERC1967, "Widget",
                initializer="initialize(address,uint256)",
                init_args=(Param("final_system_owner"), Param("l2_block_time")),
                postconditions=(
                    Expect("owner()(address)", Param("final_system_owner")),
                    Expect("value()(uint256)", Param("l2_block_time")),
                ),
            ),
            ProxySpec(
                "Proxy2", ProxyKind.CHUGSPLASH, "Gadget",
                postconditions=(Expect("MESSENGER()(address)", Param("final_system_owner")),),
            ),
            ProxySpec(
                "Proxy3", ProxyKind.RESOLVED, "Widget",
                initializer="initialize(address,uint256)",
                init_args=(SIGNER, Param("l2_output_oracle_starting_block_number", fallback=CURRENT_BLOCK)),
                postconditions=(
                    Expect("owner()(address)", SIGNER),
                    Expect("value()(uint256)", Param("l2_output_oracle_starting_block_number",
                                                     fallback=CURRENT_BLOCK)),
                ),
                resolved_name="OVM_Widget",
            ),
            ProxySpec(
                "DisputeGameFactoryProxy", ProxyKind.ERC1967, "DisputeGameFactory",
                initializer="initialize(address)",
                init_args=(SIGNER,),
                postconditions=(Expect("owner()(address)", SIGNER, transient=True),),
            ),
        ),
        owned=(OwnedEntity("ProxyAdmin"), OwnedEntity("DisputeGameFactoryProxy")),
        extensions=(
            ExtensionSpec(
                "FaultDisputeGame", "FaultDisputeGame",
                factory="DisputeGameFactoryProxy",
                type_tag=0,
                constructor_args=(0, FINGERPRINT, Param("fault_game_max_depth"),
                                  Param("fault_game_max_duration"), Ref("Proxy1")),
            ),
        ) if extensions else (),
    )
    manifest.validate()
    return manifest
