"""
Deployment data model
=====================

The system to deploy is described as data: which implementations to build,
which proxies front them, how each proxy is initialized and what must hold
afterwards. Values inside the tables are either literals or references that
are resolved at run time:

- Ref(name): address recorded in the registry
- Param(key): field of the deploy config
- SIGNER: the identity the run deploys with
- CURRENT_BLOCK, CURRENT_TIMESTAMP: latest block, read once per run
- FINGERPRINT: the extension fingerprint supplied by a provider
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional, Tuple


class ProxyKind(IntEnum):
    """Proxy flavours understood by the proxy administrator"""
    ERC1967 = 0
    CHUGSPLASH = 1
    RESOLVED = 2


@dataclass(frozen=True)
class Ref:
    """Address of a registry entry"""
    name: str


@dataclass(frozen=True)
class Param:
    """Deploy config field, with an optional fallback used when it is None"""
    key: str
    fallback: Any = None


@dataclass(frozen=True)
class AsBytes32:
    """Address left-padded to a bytes32 word"""
    value: Any


class _Marker:
    def __init__(self, label: str):
        self.label = label

    def __repr__(self) -> str:
        return self.label


SIGNER = _Marker("SIGNER")
FINGERPRINT = _Marker("FINGERPRINT")
CURRENT_BLOCK = _Marker("CURRENT_BLOCK")
CURRENT_TIMESTAMP = _Marker("CURRENT_TIMESTAMP")


@dataclass(frozen=True)
class Expect:
    """
    Postcondition declared in the unit table

    ``transient`` expectations are only asserted right after the mutation that
    established them, e.g. an owner a later phase hands off. Values taken from
    CURRENT_BLOCK or CURRENT_TIMESTAMP are treated the same way.
    """
    signature: str
    expected: Any
    args: Tuple[Any, ...] = ()
    transient: bool = False


@dataclass(frozen=True)
class Unit:
    """A deployed code body"""
    name: str
    address: str
    salt: Optional[str] = None


@dataclass(frozen=True)
class ImplementationSpec:
    """Implementation contract deployed behind a proxy"""
    name: str
    contract: str
    constructor_args: Tuple[Any, ...] = ()
    salted: bool = True
    fresh: Tuple[Expect, ...] = ()


@dataclass(frozen=True)
class ProxySpec:
    """Upgradeable unit: proxy, its implementation and its initializer"""
    name: str
    kind: ProxyKind
    implementation: str
    initializer: Optional[str] = None
    init_args: Tuple[Any, ...] = ()
    postconditions: Tuple[Expect, ...] = ()
    resolved_name: Optional[str] = None

    def __post_init__(self):
        if self.kind == ProxyKind.RESOLVED and not self.resolved_name:
            raise ValueError(f"{self.name}: resolved proxies need a resolved_name")
        if self.init_args and not self.initializer:
            raise ValueError(f"{self.name}: init_args given without an initializer")


@dataclass(frozen=True)
class OwnedEntity:
    """Single-owner contract whose ownership is handed to the final owner"""
    name: str
    owner_signature: str = "owner()(address)"
    transfer_signature: str = "transferOwnership(address)"


@dataclass(frozen=True)
class ExtensionSpec:
    """Implementation bound to a typed slot of a factory registry"""
    name: str
    contract: str
    factory: str
    type_tag: int
    constructor_args: Tuple[Any, ...] = ()
    binding_signature: str = "gameImpls(uint8)(address)"
    install_signature: str = "setImplementation(uint8,address)"
    fingerprint_signature: str = "absolutePrestate()(bytes32)"


@dataclass
class Manifest:
    """Everything one reconciliation run deploys"""
    implementations: Tuple[ImplementationSpec, ...] = ()
    proxies: Tuple[ProxySpec, ...] = ()
    owned: Tuple[OwnedEntity, ...] = ()
    extensions: Tuple[ExtensionSpec, ...] = ()
    address_manager: str = "AddressManager"
    proxy_admin: str = "ProxyAdmin"

    def implementation(self, name: str) -> ImplementationSpec:
        for spec in self.implementations:
            if spec.name == name:
                return spec
        raise KeyError(f"No implementation named {name} in the manifest")

    def validate(self):
        """Reject duplicate names and proxies pointing at unknown implementations"""
        names = [self.address_manager, self.proxy_admin]
        names += [s.name for s in self.implementations]
        names += [s.name for s in self.proxies]
        names += [s.name for s in self.extensions]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate unit names in manifest: {duplicates}")
        for proxy in self.proxies:
            self.implementation(proxy.implementation)
