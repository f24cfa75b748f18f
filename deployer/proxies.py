"""
Proxy administration
====================

All proxies are managed through the on-chain proxy administrator. The three
proxy kinds differ in how they are constructed and where their admin lives;
those details stay inside this module. Upgrades that carry an initializer
always go through the administrator's upgradeAndCall, so a proxy is never
left pointing at an implementation that was not initialized.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Optional

from .errors import InvariantViolation
from .ledger import LedgerClient
from .signatures import address_from_word, normalize, same_value
from .units import ProxyKind
from .verifier import Postcondition, PostconditionVerifier, reconcile_step

logger = logging.getLogger(__name__)

# bytes32(uint256(keccak256("eip1967.proxy.admin")) - 1)
EIP1967_ADMIN_SLOT = 0xb53127684a568b3173ae13b9f8a6016e243e63b6e8ee1178d6a717850b5d6103


@dataclass(frozen=True)
class ProxyBinding:
    """Observed state of one proxy"""
    address: str
    kind: ProxyKind
    admin: str
    implementation: str
    resolved_name: Optional[str] = None


@dataclass(frozen=True)
class _KindCodec:
    contract: str
    # direct admin change callable by the current admin, None when the admin
    # is the owner of the name table
    set_admin_signature: Optional[str]
    admin_in_slot: bool


_CODECS: Dict[ProxyKind, _KindCodec] = {
    ProxyKind.ERC1967: _KindCodec("Proxy", "changeAdmin(address)", True),
    ProxyKind.CHUGSPLASH: _KindCodec("L1ChugSplashProxy", "setOwner(address)", True),
    ProxyKind.RESOLVED: _KindCodec("ResolvedDelegateProxy", None, False),
}


class ProxyController:
    """Installs, configures and upgrades proxies through the proxy administrator"""

    def __init__(self, ledger: LedgerClient, verifier: PostconditionVerifier,
                 proxy_admin: str, address_manager: str, sender: str):
        self.ledger = ledger
        self.verifier = verifier
        self.proxy_admin = proxy_admin
        self.address_manager = address_manager
        self.sender = sender

    def deploy_proxy(self, name: str, kind: ProxyKind, resolved_name: Optional[str] = None) -> str:
        """Deploy a proxy of the given kind, administered by the proxy administrator"""
        codec = _CODECS[kind]
        if kind == ProxyKind.RESOLVED:
            args = (self.address_manager, resolved_name)
        else:
            args = (self.proxy_admin,)

        address = self.ledger.deploy(codec.contract, args, sender=self.sender)
        logger.info(f"Deployed {name} ({kind.name}) at {address}")
        self.verifier.check(name, [
            Postcondition("admin", lambda: self.admin_of(address, kind), self.proxy_admin),
        ])
        return address

    def kind_of(self, proxy: str) -> ProxyKind:
        return ProxyKind(self.ledger.call(self.proxy_admin, "proxyType(address)(uint8)", (proxy,)))

    def admin_of(self, proxy: str, kind: ProxyKind) -> str:
        if _CODECS[kind].admin_in_slot:
            return address_from_word(self.ledger.read_storage_slot(proxy, EIP1967_ADMIN_SLOT))
        return self.ledger.call(self.address_manager, "owner()(address)")

    def implementation_of(self, proxy: str) -> str:
        return self.ledger.call(self.proxy_admin, "getProxyImplementation(address)(address)", (proxy,))

    def implementation_name_of(self, proxy: str) -> str:
        return self.ledger.call(self.proxy_admin, "implementationName(address)(string)", (proxy,))

    def describe(self, proxy: str, kind: ProxyKind) -> ProxyBinding:
        resolved_name = self.implementation_name_of(proxy) if kind == ProxyKind.RESOLVED else None
        return ProxyBinding(
            address=proxy,
            kind=self.kind_of(proxy),
            admin=self.admin_of(proxy, kind),
            implementation=self.implementation_of(proxy),
            resolved_name=resolved_name,
        )

    def ensure_kind(self, name: str, proxy: str, kind: ProxyKind) -> bool:
        return reconcile_step(
            name, "proxy kind",
            read=lambda: self.kind_of(proxy),
            desired=kind,
            write=lambda: self.ledger.transact(
                self.proxy_admin, "setProxyType(address,uint8)", (proxy, int(kind)), sender=self.sender
            ),
        )

    def ensure_implementation_name(self, name: str, proxy: str, resolved_name: str) -> bool:
        return reconcile_step(
            name, "implementation name",
            read=lambda: self.implementation_name_of(proxy),
            desired=resolved_name,
            write=lambda: self.ledger.transact(
                self.proxy_admin, "setImplementationName(address,string)", (proxy, resolved_name),
                sender=self.sender,
            ),
        )

    def ensure_admin(self, name: str, proxy: str, kind: ProxyKind, desired: str) -> bool:
        codec = _CODECS[kind]

        def write():
            current = self.admin_of(proxy, kind)
            if same_value(current, self.sender):
                if codec.set_admin_signature is None:
                    self.ledger.transact(self.address_manager, "transferOwnership(address)", (desired,),
                                         sender=self.sender)
                else:
                    self.ledger.transact(proxy, codec.set_admin_signature, (desired,), sender=self.sender)
            elif same_value(current, self.proxy_admin):
                self.ledger.transact(self.proxy_admin, "changeProxyAdmin(address,address)", (proxy, desired),
                                     sender=self.sender)
            else:
                # Neither we nor the proxy administrator can change it
                raise InvariantViolation(name, [("admin", normalize(desired), normalize(current))])

        return reconcile_step(name, "admin", read=lambda: self.admin_of(proxy, kind), desired=desired, write=write)

    def upgrade_and_initialize(self, name: str, proxy: str, kind: ProxyKind, implementation: str,
                               init_data: Optional[bytes] = None):
        """
        Point a proxy at an implementation and run its initializer

        Both happen in one upgradeAndCall transaction for every kind, so a
        failed initializer leaves the proxy on its previous implementation.
        Results are checked by the caller.
        """
        admin = self.admin_of(proxy, kind)
        if not same_value(admin, self.proxy_admin):
            raise InvariantViolation(name, [("admin before upgrade", normalize(self.proxy_admin), normalize(admin))])

        if not init_data:
            logger.info(f"Upgrading {name} to {implementation}")
            self.ledger.transact(self.proxy_admin, "upgrade(address,address)", (proxy, implementation),
                                 sender=self.sender)
        else:
            logger.info(f"Upgrading {name} to {implementation} and initializing")
            self.ledger.transact(self.proxy_admin, "upgradeAndCall(address,address,bytes)",
                                 (proxy, implementation, init_data), sender=self.sender)
