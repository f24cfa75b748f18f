"""
Deployment reconciler
=====================

Drives the phases in order:

1. controllers      name table + proxy administrator, bound together
2. proxies          one proxy per upgradeable unit
3. implementations  salted deployments, checked for freshness
4. initialize       upgrade-and-initialize each proxy, then check it
5. extensions       typed extension slots (non-production chains only)
6. authority        hand every owned contract to the final owner

Every step reads before it writes, so re-running after a failure only
applies what is missing. Any failed check raises and stops the run.
"""

import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .config import DeployConfig
from .errors import ConfigurationError, InvariantViolation
from .extensions import ExtensionRegistrar
from .ledger import LedgerClient
from .manifest import default_manifest
from .providers import FingerprintProvider, provider_for_config
from .proxies import ProxyController
from .registry import AddressRegistry
from .signatures import encode_call, same_value
from .units import (
    CURRENT_BLOCK,
    CURRENT_TIMESTAMP,
    FINGERPRINT,
    SIGNER,
    AsBytes32,
    Expect,
    Manifest,
    Param,
    ProxyKind,
    Ref,
    Unit,
)
from .verifier import Postcondition, PostconditionVerifier, reconcile_step

logger = logging.getLogger(__name__)


class Phase(Enum):
    CONTROLLERS = "controllers"
    PROXIES = "proxies"
    IMPLEMENTATIONS = "implementations"
    INITIALIZE = "initialize"
    EXTENSIONS = "extensions"
    AUTHORITY = "authority"


class DeploymentReconciler:
    """Converges the ledger towards the deployment described by a manifest"""

    def __init__(self, ledger: LedgerClient, registry: AddressRegistry, config: DeployConfig,
                 manifest: Optional[Manifest] = None, impl_salt: str = "ethers phoenix",
                 fingerprint_provider: Optional[FingerprintProvider] = None):
        self.ledger = ledger
        self.registry = registry
        self.config = config
        self.manifest = manifest or default_manifest()
        self.impl_salt = impl_salt
        self.fingerprint_provider = fingerprint_provider
        self.signer = ledger.current_signer()
        self.verifier = PostconditionVerifier(ledger)
        self._chain_values: Dict[Any, int] = {}

    # --- value resolution ---

    def resolve(self, value: Any) -> Any:
        """Turn a unit table value into the concrete value for this run"""
        if isinstance(value, Ref):
            return self.registry.get(value.name)
        if isinstance(value, Param):
            resolved = self.config.get(value.key)
            if resolved is None:
                if value.fallback is None:
                    raise ConfigurationError(f"Deploy config field {value.key} is required")
                return self.resolve(value.fallback)
            return resolved
        if isinstance(value, AsBytes32):
            address = self.resolve(value.value)
            return bytes.fromhex(address[2:]).rjust(32, b"\x00")
        if value is SIGNER:
            return self.signer
        if value is CURRENT_BLOCK or value is CURRENT_TIMESTAMP:
            # read once so initializer arguments and their checks agree
            if value not in self._chain_values:
                if value is CURRENT_BLOCK:
                    self._chain_values[value] = self.ledger.block_number()
                else:
                    self._chain_values[value] = self.ledger.block_timestamp()
            return self._chain_values[value]
        if value is FINGERPRINT:
            raise ValueError("FINGERPRINT is only available to extension registration")
        return value

    def _is_volatile(self, expect: Expect) -> bool:
        if expect.transient:
            return True
        value = expect.expected
        while isinstance(value, (Param, AsBytes32)):
            if isinstance(value, AsBytes32):
                value = value.value
            elif self.config.get(value.key) is None:
                value = value.fallback
            else:
                return False
        return value is CURRENT_BLOCK or value is CURRENT_TIMESTAMP

    def _postconditions(self, address: str, expects: Sequence[Expect],
                        include_volatile: bool = True) -> List[Postcondition]:
        postconditions = []
        for expect in expects:
            if not include_volatile and self._is_volatile(expect):
                continue
            postconditions.append(self.verifier.expect_call(
                address,
                expect.signature,
                self.resolve(expect.expected),
                args=tuple(self.resolve(a) for a in expect.args),
            ))
        return postconditions

    # --- shared steps ---

    def check_network(self):
        chain_id = self.ledger.chain_id()
        if chain_id != self.config.l1_chain_id:
            raise ConfigurationError(
                f"Deploy config targets chain {self.config.l1_chain_id} but the ledger reports {chain_id}"
            )

    def _require_code(self, name: str, address: str):
        if not self.ledger.has_code(address):
            raise InvariantViolation(name, [("code at recorded address " + address, "non-empty", "empty")])

    def _ensure_deployed(self, name: str, contract: str, args: Sequence[Any] = (),
                         salt: Optional[str] = None, fresh: Sequence[Expect] = ()) -> Unit:
        """Deploy, check freshly-constructed state, record. Reuses recorded units."""
        if self.registry.has(name):
            address = self.registry.get(name)
            self._require_code(name, address)
            logger.info(f"{name} already recorded at {address}")
            return Unit(name, address, salt)

        resolved = tuple(self.resolve(a) for a in args)
        address = self.ledger.deploy(contract, resolved, salt=salt, sender=self.signer)
        logger.info(f"Deployed {name} at {address}")
        if fresh:
            self.verifier.check(name, self._postconditions(address, fresh))
        self.registry.put(name, address)
        return Unit(name, address, salt)

    def controller(self) -> ProxyController:
        return ProxyController(
            self.ledger,
            self.verifier,
            proxy_admin=self.registry.get(self.manifest.proxy_admin),
            address_manager=self.registry.get(self.manifest.address_manager),
            sender=self.signer,
        )

    def registrar(self) -> ExtensionRegistrar:
        return ExtensionRegistrar(self.ledger, self.registry, self.verifier, self.resolve, self.signer)

    # --- phases ---

    def provision_controllers(self) -> List[Unit]:
        address_manager = self._ensure_deployed(self.manifest.address_manager, "AddressManager")
        proxy_admin = self._ensure_deployed(
            self.manifest.proxy_admin, "ProxyAdmin", (SIGNER,),
            fresh=(Expect("owner()(address)", SIGNER),),
        )

        reconcile_step(
            proxy_admin.name, "address manager",
            read=lambda: self.ledger.call(proxy_admin.address, "addressManager()(address)"),
            desired=address_manager.address,
            write=lambda: self.ledger.transact(
                proxy_admin.address, "setAddressManager(address)", (address_manager.address,), sender=self.signer
            ),
        )
        # resolved proxies are upgraded by rewriting the name table
        reconcile_step(
            address_manager.name, "owner",
            read=lambda: self.ledger.call(address_manager.address, "owner()(address)"),
            desired=proxy_admin.address,
            write=lambda: self.ledger.transact(
                address_manager.address, "transferOwnership(address)", (proxy_admin.address,), sender=self.signer
            ),
        )
        return [address_manager, proxy_admin]

    def provision_proxies(self) -> List[Unit]:
        controller = self.controller()
        units = []
        for spec in self.manifest.proxies:
            if self.registry.has(spec.name):
                address = self.registry.get(spec.name)
                self._require_code(spec.name, address)
                logger.info(f"{spec.name} already recorded at {address}")
            else:
                address = controller.deploy_proxy(spec.name, spec.kind, spec.resolved_name)
                self.registry.put(spec.name, address)
            units.append(Unit(spec.name, address))
        return units

    def provision_implementations(self) -> List[Unit]:
        units = []
        for spec in self.manifest.implementations:
            salt = self.impl_salt if spec.salted else None
            units.append(self._ensure_deployed(spec.name, spec.contract, spec.constructor_args, salt, spec.fresh))
        return units

    def initialize(self):
        controller = self.controller()
        for spec in self.manifest.proxies:
            proxy = self.registry.get(spec.name)
            implementation = self.registry.get(spec.implementation)

            controller.ensure_admin(spec.name, proxy, spec.kind, controller.proxy_admin)
            controller.ensure_kind(spec.name, proxy, spec.kind)
            if spec.kind == ProxyKind.RESOLVED:
                controller.ensure_implementation_name(spec.name, proxy, spec.resolved_name)

            if same_value(controller.implementation_of(proxy), implementation):
                logger.info(f"{spec.name} already points at {implementation}, skipping upgrade")
                self.verifier.check(spec.name, self._postconditions(proxy, spec.postconditions, include_volatile=False))
                continue

            init_data = None
            if spec.initializer:
                init_data = encode_call(spec.initializer, [self.resolve(a) for a in spec.init_args])
            controller.upgrade_and_initialize(spec.name, proxy, spec.kind, implementation, init_data)

            self.verifier.check(spec.name, [
                Postcondition("implementation", lambda p=proxy: controller.implementation_of(p), implementation),
            ] + self._postconditions(proxy, spec.postconditions))

    def register_extensions(self):
        if not self.manifest.extensions:
            return
        chain_id = self.ledger.chain_id()
        if self.config.is_production(chain_id):
            logger.info(f"Chain {chain_id} is a production chain, skipping extension registration")
            return

        provider = self.fingerprint_provider or provider_for_config(self.config)
        allow_skip = not self.config.restricted_context and self.config.skip_extensions_on_provider_error
        registrar = self.registrar()
        for spec in self.manifest.extensions:
            registrar.register(spec, provider, allow_skip=allow_skip)

    def finalize_authority(self) -> int:
        """Returns how many ownership transfers were issued"""
        final_owner = self.config.final_system_owner
        transfers = 0
        for entity in self.manifest.owned:
            address = self.registry.get(entity.name)
            changed = reconcile_step(
                entity.name, "owner",
                read=lambda a=address, e=entity: self.ledger.call(a, e.owner_signature),
                desired=final_owner,
                write=lambda a=address, e=entity: self.ledger.transact(
                    a, e.transfer_signature, (final_owner,), sender=self.signer
                ),
            )
            transfers += int(changed)
        return transfers

    _PHASES = {
        Phase.CONTROLLERS: provision_controllers,
        Phase.PROXIES: provision_proxies,
        Phase.IMPLEMENTATIONS: provision_implementations,
        Phase.INITIALIZE: initialize,
        Phase.EXTENSIONS: register_extensions,
        Phase.AUTHORITY: finalize_authority,
    }

    def run(self, phases: Optional[Sequence[Phase]] = None):
        """Run the selected phases (all by default) in their fixed order"""
        self.check_network()
        selected = set(phases) if phases else set(Phase)
        logger.info(f"Reconciling deployment on chain {self.config.l1_chain_id} as {self.signer}")
        for phase in Phase:
            if phase not in selected:
                continue
            logger.info(f"--- Phase: {phase.value} ---")
            self._PHASES[phase](self)
        logger.info(f"Deployment converged, {self.verifier.checks_run} postcondition(s) checked")

    # --- read-only drift check ---

    def verify(self) -> int:
        """
        Check the complete expected end state without writing anything

        Returns:
            Number of postconditions evaluated
        """
        self.check_network()
        before = self.verifier.checks_run

        address_manager = self.registry.get(self.manifest.address_manager)
        proxy_admin = self.registry.get(self.manifest.proxy_admin)
        self.verifier.check(self.manifest.proxy_admin, [
            self.verifier.expect_call(proxy_admin, "addressManager()(address)", address_manager),
            self.verifier.expect_call(address_manager, "owner()(address)", proxy_admin,
                                      description="address manager owner"),
        ])

        for spec in self.manifest.implementations:
            self._require_code(spec.name, self.registry.get(spec.name))

        controller = self.controller()
        for spec in self.manifest.proxies:
            proxy = self.registry.get(spec.name)
            binding = controller.describe(proxy, spec.kind)
            observed = [
                Postcondition("proxy kind", lambda b=binding: b.kind, spec.kind),
                Postcondition("admin", lambda b=binding: b.admin, proxy_admin),
                Postcondition("implementation", lambda b=binding: b.implementation,
                              self.registry.get(spec.implementation)),
            ]
            if spec.kind == ProxyKind.RESOLVED:
                observed.append(Postcondition("implementation name", lambda b=binding: b.resolved_name,
                                              spec.resolved_name))
            self.verifier.check(spec.name, observed + self._postconditions(
                proxy, spec.postconditions, include_volatile=False))

        if self.manifest.extensions and not self.config.is_production(self.ledger.chain_id()):
            registrar = self.registrar()
            for spec in self.manifest.extensions:
                if registrar.is_bound(spec):
                    continue
                if self.config.skip_extensions_on_provider_error and not self.config.restricted_context:
                    logger.warning(f"{spec.name}: type {spec.type_tag} is not bound (registration may have been skipped)")
                else:
                    raise InvariantViolation(spec.name, [(f"binding for type {spec.type_tag}", "bound", "empty")])

        for entity in self.manifest.owned:
            address = self.registry.get(entity.name)
            self.verifier.check(entity.name, [
                self.verifier.expect_call(address, entity.owner_signature, self.config.final_system_owner,
                                          description="owner"),
            ])

        checked = self.verifier.checks_run - before
        logger.info(f"No drift detected, {checked} postcondition(s) hold")
        return checked
