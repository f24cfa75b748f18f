"""Binds implementations to typed extension slots. A bound slot is never overwritten."""

import logging
from typing import Any, Callable, Optional

from .errors import ExternalProviderError
from .ledger import LedgerClient
from .providers import FingerprintProvider
from .registry import AddressRegistry
from .signatures import ZERO_ADDRESS, same_value
from .units import FINGERPRINT, ExtensionSpec
from .verifier import PostconditionVerifier

logger = logging.getLogger(__name__)


class ExtensionRegistrar:
    """Installs extension implementations into their factory registry"""

    def __init__(self, ledger: LedgerClient, registry: AddressRegistry, verifier: PostconditionVerifier,
                 resolve: Callable[[Any], Any], sender: str):
        self.ledger = ledger
        self.registry = registry
        self.verifier = verifier
        self.resolve = resolve
        self.sender = sender

    def binding_of(self, spec: ExtensionSpec) -> str:
        factory = self.registry.get(spec.factory)
        return self.ledger.call(factory, spec.binding_signature, (spec.type_tag,))

    def is_bound(self, spec: ExtensionSpec) -> bool:
        return not same_value(self.binding_of(spec), ZERO_ADDRESS)

    def register(self, spec: ExtensionSpec, provider: FingerprintProvider,
                 allow_skip: bool = False) -> Optional[str]:
        """
        Bind ``spec`` to its type tag unless the slot is already taken

        Args:
            spec: extension to install
            provider: source of the initial state fingerprint
            allow_skip: log and skip instead of failing when the provider
                cannot supply a fingerprint

        Returns:
            Address bound to the slot, or None when registration was skipped
        """
        factory = self.registry.get(spec.factory)
        existing = self.binding_of(spec)
        if not same_value(existing, ZERO_ADDRESS):
            logger.warning(
                f"{spec.name}: type {spec.type_tag} is already bound to {existing} in {spec.factory}, leaving it as is"
            )
            return existing

        try:
            fingerprint = provider.fetch()
        except ExternalProviderError as e:
            if not allow_skip:
                raise
            logger.warning(f"{spec.name}: skipping registration, fingerprint unavailable: {e}")
            return None

        implementation = self._implementation(spec, fingerprint)
        logger.info(f"{spec.name}: binding type {spec.type_tag} to {implementation} in {spec.factory}")
        self.ledger.transact(factory, spec.install_signature, (spec.type_tag, implementation), sender=self.sender)

        self.verifier.check(spec.name, [
            self.verifier.expect_call(factory, spec.binding_signature, implementation, args=(spec.type_tag,)),
            self.verifier.expect_call(implementation, spec.fingerprint_signature, fingerprint),
        ])
        return implementation

    def _implementation(self, spec: ExtensionSpec, fingerprint: bytes) -> str:
        if self.registry.has(spec.name):
            address = self.registry.get(spec.name)
            # an earlier run may have deployed it with a different fingerprint
            self.verifier.check(spec.name, [
                self.verifier.expect_call(address, spec.fingerprint_signature, fingerprint,
                                          description="fingerprint of recorded implementation"),
            ])
            return address

        args = tuple(fingerprint if arg is FINGERPRINT else self.resolve(arg) for arg in spec.constructor_args)
        address = self.ledger.deploy(spec.contract, args, sender=self.sender)
        logger.info(f"Deployed {spec.name} at {address}")
        self.registry.put(spec.name, address)
        return address
