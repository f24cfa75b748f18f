#!/usr/bin/env python3
"""
Tests for extension registration
"""

import logging
from unittest.mock import MagicMock

import pytest

from deployer.errors import ExternalProviderError, InvariantViolation
from deployer.fake_ledger import SAMPLE_PRESTATE, FakeLedger, sample_config, widget_manifest
from deployer.providers import StaticFingerprint
from deployer.reconciler import DeploymentReconciler, Phase
from deployer.registry import AddressRegistry
from deployer.signatures import same_value

OTHER_GAME = "0x0000000000000000000000000000000000006a3e"


class TestExtensionRegistrar:
    """Test class for ExtensionRegistrar"""

    def setup_method(self):
        """Deploy everything up to the extension phase"""
        self.ledger = FakeLedger()
        self.registry = AddressRegistry("31337")
        self.manifest = widget_manifest()
        self.reconciler = DeploymentReconciler(self.ledger, self.registry, sample_config(), self.manifest)
        self.reconciler.run([Phase.CONTROLLERS, Phase.PROXIES, Phase.IMPLEMENTATIONS, Phase.INITIALIZE])
        self.ledger.mutations.clear()

        self.registrar = self.reconciler.registrar()
        self.spec = self.manifest.extensions[0]
        self.factory = self.registry.get("DisputeGameFactoryProxy")
        self.provider = StaticFingerprint(SAMPLE_PRESTATE)

    def test_register_fresh_tag(self):
        """Test that a free slot gets exactly one install write"""
        assert not self.registrar.is_bound(self.spec)

        implementation = self.registrar.register(self.spec, self.provider)

        assert self.ledger.transactions == [("call", self.factory, "setImplementation")]
        assert len(self.ledger.deployments) == 1
        assert same_value(self.registrar.binding_of(self.spec), implementation)
        assert same_value(self.ledger.call(implementation, "absolutePrestate()(bytes32)"), SAMPLE_PRESTATE)
        assert same_value(self.ledger.call(implementation, "L2_OUTPUT_ORACLE()(address)"),
                          self.registry.get("Proxy1"))
        assert same_value(self.registry.get("FaultDisputeGame"), implementation)

    def test_register_bound_tag(self, caplog):
        """Test that an occupied slot is left alone with a warning"""
        self.ledger.transact(self.factory, "setImplementation(uint8,address)", (0, OTHER_GAME))
        self.ledger.mutations.clear()

        with caplog.at_level(logging.WARNING, logger="deployer.extensions"):
            result = self.registrar.register(self.spec, self.provider)

        assert same_value(result, OTHER_GAME)
        assert self.ledger.mutations == []
        assert "already bound" in caplog.text
        assert not self.registry.has("FaultDisputeGame")

    def test_register_twice(self):
        """Test that the second registration performs no writes"""
        first = self.registrar.register(self.spec, self.provider)
        self.ledger.mutations.clear()

        assert same_value(self.registrar.register(self.spec, self.provider), first)
        assert self.ledger.mutations == []

    def test_provider_failure(self):
        """Test that a provider failure aborts registration"""
        provider = MagicMock()
        provider.fetch.side_effect = ExternalProviderError("prestate build failed")

        with pytest.raises(ExternalProviderError):
            self.registrar.register(self.spec, provider)
        assert self.ledger.mutations == []

    def test_provider_failure_skipped(self):
        """Test that a provider failure can be downgraded to a skip"""
        provider = MagicMock()
        provider.fetch.side_effect = ExternalProviderError("prestate build failed")

        assert self.registrar.register(self.spec, provider, allow_skip=True) is None
        assert self.ledger.mutations == []
        assert not self.registrar.is_bound(self.spec)

    def test_reuses_recorded_implementation(self):
        """Test that an implementation left by an earlier run is installed without redeploying"""
        game = self.ledger.deploy("FaultDisputeGame", (0, bytes.fromhex(SAMPLE_PRESTATE[2:]), 30, 300,
                                                       self.registry.get("Proxy1")))
        self.registry.put("FaultDisputeGame", game)
        self.ledger.mutations.clear()

        assert same_value(self.registrar.register(self.spec, self.provider), game)
        assert self.ledger.deployments == []
        assert len(self.ledger.transactions) == 1

    def test_recorded_implementation_with_other_fingerprint(self):
        """Test that a recorded implementation built from another fingerprint is refused"""
        game = self.ledger.deploy("FaultDisputeGame", (0, b"\x07" * 32, 30, 300, self.registry.get("Proxy1")))
        self.registry.put("FaultDisputeGame", game)
        self.ledger.mutations.clear()

        with pytest.raises(InvariantViolation):
            self.registrar.register(self.spec, self.provider)
        assert self.ledger.mutations == []
        assert not self.registrar.is_bound(self.spec)


if __name__ == "__main__":
    pytest.main([__file__])
