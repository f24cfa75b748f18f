#!/usr/bin/env python3
"""
Tests for the unit tables and the default manifest
"""

import pytest

from deployer.manifest import CANNON_GAME_TYPE, default_manifest
from deployer.units import (
    Expect,
    ExtensionSpec,
    ImplementationSpec,
    Manifest,
    ProxyKind,
    ProxySpec,
)


class TestDefaultManifest:
    """Test class for the default deployment table"""

    def setup_method(self):
        """Set up test fixtures before each test method"""
        self.manifest = default_manifest()

    def test_every_proxy_has_an_implementation(self):
        """Test that proxies only reference declared implementations"""
        names = {spec.name for spec in self.manifest.implementations}
        for proxy in self.manifest.proxies:
            assert proxy.implementation in names

    def test_proxy_kinds(self):
        """Test the legacy proxies"""
        kinds = {proxy.name: proxy.kind for proxy in self.manifest.proxies}
        assert kinds["L1StandardBridgeProxy"] == ProxyKind.CHUGSPLASH
        assert kinds["L1CrossDomainMessengerProxy"] == ProxyKind.RESOLVED
        assert kinds["OptimismPortalProxy"] == ProxyKind.ERC1967

    def test_owned_entities(self):
        """Test which contracts are handed to the final owner"""
        assert [entity.name for entity in self.manifest.owned] == ["ProxyAdmin", "DisputeGameFactoryProxy"]

    def test_extension(self):
        """Test the fault game extension"""
        (extension,) = self.manifest.extensions
        assert extension.type_tag == CANNON_GAME_TYPE
        assert extension.factory == "DisputeGameFactoryProxy"

    def test_factory_owner_is_transient(self):
        """Test that the factory owner postcondition is only checked after initialization"""
        factory = next(p for p in self.manifest.proxies if p.name == "DisputeGameFactoryProxy")
        assert all(expect.transient for expect in factory.postconditions)

    def test_implementation_lookup(self):
        """Test finding implementations by name"""
        assert self.manifest.implementation("SystemConfig").contract == "SystemConfig"
        with pytest.raises(KeyError):
            self.manifest.implementation("Nope")


class TestManifestValidation:
    """Test class for Manifest.validate and spec checks"""

    def test_duplicate_names(self):
        """Test that two units may not share a name"""
        manifest = Manifest(
            implementations=(ImplementationSpec("Widget", "Widget"),),
            proxies=(ProxySpec("Widget", ProxyKind.ERC1967, "Widget"),),
        )
        with pytest.raises(ValueError):
            manifest.validate()

    def test_unknown_implementation(self):
        """Test that a proxy must point at a declared implementation"""
        manifest = Manifest(proxies=(ProxySpec("Proxy1", ProxyKind.ERC1967, "Widget"),))
        with pytest.raises(KeyError):
            manifest.validate()

    def test_extension_name_clash(self):
        """Test that extensions share the unit namespace"""
        manifest = Manifest(
            implementations=(ImplementationSpec("FaultDisputeGame", "FaultDisputeGame"),),
            extensions=(ExtensionSpec("FaultDisputeGame", "FaultDisputeGame", "DisputeGameFactoryProxy", 0),),
        )
        with pytest.raises(ValueError):
            manifest.validate()

    def test_resolved_proxy_needs_name(self):
        """Test that resolved proxies declare the name they resolve"""
        with pytest.raises(ValueError):
            ProxySpec("Proxy3", ProxyKind.RESOLVED, "Widget")

    def test_init_args_need_initializer(self):
        """Test that initializer arguments without an initializer are rejected"""
        with pytest.raises(ValueError):
            ProxySpec("Proxy1", ProxyKind.ERC1967, "Widget", init_args=(1,))

    def test_expect_defaults(self):
        """Test that expectations are permanent by default"""
        expect = Expect("owner()(address)", "0x0000000000000000000000000000000000000001")
        assert expect.args == ()
        assert expect.transient is False


if __name__ == "__main__":
    pytest.main([__file__])
