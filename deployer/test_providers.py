#!/usr/bin/env python3
"""
Tests for fingerprint providers
"""

import json
import subprocess
from unittest.mock import MagicMock, patch

import pytest

from deployer.errors import ConfigurationError, ExternalProviderError
from deployer.fake_ledger import SAMPLE_PRESTATE, sample_config
from deployer.providers import (
    CommandFingerprintProvider,
    FileFingerprintProvider,
    StaticFingerprint,
    parse_fingerprint,
    provider_for_config,
)

PRESTATE_BYTES = bytes.fromhex(SAMPLE_PRESTATE[2:])


class TestParseFingerprint:
    """Test class for parse_fingerprint"""

    def test_hex_string(self):
        """Test a well formed hex fingerprint"""
        assert parse_fingerprint(SAMPLE_PRESTATE, "test") == PRESTATE_BYTES
        assert parse_fingerprint(f"  {SAMPLE_PRESTATE}\n", "test") == PRESTATE_BYTES

    def test_raw_bytes(self):
        """Test a 32-byte value"""
        assert parse_fingerprint(PRESTATE_BYTES, "test") == PRESTATE_BYTES

    def test_rejects_malformed(self):
        """Test that short, non-hex and missing values are rejected"""
        for raw in ("0x1234", "0x" + "zz" * 32, SAMPLE_PRESTATE[2:], b"\x01" * 31, None):
            with pytest.raises(ExternalProviderError):
                parse_fingerprint(raw, "test")

    def test_rejects_zero(self):
        """Test that the zero fingerprint is rejected"""
        with pytest.raises(ExternalProviderError):
            parse_fingerprint("0x" + "00" * 32, "test")


class TestStaticFingerprint:
    """Test class for StaticFingerprint"""

    def test_fetch(self):
        """Test returning the configured value"""
        assert StaticFingerprint(SAMPLE_PRESTATE).fetch() == PRESTATE_BYTES

    def test_unset(self):
        """Test that a missing config value is a provider error"""
        with pytest.raises(ExternalProviderError):
            StaticFingerprint(None).fetch()


class TestFileFingerprintProvider:
    """Test class for FileFingerprintProvider"""

    def test_json_file(self, tmp_path):
        """Test reading the fingerprint from a JSON artifact"""
        path = tmp_path / "prestate-proof.json"
        path.write_text(json.dumps({"step": 0, "pre": SAMPLE_PRESTATE}))
        assert FileFingerprintProvider(str(path)).fetch() == PRESTATE_BYTES

    def test_plain_file(self, tmp_path):
        """Test reading a file holding only the hex value"""
        path = tmp_path / "prestate.txt"
        path.write_text(SAMPLE_PRESTATE + "\n")
        assert FileFingerprintProvider(str(path)).fetch() == PRESTATE_BYTES

    def test_missing_file(self, tmp_path):
        """Test that a missing artifact is a provider error"""
        with pytest.raises(ExternalProviderError):
            FileFingerprintProvider(str(tmp_path / "missing.json")).fetch()

    def test_missing_key(self, tmp_path):
        """Test that a JSON artifact without the key is a provider error"""
        path = tmp_path / "prestate-proof.json"
        path.write_text(json.dumps({"post": SAMPLE_PRESTATE}))
        with pytest.raises(ExternalProviderError):
            FileFingerprintProvider(str(path)).fetch()

    def test_invalid_json(self, tmp_path):
        """Test that a truncated JSON artifact is a provider error"""
        path = tmp_path / "prestate-proof.json"
        path.write_text('{"pre": ')
        with pytest.raises(ExternalProviderError):
            FileFingerprintProvider(str(path)).fetch()


class TestCommandFingerprintProvider:
    """Test class for CommandFingerprintProvider"""

    @patch('deployer.providers.subprocess.run')
    def test_reads_last_stdout_line(self, mock_run):
        """Test taking the fingerprint from the command output"""
        mock_run.return_value = MagicMock(stdout=f"building...\n{SAMPLE_PRESTATE}\n\n")

        provider = CommandFingerprintProvider("make cannon-prestate", timeout=60)
        assert provider.fetch() == PRESTATE_BYTES

        args, kwargs = mock_run.call_args
        assert args[0] == ["make", "cannon-prestate"]
        assert kwargs["check"] is True
        assert kwargs["timeout"] == 60

    @patch('deployer.providers.subprocess.run')
    def test_reads_artifact_after_command(self, mock_run, tmp_path):
        """Test reading the artifact the command produced"""
        path = tmp_path / "prestate-proof.json"
        path.write_text(json.dumps({"pre": SAMPLE_PRESTATE}))
        mock_run.return_value = MagicMock(stdout="")

        assert CommandFingerprintProvider("make cannon-prestate", str(path)).fetch() == PRESTATE_BYTES

    @patch('deployer.providers.subprocess.run')
    def test_command_failure(self, mock_run):
        """Test that a failing command is a provider error"""
        mock_run.side_effect = subprocess.CalledProcessError(2, ["make"], stderr="no rule")
        with pytest.raises(ExternalProviderError) as exc_info:
            CommandFingerprintProvider("make cannon-prestate").fetch()
        assert "no rule" in str(exc_info.value)

    @patch('deployer.providers.subprocess.run')
    def test_command_timeout(self, mock_run):
        """Test that a hanging command is a provider error"""
        mock_run.side_effect = subprocess.TimeoutExpired(["make"], 60)
        with pytest.raises(ExternalProviderError):
            CommandFingerprintProvider("make cannon-prestate", timeout=60).fetch()

    @patch('deployer.providers.subprocess.run')
    def test_command_not_found(self, mock_run):
        """Test that a missing executable is a provider error"""
        mock_run.side_effect = FileNotFoundError("make")
        with pytest.raises(ExternalProviderError):
            CommandFingerprintProvider("make cannon-prestate").fetch()

    @patch('deployer.providers.subprocess.run')
    def test_empty_output(self, mock_run):
        """Test that a command printing nothing is a provider error"""
        mock_run.return_value = MagicMock(stdout="\n")
        with pytest.raises(ExternalProviderError):
            CommandFingerprintProvider("make cannon-prestate").fetch()


class TestProviderForConfig:
    """Test class for provider selection"""

    def test_unrestricted_uses_config(self):
        """Test that unrestricted contexts take the fingerprint from config"""
        assert isinstance(provider_for_config(sample_config()), StaticFingerprint)

    def test_restricted_with_command(self):
        """Test that restricted contexts run the configured command"""
        config = sample_config(restrictedContext=True, prestateCommand="make cannon-prestate",
                               prestatePath="op-program/bin/prestate-proof.json")
        provider = provider_for_config(config)
        assert isinstance(provider, CommandFingerprintProvider)
        assert provider.path == "op-program/bin/prestate-proof.json"

    def test_restricted_with_path(self):
        """Test that restricted contexts can read a prebuilt artifact"""
        config = sample_config(restrictedContext=True, prestatePath="prestate.json")
        assert isinstance(provider_for_config(config), FileFingerprintProvider)

    def test_restricted_without_source(self):
        """Test that a restricted context needs a fingerprint source"""
        with pytest.raises(ConfigurationError):
            provider_for_config(sample_config(restrictedContext=True))


if __name__ == "__main__":
    pytest.main([__file__])
