#!/usr/bin/env python3
"""
Tests for function signatures and ABI helpers
"""

import pytest
from eth_abi import encode
from web3 import Web3

from deployer.signatures import (
    ZERO_ADDRESS,
    address_from_word,
    decode_arguments,
    decode_result,
    encode_call,
    normalize,
    parse_signature,
    same_value,
)

OWNER = "0x00000000000000000000000000000000000f1a11"


class TestParseSignature:
    """Test class for parse_signature"""

    def test_parse_with_outputs(self):
        """Test a read signature with an output type"""
        parsed = parse_signature("owner()(address)")
        assert parsed.name == "owner"
        assert parsed.inputs == ()
        assert parsed.outputs == ("address",)
        assert parsed.canonical == "owner()"

    def test_parse_without_outputs(self):
        """Test a mutating signature without outputs"""
        parsed = parse_signature("setProxyType(address, uint8)")
        assert parsed.inputs == ("address", "uint8")
        assert parsed.outputs == ()
        assert parsed.canonical == "setProxyType(address,uint8)"

    def test_well_known_selectors(self):
        """Test selectors against values every ERC20 tool knows"""
        assert parse_signature("owner()(address)").selector == bytes.fromhex("8da5cb5b")
        assert parse_signature("transfer(address,uint256)").selector == bytes.fromhex("a9059cbb")

    def test_malformed_signature(self):
        """Test that malformed signatures raise ValueError"""
        with pytest.raises(ValueError):
            parse_signature("owner")
        with pytest.raises(ValueError):
            parse_signature("owner(()")


class TestEncoding:
    """Test class for calldata encoding and result decoding"""

    def test_encode_then_decode_arguments(self):
        """Test that calldata carries the selector and the arguments"""
        data = encode_call("initialize(address,uint256)", (OWNER.lower(), 7))
        assert data[:4] == parse_signature("initialize(address,uint256)").selector

        owner, value = decode_arguments("initialize(address,uint256)", data)
        assert same_value(owner, OWNER)
        assert value == 7

    def test_encode_wrong_argument_count(self):
        """Test that a wrong number of arguments is rejected before encoding"""
        with pytest.raises(ValueError):
            encode_call("initialize(address,uint256)", (OWNER,))

    def test_hex_string_for_bytes_argument(self):
        """Test that hex strings are accepted for bytes32 arguments"""
        data = encode_call("setHash(bytes32)", ("0x" + "11" * 32,))
        (value,) = decode_arguments("setHash(bytes32)", data)
        assert value == b"\x11" * 32

    def test_decode_arguments_wrong_selector(self):
        """Test that calldata for another function is rejected"""
        data = encode_call("upgrade(address,address)", (OWNER, OWNER))
        with pytest.raises(ValueError):
            decode_arguments("changeProxyAdmin(address,address)", data)

    def test_decode_result(self):
        """Test single, multiple and missing outputs"""
        assert decode_result("value()(uint256)", encode(["uint256"], [42])) == 42
        assert decode_result("pair()(uint256,bool)", encode(["uint256", "bool"], [1, True])) == (1, True)
        assert decode_result("initialize()", b"") is None

    def test_decoded_addresses_are_checksummed(self):
        """Test that addresses come back in checksum form whatever eth_abi returns"""
        checksummed = Web3.to_checksum_address(OWNER)
        assert decode_result("owner()(address)", encode(["address"], [OWNER])) == checksummed
        assert decode_result("pair()(address,uint256)", encode(["address", "uint256"], [OWNER, 3])) == \
            (checksummed, 3)
        assert decode_result("owners()(address[])", encode(["address[]"], [[OWNER, ZERO_ADDRESS]])) == \
            (checksummed, ZERO_ADDRESS)

        data = encode_call("initialize(address,uint256)", (OWNER, 7))
        assert decode_arguments("initialize(address,uint256)", data)[0] == checksummed


class TestComparison:
    """Test class for value normalization"""

    def test_address_from_word(self):
        """Test extracting an address from a storage word"""
        word = bytes.fromhex(OWNER[2:]).rjust(32, b"\x00")
        assert same_value(address_from_word(word), OWNER)
        assert address_from_word(b"\x00" * 32) == ZERO_ADDRESS

    def test_normalize(self):
        """Test canonical forms"""
        assert normalize(b"\xab\xcd") == "0xabcd"
        assert normalize("0xABCD") == "0xabcd"
        assert normalize(OWNER.lower()) == normalize(OWNER.upper().replace("0X", "0x"))
        assert normalize(5) == 5

    def test_same_value(self):
        """Test comparisons across representations"""
        assert same_value(b"\x11" * 32, "0x" + "11" * 32)
        assert same_value(OWNER, OWNER.lower())
        assert not same_value(OWNER, ZERO_ADDRESS)
        assert same_value((1, b"\x01"), (1, "0x01"))


if __name__ == "__main__":
    pytest.main([__file__])
