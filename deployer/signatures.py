"""
Function signatures and ABI encoding
====================================

Calls are described with compact signatures of the form
``name(inputTypes)(outputTypes)``, e.g. ``owner()(address)`` or
``setProxyType(address,uint8)``. The output part is optional for
mutating calls.
"""

import re
from dataclasses import dataclass
from typing import Any, Sequence, Tuple

from eth_abi import decode, encode
from web3 import Web3

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
ZERO_BYTES32 = b"\x00" * 32

_SIGNATURE_RE = re.compile(r"^\s*(\w+)\(([^()]*)\)(?:\(([^()]*)\))?\s*$")


def _split_types(types: str) -> Tuple[str, ...]:
    return tuple(t.strip() for t in types.split(",") if t.strip())


@dataclass(frozen=True)
class FunctionSignature:
    """Parsed ``name(inputs)(outputs)`` signature"""
    name: str
    inputs: Tuple[str, ...]
    outputs: Tuple[str, ...]

    @property
    def canonical(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def selector(self) -> bytes:
        return bytes(Web3.keccak(text=self.canonical)[:4])


def parse_signature(signature: str) -> FunctionSignature:
    """Parse a signature string, raising ValueError when it is malformed"""
    match = _SIGNATURE_RE.match(signature)
    if match is None:
        raise ValueError(f"Malformed function signature: {signature!r}")
    name, inputs, outputs = match.groups()
    return FunctionSignature(name, _split_types(inputs), _split_types(outputs or ""))


def encode_call(signature: str, args: Sequence[Any] = ()) -> bytes:
    """
    Build calldata for a call

    Args:
        signature: ``name(inputs)`` or ``name(inputs)(outputs)``
        args: positional arguments matching the input types

    Returns:
        4-byte selector followed by the ABI-encoded arguments
    """
    parsed = parse_signature(signature)
    if len(args) != len(parsed.inputs):
        raise ValueError(
            f"{parsed.canonical} takes {len(parsed.inputs)} arguments, got {len(args)}"
        )
    values = [prepare_argument(t, a) for t, a in zip(parsed.inputs, args)]
    return parsed.selector + encode(list(parsed.inputs), values)


def decode_result(signature: str, raw: bytes) -> Any:
    """Decode return data; a single output is unwrapped, none gives None"""
    parsed = parse_signature(signature)
    if not parsed.outputs:
        return None
    values = _checksum_all(parsed.outputs, decode(list(parsed.outputs), bytes(raw)))
    if len(values) == 1:
        return values[0]
    return tuple(values)


def decode_arguments(signature: str, calldata: bytes) -> Tuple[Any, ...]:
    """Decode the arguments of calldata produced by encode_call"""
    parsed = parse_signature(signature)
    data = bytes(calldata)
    if data[:4] != parsed.selector:
        raise ValueError(f"Calldata does not start with the selector of {parsed.canonical}")
    return _checksum_all(parsed.inputs, decode(list(parsed.inputs), data[4:]))


def _checksum(abi_type: str, value: Any) -> Any:
    if abi_type == "address":
        return Web3.to_checksum_address(value)
    if abi_type.endswith("]"):
        inner = abi_type[:abi_type.rindex("[")]
        return tuple(_checksum(inner, v) for v in value)
    return value


def _checksum_all(types: Sequence[str], values: Sequence[Any]) -> Tuple[Any, ...]:
    # eth_abi returns lowercase addresses in some releases and checksummed ones in others
    return tuple(_checksum(t, v) for t, v in zip(types, values))


def prepare_argument(abi_type: str, value: Any) -> Any:
    if abi_type == "address" and isinstance(value, str):
        return Web3.to_checksum_address(value)
    if abi_type.startswith("bytes") and isinstance(value, str):
        return bytes.fromhex(value[2:] if value.startswith("0x") else value)
    return value


def address_from_word(word: bytes) -> str:
    """Extract the address packed in the low 20 bytes of a storage word"""
    return Web3.to_checksum_address(bytes(word)[-20:].rjust(20, b"\x00"))


def normalize(value: Any) -> Any:
    """Canonical form used when comparing expected and observed values"""
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str) and Web3.is_address(value):
        return Web3.to_checksum_address(value)
    if isinstance(value, str) and value.startswith("0x"):
        return value.lower()
    if isinstance(value, tuple):
        return tuple(normalize(v) for v in value)
    return value


def same_value(left: Any, right: Any) -> bool:
    return normalize(left) == normalize(right)
