"""
Poseidon hashing over the BN254 scalar field, packed the way Aptos keyless
accounts expect.

Byte strings are zero padded to a fixed maximum, split into 31-byte chunks
read as little-endian integers and hashed together with their length. The
permutation itself is circomlib's, so the output matches what the keyless
circuit and the prover compute.
"""
from typing import List, Sequence, Union

from circomlibpy.poseidon import PoseidonHash


BN254_SCALAR_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

BYTES_PACKED_PER_SCALAR = 31
MAX_NUM_INPUT_SCALARS = 16
MAX_NUM_INPUT_BYTES = (MAX_NUM_INPUT_SCALARS - 1) * BYTES_PACKED_PER_SCALAR

MAX_AUD_VAL_BYTES = 120
MAX_UID_KEY_BYTES = 30
MAX_UID_VAL_BYTES = 330
MAX_COMMITTED_EPK_BYTES = 93

_hasher = PoseidonHash()


def bytes_to_int_le(data: bytes) -> int:
    return int.from_bytes(data, 'little')


def int_to_bytes_le(value: int, length: int) -> bytes:
    return int(value).to_bytes(length, 'little')


def poseidon_hash(inputs: Sequence[Union[int, str]]) -> int:
    """Hash up to 32 field elements; more than 16 are hashed as two halves."""
    scalars = [int(value) for value in inputs]
    if not scalars:
        raise ValueError('Poseidon needs at least one input')
    if any(not 0 <= value < BN254_SCALAR_MODULUS for value in scalars):
        raise ValueError('Poseidon inputs must be BN254 scalars')

    if len(scalars) <= MAX_NUM_INPUT_SCALARS:
        return _hasher.hash(len(scalars), scalars)
    if len(scalars) <= 2 * MAX_NUM_INPUT_SCALARS:
        first = poseidon_hash(scalars[:MAX_NUM_INPUT_SCALARS])
        second = poseidon_hash(scalars[MAX_NUM_INPUT_SCALARS:])
        return poseidon_hash([first, second])
    raise ValueError(f'Unable to hash {len(scalars)} inputs with Poseidon')


def pack_bytes(data: bytes) -> List[int]:
    if len(data) > MAX_NUM_INPUT_BYTES:
        raise ValueError(f'Cannot pack {len(data)} bytes; at most {MAX_NUM_INPUT_BYTES} fit')
    return [
        bytes_to_int_le(data[start:start + BYTES_PACKED_PER_SCALAR])
        for start in range(0, len(data), BYTES_PACKED_PER_SCALAR)
    ]


def pad_and_pack_bytes(data: bytes, max_size: int) -> List[int]:
    if len(data) > max_size:
        raise ValueError(f'Input of {len(data)} bytes exceeds the maximum of {max_size}')
    return pack_bytes(data.ljust(max_size, b'\x00'))


def pad_and_pack_bytes_with_len(data: bytes, max_size: int) -> List[int]:
    return pad_and_pack_bytes(data, max_size) + [len(data)]


def hash_bytes_with_len(data: bytes, max_size: int) -> int:
    return poseidon_hash(pad_and_pack_bytes_with_len(data, max_size))


def hash_str_to_field(value: str, max_size: int) -> int:
    return hash_bytes_with_len(value.encode('utf-8'), max_size)
