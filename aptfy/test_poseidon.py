from aptos_sdk.ed25519 import PrivateKey
from django.test import SimpleTestCase

from aptfy.chain.keyless import EphemeralKeyPair, compute_nonce, identity_commitment
from aptfy.chain.poseidon import (
    BN254_SCALAR_MODULUS,
    hash_str_to_field,
    pad_and_pack_bytes_with_len,
    poseidon_hash,
)


class PoseidonHashTests(SimpleTestCase):
    def test_circomlib_vectors(self):
        self.assertEqual(
            poseidon_hash([1]),
            18586133768512220936620570745912940619677854269274689475585506675881198879027)
        self.assertEqual(
            poseidon_hash([1, 2]),
            7853200120776062878684798364095072458815029376092732009249414926327459813530)

    def test_more_than_sixteen_inputs_hash_in_halves(self):
        inputs = list(range(1, 21))

        self.assertEqual(
            poseidon_hash(inputs),
            poseidon_hash([poseidon_hash(inputs[:16]), poseidon_hash(inputs[16:])]))

    def test_rejects_out_of_field_inputs(self):
        for inputs in ([], [BN254_SCALAR_MODULUS], [-1], list(range(33))):
            with self.subTest(count=len(inputs)):
                with self.assertRaises(ValueError):
                    poseidon_hash(inputs)


class PackingTests(SimpleTestCase):
    def test_pads_to_31_byte_little_endian_chunks_and_appends_length(self):
        packed = pad_and_pack_bytes_with_len(b'\x01\x02', 93)

        self.assertEqual(packed, [0x0201, 0, 0, 2])

    def test_rejects_oversized_input(self):
        with self.assertRaises(ValueError):
            pad_and_pack_bytes_with_len(b'\x00' * 94, 93)

    def test_string_field_hashes_utf8_bytes(self):
        self.assertEqual(
            hash_str_to_field('sub', 30),
            poseidon_hash([int.from_bytes(b'sub', 'little'), 3]))


class KeylessCommitmentTests(SimpleTestCase):
    def test_nonce_packs_public_key_expiry_and_blinder(self):
        key_pair = EphemeralKeyPair(PrivateKey.random(), 2_000_000_000, b'\x05' * 31)
        epk = key_pair.public_key_bytes()

        expected = poseidon_hash(
            pad_and_pack_bytes_with_len(epk, 93)
            + [2_000_000_000, int.from_bytes(b'\x05' * 31, 'little')])

        self.assertEqual(len(epk), 34)
        self.assertEqual(key_pair.nonce, str(expected))
        self.assertEqual(compute_nonce(epk, 2_000_000_000, b'\x05' * 31), key_pair.nonce)

    def test_identity_commitment_is_32_byte_little_endian_hash(self):
        pepper = b'\x11' * 31
        aud = 'aptfy-test.apps.googleusercontent.com'

        expected = poseidon_hash([
            int.from_bytes(pepper, 'little'),
            hash_str_to_field(aud, 120),
            hash_str_to_field('110248495921238986420', 330),
            hash_str_to_field('sub', 30),
        ])
        commitment = identity_commitment(pepper, aud, 'sub', '110248495921238986420')

        self.assertEqual(len(commitment), 32)
        self.assertEqual(int.from_bytes(commitment, 'little'), expected)
        self.assertNotEqual(
            commitment, identity_commitment(pepper, aud, 'sub', '998877'))
