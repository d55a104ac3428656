import json
import time
from unittest.mock import MagicMock, patch

import httpx
import jwt
from aptos_sdk.bcs import Serializer
from aptos_sdk.ed25519 import PrivateKey
from django.test import SimpleTestCase, TestCase

from aptfy.chain.keyless import (
    EphemeralKeyPair,
    Groth16Proof,
    KeylessServiceClient,
    ZeroKnowledgeSig,
    decode_identity_token,
    derive_keyless_account,
    transaction_signing_message,
)
from aptfy.errors import AuthenticationError, UnknownError, ValidationError
from aptfy.sessions import KeylessSession


CLIENT_ID = 'aptfy-test.apps.googleusercontent.com'
SIGNING_SECRET = 'aptfy-test-signing-secret-0123456789abcdef'


def issue_token(token_nonce: str, **overrides) -> str:
    claims = {
        'iss': 'https://accounts.google.com',
        'sub': '110248495921238986420',
        'aud': CLIENT_ID,
        'exp': int(time.time()) + 3600,
        'iat': int(time.time()),
        'nonce': token_nonce,
        'email': 'Alice@Example.com',
    }
    claims.update(overrides)
    claims = {key: value for key, value in claims.items() if value is not None}
    return jwt.encode(claims, SIGNING_SECRET, algorithm='HS256')


def fake_service(address=None) -> MagicMock:
    service = MagicMock()
    pepper = {'pepper': '0x' + '11' * 31}
    if address:
        pepper['address'] = address
    service.fetch_pepper.return_value = pepper
    service.fetch_proof.return_value = ZeroKnowledgeSig(
        proof=Groth16Proof(a=b'\x01' * 32, b=b'\x02' * 64, c=b'\x03' * 32),
        exp_horizon_secs=10_000_000,
    )
    return service


class FixedRawTransaction:
    def serialize(self, serializer: Serializer) -> None:
        serializer.fixed_bytes(b'raw-transaction')


class EphemeralKeyPairTests(SimpleTestCase):
    def test_client_payload_formats(self):
        key_pair = EphemeralKeyPair.generate()
        payloads = [
            key_pair.to_hex(),
            '0x' + key_pair.to_hex(),
            json.dumps({'data': list(key_pair.to_bytes())}),
            key_pair.to_storage(),
        ]

        for payload in payloads:
            with self.subTest(payload=type(payload).__name__):
                restored = EphemeralKeyPair.from_client_payload(payload)
                self.assertEqual(restored.nonce, key_pair.nonce)
                self.assertEqual(restored.expiry_date_secs, key_pair.expiry_date_secs)
                self.assertEqual(restored.blinder, key_pair.blinder)

    def test_rejects_garbage_payload(self):
        for payload in ('not-hex', 'abcd', '{"bytes": 12}', 42, None):
            with self.subTest(payload=payload):
                with self.assertRaisesMessage(ValidationError, 'Invalid ephemeral key pair'):
                    EphemeralKeyPair.from_client_payload(payload)

    def test_nonce_commits_to_blinder_and_expiry(self):
        private_key = PrivateKey.random()
        base = EphemeralKeyPair(private_key, 2_000_000_000, b'\x00' * 31)

        self.assertEqual(
            base.nonce, EphemeralKeyPair(private_key, 2_000_000_000, b'\x00' * 31).nonce)
        self.assertNotEqual(
            base.nonce, EphemeralKeyPair(private_key, 2_000_000_000, b'\x01' * 31).nonce)
        self.assertNotEqual(
            base.nonce, EphemeralKeyPair(private_key, 2_000_000_001, b'\x00' * 31).nonce)
        self.assertTrue(base.nonce.isdigit())

    def test_expiry(self):
        key_pair = EphemeralKeyPair(PrivateKey.random(), 1_000, b'\x00' * 31)

        self.assertTrue(key_pair.is_expired())
        self.assertFalse(key_pair.is_expired(now=999))


class IdentityTokenTests(SimpleTestCase):
    def test_decodes_claims(self):
        claims = decode_identity_token(issue_token('123'))

        self.assertEqual(claims['nonce'], '123')
        self.assertEqual(claims['aud'], CLIENT_ID)

    def test_rejects_malformed_tokens(self):
        for token in (None, '', 'not-a-jwt', 'a.b', 'a.b.c'):
            with self.subTest(token=token):
                with self.assertRaises(AuthenticationError):
                    decode_identity_token(token)

    def test_rejects_expired_token(self):
        token = issue_token('123', exp=int(time.time()) - 60)

        with self.assertRaisesMessage(AuthenticationError, 'JWT has expired'):
            decode_identity_token(token)

    def test_requires_nonce_claim(self):
        token = issue_token('123', nonce=None)

        with self.assertRaisesMessage(AuthenticationError, 'Missing required JWT claim: nonce'):
            decode_identity_token(token)

    def test_rejects_other_audience(self):
        token = issue_token('123', aud='someone-else.apps.googleusercontent.com')

        with self.assertRaisesMessage(AuthenticationError, 'JWT audience mismatch'):
            decode_identity_token(token)


class KeylessDerivationTests(SimpleTestCase):
    def test_nonce_mismatch_fails_before_services(self):
        key_pair = EphemeralKeyPair.generate()
        service = fake_service()

        with self.assertRaisesMessage(
                AuthenticationError, 'JWT nonce does not match the ephemeral key pair'):
            derive_keyless_account(issue_token('999'), key_pair, service=service)

        service.fetch_pepper.assert_not_called()
        service.fetch_proof.assert_not_called()

    def test_expired_key_pair(self):
        key_pair = EphemeralKeyPair(PrivateKey.random(), int(time.time()) - 1, b'\x00' * 31)

        with self.assertRaisesMessage(AuthenticationError, 'Ephemeral key pair has expired'):
            derive_keyless_account(issue_token(key_pair.nonce), key_pair, service=fake_service())

    def test_address_depends_on_identity_not_session_key(self):
        first = EphemeralKeyPair.generate()
        second = EphemeralKeyPair.generate()

        account_one = derive_keyless_account(
            issue_token(first.nonce), first, service=fake_service())
        account_two = derive_keyless_account(
            issue_token(second.nonce), second, service=fake_service())
        other_user = derive_keyless_account(
            issue_token(first.nonce, sub='998877'), first, service=fake_service())

        self.assertEqual(account_one.account_address, account_two.account_address)
        self.assertNotEqual(account_one.account_address, other_user.account_address)
        self.assertRegex(account_one.account_address, r'^0x[0-9a-f]{64}$')
        self.assertEqual(account_one.email, 'alice@example.com')

    def test_uses_address_from_pepper_service(self):
        key_pair = EphemeralKeyPair.generate()
        address = '0x' + '4' * 64

        account = derive_keyless_account(
            issue_token(key_pair.nonce), key_pair, service=fake_service(address=address))

        self.assertEqual(account.account_address, address)

    def test_sign_transaction_uses_ephemeral_key(self):
        key_pair = EphemeralKeyPair.generate()
        account = derive_keyless_account(
            issue_token(key_pair.nonce), key_pair, service=fake_service())
        raw = FixedRawTransaction()

        signature = account.sign(transaction_signing_message(raw, account.proof.proof))
        self.assertTrue(key_pair.public_key.verify(
            transaction_signing_message(raw, account.proof.proof),
            signature.ephemeral_signature,
        ))

        serializer = Serializer()
        account.sign_transaction(raw).serialize(serializer)
        # single sender, single key, keyless public key
        self.assertEqual(serializer.output()[:3], b'\x04\x02\x03')


class KeylessServiceClientTests(SimpleTestCase):
    def setUp(self) -> None:
        self.key_pair = EphemeralKeyPair.generate()
        self.service = KeylessServiceClient(
            pepper_url='https://pepper.test/v0/fetch',
            prover_url='https://prover.test/v0/prove',
            timeout=5,
        )

    def _response(self, url, status_code=200, **kwargs):
        return httpx.Response(status_code, request=httpx.Request('POST', url), **kwargs)

    def test_fetch_proof_parses_groth16_points(self):
        body = {
            'proof': {'a': '01' * 32, 'b': '02' * 64, 'c': '03' * 32},
            'training_wheels_signature': 'ab' * 64,
        }
        with patch('aptfy.chain.keyless.httpx.post',
                   return_value=self._response(self.service.prover_url, json=body)) as post:
            proof = self.service.fetch_proof('a.b.c', self.key_pair, b'\x11' * 31)

        self.assertEqual(proof.proof.b, b'\x02' * 64)
        self.assertEqual(proof.training_wheels_signature, b'\xab' * 64)
        sent = post.call_args.kwargs['json']
        self.assertEqual(sent['epk_blinder'], self.key_pair.blinder.hex())
        self.assertEqual(sent['pepper'], '11' * 31)

    def test_rejected_token_is_authentication_error(self):
        response = self._response(self.service.pepper_url, 400, text='invalid jwt')
        with patch('aptfy.chain.keyless.httpx.post', return_value=response):
            with self.assertRaises(AuthenticationError):
                self.service.fetch_pepper('a.b.c', self.key_pair)

    def test_unreachable_service(self):
        with patch('aptfy.chain.keyless.httpx.post',
                   side_effect=httpx.ConnectError('connection refused')):
            with self.assertRaisesMessage(UnknownError, 'Keyless service unavailable'):
                self.service.fetch_pepper('a.b.c', self.key_pair)


class KeylessSessionTests(TestCase):
    def test_pending_key_pair_is_consumed_once(self):
        session = self.client.session
        keyless_session = KeylessSession(session)
        key_pair = EphemeralKeyPair.generate()

        nonce = keyless_session.begin_login(key_pair)

        self.assertEqual(keyless_session.consume_pending(nonce).nonce, nonce)
        self.assertIsNone(keyless_session.consume_pending(nonce))

    def test_expired_entries_are_dropped(self):
        session = self.client.session
        keyless_session = KeylessSession(session)
        expired = EphemeralKeyPair(PrivateKey.random(), int(time.time()) - 5, b'\x00' * 31)
        live = EphemeralKeyPair.generate()

        keyless_session.activate(expired, 'a.b.c', '0x' + 'a' * 64)
        keyless_session.activate(live, 'a.b.c', '0x' + 'b' * 64, 'bob@example.com')

        self.assertIsNone(keyless_session.get_active(expired.nonce))
        self.assertEqual(keyless_session.get_active(live.nonce)['email'], 'bob@example.com')
        self.assertEqual(keyless_session.get_key_pair(live.nonce).nonce, live.nonce)

        keyless_session.end(live.nonce)
        self.assertIsNone(keyless_session.get_key_pair(live.nonce))
