"""
Keyless accounts for Aptos.

A keyless account signs with a short-lived ephemeral key pair whose nonce
was bound into an OAuth identity token at login time. The account address
depends only on the token's issuer, subject and audience (plus a pepper
held by the pepper service), so the same Google identity always maps to
the same on-chain account and no long-lived private key is stored.

Flow:
1. ``EphemeralKeyPair.generate()`` before the OAuth redirect; its
   ``nonce`` goes into the authorization URL.
2. After the redirect, ``derive_keyless_account(jwt, key_pair)`` checks
   the token against the key pair, fetches the pepper and the Groth16
   proof from the keyless services and returns a ``KeylessAccount``.
3. ``KeylessAccount.sign_transaction(raw)`` builds the SDK authenticator.
"""
import base64
import hashlib
import json
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import jwt
from aptos_sdk.account_address import AccountAddress
from aptos_sdk.authenticator import (
    AccountAuthenticator,
    Authenticator,
    SingleKeyAuthenticator,
    SingleSenderAuthenticator,
)
from aptos_sdk.bcs import Deserializer, Serializer
from aptos_sdk.ed25519 import PrivateKey
from django.conf import settings
from loguru import logger

from aptfy.chain.poseidon import (
    MAX_AUD_VAL_BYTES,
    MAX_COMMITTED_EPK_BYTES,
    MAX_UID_KEY_BYTES,
    MAX_UID_VAL_BYTES,
    bytes_to_int_le,
    hash_str_to_field,
    int_to_bytes_le,
    pad_and_pack_bytes_with_len,
    poseidon_hash,
)
from aptfy.errors import AuthenticationError, UnknownError, ValidationError


ED25519_VARIANT = 0
ANY_KEY_KEYLESS_VARIANT = 3
ZERO_KNOWLEDGE_CERT_VARIANT = 0
GROTH16_VARIANT = 0
SINGLE_KEY_SCHEME = b'\x02'

BLINDER_LENGTH = 31
ID_COMMITMENT_LENGTH = 32
REQUIRED_CLAIMS = ('iss', 'sub', 'aud', 'exp', 'nonce')

TRANSACTION_AND_PROOF_SALT = b'APTOS::TransactionAndProof'


def _strip_hex(value: str) -> str:
    return value[2:] if value.startswith('0x') else value


def _b64url_decode(segment: str) -> bytes:
    return base64.urlsafe_b64decode(segment + '=' * (-len(segment) % 4))


def compute_nonce(ephemeral_public_key: bytes, expiry_date_secs: int, blinder: bytes) -> str:
    """Commit to the ephemeral public key, its expiry and the blinder."""
    fields = pad_and_pack_bytes_with_len(ephemeral_public_key, MAX_COMMITTED_EPK_BYTES)
    fields.append(int(expiry_date_secs))
    fields.append(bytes_to_int_le(blinder))
    return str(poseidon_hash(fields))


def identity_commitment(pepper: bytes, aud: str, uid_key: str, uid_val: str) -> bytes:
    fields = [
        bytes_to_int_le(pepper),
        hash_str_to_field(aud, MAX_AUD_VAL_BYTES),
        hash_str_to_field(uid_val, MAX_UID_VAL_BYTES),
        hash_str_to_field(uid_key, MAX_UID_KEY_BYTES),
    ]
    return int_to_bytes_le(poseidon_hash(fields), ID_COMMITMENT_LENGTH)


class EphemeralKeyPair:
    """Ed25519 key pair bound to an expiry and a random blinder."""

    def __init__(self, private_key: PrivateKey, expiry_date_secs: int, blinder: bytes):
        if len(blinder) != BLINDER_LENGTH:
            raise ValueError(f'Blinder must be {BLINDER_LENGTH} bytes')
        self.private_key = private_key
        self.expiry_date_secs = int(expiry_date_secs)
        self.blinder = bytes(blinder)
        self.nonce = compute_nonce(
            self.public_key_bytes(), self.expiry_date_secs, self.blinder)

    @classmethod
    def generate(cls, expiry_date_secs: Optional[int] = None) -> 'EphemeralKeyPair':
        if expiry_date_secs is None:
            expiry_date_secs = int(time.time()) + \
                settings.APTFY_EPHEMERAL_KEY_TTL_SECONDS
        return cls(PrivateKey.random(), expiry_date_secs, secrets.token_bytes(BLINDER_LENGTH))

    @property
    def public_key(self):
        return self.private_key.public_key()

    def public_key_bytes(self) -> bytes:
        """BCS encoding of the ephemeral public key enum."""
        ser = Serializer()
        ser.uleb128(ED25519_VARIANT)
        self.public_key.serialize(ser)
        return ser.output()

    def is_expired(self, now: Optional[int] = None) -> bool:
        now = int(time.time()) if now is None else now
        return self.expiry_date_secs <= now

    def sign(self, message: bytes):
        return self.private_key.sign(message)

    def serialize(self, serializer: Serializer) -> None:
        serializer.uleb128(ED25519_VARIANT)
        self.private_key.serialize(serializer)
        serializer.u64(self.expiry_date_secs)
        serializer.fixed_bytes(self.blinder)

    @staticmethod
    def deserialize(deserializer: Deserializer) -> 'EphemeralKeyPair':
        variant = deserializer.uleb128()
        if variant != ED25519_VARIANT:
            raise ValueError(f'Unsupported ephemeral key variant: {variant}')
        private_key = PrivateKey.deserialize(deserializer)
        expiry_date_secs = deserializer.u64()
        blinder = deserializer.fixed_bytes(BLINDER_LENGTH)
        return EphemeralKeyPair(private_key, expiry_date_secs, blinder)

    def to_bytes(self) -> bytes:
        ser = Serializer()
        self.serialize(ser)
        return ser.output()

    @classmethod
    def from_bytes(cls, data: bytes) -> 'EphemeralKeyPair':
        return cls.deserialize(Deserializer(data))

    def to_hex(self) -> str:
        return self.to_bytes().hex()

    def to_storage(self) -> Dict[str, Any]:
        return {
            'bytes': self.to_hex(),
            'nonce': self.nonce,
            'expiryDateSecs': self.expiry_date_secs,
        }

    @classmethod
    def from_client_payload(cls, payload: Any) -> 'EphemeralKeyPair':
        """
        Rebuild a key pair sent by a client.

        Accepts a hex string, a JSON object ``{"data": [..bytes..]}`` (a
        serialized byte buffer) or ``{"bytes": "<hex>"}`` as produced by
        ``to_storage``.
        """
        try:
            decoded = payload
            if isinstance(payload, str) and payload.strip().startswith('{'):
                decoded = json.loads(payload)

            if isinstance(decoded, dict):
                if 'data' in decoded:
                    raw = bytes(decoded['data'])
                else:
                    raw = bytes.fromhex(_strip_hex(decoded['bytes']))
            elif isinstance(decoded, str):
                raw = bytes.fromhex(_strip_hex(decoded.strip()))
            else:
                raise TypeError(f'Unsupported key pair payload: {type(decoded).__name__}')

            return cls.from_bytes(raw)
        except Exception as exc:  # bcs raises bare Exception on truncated input
            logger.debug('ephemeral key pair rejected: {}', exc)
            raise ValidationError('Invalid ephemeral key pair') from exc


@dataclass(frozen=True)
class Groth16Proof:
    a: bytes
    b: bytes
    c: bytes

    @classmethod
    def from_dict(cls, data: Dict[str, str]) -> 'Groth16Proof':
        return cls(
            a=bytes.fromhex(_strip_hex(data['a'])),
            b=bytes.fromhex(_strip_hex(data['b'])),
            c=bytes.fromhex(_strip_hex(data['c'])),
        )

    def serialize(self, serializer: Serializer) -> None:
        serializer.uleb128(GROTH16_VARIANT)
        serializer.fixed_bytes(self.a)
        serializer.fixed_bytes(self.b)
        serializer.fixed_bytes(self.c)


@dataclass(frozen=True)
class ZeroKnowledgeSig:
    proof: Groth16Proof
    exp_horizon_secs: int
    training_wheels_signature: Optional[bytes] = None

    def serialize(self, serializer: Serializer) -> None:
        self.proof.serialize(serializer)
        serializer.u64(self.exp_horizon_secs)
        # extra_field and override_aud_val are never set
        serializer.bool(False)
        serializer.bool(False)
        if self.training_wheels_signature is None:
            serializer.bool(False)
        else:
            serializer.bool(True)
            serializer.uleb128(ED25519_VARIANT)
            serializer.to_bytes(self.training_wheels_signature)


class KeylessPublicKey:
    def __init__(self, iss: str, idc: bytes):
        self.iss = iss
        self.idc = idc

    def serialize(self, serializer: Serializer) -> None:
        serializer.uleb128(ANY_KEY_KEYLESS_VARIANT)
        serializer.str(self.iss)
        serializer.to_bytes(self.idc)

    def to_bytes(self) -> bytes:
        ser = Serializer()
        self.serialize(ser)
        return ser.output()

    def derive_address(self) -> AccountAddress:
        auth_key = hashlib.sha3_256(self.to_bytes() + SINGLE_KEY_SCHEME).digest()
        return AccountAddress(auth_key)


class KeylessSignature:
    def __init__(self, certificate: ZeroKnowledgeSig, jwt_header_json: str,
                 exp_date_secs: int, ephemeral_public_key, ephemeral_signature):
        self.certificate = certificate
        self.jwt_header_json = jwt_header_json
        self.exp_date_secs = exp_date_secs
        self.ephemeral_public_key = ephemeral_public_key
        self.ephemeral_signature = ephemeral_signature

    def serialize(self, serializer: Serializer) -> None:
        serializer.uleb128(ANY_KEY_KEYLESS_VARIANT)
        serializer.uleb128(ZERO_KNOWLEDGE_CERT_VARIANT)
        self.certificate.serialize(serializer)
        serializer.str(self.jwt_header_json)
        serializer.u64(self.exp_date_secs)
        serializer.uleb128(ED25519_VARIANT)
        self.ephemeral_public_key.serialize(serializer)
        serializer.uleb128(ED25519_VARIANT)
        self.ephemeral_signature.serialize(serializer)


class KeylessSingleKeyAuthenticator(SingleKeyAuthenticator):
    """Single-key authenticator carrying a keyless key and signature."""

    def __init__(self, public_key: KeylessPublicKey, signature: KeylessSignature):
        self.public_key = public_key
        self.signature = signature

    def serialize(self, serializer: Serializer) -> None:
        serializer.struct(self.public_key)
        serializer.struct(self.signature)


def transaction_signing_message(raw_transaction, proof: Optional[Groth16Proof]) -> bytes:
    ser = Serializer()
    raw_transaction.serialize(ser)
    if proof is None:
        ser.bool(False)
    else:
        ser.bool(True)
        proof.serialize(ser)
    return hashlib.sha3_256(TRANSACTION_AND_PROOF_SALT).digest() + ser.output()


def decode_identity_token(token: Any) -> Dict[str, Any]:
    """
    Decode an OAuth ID token without verifying its signature.

    The issuer signature is checked by the prover service and on-chain;
    here the token only has to be well formed, unexpired and carry the
    claims keyless derivation depends on.
    """
    if not token or not isinstance(token, str) or token.count('.') != 2:
        raise AuthenticationError('Invalid JWT format')

    try:
        header = jwt.get_unverified_header(token)
        claims = jwt.decode(
            token,
            options={
                'verify_signature': False,
                'verify_exp': True,
                'verify_aud': False,
                'verify_iat': False,
                'require': list(REQUIRED_CLAIMS),
            },
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError('JWT has expired') from exc
    except jwt.MissingRequiredClaimError as exc:
        raise AuthenticationError(
            f'Missing required JWT claim: {exc.claim}') from exc
    except jwt.InvalidTokenError as exc:
        raise AuthenticationError('Invalid JWT encoding') from exc

    if not header.get('alg'):
        raise AuthenticationError('Invalid JWT header')
    missing = [claim for claim in REQUIRED_CLAIMS if not claims.get(claim)]
    if missing:
        raise AuthenticationError(
            f'Missing required JWT claim: {missing[0]}')

    expected_aud = getattr(settings, 'APTFY_GOOGLE_CLIENT_ID', '')
    if expected_aud and _audience(claims) != expected_aud:
        raise AuthenticationError('JWT audience mismatch')
    return claims


def _audience(claims: Dict[str, Any]) -> str:
    aud = claims['aud']
    if isinstance(aud, list):
        return aud[0] if aud else ''
    return aud


class KeylessServiceClient:
    """HTTP client for the keyless pepper and prover services."""

    def __init__(self, pepper_url: Optional[str] = None, prover_url: Optional[str] = None,
                 timeout: Optional[int] = None):
        self.pepper_url = pepper_url or settings.APTFY_KEYLESS_PEPPER_URL
        self.prover_url = prover_url or settings.APTFY_KEYLESS_PROVER_URL
        self.timeout = timeout or settings.APTFY_KEYLESS_TIMEOUT_SECONDS

    def _post(self, url: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = httpx.post(url, json=body, timeout=self.timeout)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.info('keyless service {} rejected request: {} {}',
                        url, exc.response.status_code, exc.response.text)
            raise AuthenticationError(
                'Identity token was rejected by the keyless service') from exc
        except httpx.HTTPError as exc:
            logger.error('keyless service {} unreachable: {}', url, exc)
            raise UnknownError('Keyless service unavailable') from exc
        return response.json()

    def _base_request(self, token: str, key_pair: EphemeralKeyPair, uid_key: str) -> Dict[str, Any]:
        return {
            'jwt_b64': token,
            'epk': key_pair.public_key_bytes().hex(),
            'epk_blinder': key_pair.blinder.hex(),
            'exp_date_secs': key_pair.expiry_date_secs,
            'uid_key': uid_key,
        }

    def fetch_pepper(self, token: str, key_pair: EphemeralKeyPair, uid_key: str = 'sub') -> Dict[str, Any]:
        body = self._base_request(token, key_pair, uid_key)
        body['derivation_path'] = None
        return self._post(self.pepper_url, body)

    def fetch_proof(self, token: str, key_pair: EphemeralKeyPair, pepper: bytes,
                    uid_key: str = 'sub') -> ZeroKnowledgeSig:
        exp_horizon_secs = settings.APTFY_KEYLESS_EXP_HORIZON_SECONDS
        body = self._base_request(token, key_pair, uid_key)
        body['exp_horizon_secs'] = exp_horizon_secs
        body['pepper'] = pepper.hex()
        data = self._post(self.prover_url, body)
        try:
            proof = Groth16Proof.from_dict(data['proof'])
        except (KeyError, TypeError, ValueError) as exc:
            raise UnknownError('Prover returned an unexpected response') from exc
        training_wheels = data.get('training_wheels_signature')
        return ZeroKnowledgeSig(
            proof=proof,
            exp_horizon_secs=exp_horizon_secs,
            training_wheels_signature=bytes.fromhex(
                _strip_hex(training_wheels)) if training_wheels else None,
        )


class KeylessAccount:
    """An account that signs with an ephemeral key plus a ZK proof of identity."""

    def __init__(self, token: str, claims: Dict[str, Any], ephemeral_key_pair: EphemeralKeyPair,
                 pepper: bytes, proof: ZeroKnowledgeSig, address: Optional[AccountAddress] = None,
                 uid_key: str = 'sub'):
        self.jwt = token
        self.claims = claims
        self.ephemeral_key_pair = ephemeral_key_pair
        self.pepper = pepper
        self.proof = proof
        self.uid_key = uid_key
        self.public_key = KeylessPublicKey(
            claims['iss'],
            identity_commitment(pepper, _audience(claims), uid_key, str(claims[uid_key])),
        )
        self._address = address or self.public_key.derive_address()
        self.jwt_header_json = _b64url_decode(token.split('.')[0]).decode('utf-8')

    def address(self) -> AccountAddress:
        return self._address

    @property
    def account_address(self) -> str:
        return str(self._address)

    @property
    def email(self) -> Optional[str]:
        email = self.claims.get('email')
        return email.lower() if email else None

    def sign(self, message: bytes) -> KeylessSignature:
        return KeylessSignature(
            certificate=self.proof,
            jwt_header_json=self.jwt_header_json,
            exp_date_secs=self.ephemeral_key_pair.expiry_date_secs,
            ephemeral_public_key=self.ephemeral_key_pair.public_key,
            ephemeral_signature=self.ephemeral_key_pair.sign(message),
        )

    def sign_transaction(self, raw_transaction) -> Authenticator:
        message = transaction_signing_message(raw_transaction, self.proof.proof)
        single_key = KeylessSingleKeyAuthenticator(self.public_key, self.sign(message))
        return Authenticator(SingleSenderAuthenticator(AccountAuthenticator(single_key)))


def derive_keyless_account(token: str, ephemeral_key_pair: EphemeralKeyPair,
                           service: Optional[KeylessServiceClient] = None) -> KeylessAccount:
    """
    Derive the keyless account for an identity token.

    Raises:
        AuthenticationError: token malformed or expired, key pair expired,
            or the token nonce does not commit to this key pair
    """
    claims = decode_identity_token(token)

    if ephemeral_key_pair.is_expired():
        raise AuthenticationError(
            'Ephemeral key pair has expired. Please sign in again.')
    if str(claims['nonce']) != ephemeral_key_pair.nonce:
        raise AuthenticationError(
            'JWT nonce does not match the ephemeral key pair')

    service = service or KeylessServiceClient()
    pepper_response = service.fetch_pepper(token, ephemeral_key_pair)
    try:
        pepper = bytes.fromhex(_strip_hex(pepper_response['pepper']))
    except (KeyError, TypeError, ValueError) as exc:
        raise AuthenticationError('Pepper service returned no pepper') from exc

    address = None
    if pepper_response.get('address'):
        address = AccountAddress.from_str(pepper_response['address'])

    proof = service.fetch_proof(token, ephemeral_key_pair, pepper)
    account = KeylessAccount(
        token, claims, ephemeral_key_pair, pepper, proof, address=address)
    logger.debug('derived keyless account {} for issuer {}',
                 account.account_address, claims['iss'])
    return account


def derive_account_from_client(token: Any, ephemeral_key_pair_str: Any) -> KeylessAccount:
    """Deserialize client key material and derive the acting account."""
    key_pair = EphemeralKeyPair.from_client_payload(ephemeral_key_pair_str)
    return derive_keyless_account(token, key_pair)
