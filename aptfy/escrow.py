"""
Escrow orchestration.

Escrows live on-chain: ``active`` until the recipient releases or the sender
cancels, both terminal and enforced by the Move module. This module validates
requests, derives the acting keyless account, submits the transition and
translates Move abort codes into the API error taxonomy.

Factory escrows (the ``escrow_v2`` module) add a release time lock, an
expiry after which anyone may refund the sender, and an optional arbitrator
who may release in the recipient's place.
"""
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Type

from loguru import logger

from aptfy.chain import errors as chain_errors
from aptfy.chain.base import ChainClient, EscrowDetails, EscrowStats, EscrowV2Details, EscrowV2Stats
from aptfy.chain.errors import ChainError, ChainTransactionError
from aptfy.chain.keyless import KeylessAccount, derive_account_from_client
from aptfy.chain.tokens import get_token_config
from aptfy.errors import (
    AlreadyFinalizedError,
    AptfyError,
    AuthorizationError,
    InsufficientFundsError,
    NotFoundError,
    UnknownError,
    ValidationError,
)
from aptfy.validation import (
    parse_amount,
    parse_escrow_id,
    parse_timestamp,
    validate_aptos_address,
)


RELEASE = 'release'
CANCEL = 'cancel'
CREATE = 'create'
CLAIM = 'claim'

ESCROW_ERRORS: Dict[str, Dict[str, Tuple[Type[AptfyError], str]]] = {
    RELEASE: {
        chain_errors.ESCROW_NOT_FOUND: (NotFoundError, 'Escrow not found'),
        chain_errors.NOT_AUTHORIZED: (AuthorizationError, 'You are not authorized to release this escrow'),
        chain_errors.ALREADY_RELEASED: (AlreadyFinalizedError, 'Escrow has already been released'),
        chain_errors.CANCELLED: (AlreadyFinalizedError, 'Escrow has already been cancelled'),
    },
    CANCEL: {
        chain_errors.ESCROW_NOT_FOUND: (NotFoundError, 'Escrow not found'),
        chain_errors.NOT_AUTHORIZED: (AuthorizationError, 'You are not authorized to cancel this escrow'),
        chain_errors.ALREADY_RELEASED: (AlreadyFinalizedError, 'Escrow has already been released'),
        chain_errors.CANCELLED: (AlreadyFinalizedError, 'Escrow has already been cancelled'),
    },
    CREATE: {
        chain_errors.INSUFFICIENT_BALANCE: (InsufficientFundsError, 'Insufficient balance to create escrow'),
        chain_errors.INVALID_AMOUNT: (ValidationError, 'Invalid amount specified'),
        chain_errors.INVALID_RECIPIENT: (ValidationError, 'Invalid recipient address'),
    },
    CLAIM: {
        chain_errors.ESCROW_NOT_FOUND: (NotFoundError, 'Escrow not found'),
        chain_errors.ALREADY_RELEASED: (AlreadyFinalizedError, 'Escrow has already been released'),
        chain_errors.CANCELLED: (AlreadyFinalizedError, 'Escrow has already been cancelled'),
    },
}


@dataclass(frozen=True)
class EscrowTransaction:
    transaction_hash: str
    explorer_url: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'transactionHash': self.transaction_hash,
            'explorerUrl': self.explorer_url,
        }


def map_chain_error(action: str, exc: ChainError) -> AptfyError:
    """Translate a chain failure for ``action`` into an API error."""
    code = getattr(exc, 'code', None)
    mapped = ESCROW_ERRORS[action].get(code) if code else None
    if mapped is None:
        return UnknownError(exc.message)
    error_class, message = mapped
    return error_class(message)


def _require_auth_fields(data: Dict[str, Any], *fields: str) -> None:
    if any(data.get(name) in (None, '') for name in fields):
        raise ValidationError(
            f"Missing required fields: {', '.join(fields)}")


def _submit(action: str, chain: ChainClient, submit) -> EscrowTransaction:
    try:
        tx_hash = submit()
    except ChainTransactionError as exc:
        logger.info('escrow {} rejected on-chain: code={} {}',
                    action, exc.code, exc.message)
        raise map_chain_error(action, exc) from exc
    except ChainError as exc:
        logger.error('escrow {} failed: {}', action, exc)
        raise map_chain_error(action, exc) from exc
    return EscrowTransaction(tx_hash, chain.get_explorer_url(tx_hash))


def prepare_transition(data: Dict[str, Any]) -> Tuple[int, KeylessAccount]:
    """Validate a release/cancel request and derive the acting account."""
    _require_auth_fields(data, 'escrowId', 'jwt', 'ephemeralKeyPairStr')
    escrow_id = parse_escrow_id(data['escrowId'])
    account = derive_account_from_client(
        data['jwt'], data['ephemeralKeyPairStr'])
    return escrow_id, account


def release_escrow(data: Dict[str, Any], chain: ChainClient) -> EscrowTransaction:
    escrow_id, account = prepare_transition(data)
    logger.info('releasing escrow {} to {}', escrow_id, account.account_address)
    result = _submit(RELEASE, chain, lambda: chain.release_escrow(account, escrow_id))
    logger.info('escrow {} released: {}', escrow_id, result.transaction_hash)
    return result


def cancel_escrow(data: Dict[str, Any], chain: ChainClient) -> EscrowTransaction:
    escrow_id, account = prepare_transition(data)
    logger.info('cancelling escrow {} by {}', escrow_id, account.account_address)
    result = _submit(CANCEL, chain, lambda: chain.cancel_escrow(account, escrow_id))
    logger.info('escrow {} cancelled: {}', escrow_id, result.transaction_hash)
    return result


def _memo(data: Dict[str, Any]) -> str:
    memo = data.get('memo') or ''
    if not isinstance(memo, str):
        raise ValidationError('Memo must be a string')
    return memo


def _create(data: Dict[str, Any], chain: ChainClient, kind: str, submit) -> EscrowTransaction:
    amount = parse_amount(data['amount'], decimals=get_token_config('APT').decimals)
    recipient = validate_aptos_address(data['recipient'])
    memo = _memo(data)

    account = derive_account_from_client(
        data['jwt'], data['ephemeralKeyPairStr'])
    logger.info('creating {} escrow: {} APT from {} to {}',
                kind, amount, account.account_address, recipient)
    result = _submit(CREATE, chain, lambda: submit(account, recipient, amount, memo))
    logger.info('{} escrow created: {}', kind, result.transaction_hash)
    return result


def create_escrow(data: Dict[str, Any], chain: ChainClient) -> EscrowTransaction:
    _require_auth_fields(data, 'recipient', 'amount',
                         'jwt', 'ephemeralKeyPairStr')
    return _create(data, chain, 'payment', chain.create_escrow)


def get_escrow(escrow_id: Any, chain: ChainClient) -> EscrowDetails:
    escrow_id = parse_escrow_id(escrow_id)
    try:
        details: Optional[EscrowDetails] = chain.get_escrow(escrow_id)
    except ChainError as exc:
        logger.error('failed to fetch escrow {}: {}', escrow_id, exc)
        raise UnknownError('Failed to fetch escrow details') from exc
    if details is None:
        raise NotFoundError('Escrow not found')
    return details


def get_escrow_stats(chain: ChainClient) -> EscrowStats:
    try:
        return chain.get_escrow_stats()
    except ChainError as exc:
        logger.error('failed to fetch escrow stats: {}', exc)
        raise UnknownError('Failed to fetch escrow statistics') from exc


def create_standard_escrow(data: Dict[str, Any], chain: ChainClient) -> EscrowTransaction:
    _require_auth_fields(data, 'recipient', 'amount',
                         'jwt', 'ephemeralKeyPairStr')
    return _create(data, chain, 'standard', chain.create_standard_escrow)


def create_time_locked_escrow(data: Dict[str, Any], chain: ChainClient,
                              now: Optional[int] = None) -> EscrowTransaction:
    """
    Lock funds until ``releaseTime``; after ``expiryTime`` (0 for never)
    anyone may refund the sender with ``claim_expired_escrow``.
    """
    _require_auth_fields(data, 'recipient', 'amount', 'releaseTime',
                         'jwt', 'ephemeralKeyPairStr')
    release_time = parse_timestamp(data['releaseTime'], 'release time')
    expiry_time = parse_timestamp(data.get('expiryTime'), 'expiry time')
    now = int(time.time()) if now is None else now
    if expiry_time:
        if expiry_time <= release_time:
            raise ValidationError('Expiry time must be after the release time')
        if expiry_time <= now:
            raise ValidationError('Expiry time must be in the future')

    return _create(data, chain, 'time-locked', lambda account, recipient, amount, memo:
                   chain.create_time_locked_escrow(
                       account, recipient, amount, memo, release_time, expiry_time))


def create_arbitrated_escrow(data: Dict[str, Any], chain: ChainClient,
                             now: Optional[int] = None) -> EscrowTransaction:
    _require_auth_fields(data, 'recipient', 'arbitrator', 'amount',
                         'jwt', 'ephemeralKeyPairStr')
    arbitrator = validate_aptos_address(data['arbitrator'])
    expiry_time = parse_timestamp(data.get('expiryTime'), 'expiry time')
    now = int(time.time()) if now is None else now
    if expiry_time and expiry_time <= now:
        raise ValidationError('Expiry time must be in the future')

    return _create(data, chain, 'arbitrated', lambda account, recipient, amount, memo:
                   chain.create_arbitrated_escrow(
                       account, recipient, arbitrator, amount, memo, expiry_time))


def release_escrow_v2(data: Dict[str, Any], chain: ChainClient) -> EscrowTransaction:
    escrow_id, account = prepare_transition(data)
    logger.info('releasing escrow v2 {} by {}', escrow_id, account.account_address)
    return _submit(RELEASE, chain, lambda: chain.release_escrow_v2(account, escrow_id))


def cancel_escrow_v2(data: Dict[str, Any], chain: ChainClient) -> EscrowTransaction:
    escrow_id, account = prepare_transition(data)
    logger.info('cancelling escrow v2 {} by {}', escrow_id, account.account_address)
    return _submit(CANCEL, chain, lambda: chain.cancel_escrow_v2(account, escrow_id))


def claim_expired_escrow(data: Dict[str, Any], chain: ChainClient) -> EscrowTransaction:
    escrow_id, account = prepare_transition(data)
    logger.info('claiming expired escrow {} for its sender', escrow_id)
    return _submit(CLAIM, chain, lambda: chain.claim_expired_escrow(account, escrow_id))


def get_escrow_v2(escrow_id: Any, chain: ChainClient) -> Dict[str, Any]:
    """Escrow details plus whether it has expired and can be claimed back."""
    escrow_id = parse_escrow_id(escrow_id)
    try:
        details: Optional[EscrowV2Details] = chain.get_escrow_v2(escrow_id)
        if details is None:
            raise NotFoundError('Escrow not found')
        expired = chain.is_expired(escrow_id)
        claimable = chain.is_claimable(escrow_id)
    except ChainError as exc:
        logger.error('failed to fetch escrow v2 {}: {}', escrow_id, exc)
        raise UnknownError('Failed to fetch escrow details') from exc

    return {**details.to_dict(), 'isExpired': expired, 'isClaimable': claimable}


def get_escrow_v2_stats(chain: ChainClient) -> EscrowV2Stats:
    try:
        return chain.get_escrow_v2_stats()
    except ChainError as exc:
        logger.error('failed to fetch escrow v2 stats: {}', exc)
        raise UnknownError('Failed to fetch escrow statistics') from exc
