"""
Input validation helpers.

Each helper either returns the normalized value or raises
``aptfy.errors.ValidationError`` with a message suitable for the client.
"""
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from django.conf import settings
from django.core.exceptions import ValidationError as DjangoValidationError
from django.core.validators import EmailValidator

from aptfy.errors import ValidationError


APTOS_ADDRESS_RE = re.compile(r'^0x[a-fA-F0-9]{64}$')
TRANSACTION_HASH_RE = re.compile(r'^0x[a-fA-F0-9]{64}$')
NONCE_RE = re.compile(r'^[A-Za-z0-9_-]+$')
UNSIGNED_INT_RE = re.compile(r'^[0-9]+$')
MAX_U64 = 2 ** 64 - 1

MAX_EMAIL_LENGTH = 254

EMAIL_DOMAIN_TYPOS = {
    'gmial.com': 'gmail.com',
    'gmai.com': 'gmail.com',
    'yahooo.com': 'yahoo.com',
    'homail.com': 'hotmail.com',
}

_email_validator = EmailValidator()


def validate_email(email: Any) -> str:
    if not email or not isinstance(email, str):
        raise ValidationError('Email is required')

    normalized = email.strip().lower()
    if len(normalized) > MAX_EMAIL_LENGTH:
        raise ValidationError('Email address is too long')

    try:
        _email_validator(normalized)
    except DjangoValidationError as exc:
        raise ValidationError('Invalid email format') from exc

    domain = normalized.rsplit('@', 1)[1]
    if domain in EMAIL_DOMAIN_TYPOS:
        raise ValidationError(f'Did you mean {EMAIL_DOMAIN_TYPOS[domain]}?')

    return normalized


def _to_decimal(amount: Any) -> Decimal:
    if amount is None or amount == '' or isinstance(amount, bool):
        raise ValidationError('Amount is required')
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError('Amount must be a number') from exc
    if not value.is_finite():
        raise ValidationError('Amount must be a number')
    return value


def _decimal_places(value: Decimal) -> int:
    exponent = value.normalize().as_tuple().exponent
    return -exponent if exponent < 0 else 0


def validate_payment_amount(amount: Any) -> Decimal:
    """Validate a payment-link amount (USD-style, two decimals)."""
    value = _to_decimal(amount)
    if value <= 0:
        raise ValidationError('Amount must be greater than 0')

    max_amount = Decimal(str(settings.APTFY_MAX_PAYMENT_AMOUNT))
    if value > max_amount:
        raise ValidationError(
            f'Amount exceeds maximum limit of ${max_amount:,.0f}')

    if _decimal_places(value) > 2:
        raise ValidationError('Amount can have maximum 2 decimal places')
    return value


def parse_amount(amount: Any, decimals: Optional[int] = None) -> Decimal:
    """Parse a positive token amount with at most ``decimals`` places."""
    value = _to_decimal(amount)
    if value <= 0:
        raise ValidationError('Amount must be a positive number')
    if decimals is not None and _decimal_places(value) > decimals:
        raise ValidationError(
            f'Amount can have maximum {decimals} decimal places')
    return value


def validate_aptos_address(address: Any) -> str:
    if not address or not isinstance(address, str):
        raise ValidationError('Address is required')
    address = address.strip()
    if not APTOS_ADDRESS_RE.match(address):
        raise ValidationError('Invalid Aptos address format')
    return address.lower()


def validate_transaction_hash(tx_hash: Any) -> str:
    if not tx_hash or not isinstance(tx_hash, str):
        raise ValidationError('Transaction hash is required')
    tx_hash = tx_hash.strip()
    if not TRANSACTION_HASH_RE.match(tx_hash):
        raise ValidationError('Invalid transaction hash format')
    return tx_hash.lower()


def validate_nonce(nonce: Any) -> str:
    if not nonce or not isinstance(nonce, str):
        raise ValidationError('Nonce is required')
    if not NONCE_RE.match(nonce):
        raise ValidationError('Invalid nonce format')
    if not 16 <= len(nonce) <= 256:
        raise ValidationError(
            'Nonce length must be between 16 and 256 characters')
    return nonce


def _parse_u64(value: Any, message: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(message)
    if isinstance(value, int):
        number = value
    elif isinstance(value, str) and UNSIGNED_INT_RE.match(value.strip()):
        number = int(value.strip())
    else:
        raise ValidationError(message)
    if not 0 <= number <= MAX_U64:
        raise ValidationError(message)
    return number


def parse_escrow_id(value: Any) -> int:
    """Parse an escrow identifier as an unsigned 64-bit integer."""
    return _parse_u64(value, 'Invalid escrow ID')


def parse_timestamp(value: Any, name: str) -> int:
    """Parse unix seconds; a missing value is 0, meaning no restriction."""
    if value in (None, ''):
        return 0
    return _parse_u64(value, f'Invalid {name}')
