"""
Payment-link service.

A payment link is created pending for a recipient email. The recipient
signs in and claims it, which attaches their address; the sender then
executes the on-chain transfer and the link is marked claimed with the
transaction hash.
"""
import time
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from django.conf import settings
from django.db import IntegrityError, transaction
from django.utils.crypto import get_random_string
from loguru import logger

from aptfy.chain.base import ChainClient
from aptfy.chain.errors import ChainError
from aptfy.chain.factory import get_chain_client
from aptfy.chain.keyless import derive_account_from_client
from aptfy.chain.tokens import get_token_config, is_valid_token
from aptfy.errors import (
    AuthorizationError,
    ConflictError,
    InsufficientFundsError,
    NotFoundError,
    UnknownError,
    ValidationError,
)
from aptfy.models import EmailMapping, Payment, UserAccount
from aptfy.validation import (
    parse_amount,
    validate_aptos_address,
    validate_email,
    validate_payment_amount,
    validate_transaction_hash,
)


PAYMENT_ID_CHARS = 'abcdefghijklmnopqrstuvwxyz0123456789'


def generate_payment_id() -> str:
    return f'pay_{int(time.time() * 1000)}_{get_random_string(9, PAYMENT_ID_CHARS)}'


def build_payment_url(payment: Payment, amount: Any = None) -> str:
    amount = payment.amount if amount is None else amount
    base_url = settings.APTFY_APP_URL.rstrip('/')
    return f'{base_url}/pay/${amount}/to/{payment.recipient_email}?id={payment.id}'


def validate_token(token: Any) -> str:
    if not is_valid_token(token):
        raise ValidationError('Invalid token. Must be APT or USDC')
    return token


def create_payment(amount: Any, recipient_email: Any, sender_address: Any = None,
                   token: str = 'APT') -> Tuple[Payment, str]:
    value = validate_payment_amount(amount)
    email = validate_email(recipient_email)
    token = validate_token(token)
    sender = validate_aptos_address(sender_address) if sender_address else None

    payment = Payment.objects.create(
        id=generate_payment_id(),
        amount=value,
        recipient_email=email,
        sender_address=sender,
        token=token,
        status=Payment.Status.PENDING,
    )
    logger.info('payment link {} created for {} {} to {}',
                payment.id, value, token, email)
    return payment, build_payment_url(payment, amount=str(amount).strip())


def get_payment(payment_id: Any) -> Payment:
    if not payment_id:
        raise ValidationError('Payment ID is required')
    try:
        return Payment.objects.get(pk=payment_id)
    except Payment.DoesNotExist as exc:
        raise NotFoundError('Payment not found') from exc


def register_user(email: Any, address: Any) -> Tuple[str, str]:
    """Upsert the email mapping and the user record for ``address``."""
    email = validate_email(email)
    address = validate_aptos_address(address)

    try:
        with transaction.atomic():
            EmailMapping.objects.update_or_create(
                email=email, defaults={'aptos_address': address})
            UserAccount.objects.update_or_create(
                email=email, defaults={'aptos_address': address})
    except IntegrityError as exc:
        logger.info('address {} already registered to another email', address)
        raise ConflictError(
            'Address is already registered to another email') from exc

    logger.debug('registered {} -> {}', email, address)
    return email, address


def resolve_email(email: Any) -> str:
    email = validate_email(email)
    mapping = EmailMapping.objects.filter(email=email).first()
    if mapping is None:
        raise NotFoundError(
            'Email not found. Recipient must sign in to Aptfy first to create their account.')
    return mapping.aptos_address


def claim_payment(payment_id: Any, recipient_email: Any, recipient_address: Any) -> Payment:
    """
    Attach the claimant's address to a pending payment.

    The status stays pending until the sender executes the transfer.
    """
    if not payment_id or not recipient_email or not recipient_address:
        raise ValidationError('Missing required fields')

    with transaction.atomic():
        payment = get_payment(payment_id)
        if payment.status != Payment.Status.PENDING:
            raise ConflictError(f'Payment already {payment.status}')

        email, address = register_user(recipient_email, recipient_address)

        updated = Payment.objects.filter(
            pk=payment.pk, status=Payment.Status.PENDING,
        ).update(recipient_address=address)
        if not updated:
            payment.refresh_from_db(fields=['status'])
            raise ConflictError(f'Payment already {payment.status}')

    payment.recipient_address = address
    logger.info('payment {} claimed by {} ({})', payment.id, email, address)
    return payment


def update_payment(payment_id: Any, transaction_hash: Any, status: Optional[str] = None) -> Payment:
    """Record the executed transfer. Repeated calls overwrite hash and time."""
    if not payment_id or not transaction_hash:
        raise ValidationError(
            'Missing required fields: paymentId, transactionHash')
    tx_hash = validate_transaction_hash(transaction_hash)

    status = status or Payment.Status.CLAIMED
    if status not in Payment.Status.values:
        raise ValidationError(f'Invalid payment status: {status}')

    payment = get_payment(payment_id)
    payment.mark_claimed(tx_hash, status=status)
    payment.save(update_fields=['status', 'transaction_hash', 'claimed_at'])
    logger.info('payment {} updated to {} with tx {}',
                payment.id, status, tx_hash)
    return payment


def complete_payment(payment_id: Any, transaction_hash: Any,
                     recipient_address: Any = None) -> Payment:
    if not transaction_hash:
        raise ValidationError('Transaction hash is required')
    tx_hash = validate_transaction_hash(transaction_hash)

    payment = get_payment(payment_id)
    update_fields = ['status', 'transaction_hash', 'claimed_at']
    if recipient_address:
        payment.recipient_address = validate_aptos_address(recipient_address)
        update_fields.append('recipient_address')
    payment.mark_claimed(tx_hash)
    payment.save(update_fields=update_fields)
    return payment


def _plain(value: Decimal) -> str:
    return f'{Decimal(value).normalize():f}'


def ensure_balance(chain: ChainClient, address: str, amount: Decimal, token: str) -> Decimal:
    balance = chain.get_balance(address, token)
    if balance < amount:
        shortfall = amount - balance
        raise InsufficientFundsError(
            f'Insufficient balance. You have {balance:.6f} {token} but need '
            f'{_plain(amount)} {token} (short by {_plain(shortfall)} {token})',
            balance=balance,
            required=amount,
            token=token,
        )
    return balance


def execute_payment(payment_id: Any, token: Any, ephemeral_key_pair_str: Any,
                    chain: ChainClient) -> str:
    """Transfer a claimed payment from the sender's keyless account."""
    if not payment_id or not token or not ephemeral_key_pair_str:
        raise ValidationError(
            'Missing required fields: paymentId, jwt, ephemeralKeyPairStr')
    payment = get_payment(payment_id)

    if not payment.recipient_address:
        raise ConflictError(
            'Payment has not been claimed yet. Recipient must claim first.')
    if payment.transaction_hash:
        raise ConflictError('Payment already executed')

    account = derive_account_from_client(token, ephemeral_key_pair_str)
    if payment.sender_address and account.account_address != payment.sender_address:
        raise AuthorizationError('Sender address mismatch')

    ensure_balance(chain, account.account_address,
                   payment.amount, payment.token)

    try:
        tx_hash = chain.transfer(
            account, payment.recipient_address, payment.amount, payment.token)
    except ChainError as exc:
        logger.error('payment {} transfer failed: {}', payment.id, exc)
        payment.mark_failed(exc.message)
        payment.save(update_fields=['status', 'error_message'])
        raise UnknownError(exc.message) from exc

    payment.mark_claimed(tx_hash)
    payment.save(update_fields=['status', 'transaction_hash', 'claimed_at'])
    logger.info('payment {} executed: {}', payment.id, tx_hash)
    return tx_hash


def validate_direct_transfer(amount: Any, recipient_address: Any, token: Any) -> Tuple[Decimal, str, str]:
    """Validate a direct transfer before any account derivation."""
    token = validate_token(token)
    value = parse_amount(amount, decimals=get_token_config(token).decimals)
    address = validate_aptos_address(recipient_address)
    return value, address, token


def send_direct(account, chain: ChainClient, amount: Decimal, recipient_address: str,
                token: str) -> str:
    ensure_balance(chain, account.account_address, amount, token)
    logger.info('direct transfer: {} {} from {} to {}', amount,
                token, account.account_address, recipient_address)
    try:
        return chain.transfer(account, recipient_address, amount, token)
    except ChainError as exc:
        logger.error('direct transfer failed: {}', exc)
        raise UnknownError(exc.message) from exc


def transaction_history(address: Any) -> Dict[str, Any]:
    address = validate_aptos_address(address)

    sent = list(Payment.objects.filter(sender_address=address))
    received = list(Payment.objects.filter(recipient_address=address))
    seen = set()
    payments = []
    for payment in sorted(sent + received, key=lambda p: p.created_at, reverse=True):
        if payment.pk in seen:
            continue
        seen.add(payment.pk)
        payments.append(payment)

    chain = get_chain_client()
    transactions = []
    for payment in payments:
        entry = payment.to_dict()
        entry['type'] = 'sent' if payment.sender_address == address else 'received'
        entry['explorerUrl'] = (
            chain.get_explorer_url(payment.transaction_hash)
            if payment.transaction_hash else None
        )
        transactions.append(entry)

    return {
        'address': address,
        'transactions': transactions,
        'summary': {
            'total': len(transactions),
            'sent': len(sent),
            'received': len(received),
            'completed': sum(1 for p in payments if p.status == Payment.Status.CLAIMED),
            'pending': sum(1 for p in payments if p.status == Payment.Status.PENDING),
        },
    }
