from typing import Any, Optional, Type, TypeVar
from urllib.parse import urlencode

from django.conf import settings
from django.db import DatabaseError, IntegrityError
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import APIView

from aptfy import payments
from aptfy.chain.factory import get_chain_client
from aptfy.chain.keyless import EphemeralKeyPair, decode_identity_token, derive_keyless_account
from aptfy.errors import (
    AptfyError,
    AuthenticationError,
    UnavailableError,
    UnknownError,
    ValidationError,
)
from aptfy.sessions import KeylessSession
from aptfy.validation import validate_email, validate_nonce


GOOGLE_AUTH_URL = 'https://accounts.google.com/o/oauth2/v2/auth'

RequestModel = TypeVar('RequestModel', bound=BaseModel)


class RequestBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra='ignore')


class CreatePaymentRequest(RequestBody):
    amount: Any = None
    recipient_email: Any = Field(None, alias='recipientEmail')
    sender_address: Optional[str] = Field(None, alias='senderAddress')
    token: Any = 'APT'


class ClaimPaymentRequest(RequestBody):
    payment_id: Any = Field(None, alias='paymentId')
    recipient_email: Any = Field(None, alias='recipientEmail')
    recipient_address: Any = Field(None, alias='recipientAddress')


class UpdatePaymentRequest(RequestBody):
    payment_id: Any = Field(None, alias='paymentId')
    transaction_hash: Any = Field(None, alias='transactionHash')
    status: Optional[str] = None


class CompletePaymentRequest(RequestBody):
    transaction_hash: Any = Field(None, alias='transactionHash')
    recipient_address: Any = Field(None, alias='recipientAddress')


class ExecutePaymentRequest(RequestBody):
    payment_id: Any = Field(None, alias='paymentId')
    jwt: Any = None
    ephemeral_key_pair_str: Any = Field(None, alias='ephemeralKeyPairStr')


class SendDirectRequest(RequestBody):
    amount: Any = None
    recipient_address: Any = Field(None, alias='recipientAddress')
    jwt: Any = None
    nonce: Any = None
    token: Any = 'APT'


class RegisterUserRequest(RequestBody):
    email: Any = None
    aptos_address: Any = Field(None, alias='aptosAddress')


class ResolveEmailRequest(RequestBody):
    email: Any = None


class AuthCallbackRequest(RequestBody):
    id_token: Any = Field(None, alias='idToken')


class AuthLogoutRequest(RequestBody):
    nonce: Optional[str] = None


def parse_body(model: Type[RequestModel], data: Any) -> RequestModel:
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        logger.debug('request body rejected: {}', exc)
        errors = exc.errors()
        field = errors[0]['loc'][0] if errors and errors[0]['loc'] else None
        if field is None:
            raise ValidationError('Invalid request body') from exc
        raise ValidationError(f'Invalid field: {field}') from exc


class AptfyAPIView(APIView):
    """Base view rendering every failure as ``{success: false, error}``."""

    authentication_classes: list = []
    permission_classes: list = []

    def handle_exception(self, exc):
        if isinstance(exc, APIException):
            return super().handle_exception(exc)

        if isinstance(exc, DatabaseError) and not isinstance(exc, IntegrityError):
            logger.error('database unavailable: {}', exc)
            exc = UnavailableError('Database connection required')
        elif not isinstance(exc, AptfyError):
            logger.exception('unhandled error in {}', type(self).__name__)
            exc = UnknownError(str(exc) or 'Internal server error')

        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error('{} failed: {}', type(self).__name__, exc.message)
        else:
            logger.info('{} rejected: {}', type(self).__name__, exc.message)
        return Response({'success': False, 'error': exc.message}, status=exc.status_code)


class PaymentCreateView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(CreatePaymentRequest, request.data)
        payment, payment_url = payments.create_payment(
            body.amount, body.recipient_email, body.sender_address, body.token)
        return Response(
            {
                'success': True,
                'paymentId': payment.id,
                'paymentUrl': payment_url,
            },
            status=status.HTTP_200_OK,
        )


class PaymentDetailView(AptfyAPIView):
    def get(self, request, payment_id: str, *args, **kwargs) -> Response:
        payment = payments.get_payment(payment_id)
        return Response(payment.to_dict(), status=status.HTTP_200_OK)


class PaymentClaimView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(ClaimPaymentRequest, request.data)
        payment = payments.claim_payment(
            body.payment_id, body.recipient_email, body.recipient_address)
        return Response(
            {
                'success': True,
                'message': 'Recipient registered. Waiting for sender to execute transfer.',
                'payment': {
                    'id': payment.id,
                    'amount': str(payment.amount),
                    'senderAddress': payment.sender_address,
                    'recipientAddress': payment.recipient_address,
                },
            },
            status=status.HTTP_200_OK,
        )


class PaymentUpdateView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(UpdatePaymentRequest, request.data)
        payment = payments.update_payment(
            body.payment_id, body.transaction_hash, body.status)
        return Response({'success': True, 'payment': payment.to_dict()},
                        status=status.HTTP_200_OK)


class PaymentCompleteView(AptfyAPIView):
    def post(self, request, payment_id: str, *args, **kwargs) -> Response:
        body = parse_body(CompletePaymentRequest, request.data)
        payment = payments.complete_payment(
            payment_id, body.transaction_hash, body.recipient_address)
        return Response({'success': True, 'payment': payment.to_dict()},
                        status=status.HTTP_200_OK)


class PaymentExecuteView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(ExecutePaymentRequest, request.data)
        chain = get_chain_client()
        tx_hash = payments.execute_payment(
            body.payment_id, body.jwt, body.ephemeral_key_pair_str, chain)
        return Response(
            {
                'success': True,
                'transactionHash': tx_hash,
                'explorerUrl': chain.get_explorer_url(tx_hash),
            },
            status=status.HTTP_200_OK,
        )


class SendDirectView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(SendDirectRequest, request.data)
        if not body.amount or not body.recipient_address or not body.jwt or not body.nonce:
            raise ValidationError('Missing required fields')

        amount, recipient, token = payments.validate_direct_transfer(
            body.amount, body.recipient_address, body.token)

        key_pair = KeylessSession(request.session).get_key_pair(
            validate_nonce(str(body.nonce)))
        if key_pair is None:
            raise AuthenticationError(
                'Ephemeral key pair not found. Please sign in again.')

        account = derive_keyless_account(body.jwt, key_pair)
        tx_hash = payments.send_direct(
            account, get_chain_client(), amount, recipient, token)
        logger.info('direct transfer submitted: {}', tx_hash)
        return Response(
            {
                'success': True,
                'transactionHash': tx_hash,
                'amount': str(amount),
                'token': token,
                'recipientAddress': recipient,
            },
            status=status.HTTP_200_OK,
        )


class RegisterUserView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(RegisterUserRequest, request.data)
        if not body.email or not body.aptos_address:
            raise ValidationError('Email and Aptos address are required')
        email, address = payments.register_user(body.email, body.aptos_address)
        return Response(
            {
                'success': True,
                'message': 'User registered successfully',
                'email': email,
                'aptosAddress': address,
            },
            status=status.HTTP_200_OK,
        )


class ResolveEmailView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(ResolveEmailRequest, request.data)
        email = validate_email(body.email)
        address = payments.resolve_email(email)
        return Response(
            {
                'success': True,
                'email': email,
                'aptosAddress': address,
                'exists': True,
            },
            status=status.HTTP_200_OK,
        )


class TransactionsView(AptfyAPIView):
    def get(self, request, *args, **kwargs) -> Response:
        address = request.query_params.get('address')
        if not address:
            raise ValidationError('Address is required')
        history = payments.transaction_history(address)
        return Response({'success': True, **history}, status=status.HTTP_200_OK)


class AuthLoginView(AptfyAPIView):
    """Start a Google sign-in bound to a fresh ephemeral key pair."""

    def get(self, request, *args, **kwargs) -> Response:
        if not settings.APTFY_GOOGLE_CLIENT_ID:
            raise UnknownError('Google client id is not configured')

        key_pair = EphemeralKeyPair.generate()
        nonce = KeylessSession(request.session).begin_login(key_pair)
        query = urlencode({
            'client_id': settings.APTFY_GOOGLE_CLIENT_ID,
            'redirect_uri': settings.APTFY_GOOGLE_REDIRECT_URI,
            'response_type': 'id_token',
            'scope': 'openid email profile',
            'nonce': nonce,
            'prompt': 'select_account',
        })
        logger.debug('login started with nonce {}', nonce)
        return Response(
            {
                'success': True,
                'nonce': nonce,
                'authUrl': f'{GOOGLE_AUTH_URL}?{query}',
            },
            status=status.HTTP_200_OK,
        )


class AuthCallbackView(AptfyAPIView):
    """
    Finish a Google sign-in.

    The pending key pair is looked up by the token's nonce and consumed, so
    a callback can be completed only once per login.
    """

    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(AuthCallbackRequest, request.data)
        if not body.id_token:
            raise ValidationError('ID token is required')

        claims = decode_identity_token(body.id_token)
        keyless_session = KeylessSession(request.session)
        key_pair = keyless_session.consume_pending(str(claims['nonce']))
        if key_pair is None:
            raise AuthenticationError(
                'Ephemeral key pair not found. Please sign in again.')

        account = derive_keyless_account(body.id_token, key_pair)
        keyless_session.activate(
            key_pair, body.id_token, account.account_address, account.email)
        if account.email:
            payments.register_user(account.email, account.account_address)

        logger.info('signed in {} as {}', account.email, account.account_address)
        return Response(
            {
                'success': True,
                'address': account.account_address,
                'email': account.email,
                'nonce': key_pair.nonce,
            },
            status=status.HTTP_200_OK,
        )


class AuthLogoutView(AptfyAPIView):
    def post(self, request, *args, **kwargs) -> Response:
        body = parse_body(AuthLogoutRequest, request.data)
        nonce = validate_nonce(body.nonce) if body.nonce else None
        KeylessSession(request.session).end(nonce)
        return Response({'success': True}, status=status.HTTP_200_OK)
