import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.db import OperationalError
from django.test import TestCase, override_settings
from django.urls import reverse

from aptfy.chain.errors import ChainTransactionError
from aptfy.chain.keyless import EphemeralKeyPair
from aptfy.errors import AuthenticationError
from aptfy.models import EmailMapping, Payment, UserAccount
from aptfy.sessions import KeylessSession


SENDER = '0x' + 'a' * 64
RECIPIENT = '0x' + 'b' * 64
TX_HASH = '0x' + 'c' * 64


def post_json(client, name, payload, **kwargs):
    return client.post(
        reverse(name, kwargs=kwargs or None),
        data=json.dumps(payload),
        content_type='application/json',
    )


def make_payment(**overrides) -> Payment:
    fields = {
        'id': 'pay_1700000000000_abc123xyz',
        'amount': Decimal('10.50'),
        'recipient_email': 'bob@example.com',
        'sender_address': SENDER,
        'status': Payment.Status.PENDING,
    }
    fields.update(overrides)
    return Payment.objects.create(**fields)


def mock_chain(balance='100', tx_hash=TX_HASH) -> MagicMock:
    chain = MagicMock()
    chain.get_balance.return_value = Decimal(balance)
    chain.transfer.return_value = tx_hash
    chain.get_explorer_url.side_effect = (
        lambda h: f'https://explorer.aptoslabs.com/txn/{h}?network=testnet')
    return chain


class PaymentCreateViewTests(TestCase):
    def test_create_persists_pending_payment(self):
        response = post_json(self.client, 'aptfy:payment-create', {
            'amount': '10.50',
            'recipientEmail': 'Bob@Example.com',
            'senderAddress': SENDER,
        })

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertTrue(body['paymentId'].startswith('pay_'))
        self.assertEqual(
            body['paymentUrl'],
            f"https://aptfy.test/pay/$10.50/to/bob@example.com?id={body['paymentId']}",
        )

        payment = Payment.objects.get(pk=body['paymentId'])
        self.assertEqual(payment.status, Payment.Status.PENDING)
        self.assertEqual(payment.recipient_email, 'bob@example.com')
        self.assertEqual(payment.amount, Decimal('10.50'))
        self.assertEqual(payment.token, 'APT')

    @override_settings(APTFY_APP_URL='https://pay.example.org/')
    def test_payment_url_uses_configured_app_url(self):
        response = post_json(self.client, 'aptfy:payment-create', {
            'amount': 5,
            'recipientEmail': 'bob@example.com',
        })

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()['paymentUrl'].startswith(
            'https://pay.example.org/pay/$5/to/bob@example.com?id=pay_'))

    def test_rejects_invalid_amounts(self):
        cases = {
            '0': 'Amount must be greater than 0',
            '-3': 'Amount must be greater than 0',
            'ten': 'Amount must be a number',
            '1.234': 'Amount can have maximum 2 decimal places',
            '1000001': 'Amount exceeds maximum limit of $1,000,000',
        }
        for amount, message in cases.items():
            with self.subTest(amount=amount):
                response = post_json(self.client, 'aptfy:payment-create', {
                    'amount': amount,
                    'recipientEmail': 'bob@example.com',
                })
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(), {'success': False, 'error': message})

        self.assertEqual(Payment.objects.count(), 0)

    def test_suggests_common_email_domain_typo(self):
        response = post_json(self.client, 'aptfy:payment-create', {
            'amount': '1',
            'recipientEmail': 'bob@gmial.com',
        })

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Did you mean gmail.com?')

    def test_rejects_unknown_token(self):
        response = post_json(self.client, 'aptfy:payment-create', {
            'amount': '1',
            'recipientEmail': 'bob@example.com',
            'token': 'DOGE',
        })

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid token. Must be APT or USDC')

    def test_database_outage_is_reported_as_unavailable(self):
        with patch('aptfy.payments.Payment.objects.create',
                   side_effect=OperationalError('could not connect')):
            response = post_json(self.client, 'aptfy:payment-create', {
                'amount': '1',
                'recipientEmail': 'bob@example.com',
            })

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json(), {
            'success': False,
            'error': 'Database connection required',
        })


class PaymentClaimViewTests(TestCase):
    def test_claim_attaches_recipient_and_stays_pending(self):
        payment = make_payment()

        response = post_json(self.client, 'aptfy:payment-claim', {
            'paymentId': payment.id,
            'recipientEmail': 'Bob@Example.com',
            'recipientAddress': RECIPIENT,
        })

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(
            body['message'], 'Recipient registered. Waiting for sender to execute transfer.')
        self.assertEqual(body['payment']['id'], payment.id)
        self.assertEqual(body['payment']['senderAddress'], SENDER)
        self.assertEqual(body['payment']['recipientAddress'], RECIPIENT)

        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.PENDING)
        self.assertEqual(payment.recipient_address, RECIPIENT)
        self.assertEqual(EmailMapping.objects.get(
            email='bob@example.com').aptos_address, RECIPIENT)
        self.assertTrue(UserAccount.objects.filter(
            email='bob@example.com', aptos_address=RECIPIENT).exists())

    def test_claim_of_claimed_payment_conflicts_without_mutation(self):
        payment = make_payment(status=Payment.Status.CLAIMED, transaction_hash=TX_HASH)

        response = post_json(self.client, 'aptfy:payment-claim', {
            'paymentId': payment.id,
            'recipientEmail': 'bob@example.com',
            'recipientAddress': RECIPIENT,
        })

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Payment already claimed')
        payment.refresh_from_db()
        self.assertIsNone(payment.recipient_address)
        self.assertEqual(EmailMapping.objects.count(), 0)

    def test_claim_loses_race_when_status_changes(self):
        payment = make_payment()

        def finalize_first(*args, **kwargs):
            Payment.objects.filter(pk=payment.pk).update(status=Payment.Status.CANCELLED)
            return args[0], args[1]

        with patch('aptfy.payments.register_user', side_effect=finalize_first):
            response = post_json(self.client, 'aptfy:payment-claim', {
                'paymentId': payment.id,
                'recipientEmail': 'bob@example.com',
                'recipientAddress': RECIPIENT,
            })

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Payment already cancelled')
        payment.refresh_from_db()
        self.assertIsNone(payment.recipient_address)

    def test_claim_requires_all_fields(self):
        response = post_json(self.client, 'aptfy:payment-claim', {
            'paymentId': 'pay_1',
            'recipientEmail': 'bob@example.com',
        })

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Missing required fields')

    def test_claim_of_unknown_payment_is_not_found(self):
        response = post_json(self.client, 'aptfy:payment-claim', {
            'paymentId': 'pay_missing',
            'recipientEmail': 'bob@example.com',
            'recipientAddress': RECIPIENT,
        })

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Payment not found')


class PaymentUpdateViewTests(TestCase):
    def test_update_defaults_to_claimed(self):
        payment = make_payment(recipient_address=RECIPIENT)

        response = post_json(self.client, 'aptfy:payment-update', {
            'paymentId': payment.id,
            'transactionHash': TX_HASH,
        })

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['payment']['status'], 'claimed')
        self.assertEqual(body['payment']['transactionHash'], TX_HASH)
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.CLAIMED)
        self.assertIsNotNone(payment.claimed_at)

    def test_claim_then_update(self):
        payment = make_payment(amount=Decimal('25.50'))

        post_json(self.client, 'aptfy:payment-claim', {
            'paymentId': payment.id,
            'recipientEmail': 'bob@example.com',
            'recipientAddress': RECIPIENT,
        })
        response = post_json(self.client, 'aptfy:payment-update', {
            'paymentId': payment.id,
            'transactionHash': TX_HASH,
        })

        body = response.json()['payment']
        self.assertEqual(body['recipientAddress'], RECIPIENT)
        self.assertEqual(body['transactionHash'], TX_HASH)
        self.assertEqual(body['status'], 'claimed')

    def test_repeated_update_overwrites_hash(self):
        payment = make_payment()
        second_hash = '0x' + 'd' * 64

        post_json(self.client, 'aptfy:payment-update', {
            'paymentId': payment.id, 'transactionHash': TX_HASH})
        response = post_json(self.client, 'aptfy:payment-update', {
            'paymentId': payment.id, 'transactionHash': second_hash})

        self.assertEqual(response.status_code, 200)
        payment.refresh_from_db()
        self.assertEqual(payment.transaction_hash, second_hash)

    def test_update_validates_hash_and_status(self):
        payment = make_payment()

        bad_hash = post_json(self.client, 'aptfy:payment-update', {
            'paymentId': payment.id, 'transactionHash': 'abc'})
        bad_status = post_json(self.client, 'aptfy:payment-update', {
            'paymentId': payment.id, 'transactionHash': TX_HASH, 'status': 'paid'})
        missing = post_json(self.client, 'aptfy:payment-update', {
            'paymentId': payment.id})

        self.assertEqual(bad_hash.status_code, 400)
        self.assertEqual(bad_hash.json()['error'], 'Invalid transaction hash format')
        self.assertEqual(bad_status.status_code, 400)
        self.assertEqual(bad_status.json()['error'], 'Invalid payment status: paid')
        self.assertEqual(missing.json()['error'],
                         'Missing required fields: paymentId, transactionHash')
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.PENDING)


class PaymentDetailViewTests(TestCase):
    def test_returns_payment_fields(self):
        payment = make_payment(token='USDC')

        response = self.client.get(
            reverse('aptfy:payment-detail', kwargs={'payment_id': payment.id}))

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body['id'], payment.id)
        self.assertEqual(Decimal(body['amount']), Decimal('10.50'))
        self.assertEqual(body['recipientEmail'], 'bob@example.com')
        self.assertEqual(body['token'], 'USDC')
        self.assertEqual(body['status'], 'pending')
        self.assertIsNone(body['recipientAddress'])
        self.assertIsNone(body['claimedAt'])

    def test_unknown_payment_is_not_found(self):
        response = self.client.get(
            reverse('aptfy:payment-detail', kwargs={'payment_id': 'pay_missing'}))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json(), {'success': False, 'error': 'Payment not found'})

    def test_complete_attaches_recipient(self):
        payment = make_payment()

        response = post_json(
            self.client, 'aptfy:payment-complete',
            {'transactionHash': TX_HASH, 'recipientAddress': RECIPIENT},
            payment_id=payment.id,
        )

        self.assertEqual(response.status_code, 200)
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.CLAIMED)
        self.assertEqual(payment.recipient_address, RECIPIENT)
        self.assertEqual(payment.transaction_hash, TX_HASH)


@patch('aptfy.payments.derive_account_from_client')
@patch('aptfy.views.get_chain_client')
class PaymentExecuteViewTests(TestCase):
    def _execute(self, payment_id):
        return post_json(self.client, 'aptfy:payment-execute', {
            'paymentId': payment_id,
            'jwt': 'header.payload.signature',
            'ephemeralKeyPairStr': 'deadbeef',
        })

    def test_execute_transfers_and_marks_claimed(self, get_chain_client, derive):
        payment = make_payment(recipient_address=RECIPIENT)
        chain = mock_chain()
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address=SENDER)

        response = self._execute(payment.id)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'success': True,
            'transactionHash': TX_HASH,
            'explorerUrl': f'https://explorer.aptoslabs.com/txn/{TX_HASH}?network=testnet',
        })
        chain.transfer.assert_called_once_with(
            derive.return_value, RECIPIENT, Decimal('10.50'), 'APT')
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.CLAIMED)
        self.assertEqual(payment.transaction_hash, TX_HASH)

    def test_unclaimed_payment_is_rejected_before_derivation(self, get_chain_client, derive):
        payment = make_payment()
        get_chain_client.return_value = mock_chain()

        response = self._execute(payment.id)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'],
                         'Payment has not been claimed yet. Recipient must claim first.')
        derive.assert_not_called()

    def test_already_executed_payment_is_rejected(self, get_chain_client, derive):
        payment = make_payment(recipient_address=RECIPIENT, transaction_hash=TX_HASH)
        get_chain_client.return_value = mock_chain()

        response = self._execute(payment.id)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Payment already executed')
        derive.assert_not_called()

    def test_sender_mismatch(self, get_chain_client, derive):
        payment = make_payment(recipient_address=RECIPIENT)
        chain = mock_chain()
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address='0x' + 'e' * 64)

        response = self._execute(payment.id)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Sender address mismatch')
        chain.transfer.assert_not_called()

    def test_insufficient_balance_names_shortfall(self, get_chain_client, derive):
        payment = make_payment(recipient_address=RECIPIENT)
        chain = mock_chain(balance='4')
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address=SENDER)

        response = self._execute(payment.id)

        self.assertEqual(response.status_code, 400)
        error = response.json()['error']
        self.assertIn('You have 4.000000 APT', error)
        self.assertIn('need 10.5 APT (short by 6.5 APT)', error)
        chain.transfer.assert_not_called()

    def test_chain_failure_marks_payment_failed(self, get_chain_client, derive):
        payment = make_payment(recipient_address=RECIPIENT)
        chain = mock_chain()
        chain.transfer.side_effect = ChainTransactionError('Transaction failed: OUT_OF_GAS')
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address=SENDER)

        response = self._execute(payment.id)

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Transaction failed: OUT_OF_GAS')
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.FAILED)
        self.assertEqual(payment.error_message, 'Transaction failed: OUT_OF_GAS')
        self.assertIsNone(payment.transaction_hash)

    def test_invalid_identity_token_is_unauthorized(self, get_chain_client, derive):
        payment = make_payment(recipient_address=RECIPIENT)
        get_chain_client.return_value = mock_chain()
        derive.side_effect = AuthenticationError('JWT has expired')

        response = self._execute(payment.id)

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'], 'JWT has expired')
        payment.refresh_from_db()
        self.assertEqual(payment.status, Payment.Status.PENDING)


@patch('aptfy.views.derive_keyless_account')
@patch('aptfy.views.get_chain_client')
class SendDirectViewTests(TestCase):
    def setUp(self) -> None:
        self.key_pair = EphemeralKeyPair.generate()
        session = self.client.session
        KeylessSession(session).activate(
            self.key_pair, 'header.payload.signature', SENDER, 'alice@example.com')
        session.save()

    def _send(self, **overrides):
        payload = {
            'amount': '1.5',
            'recipientAddress': RECIPIENT,
            'jwt': 'header.payload.signature',
            'nonce': self.key_pair.nonce,
            'token': 'APT',
        }
        payload.update(overrides)
        return post_json(self.client, 'aptfy:payment-send-direct', payload)

    def test_sends_transfer(self, get_chain_client, derive):
        chain = mock_chain()
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address=SENDER)

        response = self._send()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'success': True,
            'transactionHash': TX_HASH,
            'amount': '1.5',
            'token': 'APT',
            'recipientAddress': RECIPIENT,
        })
        self.assertEqual(derive.call_args[0][1].nonce, self.key_pair.nonce)
        chain.transfer.assert_called_once_with(
            derive.return_value, RECIPIENT, Decimal('1.5'), 'APT')

    def test_invalid_recipient_rejected_before_derivation(self, get_chain_client, derive):
        response = self._send(recipientAddress='not-hex')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid Aptos address format')
        derive.assert_not_called()
        get_chain_client.assert_not_called()

    def test_invalid_token_rejected(self, get_chain_client, derive):
        response = self._send(token='ETH')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid token. Must be APT or USDC')
        derive.assert_not_called()

    def test_missing_fields(self, get_chain_client, derive):
        response = self._send(jwt=None)

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Missing required fields')

    def test_unknown_nonce_is_unauthorized(self, get_chain_client, derive):
        response = self._send(nonce='12345678901234567890')

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()['error'],
                         'Ephemeral key pair not found. Please sign in again.')
        derive.assert_not_called()

    def test_malformed_nonce(self, get_chain_client, derive):
        response = self._send(nonce='not a nonce at all!')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid nonce format')
        derive.assert_not_called()

    def test_insufficient_balance_does_not_submit(self, get_chain_client, derive):
        chain = mock_chain(balance='0.25')
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address=SENDER)

        response = self._send(amount='1.5')

        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json()['error'],
            'Insufficient balance. You have 0.250000 APT but need 1.5 APT (short by 1.25 APT)',
        )
        chain.transfer.assert_not_called()


class UserDirectoryViewTests(TestCase):
    def test_register_and_resolve(self):
        registered = post_json(self.client, 'aptfy:register-user', {
            'email': 'Carol@Example.com',
            'aptosAddress': RECIPIENT,
        })
        resolved = post_json(self.client, 'aptfy:resolve-email', {
            'email': 'carol@example.com',
        })

        self.assertEqual(registered.status_code, 200)
        self.assertEqual(registered.json(), {
            'success': True,
            'message': 'User registered successfully',
            'email': 'carol@example.com',
            'aptosAddress': RECIPIENT,
        })
        self.assertEqual(resolved.status_code, 200)
        self.assertEqual(resolved.json(), {
            'success': True,
            'email': 'carol@example.com',
            'aptosAddress': RECIPIENT,
            'exists': True,
        })

    def test_reregistering_updates_address(self):
        post_json(self.client, 'aptfy:register-user', {
            'email': 'carol@example.com', 'aptosAddress': RECIPIENT})
        post_json(self.client, 'aptfy:register-user', {
            'email': 'carol@example.com', 'aptosAddress': SENDER})

        self.assertEqual(EmailMapping.objects.get(
            email='carol@example.com').aptos_address, SENDER)
        self.assertEqual(UserAccount.objects.count(), 1)

    def test_register_requires_email_and_address(self):
        response = post_json(self.client, 'aptfy:register-user', {'email': 'carol@example.com'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Email and Aptos address are required')

    def test_register_rejects_bad_address(self):
        response = post_json(self.client, 'aptfy:register-user', {
            'email': 'carol@example.com', 'aptosAddress': '0x123'})

        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()['error'], 'Invalid Aptos address format')

    def test_resolve_unknown_email(self):
        response = post_json(self.client, 'aptfy:resolve-email', {'email': 'nobody@example.com'})

        self.assertEqual(response.status_code, 404)
        self.assertEqual(
            response.json()['error'],
            'Email not found. Recipient must sign in to Aptfy first to create their account.',
        )


class TransactionsViewTests(TestCase):
    def test_history_lists_sent_and_received(self):
        make_payment(id='pay_1', sender_address=SENDER, recipient_address=RECIPIENT,
                     status=Payment.Status.CLAIMED, transaction_hash=TX_HASH)
        make_payment(id='pay_2', sender_address=RECIPIENT, recipient_address=SENDER)
        make_payment(id='pay_3', sender_address='0x' + 'f' * 64)

        response = self.client.get(reverse('aptfy:transactions'), {'address': SENDER})

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body['success'])
        self.assertEqual(body['address'], SENDER)
        by_id = {tx['id']: tx for tx in body['transactions']}
        self.assertEqual(set(by_id), {'pay_1', 'pay_2'})
        self.assertEqual(by_id['pay_1']['type'], 'sent')
        self.assertEqual(by_id['pay_2']['type'], 'received')
        self.assertEqual(
            by_id['pay_1']['explorerUrl'],
            f'https://explorer.aptoslabs.com/txn/{TX_HASH}?network=testnet',
        )
        self.assertIsNone(by_id['pay_2']['explorerUrl'])
        self.assertEqual(body['summary'], {
            'total': 2, 'sent': 1, 'received': 1, 'completed': 1, 'pending': 1,
        })

    def test_requires_valid_address(self):
        missing = self.client.get(reverse('aptfy:transactions'))
        invalid = self.client.get(reverse('aptfy:transactions'), {'address': 'bob'})

        self.assertEqual(missing.status_code, 400)
        self.assertEqual(missing.json()['error'], 'Address is required')
        self.assertEqual(invalid.status_code, 400)
        self.assertEqual(invalid.json()['error'], 'Invalid Aptos address format')
