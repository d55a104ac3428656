import json
from decimal import Decimal
from unittest.mock import MagicMock, patch

from django.test import TestCase
from django.urls import reverse

from aptfy.chain.base import EscrowDetails, EscrowStats
from aptfy.chain.errors import ChainError, ChainTransactionError
from aptfy.errors import AuthenticationError


SENDER = '0x' + 'a' * 64
RECIPIENT = '0x' + 'b' * 64
TX_HASH = '0x' + 'c' * 64
EXPLORER_URL = f'https://explorer.aptoslabs.com/txn/{TX_HASH}?network=testnet'


def abort(code: str) -> ChainTransactionError:
    return ChainTransactionError(
        f'Transaction {TX_HASH} failed with Move abort in '
        f'0xcafe::payment_escrow: {code}(0x10001): ',
        transaction_hash=TX_HASH,
    )


@patch('aptfy.escrow.derive_account_from_client')
@patch('aptfy.views_escrow.get_chain_client')
class EscrowTransitionViewTests(TestCase):
    def setUp(self) -> None:
        self.chain = MagicMock()
        self.chain.release_escrow.return_value = TX_HASH
        self.chain.cancel_escrow.return_value = TX_HASH
        self.chain.get_explorer_url.return_value = EXPLORER_URL
        self.account = MagicMock(account_address=RECIPIENT)

    def _post(self, name, **overrides):
        payload = {
            'escrowId': '7',
            'jwt': 'header.payload.signature',
            'ephemeralKeyPairStr': 'deadbeef',
        }
        payload.update(overrides)
        return self.client.post(
            reverse(name),
            data=json.dumps(payload),
            content_type='application/json',
        )

    def test_release_returns_hash_and_explorer_url(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain
        derive.return_value = self.account

        response = self._post('aptfy:escrow-release')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'success': True,
            'transactionHash': TX_HASH,
            'explorerUrl': EXPLORER_URL,
        })
        derive.assert_called_once_with('header.payload.signature', 'deadbeef')
        self.chain.release_escrow.assert_called_once_with(self.account, 7)

    def test_cancel_accepts_integer_id(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain
        derive.return_value = MagicMock(account_address=SENDER)

        response = self._post('aptfy:escrow-cancel', escrowId=0)

        self.assertEqual(response.status_code, 200)
        self.chain.cancel_escrow.assert_called_once_with(derive.return_value, 0)

    def test_missing_fields_never_touch_chain(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain

        for field in ('escrowId', 'jwt', 'ephemeralKeyPairStr'):
            with self.subTest(field=field):
                response = self._post('aptfy:escrow-release', **{field: None})
                self.assertEqual(response.status_code, 400)
                self.assertEqual(
                    response.json()['error'],
                    'Missing required fields: escrowId, jwt, ephemeralKeyPairStr',
                )

        derive.assert_not_called()
        self.chain.release_escrow.assert_not_called()

    def test_invalid_ids_never_touch_chain(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain

        for escrow_id in ('-1', 'abc', '1.5', -3, True, '٣', str(2 ** 64), 2 ** 64):
            with self.subTest(escrow_id=escrow_id):
                response = self._post('aptfy:escrow-cancel', escrowId=escrow_id)
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['error'], 'Invalid escrow ID')

        derive.assert_not_called()
        self.chain.cancel_escrow.assert_not_called()

    def test_non_object_body_is_rejected(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain

        for name in ('aptfy:escrow-release', 'aptfy:escrow-cancel', 'aptfy:escrow-create'):
            with self.subTest(name=name):
                response = self.client.post(
                    reverse(name), data=json.dumps([7]), content_type='application/json')
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json(),
                                 {'success': False, 'error': 'Invalid request body'})

        derive.assert_not_called()

    def test_authentication_failure(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain
        derive.side_effect = AuthenticationError('JWT nonce does not match the ephemeral key pair')

        response = self._post('aptfy:escrow-release')

        self.assertEqual(response.status_code, 401)
        self.chain.release_escrow.assert_not_called()

    def test_release_abort_codes_are_mapped(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain
        derive.return_value = self.account
        cases = [
            ('EESCROW_NOT_FOUND', 404, 'Escrow not found'),
            ('ENOT_AUTHORIZED', 500, 'You are not authorized to release this escrow'),
            ('EALREADY_RELEASED', 500, 'Escrow has already been released'),
            ('ECANCELLED', 500, 'Escrow has already been cancelled'),
        ]
        for code, status_code, message in cases:
            with self.subTest(code=code):
                self.chain.release_escrow.side_effect = abort(code)
                response = self._post('aptfy:escrow-release')
                self.assertEqual(response.status_code, status_code)
                self.assertEqual(response.json(), {'success': False, 'error': message})

    def test_cancel_unauthorized_names_action(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain
        derive.return_value = self.account
        self.chain.cancel_escrow.side_effect = abort('ENOT_AUTHORIZED')

        response = self._post('aptfy:escrow-cancel')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'],
                         'You are not authorized to cancel this escrow')

    def test_unmapped_failure_passes_raw_message(self, get_chain_client, derive):
        get_chain_client.return_value = self.chain
        derive.return_value = self.account
        self.chain.release_escrow.side_effect = ChainTransactionError(
            'Transaction failed: OUT_OF_GAS')

        response = self._post('aptfy:escrow-release')

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Transaction failed: OUT_OF_GAS')


@patch('aptfy.escrow.derive_account_from_client')
@patch('aptfy.views_escrow.get_chain_client')
class EscrowCreateViewTests(TestCase):
    def _post(self, **overrides):
        payload = {
            'recipient': RECIPIENT,
            'amount': '2.5',
            'memo': 'rent',
            'jwt': 'header.payload.signature',
            'ephemeralKeyPairStr': 'deadbeef',
        }
        payload.update(overrides)
        return self.client.post(
            reverse('aptfy:escrow-create'),
            data=json.dumps(payload),
            content_type='application/json',
        )

    def test_create_submits_escrow(self, get_chain_client, derive):
        chain = MagicMock()
        chain.create_escrow.return_value = TX_HASH
        chain.get_explorer_url.return_value = EXPLORER_URL
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address=SENDER)

        response = self._post()

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['transactionHash'], TX_HASH)
        chain.create_escrow.assert_called_once_with(
            derive.return_value, RECIPIENT, Decimal('2.5'), 'rent')

    def test_create_validates_before_derivation(self, get_chain_client, derive):
        bad_amount = self._post(amount='0')
        bad_recipient = self._post(recipient='0x1')

        self.assertEqual(bad_amount.status_code, 400)
        self.assertEqual(bad_amount.json()['error'], 'Amount must be a positive number')
        self.assertEqual(bad_recipient.status_code, 400)
        self.assertEqual(bad_recipient.json()['error'], 'Invalid Aptos address format')
        derive.assert_not_called()

    def test_create_abort_codes_are_client_errors(self, get_chain_client, derive):
        chain = MagicMock()
        get_chain_client.return_value = chain
        derive.return_value = MagicMock(account_address=SENDER)
        cases = [
            ('EINSUFFICIENT_BALANCE', 'Insufficient balance to create escrow'),
            ('EINVALID_AMOUNT', 'Invalid amount specified'),
            ('EINVALID_RECIPIENT', 'Invalid recipient address'),
        ]
        for code, message in cases:
            with self.subTest(code=code):
                chain.create_escrow.side_effect = abort(code)
                response = self._post()
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['error'], message)


@patch('aptfy.views_escrow.get_chain_client')
class EscrowReadViewTests(TestCase):
    def test_detail_returns_status(self, get_chain_client):
        chain = get_chain_client.return_value
        chain.get_escrow.return_value = EscrowDetails(
            escrow_id=3, sender=SENDER, recipient=RECIPIENT,
            amount=Decimal('1.25'), released=True, cancelled=False,
        )

        response = self.client.get(
            reverse('aptfy:escrow-detail', kwargs={'escrow_id': '3'}))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'success': True,
            'escrow': {
                'escrowId': 3,
                'sender': SENDER,
                'recipient': RECIPIENT,
                'amount': '1.25',
                'token': 'APT',
                'released': True,
                'cancelled': False,
                'status': 'released',
            },
        })
        chain.get_escrow.assert_called_once_with(3)

    def test_detail_missing_escrow(self, get_chain_client):
        get_chain_client.return_value.get_escrow.return_value = None

        response = self.client.get(
            reverse('aptfy:escrow-detail', kwargs={'escrow_id': '99'}))

        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()['error'], 'Escrow not found')

    def test_detail_rejects_non_numeric_id(self, get_chain_client):
        for escrow_id in ('latest', str(2 ** 64)):
            with self.subTest(escrow_id=escrow_id):
                response = self.client.get(
                    reverse('aptfy:escrow-detail', kwargs={'escrow_id': escrow_id}))
                self.assertEqual(response.status_code, 400)
                self.assertEqual(response.json()['error'], 'Invalid escrow ID')

        get_chain_client.return_value.get_escrow.assert_not_called()

    def test_detail_chain_failure(self, get_chain_client):
        get_chain_client.return_value.get_escrow.side_effect = ChainError('RPC timeout at node')

        response = self.client.get(
            reverse('aptfy:escrow-detail', kwargs={'escrow_id': '3'}))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Failed to fetch escrow details')

    def test_stats(self, get_chain_client):
        get_chain_client.return_value.get_escrow_stats.return_value = EscrowStats(
            total_escrows=4, total_released=2, total_cancelled=1,
            total_volume=Decimal('12.5'),
        )

        response = self.client.get(reverse('aptfy:escrow-stats'))

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {
            'success': True,
            'stats': {
                'totalEscrows': 4,
                'totalReleased': 2,
                'totalCancelled': 1,
                'totalVolume': '12.5',
            },
        })

    def test_stats_chain_failure(self, get_chain_client):
        get_chain_client.return_value.get_escrow_stats.side_effect = ChainError('node down')

        response = self.client.get(reverse('aptfy:escrow-stats'))

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()['error'], 'Failed to fetch escrow statistics')
