import unittest
from decimal import Decimal
from unittest.mock import patch

from django.test import SimpleTestCase, override_settings

from aptfy.chain import AptosChainClient, ChainClientFactory, get_chain_client
from aptfy.chain.errors import ChainTransactionError, extract_abort_code
from aptfy.chain.tokens import (
    format_amount,
    from_units,
    get_token_config,
    is_valid_token,
    to_units,
)


MODULE_ADDRESS = '0x' + 'ca' * 32
SIGNER_ADDRESS = '0x' + 'a' * 64
RECIPIENT = '0x' + 'b' * 64


class AbortCodeTests(unittest.TestCase):
    def test_extracts_code_from_vm_status(self):
        message = (
            'Transaction 0xabc failed with Move abort in '
            f'{MODULE_ADDRESS}::payment_escrow: ENOT_AUTHORIZED(0x50002): '
        )

        self.assertEqual(extract_abort_code(message), 'ENOT_AUTHORIZED')
        self.assertEqual(ChainTransactionError(message).code, 'ENOT_AUTHORIZED')

    def test_falls_back_to_bare_code(self):
        self.assertEqual(extract_abort_code('abort: EALREADY_RELEASED'), 'EALREADY_RELEASED')

    def test_unknown_or_partial_codes_are_none(self):
        self.assertIsNone(extract_abort_code('OUT_OF_GAS'))
        self.assertIsNone(extract_abort_code('EFOO(0x1)'))
        self.assertIsNone(extract_abort_code('XECANCELLED_Y'))
        self.assertIsNone(extract_abort_code(None))

    def test_explicit_code_wins(self):
        error = ChainTransactionError('ECANCELLED(0x3)', code='EESCROW_NOT_FOUND')

        self.assertEqual(error.code, 'EESCROW_NOT_FOUND')


class TokenTests(SimpleTestCase):
    def test_unit_conversion(self):
        self.assertEqual(to_units(Decimal('1.5'), 'APT'), 150_000_000)
        self.assertEqual(to_units(Decimal('0.1234567'), 'USDC'), 123_456)
        self.assertEqual(from_units('2500000', 'USDC'), Decimal('2.5'))

    def test_token_registry(self):
        self.assertTrue(is_valid_token('USDC'))
        self.assertFalse(is_valid_token('usdc'))
        self.assertFalse(is_valid_token(None))
        self.assertEqual(get_token_config('APT').decimals, 8)
        with self.assertRaises(ValueError):
            get_token_config('ETH')

    @override_settings(APTFY_USDC_METADATA_ADDRESS='0x' + '69' * 32)
    def test_usdc_address_follows_settings(self):
        self.assertEqual(get_token_config('USDC').address, '0x' + '69' * 32)

    def test_format_amount(self):
        self.assertEqual(format_amount(Decimal('1.23456'), 'APT'), '1.2345 APT')
        self.assertEqual(format_amount(Decimal('3'), 'USDC'), '3.00 USDC')


class ChainClientFactoryTests(SimpleTestCase):
    def test_create_known_network(self):
        client = ChainClientFactory.create('Mainnet')

        self.assertIsInstance(client, AptosChainClient)
        self.assertEqual(client.network, 'mainnet')
        self.assertEqual(client.node_url, 'https://api.mainnet.aptoslabs.com/v1')

    def test_unknown_network(self):
        with self.assertRaisesMessage(ValueError, 'Unsupported network: solana'):
            ChainClientFactory.create('solana')

    @override_settings(APTFY_APTOS_NETWORK='devnet',
                       APTFY_APTOS_NODE_URL='http://node.internal:8080/v1')
    def test_client_from_settings(self):
        client = get_chain_client()

        self.assertEqual(client.network, 'devnet')
        self.assertEqual(client.node_url, 'http://node.internal:8080/v1')

    @override_settings(APTFY_ESCROW_MODULE_ADDRESS='0xCAFE')
    def test_short_module_address_builds_escrow_payloads(self):
        client = get_chain_client()

        with patch.object(client, '_submit', return_value='0xhash') as submit:
            client.release_escrow(FakeSigner(), 1)
            client.create_escrow(FakeSigner(), RECIPIENT, Decimal('1'), 'memo')

        self.assertEqual(client.escrow_module_address, '0x' + '0' * 60 + 'cafe')
        for call in submit.call_args_list:
            payload = call.args[1]
            self.assertEqual(str(payload.module.address), client.escrow_module_address)
            self.assertEqual(payload.module.name, 'payment_escrow')

    def test_explorer_url(self):
        client = get_chain_client('testnet')

        self.assertEqual(
            client.get_explorer_url('0xabc'),
            'https://explorer.aptoslabs.com/txn/0xabc?network=testnet',
        )


class FakeSigner:
    def address(self):
        return SIGNER_ADDRESS


class AptosChainClientTests(SimpleTestCase):
    def setUp(self) -> None:
        self.client = AptosChainClient({
            'network': 'testnet',
            'escrow_module_address': MODULE_ADDRESS,
        })

    def test_get_escrow_reads_views(self):
        views = [
            [True],
            [SIGNER_ADDRESS, RECIPIENT, '250000000', False, True],
        ]
        with patch.object(self.client, '_view', side_effect=views) as view:
            details = self.client.get_escrow(5)

        self.assertEqual(details.amount, Decimal('2.5'))
        self.assertEqual(details.status, 'cancelled')
        self.assertEqual(
            view.call_args_list[1].args[0],
            f'{MODULE_ADDRESS}::payment_escrow::get_escrow_details',
        )
        self.assertEqual(view.call_args_list[1].args[2], ['5'])

    def test_get_missing_escrow(self):
        with patch.object(self.client, '_view', return_value=[False]) as view:
            self.assertIsNone(self.client.get_escrow(9))

        view.assert_called_once()

    def test_escrow_stats(self):
        with patch.object(self.client, '_view', return_value=['10', '4', '3', '1200000000']):
            stats = self.client.get_escrow_stats()

        self.assertEqual(stats.total_escrows, 10)
        self.assertEqual(stats.total_volume, Decimal('12'))

    def test_usdc_balance_uses_fungible_store_view(self):
        with patch.object(self.client, '_view', return_value=['2500000']) as view:
            balance = self.client.get_balance(SIGNER_ADDRESS, 'USDC')

        self.assertEqual(balance, Decimal('2.5'))
        self.assertEqual(view.call_args.args[0], '0x1::primary_fungible_store::balance')

    def test_apt_balance(self):
        with patch.object(self.client, '_run', return_value=150_000_000):
            balance = self.client.get_balance(SIGNER_ADDRESS, 'APT')

        self.assertEqual(balance, Decimal('1.5'))

    def test_release_submits_entry_function(self):
        with patch.object(self.client, '_submit', return_value='0xhash') as submit:
            tx_hash = self.client.release_escrow(FakeSigner(), 12)

        self.assertEqual(tx_hash, '0xhash')
        payload = submit.call_args.args[1]
        self.assertEqual(payload.function, 'release_escrow')
        self.assertEqual(payload.module.name, 'payment_escrow')

    def test_apt_transfer_uses_aptos_account(self):
        with patch.object(self.client, '_submit', return_value='0xhash') as submit:
            self.client.transfer(FakeSigner(), RECIPIENT, Decimal('0.5'), 'APT')

        payload = submit.call_args.args[1]
        self.assertEqual(payload.module.name, 'aptos_account')
        self.assertEqual(payload.function, 'transfer')

    def test_get_escrow_v2_unwraps_arbitrator_option(self):
        views = [
            [True],
            ['2', SIGNER_ADDRESS, RECIPIENT, {'vec': [RECIPIENT]}, '150000000',
             '0', '1900000000', False, False],
        ]
        with patch.object(self.client, '_view', side_effect=views) as view:
            details = self.client.get_escrow_v2(8)

        self.assertEqual(details.type_name, 'arbitrated')
        self.assertEqual(details.arbitrator, RECIPIENT)
        self.assertEqual(details.amount, Decimal('1.5'))
        self.assertEqual(details.expiry_time, 1_900_000_000)
        self.assertEqual(
            view.call_args_list[1].args[0],
            f'{MODULE_ADDRESS}::escrow_v2::get_escrow_details',
        )

    def test_get_escrow_v2_without_arbitrator(self):
        views = [
            [True],
            ['0', SIGNER_ADDRESS, RECIPIENT, {'vec': []}, '1', '0', '0', True, False],
        ]
        with patch.object(self.client, '_view', side_effect=views):
            details = self.client.get_escrow_v2(8)

        self.assertIsNone(details.arbitrator)
        self.assertEqual(details.status(), 'released')

    def test_escrow_v2_stats(self):
        result = ['9', '3', '1', '2', '4', '3', '2', '4050000000']
        with patch.object(self.client, '_view', return_value=result):
            stats = self.client.get_escrow_v2_stats()

        self.assertEqual(stats.total_expired, 2)
        self.assertEqual(stats.total_time_locked, 3)
        self.assertEqual(stats.total_volume, Decimal('40.5'))

    def test_time_locked_escrow_payload(self):
        with patch.object(self.client, '_submit', return_value='0xhash') as submit:
            self.client.create_time_locked_escrow(
                FakeSigner(), RECIPIENT, Decimal('2'), 'rent', 1_800_000_000, 1_900_000_000)

        payload = submit.call_args.args[1]
        self.assertEqual(payload.module.name, 'escrow_v2')
        self.assertEqual(payload.function, 'create_time_locked_escrow')
        self.assertEqual(len(payload.args), 5)
        self.assertEqual(payload.args[3], (1_800_000_000).to_bytes(8, 'little'))

    def test_claim_expired_payload(self):
        with patch.object(self.client, '_submit', return_value='0xhash') as submit:
            self.client.claim_expired_escrow(FakeSigner(), 3)

        payload = submit.call_args.args[1]
        self.assertEqual(payload.function, 'claim_expired_escrow')
        self.assertEqual(payload.args, [(3).to_bytes(8, 'little')])
