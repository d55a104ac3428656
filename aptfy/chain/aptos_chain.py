"""
Aptos chain client built on the aptos-sdk REST client.

The SDK client is async; every public method opens a client, runs one
coroutine through ``async_to_sync`` and closes the client again, so the
sync views never share an event loop or connection pool.
"""
import json
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from aptos_sdk.account_address import AccountAddress
from aptos_sdk.async_client import ApiError, ResourceNotFound, RestClient
from aptos_sdk.bcs import Serializer
from aptos_sdk.transactions import (
    EntryFunction,
    SignedTransaction,
    TransactionArgument,
    TransactionPayload,
)
from aptos_sdk.type_tag import StructTag, TypeTag
from asgiref.sync import async_to_sync
from django.conf import settings
from loguru import logger

from .base import ChainClient, EscrowDetails, EscrowStats, EscrowV2Details, EscrowV2Stats
from .errors import ChainError, ChainTransactionError
from .tokens import from_units, get_token_config, to_units


T = TypeVar('T')

NODE_URLS = {
    'mainnet': 'https://api.mainnet.aptoslabs.com/v1',
    'testnet': 'https://api.testnet.aptoslabs.com/v1',
    'devnet': 'https://api.devnet.aptoslabs.com/v1',
    'local': 'http://127.0.0.1:8080/v1',
}

EXPLORER_URL = 'https://explorer.aptoslabs.com'

ESCROW_MODULE = 'payment_escrow'
ESCROW_V2_MODULE = 'escrow_v2'


class AptosChainClient(ChainClient):
    """Chain client for an Aptos network."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self._network = config.get('network') or getattr(
            settings, 'APTFY_APTOS_NETWORK', 'testnet')
        self.node_url = config.get('node_url') or NODE_URLS.get(
            self._network, NODE_URLS['testnet'])
        module_address = config.get('escrow_module_address') or getattr(
            settings, 'APTFY_ESCROW_MODULE_ADDRESS', '')
        # settings may hold the short form (0xcafe); entry functions need the long one
        self.escrow_module_address = str(
            AccountAddress.from_str_relaxed(module_address)) if module_address else ''
        self.config.setdefault('explorer_url', EXPLORER_URL)

    @property
    def network(self) -> str:
        return self._network

    def _run(self, operation: Callable[[RestClient], Awaitable[T]]) -> T:
        async def runner() -> T:
            client = RestClient(self.node_url)
            try:
                return await operation(client)
            finally:
                await client.close()

        return async_to_sync(runner)()

    def _escrow_function(self, name: str) -> str:
        return f'{self.escrow_module_address}::{ESCROW_MODULE}::{name}'

    def _view(self, function: str, type_arguments: List[str], arguments: List[Any]) -> List[Any]:
        async def call(client: RestClient):
            return await client.view(function, type_arguments, arguments)

        try:
            result = self._run(call)
        except ApiError as exc:
            logger.error('view {} failed: {}', function, exc)
            raise ChainError(f'View function {function} failed: {exc}') from exc
        if isinstance(result, (bytes, str)):
            result = json.loads(result)
        return result

    def _submit(self, signer, payload: EntryFunction) -> str:
        """Sign with ``signer``, submit and wait until the transaction commits."""
        async def submit(client: RestClient) -> str:
            raw_transaction = await client.create_bcs_transaction(
                signer.address(), TransactionPayload(payload))
            signed = SignedTransaction(
                raw_transaction, signer.sign_transaction(raw_transaction))
            tx_hash = await client.submit_bcs_transaction(signed)
            logger.debug('submitted {}::{} as {}',
                         payload.module, payload.function, tx_hash)
            try:
                await client.wait_for_transaction(tx_hash)
            except AssertionError as exc:
                # wait_for_transaction asserts success and embeds the VM status
                raise ChainTransactionError(str(exc), transaction_hash=tx_hash) from exc
            return tx_hash

        try:
            return self._run(submit)
        except ApiError as exc:
            raise ChainTransactionError(str(exc)) from exc

    def get_balance(self, address: str, token: str = 'APT') -> Decimal:
        config = get_token_config(token)
        account = AccountAddress.from_str(address)

        if token == 'APT':
            async def balance(client: RestClient) -> int:
                return await client.account_balance(account)

            try:
                units = self._run(balance)
            except ResourceNotFound:
                logger.debug('account {} has no APT store yet', address)
                return Decimal(0)
            except ApiError as exc:
                raise ChainError(f'Failed to fetch APT balance: {exc}') from exc
            return from_units(units, token)

        result = self._view(
            '0x1::primary_fungible_store::balance',
            list(config.type_arguments),
            [address, config.address],
        )
        return from_units(result[0], token)

    def transfer(self, signer, to: str, amount: Decimal, token: str = 'APT') -> str:
        config = get_token_config(token)
        units = to_units(amount, token)
        module, function = config.transfer_function.rsplit('::', 1)
        recipient = AccountAddress.from_str(to)

        if config.type == 'coin':
            payload = EntryFunction.natural(
                module,
                function,
                [],
                [
                    TransactionArgument(recipient, Serializer.struct),
                    TransactionArgument(units, Serializer.u64),
                ],
            )
        else:
            payload = EntryFunction.natural(
                module,
                function,
                [TypeTag(StructTag.from_str(tag)) for tag in config.type_arguments],
                [
                    TransactionArgument(AccountAddress.from_str(
                        config.address), Serializer.struct),
                    TransactionArgument(recipient, Serializer.struct),
                    TransactionArgument(units, Serializer.u64),
                ],
            )

        logger.info('transferring {} {} from {} to {}',
                    amount, token, signer.address(), to)
        return self._submit(signer, payload)

    def create_escrow(self, signer, recipient: str, amount: Decimal, memo: str = '') -> str:
        payload = EntryFunction.natural(
            f'{self.escrow_module_address}::{ESCROW_MODULE}',
            'create_escrow',
            [],
            [
                TransactionArgument(AccountAddress.from_str(
                    recipient), Serializer.struct),
                TransactionArgument(to_units(amount, 'APT'), Serializer.u64),
                TransactionArgument(memo.encode('utf-8'), Serializer.to_bytes),
            ],
        )
        return self._submit(signer, payload)

    def _escrow_action(self, signer, action: str, escrow_id: int) -> str:
        payload = EntryFunction.natural(
            f'{self.escrow_module_address}::{ESCROW_MODULE}',
            action,
            [],
            [TransactionArgument(escrow_id, Serializer.u64)],
        )
        return self._submit(signer, payload)

    def release_escrow(self, signer, escrow_id: int) -> str:
        return self._escrow_action(signer, 'release_escrow', escrow_id)

    def cancel_escrow(self, signer, escrow_id: int) -> str:
        return self._escrow_action(signer, 'cancel_escrow', escrow_id)

    def escrow_exists(self, escrow_id: int) -> bool:
        result = self._view(self._escrow_function(
            'escrow_exists'), [], [str(escrow_id)])
        return bool(result[0])

    def get_escrow(self, escrow_id: int) -> Optional[EscrowDetails]:
        if not self.escrow_exists(escrow_id):
            return None

        sender, recipient, amount, released, cancelled = self._view(
            self._escrow_function('get_escrow_details'), [], [str(escrow_id)])
        return EscrowDetails(
            escrow_id=escrow_id,
            sender=sender,
            recipient=recipient,
            amount=from_units(amount, 'APT'),
            released=bool(released),
            cancelled=bool(cancelled),
        )

    def get_escrow_stats(self) -> EscrowStats:
        total, released, cancelled, volume = self._view(
            self._escrow_function('get_registry_stats'), [], [])
        return EscrowStats(
            total_escrows=int(total),
            total_released=int(released),
            total_cancelled=int(cancelled),
            total_volume=from_units(volume, 'APT'),
        )

    def _escrow_v2_payload(self, function: str, arguments: List[TransactionArgument]) -> EntryFunction:
        return EntryFunction.natural(
            f'{self.escrow_module_address}::{ESCROW_V2_MODULE}', function, [], arguments)

    def _escrow_v2_view(self, name: str, arguments: List[Any]) -> List[Any]:
        return self._view(f'{self.escrow_module_address}::{ESCROW_V2_MODULE}::{name}', [], arguments)

    def create_standard_escrow(self, signer, recipient: str, amount: Decimal,
                               memo: str = '') -> str:
        return self._submit(signer, self._escrow_v2_payload('create_standard_escrow', [
            TransactionArgument(AccountAddress.from_str(recipient), Serializer.struct),
            TransactionArgument(to_units(amount, 'APT'), Serializer.u64),
            TransactionArgument(memo.encode('utf-8'), Serializer.to_bytes),
        ]))

    def create_time_locked_escrow(self, signer, recipient: str, amount: Decimal, memo: str,
                                  release_time: int, expiry_time: int) -> str:
        return self._submit(signer, self._escrow_v2_payload('create_time_locked_escrow', [
            TransactionArgument(AccountAddress.from_str(recipient), Serializer.struct),
            TransactionArgument(to_units(amount, 'APT'), Serializer.u64),
            TransactionArgument(memo.encode('utf-8'), Serializer.to_bytes),
            TransactionArgument(release_time, Serializer.u64),
            TransactionArgument(expiry_time, Serializer.u64),
        ]))

    def create_arbitrated_escrow(self, signer, recipient: str, arbitrator: str, amount: Decimal,
                                 memo: str = '', expiry_time: int = 0) -> str:
        return self._submit(signer, self._escrow_v2_payload('create_arbitrated_escrow', [
            TransactionArgument(AccountAddress.from_str(recipient), Serializer.struct),
            TransactionArgument(AccountAddress.from_str(arbitrator), Serializer.struct),
            TransactionArgument(to_units(amount, 'APT'), Serializer.u64),
            TransactionArgument(memo.encode('utf-8'), Serializer.to_bytes),
            TransactionArgument(expiry_time, Serializer.u64),
        ]))

    def _escrow_v2_action(self, signer, action: str, escrow_id: int) -> str:
        return self._submit(signer, self._escrow_v2_payload(
            action, [TransactionArgument(escrow_id, Serializer.u64)]))

    def release_escrow_v2(self, signer, escrow_id: int) -> str:
        return self._escrow_v2_action(signer, 'release_escrow', escrow_id)

    def cancel_escrow_v2(self, signer, escrow_id: int) -> str:
        return self._escrow_v2_action(signer, 'cancel_escrow', escrow_id)

    def claim_expired_escrow(self, signer, escrow_id: int) -> str:
        return self._escrow_v2_action(signer, 'claim_expired_escrow', escrow_id)

    def get_escrow_v2(self, escrow_id: int) -> Optional[EscrowV2Details]:
        exists = self._escrow_v2_view('escrow_exists', [str(escrow_id)])
        if not exists[0]:
            return None

        (escrow_type, sender, recipient, arbitrator, amount,
         release_time, expiry_time, released, cancelled) = self._escrow_v2_view(
            'get_escrow_details', [str(escrow_id)])
        return EscrowV2Details(
            escrow_id=escrow_id,
            escrow_type=int(escrow_type),
            sender=sender,
            recipient=recipient,
            arbitrator=_option_value(arbitrator),
            amount=from_units(amount, 'APT'),
            release_time=int(release_time),
            expiry_time=int(expiry_time),
            released=bool(released),
            cancelled=bool(cancelled),
        )

    def is_expired(self, escrow_id: int) -> bool:
        return bool(self._escrow_v2_view('is_expired', [str(escrow_id)])[0])

    def is_claimable(self, escrow_id: int) -> bool:
        return bool(self._escrow_v2_view('is_claimable', [str(escrow_id)])[0])

    def get_escrow_v2_stats(self) -> EscrowV2Stats:
        (total, released, cancelled, expired, standard,
         time_locked, arbitrated, volume) = self._escrow_v2_view('get_registry_stats', [])
        return EscrowV2Stats(
            total_escrows=int(total),
            total_released=int(released),
            total_cancelled=int(cancelled),
            total_expired=int(expired),
            total_standard=int(standard),
            total_time_locked=int(time_locked),
            total_arbitrated=int(arbitrated),
            total_volume=from_units(volume, 'APT'),
        )


def _option_value(value: Any) -> Optional[str]:
    """Unwrap a Move ``Option`` returned by a view (``{"vec": [x]}`` or ``[x]``)."""
    if isinstance(value, dict):
        value = value.get('vec')
    while isinstance(value, list):
        if not value:
            return None
        value = value[0]
    return value or None
