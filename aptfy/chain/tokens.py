"""
Supported tokens: APT (native coin) and USDC (fungible asset).
"""
from dataclasses import dataclass, field
from decimal import ROUND_DOWN, Decimal
from typing import Dict, List, Optional, Tuple

from django.conf import settings


@dataclass(frozen=True)
class TokenConfig:
    symbol: str
    name: str
    decimals: int
    type: str  # 'coin' or 'fungible_asset'
    transfer_function: str
    type_arguments: Tuple[str, ...] = field(default_factory=tuple)
    address: Optional[str] = None


def _usdc_address() -> str:
    return getattr(settings, 'APTFY_USDC_METADATA_ADDRESS', '')


def _build_tokens() -> Dict[str, TokenConfig]:
    return {
        'APT': TokenConfig(
            symbol='APT',
            name='Aptos Coin',
            decimals=8,
            type='coin',
            transfer_function='0x1::aptos_account::transfer',
        ),
        'USDC': TokenConfig(
            symbol='USDC',
            name='USD Coin',
            decimals=6,
            type='fungible_asset',
            transfer_function='0x1::primary_fungible_store::transfer',
            type_arguments=('0x1::fungible_asset::Metadata',),
            address=_usdc_address(),
        ),
    }


def get_supported_tokens() -> List[str]:
    return ['APT', 'USDC']


def is_valid_token(symbol) -> bool:
    return isinstance(symbol, str) and symbol in get_supported_tokens()


def get_token_config(symbol: str) -> TokenConfig:
    config = _build_tokens().get(symbol)
    if config is None:
        raise ValueError(f'Token {symbol} not supported')
    return config


def to_units(amount: Decimal, symbol: str) -> int:
    """Convert a human-readable amount to the token's smallest unit."""
    config = get_token_config(symbol)
    scaled = Decimal(amount) * (Decimal(10) ** config.decimals)
    return int(scaled.to_integral_value(rounding=ROUND_DOWN))


def from_units(units, symbol: str) -> Decimal:
    config = get_token_config(symbol)
    return Decimal(int(units)) / (Decimal(10) ** config.decimals)


def format_amount(amount: Decimal, symbol: str) -> str:
    # USDC shows cents, APT up to four places
    places = Decimal('0.01') if symbol == 'USDC' else Decimal('0.0001')
    return f'{Decimal(amount).quantize(places, rounding=ROUND_DOWN)} {symbol}'
