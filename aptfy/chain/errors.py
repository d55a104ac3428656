"""
Chain failures with structured Move abort codes.

The VM status string is parsed once here so callers branch on ``code``
instead of matching prose.
"""
import re
from typing import Optional


ESCROW_NOT_FOUND = 'EESCROW_NOT_FOUND'
NOT_AUTHORIZED = 'ENOT_AUTHORIZED'
ALREADY_RELEASED = 'EALREADY_RELEASED'
CANCELLED = 'ECANCELLED'
INSUFFICIENT_BALANCE = 'EINSUFFICIENT_BALANCE'
INVALID_AMOUNT = 'EINVALID_AMOUNT'
INVALID_RECIPIENT = 'EINVALID_RECIPIENT'

KNOWN_ABORT_CODES = (
    ESCROW_NOT_FOUND,
    NOT_AUTHORIZED,
    ALREADY_RELEASED,
    CANCELLED,
    INSUFFICIENT_BALANCE,
    INVALID_AMOUNT,
    INVALID_RECIPIENT,
)

# e.g. "Move abort in 0xcafe::payment_escrow: ENOT_AUTHORIZED(0x50002): ..."
_ABORT_RE = re.compile(r'\b(E[A-Z][A-Z0-9_]*)\(0x[0-9a-fA-F]+\)')


def extract_abort_code(message: Optional[str]) -> Optional[str]:
    if not message:
        return None
    match = _ABORT_RE.search(message)
    if match and match.group(1) in KNOWN_ABORT_CODES:
        return match.group(1)
    for code in KNOWN_ABORT_CODES:
        if re.search(rf'\b{code}\b', message):
            return code
    return None


class ChainError(Exception):
    """Base error for chain RPC failures."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ChainTransactionError(ChainError):
    """A submitted transaction was rejected or aborted."""

    def __init__(self, message: str, code: Optional[str] = None, transaction_hash: Optional[str] = None):
        super().__init__(message)
        self.code = code if code is not None else extract_abort_code(message)
        self.transaction_hash = transaction_hash
