"""
Keyless login state kept in the Django session.

A key pair is stored as *pending* when the OAuth redirect is issued, popped
exactly once when the callback arrives, and the derived account is then kept
as an *active* session keyed by the same nonce until logout or expiry.
"""
import time
from typing import Any, Dict, Optional

from aptfy.chain.keyless import EphemeralKeyPair


PENDING_KEY = 'aptfy_pending_key_pairs'
ACTIVE_KEY = 'aptfy_keyless_sessions'


class KeylessSession:
    def __init__(self, session):
        self.session = session

    def _entries(self, key: str) -> Dict[str, Dict[str, Any]]:
        entries = self.session.get(key) or {}
        now = int(time.time())
        valid = {
            nonce: entry for nonce, entry in entries.items()
            if entry.get('expiryDateSecs', 0) > now
        }
        if len(valid) != len(entries):
            self._save(key, valid)
        return valid

    def _save(self, key: str, entries: Dict[str, Dict[str, Any]]) -> None:
        self.session[key] = entries
        self.session.modified = True

    def begin_login(self, key_pair: EphemeralKeyPair) -> str:
        pending = self._entries(PENDING_KEY)
        pending[key_pair.nonce] = key_pair.to_storage()
        self._save(PENDING_KEY, pending)
        return key_pair.nonce

    def consume_pending(self, nonce: str) -> Optional[EphemeralKeyPair]:
        pending = self._entries(PENDING_KEY)
        entry = pending.pop(nonce, None)
        self._save(PENDING_KEY, pending)
        if entry is None:
            return None
        return EphemeralKeyPair.from_client_payload(entry)

    def activate(self, key_pair: EphemeralKeyPair, token: str, address: str,
                 email: Optional[str] = None) -> None:
        active = self._entries(ACTIVE_KEY)
        entry = key_pair.to_storage()
        entry.update({'jwt': token, 'address': address, 'email': email})
        active[key_pair.nonce] = entry
        self._save(ACTIVE_KEY, active)

    def get_active(self, nonce: str) -> Optional[Dict[str, Any]]:
        return self._entries(ACTIVE_KEY).get(nonce)

    def get_key_pair(self, nonce: str) -> Optional[EphemeralKeyPair]:
        entry = self.get_active(nonce)
        if entry is None:
            return None
        return EphemeralKeyPair.from_client_payload(entry)

    def end(self, nonce: Optional[str] = None) -> None:
        if nonce is None:
            self.session.pop(PENDING_KEY, None)
            self.session.pop(ACTIVE_KEY, None)
            self.session.modified = True
            return
        active = self._entries(ACTIVE_KEY)
        active.pop(nonce, None)
        self._save(ACTIVE_KEY, active)
