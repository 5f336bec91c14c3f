"""
In-session payment token vault.

Tokens are random references; nothing about the card can be recovered from
them. The vault keeps a keyed fingerprint of the card number for duplicate
detection, plus the brand, last four digits and holder name needed to
describe the card later. The fingerprint key is generated per vault, so
fingerprints do not correlate across sessions.
"""
from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from typing import Dict, Optional

from hyperpay_checkout.models import CardDetails, TokenRecord

logger = logging.getLogger(__name__)

TOKEN_PREFIX = "tok_"


class TokenVault:
    """Maps opaque tokens to card descriptions for one session."""

    def __init__(self, fingerprint_key: Optional[bytes] = None):
        self._key = fingerprint_key or secrets.token_bytes(32)
        self._records: Dict[str, TokenRecord] = {}

    def fingerprint(self, card_number: str) -> str:
        """Keyed hash identifying a card number without revealing it."""
        return hmac.new(self._key, card_number.encode("utf-8"), hashlib.sha256).hexdigest()

    def tokenize(
        self,
        checkout_id: str,
        card: CardDetails,
        gateway_reference: Optional[str] = None,
    ) -> TokenRecord:
        """Store a card description and return its record with a new token."""
        record = TokenRecord(
            token=f"{TOKEN_PREFIX}{secrets.token_urlsafe(24)}",
            checkout_id=checkout_id,
            fingerprint=self.fingerprint(card.card_number),
            brand=card.brand,
            last4=card.last4,
            holder_name=card.holder_name,
            gateway_reference=gateway_reference,
        )
        self._records[record.token] = record
        logger.info(f"Tokenized card ending {record.last4} for checkout {checkout_id}")
        return record

    def get(self, token: str) -> Optional[TokenRecord]:
        return self._records.get(token)

    def clear(self) -> None:
        self._records.clear()

    def __len__(self) -> int:
        return len(self._records)
