"""Session-scoped storage for checkouts, payment attempts, transactions and refunds."""
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from hyperpay_checkout.models import Checkout, PaymentAttempt, Refund, Transaction


class CheckoutStore(ABC):
    """Abstract interface for checkout session storage."""

    @abstractmethod
    async def create_checkout(self, checkout: Checkout) -> Checkout:
        """Store a new checkout. Raises ValueError if the id is taken."""
        pass

    @abstractmethod
    async def get_checkout(self, checkout_id: str) -> Optional[Checkout]:
        pass

    @abstractmethod
    async def update_checkout(self, checkout: Checkout) -> Checkout:
        pass

    @abstractmethod
    async def add_attempt(self, attempt: PaymentAttempt) -> PaymentAttempt:
        pass

    @abstractmethod
    async def list_attempts(self, checkout_id: str) -> List[PaymentAttempt]:
        """Finalized attempts for a checkout, oldest first."""
        pass

    @abstractmethod
    async def add_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        pass

    @abstractmethod
    async def update_transaction(self, transaction: Transaction) -> Transaction:
        pass

    @abstractmethod
    async def list_transactions(self, limit: int = 20, offset: int = 0) -> List[Transaction]:
        """Transactions newest first."""
        pass

    @abstractmethod
    async def add_refund(self, refund: Refund) -> Refund:
        pass

    @abstractmethod
    async def list_refunds(self, transaction_id: str) -> List[Refund]:
        pass


class InMemoryCheckoutStore(CheckoutStore):
    """
    In-memory store. Everything lives for the lifetime of one session only.
    """

    def __init__(self):
        self._checkouts: Dict[str, Checkout] = {}
        self._transactions: Dict[str, Transaction] = {}
        self._transaction_order: List[str] = []
        self._refunds: Dict[str, List[Refund]] = {}  # transaction_id -> refunds
        self._attempts: Dict[str, List[PaymentAttempt]] = {}  # checkout_id -> attempts

    async def create_checkout(self, checkout: Checkout) -> Checkout:
        if checkout.checkout_id in self._checkouts:
            raise ValueError(f"Checkout {checkout.checkout_id} already exists")
        self._checkouts[checkout.checkout_id] = checkout
        return checkout

    async def get_checkout(self, checkout_id: str) -> Optional[Checkout]:
        return self._checkouts.get(checkout_id)

    async def update_checkout(self, checkout: Checkout) -> Checkout:
        if checkout.checkout_id in self._checkouts:
            self._checkouts[checkout.checkout_id] = checkout
        return checkout

    async def add_attempt(self, attempt: PaymentAttempt) -> PaymentAttempt:
        self._attempts.setdefault(attempt.checkout_id, []).append(attempt)
        return attempt

    async def list_attempts(self, checkout_id: str) -> List[PaymentAttempt]:
        return list(self._attempts.get(checkout_id, []))

    async def add_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.transaction_id not in self._transactions:
            self._transaction_order.append(transaction.transaction_id)
        self._transactions[transaction.transaction_id] = transaction
        return transaction

    async def get_transaction(self, transaction_id: str) -> Optional[Transaction]:
        return self._transactions.get(transaction_id)

    async def update_transaction(self, transaction: Transaction) -> Transaction:
        if transaction.transaction_id in self._transactions:
            self._transactions[transaction.transaction_id] = transaction
        return transaction

    async def list_transactions(self, limit: int = 20, offset: int = 0) -> List[Transaction]:
        newest_first = list(reversed(self._transaction_order))
        return [self._transactions[tid] for tid in newest_first[offset:offset + limit]]

    async def add_refund(self, refund: Refund) -> Refund:
        self._refunds.setdefault(refund.transaction_id, []).append(refund)
        return refund

    async def list_refunds(self, transaction_id: str) -> List[Refund]:
        return list(self._refunds.get(transaction_id, []))
