"""Per-session credit balance gating transformations."""

import logging
import os


DEFAULT_CREDITS = 5

logger = logging.getLogger("studio.credits")


def initial_credits_from_env() -> int:
    return int(os.getenv("STUDIO_INITIAL_CREDITS", str(DEFAULT_CREDITS)))


class CreditBalance:
    """Client-local credit counter.

    A dispatched transformation reserves one credit up front; the reservation
    is committed on success and released on failure. The balance therefore
    never goes negative even with many transformations in flight.
    """

    def __init__(self, initial: int = DEFAULT_CREDITS):
        if initial < 0:
            raise ValueError("initial credits cannot be negative")
        self._balance = initial
        self._reserved = 0

    @property
    def balance(self) -> int:
        """Credits not yet spent."""
        return self._balance

    @property
    def reserved(self) -> int:
        return self._reserved

    @property
    def available(self) -> int:
        """Credits that can still be reserved."""
        return self._balance - self._reserved

    def can_afford(self, count: int = 1) -> bool:
        return count <= self.available

    def reserve(self) -> bool:
        if self.available <= 0:
            return False
        self._reserved += 1
        return True

    def commit(self) -> None:
        if self._reserved <= 0:
            raise RuntimeError("commit without a reservation")
        self._reserved -= 1
        self._balance -= 1

    def release(self) -> None:
        if self._reserved <= 0:
            raise RuntimeError("release without a reservation")
        self._reserved -= 1

    def top_up(self, amount: int) -> int:
        if amount <= 0:
            raise ValueError("top-up amount must be positive")
        self._balance += amount
        logger.info(f"Topped up {amount} credits (balance {self._balance})")
        return self._balance
