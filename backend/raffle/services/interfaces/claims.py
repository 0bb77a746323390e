"""
Processing-claim interface for webhook deliveries.
"""

from abc import ABC, abstractmethod


class ClaimStore(ABC):
    """
    Short lease on a payment id while one webhook invocation reconciles it.

    The lease only keeps concurrent duplicates apart; the permanent
    guarantee is the order's own payment_id column.

    Implementations:
    - DatabaseClaimStore: payment_claims table, primary key on payment_id
    - RedisClaimStore: SET NX PX with compare-and-delete release
    """

    @abstractmethod
    async def acquire(self, payment_id: str, owner: str) -> bool:
        """
        Claim `payment_id` for `owner`.

        Returns:
            True if claimed (proceed)
            False if another unexpired claim exists (drop the delivery)
        """

    @abstractmethod
    async def release(self, payment_id: str, owner: str) -> None:
        """Drop the claim if `owner` still holds it."""
