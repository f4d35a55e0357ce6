"""
Havona Access Control

Per-record allow-list of reader identities. The operator always passes and
is never stored explicitly; every other (key, identity) pair defaults to
denied until granted.
"""

from typing import Dict, List, Sequence, Tuple

from .errors import BatchLengthMismatch, BatchTooLarge

Grant = Tuple[bytes, str]


class AccessControl:
    """
    Read grants keyed by (record key, identity).

    Grants are independent of the record lifecycle: they survive removal and
    re-creation of a key until explicitly revoked.
    """

    def __init__(self, operator: str, max_batch_size: int = 50):
        self.operator = operator
        self.max_batch_size = max_batch_size
        self.grants: Dict[Grant, bool] = {}

    def can_read(self, identity: str, key: bytes) -> bool:
        if identity == self.operator:
            return True
        return self.grants.get((key, identity), False)

    def grant(self, key: bytes, identity: str) -> bool:
        """
        Allow ``identity`` to read ``key``.

        Returns:
            True if the grant changed state, False if it was already in place
        """
        if identity == self.operator or self.grants.get((key, identity), False):
            return False
        self.grants[(key, identity)] = True
        return True

    def revoke(self, key: bytes, identity: str) -> bool:
        """
        Withdraw a read grant.

        Returns:
            True if a grant was removed
        """
        return self.grants.pop((key, identity), False)

    def grant_batch(self, keys: Sequence[bytes], identities: Sequence[str]) -> List[Grant]:
        """
        Grant keys[i] to identities[i] for every i.

        Returns:
            The (key, identity) pairs whose state changed

        Raises:
            BatchLengthMismatch: Arrays differ in length
            BatchTooLarge: More than max_batch_size pairs
        """
        if len(keys) != len(identities):
            raise BatchLengthMismatch(len(keys), len(identities))
        if len(keys) > self.max_batch_size:
            raise BatchTooLarge(len(keys), self.max_batch_size)

        changed = []
        for key, identity in zip(keys, identities):
            if self.grant(key, identity):
                changed.append((key, identity))
        return changed
