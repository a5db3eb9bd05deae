"""
Similarity Matcher - pending transactions that share a vendor fingerprint

Scope is always (owner, tax year, kind) and status=pending; finalized rows
are never returned. Results reflect the store at call time, so callers
re-fetch after every correction instead of caching the list.
"""
from typing import List, Optional
from uuid import UUID

import structlog

from packages.common.repositories.base import TransactionRepository, TransactionScope
from packages.common.schemas.transaction import Transaction

logger = structlog.get_logger()


class SimilarityMatcher:

    def __init__(self, transactions: TransactionRepository):
        self.transactions = transactions

    async def find_similar(
        self,
        vendor_normalized: Optional[str],
        exclude_id: Optional[UUID],
        scope: TransactionScope,
    ) -> List[Transaction]:
        """
        Find other pending transactions with the same fingerprint.

        Returns an empty list (never an error) when the fingerprint is blank
        or nothing matches.
        """
        if not vendor_normalized:
            return []

        matches = await self.transactions.find_pending_by_vendor(
            scope, vendor_normalized, exclude_id=exclude_id,
        )
        logger.debug("similar_transactions_found",
                     owner_id=str(scope.owner_id),
                     tax_year=scope.tax_year,
                     kind=scope.kind.value,
                     vendor=vendor_normalized,
                     count=len(matches))
        return matches
