"""
Catalog coordination for collectors and palindromes.

CatalogManager sits between the HTTP layer and storage:
- Reads go through the query cache and are shaped by palindrome_utils
- Writes validate input, hit the database, then invalidate affected queries
- Collector profiles and the leaderboard are recomputed from stored records

Errors are reported with LookupError (unknown ids) and
PalindromeValidationError (rejected submissions); the API maps them to
HTTP status codes.
"""

from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Dict, List, Optional

from . import palindrome_utils
from .database import PlateDatabase
from .models import (
    Collector,
    CollectorCreate,
    CollectorProfile,
    CollectorWithStats,
    GalleryStats,
    LeaderboardEntry,
    Palindrome,
    PalindromeCreate,
    PalindromeWithCollector,
)
from .query_cache import QueryCache, QueryKeys
from .utils import utcnow

logger = logging.getLogger(__name__)


class PalindromeValidationError(ValueError):
    """A palindrome submission failed validation; ``errors`` maps field to message."""

    def __init__(self, errors: Dict[str, str]):
        super().__init__("; ".join(f"{field}: {message}" for field, message in errors.items()))
        self.errors = errors


class CatalogManager:
    """
    Central coordinator for gallery reads and admin writes.

    Thread Safety:
        The database opens a connection per call and the cache guards its
        own state, so one manager can serve all request threads.

    Attributes:
        database: Backing SQLite store
        cache: Read-through cache for list and aggregate queries
    """

    def __init__(self, database: PlateDatabase, cache: Optional[QueryCache] = None) -> None:
        self.database = database
        self.cache = cache or QueryCache()

    # -- reads -------------------------------------------------------------

    def list_collectors(self) -> List[Collector]:
        return self.cache.get_or_load(QueryKeys.collectors, self.database.list_collectors)

    def list_collectors_with_stats(self) -> List[CollectorWithStats]:
        """Every collector with their palindrome count and discovery date range."""
        return self.cache.get_or_load(
            QueryKeys.collectors_with_stats,
            lambda: palindrome_utils.collectors_with_stats(
                self.database.list_collectors(), self.database.list_palindromes()
            ),
        )

    def get_collector_profile(self, collector_id: str) -> CollectorProfile:
        """
        Load a collector together with their statistics and finds.

        Raises:
            LookupError: If the collector does not exist
        """

        def load() -> CollectorProfile:
            collector = self.database.get_collector(collector_id)
            if collector is None:
                raise LookupError(f"Collector {collector_id} not found")
            palindromes = self.database.list_palindromes(collector_id=collector_id)
            return CollectorProfile(
                collector=collector,
                stats=palindrome_utils.calculate_collector_stats(palindromes),
                palindromes=palindromes,
            )

        return self.cache.get_or_load(QueryKeys.collector(collector_id), load)

    def list_palindromes(
        self,
        search: Optional[str] = None,
        collector_id: Optional[str] = None,
        location: Optional[str] = None,
        car_type: Optional[str] = None,
    ) -> List[PalindromeWithCollector]:
        """
        Gallery listing, newest first, with collector details attached.

        Filtering runs on the cached joined list so every filter combination
        shares one database read.
        """
        joined = self.cache.get_or_load(QueryKeys.palindromes_with_collector, self._load_joined_palindromes)
        return palindrome_utils.filter_palindromes(
            joined,
            search=search,
            collector_id=collector_id,
            location=location,
            car_type=car_type,
        )

    def get_palindrome(self, palindrome_id: str) -> PalindromeWithCollector:
        for palindrome in self.list_palindromes():
            if palindrome.id == palindrome_id:
                return palindrome
        raise LookupError(f"Palindrome {palindrome_id} not found")

    def leaderboard(self) -> List[LeaderboardEntry]:
        return self.cache.get_or_load(
            QueryKeys.leaderboard,
            lambda: palindrome_utils.generate_leaderboard(
                self.database.list_collectors(), self.database.list_palindromes()
            ),
        )

    def gallery_stats(self, now: Optional[datetime] = None) -> GalleryStats:
        """
        Headline numbers for the home page.

        ``this_month`` counts palindromes found (or, lacking a find date,
        uploaded) in the current calendar month.
        """
        current = now or utcnow()
        palindromes = self.cache.get_or_load(QueryKeys.palindromes, self.database.list_palindromes)

        this_month = 0
        for palindrome in palindromes:
            when = palindrome.date_found or palindrome.created_at.date()
            if (when.year, when.month) == (current.year, current.month):
                this_month += 1

        return GalleryStats(
            total_palindromes=len(palindromes),
            active_collectors=len({palindrome.collector_id for palindrome in palindromes}),
            this_month=this_month,
        )

    def _load_joined_palindromes(self) -> List[PalindromeWithCollector]:
        palindromes, collectors, admins = self.database.list_palindromes_with_relations()
        return palindrome_utils.join_palindromes_with_collectors(palindromes, collectors, admins)

    # -- writes ------------------------------------------------------------

    def create_collector(self, payload: CollectorCreate, admin_id: Optional[str] = None) -> Collector:
        collector = self.database.create_collector(payload.model_dump(), created_by_admin_id=admin_id)
        self.cache.invalidate(QueryKeys.collectors, QueryKeys.leaderboard)
        logger.info(f"Collector {collector.id} ({collector.name}) created by {admin_id}")
        return collector

    def delete_collector(self, collector_id: str) -> None:
        """
        Remove a collector and all of their palindromes.

        Raises:
            LookupError: If the collector does not exist
        """
        if not self.database.delete_collector(collector_id):
            raise LookupError(f"Collector {collector_id} not found")
        self.cache.invalidate(QueryKeys.collectors, QueryKeys.palindromes, QueryKeys.leaderboard)
        logger.info(f"Collector {collector_id} deleted")

    def create_palindrome(self, payload: PalindromeCreate, admin_id: str) -> Palindrome:
        """
        Validate and store a new palindrome.

        Args:
            payload: Submitted palindrome fields
            admin_id: Profile id of the uploading admin

        Returns:
            The stored Palindrome

        Raises:
            PalindromeValidationError: If the plate or collector is invalid
        """
        result = palindrome_utils.validate_palindrome_data(payload.license_plate, payload.collector_id)
        if not result.is_valid:
            raise PalindromeValidationError(result.errors)

        if self.database.get_collector(payload.collector_id) is None:
            raise PalindromeValidationError({"collector_id": "Selected collector does not exist"})

        try:
            palindrome = self.database.create_palindrome(payload.model_dump(), uploaded_by_admin_id=admin_id)
        except sqlite3.IntegrityError as exc:
            # Collector deleted between the check above and the insert
            raise PalindromeValidationError({"collector_id": "Selected collector does not exist"}) from exc

        self._invalidate_palindromes(palindrome.collector_id)
        logger.info(f"Palindrome {palindrome.id} ({palindrome.license_plate}) added for collector {palindrome.collector_id}")
        return palindrome

    def delete_palindrome(self, palindrome_id: str) -> None:
        """
        Raises:
            LookupError: If the palindrome does not exist
        """
        palindrome = self.database.get_palindrome(palindrome_id)
        if palindrome is None or not self.database.delete_palindrome(palindrome_id):
            raise LookupError(f"Palindrome {palindrome_id} not found")
        self._invalidate_palindromes(palindrome.collector_id)
        logger.info(f"Palindrome {palindrome_id} deleted")

    def _invalidate_palindromes(self, collector_id: str) -> None:
        self.cache.invalidate(
            QueryKeys.palindromes,
            QueryKeys.collectors_with_stats,
            QueryKeys.collector(collector_id),
            QueryKeys.leaderboard,
        )
