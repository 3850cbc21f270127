"""
Tests for CatalogManager against a temporary SQLite database.
"""

from datetime import date, datetime, timezone

import pytest

from plate_gallery.catalog_manager import CatalogManager, PalindromeValidationError
from plate_gallery.models import CollectorCreate, PalindromeCreate
from plate_gallery.query_cache import QueryKeys


@pytest.fixture
def admin(plate_db):
    return plate_db.create_user_profile("admin@example.com", name="Admin", is_admin=True)


@pytest.fixture
def manager(plate_db):
    return CatalogManager(plate_db)


def _palindrome(collector_id, plate="MOM", **kwargs):
    return PalindromeCreate(
        license_plate=plate,
        image_url="https://cdn.example.com/p.jpg",
        image_storage_path="palindromes/p.jpg",
        collector_id=collector_id,
        **kwargs,
    )


class TestCollectors:
    """Tests for collector reads and writes."""

    def test_create_and_list_sorted_by_name(self, manager, admin):
        manager.create_collector(CollectorCreate(name="Zed"), admin_id=admin.id)
        manager.create_collector(CollectorCreate(name="Amy", email="amy@example.com"), admin_id=admin.id)

        collectors = manager.list_collectors()
        assert [c.name for c in collectors] == ["Amy", "Zed"]
        assert collectors[0].email == "amy@example.com"
        assert collectors[0].created_by_admin_id == admin.id

    def test_list_is_refreshed_after_create(self, manager, admin):
        assert manager.list_collectors() == []
        assert QueryKeys.collectors in manager.cache

        manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        assert [c.name for c in manager.list_collectors()] == ["Amy"]

    def test_profile_includes_stats(self, manager, admin):
        collector = manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        manager.create_palindrome(_palindrome(collector.id, location_found="NY", date_found=date(2024, 3, 1)), admin.id)
        manager.create_palindrome(_palindrome(collector.id, "A1A", location_found="NY", date_found=date(2024, 1, 10)), admin.id)
        manager.create_palindrome(_palindrome(collector.id, "12321", location_found="LA"), admin.id)

        profile = manager.get_collector_profile(collector.id)
        assert profile.collector.id == collector.id
        assert profile.stats.total_finds == 3
        assert profile.stats.earliest_find == date(2024, 1, 10)
        assert profile.stats.latest_find == date(2024, 3, 1)
        assert profile.stats.favorite_location == "NY"
        assert profile.stats.locations_count == 2
        assert len(profile.palindromes) == 3

    def test_unknown_collector_profile(self, manager):
        with pytest.raises(LookupError):
            manager.get_collector_profile("missing")

    def test_delete_collector_removes_palindromes(self, manager, admin):
        collector = manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        manager.create_palindrome(_palindrome(collector.id), admin.id)
        assert len(manager.list_palindromes()) == 1

        manager.delete_collector(collector.id)

        assert manager.list_collectors() == []
        assert manager.list_palindromes() == []
        assert manager.leaderboard() == []
        with pytest.raises(LookupError):
            manager.delete_collector(collector.id)

    def test_collectors_with_stats(self, manager, admin):
        amy = manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        manager.create_collector(CollectorCreate(name="Bob"), admin_id=admin.id)
        manager.create_palindrome(_palindrome(amy.id, date_found=date(2024, 2, 2)), admin.id)

        rows = manager.list_collectors_with_stats()
        assert [(row.name, row.total_palindromes) for row in rows] == [("Amy", 1), ("Bob", 0)]
        assert rows[0].earliest_find == date(2024, 2, 2)


class TestPalindromes:
    """Tests for palindrome submission, listing and ranking."""

    def test_rejects_non_palindrome(self, manager, admin):
        collector = manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        with pytest.raises(PalindromeValidationError) as exc_info:
            manager.create_palindrome(_palindrome(collector.id, "ABC"), admin.id)
        assert exc_info.value.errors == {"license_plate": "License plate must be a palindrome"}
        assert manager.list_palindromes() == []

    def test_rejects_unknown_collector(self, manager, admin):
        with pytest.raises(PalindromeValidationError) as exc_info:
            manager.create_palindrome(_palindrome("missing"), admin.id)
        assert "collector_id" in exc_info.value.errors

    def test_listing_is_joined_and_filterable(self, manager, admin):
        amy = manager.create_collector(CollectorCreate(name="Amy", location="Boston"), admin_id=admin.id)
        bob = manager.create_collector(CollectorCreate(name="Bob"), admin_id=admin.id)
        manager.create_palindrome(_palindrome(amy.id, "RACECAR", car_type="Ford"), admin.id)
        manager.create_palindrome(_palindrome(bob.id, "12321", car_type="Toyota"), admin.id)

        listing = manager.list_palindromes()
        assert [p.license_plate for p in listing] == ["12321", "RACECAR"]
        assert listing[1].collector_name == "Amy"
        assert listing[1].collector_location == "Boston"
        assert listing[1].uploaded_by_admin_email == "admin@example.com"

        assert [p.license_plate for p in manager.list_palindromes(search="racE")] == ["RACECAR"]
        assert [p.license_plate for p in manager.list_palindromes(collector_id=bob.id)] == ["12321"]
        assert [p.license_plate for p in manager.list_palindromes(car_type="Ford")] == ["RACECAR"]

    def test_get_and_delete_palindrome(self, manager, admin):
        collector = manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        created = manager.create_palindrome(_palindrome(collector.id), admin.id)

        assert manager.get_palindrome(created.id).license_plate == "MOM"
        manager.delete_palindrome(created.id)
        with pytest.raises(LookupError):
            manager.get_palindrome(created.id)
        with pytest.raises(LookupError):
            manager.delete_palindrome(created.id)

    def test_leaderboard_tracks_writes(self, manager, admin):
        amy = manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        bob = manager.create_collector(CollectorCreate(name="Bob"), admin_id=admin.id)
        manager.create_collector(CollectorCreate(name="Cat"), admin_id=admin.id)

        manager.create_palindrome(_palindrome(bob.id), admin.id)
        manager.create_palindrome(_palindrome(amy.id), admin.id)
        board = manager.leaderboard()
        # Same count, Bob uploaded first
        assert [(e.rank, e.collector.name) for e in board] == [(1, "Bob"), (2, "Amy")]

        manager.create_palindrome(_palindrome(amy.id, "ABBA"), admin.id)
        board = manager.leaderboard()
        assert [(e.rank, e.collector.name, e.total_finds) for e in board] == [(1, "Amy", 2), (2, "Bob", 1)]

    def test_gallery_stats(self, manager, admin):
        amy = manager.create_collector(CollectorCreate(name="Amy"), admin_id=admin.id)
        manager.create_collector(CollectorCreate(name="Bob"), admin_id=admin.id)
        manager.create_palindrome(_palindrome(amy.id, date_found=date(2024, 8, 15)), admin.id)
        manager.create_palindrome(_palindrome(amy.id, date_found=date(2024, 7, 1)), admin.id)

        stats = manager.gallery_stats(now=datetime(2024, 8, 20, tzinfo=timezone.utc))
        assert stats.total_palindromes == 2
        assert stats.active_collectors == 1
        assert stats.this_month == 1
