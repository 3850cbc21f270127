from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


class Collector(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    location: Optional[str] = None
    bio: Optional[str] = None
    notes: Optional[str] = None
    created_by_admin_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class Find(BaseModel):
    """The slice of a palindrome record that statistics and ranking look at."""

    collector_id: str
    license_plate: str
    date_found: Optional[date] = None
    location_found: Optional[str] = None
    car_type: Optional[str] = None
    created_at: datetime


class Palindrome(Find):
    id: str
    image_url: str
    image_storage_path: str
    additional_notes: Optional[str] = None
    uploaded_by_admin_id: str
    updated_at: datetime


class PalindromeWithCollector(Palindrome):
    collector_name: str
    collector_location: Optional[str] = None
    collector_bio: Optional[str] = None
    uploaded_by_admin_name: Optional[str] = None
    uploaded_by_admin_email: Optional[str] = None


class UserProfile(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    avatar_url: Optional[str] = None
    is_admin: bool = False
    created_at: datetime
    updated_at: datetime


class CollectorStats(BaseModel):
    total_finds: int = 0
    earliest_find: Optional[date] = None
    latest_find: Optional[date] = None
    favorite_location: Optional[str] = None
    favorite_car_type: Optional[str] = None
    locations_count: int = 0
    car_types_count: int = 0


class CollectorWithStats(Collector):
    total_palindromes: int
    earliest_find: Optional[date] = None
    latest_find: Optional[date] = None


class CollectorProfile(BaseModel):
    collector: Collector
    stats: CollectorStats
    palindromes: List[Palindrome]


class LeaderboardEntry(BaseModel):
    rank: int = Field(ge=1)
    collector: Collector
    total_finds: int = Field(gt=0)
    earliest_find: datetime
    latest_find: datetime


class GalleryStats(BaseModel):
    total_palindromes: int
    active_collectors: int
    this_month: int


class ValidationResult(BaseModel):
    is_valid: bool
    errors: Dict[str, str]


class PlateCheck(BaseModel):
    plate: str
    normalized: str
    is_palindrome: bool


class CollectorCreate(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    location: Optional[str] = Field(default=None, max_length=200)
    bio: Optional[str] = Field(default=None, max_length=1000)
    notes: Optional[str] = Field(default=None, max_length=1000)

    @field_validator("email", "location", "bio", "notes", mode="before")
    @classmethod
    def _empty_as_null(cls, value):
        return _blank_to_none(value)

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Name is required")
        return value.strip()


class PalindromeCreate(BaseModel):
    # Palindrome and length checks run in validate_palindrome_data so the
    # client gets the same per-field messages the admin form shows.
    license_plate: str
    image_url: str = Field(min_length=1)
    image_storage_path: str = Field(min_length=1)
    car_type: Optional[str] = None
    location_found: Optional[str] = None
    date_found: Optional[date] = None
    additional_notes: Optional[str] = None
    collector_id: str

    @field_validator("car_type", "location_found", "date_found", "additional_notes", mode="before")
    @classmethod
    def _empty_as_null(cls, value):
        return _blank_to_none(value)


class UploadResult(BaseModel):
    path: str
    public_url: str
    file_name: str
    size: int
    type: str


class AdminKeyCreate(BaseModel):
    email: EmailStr
    name: Optional[str] = None
    is_admin: bool = True


class APIKeyInfo(BaseModel):
    id: str
    prefix: str
    user_id: str
    is_active: bool
    created_at: str


class APIKeyCreated(BaseModel):
    api_key: str
    record: APIKeyInfo
