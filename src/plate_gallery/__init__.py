"""
Palindrome Plates - REST API for a palindromic license plate gallery

This package provides a FastAPI-based web service for cataloguing license
plates that read the same forwards and backwards. It enables:

- A public gallery of palindrome finds with search and filters
- A leaderboard ranking collectors by how many plates they found
- Per-collector profiles with find statistics
- Admin-only management of collectors and palindromes
- Image uploads relayed to S3-compatible object storage

Key Components:
    - main: FastAPI application and HTTP endpoint definitions
    - palindrome_utils: Plate validation, statistics and leaderboard ranking
    - catalog_manager: Coordinates database reads/writes and the query cache
    - database: SQLite persistence for collectors, palindromes and profiles
    - key_manager: Admin API keys
    - storage_service: Image uploads to object storage
    - configuration: Config loading and merging logic

Usage:
    Run the API server with:
        uvicorn plate_gallery.main:app --reload --host 0.0.0.0 --port 8000
"""
