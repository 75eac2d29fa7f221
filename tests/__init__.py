"""
Snapshot Service Test Suite.

This package contains:
- unit/: Unit tests (no network, no docker; in-memory store and fakes)
"""
