"""
Test suite for ghostsync.

Unit tests for every component live under ``tests/unit``; shared fakes and
fixtures are in ``conftest.py``.
"""
