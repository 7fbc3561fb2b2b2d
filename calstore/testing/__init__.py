"""Helpers for building calendar stores in tests."""
