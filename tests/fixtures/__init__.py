"""Shared test data builders and fakes."""
