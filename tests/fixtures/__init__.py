"""Reusable builders and fakes for releasegate tests."""
