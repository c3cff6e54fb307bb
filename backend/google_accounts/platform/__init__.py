"""Shared platform concerns: error responses and logging setup."""
