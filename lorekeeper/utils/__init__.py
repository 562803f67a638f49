"""Shared utilities: the error hierarchy and structured logging setup."""
