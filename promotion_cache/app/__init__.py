"""Promotion cache HTTP service."""
