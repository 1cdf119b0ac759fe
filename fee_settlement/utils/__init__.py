"""Shared helpers for validation and reference numbers."""
