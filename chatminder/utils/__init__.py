"""Shared identifier and time helpers."""
