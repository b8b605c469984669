"""Utility helpers shared across the rule engine, CLI and API."""
