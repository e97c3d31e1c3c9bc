"""Operator tooling (CLI)."""
