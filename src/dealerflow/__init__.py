"""Deterministic dialogue policy engine for a dealership chat agent."""
