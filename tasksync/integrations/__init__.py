"""Integrations with external task sources."""
