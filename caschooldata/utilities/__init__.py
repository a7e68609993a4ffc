"""Shared utilities: CDS codes, configuration and logging."""
