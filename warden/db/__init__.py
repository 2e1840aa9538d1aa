"""Persistence layer for warden: models, sessions and storage adapters."""
