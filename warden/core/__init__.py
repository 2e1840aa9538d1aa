"""Core services for warden: configuration, errors, RBAC engine and wiring."""
