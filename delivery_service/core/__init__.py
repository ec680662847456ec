"""Core primitives: settings, exceptions, schemas, event payloads."""
