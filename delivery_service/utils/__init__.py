"""Utility modules shared by the outbox and job runner."""
