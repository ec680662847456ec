"""Domain event delivery infrastructure."""
