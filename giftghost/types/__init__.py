"""Plain in-process value types."""
