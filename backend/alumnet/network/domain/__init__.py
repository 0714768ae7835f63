"""Domain layer for the alumni network."""
