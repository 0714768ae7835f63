"""Alumni network backend."""
