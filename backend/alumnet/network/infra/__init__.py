"""Infrastructure helpers for the network domain."""
