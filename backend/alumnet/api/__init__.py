"""Cross-cutting HTTP helpers shared by every router."""
