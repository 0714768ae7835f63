"""Pydantic wire schemas for the network API."""
