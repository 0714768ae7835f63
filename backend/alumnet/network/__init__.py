"""Alumni network: groups, topics, posts, events and the audience rules joining them."""

from alumnet.network.api import router

__all__ = ["router"]
