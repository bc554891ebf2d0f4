"""Live viewer registry and event fan-out."""

from .dispatcher import BroadcastDispatcher
from .registry import Subscriber, SubscriptionRegistry

__all__ = ["BroadcastDispatcher", "Subscriber", "SubscriptionRegistry"]
