"""Client-side board synchronization: reconciling stores, REST and push clients."""

from feedboard.client.api import ApiClient, ApiError
from feedboard.client.policy import UpdateSource, should_replace
from feedboard.client.push import ConnectionState, PushClient, dispatch_event, reconnect_delay
from feedboard.client.stores import (
    BoardState,
    BoardStore,
    ChangeBus,
    CollectionStore,
    DietStore,
    FeedStore,
    HorseStore,
)

__all__ = [
    "ApiClient",
    "ApiError",
    "BoardState",
    "BoardStore",
    "ChangeBus",
    "CollectionStore",
    "ConnectionState",
    "DietStore",
    "FeedStore",
    "HorseStore",
    "PushClient",
    "UpdateSource",
    "dispatch_event",
    "reconnect_delay",
    "should_replace",
]
