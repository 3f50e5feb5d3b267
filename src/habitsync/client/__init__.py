"""Client-side caching and optimistic-update core."""

from .cache import CacheEntry, CacheKey, CacheStore, Resource
from .coordinator import FetchDecision, FetchOutcome, RequestCoordinator
from .mutations import EntityState, MutationEngine
from .profiles import PROFILES, SyncProfile, get_profile
from .scheduler import RefreshScheduler
from .state import LocalState
from .store import HabitStore
from .transport import FetchResult, HabitApiClient, RemoteDataService

__all__ = [
    "CacheEntry",
    "CacheKey",
    "CacheStore",
    "EntityState",
    "FetchDecision",
    "FetchOutcome",
    "FetchResult",
    "HabitApiClient",
    "HabitStore",
    "LocalState",
    "MutationEngine",
    "PROFILES",
    "RefreshScheduler",
    "RemoteDataService",
    "Resource",
    "RequestCoordinator",
    "SyncProfile",
    "get_profile",
]
