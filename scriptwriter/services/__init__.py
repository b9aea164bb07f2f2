"""
Scriptwriter Services Module
External service integrations: model clients, persistence and the job queue.
"""

from .errors import (
    EmptyModelResponseError,
    ModelApiError,
    ModelClientError,
    ModelRateLimitError,
    PersistenceError,
)
from .model_client import (
    GeminiJsonClient,
    JsonModelClient,
    OpenAIJsonClient,
    RetryingJsonClient,
    create_json_client,
)
from .fixture_client import FixtureJsonClient
from .persistence import InMemorySceneletPersistence, SceneletPersistence
from .redis_queue import RedisQueueService, RedisWorker
from .retry import RetryEvent, compute_delay_ms, execute_with_retry
from .supabase_persistence import SupabaseSceneletPersistence

__all__ = [
    "ModelClientError",
    "ModelRateLimitError",
    "ModelApiError",
    "EmptyModelResponseError",
    "PersistenceError",
    "JsonModelClient",
    "GeminiJsonClient",
    "OpenAIJsonClient",
    "RetryingJsonClient",
    "create_json_client",
    "FixtureJsonClient",
    "RetryEvent",
    "compute_delay_ms",
    "execute_with_retry",
    "SceneletPersistence",
    "InMemorySceneletPersistence",
    "SupabaseSceneletPersistence",
    "RedisQueueService",
    "RedisWorker",
]
