"""taskflow_sync - client-side data synchronization and notification alerting."""

from taskflow_sync.api import TaskFlowClient
from taskflow_sync.audio import AudioAlertTrigger, AudioPlayer, SoundDevicePlayer

# Duration parsing
from taskflow_sync.duration import parse_duration, to_seconds

# Errors
from taskflow_sync.errors import (
    ApiError,
    AudioPlaybackError,
    FetchError,
    MutationError,
    StorageError,
    TaskFlowSyncError,
)
from taskflow_sync.keys import (
    QUERY_KEYS,
    define_keys,
    is_key_prefix,
    make_key,
    serialize_key,
)
from taskflow_sync.mutation import MutationExecutor, normalize_error
from taskflow_sync.notifications import (
    CommentCreated,
    Notification,
    NotificationEdgeDetector,
    TaskAssigned,
    TaskCompleted,
    UnknownNotification,
    classify_notification,
    parse_notification_list,
    parse_unread_count,
)

# Preferences
from taskflow_sync.preferences import (
    JsonFileBackend,
    KeyValueBackend,
    MemoryBackend,
    NotificationPreferences,
    PreferenceStore,
    RedisBackend,
)
from taskflow_sync.query_cache import QueryCache, Subscription
from taskflow_sync.realtime import (
    RealtimeBridge,
    invalidations_for_event,
    patch_task_list,
)
from taskflow_sync.session import TaskFlowSync

# Core types
from taskflow_sync.types import (
    CacheStatus,
    Duration,
    MutationDescriptor,
    QueryKey,
    QueryOptions,
    QueryState,
)

__version__ = "0.1.0"

__all__ = [
    "QUERY_KEYS",
    "ApiError",
    "AudioAlertTrigger",
    "AudioPlaybackError",
    "AudioPlayer",
    "CacheStatus",
    "CommentCreated",
    "Duration",
    "FetchError",
    "JsonFileBackend",
    "KeyValueBackend",
    "MemoryBackend",
    "MutationDescriptor",
    "MutationError",
    "MutationExecutor",
    "Notification",
    "NotificationEdgeDetector",
    "NotificationPreferences",
    "PreferenceStore",
    "QueryCache",
    "QueryKey",
    "QueryOptions",
    "QueryState",
    "RealtimeBridge",
    "RedisBackend",
    "SoundDevicePlayer",
    "StorageError",
    "Subscription",
    "TaskAssigned",
    "TaskCompleted",
    "TaskFlowClient",
    "TaskFlowSync",
    "TaskFlowSyncError",
    "UnknownNotification",
    "classify_notification",
    "define_keys",
    "invalidations_for_event",
    "is_key_prefix",
    "make_key",
    "normalize_error",
    "parse_duration",
    "parse_notification_list",
    "parse_unread_count",
    "patch_task_list",
    "serialize_key",
    "to_seconds",
]
