"""Query key definition and utilities."""

from collections.abc import Callable, Sequence

from taskflow_sync.types import QueryKey, Segment

_ESCAPE_MAP = {"\\": "\\\\", ":": "\\:"}


def make_key(key: Sequence[Segment] | str) -> QueryKey:
    """Normalize a key. A bare string is a single-segment key.

    Segments must be str, int or None. bool and float compare equal to ints
    (True == 1, 1.0 == 1), so they raise TypeError.
    """
    if isinstance(key, str):
        return (key,)
    result = tuple(key)
    for segment in result:
        if isinstance(segment, bool) or not isinstance(segment, (str, int, type(None))):
            kind = type(segment).__name__
            raise TypeError(f"query key segment must be str, int or None, got {kind}")
    return result


def _id_segment(value: Segment) -> Segment:
    # Server ids arrive as ints or strings; one form per entity
    return None if value is None else str(value)


def define_keys(
    definitions: dict[str, Callable[..., Sequence[Segment]]],
) -> dict[str, Callable[..., QueryKey]]:
    """
    Define all query keys in a centralized location.

    Example:
        keys = define_keys({
            "tasks": lambda board_id: ("tasks", board_id),
            "boards": lambda: ("boards",),
        })

        keys["tasks"]("b1")  # ("tasks", "b1")
        keys["boards"]()     # ("boards",)
    """
    result: dict[str, Callable[..., QueryKey]] = {}
    for name, fn in definitions.items():

        def make(*args: Segment, _fn: Callable[..., Sequence[Segment]] = fn) -> QueryKey:
            return make_key(_fn(*args))

        result[name] = make
    return result


def serialize_key(key: QueryKey) -> str:
    """Serialize a key to a string for logs and storage."""

    def escape(part: Segment) -> str:
        result = "" if part is None else str(part)
        for char, escaped in _ESCAPE_MAP.items():
            result = result.replace(char, escaped)
        return result

    return ":".join(escape(p) for p in key)


def is_key_prefix(prefix: QueryKey, key: QueryKey) -> bool:
    """Check if prefix is a structural prefix of key (for invalidation)."""
    if len(prefix) > len(key):
        return False
    return key[: len(prefix)] == prefix


QUERY_KEYS = define_keys(
    {
        "tasks": lambda board_id: ("tasks", _id_segment(board_id)),
        "tasks_due_today": lambda: ("tasks", "due-today"),
        "tasks_due_soon": lambda: ("tasks", "due-soon"),
        "board": lambda board_id: ("board", _id_segment(board_id)),
        "boards": lambda kind="active": ("boards", kind),
        "teams": lambda: ("teams",),
        "comments": lambda task_id: ("comments", _id_segment(task_id)),
        "activity": lambda: ("profile", "activity"),
        "notifications": lambda: ("notifications",),
        "unread_count": lambda: ("notifications", "unread-count"),
        "notification_list": lambda: ("notifications", "list"),
    }
)
