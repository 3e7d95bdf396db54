"""Mutation execution with post-write cache invalidation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from typing import Any, TypeVar

from taskflow_sync.errors import ApiError, MutationError
from taskflow_sync.query_cache import QueryCache
from taskflow_sync.types import MutationDescriptor, Segment

V = TypeVar("V")
R = TypeVar("R")

logger = logging.getLogger(__name__)


def normalize_error(exc: BaseException, fallback: str) -> MutationError:
    """Turn any write failure into a MutationError with a displayable message."""
    if isinstance(exc, MutationError):
        return exc
    if isinstance(exc, ApiError):
        return MutationError(
            exc.detail or fallback, status_code=exc.status_code, cause=exc
        )
    return MutationError(fallback, cause=exc)


class MutationExecutor:
    """Runs writes and keeps the QueryCache coherent afterwards.

    Usage:
        create_task = MutationDescriptor(
            mutate=client.create_task,
            invalidates=[("tasks", "b1")],
        )
        task = await executor.execute(create_task, {"title": "Write docs"})
    """

    def __init__(self, cache: QueryCache) -> None:
        self._cache = cache
        self._background_tasks: set[asyncio.Task[Any]] = set()

    async def execute(self, descriptor: MutationDescriptor[V, R], variables: V) -> R:
        """Run the write, then the success callback, then invalidation.

        Invalidation is applied before this coroutine returns, so a read made
        right after it (or inside code following the success callback) sees
        the affected keys as stale and refetching.

        Raises:
            MutationError: after the error callback ran. Nothing is invalidated
                and the write is not retried.
        """
        try:
            result = await descriptor.mutate(variables)
        except Exception as exc:
            error = normalize_error(exc, descriptor.failure_message)
            logger.warning("mutation failed: %s", error.message)
            if descriptor.on_error is not None:
                descriptor.on_error(error, variables)
            raise error from exc

        prefixes = self._resolve_invalidations(descriptor, variables, result)
        try:
            if descriptor.on_success is not None:
                descriptor.on_success(result, variables)
        finally:
            self._cache.invalidate_many(prefixes)
        return result

    def mutate(
        self, descriptor: MutationDescriptor[V, R], variables: V
    ) -> asyncio.Task[R | None]:
        """Fire-and-forget execute(). Failures only reach the error callback."""

        async def run() -> R | None:
            try:
                return await self.execute(descriptor, variables)
            except MutationError:
                return None

        task = asyncio.create_task(run())
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)
        return task

    async def join(self) -> None:
        """Wait for every mutate() call still running."""
        if self._background_tasks:
            await asyncio.gather(*self._background_tasks)

    @staticmethod
    def _resolve_invalidations(
        descriptor: MutationDescriptor[V, R], variables: V, result: R
    ) -> Sequence[Sequence[Segment] | str]:
        invalidates = descriptor.invalidates
        if callable(invalidates):
            return invalidates(variables, result)
        return invalidates


__all__ = ["MutationExecutor", "normalize_error"]
