"""Async HTTP client for the TaskFlow REST API."""

from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import httpx

from taskflow_sync.errors import ApiError

logger = logging.getLogger(__name__)


def _error_detail(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    detail = body.get("message") or body.get("error")
    return str(detail) if detail else None


def _decode_frame(event: str, data_lines: list[str]) -> tuple[str, Any] | None:
    try:
        return event, json.loads("\n".join(data_lines))
    except ValueError:
        logger.debug("skipping non-JSON %r event", event)
        return None


class TaskFlowClient:
    """Async client for the remote operations the sync layer consumes.

    Every method returns the decoded JSON body or raises ApiError.
    """

    def __init__(
        self,
        base_url: str,
        *,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "X-Requested-With": "XMLHttpRequest",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> Any:
        """Send a request and decode the JSON body."""
        try:
            response = await self._client.request(
                method, endpoint, params=params, json=body
            )
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, endpoint, exc)
            raise ApiError(str(exc) or type(exc).__name__) from exc

        logger.debug("%s %s -> %d", method, endpoint, response.status_code)
        if not response.is_success:
            detail = _error_detail(response)
            raise ApiError(
                detail or f"HTTP {response.status_code}",
                response.status_code,
                detail=detail,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as exc:
            raise ApiError("Invalid JSON response", response.status_code) from exc

    # -------------------------------------------------------------------------
    # Tasks
    # -------------------------------------------------------------------------

    async def fetch_tasks(self, board_id: str | None = None) -> Any:
        params = {"board_id": board_id} if board_id else None
        return await self._request("GET", "/tasks", params=params)

    async def create_task(self, data: dict[str, Any]) -> Any:
        return await self._request("POST", "/tasks", body=data)

    async def update_task(self, task_id: str, data: dict[str, Any]) -> Any:
        return await self._request("PUT", f"/tasks/{task_id}", body=data)

    async def delete_task(self, task_id: str) -> Any:
        return await self._request("DELETE", f"/tasks/{task_id}")

    async def move_task(
        self,
        task_id: str,
        column_id: str,
        position: int,
        *,
        operation_id: str | None = None,
        client_timestamp: int | None = None,
    ) -> Any:
        """Move a task to a column and position.

        operation_id and client_timestamp let the server detect conflicting
        concurrent moves, which it reports as 409.
        """
        body: dict[str, Any] = {"column_id": column_id, "position": position}
        if operation_id is not None:
            body["operation_id"] = operation_id
        if client_timestamp is not None:
            body["client_timestamp"] = client_timestamp
        return await self._request("POST", f"/tasks/{task_id}/move", body=body)

    # -------------------------------------------------------------------------
    # Boards and teams
    # -------------------------------------------------------------------------

    async def fetch_boards(self, kind: str = "active") -> Any:
        return await self._request("GET", "/boards", params={"type": kind})

    async def create_board(self, data: dict[str, Any]) -> Any:
        return await self._request("POST", "/boards", body=data)

    async def fetch_teams(self) -> Any:
        return await self._request("GET", "/teams")

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    async def fetch_unread_count(self) -> Any:
        return await self._request("GET", "/notifications/unread-count")

    async def list_notifications(self, limit: int = 10) -> Any:
        return await self._request("GET", "/notifications", params={"limit": limit})

    async def mark_read(self, notification_id: str) -> Any:
        return await self._request("POST", f"/notifications/{notification_id}/read")

    async def mark_all_read(self) -> Any:
        return await self._request("POST", "/notifications/read-all")

    # -------------------------------------------------------------------------
    # Realtime
    # -------------------------------------------------------------------------

    async def stream_events(
        self, endpoint: str = "/events/stream"
    ) -> AsyncIterator[tuple[str, Any]]:
        """Yield (event, data) pairs from the server-sent event stream.

        Frames whose data is not JSON are skipped. The stream ends when the
        server closes it; transport failures raise ApiError.
        """
        try:
            async with self._client.stream(
                "GET",
                endpoint,
                headers={"Accept": "text/event-stream"},
                timeout=None,
            ) as response:
                if not response.is_success:
                    raise ApiError(
                        f"HTTP {response.status_code}", response.status_code
                    )
                event = "message"
                data_lines: list[str] = []
                async for line in response.aiter_lines():
                    if line == "":
                        if data_lines:
                            frame = _decode_frame(event, data_lines)
                            if frame is not None:
                                yield frame
                        event, data_lines = "message", []
                        continue
                    if line.startswith(":"):
                        continue
                    name, _, value = line.partition(":")
                    if value.startswith(" "):
                        value = value[1:]
                    if name == "event":
                        event = value
                    elif name == "data":
                        data_lines.append(value)
        except httpx.HTTPError as exc:
            logger.warning("event stream %s failed: %s", endpoint, exc)
            raise ApiError(str(exc) or type(exc).__name__) from exc

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


__all__ = ["TaskFlowClient"]
