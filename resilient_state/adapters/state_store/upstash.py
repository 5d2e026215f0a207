"""Shared store client for Upstash-compatible Redis REST endpoints.

Each command is a POST of a JSON array (``["INCR", "rate:x:1"]``) to the
endpoint root; the reply is ``{"result": ...}`` or ``{"error": "..."}``.
Batches go to ``/multi-exec``, which runs them as one Redis transaction.

Every value written by SET is JSON-encoded, strings included, so a read
returns exactly the type that was written: ``"123"`` stays a string and
``"null"`` is not mistaken for a missing key. Counters created by INCR come
back as bare digits and decode to ints. A reply that is not JSON (written by
another client) is returned raw.
"""

from __future__ import annotations

import json
from typing import Any

import httpx

from resilient_state.adapters.state_store.base import (
    AbstractSharedStoreClient,
    CommandKind,
    PipelineCommand,
)
from resilient_state.core.config import StateStoreSettings
from resilient_state.core.errors import StateStoreAppError


def encode_value(value: Any) -> str:
    return json.dumps(value, separators=(",", ":"))


def decode_value(raw: Any) -> Any:
    if not isinstance(raw, str):
        return raw
    try:
        return json.loads(raw)
    except ValueError:
        return raw


def command_args(command: PipelineCommand) -> list[Any]:
    """Translate a pipeline command into its Redis argument list."""

    if command.kind is CommandKind.GET:
        return ["GET", command.key]
    if command.kind is CommandKind.SET:
        args: list[Any] = ["SET", command.key, encode_value(command.value)]
        if command.seconds:
            args += ["EX", command.seconds]
        return args
    if command.kind is CommandKind.INCR:
        return ["INCR", command.key]
    if command.kind is CommandKind.EXPIRE:
        return ["EXPIRE", command.key, command.seconds]
    return ["DEL", command.key]


class UpstashRestClient(AbstractSharedStoreClient):
    """Async client for the Upstash Redis REST protocol.

    Uses a single pooled ``httpx.AsyncClient``; constructing the object does
    not touch the network.
    """

    def __init__(
        self,
        url: str,
        token: str,
        *,
        timeout_seconds: float = 2.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the REST client.

        Args:
            url: Endpoint URL, e.g. ``https://eu1-example.upstash.io``.
            token: REST token sent as a bearer credential.
            timeout_seconds: Timeout applied to every HTTP request.
            transport: Optional httpx transport (tests use ``httpx.MockTransport``).

        Raises:
            ValueError: If url or token is empty.
        """
        if not url or not token:
            raise ValueError("url and token are required")

        self.available = True
        self._http = httpx.AsyncClient(
            base_url=url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout_seconds,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, cfg: StateStoreSettings) -> "UpstashRestClient":
        return cls(
            cfg.rest_url or "",
            cfg.rest_token or "",
            timeout_seconds=cfg.timeout_seconds,
        )

    async def _post(self, path: str, body: list[Any]) -> Any:
        response = await self._http.post(path, json=body)
        try:
            payload = response.json()
        except ValueError as exc:
            raise StateStoreAppError(
                code="state_store_bad_response",
                message=f"Shared store returned a non-JSON response (HTTP {response.status_code})",
                details={"http_status": response.status_code},
            ) from exc

        if isinstance(payload, dict) and "error" in payload:
            raise StateStoreAppError(
                code="state_store_error",
                message=str(payload["error"]),
                details={"http_status": response.status_code},
            )
        response.raise_for_status()
        return payload

    async def _command(self, *args: Any) -> Any:
        payload = await self._post("/", list(args))
        if not isinstance(payload, dict) or "result" not in payload:
            raise StateStoreAppError(
                code="state_store_bad_response",
                message="Shared store reply has no result field",
                details={"operation": str(args[0])},
            )
        return payload["result"]

    async def get(self, key: str) -> Any | None:
        return decode_value(await self._command("GET", key))

    async def set(self, key: str, value: Any, *, ex: int | None = None) -> None:
        args: list[Any] = ["SET", key, encode_value(value)]
        if ex:
            args += ["EX", ex]
        await self._command(*args)

    async def delete(self, key: str) -> int:
        return int(await self._command("DEL", key))

    async def incr(self, key: str) -> int:
        return int(await self._command("INCR", key))

    async def expire(self, key: str, seconds: int) -> bool:
        return int(await self._command("EXPIRE", key, seconds)) == 1

    async def ttl(self, key: str) -> int:
        return int(await self._command("TTL", key))

    async def exists(self, key: str) -> bool:
        return int(await self._command("EXISTS", key)) > 0

    async def pipeline(self, commands: list[PipelineCommand]) -> list[Any]:
        if not commands:
            return []

        payload = await self._post("/multi-exec", [command_args(c) for c in commands])
        if not isinstance(payload, list) or len(payload) != len(commands):
            raise StateStoreAppError(
                code="state_store_bad_response",
                message="Shared store transaction reply does not match the batch",
                details={"operation": "pipeline"},
            )

        results: list[Any] = []
        for command, item in zip(commands, payload):
            if "error" in item:
                raise StateStoreAppError(
                    code="state_store_error",
                    message=str(item["error"]),
                    details={"operation": command.kind.value},
                )
            result = item.get("result")
            results.append(decode_value(result) if command.kind is CommandKind.GET else result)
        return results

    async def aclose(self) -> None:
        await self._http.aclose()
