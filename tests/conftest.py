# ruff: noqa: D100,D101,D102,D103,D104,D105,D106,D107,INP001
from __future__ import annotations

import asyncio
import copy
import itertools
import json
from types import SimpleNamespace
from typing import Any, Callable

import pytest

from custom_components.simplisafe3 import ws_client
from custom_components.simplisafe3.api import SimpliSafeClient
from custom_components.simplisafe3.auth import SimpliSafeAuth


class FakeTimerHandle:
    def __init__(
        self, when: float, seq: int, callback: Callable[..., Any], args: tuple[Any, ...]
    ) -> None:
        self._when = when
        self.seq = seq
        self._callback = callback
        self._args = args
        self._cancelled = False

    def when(self) -> float:
        return self._when

    def cancel(self) -> None:
        self._cancelled = True

    def cancelled(self) -> bool:
        return self._cancelled

    def run(self) -> None:
        self._callback(*self._args)


class FakeLoop:
    """Timer-only event loop stand-in with a manually advanced clock.

    Tasks are delegated to the running asyncio loop so coroutines still run.
    """

    def __init__(self, start: float = 0.0) -> None:
        self.now = start
        self._timers: list[FakeTimerHandle] = []
        self._seq = itertools.count()
        self.tasks: list[asyncio.Task[Any]] = []

    def time(self) -> float:
        return self.now

    def call_later(
        self, delay: float, callback: Callable[..., Any], *args: Any
    ) -> FakeTimerHandle:
        handle = FakeTimerHandle(self.now + delay, next(self._seq), callback, args)
        self._timers.append(handle)
        return handle

    def create_task(self, coro: Any) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro)
        self.tasks.append(task)
        return task

    @property
    def pending_timers(self) -> list[FakeTimerHandle]:
        return [handle for handle in self._timers if not handle.cancelled()]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [
                handle
                for handle in self._timers
                if not handle.cancelled() and handle.when() <= target
            ]
            if not due:
                break
            handle = min(due, key=lambda item: (item.when(), item.seq))
            self._timers.remove(handle)
            self.now = max(self.now, handle.when())
            handle.run()
        self.now = target


async def drain(rounds: int = 10) -> None:
    """Let pending tasks and callbacks run."""

    for _ in range(rounds):
        await asyncio.sleep(0)


class MockResponse:
    def __init__(
        self,
        status: int,
        json_data: Any = None,
        *,
        headers: dict[str, str] | None = None,
        text_data: str | None = "",
    ) -> None:
        self.status = status
        self._json = json_data
        self._text = text_data
        self.headers = headers or {}

    async def __aenter__(self) -> MockResponse:
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    async def text(self) -> str:
        return self._text or ""

    async def json(self, content_type: str | None = None) -> Any:
        return self._json


def json_response(status: int, data: Any) -> MockResponse:
    return MockResponse(
        status,
        data,
        headers={"Content-Type": "application/json"},
        text_data=json.dumps(data),
    )


class FakeSession:
    def __init__(self) -> None:
        self._request_queue: list[Any] = []
        self._post_queue: list[Any] = []
        self.request_calls: list[tuple[str, str, dict[str, Any]]] = []
        self.post_calls: list[tuple[str, dict[str, Any]]] = []

    def queue_request(self, *responses: Any) -> None:
        self._request_queue.extend(responses)

    def queue_post(self, *responses: Any) -> None:
        self._post_queue.extend(responses)

    def _resolve(self, queue: list[Any], label: str) -> Any:
        if not queue:
            raise AssertionError(f"Unexpected {label} call with no queued response")
        result = queue.pop(0)
        if callable(result):
            result = result()
        if isinstance(result, Exception):
            raise result
        return result

    def request(self, method: str, url: str, **kwargs: Any) -> Any:
        self.request_calls.append((method, url, copy.deepcopy(kwargs)))
        return self._resolve(self._request_queue, "request")

    def post(self, url: str, **kwargs: Any) -> Any:
        kwargs.pop("timeout", None)
        self.post_calls.append((url, copy.deepcopy(kwargs)))
        return self._resolve(self._post_queue, "post")


class FakeSocketClient:
    """Records handlers and connect calls like ``socketio.AsyncClient``."""

    def __init__(self, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.handlers: dict[tuple[str, str | None], Callable[..., Any]] = {}
        self.connect_calls: list[tuple[str, dict[str, Any]]] = []
        self.connect_exc: Exception | None = None
        self.disconnect_calls = 0
        self.connected = False

    def on(
        self,
        event: str,
        handler: Callable[..., Any] | None = None,
        namespace: str | None = None,
    ) -> None:
        self.handlers[(event, namespace)] = handler

    async def connect(self, url: str, **kwargs: Any) -> None:
        self.connect_calls.append((url, kwargs))
        if self.connect_exc is not None:
            raise self.connect_exc
        self.connected = True

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False

    def fire(self, event: str, *args: Any) -> Any:
        for (name, _namespace), handler in self.handlers.items():
            if name == event:
                if event == "connect":
                    self.connected = True
                elif event == "disconnect":
                    self.connected = False
                return handler(*args)
        raise AssertionError(f"No handler registered for {event}")


@pytest.fixture
def socket_factory(monkeypatch: pytest.MonkeyPatch) -> list[FakeSocketClient]:
    created: list[FakeSocketClient] = []

    def _factory(**kwargs: Any) -> FakeSocketClient:
        sio = FakeSocketClient(**kwargs)
        created.append(sio)
        return sio

    monkeypatch.setattr(ws_client, "socketio", SimpleNamespace(AsyncClient=_factory))
    return created


def make_client(
    session: FakeSession | None = None,
    *,
    loop: FakeLoop | None = None,
    access_token: str | None = "access",
    **kwargs: Any,
) -> tuple[SimpliSafeClient, FakeSession, FakeLoop]:
    session = session or FakeSession()
    loop = loop or FakeLoop()
    auth = SimpliSafeAuth(session, "refresh", access_token=access_token)
    client = SimpliSafeClient(session, auth, loop=loop, monotonic=loop.time, **kwargs)
    return client, session, loop


def subscription_payload(
    sid: str = "sub1",
    *,
    alarm_state: str = "OFF",
    is_alarming: bool = False,
    account: str = "A1",
    conn_type: str = "wifi",
    cameras: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    return {
        "subscription": {
            "sid": sid,
            "sStatus": 10,
            "location": {
                "account": account,
                "system": {
                    "alarmState": alarm_state,
                    "isAlarming": is_alarming,
                    "connType": conn_type,
                    "cameras": cameras if cameras is not None else [],
                },
            },
        }
    }
