"""
Request/response correlation over a one way channel.

``Correlator.send`` turns posting a message into an awaitable call: the message gets a
fresh id, a pending request is registered under that id and a timer is armed on the
caller's event loop. The first of (matching response, timer) retires the pending request;
the other one then finds nothing to act upon. Responses arriving after that, or for ids
never issued, are dropped.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from typing import Any, Dict, Optional

from .common import DEFAULT_TIMEOUT_MS, MSG_TYPE_ERROR, new_message_id
from .exceptions import DataCollectionException, TimeoutException, exception_for
from .transport import Channel

_logger = logging.getLogger(__name__)


class PendingRequest:
    __slots__ = ('mid', 'msg_type', 'loop', 'future', 'timer')

    def __init__(self, mid: str, msg_type: str, loop: asyncio.AbstractEventLoop, future: asyncio.Future):
        self.mid = mid
        self.msg_type = msg_type
        self.loop = loop
        self.future = future
        self.timer: Optional[asyncio.TimerHandle] = None


class Correlator:
    """
    Awaitable calls over a ``Channel``.

    :param channel: the channel to the worker context
    :param timeout_ms: default time to wait for a response, in milliseconds
    """

    def __init__(self, channel: Channel, timeout_ms: int = DEFAULT_TIMEOUT_MS):
        self.channel = channel
        self.timeout_ms = timeout_ms
        self._pending: Dict[str, PendingRequest] = {}
        self._lock = threading.Lock()
        channel.add_listener(self._on_message)

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    async def send(self, msg_type: str, params: Optional[dict] = None, operand: Any = None,
                   timeout_ms: Optional[int] = None) -> Any:
        """
        Sends a request and waits for its response.

        :param msg_type: the operation the worker must run
        :param params: operation specific fields of the message
        :param operand: data to operate on (the ``use`` field); None means the held dataset
        :param timeout_ms: overrides the default timeout for this call
        :return: the ``data`` field of the response
        :raises TimeoutException: when no response arrives in time
        :raises DataCollectionException: subclass matching the error reported by the worker
        """
        loop = asyncio.get_running_loop()
        mid = new_message_id()
        message = dict(params or {})
        message['type'] = msg_type
        message['mid'] = mid
        if operand is not None:
            message['use'] = operand

        timeout_ms = self.timeout_ms if timeout_ms is None else timeout_ms
        pending = PendingRequest(mid, msg_type, loop, loop.create_future())
        pending.timer = loop.call_later(timeout_ms / 1000.0, self._expire, mid, timeout_ms)
        with self._lock:
            self._pending[mid] = pending

        try:
            self.channel.post(message)
            _logger.debug(f'Sent {msg_type} ({mid})')
            return await pending.future
        finally:
            # no-op unless the caller left before any resolution (e.g. cancelled, post failed)
            if self._retire(mid) is not None:
                pending.timer.cancel()

    def _retire(self, mid: Any) -> Optional[PendingRequest]:
        with self._lock:
            return self._pending.pop(mid, None)

    def _expire(self, mid: str, timeout_ms: int) -> None:
        pending = self._retire(mid)
        if pending is None:
            return
        _logger.warning(f'Request {pending.msg_type} ({mid}) timed out after {timeout_ms} ms')
        if not pending.future.done():
            pending.future.set_exception(TimeoutException(
                message=f'No response to {pending.msg_type} within {timeout_ms} ms'))

    def _on_message(self, message: dict) -> None:
        # called from the channel thread
        mid = message.get('mid')
        pending = self._retire(mid)
        if pending is None:
            _logger.debug(f'Ignoring response {message.get("type")} ({mid}) without pending request')
            return
        pending.loop.call_soon_threadsafe(self._settle, pending, message)

    @staticmethod
    def _settle(pending: PendingRequest, message: dict) -> None:
        pending.timer.cancel()
        if pending.future.done():
            return
        if message.get('type') == MSG_TYPE_ERROR:
            exception_class = exception_for(message.get('error'))
            pending.future.set_exception(exception_class(message=message.get('message'),
                                                         cause=message.get('cause')))
        else:
            _logger.debug(f'Received {message.get("type")} ({pending.mid})')
            pending.future.set_result(message.get('data'))

    def close(self) -> None:
        """
        Stops listening and fails every request still waiting for a response.
        """
        self.channel.remove_listener(self._on_message)
        with self._lock:
            pending_requests = list(self._pending.values())
            self._pending.clear()
        for pending in pending_requests:
            if pending.loop.is_closed():
                continue
            pending.loop.call_soon_threadsafe(self._abandon, pending)

    @staticmethod
    def _abandon(pending: PendingRequest) -> None:
        pending.timer.cancel()
        if not pending.future.done():
            pending.future.set_exception(DataCollectionException(
                message=f'Channel closed before {pending.msg_type} was answered'))
