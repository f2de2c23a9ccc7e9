"""
Channels connecting the coordinator with its worker context.

A channel moves encoded messages only: requests are packed before they leave the
coordinator and responses are unpacked when they arrive, so nothing mutable is ever shared
between both sides. Responses are handed to the registered listeners from a
channel-owned thread; listeners must be thread safe.
"""
from __future__ import annotations

import logging
import multiprocessing
import queue
import threading
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

from . import codec
from .common import DEFAULT_WORKER_LOCATION, resolve_location
from .exceptions import DataCollectionException
from .worker import process_main

_logger = logging.getLogger(__name__)

Listener = Callable[[dict], None]

DEFAULT_JOIN_TIMEOUT_S = 5.0


class Channel(ABC):
    """
    Asynchronous, message based link to a worker context.
    """

    def __init__(self):
        self._listeners: List[Listener] = []
        self._listeners_lock = threading.Lock()
        self.running = False

    def add_listener(self, listener: Listener) -> None:
        with self._listeners_lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        with self._listeners_lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def _deliver(self, payload: bytes) -> None:
        try:
            message = codec.unpack(payload)
        except Exception:
            _logger.exception('Dropping undecodable response')
            return

        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(message)
            except Exception:
                _logger.exception(f'Listener failed processing {message.get("type")} ({message.get("mid")})')

    def post(self, message: dict) -> None:
        """
        Sends a request message to the worker context.

        :param message: the message to send, it is encoded before leaving
        """
        if not self.running:
            raise DataCollectionException(message='Channel is not running')
        self._post_bytes(codec.pack(message))

    @abstractmethod
    def _post_bytes(self, payload: bytes) -> None:
        """Sends an already encoded request"""

    @abstractmethod
    def start(self) -> None:
        """Starts the worker context"""

    @abstractmethod
    def close(self) -> None:
        """Stops the worker context, pending requests are not answered anymore"""

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ThreadChannel(Channel):
    """
    Runs the worker entry point in a dedicated thread, requests are queued as encoded bytes.
    """

    def __init__(self, worker_location: str | Callable = DEFAULT_WORKER_LOCATION,
                 normalizer: Optional[str | Callable] = None):
        super().__init__()
        self.worker_location = worker_location
        self.normalizer = normalizer
        self._requests: queue.Queue = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        if self.running:
            return
        entry_point = resolve_location(self.worker_location)
        self._thread = threading.Thread(
            target=entry_point,
            args=(self._requests.get, self._deliver, self.normalizer),
            name='DataCollectionWorker',
            daemon=True)
        self.running = True
        self._thread.start()
        _logger.info('Started worker thread')

    def _post_bytes(self, payload: bytes) -> None:
        self._requests.put(payload)

    def close(self) -> None:
        if not self.running:
            return
        self.running = False
        self._requests.put(None)
        self._thread.join(timeout=DEFAULT_JOIN_TIMEOUT_S)
        _logger.info('Stopped worker thread')


class ProcessChannel(Channel):
    """
    Runs the worker entry point in a child process connected through a duplex pipe.
    A reader thread forwards the responses to the listeners.
    """

    def __init__(self, worker_location: str = DEFAULT_WORKER_LOCATION,
                 normalizer: Optional[str | Callable] = None,
                 start_method: str = 'spawn'):
        super().__init__()
        self.worker_location = worker_location
        self.normalizer = normalizer
        self.start_method = start_method
        self._connection = None
        self._process = None
        self._reader: Optional[threading.Thread] = None
        self._send_lock = threading.Lock()

    def start(self) -> None:
        if self.running:
            return
        context = multiprocessing.get_context(self.start_method)
        self._connection, child_connection = context.Pipe(duplex=True)
        self._process = context.Process(
            target=process_main,
            args=(child_connection, self.worker_location, self.normalizer),
            name='DataCollectionWorker',
            daemon=True)
        self._process.start()
        child_connection.close()

        self._reader = threading.Thread(target=self._read_responses, name='DataCollectionReader', daemon=True)
        self.running = True
        self._reader.start()
        _logger.info(f'Started worker process {self._process.pid}')

    def _read_responses(self) -> None:
        while True:
            try:
                payload = self._connection.recv_bytes()
            except (EOFError, OSError):
                break
            self._deliver(payload)
        _logger.debug('Response reader finished')

    def _post_bytes(self, payload: bytes) -> None:
        with self._send_lock:
            self._connection.send_bytes(payload)

    def close(self) -> None:
        if not self.running:
            return
        self.running = False
        try:
            # an empty payload asks the worker to stop, the worker closing its end ends the reader
            with self._send_lock:
                self._connection.send_bytes(b'')
        except (OSError, ValueError):
            _logger.debug('Worker pipe already closed')

        self._process.join(timeout=DEFAULT_JOIN_TIMEOUT_S)
        if self._process.is_alive():
            _logger.warning(f'Worker process {self._process.pid} did not stop, terminating it')
            self._process.terminate()
            self._process.join(timeout=DEFAULT_JOIN_TIMEOUT_S)
        self._reader.join(timeout=DEFAULT_JOIN_TIMEOUT_S)
        self._connection.close()
        _logger.info('Stopped worker process')
