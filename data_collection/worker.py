"""
Entry points of the worker context.

``serve`` is the default worker entry point: it pulls encoded request messages, runs
them through an ``Executor`` in arrival order and pushes back the encoded responses.
``process_main`` bootstraps ``serve`` (or any compatible entry point) inside a child
process connected through a pipe.
"""
from __future__ import annotations

import logging
from typing import Callable, Optional

from . import codec
from .common import resolve_location, MSG_TYPE_ERROR
from .exceptions import ValidationException
from .executor import Executor
from .loader import JsonLoader

_logger = logging.getLogger(__name__)


def serve(receive: Callable[[], Optional[bytes]],
          post: Callable[[bytes], None],
          normalizer: Optional[str | Callable] = None) -> None:
    """
    Processes requests until ``receive`` returns None.

    :param receive: blocking callable returning the next encoded request, None to stop
    :param post: callable sending an encoded response back to the coordinator
    :param normalizer: optional record normalizer used by loads, a callable or its dotted location
    """
    executor = Executor(loader=JsonLoader(normalizer))
    _logger.info('Worker context started')
    while True:
        payload = receive()
        if payload is None:
            break
        try:
            message = codec.unpack(payload)
        except Exception:
            _logger.exception('Dropping undecodable request')
            continue
        response = executor.handle(message)
        try:
            encoded = codec.pack(response)
        except ValidationException as e:
            encoded = codec.pack({
                'type': MSG_TYPE_ERROR,
                'mid': message.get('mid'),
                'error': e.error_name,
                'message': str(e),
                'cause': None,
            })
        post(encoded)
    _logger.info('Worker context stopped')


def process_main(connection, worker_location: str, normalizer: Optional[str | Callable] = None) -> None:
    """Target of the worker process: runs the entry point over the pipe end it was given."""
    entry_point = resolve_location(worker_location)

    def receive() -> Optional[bytes]:
        try:
            # an empty payload is the stop request
            return connection.recv_bytes() or None
        except (EOFError, OSError):
            return None

    try:
        entry_point(receive, connection.send_bytes, normalizer)
    finally:
        connection.close()
