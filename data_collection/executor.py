from __future__ import annotations

import logging
import traceback
from typing import Any, Callable, Dict, Optional

from . import operations
from .common import Collection, DEFAULT_KEY_ATTRIBUTE, \
    MSG_TYPE_LOAD, MSG_TYPE_ALL, MSG_TYPE_BETWEEN, MSG_TYPE_MATCHING, MSG_TYPE_EQUALS, \
    MSG_TYPE_RANGE, MSG_TYPE_KEY, MSG_TYPE_SUM, MSG_TYPE_AVG, MSG_TYPE_GROUP_BY, \
    MSG_TYPE_AND, MSG_TYPE_OR, MSG_TYPE_INVERT, MSG_TYPE_ERROR
from .exceptions import DataCollectionException, UnknownOperationException
from .loader import JsonLoader

_logger = logging.getLogger(__name__)

Loader = Callable[[str], Collection]


class Executor:
    """
    Worker side of the protocol.

    Owns the held dataset and answers one request message at a time. The operand of an
    operation is the ``use`` field of the message when present, the held dataset otherwise.
    Operations able to run per group treat the operand as a partition map only when the
    message carries ``partitioned: True``.
    Every request gets exactly one response: ``{type, mid, data}`` on success or
    ``{type: 'error', mid, error, message, cause}`` on failure.
    """

    def __init__(self, loader: Optional[Loader] = None):
        self.loader = loader or JsonLoader()
        self._collection: Collection = []
        self._loaded = False

        self.message_handlers: Dict[str, Callable[[Any, dict], Any]] = {
            MSG_TYPE_LOAD: self._handle_load,
            MSG_TYPE_ALL: lambda data, m: operations.sort_records(
                data, m.get('sortBy'), partitioned=m.get('partitioned', False)),
            MSG_TYPE_BETWEEN: lambda data, m: operations.get_between(data, m['attr'], m['low'], m['high']),
            MSG_TYPE_MATCHING: lambda data, m: operations.get_matching(
                data, m['attr'], m['matches'], m.get('flags', 0)),
            MSG_TYPE_EQUALS: lambda data, m: operations.equals(
                data, m['attr'], m['value'], m.get('ignoreCase', True)),
            MSG_TYPE_RANGE: lambda data, m: operations.get_range(
                data, m.get('low'), m.get('high'), partitioned=m.get('partitioned', False)),
            MSG_TYPE_KEY: lambda data, m: operations.find_by_key(
                data, m['key'], m.get('attr') or DEFAULT_KEY_ATTRIBUTE),
            MSG_TYPE_SUM: lambda data, m: operations.get_sum(
                data, m['attr'], partitioned=m.get('partitioned', False)),
            MSG_TYPE_AVG: lambda data, m: operations.get_average(
                data, m['attr'], partitioned=m.get('partitioned', False)),
            MSG_TYPE_GROUP_BY: lambda data, m: operations.get_grouped(data, m['attr']),
            MSG_TYPE_AND: lambda data, m: operations.intersect(data, m['intersect']),
            MSG_TYPE_OR: lambda data, m: operations.union(data, m['union'], m.get('attr')),
            MSG_TYPE_INVERT: lambda data, m: operations.complement(self._collection, data),
        }

    @property
    def collection(self) -> Collection:
        return self._collection

    @property
    def loaded(self) -> bool:
        return self._loaded

    def handle(self, message: dict) -> dict:
        """
        Runs the operation named by ``message['type']`` and builds the response message.

        :param message: decoded request message
        :return: the response message
        """
        msg_type = message.get('type')
        mid = message.get('mid')
        handler = self.message_handlers.get(msg_type)

        if handler is None:
            _logger.warning(f'Received unknown message type: {msg_type}')
            return {
                'type': MSG_TYPE_ERROR,
                'mid': mid,
                'error': UnknownOperationException.error_name,
                'message': f'unknown type {msg_type}',
                'cause': message,
            }

        data = message['use'] if message.get('use') is not None else self._collection
        try:
            result = handler(data, message)
        except DataCollectionException as e:
            _logger.debug(f'Operation {msg_type} ({mid}) failed: {e}')
            return self._error_response(mid, e.error_name, str(e))
        except Exception as e:
            _logger.exception(f'Unexpected error processing {msg_type} ({mid})')
            return self._error_response(mid, 'OperationFailed', f'{type(e).__name__}: {e}')

        _logger.debug(f'Processed {msg_type} ({mid})')
        return {'type': msg_type, 'mid': mid, 'data': result}

    @staticmethod
    def _error_response(mid: str, error: str, text: str) -> dict:
        return {
            'type': MSG_TYPE_ERROR,
            'mid': mid,
            'error': error,
            'message': text,
            'cause': traceback.format_exc(),
        }

    def _handle_load(self, data, message: dict) -> int:
        collection = self.loader(message.get('file'))
        self._collection = collection
        self._loaded = True
        return len(collection)
