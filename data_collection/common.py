"""
Basic definitions shared by the coordinator and the worker context
"""
from __future__ import annotations

import importlib
import time
import uuid
from typing import Any, Callable, Dict, List

from .exceptions import ValidationException

Record = Dict[str, Any]
Collection = List[Record]
PartitionMap = Dict[str, Any]

DEFAULT_TIMEOUT_MS = 5000
DEFAULT_LOAD_TIMEOUT_MS = 30000
DEFAULT_KEY_ATTRIBUTE = 'id'
DEFAULT_WORKER_LOCATION = 'data_collection.worker:serve'

# Message types understood by the executor
MSG_TYPE_LOAD = 'load'
MSG_TYPE_ALL = 'all'
MSG_TYPE_BETWEEN = 'between'
MSG_TYPE_MATCHING = 'matching'
MSG_TYPE_EQUALS = 'equals'
MSG_TYPE_RANGE = 'range'
MSG_TYPE_KEY = 'key'
MSG_TYPE_SUM = 'sum'
MSG_TYPE_AVG = 'avg'
MSG_TYPE_GROUP_BY = 'groupBy'
MSG_TYPE_AND = 'and'
MSG_TYPE_OR = 'or'
MSG_TYPE_INVERT = 'invert'
MSG_TYPE_ERROR = 'error'


def new_message_id() -> str:
    """
    Fresh correlation id: nanosecond timestamp in hex plus a random suffix.
    """
    return f'{time.time_ns():x}{uuid.uuid4().hex[:8]}'


def is_collection(data: Any) -> bool:
    return isinstance(data, list)


def describe_kind(data: Any) -> str:
    if is_collection(data):
        return 'collection'
    if isinstance(data, dict):
        return 'map'
    return type(data).__name__


def resolve_location(location: str | Callable) -> Callable:
    """
    Resolves a dotted ``package.module:attribute`` location into the object it names.
    Callables are returned untouched.

    :param location: the location to resolve
    :return: the referenced object
    """
    if callable(location):
        return location
    if not isinstance(location, str) or ':' not in location:
        raise ValidationException(
            message=f'Invalid location {location!r}, expected "package.module:attribute"')

    module_name, _, attribute = location.partition(':')
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ValidationException(message=f'Could not import {module_name}', cause=e) from e

    target = module
    for part in attribute.split('.'):
        try:
            target = getattr(target, part)
        except AttributeError as e:
            raise ValidationException(
                message=f'{module_name} has no attribute {attribute}', cause=e) from e
    return target
