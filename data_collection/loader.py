"""
Dataset loader used by the worker context to seed the held collection.

The loader reads one JSON array of objects from a path or URL. Each record can be
reshaped by a pluggable normalizer, since field decoding depends on the dataset.
"""
from __future__ import annotations

import ast
import datetime
import json
import logging
import os
import urllib.request
from typing import Any, Callable, Optional

from .common import Collection, Record, resolve_location
from .exceptions import LoaderFailureException

_logger = logging.getLogger(__name__)

Normalizer = Callable[[Record], Optional[Record]]


def _read_resource(location: str) -> bytes:
    if location.startswith(('http://', 'https://', 'file://')):
        with urllib.request.urlopen(location) as response:
            return response.read()
    with open(os.path.expanduser(location), 'rb') as f:
        return f.read()


class JsonLoader:
    """
    Loads a collection from a JSON document.

    :param normalizer: optional callable applied to every record, or the dotted
                       location of one. It may modify the record in place (returning None)
                       or return a replacement record.
    """

    def __init__(self, normalizer: Normalizer | str | None = None):
        self.normalizer = resolve_location(normalizer) if normalizer else None

    def __call__(self, location: str) -> Collection:
        if not location:
            raise LoaderFailureException(message='No resource location configured')
        try:
            data = json.loads(_read_resource(location))
        except (OSError, ValueError) as e:
            raise LoaderFailureException(message=f'Could not load {location}: {e}', cause=e) from e

        if not isinstance(data, list) or not all(isinstance(record, dict) for record in data):
            raise LoaderFailureException(message=f'{location} does not hold an array of objects')

        if self.normalizer:
            try:
                data = [self._normalize(record) for record in data]
            except Exception as e:
                raise LoaderFailureException(
                    message=f'Normalization of {location} failed: {e}', cause=e) from e

        _logger.info(f'Loaded {len(data)} records from {location}')
        return data

    def _normalize(self, record: Record) -> Record:
        normalized = self.normalizer(record)
        return record if normalized is None else normalized


# ---------------------------- Normalizer hooks ----------------------------

def parse_dates(*attrs: str) -> Normalizer:
    """Converts ISO formatted strings in ``attrs`` into datetime values."""

    def _normalize(record: Record) -> None:
        for attr in attrs:
            value = record.get(attr)
            if isinstance(value, str) and value:
                record[attr] = datetime.datetime.fromisoformat(value)

    return _normalize


def decode_literals(*attrs: str) -> Normalizer:
    """Decodes python/JSON literals stored as strings (e.g. "['Drama', 'Crime']") in ``attrs``."""

    def _normalize(record: Record) -> None:
        for attr in attrs:
            value = record.get(attr)
            if isinstance(value, str) and value:
                record[attr] = _literal(value)

    return _normalize


def _literal(value: str) -> Any:
    try:
        return ast.literal_eval(value)
    except (ValueError, SyntaxError):
        return json.loads(value)


def chain(*normalizers: Normalizer) -> Normalizer:
    def _normalize(record: Record) -> Record:
        for normalizer in normalizers:
            normalized = normalizer(record)
            if normalized is not None:
                record = normalized
        return record

    return _normalize
