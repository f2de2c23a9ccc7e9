from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, fields
from typing import Callable, Optional

from .common import DEFAULT_TIMEOUT_MS, DEFAULT_LOAD_TIMEOUT_MS, DEFAULT_WORKER_LOCATION
from .exceptions import ValidationException

WORKER_MODES = ('process', 'thread')
ENV_PREFIX = 'DATA_COLLECTION_'
CONFIG_SECTION = 'data_collection'


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except Exception:
        return default


@dataclass
class CollectionConfig:
    """
    Settings of a DataCollection.

    timeout_ms: time to wait for each query response before failing with a timeout
    resource_location: path or URL of the JSON document holding the dataset
    worker_location: dotted 'module:function' of the worker entry point
    worker_mode: 'process' (isolated child process) or 'thread'
    load_timeout_ms: time to wait for the initial load
    normalizer: record normalizer applied by the loader, a callable or its dotted location
    """
    timeout_ms: int = DEFAULT_TIMEOUT_MS
    resource_location: Optional[str] = None
    worker_location: str = DEFAULT_WORKER_LOCATION
    worker_mode: str = 'process'
    load_timeout_ms: int = DEFAULT_LOAD_TIMEOUT_MS
    normalizer: Optional[str | Callable] = None

    def __post_init__(self):
        if not isinstance(self.timeout_ms, int) or self.timeout_ms <= 0:
            raise ValidationException(message=f'timeout_ms must be a positive integer, got {self.timeout_ms!r}')
        if not isinstance(self.load_timeout_ms, int) or self.load_timeout_ms <= 0:
            raise ValidationException(
                message=f'load_timeout_ms must be a positive integer, got {self.load_timeout_ms!r}')
        if self.worker_mode not in WORKER_MODES:
            raise ValidationException(
                message=f'worker_mode must be one of {", ".join(WORKER_MODES)}, got {self.worker_mode!r}')

    @staticmethod
    def from_env() -> 'CollectionConfig':
        return CollectionConfig(
            timeout_ms=_int_env(ENV_PREFIX + 'TIMEOUT_MS', DEFAULT_TIMEOUT_MS),
            resource_location=os.getenv(ENV_PREFIX + 'RESOURCE_LOCATION'),
            worker_location=os.getenv(ENV_PREFIX + 'WORKER_LOCATION', DEFAULT_WORKER_LOCATION),
            worker_mode=os.getenv(ENV_PREFIX + 'WORKER_MODE', 'process'),
            load_timeout_ms=_int_env(ENV_PREFIX + 'LOAD_TIMEOUT_MS', DEFAULT_LOAD_TIMEOUT_MS),
            normalizer=os.getenv(ENV_PREFIX + 'NORMALIZER'),
        )

    @staticmethod
    def from_file(path: str, section: str = CONFIG_SECTION) -> 'CollectionConfig':
        """
        Reads the settings from an INI file. Missing keys keep their defaults.

        :param path: the INI file
        :param section: the section holding the settings
        """
        config_data = configparser.ConfigParser()
        if not config_data.read(path):
            raise ValidationException(message=f'Config file {path} could not be read')
        if not config_data.has_section(section):
            raise ValidationException(message=f'Config file {path} has no [{section}] section')

        values = config_data[section]
        kwargs = {}
        for field in fields(CollectionConfig):
            if field.name not in values:
                continue
            if field.name in ('timeout_ms', 'load_timeout_ms'):
                try:
                    kwargs[field.name] = values.getint(field.name)
                except ValueError as e:
                    raise ValidationException(message=f'{field.name} must be an integer', cause=e) from e
            else:
                kwargs[field.name] = values.get(field.name)
        return CollectionConfig(**kwargs)
