from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Callable, Iterable, List, Optional

from .common import DEFAULT_KEY_ATTRIBUTE, MSG_TYPE_LOAD
from .config import CollectionConfig
from .correlation import Correlator
from .exceptions import ValidationException
from .query import Query
from .transport import Channel, ProcessChannel, ThreadChannel

_logger = logging.getLogger(__name__)


def create_channel(config: CollectionConfig) -> Channel:
    if config.worker_mode == 'process':
        return ProcessChannel(config.worker_location, config.normalizer)
    if config.worker_mode == 'thread':
        return ThreadChannel(config.worker_location, config.normalizer)
    raise ValidationException(message=f'Unsupported worker mode {config.worker_mode}')


class DataCollection:
    """
    A dataset held by a worker context, queried asynchronously.

    The worker is started and the dataset loaded on first use (or explicitly by ``open()``,
    or by entering the collection as an async context manager). Every query waits for that
    initialization; if loading fails, every query fails with the same error.

    :param config: settings, defaults to ``CollectionConfig()``
    :param channel: channel to an already configured worker context, built from config if omitted
    :param overrides: individual config fields overriding ``config``
    """

    def __init__(self, config: Optional[CollectionConfig] = None, channel: Optional[Channel] = None,
                 **overrides):
        config = config or CollectionConfig()
        if overrides:
            config = dataclasses.replace(config, **overrides)
        self.config = config
        self.channel = channel or create_channel(config)
        self.correlator = Correlator(self.channel, config.timeout_ms)
        self.is_initialized = False
        self.size = 0
        self._on_init: List[Callable[[int], Any]] = []
        self._initialization: Optional[asyncio.Future] = None

    @property
    def timeout(self) -> int:
        return self.correlator.timeout_ms

    async def _initialize(self) -> int:
        # starting a process worker blocks while it spawns
        await asyncio.get_running_loop().run_in_executor(None, self.channel.start)
        size = await self.correlator.send(MSG_TYPE_LOAD, {'file': self.config.resource_location},
                                          timeout_ms=self.config.load_timeout_ms)
        self.size = size
        self.is_initialized = True
        _logger.info(f'Collection {self.config.resource_location} initialized with {size} records')

        callbacks, self._on_init = self._on_init, []
        for callback in callbacks:
            callback(size)
        return size

    async def wait_for_initialization(self) -> int:
        """
        Starts the worker and loads the dataset if not done yet, then waits for it.

        :return: the number of records loaded
        :raises LoaderFailureException: when the dataset could not be loaded
        """
        if self._initialization is None:
            self._initialization = asyncio.ensure_future(self._initialize())
        return await asyncio.shield(self._initialization)

    async def open(self) -> 'DataCollection':
        await self.wait_for_initialization()
        return self

    def on_init(self, fn: Callable[[int], Any]) -> None:
        """Calls ``fn`` with the number of loaded records once the collection is initialized."""
        if self.is_initialized:
            fn(self.size)
        else:
            self._on_init.append(fn)

    def close(self) -> None:
        """
        Fails the pending requests and stops the worker context.
        Blocks until the worker has stopped, a few seconds at most; coroutines should use ``aclose``.
        """
        self.correlator.close()
        self.channel.close()

    async def aclose(self) -> None:
        """Same as ``close``, waiting for the worker to stop in an executor thread."""
        self.correlator.close()
        await asyncio.get_running_loop().run_in_executor(None, self.channel.close)

    async def __aenter__(self) -> 'DataCollection':
        return await self.open()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.aclose()

    # Query shortcuts

    def query(self) -> Query:
        return Query(self)

    def with_key(self, key: Any, attr: str = DEFAULT_KEY_ATTRIBUTE) -> Query:
        return Query(self).with_key(key, attr)

    def equals(self, attr: str, value: Any, ignore_case: bool = True) -> Query:
        return Query(self).equals(attr, value, ignore_case)

    def all(self, sort_by: str | Iterable[str] | None = None) -> Query:
        return Query(self).all(sort_by)

    def between(self, attr: str, low: Any, high: Any) -> Query:
        return Query(self).between(attr, low, high)

    def matching(self, attr: str, pattern: Any) -> Query:
        return Query(self).matching(attr, pattern)

    def sort_by(self, attributes: str | Iterable[str]) -> Query:
        return Query(self).sort_by(attributes)

    def group_by(self, attr: str) -> Query:
        return Query(self).group_by(attr)
