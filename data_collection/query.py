from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional, TYPE_CHECKING

from .common import DEFAULT_KEY_ATTRIBUTE, describe_kind, \
    MSG_TYPE_ALL, MSG_TYPE_BETWEEN, MSG_TYPE_MATCHING, MSG_TYPE_EQUALS, MSG_TYPE_RANGE, \
    MSG_TYPE_KEY, MSG_TYPE_SUM, MSG_TYPE_AVG, MSG_TYPE_GROUP_BY, MSG_TYPE_AND, MSG_TYPE_OR, \
    MSG_TYPE_INVERT
from .exceptions import InvalidOperandKindException, ValidationException

if TYPE_CHECKING:
    from .collection import DataCollection

_logger = logging.getLogger(__name__)

# Message field receiving the evaluated nested query
_NESTED_FIELDS = {
    MSG_TYPE_OR: 'union',
    MSG_TYPE_AND: 'intersect',
}


class _HeldDataset:
    """Operand of the first stage: the dataset held by the worker, never shipped."""

    def __repr__(self):
        return '<held dataset>'


HELD_DATASET = _HeldDataset()

# Shapes of stage outputs, known from the pipeline itself and never guessed from the data
SHAPE_COLLECTION = 'collection'
SHAPE_PARTITIONS = 'partition map'
SHAPE_GROUP_VALUES = 'map of per group aggregates'
SHAPE_VALUE = 'single value'
# range and sortBy keep the shape of their operand
SHAPE_OF_OPERAND = 'operand'
# sum and avg reduce a collection to a value and a partition map to per group values
SHAPE_REDUCED = 'reduced'


@dataclass(frozen=True)
class Stage:
    """
    One deferred pipeline step.

    operation: builder method name, reported in errors
    msg_type: executor operation to request, None for stages evaluated locally
    params: operation specific message fields
    accepts_partitions: whether a partition map is a valid operand
    nested: query evaluated right before this stage, its result is sent along
    produces: shape of the output, one of the SHAPE_* constants
    """
    operation: str
    msg_type: Optional[str]
    params: dict = field(default_factory=dict)
    accepts_partitions: bool = False
    nested: Optional['Query'] = None
    produces: str = SHAPE_COLLECTION

    def output_shape(self, operand_shape: str) -> str:
        if self.produces == SHAPE_OF_OPERAND:
            return operand_shape
        if self.produces == SHAPE_REDUCED:
            return SHAPE_GROUP_VALUES if operand_shape == SHAPE_PARTITIONS else SHAPE_VALUE
        return self.produces


def _attribute_list(attributes: str | Iterable[str] | None) -> list[str]:
    if attributes is None:
        return []
    if isinstance(attributes, str):
        return [attributes]
    attributes = list(attributes)
    for attr in attributes:
        if not isinstance(attr, str) or not attr.lstrip('+-'):
            raise ValidationException(message=f'Invalid sort attribute {attr!r}')
    return attributes


class Query:
    """
    Chainable, lazily evaluated query against a DataCollection.

    Builder methods only record a stage and return the same query. Nothing is sent to the
    worker until ``result()`` is awaited; then every stage runs in order, each one using the
    output of the previous one as its operand. ``result()`` replays the whole pipeline on
    every call.

    Example:
        ```python
        titles = await (collection.query()
                        .between('year', 1990, 1999)
                        .equals('genre', 'drama')
                        .all(['-rating', 'title'])
                        .range(0, 10)
                        .result())
        ```
    """

    def __init__(self, data_collection: DataCollection):
        self.data_collection = data_collection
        self.stages: list[Stage] = []

    def _add(self, stage: Stage) -> 'Query':
        self.stages.append(stage)
        return self

    def __repr__(self):
        return f'Query({self.explain()})'

    def explain(self) -> str:
        return ' -> '.join(stage.operation for stage in self.stages) or '<all>'

    # Filters

    def between(self, attr: str, low: Any, high: Any) -> 'Query':
        """
        Keeps records whose attribute lies between both bounds, both inclusive.
        Numbers, dates and strings compare with their natural ordering.
        """
        return self._add(Stage('between', MSG_TYPE_BETWEEN, {'attr': attr, 'low': low, 'high': high}))

    def equals(self, attr: str, value: Any, ignore_case: bool = True) -> 'Query':
        """Keeps records whose attribute equals the value. Strings compare case-insensitively by default."""
        return self._add(Stage('equals', MSG_TYPE_EQUALS, {'attr': attr, 'value': value, 'ignoreCase': ignore_case}))

    def matching(self, attr: str, pattern: str | re.Pattern) -> 'Query':
        """Keeps records whose attribute, cast to string, matches the regular expression."""
        if isinstance(pattern, re.Pattern):
            params = {'attr': attr, 'matches': pattern.pattern, 'flags': pattern.flags}
        else:
            params = {'attr': attr, 'matches': pattern}
        return self._add(Stage('matching', MSG_TYPE_MATCHING, params))

    def range(self, low: int = 0, high: Optional[int] = None) -> 'Query':
        """
        Records with an index >= low and < high. Applied per group after ``group_by``.
        """
        return self._add(Stage('range', MSG_TYPE_RANGE, {'low': low, 'high': high},
                               accepts_partitions=True, produces=SHAPE_OF_OPERAND))

    def with_key(self, value: Any, attr: str = DEFAULT_KEY_ATTRIBUTE) -> 'Query':
        """
        The record with the given key, the first one if the key is repeated, None if absent.
        """
        return self._add(Stage('withKey', MSG_TYPE_KEY, {'key': value, 'attr': attr},
                               produces=SHAPE_VALUE))

    # Aggregates

    def sum(self, attr: str) -> 'Query':
        return self._add(Stage('sum', MSG_TYPE_SUM, {'attr': attr}, accepts_partitions=True,
                               produces=SHAPE_REDUCED))

    def avg(self, attr: str) -> 'Query':
        return self._add(Stage('avg', MSG_TYPE_AVG, {'attr': attr}, accepts_partitions=True,
                               produces=SHAPE_REDUCED))

    def mean(self, attr: str) -> 'Query':
        # arithmetic mean, same statistic as avg
        return self._add(Stage('mean', MSG_TYPE_AVG, {'attr': attr}, accepts_partitions=True,
                               produces=SHAPE_REDUCED))

    # Ordering

    def all(self, sort_by: str | Iterable[str] | None = None) -> 'Query':
        """
        Every record of the current result.

        :param sort_by: attributes to sort by. Prefix with '+' for ascending (default) or '-'
                        for descending. Records with a null value sort first in both directions.
        """
        return self._add(Stage('all', MSG_TYPE_ALL, {'sortBy': _attribute_list(sort_by)}))

    def sort_by(self, attributes: str | Iterable[str]) -> 'Query':
        """Same ordering as ``all``, applied per group after ``group_by``."""
        return self._add(Stage('sortBy', MSG_TYPE_ALL, {'sortBy': _attribute_list(attributes)},
                               accepts_partitions=True, produces=SHAPE_OF_OPERAND))

    # Set algebra

    def or_(self, query: 'Query', attr: str = DEFAULT_KEY_ATTRIBUTE) -> 'Query':
        """
        Union with the result of another query, records of the other query are appended
        when their ``attr`` value is not present yet.
        """
        return self._add(Stage('or', MSG_TYPE_OR, {'attr': attr}, nested=self._check_nested(query)))

    def and_(self, query: 'Query') -> 'Query':
        """Records also present in the result of another query, matched by ``id``."""
        return self._add(Stage('and', MSG_TYPE_AND, nested=self._check_nested(query)))

    def invert(self) -> 'Query':
        """Every record of the collection not in the current result, matched by ``id``."""
        return self._add(Stage('invert', MSG_TYPE_INVERT))

    # Grouping

    def group_by(self, attr: str) -> 'Query':
        """Partitions the records by the (stringified) value of the attribute."""
        return self._add(Stage('groupBy', MSG_TYPE_GROUP_BY, {'attr': attr}, produces=SHAPE_PARTITIONS))

    def fallback_if_empty(self, data: Any) -> 'Query':
        """Replaces a None, empty list or empty partition map result with ``data``."""
        return self._add(Stage('fallbackIfEmpty', None, {'data': data}, accepts_partitions=True,
                               produces=SHAPE_OF_OPERAND))

    # Execution

    def _check_nested(self, query: 'Query') -> 'Query':
        if not isinstance(query, Query):
            raise ValidationException(message=f'Expected a Query, got {type(query).__name__}')
        if query is self:
            raise ValidationException(message='A query cannot be combined with itself')
        return query

    async def result(self) -> Any:
        """
        Runs the pipeline.

        :return: a list of records, a partition map, a single record or an aggregate,
                 depending on the last stage
        """
        data, _ = await self._evaluate()
        return data

    async def _evaluate(self) -> tuple[Any, str]:
        await self.data_collection.wait_for_initialization()
        _logger.debug(f'Running query {self.explain()}')

        data: Any = HELD_DATASET
        shape = SHAPE_COLLECTION
        for stage in self.stages:
            data, shape = await self._run_stage(stage, data, shape)

        if data is HELD_DATASET:
            data = await self.data_collection.correlator.send(MSG_TYPE_ALL, {'sortBy': []})
        return data, shape

    async def _run_stage(self, stage: Stage, data: Any, shape: str) -> tuple[Any, str]:
        if stage.msg_type is None:
            return self._run_local(stage, data, shape)

        self._check_operand(stage, data, shape)
        params = dict(stage.params)
        if shape == SHAPE_PARTITIONS:
            params['partitioned'] = True
        if stage.nested is not None:
            nested_result, nested_shape = await stage.nested._evaluate()
            if nested_shape != SHAPE_COLLECTION:
                raise InvalidOperandKindException(
                    message=f'Could not call {stage.operation}, the combined query returned a '
                            f'{nested_shape}',
                    operation=stage.operation)
            params[_NESTED_FIELDS[stage.msg_type]] = nested_result

        operand = None if data is HELD_DATASET else data
        result = await self.data_collection.correlator.send(stage.msg_type, params, operand)
        return result, stage.output_shape(shape)

    @staticmethod
    def _run_local(stage: Stage, data: Any, shape: str) -> tuple[Any, str]:
        if stage.operation == 'fallbackIfEmpty':
            if data is None or (isinstance(data, (list, dict)) and not data):
                substitute = stage.params['data']
                if isinstance(substitute, list):
                    return substitute, SHAPE_COLLECTION
                if isinstance(substitute, dict) and shape == SHAPE_PARTITIONS:
                    return substitute, SHAPE_PARTITIONS
                return substitute, SHAPE_VALUE
            return data, shape
        raise ValidationException(message=f'Unknown local operation {stage.operation}')

    @staticmethod
    def _check_operand(stage: Stage, data: Any, shape: str) -> None:
        if shape == SHAPE_COLLECTION:
            return
        if stage.accepts_partitions:
            if shape == SHAPE_PARTITIONS:
                return
            raise InvalidOperandKindException(
                message=f"Could not call '{stage.operation}' since data is neither a collection "
                        f"nor a partition map but a {shape} ({describe_kind(data)})",
                operation=stage.operation)
        raise InvalidOperandKindException(
            message=f'Called {stage.operation} after an operation which returned not a part of the '
                    f'collection, but a {shape} ({describe_kind(data)})',
            operation=stage.operation)
