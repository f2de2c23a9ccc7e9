"""
Operation set executed inside the worker context.

Every function here is pure with respect to its operand: the input collection is never
reordered or extended, new lists are returned instead. Functions decorated with
``per_partition`` also accept a partition map (the output of ``group_by``) when called
with ``partitioned=True`` and are then applied to every partition independently,
keeping the partition keys.
"""
from __future__ import annotations

import datetime
import functools
import locale
import re
from typing import Any, Callable, Iterable, Optional

from .common import Collection, PartitionMap, Record, DEFAULT_KEY_ATTRIBUTE, describe_kind
from .exceptions import InvalidOperandKindException

Number = float | int


def per_partition(operation: str) -> Callable:
    """
    Grouped adaptor.

    Called with ``partitioned=True`` the operand must be a partition map (the output of
    ``group_by``) and the wrapped function runs on every partition, keeping the keys.
    The flag is set by whoever built the pipeline; the operand shape is never guessed.

    :param operation: operation name reported when the operand is not a partition map
    """

    def decorator(fn: Callable) -> Callable:
        @functools.wraps(fn)
        def wrapper(data, *args, partitioned: bool = False, **kwargs):
            if not partitioned:
                return fn(data, *args, **kwargs)
            if not isinstance(data, dict):
                raise InvalidOperandKindException(
                    message=f'Called {operation} on partitions, but data is a {describe_kind(data)}',
                    operation=operation)
            return {group: fn(records, *args, **kwargs) for group, records in data.items()}

        return wrapper

    return decorator


def require_collection(data: Any, operation: str) -> Collection:
    if not isinstance(data, list):
        raise InvalidOperandKindException(
            message=f'Called {operation} after an operation which returned not a part of the collection, '
                    f'but a {describe_kind(data)}',
            operation=operation)
    return data


# ---------------------------- Filters ----------------------------

def get_between(records: Collection, attr: str, low: Any, high: Any) -> Collection:
    def _pred(record: Record) -> bool:
        value = record.get(attr)
        if value is None:
            return False
        try:
            return low <= value <= high
        except TypeError:
            # incomparable types (e.g. str vs int) never match
            return False

    return [record for record in require_collection(records, 'between') if _pred(record)]


def equals(records: Collection, attr: str, value: Any, ignore_case: bool = True) -> Collection:
    require_collection(records, 'equals')
    if isinstance(value, str) and ignore_case:
        folded = value.casefold()
        return [record for record in records
                if isinstance(record.get(attr), str) and record[attr].casefold() == folded]
    return [record for record in records if record.get(attr) == value]


def get_matching(records: Collection, attr: str, pattern: str, flags: int = 0) -> Collection:
    regex = re.compile(pattern, flags)
    return [record for record in require_collection(records, 'matching')
            if record.get(attr) is not None and regex.search(str(record[attr]))]


def find_by_key(records: Collection, key: Any, attr: str = DEFAULT_KEY_ATTRIBUTE) -> Optional[Record]:
    for record in require_collection(records, 'withKey'):
        if record.get(attr) == key:
            return record
    return None


# ---------------------------- Slicing and aggregates ----------------------------

@per_partition('range')
def get_range(records: Collection, low: int = 0, high: Optional[int] = None) -> Collection:
    require_collection(records, 'range')
    return records[low or 0:high if high is not None else len(records)]


@per_partition('sum')
def get_sum(records: Collection, attr: str) -> Number:
    total: Number = 0
    for record in require_collection(records, 'sum'):
        total += record.get(attr) or 0
    return total


@per_partition('avg')
def get_average(records: Collection, attr: str) -> float:
    require_collection(records, 'avg')
    if not records:
        return 0.0
    return get_sum(records, attr) / len(records)


# ---------------------------- Sorting ----------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_temporal(a: Any, b: Any) -> bool:
    # datetime is a subclass of date, both sides must be the same kind to compare
    if isinstance(a, datetime.datetime) or isinstance(b, datetime.datetime):
        return isinstance(a, datetime.datetime) and isinstance(b, datetime.datetime)
    return isinstance(a, datetime.date) and isinstance(b, datetime.date)


def _sign(value: Number) -> int:
    return (value > 0) - (value < 0)


def parse_ordering(ordering: str | Iterable[str] | None) -> list[tuple[str, int]]:
    """
    Splits '+attr' / '-attr' / 'attr' entries into (attribute, direction) pairs.
    """
    if ordering is None:
        return []
    if isinstance(ordering, str):
        ordering = [ordering]
    keys = []
    for entry in ordering:
        direction = -1 if entry.startswith('-') else 1
        if entry.startswith(('+', '-')):
            entry = entry[1:]
        keys.append((entry, direction))
    return keys


def compare_records(a: Record, b: Record, keys: list[tuple[str, int]]) -> int:
    """
    Multi-key comparator.

    For each key, in order: equal values defer to the next key; numbers compare
    numerically; when both values are set and either is a string, they compare with the
    current locale collation; dates compare chronologically. Only those three branches
    honour the direction marker. Two unequal falsy values (None, missing, 0, '') tie on
    the key, so their records keep their input order unless a later key decides.
    Otherwise a falsy left value sorts the left record first, then a falsy right value
    sorts the right record first, whatever the direction.
    """
    for attr, direction in keys:
        a_val = a.get(attr)
        b_val = b.get(attr)

        if a_val == b_val:
            continue

        if _is_number(a_val) and _is_number(b_val):
            return _sign(a_val - b_val) * direction

        if a_val and b_val and (isinstance(a_val, str) or isinstance(b_val, str)):
            return _sign(locale.strcoll(str(a_val), str(b_val))) * direction

        if a_val and b_val and _is_temporal(a_val, b_val):
            return (1 if a_val > b_val else -1) * direction

        if not a_val and not b_val:
            continue

        if not a_val:
            return -1

        if not b_val:
            return 1
    return 0


@per_partition('all')
def sort_records(records: Collection, ordering: str | Iterable[str] | None = None,
                 immutable: bool = True) -> Collection:
    """
    Orders records with ``compare_records``. The sort is stable.

    :param records: collection to order
    :param ordering: attribute names, optionally prefixed with '+' (ascending) or '-' (descending)
    :param immutable: when False the given list is sorted in place and returned
    """
    require_collection(records, 'all')
    keys = parse_ordering(ordering)
    if immutable:
        records = list(records)
    if keys:
        records.sort(key=functools.cmp_to_key(lambda a, b: compare_records(a, b, keys)))
    return records


# ---------------------------- Grouping ----------------------------

def group_key(value: Any) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def get_grouped(records: Collection, attr: str) -> PartitionMap:
    groups: PartitionMap = {}
    for record in require_collection(records, 'groupBy'):
        groups.setdefault(group_key(record.get(attr)), []).append(record)
    return groups


# ---------------------------- Set algebra ----------------------------

def union(a: Collection, b: Collection, attr: str = DEFAULT_KEY_ATTRIBUTE) -> Collection:
    """
    Records of ``a`` followed by the records of ``b`` whose ``attr`` value is not yet present.
    """
    attr = attr or DEFAULT_KEY_ATTRIBUTE
    result = list(require_collection(a, 'or'))
    seen = [record.get(attr) for record in result]
    for record in require_collection(b, 'or'):
        key = record.get(attr)
        if key not in seen:
            seen.append(key)
            result.append(record)
    return result


def intersect(a: Collection, b: Collection) -> Collection:
    """
    Records of ``a`` whose ``id`` is present in ``b``. Always keyed on ``id``.
    """
    keys = [record.get(DEFAULT_KEY_ATTRIBUTE) for record in require_collection(b, 'and')]
    return [record for record in require_collection(a, 'and')
            if record.get(DEFAULT_KEY_ATTRIBUTE) in keys]


def complement(dataset: Collection, current: Collection) -> Collection:
    """
    Records of the full dataset whose ``id`` is absent from ``current``.
    """
    keys = [record.get(DEFAULT_KEY_ATTRIBUTE) for record in require_collection(current, 'invert')]
    return [record for record in dataset if record.get(DEFAULT_KEY_ATTRIBUTE) not in keys]
