from __future__ import annotations

from typing import Any


class DataCollectionException(Exception):
    """
    Root of every exception raised by data_collection.

    :param message: human readable description
    :param cause: optional context (a remote traceback, the offending message, ...)
    """
    error_name: str = 'DataCollectionError'

    def __init__(self, message: str = None, cause: Any = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self):
        return self.message or self.error_name


class ValidationException(DataCollectionException):
    error_name = 'Validation'


class TimeoutException(DataCollectionException):
    error_name = 'Timeout'


class InvalidOperandKindException(DataCollectionException):
    error_name = 'InvalidOperandKind'

    def __init__(self, message: str = None, cause: Any = None, operation: str = None):
        super().__init__(message=message, cause=cause)
        self.operation = operation


class UnknownOperationException(DataCollectionException):
    error_name = 'UnknownOperation'


class LoaderFailureException(DataCollectionException):
    error_name = 'LoaderFailure'


class OperationFailedException(DataCollectionException):
    error_name = 'OperationFailed'


_by_name = {cls.error_name: cls for cls in (
    ValidationException,
    TimeoutException,
    InvalidOperandKindException,
    UnknownOperationException,
    LoaderFailureException,
    OperationFailedException,
)}


def exception_for(error_name: str | None) -> type[DataCollectionException]:
    """Maps the error name carried by an error response back to its exception class."""
    return _by_name.get(error_name, OperationFailedException)
