"""Shared types: strict base models and the classified error hierarchy."""

from .base import StrictBaseModel, WireModel
from .exceptions import (
    ClassifiedError,
    ErrorKind,
    InternalError,
    NetworkError,
    NetworkFailure,
    RemoteAPIError,
    ValidationError,
)

__all__ = [
    "ClassifiedError",
    "ErrorKind",
    "InternalError",
    "NetworkError",
    "NetworkFailure",
    "RemoteAPIError",
    "StrictBaseModel",
    "ValidationError",
    "WireModel",
]
