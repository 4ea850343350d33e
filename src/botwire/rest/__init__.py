"""
REST: request/response calls against the remote service's command endpoints.

Exports the dispatcher, its result types and the error-code vocabulary.
"""

from .codes import JSONErrorCode
from .dispatcher import RequestDispatcher
from .pending import Acknowledgement, DeferredReply, PendingRequest
from .responses import Result, Success, interpret_response
from .routes import HTTPMethod, parse_method, validate_path

__all__ = [
    "Acknowledgement",
    "DeferredReply",
    "HTTPMethod",
    "JSONErrorCode",
    "PendingRequest",
    "RequestDispatcher",
    "Result",
    "Success",
    "interpret_response",
    "parse_method",
    "validate_path",
]
