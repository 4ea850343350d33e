"""
Well-known JSON error codes reported in REST error bodies.

The remote reports failures as::

    {"code": 10008, "message": "Unknown Message"}

and, for validation rejections, adds a nested ``errors`` object describing
each rejected field. The HTTP status only tells the family; the JSON code
identifies the exact condition.
"""

from enum import IntEnum


class JSONErrorCode(IntEnum):
    """Subset of the remote service's JSON error codes."""

    GENERAL_ERROR = 0
    UNKNOWN_CHANNEL = 10003
    UNKNOWN_GUILD = 10004
    UNKNOWN_MEMBER = 10007
    UNKNOWN_MESSAGE = 10008
    UNKNOWN_USER = 10013
    UNKNOWN_INTERACTION = 10062
    MISSING_ACCESS = 50001
    CANNOT_SEND_EMPTY_MESSAGE = 50006
    CANNOT_SEND_MESSAGES_TO_USER = 50007
    MISSING_PERMISSIONS = 50013
    INVALID_FORM_BODY = 50035
    INTERACTION_ALREADY_ACKNOWLEDGED = 40060
