"""
Error message extraction for non-success backend responses.

The backend reports failures in several JSON shapes. Each shape has its own
parser; parsers are tried in a fixed order and the first one that yields a
message wins. A parser that does not recognize the body returns None.
"""

import json
import logging
from typing import Any, Callable, List, Optional

logger = logging.getLogger(__name__)

MessageParser = Callable[[Any], Optional[str]]


def parse_message_field(payload: Any) -> Optional[str]:
    """{"message": "..."}"""
    if isinstance(payload, dict):
        message = payload.get("message")
        if isinstance(message, str):
            return message
    return None


def parse_error_detail_list(payload: Any) -> Optional[str]:
    """{"errors": [{"detail": "..."}, ...]}"""
    if isinstance(payload, dict):
        errors = payload.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            detail = errors[0].get("detail")
            if isinstance(detail, str):
                return detail
    return None


def parse_field_error_map(payload: Any) -> Optional[str]:
    """{"errors": {"field": ["...", ...], ...}}"""
    if not isinstance(payload, dict):
        return None
    errors = payload.get("errors")
    if not isinstance(errors, dict) or not errors:
        return None
    # The whole mapping must be field -> [str]; order among fields is not significant
    if not all(isinstance(v, list) and all(isinstance(s, str) for s in v) for v in errors.values()):
        return None
    first_messages = next(iter(errors.values()))
    return first_messages[0] if first_messages else None


DEFAULT_PARSERS: List[MessageParser] = [
    parse_message_field,
    parse_error_detail_list,
    parse_field_error_map,
]


class ErrorMessageParser:
    """Best-effort extraction of a human-readable message from an error body."""

    def __init__(self, parsers: Optional[List[MessageParser]] = None):
        self.parsers = list(parsers) if parsers is not None else list(DEFAULT_PARSERS)

    def parse(self, body: bytes) -> Optional[str]:
        """
        Extract a message from a response body.

        Args:
            body: Raw response body

        Returns:
            The first message any parser recognizes, or None
        """
        if not body:
            return None

        try:
            payload = json.loads(body.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError):
            logger.debug("Error body is not JSON")
            return None

        for parser in self.parsers:
            message = parser(payload)
            if message is not None:
                return message
        return None
