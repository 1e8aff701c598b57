"""
HTTP API Client for the GPT Toolkit Client.

This module provides the low-level request executor for the backend: it builds
requests, attaches bearer tokens, classifies responses, decodes JSON payloads
and reduces every failure to one of the normalized API errors. It holds no
authentication state and never retries.
"""

import asyncio
import json
import logging
import socket
from typing import Optional, Dict, Any, Type, TypeVar, Union
from urllib.parse import urljoin

import aiohttp
from aiohttp import ClientSession, ClientTimeout

from client.error_parser import ErrorMessageParser
from shared.exceptions import (
    ErrorCode, TransportError, InvalidResponseError, ServerError, DecodingError
)
from shared.models import EmptyResponse

logger = logging.getLogger(__name__)

T = TypeVar("T")

USER_AGENT = 'GPTToolkitClient/1.0'


def json_body(payload: Any) -> bytes:
    """Encode a request model (anything with to_dict) or a plain dict as a JSON body."""
    if hasattr(payload, 'to_dict'):
        payload = payload.to_dict()
    return json.dumps(payload).encode('utf-8')


def default_error_message(status_code: int) -> str:
    return f"Request failed with status code {status_code}"


class APIClient:
    """
    HTTP client for the GPT Toolkit backend.

    Provides JSON requests against a single base URL with optional bearer
    authentication and normalized error reporting.
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 30.0,
        error_parser: Optional[ErrorMessageParser] = None,
        session: Optional[ClientSession] = None
    ):
        self.base_url = base_url.rstrip('/') + '/'
        self.timeout = ClientTimeout(total=timeout)
        self.error_parser = error_parser or ErrorMessageParser()

        self._session = session
        self._owns_session = session is None

        logger.info(f"API client initialized for server: {self.base_url}")

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> ClientSession:
        """Ensure HTTP session is available."""
        if self._session is None or self._session.closed:
            self._session = ClientSession(
                timeout=self.timeout,
                headers={'User-Agent': USER_AGENT}
            )
            self._owns_session = True
        return self._session

    async def close(self) -> None:
        """Close the HTTP session."""
        if self._session and not self._session.closed and self._owns_session:
            await self._session.close()
        self._session = None

    def build_url(self, path: str) -> str:
        """Build full URL from a path relative to the base URL."""
        return urljoin(self.base_url, path.lstrip('/'))

    @staticmethod
    def build_headers(bearer_token: Optional[str] = None) -> Dict[str, str]:
        """JSON headers, plus Authorization when a token is supplied."""
        headers = {
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        }
        if bearer_token:
            headers['Authorization'] = f'Bearer {bearer_token}'
        return headers

    async def request(
        self,
        path: str,
        method: str = 'GET',
        body: Optional[bytes] = None,
        response_type: Union[Type[T], Type[Dict[str, Any]]] = dict,
        bearer_token: Optional[str] = None
    ) -> T:
        """
        Make an HTTP request and decode the response.

        Args:
            path: API path relative to the base URL (e.g. 'auth/me')
            method: HTTP method
            body: Encoded request body, see json_body()
            response_type: EmptyResponse, dict/list, or a model with from_dict()
            bearer_token: Access token to send, if any

        Returns:
            The decoded response

        Raises:
            TransportError: Connection, DNS or timeout failure
            InvalidResponseError: The server did not answer with valid HTTP
            ServerError: Non-2xx status
            DecodingError: The body does not match response_type
        """
        session = await self._ensure_session()
        url = self.build_url(path)
        headers = self.build_headers(bearer_token)

        logger.debug(f"Making {method} request to {url}")

        try:
            async with session.request(method, url, data=body, headers=headers) as response:
                status = response.status
                raw = await response.read()

        except asyncio.TimeoutError as e:
            raise TransportError(
                f"Request to {path} timed out",
                error_code=ErrorCode.NETWORK_TIMEOUT,
                context={'path': path, 'method': method},
                cause=e
            )
        except aiohttp.ClientSSLError as e:
            raise TransportError(
                f"TLS error talking to {url}: {e}",
                error_code=ErrorCode.NETWORK_SSL_ERROR,
                context={'path': path, 'method': method},
                cause=e
            )
        except aiohttp.ClientConnectorError as e:
            error_code = ErrorCode.NETWORK_CONNECTION_FAILED
            if isinstance(e.os_error, socket.gaierror):
                error_code = ErrorCode.NETWORK_DNS_RESOLUTION_FAILED
            raise TransportError(
                f"Cannot connect to {url}: {e}",
                error_code=error_code,
                context={'path': path, 'method': method},
                cause=e
            )
        except aiohttp.ClientConnectionError as e:
            raise TransportError(
                f"Connection error on {method} {path}: {e}",
                context={'path': path, 'method': method},
                cause=e
            )
        except (aiohttp.ClientResponseError, aiohttp.ClientPayloadError) as e:
            raise InvalidResponseError(
                f"Malformed response to {method} {path}: {e}",
                context={'path': path, 'method': method},
                cause=e
            )
        except (aiohttp.ClientError, OSError) as e:
            raise TransportError(
                f"Request {method} {path} failed: {e}",
                context={'path': path, 'method': method},
                cause=e
            )

        if not 200 <= status < 300:
            message = self.error_parser.parse(raw) or default_error_message(status)
            logger.debug(f"{method} {path} rejected with status {status}")
            raise ServerError(status, message, context={'path': path, 'method': method})

        return self._decode(raw, response_type, path)

    def _decode(self, raw: bytes, response_type: Any, path: str) -> Any:
        """Decode a 2xx body into response_type."""
        if not raw:
            if response_type is EmptyResponse:
                return EmptyResponse()
            raise DecodingError(f"Empty response body from {path}", context={'path': path})

        try:
            payload = json.loads(raw.decode('utf-8'))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DecodingError(f"Invalid JSON from {path}: {e}", context={'path': path}, cause=e)

        if response_type is EmptyResponse:
            if not isinstance(payload, dict):
                raise DecodingError(f"Expected an object from {path}", context={'path': path})
            return EmptyResponse()

        if response_type in (dict, list):
            if not isinstance(payload, response_type):
                raise DecodingError(
                    f"Expected {response_type.__name__} from {path}, got {type(payload).__name__}",
                    context={'path': path}
                )
            return payload

        if response_type is object or response_type is Any:
            return payload

        from_dict = getattr(response_type, 'from_dict', None)
        if from_dict is None:
            raise TypeError(f"Cannot decode into {response_type!r}: no from_dict()")

        try:
            return from_dict(payload)
        except (ValueError, TypeError, KeyError, AttributeError) as e:
            raise DecodingError(
                f"Response from {path} does not match {response_type.__name__}: {e}",
                context={'path': path},
                cause=e
            )
