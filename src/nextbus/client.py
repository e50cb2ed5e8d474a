"""
NextBus API client with connection pooling and per-command query builders.

This module handles all interactions with the NextBus public XML feed:
- HTTP session pooling for efficiency
- Validate -> fetch -> decode pipeline for every command
- Rate-limited error logging (failures are still raised to the caller)

The client never retries or caches; every get() is one blocking GET.
"""
import time
from typing import Iterable, Optional, Protocol

import requests
from requests.adapters import HTTPAdapter

from .decoder import decode
from .errors import NextBusError, TransportError
from .models import ClientConfig
from .request import Command, Request


_ERROR_LOG_INTERVAL = 300  # Only log same error source every 5 minutes


class Transport(Protocol):
    """Anything that can GET a URL and hand back a readable binary stream."""

    def fetch(self, url: str): ...

    def close(self) -> None: ...


class _ResponseStream:
    """
    File-like view of a streamed response body.

    iter_content() undoes gzip/deflate; read failures mid-body surface as
    TransportError rather than as a parse failure.
    """

    def __init__(self, response: requests.Response, url: str, chunk_size: int = 8192):
        self._response = response
        self._url = url
        self._chunks = response.iter_content(chunk_size=chunk_size)
        self._buffer = b""

    def read(self, size: int = -1) -> bytes:
        try:
            while size < 0 or len(self._buffer) < size:
                chunk = next(self._chunks, None)
                if chunk is None:
                    break
                self._buffer += chunk
        except requests.RequestException as e:
            raise TransportError(f"Reading response failed: {e}", url=self._url) from e

        if size < 0:
            data, self._buffer = self._buffer, b""
        else:
            data, self._buffer = self._buffer[:size], self._buffer[size:]
        return data

    def close(self) -> None:
        self._response.close()


class HttpTransport:
    """requests-backed transport. One GET per fetch(), no retries."""

    def __init__(self, config: Optional[ClientConfig] = None):
        self._config = config or ClientConfig()
        self._session = self._create_session()

    def _create_session(self) -> requests.Session:
        """Create HTTP session with connection pooling."""
        session = requests.Session()
        session.headers.update({
            'User-Agent': self._config.user_agent,
            'Accept-Encoding': 'gzip, deflate'
        })

        adapter = HTTPAdapter(
            pool_connections=self._config.pool_connections,
            pool_maxsize=self._config.pool_maxsize,
            max_retries=0
        )

        session.mount('https://', adapter)
        session.mount('http://', adapter)

        return session

    def fetch(self, url: str):
        """
        GET a URL and return the body as a readable stream.

        Raises:
            TransportError: connection failure, timeout, or non-2xx status
        """
        try:
            response = self._session.get(url, timeout=self._config.timeout, stream=True)
        except requests.RequestException as e:
            raise TransportError(f"Request failed: {e}", url=url) from e

        try:
            response.raise_for_status()
        except requests.HTTPError as e:
            response.close()
            raise TransportError(
                f"HTTP {response.status_code} from feed", url=url, status_code=response.status_code
            ) from e

        # Body is pulled lazily by the decoder
        return _ResponseStream(response, url)

    def close(self) -> None:
        self._session.close()


class NextBusClient:
    """
    NextBus feed client.

    Every operation either returns a fully decoded aggregate or raises a
    NextBusError subclass:
        BuildRequestError  parameters invalid, nothing was sent
        TransportError     GET failed
        DecodeError        response unusable (ServerError if the feed said so)

    Usage:
        with NextBusClient() as client:
            agencies = client.agency_list().get()
            preds = client.predictions().agency("sf-muni").route("N").stop("5205").get()
    """

    def __init__(self, config: Optional[ClientConfig] = None, transport: Optional[Transport] = None):
        self.config = config or ClientConfig()
        self._transport = transport if transport is not None else HttpTransport(self.config)
        self._last_error_log = {}  # {source_key: timestamp} for rate-limited logging

    def url_for(self, request: Request) -> str:
        """Validated URL for a request (raises BuildRequestError)."""
        return request.url(self.config.base_url)

    def execute(self, request: Request):
        """
        Validate, fetch, and decode one request.

        Returns:
            The aggregate for the request's command (AgencyList, RouteConfig, ...)
        """
        command = request.command_kind
        source = str(command) if command is not None else "request"

        try:
            url = self.url_for(request)
            stream = self._transport.fetch(url)
            try:
                return decode(command, stream)
            finally:
                stream.close()
        except NextBusError as e:
            self._log_error(f"{source}_{type(e).__name__}", f"{source} failed: {e}")
            raise

    def query(self, command: Command) -> 'Query':
        return Query(self, command)

    def agency_list(self) -> 'Query':
        return self.query(Command.AGENCY_LIST)

    def route_list(self) -> 'Query':
        return self.query(Command.ROUTE_LIST)

    def route_config(self) -> 'Query':
        return self.query(Command.ROUTE_CONFIG)

    def predictions(self) -> 'Query':
        return self.query(Command.PREDICTIONS)

    def predictions_for_multi_stops(self) -> 'Query':
        return self.query(Command.PREDICTIONS_FOR_MULTI_STOPS)

    def schedule(self) -> 'Query':
        return self.query(Command.SCHEDULE)

    def messages(self) -> 'Query':
        return self.query(Command.MESSAGES)

    def vehicle_locations(self) -> 'Query':
        return self.query(Command.VEHICLE_LOCATIONS)

    def _log_error(self, source: str, msg: str) -> None:
        """Rate-limited error logging (one message per source per 5 minutes)."""
        now = time.time()
        if now - self._last_error_log.get(source, 0) >= _ERROR_LOG_INTERVAL:
            print(f"[NEXTBUS] {msg}")
            self._last_error_log[source] = now

    def close(self) -> None:
        """Clean up resources. Call when shutting down."""
        if self._transport:
            self._transport.close()

    def __enter__(self) -> 'NextBusClient':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class Query:
    """
    Builder for one command bound to a client.

    Setters mirror Request (last call wins; route/routes replace,
    add_route/append_routes append). get() runs the request.
    """

    def __init__(self, client: NextBusClient, command: Command):
        self._client = client
        self._request = Request().command(command)

    def agency(self, agency: str) -> 'Query':
        self._request.agency(agency)
        return self

    def route(self, route: str) -> 'Query':
        self._request.route(route)
        return self

    def add_route(self, route: str) -> 'Query':
        self._request.add_route(route)
        return self

    def routes(self, routes: Iterable[str]) -> 'Query':
        self._request.routes(routes)
        return self

    def append_routes(self, routes: Iterable[str]) -> 'Query':
        self._request.append_routes(routes)
        return self

    def stop(self, stop: str) -> 'Query':
        self._request.stop(stop)
        return self

    def add_stop(self, stop: str) -> 'Query':
        self._request.add_stop(stop)
        return self

    def stops(self, stops: Iterable[str]) -> 'Query':
        self._request.stops(stops)
        return self

    def append_stops(self, stops: Iterable[str]) -> 'Query':
        self._request.append_stops(stops)
        return self

    def time(self, time: int) -> 'Query':
        self._request.time(time)
        return self

    @property
    def request(self) -> Request:
        return self._request

    def url(self) -> str:
        return self._client.url_for(self._request)

    def get(self):
        return self._client.execute(self._request)
