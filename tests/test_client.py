"""Tests for the client pipeline and the HTTP transport."""

import io

import pytest
import requests
from nextbus import ClientConfig, NextBusClient
from nextbus.client import HttpTransport, _ResponseStream
from nextbus.errors import BuildRequestError, DecodeError, ServerError, TransportError
from nextbus.mock_client import DOCUMENTS, MockTransport
from nextbus.request import NEXTBUS_URL, Command, Request


class _TrackingStream(io.BytesIO):
    """BytesIO that remembers whether close() was called."""

    closed_by_client = False

    def close(self) -> None:
        self.closed_by_client = True
        super().close()


class _FixedTransport:
    """Transport returning one fixed body, or raising a fixed error."""

    def __init__(self, body: str = "", error: Exception = None):
        self.body = body
        self.error = error
        self.streams = []
        self.closed = False

    def fetch(self, url: str):
        if self.error is not None:
            raise self.error
        stream = _TrackingStream(self.body.encode("utf-8"))
        self.streams.append(stream)
        return stream

    def close(self) -> None:
        self.closed = True


class _BrokenRaw:
    """Raw body that fails partway through, like a dropped connection."""

    def __init__(self):
        self._reads = 0

    def read(self, size: int = -1) -> bytes:
        self._reads += 1
        if self._reads == 1:
            return b"<body>"
        raise requests.exceptions.ConnectionError("connection reset")

    def close(self) -> None:
        pass


def _response(status: int, raw) -> requests.Response:
    response = requests.Response()
    response.status_code = status
    response.raw = raw
    response.url = NEXTBUS_URL
    response.reason = "OK" if status < 400 else "Server Error"
    return response


class _FakeSession:
    """Stands in for requests.Session inside HttpTransport."""

    def __init__(self, response: requests.Response = None, error: Exception = None):
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def get(self, url: str, **kwargs):
        self.calls.append((url, kwargs))
        if self.error is not None:
            raise self.error
        return self.response

    def close(self) -> None:
        self.closed = True


class TestNextBusClient:
    """Tests for validate -> fetch -> decode."""

    def test_agency_list(self, client: NextBusClient, mock_transport: MockTransport) -> None:
        """Should fetch the validated URL and decode the response."""
        agencies = client.agency_list().get()
        assert [a.tag for a in agencies] == ["jhu-apl", "mit", "sf-muni"]
        assert mock_transport.requested_urls == [f"{NEXTBUS_URL}?command=agencyList"]

    def test_route_config(self, client: NextBusClient) -> None:
        config = client.route_config().agency("mit").route("saferidecampshut").get()
        assert config[0].tag == "saferidecampshut"

    def test_predictions(self, client: NextBusClient, mock_transport: MockTransport) -> None:
        result = (client.predictions()
                  .agency("mit").route("saferidecampshut").stop("mass84_d").get())
        assert len(result.directions[0].predictions) == 2
        assert mock_transport.requested_urls[0].endswith(
            "?command=predictions&a=mit&r=saferidecampshut&s=mass84_d"
        )

    def test_every_command_shortcut(self, client: NextBusClient) -> None:
        """Should decode each command's response into its aggregate."""
        assert len(client.route_list().agency("mit").get()) == 3
        assert len(client.predictions_for_multi_stops()
                   .agency("mit").add_stop("saferidecampshut|mass84_d").get()) == 2
        assert len(client.schedule().agency("mit").route("saferidecampshut").get()) == 1
        assert len(client.messages().agency("mit").route("saferidecampshut").get()) == 1
        vehicles = client.vehicle_locations().agency("mit").route("saferidecampshut").time(0).get()
        assert vehicles.last_time == 1478620382364

    def test_invalid_request_never_fetches(self, client: NextBusClient,
                                           mock_transport: MockTransport) -> None:
        """Should reject the request before touching the transport."""
        with pytest.raises(BuildRequestError):
            client.predictions().agency("mit").route("saferidecampshut").get()
        assert mock_transport.requested_urls == []

    def test_transport_error_propagates(self, capsys: pytest.CaptureFixture) -> None:
        error = TransportError("Request failed: boom", url=NEXTBUS_URL)
        client = NextBusClient(transport=_FixedTransport(error=error))
        with pytest.raises(TransportError) as excinfo:
            client.agency_list().get()
        assert excinfo.value is error
        assert "[NEXTBUS] agencyList failed" in capsys.readouterr().out

    def test_error_logging_is_rate_limited(self, capsys: pytest.CaptureFixture) -> None:
        """Should log a repeated failure from the same source only once."""
        client = NextBusClient(transport=_FixedTransport(error=TransportError("down")))
        for _ in range(3):
            with pytest.raises(TransportError):
                client.agency_list().get()
        assert capsys.readouterr().out.count("[NEXTBUS]") == 1

    def test_stream_closed_after_decode(self) -> None:
        transport = _FixedTransport(DOCUMENTS[Command.AGENCY_LIST])
        NextBusClient(transport=transport).agency_list().get()
        assert transport.streams[0].closed_by_client

    def test_stream_closed_after_decode_error(self) -> None:
        transport = _FixedTransport("<body><agency tag='a'/></body>")
        with pytest.raises(DecodeError):
            NextBusClient(transport=transport).agency_list().get()
        assert transport.streams[0].closed_by_client

    def test_server_error_scenario(self) -> None:
        client = NextBusClient(transport=MockTransport("server_error"))
        with pytest.raises(ServerError) as excinfo:
            client.route_list().agency("bogus").get()
        assert 'a=bogus' in str(excinfo.value)
        assert excinfo.value.should_retry is False

    def test_malformed_scenario(self) -> None:
        client = NextBusClient(transport=MockTransport("malformed"))
        with pytest.raises(DecodeError):
            client.route_config().agency("mit").get()

    def test_custom_base_url(self, mock_transport: MockTransport) -> None:
        client = NextBusClient(ClientConfig(base_url="http://localhost:9000/feed"),
                               transport=mock_transport)
        client.agency_list().get()
        assert mock_transport.requested_urls == ["http://localhost:9000/feed?command=agencyList"]

    def test_execute_request(self, client: NextBusClient) -> None:
        request = Request().command(Command.ROUTE_LIST).agency("mit")
        assert len(client.execute(request)) == 3

    def test_execute_without_command(self, client: NextBusClient) -> None:
        with pytest.raises(BuildRequestError):
            client.execute(Request().agency("mit"))

    def test_context_manager_closes_transport(self) -> None:
        transport = _FixedTransport()
        with NextBusClient(transport=transport):
            pass
        assert transport.closed


class TestQuery:
    """Tests for the per-command query builder."""

    def test_url(self, client: NextBusClient) -> None:
        query = client.messages().agency("mit").route("one").add_route("two")
        assert query.url() == f"{NEXTBUS_URL}?command=messages&a=mit&r=one&r=two"

    def test_replace_and_append(self, client: NextBusClient) -> None:
        query = (client.predictions_for_multi_stops().agency("mit")
                 .stops(["a|1"]).append_stops(["b|2"]).add_stop("c|3"))
        assert query.request.freeze().stops == ("a|1", "b|2", "c|3")
        query.stop("d|4")
        assert query.request.freeze().stops == ("d|4",)

    def test_routes_setters(self, client: NextBusClient) -> None:
        query = client.messages().routes(["a"]).append_routes(["b"])
        assert query.request.freeze().routes == ("a", "b")


class TestHttpTransport:
    """Tests for the requests-backed transport."""

    def test_session_setup(self) -> None:
        transport = HttpTransport(ClientConfig(user_agent="test-agent/2.0"))
        session = transport._session
        assert session.headers["User-Agent"] == "test-agent/2.0"
        assert "gzip" in session.headers["Accept-Encoding"]
        assert session.get_adapter("http://webservices.nextbus.com").max_retries.total == 0
        transport.close()

    def test_fetch_streams_body(self) -> None:
        transport = HttpTransport(ClientConfig(timeout=3.5))
        body = DOCUMENTS[Command.AGENCY_LIST].encode("utf-8")
        transport._session = _FakeSession(_response(200, io.BytesIO(body)))

        stream = transport.fetch(NEXTBUS_URL)
        assert stream.read() == body
        url, kwargs = transport._session.calls[0]
        assert url == NEXTBUS_URL
        assert kwargs == {"timeout": 3.5, "stream": True}

    def test_connection_error(self) -> None:
        transport = HttpTransport()
        cause = requests.exceptions.ConnectionError("refused")
        transport._session = _FakeSession(error=cause)
        with pytest.raises(TransportError) as excinfo:
            transport.fetch(NEXTBUS_URL)
        assert excinfo.value.__cause__ is cause
        assert excinfo.value.url == NEXTBUS_URL

    def test_timeout(self) -> None:
        transport = HttpTransport()
        transport._session = _FakeSession(error=requests.exceptions.Timeout("slow"))
        with pytest.raises(TransportError):
            transport.fetch(NEXTBUS_URL)

    def test_http_status_error(self) -> None:
        transport = HttpTransport()
        transport._session = _FakeSession(_response(503, io.BytesIO(b"")))
        with pytest.raises(TransportError) as excinfo:
            transport.fetch(NEXTBUS_URL)
        assert excinfo.value.status_code == 503

    def test_read_failure_is_transport_error(self) -> None:
        """Should report a dropped body as a transport failure, not a decode one."""
        stream = _ResponseStream(_response(200, _BrokenRaw()), NEXTBUS_URL, chunk_size=6)
        with pytest.raises(TransportError):
            stream.read()

    def test_read_in_chunks(self) -> None:
        stream = _ResponseStream(_response(200, io.BytesIO(b"abcdefgh")), NEXTBUS_URL, chunk_size=3)
        assert stream.read(4) == b"abcd"
        assert stream.read(2) == b"ef"
        assert stream.read() == b"gh"
        assert stream.read(5) == b""

    def test_client_decodes_http_body(self) -> None:
        transport = HttpTransport()
        body = DOCUMENTS[Command.VEHICLE_LOCATIONS].encode("utf-8")
        transport._session = _FakeSession(_response(200, io.BytesIO(body)))
        with NextBusClient(transport=transport) as client:
            vehicles = client.vehicle_locations().agency("mit").route("saferidecampshut").time(0).get()
        assert [v.id for v in vehicles] == ["4", "7"]
        assert transport._session.closed

    def test_dropped_body_through_client(self) -> None:
        """Should report a connection lost mid-body as TransportError from get()."""
        transport = HttpTransport()
        transport._session = _FakeSession(_response(200, _BrokenRaw()))
        client = NextBusClient(transport=transport)
        with pytest.raises(TransportError, match="connection reset"):
            client.agency_list().get()
