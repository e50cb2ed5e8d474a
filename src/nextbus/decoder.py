"""
Streaming decoder for NextBus feed XML.

Responses are read in a single forward pass over start/end events from
lxml's iterparse. There is no lookahead, which shapes how nesting is handled:

- Flat repeating elements (agency, route stubs, stops directly under a
  route, messages, vehicles) are turned into records as soon as their start
  tag is seen.
- Elements that open a scope (route config, direction, path, predictions,
  schedule rows) hand the shared cursor to a dedicated function that keeps
  consuming events until its own end tag, then returns control to the
  caller. The call stack is the parse stack.

Attributes are converted when collected: a malformed number or boolean
aborts the whole decode right away. Missing required attributes abort when
the record is finalized. Unknown attributes and elements are ignored.
"""
import io
import math
import re
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Optional, Union

from lxml import etree

from .errors import DecodeError, ServerError
from .models import (
    Agency, AgencyList, Route, RouteList,
    Stop, StopRef, Direction, Point, Path, RouteDetail, RouteConfig,
    Prediction, PredictionDirection, Message, Predictions, MultiStopPredictions,
    ScheduleStop, ScheduledStop, ScheduleBlock, ScheduleRoute, Schedule,
    ServiceMessage, RouteMessages, MessageList,
    Vehicle, VehicleLocations,
)
from .request import Command


Source = Union[bytes, str, BinaryIO]

_UNSIGNED_RE = re.compile(r'[0-9]+')
_SIGNED_RE = re.compile(r'-?[0-9]+')
_FLOAT_RE = re.compile(r'-?[0-9]+(\.[0-9]+)?([eE][-+]?[0-9]+)?')


# ============================================================================
# EVENT CURSOR
# ============================================================================

class _EventCursor:
    """
    Iterator of (event, local_name, element) over one response.

    Nested scopes iterate the same cursor, so whatever a scope consumes is
    gone for its caller. Syntax errors surface as DecodeError, and an
    <Error> element from the feed surfaces as ServerError.

    An element is cleared, and its preceding siblings dropped, when the
    event after its end tag is requested. Callers must take what they need
    from an element before moving on.
    """

    def __init__(self, source: Source):
        self._events = etree.iterparse(
            _as_stream(source),
            events=("start", "end"),
            no_network=True,
            resolve_entities=False,
        )
        self._finished = None

    def __iter__(self) -> '_EventCursor':
        return self

    def __next__(self) -> tuple[str, str, Any]:
        self._release()
        event, elem = self._next_raw()
        if event == "end":
            self._finished = elem
        name = etree.QName(elem).localname
        if event == "start" and name == "Error":
            self._raise_server_error(elem)
        return event, name, elem

    def _release(self) -> None:
        elem, self._finished = self._finished, None
        if elem is None:
            return
        elem.clear()
        parent = elem.getparent()
        if parent is not None:
            while elem.getprevious() is not None:
                del parent[0]

    def _next_raw(self):
        try:
            return next(self._events)
        except etree.XMLSyntaxError as e:
            raise DecodeError(f"Malformed XML: {e}") from e

    def _raise_server_error(self, elem) -> None:
        should_retry = elem.get("shouldRetry") == "true"
        # Text is only complete once the end tag has been read
        while True:
            event, done = self._next_raw()
            if event == "end" and etree.QName(done).localname == "Error":
                break
        text = " ".join((elem.text or "").split())
        raise ServerError(text or "Feed returned an error", should_retry=should_retry)


def _as_stream(source: Source):
    if isinstance(source, str):
        source = source.encode("utf-8")
    if isinstance(source, (bytes, bytearray)):
        return io.BytesIO(source)
    return source


def _element_text(elem) -> str:
    return " ".join((elem.text or "").split())


# ============================================================================
# ATTRIBUTE SCHEMAS
# ============================================================================

def _unsigned(value: str) -> int:
    if not _UNSIGNED_RE.fullmatch(value):
        raise ValueError("expected an unsigned integer")
    return int(value)


def _signed(value: str) -> int:
    if not _SIGNED_RE.fullmatch(value):
        raise ValueError("expected an integer")
    return int(value)


def _float(value: str) -> float:
    if not _FLOAT_RE.fullmatch(value):
        raise ValueError("expected a decimal number")
    result = float(value)
    if not math.isfinite(result):
        raise ValueError("number out of range")
    return result


def _boolean(value: str) -> bool:
    if value == "true":
        return True
    if value == "false":
        return False
    raise ValueError("expected 'true' or 'false'")


@dataclass(frozen=True, slots=True)
class _Attr:
    wire: str
    field: str
    convert: Callable[[str], Any] = str
    required: bool = True


class _Schema:
    """
    Attribute layout of one element kind.

    collect() converts every known attribute immediately (fail fast);
    build() checks required fields and constructs the record.
    """

    def __init__(self, element: str, *attrs: _Attr):
        self.element = element
        self._by_wire = {attr.wire: attr for attr in attrs}

    def collect(self, elem) -> dict[str, Any]:
        scratch = {}
        for key, value in elem.attrib.items():
            attr = self._by_wire.get(etree.QName(key).localname)
            if attr is None:
                continue
            try:
                scratch[attr.field] = attr.convert(value)
            except ValueError as e:
                raise DecodeError(
                    f"<{self.element}> attribute {attr.wire}={value!r}: {e}"
                ) from e
        return scratch

    def build(self, cls, scratch: dict[str, Any], **children):
        missing = [
            attr.wire for attr in self._by_wire.values()
            if attr.required and attr.field not in scratch
        ]
        if missing:
            raise DecodeError(
                f"<{self.element}> missing required attribute(s): {', '.join(missing)}"
            )
        return cls(**scratch, **children)

    def read(self, cls, elem):
        """collect + build for elements with no children of interest."""
        return self.build(cls, self.collect(elem))


_AGENCY = _Schema(
    "agency",
    _Attr("tag", "tag"),
    _Attr("title", "title"),
    _Attr("shortTitle", "short_title", required=False),
    _Attr("regionTitle", "region_title"),
)

_ROUTE_STUB = _Schema(
    "route",
    _Attr("tag", "tag"),
    _Attr("title", "title"),
    _Attr("shortTitle", "short_title", required=False),
)

_ROUTE_DETAIL = _Schema(
    "route",
    _Attr("tag", "tag"),
    _Attr("title", "title"),
    _Attr("color", "color"),
    _Attr("oppositeColor", "opposite_color"),
    _Attr("latMin", "lat_min", _float),
    _Attr("latMax", "lat_max", _float),
    _Attr("lonMin", "lon_min", _float),
    _Attr("lonMax", "lon_max", _float),
)

_STOP = _Schema(
    "stop",
    _Attr("tag", "tag"),
    _Attr("title", "title"),
    _Attr("lat", "lat", _float),
    _Attr("lon", "lon", _float),
    _Attr("shortTitle", "short_title", required=False),
    _Attr("stopId", "stop_id", required=False),
)

_STOP_REF = _Schema("stop", _Attr("tag", "tag"))

_DIRECTION = _Schema(
    "direction",
    _Attr("tag", "tag"),
    _Attr("title", "title"),
    _Attr("name", "name"),
    _Attr("useForUI", "use_for_ui", _boolean),
)

_PATH = _Schema("path", _Attr("tag", "tag", required=False))
_PATH_TAG = _Schema("tag", _Attr("id", "tag", required=False))

_POINT = _Schema(
    "point",
    _Attr("lat", "lat", _float),
    _Attr("lon", "lon", _float),
)

_PREDICTIONS = _Schema(
    "predictions",
    _Attr("agencyTitle", "agency_title"),
    _Attr("routeTag", "route_tag"),
    _Attr("routeCode", "route_code", required=False),
    _Attr("routeTitle", "route_title"),
    _Attr("stopTitle", "stop_title"),
    _Attr("dirTitleBecauseNoPredictions", "dir_title_because_no_predictions", required=False),
)

_PREDICTION_DIRECTION = _Schema("direction", _Attr("title", "title"))

_PREDICTION = _Schema(
    "prediction",
    _Attr("seconds", "seconds", _unsigned),
    _Attr("minutes", "minutes", _unsigned),
    _Attr("epochTime", "epoch_time", _unsigned),
    _Attr("isDeparture", "is_departure", _boolean),
    _Attr("block", "block"),
    _Attr("dirTag", "dir_tag"),
    _Attr("tripTag", "trip_tag", required=False),
    _Attr("branch", "branch", required=False),
    _Attr("affectedByLayover", "affected_by_layover", _boolean, required=False),
    _Attr("isScheduleBased", "is_schedule_based", _boolean, required=False),
    _Attr("delayed", "delayed", _boolean, required=False),
)

_MESSAGE = _Schema(
    "message",
    _Attr("text", "text"),
    _Attr("priority", "priority", required=False),
)

_SCHEDULE_ROUTE = _Schema(
    "route",
    _Attr("tag", "tag"),
    _Attr("title", "title"),
    _Attr("scheduleClass", "schedule_class"),
    _Attr("serviceClass", "service_class"),
    _Attr("direction", "direction"),
)

_SCHEDULE_STOP = _Schema("stop", _Attr("tag", "tag"))

_SCHEDULED_STOP = _Schema(
    "stop",
    _Attr("tag", "tag"),
    _Attr("epochTime", "epoch_time", _signed),
)

_SCHEDULE_BLOCK = _Schema("tr", _Attr("blockID", "block_id"))

_ROUTE_MESSAGES = _Schema("route", _Attr("tag", "route_tag"))

_SERVICE_MESSAGE = _Schema(
    "message",
    _Attr("id", "id"),
    _Attr("priority", "priority", required=False),
    _Attr("sendToBuses", "send_to_buses", _boolean, required=False),
    _Attr("startBoundary", "start_boundary", _unsigned, required=False),
    _Attr("endBoundary", "end_boundary", _unsigned, required=False),
)

_VEHICLE = _Schema(
    "vehicle",
    _Attr("id", "id"),
    _Attr("routeTag", "route_tag"),
    _Attr("dirTag", "dir_tag", required=False),
    _Attr("lat", "lat", _float),
    _Attr("lon", "lon", _float),
    _Attr("secsSinceReport", "secs_since_report", _unsigned),
    _Attr("predictable", "predictable", _boolean),
    _Attr("heading", "heading", _signed),
    _Attr("speedKmHr", "speed_km_hr", _float, required=False),
    _Attr("leadingVehicleId", "leading_vehicle_id", required=False),
)

_LAST_TIME = _Schema("lastTime", _Attr("time", "time", _unsigned))


# ============================================================================
# AGENCY LIST / ROUTE LIST (flat)
# ============================================================================

def decode_agency_list(source: Source) -> AgencyList:
    agencies = []
    for event, name, elem in _EventCursor(source):
        if event == "start" and name == "agency":
            agencies.append(_AGENCY.read(Agency, elem))
    return AgencyList(tuple(agencies))


def decode_route_list(source: Source) -> RouteList:
    routes = []
    for event, name, elem in _EventCursor(source):
        if event == "start" and name == "route":
            routes.append(_ROUTE_STUB.read(Route, elem))
    return RouteList(tuple(routes))


# ============================================================================
# ROUTE CONFIG (route -> stop | direction -> stop | path -> tag, point)
# ============================================================================

def decode_route_config(source: Source) -> RouteConfig:
    cursor = _EventCursor(source)
    routes = []
    for event, name, elem in cursor:
        if event == "start" and name == "route":
            routes.append(_parse_route(cursor, elem))
    return RouteConfig(tuple(routes))


def _parse_route(cursor: _EventCursor, elem) -> RouteDetail:
    scratch = _ROUTE_DETAIL.collect(elem)
    stops, directions, paths = [], [], []

    # Stops, directions and paths interleave freely. Route-level stops have
    # no wrapper element, so they're taken as seen; direction and path
    # consume everything up to their own end tag.
    for event, name, child in cursor:
        if event == "end":
            if name == "route":
                break
            continue
        if name == "stop":
            stops.append(_STOP.read(Stop, child))
        elif name == "direction":
            directions.append(_parse_direction(cursor, child))
        elif name == "path":
            paths.append(_parse_path(cursor, child))

    return _ROUTE_DETAIL.build(
        RouteDetail, scratch,
        stops=tuple(stops),
        directions=tuple(directions),
        paths=tuple(paths),
    )


def _parse_direction(cursor: _EventCursor, elem) -> Direction:
    scratch = _DIRECTION.collect(elem)
    stops = []
    for event, name, child in cursor:
        if event == "start" and name == "stop":
            stops.append(_STOP_REF.read(StopRef, child))
        elif event == "end" and name == "direction":
            break
    return _DIRECTION.build(Direction, scratch, stops=tuple(stops))


def _parse_path(cursor: _EventCursor, elem) -> Path:
    scratch = _PATH.collect(elem)
    points = []
    for event, name, child in cursor:
        if event == "start":
            if name == "tag":
                scratch.update(_PATH_TAG.collect(child))
            elif name == "point":
                points.append(_POINT.read(Point, child))
        elif name == "path":
            break
    return _PATH.build(Path, scratch, points=tuple(points))


# ============================================================================
# PREDICTIONS (predictions -> direction -> prediction, message)
# ============================================================================

def decode_predictions(source: Source) -> Predictions:
    """
    Decode a single-stop predictions response.

    The whole document is one scope: <predictions> contributes attributes,
    and <direction>/<message> are collected wherever they appear.
    """
    return _parse_predictions(_EventCursor(source), {}, until=None)


def decode_multi_stop_predictions(source: Source) -> MultiStopPredictions:
    cursor = _EventCursor(source)
    blocks = []
    for event, name, elem in cursor:
        if event == "start" and name == "predictions":
            blocks.append(_parse_predictions(cursor, _PREDICTIONS.collect(elem), until="predictions"))
    return MultiStopPredictions(tuple(blocks))


def _parse_predictions(cursor: _EventCursor, scratch: dict[str, Any],
                       until: Optional[str]) -> Predictions:
    directions, messages = [], []
    for event, name, elem in cursor:
        if event == "end":
            if name == until:
                break
            continue
        if name == "predictions":
            scratch.update(_PREDICTIONS.collect(elem))
        elif name == "direction":
            directions.append(_parse_prediction_direction(cursor, elem))
        elif name == "message":
            messages.append(_MESSAGE.read(Message, elem))

    return _PREDICTIONS.build(
        Predictions, scratch,
        directions=tuple(directions),
        messages=tuple(messages),
    )


def _parse_prediction_direction(cursor: _EventCursor, elem) -> PredictionDirection:
    scratch = _PREDICTION_DIRECTION.collect(elem)
    predictions = []
    for event, name, child in cursor:
        if event == "start" and name == "prediction":
            predictions.append(_PREDICTION.read(Prediction, child))
        elif event == "end" and name == "direction":
            break
    return _PREDICTION_DIRECTION.build(PredictionDirection, scratch, predictions=tuple(predictions))


# ============================================================================
# SCHEDULE (route -> header -> stop, tr -> stop)
# ============================================================================

def decode_schedule(source: Source) -> Schedule:
    cursor = _EventCursor(source)
    routes = []
    for event, name, elem in cursor:
        if event == "start" and name == "route":
            routes.append(_parse_schedule_route(cursor, elem))
    return Schedule(tuple(routes))


def _parse_schedule_route(cursor: _EventCursor, elem) -> ScheduleRoute:
    scratch = _SCHEDULE_ROUTE.collect(elem)
    header: tuple[ScheduleStop, ...] = ()
    blocks = []
    for event, name, child in cursor:
        if event == "start":
            if name == "header":
                header = _parse_schedule_header(cursor)
            elif name == "tr":
                blocks.append(_parse_schedule_block(cursor, child))
        elif name == "route":
            break
    return _SCHEDULE_ROUTE.build(ScheduleRoute, scratch, header_stops=header, blocks=tuple(blocks))


def _parse_schedule_header(cursor: _EventCursor) -> tuple[ScheduleStop, ...]:
    # Stop titles are element text, only complete at the end tag
    stops = []
    for event, name, child in cursor:
        if event != "end":
            continue
        if name == "stop":
            stops.append(_SCHEDULE_STOP.build(
                ScheduleStop, _SCHEDULE_STOP.collect(child), title=_element_text(child)
            ))
        elif name == "header":
            break
    return tuple(stops)


def _parse_schedule_block(cursor: _EventCursor, elem) -> ScheduleBlock:
    scratch = _SCHEDULE_BLOCK.collect(elem)
    stops = []
    for event, name, child in cursor:
        if event != "end":
            continue
        if name == "stop":
            stops.append(_SCHEDULED_STOP.build(
                ScheduledStop, _SCHEDULED_STOP.collect(child), time_text=_element_text(child)
            ))
        elif name == "tr":
            break
    return _SCHEDULE_BLOCK.build(ScheduleBlock, scratch, stops=tuple(stops))


# ============================================================================
# MESSAGES (route -> message -> text)
# ============================================================================

def decode_messages(source: Source) -> MessageList:
    cursor = _EventCursor(source)
    routes = []
    for event, name, elem in cursor:
        if event == "start" and name == "route":
            routes.append(_parse_route_messages(cursor, elem))
    return MessageList(tuple(routes))


def _parse_route_messages(cursor: _EventCursor, elem) -> RouteMessages:
    scratch = _ROUTE_MESSAGES.collect(elem)
    messages = []
    for event, name, child in cursor:
        if event == "start" and name == "message":
            messages.append(_parse_service_message(cursor, child))
        elif event == "end" and name == "route":
            break
    return _ROUTE_MESSAGES.build(RouteMessages, scratch, messages=tuple(messages))


def _parse_service_message(cursor: _EventCursor, elem) -> ServiceMessage:
    scratch = _SERVICE_MESSAGE.collect(elem)
    text = None
    for event, name, child in cursor:
        if event != "end":
            continue
        if name == "text":
            text = _element_text(child)
        elif name == "message":
            break
    if text is None:
        raise DecodeError("<message> missing required <text> element")
    return _SERVICE_MESSAGE.build(ServiceMessage, scratch, text=text)


# ============================================================================
# VEHICLE LOCATIONS (flat)
# ============================================================================

def decode_vehicle_locations(source: Source) -> VehicleLocations:
    vehicles = []
    last_time = None
    for event, name, elem in _EventCursor(source):
        if event != "start":
            continue
        if name == "vehicle":
            vehicles.append(_VEHICLE.read(Vehicle, elem))
        elif name == "lastTime":
            last_time = _LAST_TIME.read(dict, elem)["time"]
    return VehicleLocations(tuple(vehicles), last_time=last_time)


# ============================================================================
# DISPATCH
# ============================================================================

DECODERS: dict[Command, Callable[[Source], Any]] = {
    Command.AGENCY_LIST: decode_agency_list,
    Command.ROUTE_LIST: decode_route_list,
    Command.ROUTE_CONFIG: decode_route_config,
    Command.PREDICTIONS: decode_predictions,
    Command.PREDICTIONS_FOR_MULTI_STOPS: decode_multi_stop_predictions,
    Command.SCHEDULE: decode_schedule,
    Command.MESSAGES: decode_messages,
    Command.VEHICLE_LOCATIONS: decode_vehicle_locations,
}


def decode(command: Command, source: Source):
    """
    Decode a response for the given command into its aggregate.

    Args:
        command: Command that produced the response
        source: Binary stream, bytes, or str holding the XML document

    Raises:
        DecodeError: malformed XML, missing/invalid required attribute
        ServerError: the feed returned an <Error> element
    """
    return DECODERS[command](source)
