"""
Request building and validation for the NextBus public XML feed.

A Request accumulates parameters (builder style, last call wins). Before
anything goes over the wire it is frozen into a ParameterSet and checked
against the per-command rule table below. Invalid shapes raise
BuildRequestError and never reach the network.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import urlencode

from .errors import BuildRequestError


NEXTBUS_URL = "http://webservices.nextbus.com/service/publicXMLFeed"


class Command(Enum):
    """Feed commands. The value is the wire name sent as ?command=..."""
    AGENCY_LIST = "agencyList"
    ROUTE_LIST = "routeList"
    ROUTE_CONFIG = "routeConfig"
    PREDICTIONS = "predictions"
    PREDICTIONS_FOR_MULTI_STOPS = "predictionsForMultiStops"
    SCHEDULE = "schedule"
    MESSAGES = "messages"
    VEHICLE_LOCATIONS = "vehicleLocations"

    def __str__(self) -> str:
        return self.value


class Presence(Enum):
    FORBIDDEN = "forbidden"
    OPTIONAL = "optional"
    REQUIRED = "required"


@dataclass(frozen=True, slots=True)
class ListRule:
    """
    Rule for a list parameter (routes or stops).

    An absent list and an empty list are different things: any present list
    violates FORBIDDEN, and a present list must fit [min_count, max_count].
    """
    presence: Presence
    min_count: int = 0
    max_count: Optional[int] = None

    def check(self, values: Optional[tuple[str, ...]]) -> bool:
        if values is None:
            return self.presence is not Presence.REQUIRED
        if self.presence is Presence.FORBIDDEN:
            return False
        if len(values) < self.min_count:
            return False
        if self.max_count is not None and len(values) > self.max_count:
            return False
        return True


@dataclass(frozen=True, slots=True)
class CommandRule:
    agency: Presence
    routes: ListRule
    stops: ListRule
    time: Presence


def _check_scalar(presence: Presence, value) -> bool:
    if value is None:
        return presence is not Presence.REQUIRED
    return presence is not Presence.FORBIDDEN


_NONE = ListRule(Presence.FORBIDDEN)
_EXACTLY_ONE = ListRule(Presence.REQUIRED, min_count=1, max_count=1)
_AT_MOST_ONE = ListRule(Presence.OPTIONAL, max_count=1)
_AT_LEAST_ONE = ListRule(Presence.REQUIRED, min_count=1)

_FORBID = Presence.FORBIDDEN
_REQUIRE = Presence.REQUIRED

# agency / routes / stops / time per command
COMMAND_RULES: dict[Command, CommandRule] = {
    Command.AGENCY_LIST: CommandRule(_FORBID, _NONE, _NONE, _FORBID),
    Command.ROUTE_LIST: CommandRule(_REQUIRE, _NONE, _NONE, _FORBID),
    Command.ROUTE_CONFIG: CommandRule(_REQUIRE, _AT_MOST_ONE, _NONE, _FORBID),
    Command.PREDICTIONS: CommandRule(_REQUIRE, _EXACTLY_ONE, _EXACTLY_ONE, _FORBID),
    Command.PREDICTIONS_FOR_MULTI_STOPS: CommandRule(_REQUIRE, _NONE, _AT_LEAST_ONE, _FORBID),
    Command.SCHEDULE: CommandRule(_REQUIRE, _EXACTLY_ONE, _NONE, _FORBID),
    Command.MESSAGES: CommandRule(_REQUIRE, _AT_LEAST_ONE, _NONE, _FORBID),
    Command.VEHICLE_LOCATIONS: CommandRule(_REQUIRE, _EXACTLY_ONE, _NONE, _REQUIRE),
}


@dataclass(frozen=True, slots=True)
class ParameterSet:
    """
    Frozen snapshot of a Request, the only thing the validator looks at.

    Attributes:
        command: Feed command, or None if never set
        agency: Agency tag (e.g., "sf-muni")
        routes: Route tags in call order, None if never set
        stops: Stop tags in call order, None if never set
        time: Epoch milliseconds (vehicleLocations only)
    """
    command: Optional[Command] = None
    agency: Optional[str] = None
    routes: Optional[tuple[str, ...]] = None
    stops: Optional[tuple[str, ...]] = None
    time: Optional[int] = None


def validate(params: ParameterSet) -> tuple[tuple[str, str], ...]:
    """
    Check a ParameterSet against its command's rules.

    Returns:
        Ordered query pairs: command, a, r..., s/stops..., t.

    Raises:
        BuildRequestError: command unset, required parameter missing,
            forbidden parameter present, or list arity out of bounds.
    """
    if params.command is None:
        raise BuildRequestError("No command set")

    rule = COMMAND_RULES[params.command]
    if not (_check_scalar(rule.agency, params.agency)
            and rule.routes.check(params.routes)
            and rule.stops.check(params.stops)
            and _check_scalar(rule.time, params.time)):
        raise BuildRequestError(f"Invalid parameters for command '{params.command}'")

    if params.time is not None:
        if isinstance(params.time, bool) or not isinstance(params.time, int) or params.time < 0:
            raise BuildRequestError(f"Time must be a non-negative integer, got {params.time!r}")

    queries = [("command", params.command.value)]
    if params.agency is not None:
        queries.append(("a", params.agency))
    for route in params.routes or ():
        queries.append(("r", route))

    # predictions takes a single route|stop pair as "s"; everything else uses "stops"
    stop_key = "s" if params.command is Command.PREDICTIONS else "stops"
    for stop in params.stops or ():
        queries.append((stop_key, stop))

    if params.time is not None:
        queries.append(("t", str(params.time)))

    return tuple(queries)


def build_url(params: ParameterSet, base_url: str = NEXTBUS_URL) -> str:
    """Validate and render the full request URL."""
    return f"{base_url}?{urlencode(validate(params))}"


class Request:
    """
    Builder for a NextBus request.

    Last invocation of each setter is the one that sticks. Methods come in
    replace/append pairs for the list parameters:
        route(r) / routes([...])         replace the route list
        add_route(r) / append_routes()   append to it (creating it if needed)
    and likewise for stops.
    """

    def __init__(self):
        self._command: Optional[Command] = None
        self._agency: Optional[str] = None
        self._routes: Optional[list[str]] = None
        self._stops: Optional[list[str]] = None
        self._time: Optional[int] = None

    def command(self, command: Command) -> 'Request':
        self._command = command
        return self

    def agency(self, agency: str) -> 'Request':
        self._agency = agency
        return self

    def route(self, route: str) -> 'Request':
        self._routes = [route]
        return self

    def add_route(self, route: str) -> 'Request':
        if self._routes is None:
            self._routes = []
        self._routes.append(route)
        return self

    def routes(self, routes: Iterable[str]) -> 'Request':
        self._routes = list(routes)
        return self

    def append_routes(self, routes: Iterable[str]) -> 'Request':
        if self._routes is None:
            self._routes = []
        self._routes.extend(routes)
        return self

    def stop(self, stop: str) -> 'Request':
        self._stops = [stop]
        return self

    def add_stop(self, stop: str) -> 'Request':
        if self._stops is None:
            self._stops = []
        self._stops.append(stop)
        return self

    def stops(self, stops: Iterable[str]) -> 'Request':
        self._stops = list(stops)
        return self

    def append_stops(self, stops: Iterable[str]) -> 'Request':
        if self._stops is None:
            self._stops = []
        self._stops.extend(stops)
        return self

    def time(self, time: int) -> 'Request':
        self._time = time
        return self

    @property
    def command_kind(self) -> Optional[Command]:
        return self._command

    def freeze(self) -> ParameterSet:
        """Snapshot the current parameters. Later builder calls don't affect it."""
        return ParameterSet(
            command=self._command,
            agency=self._agency,
            routes=tuple(self._routes) if self._routes is not None else None,
            stops=tuple(self._stops) if self._stops is not None else None,
            time=self._time,
        )

    def query(self) -> tuple[tuple[str, str], ...]:
        """Validated query pairs for the current parameters."""
        return validate(self.freeze())

    def url(self, base_url: str = NEXTBUS_URL) -> str:
        """Validated request URL for the current parameters."""
        return build_url(self.freeze(), base_url)
