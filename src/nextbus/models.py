"""
Immutable data models for NextBus feed data.

All models use frozen dataclasses with __slots__ and tuples for nested
collections, so a decoded response can't be mutated after the fact and two
decodes of the same document compare equal.
"""
from dataclasses import dataclass
from typing import Iterator, Optional
import json
import os

from .request import NEXTBUS_URL


# ============================================================================
# AGENCY / ROUTE LISTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Agency:
    """
    A transit agency served by the feed.

    Attributes:
        tag: Agency identifier used in requests (e.g., "sf-muni")
        title: Display name (e.g., "San Francisco Muni")
        region_title: Region name (e.g., "California-Northern")
        short_title: Abbreviated display name, if the agency has one
    """
    tag: str
    title: str
    region_title: str
    short_title: Optional[str] = None


@dataclass(frozen=True, slots=True)
class AgencyList:
    agencies: tuple[Agency, ...] = ()

    def __iter__(self) -> Iterator[Agency]:
        return iter(self.agencies)

    def __len__(self) -> int:
        return len(self.agencies)

    def __getitem__(self, index: int) -> Agency:
        return self.agencies[index]


@dataclass(frozen=True, slots=True)
class Route:
    """A route stub from routeList: just enough to ask for its config."""
    tag: str
    title: str
    short_title: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RouteList:
    routes: tuple[Route, ...] = ()

    def __iter__(self) -> Iterator[Route]:
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)

    def __getitem__(self, index: int) -> Route:
        return self.routes[index]


# ============================================================================
# ROUTE CONFIG
# ============================================================================

@dataclass(frozen=True, slots=True)
class Stop:
    """
    A stop along a route.

    Attributes:
        tag: Stop identifier, unique within the route
        title: Display name (e.g., "Market St & 5th St")
        lat: Latitude in degrees
        lon: Longitude in degrees
        short_title: Abbreviated name, if any
        stop_id: Public stop number shown on signage, if any
    """
    tag: str
    title: str
    lat: float
    lon: float
    short_title: Optional[str] = None
    stop_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class StopRef:
    """Reference by tag to a Stop owned by the enclosing RouteDetail."""
    tag: str


@dataclass(frozen=True, slots=True)
class Direction:
    """
    An itinerary along a route.

    Attributes:
        tag: Direction identifier (matches Prediction.dir_tag)
        title: Display name (e.g., "Outbound to Ocean Beach")
        name: Short name (e.g., "Outbound")
        use_for_ui: Whether the feed suggests showing this direction to riders
        stops: Ordered stop references; resolve with RouteDetail.stops_for()
    """
    tag: str
    title: str
    name: str
    use_for_ui: bool
    stops: tuple[StopRef, ...] = ()


@dataclass(frozen=True, slots=True)
class Point:
    lat: float
    lon: float


@dataclass(frozen=True, slots=True)
class Path:
    """
    The coordinates tracing one segment of a route.

    tag comes from a nested <tag id="..."/> element, which current feeds
    often leave out.
    """
    tag: Optional[str] = None
    points: tuple[Point, ...] = ()


@dataclass(frozen=True, slots=True)
class RouteDetail:
    """
    Full configuration of a single route.

    Stops are owned here; directions only reference them by tag.
    """
    tag: str
    title: str
    color: str
    opposite_color: str
    lat_min: float
    lat_max: float
    lon_min: float
    lon_max: float
    stops: tuple[Stop, ...] = ()
    directions: tuple[Direction, ...] = ()
    paths: tuple[Path, ...] = ()

    def stop(self, tag: str) -> Optional[Stop]:
        """Look up a stop of this route by tag."""
        for stop in self.stops:
            if stop.tag == tag:
                return stop
        return None

    def stops_for(self, direction: Direction) -> tuple[Stop, ...]:
        """Resolve a direction's stop references, skipping unknown tags."""
        by_tag = {stop.tag: stop for stop in self.stops}
        return tuple(by_tag[ref.tag] for ref in direction.stops if ref.tag in by_tag)


@dataclass(frozen=True, slots=True)
class RouteConfig:
    routes: tuple[RouteDetail, ...] = ()

    def __iter__(self) -> Iterator[RouteDetail]:
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)

    def __getitem__(self, index: int) -> RouteDetail:
        return self.routes[index]


# ============================================================================
# PREDICTIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Prediction:
    """
    A single arrival/departure prediction.

    Attributes:
        seconds: Seconds until arrival
        minutes: Minutes until arrival (rounded down)
        epoch_time: Arrival time in epoch milliseconds
        is_departure: True if this predicts a departure rather than an arrival
        block: Vehicle block assignment
        dir_tag: Direction tag (see Direction.tag)
        trip_tag: Trip identifier, if reported
        branch: Branch name (Toronto TTC only)
        affected_by_layover: True if the vehicle is on layover (less reliable)
        is_schedule_based: True if based on schedule, not GPS (only sent when true)
        delayed: True if the vehicle is reported late (some agencies only)
    """
    seconds: int
    minutes: int
    epoch_time: int
    is_departure: bool
    block: str
    dir_tag: str
    trip_tag: Optional[str] = None
    branch: Optional[str] = None
    affected_by_layover: Optional[bool] = None
    is_schedule_based: Optional[bool] = None
    delayed: Optional[bool] = None


@dataclass(frozen=True, slots=True)
class PredictionDirection:
    title: str
    predictions: tuple[Prediction, ...] = ()


@dataclass(frozen=True, slots=True)
class Message:
    """Free-text notice attached to a predictions response."""
    text: str
    priority: Optional[str] = None


@dataclass(frozen=True, slots=True)
class Predictions:
    """
    Predictions for one (agency, route, stop).

    dir_title_because_no_predictions is set by the feed instead of any
    directions when nothing is predicted for the stop.
    """
    agency_title: str
    route_tag: str
    route_title: str
    stop_title: str
    route_code: Optional[str] = None
    dir_title_because_no_predictions: Optional[str] = None
    directions: tuple[PredictionDirection, ...] = ()
    messages: tuple[Message, ...] = ()

    def upcoming(self) -> tuple[Prediction, ...]:
        """All predictions across directions, soonest first."""
        every = [p for d in self.directions for p in d.predictions]
        every.sort(key=lambda p: p.epoch_time)
        return tuple(every)


@dataclass(frozen=True, slots=True)
class MultiStopPredictions:
    """One Predictions entry per <predictions> block, in document order."""
    predictions: tuple[Predictions, ...] = ()

    def __iter__(self) -> Iterator[Predictions]:
        return iter(self.predictions)

    def __len__(self) -> int:
        return len(self.predictions)

    def __getitem__(self, index: int) -> Predictions:
        return self.predictions[index]


# ============================================================================
# SCHEDULE
# ============================================================================

@dataclass(frozen=True, slots=True)
class ScheduleStop:
    """A timepoint column in the schedule header."""
    tag: str
    title: str


@dataclass(frozen=True, slots=True)
class ScheduledStop:
    """
    One cell of a schedule row.

    epoch_time is milliseconds since midnight; -1 means the block doesn't
    serve this stop (time_text is then "--").
    """
    tag: str
    epoch_time: int
    time_text: str

    @property
    def serves_stop(self) -> bool:
        return self.epoch_time >= 0


@dataclass(frozen=True, slots=True)
class ScheduleBlock:
    """One schedule row (<tr>), i.e. one vehicle block's trip."""
    block_id: str
    stops: tuple[ScheduledStop, ...] = ()


@dataclass(frozen=True, slots=True)
class ScheduleRoute:
    tag: str
    title: str
    schedule_class: str
    service_class: str
    direction: str
    header_stops: tuple[ScheduleStop, ...] = ()
    blocks: tuple[ScheduleBlock, ...] = ()


@dataclass(frozen=True, slots=True)
class Schedule:
    """One ScheduleRoute per (service class, direction) in the response."""
    routes: tuple[ScheduleRoute, ...] = ()

    def __iter__(self) -> Iterator[ScheduleRoute]:
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)


# ============================================================================
# MESSAGES
# ============================================================================

@dataclass(frozen=True, slots=True)
class ServiceMessage:
    """
    Agency service message.

    Boundaries are epoch milliseconds bounding when the message is active.
    """
    id: str
    text: str
    priority: Optional[str] = None
    send_to_buses: Optional[bool] = None
    start_boundary: Optional[int] = None
    end_boundary: Optional[int] = None


@dataclass(frozen=True, slots=True)
class RouteMessages:
    """Messages for one route tag ("all" for agency-wide messages)."""
    route_tag: str
    messages: tuple[ServiceMessage, ...] = ()


@dataclass(frozen=True, slots=True)
class MessageList:
    routes: tuple[RouteMessages, ...] = ()

    def __iter__(self) -> Iterator[RouteMessages]:
        return iter(self.routes)

    def __len__(self) -> int:
        return len(self.routes)


# ============================================================================
# VEHICLE LOCATIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Vehicle:
    """
    Last reported position of a vehicle.

    Attributes:
        id: Vehicle identifier
        route_tag: Route the vehicle is assigned to
        lat: Latitude in degrees
        lon: Longitude in degrees
        secs_since_report: Age of the position report
        predictable: Whether predictions are generated for this vehicle
        heading: Compass heading in degrees (-1 when unknown)
        dir_tag: Direction tag, absent when the vehicle isn't on a direction
        speed_km_hr: Speed, when reported
        leading_vehicle_id: Lead vehicle for multi-car trains
    """
    id: str
    route_tag: str
    lat: float
    lon: float
    secs_since_report: int
    predictable: bool
    heading: int
    dir_tag: Optional[str] = None
    speed_km_hr: Optional[float] = None
    leading_vehicle_id: Optional[str] = None


@dataclass(frozen=True, slots=True)
class VehicleLocations:
    """
    Vehicles reported since the requested time.

    last_time is the epoch millisecond value to pass as t= on the next poll.
    """
    vehicles: tuple[Vehicle, ...] = ()
    last_time: Optional[int] = None

    def __iter__(self) -> Iterator[Vehicle]:
        return iter(self.vehicles)

    def __len__(self) -> int:
        return len(self.vehicles)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class ClientConfig:
    """
    Client configuration.

    Attributes:
        base_url: Feed endpoint
        timeout: HTTP timeout in seconds
        user_agent: User-Agent header sent with every request
        pool_connections: Number of connection pools to cache
        pool_maxsize: Maximum connections kept per pool
    """
    base_url: str = NEXTBUS_URL
    timeout: float = 10.0
    user_agent: str = 'NextBus-Client/1.0'
    pool_connections: int = 4
    pool_maxsize: int = 8

    @classmethod
    def load(cls, path: str) -> 'ClientConfig':
        """
        Load configuration from a JSON file.

        Format (every key optional):
            {
                "api": {"base_url": "...", "timeout": 10, "user_agent": "..."},
                "http": {"pool_connections": 4, "pool_maxsize": 8}
            }
        """
        with open(path, 'r') as f:
            try:
                data = json.load(f)
            except json.JSONDecodeError as e:
                raise ValueError(f"Config file {path} is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise ValueError(f"Config file {path} must contain a JSON object")

        api = data.get('api', {})
        http = data.get('http', {})
        defaults = cls()

        try:
            return cls(
                base_url=str(api.get('base_url', defaults.base_url)),
                timeout=float(api.get('timeout', defaults.timeout)),
                user_agent=str(api.get('user_agent', defaults.user_agent)),
                pool_connections=int(http.get('pool_connections', defaults.pool_connections)),
                pool_maxsize=int(http.get('pool_maxsize', defaults.pool_maxsize)),
            )
        except (TypeError, ValueError, AttributeError) as e:
            raise ValueError(f"Invalid value in config file {path}: {e}") from e

    @classmethod
    def from_env(cls, base: Optional['ClientConfig'] = None) -> 'ClientConfig':
        """
        Overlay NEXTBUS_BASE_URL / NEXTBUS_TIMEOUT / NEXTBUS_USER_AGENT
        environment variables on top of a base config (defaults if None).
        """
        base = base or cls()
        timeout = os.environ.get('NEXTBUS_TIMEOUT')
        try:
            timeout_value = float(timeout) if timeout else base.timeout
        except ValueError as e:
            raise ValueError(f"NEXTBUS_TIMEOUT must be a number, got {timeout!r}") from e

        return cls(
            base_url=os.environ.get('NEXTBUS_BASE_URL') or base.base_url,
            timeout=timeout_value,
            user_agent=os.environ.get('NEXTBUS_USER_AGENT') or base.user_agent,
            pool_connections=base.pool_connections,
            pool_maxsize=base.pool_maxsize,
        )
