"""NextBus public XML feed: request validation and response decoding."""
from .errors import NextBusError, BuildRequestError, TransportError, DecodeError, ServerError
from .request import Command, Request, ParameterSet, validate, build_url, NEXTBUS_URL
from .models import (
    Agency, AgencyList, Route, RouteList,
    Stop, StopRef, Direction, Point, Path, RouteDetail, RouteConfig,
    Prediction, PredictionDirection, Message, Predictions, MultiStopPredictions,
    ScheduleStop, ScheduledStop, ScheduleBlock, ScheduleRoute, Schedule,
    ServiceMessage, RouteMessages, MessageList,
    Vehicle, VehicleLocations,
    ClientConfig,
)
from .decoder import decode
from .client import NextBusClient, HttpTransport, Query

__all__ = [
    'NextBusError', 'BuildRequestError', 'TransportError', 'DecodeError', 'ServerError',
    'Command', 'Request', 'ParameterSet', 'validate', 'build_url', 'NEXTBUS_URL',
    'Agency', 'AgencyList', 'Route', 'RouteList',
    'Stop', 'StopRef', 'Direction', 'Point', 'Path', 'RouteDetail', 'RouteConfig',
    'Prediction', 'PredictionDirection', 'Message', 'Predictions', 'MultiStopPredictions',
    'ScheduleStop', 'ScheduledStop', 'ScheduleBlock', 'ScheduleRoute', 'Schedule',
    'ServiceMessage', 'RouteMessages', 'MessageList',
    'Vehicle', 'VehicleLocations',
    'ClientConfig',
    'decode',
    'NextBusClient', 'HttpTransport', 'Query',
]
