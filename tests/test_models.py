"""Tests for model helpers and client configuration."""

import json
from pathlib import Path

import pytest
from nextbus.models import (
    ClientConfig,
    Direction,
    Prediction,
    PredictionDirection,
    Predictions,
    RouteDetail,
    Stop,
    StopRef,
)
from nextbus.request import NEXTBUS_URL


def _route(stops, direction_refs) -> tuple[RouteDetail, Direction]:
    direction = Direction("out", "Outbound", "Outbound", True,
                          tuple(StopRef(tag) for tag in direction_refs))
    route = RouteDetail("N", "N-Judah", "003399", "ffffff", 37.7, 37.8, -122.5, -122.3,
                        stops=tuple(stops), directions=(direction,))
    return route, direction


class TestRouteDetail:
    """Tests for stop resolution on RouteDetail."""

    def test_stop_lookup(self) -> None:
        route, _ = _route([Stop("a", "A", 1.0, 2.0)], [])
        assert route.stop("a").title == "A"
        assert route.stop("missing") is None

    def test_stops_for_keeps_direction_order(self) -> None:
        stops = [Stop("a", "A", 1.0, 2.0), Stop("b", "B", 1.0, 2.0)]
        route, direction = _route(stops, ["b", "a"])
        assert [s.tag for s in route.stops_for(direction)] == ["b", "a"]

    def test_stops_for_skips_unknown_tags(self) -> None:
        route, direction = _route([Stop("a", "A", 1.0, 2.0)], ["a", "ghost"])
        assert [s.tag for s in route.stops_for(direction)] == ["a"]


class TestPredictions:
    """Tests for Predictions.upcoming()."""

    def test_merges_directions(self) -> None:
        def prediction(epoch: int) -> Prediction:
            return Prediction(0, 0, epoch, False, "b", "d")

        predictions = Predictions(
            "Agency", "r", "Route", "Stop",
            directions=(
                PredictionDirection("In", (prediction(30), prediction(10))),
                PredictionDirection("Out", (prediction(20),)),
            ),
        )
        assert [p.epoch_time for p in predictions.upcoming()] == [10, 20, 30]

    def test_empty(self) -> None:
        assert Predictions("Agency", "r", "Route", "Stop").upcoming() == ()


class TestClientConfig:
    """Tests for ClientConfig loading."""

    def test_defaults(self) -> None:
        config = ClientConfig()
        assert config.base_url == NEXTBUS_URL
        assert config.timeout == 10.0

    def test_load(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({
            "api": {"base_url": "http://localhost/feed", "timeout": 3},
            "http": {"pool_maxsize": 2},
        }))
        config = ClientConfig.load(str(path))
        assert config.base_url == "http://localhost/feed"
        assert config.timeout == 3.0
        assert config.pool_maxsize == 2
        assert config.pool_connections == 4
        assert config.user_agent == ClientConfig().user_agent

    def test_load_empty_object(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{}")
        assert ClientConfig.load(str(path)) == ClientConfig()

    def test_load_invalid_json(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("{not json")
        with pytest.raises(ValueError, match="not valid JSON"):
            ClientConfig.load(str(path))

    def test_load_non_object(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text("[1, 2]")
        with pytest.raises(ValueError, match="JSON object"):
            ClientConfig.load(str(path))

    def test_load_bad_value(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"api": {"timeout": "soon"}}))
        with pytest.raises(ValueError, match="Invalid value"):
            ClientConfig.load(str(path))

    def test_load_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(OSError):
            ClientConfig.load(str(tmp_path / "absent.json"))

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NEXTBUS_BASE_URL", "http://proxy/feed")
        monkeypatch.setenv("NEXTBUS_TIMEOUT", "2.5")
        monkeypatch.setenv("NEXTBUS_USER_AGENT", "kiosk/1")
        config = ClientConfig.from_env(ClientConfig(pool_maxsize=1))
        assert config.base_url == "http://proxy/feed"
        assert config.timeout == 2.5
        assert config.user_agent == "kiosk/1"
        assert config.pool_maxsize == 1

    def test_from_env_without_variables(self) -> None:
        base = ClientConfig(timeout=7.0)
        assert ClientConfig.from_env(base) == base

    def test_from_env_bad_timeout(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("NEXTBUS_TIMEOUT", "forever")
        with pytest.raises(ValueError, match="NEXTBUS_TIMEOUT"):
            ClientConfig.from_env()
