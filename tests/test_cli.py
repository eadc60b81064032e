"""Tests for the command line interface."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from typer.testing import CliRunner

from calbridge.cli.commands import app
from calbridge.modules.calendar.errors import AggregateFailure, TerminalBackendError
from calbridge.modules.calendar.models import (
    AvailableSlot,
    CommonAvailabilityResult,
    CommonFreeSlot,
    ParticipantAvailability,
    PreferredLocation,
    SourceId,
    SourceStatus,
    Suitability,
)

from conftest import make_event

runner = CliRunner()


@pytest.fixture
def coordinator():
    mock = MagicMock()
    mock.get_enabled_sources.return_value = [SourceId.CLOUD]
    with patch("calbridge.cli.commands._coordinator", return_value=mock):
        yield mock


class TestCli:
    """Tests for the calbridge commands."""

    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert "0.1.0" in result.output

    def test_logging_options_reach_setup(self) -> None:
        with patch("calbridge.cli.commands.setup_logging") as setup:
            result = runner.invoke(app, ["--log-level", "DEBUG", "--json-logs", "version"])
        assert result.exit_code == 0
        setup.assert_called_once_with(level="DEBUG", json_output=True)

    def test_health(self, coordinator) -> None:
        coordinator.health_check = AsyncMock(return_value=SourceStatus(os=False, cloud=True))
        result = runner.invoke(app, ["health"])
        assert result.exit_code == 0
        assert "OS calendar" in result.output
        assert "Cloud calendar" in result.output

    def test_sources(self, coordinator) -> None:
        coordinator.detect_available_sources = AsyncMock(return_value=SourceStatus(os=True, cloud=True))
        result = runner.invoke(app, ["sources"])
        assert result.exit_code == 0
        assert "cloud" in result.output

    def test_events(self, coordinator, at) -> None:
        coordinator.get_events = AsyncMock(return_value=[make_event("e1", at(10), at(11), title="Planning")])
        result = runner.invoke(app, ["events", "2026-01-15", "2026-01-16", "--calendar", "work"])
        assert result.exit_code == 0
        assert "Planning" in result.output
        assert "Total: 1 events" in result.output
        args = coordinator.get_events.await_args.args
        assert args[0] == at(0)
        assert args[2] == "work"

    def test_events_empty(self, coordinator) -> None:
        coordinator.get_events = AsyncMock(return_value=[])
        result = runner.invoke(app, ["events", "2026-01-15", "2026-01-16"])
        assert result.exit_code == 0
        assert "No events" in result.output

    def test_calendar_errors_exit_cleanly(self, coordinator) -> None:
        failure = AggregateFailure("list events", [(SourceId.CLOUD, TerminalBackendError(SourceId.CLOUD, "denied"))])
        coordinator.get_events = AsyncMock(side_effect=failure)
        result = runner.invoke(app, ["events", "2026-01-15", "2026-01-16"])
        assert result.exit_code == 1
        assert "Failed to list events" in result.output

    def test_slots(self, coordinator, at) -> None:
        coordinator.find_available_slots = AsyncMock(return_value=[
            AvailableSlot(
                start=at(9), end=at(10), duration_minutes=60,
                suitability=Suitability.EXCELLENT, reason="Morning slot",
            ),
        ])
        result = runner.invoke(
            app, ["slots", "2026-01-15", "2026-01-16", "--min", "30", "--location", "homeOffice"],
        )
        assert result.exit_code == 0
        assert "excellent" in result.output
        request = coordinator.find_available_slots.await_args.args[0]
        assert request.min_duration_minutes == 30
        assert request.preferred_working_location == PreferredLocation.HOME_OFFICE

    def test_common(self, coordinator, at) -> None:
        coordinator.find_common_availability = AsyncMock(return_value=CommonAvailabilityResult(
            common_slots=[CommonFreeSlot(start=at(13), end=at(14), duration_minutes=60)],
            participants=[
                ParticipantAvailability(identity="a@example.com"),
                ParticipantAvailability(identity="room@example.com", error="notFound"),
            ],
            window_start=at(9),
            window_end=at(17),
        ))
        result = runner.invoke(app, [
            "common", "a@example.com", "room@example.com",
            "--start", "2026-01-15T09:00", "--end", "2026-01-15T17:00",
        ])
        assert result.exit_code == 0
        assert "room@example.com excluded" in result.output
        assert "60" in result.output
        identities = coordinator.find_common_availability.await_args.args[0]
        assert identities == ["a@example.com", "room@example.com"]
