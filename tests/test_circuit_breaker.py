# ABOUTME: Tests for the stagnation circuit breaker
# ABOUTME: Covers no-progress and same-error streaks, edge-triggered opening, history and reset

"""Tests for the circuit breaker."""

import json

import pytest

from ralph_runner.circuit_breaker import (
    HISTORY_LIMIT,
    CircuitBreaker,
    CircuitBreakerState,
    CircuitState,
)
from ralph_runner.errors import ParseError


@pytest.fixture
def breaker(tmp_path):
    return CircuitBreaker(tmp_path / ".circuit_breaker.json")


class TestInitialState:

    def test_missing_file_is_closed(self, breaker):
        assert breaker.get_state() == CircuitState.CLOSED
        assert not breaker.should_halt_execution()

    def test_initialize_creates_file(self, breaker):
        breaker.initialize()
        data = json.loads(breaker.state_file.read_text())
        assert data["state"] == "CLOSED"
        assert data["no_progress_count"] == 0
        assert data["history"] == []

    def test_initialize_keeps_existing_state(self, breaker):
        breaker.save(CircuitBreakerState(state=CircuitState.OPEN, opened_reason="earlier"))
        breaker.initialize()
        assert breaker.get_state() == CircuitState.OPEN

    def test_malformed_file_is_parse_error(self, breaker):
        breaker.state_file.write_text('{"state": "SIDEWAYS"}')
        with pytest.raises(ParseError):
            breaker.load()


class TestNoProgress:

    def test_opens_after_three_zero_change_loops(self, breaker):
        for loop in range(1, 3):
            state = breaker.record_loop_result(loop, files_changed=0, has_errors=False, output_length=100)
            assert state.state == CircuitState.CLOSED

        state = breaker.record_loop_result(3, files_changed=0, has_errors=False, output_length=100)

        assert state.state == CircuitState.OPEN
        assert state.opened_reason == "No file changes in 3 consecutive loops"
        assert state.opened_at is not None
        assert breaker.should_halt_execution()

    def test_progress_resets_streak(self, breaker):
        breaker.record_loop_result(1, 0, False, 100)
        breaker.record_loop_result(2, 0, False, 100)
        state = breaker.record_loop_result(3, 2, False, 100)
        assert state.no_progress_count == 0

        breaker.record_loop_result(4, 0, False, 100)
        state = breaker.record_loop_result(5, 0, False, 100)
        assert state.state == CircuitState.CLOSED
        assert state.no_progress_count == 2

    def test_custom_threshold(self, tmp_path):
        breaker = CircuitBreaker(tmp_path / "cb.json", no_progress_threshold=1)
        state = breaker.record_loop_result(1, 0, False, 10)
        assert state.state == CircuitState.OPEN


class TestSameError:

    def test_opens_after_five_identical_errors(self, breaker):
        for loop in range(1, 5):
            state = breaker.record_loop_result(loop, 1, True, 100, "Error: boom")
            assert state.state == CircuitState.CLOSED

        state = breaker.record_loop_result(5, 1, True, 100, "Error: boom")
        assert state.same_error_count == 5
        assert state.state == CircuitState.OPEN
        assert state.opened_reason == "Same error repeated 5 times"

    def test_different_error_restarts_count(self, breaker):
        breaker.record_loop_result(1, 1, True, 100, "Error: one")
        breaker.record_loop_result(2, 1, True, 100, "Error: one")
        state = breaker.record_loop_result(3, 1, True, 100, "Error: two")
        assert state.same_error_count == 1
        assert state.last_error == "Error: two"

    def test_clean_loop_clears_error(self, breaker):
        breaker.record_loop_result(1, 1, True, 100, "Error: one")
        state = breaker.record_loop_result(2, 1, False, 100)
        assert state.same_error_count == 0
        assert state.last_error == ""


class TestOpenEdge:

    def test_opened_at_only_set_on_transition(self, breaker):
        for loop in range(1, 4):
            breaker.record_loop_result(loop, 0, False, 100)
        first = breaker.load()

        state = breaker.record_loop_result(4, 0, False, 100)

        assert state.state == CircuitState.OPEN
        assert state.opened_at == first.opened_at
        assert state.opened_reason == "No file changes in 3 consecutive loops"

    def test_transition_logged_once(self, breaker, caplog):
        with caplog.at_level("ERROR", logger="ralph.circuit_breaker"):
            for loop in range(1, 6):
                breaker.record_loop_result(loop, 0, False, 100)
        assert caplog.text.count("Circuit breaker OPENED") == 1

    def test_half_open_never_entered(self, breaker):
        seen = set()
        for loop in range(1, 8):
            seen.add(breaker.record_loop_result(loop, loop % 2, loop % 3 == 0, 100, "Error: x").state)
        assert CircuitState.HALF_OPEN not in seen


class TestHistoryAndDecline:

    def test_history_capped(self, breaker):
        for loop in range(1, HISTORY_LIMIT + 6):
            breaker.record_loop_result(loop, 1, False, 100)
        history = breaker.load().history
        assert len(history) == HISTORY_LIMIT
        assert history[0]["loop"] == 6
        assert history[-1]["loop"] == HISTORY_LIMIT + 5

    def test_output_decline_warns_without_opening(self, breaker, caplog):
        breaker.record_loop_result(1, 1, False, 1000)
        with caplog.at_level("WARNING", logger="ralph.circuit_breaker"):
            state = breaker.record_loop_result(2, 1, False, 200)
        assert "Output declined by 80%" in caplog.text
        assert state.state == CircuitState.CLOSED

    def test_small_decline_not_reported(self, breaker, caplog):
        breaker.record_loop_result(1, 1, False, 1000)
        with caplog.at_level("WARNING", logger="ralph.circuit_breaker"):
            breaker.record_loop_result(2, 1, False, 400)
        assert "Output declined" not in caplog.text


class TestReset:

    def test_reset_closes_and_records_event(self, breaker):
        for loop in range(1, 4):
            breaker.record_loop_result(loop, 0, False, 100)

        state = breaker.reset("Manual reset via command line")

        assert state.state == CircuitState.CLOSED
        assert state.no_progress_count == 0
        assert state.opened_at is None
        assert state.opened_reason is None
        assert state.history[-1]["event"] == "reset"
        assert not breaker.should_halt_execution()

    def test_status_lines(self, breaker):
        assert breaker.status_lines() == ["Circuit breaker not initialized"]

        for loop in range(1, 4):
            breaker.record_loop_result(loop, 0, True, 100, "Error: stuck")
        lines = breaker.status_lines()

        assert lines[0].endswith("OPEN")
        assert lines[1].endswith("3/3")
        assert any("Error: stuck" in line for line in lines)
        assert any("No file changes in 3 consecutive loops" in line for line in lines)
