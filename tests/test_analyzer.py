# ABOUTME: Tests for the response analyzer
# ABOUTME: Status block parsing, completion phrases, two-stage error filtering and persistence

"""Tests for response analysis."""

import json

import pytest

from ralph_runner.analyzer import (
    AnalysisVerdict,
    ResponseAnalyzer,
    analyze_output,
    count_completion_signals,
    extract_status_block,
    find_error_lines,
    should_exit_gracefully,
)

STATUS_OUTPUT = """Working on story 1.2
Wrote the parser.
---RALPH_STATUS---
STATUS: IN_PROGRESS
TASKS_COMPLETED_THIS_LOOP: 1
FILES_MODIFIED: 4
TESTS_STATUS: PASSING
WORK_TYPE: IMPLEMENTATION
EXIT_SIGNAL: false
RECOMMENDATION: Continue with story 1.3
---END_RALPH_STATUS---
"""


class TestStatusBlock:

    def test_fields_are_extracted(self):
        result = analyze_output(STATUS_OUTPUT)

        assert result.has_status_block
        assert result.status == "IN_PROGRESS"
        assert result.tasks_completed == 1
        assert result.files_modified == 4
        assert result.tests_status == "PASSING"
        assert result.work_type == "IMPLEMENTATION"
        assert result.exit_signal is False
        assert result.recommendation == "Continue with story 1.3"
        assert result.verdict == AnalysisVerdict.NORMAL

    def test_exit_signal_true(self):
        result = analyze_output(STATUS_OUTPUT.replace("EXIT_SIGNAL: false", "EXIT_SIGNAL: TRUE"))
        assert result.exit_signal is True
        assert result.verdict == AnalysisVerdict.EXIT_SIGNAL
        assert should_exit_gracefully(result) == "exit_signal"

    def test_missing_block_defaults(self):
        result = analyze_output("Just some chatter\n")
        assert not result.has_status_block
        assert result.files_modified == 0
        assert result.tests_status == "NOT_RUN"
        assert result.work_type == "UNKNOWN"
        assert result.output_length == len("Just some chatter\n")

    def test_unterminated_block_runs_to_end(self):
        block = extract_status_block("---RALPH_STATUS---\nFILES_MODIFIED: 2\n")
        assert block == ["---RALPH_STATUS---", "FILES_MODIFIED: 2"]
        assert analyze_output("---RALPH_STATUS---\nFILES_MODIFIED: 2\n").files_modified == 2

    def test_last_block_wins_over_echoed_template(self):
        output = (
            "---RALPH_STATUS---\nFILES_MODIFIED: <number>\nEXIT_SIGNAL: false\n---END_RALPH_STATUS---\n"
            "Did the work.\n"
            "---RALPH_STATUS---\nFILES_MODIFIED: 4\nEXIT_SIGNAL: true\n---END_RALPH_STATUS---\n"
        )
        block = extract_status_block(output)
        assert "FILES_MODIFIED: 4" in block
        result = analyze_output(output)
        assert result.files_modified == 4
        assert result.exit_signal is True

    def test_non_numeric_counts_are_zero(self):
        result = analyze_output("---RALPH_STATUS---\nFILES_MODIFIED: several\n---END_RALPH_STATUS---")
        assert result.files_modified == 0

    def test_indented_fields_are_ignored(self):
        result = analyze_output("---RALPH_STATUS---\n  FILES_MODIFIED: 9\n---END_RALPH_STATUS---")
        assert result.files_modified == 0

    def test_test_only_loop(self):
        output = "---RALPH_STATUS---\nWORK_TYPE: TESTING\nFILES_MODIFIED: 0\n---END_RALPH_STATUS---"
        assert analyze_output(output).is_test_only


class TestCompletionSignals:

    def test_each_pattern_counts_once(self):
        output = "All tasks done.\nThe project is complete.\nAll tasks done again."
        # "all.*complete" does not match within one line here
        assert count_completion_signals(output) == 2

    def test_two_signals_trigger_graceful_exit(self):
        result = analyze_output("Implementation complete.\nFeature complete.")
        assert result.completion_signals == 2
        assert should_exit_gracefully(result) == "completion_signals"

    def test_single_signal_keeps_going(self):
        result = analyze_output("Feature complete for story 1.")
        assert result.completion_signals == 1
        assert should_exit_gracefully(result) is None

    def test_case_insensitive(self):
        assert count_completion_signals("NOTHING LEFT TO IMPLEMENT") == 1


class TestErrorDetection:

    def test_json_error_fields_are_not_errors(self):
        output = '{"is_error": false,\n "error_count": 0}\n'
        assert find_error_lines(output) == []
        assert not analyze_output(output).has_errors

    def test_real_error_markers(self):
        output = "\n".join([
            "Error: cannot find module 'x'",
            "[build]: error TS2304",
            "Traceback: ValueError exception raised",
            "all good here",
        ])
        result = analyze_output(output)

        assert result.has_errors
        assert result.error_count == 3
        assert result.error_message == "Error: cannot find module 'x'"
        assert result.verdict == AnalysisVerdict.HAS_ERRORS

    def test_error_must_start_line(self):
        assert find_error_lines("the word Error: appears mid-line") == []

    def test_error_message_truncated(self):
        result = analyze_output("Error: " + "x" * 500)
        assert len(result.error_message) == 200

    def test_exit_signal_beats_errors(self):
        output = "FATAL crash\n---RALPH_STATUS---\nEXIT_SIGNAL: true\n---END_RALPH_STATUS---"
        result = analyze_output(output)
        assert result.has_errors
        assert result.verdict == AnalysisVerdict.EXIT_SIGNAL


class TestResponseAnalyzer:

    def test_persists_last_analysis(self, tmp_path):
        analysis_file = tmp_path / ".last_analysis.json"
        analyzer = ResponseAnalyzer(analysis_file)

        result = analyzer.analyze(STATUS_OUTPUT)

        data = json.loads(analysis_file.read_text())
        assert data["files_modified"] == 4
        assert data["verdict"] == "normal"
        assert "timestamp" in data
        assert analyzer.load_last() == result

    def test_load_last_without_file(self, tmp_path):
        assert ResponseAnalyzer(tmp_path / "missing.json").load_last() is None

    @pytest.mark.parametrize("output", ["", "\n\n"])
    def test_empty_output(self, tmp_path, output):
        result = ResponseAnalyzer(tmp_path / "a.json").analyze(output)
        assert result.verdict == AnalysisVerdict.NORMAL
        assert result.files_modified == 0
