"""Tests for database query executor utilities."""

import time
from unittest.mock import patch

import pytest

from knowledge_engine.db.query_executor import timed_query


class TestTimedQuery:
    """Tests for the timed_query context manager."""

    def test_successful_query_logs_start_and_completion(self):
        """Successful query should log start and completion with timing."""
        with patch("knowledge_engine.db.query_executor.logfire") as mock_logfire:
            with timed_query("get_crawl_job", job_id="job-1"):
                time.sleep(0.01)

            assert mock_logfire.debug.call_count == 2

            start_call = mock_logfire.debug.call_args_list[0]
            assert "Starting get_crawl_job" in start_call[0][0]
            assert start_call[1]["operation"] == "get_crawl_job"
            assert start_call[1]["job_id"] == "job-1"

            completion_call = mock_logfire.debug.call_args_list[1]
            assert "get_crawl_job completed" in completion_call[0][0]
            assert completion_call[1]["response_time_ms"] > 0
            mock_logfire.error.assert_not_called()

    def test_failed_query_logs_error_and_reraises(self):
        """Failed query should log error with timing and re-raise exception."""
        with patch("knowledge_engine.db.query_executor.logfire") as mock_logfire:
            with pytest.raises(ValueError, match="test error"):
                with timed_query("insert_embeddings", chatbot_id="bot-1"):
                    raise ValueError("test error")

            assert mock_logfire.debug.call_count == 1
            assert mock_logfire.error.call_count == 1

            error_call = mock_logfire.error.call_args
            assert "insert_embeddings failed" in error_call[0][0]
            assert error_call[1]["error"] == "test error"
            assert error_call[1]["error_type"] == "ValueError"
            assert error_call[1]["chatbot_id"] == "bot-1"
            assert "response_time_ms" in error_call[1]

    def test_context_passes_through_log_context(self):
        """All log_context kwargs should be passed to all log calls."""
        with patch("knowledge_engine.db.query_executor.logfire") as mock_logfire:
            with timed_query("delete_embeddings", chatbot_id="bot-1", source_id="qna-1"):
                pass

            for call in mock_logfire.debug.call_args_list:
                assert call[1]["chatbot_id"] == "bot-1"
                assert call[1]["source_id"] == "qna-1"
