"""Tests for database client."""

from unittest.mock import MagicMock, patch

from knowledge_engine.config import Settings
from knowledge_engine.db.client import get_supabase_client


class TestGetSupabaseClient:
    """Test get_supabase_client() function."""

    @patch("knowledge_engine.db.client.create_client")
    @patch("knowledge_engine.db.client.get_settings")
    def test_get_supabase_client_uses_settings(self, mock_get_settings, mock_create_client):
        """Test that get_supabase_client() uses settings from get_settings()."""
        mock_settings = MagicMock(spec=Settings)
        mock_settings.supabase_url = "https://custom.supabase.co"
        mock_settings.supabase_service_key = "custom-key"
        mock_get_settings.return_value = mock_settings

        client = get_supabase_client()

        mock_create_client.assert_called_once_with("https://custom.supabase.co", "custom-key")
        assert client is mock_create_client.return_value

    @patch("knowledge_engine.db.client.create_client")
    @patch("knowledge_engine.db.client.get_settings")
    def test_explicit_settings_take_precedence(
        self, mock_get_settings, mock_create_client, test_settings
    ):
        get_supabase_client(test_settings)

        mock_get_settings.assert_not_called()
        mock_create_client.assert_called_once_with(
            test_settings.supabase_url, test_settings.supabase_service_key
        )

    @patch("knowledge_engine.db.client.create_client")
    def test_logs_project_host(self, mock_create_client, test_settings, logfire_capture):
        get_supabase_client(test_settings)

        [entry] = [
            kwargs
            for level, args, kwargs in logfire_capture
            if level == "info" and args and args[0] == "Supabase client created"
        ]
        assert entry["host"] == "test.supabase.co"
