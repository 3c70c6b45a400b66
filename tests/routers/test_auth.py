# tests/routers/test_auth.py
import os
from unittest.mock import patch

import pytest
from fastapi import HTTPException, status

from automation_server.auth import extract_credential, get_api_key, verify_api_key


class TestGetApiKey:
    @patch.dict(os.environ, {"API_KEY": "secret"})
    def test_reads_environment(self):
        assert get_api_key() == "secret"

    @patch.dict(os.environ, {"API_KEY": ""})
    def test_empty_value_means_unset(self):
        assert get_api_key() is None


class TestExtractCredential:
    """Header precedence and bearer parsing."""

    def test_header_wins_over_bearer(self):
        assert extract_credential("from-header", "Bearer from-bearer") == "from-header"

    def test_bearer_is_case_insensitive(self):
        assert extract_credential(None, "bearer abc") == "abc"

    def test_other_schemes_are_ignored(self):
        assert extract_credential(None, "Basic dXNlcjpwYXNz") is None

    def test_empty_bearer(self):
        assert extract_credential(None, "Bearer   ") is None


@patch("automation_server.auth.get_api_key", return_value="secret")
class TestVerifyApiKey:
    def test_matching_header(self, _):
        assert verify_api_key("secret", None) == "secret"

    def test_matching_bearer(self, _):
        assert verify_api_key(None, "Bearer secret") == "secret"

    def test_wrong_key_is_forbidden(self, _):
        with pytest.raises(HTTPException) as exc_info:
            verify_api_key("nope", None)
        assert exc_info.value.status_code == status.HTTP_403_FORBIDDEN

    def test_missing_credential_is_unauthorized(self, _):
        """401 carries a challenge so clients know to send a bearer token."""
        with pytest.raises(HTTPException) as exc_info:
            verify_api_key(None, None)
        assert exc_info.value.status_code == status.HTTP_401_UNAUTHORIZED
        assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


@patch("automation_server.auth.get_api_key", return_value=None)
def test_development_mode_allows_everything(_):
    assert verify_api_key(None, None) == ""
