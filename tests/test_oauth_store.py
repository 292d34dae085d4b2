"""Tests for the encrypted service token log."""

import json
import stat
import threading
from pathlib import Path
from unittest.mock import patch

import pytest
from cryptography.fernet import Fernet

from services_auth.oauth.debug import debug_set_token
from services_auth.oauth.errors import CollaboratorPersistError
from services_auth.oauth.store import LOG_FILE, ServiceTokenLog, TokenDecryptionError
from services_auth.oauth.tokens import InvalidServiceTokenError, ServiceToken


def _token(access_token: str = "tok1", endpoint: str = "https://push.example") -> ServiceToken:
    return ServiceToken.from_services(access_token, "https://auth.example.com", {"psh": endpoint})


class TestServiceTokenLog:
    """Tests for ServiceTokenLog."""

    @pytest.fixture
    def temp_log(self, tmp_path: Path) -> ServiceTokenLog:
        """Create a token log in a temporary directory."""
        return ServiceTokenLog(store_dir=tmp_path / "store")

    def test_initialization(self, temp_log: ServiceTokenLog) -> None:
        """Test that the store directory is created."""
        assert temp_log.store_dir.exists()
        assert not temp_log.is_using_keyring()

    def test_empty_log(self, temp_log: ServiceTokenLog) -> None:
        """Test listing before anything was added."""
        assert temp_log.list_service_tokens() == []

    @pytest.mark.asyncio
    async def test_append_and_list(self, temp_log: ServiceTokenLog) -> None:
        """Test that appended tokens are listed in order."""
        first = await temp_log.append_service_token_added(_token("tok1"))
        second = await temp_log.append_service_token_added(_token("tok2"))

        assert first == f"0:{_token('tok1').token_id}"
        assert second.startswith("1:")
        assert [t.token for t in temp_log.list_service_tokens()] == ["tok1", "tok2"]

    @pytest.mark.asyncio
    async def test_re_added_token_listed_once(self, temp_log: ServiceTokenLog) -> None:
        """Test that a re-added token keeps its position with latest content."""
        await temp_log.append_service_token_added(_token("tok1", "https://old.example"))
        await temp_log.append_service_token_added(_token("tok2"))
        await temp_log.append_service_token_added(_token("tok1", "https://new.example"))

        tokens = temp_log.list_service_tokens()
        assert [t.token for t in tokens] == ["tok1", "tok2"]
        assert tokens[0].supported_services[0].service_endpoint == "https://new.example"

    @pytest.mark.asyncio
    async def test_file_is_encrypted(self, temp_log: ServiceTokenLog) -> None:
        """Test that the credential is not stored in clear."""
        await temp_log.append_service_token_added(_token("very-secret-token"))
        assert b"very-secret-token" not in (temp_log.store_dir / LOG_FILE).read_bytes()

    @pytest.mark.asyncio
    async def test_file_permissions(self, temp_log: ServiceTokenLog) -> None:
        """Test that the log is only readable by its owner."""
        await temp_log.append_service_token_added(_token())
        mode = stat.S_IMODE((temp_log.store_dir / LOG_FILE).stat().st_mode)
        assert mode == 0o600

    @pytest.mark.asyncio
    async def test_persists_across_instances(self, tmp_path: Path) -> None:
        """Test that a new instance reads the same log."""
        await ServiceTokenLog(store_dir=tmp_path).append_service_token_added(_token())
        assert len(ServiceTokenLog(store_dir=tmp_path).list_service_tokens()) == 1

    @pytest.mark.asyncio
    async def test_changed_key_raises(self, temp_log: ServiceTokenLog) -> None:
        """Test that a log written with another key cannot be read."""
        await temp_log.append_service_token_added(_token())
        temp_log._cipher = Fernet(Fernet.generate_key())

        with pytest.raises(TokenDecryptionError):
            temp_log.list_service_tokens()

        with pytest.raises(CollaboratorPersistError):
            await temp_log.append_service_token_added(_token("tok2"))

    def test_corrupted_log_raises(self, temp_log: ServiceTokenLog) -> None:
        """Test that undecodable plaintext is reported as corruption."""
        assert temp_log._cipher is not None
        (temp_log.store_dir / LOG_FILE).write_bytes(temp_log._cipher.encrypt(b"{not json"))

        with pytest.raises(TokenDecryptionError, match="corrupted"):
            temp_log.list_service_tokens()

    def test_invalid_entries_are_skipped(self, temp_log: ServiceTokenLog) -> None:
        """Test that entries violating the token invariant are skipped."""
        assert temp_log._cipher is not None
        events = {
            "events": [
                {"type": "service_token_added", "seq": 0, "token": {"token": "", "supported_services": []}},
                {"type": "service_token_added", "seq": 1, "token": _token().to_dict()},
            ]
        }
        (temp_log.store_dir / LOG_FILE).write_bytes(temp_log._cipher.encrypt(json.dumps(events).encode()))

        assert [t.token for t in temp_log.list_service_tokens()] == ["tok1"]

    @pytest.mark.asyncio
    async def test_machine_key_is_stable(self, temp_log: ServiceTokenLog) -> None:
        """Test that a second log on the same directory reads the first one's events."""
        await temp_log.append_service_token_added(_token())

        reopened = ServiceTokenLog(store_dir=temp_log.store_dir)
        assert not reopened.is_using_keyring()
        assert [t.token for t in reopened.list_service_tokens()] == ["tok1"]

    @pytest.mark.asyncio
    async def test_append_runs_off_event_loop(self, temp_log: ServiceTokenLog) -> None:
        """Test that file I/O for an added token happens in a worker thread."""
        threads: list[int] = []
        append_event = temp_log.append_event

        def recording_append(event_type: str, token: ServiceToken) -> str:
            threads.append(threading.get_ident())
            return append_event(event_type, token)

        with patch.object(temp_log, "append_event", side_effect=recording_append):
            entry_ref = await temp_log.append_service_token_added(_token())

        assert entry_ref.startswith("0:")
        assert threads and threads[0] != threading.get_ident()


class TestKeyring:
    """Tests for keyring key storage."""

    def test_uses_keyring_key(self, tmp_path: Path) -> None:
        """Test that the keyring key is used when available."""
        key = Fernet.generate_key().decode("ascii")
        with patch("services_auth.oauth.store.keyring.get_password", return_value=key):
            store = ServiceTokenLog(store_dir=tmp_path)
        assert store.is_using_keyring()

    def test_generates_key_when_missing(self, tmp_path: Path) -> None:
        """Test that a new key is stored in the keyring."""
        with patch("services_auth.oauth.store.keyring.get_password", return_value=None), patch(
            "services_auth.oauth.store.keyring.set_password"
        ) as set_password:
            store = ServiceTokenLog(store_dir=tmp_path)

        assert store.is_using_keyring()
        set_password.assert_called_once()


class TestDebugSetToken:
    """Tests for debug_set_token."""

    @pytest.mark.asyncio
    async def test_stores_token_without_flow(self, tmp_path: Path) -> None:
        """Test that the payload is stored as a non-expiring token."""
        store = ServiceTokenLog(store_dir=tmp_path)

        token_id = await debug_set_token(
            store, "https://auth.example.com", {"access_token": "tok1", "services": {"psh": "https://push"}}
        )

        [token] = store.list_service_tokens()
        assert token.token_id == token_id
        assert token.expiration == -1
        assert token.authentication_url == "https://auth.example.com"

    @pytest.mark.asyncio
    async def test_rejects_empty_payload(self, metadata_store) -> None:
        """Test that the token invariant still applies."""
        with pytest.raises(InvalidServiceTokenError):
            await debug_set_token(metadata_store, "https://auth", {"access_token": "tok1", "services": {}})
        assert metadata_store.tokens == []
