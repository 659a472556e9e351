"""Tests for request checks and session handling."""

from unittest.mock import call, patch


class TestCheckRemoteAddr:
    """Tests for check_remote_addr() function."""

    def test_filter_not_set(self):
        """Should admit everyone if no IP filter is configured."""
        from session_logout_listener import check_remote_addr

        with patch("session_logout_listener.log") as mock_log:
            assert check_remote_addr("123.45.67.89", None) is True
            assert check_remote_addr(None, None) is True
        mock_log.assert_not_called()

    def test_filter_localhost(self):
        from session_logout_listener import check_remote_addr

        with patch("session_logout_listener.log") as mock_log:
            assert check_remote_addr("127.0.0.1", "127.0.0.1") is True
        mock_log.assert_not_called()

    def test_filter_localhost_for_remote_client(self):
        """Should reject and warn about clients outside the filter."""
        from session_logout_listener import check_remote_addr, journal

        with patch("session_logout_listener.log") as mock_log:
            assert check_remote_addr("123.45.67.89", "127.0.0.1") is False
        mock_log.assert_called_once_with(
            "Remote address '123.45.67.89' does not match IP filter.",
            journal.LOG_WARNING,
        )

    def test_filter_localhost_for_unknown_client(self):
        """Should reject requests without a remote address."""
        from session_logout_listener import check_remote_addr, journal

        with patch("session_logout_listener.log") as mock_log:
            assert check_remote_addr(None, "127.0.0.1") is False
        mock_log.assert_called_once_with(
            "No remote address found in request.", journal.LOG_WARNING
        )

    def test_empty_filter_denies(self):
        from session_logout_listener import check_remote_addr

        with patch("session_logout_listener.log"):
            assert check_remote_addr("127.0.0.1", "") is False

    def test_range_filter(self):
        from session_logout_listener import check_remote_addr

        spec = "127.0.0.0/8, ::1, fc00::/7"
        with patch("session_logout_listener.log"):
            assert check_remote_addr("127.8.9.10", spec) is True
            assert check_remote_addr("0:0:0:0:0:0:0:1", spec) is True
            assert check_remote_addr("fd12::34", spec) is True
            assert check_remote_addr("192.168.1.1", spec) is False

    def test_unparseable_client(self):
        """A client host that is not an address only passes a wildcard."""
        from session_logout_listener import check_remote_addr

        with patch("session_logout_listener.log"):
            assert check_remote_addr("testclient", "0.0.0.0/0,::/0") is False
            assert check_remote_addr("testclient", "*") is True


class TestCheckPassword:
    """Tests for check_password() function."""

    def test_password_not_set(self):
        from session_logout_listener import check_password

        with patch("session_logout_listener.log") as mock_log:
            assert check_password(None, None) is True
            assert check_password("anything", None) is True
        mock_log.assert_not_called()

    def test_correct_password(self):
        from session_logout_listener import check_password

        with patch("session_logout_listener.log") as mock_log:
            assert check_password("s3cret", "s3cret") is True
        mock_log.assert_not_called()

    def test_missing_password(self):
        from session_logout_listener import check_password, journal

        with patch("session_logout_listener.log") as mock_log:
            assert check_password(None, "s3cret") is False
        mock_log.assert_called_once_with("No password found in request.", journal.LOG_WARNING)

    def test_incorrect_password(self):
        from session_logout_listener import check_password, journal

        with patch("session_logout_listener.log") as mock_log:
            assert check_password("guess", "s3cret") is False
            assert check_password("S3CRET", "s3cret") is False
        assert mock_log.call_args_list == [
            call("Incorrect password.", journal.LOG_WARNING),
            call("Incorrect password.", journal.LOG_WARNING),
        ]

    def test_non_ascii_password(self):
        from session_logout_listener import check_password

        with patch("session_logout_listener.log"):
            assert check_password("pässwörd", "pässwörd") is True
            assert check_password("passwort", "pässwörd") is False


class TestParseUsernames:
    """Tests for parse_usernames() function."""

    def test_no_usernames(self):
        from session_logout_listener import parse_usernames

        assert parse_usernames(None) == []
        assert parse_usernames([]) == []

    def test_distinct_in_order(self):
        from session_logout_listener import parse_usernames

        assert parse_usernames(["bob", "alice", "bob", "carol", "alice"]) == [
            "bob",
            "alice",
            "carol",
        ]


class TestSessionStore:
    """Tests for SessionStore."""

    def test_add_and_get(self):
        from session_logout_listener import SessionStore

        store = SessionStore()
        session = store.add("0123456789abcdef", "alice")

        assert store.get("0123456789abcdef") is session
        assert session.valid is True
        assert len(store) == 1
        assert store.get("missing") is None

    def test_expire(self):
        from session_logout_listener import SessionStore

        store = SessionStore()
        session = store.add("0123456789abcdef", "alice")
        store.expire("0123456789abcdef")
        store.expire("unknown")

        assert session.valid is False
        assert len(store) == 0

    def test_logout_users(self):
        """Only valid, authenticated sessions of the given users are expired."""
        from session_logout_listener import SessionStore

        store = SessionStore()
        store.add("aaaaaaaa-1", "alice")
        store.add("aaaaaaaa-2", "alice")
        store.add("bbbbbbbb-1", "bob")
        store.add("anonymous-1")
        carol = store.add("cccccccc-1", "carol")

        with patch("session_logout_listener.log"):
            expired = store.logout_users(["alice", "carol", "dave"])

        assert sorted(expired) == ["aaaaaaaa-1", "aaaaaaaa-2", "cccccccc-1"]
        assert carol.valid is False
        assert [s.id for s in store.find_sessions()] == ["bbbbbbbb-1", "anonymous-1"]

    def test_logout_skips_invalid_sessions(self):
        from session_logout_listener import SessionStore

        store = SessionStore()
        session = store.add("aaaaaaaa-1", "alice")
        session.valid = False

        with patch("session_logout_listener.log"):
            assert store.logout_users(["alice"]) == []

    def test_logout_logs_truncated_session_id(self):
        """Session IDs should never be logged in full."""
        from session_logout_listener import SessionStore, journal

        store = SessionStore()
        store.add("0123456789abcdef", "alice")

        with patch("session_logout_listener.log") as mock_log:
            store.logout_users(["alice"])

        assert mock_log.call_args_list == [
            call("usernames: 'alice'", journal.LOG_DEBUG),
            call("session: id='01234567...', principal='alice'", journal.LOG_DEBUG),
        ]

    def test_truncate_session_id(self):
        from session_logout_listener import truncate_session_id

        assert truncate_session_id("0123456789abcdef") == "01234567"
        assert truncate_session_id("short") == "short"
