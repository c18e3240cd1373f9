"""Tests for the pairing code flow."""

import logging

import pytest

from devlink.errors import ProvisioningError, ValidationError
from devlink.linking.pairing_flow import PairingResult
from devlink.linking.session import LinkStatus
from tests.fakes import LINKED_USER, eventually


class TestNormalizeNumber:
    """Tests for phone number validation."""

    def test_strips_formatting(self, manager):
        assert manager.pairing.normalize_number("+1 (555) 010-0123") == "15550100123"

    @pytest.mark.parametrize("number", [None, ""])
    def test_missing_number(self, manager, number):
        with pytest.raises(ValidationError, match="Phone number is required"):
            manager.pairing.normalize_number(number)

    @pytest.mark.parametrize("number", ["123", "abc-defg-hij", "+1 555"])
    def test_too_short(self, manager, number):
        with pytest.raises(ValidationError, match="Invalid phone number format"):
            manager.pairing.normalize_number(number)

    def test_minimum_length_accepted(self, manager):
        """Exactly eight digits is long enough."""
        assert manager.pairing.normalize_number("+1 555-0100") == "15550100"

    def test_one_digit_short_rejected(self, manager):
        with pytest.raises(ValidationError, match="Invalid phone number format"):
            manager.pairing.normalize_number("1555010")

    def test_non_string_number(self, manager):
        assert manager.pairing.normalize_number(15550100123) == "15550100123"


class TestPairingStart:
    """Tests for issuing a pairing code."""

    async def test_returns_code(self, manager, socket_factory):
        result = await manager.pairing.start("+1 (555) 010-0123")

        assert isinstance(result, PairingResult)
        assert result.code == "ABCD1234"
        assert manager.ids.validate_session_id(result.session_id)
        assert socket_factory.last.requested_numbers == ["15550100123"]

    async def test_session_awaits_code_entry(self, manager):
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)

        assert session.status == LinkStatus.AWAITING_CODE
        assert session.responded
        assert session.store.exists()

    async def test_result_to_dict(self):
        result = PairingResult(code="ABCD1234", session_id="S1")
        assert result.to_dict() == {"code": "ABCD1234", "sessionId": "S1"}

    async def test_invalid_number_creates_nothing(self, manager, socket_factory):
        """Validation happens before any session exists."""
        with pytest.raises(ValidationError):
            await manager.pairing.start("12")

        assert socket_factory.sockets == []
        assert len(manager.registry) == 0
        assert manager.root.count() == 0

    async def test_code_request_failure_cleans_up(self, manager, socket_factory):
        socket_factory.socket_kwargs["pairing_error"] = ConnectionError("rejected")

        with pytest.raises(ProvisioningError, match="Failed to generate pairing code"):
            await manager.pairing.start("15550100123")

        assert len(manager.registry) == 0
        assert manager.root.count() == 0
        assert socket_factory.last.close_calls == 1

    async def test_socket_open_failure_cleans_up(self, manager, socket_factory):
        socket_factory.open_error = OSError("no network")

        with pytest.raises(ProvisioningError, match="Internal server error"):
            await manager.pairing.start("15550100123")

        assert len(manager.registry) == 0
        assert manager.root.count() == 0

    async def test_concurrent_sessions_are_independent(self, manager, socket_factory):
        first = await manager.pairing.start("15550100001")
        second = await manager.pairing.start("15550100002")

        assert first.session_id != second.session_id
        assert len(manager.registry) == 2
        assert manager.root.count() == 2

        socket_factory.sockets[0].connect()
        await eventually(lambda: first.session_id not in manager.registry)

        assert manager.get_session(second.session_id).status == LinkStatus.AWAITING_CODE
        assert manager.root.store_for(second.session_id).exists()


class TestPairingLink:
    """Tests for what happens once the device links."""

    async def test_welcome_close_cleanup(self, manager, socket_factory):
        """Link sends one welcome, closes the socket and discards credentials."""
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)
        socket = socket_factory.last

        socket.connect()
        await eventually(lambda: session.cleaned)

        assert len(socket.notifications) == 1
        recipient, text = socket.notifications[0]
        assert recipient == LINKED_USER
        assert result.session_id in text
        assert socket.close_calls == 1
        assert session.status == LinkStatus.CLOSED
        assert not session.store.exists()

    async def test_connecting_then_connected(self, manager, socket_factory):
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)

        socket_factory.last.connect()
        await session.wait_idle()
        assert session.status == LinkStatus.CONNECTING
        assert session.user_id == LINKED_USER

        await eventually(lambda: session.welcomed)
        assert session.status in (LinkStatus.CONNECTED, LinkStatus.CLOSED)

    async def test_duplicate_open_sends_one_welcome(self, manager, socket_factory):
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)
        socket = socket_factory.last

        socket.connect()
        socket.connect()
        await eventually(lambda: session.cleaned)
        assert len(socket.notifications) == 1

    async def test_cleanup_without_closed_event(self, manager, socket_factory):
        """Credentials are discarded after the cleanup delay even if the
        socket never reports its close."""
        socket_factory.socket_kwargs["emit_closed_on_close"] = False
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)

        socket_factory.last.connect()
        await eventually(lambda: session.cleaned)

        assert session.status == LinkStatus.CONNECTED
        assert not session.store.exists()

    async def test_welcome_failure_still_cleans_up(self, manager, socket_factory, caplog):
        socket_factory.socket_kwargs["send_error"] = ConnectionError("send failed")
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)

        with caplog.at_level(logging.WARNING):
            socket_factory.last.connect()
            await eventually(lambda: session.cleaned)

        assert "Welcome message not sent" in caplog.text
        assert socket_factory.last.close_calls == 1
        assert not session.store.exists()

    async def test_remote_close_cleans_up(self, manager, socket_factory):
        """Closing before linking discards the session at once."""
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)

        socket_factory.last.drop()
        await eventually(lambda: session.cleaned)

        assert session.status == LinkStatus.CLOSED
        assert socket_factory.last.notifications == []
        assert not session.store.exists()

    async def test_credentials_persisted(self, manager, socket_factory):
        result = await manager.pairing.start("15550100123")
        session = manager.get_session(result.session_id)

        socket_factory.last.update_credentials({"me": {"id": "15550100"}})
        await session.wait_idle()

        assert session.store.load() == {"me": {"id": "15550100"}}

    async def test_link_while_code_pending(self, manager, socket_factory, caplog):
        """A link reported before the code is issued waits for the code."""
        socket_factory.socket_kwargs["link_before_code"] = True

        with caplog.at_level(logging.DEBUG, logger="devlink.linking.session"):
            result = await manager.pairing.start("15550100123")
            session = manager.get_session(result.session_id)
            assert result.code == "ABCD1234"
            assert session.status == LinkStatus.AWAITING_CODE

            await eventually(lambda: session.cleaned)

        assert caplog.text.count("CREATED -> AWAITING_CODE") == 1
        assert "AWAITING_CODE -> CONNECTING" in caplog.text
        assert "CREATED -> CONNECTING" not in caplog.text
        assert len(socket_factory.last.notifications) == 1

    async def test_link_while_code_fails(self, manager, socket_factory):
        """A pending link is dropped when the code request fails."""
        socket_factory.socket_kwargs["link_before_code"] = True
        socket_factory.socket_kwargs["pairing_error"] = ConnectionError("rejected")

        with pytest.raises(ProvisioningError):
            await manager.pairing.start("15550100123")

        assert socket_factory.last.notifications == []
        assert len(manager.registry) == 0
