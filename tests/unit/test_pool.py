"""Tests for ConnectionPool lifecycle."""

import asyncio

import pytest

from conftest_fakes import stdio_descriptor, tool_def
from mcpgate.exceptions import ConnectError, ServerNotConnectedError
from mcpgate.mcp.pool import ConnectionPool, create_transport
from mcpgate.mcp.transports import StdioTransport, StreamableHTTPTransport
from mcpgate.schemas import CapabilityServerDescriptor, ConnectionState


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_registers_entry(self, pool, mock_servers):
        descriptor = mock_servers.add("fs1", tools=[tool_def("read_file")])

        entry = await pool.connect(descriptor)

        assert "fs1" in pool
        assert entry.descriptor is descriptor
        assert entry.transport is mock_servers.latest("fs1")
        assert entry.connected_at <= entry.last_activity
        assert [t.name for t in await pool.get("fs1").list_tools()] == ["read_file"]

    @pytest.mark.asyncio
    async def test_reconnect_replaces_previous_transport(self, pool, mock_servers):
        descriptor = mock_servers.add("fs1")

        await pool.connect(descriptor)
        await pool.connect(descriptor)

        first, second = mock_servers.transports("fs1")
        assert first.closed
        assert not second.closed
        assert len(pool) == 1
        assert pool.get_entry("fs1").transport is second

    @pytest.mark.asyncio
    async def test_concurrent_connects_leave_one_live_transport(self, pool, mock_servers):
        descriptor = mock_servers.add("fs1")

        await asyncio.gather(*(pool.connect(descriptor) for _ in range(3)))

        live = [t for t in mock_servers.transports("fs1") if not t.closed]
        assert len(live) == 1
        assert pool.get_entry("fs1").transport is live[0]

    @pytest.mark.asyncio
    async def test_disabled_descriptor_refused(self, pool, mock_servers):
        mock_servers.add("off")
        descriptor = stdio_descriptor("off", enabled=False)

        with pytest.raises(ConnectError, match="disabled"):
            await pool.connect(descriptor)

        assert mock_servers.created == []
        assert "off" not in pool

    @pytest.mark.asyncio
    async def test_connect_timeout_registers_nothing(self, mock_servers):
        descriptor = mock_servers.add("slow", hang_on=("initialize",))
        pool = ConnectionPool(connect_timeout=0.05, transport_factory=mock_servers.factory)

        with pytest.raises(ConnectError) as exc_info:
            await pool.connect(descriptor)

        assert exc_info.value.timeout is True
        assert "slow" not in pool
        assert mock_servers.latest("slow").closed
        status = await pool.status("slow")
        assert status.status is ConnectionState.ERROR
        assert "timed out" in status.error_message

    @pytest.mark.asyncio
    async def test_start_failure_registers_nothing(self, pool, mock_servers):
        descriptor = mock_servers.add("broken", fail_start=True)

        with pytest.raises(ConnectError) as exc_info:
            await pool.connect(descriptor)

        assert exc_info.value.timeout is False
        assert "broken" not in pool
        assert mock_servers.latest("broken").closed

    @pytest.mark.asyncio
    async def test_failed_reconnect_drops_old_entry(self, pool, mock_servers):
        descriptor = mock_servers.add("fs1")
        await pool.connect(descriptor)

        mock_servers.specs["fs1"] = {"fail_start": True}
        with pytest.raises(ConnectError):
            await pool.connect(descriptor)

        assert "fs1" not in pool
        assert all(t.closed for t in mock_servers.transports("fs1"))


class TestDisconnectAndStatus:
    @pytest.mark.asyncio
    async def test_disconnect_closes_and_removes(self, pool, mock_servers):
        await pool.connect(mock_servers.add("fs1"))

        await pool.disconnect("fs1")

        assert "fs1" not in pool
        assert mock_servers.latest("fs1").closed
        with pytest.raises(ServerNotConnectedError):
            pool.get("fs1")

    @pytest.mark.asyncio
    async def test_disconnect_unknown_is_noop(self, pool):
        await pool.disconnect("nope")
        await pool.disconnect("nope")

        assert len(pool) == 0
        assert pool._id_locks == {}

    @pytest.mark.asyncio
    async def test_per_id_locks_released_after_disconnect(self, pool, mock_servers):
        await pool.connect(mock_servers.add("fs1"))
        await pool.connect(mock_servers.add("web"))
        assert set(pool._id_locks) == {"fs1", "web"}

        await asyncio.gather(
            pool.disconnect("fs1"),
            pool.disconnect("fs1"),
            pool.connect(mock_servers.add("tmp", fail_start=True)),
            return_exceptions=True,
        )

        assert set(pool._id_locks) == {"web"}
        assert pool._id_lock_users == {}

    @pytest.mark.asyncio
    async def test_status_connected_probe(self, pool, mock_servers):
        await pool.connect(mock_servers.add("fs1", resources=[]))

        status = await pool.status("fs1")

        assert status.connected is True
        assert status.status is ConnectionState.CONNECTED
        assert status.last_connected is not None
        assert mock_servers.latest("fs1").sent[-1]["method"] == "resources/list"

    @pytest.mark.asyncio
    async def test_status_without_resources_capability_is_connected(self, pool, mock_servers):
        await pool.connect(mock_servers.add("fs1", resources=None))

        status = await pool.status("fs1")

        assert status.status is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_status_probe_failure_is_error(self, pool, mock_servers):
        await pool.connect(mock_servers.add("fs1"))
        mock_servers.latest("fs1").inject(None)
        await asyncio.sleep(0.01)

        status = await pool.status("fs1")

        assert status.connected is False
        assert status.status is ConnectionState.ERROR
        assert status.error_message

    @pytest.mark.asyncio
    async def test_status_disconnected(self, pool, mock_servers):
        await pool.connect(mock_servers.add("fs1"))
        await pool.disconnect("fs1")

        status = await pool.status("fs1")

        assert status.status is ConnectionState.DISCONNECTED
        assert status.connected is False

    @pytest.mark.asyncio
    async def test_status_connecting_while_handshake_in_flight(self, mock_servers):
        descriptor = mock_servers.add("slow", hang_on=("initialize",))
        pool = ConnectionPool(connect_timeout=0.5, transport_factory=mock_servers.factory)

        connect = asyncio.create_task(pool.connect(descriptor))
        await asyncio.sleep(0.01)
        status = await pool.status("slow")

        assert status.status is ConnectionState.CONNECTING
        with pytest.raises(ConnectError):
            await connect


class TestSnapshots:
    @pytest.mark.asyncio
    async def test_active_snapshots_in_registration_order(self, pool, mock_servers):
        for server_id in ("b", "a", "c"):
            await pool.connect(mock_servers.add(server_id))

        assert [d.id for d in pool.active_servers()] == ["b", "a", "c"]
        assert [c.server_id for c in pool.active_clients()] == ["b", "a", "c"]

    @pytest.mark.asyncio
    async def test_dead_connections_excluded(self, pool, mock_servers):
        await pool.connect(mock_servers.add("a"))
        await pool.connect(mock_servers.add("b"))
        mock_servers.latest("a").inject(None)
        await asyncio.sleep(0.01)

        assert [e.server_id for e in pool.active_entries()] == ["b"]
        assert "a" in pool

    @pytest.mark.asyncio
    async def test_get_updates_last_activity(self, pool, mock_servers):
        entry = await pool.connect(mock_servers.add("fs1"))
        before = entry.last_activity
        await asyncio.sleep(0.01)

        pool.get("fs1")

        assert entry.last_activity > before

    @pytest.mark.asyncio
    async def test_close_drains_everything(self, mock_servers):
        async with ConnectionPool(transport_factory=mock_servers.factory) as pool:
            await pool.connect(mock_servers.add("a"))
            await pool.connect(mock_servers.add("b"))

        assert len(pool) == 0
        assert all(t.closed for _, t in mock_servers.created)


def test_create_transport_dispatches_on_kind():
    stdio = create_transport(stdio_descriptor("fs1"))
    http = create_transport(
        CapabilityServerDescriptor(id="remote", transport="http", url="https://example.com/mcp")
    )

    assert isinstance(stdio, StdioTransport)
    assert stdio.command == "mock-server"
    assert isinstance(http, StreamableHTTPTransport)
    assert http.url == "https://example.com/mcp"
