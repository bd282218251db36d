"""Unit tests for dronectl TransportConfig and transport teardown."""

import json

import pytest

from dronectl.testing import CallLog, SimulatedDevice, SimulatedTransport
from dronectl.transport import TransportConfig


class TestTransportConfig:
    """Defaults, validation and layering."""

    def test_defaults(self):
        config = TransportConfig()
        assert config.host == "127.0.0.1"
        assert config.port == 5760
        assert config.router_id == "ROUTER"
        assert config.mavsdk_port == 50051
        assert config.address == "tcpout://127.0.0.1:5760"

    @pytest.mark.parametrize(
        "kwargs",
        [{"host": ""}, {"port": 0}, {"port": 70000}, {"router_id": ""}, {"mavsdk_port": -1}],
    )
    def test_invalid(self, kwargs):
        with pytest.raises(ValueError):
            TransportConfig(**kwargs)

    def test_overrides_ignore_none(self):
        config = TransportConfig().with_overrides(host="10.0.0.2", port=None)
        assert config.host == "10.0.0.2"
        assert config.port == 5760

    def test_overrides_accept_dashes_and_strings(self):
        config = TransportConfig().with_overrides(**{"router-id": "R2", "mavsdk-port": "50052"})
        assert config.router_id == "R2"
        assert config.mavsdk_port == 50052

    def test_overrides_reject_unknown(self):
        with pytest.raises(ValueError, match="Unknown transport option"):
            TransportConfig().with_overrides(baud=57600)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "link.yaml"
        path.write_text("host: 192.168.1.5\nport: 5762\nrouter-id: FIELD\n")
        config = TransportConfig.from_file(path)
        assert config.address == "tcpout://192.168.1.5:5762"
        assert config.router_id == "FIELD"
        assert config.mavsdk_port == 50051

    def test_from_json(self, tmp_path):
        path = tmp_path / "link.json"
        path.write_text(json.dumps({"port": 5770}))
        assert TransportConfig.from_file(path).port == 5770

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert TransportConfig.from_file(path) == TransportConfig()

    def test_non_mapping_rejected(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            TransportConfig.from_file(path)


class TestTransportTeardown:
    """Registry, port and router are released in that order."""

    @pytest.mark.asyncio
    async def test_close_order(self):
        log = CallLog()
        transport = await SimulatedTransport.open(call_log=log)
        await transport.close()
        assert log.calls == ["transport.registry", "transport.port", "transport.router"]
        assert transport.closed

    @pytest.mark.asyncio
    async def test_registry_available(self):
        device = SimulatedDevice()
        async with await SimulatedTransport.open(device=device, emit_delay=0.01) as transport:
            assert transport.registry is transport.simulated_registry
            assert transport.address == "tcpout://127.0.0.1:5760"
