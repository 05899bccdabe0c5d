from types import SimpleNamespace

import httpx
import pytest

from energy_monitor.dto import Consumption
from energy_monitor.errors import (
    AuthError,
    ConfigError,
    DecodeError,
    ProtocolAssumptionViolation,
    TransportError,
)
from sources.base import run_cycle
from sources.pulse_bridge import PulseBridgeSource, decode_telegram, extract_consumption

OBIS_CURRENT_POWER = "0100100700ff"
OBIS_ENERGY_IMPORT = "0100010800ff"


def make_entry(obis, value):
    return SimpleNamespace(obis=obis, value=value)


def make_messages(entries):
    """SML file as smllib parses it: open response, then the reading list"""
    return [
        SimpleNamespace(message_body=SimpleNamespace(server_id=b"\x01")),
        SimpleNamespace(message_body=SimpleNamespace(val_list=entries)),
    ]


def make_response(mocker, status_code=200, content=b"\x1b\x1b\x1b\x1b"):
    response = mocker.Mock()
    response.status_code = status_code
    response.content = content
    response.raise_for_status = mocker.Mock()
    return response


@pytest.fixture
def mock_client(mocker):
    client = mocker.AsyncMock()
    mocker.patch('sources.pulse_bridge.httpx.AsyncClient', return_value=client)
    return client


class TestExtractConsumption:
    """Reading the current power out of a parsed SML telegram"""

    def test_finds_current_power(self):
        messages = make_messages([
            make_entry(OBIS_ENERGY_IMPORT, 12345678),
            make_entry(OBIS_CURRENT_POWER, 950),
        ])

        assert extract_consumption(messages) == Consumption(watts=950)

    def test_accepts_raw_obis_bytes(self):
        messages = make_messages([make_entry(bytes([1, 0, 16, 7, 0, 255]), -230)])

        assert extract_consumption(messages) == Consumption(watts=-230)

    def test_too_few_messages_is_not_fatal(self):
        with pytest.raises(ProtocolAssumptionViolation) as exc_info:
            extract_consumption(make_messages([])[:1])

        assert not exc_info.value.fatal

    def test_second_message_without_reading_list(self):
        messages = [SimpleNamespace(message_body=SimpleNamespace()) for _ in range(3)]

        with pytest.raises(ProtocolAssumptionViolation):
            extract_consumption(messages)

    def test_missing_current_power_entry(self):
        messages = make_messages([make_entry(OBIS_ENERGY_IMPORT, 12345678)])

        with pytest.raises(ProtocolAssumptionViolation):
            extract_consumption(messages)

    @pytest.mark.parametrize("value", [None, 950.5, "950", b"\x03\xb6"])
    def test_non_integer_value(self, value):
        messages = make_messages([make_entry(OBIS_CURRENT_POWER, value)])

        with pytest.raises(ProtocolAssumptionViolation):
            extract_consumption(messages)


class TestDecodeTelegram:
    """SML transport decoding"""

    def test_single_frame(self, mocker):
        messages = make_messages([make_entry(OBIS_CURRENT_POWER, 1)])
        frame = mocker.Mock()
        frame.parse_frame.return_value = messages
        reader = mocker.patch('sources.pulse_bridge.SmlStreamReader').return_value
        reader.get_frame.side_effect = [frame, None]

        assert decode_telegram(b"telegram") is messages
        reader.add.assert_called_once_with(b"telegram")

    def test_no_frame(self, mocker):
        reader = mocker.patch('sources.pulse_bridge.SmlStreamReader').return_value
        reader.get_frame.return_value = None

        with pytest.raises(DecodeError):
            decode_telegram(b"")

    def test_more_than_one_frame(self, mocker):
        reader = mocker.patch('sources.pulse_bridge.SmlStreamReader').return_value
        reader.get_frame.side_effect = [mocker.Mock(), mocker.Mock()]

        with pytest.raises(DecodeError):
            decode_telegram(b"two frames")

    def test_crc_failure(self, mocker):
        reader = mocker.patch('sources.pulse_bridge.SmlStreamReader').return_value
        reader.get_frame.side_effect = Exception("CRC mismatch")

        with pytest.raises(DecodeError):
            decode_telegram(b"corrupted")

    def test_parse_failure(self, mocker):
        frame = mocker.Mock()
        frame.parse_frame.side_effect = Exception("Unsupported type")
        reader = mocker.patch('sources.pulse_bridge.SmlStreamReader').return_value
        reader.get_frame.side_effect = [frame, None]

        with pytest.raises(DecodeError):
            decode_telegram(b"telegram")

    def test_garbage_with_real_decoder(self):
        with pytest.raises(DecodeError):
            decode_telegram(b"<html>not an SML telegram</html>")


@pytest.mark.asyncio
async def test_fetch_uses_basic_auth_and_timeout(mocker, monkeypatch, mock_client):
    """Test that the bridge is queried with admin / PULSE_BRIDGE_PASSWORD"""
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "secret")
    mock_client.get.return_value = make_response(mocker)
    mocker.patch(
        'sources.pulse_bridge.decode_telegram',
        return_value=make_messages([make_entry(OBIS_CURRENT_POWER, 950)])
    )
    mock_cls = mocker.patch('sources.pulse_bridge.httpx.AsyncClient', return_value=mock_client)

    source = PulseBridgeSource()
    consumption = await source.fetch()

    assert consumption == Consumption(watts=950)
    mock_cls.assert_called_once_with(timeout=15.0, auth=("admin", "secret"))
    mock_client.get.assert_awaited_once_with("http://192.168.100.60/data.json?node_id=1")
    mock_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_cycle_publishes_consumption_once(mocker, monkeypatch, mock_client, bus, topics):
    """A reading of 950 W is published exactly once on Pulse/consumption"""
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "secret")
    mock_client.get.return_value = make_response(mocker)
    mocker.patch(
        'sources.pulse_bridge.decode_telegram',
        return_value=make_messages([
            make_entry(OBIS_ENERGY_IMPORT, 12345678),
            make_entry(OBIS_CURRENT_POWER, 950),
        ])
    )

    published = await run_cycle(PulseBridgeSource(), bus, topics.pulse_consumption)

    assert published is True
    bus.publish.assert_awaited_once_with(topics.pulse_consumption, Consumption(watts=950))


@pytest.mark.asyncio
async def test_cycle_with_short_message_list_skips_publish(mocker, monkeypatch, mock_client, bus, topics):
    """Fewer than 2 SML messages fails the cycle without stopping anything"""
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "secret")
    mock_client.get.return_value = make_response(mocker)
    mocker.patch('sources.pulse_bridge.decode_telegram', return_value=make_messages([])[:1])

    published = await run_cycle(PulseBridgeSource(), bus, topics.pulse_consumption)

    assert published is False
    bus.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_cycle_with_corrupt_telegram_skips_publish(mocker, monkeypatch, mock_client, bus, topics):
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "secret")
    mock_client.get.return_value = make_response(mocker, content=b"garbage")

    published = await run_cycle(PulseBridgeSource(), bus, topics.pulse_consumption)

    assert published is False
    bus.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_timeout_raises_transport_error(monkeypatch, mock_client):
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "secret")
    mock_client.get.side_effect = httpx.ReadTimeout("timed out")

    with pytest.raises(TransportError):
        await PulseBridgeSource().fetch()

    mock_client.aclose.assert_awaited_once()


@pytest.mark.asyncio
async def test_connection_error_skips_cycle(monkeypatch, mock_client, bus, topics):
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "secret")
    mock_client.get.side_effect = httpx.ConnectError("Cannot reach host")

    published = await run_cycle(PulseBridgeSource(), bus, topics.pulse_consumption)

    assert published is False
    bus.publish.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_password_raises_auth_error(mocker, monkeypatch, mock_client):
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "wrong")
    mock_client.get.return_value = make_response(mocker, status_code=401)

    with pytest.raises(AuthError):
        await PulseBridgeSource().fetch()


@pytest.mark.asyncio
async def test_server_error_raises_transport_error(mocker, monkeypatch, mock_client):
    monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", "secret")
    response = make_response(mocker, status_code=500)
    response.raise_for_status.side_effect = httpx.HTTPStatusError(
        "Server error", request=mocker.Mock(), response=response
    )
    mock_client.get.return_value = response

    with pytest.raises(TransportError):
        await PulseBridgeSource().fetch()


@pytest.mark.asyncio
@pytest.mark.parametrize("password", [None, ""])
async def test_missing_password_is_fatal(monkeypatch, mock_client, bus, topics, password):
    """A missing or empty PULSE_BRIDGE_PASSWORD stops the process, not just the cycle"""
    if password is None:
        monkeypatch.delenv("PULSE_BRIDGE_PASSWORD", raising=False)
    else:
        monkeypatch.setenv("PULSE_BRIDGE_PASSWORD", password)

    with pytest.raises(ConfigError) as exc_info:
        await run_cycle(PulseBridgeSource(), bus, topics.pulse_consumption)

    assert exc_info.value.fatal
    mock_client.get.assert_not_awaited()
    bus.publish.assert_not_awaited()
