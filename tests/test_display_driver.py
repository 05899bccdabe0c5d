import pytest

from display_driver import main
from energy_monitor.client import BusSettings
from energy_monitor.topics import build_topics

SETTINGS = BusSettings(host="iotstore", port=1883, identifier="matrix-display-updater", keepalive=5)


@pytest.mark.asyncio
async def test_main_subscribes_and_runs_decoupled_loop(mocker):
    """Test that the driver subscribes to the source topics and hands messages to the formatter"""
    bus = mocker.AsyncMock()
    bus_cls = mocker.patch('display_driver.BusClient')
    bus_cls.return_value.__aenter__.return_value = bus
    mock_run = mocker.patch('display_driver.run_decoupled', new=mocker.AsyncMock())

    await main(SETTINGS, "matrixdisplay")

    bus_cls.assert_called_once_with(SETTINGS)
    bus.subscribe.assert_awaited_once_with(build_topics().source_topics())

    args, kwargs = mock_run.await_args
    assert args[0] is bus
    assert args[1].__self__.routes.keys() == {
        "OpenDTU/ac/power",
        "OpenDTU/ac/yieldday",
        "Pulse/consumption",
        "Tibber/price_information",
    }
    assert kwargs == {"maxsize": 10}


@pytest.mark.asyncio
async def test_main_propagates_lost_connection(mocker):
    bus_cls = mocker.patch('display_driver.BusClient')
    bus_cls.return_value.__aenter__.return_value = mocker.AsyncMock()
    mocker.patch('display_driver.run_decoupled', new=mocker.AsyncMock(side_effect=ConnectionError("lost")))

    with pytest.raises(ConnectionError):
        await main(SETTINGS, "matrixdisplay")
