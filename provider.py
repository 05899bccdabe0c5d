import argparse
import asyncio
import logging
import os
import sys
from functools import partial

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("energy-monitor.env")

from energy_monitor.client import BusClient, BusSettings
from energy_monitor.errors import ConfigError, TopicBindingError
from energy_monitor.topics import SAMPLE_PAYLOADS, build_registry, build_topics
from scheduler import PeriodicJob, Scheduler
from sources.base import run_cycle
from sources.pulse_bridge import PulseBridgeSource
from sources.tibber import TIBBER_API_URL, TibberConfig, TibberPriceSource

__version__ = "0.1.0"

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

MQTT_CLIENT_NAME = "tibber_bridge_data_provider"
MQTT_KEEPALIVE = 10

# Pulse Bridge: every 10 seconds, at second 1, 11, 21, ...
PULSE_BRIDGE_PERIOD = 10
PULSE_BRIDGE_OFFSET = 1
# Tibber: every hour, two minutes past
TIBBER_PERIOD = 60 * 60
TIBBER_OFFSET = 2 * 60


def check_tibber_config(url: str = TIBBER_API_URL) -> TibberConfig:
    """Fail early with a hard exit if the Tibber token is missing"""
    try:
        return TibberConfig.from_env(url)
    except ConfigError as e:
        logger.error(f"Failed to load Tibber config: {e}")
        sys.exit(1)


def build_scheduler(bus: BusClient, topics) -> Scheduler:
    pulse_bridge = PulseBridgeSource()
    tibber = TibberPriceSource()
    return Scheduler([
        PeriodicJob(
            "pulse-bridge",
            PULSE_BRIDGE_PERIOD,
            partial(run_cycle, pulse_bridge, bus, topics.pulse_consumption),
            offset=PULSE_BRIDGE_OFFSET
        ),
        PeriodicJob(
            "tibber",
            TIBBER_PERIOD,
            partial(run_cycle, tibber, bus, topics.tibber_price),
            offset=TIBBER_OFFSET,
            run_at_start=True
        ),
    ])


async def main(settings: BusSettings):
    topics = build_topics()
    build_registry(topics).verify(SAMPLE_PAYLOADS)

    async with BusClient(settings) as bus:
        scheduler = build_scheduler(bus, topics)

        # Network task and scheduled jobs run side by side; if either
        # fails the task group tears down the other
        async with asyncio.TaskGroup() as tg:
            tg.create_task(bus.watch())
            tg.create_task(scheduler.run())


def run():
    parser = argparse.ArgumentParser(description="Energy Monitor data provider")
    parser.add_argument(
        "--broker",
        type=str,
        default=os.getenv("MQTT_BROKER_ADDRESS", "iotstore"),
        help="MQTT broker host (default: iotstore)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("MQTT_BROKER_PORT", "1883")),
        help="MQTT broker port (default: 1883)"
    )
    args = parser.parse_args()

    logger.info(f"Starting Tibber Data Provider (emtibberd) v{__version__}")

    # Fail early, before anything is scheduled
    check_tibber_config()
    settings = BusSettings(
        host=args.broker,
        port=args.port,
        identifier=MQTT_CLIENT_NAME,
        keepalive=MQTT_KEEPALIVE
    )

    try:
        asyncio.run(main(settings))
    except KeyboardInterrupt:
        logger.info("Script stopped by user.")
    except TopicBindingError as e:
        logger.error(f"Topic binding check failed: {e}")
        sys.exit(1)
    except Exception as e:
        # Lost broker, fatal pipeline error or crashed task: let the supervisor restart us
        logger.error(f"Terminating: {e!r}")
        sys.exit(1)


if __name__ == "__main__":
    run()
