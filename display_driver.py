import argparse
import asyncio
import logging
import os
import sys

from dotenv import load_dotenv

# Load configuration from single .env file
load_dotenv("energy-monitor.env")

from energy_monitor.client import BusClient, BusSettings
from energy_monitor.decoupler import QUEUE_SIZE, run_decoupled
from energy_monitor.errors import TopicBindingError
from energy_monitor.topics import SAMPLE_PAYLOADS, build_registry, build_topics
from sinks.matrix_display import DisplayFormatter

__version__ = "0.1.0"

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(levelname)s - %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)

MQTT_CLIENT_NAME = "matrix-display-updater"
MQTT_KEEPALIVE = 5


async def main(settings: BusSettings, display_prefix: str):
    topics = build_topics(display_prefix)
    registry = build_registry(topics)
    registry.verify(SAMPLE_PAYLOADS)

    async with BusClient(settings) as bus:
        await bus.subscribe(topics.source_topics())
        formatter = DisplayFormatter(bus, topics, registry)
        await run_decoupled(bus, formatter.handle, maxsize=QUEUE_SIZE)


def run():
    parser = argparse.ArgumentParser(description="Energy Monitor matrix display driver")
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
    parser.add_argument(
        "--display-prefix",
        type=str,
        default=os.getenv("MATRIX_DISPLAY_PREFIX", "matrixdisplay"),
        help="Topic prefix of the AWTRIX3 display (default: matrixdisplay)"
    )
    args = parser.parse_args()

    logger.info(f"Starting Matrix Display Driver (emdisplayd) v{__version__}")
    settings = BusSettings(
        host=args.broker,
        port=args.port,
        identifier=MQTT_CLIENT_NAME,
        keepalive=MQTT_KEEPALIVE
    )

    try:
        asyncio.run(main(settings, args.display_prefix))
    except KeyboardInterrupt:
        logger.info("Script stopped by user.")
    except TopicBindingError as e:
        logger.error(f"Topic binding check failed: {e}")
        sys.exit(1)
    except Exception as e:
        # Returning from the message loop means the broker connection was lost
        logger.error(f"Terminating: {e!r}")
        sys.exit(1)


if __name__ == "__main__":
    run()
