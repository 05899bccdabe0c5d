"""AWTRIX3 matrix display egress module - turns bus events into custom apps"""
import logging
from dataclasses import dataclass
from typing import Any, Callable

from energy_monitor.client import BusClient, RawMessage
from energy_monitor.dto import Consumption, DisplayDirective, PriceInformation, PriceLevel
from energy_monitor.errors import DecodeError
from energy_monitor.topic import Topic, TopicRegistry
from energy_monitor.topics import Topics

logger = logging.getLogger(__name__)

ICON_YIELD_DAY = "52455"    # Sun with bar chart
ICON_POWER = "37515"        # Solar panel
ICON_CONSUMPTION = "55888"  # Power plug
ICON_PRICE = "54231"        # Euro coin

CONSUMPTION_LIFETIME = 10   # Remove the consumption app if not updated within 10s
PRICE_LIFETIME = 60 * 62    # 1 hour and 2 minutes, covers the hourly price update

COLOR_GREEN = "#66FF00"
COLOR_AMBER = "#ED872D"
COLOR_RED = "#FF0800"
COLOR_MAGENTA = "#FF00FF"

PRICE_LEVEL_COLORS = {
    PriceLevel.VERY_CHEAP: COLOR_GREEN,
    PriceLevel.CHEAP: COLOR_GREEN,
    PriceLevel.NORMAL: COLOR_AMBER,
    PriceLevel.EXPENSIVE: COLOR_RED,
    PriceLevel.VERY_EXPENSIVE: COLOR_RED,
    PriceLevel.NONE: COLOR_MAGENTA,
}


def color_from_price_level(level: PriceLevel) -> str:
    return PRICE_LEVEL_COLORS[level]


def format_yield_day(yield_day: float) -> DisplayDirective:
    logger.info(f"Yield today: {yield_day} Wh")
    return DisplayDirective(text=str(round(yield_day)), icon=ICON_YIELD_DAY, duration=5)


def format_power(power: float) -> DisplayDirective:
    logger.info(f"Current production: {power:.0f} W")
    return DisplayDirective(text=f"{power:.0f}", icon=ICON_POWER, duration=5)


def format_consumption(consumption: Consumption) -> DisplayDirective:
    """Shown in kW with one decimal."""
    logger.info(f"Current consumption: {consumption.watts} W")
    return DisplayDirective(
        text=f"{consumption.watts / 1000:.1f}",
        icon=ICON_CONSUMPTION,
        duration=5,
        life_time=CONSUMPTION_LIFETIME
    )


def format_price(price: PriceInformation) -> DisplayDirective:
    """Shown with two decimals, coloured by price level."""
    logger.info(f"Current price: {price.total} ({price.level.value})")
    return DisplayDirective(
        text=f"{price.total:.2f}",
        icon=ICON_PRICE,
        duration=2,
        color=color_from_price_level(price.level),
        life_time=PRICE_LIFETIME
    )


@dataclass(frozen=True)
class Route:
    """Where a decoded event goes and how it is rendered."""
    target: Topic[DisplayDirective]
    render: Callable[[Any], DisplayDirective]


class DisplayFormatter:
    """
    Consumer side of the bus: one display app per measurement topic.

    Messages are decoded through the registry, so only payloads of the
    bound type reach the formatting functions.
    """

    def __init__(self, bus: BusClient, topics: Topics, registry: TopicRegistry):
        self.bus = bus
        self.registry = registry
        self.routes = {
            topics.opendtu_yield_day.name: Route(topics.display_yield_day, format_yield_day),
            topics.opendtu_power.name: Route(topics.display_power, format_power),
            topics.pulse_consumption.name: Route(topics.display_consumption, format_consumption),
            topics.tibber_price.name: Route(topics.display_price, format_price),
        }

    def format(self, message: RawMessage) -> tuple[Topic[DisplayDirective], DisplayDirective] | None:
        """
        Build the directive for one raw message.

        Returns:
            (target topic, directive), or None for topics without a display app.

        Raises:
            DecodeError: payload does not match the topic's type.
        """
        route = self.routes.get(message.topic)
        if route is None:
            return None
        decoded = self.registry.decode(message.topic, message.payload)
        if decoded is None:
            return None
        _, event = decoded
        return route.target, route.render(event)

    async def handle(self, message: RawMessage) -> None:
        """Message handler for the decoupler. Bus failures propagate."""
        try:
            result = self.format(message)
        except DecodeError as e:
            logger.error(f"Display: Dropping malformed message: {e}")
            return
        if result is None:
            logger.debug(f"Display: Ignoring message on {message.topic}")
            return

        target, directive = result
        await self.bus.publish(target, directive)
