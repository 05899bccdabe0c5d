"""Topic catalog - every topic used by the provider and the display driver"""
from dataclasses import dataclass

from energy_monitor.dto import Consumption, DisplayDirective, PriceInformation, PriceLevel
from energy_monitor.topic import Topic, TopicRegistry


@dataclass(frozen=True)
class Topics:
    """Topic handles, built once by the driver and passed to components."""
    opendtu_power: Topic[float]
    opendtu_yield_day: Topic[float]
    pulse_consumption: Topic[Consumption]
    tibber_price: Topic[PriceInformation]
    display_yield_day: Topic[DisplayDirective]
    display_power: Topic[DisplayDirective]
    display_consumption: Topic[DisplayDirective]
    display_price: Topic[DisplayDirective]

    def source_topics(self) -> list[Topic]:
        """Topics carrying measurements, in subscription order."""
        return [self.opendtu_power, self.opendtu_yield_day, self.pulse_consumption, self.tibber_price]

    def display_topics(self) -> list[Topic]:
        return [self.display_yield_day, self.display_power, self.display_consumption, self.display_price]


def build_topics(display_prefix: str = "matrixdisplay") -> Topics:
    """Build the topic catalog. The display topics live under a configurable prefix."""
    return Topics(
        opendtu_power=Topic("OpenDTU/ac/power", float),
        opendtu_yield_day=Topic("OpenDTU/ac/yieldday", float),
        pulse_consumption=Topic("Pulse/consumption", Consumption),
        tibber_price=Topic("Tibber/price_information", PriceInformation),
        display_yield_day=Topic(f"{display_prefix}/custom/yieldday", DisplayDirective),
        display_power=Topic(f"{display_prefix}/custom/power", DisplayDirective),
        display_consumption=Topic(f"{display_prefix}/custom/consumption", DisplayDirective),
        display_price=Topic(f"{display_prefix}/custom/tibberprice", DisplayDirective),
    )


def build_registry(topics: Topics) -> TopicRegistry:
    """Registry of every topic in the catalog."""
    return TopicRegistry(topics.source_topics() + topics.display_topics())


# Payloads used to round-trip check each binding at startup
SAMPLE_PAYLOADS = {
    float: [0.0, 1234.5, -3.25],
    Consumption: [Consumption(watts=0), Consumption(watts=950), Consumption(watts=-420)],
    PriceInformation: [PriceInformation(total=0.2543, level=level) for level in PriceLevel],
    DisplayDirective: [
        DisplayDirective(text="0.9"),
        DisplayDirective(text="0.25", icon="54231", color="#66FF00", duration=2, life_time=3720),
    ],
}
