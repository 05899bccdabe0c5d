"""Tibber Pulse Bridge ingress module - fetches SML telegrams via HTTP"""
import logging
import os

import httpx
from smllib import SmlStreamReader

from energy_monitor.dto import Consumption
from energy_monitor.errors import (
    AuthError,
    ConfigError,
    DecodeError,
    ProtocolAssumptionViolation,
    TransportError,
)

logger = logging.getLogger(__name__)

PULSE_BRIDGE_URL = "http://192.168.100.60/data.json?node_id=1"
PULSE_BRIDGE_USERNAME = "admin"
PASSWORD_ENV = "PULSE_BRIDGE_PASSWORD"

# OBIS 1-0:16.7.0*255 - sum of current active power over all phases
OBIS_CURRENT_POWER = bytes([1, 0, 16, 7, 0, 255])


def decode_telegram(body: bytes) -> list:
    """
    Transport-decode an SML telegram into its list of messages.

    The bridge answers with exactly one SML frame.

    Raises:
        DecodeError: no complete frame, more than one frame, or the frame
            fails CRC or parsing.
    """
    reader = SmlStreamReader()
    reader.add(body)
    try:
        frame = reader.get_frame()
        extra = reader.get_frame() if frame is not None else None
    except Exception as e:
        raise DecodeError("Pulse Bridge", f"SML transport decoding failed: {e}") from e

    if frame is None:
        raise DecodeError("Pulse Bridge", f"No complete SML frame in {len(body)} bytes")
    if extra is not None:
        raise DecodeError("Pulse Bridge", "Expected exactly one SML frame, got more")

    try:
        return frame.parse_frame()
    except Exception as e:
        raise DecodeError("Pulse Bridge", f"SML frame parsing failed: {e}") from e


def _obis_bytes(obis) -> bytes | None:
    # smllib hands out OBIS codes as hex strings ("0100100700ff")
    if isinstance(obis, (bytes, bytearray)):
        return bytes(obis)
    try:
        return bytes.fromhex(str(obis))
    except ValueError:
        return None


def extract_consumption(messages: list) -> Consumption:
    """
    Find the current active power in a parsed telegram.

    The first message opens the SML file; the second is the
    GetListResponse carrying the readings.

    Raises:
        ProtocolAssumptionViolation: fewer than two messages, no reading
            list, no current power entry, or a non-integer value.
    """
    if len(messages) < 2:
        raise ProtocolAssumptionViolation(f"Expected at least 2 SML messages, got {len(messages)}")

    val_list = getattr(messages[1].message_body, "val_list", None)
    if val_list is None:
        raise ProtocolAssumptionViolation("Second SML message is not a GetListResponse")

    for entry in val_list:
        if _obis_bytes(entry.obis) != OBIS_CURRENT_POWER:
            continue
        value = entry.value
        if isinstance(value, bool) or not isinstance(value, int):
            raise ProtocolAssumptionViolation(f"Current power is not an integer: {value!r}")
        return Consumption(watts=value)

    raise ProtocolAssumptionViolation("No current power entry (1-0:16.7.0*255) in telegram")


class PulseBridgeSource:
    """
    Tibber Pulse Bridge power source.

    Polls the bridge's local HTTP API once per scheduled tick and
    extracts the current power consumption from the SML telegram
    it returns. No retries within a tick: the next tick starts over.
    """

    name = "Pulse Bridge"

    def __init__(
        self,
        url: str = PULSE_BRIDGE_URL,
        username: str = PULSE_BRIDGE_USERNAME,
        timeout: float = 15.0
    ):
        """
        Initialize Pulse Bridge source.

        Args:
            url: Bridge data endpoint
            username: HTTP Basic auth user (the password comes from PULSE_BRIDGE_PASSWORD)
            timeout: HTTP request timeout in seconds (default: 15.0)
        """
        self.url = url
        self.username = username
        self.timeout = timeout

    def _password(self) -> str:
        password = os.getenv(PASSWORD_ENV)
        if password is None:
            raise ConfigError(f"{PASSWORD_ENV} is not set")
        if not password:
            raise ConfigError(f"{PASSWORD_ENV} is empty")
        return password

    async def _download(self, password: str) -> bytes:
        client = httpx.AsyncClient(timeout=self.timeout, auth=(self.username, password))
        try:
            response = await client.get(self.url)
            if response.status_code in (401, 403):
                raise AuthError(f"Pulse Bridge rejected credentials (HTTP {response.status_code})")
            response.raise_for_status()
            return response.content
        except httpx.TimeoutException as e:
            raise TransportError(f"Timeout after {self.timeout}s: {e}") from e
        except httpx.HTTPStatusError as e:
            raise TransportError(f"HTTP error {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TransportError(f"Cannot reach {self.url}: {e}") from e
        finally:
            await client.aclose()

    async def fetch(self) -> Consumption:
        """Download, decode and extract one reading."""
        password = self._password()
        body = await self._download(password)
        logger.debug(f"Pulse Bridge: Received {len(body)} bytes")

        messages = decode_telegram(body)
        consumption = extract_consumption(messages)
        logger.info(f"Pulse Bridge: Power = {consumption.watts} W")
        return consumption
