"""Tibber ingress module - fetches the current energy price via GraphQL"""
import asyncio
import logging
import math
import os
from dataclasses import dataclass
from datetime import datetime

import requests

from energy_monitor.dto import PriceInformation, PriceLevel
from energy_monitor.errors import (
    AuthError,
    ConfigError,
    GraphQLError,
    NoPriceAvailable,
    ProtocolAssumptionViolation,
    TransportError,
)

logger = logging.getLogger(__name__)

TIBBER_API_URL = "https://api.tibber.com/v1-beta/gql"
TOKEN_ENV = "TIBBER_API_TOKEN"
USER_AGENT = "energy-monitor/0.1.0"

VIEWER_QUERY = """
{
  viewer {
    login
    userId
    homes {
      id
    }
  }
}
"""

PRICE_QUERY = """
query Price($id: ID!) {
  viewer {
    home(id: $id) {
      currentSubscription {
        priceInfo {
          current {
            total
            energy
            tax
            startsAt
            currency
            level
          }
        }
      }
    }
  }
}
"""


@dataclass(frozen=True)
class TibberConfig:
    """API endpoint and bearer token."""
    url: str
    token: str

    @classmethod
    def from_env(cls, url: str = TIBBER_API_URL) -> "TibberConfig":
        """
        Read the token from TIBBER_API_TOKEN.

        Raises:
            ConfigError: the variable is missing or empty.
        """
        token = os.getenv(TOKEN_ENV)
        if not token:
            raise ConfigError(f"Missing Tibber API token. Please set the {TOKEN_ENV} environment variable")
        return cls(url=url, token=token)


def post_graphql(http: requests.Session, url: str, query: str, variables: dict | None = None,
                 timeout: float = 15.0) -> dict:
    """
    Run one GraphQL request and return its ``data`` object.

    Blocking; call it from a worker thread.

    Raises:
        AuthError: HTTP 401/403, or a "not authorized" GraphQL error.
        GraphQLError: other GraphQL errors, or no data in the response.
        TransportError: network failure, timeout or HTTP error status.
    """
    try:
        response = http.post(url, json={"query": query, "variables": variables or {}}, timeout=timeout)
    except requests.Timeout as e:
        raise TransportError(f"Tibber API: Timeout after {timeout}s") from e
    except requests.RequestException as e:
        raise TransportError(f"Tibber API: Request failed: {e}") from e

    if response.status_code in (401, 403):
        raise AuthError(f"Tibber API token rejected (HTTP {response.status_code})")
    try:
        response.raise_for_status()
        body = response.json()
    except requests.HTTPError as e:
        raise TransportError(f"Tibber API: HTTP error {response.status_code}") from e
    except ValueError as e:
        raise GraphQLError(f"Tibber API: Response is not JSON: {e}") from e

    if not isinstance(body, dict):
        raise GraphQLError(f"Tibber API: Expected a JSON object, got {type(body).__name__}")

    errors = body.get("errors")
    if errors:
        first = errors[0] if isinstance(errors, list) else None
        message = str(first.get("message", "")) if isinstance(first, dict) else str(errors)
        if "not authorized" in message.lower():
            raise AuthError("Tibber API token is not valid")
        raise GraphQLError(message)

    data = body.get("data")
    if not data or not isinstance(data, dict):
        raise GraphQLError("Failed to get data from GraphQL response")
    return data


def _is_price(value) -> bool:
    """True for finite JSON numbers; Python's JSON parser lets NaN and Infinity through"""
    return not isinstance(value, bool) and isinstance(value, (int, float)) and math.isfinite(value)


def _object(value) -> dict:
    """GraphQL object or an empty dict for null and wrongly shaped values"""
    return value if isinstance(value, dict) else {}


@dataclass(frozen=True)
class PriceInfo:
    """
    Price for the current hour as reported by Tibber.

    Attributes:
        total: Total price including taxes.
        energy: Nord Pool spot price part.
        tax: Tax part (certificates, energy tax, VAT).
        starts_at: Start of the price period.
        currency: Currency code, e.g. "EUR".
        level: Raw API level label, e.g. "VERY_CHEAP".
    """
    total: float
    energy: float
    tax: float
    starts_at: datetime
    currency: str
    level: str | None

    @classmethod
    def from_api(cls, current: dict) -> "PriceInfo | None":
        """Build from ``priceInfo.current``. Returns None when a price part or the start time is unusable."""
        total = current.get("total")
        if not _is_price(total):
            return None

        energy, tax = current.get("energy"), current.get("tax")
        if any(part is not None and not _is_price(part) for part in (energy, tax)):
            return None
        if energy is not None and tax is None:
            tax = total - energy
        elif energy is None and tax is not None:
            energy = total - tax
        elif energy is None and tax is None:
            energy, tax = total, 0.0

        try:
            starts_at = datetime.fromisoformat(current.get("startsAt") or "")
        except (TypeError, ValueError):
            return None

        # Unknown labels end up as PriceLevel.NONE
        level = current.get("level")
        return cls(
            total=float(total),
            energy=float(energy),
            tax=float(tax),
            starts_at=starts_at,
            currency=str(current.get("currency") or ""),
            level=level if isinstance(level, str) else None,
        )


class Session:
    """
    One authenticated conversation with the Tibber API.

    Created fresh on every cycle and closed at the end of it; nothing
    is cached between cycles. Only a single home is supported.
    """

    def __init__(self, config: TibberConfig, http: requests.Session, user_id: str, home_id: str,
                 timeout: float = 15.0):
        self.config = config
        self.http = http
        self.user_id = user_id
        self.home_id = home_id
        self.timeout = timeout

    @staticmethod
    def connect(config: TibberConfig) -> requests.Session:
        """HTTP session carrying the bearer token on every request."""
        http = requests.Session()
        http.headers.update({
            "Authorization": f"Bearer {config.token}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT
        })
        return http

    @classmethod
    async def create(cls, config: TibberConfig, timeout: float = 15.0) -> "Session":
        """
        Authenticate and resolve the account's user and home.

        Raises:
            ProtocolAssumptionViolation: the account has zero or several
                homes, or no login.
        """
        http = cls.connect(config)
        try:
            data = await asyncio.to_thread(post_graphql, http, config.url, VIEWER_QUERY, None, timeout)
            viewer = _object(data.get("viewer"))
            homes = viewer.get("homes")
            if not isinstance(homes, list):
                homes = []

            homes = [home["id"] for home in map(_object, homes) if home.get("id")]
            if len(homes) != 1:
                raise ProtocolAssumptionViolation(f"Only one home is supported, account has {len(homes)}")

            user_id = viewer.get("login") or viewer.get("userId")
            if not user_id:
                raise ProtocolAssumptionViolation("Missing user id in viewer response")
        except Exception:
            http.close()
            raise

        logger.info(f"Tibber API: Session for {user_id}, home {homes[0]}")
        return cls(config, http, user_id=user_id, home_id=homes[0], timeout=timeout)

    async def get_current_price(self) -> PriceInfo:
        """
        Raises:
            NoPriceAvailable: no subscription, no price info or no usable current price.
        """
        data = await asyncio.to_thread(
            post_graphql, self.http, self.config.url, PRICE_QUERY, {"id": self.home_id}, self.timeout
        )
        home = _object(_object(data.get("viewer")).get("home"))

        subscription = _object(home.get("currentSubscription"))
        if not subscription:
            raise NoPriceAvailable("No subscription")
        price_info = _object(subscription.get("priceInfo"))
        if not price_info:
            raise NoPriceAvailable("No price info")
        current = _object(price_info.get("current"))
        if not current:
            raise NoPriceAvailable("No current price")

        price = PriceInfo.from_api(current)
        if price is None:
            raise NoPriceAvailable("Current price is incomplete")
        return price

    def close(self) -> None:
        self.http.close()


class TibberPriceSource:
    """
    Tibber current price source.

    Each fetch re-reads the token, opens a new session and asks for the
    current price. Only the price request is retried; session setup
    failures end the cycle right away.
    """

    name = "Tibber"

    def __init__(
        self,
        url: str = TIBBER_API_URL,
        max_attempts: int = 3,
        retry_delay: float = 60.0,
        timeout: float = 15.0
    ):
        """
        Initialize Tibber price source.

        Args:
            url: GraphQL HTTP endpoint
            max_attempts: Attempts for the price request per cycle (default: 3)
            retry_delay: Seconds between attempts (default: 60.0)
            timeout: HTTP request timeout in seconds (default: 15.0)
        """
        self.url = url
        self.max_attempts = max_attempts
        self.retry_delay = retry_delay
        self.timeout = timeout

    async def _current_price_with_retry(self, session: Session) -> PriceInfo:
        attempt = 0
        while True:
            attempt += 1
            try:
                return await session.get_current_price()
            except (TransportError, NoPriceAvailable) as e:
                if attempt >= self.max_attempts:
                    logger.error(f"Tibber API: Giving up after {attempt} attempts. Last error: {e}")
                    raise
                logger.warning(
                    f"Tibber API: {e}. "
                    f"Retrying in {self.retry_delay:.0f}s... ({attempt}/{self.max_attempts})"
                )
                await asyncio.sleep(self.retry_delay)

    async def fetch(self) -> PriceInformation:
        config = TibberConfig.from_env(self.url)
        session = await Session.create(config, timeout=self.timeout)
        try:
            price = await self._current_price_with_retry(session)
        finally:
            session.close()

        logger.info(f"Tibber API: Current price {price.total} {price.currency} ({price.level})")
        return PriceInformation(total=price.total, level=PriceLevel.from_api(price.level))
