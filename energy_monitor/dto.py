"""Data transfer objects exchanged over the bus - wire (JSON) contracts"""
import math
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


def _require_int(value: Any, key: str) -> int:
    # bool is an int subclass, but never a valid reading
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"'{key}' must be an integer, got {value!r}")
    return value


def _require_object(data: Any) -> dict:
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


class PriceLevel(Enum):
    """
    Price level relative to the trailing average price.

    Values are the wire tags. Python can't name a member ``None``,
    so the missing level is ``PriceLevel.NONE`` with tag ``"None"``.
    """
    VERY_CHEAP = "VeryCheap"
    CHEAP = "Cheap"
    NORMAL = "Normal"
    EXPENSIVE = "Expensive"
    VERY_EXPENSIVE = "VeryExpensive"
    NONE = "None"

    @classmethod
    def from_api(cls, label: str | None) -> "PriceLevel":
        """
        Normalize a Tibber API level label (e.g. "VERY_CHEAP").

        Unknown labels and missing levels map to NONE.
        """
        if not label:
            return cls.NONE
        try:
            level = cls[label]
        except KeyError:
            return cls.NONE
        return level


@dataclass(frozen=True)
class PriceInformation:
    """
    Current energy price.

    Attributes:
        total: Total price including taxes, in the account currency.
        level: Price level compared to recent prices.
    """
    total: float
    level: PriceLevel

    def __post_init__(self):
        if isinstance(self.total, bool) or not isinstance(self.total, (int, float)):
            raise ValueError(f"'total' must be a number, got {self.total!r}")
        if not math.isfinite(self.total):
            raise ValueError(f"'total' must be finite, got {self.total!r}")
        if not isinstance(self.level, PriceLevel):
            raise ValueError(f"'level' must be a PriceLevel, got {self.level!r}")
        object.__setattr__(self, "total", float(self.total))

    def to_dict(self) -> dict:
        return {"total": self.total, "level": self.level.value}

    @classmethod
    def from_dict(cls, data: Any) -> "PriceInformation":
        data = _require_object(data)
        if "total" not in data or "level" not in data:
            raise ValueError("expected keys 'total' and 'level'")
        try:
            level = PriceLevel(data["level"])
        except ValueError:
            raise ValueError(f"unknown price level {data['level']!r}") from None
        return cls(total=data["total"], level=level)


@dataclass(frozen=True)
class Consumption:
    """
    Current power draw measured by the smart meter.

    Attributes:
        watts: Power in Watts. Positive = consuming, negative = producing.
    """
    watts: int

    def __post_init__(self):
        _require_int(self.watts, "consumption")

    def to_dict(self) -> dict:
        return {"consumption": self.watts}

    @classmethod
    def from_dict(cls, data: Any) -> "Consumption":
        data = _require_object(data)
        if "consumption" not in data:
            raise ValueError("expected key 'consumption'")
        return cls(watts=_require_int(data["consumption"], "consumption"))


def _optional(wire: str, kind: type):
    return field(default=None, metadata={"wire": wire, "kind": kind})


@dataclass(frozen=True)
class DisplayDirective:
    """
    AWTRIX3 custom application payload.

    Only ``text`` is required. Unset fields are left out of the JSON
    object entirely; the display applies its own defaults for them.
    """
    text: str
    text_case: int | None = _optional("textCase", int)
    top_text: bool | None = _optional("topText", bool)
    text_offset: int | None = _optional("textOffset", int)
    center: bool | None = _optional("center", bool)
    color: str | None = _optional("color", str)
    gradient: str | None = _optional("gradient", str)
    blink_text: int | None = _optional("blinkText", int)
    fade_text: int | None = _optional("fadeText", int)
    background: str | None = _optional("background", str)
    rainbow: bool | None = _optional("rainbow", bool)
    icon: str | None = _optional("icon", str)
    push_icon: int | None = _optional("pushIcon", int)
    repeat: int | None = _optional("repeat", int)
    duration: int | None = _optional("duration", int)
    life_time: int | None = _optional("lifeTime", int)

    def to_dict(self) -> dict:
        payload = {"text": self.text}
        for f in fields(self)[1:]:
            value = getattr(self, f.name)
            if value is not None:
                payload[f.metadata["wire"]] = value
        return payload

    @classmethod
    def from_dict(cls, data: Any) -> "DisplayDirective":
        data = _require_object(data)
        text = data.get("text")
        if not isinstance(text, str):
            raise ValueError(f"'text' must be a string, got {text!r}")

        kwargs = {}
        for f in fields(cls)[1:]:
            wire = f.metadata["wire"]
            value = data.get(wire)
            if value is None:
                continue
            kind = f.metadata["kind"]
            if kind is int:
                value = _require_int(value, wire)
            elif not isinstance(value, kind):
                raise ValueError(f"'{wire}' must be {kind.__name__}, got {value!r}")
            kwargs[f.name] = value
        return cls(text=text, **kwargs)
