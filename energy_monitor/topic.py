"""Typed topics - binds a bus topic name to exactly one payload type"""
import json
import logging
import math
from dataclasses import dataclass
from typing import Any, Generic, Iterable, Iterator, Mapping, Sequence, TypeVar

from energy_monitor.errors import DecodeError, TopicBindingError

logger = logging.getLogger(__name__)

M = TypeVar("M")


def _decode_number(data: Any) -> float:
    if isinstance(data, bool) or not isinstance(data, (int, float)):
        raise ValueError(f"expected a JSON number, got {data!r}")
    if not math.isfinite(data):
        raise ValueError(f"expected a finite number, got {data!r}")
    return float(data)


@dataclass(frozen=True)
class Topic(Generic[M]):
    """
    Handle for a bus topic carrying payloads of one type.

    The transport only moves bytes on topic strings. Going through a
    Topic for every publish and every decode is what makes the bus typed:
    the encoder refuses values of another type, the decoder refuses bytes
    that do not parse as the bound payload.

    Payload types are either ``float`` (bare JSON numbers, as published
    by OpenDTU) or classes with ``to_dict()`` / ``from_dict()``.

    Attributes:
        name: Literal topic string, e.g. "Pulse/consumption".
        payload_type: Type of the messages on this topic.
    """
    name: str
    payload_type: type

    def encode(self, message: M) -> bytes:
        """Serialize a payload to compact JSON bytes."""
        if self.payload_type is float:
            if isinstance(message, bool) or not isinstance(message, (int, float)):
                raise TypeError(f"{self.name}: expected a number, got {type(message).__name__}")
            data = float(message)
        else:
            if not isinstance(message, self.payload_type):
                raise TypeError(
                    f"{self.name}: expected {self.payload_type.__name__}, "
                    f"got {type(message).__name__}"
                )
            data = message.to_dict()
        return json.dumps(data, separators=(",", ":"), allow_nan=False).encode("utf-8")

    def decode(self, payload: bytes | bytearray | str) -> M:
        """
        Parse bytes received on this topic.

        Raises:
            DecodeError: payload is not JSON, is nested too deeply, or does
                not have the bound shape.
        """
        try:
            data = json.loads(payload)
            if self.payload_type is float:
                return _decode_number(data)
            return self.payload_type.from_dict(data)
        except ValueError as e:
            # JSONDecodeError and UnicodeDecodeError are ValueErrors too
            raise DecodeError(self.name, str(e)) from e
        except RecursionError as e:
            raise DecodeError(self.name, "payload is nested too deeply") from e

    def __str__(self) -> str:
        return self.name


class TopicRegistry:
    """
    Set of known topics, looked up by literal name.

    Consumers dispatch inbound messages through the registry. Names that
    are not registered are ignored rather than treated as errors.
    """

    def __init__(self, topics: Iterable[Topic] = ()):
        self._topics: dict[str, Topic] = {}
        for topic in topics:
            self.register(topic)

    def register(self, topic: Topic) -> None:
        existing = self._topics.get(topic.name)
        if existing is not None and existing.payload_type is not topic.payload_type:
            raise TopicBindingError(
                f"Topic '{topic.name}' is already bound to "
                f"{existing.payload_type.__name__}, cannot rebind to "
                f"{topic.payload_type.__name__}"
            )
        self._topics[topic.name] = topic

    def get(self, name: str) -> Topic | None:
        return self._topics.get(name)

    def names(self) -> list[str]:
        return list(self._topics)

    def __contains__(self, name: object) -> bool:
        return name in self._topics

    def __iter__(self) -> Iterator[Topic]:
        return iter(self._topics.values())

    def __len__(self) -> int:
        return len(self._topics)

    def decode(self, name: str, payload: bytes) -> tuple[Topic, Any] | None:
        """
        Decode a raw message by its topic name.

        Returns:
            (topic, message), or None when the name is not registered.

        Raises:
            DecodeError: the payload does not match the bound type.
        """
        topic = self._topics.get(name)
        if topic is None:
            return None
        return topic, topic.decode(payload)

    def verify(self, samples: Mapping[type, Sequence[Any]]) -> None:
        """
        Round-trip every binding against sample payloads.

        Run once at startup so a broken codec stops the process before
        anything is published.

        Raises:
            TopicBindingError: a payload type has no samples, or a sample
                does not survive encode -> decode unchanged.
        """
        for topic in self:
            examples = samples.get(topic.payload_type)
            if not examples:
                raise TopicBindingError(
                    f"No sample payloads for '{topic.name}' ({topic.payload_type.__name__})"
                )
            for example in examples:
                try:
                    decoded = topic.decode(topic.encode(example))
                except (DecodeError, TypeError, ValueError) as e:
                    raise TopicBindingError(f"'{topic.name}' failed to round-trip {example!r}: {e}") from e
                if decoded != example:
                    raise TopicBindingError(
                        f"'{topic.name}' round-trip changed {example!r} into {decoded!r}"
                    )
        logger.debug(f"Verified {len(self)} topic bindings")
