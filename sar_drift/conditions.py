"""
Typed environmental condition values and the inputs that produce them.

Speeds are in knots. Directions are the heading the water or air moves
toward, in degrees (0=North, 90=East).
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import numpy as np


class Channel(str, Enum):
    """Independent environmental data channels."""

    WIND = "wind"
    CURRENT = "current"
    WAVE = "wave"
    TIDE = "tide"

    @property
    def payload_field(self) -> str:
        """Attribute name carrying this channel on a SourcePayload."""
        return "waves" if self is Channel.WAVE else self.value


@dataclass(frozen=True)
class Wind:
    speed: float
    direction: float


@dataclass(frozen=True)
class Current:
    speed: float
    direction: float


@dataclass(frozen=True)
class Waves:
    height: float     # feet
    period: float     # seconds
    direction: float = 180.0


@dataclass(frozen=True)
class Tide:
    height: float
    phase: str = "high"


ChannelValue = Union[Wind, Current, Waves, Tide]

_CHANNEL_TYPES = {
    Channel.WIND: Wind,
    Channel.CURRENT: Current,
    Channel.WAVE: Waves,
    Channel.TIDE: Tide,
}

DEFAULT_CONDITIONS: Dict[Channel, ChannelValue] = {
    Channel.WIND: Wind(speed=10.0, direction=180.0),
    Channel.CURRENT: Current(speed=0.5, direction=90.0),
    Channel.WAVE: Waves(height=2.0, period=6.0, direction=180.0),
    Channel.TIDE: Tide(height=0.0, phase="high"),
}


def channel_value_from_dict(channel: Channel, data: dict) -> ChannelValue:
    """
    Build a typed channel value from a plain mapping.

    Raises:
        ValueError: if a required field is missing
    """
    cls = _CHANNEL_TYPES[channel]
    try:
        if cls is Waves:
            return Waves(
                height=float(data["height"]),
                period=float(data["period"]),
                direction=float(data.get("direction", 180.0)),
            )
        if cls is Tide:
            return Tide(height=float(data["height"]), phase=str(data.get("phase", "high")))
        return cls(speed=float(data["speed"]), direction=float(data["direction"]))
    except KeyError as e:
        raise ValueError(f"{channel.value} data missing field {e.args[0]!r}: {data}")


@dataclass(frozen=True)
class SourcePayload:
    """Raw conditions reported by one source; any channel may be absent."""

    wind: Optional[Wind] = None
    current: Optional[Current] = None
    waves: Optional[Waves] = None
    tide: Optional[Tide] = None

    def get(self, channel: Channel) -> Optional[ChannelValue]:
        return getattr(self, channel.payload_field)

    @classmethod
    def from_dict(cls, data: dict) -> "SourcePayload":
        kwargs = {}
        for channel in Channel:
            raw = data.get(channel.payload_field)
            if raw is not None:
                kwargs[channel.payload_field] = channel_value_from_dict(channel, raw)
        return cls(**kwargs)


@dataclass(frozen=True)
class CoverageArea:
    """Circle an input applies to; radius in nautical miles."""

    lat: float
    lng: float
    radius_nm: float = 10.0


@dataclass(frozen=True)
class Source:
    name: str
    data: SourcePayload
    weight: float = 0.5
    location: Optional[CoverageArea] = None
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class OperatorOverride:
    channel: Channel
    data: ChannelValue
    location: Optional[CoverageArea] = None
    weight: float = 1.0
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class ChannelEnsemble:
    """All contributing sources for one channel, left unblended."""

    channel: Channel
    members: Tuple[Tuple[ChannelValue, float], ...]

    @property
    def count(self) -> int:
        return len(self.members)

    def select(self, rng: np.random.Generator) -> ChannelValue:
        """Weighted random pick of one member."""
        weights = np.array([w for _, w in self.members], dtype=float)
        total = weights.sum()
        if total <= 0:
            return self.members[int(rng.integers(len(self.members)))][0]
        idx = int(rng.choice(len(self.members), p=weights / total))
        return self.members[idx][0]


@dataclass(frozen=True)
class EnvironmentalConditions:
    """Conditions at one location and time."""

    wind: Union[Wind, ChannelEnsemble]
    current: Union[Current, ChannelEnsemble]
    waves: Union[Waves, ChannelEnsemble]
    tide: Union[Tide, ChannelEnsemble]

    def get(self, channel: Channel):
        return getattr(self, channel.payload_field)

    def resolved(self, rng: np.random.Generator) -> "EnvironmentalConditions":
        """Collapse any ensemble channel into a single sampled value."""
        if not any(isinstance(self.get(c), ChannelEnsemble) for c in Channel):
            return self
        values = {}
        for channel in Channel:
            value = self.get(channel)
            if isinstance(value, ChannelEnsemble):
                value = value.select(rng)
            values[channel.payload_field] = value
        return EnvironmentalConditions(**values)
