"""Ambient weather filtering per zone kind.

Given the weather outside every zone, ``filter_ambience`` returns what
the weather looks like inside a zone of a given ``ZoneKind``.  The
filter is a pure function: neither the outside state nor any zone
record is modified.

Typical usage::

    from scenezone.core.ambience import AmbientState, filter_ambience
    from scenezone.models.zone import ZoneKind

    inside = filter_ambience(ZoneKind.ENCLOSED, AmbientState())
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

from scenezone.models.zone import ZoneKind


class CloudType(Enum):
    """Cloud layer classification."""

    NONE = 0
    FOG = 1
    STRATUS = 2
    CUMULUS = 3
    CUMULONIMBUS = 4


class PrecipitationType(Enum):
    """Precipitation classification."""

    NONE = 0
    DRIZZLE = 1
    RAIN = 2
    DOWNPOUR = 3
    HAIL = 4
    SNOW = 5
    BLIZZARD = 6


@dataclass(frozen=True)
class Clouds:
    """Cloud layer.

    Attributes:
        coverage: Sky coverage in [0.0, 1.0].
        bottom: Cloud base altitude in metres.
        top: Cloud top altitude in metres.
        type: Dominant cloud type.
    """

    coverage: float = 0.0
    bottom: float = 0.0
    top: float = 0.0
    type: CloudType = CloudType.NONE


@dataclass(frozen=True)
class Precipitation:
    amount: float = 0.0
    type: PrecipitationType = PrecipitationType.NONE


@dataclass(frozen=True)
class Wind:
    speed: float = 0.0
    gusts: float = 0.0
    direction: float = 0.0


@dataclass(frozen=True)
class Temperature:
    """Temperatures in degrees Celsius."""

    air: float = 15.0
    ground: float = 12.0
    underground: float = 9.0
    perceived: float = 15.0


@dataclass(frozen=True)
class AmbientState:
    """Weather at one point of the scene.

    Attributes:
        clouds: Cloud layer.
        precipitation: Precipitation amount in [0.0, 1.0] and type.
        sun: Direct sunlight amount in [0.0, 1.0].
        wind: Wind speed, gusts (km/h) and direction (degrees).
        temp: Air, ground, underground and perceived temperature.
        humidity: Relative humidity in percent.
        condition: Zone kind the state was filtered for.
    """

    clouds: Clouds = field(default_factory=Clouds)
    precipitation: Precipitation = field(default_factory=Precipitation)
    sun: float = 1.0
    wind: Wind = field(default_factory=Wind)
    temp: Temperature = field(default_factory=Temperature)
    humidity: float = 50.0
    condition: ZoneKind = ZoneKind.OUTSIDE


def _saturation_vapor_pressure(temperature: float) -> float:
    """Magnus approximation in hPa."""
    return 6.11 * 10 ** ((7.5 * temperature) / (237.3 + temperature))


def relative_humidity_transfer(
    temperature: float,
    relative_humidity: float,
    new_temperature: float,
) -> float:
    """Relative humidity of air moved from one temperature to another.

    The absolute vapour content is kept; only the saturation pressure
    changes.

    Args:
        temperature: Original air temperature in degrees Celsius.
        relative_humidity: Original relative humidity in percent.
        new_temperature: Temperature the air is brought to.

    Returns:
        The new relative humidity in percent, rounded and clamped to
        ``[0, 100]``.
    """
    actual = relative_humidity / 100 * _saturation_vapor_pressure(temperature)
    new_humidity = actual / _saturation_vapor_pressure(new_temperature) * 100
    return float(np.clip(round(new_humidity), 0, 100))


def _sheltered_clouds(clouds: Clouds) -> Clouds:
    # Fog drifts under roofs; every other cloud layer is hidden.
    if clouds.type is CloudType.FOG:
        return clouds
    return Clouds()


def filter_ambience(kind: ZoneKind, outside: AmbientState) -> AmbientState:
    """Return the ambient state inside a zone of the given kind.

    Args:
        kind: Effect profile of the zone.
        outside: Ambient state outside every zone.

    Returns:
        A new ``AmbientState`` whose ``condition`` is *kind*.
    """
    if kind is ZoneKind.LIGHT_ROOF:
        return replace(
            outside,
            clouds=_sheltered_clouds(outside.clouds),
            precipitation=replace(
                outside.precipitation, amount=outside.precipitation.amount * 0.5
            ),
            sun=outside.sun * 0.5,
            condition=kind,
        )
    if kind is ZoneKind.ROOFED:
        return replace(
            outside,
            clouds=_sheltered_clouds(outside.clouds),
            precipitation=Precipitation(),
            sun=0.0,
            condition=kind,
        )
    if kind is ZoneKind.ENCLOSED:
        ground = outside.temp.ground
        return replace(
            outside,
            clouds=Clouds(),
            precipitation=Precipitation(),
            sun=0.0,
            wind=Wind(),
            temp=replace(outside.temp, air=ground, perceived=ground),
            humidity=relative_humidity_transfer(outside.temp.air, outside.humidity, ground),
            condition=kind,
        )
    if kind is ZoneKind.SUBTERRANEAN:
        underground = outside.temp.underground
        return replace(
            outside,
            clouds=Clouds(),
            precipitation=Precipitation(),
            sun=0.0,
            wind=Wind(),
            temp=replace(
                outside.temp, ground=underground, air=underground, perceived=underground
            ),
            humidity=relative_humidity_transfer(
                outside.temp.air, outside.humidity, underground
            ),
            condition=kind,
        )
    return replace(outside, condition=ZoneKind.OUTSIDE)
