"""Psychrometric conversions for the humidity field.

Reference: ASHRAE Handbook-Fundamentals (2021), Chapter 1

The solver transports the humidity ratio W (kg water / kg dry air) because it
is conserved under mixing. Boundary and initial conditions are usually given
as relative humidity, and results are reported as relative humidity, so this
module converts between the two, both for scalars and for whole fields.
"""

from __future__ import annotations

import math
from typing import Final

import numpy as np
from numpy.typing import NDArray

from cloudgrow_cfd.physics.constants import EPSILON, STANDARD_PRESSURE

# Hyland-Wexler coefficients over liquid water (T in K, result in Pa)
# ASHRAE Handbook-Fundamentals (2021), Chapter 1, Equation 6
_C8: Final[float] = -5.8002206e3
_C9: Final[float] = 1.3914993
_C10: Final[float] = -4.8640239e-2
_C11: Final[float] = 4.1764768e-5
_C12: Final[float] = -1.4452093e-8
_C13: Final[float] = 6.5459673

#: Validity range of the correlation used here (C)
_T_MIN: Final[float] = 0.0
_T_MAX: Final[float] = 200.0


def _ln_saturation_pressure(t_k: NDArray[np.float64] | float) -> NDArray[np.float64] | float:
    return (
        _C8 / t_k
        + _C9
        + _C10 * t_k
        + _C11 * t_k**2
        + _C12 * t_k**3
        + _C13 * np.log(t_k)
    )


def saturation_pressure(t: float) -> float:
    """Saturation vapour pressure over water.

    Args:
        t: Dry-bulb temperature in C.

    Returns:
        Saturation pressure in Pa.

    Raises:
        ValueError: If the temperature is outside [0, 200] C.

    Examples:
        >>> round(saturation_pressure(20.0), 0)
        2339.0
    """
    if not _T_MIN <= t <= _T_MAX:
        msg = f"Temperature {t}C outside valid range [{_T_MIN}, {_T_MAX}]"
        raise ValueError(msg)
    return math.exp(_ln_saturation_pressure(t + 273.15))


def humidity_ratio(t: float, rh: float, p: float = STANDARD_PRESSURE) -> float:
    """Humidity ratio from temperature and relative humidity.

    ASHRAE Handbook-Fundamentals, Chapter 1, Equation 22.

    Args:
        t: Dry-bulb temperature in C.
        rh: Relative humidity in percent (0-100).
        p: Total pressure in Pa.

    Returns:
        Humidity ratio in kg_water/kg_dry_air.

    Raises:
        ValueError: If relative humidity is outside [0, 100].
    """
    if not 0 <= rh <= 100:
        msg = f"Relative humidity {rh}% must be in [0, 100]"
        raise ValueError(msg)

    p_w = (rh / 100.0) * saturation_pressure(t)
    if p - p_w <= 0:
        msg = f"Invalid pressure condition: p={p}, p_w={p_w}"
        raise ValueError(msg)
    return EPSILON * p_w / (p - p_w)


def relative_humidity(t: float, w: float, p: float = STANDARD_PRESSURE) -> float:
    """Relative humidity (percent, clipped to 0-100) from temperature and W."""
    p_w = p * w / (EPSILON + w)
    return min(100.0, max(0.0, 100.0 * p_w / saturation_pressure(t)))


def relative_humidity_field(
    t: NDArray[np.float64],
    w: NDArray[np.float64],
    p: float = STANDARD_PRESSURE,
) -> NDArray[np.float64]:
    """Vectorised :func:`relative_humidity` for whole cell fields.

    Temperatures are clipped to the correlation range instead of raising,
    since a single out-of-range cell should not spoil a report.
    """
    t_k = np.clip(t, _T_MIN, _T_MAX) + 273.15
    p_ws = np.exp(_ln_saturation_pressure(t_k))
    w = np.maximum(w, 0.0)
    p_w = p * w / (EPSILON + w)
    return np.clip(100.0 * p_w / p_ws, 0.0, 100.0)
