"""Physics module: constants and psychrometric conversions.

All functions use SI units unless otherwise noted.
"""

from cloudgrow_cfd.physics.constants import (
    C_MU,
    C_P_DRY_AIR,
    CFM_TO_M3S,
    DYNAMIC_VISCOSITY_AIR,
    LATENT_HEAT_VAPORIZATION,
    STANDARD_AIR_DENSITY,
    THERMAL_DIFFUSIVITY_AIR,
    cfm_to_m3s,
)
from cloudgrow_cfd.physics.psychrometrics import (
    humidity_ratio,
    relative_humidity,
    relative_humidity_field,
    saturation_pressure,
)

__all__ = [
    # Constants
    "C_MU",
    "C_P_DRY_AIR",
    "CFM_TO_M3S",
    "DYNAMIC_VISCOSITY_AIR",
    "LATENT_HEAT_VAPORIZATION",
    "STANDARD_AIR_DENSITY",
    "THERMAL_DIFFUSIVITY_AIR",
    "cfm_to_m3s",
    # Psychrometrics
    "saturation_pressure",
    "humidity_ratio",
    "relative_humidity",
    "relative_humidity_field",
]
