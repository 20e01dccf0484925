"""Physical and model constants for the micro-climate solver.

Reference: ASHRAE Handbook—Fundamentals (2021) for air and water properties,
Launder & Spalding (1974) for the k-epsilon model constants.

All values use SI units.
"""

from typing import Final

# =============================================================================
# Air Properties
# =============================================================================

#: Specific heat of dry air at constant pressure (J/(kg·K))
#: ASHRAE Handbook—Fundamentals, Chapter 1
C_P_DRY_AIR: Final[float] = 1006.0

#: Standard air density at 15°C, 101325 Pa (kg/m³)
STANDARD_AIR_DENSITY: Final[float] = 1.225

#: Dynamic viscosity of air at 20°C (Pa·s)
DYNAMIC_VISCOSITY_AIR: Final[float] = 1.8e-5

#: Thermal diffusivity of air at 20°C (m²/s)
THERMAL_DIFFUSIVITY_AIR: Final[float] = 2.2e-5

#: Binary diffusion coefficient of water vapour in air at 20°C (m²/s)
VAPOR_DIFFUSIVITY_AIR: Final[float] = 2.5e-5

#: Volumetric thermal expansion coefficient of air near 20°C (1/K)
#: Ideal gas: beta = 1 / T
THERMAL_EXPANSION_AIR: Final[float] = 1.0 / 293.15

#: Molecular weight of dry air (kg/kmol)
MOLECULAR_WEIGHT_DRY_AIR: Final[float] = 28.966

#: Molecular weight of water (kg/kmol)
MOLECULAR_WEIGHT_WATER: Final[float] = 18.015

#: Ratio of molecular weights (dimensionless)
EPSILON: Final[float] = MOLECULAR_WEIGHT_WATER / MOLECULAR_WEIGHT_DRY_AIR

# =============================================================================
# Water Properties
# =============================================================================

#: Latent heat of vaporization at canopy temperature (J/kg)
#: Used to convert transpiration into sensible cooling of the air
LATENT_HEAT_VAPORIZATION: Final[float] = 2.26e6

# =============================================================================
# Standard Conditions
# =============================================================================

#: Standard atmospheric pressure (Pa)
STANDARD_PRESSURE: Final[float] = 101325.0

#: Gravitational acceleration (m/s²)
GRAVITY: Final[float] = 9.80665

# =============================================================================
# Unit Conversions
# =============================================================================

#: Cubic feet per minute to cubic metres per second
CFM_TO_M3S: Final[float] = 0.00047194745

#: Seconds per hour
SECONDS_PER_HOUR: Final[float] = 3600.0

# =============================================================================
# Turbulence Model (standard k-epsilon)
# =============================================================================

#: Eddy-viscosity coefficient
C_MU: Final[float] = 0.09

#: Production coefficient of the dissipation equation
C_EPS_1: Final[float] = 1.44

#: Destruction coefficient of the dissipation equation
C_EPS_2: Final[float] = 1.92

#: Turbulent Prandtl number for k
SIGMA_K: Final[float] = 1.0

#: Turbulent Prandtl number for epsilon
SIGMA_EPS: Final[float] = 1.3

#: Turbulent Prandtl number for heat
PRANDTL_TURBULENT: Final[float] = 0.85

#: Turbulent Schmidt number for water vapour
SCHMIDT_TURBULENT: Final[float] = 0.7

#: von Karman constant
VON_KARMAN: Final[float] = 0.41

#: Mixing-length scale factor for inlet dissipation (l = 0.07 * D_h)
INLET_LENGTH_SCALE_FACTOR: Final[float] = 0.07

#: Lower bounds keeping k and epsilon strictly positive
K_MIN: Final[float] = 1e-10
EPS_MIN: Final[float] = 1e-12


def celsius_to_kelvin(t_celsius: float) -> float:
    """Convert temperature from Celsius to Kelvin."""
    return t_celsius + 273.15


def cfm_to_m3s(cfm: float) -> float:
    """Convert a volumetric flow rate from CFM to m³/s.

    Examples:
        >>> round(cfm_to_m3s(1000.0), 4)
        0.4719
    """
    return cfm * CFM_TO_M3S
