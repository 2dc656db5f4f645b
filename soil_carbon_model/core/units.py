"""
Table-driven unit conversion for carbon stock calculations.

Every unit is registered with the physical quantity it measures and its
factor to that quantity's base unit:

    concentration   base fraction (g/g)   g/kg, mg/g, %, fraction
    bulk_density    base g/cm3            g/cm3, Mg/m3, t/m3, kg/m3
    depth           base cm               cm, mm, m
    areal_stock     base g/cm2            g/cm2, g/m2, kg/m2, Mg/ha, t/ha
    area            base m2               m2, ha, km2

A conversion factor exists for any pair of units of the same quantity.
SOC fraction x bulk density (g/cm3) x thickness (cm) yields g/cm2, so the
stock factor for a declared input/output unit set is the product of the
three input factors divided by the output factor. For the usual field
units (g/kg, g/cm3, cm -> Mg/ha) this is 0.001 x 100 = 0.1.
"""

from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

import numpy as np

from .errors import UnitError


BASE_UNIT_TABLE: Mapping[str, Tuple[str, float]] = MappingProxyType({
    # SOC concentration
    'fraction': ('concentration', 1.0),
    'g/g': ('concentration', 1.0),
    'g/kg': ('concentration', 1e-3),
    'mg/g': ('concentration', 1e-3),
    '%': ('concentration', 1e-2),
    # Bulk density
    'g/cm3': ('bulk_density', 1.0),
    'Mg/m3': ('bulk_density', 1.0),
    't/m3': ('bulk_density', 1.0),
    'kg/m3': ('bulk_density', 1e-3),
    # Depth / thickness
    'cm': ('depth', 1.0),
    'mm': ('depth', 0.1),
    'm': ('depth', 100.0),
    # Areal carbon stock
    'g/cm2': ('areal_stock', 1.0),
    'g/m2': ('areal_stock', 1e-4),
    'kg/m2': ('areal_stock', 0.1),
    'Mg/ha': ('areal_stock', 0.01),
    't/ha': ('areal_stock', 0.01),
    # Area
    'm2': ('area', 1.0),
    'ha': ('area', 1e4),
    'km2': ('area', 1e6),
})

_SUPERSCRIPTS = str.maketrans({'³': '3', '²': '2'})


def normalize_unit(unit: str) -> str:
    """Normalize spelling variants ('g/cm³', ' Mg / ha ') to table keys."""
    if not isinstance(unit, str):
        raise UnitError(f"Unit must be a string, got {unit!r}")
    return unit.translate(_SUPERSCRIPTS).replace(' ', '')


class UnitConverter:
    """
    Resolve conversion factors from the unit table.

    Extra rows can be supplied as {unit: (quantity, factor_to_base)} to
    extend or override the built-in table.
    """

    def __init__(self, extra_units: Optional[Mapping[str, Tuple[str, float]]] = None):
        table: Dict[str, Tuple[str, float]] = dict(BASE_UNIT_TABLE)
        for unit, (quantity, factor) in (extra_units or {}).items():
            factor = float(factor)
            if not np.isfinite(factor) or factor <= 0:
                raise UnitError(f"Unit '{unit}' must have a positive finite factor, got {factor}")
            table[normalize_unit(unit)] = (str(quantity), factor)
        self._table = MappingProxyType(table)

    @property
    def units(self) -> List[str]:
        return sorted(self._table)

    def quantity(self, unit: str) -> str:
        return self._lookup(unit)[0]

    def _lookup(self, unit: str) -> Tuple[str, float]:
        key = normalize_unit(unit)
        if key not in self._table:
            raise UnitError(f"Unrecognized unit '{unit}'")
        return self._table[key]

    def factor(self, from_unit: str, to_unit: str) -> float:
        """
        Multiplicative factor converting values in `from_unit` to `to_unit`.

        Raises:
            UnitError: If either unit is unknown or the units measure
                different quantities.
        """
        from_quantity, from_factor = self._lookup(from_unit)
        to_quantity, to_factor = self._lookup(to_unit)
        if from_quantity != to_quantity:
            raise UnitError(
                f"Cannot convert '{from_unit}' ({from_quantity}) to '{to_unit}' ({to_quantity})"
            )
        return from_factor / to_factor

    def convert(self, values, from_unit: str, to_unit: str):
        """Convert a scalar or array; the factor is resolved before touching the data."""
        factor = self.factor(from_unit, to_unit)
        if isinstance(values, (list, tuple)):
            values = np.asarray(values, dtype=float)
        return values * factor

    def supported_pairs(self) -> List[Tuple[str, str]]:
        """All ordered (from, to) pairs with a known factor."""
        return [
            (a, b)
            for a in self.units
            for b in self.units
            if a != b and self._table[a][0] == self._table[b][0]
        ]

    def stock_factor(self, soc_unit: str, bd_unit: str, depth_unit: str, stock_unit: str) -> float:
        """
        Factor turning SOC x bulk density x thickness (declared units) into stock_unit.

        Raises:
            UnitError: If any declared unit is unknown or of the wrong quantity.
        """
        expected = (
            (soc_unit, 'concentration'),
            (bd_unit, 'bulk_density'),
            (depth_unit, 'depth'),
            (stock_unit, 'areal_stock'),
        )
        for unit, quantity in expected:
            if self.quantity(unit) != quantity:
                raise UnitError(f"Unit '{unit}' is not a {quantity} unit")

        return (
            self.factor(soc_unit, 'fraction')
            * self.factor(bd_unit, 'g/cm3')
            * self.factor(depth_unit, 'cm')
            * self.factor('g/cm2', stock_unit)
        )
