#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""

Loading RAMSES outputs into a `CellTable` with osyris.

osyris returns the AMR mesh as flat per-cell arrays (level, cell size,
position vector, hydro variables). The loader turns positions into integer
coordinates on each cell's own level and renames the usual hydro variables to
the short names used by the projection ('rho', 'p', 'vx', 'vy', 'vz').

"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Tuple

import numpy as np
import osyris

from .cells import CellTable

logger = logging.getLogger("chhaya.loader")

# osyris mesh key -> cell table field
FIELD_ALIASES = {
    "density": "rho",
    "pressure": "p",
}

VECTOR_ALIASES = {
    "velocity": "v",
}

# code length -> unit, in units of unit_l (cm)
_LENGTH_UNITS = {
    "cm": 1.0,
    "m": 1.0e-2,
    "km": 1.0e-5,
    "au": 1.0 / 1.495978707e13,
    "pc": 1.0 / 3.0856775814913673e18,
    "kpc": 1.0 / 3.0856775814913673e21,
    "Mpc": 1.0 / 3.0856775814913673e24,
}

_SKIP_KEYS = ("level", "dx", "position", "cpu")


def _values(arr) -> np.ndarray:
    return np.asarray(getattr(arr, "values", arr), dtype=float)


def _extract_vector(vec_field) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Extract x, y, z components from a vector-like osyris field.

    Returns:
        tuple of 1D numpy arrays
    """
    try:
        return _values(vec_field.x), _values(vec_field.y), _values(vec_field.z)
    except AttributeError:
        pass
    arr = _values(vec_field)
    if arr.ndim != 2 or arr.shape[1] != 3:
        raise RuntimeError("Unable to extract vector components from osyris field; incompatible format.")
    return arr[:, 0], arr[:, 1], arr[:, 2]


def _is_vector(value) -> bool:
    return hasattr(value, "x") and hasattr(value, "y") and hasattr(value, "z")


class RamsesLoader:
    """
    Read RAMSES snapshots with osyris.

    Args:
        input_folder: directory containing the output_XXXXX folders.
        fields: mesh keys to load into the table (None = all of them).
    """

    def __init__(self, input_folder: str, fields: Optional[List[str]] = None):
        self.input_folder = input_folder
        self.requested_fields = fields

    def read_data(self, output_num: int):
        """Load one snapshot with osyris.RamsesDataset. Errors propagate to the caller."""
        logger.debug("loading output %s from '%s'", output_num, self.input_folder)
        return osyris.RamsesDataset(output_num, path=self.input_folder).load()

    @staticmethod
    def boxlen(data) -> float:
        meta = getattr(data, "meta", None) or {}
        if "boxlen" not in meta:
            logger.warning("No 'boxlen' in snapshot metadata; assuming 1.0")
            return 1.0
        return float(_values(meta["boxlen"]))

    @staticmethod
    def unit_scales(data) -> Dict[str, float]:
        """Length unit table: code units -> cm, pc, kpc, ... when 'unit_l' is known."""
        meta = getattr(data, "meta", None) or {}
        if "unit_l" not in meta:
            return {}
        unit_l = float(_values(meta["unit_l"]))
        return {name: unit_l * factor for name, factor in _LENGTH_UNITS.items()}

    def _wanted(self, key: str) -> bool:
        if self.requested_fields is None:
            return True
        return key in self.requested_fields or FIELD_ALIASES.get(key) in self.requested_fields

    def to_cell_table(self, data) -> CellTable:
        """
        Convert a loaded osyris dataset into a CellTable.

        Integer coordinates follow from ``floor(position / dx)``; since
        positions and sizes share their unit the result does not depend on
        the length unit osyris chose.
        """
        if "mesh" not in data:
            raise KeyError("dataset does not contain a 'mesh' group")
        mesh = data["mesh"]

        level = np.asarray(_values(mesh["level"]), dtype=np.int64)
        dx = _values(mesh["dx"])
        px, py, pz = _extract_vector(mesh["position"])

        fields: Dict[str, np.ndarray] = {}
        for key in mesh.keys():
            if key in _SKIP_KEYS or not self._wanted(key):
                continue
            value = mesh[key]
            if _is_vector(value):
                prefix = VECTOR_ALIASES.get(key, key + "_")
                for comp, arr in zip("xyz", _extract_vector(value)):
                    fields[f"{prefix}{comp}"] = arr
            else:
                fields[FIELD_ALIASES.get(key, key)] = _values(value)

        table = CellTable(
            level,
            np.floor(px / dx).astype(np.int64),
            np.floor(py / dx).astype(np.int64),
            np.floor(pz / dx).astype(np.int64),
            fields=fields,
            boxlen=self.boxlen(data),
            scale=self.unit_scales(data),
        )
        logger.info("Loaded %r", table)
        return table

    def load(self, output_num: int) -> CellTable:
        return self.to_cell_table(self.read_data(output_num))


def load_cell_table(input_folder: str, output_num: int, fields: Optional[List[str]] = None) -> CellTable:
    """Read RAMSES output `output_num` from `input_folder` into a CellTable."""
    return RamsesLoader(input_folder, fields=fields).load(output_num)


def list_fields_for_snapshot(input_folder: str, output_num: int) -> List[str]:
    """
    Load one snapshot and return the cell table field names it would provide.

    Returns an empty list when the snapshot cannot be read.
    """
    loader = RamsesLoader(input_folder)
    try:
        data = loader.read_data(output_num)
    except Exception as e:
        logger.error("Failed to load output %s for field listing: %s", output_num, e)
        return []

    if data is None or "mesh" not in data:
        logger.warning("No 'mesh' found in snapshot %s; cannot list fields.", output_num)
        return []

    mesh = data["mesh"]
    names: List[str] = []
    for key in mesh.keys():
        if key in _SKIP_KEYS:
            continue
        if _is_vector(mesh[key]):
            prefix = VECTOR_ALIASES.get(key, key + "_")
            names.extend(f"{prefix}{c}" for c in "xyz")
        else:
            names.append(FIELD_ALIASES.get(key, key))
    return names
