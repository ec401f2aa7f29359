from __future__ import annotations

"""
Lightweight package initializer for the crafting macro solver.

This module keeps imports minimal and exposes submodules and a couple of
high-level entry points. For most functionality, prefer importing directly
from the specific submodule (e.g. `macro_solver.simulator`, `macro_solver.db`).
"""

from . import models, db, conditions, simulator, bounds, constants
from .db import load_default_catalog
from .solver import MacroSolver, SolverSettings

__all__ = [
	"models",
	"db",
	"conditions",
	"simulator",
	"bounds",
	"constants",
	"load_default_catalog",
	"MacroSolver",
	"SolverSettings",
]
