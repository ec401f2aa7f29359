from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path

from macro_solver.db import ActionCatalog, CrafterStats, RecipeStats, build_configuration, load_default_catalog
from macro_solver.evolutionary import EvolutionSettings
from macro_solver.models import ProcessConfiguration
from macro_solver.simulator import format_macro
from macro_solver.solver import MacroSolver, SolverSettings, Strategy


def _load_configuration(path: Path) -> ProcessConfiguration:
	"""
	Either a full process configuration or {"recipe": {...}, "crafter": {...}}
	with the raw game stats.
	"""
	with path.open(encoding="utf-8") as f:
		data = json.load(f)
	if "recipe" in data and "crafter" in data:
		return build_configuration(
			RecipeStats(**data["recipe"]),
			CrafterStats(**data["crafter"]),
			difficulty_tier=data.get("difficulty_tier", "fixed"),
		)
	return ProcessConfiguration.from_dict(data)


def _demo_configuration() -> ProcessConfiguration:
	recipe = RecipeStats(recipe_level=560, progress=1000, quality=3000, durability=40, progress_div=130, quality_div=115, progress_mod=90, quality_mod=80)
	crafter = CrafterStats(craftsmanship=3500, control=3200, cp=280, job_level=90)
	return build_configuration(recipe, crafter)


def print_improvement(actions, quality: int) -> None:
	print(f"  quality {quality:>6} with {len(actions)} steps")


def main() -> None:
	parser = argparse.ArgumentParser(description="Search for a high-quality crafting macro.")
	parser.add_argument("--config", type=Path, help="JSON process configuration (default: built-in demo recipe)")
	parser.add_argument("--actions", type=Path, help="CSV action catalog (default: built-in catalog)")
	parser.add_argument("--strategy", choices=Strategy.ALL, default=Strategy.AUTO)
	parser.add_argument("--time-budget", type=float, default=30.0, help="seconds")
	parser.add_argument("--max-steps", type=int, default=None)
	parser.add_argument("--workers", type=int, default=1)
	parser.add_argument("--generations", type=int, default=200)
	parser.add_argument("--seed", type=int, default=None)
	parser.add_argument("--backload-progress", action="store_true", help="keep progress actions at the end")
	parser.add_argument("--progress", action="store_true", help="show progress bars")
	parser.add_argument("--verbose", action="store_true")
	args = parser.parse_args()

	logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING)

	config = _load_configuration(args.config) if args.config else _demo_configuration()
	catalog = ActionCatalog.from_csv(args.actions) if args.actions else load_default_catalog()
	settings = SolverSettings(
		strategy=args.strategy,
		time_budget=args.time_budget,
		max_steps=args.max_steps,
		workers=args.workers,
		evolution=EvolutionSettings(generations=args.generations, seed=args.seed),
		backload_progress=args.backload_progress,
		show_progress=args.progress,
	)

	print("Configuration:")
	for key, value in config.to_dict().items():
		print(f"  {key}: {value}")
	print(f"Actions available: {len(catalog.filter_actions(level=config.job_level))}")
	print()
	print("Improvements:")

	solver = MacroSolver(config, catalog, settings=settings, on_improvement=print_improvement)
	result = solver.solve()

	print()
	if not result.feasible:
		print("No action sequence completes this recipe.")
		return

	state = result.terminal_state
	print(f"Strategy: {result.strategy}{' (optimal)' if result.optimal else ''}")
	if result.timed_out:
		print("Time budget exhausted; showing the best sequence found.")
	print(f"Quality: {state.quality}/{config.max_quality}")
	print(f"Progress: {state.progress}/{config.max_progress}")
	print(f"Durability left: {state.durability}, CP left: {state.cp}")
	print(f"Steps: {len(result.actions)}")
	print()
	print("Macro:")
	for line in format_macro(result.actions):
		print(f"  {line}")


if __name__ == "__main__":
	main()
