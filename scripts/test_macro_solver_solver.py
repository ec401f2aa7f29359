from __future__ import annotations

import csv
import dataclasses
import threading

import pytest

from conftest import (
	DEFAULT_CATALOG_RECIPES,
	brute_force_quality,
	build_ab_config,
	build_default_catalog_config,
	default_catalog_actions,
)
from macro_solver.db import (
	ActionCatalog,
	CrafterStats,
	RecipeStats,
	build_configuration,
	load_default_catalog,
)
from macro_solver.errors import InvalidConfiguration, RecipeInfeasible
from macro_solver.evolutionary import EvolutionSettings
from macro_solver.models import ActionDef, EffectKind, ProcessConfiguration
from macro_solver.simulator import apply, backload_allows, initial_state, simulate
from macro_solver.solver import MacroSolver, SolverSettings, Strategy


def test_scenario_optimum(ab_catalog):
	config = build_ab_config(60)
	improvements = []
	solver = MacroSolver(
		config,
		ab_catalog,
		SolverSettings(strategy=Strategy.EXHAUSTIVE),
		on_improvement=lambda actions, quality: improvements.append(quality),
	)
	result = solver.solve()

	assert result.feasible
	assert result.completed
	assert result.optimal
	assert result.strategy == Strategy.EXHAUSTIVE
	assert result.quality == 20
	assert sorted(result.action_names) == ["A"] * 5 + ["B"]
	assert result.terminal_state.durability >= 0
	assert result.terminal_state.cp == 200 - 30
	# the finish-only solution is reported first
	assert improvements[0] == 0
	assert improvements[-1] == 20
	assert improvements == sorted(improvements)


def test_scenario_infeasible(ab_catalog):
	config = build_ab_config(40)
	result = MacroSolver(config, ab_catalog).solve()

	assert not result.feasible
	assert result.actions == ()
	assert result.terminal_state == initial_state(config)

	with pytest.raises(RecipeInfeasible):
		MacroSolver(config, ab_catalog).solve(strict=True)


def test_replay_reproduces_result(synthetic_config, synthetic_catalog):
	result = MacroSolver(synthetic_config, synthetic_catalog).solve()
	trace = simulate(synthetic_config, result.actions, result.rolls)

	assert len(result.rolls) == len(result.actions)
	assert trace.error is None
	assert trace.final_state == result.terminal_state
	assert result.quality == brute_force_quality(synthetic_config, list(synthetic_catalog), initial_state(synthetic_config))


def test_solve_is_deterministic(synthetic_config, synthetic_catalog):
	first = MacroSolver(synthetic_config, synthetic_catalog).solve()
	second = MacroSolver(synthetic_config, synthetic_catalog).solve()

	assert first.actions == second.actions
	assert first.terminal_state == second.terminal_state


def test_parallel_solve(synthetic_config, synthetic_catalog):
	serial = MacroSolver(synthetic_config, synthetic_catalog).solve()
	parallel = MacroSolver(synthetic_config, synthetic_catalog, SolverSettings(workers=4)).solve()

	assert parallel.quality == serial.quality


def test_iterative_deepening_solve(synthetic_config, synthetic_catalog):
	settings = SolverSettings(strategy=Strategy.EXHAUSTIVE, iterative_deepening=True, depth_increment=1)
	result = MacroSolver(synthetic_config, synthetic_catalog, settings).solve()

	assert result.optimal
	assert result.quality == MacroSolver(synthetic_config, synthetic_catalog).solve().quality


def _assert_backloaded(config, actions):
	state = initial_state(config)
	for action in actions:
		assert backload_allows(state, action), action.name
		state = apply(state, action, config).state


@pytest.mark.parametrize("tier,condition,durability,cp", DEFAULT_CATALOG_RECIPES)
@pytest.mark.parametrize("workers", [1, 3])
def test_default_catalog_exhaustive_matches_brute_force(tier, condition, durability, cp, workers):
	config = build_default_catalog_config(tier, condition, durability, cp)
	settings = SolverSettings(strategy=Strategy.EXHAUSTIVE, workers=workers)
	result = MacroSolver.create_default(config, settings).solve()

	expected = brute_force_quality(config, default_catalog_actions(config), initial_state(config))
	assert result.feasible
	assert result.optimal
	assert result.quality == expected
	assert simulate(config, result.actions, result.rolls).final_state == result.terminal_state


def test_backloaded_scenario(ab_catalog):
	config = build_ab_config(60)
	settings = SolverSettings(strategy=Strategy.EXHAUSTIVE, backload_progress=True)
	result = MacroSolver(config, ab_catalog, settings).solve()

	assert result.optimal
	assert result.quality == 20
	assert result.action_names == ["B"] + ["A"] * 5


def test_backloaded_solve_matches_brute_force(synthetic_config, synthetic_catalog):
	settings = SolverSettings(strategy=Strategy.EXHAUSTIVE, backload_progress=True, workers=2)
	result = MacroSolver(synthetic_config, synthetic_catalog, settings).solve()

	expected = brute_force_quality(
		synthetic_config, list(synthetic_catalog), initial_state(synthetic_config), backload=True
	)
	assert result.quality == expected
	_assert_backloaded(synthetic_config, result.actions)


def test_backloaded_evolutionary_solve():
	config = ProcessConfiguration(
		max_progress=600, max_quality=3000, max_durability=40, max_cp=250, base_progress=100, base_quality=100
	)
	settings = SolverSettings(
		strategy=Strategy.EVOLUTIONARY,
		backload_progress=True,
		evolution=EvolutionSettings(population_size=16, generations=10, max_length=25, seed=4),
	)
	result = MacroSolver.create_default(config, settings).solve()

	assert result.completed
	_assert_backloaded(config, result.actions)


@pytest.mark.parametrize(
	"settings",
	[
		SolverSettings(strategy=Strategy.EXHAUSTIVE),
		SolverSettings(strategy=Strategy.EXHAUSTIVE, workers=3),
		SolverSettings(strategy=Strategy.EXHAUSTIVE, iterative_deepening=True, depth_increment=1),
		SolverSettings(
			strategy=Strategy.EVOLUTIONARY,
			evolution=EvolutionSettings(population_size=8, generations=5, seed=1),
		),
	],
)
def test_progress_reports(synthetic_config, synthetic_catalog, settings):
	reports = []
	MacroSolver(synthetic_config, synthetic_catalog, settings, on_progress=reports.append).solve()

	assert reports
	assert reports == sorted(reports)
	assert all(0.0 <= fraction <= 1.0 for fraction in reports)
	assert reports[-1] == 1.0


def test_evolution_reports_each_generation(synthetic_config, synthetic_catalog):
	reports = []
	settings = SolverSettings(
		strategy=Strategy.EVOLUTIONARY,
		evolution=EvolutionSettings(population_size=8, generations=4, seed=1),
	)
	MacroSolver(synthetic_config, synthetic_catalog, settings, on_progress=reports.append).solve()

	assert reports[:4] == [0.25, 0.5, 0.75, 1.0]


def test_probabilistic_actions_are_never_optimal(ab_catalog):
	hasty = ActionDef(name="Hasty", durability_cost=10, quality_potency=100, success_rate=0.6)
	catalog = ActionCatalog(actions={**{action.name: action for action in ab_catalog}, hasty.name: hasty})
	config = build_ab_config(60)

	settings = SolverSettings(strategy=Strategy.EXHAUSTIVE, allow_probabilistic_actions=True)
	result = MacroSolver(config, catalog, settings).solve()
	assert result.completed
	assert result.quality == 20
	assert not result.optimal

	safe = MacroSolver(config, catalog, SolverSettings(strategy=Strategy.EXHAUSTIVE)).solve()
	assert safe.optimal
	assert "Hasty" not in safe.action_names


def test_invalid_configuration_rejected(ab_catalog):
	config = dataclasses.replace(build_ab_config(60), max_progress=0)

	with pytest.raises(InvalidConfiguration):
		MacroSolver(config, ab_catalog).solve()


def test_invalid_settings():
	with pytest.raises(InvalidConfiguration):
		SolverSettings(strategy="greedy")
	with pytest.raises(InvalidConfiguration):
		SolverSettings(workers=0)


def test_auto_strategy_choice(ab_catalog):
	config = build_ab_config(60)
	small = MacroSolver(config, ab_catalog).solve()
	assert small.strategy == Strategy.EXHAUSTIVE

	settings = SolverSettings(exhaustive_limit=1, evolution=EvolutionSettings(population_size=8, generations=10, seed=5))
	large = MacroSolver(config, ab_catalog, settings).solve()
	assert large.strategy == Strategy.EVOLUTIONARY
	assert large.completed
	assert not large.optimal


def test_cancelled_before_start_returns_nothing(synthetic_config, synthetic_catalog):
	event = threading.Event()
	event.set()
	result = MacroSolver(synthetic_config, synthetic_catalog, cancel_event=event).solve()

	assert result.cancelled
	assert not result.feasible
	assert not result.completed


def test_cancel_keeps_finish_solution(synthetic_config, synthetic_catalog):
	solver = MacroSolver(synthetic_config, synthetic_catalog, SolverSettings(strategy=Strategy.EXHAUSTIVE))
	# cancel as soon as the feasibility gate reports its sequence
	solver.on_improvement = lambda actions, quality: solver.cancel()
	result = solver.solve()

	assert result.cancelled
	assert result.feasible
	assert result.completed
	assert not result.optimal


def test_time_budget(synthetic_config, synthetic_catalog):
	settings = SolverSettings(strategy=Strategy.EVOLUTIONARY, time_budget=0.0)
	result = MacroSolver(synthetic_config, synthetic_catalog, settings).solve()

	assert result.timed_out
	assert not result.feasible


def test_probabilistic_actions_excluded_by_default(sim_config):
	solver = MacroSolver.create_default(sim_config)
	names = {action.name for action in solver.search_actions()}
	assert "Hasty Touch" not in names
	assert "Rapid Synthesis" not in names

	solver = MacroSolver.create_default(sim_config, SolverSettings(allow_probabilistic_actions=True))
	assert "Hasty Touch" in {action.name for action in solver.search_actions()}


def test_default_catalog_evolutionary_solve():
	config = ProcessConfiguration(
		max_progress=600, max_quality=3000, max_durability=40, max_cp=250, base_progress=100, base_quality=100
	)
	settings = SolverSettings(
		strategy=Strategy.EVOLUTIONARY,
		evolution=EvolutionSettings(population_size=16, generations=10, max_length=25, seed=2),
	)
	result = MacroSolver.create_default(config, settings).solve()

	assert result.feasible
	assert result.completed
	assert result.quality > 0
	assert simulate(config, result.actions, result.rolls).final_state == result.terminal_state


def test_default_catalog_contents():
	catalog = load_default_catalog()

	assert len(catalog) == 26
	assert "Basic Synthesis" in catalog
	manipulation = catalog.get("Manipulation")
	assert manipulation.grants_effect == EffectKind.MANIPULATION
	assert manipulation.effect_duration == 8
	assert catalog.get("Hasty Touch").is_probabilistic
	assert catalog.get("Byregot's Blessing").required_effects == (EffectKind.INNER_QUIET,)
	with pytest.raises(KeyError):
		catalog.get("Final Appraisal")


def test_catalog_filters():
	catalog = load_default_catalog()
	low = catalog.filter_actions(level=10)

	assert {action.name for action in low} == {
		"Basic Synthesis",
		"Basic Touch",
		"Master's Mend",
		"Hasty Touch",
		"Rapid Synthesis",
	}
	assert "Hasty Touch" not in low.filter_actions(include_probabilistic=False)

	crafter = CrafterStats(craftsmanship=1000, control=1000, cp=300, job_level=90, manipulation=False)
	assert "Manipulation" not in catalog.for_crafter(crafter)
	assert "Prudent Synthesis" in catalog.for_crafter(crafter)


def test_catalog_from_csv(tmp_path):
	path = tmp_path / "actions.csv"
	columns = ["name", "level", "cp cost", "durability cost", "progress potency", "quality potency", "grants effect", "effect duration", "required conditions"]
	with path.open("w", newline="", encoding="utf-8") as f:
		writer = csv.DictWriter(f, fieldnames=columns)
		writer.writeheader()
		writer.writerow({"name": "Push", "level": "1", "durability cost": "10", "progress potency": "100"})
		writer.writerow({"name": "Polish", "level": "1", "cp cost": "30", "durability cost": "10", "quality potency": "100"})
		writer.writerow({"name": "Focus", "level": "3", "cp cost": "10", "grants effect": "Innovation", "effect duration": "3"})
		writer.writerow({"name": "Lucky", "level": "3", "quality potency": "300", "required conditions": "good;excellent"})
		writer.writerow({"name": ""})

	catalog = ActionCatalog.from_csv(path)

	assert len(catalog) == 4
	assert catalog.get("Focus").grants_effect == EffectKind.INNOVATION
	assert catalog.get("Push").time_cost == 3
	assert len(catalog.get("Lucky").required_conditions) == 2

	config = build_ab_config(60)
	result = MacroSolver(config, catalog, SolverSettings(strategy=Strategy.EXHAUSTIVE)).solve()
	assert result.completed
	# Focus before the single Polish that durability allows: 20 * 1.5
	assert result.quality == 30


def test_catalog_rejects_unknown_effect():
	with pytest.raises(ValueError):
		ActionCatalog.from_rows([{"name": "Odd", "grants effect": "haste"}])
	with pytest.raises(ValueError):
		ActionCatalog.from_rows([{"name": "Twice"}, {"name": "Twice"}])


def test_build_configuration():
	recipe = RecipeStats(recipe_level=560, progress=1000, quality=3000, durability=40, progress_div=130, quality_div=115, progress_mod=90, quality_mod=80)
	crafter = CrafterStats(craftsmanship=3500, control=3200, cp=280, job_level=90)
	config = build_configuration(recipe, crafter)

	# 3500 * 10 / 130 + 2 = 271.2 -> * 0.9; 3200 * 10 / 115 + 35 = 313.3 -> * 0.8
	assert config.base_progress == 244
	assert config.base_quality == 250
	assert config.max_cp == 280
	assert config.max_durability == 40

	# effective level above the recipe level: no modifiers
	low_recipe = dataclasses.replace(recipe, recipe_level=100)
	config = build_configuration(low_recipe, crafter)
	assert config.base_progress == 271
	assert config.base_quality == 313

	with pytest.raises(InvalidConfiguration):
		build_configuration(recipe, dataclasses.replace(crafter, job_level=0))
