from __future__ import annotations

from collections import deque
from typing import Any, Dict, List, Sequence, Tuple

import pytest

from macro_solver.db import ActionCatalog, load_default_catalog
from macro_solver.models import ActionDef, Condition, DifficultyTier, EffectKind, ProcessConfiguration, ProcessState
from macro_solver.simulator import apply, backload_allows, initial_state


def _catalog(*actions: ActionDef) -> ActionCatalog:
	return ActionCatalog(actions={action.name: action for action in actions})


def build_ab_catalog() -> ActionCatalog:
	"""
	A adds 20 progress, B adds 20 quality; both wear 10 durability.
	"""
	return _catalog(
		ActionDef(name="A", durability_cost=10, progress_potency=100),
		ActionDef(name="B", cp_cost=30, durability_cost=10, quality_potency=100),
	)


def build_ab_config(durability: int) -> ProcessConfiguration:
	return ProcessConfiguration(
		max_progress=100,
		max_quality=100,
		max_durability=durability,
		max_cp=200,
		base_progress=20,
		base_quality=20,
	)


def build_synthetic_catalog() -> ActionCatalog:
	"""
	Small catalog touching every bound relaxation: a restoring action, a
	durability-sparing effect, a quality buff and inner quiet stacks.
	"""
	return _catalog(
		ActionDef(name="Synth", durability_cost=10, progress_potency=100),
		ActionDef(name="Touch", cp_cost=10, durability_cost=10, quality_potency=100, stack_gain=1),
		ActionDef(name="Inno", cp_cost=10, grants_effect=EffectKind.INNOVATION, effect_duration=2),
		ActionDef(name="Mend", cp_cost=20, durability_restore=10),
		ActionDef(name="Spare", cp_cost=10, grants_effect=EffectKind.WASTE_NOT, effect_duration=2),
	)


def build_synthetic_config() -> ProcessConfiguration:
	return ProcessConfiguration(
		max_progress=20,
		max_quality=1000,
		max_durability=20,
		max_cp=40,
		base_progress=10,
		base_quality=10,
	)


def brute_force_quality(
	config: ProcessConfiguration,
	actions: Sequence[ActionDef],
	state: ProcessState,
	memo: Dict[Tuple[Any, ...], int] = None,
	backload: bool = False,
) -> int:
	"""
	Best final quality over every completing continuation of state, -1 when
	none exists. With backload set, continuations keep progress actions at
	the end.
	"""
	if memo is None:
		memo = {}
	if state.is_completed:
		return state.quality
	if not state.is_ongoing:
		return -1
	key = state.fingerprint()
	if key in memo:
		return memo[key]
	best = -1
	for action in actions:
		if backload and not backload_allows(state, action):
			continue
		result = apply(state, action, config)
		if result.ok:
			best = max(best, brute_force_quality(config, actions, result.state, memo, backload))
	memo[key] = best
	return best


def reachable_states(config: ProcessConfiguration, actions: Sequence[ActionDef]) -> List[ProcessState]:
	start = initial_state(config)
	seen = {start.fingerprint()}
	states = [start]
	queue = deque([start])
	while queue:
		state = queue.popleft()
		if not state.is_ongoing:
			continue
		for action in actions:
			result = apply(state, action, config)
			if not result.ok or result.state.fingerprint() in seen:
				continue
			seen.add(result.state.fingerprint())
			states.append(result.state)
			queue.append(result.state)
	return states


@pytest.fixture
def ab_catalog() -> ActionCatalog:
	return build_ab_catalog()


@pytest.fixture
def synthetic_catalog() -> ActionCatalog:
	return build_synthetic_catalog()


@pytest.fixture
def synthetic_config() -> ProcessConfiguration:
	return build_synthetic_config()


@pytest.fixture
def sim_config() -> ProcessConfiguration:
	return ProcessConfiguration(
		max_progress=1000,
		max_quality=5000,
		max_durability=80,
		max_cp=500,
		base_progress=100,
		base_quality=100,
	)


# (tier, initial condition, durability, cp) of small recipes over the
# default catalog, small enough for brute force
DEFAULT_CATALOG_RECIPES: List[Tuple[str, int, int, int]] = [
	(DifficultyTier.FIXED, Condition.NORMAL, 20, 60),
	(DifficultyTier.FIXED, Condition.NORMAL, 30, 90),
	(DifficultyTier.STANDARD, Condition.EXCELLENT, 20, 60),
	(DifficultyTier.STANDARD, Condition.EXCELLENT, 25, 80),
	(DifficultyTier.EXPERT, Condition.NORMAL, 20, 60),
	(DifficultyTier.EXPERT, Condition.NORMAL, 15, 120),
]


def build_default_catalog_config(tier: str, condition: int, durability: int, cp: int) -> ProcessConfiguration:
	return ProcessConfiguration(
		max_progress=250,
		max_quality=5000,
		max_durability=durability,
		max_cp=cp,
		base_progress=100,
		base_quality=100,
		difficulty_tier=tier,
		initial_condition=condition,
	)


def default_catalog_actions(config: ProcessConfiguration) -> List[ActionDef]:
	return list(load_default_catalog().filter_actions(level=config.job_level, include_probabilistic=False))
