from __future__ import annotations

from typing import Dict, List, Optional, Set, Tuple

import numpy as np

from .constants import (
	CONDITION,
	CONDITION_CP_MULTIPLIER,
	CONDITION_DURABILITY_MULTIPLIER,
	CONDITION_DURATION_BONUS,
	CONDITION_PROGRESS_MULTIPLIER,
	CONDITION_QUALITY_MULTIPLIER,
	CONDITION_SUCCESS_BONUS,
	CONDITION_TRANSITIONS,
)
from .decision_tree import DecisionNode
from .models import Condition, Roll


def _build_nodes() -> Dict[Tuple[str, CONDITION], DecisionNode]:
	nodes: Dict[Tuple[str, CONDITION], DecisionNode] = {}
	for tier, rows in CONDITION_TRANSITIONS.items():
		for current, row in rows.items():
			nodes[(tier, current)] = DecisionNode(
				name=f"{Condition.to_string(current)}->{tier}",
				probabilities=np.array([prob for _, prob in row], dtype=float),
				outcomes=[int(cond) for cond, _ in row],
			)
	return nodes


_NODES: Dict[Tuple[str, CONDITION], DecisionNode] = _build_nodes()


def get_condition_node(current: CONDITION, difficulty_tier: str) -> DecisionNode:
	"""
	Transition node for the current condition. Conditions without their own
	row in the tier use the NORMAL row.
	"""
	node = _NODES.get((difficulty_tier, current))
	if node is None:
		node = _NODES.get((difficulty_tier, Condition.NORMAL))
	if node is None:
		raise ValueError(f"Unknown difficulty tier: {difficulty_tier}")
	return node


def next_condition(current: CONDITION, difficulty_tier: str, roll: float) -> CONDITION:
	return get_condition_node(current, difficulty_tier).select(roll)


def condition_distribution(current: CONDITION, difficulty_tier: str) -> Dict[CONDITION, float]:
	return get_condition_node(current, difficulty_tier).distribution()


def reachable_conditions(difficulty_tier: str, start: CONDITION) -> Set[CONDITION]:
	"""
	Every condition that can occur from start onwards, start included.
	"""
	seen: Set[CONDITION] = {start}
	frontier: List[CONDITION] = [start]
	while frontier:
		current = frontier.pop()
		for outcome, prob in condition_distribution(current, difficulty_tier).items():
			if prob > 0.0 and outcome not in seen:
				seen.add(outcome)
				frontier.append(outcome)
	return seen


def sample_rolls(count: int, rng: Optional[np.random.Generator] = None) -> List[Roll]:
	"""
	Draw a roll sequence. Recording the sequence makes a run replayable.
	"""
	if rng is None:
		rng = np.random.default_rng()
	values = rng.random(size=(count, 2))
	return [Roll(action=float(a), condition=float(c)) for a, c in values]


def quality_multiplier(condition: CONDITION) -> float:
	return CONDITION_QUALITY_MULTIPLIER.get(condition, 1.0)


def progress_multiplier(condition: CONDITION) -> float:
	return CONDITION_PROGRESS_MULTIPLIER.get(condition, 1.0)


def cp_multiplier(condition: CONDITION) -> float:
	return CONDITION_CP_MULTIPLIER.get(condition, 1.0)


def durability_multiplier(condition: CONDITION) -> float:
	return CONDITION_DURABILITY_MULTIPLIER.get(condition, 1.0)


def success_bonus(condition: CONDITION) -> float:
	return CONDITION_SUCCESS_BONUS.get(condition, 0.0)


def duration_bonus(condition: CONDITION) -> int:
	return CONDITION_DURATION_BONUS.get(condition, 0)
