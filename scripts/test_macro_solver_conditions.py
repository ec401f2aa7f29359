from __future__ import annotations

import math

import numpy as np
import pytest

from macro_solver.conditions import (
	condition_distribution,
	get_condition_node,
	next_condition,
	reachable_conditions,
	sample_rolls,
)
from macro_solver.constants import CONDITION_TRANSITIONS
from macro_solver.decision_tree import DecisionNode
from macro_solver.models import Condition, DifficultyTier


def test_decision_node_normalizes():
	node = DecisionNode(name="test", probabilities=np.array([2.0, 1.0, 1.0]), outcomes=[0, 1, 2])

	assert math.isclose(float(node.probabilities.sum()), 1.0)
	assert node.select(0.0) == 0
	assert node.select(0.49) == 0
	assert node.select(0.5) == 1
	assert node.select(0.99) == 2


def test_decision_node_rejects_bad_input():
	with pytest.raises(ValueError):
		DecisionNode(name="empty", probabilities=np.array([]), outcomes=[])
	with pytest.raises(ValueError):
		DecisionNode(name="negative", probabilities=np.array([1.0, -0.5]), outcomes=[0, 1])
	with pytest.raises(ValueError):
		DecisionNode(name="mismatch", probabilities=np.array([1.0]), outcomes=[0, 1])


def test_fixed_tier_stays_normal():
	for roll in (0.0, 0.5, 0.999):
		assert next_condition(Condition.NORMAL, DifficultyTier.FIXED, roll) == Condition.NORMAL
	assert next_condition(Condition.GOOD, DifficultyTier.FIXED, 0.3) == Condition.NORMAL


def test_standard_tier_transitions():
	assert next_condition(Condition.NORMAL, DifficultyTier.STANDARD, 0.0) == Condition.NORMAL
	assert next_condition(Condition.NORMAL, DifficultyTier.STANDARD, 0.8) == Condition.GOOD
	assert next_condition(Condition.NORMAL, DifficultyTier.STANDARD, 0.97) == Condition.EXCELLENT
	assert next_condition(Condition.EXCELLENT, DifficultyTier.STANDARD, 0.1) == Condition.POOR
	assert next_condition(Condition.POOR, DifficultyTier.STANDARD, 0.9) == Condition.NORMAL


def test_same_roll_same_condition():
	rolls = [0.05, 0.41, 0.6, 0.93]
	first = [next_condition(Condition.NORMAL, DifficultyTier.EXPERT, roll) for roll in rolls]
	second = [next_condition(Condition.NORMAL, DifficultyTier.EXPERT, roll) for roll in rolls]

	assert first == second


def test_distributions_sum_to_one():
	for tier, rows in CONDITION_TRANSITIONS.items():
		for current in rows:
			distribution = condition_distribution(current, tier)
			assert math.isclose(sum(distribution.values()), 1.0)


def test_reachable_conditions():
	assert reachable_conditions(DifficultyTier.FIXED, Condition.NORMAL) == {Condition.NORMAL}
	assert reachable_conditions(DifficultyTier.STANDARD, Condition.NORMAL) == {
		Condition.NORMAL,
		Condition.GOOD,
		Condition.EXCELLENT,
		Condition.POOR,
	}
	expert = reachable_conditions(DifficultyTier.EXPERT, Condition.NORMAL)
	assert Condition.EXCELLENT not in expert
	assert {Condition.CENTERED, Condition.STURDY, Condition.PLIANT, Condition.MALLEABLE, Condition.PRIMED} <= expert


def test_unknown_tier():
	with pytest.raises(ValueError):
		get_condition_node(Condition.NORMAL, "legendary")


def test_sample_rolls_reproducible():
	first = sample_rolls(10, np.random.default_rng(7))
	second = sample_rolls(10, np.random.default_rng(7))

	assert first == second
	assert len(first) == 10
	assert all(0.0 <= roll.action < 1.0 and 0.0 <= roll.condition < 1.0 for roll in first)


def test_condition_strings():
	assert Condition.from_string("Malleable") == Condition.MALLEABLE
	assert Condition.to_string(Condition.PRIMED) == "primed"
	with pytest.raises(ValueError):
		Condition.from_string("stormy")
