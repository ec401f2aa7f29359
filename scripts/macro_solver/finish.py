from __future__ import annotations

"""
Finish-only search: the shortest sequence that completes the process,
ignoring quality. Used as the feasibility gate of a solving session and as
its fallback answer.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .models import DEFAULT_ROLL, ActionDef, DifficultyTier, EffectKind, ProcessConfiguration, ProcessState, Roll
from .simulator import apply, backload_allows, initial_state
from .transposition import PathArena, SearchLimits, StopReason

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FinishResult:
	"""
	- feasible: a completing sequence was found.
	- proven: the answer is exact (False when the search was stopped early
	  or hit the step limit before deciding).
	"""

	feasible: bool
	proven: bool
	actions: Tuple[ActionDef, ...] = ()
	state: Optional[ProcessState] = None
	expanded: int = 0
	stop_reason: Optional[str] = None

	@property
	def steps(self) -> int:
		return len(self.actions)

	@property
	def cancelled(self) -> bool:
		return self.stop_reason == StopReason.CANCELLED


def _pure_quality(action: ActionDef) -> bool:
	return (
		action.is_quality_action
		and not action.is_progress_action
		and action.grants_effect is None
		and action.durability_restore == 0
	)


def finish_actions(actions: Sequence[ActionDef], advance_conditions: bool = False) -> List[ActionDef]:
	"""
	Actions relevant for reaching the progress target. Pure quality actions
	are left out unless a non-quality action depends on them through a combo
	or on the inner quiet stacks they build.

	With advance_conditions set (tiers whose condition changes every step)
	the cheapest pure quality action is kept as a way to wait for a better
	condition, unless a kept non-progress action already waits at no more
	durability and CP. Other waiting orders through quality actions are
	not explored, so a shorter finish that needs them can be missed.
	"""
	combos = {
		action.required_combo
		for action in actions
		if action.required_combo is not None and not _pure_quality(action)
	}
	needs_stacks = any(
		EffectKind.INNER_QUIET in action.required_effects for action in actions if not _pure_quality(action)
	)
	kept = [
		action
		for action in actions
		if not _pure_quality(action) or action.combo_token in combos or (needs_stacks and action.stack_gain > 0)
	]
	if advance_conditions:
		left_out = [action for action in actions if action not in kept]
		if left_out:
			cheapest = min(left_out, key=lambda action: (action.durability_cost, action.cp_cost))
			waiting = [action for action in kept if not action.is_progress_action]
			if not any(
				action.durability_cost <= cheapest.durability_cost and action.cp_cost <= cheapest.cp_cost
				for action in waiting
			):
				kept.append(cheapest)
	return kept


class FinishSearch:
	"""
	Breadth-first search by step count. States sharing effects, combo and
	condition are compared on (progress, durability, cp); a state no better
	than one seen in an earlier or the same layer is dropped.

	With backload_progress set, a state that has gained progress only
	continues with progress actions.
	"""

	def __init__(
		self,
		config: ProcessConfiguration,
		actions: Sequence[ActionDef],
		roll: Roll = DEFAULT_ROLL,
		max_steps: Optional[int] = None,
		limits: Optional[SearchLimits] = None,
		backload_progress: bool = False,
	) -> None:
		self.config = config
		self.actions = finish_actions(actions, advance_conditions=config.difficulty_tier != DifficultyTier.FIXED)
		self.roll = roll
		self.max_steps = max_steps
		self.limits = limits or SearchLimits()
		self.backload_progress = backload_progress

	def _key(self, state: ProcessState) -> Tuple[Any, ...]:
		# a backloaded state with progress has fewer continuations, so it
		# must not dominate one without
		locked = self.backload_progress and state.progress > 0
		return (state.effects.entries, state.combo, state.condition, locked)

	def _insert(self, front: Dict[Tuple[Any, ...], List[Tuple[int, int, int]]], state: ProcessState) -> bool:
		value = (state.progress, state.durability, state.cp)
		stored = front.setdefault(self._key(state), [])
		for other in stored:
			if all(a >= b for a, b in zip(other, value)):
				return False
		stored[:] = [other for other in stored if not all(a >= b for a, b in zip(value, other))]
		stored.append(value)
		return True

	def search(self, state: Optional[ProcessState] = None) -> FinishResult:
		start = state if state is not None else initial_state(self.config)
		if start.is_completed:
			return FinishResult(feasible=True, proven=True, state=start)
		if start.is_failed:
			return FinishResult(feasible=False, proven=True, state=start)

		arena = PathArena()
		front: Dict[Tuple[Any, ...], List[Tuple[int, int, int]]] = {}
		self._insert(front, start)
		layer: List[Tuple[ProcessState, int]] = [(start, PathArena.ROOT)]
		expanded = 0
		depth = 0
		while layer:
			if self.max_steps is not None and start.step + depth >= self.max_steps:
				logger.debug("Finish search hit the step limit at depth %d", depth)
				return FinishResult(feasible=False, proven=False, expanded=expanded)
			finished: List[Tuple[ProcessState, int]] = []
			next_layer: List[Tuple[ProcessState, int]] = []
			for current, index in layer:
				stop_reason = self.limits.check()
				if stop_reason is not None:
					return FinishResult(feasible=False, proven=False, expanded=expanded, stop_reason=stop_reason)
				expanded += 1
				for action in self.actions:
					if self.backload_progress and not backload_allows(current, action):
						continue
					result = apply(current, action, self.config, self.roll)
					if not result.ok or result.state.is_failed:
						continue
					child = result.state
					if child.is_completed:
						finished.append((child, arena.push(action, index)))
					elif self._insert(front, child):
						next_layer.append((child, arena.push(action, index)))
			if finished:
				best_state, best_index = max(finished, key=lambda item: (item[0].cp, item[0].durability))
				actions = arena.path(best_index)
				logger.debug("Finish search found a %d-step sequence after %d expansions", len(actions), expanded)
				return FinishResult(feasible=True, proven=True, actions=actions, state=best_state, expanded=expanded)
			layer = next_layer
			depth += 1
		logger.debug("Finish search proved the process infeasible after %d expansions", expanded)
		return FinishResult(feasible=False, proven=True, expanded=expanded)
