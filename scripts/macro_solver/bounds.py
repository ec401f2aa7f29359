from __future__ import annotations

"""
Admissible upper bound on the quality reachable from a state.

The bound solves a relaxed version of the process exactly, by dynamic
programming over reduced states, and keeps for every reduced state the
Pareto front of (progress gained, quality gained) over relaxed sequences
whose last action adds progress. Relaxations:

- Durability is folded into CP at the cheapest CP-per-durability rate any
  restoring action or effect offers. Remaining restore-per-step and
  durability-sparing effects are refunded as CP and pure durability actions
  leave the relaxed action set. Without restoring actions durability stays
  an exact dimension.
- Durability sparing becomes an optional per-step CP surcharge.
- Conditions use their best-case multipliers over every condition reachable
  in the tier; probabilistic actions always succeed; condition and
  durability preconditions are ignored.
- All integer conversions round in the solver's favour.
- With backloaded progress, a relaxed sequence is restricted to progress
  actions only after an action certain to gain progress.
"""

import math
import threading
from functools import reduce
from typing import Dict, Hashable, List, Optional, Sequence, Tuple

import numpy as np

from .conditions import (
	cp_multiplier,
	duration_bonus,
	durability_multiplier,
	progress_multiplier,
	quality_multiplier,
	reachable_conditions,
)
from .constants import DURABILITY_EFFECTS, DURABILITY_PER_STEP, DURABILITY_SPARING, UNREACHABLE
from .models import ActionDef, ActiveEffects, ProcessConfiguration, ProcessState
from .simulator import next_effects, progress_increase, quality_increase, sparing_multiplier

# (budget, durability or None when folded, effects, combo, progress started)
ReducedKey = Tuple[int, Optional[int], Tuple[Tuple[int, int, int], ...], Optional[str], bool]
# (child key or None, progress gain, quality gain, may end the process here)
RelaxedChild = Tuple[Optional[ReducedKey], int, int, bool]

_EMPTY_FRONT = np.zeros((0, 2), dtype=np.int64)


def pareto_front(points: np.ndarray) -> np.ndarray:
	"""
	Non-dominated subset of (progress, quality) points, sorted by ascending
	progress (and therefore descending quality).
	"""
	if len(points) == 0:
		return _EMPTY_FRONT
	order = np.lexsort((-points[:, 1], -points[:, 0]))
	ordered = points[order]
	best_quality = np.maximum.accumulate(ordered[:, 1])
	keep = np.ones(len(ordered), dtype=bool)
	keep[1:] = ordered[1:, 1] > best_quality[:-1]
	return ordered[keep][::-1].copy()


def is_durability_action(action: ActionDef) -> bool:
	"""
	Actions whose only purpose is durability: restoring it or granting an
	effect that restores or spares it.
	"""
	if action.has_potency:
		return False
	return action.durability_restore > 0 or action.grants_effect in DURABILITY_EFFECTS


class QualityUpperBound:
	def __init__(
		self,
		config: ProcessConfiguration,
		actions: Sequence[ActionDef],
		backload_progress: bool = False,
	) -> None:
		self.config = config
		self.backload_progress = backload_progress
		conditions = reachable_conditions(config.difficulty_tier, config.initial_condition)
		# actions gated on conditions that never occur cannot be used at all
		self._actions = [
			action
			for action in actions
			if action.level <= config.job_level
			and (not action.required_conditions or conditions.intersection(action.required_conditions))
		]

		self._quality_multiplier = max(quality_multiplier(c) for c in conditions)
		self._progress_multiplier = max(progress_multiplier(c) for c in conditions)
		self._least_progress_multiplier = min(progress_multiplier(c) for c in conditions)
		self._cp_multiplier = min(cp_multiplier(c) for c in conditions)
		self._durability_multiplier = min(durability_multiplier(c) for c in conditions)
		self._duration_bonus = max(duration_bonus(c) for c in conditions)

		self._unit = self._durability_unit()
		self._rate = self._durability_rate()
		self._sparing_price = self._sparing_step_price()
		self._sparing_multiplier = min(DURABILITY_SPARING.values()) if DURABILITY_SPARING else 1.0

		if self.folded:
			self._search_actions = [a for a in self._actions if not is_durability_action(a)]
			self._skipped_combos = {a.combo_token for a in self._actions if is_durability_action(a)}
		else:
			self._search_actions = list(self._actions)
			self._skipped_combos = set()

		self._degenerate = any(self._is_free(action) for action in self._search_actions)
		self._fronts: Dict[Hashable, np.ndarray] = {}
		self._lock = threading.Lock()

	@property
	def folded(self) -> bool:
		return self._rate is not None

	@property
	def solved_states(self) -> int:
		return len(self._fronts)

	# ---------- relaxation parameters ----------

	def _durability_unit(self) -> int:
		amounts = [a.durability_cost for a in self._actions if a.durability_cost > 0]
		amounts += [a.durability_restore for a in self._actions if a.durability_restore > 0]
		amounts += [amount for amount in DURABILITY_PER_STEP.values() if amount > 0]
		unit = reduce(math.gcd, amounts, 0)
		return unit if unit > 0 else 1

	def _durability_rate(self) -> Optional[int]:
		"""
		CP value of one durability unit, rounded down. None when no action
		can restore durability.
		"""
		candidates: List[int] = []
		for action in self._actions:
			pure = not action.has_potency
			if action.durability_restore > 0:
				if not pure:
					candidates.append(0)
				else:
					candidates.append(int(math.floor(
						action.cp_cost * self._cp_multiplier * self._unit / action.durability_restore
					)))
			per_step = DURABILITY_PER_STEP.get(action.grants_effect, 0) if action.grants_effect is not None else 0
			turns = action.effect_duration + self._duration_bonus
			if per_step > 0 and turns > 0:
				if not pure:
					candidates.append(0)
				else:
					candidates.append(int(math.floor(
						action.cp_cost * self._cp_multiplier * self._unit / (turns * per_step)
					)))
		if not candidates:
			return None
		return min(candidates)

	def _sparing_step_price(self) -> Optional[int]:
		candidates: List[int] = []
		for action in self._actions:
			if action.grants_effect not in DURABILITY_SPARING:
				continue
			turns = action.effect_duration + self._duration_bonus
			if turns <= 0:
				continue
			if action.has_potency:
				candidates.append(0)
			else:
				candidates.append(int(math.floor(action.cp_cost * self._cp_multiplier / turns)))
		if not candidates:
			return None
		return min(candidates)

	def _always_progresses(self, action: ActionDef, effects: ActiveEffects) -> bool:
		"""
		Whether the real process is certain to gain progress from action, so
		that a backloaded search is certain to be restricted afterwards.
		"""
		if action.success_rate < 1.0:
			return False
		return progress_increase(self.config, effects, action, self._least_progress_multiplier) > 0

	def _cp_cost(self, action: ActionDef) -> int:
		return int(math.floor(action.cp_cost * self._cp_multiplier))

	def _folded_durability_charge(self, action: ActionDef) -> int:
		if action.durability_cost <= 0:
			return 0
		cost = action.durability_cost * self._durability_multiplier
		full = int(math.floor(cost / self._unit)) * self._rate
		if self._sparing_price is None:
			return full
		spared = self._sparing_price + int(math.floor(cost * self._sparing_multiplier / self._unit)) * self._rate
		return min(full, spared)

	def _exact_durability_cost(self, action: ActionDef, effects: ActiveEffects) -> int:
		if action.durability_cost <= 0:
			return 0
		return int(math.floor(action.durability_cost * self._durability_multiplier * sparing_multiplier(effects)))

	def _is_free(self, action: ActionDef) -> bool:
		if self.folded:
			return self._cp_cost(action) + self._folded_durability_charge(action) <= 0
		spared = action.durability_cost * self._durability_multiplier * self._sparing_multiplier
		return self._cp_cost(action) <= 0 and int(math.floor(spared)) <= 0

	# ---------- reduced states ----------

	def reduce_state(self, state: ProcessState) -> ReducedKey:
		started = self.backload_progress and state.progress > 0
		effects = state.effects
		if not self.folded:
			return (state.cp, state.durability, effects.entries, state.combo, started)
		budget = state.cp + (state.durability // self._unit) * self._rate
		for kind, amount in DURABILITY_PER_STEP.items():
			budget += effects.duration(kind) * (amount // self._unit) * self._rate
		for kind in DURABILITY_SPARING:
			budget += effects.duration(kind) * (self._sparing_price or 0)
		effects = effects.without(*DURABILITY_EFFECTS)
		return (budget, None, effects.entries, state.combo, started)

	def _usable(self, action: ActionDef, effects: ActiveEffects, combo: Optional[str]) -> bool:
		if action.first_step_only and combo is not None:
			return False
		if action.required_combo is not None and combo != action.required_combo:
			if action.required_combo not in self._skipped_combos:
				return False
		for kind in action.required_effects:
			if not effects.has(kind) and not (self.folded and kind in DURABILITY_EFFECTS):
				return False
		for kind in action.forbidden_effects:
			if effects.has(kind):
				return False
		return True

	def _expand(self, key: ReducedKey) -> List[RelaxedChild]:
		budget, durability, entries, combo, started = key
		effects = ActiveEffects(entries=entries)
		children: List[RelaxedChild] = []
		for action in self._search_actions:
			if started and not action.is_progress_action:
				continue
			if not self._usable(action, effects, combo):
				continue
			cp_cost = self._cp_cost(action)
			if budget - cp_cost < 0:
				continue
			progress = progress_increase(self.config, effects, action, self._progress_multiplier)
			quality = quality_increase(self.config, effects, action, self._quality_multiplier)
			child_effects = next_effects(effects, action, True, self._duration_bonus)
			child_started = started or (self.backload_progress and self._always_progresses(action, effects))

			if self.folded:
				child_effects = child_effects.without(*DURABILITY_EFFECTS)
				remaining = budget - cp_cost - self._folded_durability_charge(action)
				child_key: Optional[ReducedKey] = None
				if remaining >= 0:
					child_key = (remaining, None, child_effects.entries, action.combo_token, child_started)
			else:
				remaining_durability = durability - self._exact_durability_cost(action, effects)
				child_key = None
				if remaining_durability > 0:
					child_key = (budget - cp_cost, remaining_durability, child_effects.entries, action.combo_token, child_started)

			children.append((child_key, progress, quality, progress > 0))
		return children

	def _merge(self, children: List[RelaxedChild]) -> np.ndarray:
		parts: List[np.ndarray] = []
		for child_key, progress, quality, can_finish in children:
			if child_key is not None:
				front = self._fronts[child_key]
				if len(front):
					parts.append(front + np.array([progress, quality], dtype=np.int64))
			if can_finish:
				parts.append(np.array([[progress, quality]], dtype=np.int64))
		if not parts:
			return _EMPTY_FRONT
		points = np.concatenate(parts)
		np.minimum(points[:, 0], self.config.max_progress, out=points[:, 0])
		np.minimum(points[:, 1], self.config.max_quality, out=points[:, 1])
		return pareto_front(points)

	def _solve(self, root: ReducedKey) -> np.ndarray:
		"""
		Post-order evaluation with an explicit stack. Every relaxed action
		strictly consumes budget, so the reduced states form a DAG.
		"""
		stack: List[ReducedKey] = [root]
		expansions: Dict[ReducedKey, List[RelaxedChild]] = {}
		while stack:
			key = stack[-1]
			if key in self._fronts:
				stack.pop()
				continue
			children = expansions.get(key)
			if children is None:
				children = self._expand(key)
				expansions[key] = children
			pending = [child for child, _, _, _ in children if child is not None and child not in self._fronts]
			if pending:
				stack.extend(pending)
				continue
			self._fronts[key] = self._merge(children)
			del expansions[key]
			stack.pop()
		return self._fronts[root]

	# ---------- public interface ----------

	def estimate(self, state: ProcessState) -> int:
		"""
		Upper bound on the final quality of any completing continuation of
		state, or UNREACHABLE when even the relaxation cannot complete.
		"""
		if state.is_completed:
			return state.quality
		if state.is_failed:
			return UNREACHABLE
		if self._degenerate:
			return self.config.max_quality
		missing_progress = self.config.max_progress - state.progress
		key = self.reduce_state(state)
		with self._lock:
			front = self._solve(key)
		index = int(np.searchsorted(front[:, 0], missing_progress, side="left"))
		if index >= len(front):
			return UNREACHABLE
		return int(min(self.config.max_quality, state.quality + int(front[index, 1])))


def estimate_bound(state: ProcessState, config: ProcessConfiguration, actions: Sequence[ActionDef]) -> int:
	"""
	One-off bound. Searches should keep a QualityUpperBound instance so the
	solved fronts are shared across calls.
	"""
	return QualityUpperBound(config, actions).estimate(state)
