from __future__ import annotations

"""
Deterministic state-transition function of the crafting process.

All randomness enters through Roll values; apply() never draws random
numbers itself, so any run can be replayed from its recorded rolls.
"""

import math
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .conditions import (
	cp_multiplier,
	duration_bonus,
	durability_multiplier,
	next_condition,
	progress_multiplier,
	quality_multiplier,
	success_bonus,
)
from .constants import (
	CONSUMED_BY_PROGRESS,
	CONSUMED_BY_QUALITY,
	DURABILITY_PER_STEP,
	DURABILITY_SPARING,
	EFFECT_PROGRESS_BONUS,
	EFFECT_QUALITY_BONUS,
	INNER_QUIET_BONUS_PER_STACK,
	MAX_INNER_QUIET,
)
from .errors import IllegalAction
from .models import (
	DEFAULT_ROLL,
	ActionDef,
	ActiveEffects,
	EffectKind,
	Outcome,
	ProcessConfiguration,
	ProcessState,
	Roll,
)


@dataclass(frozen=True)
class StepResult:
	state: Optional[ProcessState] = None
	error: Optional[IllegalAction] = None

	@property
	def ok(self) -> bool:
		return self.error is None


@dataclass
class SimulationTrace:
	"""
	States visited while replaying a sequence. states[0] is the start state;
	error is set when the replay stopped at an illegal action (at index
	error_index of the sequence).
	"""

	states: List[ProcessState] = field(default_factory=list)
	error: Optional[IllegalAction] = None
	error_index: Optional[int] = None

	@property
	def final_state(self) -> ProcessState:
		return self.states[-1]

	@property
	def steps_applied(self) -> int:
		return len(self.states) - 1

	@property
	def completed(self) -> bool:
		return self.final_state.is_completed


def initial_state(config: ProcessConfiguration) -> ProcessState:
	config.validate()
	return ProcessState(
		durability=config.max_durability,
		cp=config.max_cp,
		progress=0,
		quality=min(config.initial_quality, config.max_quality),
		step=0,
		effects=ActiveEffects(),
		combo=None,
		condition=config.initial_condition,
		outcome=Outcome.ONGOING,
	)


def action_cp_cost(action: ActionDef, multiplier: float = 1.0) -> int:
	return int(math.ceil(action.cp_cost * multiplier))


def progress_increase(
	config: ProcessConfiguration,
	effects: ActiveEffects,
	action: ActionDef,
	multiplier: float = 1.0,
) -> int:
	if action.progress_potency <= 0:
		return 0
	bonus = 1.0
	for kind, value in EFFECT_PROGRESS_BONUS.items():
		if effects.has(kind):
			bonus += value
	return int(math.floor(config.base_progress * action.progress_potency / 100.0 * bonus * multiplier))


def quality_increase(
	config: ProcessConfiguration,
	effects: ActiveEffects,
	action: ActionDef,
	multiplier: float = 1.0,
) -> int:
	stacks = effects.stacks(EffectKind.INNER_QUIET)
	potency = action.quality_potency + action.potency_per_stack * stacks
	if potency <= 0:
		return 0
	bonus = 1.0
	for kind, value in EFFECT_QUALITY_BONUS.items():
		if effects.has(kind):
			bonus += value
	inner_quiet = 1.0 + INNER_QUIET_BONUS_PER_STACK * stacks
	return int(math.floor(config.base_quality * potency / 100.0 * inner_quiet * bonus * multiplier))


def sparing_multiplier(effects: ActiveEffects) -> float:
	multiplier = 1.0
	for kind, value in DURABILITY_SPARING.items():
		if effects.has(kind):
			multiplier = min(multiplier, value)
	return multiplier


def durability_cost(action: ActionDef, effects: ActiveEffects, multiplier: float = 1.0) -> int:
	if action.durability_cost <= 0:
		return 0
	return int(math.ceil(action.durability_cost * multiplier * sparing_multiplier(effects)))


def next_effects(
	effects: ActiveEffects,
	action: ActionDef,
	success: bool,
	extra_duration: int = 0,
) -> ActiveEffects:
	"""
	Effect bookkeeping of one step: tick timed effects, consume one-shot
	effects the action used, update inner quiet stacks, then add the
	action's own effect with its full duration.
	"""
	stacks = effects.stacks(EffectKind.INNER_QUIET)
	updated = effects.ticked()
	if action.is_progress_action:
		updated = updated.without(*CONSUMED_BY_PROGRESS)
	if action.is_quality_action:
		updated = updated.without(*CONSUMED_BY_QUALITY)
	if action.consumes_stacks:
		updated = updated.without(EffectKind.INNER_QUIET)
	elif success and action.stack_gain > 0:
		updated = updated.with_effect(
			EffectKind.INNER_QUIET,
			duration=0,
			stacks=min(MAX_INNER_QUIET, stacks + action.stack_gain),
		)
	if action.grants_effect is not None:
		updated = updated.with_effect(action.grants_effect, duration=action.effect_duration + extra_duration)
	return updated


def check_preconditions(
	state: ProcessState,
	action: ActionDef,
	config: ProcessConfiguration,
) -> Optional[IllegalAction]:
	if not state.is_ongoing:
		return IllegalAction(action.name, "process already finished")
	if action.level > config.job_level:
		return IllegalAction(action.name, f"requires job level {action.level}")
	if action.first_step_only and state.step > 0:
		return IllegalAction(action.name, "only usable on the first step")
	if action.required_combo is not None and state.combo != action.required_combo:
		return IllegalAction(action.name, f"requires combo after {action.required_combo}")
	for kind in action.required_effects:
		if not state.effects.has(kind):
			return IllegalAction(action.name, f"requires effect {EffectKind.to_string(kind)}")
	for kind in action.forbidden_effects:
		if state.effects.has(kind):
			return IllegalAction(action.name, f"unusable under effect {EffectKind.to_string(kind)}")
	if action.required_conditions and state.condition not in action.required_conditions:
		return IllegalAction(action.name, "condition not met")
	if state.durability < action.min_durability:
		return IllegalAction(action.name, f"requires at least {action.min_durability} durability")
	if action_cp_cost(action, cp_multiplier(state.condition)) > state.cp:
		return IllegalAction(action.name, "insufficient CP")
	return None


def backload_allows(state: ProcessState, action: ActionDef) -> bool:
	"""
	Backloaded progress: once the process has gained progress only progress
	actions may follow. This restricts searches; apply() itself accepts any
	order.
	"""
	return state.progress == 0 or action.is_progress_action


def apply(
	state: ProcessState,
	action: ActionDef,
	config: ProcessConfiguration,
	roll: Roll = DEFAULT_ROLL,
) -> StepResult:
	error = check_preconditions(state, action, config)
	if error is not None:
		return StepResult(error=error)

	condition = state.condition
	cp = state.cp - action_cp_cost(action, cp_multiplier(condition))

	success = roll.action < action.success_rate + success_bonus(condition)
	progress = state.progress
	quality = state.quality
	if success:
		progress += progress_increase(config, state.effects, action, progress_multiplier(condition))
		quality = min(
			config.max_quality,
			quality + quality_increase(config, state.effects, action, quality_multiplier(condition)),
		)

	durability = state.durability - durability_cost(action, state.effects, durability_multiplier(condition))

	if durability > 0:
		for kind, amount in DURABILITY_PER_STEP.items():
			if state.effects.has(kind):
				durability = min(config.max_durability, durability + amount)
	if action.durability_restore > 0:
		durability = min(config.max_durability, durability + action.durability_restore)
	effects = next_effects(state.effects, action, success, duration_bonus(condition))

	condition = next_condition(condition, config.difficulty_tier, roll.condition)

	if progress >= config.max_progress:
		outcome = Outcome.COMPLETED
	elif durability <= 0:
		outcome = Outcome.FAILED
	else:
		outcome = Outcome.ONGOING

	return StepResult(
		state=ProcessState(
			durability=durability,
			cp=cp,
			progress=progress,
			quality=quality,
			step=state.step + 1,
			effects=effects,
			combo=action.combo_token,
			condition=condition,
			outcome=outcome,
		)
	)


def simulate(
	config: ProcessConfiguration,
	actions: Sequence[ActionDef],
	rolls: Optional[Sequence[Roll]] = None,
	state: Optional[ProcessState] = None,
) -> SimulationTrace:
	"""
	Replay a sequence from state (the initial state by default). Stops at
	the first illegal action or once the process is finished; missing rolls
	default to DEFAULT_ROLL.
	"""
	if state is None:
		state = initial_state(config)
	trace = SimulationTrace(states=[state])
	for index, action in enumerate(actions):
		if not state.is_ongoing:
			break
		roll = rolls[index] if rolls is not None and index < len(rolls) else DEFAULT_ROLL
		result = apply(state, action, config, roll)
		if not result.ok:
			trace.error = result.error
			trace.error_index = index
			break
		state = result.state
		trace.states.append(state)
	return trace


def format_macro(actions: Sequence[ActionDef]) -> List[str]:
	"""
	In-game macro lines for a solved sequence.
	"""
	return [f'/ac "{action.name}" <wait.{action.time_cost}>' for action in actions]
