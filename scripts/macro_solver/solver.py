from __future__ import annotations

"""
Solving session: feasibility gate, strategy choice and the quality search,
returning the best sequence found together with its simulated outcome.
"""

import logging
import math
import threading
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from .bounds import QualityUpperBound
from .branch_and_bound import BranchAndBoundSearch
from .db import ActionCatalog, load_default_catalog
from .errors import InvalidConfiguration, RecipeInfeasible
from .evolutionary import EvolutionarySearch, EvolutionSettings
from .finish import FinishResult, FinishSearch
from .models import DEFAULT_ROLL, ActionDef, ProcessConfiguration, ProcessState, Roll
from .simulator import initial_state, simulate
from .transposition import (
	ImprovementCallback,
	ProgressCallback,
	SearchLimits,
	SharedBest,
	StopReason,
	TranspositionTable,
)

logger = logging.getLogger(__name__)

# Step limit of iterative deepening when the settings set none.
DEFAULT_DEEPENING_LIMIT: int = 100
# Rough expansion rate used to scale the exhaustive limit to a time budget.
NODES_PER_SECOND: float = 20000.0


class Strategy:
	AUTO = "auto"
	EXHAUSTIVE = "exhaustive"
	EVOLUTIONARY = "evolutionary"

	ALL = (AUTO, EXHAUSTIVE, EVOLUTIONARY)


@dataclass
class SolverSettings:
	strategy: str = Strategy.AUTO
	time_budget: Optional[float] = None
	node_budget: Optional[int] = None
	max_steps: Optional[int] = None
	iterative_deepening: bool = False
	depth_increment: int = 2
	workers: int = 1
	# auto picks branch-and-bound while the estimated state space stays below this
	exhaustive_limit: float = 1e7
	# searches plan against the single planning roll, so with probabilistic
	# actions a result is never reported optimal
	allow_probabilistic_actions: bool = False
	planning_roll: Roll = DEFAULT_ROLL
	# once progress was gained only progress actions may follow
	backload_progress: bool = False
	evolution: EvolutionSettings = field(default_factory=EvolutionSettings)
	table_shards: int = 16
	show_progress: bool = False

	def __post_init__(self) -> None:
		if self.strategy not in Strategy.ALL:
			raise InvalidConfiguration(f"Unknown strategy: {self.strategy}")
		if self.workers < 1:
			raise InvalidConfiguration("workers must be positive")
		if self.time_budget is not None and self.time_budget < 0:
			raise InvalidConfiguration("time_budget must not be negative")
		if self.max_steps is not None and self.max_steps <= 0:
			raise InvalidConfiguration("max_steps must be positive")
		if self.depth_increment <= 0:
			raise InvalidConfiguration("depth_increment must be positive")


@dataclass(frozen=True)
class SolverResult:
	"""
	- actions: best sequence found (empty when the process is infeasible).
	- terminal_state: state after replaying actions with rolls.
	- optimal: the sequence was proven optimal by an exhausted exact search.
	"""

	actions: Tuple[ActionDef, ...]
	terminal_state: ProcessState
	feasible: bool
	cancelled: bool = False
	timed_out: bool = False
	strategy: Optional[str] = None
	rolls: Tuple[Roll, ...] = ()
	optimal: bool = False
	stop_reason: Optional[str] = None

	@property
	def quality(self) -> int:
		return self.terminal_state.quality

	@property
	def completed(self) -> bool:
		return self.terminal_state.is_completed

	@property
	def action_names(self) -> List[str]:
		return [action.name for action in self.actions]


class MacroSolver:
	def __init__(
		self,
		config: ProcessConfiguration,
		catalog: ActionCatalog,
		settings: Optional[SolverSettings] = None,
		on_improvement: Optional[ImprovementCallback] = None,
		cancel_event: Optional[threading.Event] = None,
		on_progress: Optional[ProgressCallback] = None,
	) -> None:
		self.config = config
		self.catalog = catalog
		self.settings = settings or SolverSettings()
		self.on_improvement = on_improvement
		self.cancel_event = cancel_event if cancel_event is not None else threading.Event()
		self.on_progress = on_progress

	@classmethod
	def create_default(
		cls,
		config: ProcessConfiguration,
		settings: Optional[SolverSettings] = None,
		on_improvement: Optional[ImprovementCallback] = None,
		on_progress: Optional[ProgressCallback] = None,
	) -> MacroSolver:
		return cls(
			config=config,
			catalog=load_default_catalog(),
			settings=settings,
			on_improvement=on_improvement,
			on_progress=on_progress,
		)

	def cancel(self) -> None:
		self.cancel_event.set()

	def search_actions(self) -> List[ActionDef]:
		catalog = self.catalog.filter_actions(
			level=self.config.job_level,
			include_probabilistic=self.settings.allow_probabilistic_actions,
		)
		return list(catalog)

	def _report_improvement(self, actions: Tuple[ActionDef, ...], quality: int) -> None:
		logger.info("Found quality %d in %d steps", quality, len(actions))
		if self.on_improvement is not None:
			self.on_improvement(actions, quality)

	def estimate_state_space(self, finish: FinishResult, actions: Sequence[ActionDef]) -> float:
		"""
		log10 of a rough tree size: the branching factor raised to the finish
		length plus the number of quality actions the CP pool could pay for.
		"""
		if not actions:
			return 0.0
		quality_costs = [action.cp_cost for action in actions if action.is_quality_action and action.cp_cost > 0]
		if quality_costs:
			quality_steps = self.config.max_cp // min(quality_costs)
		else:
			quality_steps = self.settings.max_steps or finish.steps
		depth = finish.steps + quality_steps
		if self.settings.max_steps is not None:
			depth = min(depth, self.settings.max_steps)
		return depth * math.log10(max(len(actions), 1))

	def choose_strategy(self, finish: FinishResult, actions: Sequence[ActionDef]) -> str:
		if self.settings.strategy != Strategy.AUTO:
			return self.settings.strategy
		limit = self.settings.exhaustive_limit
		if self.settings.time_budget is not None:
			limit = min(limit, max(1.0, self.settings.time_budget * NODES_PER_SECOND))
		log_size = self.estimate_state_space(finish, actions)
		strategy = Strategy.EXHAUSTIVE if log_size <= math.log10(max(limit, 1.0)) else Strategy.EVOLUTIONARY
		logger.debug("Estimated state space 1e%.1f, using %s search", log_size, strategy)
		return strategy

	def _result(
		self,
		actions: Tuple[ActionDef, ...],
		start: ProcessState,
		feasible: bool,
		strategy: Optional[str],
		stop_reason: Optional[str],
		optimal: bool = False,
	) -> SolverResult:
		rolls = (self.settings.planning_roll,) * len(actions)
		terminal = simulate(self.config, actions, rolls, state=start).final_state if actions else start
		return SolverResult(
			actions=actions,
			terminal_state=terminal,
			feasible=feasible,
			cancelled=stop_reason == StopReason.CANCELLED,
			timed_out=stop_reason == StopReason.TIMED_OUT,
			strategy=strategy,
			rolls=rolls,
			optimal=optimal,
			stop_reason=stop_reason,
		)

	def solve(self, strict: bool = False) -> SolverResult:
		"""
		Run a full session. A proven infeasible process yields a result with
		feasible=False, or raises RecipeInfeasible when strict is set. A
		cancelled or timed-out session returns the best sequence found so far.
		"""
		settings = self.settings
		start = initial_state(self.config)
		actions = self.search_actions()
		limits = SearchLimits.from_budget(settings.time_budget, settings.node_budget, self.cancel_event)
		best = SharedBest(self._report_improvement)

		finish = FinishSearch(
			self.config,
			actions,
			roll=settings.planning_roll,
			max_steps=settings.max_steps,
			limits=SearchLimits(deadline=limits.deadline, cancel_event=self.cancel_event),
			backload_progress=settings.backload_progress,
		).search(start)
		if not finish.feasible:
			if finish.proven and strict:
				raise RecipeInfeasible("no action sequence completes the process")
			logger.info("No completing sequence found (proven: %s)", finish.proven)
			return self._result((), start, feasible=False, strategy=None, stop_reason=finish.stop_reason)
		best.offer(finish.state.quality, finish.actions, finish.state)

		strategy = self.choose_strategy(finish, actions)
		optimal = False
		if strategy == Strategy.EXHAUSTIVE:
			search = BranchAndBoundSearch(
				self.config,
				actions,
				bound=QualityUpperBound(self.config, actions, backload_progress=settings.backload_progress),
				best=best,
				table=TranspositionTable(settings.table_shards),
				roll=settings.planning_roll,
				limits=limits,
				workers=settings.workers,
				backload_progress=settings.backload_progress,
				on_progress=self.on_progress,
			)
			if settings.iterative_deepening:
				outcome = search.deepen(
					start,
					first_depth=finish.steps + settings.depth_increment,
					max_steps=settings.max_steps or DEFAULT_DEEPENING_LIMIT,
					increment=settings.depth_increment,
					show_progress=settings.show_progress,
				)
			else:
				outcome = search.search(start, max_steps=settings.max_steps)
			stop_reason = outcome.stop_reason
			optimal = outcome.exhausted and not (settings.iterative_deepening and outcome.depth_limited)
			optimal = optimal and not any(action.is_probabilistic for action in actions)
			logger.debug("Branch-and-bound expanded %d nodes", outcome.expanded)
		else:
			evolution = EvolutionarySearch(
				self.config,
				actions,
				best=best,
				settings=settings.evolution,
				roll=settings.planning_roll,
				limits=limits,
				workers=settings.workers,
				start=start,
				backload_progress=settings.backload_progress,
				on_progress=self.on_progress,
			)
			stop_reason = evolution.run(seeds=[finish.actions], show_progress=settings.show_progress).stop_reason

		if stop_reason is None and self.on_progress is not None:
			self.on_progress(1.0)
		solution = best.get()
		logger.info(
			"Session finished with %s search: quality %d in %d steps%s",
			strategy, solution.quality, solution.steps, f" ({stop_reason})" if stop_reason else "",
		)
		return self._result(solution.actions, start, feasible=True, strategy=strategy, stop_reason=stop_reason, optimal=optimal)
