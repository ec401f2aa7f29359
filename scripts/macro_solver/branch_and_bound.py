from __future__ import annotations

"""
Exact quality search: depth-first branch-and-bound over action sequences.

A node is expanded only if its quality bound beats the best solution found
so far and no already-explored state with the same key dominates it. All
nodes share one bound estimator, one transposition table and one best cell,
so parallel workers prune each other's subtrees.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from tqdm import tqdm

from .bounds import QualityUpperBound
from .models import DEFAULT_ROLL, ActionDef, ProcessConfiguration, ProcessState, Roll
from .simulator import apply, backload_allows
from .transposition import (
	PathArena,
	ProgressCallback,
	SearchLimits,
	SharedBest,
	TranspositionTable,
	state_key,
	state_value,
)

logger = logging.getLogger(__name__)

# (bound, state, path from the search root)
RootNode = Tuple[int, ProcessState, Tuple[ActionDef, ...]]


@dataclass
class SearchOutcome:
	"""
	- exhausted: every node was either expanded or pruned; the best solution
	  is optimal (up to the step limit when depth_limited is set).
	- depth_limited: some node was cut by the step limit rather than by its
	  bound.
	"""

	expanded: int = 0
	exhausted: bool = True
	stop_reason: Optional[str] = None
	depth_limited: bool = False

	def merge(self, other: SearchOutcome) -> SearchOutcome:
		return SearchOutcome(
			expanded=self.expanded + other.expanded,
			exhausted=self.exhausted and other.exhausted,
			stop_reason=self.stop_reason or other.stop_reason,
			depth_limited=self.depth_limited or other.depth_limited,
		)


class BranchAndBoundSearch:
	def __init__(
		self,
		config: ProcessConfiguration,
		actions: Sequence[ActionDef],
		bound: QualityUpperBound,
		best: SharedBest,
		table: Optional[TranspositionTable] = None,
		roll: Roll = DEFAULT_ROLL,
		limits: Optional[SearchLimits] = None,
		workers: int = 1,
		backload_progress: bool = False,
		on_progress: Optional[ProgressCallback] = None,
	) -> None:
		self.config = config
		self.actions = list(actions)
		self.bound = bound
		self.best = best
		self.table = table if table is not None else TranspositionTable()
		self.roll = roll
		self.limits = limits or SearchLimits()
		self.workers = max(1, workers)
		self.backload_progress = backload_progress
		self.on_progress = on_progress
		# progress of one search call maps onto this part of [0, 1]
		self._span = (0.0, 1.0)
		self._roots_total = 0
		self._roots_done = 0
		self._progress_lock = threading.Lock()

	def _root_finished(self) -> None:
		if self.on_progress is None:
			return
		with self._progress_lock:
			self._roots_done += 1
			low, high = self._span
			fraction = low + (high - low) * self._roots_done / max(1, self._roots_total)
			self.on_progress(min(fraction, high))

	def _expand(
		self,
		state: ProcessState,
		path: Callable[[], Tuple[ActionDef, ...]],
		max_steps: Optional[int],
	) -> Tuple[List[Tuple[int, ProcessState, ActionDef]], bool]:
		"""
		Apply every action to state. Completions are offered to the best cell
		directly; the surviving children come back with their bounds. The
		flag reports whether the step limit cut any child.
		"""
		children: List[Tuple[int, ProcessState, ActionDef]] = []
		depth_limited = False
		for action in self.actions:
			if self.backload_progress and not backload_allows(state, action):
				continue
			result = apply(state, action, self.config, self.roll)
			if not result.ok:
				continue
			child = result.state
			if child.is_failed:
				continue
			if child.is_completed:
				if child.quality >= self.best.quality:
					self.best.offer(child.quality, path() + (action,), child)
				continue
			child_bound = self.bound.estimate(child)
			if child_bound <= self.best.quality:
				continue
			if max_steps is not None and child.step >= max_steps:
				depth_limited = True
				continue
			children.append((child_bound, child, action))
		return children, depth_limited

	def _run(self, roots: Sequence[RootNode], max_steps: Optional[int], expanded: int = 0) -> SearchOutcome:
		arena = PathArena()
		stack: List[Tuple[int, ProcessState, int]] = []
		for node_bound, state, path in sorted(roots, key=lambda item: item[0]):
			stack.append((node_bound, state, arena.extend(path)))

		outcome = SearchOutcome(expanded=expanded)
		# roots sit at the bottom of the stack; popping one means the subtree
		# of the one before it is done
		roots_left = len(stack)
		while stack:
			stop_reason = self.limits.check(outcome.expanded)
			if stop_reason is not None:
				outcome.exhausted = False
				outcome.stop_reason = stop_reason
				return outcome
			node_bound, state, index = stack.pop()
			if len(stack) < roots_left:
				if roots_left < len(roots):
					self._root_finished()
				roots_left = len(stack)
			# the best solution may have improved since the node was pushed
			if node_bound <= self.best.quality:
				continue
			if not self.table.check_and_insert(state_key(state), state_value(state)):
				continue
			outcome.expanded += 1
			children, depth_limited = self._expand(state, lambda: arena.path(index), max_steps)
			outcome.depth_limited = outcome.depth_limited or depth_limited
			children.sort(key=lambda item: item[0])
			for child_bound, child, action in children:
				stack.append((child_bound, child, arena.push(action, index)))
		if roots:
			self._root_finished()
		return outcome

	def search(
		self,
		start: ProcessState,
		prefix: Sequence[ActionDef] = (),
		max_steps: Optional[int] = None,
	) -> SearchOutcome:
		"""
		Explore every continuation of start (reached through prefix). The
		first-action subtrees are the units of progress reporting; with more
		than one worker they are split round-robin over a thread pool.
		"""
		prefix = tuple(prefix)
		if not start.is_ongoing:
			if start.is_completed:
				self.best.offer(start.quality, prefix, start)
			return SearchOutcome()
		root_bound = self.bound.estimate(start)
		if root_bound <= self.best.quality:
			return SearchOutcome()
		stop_reason = self.limits.check()
		if stop_reason is not None:
			return SearchOutcome(exhausted=False, stop_reason=stop_reason)
		if not self.table.check_and_insert(state_key(start), state_value(start)):
			return SearchOutcome()

		children, depth_limited = self._expand(start, lambda: prefix, max_steps)
		children.sort(key=lambda item: item[0], reverse=True)
		buckets: List[List[RootNode]] = [[] for _ in range(self.workers)]
		for position, (child_bound, child, action) in enumerate(children):
			buckets[position % self.workers].append((child_bound, child, prefix + (action,)))
		with self._progress_lock:
			self._roots_total = len(children)
			self._roots_done = 0

		if not children:
			self._root_finished()
		if self.workers == 1:
			# the root expansion counts against the node budget
			return SearchOutcome(depth_limited=depth_limited).merge(self._run(buckets[0], max_steps, expanded=1))
		outcome = SearchOutcome(expanded=1, depth_limited=depth_limited)
		with ThreadPoolExecutor(max_workers=self.workers) as executor:
			futures = [executor.submit(self._run, bucket, max_steps) for bucket in buckets if bucket]
			for future in futures:
				outcome = outcome.merge(future.result())
		return outcome

	def deepen(
		self,
		start: ProcessState,
		first_depth: int,
		max_steps: Optional[int] = None,
		increment: int = 2,
		prefix: Sequence[ActionDef] = (),
		show_progress: bool = False,
	) -> SearchOutcome:
		"""
		Iterative deepening: repeat the search with a growing step limit until
		no promising node is cut by the limit or max_steps is reached. A
		stopped round ends the loop. The transposition table is cleared
		between rounds. Progress reports follow the depth towards max_steps.
		"""
		increment = max(1, increment)
		depth = max(first_depth, start.step + 1)
		if max_steps is not None:
			depth = min(depth, max_steps)
		total = SearchOutcome()
		reached = 0.0
		with tqdm(desc="deepening", unit="round", disable=not show_progress) as progress:
			while True:
				self.table.clear()
				if max_steps is not None:
					self._span = (reached, depth / max_steps)
				outcome = self.search(start, prefix, max_steps=depth)
				reached = self._span[1]
				total = SearchOutcome(
					expanded=total.expanded + outcome.expanded,
					exhausted=outcome.exhausted,
					stop_reason=outcome.stop_reason,
					depth_limited=outcome.depth_limited,
				)
				progress.update(1)
				progress.set_postfix(depth=depth, quality=self.best.quality)
				logger.debug(
					"Deepening round at depth %d: %d expansions, best quality %d",
					depth, outcome.expanded, self.best.quality,
				)
				if outcome.stop_reason is not None:
					break
				if not outcome.depth_limited or (max_steps is not None and depth >= max_steps):
					if self.on_progress is not None:
						self.on_progress(1.0)
					break
				depth += increment
				if max_steps is not None:
					depth = min(depth, max_steps)
		self._span = (0.0, 1.0)
		return total
