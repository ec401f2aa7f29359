from __future__ import annotations

"""
Shared structures of a search session: the sharded transposition table, the
monotonic best-result cell, the path arena and the stop conditions.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Sequence, Tuple

from .models import ActionDef, ProcessState

ImprovementCallback = Callable[[Tuple[ActionDef, ...], int], None]
# fraction of the session completed, in [0, 1]
ProgressCallback = Callable[[float], None]


def _dominates(a: Tuple[int, ...], b: Tuple[int, ...]) -> bool:
	return all(x >= y for x, y in zip(a, b))


class TranspositionTable:
	"""
	Maps state keys to the Pareto set of values already explored under that
	key. A value dominated by a stored one needs no exploration of its own.

	Keys are spread over shards, each guarded by its own lock, so that
	check_and_insert is atomic: for any key/value at most one caller gets
	True.
	"""

	def __init__(self, num_shards: int = 16) -> None:
		if num_shards <= 0:
			raise ValueError("num_shards must be positive")
		self._shards: List[Dict[Hashable, List[Tuple[int, ...]]]] = [{} for _ in range(num_shards)]
		self._locks = [threading.Lock() for _ in range(num_shards)]

	def _shard(self, key: Hashable) -> int:
		return hash(key) % len(self._shards)

	def check_and_insert(self, key: Hashable, value: Tuple[int, ...]) -> bool:
		"""
		Record value under key unless a stored value dominates it. Returns
		True when the caller should explore the state.
		"""
		index = self._shard(key)
		with self._locks[index]:
			shard = self._shards[index]
			front = shard.get(key)
			if front is None:
				shard[key] = [value]
				return True
			for stored in front:
				if _dominates(stored, value):
					return False
			front[:] = [stored for stored in front if not _dominates(value, stored)]
			front.append(value)
			return True

	def clear(self) -> None:
		for index, lock in enumerate(self._locks):
			with lock:
				self._shards[index].clear()

	def __len__(self) -> int:
		return sum(len(shard) for shard in self._shards)


@dataclass(frozen=True)
class BestSolution:
	quality: int
	steps: int
	actions: Tuple[ActionDef, ...]
	state: Optional[ProcessState]

	@property
	def score(self) -> Tuple[int, int]:
		return self.quality, -self.steps


class SharedBest:
	"""
	Best solution of a session. Updates use compare-and-update under a lock
	and never regress; every strict improvement is reported to the callback
	in the order it was accepted.
	"""

	def __init__(self, on_improvement: Optional[ImprovementCallback] = None) -> None:
		self._lock = threading.Lock()
		self._best: Optional[BestSolution] = None
		self._on_improvement = on_improvement

	@property
	def quality(self) -> int:
		best = self._best
		return best.quality if best is not None else -1

	def get(self) -> Optional[BestSolution]:
		return self._best

	def offer(self, quality: int, actions: Sequence[ActionDef], state: Optional[ProcessState] = None) -> bool:
		candidate = BestSolution(quality=quality, steps=len(actions), actions=tuple(actions), state=state)
		with self._lock:
			if self._best is not None and candidate.score <= self._best.score:
				return False
			self._best = candidate
			if self._on_improvement is not None:
				self._on_improvement(candidate.actions, candidate.quality)
			return True


class PathArena:
	"""
	Append-only store of (action, parent index) pairs. A search node keeps
	only its index; the action path is rebuilt on demand.
	"""

	ROOT: int = -1

	def __init__(self) -> None:
		self._entries: List[Tuple[ActionDef, int]] = []

	def __len__(self) -> int:
		return len(self._entries)

	def push(self, action: ActionDef, parent: int) -> int:
		self._entries.append((action, parent))
		return len(self._entries) - 1

	def extend(self, actions: Sequence[ActionDef], parent: int = ROOT) -> int:
		index = parent
		for action in actions:
			index = self.push(action, index)
		return index

	def _walk(self, index: int) -> Iterator[ActionDef]:
		while index != self.ROOT:
			action, index = self._entries[index]
			yield action

	def path(self, index: int) -> Tuple[ActionDef, ...]:
		return tuple(reversed(list(self._walk(index))))


class StopReason:
	CANCELLED = "cancelled"
	TIMED_OUT = "timed_out"
	NODE_BUDGET = "node_budget"


@dataclass
class SearchLimits:
	"""
	Cooperative stop conditions, polled between node expansions or
	generations.

	- deadline: absolute time.monotonic() value.
	- node_budget: maximum node expansions per search call.
	"""

	deadline: Optional[float] = None
	node_budget: Optional[int] = None
	cancel_event: Optional[threading.Event] = None

	@classmethod
	def from_budget(
		cls,
		time_budget: Optional[float] = None,
		node_budget: Optional[int] = None,
		cancel_event: Optional[threading.Event] = None,
	) -> SearchLimits:
		deadline = time.monotonic() + time_budget if time_budget is not None else None
		return cls(deadline=deadline, node_budget=node_budget, cancel_event=cancel_event)

	def check(self, expanded: int = 0) -> Optional[str]:
		if self.cancel_event is not None and self.cancel_event.is_set():
			return StopReason.CANCELLED
		if self.deadline is not None and time.monotonic() >= self.deadline:
			return StopReason.TIMED_OUT
		if self.node_budget is not None and expanded >= self.node_budget:
			return StopReason.NODE_BUDGET
		return None


def state_key(state: ProcessState) -> Tuple[Any, ...]:
	"""
	Transposition key: everything except the budget-like values compared by
	dominance in state_value.
	"""
	return (state.durability, state.progress, state.effects.entries, state.combo, state.condition)


def state_value(state: ProcessState) -> Tuple[int, int, int]:
	return (state.cp, state.quality, -state.step)
