from __future__ import annotations

"""
Anytime quality search for state spaces too large for branch-and-bound.

Genomes are action sequences. Every genome is repaired through the
simulator before it is scored: it is cut at its first illegal, failing or
superfluous action (or, with backloaded progress, at its first non-progress
action after progress was gained) and then finished greedily, so each
candidate in the population is a legal sequence with a simulated terminal
state.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np
from tqdm import tqdm

from .models import DEFAULT_ROLL, ActionDef, ProcessConfiguration, ProcessState, Roll
from .simulator import apply, backload_allows, initial_state
from .transposition import ProgressCallback, SearchLimits, SharedBest

logger = logging.getLogger(__name__)


@dataclass
class EvolutionSettings:
	population_size: int = 64
	generations: int = 200
	tournament_size: int = 3
	crossover_rate: float = 0.7
	mutation_rate: float = 0.4
	elite_count: int = 4
	max_length: int = 40
	seed: Optional[int] = None

	def __post_init__(self) -> None:
		if self.population_size < 2:
			raise ValueError("population_size must be at least 2")
		if self.tournament_size < 1:
			raise ValueError("tournament_size must be positive")
		if not 0 <= self.elite_count < self.population_size:
			raise ValueError("elite_count must lie in [0, population_size)")
		if self.max_length < 1:
			raise ValueError("max_length must be positive")


@dataclass(frozen=True)
class Candidate:
	actions: Tuple[ActionDef, ...]
	state: ProcessState
	fitness: float


@dataclass
class EvolutionOutcome:
	generations: int = 0
	evaluated: int = 0
	stop_reason: Optional[str] = None


class EvolutionarySearch:
	def __init__(
		self,
		config: ProcessConfiguration,
		actions: Sequence[ActionDef],
		best: SharedBest,
		settings: Optional[EvolutionSettings] = None,
		roll: Roll = DEFAULT_ROLL,
		limits: Optional[SearchLimits] = None,
		workers: int = 1,
		start: Optional[ProcessState] = None,
		backload_progress: bool = False,
		on_progress: Optional[ProgressCallback] = None,
	) -> None:
		if not actions:
			raise ValueError("evolutionary search needs at least one action")
		self.config = config
		self.actions = list(actions)
		self.best = best
		self.settings = settings or EvolutionSettings()
		self.roll = roll
		self.limits = limits or SearchLimits()
		self.workers = max(1, workers)
		self.start = start if start is not None else initial_state(config)
		self.backload_progress = backload_progress
		self.on_progress = on_progress
		self._rng = np.random.default_rng(self.settings.seed)

	# ---------- scoring ----------

	def fitness(self, state: ProcessState) -> float:
		"""
		Quality for completed sequences, with a small penalty per step. Anything
		that does not complete scores below zero, graded by its progress.
		"""
		if state.is_completed:
			return state.quality - state.step * 1e-3
		return -1.0 - (1.0 - state.progress / self.config.max_progress)

	def _greedy_step(self, state: ProcessState) -> Optional[Tuple[ActionDef, ProcessState]]:
		choice = None
		choice_key = None
		for action in self.actions:
			if not action.is_progress_action:
				continue
			result = apply(state, action, self.config, self.roll)
			if not result.ok or result.state.is_failed or result.state.progress <= state.progress:
				continue
			child = result.state
			key = (child.is_completed, child.progress, child.durability, child.cp)
			if choice_key is None or key > choice_key:
				choice, choice_key = (action, child), key
		return choice

	def evaluate(self, genome: Sequence[ActionDef]) -> Candidate:
		state = self.start
		kept: List[ActionDef] = []
		for action in genome[: self.settings.max_length]:
			if not state.is_ongoing:
				break
			if self.backload_progress and not backload_allows(state, action):
				break
			result = apply(state, action, self.config, self.roll)
			if not result.ok or result.state.is_failed:
				break
			kept.append(action)
			state = result.state
		while state.is_ongoing and len(kept) < self.settings.max_length:
			step = self._greedy_step(state)
			if step is None:
				break
			action, state = step
			kept.append(action)
		return Candidate(actions=tuple(kept), state=state, fitness=self.fitness(state))

	def _evaluate_all(self, genomes: List[List[ActionDef]], executor: Optional[ThreadPoolExecutor]) -> List[Candidate]:
		if executor is None or len(genomes) < 2 * self.workers:
			return [self.evaluate(genome) for genome in genomes]
		slices = [genomes[i::self.workers] for i in range(self.workers)]
		evaluated = list(executor.map(lambda part: [self.evaluate(genome) for genome in part], slices))
		# restore the original order so seeded runs do not depend on threading
		candidates: List[Candidate] = [None] * len(genomes)  # type: ignore[list-item]
		for offset, part in enumerate(evaluated):
			candidates[offset::self.workers] = part
		return candidates

	# ---------- operators ----------

	def _random_action(self) -> ActionDef:
		return self.actions[int(self._rng.integers(len(self.actions)))]

	def _random_genome(self) -> List[ActionDef]:
		"""
		Random legal prefix; the greedy repair finishes it.
		"""
		length = int(self._rng.integers(0, max(1, self.settings.max_length // 2) + 1))
		state = self.start
		genome: List[ActionDef] = []
		for _ in range(length):
			legal = []
			for action in self.actions:
				if self.backload_progress and not backload_allows(state, action):
					continue
				result = apply(state, action, self.config, self.roll)
				if result.ok and result.state.is_ongoing:
					legal.append((action, result.state))
			if not legal:
				break
			action, state = legal[int(self._rng.integers(len(legal)))]
			genome.append(action)
		return genome

	def _tournament(self, population: List[Candidate]) -> Candidate:
		picks = self._rng.integers(0, len(population), size=self.settings.tournament_size)
		return max((population[int(i)] for i in picks), key=lambda candidate: candidate.fitness)

	def _crossover(self, first: Sequence[ActionDef], second: Sequence[ActionDef]) -> List[ActionDef]:
		cut_first = int(self._rng.integers(0, len(first) + 1))
		cut_second = int(self._rng.integers(0, len(second) + 1))
		return list(first[:cut_first]) + list(second[cut_second:])

	def _mutate(self, genome: List[ActionDef]) -> List[ActionDef]:
		genome = list(genome)
		operation = int(self._rng.integers(3))
		if operation == 0 and genome:
			genome[int(self._rng.integers(len(genome)))] = self._random_action()
		elif operation == 1 or not genome:
			genome.insert(int(self._rng.integers(len(genome) + 1)), self._random_action())
		else:
			del genome[int(self._rng.integers(len(genome)))]
		return genome

	def _report(self, candidate: Candidate) -> None:
		if candidate.state.is_completed and candidate.state.quality >= self.best.quality:
			self.best.offer(candidate.state.quality, candidate.actions, candidate.state)

	# ---------- main loop ----------

	def run(self, seeds: Sequence[Sequence[ActionDef]] = (), show_progress: bool = False) -> EvolutionOutcome:
		"""
		Evolve until the generation limit or a stop condition. seeds are
		sequences placed in the first population (e.g. the finish-only
		solution).
		"""
		settings = self.settings
		outcome = EvolutionOutcome()
		executor = ThreadPoolExecutor(max_workers=self.workers) if self.workers > 1 else None
		try:
			genomes = [list(seed) for seed in seeds][: settings.population_size]
			while len(genomes) < settings.population_size:
				genomes.append(self._random_genome())
			population = self._evaluate_all(genomes, executor)
			outcome.evaluated += len(population)

			for _ in tqdm(range(settings.generations), desc="generations", disable=not show_progress):
				population.sort(key=lambda candidate: candidate.fitness, reverse=True)
				self._report(population[0])
				stop_reason = self.limits.check()
				if stop_reason is not None:
					outcome.stop_reason = stop_reason
					break
				offspring: List[List[ActionDef]] = []
				while settings.elite_count + len(offspring) < settings.population_size:
					parent = self._tournament(population)
					if self._rng.random() < settings.crossover_rate:
						genome = self._crossover(parent.actions, self._tournament(population).actions)
					else:
						genome = list(parent.actions)
					if self._rng.random() < settings.mutation_rate:
						genome = self._mutate(genome)
					offspring.append(genome)
				population = population[: settings.elite_count] + self._evaluate_all(offspring, executor)
				outcome.evaluated += len(offspring)
				outcome.generations += 1
				if self.on_progress is not None:
					self.on_progress(outcome.generations / settings.generations)
			else:
				population.sort(key=lambda candidate: candidate.fitness, reverse=True)
				self._report(population[0])
		finally:
			if executor is not None:
				executor.shutdown()

		logger.debug(
			"Evolution ran %d generations (%d evaluations), best quality %d",
			outcome.generations, outcome.evaluated, self.best.quality,
		)
		return outcome
