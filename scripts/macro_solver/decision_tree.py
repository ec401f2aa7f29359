from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List

import numpy as np


@dataclass
class DecisionNode:
	"""
	Represents a random decision point.

	- name: semantic label for this decision (e.g. "normal->standard").
	- probabilities: numpy array of shape (n,), normalized to sum to 1.
	- outcomes: list of outcome values (condition kinds).
	"""

	name: str
	probabilities: np.ndarray
	outcomes: List[int]

	def __post_init__(self) -> None:
		if len(self.probabilities) != len(self.outcomes):
			raise ValueError("probabilities and outcomes must have the same length")
		if len(self.outcomes) == 0:
			raise ValueError("a decision node needs at least one outcome")
		if np.any(self.probabilities < 0):
			raise ValueError("probabilities must not be negative")
		total = float(self.probabilities.sum())
		if total <= 0:
			raise ValueError("probabilities must sum to > 0")
		self.probabilities = self.probabilities / total
		self._cumulative = np.cumsum(self.probabilities)

	def select(self, roll: float) -> int:
		"""
		Pick the outcome whose cumulative interval contains roll, a value in
		[0, 1). The same roll always selects the same outcome.
		"""
		if len(self.outcomes) == 1:
			return self.outcomes[0]
		index = int(np.searchsorted(self._cumulative, roll, side="right"))
		return self.outcomes[min(index, len(self.outcomes) - 1)]

	def distribution(self) -> Dict[int, float]:
		"""
		Flat distribution over outcomes; outcomes listed more than once have
		their probabilities summed.
		"""
		result: Dict[int, float] = {}
		for prob, outcome in zip(self.probabilities, self.outcomes):
			result[outcome] = result.get(outcome, 0.0) + float(prob)
		return result
