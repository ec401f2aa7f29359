from __future__ import annotations


class MacroSolverError(Exception):
	pass


class InvalidConfiguration(MacroSolverError, ValueError):
	"""
	Raised for malformed process configurations (negative budgets,
	non-positive targets, unknown tiers). A fatal caller error.
	"""


class IllegalAction(MacroSolverError):
	"""
	An action whose preconditions are not met in the given state.

	The simulator returns these inside a StepResult instead of raising them;
	search code uses them to reject a branch.
	"""

	def __init__(self, action_name: str, reason: str) -> None:
		super().__init__(f"{action_name}: {reason}")
		self.action_name = action_name
		self.reason = reason


class RecipeInfeasible(MacroSolverError):
	"""
	The progress target cannot be reached within the configured budgets.
	"""
