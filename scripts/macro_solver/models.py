from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

from .errors import InvalidConfiguration


class _NamedConstants:
	"""
	Closed set of integer-valued variants with a string form, as used in
	catalog files and JSON configurations.
	"""

	_STRING_TO_VALUE: Dict[str, int] = {}
	_VALUE_TO_STRING: Dict[int, str] = {}

	@classmethod
	def from_string(cls, value: str) -> int:
		value_lower = value.strip().lower().replace(" ", "_")
		if value_lower not in cls._STRING_TO_VALUE:
			raise ValueError(f"Unknown {cls.__name__} string: {value}")
		return cls._STRING_TO_VALUE[value_lower]

	@classmethod
	def to_string(cls, value: int) -> str:
		return cls._VALUE_TO_STRING[value]

	@classmethod
	def values(cls) -> Tuple[int, ...]:
		return tuple(sorted(cls._VALUE_TO_STRING.keys()))


class EffectKind(_NamedConstants):
	INNER_QUIET = 0
	GREAT_STRIDES = 1
	INNOVATION = 2
	VENERATION = 3
	MUSCLE_MEMORY = 4
	WASTE_NOT = 5
	MANIPULATION = 6

	_STRING_TO_VALUE = {
		"inner_quiet": INNER_QUIET,
		"great_strides": GREAT_STRIDES,
		"innovation": INNOVATION,
		"veneration": VENERATION,
		"muscle_memory": MUSCLE_MEMORY,
		"waste_not": WASTE_NOT,
		"manipulation": MANIPULATION,
	}

	_VALUE_TO_STRING = {v: k for k, v in _STRING_TO_VALUE.items()}


class Condition(_NamedConstants):
	NORMAL = 0
	GOOD = 1
	EXCELLENT = 2
	POOR = 3
	CENTERED = 4
	STURDY = 5
	PLIANT = 6
	MALLEABLE = 7
	PRIMED = 8

	_STRING_TO_VALUE = {
		"normal": NORMAL,
		"good": GOOD,
		"excellent": EXCELLENT,
		"poor": POOR,
		"centered": CENTERED,
		"sturdy": STURDY,
		"pliant": PLIANT,
		"malleable": MALLEABLE,
		"primed": PRIMED,
	}

	_VALUE_TO_STRING = {v: k for k, v in _STRING_TO_VALUE.items()}


class Outcome:
	ONGOING = 0
	COMPLETED = 1
	FAILED = 2


class DifficultyTier:
	FIXED = "fixed"
	STANDARD = "standard"
	EXPERT = "expert"

	ALL = (FIXED, STANDARD, EXPERT)


@dataclass(frozen=True)
class ActionDef:
	name: str
	level: int = 1
	cp_cost: int = 0
	durability_cost: int = 0
	progress_potency: int = 0
	quality_potency: int = 0
	potency_per_stack: int = 0
	stack_gain: int = 0
	consumes_stacks: bool = False
	success_rate: float = 1.0
	grants_effect: Optional[int] = None
	effect_duration: int = 0
	durability_restore: int = 0
	required_combo: Optional[str] = None
	sets_combo: Optional[str] = None
	first_step_only: bool = False
	required_effects: Tuple[int, ...] = ()
	forbidden_effects: Tuple[int, ...] = ()
	required_conditions: Tuple[int, ...] = ()
	min_durability: int = 0
	time_cost: int = 3

	@property
	def combo_token(self) -> str:
		return self.sets_combo or self.name

	@property
	def is_progress_action(self) -> bool:
		return self.progress_potency > 0

	@property
	def is_quality_action(self) -> bool:
		return self.quality_potency > 0 or self.potency_per_stack > 0

	@property
	def is_probabilistic(self) -> bool:
		return self.success_rate < 1.0

	@property
	def has_potency(self) -> bool:
		return self.is_progress_action or self.is_quality_action


@dataclass(frozen=True)
class ActiveEffects:
	"""
	Immutable set of active effects.

	entries holds (kind, remaining_duration, stacks) sorted by kind. An entry
	with duration 0 stays active only while it carries stacks (inner quiet).
	"""

	entries: Tuple[Tuple[int, int, int], ...] = ()

	def _find(self, kind: int) -> Optional[Tuple[int, int, int]]:
		for entry in self.entries:
			if entry[0] == kind:
				return entry
		return None

	def duration(self, kind: int) -> int:
		entry = self._find(kind)
		return entry[1] if entry is not None else 0

	def stacks(self, kind: int) -> int:
		entry = self._find(kind)
		return entry[2] if entry is not None else 0

	def has(self, kind: int) -> bool:
		return self._find(kind) is not None

	def kinds(self) -> Tuple[int, ...]:
		return tuple(entry[0] for entry in self.entries)

	def with_effect(self, kind: int, duration: int, stacks: int = 0) -> ActiveEffects:
		rest = [entry for entry in self.entries if entry[0] != kind]
		if duration > 0 or stacks > 0:
			rest.append((kind, duration, stacks))
		return ActiveEffects(entries=tuple(sorted(rest)))

	def without(self, *kinds: int) -> ActiveEffects:
		if not any(self.has(kind) for kind in kinds):
			return self
		return ActiveEffects(entries=tuple(entry for entry in self.entries if entry[0] not in kinds))

	def ticked(self) -> ActiveEffects:
		"""
		Advance timed effects by one step, dropping the ones that expire.
		"""
		ticked = []
		for kind, duration, stacks in self.entries:
			if duration > 0:
				duration -= 1
				if duration == 0 and stacks == 0:
					continue
			ticked.append((kind, duration, stacks))
		return ActiveEffects(entries=tuple(ticked))

	def as_dict(self) -> Dict[str, Tuple[int, int]]:
		return {EffectKind.to_string(kind): (duration, stacks) for kind, duration, stacks in self.entries}


@dataclass(frozen=True)
class Roll:
	"""
	Explicit randomness for one transition. Both values lie in [0, 1).

	- action: resolves probabilistic actions (success iff below the success rate).
	- condition: selects the next condition from the transition distribution.
	"""

	action: float = 0.0
	condition: float = 0.0

	def __post_init__(self) -> None:
		for value in (self.action, self.condition):
			if not 0.0 <= value < 1.0:
				raise ValueError(f"roll values must lie in [0, 1), got {value}")


DEFAULT_ROLL = Roll()


@dataclass(frozen=True)
class ProcessState:
	durability: int
	cp: int
	progress: int
	quality: int
	step: int = 0
	effects: ActiveEffects = field(default_factory=ActiveEffects)
	combo: Optional[str] = None
	condition: int = Condition.NORMAL
	outcome: int = Outcome.ONGOING

	@property
	def is_ongoing(self) -> bool:
		return self.outcome == Outcome.ONGOING

	@property
	def is_completed(self) -> bool:
		return self.outcome == Outcome.COMPLETED

	@property
	def is_failed(self) -> bool:
		return self.outcome == Outcome.FAILED

	def fingerprint(self) -> Tuple[Any, ...]:
		"""
		Canonical identity of a state. Two states reached through different
		action orders share a fingerprint when they are interchangeable for
		the rest of the process.
		"""
		return (
			self.durability,
			self.cp,
			self.progress,
			self.quality,
			self.effects.entries,
			self.combo,
			self.condition,
			self.outcome,
		)


@dataclass(frozen=True)
class ProcessConfiguration:
	max_progress: int
	max_quality: int
	max_durability: int
	max_cp: int
	base_progress: int
	base_quality: int
	job_level: int = 100
	difficulty_tier: str = DifficultyTier.FIXED
	initial_condition: int = Condition.NORMAL
	initial_quality: int = 0

	def validate(self) -> None:
		"""
		Reject malformed configurations before any simulation runs.
		"""
		if self.max_progress <= 0:
			raise InvalidConfiguration(f"max_progress must be positive, got {self.max_progress}")
		if self.max_quality <= 0:
			raise InvalidConfiguration(f"max_quality must be positive, got {self.max_quality}")
		if self.max_durability <= 0:
			raise InvalidConfiguration(f"max_durability must be positive, got {self.max_durability}")
		if self.max_cp < 0:
			raise InvalidConfiguration(f"max_cp must not be negative, got {self.max_cp}")
		if self.base_progress < 0 or self.base_quality < 0:
			raise InvalidConfiguration("base progress and base quality must not be negative")
		if self.initial_quality < 0:
			raise InvalidConfiguration(f"initial_quality must not be negative, got {self.initial_quality}")
		if self.job_level <= 0:
			raise InvalidConfiguration(f"job_level must be positive, got {self.job_level}")
		if self.difficulty_tier not in DifficultyTier.ALL:
			raise InvalidConfiguration(f"Unknown difficulty tier: {self.difficulty_tier}")
		if self.initial_condition not in Condition.values():
			raise InvalidConfiguration(f"Unknown initial condition: {self.initial_condition}")

	@classmethod
	def from_dict(cls, data: Dict[str, Any]) -> ProcessConfiguration:
		initial_condition = data.get("initial_condition", Condition.NORMAL)
		if isinstance(initial_condition, str):
			try:
				initial_condition = Condition.from_string(initial_condition)
			except ValueError as exc:
				raise InvalidConfiguration(str(exc)) from exc
		try:
			return cls(
				max_progress=int(data["max_progress"]),
				max_quality=int(data["max_quality"]),
				max_durability=int(data["max_durability"]),
				max_cp=int(data["max_cp"]),
				base_progress=int(data["base_progress"]),
				base_quality=int(data["base_quality"]),
				job_level=int(data.get("job_level", 100)),
				difficulty_tier=str(data.get("difficulty_tier", DifficultyTier.FIXED)),
				initial_condition=int(initial_condition),
				initial_quality=int(data.get("initial_quality", 0)),
			)
		except KeyError as exc:
			raise InvalidConfiguration(f"Missing configuration field: {exc.args[0]}") from exc

	def to_dict(self) -> Dict[str, Any]:
		return {
			"max_progress": self.max_progress,
			"max_quality": self.max_quality,
			"max_durability": self.max_durability,
			"max_cp": self.max_cp,
			"base_progress": self.base_progress,
			"base_quality": self.base_quality,
			"job_level": self.job_level,
			"difficulty_tier": self.difficulty_tier,
			"initial_condition": Condition.to_string(self.initial_condition),
			"initial_quality": self.initial_quality,
		}
