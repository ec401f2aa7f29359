from __future__ import annotations

import csv
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, Mapping, Optional, Set, Tuple, Union

from .constants import ACTION_NAME, DEFAULT_ACTION_ROWS, LEVELS
from .errors import InvalidConfiguration
from .models import ActionDef, Condition, DifficultyTier, EffectKind, ProcessConfiguration


def _int(row: Mapping[str, str], key: str, default: int = 0) -> int:
	value = (row.get(key) or "").strip()
	return int(value) if value else default


def _float(row: Mapping[str, str], key: str, default: float) -> float:
	value = (row.get(key) or "").strip()
	return float(value) if value else default


def _flag(row: Mapping[str, str], key: str) -> bool:
	return (row.get(key) or "FALSE").strip().upper() == "TRUE"


def _text(row: Mapping[str, str], key: str) -> Optional[str]:
	value = (row.get(key) or "").strip()
	return value or None


def _kinds(row: Mapping[str, str], key: str, parser) -> Tuple[int, ...]:
	value = (row.get(key) or "").strip()
	if not value:
		return ()
	return tuple(parser(part) for part in value.split(";") if part.strip())


def action_from_row(row: Mapping[str, str]) -> ActionDef:
	"""
	Build an action from one catalog row. Effect and condition names are
	resolved here; unknown names raise ValueError.
	"""
	grants = _text(row, "grants effect")
	return ActionDef(
		name=row["name"].strip(),
		level=_int(row, "level", 1),
		cp_cost=_int(row, "cp cost"),
		durability_cost=_int(row, "durability cost"),
		progress_potency=_int(row, "progress potency"),
		quality_potency=_int(row, "quality potency"),
		potency_per_stack=_int(row, "potency per stack"),
		stack_gain=_int(row, "stack gain"),
		consumes_stacks=_flag(row, "consumes stacks"),
		success_rate=_float(row, "success rate", 1.0),
		grants_effect=EffectKind.from_string(grants) if grants else None,
		effect_duration=_int(row, "effect duration"),
		durability_restore=_int(row, "durability restore"),
		required_combo=_text(row, "required combo"),
		sets_combo=_text(row, "sets combo"),
		first_step_only=_flag(row, "first step only"),
		required_effects=_kinds(row, "required effects", EffectKind.from_string),
		forbidden_effects=_kinds(row, "forbidden effects", EffectKind.from_string),
		required_conditions=_kinds(row, "required conditions", Condition.from_string),
		min_durability=_int(row, "min durability"),
		time_cost=_int(row, "time cost", 3),
	)


@dataclass(frozen=True)
class CrafterStats:
	craftsmanship: int
	control: int
	cp: int
	job_level: int
	manipulation: bool = True


@dataclass(frozen=True)
class RecipeStats:
	recipe_level: int
	progress: int
	quality: int
	durability: int
	progress_div: int = 100
	quality_div: int = 100
	progress_mod: int = 100
	quality_mod: int = 100
	initial_quality: int = 0


@dataclass(frozen=True)
class ActionCatalog:
	actions: Dict[ACTION_NAME, ActionDef]

	def __iter__(self) -> Iterator[ActionDef]:
		return iter(self.actions.values())

	def __len__(self) -> int:
		return len(self.actions)

	def __contains__(self, name: object) -> bool:
		return name in self.actions

	def get(self, name: ACTION_NAME) -> ActionDef:
		if name not in self.actions:
			raise KeyError(f"Unknown action: {name}")
		return self.actions[name]

	def sequence(self, names: Iterable[ACTION_NAME]) -> Tuple[ActionDef, ...]:
		return tuple(self.get(name) for name in names)

	def filter_actions(
		self,
		level: Optional[int] = None,
		remove_names: Set[ACTION_NAME] = None,
		include_probabilistic: bool = True) -> ActionCatalog:

		filtered: Dict[ACTION_NAME, ActionDef] = {}
		for name, action in self.actions.items():
			if remove_names and name in remove_names:
				continue
			if level is not None and action.level > level:
				continue
			if not include_probabilistic and action.is_probabilistic:
				continue
			filtered[name] = action
		return ActionCatalog(actions=filtered)

	def for_crafter(self, crafter: CrafterStats) -> ActionCatalog:
		removed = set() if crafter.manipulation else {"Manipulation"}
		return self.filter_actions(level=crafter.job_level, remove_names=removed)

	@classmethod
	def from_rows(cls, rows: Iterable[Mapping[str, str]]) -> ActionCatalog:
		actions: Dict[ACTION_NAME, ActionDef] = {}
		for row in rows:
			# Skip rows without name
			if not (row.get("name") or "").strip():
				continue
			action = action_from_row(row)
			if action.name in actions:
				raise ValueError(f"Duplicate action name: {action.name}")
			actions[action.name] = action
		return cls(actions=actions)

	@staticmethod
	def _load_default_catalog() -> "ActionCatalog":
		return ActionCatalog.from_rows(DEFAULT_ACTION_ROWS)

	@classmethod
	def from_csv(cls, csv_path: Union[str, Path]) -> "ActionCatalog":
		path = Path(csv_path)
		with path.open(newline="", encoding="utf-8") as f:
			reader = csv.DictReader(f)
			return cls.from_rows(reader)


def build_configuration(
	recipe: RecipeStats,
	crafter: CrafterStats,
	difficulty_tier: str = DifficultyTier.FIXED,
) -> ProcessConfiguration:
	"""
	Process configuration for a crafter working on a recipe. Base values
	follow the game formulas; recipe modifiers apply once the crafter's
	effective level does not exceed the recipe level.
	"""
	if not 1 <= crafter.job_level <= len(LEVELS):
		raise InvalidConfiguration(f"job_level must lie in [1, {len(LEVELS)}], got {crafter.job_level}")
	if recipe.progress_div <= 0 or recipe.quality_div <= 0:
		raise InvalidConfiguration("recipe divisors must be positive")
	base_progress = crafter.craftsmanship * 10 / recipe.progress_div + 2
	base_quality = crafter.control * 10 / recipe.quality_div + 35
	if LEVELS[crafter.job_level - 1] <= recipe.recipe_level:
		base_progress = base_progress * recipe.progress_mod / 100
		base_quality = base_quality * recipe.quality_mod / 100
	config = ProcessConfiguration(
		max_progress=recipe.progress,
		max_quality=recipe.quality,
		max_durability=recipe.durability,
		max_cp=crafter.cp,
		base_progress=int(math.floor(base_progress)),
		base_quality=int(math.floor(base_quality)),
		job_level=crafter.job_level,
		difficulty_tier=difficulty_tier,
		initial_quality=recipe.initial_quality,
	)
	config.validate()
	return config


def load_default_catalog() -> ActionCatalog:
	return ActionCatalog._load_default_catalog()
