from __future__ import annotations

from typing import Dict, List, Tuple, TypeAlias

from .models import Condition, DifficultyTier, EffectKind

ACTION_NAME: TypeAlias = str
CONDITION: TypeAlias = int
EFFECT_KIND: TypeAlias = int
TransitionRow = List[Tuple[CONDITION, float]]

# Returned by the bound estimator when no completing continuation exists.
UNREACHABLE: int = -1

# ---------- Effect table ----------

MAX_INNER_QUIET: int = 10
INNER_QUIET_BONUS_PER_STACK: float = 0.1

EFFECT_PROGRESS_BONUS: Dict[EFFECT_KIND, float] = {
	EffectKind.VENERATION: 0.5,
	EffectKind.MUSCLE_MEMORY: 1.0,
}

EFFECT_QUALITY_BONUS: Dict[EFFECT_KIND, float] = {
	EffectKind.INNOVATION: 0.5,
	EffectKind.GREAT_STRIDES: 1.0,
}

# One-shot effects, removed by the first action that benefits from them.
CONSUMED_BY_PROGRESS: Tuple[EFFECT_KIND, ...] = (EffectKind.MUSCLE_MEMORY,)
CONSUMED_BY_QUALITY: Tuple[EFFECT_KIND, ...] = (EffectKind.GREAT_STRIDES,)

# Durability cost multiplier while the effect is active.
DURABILITY_SPARING: Dict[EFFECT_KIND, float] = {
	EffectKind.WASTE_NOT: 0.5,
}

# Durability restored at the end of every step while the effect is active.
DURABILITY_PER_STEP: Dict[EFFECT_KIND, int] = {
	EffectKind.MANIPULATION: 5,
}

DURABILITY_EFFECTS: Tuple[EFFECT_KIND, ...] = tuple(DURABILITY_SPARING) + tuple(DURABILITY_PER_STEP)

# ---------- Condition table ----------

CONDITION_QUALITY_MULTIPLIER: Dict[CONDITION, float] = {
	Condition.GOOD: 1.5,
	Condition.EXCELLENT: 4.0,
	Condition.POOR: 0.5,
}

CONDITION_PROGRESS_MULTIPLIER: Dict[CONDITION, float] = {
	Condition.MALLEABLE: 1.5,
}

CONDITION_CP_MULTIPLIER: Dict[CONDITION, float] = {
	Condition.PLIANT: 0.5,
}

CONDITION_DURABILITY_MULTIPLIER: Dict[CONDITION, float] = {
	Condition.STURDY: 0.5,
}

CONDITION_SUCCESS_BONUS: Dict[CONDITION, float] = {
	Condition.CENTERED: 0.25,
}

CONDITION_DURATION_BONUS: Dict[CONDITION, int] = {
	Condition.PRIMED: 2,
}

_EXPERT_ROW: TransitionRow = [
	(Condition.NORMAL, 0.40),
	(Condition.GOOD, 0.12),
	(Condition.CENTERED, 0.12),
	(Condition.STURDY, 0.12),
	(Condition.PLIANT, 0.12),
	(Condition.MALLEABLE, 0.06),
	(Condition.PRIMED, 0.06),
]

# Rows list (next condition, probability); the first entry of each row is
# what a roll of 0.0 selects. Conditions without a row fall back to NORMAL's.
CONDITION_TRANSITIONS: Dict[str, Dict[CONDITION, TransitionRow]] = {
	DifficultyTier.FIXED: {
		Condition.NORMAL: [(Condition.NORMAL, 1.0)],
	},
	DifficultyTier.STANDARD: {
		Condition.NORMAL: [(Condition.NORMAL, 0.74), (Condition.GOOD, 0.22), (Condition.EXCELLENT, 0.04)],
		Condition.GOOD: [(Condition.NORMAL, 1.0)],
		Condition.EXCELLENT: [(Condition.POOR, 1.0)],
		Condition.POOR: [(Condition.NORMAL, 1.0)],
	},
	DifficultyTier.EXPERT: {
		Condition.NORMAL: _EXPERT_ROW,
		Condition.GOOD: [(Condition.NORMAL, 1.0)],
		Condition.CENTERED: _EXPERT_ROW,
		Condition.STURDY: _EXPERT_ROW,
		Condition.PLIANT: _EXPERT_ROW,
		Condition.MALLEABLE: _EXPERT_ROW,
		Condition.PRIMED: _EXPERT_ROW,
	},
}

# ---------- Game data ----------

# Effective recipe level of each job level (index = job level - 1).
LEVELS: List[int] = [
	1, 2, 3, 4, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15, 16, 17, 18, 19, 20, 21, 22, 23, 24, 25, 26,
	27, 28, 29, 30, 31, 32, 33, 34, 35, 36, 37, 38, 39, 40, 41, 42, 43, 44, 45, 46, 47, 48, 49, 50,
	120, 125, 130, 133, 136, 139, 142, 145, 148, 150, 260, 265, 270, 273, 276, 279, 282, 285, 288,
	290, 390, 395, 400, 403, 406, 409, 412, 415, 418, 420, 517, 520, 525, 530, 535, 540, 545, 550,
	555, 560,
]

# Default action catalog, in the same column layout as an action CSV export.
DEFAULT_ACTION_ROWS: List[Dict[str, str]] = [
	{"name": "Basic Synthesis", "level": "1", "durability cost": "10", "progress potency": "120"},
	{"name": "Basic Touch", "level": "5", "cp cost": "18", "durability cost": "10", "quality potency": "100", "stack gain": "1"},
	{"name": "Master's Mend", "level": "7", "cp cost": "88", "durability restore": "30"},
	{"name": "Hasty Touch", "level": "9", "durability cost": "10", "quality potency": "100", "stack gain": "1", "success rate": "0.6"},
	{"name": "Rapid Synthesis", "level": "9", "durability cost": "10", "progress potency": "500", "success rate": "0.5"},
	{"name": "Observe", "level": "13", "cp cost": "7"},
	{"name": "Waste Not", "level": "15", "cp cost": "56", "grants effect": "waste_not", "effect duration": "4", "time cost": "2"},
	{"name": "Veneration", "level": "15", "cp cost": "18", "grants effect": "veneration", "effect duration": "4", "time cost": "2"},
	{"name": "Standard Touch", "level": "18", "cp cost": "32", "durability cost": "10", "quality potency": "125", "stack gain": "1"},
	{"name": "Standard Touch (Combo)", "level": "18", "cp cost": "18", "durability cost": "10", "quality potency": "125", "stack gain": "1", "required combo": "Basic Touch", "sets combo": "Standard Touch"},
	{"name": "Great Strides", "level": "21", "cp cost": "32", "grants effect": "great_strides", "effect duration": "3", "time cost": "2"},
	{"name": "Innovation", "level": "26", "cp cost": "18", "grants effect": "innovation", "effect duration": "4", "time cost": "2"},
	{"name": "Waste Not II", "level": "47", "cp cost": "98", "grants effect": "waste_not", "effect duration": "8", "time cost": "2"},
	{"name": "Byregot's Blessing", "level": "50", "cp cost": "24", "durability cost": "10", "quality potency": "100", "potency per stack": "20", "consumes stacks": "TRUE", "required effects": "inner_quiet"},
	{"name": "Precise Touch", "level": "53", "cp cost": "18", "durability cost": "10", "quality potency": "150", "stack gain": "2", "required conditions": "good;excellent"},
	{"name": "Muscle Memory", "level": "54", "cp cost": "6", "durability cost": "10", "progress potency": "300", "first step only": "TRUE", "grants effect": "muscle_memory", "effect duration": "5"},
	{"name": "Careful Synthesis", "level": "62", "cp cost": "7", "durability cost": "10", "progress potency": "150"},
	{"name": "Manipulation", "level": "65", "cp cost": "96", "grants effect": "manipulation", "effect duration": "8", "time cost": "2"},
	{"name": "Prudent Touch", "level": "66", "cp cost": "25", "durability cost": "5", "quality potency": "100", "stack gain": "1", "forbidden effects": "waste_not"},
	{"name": "Reflect", "level": "69", "cp cost": "6", "durability cost": "10", "quality potency": "100", "stack gain": "2", "first step only": "TRUE"},
	{"name": "Preparatory Touch", "level": "71", "cp cost": "40", "durability cost": "20", "quality potency": "200", "stack gain": "2"},
	{"name": "Groundwork", "level": "72", "cp cost": "18", "durability cost": "20", "progress potency": "300"},
	{"name": "Delicate Synthesis", "level": "76", "cp cost": "32", "durability cost": "10", "progress potency": "100", "quality potency": "100", "stack gain": "1"},
	{"name": "Intensive Synthesis", "level": "78", "cp cost": "6", "durability cost": "10", "progress potency": "400", "required conditions": "good;excellent"},
	{"name": "Advanced Touch (Combo)", "level": "84", "cp cost": "18", "durability cost": "10", "quality potency": "150", "stack gain": "1", "required combo": "Standard Touch", "sets combo": "Advanced Touch"},
	{"name": "Prudent Synthesis", "level": "88", "cp cost": "18", "durability cost": "5", "progress potency": "180", "forbidden effects": "waste_not"},
]
