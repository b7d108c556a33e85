"""
Exercise vocabulary and typo-tolerant name resolution.

Converts free text such as "squirt", "DL" or "bench" to a canonical exercise
name ("Squat", "Deadlift", "Bench Press").

Resolution order:
  1. exact alias (after lowercasing and collapsing whitespace)
  2. substring: longest alias contained in the input, else the shortest
     alias containing it
  3. bounded Levenshtein distance against every alias

Matching strictness lives in ResolverConfig. The resolver itself is pure;
callers record correction events in QueryAnalytics.
"""

from __future__ import annotations

import difflib
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

# Canonical name -> aliases, including common typos seen in chat logs.
EXERCISE_KEYWORDS: Dict[str, Tuple[str, ...]] = {
    # Strength: lower body
    "Squat": (
        "squat", "squats", "back squat", "bs", "bsq", "low bar", "high bar",
        "low bar squat", "lbbs", "hbbs", "squat max", "squat pr", "squat 1rm",
        "squirt", "sqat", "sqaut", "suat", "squqt", "suqat", "squt", "squot", "squrt",
        "bakc squat", "bak squat", "back sqat",
    ),
    "Front Squat": (
        "front squat", "front squats", "fsq", "fs", "frontsquat", "front squat max", "front squat 1rm",
        "frnt squat", "fron squat", "front sqat", "frot squat",
    ),
    "Deadlift": (
        "deadlift", "deadlifts", "dead lift", "dl", "conventional", "sumo", "deads",
        "deadlift max", "deadlift 1rm", "dl max",
        "deadlit", "deadlfit", "deedlift", "dedlift", "deaflift", "deadlif", "deadloft", "deaslift",
    ),
    "Romanian Deadlift": ("rdl", "rdls", "romanian deadlift", "romanian", "stiff leg deadlift", "sldl"),
    "Lunge": ("lunge", "lunges", "walking lunge", "walking lunges", "split squat", "db lunges", "lumge"),
    "Leg Press": ("leg press", "legpress", "lp", "leg pres"),
    "Leg Curl": ("leg curl", "leg curls", "hamstring curl", "ham curl"),
    # Strength: upper body push
    "Bench Press": (
        "bench", "bench press", "bp", "benchpress", "flat bench", "barbell bench", "bb bench",
        "bench max", "bench 1rm", "bench pr",
        "benchh", "benhc", "bnech", "bech press", "becnh", "bnch", "bech", "bensh",
    ),
    "Incline Bench Press": ("incline bench", "incline press", "incline", "incline bp", "incline bench press"),
    "Overhead Press": (
        "ohp", "overhead press", "press", "shoulder press", "military press", "strict press",
        "ohp max", "ohp 1rm", "ovherhead press", "shoudler press", "shuolder press",
    ),
    "Dumbbell Press": ("dumbbell press", "db press", "db bench", "dumbbell bench"),
    "Dip": ("dip", "dips", "weighted dip", "weighted dips", "bar dips", "dipps", "dipp"),
    "Push Up": ("pushup", "push up", "pushups", "push ups", "push-up", "push-ups"),
    # Strength: upper body pull
    "Pull Up": (
        "pull up", "pullup", "pullups", "pull-up", "pull ups", "chin up", "chinup", "chin-up",
        "weighted pullup", "weighted pull up", "pul up", "pulup",
    ),
    "Barbell Row": (
        "row", "rows", "barbell row", "bent over row", "pendlay", "pendlay row", "bb row", "bent row",
        "pendley", "penlay", "pendaly",
    ),
    "Dumbbell Row": ("dumbbell row", "db row", "one arm row", "single arm row"),
    "Lat Pulldown": ("lat pulldown", "pulldown", "lat pull", "pull down"),
    "Face Pull": ("face pull", "face pulls", "facepull", "facepulls"),
    # Olympic lifts
    "Clean": (
        "clean", "cleans", "power clean", "hang clean", "squat clean", "pc",
        "cleen", "claen", "clena", "power claen",
    ),
    "Clean and Jerk": ("clean and jerk", "cnj", "c&j", "clean & jerk", "clean jerk", "clean an jerk"),
    "Snatch": ("snatch", "snatches", "power snatch", "hang snatch", "sntach", "snacth", "sntch"),
    "Thruster": ("thruster", "thrusters"),
    # Cardio
    "Run": ("run", "running", "jog", "jogging", "sprint", "sprints"),
    "Zone 2 Run": ("zone 2 run", "zone2 run", "z2 run", "easy run", "aerobic run", "zone 2", "z2", "zon 2 run"),
    "Tempo Run": ("tempo run", "tempo", "threshold run", "lt run", "tepmo", "tmpo run"),
    "5K Run": ("5k", "5k run", "five k", "5k test", "5k time trial", "5k tt", "5krun"),
    "Mile": ("mile", "1 mile", "mile run", "mile time trial", "mile test", "miel", "mlie"),
    "400m Repeats": ("400m", "400m repeats", "400 repeats", "quarters", "400s", "400m intervals"),
    "Row Erg": ("row erg", "rowing", "erg row", "rower", "concept 2", "c2", "erg", "rowign", "rwo erg"),
    "2K Row": ("2k row", "2000m row", "2k erg", "2k test"),
    "Assault Bike": ("assault bike", "assault", "air bike", "echo bike", "airdyne", "assalt bike", "assualt bike"),
    "Bike": ("bike", "biking", "cycling", "spin", "stationary bike"),
    "Ski Erg": ("ski erg", "skierg", "ski", "ski machine", "skii erg"),
    # Conditioning
    "Metcon": ("metcon", "conditioning", "wod", "amrap", "emom", "for time", "metocn", "condtioning"),
    "Burpee": ("burpee", "burpees", "burpie", "burpies"),
    "Box Jump": ("box jump", "box jumps"),
    "Kettlebell Swing": ("kettlebell swing", "kb swing", "kb swings", "kbs", "swings"),
    "Double Unders": ("double unders", "double under", "du", "dubs", "jump rope", "doubel unders"),
    # Core
    "Plank": ("plank", "planks", "plank hold", "side plank"),
    "Hanging Leg Raise": ("hanging leg raise", "hlr", "leg raise", "toes to bar", "ttb", "t2b"),
    # Recovery
    "Mobility": ("stretch", "stretching", "mobility", "foam roll", "yoga", "streching", "strecthing"),
    "Warmup": ("warmup", "warm up", "warm-up", "activation", "dynamic warmup", "wamrup", "warmpu"),
}

# Broad family used to filter logged segments.
SEGMENT_TYPE_MAP: Dict[str, str] = {
    "Squat": "MAIN_LIFT",
    "Front Squat": "MAIN_LIFT",
    "Deadlift": "MAIN_LIFT",
    "Bench Press": "MAIN_LIFT",
    "Overhead Press": "MAIN_LIFT",
    "Clean": "MAIN_LIFT",
    "Clean and Jerk": "MAIN_LIFT",
    "Snatch": "MAIN_LIFT",
    "Run": "CARDIO",
    "Zone 2 Run": "CARDIO",
    "Tempo Run": "CARDIO",
    "5K Run": "CARDIO",
    "Mile": "CARDIO",
    "400m Repeats": "CARDIO",
    "Row Erg": "CARDIO",
    "2K Row": "CARDIO",
    "Assault Bike": "CARDIO",
    "Bike": "CARDIO",
    "Ski Erg": "CARDIO",
    "Metcon": "METCON",
    "Burpee": "METCON",
    "Kettlebell Swing": "METCON",
}

COMMON_EXERCISES = ("Squat", "Deadlift", "Bench Press", "Run", "Barbell Row")


def normalize_name(raw: Optional[str]) -> str:
    return " ".join((raw or "").lower().split())


@dataclass(frozen=True)
class ResolverConfig:
    """Matching strictness. Inputs of at most `short_length` chars use the tighter bound."""
    short_length: int = 5
    max_distance_short: int = 2
    max_distance_long: int = 3
    min_substring_length: int = 3

    def max_distance(self, text: str) -> int:
        return self.max_distance_short if len(text) <= self.short_length else self.max_distance_long


DEFAULT_RESOLVER_CONFIG = ResolverConfig()


@dataclass(frozen=True)
class ExerciseResolution:
    raw: str
    normalized: str
    canonical: Optional[str]
    confidence: float
    corrected: bool
    method: str  # exact | substring | fuzzy | none
    suggestions: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def resolved(self) -> bool:
        return self.canonical is not None


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, 1):
        current = [i]
        for j, cb in enumerate(b, 1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        previous = current
    return previous[-1]


class ExerciseResolver:
    def __init__(
        self,
        vocabulary: Optional[Dict[str, Tuple[str, ...]]] = None,
        config: ResolverConfig = DEFAULT_RESOLVER_CONFIG,
    ):
        self.config = config
        self.vocabulary = vocabulary if vocabulary is not None else EXERCISE_KEYWORDS
        # alias -> canonical, first definition wins; canonical names resolve to themselves
        self._aliases: Dict[str, str] = {}
        for canonical, aliases in self.vocabulary.items():
            for alias in (canonical,) + tuple(aliases):
                self._aliases.setdefault(normalize_name(alias), canonical)

    @property
    def aliases(self) -> Dict[str, str]:
        return dict(self._aliases)

    def resolve(self, raw: Optional[str]) -> ExerciseResolution:
        text = normalize_name(raw)
        if not text:
            return ExerciseResolution(raw or "", text, None, 0.0, False, "none")

        canonical = self._aliases.get(text)
        if canonical is not None:
            return self._result(raw, text, canonical, 1.0, "exact")

        canonical = self._substring_match(text)
        if canonical is not None:
            return self._result(raw, text, canonical, 0.85, "substring")

        match = self._fuzzy_match(text)
        if match is not None:
            canonical, distance = match
            return self._result(raw, text, canonical, round(1 - distance / (len(text) + 1), 3), "fuzzy")

        suggestions = tuple(
            self._aliases[a] for a in difflib.get_close_matches(text, list(self._aliases), n=3, cutoff=0.5)
        )
        return ExerciseResolution(raw, text, None, 0.0, False, "none", suggestions or COMMON_EXERCISES)

    def _result(self, raw: str, text: str, canonical: str, confidence: float, method: str) -> ExerciseResolution:
        corrected = normalize_name(canonical) != text
        return ExerciseResolution(raw, text, canonical, confidence, corrected, method)

    def _substring_match(self, text: str) -> Optional[str]:
        if len(text) < self.config.min_substring_length:
            return None
        best_contained: Optional[str] = None
        best_container: Optional[str] = None
        for alias in self._aliases:
            if len(alias) < self.config.min_substring_length:
                continue
            if alias in text:
                if best_contained is None or len(alias) > len(best_contained):
                    best_contained = alias
            elif text in alias:
                if best_container is None or len(alias) < len(best_container):
                    best_container = alias
        chosen = best_contained or best_container
        return self._aliases[chosen] if chosen else None

    def _fuzzy_match(self, text: str) -> Optional[Tuple[str, int]]:
        limit = self.config.max_distance(text)
        best: Optional[Tuple[str, int]] = None
        for alias, canonical in self._aliases.items():
            if abs(len(alias) - len(text)) > limit:
                continue
            d = levenshtein(text, alias)
            if d <= limit and (best is None or d < best[1]):
                best = (canonical, d)
        return best


default_resolver = ExerciseResolver()


def resolve_exercise(raw: Optional[str], config: Optional[ResolverConfig] = None) -> ExerciseResolution:
    if config is None or config == DEFAULT_RESOLVER_CONFIG:
        return default_resolver.resolve(raw)
    return ExerciseResolver(config=config).resolve(raw)


def unrecognized_message(raw: str, suggestions: Tuple[str, ...] = COMMON_EXERCISES) -> str:
    return (
        f"I couldn't recognize \"{raw}\" as an exercise. "
        f"Common exercises include: {', '.join(suggestions)}."
    )


_MENTION_MIN_LENGTH = 3
_MENTION_PATTERNS = sorted(
    (
        (alias, re.compile(r"(?<![a-z0-9])" + re.escape(alias) + r"(?:s|es)?(?![a-z0-9])"))
        for alias in default_resolver.aliases
        if len(alias) >= _MENTION_MIN_LENGTH
    ),
    key=lambda item: len(item[0]),
    reverse=True,
)


def find_exercise_mention(text: Optional[str]) -> Optional[str]:
    """The exercise named in a chat message, as typed (longest alias wins)."""
    t = normalize_name(text)
    if not t:
        return None
    for alias, pattern in _MENTION_PATTERNS:
        if pattern.search(t):
            return alias
    return None


def matching_aliases(canonical: str) -> List[str]:
    """Lowercase names a logged segment may carry for this exercise."""
    names = {normalize_name(canonical)}
    names.update(normalize_name(a) for a in EXERCISE_KEYWORDS.get(canonical, ()))
    return sorted(names)


def find_exercise_mentions(text: Optional[str]) -> List[str]:
    """Canonical exercises named in `text`, in order of appearance.

    Longer aliases claim their span first so "front squat" is not also
    counted as "squat".
    """
    t = normalize_name(text)
    if not t:
        return []
    aliases = default_resolver.aliases
    taken: List[Tuple[int, int]] = []
    found: List[Tuple[int, str]] = []
    for alias, pattern in _MENTION_PATTERNS:
        for m in pattern.finditer(t):
            start, end = m.span()
            if any(start < e and s < end for s, e in taken):
                continue
            taken.append((start, end))
            found.append((start, aliases[alias]))
    ordered: List[str] = []
    for _, canonical in sorted(found):
        if canonical not in ordered:
            ordered.append(canonical)
    return ordered
