# nhclean/models.py
"""
models.py - data model of one clean run

Generation      one numbered "<profile>-<n>-link" entry
GenerationPlan  Generation -> remove flag, ascending by number
CleanMode       all | user | profile, with the policy and run options
CleanPlan       everything computed before any mutation happens
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from nhclean.policy import RetentionPolicy

MODE_ALL = "all"
MODE_USER = "user"
MODE_PROFILE = "profile"
MODES = (MODE_ALL, MODE_USER, MODE_PROFILE)


@dataclass(frozen=True, order=True)
class Generation:
    number: int
    last_modified: float
    path: str


class GenerationPlan:
    """Ordered Generation -> remove mapping. Flags start True and are only ever cleared."""

    def __init__(self):
        self._flags: Dict[Generation, bool] = {}

    def add(self, generation: Generation):
        self._flags[generation] = True

    def keep(self, generation: Generation):
        self._flags[generation] = False

    def items(self) -> List[Tuple[Generation, bool]]:
        return sorted(self._flags.items())

    def newest_first(self) -> List[Tuple[Generation, bool]]:
        return list(reversed(self.items()))

    def to_remove(self) -> List[Generation]:
        """Generations flagged for removal, newest first."""
        return [g for g, remove in self.newest_first() if remove]

    def kept(self) -> List[Generation]:
        return [g for g, remove in self.items() if not remove]

    def __getitem__(self, generation: Generation) -> bool:
        return self._flags[generation]

    def __iter__(self) -> Iterator[Generation]:
        return iter(g for g, _ in self.items())

    def __len__(self) -> int:
        return len(self._flags)

    def by_number(self) -> Dict[int, bool]:
        return {g.number: remove for g, remove in self.items()}

    def to_dict(self) -> List[Dict[str, Any]]:
        return [{"number": g.number, "path": g.path, "last_modified": g.last_modified, "remove": remove}
                for g, remove in self.items()]


@dataclass(frozen=True)
class CleanOptions:
    dry: bool = False
    ask: bool = False
    no_gc: bool = False
    no_gcroots: bool = False
    optimise: bool = False
    max: Optional[str] = None


@dataclass(frozen=True)
class CleanMode:
    kind: str
    policy: RetentionPolicy = field(default_factory=RetentionPolicy)
    options: CleanOptions = field(default_factory=CleanOptions)
    profile: Optional[str] = None

    def __post_init__(self):
        if self.kind not in MODES:
            raise ValueError(f"unknown clean mode {self.kind!r}")
        if self.kind == MODE_PROFILE and not self.profile:
            raise ValueError("profile mode needs a profile path")

    @property
    def scans_gcroots(self) -> bool:
        return self.kind != MODE_PROFILE and not self.options.no_gcroots


@dataclass
class CleanPlan:
    policy: RetentionPolicy
    profiles: Dict[str, GenerationPlan] = field(default_factory=dict)
    gcroots: Dict[str, bool] = field(default_factory=dict)  # target -> remove, sorted by target
    patterns: List[str] = field(default_factory=list)

    def gcroots_to_remove(self) -> List[str]:
        return [p for p, remove in self.gcroots.items() if remove]

    def generations_to_remove(self) -> List[Generation]:
        out: List[Generation] = []
        for profile in sorted(self.profiles):
            out.extend(self.profiles[profile].to_remove())
        return out

    def to_dict(self) -> Dict[str, Any]:
        return {
            "policy": self.policy.to_dict(),
            "patterns": list(self.patterns),
            "gcroots": [{"path": p, "remove": r} for p, r in self.gcroots.items()],
            "profiles": {p: self.profiles[p].to_dict() for p in sorted(self.profiles)},
        }
