"""Rep name matcher for reconciliation jobs.

Resolves a free-text rep name (as typed into an ActiveCampaign custom field)
to a known rep with a Dynamics system-user GUID. Rules are tried in order and
the first hit wins; within a rule, reps are scanned in the order given, so
the result is a pure function of (raw_name, reps, aliases).

Callers must skip a contact on NoMatch rather than guess.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass


@dataclass(frozen=True)
class RepRecord:
    """A rep that can own Dynamics leads."""

    name: str
    dynamics_user_id: str

    @property
    def first_name(self) -> str:
        parts = self.name.split()
        return parts[0].lower() if parts else ""

    @property
    def normalized(self) -> str:
        return _normalize(self.name)


@dataclass(frozen=True)
class Matched:
    rep: RepRecord
    rule: str


@dataclass(frozen=True)
class NoMatch:
    raw_name: str


MatchResult = Matched | NoMatch

Rule = Callable[[str, Sequence[RepRecord], Mapping[str, str]], RepRecord | None]


def _normalize(value: str) -> str:
    return " ".join(value.lower().split())


# ── Rules ───────────────────────────────────────────────────────────────────


def _by_alias(
    search: str, reps: Sequence[RepRecord], aliases: Mapping[str, str]
) -> RepRecord | None:
    canonical = aliases.get(search)
    if not canonical:
        return None
    target = _normalize(canonical)
    for rep in reps:
        if rep.normalized == target:
            return rep
    return None


def _by_exact_name(
    search: str, reps: Sequence[RepRecord], aliases: Mapping[str, str]
) -> RepRecord | None:
    for rep in reps:
        if rep.normalized == search:
            return rep
    return None


def _by_hyphen_prefix(
    search: str, reps: Sequence[RepRecord], aliases: Mapping[str, str]
) -> RepRecord | None:
    # "Malina - English" -> "malina"
    if "-" not in search:
        return None
    before = search.split("-", 1)[0].strip()
    if not before:
        return None
    for rep in reps:
        if rep.first_name == before:
            return rep
    return None


def _by_first_name(
    search: str, reps: Sequence[RepRecord], aliases: Mapping[str, str]
) -> RepRecord | None:
    first = search.split(" ", 1)[0]
    for rep in reps:
        if rep.first_name == first:
            return rep
    return None


def _by_containment(
    search: str, reps: Sequence[RepRecord], aliases: Mapping[str, str]
) -> RepRecord | None:
    for rep in reps:
        if rep.normalized and rep.normalized in search:
            return rep
    for rep in reps:
        if search in rep.normalized:
            return rep
    return None


MATCH_RULES: tuple[tuple[str, Rule], ...] = (
    ("alias", _by_alias),
    ("exact", _by_exact_name),
    ("hyphen-prefix", _by_hyphen_prefix),
    ("first-name", _by_first_name),
    ("containment", _by_containment),
)


# ── Public API ──────────────────────────────────────────────────────────────


def match_rep(
    raw_name: str | None,
    reps: Sequence[RepRecord],
    aliases: Mapping[str, str] | None = None,
) -> MatchResult:
    """Resolve ``raw_name`` against ``reps``.

    Args:
        raw_name: Free-text rep name from the CRM.
        reps: Known reps, in the order ties should be broken.
        aliases: Lower-cased alias -> canonical rep name overrides.

    Returns:
        Matched(rep, rule) for the first rule that fires, else NoMatch.
    """
    original = (raw_name or "").strip()
    search = _normalize(original)
    if not search:
        return NoMatch(raw_name=original)

    alias_table = {_normalize(k): v for k, v in (aliases or {}).items()}
    for rule_name, rule in MATCH_RULES:
        rep = rule(search, reps, alias_table)
        if rep is not None:
            return Matched(rep=rep, rule=rule_name)
    return NoMatch(raw_name=original)
