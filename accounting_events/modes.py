"""
Mode Policy Registry - Static per-source review/refusal policy.

============================================================
MODES
============================================================
STRICT    - events are exported as-is after validation
ASSISTED  - events need mandatory human review before trust
PARTIAL   - only a behavioral subset of events is exported;
            missing categories are expected, not errors
BLOCKED   - the source can produce no safe event at all; it
            fails fast with an explanation instead of
            returning an empty list

Mode NEVER changes what the Validation Engine accepts.

The policy is an immutable mapping built once at start-up and
passed by reference. It is never mutated at runtime.

============================================================
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping, Optional, Union

from accounting_events.exceptions import BlockedSourceError, InvalidInputError
from accounting_events.models import Mode


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModeSemantics:
    """Caller-facing meaning of a mode."""
    mode: Mode
    requires_review: bool
    partial_coverage: bool
    refuses: bool
    description: str


MODE_SEMANTICS: Mapping[Mode, ModeSemantics] = MappingProxyType({
    Mode.STRICT: ModeSemantics(
        mode=Mode.STRICT,
        requires_review=False,
        partial_coverage=False,
        refuses=False,
        description="Only explicit protocol-level events are exported.",
    ),
    Mode.ASSISTED: ModeSemantics(
        mode=Mode.ASSISTED,
        requires_review=True,
        partial_coverage=False,
        refuses=False,
        description="Events must be reviewed by a human before they are trusted.",
    ),
    Mode.PARTIAL: ModeSemantics(
        mode=Mode.PARTIAL,
        requires_review=False,
        partial_coverage=True,
        refuses=False,
        description="Only a fixed subset of possible event categories is exported.",
    ),
    Mode.BLOCKED: ModeSemantics(
        mode=Mode.BLOCKED,
        requires_review=False,
        partial_coverage=False,
        refuses=True,
        description="No event from this source can be produced safely.",
    ),
})


# Sources that are not STRICT. Everything else defaults to STRICT.
DEFAULT_SOURCE_MODES: Mapping[str, Mode] = MappingProxyType({
    "levana-osmosis": Mode.ASSISTED,
    "levana-injective": Mode.ASSISTED,
    "levana-neutron": Mode.ASSISTED,
    "levana-juno": Mode.ASSISTED,
    "kwenta": Mode.PARTIAL,
    "drift": Mode.BLOCKED,
})


class ModePolicy:
    """
    Immutable source-id to Mode lookup.

    Usage:
        policy = build_mode_policy({"kwenta": "strict"})
        policy.mode_of("levana-osmosis")   # Mode.ASSISTED
        policy.mode_of("anything-else")    # Mode.STRICT
    """

    __slots__ = ("_modes", "_reasons")

    def __init__(
        self,
        modes: Mapping[str, Mode],
        reasons: Optional[Mapping[str, str]] = None,
    ) -> None:
        self._modes = MappingProxyType(dict(modes))
        self._reasons = MappingProxyType(dict(reasons or {}))

    @property
    def modes(self) -> Mapping[str, Mode]:
        return self._modes

    def mode_of(self, source_id: str) -> Mode:
        """Mode for a source, defaulting to STRICT."""
        return self._modes.get(source_id, Mode.STRICT)

    def semantics_of(self, source_id: str) -> ModeSemantics:
        """Caller-facing semantics for a source."""
        return MODE_SEMANTICS[self.mode_of(source_id)]

    def requires_review(self, source_id: str) -> bool:
        return self.semantics_of(source_id).requires_review

    def is_partial(self, source_id: str) -> bool:
        return self.semantics_of(source_id).partial_coverage

    def is_blocked(self, source_id: str) -> bool:
        return self.semantics_of(source_id).refuses

    def ensure_allowed(self, source_id: str, reason: Optional[str] = None) -> None:
        """
        Fail fast for BLOCKED sources.

        Raises:
            BlockedSourceError: the source can never produce a safe event
        """
        if not self.is_blocked(source_id):
            return
        explanation = reason or self._reasons.get(source_id) or MODE_SEMANTICS[Mode.BLOCKED].description
        logger.info(f"[{source_id}] Refusing blocked source: {explanation}")
        raise BlockedSourceError(
            message=f"Source '{source_id}' is blocked: {explanation}",
            source_id=source_id,
        )

    def __contains__(self, source_id: object) -> bool:
        return source_id in self._modes

    def __repr__(self) -> str:
        non_strict = {k: v.value for k, v in self._modes.items() if v != Mode.STRICT}
        return f"<ModePolicy(non_strict={non_strict})>"


def parse_mode(value: Union[Mode, str]) -> Mode:
    """Parse a mode name, case-insensitively."""
    if isinstance(value, Mode):
        return value
    try:
        return Mode(str(value).strip().lower())
    except ValueError:
        raise InvalidInputError(
            message=f"Unknown mode '{value}'. Must be one of: {', '.join(m.value for m in Mode)}",
            field_name="mode",
            value=str(value),
        )


def build_mode_policy(
    overrides: Optional[Mapping[str, Union[Mode, str]]] = None,
    reasons: Optional[Mapping[str, str]] = None,
    base: Mapping[str, Mode] = DEFAULT_SOURCE_MODES,
) -> ModePolicy:
    """
    Build the process-wide policy once.

    Args:
        overrides: source id -> mode name, typically from configuration
        reasons: source id -> explanation used when refusing BLOCKED sources
        base: starting table

    Returns:
        Immutable ModePolicy
    """
    modes = dict(base)
    for source_id, mode in (overrides or {}).items():
        modes[source_id] = parse_mode(mode)
    policy = ModePolicy(modes, reasons)
    logger.debug(f"Built mode policy: {policy!r}")
    return policy
