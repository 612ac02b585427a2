"""
AutoMod: pre-publication screen for user-submitted text.

moderate(text) is a pure function of the text and the configured term
lists. Matching is case-insensitive *substring* search, so a listed term
inside a longer word still matches ("tontos" hits "tonto"). That
imprecision is accepted behaviour, not something to "fix" with word
boundaries.

Order of checks:
1. blocked terms   -> status 'blocked'
2. flagged terms   -> status 'flagged'
3. length < min    -> status 'flagged' (too short)
4. otherwise       -> status 'clean'

Within a list the first matching term wins and is named in the reason.
"""
from dataclasses import dataclass
from typing import Literal, Optional, Sequence

from django.conf import settings

ModerationStatus = Literal['clean', 'flagged', 'blocked']

DEFAULT_FLAGGED_TERMS = ('spam', 'ofensivo', 'tonto', 'idiota')
DEFAULT_MIN_LENGTH = 3


@dataclass(frozen=True)
class ModerationResult:
    """Outcome of one moderation pass. Never persisted."""
    status: ModerationStatus
    reason: Optional[str] = None

    @property
    def is_clean(self) -> bool:
        return self.status == 'clean'


class AutoModerator:
    """Static deny-list moderator."""

    def __init__(
        self,
        flagged_terms: Sequence[str] = DEFAULT_FLAGGED_TERMS,
        blocked_terms: Sequence[str] = (),
        min_length: int = DEFAULT_MIN_LENGTH,
    ):
        self.flagged_terms = tuple(term.lower() for term in flagged_terms)
        self.blocked_terms = tuple(term.lower() for term in blocked_terms)
        self.min_length = min_length

    @classmethod
    def from_settings(cls) -> 'AutoModerator':
        config = getattr(settings, 'FORUM', {})
        return cls(
            flagged_terms=config.get('AUTOMOD_FLAGGED_TERMS', DEFAULT_FLAGGED_TERMS),
            blocked_terms=config.get('AUTOMOD_BLOCKED_TERMS', ()),
            min_length=config.get('AUTOMOD_MIN_LENGTH', DEFAULT_MIN_LENGTH),
        )

    def moderate(self, text: str) -> ModerationResult:
        lowered = (text or '').lower()

        found = _first_match(lowered, self.blocked_terms)
        if found:
            return ModerationResult('blocked', f"Blocked term: {found}")

        found = _first_match(lowered, self.flagged_terms)
        if found:
            return ModerationResult('flagged', f"Banned term: {found}")

        if len(text or '') < self.min_length:
            return ModerationResult('flagged', "Message too short")

        return ModerationResult('clean')


def _first_match(lowered: str, terms: Sequence[str]) -> Optional[str]:
    for term in terms:
        if term and term in lowered:
            return term
    return None


def moderate(text: str) -> ModerationResult:
    """Moderate text with the term lists from settings.FORUM."""
    return AutoModerator.from_settings().moderate(text)
