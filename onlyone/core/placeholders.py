"""
Placeholder predicates, one per entity type.

The server returns a stand-in value while the real result is still being
computed. A predicate answers "is this still the stand-in?" for the poller.
"""
from typing import Optional

from onlyone.api.schemas import DreamInterpretation, DreamPost
from onlyone.settings import settings

# Stand-ins written by create-dream-post before the interpretation job finishes
DEFAULT_MEANINGS = frozenset({
    "Your dream is being interpreted...",
    "Your dream is unique and meaningful.",
})


def is_default_interpretation(interpretation: Optional[DreamInterpretation]) -> bool:
    if interpretation is None or not interpretation.meaning:
        return True
    return interpretation.meaning.strip() in DEFAULT_MEANINGS


def is_placeholder_dream(dream: Optional[DreamPost]) -> bool:
    """
    A dream is genuine only when its interpretation meaning is longer than
    PLACEHOLDER_MIN_CONTENT_LENGTH and is not one of the known defaults.
    """
    if dream is None:
        return True
    interp = dream.interpretation
    if is_default_interpretation(interp):
        return True
    return len(interp.meaning) <= int(settings.PLACEHOLDER_MIN_CONTENT_LENGTH)
