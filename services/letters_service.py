"""
Letters service: SKATE letter logic and display-name fallbacks

Pure computation, no state transitions (those belong to DuelManager).
"""
from typing import Optional, Tuple

SKATE = "SKATE"

DEFAULT_PLAYER_NAME = "Skater"
DEFAULT_OPPONENT_NAME = "Opponent"


def next_letters(current: Optional[str]) -> str:
    """
    Append the next letter of SKATE.

    A missing value counts as no letters; a player already at SKATE stays
    at SKATE (length never exceeds 5).

    Examples:
        next_letters("")     -> "S"
        next_letters("SKA")  -> "SKAT"
        next_letters("SKATE") -> "SKATE"
    """
    current = current or ""
    if len(current) >= len(SKATE):
        return SKATE
    return current + SKATE[len(current)]


def previous_letters(current: Optional[str]) -> str:
    """
    Take back the most recent letter; no letters stays no letters.

    Examples:
        previous_letters("SK") -> "S"
        previous_letters("")   -> ""
    """
    return (current or "")[:-1]


def is_eliminated(letters: Optional[str]) -> bool:
    return len(letters or "") >= len(SKATE)


def is_game_over(player_a_letters: Optional[str], player_b_letters: Optional[str]) -> Tuple[bool, Optional[str]]:
    """
    Check whether either player spelled SKATE.

    Returns:
        (over, loser) where loser is "a", "b" or None.
        Player A is checked first; both reaching 5 in one action is impossible
        since only one letter is awarded per action.
    """
    if is_eliminated(player_a_letters):
        return True, "a"
    if is_eliminated(player_b_letters):
        return True, "b"
    return False, None


def resolve_player_name(name: Optional[str]) -> str:
    """Display name for a player, "Skater" when unknown or blank."""
    if name and name.strip():
        return name
    return DEFAULT_PLAYER_NAME


def resolve_opponent_name(name: Optional[str]) -> str:
    """Display name used in notifications about the other player, "Opponent" when unknown or blank."""
    if name and name.strip():
        return name
    return DEFAULT_OPPONENT_NAME
