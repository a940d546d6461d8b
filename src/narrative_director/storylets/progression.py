"""Story progression derived from milestone qualities."""

from collections.abc import Mapping

from ..models.qualities import QualityValue

STAGE_REQUIREMENTS: tuple[tuple[int, tuple[str, ...]], ...] = (
    (2, ("journey_begun", "first_challenge_overcome")),
    (3, ("inner_doubt_faced", "hidden_strength_revealed")),
    (4, ("breakthrough_achieved",)),
)

# Themes the need evaluator picks from at each stage, paired with the
# milestone that marks the theme as done
STAGE_THEMES: dict[int, tuple[tuple[str, str], ...]] = {
    1: (
        ("call_to_adventure", "journey_begun"),
        ("first_trial", "first_challenge_overcome"),
        ("finding_a_mentor", "mentor_discovered"),
    ),
    2: (
        ("facing_doubt", "inner_doubt_faced"),
        ("hidden_strength", "hidden_strength_revealed"),
        ("building_community", "community_formed"),
        ("enduring_setback", "setback_endured"),
    ),
    3: (
        ("breakthrough", "breakthrough_achieved"),
        ("integrating_wisdom", "wisdom_integrated"),
    ),
    4: (
        ("new_chapter", "new_chapter_begun"),
    ),
}


def progression_stage(qualities: Mapping[str, QualityValue]) -> int:
    """Stage 1-4. Each stage needs every milestone of the stages below it."""
    stage = 1
    for next_stage, required in STAGE_REQUIREMENTS:
        if not all(qualities.get(name) is True for name in required):
            break
        stage = next_stage
    return stage


def theme_stage(theme: str) -> int | None:
    """The stage a progression theme belongs to, or None for non-stage themes."""
    for stage, themes in STAGE_THEMES.items():
        if any(name == theme for name, _ in themes):
            return stage
    return None
