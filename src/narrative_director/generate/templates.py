"""Deterministic fallback content, used when the generation service fails.

Templates are structurally valid by construction so a fallback candidate
can pass every validation gate.
"""

from ..models.content import STATS, Quest
from ..models.orchestration import CharacterState, NarrativeNeed

# Stat -> (focus name, activity phrase)
STAT_FOCUS: dict[str, tuple[str, str]] = {
    "STR": ("Might", "steady physical training"),
    "DEX": ("Grace", "practice that sharpens balance and precision"),
    "CON": ("Endurance", "habits that build stamina and rest"),
    "INT": ("Insight", "study and focused learning"),
    "WIS": ("Stillness", "reflection and mindful attention"),
    "CHA": ("Kinship", "reaching out and connecting with others"),
}

XP_BY_DIFFICULTY = {"easy": 15, "medium": 20, "hard": 30}


def _title_case(theme: str | None) -> str:
    return (theme or "journey").replace("_", " ").title()


def fallback_quest(
    character: CharacterState,
    need: NarrativeNeed,
    effects: list[dict] | None = None,
) -> dict:
    """A plain but valid quest built from the need alone."""
    stat = need.target_focus if need.target_focus in STATS else _strongest_gap_stat(character)
    focus, activity = STAT_FOCUS[stat]
    difficulty = "easy" if need.quest_type == "corrective" else "medium"
    xp = XP_BY_DIFFICULTY[difficulty]
    theme_title = _title_case(need.theme)
    hero = character.name or "the traveler"

    return {
        "title": f"{theme_title}: The Path of {focus}",
        "description": (
            f"A quiet moment on the road gives {hero} a chance to reflect. "
            f"The story turns toward {theme_title.lower()}, and the way forward "
            f"runs through {activity}. Every small step taken now will shape the chapters ahead."
        ),
        "objectives": [
            {
                "description": f"Spend time on {activity}",
                "goal_mapping": f"{stat.lower()}_practice",
                "stat_reward": stat,
                "xp_reward": xp,
            },
            {
                "description": "Write down one thing learned along the way",
                "goal_mapping": "reflection",
                "stat_reward": "WIS",
                "xp_reward": XP_BY_DIFFICULTY["easy"],
            },
        ],
        "npc_involved": None,
        "theme": need.theme or "",
        "quest_type": need.quest_type if need.quest_type in ("main", "side", "corrective") else "side",
        "difficulty": difficulty,
        "estimated_duration": "3 days",
        "storylet_id": need.storylet_id,
        "effects": list(effects or []),
    }


def fallback_outcome(character: CharacterState, quest: Quest) -> dict:
    """A plain but valid outcome for a completed quest."""
    hero = character.name or "The traveler"
    npcs = [quest.npc_involved] if quest.npc_involved else []
    return {
        "narrative_text": (
            f"{hero} completed {quest.title}. The effort was steady rather than dramatic, "
            f"but it left a mark: the road feels a little more familiar, and the next "
            f"step looks a little less daunting than before. Word of the deed travels "
            f"quietly, and those who were watching take note of the progress made."
        ),
        "npc_interactions": [
            {"npc_name": name, "sentiment": "positive", "context": f"Shared in {quest.title}"}
            for name in npcs
        ],
        "world_state_changes": [],
        "future_plot_hooks": ["The next chapter waits just beyond the horizon."],
        "effects": [],
    }


def _strongest_gap_stat(character: CharacterState) -> str:
    weakest = character.weakest_stat()
    return weakest[0] if weakest else "WIS"
