"""Need evaluation: should new content be generated right now, and about what?"""

import logging

from .config import DirectorConfig
from .context import GenerationContext
from .models.orchestration import ActivityCounters, CharacterState, NarrativeNeed, Urgency
from .models.qualities import CORE_THEMES, QUESTS_COMPLETED
from .storylets.engine import StoryletEngine
from .storylets.progression import STAGE_THEMES

logger = logging.getLogger(__name__)


class NeedEvaluator:
    """Rule-based decision over activity counters and story state."""

    def __init__(self, storylets: StoryletEngine, config: DirectorConfig | None = None):
        self.storylets = storylets
        self.config = config or DirectorConfig()

    def evaluate(
        self,
        character: CharacterState,
        counters: ActivityCounters,
        context: GenerationContext,
    ) -> NarrativeNeed:
        cfg = self.config
        stage = context.progression_stage

        if counters.active_quests >= cfg.max_active_quests:
            return NarrativeNeed(
                needs_content=False,
                reasoning=f"{counters.active_quests} quests already active (limit {cfg.max_active_quests})",
                progression_stage=stage,
            )
        if counters.unresolved_threads >= cfg.max_unresolved_threads:
            return NarrativeNeed(
                needs_content=False,
                reasoning=f"{counters.unresolved_threads} unresolved threads should close first",
                progression_stage=stage,
            )

        weakest = character.weakest_stat()
        corrective = weakest is not None and weakest[1] >= cfg.stat_imbalance_gap
        stale = (
            counters.hours_since_last_content is None
            or counters.hours_since_last_content >= cfg.stale_content_hours
        )

        if counters.active_quests == 0:
            urgency, reason = Urgency.HIGH, "no active quests"
        elif corrective:
            urgency, reason = Urgency.NORMAL, f"{weakest[0]} lags the other stats by {weakest[1]:.1f}"
        elif stale:
            urgency, reason = Urgency.NORMAL, "no new content recently"
        else:
            return NarrativeNeed(
                needs_content=False,
                reasoning=(
                    f"{counters.active_quests} active quest(s) and content from "
                    f"{counters.hours_since_last_content:.1f}h ago"
                ),
                progression_stage=stage,
            )

        theme, anchored = self._pick_theme(context)
        storylet = self.storylets.for_theme(theme, context.qualities)

        if corrective:
            quest_type = "corrective"
        elif storylet and storylet.type == "progression":
            quest_type = "main"
        else:
            quest_type = "side"

        reasoning = f"Content needed: {reason}. Stage {stage} theme '{theme}'"
        if anchored:
            reasoning += " (theme anchor)"
        if storylet:
            reasoning += f" via storylet {storylet.storylet_id}"

        need = NarrativeNeed(
            needs_content=True,
            reasoning=reasoning,
            theme=theme,
            urgency=urgency,
            quest_type=quest_type,
            target_focus=weakest[0] if corrective else None,
            progression_stage=stage,
            storylet_id=storylet.storylet_id if storylet else None,
        )
        logger.debug("Need for %s: %s", character.id, need.reasoning)
        return need

    def _pick_theme(self, context: GenerationContext) -> tuple[str, bool]:
        """Theme for the next piece of content, and whether it is an anchor."""
        anchor = self.storylets.narrative_anchor(context.qualities)
        if anchor:
            return anchor, True

        qualities = context.qualities
        for theme, milestone in STAGE_THEMES[context.progression_stage]:
            if qualities.get(milestone) is not True:
                return theme, False

        completed = qualities.get(QUESTS_COMPLETED, 0)
        if isinstance(completed, bool) or not isinstance(completed, int):
            completed = 0
        return CORE_THEMES[completed % len(CORE_THEMES)], False
