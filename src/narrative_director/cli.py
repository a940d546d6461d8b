"""Command-line interface for Narrative Director."""

import asyncio
import json
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from narrative_director import __version__

console = Console()


def _setup_logging(verbose: bool) -> None:
    from narrative_director.config import get_settings

    level = logging.DEBUG if verbose else getattr(logging, get_settings().log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def main(verbose: bool) -> None:
    """Narrative Director - validated story generation for a simulated character."""
    _setup_logging(verbose)


def _parse_stats(raw: str | None) -> dict[str, int]:
    """Parse 'STR=12,DEX=9,...' into a stats dict."""
    stats: dict[str, int] = {}
    if not raw:
        return stats
    for part in raw.split(","):
        key, _, value = part.partition("=")
        try:
            stats[key.strip().upper()] = int(value)
        except ValueError as e:
            raise click.BadParameter(f"'{part}' is not STAT=number", param_hint="--stats") from e
    return stats


def _build_director(world, offline: bool):
    from narrative_director.config import DirectorConfig, get_settings
    from narrative_director.director import NarrativeDirector
    from narrative_director.llm import LLMClient, OfflineService
    from narrative_director.storylets import StoryletEngine, default_storylets, load_storylets
    from narrative_director.validate import RuleSet

    settings = get_settings()
    config = DirectorConfig.from_settings(settings)

    storylets = StoryletEngine(default_storylets(), anchor_interval=config.anchor_interval)
    if settings.storylets_file:
        for storylet in load_storylets(settings.storylets_file):
            storylets.add(storylet)
    rules = RuleSet.load(settings.rules_file) if settings.rules_file else None

    service = OfflineService() if offline else LLMClient(settings=settings)
    return NarrativeDirector(
        service,
        graph=world.graph,
        qualities=world.qualities,
        memory=world.memory,
        storylets=storylets,
        rules=rules,
        config=config,
    )


def _open_world():
    from narrative_director.config import get_settings
    from narrative_director.exceptions import StoreError
    from narrative_director.state import WorldState

    try:
        return WorldState.open(get_settings().snapshot_path)
    except StoreError as e:
        raise click.ClickException(str(e)) from e


def _character(world, character_id: str, name, character_class, stats, level):
    from narrative_director.models import CharacterState

    saved = world.characters.get(character_id, {})
    character = CharacterState(
        id=character_id,
        name=name or saved.get("name", ""),
        character_class=character_class or saved.get("character_class", ""),
        level=level or saved.get("level", 1),
        stats=stats or saved.get("stats", {}),
    )
    record = world.characters.setdefault(character_id, {"active_quests": []})
    record.update(character.to_dict())
    return character


def _print_result(result) -> None:
    color = "green" if result.succeeded else ("yellow" if result.action.value == "none" else "red")
    console.print(f"[{color}]{result.action.value}[/{color}] {result.reason}")

    if result.outcome:
        console.print(f"\n{result.outcome.narrative_text}\n")
        for hook in result.outcome.future_plot_hooks:
            console.print(f"  [dim]hook:[/dim] {hook}")
    elif result.quest:
        quest = result.quest
        console.print(f"\n[bold]{quest.title}[/bold] [dim]({quest.quest_type}, {quest.difficulty})[/dim]")
        console.print(quest.description)
        table = Table(show_header=True)
        table.add_column("Objective")
        table.add_column("Stat")
        table.add_column("XP", justify="right")
        for objective in quest.objectives:
            table.add_row(objective.description, objective.stat_reward.value, str(objective.xp_reward))
        console.print(table)

    for issue in result.issues:
        console.print(f"  [red]-[/red] {issue}")
    for rejected in result.rejected_effects:
        console.print(f"  [yellow]effect dropped:[/yellow] {rejected}")

    details = [f"attempts {result.attempts}", f"{result.latency_ms:.0f} ms"]
    if result.compliance_score is not None:
        details.append(f"compliance {result.compliance_score:.0f}")
    if result.fallback:
        details.append("templated")
    console.print(f"[dim]{', '.join(details)}[/dim]")


@main.command()
def status() -> None:
    """Check configuration and whether the model backend is reachable."""
    from narrative_director.config import get_settings
    from narrative_director.llm import LLMClient

    settings = get_settings()
    console.print("[bold]Narrative Director Status[/bold]\n")
    console.print(f"Provider: {settings.llm_provider}")

    client = LLMClient(settings=settings)
    console.print(f"Model: {client.model}")
    if asyncio.run(client.is_available()):
        console.print("[green]✓[/green] Model backend reachable")
    else:
        console.print("[red]✗[/red] Model backend not reachable (generation will use templates)")

    path = settings.snapshot_path
    if path.exists():
        world = _open_world()
        console.print(f"[green]✓[/green] Snapshot {path} ({len(world.characters)} characters)")
    else:
        console.print(f"[dim]No snapshot at {path} yet[/dim]")


@main.command()
@click.argument("character_id")
@click.option("--name", "-n", help="Character name")
@click.option("--class", "character_class", help="Character class")
@click.option("--level", type=int, help="Character level")
@click.option("--stats", help="Stats as STR=12,DEX=9,CON=10,INT=14,WIS=11,CHA=8")
@click.option("--active", "active_quests", type=int, help="Active quest count (default: tracked quests)")
@click.option("--threads", "unresolved_threads", type=int, default=0, help="Unresolved narrative threads")
@click.option("--hours", type=float, help="Hours since the last content (default: from memory)")
@click.option("--offline", is_flag=True, help="Skip the model and use templated content")
@click.option("--json-output", "as_json", is_flag=True, help="Print the result as JSON")
def generate(
    character_id: str,
    name: str | None,
    character_class: str | None,
    level: int | None,
    stats: str | None,
    active_quests: int | None,
    unresolved_threads: int,
    hours: float | None,
    offline: bool,
    as_json: bool,
) -> None:
    """Run one orchestration session: decide, generate, validate and apply a quest."""
    from narrative_director.models import ActivityCounters
    from narrative_director.models.entities import utcnow

    world = _open_world()
    character = _character(world, character_id, name, character_class, _parse_stats(stats), level)
    record = world.characters[character_id]
    director = _build_director(world, offline)

    async def run():
        if hours is None:
            recent = await world.memory.get_working_memory(character_id, limit=1)
            since = (utcnow() - recent[-1].timestamp).total_seconds() / 3600 if recent else None
        else:
            since = hours
        counters = ActivityCounters(
            active_quests=len(record["active_quests"]) if active_quests is None else active_quests,
            unresolved_threads=unresolved_threads,
            hours_since_last_content=since,
        )
        return await director.orchestrate(character, counters)

    result = asyncio.run(run())
    if result.quest:
        record["active_quests"].append(result.quest.model_dump(mode="json"))
    world.save()

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        _print_result(result)


@main.command()
@click.argument("character_id")
@click.argument("title", required=False)
@click.option("--offline", is_flag=True, help="Skip the model and use templated content")
@click.option("--json-output", "as_json", is_flag=True, help="Print the result as JSON")
def complete(character_id: str, title: str | None, offline: bool, as_json: bool) -> None:
    """Complete an active quest and generate its outcome."""
    from narrative_director.models import Quest

    world = _open_world()
    record = world.characters.get(character_id)
    if not record or not record.get("active_quests"):
        raise click.ClickException(f"{character_id} has no active quests")

    active = record["active_quests"]
    matches = [q for q in active if title is None or q["title"].lower() == title.lower()]
    if not matches:
        raise click.ClickException(f"No active quest titled '{title}'")
    raw = matches[0]

    character = _character(world, character_id, None, None, {}, None)
    director = _build_director(world, offline)
    result = asyncio.run(director.orchestrate_outcome(character, Quest.model_validate(raw)))
    if result.succeeded:
        active.remove(raw)
    world.save()

    if as_json:
        console.print_json(json.dumps(result.to_dict()))
    else:
        _print_result(result)


@main.command()
@click.argument("character_id")
@click.option("--all", "show_all", is_flag=True, help="Include storylets that are not available yet")
def storylets(character_id: str, show_all: bool) -> None:
    """List storylets and which are open to a character."""
    from narrative_director.storylets import progression_stage

    world = _open_world()
    director = _build_director(world, offline=True)
    qualities = asyncio.run(world.qualities.get_qualities(character_id))
    available = {s.storylet_id for s in director.storylets.available(qualities)}

    console.print(f"[bold]Storylets for {character_id}[/bold] (stage {progression_stage(qualities)})\n")
    table = Table(show_header=True)
    table.add_column("Storylet", style="cyan")
    table.add_column("Type")
    table.add_column("Theme")
    table.add_column("Available", justify="center")

    for storylet in director.storylets.sort_by_relevance(director.storylets.storylets, qualities):
        is_open = storylet.storylet_id in available
        if not (is_open or show_all):
            continue
        table.add_row(
            storylet.storylet_id,
            storylet.type,
            storylet.theme or storylet.anchors_theme or "",
            "[green]✓[/green]" if is_open else "[dim]-[/dim]",
        )
    console.print(table)

    if qualities:
        console.print("\n[bold]Qualities:[/bold]")
        for key, value in sorted(qualities.items()):
            console.print(f"  {key}: {value}")


@main.command()
@click.argument("character_id")
@click.option("--entity", "-e", "entity_name", help="Only relationships touching this entity")
@click.option("--type", "-t", "rel_type", help="Only one relationship type (knows, involves, ...)")
@click.option("--before", type=click.DateTime(), help="Only relationships established before this time (UTC)")
def graph(character_id: str, entity_name: str | None, rel_type: str | None, before) -> None:
    """Show a character's knowledge graph, or query its relationships over time."""
    from datetime import timezone

    from narrative_director.models import RelationshipQuery, RelationshipType

    world = _open_world()
    entity_graph = asyncio.run(world.graph.get_entity_graph(character_id))
    if not entity_graph.entities:
        console.print(f"[yellow]No entities recorded for {character_id}[/yellow]")
        return
    names = {e.id: e.name for e in entity_graph.entities}

    if not (entity_name or rel_type or before):
        table = Table(title=f"Entities for {character_id}", show_header=True)
        table.add_column("Type", style="cyan")
        table.add_column("Name")
        table.add_column("Importance", justify="right")
        table.add_column("Last updated")
        for entity in sorted(entity_graph.entities, key=lambda e: (e.type.value, -e.importance, e.name)):
            table.add_row(
                entity.type.value, entity.name, f"{entity.importance:.2f}",
                entity.last_updated.strftime("%Y-%m-%d %H:%M"),
            )
        console.print(table)
        relationships = sorted(entity_graph.relationships, key=lambda r: -r.strength)[:20]
    else:
        try:
            wanted = RelationshipType(rel_type.lower()) if rel_type else None
        except ValueError as e:
            raise click.BadParameter(f"Unknown relationship type '{rel_type}'", param_hint="--type") from e
        query = RelationshipQuery(
            entity_name=entity_name,
            relationship_type=wanted,
            before=before.replace(tzinfo=timezone.utc) if before else None,
        )
        relationships = asyncio.run(world.graph.query_relationships(character_id, query))

    console.print(f"\n[bold]Relationships ({len(relationships)}):[/bold]")
    for rel in relationships:
        console.print(
            f"  {names.get(rel.source_id, rel.source_id)} --{rel.type.value}--> "
            f"{names.get(rel.target_id, rel.target_id)} [dim]({rel.strength:.2f}, "
            f"since {rel.established_at:%Y-%m-%d})[/dim]"
        )


@main.command(name="check-prereq")
@click.argument("expression")
@click.argument("qualities", default="{}", required=False)
def check_prereq(expression: str, qualities: str) -> None:
    """Evaluate a prerequisite expression (JSON) against a set of qualities."""
    from narrative_director.exceptions import PrerequisiteError
    from narrative_director.storylets import check_prerequisites, parse_prerequisites, referenced_qualities

    try:
        expr = parse_prerequisites(json.loads(expression))
        values = json.loads(qualities)
    except json.JSONDecodeError as e:
        raise click.BadParameter(f"Invalid JSON: {e}") from e
    except PrerequisiteError as e:
        raise click.ClickException(str(e)) from e
    if not isinstance(values, dict):
        raise click.BadParameter("Qualities must be a JSON object", param_hint="QUALITIES")

    result = check_prerequisites(expr, values)
    missing = sorted(referenced_qualities(expr) - set(values))
    console.print("[green]satisfied[/green]" if result else "[red]not satisfied[/red]")
    if missing:
        console.print(f"[dim]Qualities not set: {', '.join(missing)}[/dim]")


if __name__ == "__main__":
    main()
