"""CLI for reviewing patterns, feeding corrections and managing venues."""

from __future__ import annotations

from datetime import UTC, datetime
from pathlib import Path
from typing import List, Optional, Sequence

import typer
from rich.console import Console
from rich.table import Table

from pattern_engine.errors import PatternEngineError, PatternNotFound, VenueNotFound
from pattern_engine.extraction.models import PostInput, StructuredExtraction
from pattern_engine.pipeline.engine import Engine, build_engine
from pattern_engine.storage.schemas import (
    Coordinates,
    Correction,
    FieldType,
    NormalizationTag,
    Pattern,
    PatternSuggestion,
    SuggestionStatus,
)
from pattern_engine.utils.config import Config, load_config

app = typer.Typer(help="Review and administer the event pattern engine.")
suggestions_app = typer.Typer(help="Review pending pattern suggestions.")
app.add_typer(suggestions_app, name="suggestions")

console = Console(color_system=None, force_terminal=False, width=120)

CONFIG_OPTION = typer.Option(Path("config/config.yaml"), help="Path to config file.")


def _load(config_path: Path) -> Config:
    return load_config(config_path)


def create_engine(cfg: Config) -> Engine:
    return build_engine(cfg)


def _open(config_path: Path) -> Engine:
    return create_engine(_load(config_path))


def _find_pattern(engine: Engine, query: str) -> Pattern:
    """Look up a pattern by full id or unique id prefix."""
    try:
        return engine.patterns.get(query)
    except PatternNotFound:
        pass
    matches = [p for p in engine.patterns.all_patterns() if p.id.startswith(query)]
    if len(matches) == 1:
        return matches[0]
    if matches:
        console.print(f"[red]Pattern prefix '{query}' is ambiguous ({len(matches)} matches).[/red]")
    else:
        console.print(f"[red]No pattern found for '{query}'.[/red]")
    raise typer.Exit(code=1)


def _render_pattern_table(patterns: Sequence[Pattern], *, title: str) -> None:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Field")
    table.add_column("Tag")
    table.add_column("Prio", justify="right")
    table.add_column("Conf", justify="right")
    table.add_column("S/F", justify="right")
    table.add_column("Active")
    table.add_column("Source")
    table.add_column("Description", overflow="fold")

    for pattern in patterns:
        table.add_row(
            pattern.id[:12],
            pattern.field_type.value,
            pattern.normalization_tag.value,
            str(pattern.priority),
            f"{pattern.confidence:.2f}",
            f"{pattern.success_count}/{pattern.failure_count}",
            "yes" if pattern.is_active else "no",
            pattern.source.value,
            pattern.description or "-",
        )
    console.print(table)


def _render_extraction(extraction: StructuredExtraction) -> None:
    table = Table(title=f"Extraction {extraction.post_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_column("Method")
    table.add_column("Conf", justify="right")
    table.add_column("Pattern")

    values = {
        "title": extraction.event_title,
        "date": _join_range(extraction.event_date, extraction.event_end_date),
        "time": _join_range(extraction.event_time, extraction.end_time),
        "price": "free" if extraction.is_free else extraction.price,
        "venue": extraction.venue_name,
        "signup_url": extraction.signup_url,
    }
    for name, value in values.items():
        provenance = extraction.fields.get(name)
        table.add_row(
            name,
            "-" if value is None else str(value),
            provenance.extraction_method if provenance else "none",
            f"{provenance.confidence:.2f}" if provenance else "0.00",
            (provenance.pattern_id or "-")[:12] if provenance else "-",
        )
    console.print(table)
    console.print(
        f"Venue match: {extraction.venue_match_kind.value} ({extraction.venue_match_score:.2f})"
    )
    console.print(f"Overall confidence: {extraction.confidence:.2f}")
    if extraction.needs_review:
        console.print(f"[yellow]Needs review: {', '.join(extraction.review_reasons)}[/yellow]")


def _join_range(start: object, end: object) -> Optional[str]:
    if start is None:
        return None
    return f"{start} - {end}" if end is not None else str(start)


def _render_suggestions(suggestions: Sequence[PatternSuggestion], *, title: str) -> None:
    table = Table(title=title)
    table.add_column("ID", style="cyan")
    table.add_column("Field")
    table.add_column("Tag")
    table.add_column("Regex", overflow="fold")
    table.add_column("Value")
    table.add_column("Status")
    for suggestion in suggestions:
        table.add_row(
            suggestion.id[:12],
            suggestion.field_type.value,
            suggestion.normalization_tag.value,
            suggestion.regex_source,
            suggestion.correct_value,
            suggestion.status.value,
        )
    console.print(table)


@app.command("patterns")
def patterns(
    field: Optional[FieldType] = typer.Option(None, help="Only show one field type."),
    include_inactive: bool = typer.Option(False, "--all", help="Include inactive patterns."),
    config: Path = CONFIG_OPTION,
) -> None:
    """List patterns in selector order."""
    engine = _open(config)
    try:
        rows = engine.patterns.all_patterns()
        if field is not None:
            rows = [p for p in rows if p.field_type == field]
        if not include_inactive:
            rows = [p for p in rows if p.is_active]
        if not rows:
            console.print("[yellow]No patterns found for the given filters.[/yellow]")
            return
        _render_pattern_table(rows, title=f"Patterns ({len(rows)})")
    finally:
        engine.close()


@app.command("extract")
def extract(
    text: str = typer.Argument(..., help="Caption text to extract from."),
    ocr: Optional[str] = typer.Option(None, help="OCR text from the poster image."),
    posted: Optional[datetime] = typer.Option(
        None, help="Post timestamp (ISO); anchors year-less dates."
    ),
    location: Optional[str] = typer.Option(None, help="Location tag attached to the post."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Run the extraction pipeline on one caption."""
    engine = _open(config)
    try:
        post = PostInput(
            post_id="cli",
            caption_text=text,
            ocr_text=ocr,
            post_timestamp=(posted or datetime.now(UTC)),
            location_hint=location,
        )
        _render_extraction(engine.orchestrator.extract(post))
    finally:
        engine.close()


def _ingest(
    config: Path,
    query: str,
    *,
    original: Optional[str],
    corrected: Optional[str],
    post_id: str,
    reviewer: Optional[str],
) -> None:
    engine = _open(config)
    try:
        pattern = _find_pattern(engine, query)
        result = engine.corrections.ingest(
            Correction(
                field_type=pattern.field_type,
                pattern_id=pattern.id,
                original_value=original,
                corrected_value=corrected if corrected is not None else (original or ""),
                post_id=post_id,
                created_by=reviewer,
            )
        )
        updated = result.pattern or pattern
        console.print(
            f"[green]{result.outcome.value}[/green] {updated.id[:12]}: "
            f"confidence {updated.confidence:.2f} "
            f"({updated.success_count}/{updated.observations})"
        )
    except PatternEngineError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.close()


@app.command("confirm")
def confirm(
    pattern_id: str = typer.Argument(..., help="Pattern id or unique prefix."),
    value: str = typer.Option("", help="The extracted value being confirmed."),
    post_id: str = typer.Option("cli", help="Post the value came from."),
    reviewer: Optional[str] = typer.Option(None, help="Reviewer name for the audit trail."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Record that a pattern's extraction was right."""
    _ingest(config, pattern_id, original=value, corrected=value, post_id=post_id, reviewer=reviewer)


@app.command("correct")
def correct(
    pattern_id: str = typer.Argument(..., help="Pattern id or unique prefix."),
    corrected: str = typer.Option(..., help="The correct value."),
    original: Optional[str] = typer.Option(None, help="The value the pattern produced."),
    post_id: str = typer.Option("cli", help="Post the value came from."),
    reviewer: Optional[str] = typer.Option(None, help="Reviewer name for the audit trail."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Record a reviewer correction against a pattern."""
    _ingest(
        config,
        pattern_id,
        original=original,
        corrected=corrected,
        post_id=post_id,
        reviewer=reviewer,
    )


def _set_active(config: Path, query: str, active: bool) -> None:
    engine = _open(config)
    try:
        pattern = _find_pattern(engine, query)
        updated = engine.patterns.set_active(pattern.id, active)
        state = "activated" if updated.is_active else "deactivated"
        console.print(f"[green]{state} {updated.id[:12]}[/green] {updated.summary()}")
    finally:
        engine.close()


@app.command("deactivate")
def deactivate(
    pattern_id: str = typer.Argument(..., help="Pattern id or unique prefix."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Take a pattern out of selection (kept for audit)."""
    _set_active(config, pattern_id, False)


@app.command("activate")
def activate(
    pattern_id: str = typer.Argument(..., help="Pattern id or unique prefix."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Put a deactivated pattern back into selection."""
    _set_active(config, pattern_id, True)


@app.command("reset")
def reset(
    pattern_id: str = typer.Argument(..., help="Pattern id or unique prefix."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Zero a pattern's counters; confidence falls back to its seed value."""
    engine = _open(config)
    try:
        pattern = _find_pattern(engine, pattern_id)
        updated = engine.patterns.reset_counters(pattern.id)
        console.print(f"[green]reset {updated.id[:12]}[/green] {updated.summary()}")
    finally:
        engine.close()


@app.command("resolve-venue")
def resolve_venue(
    text: str = typer.Argument(..., help="Raw venue text."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Resolve raw venue text against the known venues."""
    engine = _open(config)
    try:
        resolution = engine.resolver.resolve(text)
        if resolution.venue is None:
            console.print(
                f"[yellow]Unmatched[/yellow] '{resolution.raw_text}' "
                f"(best score {resolution.score:.2f})"
            )
            raise typer.Exit(code=1)
        venue = resolution.venue
        console.print(
            f"[bold]{venue.name}[/bold] via {resolution.match_kind.value} "
            f"({resolution.score:.2f}, matched '{resolution.matched_text}')"
        )
        if venue.address:
            console.print(f"Address: {venue.address}")
        if venue.coordinates:
            console.print(f"Coordinates: {venue.coordinates.lat}, {venue.coordinates.lng}")
    finally:
        engine.close()


@app.command("venue")
def venue(
    name: str = typer.Argument(..., help="Canonical venue name."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Show a known venue's record."""
    engine = _open(config)
    try:
        record = engine.venues.require(name)
    except VenueNotFound:
        console.print(f"[red]No known venue named '{name}'.[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.close()

    console.print(f"[bold]{record.name}[/bold] ({record.id[:12]})")
    console.print(f"Aliases: {', '.join(record.aliases) or '-'}")
    console.print(f"Address: {record.address or '-'}, {record.city or '-'}")
    if record.coordinates:
        console.print(f"Coordinates: {record.coordinates.lat}, {record.coordinates.lng}")
    console.print(
        f"Corrections: {record.correction_count}"
        + (" (learned)" if record.learned_from_corrections else "")
    )


@app.command("unmatched-venues")
def unmatched_venues(
    texts: List[str] = typer.Argument(..., help="Raw venue strings to check."),
    config: Path = CONFIG_OPTION,
) -> None:
    """List raw venue strings that resolve to no known venue."""
    engine = _open(config)
    try:
        missing = engine.resolver.unmatched(texts)
        if not missing:
            console.print("[green]All venues resolved.[/green]")
            return
        for raw in missing:
            console.print(f"- {raw}")
    finally:
        engine.close()


@app.command("learn-venue")
def learn_venue(
    raw_text: str = typer.Argument(..., help="Venue text as it appeared in the post."),
    name: str = typer.Argument(..., help="Canonical venue name it refers to."),
    address: Optional[str] = typer.Option(None, help="Street address."),
    city: Optional[str] = typer.Option(None, help="City."),
    lat: Optional[float] = typer.Option(None, help="Latitude."),
    lng: Optional[float] = typer.Option(None, help="Longitude."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Teach the venue table that RAW_TEXT means NAME."""
    engine = _open(config)
    try:
        coordinates = Coordinates(lat=lat, lng=lng) if lat is not None and lng is not None else None
        venue = engine.venue_learning.learn_from_correction(
            raw_text, name, coordinates=coordinates, address=address, city=city
        )
        console.print(
            f"[green]{venue.name}[/green] aliases: {', '.join(venue.aliases) or '-'} "
            f"(corrections: {venue.correction_count})"
        )
    finally:
        engine.close()


@app.command("suggest")
def suggest(
    field: FieldType = typer.Option(..., help="Field the pattern extracts."),
    regex: str = typer.Option(..., help="Regular expression with at least one group."),
    tag: NormalizationTag = typer.Option(..., help="Normalization tag for the capture."),
    value: str = typer.Option(..., help="Correct value the pattern should yield."),
    raw_text: Optional[str] = typer.Option(None, help="Text the value was found in."),
    priority: int = typer.Option(150, help="Priority once approved."),
    seed_confidence: float = typer.Option(0.5, help="Confidence before any observation."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Queue a pattern suggestion for review."""
    engine = _open(config)
    try:
        suggestion = engine.promotion.suggest(
            field_type=field,
            regex_source=regex,
            normalization_tag=tag,
            correct_value=value,
            raw_text=raw_text,
            priority=priority,
            seed_confidence=seed_confidence,
        )
        console.print(f"[green]Queued suggestion {suggestion.id}[/green]")
    except PatternEngineError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.close()


@suggestions_app.command("list")
def suggestions_list(
    status: Optional[SuggestionStatus] = typer.Option(
        SuggestionStatus.PENDING, help="Filter by status."
    ),
    config: Path = CONFIG_OPTION,
) -> None:
    """List pattern suggestions."""
    engine = _open(config)
    try:
        rows = engine.suggestions.list(status)
        if not rows:
            console.print("[yellow]No suggestions found.[/yellow]")
            return
        _render_suggestions(rows, title=f"Pattern Suggestions ({len(rows)})")
    finally:
        engine.close()


@suggestions_app.command("approve")
def suggestions_approve(
    suggestion_id: str = typer.Argument(..., help="Suggestion id."),
    reviewer: Optional[str] = typer.Option(None, help="Reviewer name."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Approve a suggestion and insert it as a learned pattern."""
    engine = _open(config)
    try:
        pattern = engine.promotion.approve(suggestion_id, reviewed_by=reviewer)
        console.print(f"[green]Approved -> pattern {pattern.id}[/green]")
    except (PatternEngineError, KeyError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.close()


@suggestions_app.command("reject")
def suggestions_reject(
    suggestion_id: str = typer.Argument(..., help="Suggestion id."),
    reviewer: Optional[str] = typer.Option(None, help="Reviewer name."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Reject a suggestion."""
    engine = _open(config)
    try:
        engine.promotion.reject(suggestion_id, reviewed_by=reviewer)
        console.print(f"[yellow]Rejected {suggestion_id}[/yellow]")
    except (PatternEngineError, KeyError) as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        engine.close()


@app.command("export")
def export(
    output_dir: Path = typer.Argument(..., help="Directory for patterns.json and venues.json."),
    config: Path = CONFIG_OPTION,
) -> None:
    """Export the pattern and venue tables as JSON."""
    engine = _open(config)
    try:
        patterns_path = engine.patterns.export_json(output_dir / "patterns.json")
        venues_path = engine.venues.export_json(output_dir / "venues.json")
        console.print(f"[green]Exported {patterns_path} and {venues_path}[/green]")
    finally:
        engine.close()


def run() -> None:
    """Entrypoint for Typer."""
    app()


if __name__ == "__main__":
    run()
