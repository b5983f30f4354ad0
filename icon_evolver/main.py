"""
Icon Evolver — command line front end

Usage:
  icon-evolver evolve --icon icon.png --name "Cat Cam" --category Photo --description "..."
  icon-evolver evolve --play-store "https://play.google.com/store/apps/details?id=com.example"
  icon-evolver briefs --description "..." --screenshot s1.png --screenshot s2.png --execute-all
  icon-evolver --list-styles
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.prompt import Prompt
from rich.rule import Rule
from rich.table import Table

from .brief_pipeline import BriefPipeline
from .config import load_settings
from .errors import IconEvolverError
from .gemini import GeminiService
from .images import load_image_payload, save_image_payload
from .metadata import PlayStoreLookup
from .models import AppAnalysis, CreativeBrief, EntertainmentInsights, EvolutionSuggestions, TrendSynthesis
from .pipeline import EvolutionPipeline
from .rendering_styles import MATCH_SEED, all_rendering_styles
from .trends import CATEGORY_ORDER, trend_id
from .validators import ICON_SIZES

console = Console()

OUTPUTS_ROOT = Path("outputs")


# ── CLI ───────────────────────────────────────────────────────────────────────

def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Icon Evolver — trend-guided app icon evolution")
    parser.add_argument("--list-styles", action="store_true", help="Print the rendering style presets and exit")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    evolve = sub.add_parser("evolve", help="Evolve an existing icon guided by entertainment trends")
    source = evolve.add_mutually_exclusive_group(required=True)
    source.add_argument("--icon", type=Path, help="Seed icon image (png, jpeg, webp, gif)")
    source.add_argument("--play-store", help="Google Play listing URL; supplies icon, name and description")
    evolve.add_argument("--name", default="", help="App name (required with --icon)")
    evolve.add_argument("--category", default="", help="App category (required with --icon)")
    evolve.add_argument("--description", default="", help="App description (required with --icon)")
    evolve.add_argument("--trend", action="append", default=[], help="Trend id to use, e.g. 'anime-Demon Slayer' (repeatable)")
    evolve.add_argument("--all-trends", action="store_true", help="Select every trend from the analysis")
    evolve.add_argument("--direction", default=None, help="Override the suggested evolution direction")
    evolve.add_argument("--style", default=MATCH_SEED, help="Rendering style id (see --list-styles)")
    evolve.add_argument("--prompt", default="", help="Additional free-text instructions")
    evolve.add_argument("--preserve", action="append", default=None, help="Element that must be preserved (repeatable)")
    evolve.add_argument("--size", choices=ICON_SIZES, default="1K")
    evolve.add_argument("--yes", action="store_true", help="Non-interactive: accept suggestions as they are")
    evolve.add_argument("--output", default=None, help="Output directory (default: outputs/<timestamp>)")

    briefs = sub.add_parser("briefs", help="Analyse an app and write creative briefs for its icon")
    briefs.add_argument("--description", default="", help="App description or Play Store URL")
    briefs.add_argument("--screenshot", type=Path, action="append", default=[], help="Screenshot or icon image (repeatable)")
    briefs.add_argument(
        "--skip-category",
        action="append",
        default=[],
        help="Trend category to leave out of the briefs (entertainmentNarrative, sentimentKeywords, ...)",
    )
    briefs.add_argument("--execute-all", action="store_true", help="Render an image for every brief")
    briefs.add_argument("--output", default=None, help="Output directory (default: outputs/<timestamp>)")

    args = parser.parse_args(argv)
    if not args.list_styles and args.command is None:
        parser.error("a command is required (evolve or briefs)")
    return args


# ── Display ───────────────────────────────────────────────────────────────────

def display_styles() -> None:
    table = Table(title="Rendering styles")
    table.add_column("id", style="bold cyan")
    table.add_column("name")
    table.add_column("description", style="dim")
    for style in all_rendering_styles():
        table.add_row(style.id, style.name, style.description)
    console.print(table)


def display_insights(insights: EntertainmentInsights) -> None:
    icon = insights.icon_analysis
    console.print(
        Panel(
            f"[bold]Audience:[/bold] {insights.target_audience.demographics}\n"
            f"[bold]Interests:[/bold] {', '.join(insights.target_audience.interests) or '-'}\n\n"
            f"[bold]Core subject:[/bold] {icon.core_subject}\n"
            f"[bold]App function:[/bold] {icon.app_function}\n"
            f"[bold]Current style:[/bold] {icon.current_style}\n"
            f"[bold]Must preserve:[/bold] {', '.join(icon.must_preserve) or '-'}",
            title="[bold]Entertainment Insights[/bold]",
            border_style="blue",
        )
    )

    table = Table(title="Trends")
    table.add_column("id", style="bold cyan")
    table.add_column("notes")
    corpus = insights.entertainment_trends
    for field, prefix, _ in CATEGORY_ORDER:
        for item in getattr(corpus, field):
            if field == "aesthetics":
                table.add_row(trend_id(prefix, item.name), item.description)
            else:
                table.add_row(trend_id(prefix, item.title), item.relevance)
    console.print(table)
    for source in insights.sources:
        console.print(f"  [dim]Source: {source.title} {source.uri}[/dim]")


def display_suggestion(result: EvolutionSuggestions) -> None:
    s = result.suggestion
    guard = result.function_guard
    console.print(
        Panel(
            f"[bold]Direction:[/bold] {s.evolution_direction}\n\n"
            f"[bold]Rationale:[/bold] {s.rationale}\n"
            f"[bold]Key elements:[/bold] {', '.join(s.key_elements) or '-'}\n"
            f"[bold]Trends used:[/bold] {', '.join(result.selected_trend_names) or 'none (quality uplift)'}\n\n"
            f"[yellow]⚠ {guard.warning}[/yellow]\n[dim]{guard.reason}[/dim]",
            title="[bold]Evolution Suggestion[/bold]",
            border_style="magenta",
        )
    )


def display_analysis(analysis: AppAnalysis) -> None:
    profile = analysis.psychographic_profile
    summary = profile if isinstance(profile, str) else profile.summary
    competitors = "  ".join(c.name for c in analysis.competitors) or "-"
    console.print(
        Panel(
            f"[bold]App:[/bold] {analysis.app_name or 'Unknown'} ({analysis.app_category or analysis.vertical})\n"
            f"[bold]Vertical:[/bold] {analysis.vertical}\n"
            f"[bold]Demographics:[/bold] {analysis.demographics}\n"
            f"[bold]Features:[/bold] {', '.join(analysis.features) or '-'}\n"
            f"[bold]Competitors:[/bold] {competitors}\n"
            f"[bold]Psychographics:[/bold] {summary}",
            title="[bold]App Analysis[/bold]",
            border_style="blue",
        )
    )


def display_trends(trends: TrendSynthesis, order) -> None:
    sections = {
        "entertainmentNarrative": "\n".join(
            f"{c.category}: {', '.join(i.title for i in c.items)}" for c in trends.entertainment_narrative
        ),
        "sentimentKeywords": ", ".join(trends.sentiment_keywords),
        "subcultureOverlap": "\n".join(f"{s.community}: {s.visual_language}" for s in trends.subculture_overlap),
        "visualTrends": "\n".join(f"{v.trend}: {v.description}" for v in trends.visual_trends),
    }
    body = "\n\n".join(f"[bold]{name}[/bold]\n{sections[name] or '-'}" for name in order)
    console.print(Panel(body, title="[bold]Trend Synthesis[/bold]", border_style="cyan"))


def display_briefs(briefs: List[CreativeBrief]) -> None:
    for b in briefs:
        console.print(
            Panel(
                f"[bold]Why:[/bold] {b.the_why}\n"
                f"[bold]Thesis:[/bold] {b.design_thesis or '-'}\n"
                f"[bold]CTR:[/bold] {b.ctr_rationale}\n"
                f"[bold]CVR:[/bold] {b.cvr_rationale}\n"
                f"[bold]Differentiation:[/bold] {b.competitor_differentiation}\n\n"
                f"[dim]{b.prompt}[/dim]",
                title=f"[bold]{b.id} — {b.direction_name}[/bold] ({b.suggested_size})",
                border_style="green",
            )
        )


# ── Flows ─────────────────────────────────────────────────────────────────────

async def run_evolve(args: argparse.Namespace, pipeline: EvolutionPipeline, output_dir: Path) -> None:
    console.print("\n[bold]Step 1/3 — Analysing audience and trends (Gemini + Search)[/bold]")
    t0 = time.time()
    if args.play_store:
        await pipeline.start_analysis(play_store_url=args.play_store)
    else:
        await pipeline.start_analysis(
            icon=load_image_payload(args.icon),
            name=args.name,
            category=args.category,
            description=args.description,
        )
    console.print(f"  [green]✓ Done in {time.time() - t0:.1f}s[/green]")
    insights = pipeline.insights
    display_insights(insights)
    (output_dir / "insights.json").write_text(insights.model_dump_json(indent=2, by_alias=True), encoding="utf-8")

    if args.all_trends:
        pipeline.select_all_trends()
    elif args.trend:
        pipeline.set_trend_selection(args.trend)
    elif not args.yes:
        raw = Prompt.ask("🎬 Trend ids to use (comma separated, blank for none)", default="")
        pipeline.set_trend_selection(t.strip() for t in raw.split(","))

    console.print("\n[bold]Step 2/3 — Suggesting an evolution direction[/bold]")
    t1 = time.time()
    await pipeline.start_suggestion()
    console.print(f"  [green]✓ Done in {time.time() - t1:.1f}s[/green]")
    display_suggestion(pipeline.suggestions)
    (output_dir / "suggestion.json").write_text(
        pipeline.suggestions.model_dump_json(indent=2, by_alias=True), encoding="utf-8"
    )

    if args.direction:
        pipeline.update_suggestion(evolution_direction=args.direction)
    elif not args.yes:
        current = pipeline.snapshot.get("edited_suggestion").evolution_direction
        edited = Prompt.ask("✏️  Evolution direction", default=current)
        if edited != current:
            pipeline.update_suggestion(evolution_direction=edited)

    pipeline.set_rendering_style(args.style)
    pipeline.set_size(args.size)
    if args.prompt:
        pipeline.set_additional_prompt(args.prompt)
    if args.preserve:
        pipeline.set_function_guard(args.preserve)

    prompt = pipeline.preview_prompt()
    console.print(Panel(prompt, title="[bold]Generation prompt[/bold]", border_style="dim"))

    console.print("\n[bold]Step 3/3 — Generating evolved icon[/bold]")
    t2 = time.time()
    await pipeline.generate()
    icon = pipeline.snapshot.output("generated")
    path = save_image_payload(icon.image, output_dir / "icon")
    (output_dir / "prompt.txt").write_text(icon.prompt, encoding="utf-8")
    console.print(f"  [green]✓ Done in {time.time() - t2:.1f}s[/green] → {path}")


async def run_briefs(args: argparse.Namespace, pipeline: BriefPipeline, output_dir: Path) -> None:
    pipeline.set_input(args.description)
    for path in args.screenshot:
        pipeline.add_screenshot(load_image_payload(path))

    console.print("\n[bold]Step 1/3 — Analysing app[/bold]")
    await pipeline.start_analysis()
    display_analysis(pipeline.analysis)

    console.print("\n[bold]Step 2/3 — Synthesising trends (Gemini + Search)[/bold]")
    await pipeline.start_trends()
    for category in args.skip_category:
        pipeline.toggle_trend_category(category)
    display_trends(pipeline.trends, pipeline.snapshot.get("trend_order"))

    console.print("\n[bold]Step 3/3 — Writing creative briefs[/bold]")
    await pipeline.start_briefing()
    display_briefs(pipeline.briefs)
    (output_dir / "briefs.json").write_text(
        json.dumps([b.model_dump(by_alias=True) for b in pipeline.briefs], indent=2), encoding="utf-8"
    )

    if args.execute_all:
        console.print("\n[bold]Rendering every brief[/bold]")
        failures = await pipeline.execute_all()
        for brief_id, image in pipeline.images.items():
            path = save_image_payload(image, output_dir / f"brief_{brief_id}")
            console.print(f"  [green]✓[/green] {brief_id} → {path}")
        for brief_id, error in failures.items():
            console.print(f"  [red]✗[/red] {brief_id}: {error}")


# ── Main ──────────────────────────────────────────────────────────────────────

def main(argv: Optional[List[str]] = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s — %(levelname)s — %(name)s — %(message)s",
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    if args.list_styles:
        display_styles()
        return

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    output_dir = Path(args.output) if args.output else OUTPUTS_ROOT / timestamp
    output_dir.mkdir(parents=True, exist_ok=True)

    console.print(Rule("[bold magenta]Icon Evolver[/bold magenta]"))
    console.print(f"  Command: [bold]{args.command}[/bold]  |  Output: [bold]{output_dir}[/bold]")

    try:
        settings = load_settings()
        service = GeminiService(settings)
        if args.command == "evolve":
            pipeline = EvolutionPipeline(service, PlayStoreLookup(timeout=settings.metadata_timeout))
            asyncio.run(run_evolve(args, pipeline, output_dir))
        else:
            asyncio.run(run_briefs(args, BriefPipeline(service), output_dir))
    except IconEvolverError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
