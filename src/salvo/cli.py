"""
Salvo CLI - Command Line Interface for naval battle analytics

Provides commands for:
- Analyzing battle event logs (finished or still being written)
- Batch analysis of a folder of logs
- Watching a folder for new logs
- Player encounter history and stream-sniper correlation
- Session summaries
"""

import logging
import threading
from datetime import datetime
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from salvo import __version__
from salvo.analysis.rating import build_scoring
from salvo.analysis.session import SessionStats
from salvo.analysis.statistics import BattleStatistics
from salvo.core.config import SalvoConfig, generate_default_config, get_config, load_config, set_config
from salvo.export import export_battles
from salvo.infra.database import EncounterStore
from salvo.infra.parallel import BatchAnalysisProgress, ParallelBattleAnalyzer
from salvo.pipeline.orchestrator import BattleAnalysis, BattleOrchestrator
from salvo.tracking.player_tracker import SessionPlayerTracker
from salvo.watcher import EventLogFileEvent, EventLogWatcher

app = typer.Typer(
    name="salvo",
    help="Naval battle replay analytics - damage, ratings and player tracking from decoded event logs",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        console.print(f"[bold blue]Salvo[/bold blue] v{__version__}")
        raise typer.Exit()


def _configure_logging(config: SalvoConfig, verbose: bool) -> None:
    level = logging.DEBUG if verbose else getattr(logging, config.logging.level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [RichHandler(console=console, show_path=False)]
    if config.logging.file:
        file_handler = logging.FileHandler(config.logging.file)
        file_handler.setFormatter(logging.Formatter(config.logging.format))
        handlers.append(file_handler)
    logging.basicConfig(level=level, format="%(message)s", handlers=handlers, force=True)


@app.callback()
def main_callback(
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-V", help="Enable verbose output"),
    config_file: Path | None = typer.Option(
        None,
        "--config",
        "-c",
        help="Configuration file (YAML, TOML or JSON)",
        exists=True,
        dir_okay=False,
    ),
) -> None:
    """Salvo - naval battle replay analytics"""
    config = load_config(config_file)
    set_config(config)
    _configure_logging(config, verbose)


def _make_tracker(config: SalvoConfig) -> SessionPlayerTracker:
    store = EncounterStore(config.tracker.db_path, append_retries=config.tracker.append_retries)
    return SessionPlayerTracker(store, config.tracker)


def _fmt(value: float | None, digits: int = 0) -> str:
    if value is None:
        return "-"
    return f"{value:,.{digits}f}"


def _display_battle(stats: BattleStatistics) -> None:
    """Battle summary, scoreboard and diagnostics."""
    info_table = Table(title="Battle Information", show_header=False)
    info_table.add_column("Property", style="cyan")
    info_table.add_column("Value", style="green")
    info_table.add_row("Battle", stats.battle_id)
    info_table.add_row("Map", stats.map_id or "-")
    info_table.add_row("Mode", stats.game_type or stats.game_mode or "-")
    info_table.add_row("Started", stats.start_time.isoformat() if stats.start_time else "-")
    info_table.add_row("Duration", f"{stats.duration:.0f} seconds")
    info_table.add_row("Winner", "draw" if stats.winner_team_id is not None and stats.winner_team_id < 0 else str(stats.winner_team_id))
    if stats.incomplete:
        info_table.add_row("Status", "[yellow]incomplete (stream ended early)[/yellow]")
    console.print(info_table)
    console.print()

    table = Table(title="Scoreboard")
    table.add_column("Team", justify="right")
    table.add_column("Player", style="cyan")
    table.add_column("Ship")
    table.add_column("Damage", justify="right")
    table.add_column("Potential", justify="right")
    table.add_column("Spotting", justify="right")
    table.add_column("Received", justify="right")
    table.add_column("Frags", justify="right")
    table.add_column("Result")
    table.add_column("PR", justify="right")

    for ps in sorted(stats.players, key=lambda p: (p.team_id, -p.damage_total)):
        name = ps.name + (" [dim](bot)[/dim]" if ps.is_bot else "")
        if ps.is_local:
            name = f"[bold]{name}[/bold]"
        pr = "-"
        if ps.rating is not None:
            pr = f"[{ps.rating.color}]{ps.rating.pr:,.0f}[/]"
        table.add_row(
            str(ps.team_id),
            name,
            ps.ship_name,
            _fmt(ps.damage_total),
            _fmt(ps.potential_damage),
            _fmt(ps.spotting_damage),
            _fmt(ps.damage_received),
            str(ps.frags),
            "survived" if ps.survived else "sunk",
            pr,
        )
    console.print(table)

    if stats.diagnostics:
        console.print()
        diag = Table(title="Diagnostics")
        diag.add_column("Kind", style="yellow")
        diag.add_column("Entity", justify="right")
        diag.add_column("Message")
        for d in stats.diagnostics:
            diag.add_row(str(d.kind), "-" if d.entity_id is None else str(d.entity_id), d.message)
        console.print(diag)


@app.command()
def analyze(
    log_path: Path = typer.Argument(
        ...,
        help="Path to the JSON-lines battle event log",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
    live: bool = typer.Option(False, "--live", "-l", help="Follow the log while the battle is running"),
    output: Path | None = typer.Option(
        None,
        "--output",
        "-o",
        help="Export results (format detected from extension: .json, .csv, .xlsx)",
    ),
    record: bool = typer.Option(
        False, "--record/--no-record", "-r", help="Record encounters in the player tracker"
    ),
) -> None:
    """
    Analyze one battle event log and display per-player statistics.

    With --live the log is followed until the battle ends, the log goes
    quiet or Ctrl+C is pressed; a stopped run reports what was observed.
    """
    config = get_config()
    console.print("\n[bold blue]Salvo[/bold blue] - Analyzing battle...\n")

    tracker = _make_tracker(config) if record else None
    orchestrator = BattleOrchestrator(config, tracker=tracker)
    cancel = threading.Event()

    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
        ) as progress:
            task = progress.add_task(
                "Following live battle..." if live else "Reconstructing battle...", total=None
            )
            try:
                analysis = orchestrator.analyze_battle(log_path, live=live, cancel=cancel)
            except KeyboardInterrupt:
                cancel.set()
                raise
            progress.update(task, description="Battle analyzed")
    except (OSError, ValueError) as e:
        console.print(f"[red]Error analyzing battle:[/red] {e}")
        raise typer.Exit(1)

    _display_battle(analysis.statistics)

    if record:
        console.print(f"\n[green]Recorded {analysis.recorded} encounters[/green]")

    if output:
        export_battles(
            [analysis.statistics],
            output,
            indent=config.export.json_indent,
            delimiter=config.export.csv_delimiter,
        )
        console.print(f"\n[green]Results exported to:[/green] {output}")


@app.command()
def batch(
    directory: Path = typer.Argument(..., help="Folder of event logs", exists=True, file_okay=False),
    workers: int | None = typer.Option(None, "--workers", "-w", help="Number of parallel workers"),
    recursive: bool = typer.Option(True, "--recursive/--flat", help="Include subfolders"),
    record: bool = typer.Option(False, "--record/--no-record", "-r", help="Record encounters"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Export all battles"),
) -> None:
    """Analyze every event log in a folder. One bad log never stops the batch."""
    config = get_config()
    tracker = _make_tracker(config) if record else None

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        TextColumn("{task.completed}/{task.total}"),
        console=console,
    ) as progress:
        task = progress.add_task("Analyzing battles...", total=None)

        def on_progress(p: BatchAnalysisProgress) -> None:
            progress.update(task, total=p.total_tasks, completed=p.completed_tasks)

        analyzer = ParallelBattleAnalyzer(
            workers=workers, config=config, tracker=tracker, progress_callback=on_progress
        )
        result = analyzer.analyze_directory(directory, recursive=recursive)

    table = Table(title="Batch Results")
    table.add_column("Log", style="cyan")
    table.add_column("Status")
    table.add_column("Recorded", justify="right")
    table.add_column("Time (s)", justify="right")
    for r in result.results:
        if not r.success:
            status = f"[red]failed[/red] {r.error_message}"
        elif r.incomplete:
            status = "[yellow]incomplete[/yellow]"
        else:
            status = "[green]ok[/green]"
        table.add_row(Path(r.path).name, status, str(r.recorded), f"{r.duration_seconds:.2f}")
    console.print(table)
    console.print(
        f"\n{result.successful}/{result.total_battles} battles analyzed "
        f"in {result.total_duration_seconds:.1f}s"
    )

    if output:
        stats = [r.statistics for r in result.results if r.statistics is not None]
        export_battles(stats, output, indent=config.export.json_indent, delimiter=config.export.csv_delimiter)
        console.print(f"[green]Results exported to:[/green] {output}")

    if result.failed:
        raise typer.Exit(1)


@app.command()
def watch(
    folder: Path | None = typer.Option(
        None,
        "--folder",
        "-f",
        help="Folder to watch (defaults to the configured watch folder)",
        file_okay=False,
    ),
    auto_analyze: bool = typer.Option(
        True, "--analyze/--no-analyze", "-a", help="Automatically analyze new logs"
    ),
    record: bool = typer.Option(True, "--record/--no-record", "-r", help="Record encounters"),
) -> None:
    """
    Watch a folder for new battle event logs and optionally analyze them.
    """
    config = get_config()
    watcher = EventLogWatcher(folder, config.watcher)
    orchestrator = BattleOrchestrator(config, tracker=_make_tracker(config) if record else None)

    console.print("\n[bold blue]Salvo[/bold blue] - Watching for battle logs\n")
    console.print(f"[cyan]Folder:[/cyan] {watcher.watch_folder}")
    console.print(f"[cyan]Auto-analyze:[/cyan] {'Yes' if auto_analyze else 'No'}")
    console.print("\nPress [bold]Ctrl+C[/bold] to stop...\n")

    existing = watcher.scan_existing()
    if existing:
        console.print(f"[yellow]Found {len(existing)} existing log(s)[/yellow]\n")

    @watcher.on_new_log
    def handle_new_log(event: EventLogFileEvent) -> None:
        console.print(f"\n[green]New battle log:[/green] {event.filename}")
        if not auto_analyze:
            return
        analysis: BattleAnalysis = orchestrator.analyze_battle(event.file_path)
        stats = analysis.statistics
        console.print(f"  Map: {stats.map_id or '-'}  Duration: {stats.duration:.0f}s")
        me = stats.local_player()
        if me is not None:
            pr = f"{me.pr:,.0f}" if me.pr is not None else "-"
            console.print(f"  {me.name} ({me.ship_name}): {me.damage_to_enemies:,.0f} damage, {me.frags} frags, PR {pr}")
        if analysis.recorded:
            console.print(f"  Recorded {analysis.recorded} encounters")

    try:
        watcher.start(blocking=True)
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopping watcher...[/yellow]")
        watcher.stop()


@app.command()
def history(
    player_id: int = typer.Argument(..., help="Account id of the player"),
    since: datetime | None = typer.Option(None, "--since", help="Only encounters from this time (UTC)"),
    until: datetime | None = typer.Option(None, "--until", help="Only encounters up to this time (UTC)"),
    limit: int = typer.Option(50, "--limit", "-n", help="Maximum rows to show"),
) -> None:
    """Show the battles in which a player was encountered, newest first."""
    config = get_config()
    tracker = _make_tracker(config)

    table = Table(title=f"Encounters with {player_id}")
    table.add_column("Time", style="cyan")
    table.add_column("Battle")
    table.add_column("Name")
    table.add_column("Relation")
    table.add_column("Ship")
    table.add_column("Result")
    table.add_column("Damage", justify="right")
    table.add_column("Frags", justify="right")

    shown = 0
    for record in tracker.query(player_id, since, until):
        if shown >= limit:
            break
        name = f"[{record.clan_tag}]{record.name}" if record.clan_tag else record.name
        table.add_row(
            record.timestamp.strftime("%Y-%m-%d %H:%M"),
            record.battle_id,
            name,
            record.relation or "-",
            record.ship_name or "-",
            record.outcome or "-",
            _fmt(record.damage),
            str(record.frags),
        )
        shown += 1

    if shown == 0:
        console.print(f"[yellow]No encounters recorded for {player_id}[/yellow]")
        return
    console.print(table)
    console.print(f"\n{tracker.encounter_count(player_id)} encounters in total")


@app.command()
def battles(
    limit: int = typer.Option(20, "--limit", "-n", help="Maximum battles to show"),
) -> None:
    """List recently recorded battles and encounter store totals."""
    config = get_config()
    store = _make_tracker(config).store

    totals = store.get_global_stats()
    console.print(
        Panel(
            f"Battles: {totals['battles']}   Encounters: {totals['encounters']}   "
            f"Players: {totals['players']}",
            title="Encounter store",
        )
    )

    recent = store.recent_battles(limit)
    if not recent:
        console.print("[yellow]No battles recorded yet[/yellow]")
        return

    table = Table(title="Recent battles")
    table.add_column("Started", style="cyan")
    table.add_column("Battle")
    table.add_column("Map")
    table.add_column("Type")
    for row in recent:
        table.add_row(row["started_at"] or "-", row["battle_id"], row["map_id"] or "-", row["game_type"] or "-")
    console.print(table)


@app.command()
def correlate(
    log_path: Path = typer.Argument(..., help="Battle event log", exists=True, dir_okay=False),
    viewers: Path = typer.Option(
        ..., "--viewers", help="Text file with one viewer name per line", exists=True, dir_okay=False
    ),
    threshold: float | None = typer.Option(None, "--threshold", "-t", help="Similarity threshold (0-1)"),
) -> None:
    """Flag roster players whose names resemble viewers of a live stream."""
    config = get_config()
    if threshold is not None:
        config.tracker.similarity_threshold = threshold

    analysis = BattleOrchestrator(config).analyze_battle(log_path)
    names = [line.strip() for line in viewers.read_text(encoding="utf-8").splitlines() if line.strip()]

    tracker = _make_tracker(config)
    correlation = tracker.correlate(analysis.statistics.players, names, battle_id=analysis.battle_id)

    if not correlation.matches:
        console.print(f"[green]No roster names resemble any of {len(names)} viewers[/green]")
        return

    table = Table(title="Possible Stream Snipers")
    table.add_column("Player", style="cyan")
    table.add_column("Viewer", style="magenta")
    table.add_column("Confidence", justify="right")
    for player_name, viewer_name, confidence in correlation.as_tuples():
        table.add_row(player_name, viewer_name, f"{confidence:.0%}")
    console.print(table)

    repeats = tracker.repeat_opponents(analysis.statistics.players, exclude_battle=analysis.battle_id)
    flagged_accounts = {
        ps.account_id for ps in analysis.statistics.players if ps.entity_id in correlation.matches
    }
    for account_id in sorted(flagged_accounts & set(repeats)):
        console.print(f"[yellow]{account_id} was met in {len(repeats[account_id])} earlier battle(s)[/yellow]")


@app.command()
def session(
    directory: Path = typer.Argument(..., help="Folder of this session's event logs", exists=True, file_okay=False),
    last: int | None = typer.Option(None, "--last", "-n", help="Only the most recent N games"),
) -> None:
    """Summarize the replay owner's session: win rate, per-ship performance and PR."""
    config = get_config()
    analyzer = ParallelBattleAnalyzer(config=config)
    result = analyzer.analyze_directory(directory, recursive=False)

    session_stats = SessionStats(game_count_limit=last)
    for r in result.results:
        if r.statistics is not None:
            session_stats.add(r.statistics)

    if session_stats.games_played == 0:
        console.print("[yellow]No battles with a local player found[/yellow]")
        raise typer.Exit(1)

    scoring = build_scoring(config.scoring)
    overall = session_stats.calculate_pr(scoring)
    per_ship = session_stats.calculate_pr_per_ship(scoring)

    win_rate = session_stats.win_rate
    summary = (
        f"[cyan]Games:[/cyan] {session_stats.games_played}  "
        f"[cyan]Won:[/cyan] {session_stats.games_won}  "
        f"[cyan]Lost:[/cyan] {session_stats.games_lost}  "
        f"[cyan]Win rate:[/cyan] {_fmt(win_rate, 1)}%\n"
        f"[cyan]Frags:[/cyan] {session_stats.total_frags}"
    )
    if overall is not None:
        summary += f"  [cyan]PR:[/cyan] [{overall.color}]{overall.pr:,.0f} ({overall.category})[/]"
    console.print(Panel(summary, title="[bold blue]Session[/bold blue]", expand=False))

    table = Table(title="Ships")
    table.add_column("Ship", style="cyan")
    table.add_column("Games", justify="right")
    table.add_column("Win %", justify="right")
    table.add_column("Avg dmg", justify="right")
    table.add_column("Max dmg", justify="right")
    table.add_column("Avg frags", justify="right")
    table.add_column("Avg spotting", justify="right")
    table.add_column("Avg XP", justify="right")
    table.add_column("PR", justify="right")
    for name, info in session_stats.ship_stats().items():
        rating = per_ship.get(name)
        table.add_row(
            name,
            str(info.total_games),
            _fmt(info.win_rate, 1),
            _fmt(info.avg_damage),
            _fmt(info.max_damage),
            _fmt(info.avg_frags, 2),
            _fmt(info.avg_spotting_damage),
            _fmt(info.avg_xp),
            f"[{rating.color}]{rating.pr:,.0f}[/]" if rating else "-",
        )
    console.print(table)


@app.command("init-config")
def init_config(
    path: Path = typer.Argument(Path("salvo.yaml"), help="Where to write the configuration"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write a commented default configuration file."""
    if path.exists() and not force:
        console.print(f"[red]{path} already exists[/red] (use --force to overwrite)")
        raise typer.Exit(1)
    generate_default_config(path)
    console.print(f"[green]Configuration written to:[/green] {path}")


def main() -> None:
    """Main entry point."""
    app()


if __name__ == "__main__":
    main()
