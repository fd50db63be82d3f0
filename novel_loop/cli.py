import json
from dataclasses import asdict
from pathlib import Path

import click

from . import __version__
from .agent import run_outline_agent
from .config import Config
from .exceptions import NovelLoopError
from .llm import LLMTextGenerator
from .memory import compress_rolling_summary, update_rolling_summary
from .models import ChapterContext, ChapterGoal, OutlineDocument, TimelineState
from .qc import (
    ChapterDraft,
    batch_repair_chapters,
    format_qc_result,
    get_repair_stats,
    run_multi_dimensional_qc,
    run_quick_qc,
)
from .timeline import check_event_duplication, get_timeline_stats, initialize_timeline_from_outline
from .utils.logger import setup_logger
from .utils.progress import create_progress, progress_reporter


def _read_json(path: str):
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _read_text(path: str) -> str:
    return Path(path).read_text(encoding="utf-8")


def _write_json(data, output: str) -> None:
    text = json.dumps(data, ensure_ascii=False, indent=2)
    if output:
        Path(output).parent.mkdir(parents=True, exist_ok=True)
        Path(output).write_text(text, encoding="utf-8")
    else:
        click.echo(text)


def _make_generator(config: Config) -> LLMTextGenerator:
    return LLMTextGenerator(config.llm, config.retry)


@click.group()
@click.option('--config', '-c', type=click.Path(), default='config.yaml',
              help='Path to configuration file')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose logging')
@click.option('--log-file', type=click.Path(), help='Also write a DEBUG log to this file')
@click.pass_context
def cli(ctx: click.Context, config: str, verbose: bool, log_file: str):
    """Novel Loop - outline, check, repair and remember long-form fiction."""
    ctx.ensure_object(dict)

    config_path = Path(config)
    ctx.obj['config'] = Config.from_yaml(config_path) if config_path.exists() else Config()

    logger = setup_logger(ctx.obj['config'].log_level, Path(log_file) if log_file else None, verbose)
    ctx.obj['logger'] = logger

    logger.debug(f"Novel Loop v{__version__}")
    if config_path.exists():
        logger.info(f"Config loaded from: {config_path}")


@cli.command()
@click.option('--bible', '-b', type=click.Path(exists=True), required=True, help='Story bible text file')
@click.option('--chapters', type=int, required=True, help='Target chapter count')
@click.option('--words', type=int, default=0, help='Target word count')
@click.option('--max-retries', type=int, help='Override agent.max_retries')
@click.option('--target-score', type=float, help='Override agent.target_score (0-10)')
@click.option('--rule-planner', is_flag=True, help='Use the rule-based planner instead of the model')
@click.option('--output', '-o', type=click.Path(), help='Output JSON file (stdout if omitted)')
@click.pass_context
def outline(ctx: click.Context, bible: str, chapters: int, words: int, max_retries: int,
            target_score: float, rule_planner: bool, output: str):
    """Generate an outline with the plan/generate/evaluate agent."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    logger.info(f"Generating a {chapters}-chapter outline...")
    try:
        with create_progress() as progress:
            task = progress.add_task("outline", total=None)
            result = run_outline_agent(
                _make_generator(config),
                _read_text(bible),
                target_chapters=chapters,
                target_word_count=words or chapters * 3000,
                max_retries=max_retries,
                target_score=target_score,
                use_llm_planner=False if rule_planner else None,
                config=config.agent,
                progress=progress_reporter(progress, task),
            )
    except NovelLoopError as e:
        logger.error(f"Outline generation failed: {e}")
        raise click.ClickException(str(e))

    _write_json({
        "outline": asdict(result.outline),
        "evaluation": asdict(result.evaluation),
        "attempts": result.attempts,
        "iterations": result.iterations,
        "done_reason": result.done_reason,
    }, output)
    logger.success(
        f"Outline finished after {result.attempts} attempt(s): "
        f"score {result.evaluation.score}/10 ({result.done_reason})"
    )


@cli.command()
@click.option('--input', '-i', 'input_file', type=click.Path(exists=True), required=True, help='Chapter text file')
@click.option('--index', type=int, required=True, help='Chapter index (1-based)')
@click.option('--total', type=int, required=True, help='Total chapters in the book')
@click.option('--full', is_flag=True, help='Run the model-backed checkers too')
@click.option('--goal', type=str, help='Primary goal of the chapter (enables the goal checker)')
@click.option('--timeline', type=click.Path(exists=True), help='Timeline JSON (enables the duplication checker)')
@click.option('--names', type=click.Path(exists=True), help='JSON map of character name to id')
@click.pass_context
def qc(ctx: click.Context, input_file: str, index: int, total: int, full: bool,
       goal: str, timeline: str, names: str):
    """Score one chapter and print the QC report."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']
    text = _read_text(input_file)

    try:
        if full or timeline:
            context = ChapterContext(
                chapter_text=text,
                chapter_index=index,
                total_chapters=total,
                goal=ChapterGoal(primary=goal) if goal else None,
                timeline=TimelineState.from_dict(_read_json(timeline)) if timeline else None,
                character_names=_read_json(names) if names else {},
            )
            result = run_multi_dimensional_qc(
                context, generator=_make_generator(config) if full else None, config=config.qc
            )
        else:
            result = run_quick_qc(text, index, total, config.qc)
    except NovelLoopError as e:
        logger.error(f"QC failed: {e}")
        raise click.ClickException(str(e))

    click.echo(format_qc_result(result))


@cli.command()
@click.argument('chapter_files', nargs=-1, type=click.Path(exists=True), required=True)
@click.option('--start-index', type=int, default=1, help='Index of the first chapter file')
@click.option('--total', type=int, required=True, help='Total chapters in the book')
@click.option('--workers', type=int, default=1, help='Chapters repaired in parallel')
@click.option('--output-dir', '-o', type=click.Path(), required=True, help='Directory for repaired chapters')
@click.pass_context
def repair(ctx: click.Context, chapter_files: tuple, start_index: int, total: int, workers: int,
           output_dir: str):
    """Quick-check chapters and repair the ones that fail."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    drafts = []
    for offset, path in enumerate(chapter_files):
        index = start_index + offset
        text = _read_text(path)
        drafts.append(ChapterDraft(index=index, text=text, qc_result=run_quick_qc(text, index, total, config.qc)))

    failing = sum(1 for d in drafts if not d.qc_result.passed)
    logger.info(f"{failing} of {len(drafts)} chapter(s) need repair")

    try:
        with create_progress() as progress:
            task = progress.add_task("repair", total=len(drafts))
            results = batch_repair_chapters(
                _make_generator(config), drafts, total, config=config.qc, max_workers=workers,
                progress=progress_reporter(progress, task, advance_on=("chapter_repaired",)),
            )
    except NovelLoopError as e:
        logger.error(f"Repair failed: {e}")
        raise click.ClickException(str(e))

    out_dir = Path(output_dir)
    out_dir.mkdir(parents=True, exist_ok=True)
    for path, result in zip(chapter_files, results):
        (out_dir / Path(path).name).write_text(result.chapter_text, encoding="utf-8")

    stats = get_repair_stats(results)
    logger.success(
        f"Repaired {stats['successful']}/{stats['total']} chapter(s), "
        f"average improvement {stats['average_score_improvement']}"
    )
    click.echo(json.dumps(stats, ensure_ascii=False, indent=2))


@cli.command('compress-summary')
@click.option('--input', '-i', 'input_file', type=click.Path(exists=True), required=True,
              help='Rolling summary text file')
@click.option('--chapter', type=click.Path(exists=True), help='Fold this chapter in with the summarizer first')
@click.option('--loops', type=click.Path(exists=True), help='JSON list of open loops (with --chapter)')
@click.option('--max-tokens', type=int, help='Override memory.max_tokens')
@click.option('--output', '-o', type=click.Path(), help='Output file (stdout if omitted)')
@click.pass_context
def compress_summary(ctx: click.Context, input_file: str, chapter: str, loops: str, max_tokens: int,
                     output: str):
    """Compress a rolling summary into its three memory tiers."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']
    summary = _read_text(input_file)

    if chapter:
        try:
            update = update_rolling_summary(
                _make_generator(config), summary, _read_json(loops) if loops else [],
                _read_text(chapter), config=config.memory,
            )
        except NovelLoopError as e:
            logger.error(f"Summary update failed: {e}")
            raise click.ClickException(str(e))
        if not update.changed:
            logger.warning("Summarizer response unusable, keeping the previous summary")
        summary = update.summary
        logger.info(f"{len(update.open_loops)} open loop(s) tracked")

    compressed = compress_rolling_summary(summary, max_tokens, config.memory)
    if output:
        Path(output).write_text(compressed, encoding="utf-8")
        logger.success(f"Summary written to {output} ({len(compressed)} chars)")
    else:
        click.echo(compressed)


@cli.command('timeline-seed')
@click.option('--outline', 'outline_file', type=click.Path(exists=True), required=True, help='Outline JSON file')
@click.option('--names', type=click.Path(exists=True), help='JSON map of character name to id')
@click.option('--output', '-o', type=click.Path(), help='Output timeline JSON (stdout if omitted)')
@click.pass_context
def timeline_seed(ctx: click.Context, outline_file: str, names: str, output: str):
    """Seed a timeline with one planned event per outline chapter."""
    config = ctx.obj['config']
    logger = ctx.obj['logger']

    data = _read_json(outline_file)
    # Accept both a bare outline and the output of the outline command
    document = OutlineDocument.from_dict(data.get("outline", data))
    timeline = initialize_timeline_from_outline(
        document, _read_json(names) if names else {}, config.timeline
    )

    stats = get_timeline_stats(timeline)
    logger.success(f"Seeded {stats['planned_events']} planned event(s)")
    _write_json(asdict(timeline), output)


@cli.command('check-duplicates')
@click.option('--input', '-i', 'input_file', type=click.Path(exists=True), required=True, help='Chapter text file')
@click.option('--timeline', type=click.Path(exists=True), required=True, help='Timeline JSON file')
@click.option('--names', type=click.Path(exists=True), required=True, help='JSON map of character name to id')
@click.pass_context
def check_duplicates(ctx: click.Context, input_file: str, timeline: str, names: str):
    """Warn when a chapter replays an event the timeline marks as completed."""
    logger = ctx.obj['logger']

    report = check_event_duplication(
        _read_text(input_file), TimelineState.from_dict(_read_json(timeline)), _read_json(names)
    )
    if not report.has_duplication:
        logger.success("No repeated events found")
        click.echo("No repeated events found")
        return
    for warning in report.warnings:
        click.echo(warning)
    logger.warning(f"{len(report.warnings)} possible repeated event(s)")


def main():
    cli()


if __name__ == '__main__':
    main()
