"""CLI entry point for contextsmith."""

import os
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from contextsmith.config import CONFIG_FILENAME, Config, load_config
from contextsmith.context_engine import (
    CollectRequest,
    ContextEngine,
    ContextResult,
    DiffRequest,
    PackRequest,
)
from contextsmith.exceptions import ContextSmithError
from contextsmith.logger import get_logger, setup_logging
from contextsmith.manifest import (
    manifest_sibling_path,
    read_manifest,
    resolve_manifest_path,
    sort_entries_for_display,
    tokens_by_language,
    write_manifest,
)
from contextsmith.output import FORMATS, format_bundle, write_output
from contextsmith.token_counter import estimator_for_model, format_budget

# Bundles go to stdout; everything else goes to stderr
console = Console(stderr=True, highlight=False)
out_console = Console(highlight=False)

logger = get_logger()


def _fail(error: ContextSmithError) -> None:
    console.print(f"[red]Error:[/red] {escape(str(error))}")
    sys.exit(2 if error.is_user_error() else 1)


def _engine(ctx: click.Context, model: Optional[str], exact_tokens: bool) -> ContextEngine:
    config: Config = ctx.obj["config"]
    estimator = estimator_for_model(
        model or config.model,
        exact=exact_tokens or config.estimator == "tiktoken",
    )
    return ContextEngine(config, estimator=estimator)


def _emit(ctx: click.Context, result: ContextResult, fmt: str, out: Optional[str]) -> None:
    """Write the bundle (stdout or *out*) and, with *out*, its manifest."""
    write_output(format_bundle(result.bundle, fmt), Path(out) if out else None)

    if out:
        manifest_path = manifest_sibling_path(Path(out))
        write_manifest(result.manifest, manifest_path)
        if not ctx.obj.get("quiet"):
            console.print(f"[green]✓[/green] Bundle written to {escape(out)}")
            console.print(f"[green]✓[/green] Manifest written to {escape(str(manifest_path))}")


def _report(ctx: click.Context, label: str, result: ContextResult) -> None:
    if ctx.obj.get("quiet"):
        return
    summary = result.manifest.summary
    budget = f" (budget: {summary.budget:,})" if summary.budget else ""
    console.print(
        f"[bold green]{label}:[/bold green] {summary.included_count} of "
        f"{summary.snippet_count} sections included, ~{summary.total_tokens:,} tokens{budget}"
    )


def _nothing(ctx: click.Context, message: str) -> None:
    if not ctx.obj.get("quiet"):
        console.print(f"[dim]{message}[/dim]")


def _output_options(func):
    func = click.option(
        "--exact-tokens", is_flag=True,
        help="Count tokens with tiktoken instead of the character heuristic",
    )(func)
    func = click.option("--model", "-m", help="Model name used for token estimation")(func)
    func = click.option("--out", "-o", type=click.Path(dir_okay=False), help="Write output to file")(func)
    func = click.option(
        "--format", "-f", "fmt",
        type=click.Choice(FORMATS), default="markdown", show_default=True,
        help="Output format",
    )(func)
    return func


@click.group()
@click.version_option(version=__import__("contextsmith").__version__, prog_name="contextsmith")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, dir_okay=False),
    help="Path to config file",
)
@click.option(
    "--root",
    type=click.Path(exists=True, file_okay=False),
    help="Project root directory (default: config location or CWD)",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--quiet", "-q", is_flag=True, help="Only show errors")
@click.option(
    "--log-file",
    type=click.Path(),
    help="Write logs to file for debugging"
)
@click.pass_context
def cli(
    ctx: click.Context,
    config: Optional[str],
    root: Optional[str],
    verbose: bool,
    quiet: bool,
    log_file: Optional[str]
) -> None:
    """contextsmith: token-budgeted context bundles for LLMs."""
    ctx.ensure_object(dict)

    if verbose and quiet:
        click.echo("Error: --verbose and --quiet are mutually exclusive", err=True)
        sys.exit(2)

    setup_logging(
        verbose=verbose,
        quiet=quiet,
        log_file=Path(log_file) if log_file else None
    )

    ctx.obj["verbose"] = verbose
    ctx.obj["quiet"] = quiet

    root_path = Path(root).resolve() if root else None
    try:
        loaded = load_config(Path(config) if config else None, start=root_path)
    except ContextSmithError as e:
        console.print(f"[red]Error loading config:[/red] {escape(str(e))}")
        sys.exit(2 if e.is_user_error() else 1)

    if root_path is not None:
        loaded.root = root_path
    ctx.obj["config"] = loaded
    logger.debug(f"Project root: {loaded.root}")


@cli.command()
@click.option(
    "--path",
    "-p",
    type=click.Path(exists=True, file_okay=False, dir_okay=True),
    default=".",
    help="Directory to write the config into",
)
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
@click.pass_context
def init(ctx: click.Context, path: str, force: bool) -> None:
    """Write a default contextsmith.yaml."""
    config_path = Path(path).resolve() / CONFIG_FILENAME

    if config_path.exists() and not force:
        console.print(
            f"[yellow]⚠ {escape(str(config_path))} already exists. Use --force to overwrite.[/yellow]"
        )
        sys.exit(2)

    try:
        Config().save(config_path)
    except (ContextSmithError, OSError) as e:
        console.print(f"[red]Error:[/red] failed to write {escape(str(config_path))}: {escape(str(e))}")
        sys.exit(1)

    if not ctx.obj.get("quiet"):
        console.print(f"[green]✓[/green] Created {escape(str(config_path))}")


@cli.command()
@click.argument("rev_range", required=False)
@click.option("--staged", is_flag=True, help="Diff staged changes")
@click.option("--untracked", is_flag=True, help="Include untracked files as added")
@click.option("--since", help='Changes since a time, e.g. "2 hours ago" or "2024-01-01"')
@click.option("--hunks-only", is_flag=True, help="Emit raw hunks instead of reading files")
@click.option("--context-lines", "-C", type=click.IntRange(min=0), help="Lines of context around changes")
@click.option("--budget", "-b", type=int, help="Token budget")
@click.option("--reserve", type=click.IntRange(min=0), default=0, show_default=True,
              help="Tokens held back for the response")
@_output_options
@click.pass_context
def diff(
    ctx: click.Context,
    rev_range: Optional[str],
    staged: bool,
    untracked: bool,
    since: Optional[str],
    hunks_only: bool,
    context_lines: Optional[int],
    budget: Optional[int],
    reserve: int,
    fmt: str,
    out: Optional[str],
    model: Optional[str],
    exact_tokens: bool,
) -> None:
    """Bundle the code around changes in a git diff."""
    try:
        engine = _engine(ctx, model, exact_tokens)
        result = engine.diff(DiffRequest(
            rev_range=rev_range,
            staged=staged,
            untracked=untracked,
            since=since,
            hunks_only=hunks_only,
            context_lines=context_lines,
            budget=budget,
            reserve=reserve,
        ))
        if result.is_empty:
            _nothing(ctx, "No changes found.")
            return
        _emit(ctx, result, fmt, out)
    except ContextSmithError as e:
        _fail(e)

    _report(ctx, "diff", result)


@cli.command()
@click.option("--files", "files", multiple=True, help="Explicit file to include (repeatable)")
@click.option("--grep", help="Regex to search for")
@click.option("--symbol", help="Symbol whose definitions to collect")
@click.option("--exclude", multiple=True, help="Gitignore-style pattern to skip (repeatable)")
@click.option("--lang", help="Only search files of this language")
@click.option("--path", "path_glob", help="Only search paths matching this pattern")
@click.option("--context-lines", "-C", type=click.IntRange(min=0), help="Lines of context around matches")
@click.option("--max-files", type=click.IntRange(min=1), help="Limit the number of matched files")
@click.option("--budget", "-b", type=int, help="Token budget")
@click.option("--reserve", type=click.IntRange(min=0), default=0, show_default=True,
              help="Tokens held back for the response")
@_output_options
@click.pass_context
def collect(
    ctx: click.Context,
    files: Tuple[str, ...],
    grep: Optional[str],
    symbol: Optional[str],
    exclude: Tuple[str, ...],
    lang: Optional[str],
    path_glob: Optional[str],
    context_lines: Optional[int],
    max_files: Optional[int],
    budget: Optional[int],
    reserve: int,
    fmt: str,
    out: Optional[str],
    model: Optional[str],
    exact_tokens: bool,
) -> None:
    """Bundle explicit files, grep matches, or symbol definitions."""
    try:
        request = CollectRequest.from_options(
            files=files,
            grep=grep,
            symbol=symbol,
            exclude=list(exclude),
            lang=lang,
            path=path_glob,
            context_lines=context_lines,
            max_files=max_files,
            budget=budget,
            reserve=reserve,
        )
        result = _engine(ctx, model, exact_tokens).collect(request)
        if result.is_empty:
            _nothing(ctx, "No matching content found.")
            return
        _emit(ctx, result, fmt, out)
    except ContextSmithError as e:
        _fail(e)

    _report(ctx, "collect", result)


@cli.command()
@click.argument("bundle", type=click.Path(exists=True, dir_okay=False))
@click.option("--budget", "-b", type=int, help="Token budget")
@click.option("--chars", type=int, help="Character budget (alternative to --budget)")
@click.option("--reserve", type=click.IntRange(min=0), default=0, show_default=True,
              help="Tokens held back for the response")
@click.option("--must", multiple=True, help="Always include paths containing this (repeatable)")
@click.option("--drop", multiple=True, help="Remove paths containing this (repeatable)")
@_output_options
@click.pass_context
def pack(
    ctx: click.Context,
    bundle: str,
    budget: Optional[int],
    chars: Optional[int],
    reserve: int,
    must: Tuple[str, ...],
    drop: Tuple[str, ...],
    fmt: str,
    out: Optional[str],
    model: Optional[str],
    exact_tokens: bool,
) -> None:
    """Re-pack a JSON bundle into a token budget."""
    try:
        result = _engine(ctx, model, exact_tokens).pack(PackRequest(
            bundle_path=Path(bundle),
            budget=budget,
            chars=chars,
            reserve=reserve,
            must=list(must),
            drop=list(drop),
        ))
        if result.is_empty:
            _nothing(ctx, "No sections in bundle.")
            return
        _emit(ctx, result, fmt, out)
    except ContextSmithError as e:
        _fail(e)

    _report(ctx, "pack", result)


@cli.command()
@click.argument("manifest", type=click.Path(exists=True), required=False)
@click.option("--top", type=click.IntRange(min=1), help="Only show the N highest-scored entries")
@click.option("--detailed", is_flag=True, help="Show chars, score and language per entry")
@click.option("--show-weights", is_flag=True, help="Show the ranking weights used")
def explain(manifest: Optional[str], top: Optional[int], detailed: bool, show_weights: bool) -> None:
    """Explain what a bundle contains and why."""
    try:
        loaded = read_manifest(resolve_manifest_path(Path(manifest) if manifest else None))
    except ContextSmithError as e:
        _fail(e)

    summary = loaded.summary
    if show_weights:
        weights = summary.weights_used
        if weights is None:
            out_console.print("[dim]No ranking weights recorded (order-based selection).[/dim]\n")
        else:
            out_console.print("[bold]Ranking weights:[/bold]")
            for name in ("text", "diff", "recency", "proximity", "test"):
                out_console.print(f"  {name + ':':<11}{getattr(weights, name):.2f}")
            out_console.print()

    entries = sort_entries_for_display(loaded.entries)
    if top is not None:
        entries = entries[:top]

    for entry in entries:
        status = "[green]included[/green]" if entry.included else "[dim]excluded[/dim]"
        out_console.print(
            f"  [bold]{escape(entry.location)}[/bold] ({entry.token_estimate} tokens, {status})  "
            f"[dim]{escape(entry.reason)}[/dim]",
            soft_wrap=True,
        )
        if detailed:
            out_console.print(
                f"    chars: {entry.char_count}, score: {entry.score:.2f}, "
                f"lang: {escape(entry.language)}"
            )

    out_console.print()
    budget = f" / {summary.budget:,} budget" if summary.budget is not None else ""
    out_console.print(
        f"[bold green]summary:[/bold green] ~{summary.total_tokens:,} tokens{budget}, "
        f"{summary.included_count} of {summary.snippet_count} snippets included",
        soft_wrap=True,
    )
    if summary.reserve_tokens > 0:
        out_console.print(f"  reserve: {summary.reserve_tokens} tokens")


def _format_bytes(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size / (1024 * 1024):.1f} MB"


@cli.command()
@click.option("--bundle", type=click.Path(exists=True, dir_okay=False),
              help="Report on a manifest instead of the repository")
@click.option("--top-files", type=click.IntRange(min=1), default=10, show_default=True,
              help="Number of largest files to list")
@click.option("--by-lang", is_flag=True, help="Break totals down by language")
@click.option("--tokens", "with_tokens", is_flag=True, help="Estimate tokens per file (reads every file)")
@click.pass_context
def stats(
    ctx: click.Context,
    bundle: Optional[str],
    top_files: int,
    by_lang: bool,
    with_tokens: bool,
) -> None:
    """Show statistics for a bundle manifest or the repository."""
    try:
        if bundle:
            _manifest_stats(Path(bundle), top_files, by_lang)
        else:
            _repo_stats(ctx, top_files, by_lang, with_tokens)
    except ContextSmithError as e:
        _fail(e)


def _manifest_stats(path: Path, top_files: int, by_lang: bool) -> None:
    manifest = read_manifest(path)
    summary = manifest.summary

    out_console.print("[bold]Bundle Statistics[/bold]")
    out_console.print(f"  model:           {escape(summary.model)}")
    out_console.print(f"  total tokens:    {summary.total_tokens:,}")
    out_console.print(f"  budget:          {summary.budget if summary.budget is not None else 'none'}")
    if summary.budget:
        out_console.print(f"  utilization:     {format_budget(summary.total_tokens, summary.budget)}")
    out_console.print(f"  reserve tokens:  {summary.reserve_tokens}")
    out_console.print(f"  snippets:        {summary.snippet_count}")
    out_console.print(f"  included:        {summary.included_count}")

    if not manifest.entries:
        return

    largest = sorted(manifest.entries, key=lambda e: (-e.token_estimate, e.file_path))[:top_files]
    out_console.print()
    out_console.print(f"[bold]Top {top_files} files by tokens:[/bold]")
    for entry in largest:
        mark = "+" if entry.included else "-"
        out_console.print(f"  [dim]{mark}[/dim] {entry.token_estimate:>6} tokens  {escape(entry.location)}",
                          soft_wrap=True)

    if by_lang:
        table = Table(title="By language", show_header=True, header_style="bold")
        table.add_column("Language")
        table.add_column("Snippets", justify="right")
        table.add_column("Tokens", justify="right")
        for language, count, tokens in tokens_by_language(manifest.entries):
            table.add_row(language, str(count), f"{tokens:,}")
        out_console.print()
        out_console.print(table)


def _repo_stats(ctx: click.Context, top_files: int, by_lang: bool, with_tokens: bool) -> None:
    engine = _engine(ctx, None, False)
    repo = engine.repo_stats(with_tokens=with_tokens)

    if repo.files == 0:
        out_console.print("[dim]No files found.[/dim]")
        return

    out_console.print("[bold]Repository Statistics[/bold]")
    out_console.print(f"  files:           {repo.files}")
    out_console.print(f"  total bytes:     {_format_bytes(repo.total_bytes)}")
    if with_tokens:
        out_console.print(f"  total tokens:    ~{repo.total_tokens:,}")
        default_budget = engine.config.default_budget
        out_console.print(f"  default budget:  {format_budget(repo.total_tokens, default_budget)}")
    if repo.generated_files:
        out_console.print(f"  generated files: {repo.generated_files}")

    if with_tokens:
        out_console.print()
        out_console.print(f"[bold]Top {top_files} files by tokens:[/bold]")
        for rel_path, tokens in repo.file_tokens[:top_files]:
            out_console.print(f"  {tokens:>6} tokens  {escape(rel_path)}", soft_wrap=True)

    if by_lang:
        table = Table(title="By language", show_header=True, header_style="bold")
        table.add_column("Language")
        table.add_column("Files", justify="right")
        table.add_column("Size", justify="right")
        if with_tokens:
            table.add_column("Tokens", justify="right")
        rows = sorted(repo.by_language.items(), key=lambda item: (-item[1].files, item[0]))
        for language, lang in rows:
            cells = [language, str(lang.files), _format_bytes(lang.bytes)]
            if with_tokens:
                cells.append(f"~{lang.tokens:,}")
            table.add_row(*cells)
        out_console.print()
        out_console.print(table)


def main() -> None:
    """Entry point."""
    try:
        cli()
    except ContextSmithError as e:
        _fail(e)
    except Exception as e:
        console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
        if os.environ.get("CONTEXTSMITH_DEBUG"):
            import traceback
            console.print(escape(traceback.format_exc()))
        sys.exit(1)


if __name__ == "__main__":
    main()
