"""
CLI for Banana Batch.

Edits the synced prompt list, runs batches against reference images and
reports token usage and cost.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Callable, Optional

import click
import yaml
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from banana_batch import __version__, progress
from banana_batch.config import ASPECT_RATIOS, GLOBAL_CONFIG_FILE, IMAGE_SIZES, Config
from banana_batch.credentials import EnvCredentialProvider, StaticCredentialProvider
from banana_batch.editor import PromptListEditor
from banana_batch.errors import AccessDeniedError, BananaBatchError, ConfigError
from banana_batch.generators import get_dryrun_generator, get_gemini_generator
from banana_batch.models import PromptItem, ReferenceImage, TaskStatus
from banana_batch.pricing import ImageModel
from banana_batch.remote import FileDocumentStore
from banana_batch.session import BatchSession
from banana_batch.storage import JsonFileStore

console = Console()

_BOOL_FIELDS = ("enabled", "skip_surrounding_text")
_TRUE_VALUES = ("true", "yes", "on", "1")
_FALSE_VALUES = ("false", "no", "off", "0")


def parse_field_value(field: str, value: str):
    """Convert a command-line string to the type a prompt field holds."""
    if field not in PromptItem.FIELDS:
        raise click.BadParameter(f"Unknown field {field} (use one of {', '.join(PromptItem.FIELDS)})")
    if field in _BOOL_FIELDS:
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise click.BadParameter(f"{field} expects true or false, got {value!r}")
    return value


def _config_path(ctx: click.Context) -> Path:
    return ctx.obj["config_path"]


def _load_config(ctx: click.Context) -> Config:
    return Config.load(_config_path(ctx))


def _make_session(config: Config, dry_run: bool = False) -> BatchSession:
    """Build a session backed by the on-disk document store."""
    store = FileDocumentStore(config.storage.documents_dir)
    local_store = JsonFileStore(config.storage.local_store_path)

    if dry_run:
        DryRunGenerator = get_dryrun_generator()
        generator = DryRunGenerator()
        credentials = StaticCredentialProvider(valid=True)
    else:
        credentials = EnvCredentialProvider(config.api_keys)
        if credentials.has_valid_credential():
            GeminiImageGenerator = get_gemini_generator()
            generator = GeminiImageGenerator(api_key=credentials.api_key)
        else:
            # Nothing will be generated; the missing key is reported before any call
            generator = get_dryrun_generator()()

    return BatchSession(config, store, local_store, generator, credentials)


def _run_async(coro):
    """Run a coroutine, turning known failures into a red message and exit 1."""
    try:
        return asyncio.run(coro)
    except AccessDeniedError as e:
        console.print(f"[red]Access denied: {e}[/red]")
        console.print("[dim]Ask an administrator to add you, or run 'banana-batch init --user EMAIL'.[/dim]")
        sys.exit(1)
    except BananaBatchError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)


def _require_user(config: Config) -> None:
    if not config.storage.user_id:
        console.print("[red]Error: No user configured.[/red]")
        console.print("[dim]Run 'banana-batch init --user EMAIL' or set BANANA_BATCH_USER.[/dim]")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=GLOBAL_CONFIG_FILE,
    envvar="BANANA_BATCH_CONFIG",
    help="Config file to use",
)
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
@click.pass_context
def main(ctx: click.Context, config_file: Path, verbose: bool):
    """Banana Batch - run a list of prompts against reference images."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = Path(config_file).expanduser()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@main.command()
@click.option("--user", "user_id", required=True, help="Email of the user to sign in as")
@click.option("--data-dir", type=click.Path(file_okay=False), help="Where prompts and usage are stored")
@click.pass_context
def init(ctx: click.Context, user_id: str, data_dir: Optional[str]):
    """Write a default config file and grant the user access."""
    config_path = _config_path(ctx)

    if config_path.exists():
        config = Config.load(config_path)
        console.print(f"[yellow]Config already exists at {config_path}[/yellow]")
    else:
        config = Config()
        if data_dir:
            config.storage.data_dir = str(Path(data_dir).expanduser())
        config.storage.user_id = user_id
        config.save(config_path)

    store = FileDocumentStore(config.storage.documents_dir)
    allowed = asyncio.run(store.read_access_list())
    if user_id not in allowed:
        store.write_access_list(allowed + [user_id])

    console.print(Panel.fit(
        f"[green]Initialized Banana Batch[/green]\n\n"
        f"Config: {config_path}\n"
        f"Data:   {config.storage.data_path}\n"
        f"User:   {user_id}\n\n"
        f"Set GEMINI_API_KEY before running a batch.",
        title="Banana Batch",
    ))


# Config


@main.group("config")
def config_group():
    """Show or change configuration."""
    pass


@config_group.command("show")
@click.pass_context
def config_show(ctx: click.Context):
    """Print the effective configuration (API key masked)."""
    config = _load_config(ctx)
    data = config.to_dict()
    if data["api_keys"]["google"]:
        data["api_keys"]["google"] = data["api_keys"]["google"][:4] + "..."
    console.print(f"[dim]{_config_path(ctx)}[/dim]")
    console.print(yaml.dump(data, default_flow_style=False), markup=False)


@config_group.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def config_set(ctx: click.Context, key: str, value: str):
    """Set a value by dotted key, e.g. 'defaults.model gemini-3-pro-image-preview'."""
    config_path = _config_path(ctx)
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = Config().to_dict()

    parts = key.split(".")
    node = data
    for part in parts[:-1]:
        child = node.get(part) if isinstance(node, dict) else None
        if not isinstance(child, dict):
            console.print(f"[red]Error: Unknown config section: {part}[/red]")
            sys.exit(1)
        node = child
    if parts[-1] not in node:
        console.print(f"[red]Error: Unknown config key: {key}[/red]")
        sys.exit(1)
    # Strings stay verbatim ("4:5" would otherwise load as a base-60 integer)
    current = node[parts[-1]]
    node[parts[-1]] = yaml.safe_load(value) if isinstance(current, (bool, int, float)) else value

    try:
        updated = Config().apply_text(yaml.dump(data, default_flow_style=False))
    except ConfigError as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)

    updated.save(config_path)
    console.print(f"[green]Set {key} = {value}[/green]")


@config_group.command("validate")
@click.pass_context
def config_validate(ctx: click.Context):
    """Check the configuration for problems."""
    config = _load_config(ctx)
    issues = config.validate()
    if issues:
        console.print("[red]Configuration issues:[/red]")
        for issue in issues:
            console.print(f"  - {issue}")
        sys.exit(1)
    console.print("[green]Configuration OK[/green]")


# Prompts


def _print_prompts(editor: PromptListEditor) -> None:
    state = editor.snapshot()
    if not state.items:
        console.print("[dim]No prompts yet. Add one with 'banana-batch prompts add'.[/dim]")
        return

    table = Table(title=f"Prompts ({len(state.enabled_items())} enabled)")
    table.add_column("#", justify="right", style="cyan")
    table.add_column("Name")
    table.add_column("On")
    table.add_column("Wrap")
    table.add_column("Prompt")
    for i, item in enumerate(state.items, 1):
        text = item.text.replace("\n", " ")
        table.add_row(
            str(i),
            item.name or "[dim](unnamed)[/dim]",
            "[green]✓[/green]" if item.enabled else "",
            "" if item.skip_surrounding_text else "✓",
            text[:50] + ("..." if len(text) > 50 else ""),
        )
    console.print(table)
    if state.before_text:
        console.print(f"[dim]Before:[/dim] {state.before_text}")
    if state.after_text:
        console.print(f"[dim]After:[/dim]  {state.after_text}")


def _edit_prompts(ctx: click.Context, change: Callable[[PromptListEditor], None]) -> None:
    """Open the user's prompt list, apply a change and flush it before exiting."""
    config = _load_config(ctx)
    _require_user(config)

    async def _apply() -> bool:
        session = _make_session(config, dry_run=True)
        await session.open()
        try:
            change(session.editor)
        finally:
            await session.close()
        _print_prompts(session.editor)
        return not session.editor.state.has_unflushed_changes

    try:
        saved = _run_async(_apply())
    except (IndexError, KeyError, TypeError) as e:
        console.print(f"[red]Error: {e}[/red]")
        sys.exit(1)
    if not saved:
        console.print("[red]Error: Changes could not be saved.[/red]")
        sys.exit(1)


@main.group()
def prompts():
    """View and edit the synced prompt list."""
    pass


@prompts.command("list")
@click.pass_context
def prompts_list(ctx: click.Context):
    """Show all prompts."""
    _edit_prompts(ctx, lambda editor: None)


@prompts.command("add")
@click.option("--name", default="", help="Prompt name (used in file names)")
@click.option("--text", default="", help="Prompt text")
@click.option("--enable/--disable", default=False, help="Include in the next batch")
@click.option("--skip-wrap", is_flag=True, help="Do not add the before/after text")
@click.pass_context
def prompts_add(ctx: click.Context, name: str, text: str, enable: bool, skip_wrap: bool):
    """Append a prompt."""
    def change(editor: PromptListEditor) -> None:
        index = editor.add()
        editor.edit(index, "name", name)
        editor.edit(index, "text", text)
        editor.edit(index, "enabled", enable)
        editor.edit(index, "skip_surrounding_text", skip_wrap)

    _edit_prompts(ctx, change)


@prompts.command("edit")
@click.argument("index", type=click.IntRange(min=1))
@click.argument("field", type=click.Choice(PromptItem.FIELDS))
@click.argument("value")
@click.pass_context
def prompts_edit(ctx: click.Context, index: int, field: str, value: str):
    """Set FIELD of prompt INDEX (1-based) to VALUE."""
    parsed = parse_field_value(field, value)
    _edit_prompts(ctx, lambda editor: editor.edit(index - 1, field, parsed))


@prompts.command("remove")
@click.argument("index", type=click.IntRange(min=1))
@click.pass_context
def prompts_remove(ctx: click.Context, index: int):
    """Delete prompt INDEX (1-based)."""
    _edit_prompts(ctx, lambda editor: editor.remove(index - 1))


@prompts.command("move")
@click.argument("from_index", type=click.IntRange(min=1))
@click.argument("to_index", type=click.IntRange(min=1))
@click.pass_context
def prompts_move(ctx: click.Context, from_index: int, to_index: int):
    """Move prompt FROM_INDEX to position TO_INDEX (1-based)."""
    _edit_prompts(ctx, lambda editor: editor.move(from_index - 1, to_index - 1))


@prompts.command("wrap")
@click.option("--before", default=None, help="Text placed before every prompt")
@click.option("--after", default=None, help="Text placed after every prompt")
@click.pass_context
def prompts_wrap(ctx: click.Context, before: Optional[str], after: Optional[str]):
    """Set the text wrapped around every prompt."""
    def change(editor: PromptListEditor) -> None:
        if before is not None:
            editor.set_before_text(before)
        if after is not None:
            editor.set_after_text(after)

    _edit_prompts(ctx, change)


# Batches


@main.command()
@click.argument("images", nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--model", "-m", type=click.Choice([m.value for m in ImageModel]), help="Model to use")
@click.option("--aspect-ratio", "-a", type=click.Choice(ASPECT_RATIOS), help="Output aspect ratio")
@click.option("--image-size", "-s", type=click.Choice(IMAGE_SIZES), help="Output size (Pro model only)")
@click.option("--temperature", "-t", type=click.FloatRange(0.0, 2.0), help="Sampling temperature")
@click.option("--out", "-o", "out_dir", type=click.Path(file_okay=False, path_type=Path),
              default=Path("output"), help="Where generated images are saved")
@click.option("--collapsed/--expanded", default=None, help="Compact per-task lines or the full activity log")
@click.option("--dry-run", is_flag=True, help="Use placeholder images instead of calling the API")
@click.pass_context
def run(
    ctx: click.Context,
    images: tuple[Path, ...],
    model: Optional[str],
    aspect_ratio: Optional[str],
    image_size: Optional[str],
    temperature: Optional[float],
    out_dir: Path,
    collapsed: Optional[bool],
    dry_run: bool,
):
    """Generate one image per enabled prompt from the given reference IMAGES."""
    config = _load_config(ctx)
    _require_user(config)

    try:
        references = [ReferenceImage.from_path(path) for path in images]
    except OSError as e:
        console.print(f"[red]Error: Could not read image: {e}[/red]")
        sys.exit(1)

    async def _batch():
        session = _make_session(config, dry_run=dry_run)
        await session.open()
        try:
            prefs = session.preferences
            if model and ImageModel.from_string(model) != prefs.model:
                session.switch_model(model)
            if aspect_ratio:
                prefs.aspect_ratio = aspect_ratio
            if image_size:
                prefs.image_size = image_size
            if temperature is not None:
                prefs.temperature = temperature
            if collapsed is not None:
                prefs.terminal_collapsed = collapsed

            if prefs.terminal_collapsed:
                session.orchestrator.subscribe(progress.print_event)
            else:
                session.activity.subscribe(progress.print_entry)

            session.select_images(references)
            progress.print_header(len(references), session.model.label)
            result = await session.run_batch()

            saved = []
            for task in result.tasks:
                if task.status == TaskStatus.COMPLETED:
                    saved.append(session.save_result(task, out_dir))
            return session, result, saved
        finally:
            await session.close()

    session, result, saved = _run_async(_batch())

    if result.error is not None:
        progress.print_error(str(result.error))
        sys.exit(1)

    progress.print_summary(result)
    for path in saved:
        console.print(f"[green]Saved[/green] {path}")
    progress.print_usage(session.ledger, session.cost_breakdown(), session.model.label)

    if result.credential_needed:
        console.print("[red]API key was rejected. Update GEMINI_API_KEY and run again.[/red]")
        sys.exit(1)
    if result.failed_count:
        console.print(f"[yellow]{result.failed_count} of {len(result.tasks)} task(s) failed[/yellow]")


@main.command()
@click.option("--clear", is_flag=True, help="Reset session usage (lifetime totals are kept)")
@click.pass_context
def usage(ctx: click.Context, clear: bool):
    """Show session and lifetime usage."""
    config = _load_config(ctx)
    _require_user(config)

    async def _usage() -> BatchSession:
        session = _make_session(config, dry_run=True)
        await session.open()
        try:
            if clear:
                session.ledger.reset()
        finally:
            await session.close()
        return session

    session = _run_async(_usage())
    if clear:
        console.print("[green]Session usage cleared.[/green]")
    progress.print_usage(session.ledger, session.cost_breakdown(), session.model.label)


if __name__ == "__main__":
    main()
