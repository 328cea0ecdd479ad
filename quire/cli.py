"""Quire CLI - lint, catalog and install prompt bundles."""

import json
import sys
from pathlib import Path
from typing import NoReturn, Optional

import click
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
import structlog
import toml

from quire import __version__
from quire.bundle import Bundle, apply_sync, plan_sync
from quire.config import USER_CONFIG, QuireConfig, validate_config
from quire.documents import DocumentKind
from quire.errors import QuireError
from quire.lint import BundleValidator, ValidationResult, validate_file
from quire.logging import setup_logging
from quire.marketplace import (
    BundleInstaller,
    DocumentSearcher,
    InstallIndex,
    render_catalog,
)
from quire.scaffold import init_bundle, new_document

log = structlog.get_logger()

console = Console()

KIND_CHOICES = [kind.value for kind in DocumentKind]
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

KIND_STYLES = {
    DocumentKind.AGENT: ("🤖 Agents", "magenta"),
    DocumentKind.COMMAND: ("⚡ Commands", "yellow"),
    DocumentKind.SKILL: ("📘 Skills", "cyan"),
    DocumentKind.RULE: ("📏 Rules", "green"),
    DocumentKind.META: ("📄 Meta documents", "white"),
}


def _fail(message: str) -> NoReturn:
    console.print(f"[red]✗ {escape(message)}[/red]")
    sys.exit(1)


def _open_bundle(root: str, config: QuireConfig) -> Bundle:
    try:
        return Bundle.open(Path(root), ignore=config.ignore)
    except QuireError as e:
        _fail(str(e))


def _validator(config: QuireConfig, strict: bool = False, check_links: bool = True) -> BundleValidator:
    return BundleValidator(
        known_models=config.known_models,
        known_tools=config.known_tools,
        check_links=config.check_links and check_links,
        strict=config.strict or strict,
    )


def _index(config: QuireConfig) -> InstallIndex:
    index = InstallIndex(config.index_dir)
    index.load()
    return index


def _print_result(result: ValidationResult) -> None:
    """Print a validation result the same way for lint and check."""
    if result.errors:
        console.print("[bold red]Errors:[/bold red]")
        for issue in result.errors:
            console.print(f"  ✗ [dim]{issue.code.name}[/dim] {escape(str(issue))}")
        console.print()

    if result.warnings:
        console.print("[bold yellow]Warnings:[/bold yellow]")
        for issue in result.warnings:
            console.print(f"  ⚠ [dim]{issue.code.name}[/dim] {escape(str(issue))}")
        console.print()

    if result.info:
        console.print("[bold blue]Info:[/bold blue]")
        for info in result.info:
            console.print(f"  ℹ {escape(info)}")
        console.print()

    if result.valid:
        console.print(
            f"[bold green]✓ No errors[/bold green] [dim]({len(result.warnings)} warnings)[/dim]"
        )
    else:
        console.print(
            f"[bold red]✗ {len(result.errors)} errors, {len(result.warnings)} warnings[/bold red]"
        )


@click.group()
@click.version_option(version=__version__, prog_name="quire")
@click.option(
    "--config", "config_path", type=click.Path(dir_okay=False), help="Path to config file"
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    help="Override the configured log level",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Optional[str] = None, log_level: Optional[str] = None):
    """Quire - lint, catalog and install prompt bundles."""
    # Configure logging before the config loads so its own messages are filtered
    setup_logging(level=log_level or "WARNING")

    config = QuireConfig.load(config_path)
    if log_level is None and (config.log_level != "WARNING" or config.log_file):
        setup_logging(
            level=config.log_level,
            log_file=str(config.log_file) if config.log_file else None,
        )
    elif config.log_file:
        setup_logging(level=log_level, log_file=str(config.log_file))

    ctx.obj = config


@cli.command()
@click.argument("root", default=".", type=click.Path(file_okay=False))
@click.option("--strict", is_flag=True, help="Treat warnings as errors")
@click.option("--no-links", is_flag=True, help="Skip relative link checks")
@click.option("--json", "as_json", is_flag=True, help="Print the report as JSON")
@click.pass_obj
def lint(config: QuireConfig, root: str, strict: bool = False, no_links: bool = False, as_json: bool = False):
    """Check a bundle's manifests and documents.

    Exits with status 1 when errors are found.

    Examples:
        quire lint
        quire lint path/to/bundle --strict
        quire lint --json > report.json
    """
    bundle = _open_bundle(root, config)
    result = _validator(config, strict=strict, check_links=not no_links).validate(bundle)

    if as_json:
        click.echo(json.dumps(result.to_dict(), indent=2))
    else:
        console.print(
            f"[bold]Linting bundle: {escape(bundle.name)}[/bold] [dim]({bundle.root})[/dim]\n"
        )
        _print_result(result)

    if not result.valid:
        sys.exit(1)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--strict", is_flag=True, help="Treat warnings as errors")
@click.pass_obj
def check(config: QuireConfig, file: str, strict: bool = False):
    """Check a single Markdown document.

    Example:
        quire check agents/code-reviewer.md
    """
    path = Path(file)
    console.print(f"[bold]Checking document: {escape(path.name)}[/bold]\n")

    result = validate_file(
        path,
        known_models=config.known_models,
        known_tools=config.known_tools,
        check_links=config.check_links,
        strict=config.strict or strict,
    )
    _print_result(result)

    if not result.valid:
        sys.exit(1)


@cli.command("list")
@click.argument("root", default=".", type=click.Path(file_okay=False))
@click.option("--kind", "-k", type=click.Choice(KIND_CHOICES), help="Only list one kind")
@click.option("--verbose", "-v", is_flag=True, help="Show paths and tools")
@click.pass_obj
def list_documents(config: QuireConfig, root: str, kind: Optional[str] = None, verbose: bool = False):
    """List the documents in a bundle."""
    bundle = _open_bundle(root, config)

    kinds = [DocumentKind(kind)] if kind else list(KIND_STYLES)
    shown = 0

    for doc_kind in kinds:
        docs = sorted(bundle.by_kind(doc_kind), key=lambda d: d.name)
        if not docs:
            continue

        title, style = KIND_STYLES[doc_kind]
        table = Table(title=f"{title} ({len(docs)})", show_header=True, header_style=f"bold {style}")
        table.add_column("Name", style=style)
        table.add_column("Description")
        if doc_kind == DocumentKind.AGENT:
            table.add_column("Model", style="yellow")
        if verbose:
            table.add_column("Tools", style="dim")
            table.add_column("Path", style="dim")

        for doc in docs:
            description = doc.description or doc.title
            if doc.error:
                description = f"[red]{escape(doc.error)}[/red]"
            else:
                description = escape(description[:60])

            row = [escape(doc.name), description]
            if doc_kind == DocumentKind.AGENT:
                row.append(doc.model or "")
            if verbose:
                row.append(escape(", ".join(doc.tools)))
                row.append(doc.rel_path)
            table.add_row(*row)

        console.print(table)
        console.print()
        shown += len(docs)

    if not shown:
        console.print("[yellow]No documents found.[/yellow]")
        return

    console.print(f"[dim]Total: {shown} documents in {escape(bundle.name)}[/dim]")


@cli.command()
@click.argument("name")
@click.argument("root", default=".", type=click.Path(file_okay=False))
@click.option("--kind", "-k", type=click.Choice(KIND_CHOICES), help="Document kind")
@click.option("--raw", is_flag=True, help="Print the file as-is")
@click.pass_obj
def show(config: QuireConfig, name: str, root: str, kind: Optional[str] = None, raw: bool = False):
    """Show a document by name or path.

    Examples:
        quire show code-reviewer
        quire show agents/code-reviewer.md --raw
    """
    bundle = _open_bundle(root, config)
    doc = bundle.get(name, DocumentKind(kind) if kind else None)
    if doc is None:
        _fail(f"Document '{name}' not found in {bundle.root}")

    if raw:
        click.echo(doc.path.read_text(encoding="utf-8"), nl=False)
        return

    details = [
        f"[bold]Kind:[/bold]        {doc.kind.value}",
        f"[bold]Path:[/bold]        {doc.rel_path}",
    ]
    if doc.description:
        details.append(f"[bold]Description:[/bold] {escape(doc.description)}")
    if doc.model:
        details.append(f"[bold]Model:[/bold]       {escape(doc.model)}")
    if doc.tools:
        details.append(f"[bold]Tools:[/bold]       {escape(', '.join(doc.tools))}")
    if doc.tags:
        details.append(f"[bold]Tags:[/bold]        {escape(', '.join(doc.tags))}")
    details.append(f"[bold]Words:[/bold]       {doc.word_count}")
    if doc.error:
        details.append(f"[bold red]Error:[/bold red]       {escape(doc.error)}")

    console.print(Panel("\n".join(details), title=escape(doc.name)))
    console.print(Markdown(doc.body))


@cli.command()
@click.argument("query", required=False, default="")
@click.argument("root", default=".", type=click.Path(file_okay=False))
@click.option("--kind", "-k", type=click.Choice(KIND_CHOICES), help="Filter by kind")
@click.option("--tags", help="Filter by tags (comma-separated)")
@click.option("--installed", "-i", is_flag=True, help="Only search installed bundles")
@click.pass_obj
def search(
    config: QuireConfig,
    query: str = "",
    root: str = ".",
    kind: Optional[str] = None,
    tags: Optional[str] = None,
    installed: bool = False,
):
    """Search documents by name, description, kind or tags.

    Installed bundles are searched alongside the bundle at ROOT.

    Examples:
        quire search review
        quire search --kind agent
        quire search --tags "mysql,performance"
    """
    bundle = _open_bundle(root, config)
    searcher = DocumentSearcher(bundle, index=InstallIndex(config.index_dir))

    tag_list = [t.strip() for t in tags.split(",") if t.strip()] if tags else None
    results = searcher.search(
        query,
        kind=DocumentKind(kind) if kind else None,
        tags=tag_list,
        installed_only=installed,
    )

    if not results:
        console.print("[yellow]No documents found matching your criteria.[/yellow]")
        return

    table = Table(
        title=f"🔍 Search Results ({len(results)})",
        show_header=True,
        header_style="bold cyan",
    )
    table.add_column("Name", style="cyan")
    table.add_column("Kind", width=8)
    table.add_column("Bundle")
    table.add_column("Status", width=10)
    table.add_column("Score", justify="right", width=5)
    table.add_column("Description")

    for r in results:
        status = "[green]installed[/green]" if r.installed else "[dim]local[/dim]"
        desc = r.description[:47] + "..." if len(r.description) > 50 else r.description
        table.add_row(escape(r.name), r.kind, escape(r.bundle), status, str(r.score), escape(desc))

    console.print(table)


@cli.command()
@click.argument("root", default=".", type=click.Path(file_okay=False))
@click.option("--json", "as_json", is_flag=True, help="Print statistics as JSON")
@click.pass_obj
def stats(config: QuireConfig, root: str, as_json: bool = False):
    """Show document counts for a bundle."""
    bundle = _open_bundle(root, config)
    data = bundle.stats()

    if as_json:
        click.echo(json.dumps(data, indent=2))
        return

    console.print(f"[bold]📊 {escape(data['name'])}[/bold] {data['version']}\n")
    console.print(f"  [bold]Documents:[/bold]   {data['total']}")
    for kind, count in data["by_kind"].items():
        console.print(f"    {kind}: {count}")
    console.print(f"  [bold]Words:[/bold]       {data['words']}")
    if data["with_errors"]:
        console.print(f"  [bold red]Broken:[/bold red]      {data['with_errors']}")

    console.print(
        f"\n  [bold]plugin.json:[/bold]      {'yes' if data['has_plugin_manifest'] else 'no'}"
    )
    console.print(
        f"  [bold]marketplace.json:[/bold] {'yes' if data['has_marketplace_manifest'] else 'no'}"
        + (f" ({data['marketplace_plugins']} plugins)" if data["has_marketplace_manifest"] else "")
    )


@cli.command()
@click.argument("root", default=".", type=click.Path(file_okay=False))
@click.option(
    "--format", "-f", "fmt",
    type=click.Choice(["json", "markdown"]),
    default="markdown",
    help="Output format",
)
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write to file")
@click.pass_obj
def catalog(config: QuireConfig, root: str, fmt: str = "markdown", output: Optional[str] = None):
    """Generate a catalog of the bundle's documents.

    Examples:
        quire catalog > CATALOG.md
        quire catalog --format json -o catalog.json
    """
    bundle = _open_bundle(root, config)
    text = render_catalog(bundle, fmt)

    if output:
        Path(output).write_text(text, encoding="utf-8")
        console.print(f"[green]✓ Wrote {fmt} catalog: {output}[/green]")
    else:
        click.echo(text, nl=False)


@cli.command()
@click.argument("root", default=".", type=click.Path(file_okay=False))
@click.option("--check", "check_only", is_flag=True, help="Only report; exit 1 when out of date")
@click.pass_obj
def sync(config: QuireConfig, root: str, check_only: bool = False):
    """Register agents and commands in plugin.json.

    Rewrites the ``agents`` and ``commands`` arrays to match the files on disk
    and keeps every other field.
    """
    bundle = _open_bundle(root, config)
    try:
        plan = plan_sync(bundle)
    except QuireError as e:
        _fail(str(e))

    if plan.in_sync:
        console.print("[green]✓ plugin.json is up to date[/green]")
        return

    if plan.create:
        console.print("[yellow]plugin.json does not exist[/yellow]")
    for field_name, change in plan.fields.items():
        for ref in change.added:
            console.print(f"  [green]+ {field_name}: {escape(ref)}[/green]")
        for ref in change.removed:
            console.print(f"  [red]- {field_name}: {escape(ref)}[/red]")

    if check_only:
        console.print("\n[red]✗ plugin.json is out of date; run 'quire sync'[/red]")
        sys.exit(1)

    apply_sync(bundle, plan)
    console.print(f"\n[green]✓ Updated {bundle.plugin_manifest_path}[/green]")


@cli.group()
def init():
    """Create a bundle or a document from a template."""
    pass


@init.command("bundle")
@click.argument("name")
@click.option("--root", type=click.Path(file_okay=False), help="Directory to create (default: ./NAME)")
@click.option("--description", "-d", default="", help="Bundle description")
@click.option("--author", "-a", default="", help="Author name")
def init_bundle_command(name: str, root: Optional[str] = None, description: str = "", author: str = ""):
    """Create an empty bundle with both manifests.

    Example:
        quire init bundle review-agents --description "Code review agents"
    """
    target = Path(root) if root else Path(name)
    try:
        written = init_bundle(target, name, description=description, author=author)
    except QuireError as e:
        _fail(str(e))

    console.print(f"[green]✓ Created bundle '{escape(name)}' in {target}[/green]")
    for path in written:
        console.print(f"  [dim]{path}[/dim]")


def _make_init_document_command(kind: DocumentKind):
    """Build the ``init <kind>`` command for one document kind."""

    @click.argument("name")
    @click.option("--root", default=".", type=click.Path(file_okay=False), help="Bundle root")
    @click.option("--description", "-d", default="", help="Frontmatter description")
    @click.option("--model", "-m", help="Agent model (agents only)")
    @click.option("--tools", "-t", help="Tools, comma-separated (agents and commands)")
    def command(name: str, root: str = ".", description: str = "", model: Optional[str] = None, tools: Optional[str] = None):
        tool_list = [t.strip() for t in tools.split(",") if t.strip()] if tools else None
        try:
            path = new_document(
                Path(root),
                kind,
                name,
                description=description,
                model=model,
                tools=tool_list,
            )
        except QuireError as e:
            _fail(str(e))

        console.print(f"[green]✓ Created {kind.value} template: {path}[/green]")
        console.print("\n[dim]Edit the file, then run 'quire sync' to register it.[/dim]")

    command.__doc__ = f"Create a {kind.value} template."
    return init.command(kind.value)(command)


for _kind in (DocumentKind.AGENT, DocumentKind.SKILL, DocumentKind.COMMAND, DocumentKind.RULE):
    _make_init_document_command(_kind)


@cli.command()
@click.argument("source")
@click.option("--ref", "-r", help="Git branch or tag (for git sources)")
@click.option("--plugin", "-p", help="Marketplace entry to install")
@click.option("--target", type=click.Path(file_okay=False), help="Install directory (default: ~/.claude)")
@click.option("--force", is_flag=True, help="Overwrite files owned by others")
@click.option("--no-validate", is_flag=True, help="Skip linting")
@click.option("--strict", is_flag=True, help="Treat lint warnings as errors")
@click.pass_obj
def install(
    config: QuireConfig,
    source: str,
    ref: Optional[str] = None,
    plugin: Optional[str] = None,
    target: Optional[str] = None,
    force: bool = False,
    no_validate: bool = False,
    strict: bool = False,
):
    """Install a bundle's agents, commands and skills.

    SOURCE can be:
    - Local path: ./my-bundle
    - GitHub shorthand: owner/repo
    - Git URL: https://github.com/owner/repo.git

    Examples:
        quire install ./review-agents
        quire install acme/prompt-bundles --plugin mysql-tools
        quire install https://github.com/acme/bundle.git --ref v1.0.0
    """
    installer = BundleInstaller(
        install_dir=Path(target) if target else config.install_dir,
        index=InstallIndex(config.index_dir),
        validate=not no_validate,
        strict=config.strict or strict,
        force=force,
        validator=_validator(config, strict=strict),
    )

    console.print(f"[bold]Installing bundle from: {escape(source)}[/bold]\n")
    result = installer.install(source, ref=ref, plugin=plugin)

    if not result.success:
        if result.conflicts:
            console.print("[bold red]Conflicting files:[/bold red]")
            for conflict in result.conflicts:
                console.print(f"  ✗ {escape(conflict)}")
            console.print()
        if result.validation and result.validation.errors:
            console.print("[bold red]Validation errors:[/bold red]")
            for issue in result.validation.errors:
                console.print(f"  ✗ {escape(str(issue))}")
            console.print()
        _fail(f"Installation failed: {result.error}")

    record = result.bundle
    version = f" v{record.version}" if record.version else ""
    console.print(f"[green]✓ Successfully installed: {escape(record.name)}{version}[/green]")
    for kind, names in record.documents.items():
        console.print(f"  [dim]{kind}: {escape(', '.join(names))}[/dim]")
    console.print(f"  [dim]Files: {len(record.files)} in {record.install_dir}[/dim]")

    if result.warnings:
        console.print("\n[yellow]Warnings:[/yellow]")
        for warning in result.warnings:
            console.print(f"  ⚠ {escape(warning)}")


@cli.command()
@click.argument("name")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_obj
def uninstall(config: QuireConfig, name: str, yes: bool = False):
    """Remove an installed bundle and its files.

    Example:
        quire uninstall review-agents
    """
    index = _index(config)
    record = index.get(name)
    if not record:
        _fail(f"Bundle '{name}' is not installed")

    if not yes:
        console.print(f"[bold]Uninstalling bundle: {escape(name)}[/bold]")
        console.print(f"  Version: {record.version or '-'}")
        console.print(f"  Files:   {len(record.files)} in {record.install_dir}")
        console.print()

        if not click.confirm("Are you sure you want to uninstall this bundle?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

    installer = BundleInstaller(install_dir=record.install_dir, index=index)
    result = installer.uninstall(name)

    if not result.success:
        _fail(f"Uninstall failed: {result.error}")
    console.print(f"[green]✓ Uninstalled {escape(name)} ({result.removed} files removed)[/green]")


@cli.command()
@click.argument("name", required=False)
@click.pass_obj
def update(config: QuireConfig, name: Optional[str] = None):
    """Reinstall bundles from their recorded source.

    Without NAME, every unpinned bundle installed from git is updated.

    Examples:
        quire update review-agents
        quire update
    """
    index = _index(config)

    install_dir = config.install_dir
    if name:
        record = index.get(name)
        if not record:
            _fail(f"Bundle '{name}' is not installed")
        if record.pinned:
            console.print(
                f"[yellow]Bundle '{escape(name)}' is pinned. Use 'quire pin --unpin {escape(name)}' first.[/yellow]"
            )
            return
        install_dir = record.install_dir

    installer = BundleInstaller(
        install_dir=install_dir,
        index=index,
        strict=config.strict,
        validator=_validator(config),
    )
    console.print("[bold]Updating bundles...[/bold]\n")

    results = installer.update(name)

    if not results:
        console.print("[yellow]No bundles to update.[/yellow]")
        return

    successes = [r for r in results if r.success]
    failures = [r for r in results if not r.success]

    for r in successes:
        version = f" → v{r.bundle.version}" if r.bundle.version else ""
        console.print(f"[green]✓ Updated: {escape(r.bundle.name)}{version}[/green]")

    for r in failures:
        console.print(f"[red]✗ Failed: {escape(r.error or 'unknown error')}[/red]")

    console.print(f"\n[dim]Updated: {len(successes)}, Failed: {len(failures)}[/dim]")
    if failures:
        sys.exit(1)


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print the index as JSON")
@click.pass_obj
def installed(config: QuireConfig, as_json: bool = False):
    """List installed bundles."""
    index = _index(config)
    bundles = sorted(index.get_all(), key=lambda b: b.name)

    if as_json:
        click.echo(json.dumps([b.to_dict() for b in bundles], indent=2))
        return

    if not bundles:
        console.print("[yellow]No bundles installed.[/yellow]")
        console.print("[dim]Install bundles with: quire install <source>[/dim]")
        return

    table = Table(title="📦 Installed Bundles", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="cyan")
    table.add_column("Version", width=10)
    table.add_column("Documents")
    table.add_column("Source", style="dim")
    table.add_column("Pinned", width=6)

    for b in bundles:
        docs = ", ".join(f"{len(names)} {kind}" for kind, names in sorted(b.documents.items()))
        source = b.source.location + (f"@{b.source.ref}" if b.source.ref else "")
        table.add_row(escape(b.name), b.version or "-", docs, escape(source), "📌" if b.pinned else "")

    console.print(table)

    stats = index.get_stats()
    console.print(
        f"\n[dim]Total: {stats['total']} bundles, {stats['files']} files, {stats['pinned']} pinned[/dim]"
    )


@cli.command()
@click.argument("name")
@click.option("--unpin", is_flag=True, help="Unpin the bundle (allow updates)")
@click.pass_obj
def pin(config: QuireConfig, name: str, unpin: bool = False):
    """Pin a bundle so update skips it.

    Example:
        quire pin review-agents
        quire pin --unpin review-agents
    """
    index = _index(config)
    if not index.set_pinned(name, not unpin):
        _fail(f"Bundle '{name}' is not installed")
    index.save()

    if unpin:
        console.print(f"[green]✓ Unpinned: {escape(name)}[/green]")
    else:
        console.print(f"[green]✓ Pinned: {escape(name)}[/green]")
        console.print("[dim]This bundle will not be changed by 'quire update'[/dim]")


@cli.command("config")
@click.option("--path", "show_path", is_flag=True, help="Only print the config file location")
@click.option("--init", "init_file", is_flag=True, help="Write the defaults to ~/.quire/config.toml")
@click.pass_context
def config_command(ctx: click.Context, show_path: bool = False, init_file: bool = False):
    """Show the effective configuration."""
    config: QuireConfig = ctx.obj
    config_path = ctx.parent.params.get("config_path") if ctx.parent else None

    if init_file:
        target = USER_CONFIG.expanduser()
        if target.exists():
            _fail(f"Config file already exists: {target}")
        QuireConfig().save(str(target))
        console.print(f"[green]✓ Wrote default config: {target}[/green]")
        return

    found = QuireConfig.find(config_path)
    if show_path:
        click.echo(str(found) if found else "(defaults)")
        return

    console.print(f"[dim]# Source: {found if found else 'defaults'}[/dim]")
    click.echo(toml.dumps(config.model_dump(mode="json", exclude_none=True)))

    for warning in validate_config(config):
        console.print(f"[yellow]⚠ {escape(warning)}[/yellow]")


def main():
    """Entry point for the quire command."""
    cli()


if __name__ == "__main__":
    main()
