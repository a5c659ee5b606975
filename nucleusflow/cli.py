"""Command-line interface for NucleusFlow.

This module defines the CLI commands using Click framework.
It provides commands for creating new projects, building sites, writing
posts and running the development server.

Commands:
- new: Scaffold a new NucleusFlow project.
- build: Run the pipeline once.
- post: Create a new content file interactively.
- serve: Run development server with live reload.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

import click
import questionary

from . import __version__
from .config import ConfigBuilder, find_config_file
from .errors import ProcessingError
from .models import ContentMetadata
from .utils import slugify

logger = logging.getLogger("nucleusflow")

_STARTERS = ("blog", "docs", "portfolio")

_CONFIG_TEMPLATE = """\
content_dir: content
output_dir: public
template_dir: templates
profile: development

content:
  toc: {toc}
  toc_max_level: 3

template:
  default_template: default

output:
  asset_dir: assets
"""

_BASE_TEMPLATE = """\
<!DOCTYPE html>
<html lang="en">
<head>
<title>{{{{ title }}}} | {site}</title>
<link rel="stylesheet" href="/assets/css/site.css">
</head>
<body>
<header><a href="/index.html">{site}</a></header>
<main>
<article>
<h1>{{{{ title }}}}</h1>
{{% if date %}}<p class="date">{{{{ date_format(date) }}}}</p>{{% endif %}}
{{{{ toc }}}}
{{{{ body }}}}
{{% if tags %}}<ul class="tags">{{% for tag in tags %}}<li>{{{{ tag }}}}</li>{{% endfor %}}</ul>{{% endif %}}
</article>
</main>
</body>
</html>
"""

_STARTER_CONTENT = {
    "blog": {
        "index.md": "---\ntitle: Home\n---\n\nWelcome to your new blog.\n",
        "posts/hello-world.md": (
            "---\ntitle: Hello World\ntags: [welcome]\n---\n\n# Hello World\n\nYour first post.\n"
        ),
    },
    "docs": {
        "index.md": "---\ntitle: Documentation\n---\n\n## Getting started\n\nWrite pages in `content/`.\n",
        "guide/install.md": "---\ntitle: Installation\n---\n\n## Requirements\n\n## Steps\n",
    },
    "portfolio": {
        "index.md": "---\ntitle: Portfolio\n---\n\nSelected work.\n",
        "projects/first-project.md": (
            "---\ntitle: First Project\ntags: [design]\n---\n\nA short case study.\n"
        ),
    },
}

_STYLESHEET = "body { font-family: system-ui, sans-serif; max-width: 48rem; margin: 0 auto; }\n"


@click.group()
@click.version_option(version=__version__, prog_name="nucleusflow")
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging")
def cli(verbose: bool):
    """NucleusFlow content pipeline."""
    _configure_logging(verbose)


@cli.command()
@click.argument("name")
@click.option(
    "--template",
    "starter",
    type=click.Choice(_STARTERS),
    default="blog",
    show_default=True,
    help="Starter layout",
)
def new(name: str, starter: str):
    """Scaffold a new NucleusFlow project."""
    target = Path(name).resolve()
    if target.exists() and any(target.iterdir()):
        raise click.ClickException(
            f"Refusing to initialize into non-empty directory: {target}"
        )
    _scaffold(target, starter)
    click.echo(f"New NucleusFlow project created at {target}")


@cli.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file")
@click.option("--profile", help="Profile (development, staging, production or custom)")
@click.option("--env-prefix", default="NUCLEUS", show_default=True, help="Environment variable prefix")
@click.option("--content", "content_dir", type=click.Path(path_type=Path), help="Content directory")
@click.option("--output", "output_dir", type=click.Path(path_type=Path), help="Output directory")
@click.option("--templates", "template_dir", type=click.Path(path_type=Path), help="Template directory")
@click.option("--minify/--no-minify", default=None, help="Minify generated HTML")
@click.option("--strict", is_flag=True, help="Stop at the first failure")
@click.option("--jobs", type=click.IntRange(min=1), help="Files processed concurrently")
def build(config_path, profile, env_prefix, content_dir, output_dir, template_dir, minify, strict, jobs):
    """Run the pipeline over the content directory."""
    from .pipeline import NucleusFlow

    overrides = {
        "content_dir": content_dir,
        "output_dir": output_dir,
        "template_dir": template_dir,
        "output.minify": minify,
        "template.strict_mode": True if strict else None,
        "max_concurrent_ops": jobs,
    }
    builder = _builder(config_path, profile, env_prefix, overrides)
    try:
        config = builder.build()
        result = NucleusFlow.from_config(config).process()
    except ProcessingError as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        if exc.path is not None:
            click.echo(click.style(f"  File: {exc.path}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc}", fg="white"), err=True)
        raise SystemExit(1) from None

    for failure in result.failures:
        click.echo(click.style(f"Failed: {failure.path}", fg="yellow"), err=True)
        click.echo(f"  {failure.chain}", err=True)
    click.echo(f"Built {result.successes} pages into {config.output_dir}")
    if not result.ok:
        click.echo(click.style(f"{len(result.failures)} file(s) failed", fg="red", bold=True), err=True)
        raise SystemExit(1)


@cli.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file")
@click.option("--profile", help="Profile (development, staging, production or custom)")
@click.option("--env-prefix", default="NUCLEUS", show_default=True, help="Environment variable prefix")
@click.option("--port", type=int, default=4000, show_default=True, help="Port to run the dev server")
@click.option("--ws-port", type=int, required=False, help="Port for the live reload websocket server")
@click.option("--watch/--no-watch", default=True, help="Rebuild when sources change")
def serve(config_path, profile, env_prefix, port: int, ws_port: int | None, watch: bool):
    """Run dev server with live reload."""
    from .server import DevServer

    builder = _builder(config_path, profile, env_prefix, {}).with_auto_reload()
    try:
        handle = builder.build_shared()
    except ProcessingError as exc:
        raise click.ClickException(str(exc)) from None
    server = DevServer(handle, http_port=port, ws_port=ws_port)
    server.start(watch=watch)


@cli.command()
@click.option("--config", "config_path", type=click.Path(path_type=Path), help="Config file")
def post(config_path):
    """Create a new content file interactively."""
    builder = _builder(config_path, None, None, {})
    try:
        config = builder.build()
    except ProcessingError as exc:
        raise click.ClickException(str(exc)) from None
    content_dir = config.content_dir

    folders = _get_content_folders(content_dir)
    folder = questionary.select(
        "Select folder:",
        choices=folders,
        style=_questionary_style(),
    ).ask()
    if folder is None:
        raise click.Abort()

    title = questionary.text(
        "Title:",
        validate=lambda x: len(x.strip()) > 0 or "Title cannot be empty",
        style=_questionary_style(),
    ).ask()
    if title is None:
        raise click.Abort()
    title = title.strip()

    tags = questionary.text("Tags (comma separated):", style=_questionary_style()).ask()
    if tags is None:
        raise click.Abort()

    add_date = questionary.confirm(
        "Prefix with today's date? (YYYY-MM-DD-)",
        default=True,
        style=_questionary_style(),
    ).ask()
    if add_date is None:
        raise click.Abort()

    today = datetime.now()
    filename = f"{slugify(title)}.md"
    if add_date:
        filename = f"{today:%Y-%m-%d}-{filename}"
    target_dir = content_dir if folder == ". (root)" else content_dir / folder
    target_path = target_dir / filename
    if target_path.exists():
        raise click.ClickException(f"File already exists: {target_path}")

    metadata = ContentMetadata(title=title, date=today.date(), tags=tags.split(","))
    target_dir.mkdir(parents=True, exist_ok=True)
    target_path.write_text(f"{metadata.to_frontmatter()}\n# {title}\n\n", encoding="utf-8")
    click.echo(f"Created {target_path}")


def _builder(config_path: Path | None, profile: str | None, env_prefix: str | None, overrides: dict) -> ConfigBuilder:
    """Assemble a ConfigBuilder from CLI options; None-valued overrides are ignored."""
    builder = ConfigBuilder()
    path = config_path or find_config_file(Path.cwd())
    if path is not None:
        logger.debug("Using config file %s", path)
        builder = builder.with_file(path)
    if env_prefix:
        builder = builder.with_env_prefix(env_prefix)
    if profile:
        builder = builder.with_profile(profile)
    for key, value in overrides.items():
        if value is not None:
            builder = builder.with_override(key, value)
    return builder


def _configure_logging(verbose: bool) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.handlers = [handler]
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False


def _get_content_folders(content_dir: Path) -> list[str]:
    """Get list of content folders.

    Returns folders that don't start with _ or . (those are skipped by the loader)
    """
    folders = []
    if content_dir.exists():
        for path in content_dir.iterdir():
            if path.is_dir() and not path.name.startswith(("_", ".")):
                folders.append(path.name)
    folders.sort()
    folders.insert(0, ". (root)")
    return folders


def _questionary_style():
    """Return consistent questionary style."""
    return questionary.Style(
        [
            ("qmark", "fg:cyan bold"),
            ("question", "bold"),
            ("answer", "fg:cyan"),
            ("pointer", "fg:cyan bold"),
            ("highlighted", "fg:cyan bold"),
            ("selected", "fg:cyan"),
        ]
    )


def main():
    """Entry point for the CLI application."""
    cli()


def _scaffold(root: Path, starter: str) -> None:
    """Create the directory structure and files for a new project.

    Args:
        root: Root directory for the new project.
        starter: Which starter content to write.
    """
    files = {
        "nucleusflow.yaml": _CONFIG_TEMPLATE.format(toc="true" if starter == "docs" else "false"),
        "templates/default.html": _BASE_TEMPLATE.format(site=root.name),
        "assets/css/site.css": _STYLESHEET,
    }
    for rel, text in _STARTER_CONTENT[starter].items():
        files[f"content/{rel}"] = text
    for rel, text in files.items():
        dest = root / rel
        dest.parent.mkdir(parents=True, exist_ok=True)
        dest.write_text(text, encoding="utf-8")
