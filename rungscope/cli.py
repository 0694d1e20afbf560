"""Command-line interface for Rungscope."""

import functools
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import click

from .config import RungscopeConfig, load_config
from .diff import DiffEngine
from .errors import ParseError, RungscopeError
from .export import CSV_EXPORTS, build_context_summary, export_json, project_manual
from .models import Snapshot
from .naming import NamingRuleRegistry, NamingRuleSet, load_rule_sets, rule_sets_from_data
from .parser import EXTENSIONS
from .project import ProjectAnalysis
from .query import SnapshotQuery
from .store import SnapshotStore

logger = logging.getLogger(__name__)

CLI_PROJECT = "cli"


def handle_errors(func):
    """Map Rungscope errors to exit code 2 and anything else to exit code 1."""
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except RungscopeError as e:
            click.echo(f"❌ Error: {e.message}", err=True)
            sys.exit(2 if e.is_client_error else 1)
        except Exception as e:
            logger.debug("Unhandled error", exc_info=True)
            click.echo(f"❌ Error: {e}", err=True)
            sys.exit(1)
    return wrapper


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _load(config: RungscopeConfig, paths: Sequence[str],
          kind: Optional[str] = None) -> Tuple[SnapshotStore, List[Snapshot]]:
    store = SnapshotStore(config)
    snapshots = [store.add_file(CLI_PROJECT, path, kind=kind) for path in paths]
    return store, snapshots


def _rule_set(config: RungscopeConfig, rules_path: Optional[str],
              rule_set_id: Optional[str]) -> Optional[NamingRuleSet]:
    rule_sets = rule_sets_from_data(config.naming_rule_sets)
    if rules_path:
        rule_sets.extend(load_rule_sets(rules_path))
    registry = NamingRuleRegistry(rule_sets)
    if rule_set_id:
        registry.assign(CLI_PROJECT, rule_set_id)
    return registry.resolve(CLI_PROJECT)


@click.group()
@click.option('--verbose', '-v', is_flag=True, help='Verbose output')
@click.option('--config', '-c', 'config_path', type=click.Path(exists=True, dir_okay=False),
              help='YAML configuration file')
@click.pass_context
def main(ctx, verbose, config_path):
    """Analyze Studio 5000 L5X/L5K exports."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.WARNING)
    ctx.obj = load_config(config_path)


@main.command()
@click.argument('file', type=click.Path(exists=True, dir_okay=False))
@click.option('--kind', type=click.Choice(['l5x', 'l5k'], case_sensitive=False),
              help='File kind (default: from extension)')
@click.option('--include', multiple=True, help='Component to include (repeatable)')
@click.option('--output', '-o', 'output_file', help='Write JSON to this file')
@click.pass_obj
@handle_errors
def parse(config, file, kind, include, output_file):
    """Parse FILE and print its snapshot as JSON."""
    _, snapshots = _load(config, [file], kind)
    data = export_json(snapshots[0], output_path=output_file, include=list(include) or None)
    if output_file:
        click.echo(f"✅ Wrote {output_file}")
    else:
        _echo_json(data)


@main.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--search', help='Tag name substring')
@click.option('--usage-type', type=click.Choice(['Read', 'Write', 'Read/Write', 'all']))
@click.option('--program', help='Program name')
@click.option('--page', default=1, show_default=True)
@click.option('--page-size', default=50, show_default=True)
@click.pass_obj
@handle_errors
def refs(config, files, search, usage_type, program, page, page_size):
    """Search the tag cross-reference of FILES."""
    _, snapshots = _load(config, files)
    result = SnapshotQuery(snapshots).search_references(
        search=search, usage_type=usage_type, program=program, page=page, page_size=page_size,
    )
    _echo_json(result.to_dict())


@main.command()
@click.argument('old', type=click.Path(exists=True, dir_okay=False))
@click.argument('new', type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
@handle_errors
def diff(config, old, new):
    """Compare two exports."""
    store, snapshots = _load(config, [old, new])
    engine = DiffEngine(store, max_workers=config.diff_concurrency)
    report = engine.compare_files(snapshots[0].file_id, snapshots[1].file_id)
    _echo_json(report.to_dict())


def _export_files(folder: Path) -> List[Path]:
    return sorted(p for p in folder.iterdir() if p.is_file() and p.suffix.lower() in EXTENSIONS)


@main.command('compare-folders')
@click.argument('folder1', type=click.Path(exists=True, file_okay=False))
@click.argument('folder2', type=click.Path(exists=True, file_okay=False))
@click.pass_obj
@handle_errors
def compare_folders(config, folder1, folder2):
    """Compare same-named exports in two folders."""
    store = SnapshotStore(config)
    for folder in (folder1, folder2):
        for path in _export_files(Path(folder)):
            try:
                store.add_file(CLI_PROJECT, path, folder_id=folder)
            except ParseError as e:
                click.echo(f"⚠️ Skipping {path}: {e.message}", err=True)
    engine = DiffEngine(store, max_workers=config.diff_concurrency)
    _echo_json(engine.compare_folders(folder1, folder2).to_dict())


@main.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--search', help='Tag name substring')
@click.option('--scope', help='Scope, e.g. controller or program:Main')
@click.option('--data-type', help='Data type')
@click.option('--page', default=1, show_default=True)
@click.option('--page-size', default=50, show_default=True)
@click.pass_obj
@handle_errors
def unused(config, files, search, scope, data_type, page, page_size):
    """List tags no rung references."""
    _, snapshots = _load(config, files)
    result = ProjectAnalysis(snapshots, config).unused_tag_page(
        search=search, scope=scope, data_type=data_type, page=page, page_size=page_size,
    )
    _echo_json(result.to_dict())


@main.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.pass_obj
@handle_errors
def coverage(config, files):
    """Report rung comment coverage."""
    _, snapshots = _load(config, files)
    _echo_json(ProjectAnalysis(snapshots, config).comment_coverage())


@main.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--naming/--no-naming', default=None, help='Include naming compliance')
@click.option('--rules', 'rules_path', type=click.Path(exists=True, dir_okay=False),
              help='YAML file with naming rule sets')
@click.option('--rule-set', 'rule_set_id', help='Rule set to apply')
@click.pass_obj
@handle_errors
def health(config, files, naming, rules_path, rule_set_id):
    """Compute the project health score."""
    if naming is not None:
        config.health.naming_enabled = naming
    _, snapshots = _load(config, files)
    analysis = ProjectAnalysis(snapshots, config)
    rule_set = _rule_set(config, rules_path, rule_set_id) if config.health.naming_enabled else None
    result = analysis.health(rule_set).to_dict()
    result["exportTypes"] = analysis.export_types().to_dict()
    _echo_json(result)


@main.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--rules', 'rules_path', type=click.Path(exists=True, dir_okay=False),
              help='YAML file with naming rule sets')
@click.option('--rule-set', 'rule_set_id', help='Rule set to apply')
@click.option('--severity', type=click.Choice(['error', 'warning', 'info', 'all']),
              help='Only list violations of this severity')
@click.pass_obj
@handle_errors
def naming(config, files, rules_path, rule_set_id, severity):
    """Validate names against a naming rule set."""
    rule_set = _rule_set(config, rules_path, rule_set_id)
    _, snapshots = _load(config, files)
    result = ProjectAnalysis(snapshots, config).naming(rule_set)
    if result is None:
        _echo_json({"violations": [], "message": "No naming rule set configured"})
        return
    _echo_json(result.to_dict(severity))


@main.command()
@click.argument('files', nargs=-1, required=True, type=click.Path(exists=True, dir_okay=False))
@click.option('--format', 'fmt', type=click.Choice(['csv', 'markdown', 'context']),
              default='csv', show_default=True)
@click.option('--what', type=click.Choice(sorted(CSV_EXPORTS)), default='tags',
              show_default=True, help='Listing to export as CSV')
@click.option('--project-name', default='Project', show_default=True)
@click.option('--max-chars', default=100_000, show_default=True,
              help='Character budget for --format context')
@click.option('--output', '-o', 'output_file', help='Write to this file instead of stdout')
@click.pass_obj
@handle_errors
def export(config, files, fmt, what, project_name, max_chars, output_file):
    """Export CSV listings, a Markdown manual or a plain-text summary."""
    _, snapshots = _load(config, files)
    if fmt == 'csv':
        text = CSV_EXPORTS[what](snapshots)
    elif fmt == 'markdown':
        text = project_manual(snapshots, project_name, ProjectAnalysis(snapshots, config).health())
    else:
        text = build_context_summary(snapshots, project_name, max_chars=max_chars)

    if output_file:
        with open(output_file, 'w', encoding='utf-8') as f:
            f.write(text)
        click.echo(f"✅ Wrote {output_file}")
    else:
        click.echo(text, nl=False)


if __name__ == '__main__':
    main()
