"""CLI entry point for api-schema-infer."""

import json
from pathlib import Path

import click
import yaml
from loguru import logger

from api_schema_infer.assembler import EndpointSchemaAssembler
from api_schema_infer.config import get_settings, load_config
from api_schema_infer.errors import ConfigError
from api_schema_infer.log import configure_logging
from api_schema_infer.manifest import load_manifest
from api_schema_infer.rules.builder import SchemaFragmentBuilder


def _dump(data, fmt: str) -> str:
    if fmt == "yaml":
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True)
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log debug output to stderr.")
def main(verbose: bool):
    """API Schema Infer: infer endpoint schemas from application source."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


@main.command()
@click.argument("manifest_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("-o", "--output", default=None, type=click.Path(path_type=Path), help="Output file; stdout when omitted.")
@click.option("--format", "fmt", default="json", type=click.Choice(["json", "yaml"]), help="Output format.")
@click.option("--config", "config_path", default=None, type=click.Path(exists=True, dir_okay=False, path_type=Path),
              help="Inference config YAML (defaults to $API_SCHEMA_INFER_CONFIG_FILE).")
@click.option("--workers", default=None, type=click.IntRange(min=1), help="Worker threads.")
def analyze(manifest_path: Path, output: Path | None, fmt: str, config_path: Path | None, workers: int | None):
    """Infer schemas for every endpoint listed in a manifest."""
    settings = get_settings()
    try:
        config = load_config(config_path or settings.config_file)
        endpoints = load_manifest(manifest_path)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    assembler = EndpointSchemaAssembler(config)
    schemas = assembler.assemble_all(endpoints, max_workers=workers or settings.max_workers)
    for schema in schemas:
        degraded = schema.degraded_statuses()
        if degraded:
            logger.warning("{} {}: degraded responses {}", schema.http_method, schema.path_template,
                           ", ".join(degraded))

    text = _dump([schema.to_dict() for schema in schemas], fmt)
    if output is None:
        click.echo(text, nl=False)
        return
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(text, encoding="utf-8")
    click.echo(f"Wrote {len(schemas)} endpoint schemas to {output}", err=True)


@main.command()
@click.argument("rule_spec")
def rules(rule_spec: str):
    """Show the schema fragment a rule string produces, e.g. 'required|integer|min:1'."""
    fragment = SchemaFragmentBuilder().build_rules(rule_spec)
    click.echo(_dump(fragment.to_dict(), "json"), nl=False)
