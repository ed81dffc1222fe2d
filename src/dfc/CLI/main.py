# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for DFC.
"""
import json
import logging
import os

import click
import yaml

from ..BUILDERS.pipeline import DockerfileCompiler
from ..CONVERTERS.to_dot import DotConverter
from ..errors import DockerfileError, RequestError, ValidationFailed
from ..PARSERS.request_parser import BuildRequestLoader

EXIT_FINDINGS = 1
EXIT_USAGE = 2


def _emit(data, fmt: str) -> None:
    if fmt == "yaml":
        click.echo(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), nl=False)
    else:
        click.echo(json.dumps(data, indent=2, ensure_ascii=False))


def _read_source(ctx) -> str:
    path = ctx.obj["file"]
    if path == "-":
        return click.get_text_stream("stdin").read()
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as exc:
        click.echo(f"Error: cannot read {path}: {exc.strerror or exc}", err=True)
        ctx.exit(EXIT_USAGE)


def _fail(ctx, exc: DockerfileError) -> None:
    if isinstance(exc, ValidationFailed):
        for finding in exc.result.findings:
            click.echo(f"{ctx.obj['file']}:{finding}", err=True)
    else:
        click.echo(f"Error: {exc}", err=True)
    ctx.exit(EXIT_USAGE if isinstance(exc, RequestError) else EXIT_FINDINGS)


def request_options(func):
    """Options shared by the commands that lower a Dockerfile."""
    options = [
        click.option("--build-arg", "build_args", multiple=True, metavar="KEY[=VALUE]",
                     help="Set a build argument; a bare KEY is read from the environment"),
        click.option("--build-arg-file", "build_arg_files", multiple=True,
                     type=click.Path(dir_okay=False), help="Read build arguments from a .env file"),
        click.option("--request", "request_file", type=click.Path(dir_okay=False),
                     help="YAML build request with build_args, target and platform"),
        click.option("--target", help="Target stage name or index"),
        click.option("--platform", help="Target platform, os/arch[/variant]"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _build_request(request_file, build_arg_files, build_args, target, platform):
    loader = BuildRequestLoader()
    if request_file:
        loader.load_request_file(request_file)
    for path in build_arg_files:
        loader.load_build_arg_file(path)
    loader.override_build_args(build_args, os.environ)
    loader.override(target_stage=target, platform=platform)
    return loader.build()


def _compile(ctx, request_file, build_arg_files, build_args, target, platform):
    content = _read_source(ctx)
    try:
        request = _build_request(request_file, build_arg_files, build_args, target, platform)
        result = ctx.obj["compiler"].compile(content, request, filename=ctx.obj["file"])
    except DockerfileError as exc:
        _fail(ctx, exc)
    for warning in result.validation.warnings:
        click.echo(f"{ctx.obj['file']}:{warning}", err=True)
    for warning in result.graph.warnings:
        click.echo(f"warning: {warning.message}", err=True)
    if result.graph.unused_build_args:
        click.echo(
            "warning: unused build arguments: " + ", ".join(result.graph.unused_build_args),
            err=True,
        )
    return result


@click.group()
@click.option('--file', '-f', default='Dockerfile', help='Dockerfile path, or - for stdin')
@click.option('--verbose', '-v', is_flag=True, help='Log compiler progress')
@click.pass_context
def cli(ctx, file, verbose):
    """
    DFC - Dockerfile frontend compiler.

    Parses, validates and lowers Dockerfiles into a build graph.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    ctx.obj['compiler'] = DockerfileCompiler()


@cli.command()
@click.option('--format', 'fmt', type=click.Choice(['json', 'yaml']), default='json')
@click.pass_context
def parse(ctx, fmt):
    """Print the syntax tree."""
    content = _read_source(ctx)
    try:
        result = ctx.obj['compiler'].analyze(content, filename=ctx.obj['file'])
    except DockerfileError as exc:
        _fail(ctx, exc)
    _emit(result.ast.model_dump(mode="json"), fmt)


@cli.command()
@click.option('--format', 'fmt', type=click.Choice(['text', 'json', 'yaml']), default='text')
@click.pass_context
def check(ctx, fmt):
    """Validate the Dockerfile and list findings."""
    content = _read_source(ctx)
    try:
        result = ctx.obj['compiler'].analyze(content, filename=ctx.obj['file'])
    except DockerfileError as exc:
        _fail(ctx, exc)
    findings = result.validation.findings
    if fmt == 'text':
        for finding in findings:
            click.echo(f"{ctx.obj['file']}:{finding}")
        if not findings:
            click.echo("No problems found.")
    else:
        _emit([finding.to_dict() for finding in findings], fmt)
    if not result.validation.ok:
        ctx.exit(EXIT_FINDINGS)


@cli.command(name='lower')
@request_options
@click.option('--format', 'fmt', type=click.Choice(['json', 'yaml']), default='json')
@click.pass_context
def lower_command(ctx, build_args, build_arg_files, request_file, target, platform, fmt):
    """Print the IR graph for the target stage."""
    result = _compile(ctx, request_file, build_arg_files, build_args, target, platform)
    _emit(result.graph.to_dict(), fmt)


@cli.command()
@request_options
@click.option('--out', '-o', default=None, help='Write DOT to a file instead of stdout')
@click.pass_context
def graph(ctx, build_args, build_arg_files, request_file, target, platform, out):
    """Render the IR graph as Graphviz DOT."""
    result = _compile(ctx, request_file, build_arg_files, build_args, target, platform)
    converter = DotConverter(result.graph)
    if out:
        converter.convert(out)
        click.echo(f"Wrote {out}")
    else:
        click.echo(converter.render(), nl=False)


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
