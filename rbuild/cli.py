#!/usr/bin/env python3
# rbuild/cli.py
"""
rbuild CLI

Commands:
- list   : packages, versions and variants found in recipe files
- plan   : the commands a variant build would run right now
- build  : build one or more variants of a package
- config : print or validate the merged configuration
"""

from __future__ import annotations

import sys
import argparse
from pathlib import Path
from typing import List, Optional

import yaml
from rich.console import Console
from rich.table import Table

from rbuild import config
from rbuild import logging as rlog
from rbuild.buildsystem import BuildReport, BuildSystem, plan_steps
from rbuild.errors import BuildError, ConfigError, RecipeError
from rbuild.recipe import Recipe, RecipeRegistry, load_recipe, registry_from_config

logger = rlog.get_logger("cli")

console = Console()

# -----------------------
# Small pretty helpers
# -----------------------
def print_ok(msg: str):
    console.print(f"[bold green]✔[/] {msg}", highlight=False)

def print_warn(msg: str):
    console.print(f"[bold yellow]![/] {msg}", highlight=False)

def print_err(msg: str):
    console.print("[bold red]✖[/] ", end="")
    console.print(msg, markup=False, highlight=False)

def print_info(msg: str):
    console.print(f"[cyan]{msg}[/cyan]", highlight=False)

# -----------------------
# Helpers
# -----------------------
def _resolve_recipe(ref: str) -> Recipe:
    """A recipe file path, or a package name looked up in the configured recipe paths."""
    p = Path(ref)
    if p.is_file():
        return load_recipe(p)
    return registry_from_config().get(ref)

def _report_table(report: BuildReport) -> Table:
    table = Table(title=f"{report.package}")
    table.add_column("variant", no_wrap=True)
    table.add_column("result")
    table.add_column("detail")
    for name in report.succeeded:
        table.add_row(name, "[green]ok[/green]", "")
    for err in report.failed:
        detail = f"{err.step.value} rc={err.exit_code}" + (" (timeout)" if err.timed_out else "")
        table.add_row(err.variant, "[red]failed[/red]", detail)
    for name in report.skipped:
        table.add_row(name, "[yellow]skipped[/yellow]", "")
    return table

# -----------------------
# Commands
# -----------------------
def cmd_list(args) -> int:
    if args.paths:
        reg = RecipeRegistry()
        reg.load_paths(args.paths)
    else:
        reg = registry_from_config()
    if not len(reg):
        print_warn("no recipes found")
        return 0
    table = Table(title="Packages")
    table.add_column("package", no_wrap=True)
    table.add_column("source")
    table.add_column("prefix")
    table.add_column("variants")
    for recipe in reg:
        table.add_row(recipe.full_name, str(recipe.source_dir), str(recipe.install_prefix), ", ".join(recipe.variant_names()))
    console.print(table)
    return 0

def cmd_plan(args) -> int:
    recipe = _resolve_recipe(args.recipe)
    vname = args.variant or recipe.variant_names()[0]
    variant = recipe.variant_config(vname)
    steps = plan_steps(recipe.descriptor(), variant)
    print_info(f"{recipe.full_name} ({vname}) in {recipe.source_dir}")
    table = Table()
    table.add_column("#")
    table.add_column("step", no_wrap=True)
    table.add_column("command")
    for i, step in enumerate(steps, 1):
        table.add_row(str(i), step.step.value, str(step))
    console.print(table)
    if variant.build_env:
        for k, v in variant.build_env.items():
            console.print(f"  {k}={v}", markup=False, highlight=False)
    return 0

def cmd_build(args) -> int:
    recipe = _resolve_recipe(args.recipe)
    names = args.variant or recipe.variant_names()
    variants = [recipe.variant_config(n) for n in names]
    bs = BuildSystem(timeout=args.timeout, keep_going=True if args.keep_going else None)
    print_info(f"Building {recipe.full_name}: {', '.join(names)}{' (dry run)' if args.dry_run else ''}")
    report = bs.build_package(recipe.descriptor(), variants, dry_run=args.dry_run)
    console.print(_report_table(report))
    for err in report.failed:
        print_err(str(err))
    if report.ok:
        print_ok(f"{recipe.full_name} built")
        return 0
    return 1

def cmd_config(args) -> int:
    if args.validate:
        ok, issues = config.validate_config()
        if ok:
            print_ok("configuration is valid")
            return 0
        for it in issues:
            print_err(it)
        return 1
    cfg = config.get_config()
    print(f"# from {cfg.path or '<defaults>'}")
    print(yaml.safe_dump(cfg.as_dict(), default_flow_style=False, sort_keys=False), end="")
    return 0

# -----------------------
# Argparse wiring
# -----------------------
def make_parser():
    ap = argparse.ArgumentParser(prog="rbuild", description="Build package variants with configure/make")
    ap.add_argument("--config", help="explicit config file")
    ap.add_argument("-v", "--verbose", action="store_true", help="debug logging (includes command output)")
    sub = ap.add_subparsers(dest="cmd")

    p_list = sub.add_parser("list", help="list packages from recipe files/directories")
    p_list.add_argument("paths", nargs="*")
    p_list.set_defaults(func=cmd_list)

    p_plan = sub.add_parser("plan", help="show the commands a build would run")
    p_plan.add_argument("recipe", help="recipe file or package name")
    p_plan.add_argument("--variant")
    p_plan.set_defaults(func=cmd_plan)

    p_build = sub.add_parser("build", help="build variants of a package")
    p_build.add_argument("recipe", help="recipe file or package name")
    p_build.add_argument("--variant", action="append", help="variant to build (repeatable, default: all declared)")
    p_build.add_argument("--dry-run", action="store_true")
    p_build.add_argument("--keep-going", action="store_true", help="continue with other variants after a failure")
    p_build.add_argument("--timeout", type=float, help="seconds allowed per command")
    p_build.set_defaults(func=cmd_build)

    p_config = sub.add_parser("config", help="print merged configuration")
    p_config.add_argument("--validate", action="store_true")
    p_config.set_defaults(func=cmd_config)

    return ap

def main(argv: Optional[List[str]] = None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = make_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0

    try:
        cfg = config.load(args.config) if args.config else config.get_config()
        log_cfg = dict(cfg.merged.get("logging", {}))
        if args.verbose:
            log_cfg["level"] = "DEBUG"
        rlog.configure(log_cfg)
        return args.func(args)
    except (RecipeError, ConfigError) as e:
        print_err(str(e))
        return 2
    except BuildError as e:
        logger.debug("command failed", exc_info=True)
        print_err(str(e))
        return 1

if __name__ == "__main__":
    sys.exit(main())
