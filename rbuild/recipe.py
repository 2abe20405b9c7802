# rbuild/recipe.py
"""
recipe.py - package recipes for the build-step runner

Features:
- Parse recipe files in YAML (PyYAML safe_load)
- Define recipes in-process: registry.define("libogg-1.2.2", ...).variant("all", ...)
- Template expansion in paths, env values and configure args (NAME, VERSION, PREFIX, SRCDIR, VARIANT)
- Variant selection with "all" as the catch-all variant
- Platforms (name -> prefix) from rbuild.config or passed explicitly

Recipe file example:

    name: libogg
    version: 1.2.2
    source_dir: libogg-1.2.2          # relative to the recipe file
    install_prefix: /opt/x
    variants:
      all:
        build_env: {CFLAGS: "-O2"}
        configure: ["--host=arm"]
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Sequence, Union

import yaml

from rbuild import config
from rbuild.buildsystem import PackageDescriptor, Platform, VariantConfig
from rbuild.errors import RecipeError
from rbuild.logging import get_logger

logger = get_logger("recipe")

DEFAULT_VARIANT = "all"
RECIPE_SUFFIXES = (".yaml", ".yml")

# Basic safe template substitution for ${VAR}
TEMPLATE_RE = re.compile(r"\$\{([A-Za-z0-9_]+)\}")

def expand_template(s: str, ctx: Mapping[str, str]) -> str:
    """Replace ${KEY} for keys in ctx; anything else (e.g. ${HOME}) is left for the shell/configure."""
    def repl(m):
        k = m.group(1)
        return ctx.get(k, m.group(0))
    return TEMPLATE_RE.sub(repl, s)

# -----------------------
# Data models
# -----------------------
@dataclass
class VariantSpec:
    name: str
    build_env: Dict[str, str] = field(default_factory=dict)
    configure_args: List[str] = field(default_factory=list)
    platform: Optional[str] = None


@dataclass
class Recipe:
    name: str
    source_dir: Path
    install_prefix: Path
    version: str = ""
    variants: Dict[str, VariantSpec] = field(default_factory=dict)
    origin: Optional[Path] = None

    def __post_init__(self):
        self.source_dir = Path(self.source_dir)
        self.install_prefix = Path(self.install_prefix)

    @property
    def full_name(self) -> str:
        return f"{self.name}-{self.version}" if self.version else self.name

    def variant(self, name: str = DEFAULT_VARIANT, *, build_env: Optional[Mapping[str, Any]] = None,
                configure: Sequence[str] = (), platform: Optional[str] = None) -> VariantSpec:
        """Declare (or replace) a variant of this package."""
        spec = VariantSpec(
            name=name,
            build_env={str(k): str(v) for k, v in (build_env or {}).items()},
            configure_args=[str(a) for a in configure],
            platform=platform,
        )
        self.variants[name] = spec
        return spec

    def variant_names(self) -> List[str]:
        return list(self.variants) or [DEFAULT_VARIANT]

    def context(self, variant: Optional[str] = None, prefix: Optional[Path] = None) -> Dict[str, str]:
        return {
            "NAME": self.name,
            "VERSION": self.version,
            "SRCDIR": str(self.source_dir),
            "PREFIX": str(prefix if prefix is not None else self.install_prefix),
            "VARIANT": variant or "",
        }

    def descriptor(self) -> PackageDescriptor:
        return PackageDescriptor(name=self.full_name, source_dir=self.source_dir, install_prefix=self.install_prefix)

    def variant_config(self, name: str = DEFAULT_VARIANT,
                       platforms: Optional[Mapping[str, Mapping[str, Any]]] = None) -> VariantConfig:
        """
        Resolve a variant selector into the VariantConfig the runner consumes.
        Undeclared names fall back to the "all" variant; a recipe without variants behaves as one bare "all".
        """
        spec = self.variants.get(name) or self.variants.get(DEFAULT_VARIANT)
        if spec is None:
            if self.variants:
                raise RecipeError("unknown variant", context={
                    "package": self.full_name,
                    "variant": name,
                    "declared": ", ".join(self.variants),
                })
            spec = VariantSpec(name=DEFAULT_VARIANT)

        if spec.platform:
            table = platforms if platforms is not None else config.get_platforms()
            pdata = table.get(spec.platform)
            if not isinstance(pdata, Mapping) or not pdata.get("prefix"):
                raise RecipeError("unknown platform", context={
                    "package": self.full_name,
                    "variant": name,
                    "platform": spec.platform,
                })
            platform = Platform(name=spec.platform, prefix=Path(pdata["prefix"]))
        else:
            platform = Platform(name=name, prefix=self.install_prefix)

        ctx = self.context(variant=name, prefix=platform.prefix)
        return VariantConfig(
            name=name,
            platform=platform,
            build_env={k: expand_template(v, ctx) for k, v in spec.build_env.items()},
            configure_args=tuple(expand_template(a, ctx) for a in spec.configure_args),
        )

# -----------------------
# Parsing
# -----------------------
def _as_str_list(value: Any, what: str, origin: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return value.split()
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    raise RecipeError(f"{what} must be a list of strings", context={"recipe": origin})

def _as_str_map(value: Any, what: str, origin: str) -> Dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise RecipeError(f"{what} must be a mapping", context={"recipe": origin})
    return {str(k): str(v) for k, v in value.items()}

def recipe_from_dict(data: Mapping[str, Any], base_dir: Optional[Path] = None, origin: str = "<dict>") -> Recipe:
    if not isinstance(data, Mapping):
        raise RecipeError("recipe must be a mapping", context={"recipe": origin})
    missing = [k for k in ("name", "source_dir", "install_prefix") if not data.get(k)]
    if missing:
        raise RecipeError("recipe is missing required fields", context={"recipe": origin, "missing": ", ".join(missing)})

    name = str(data["name"])
    version = str(data.get("version") or "")
    ctx = {"NAME": name, "VERSION": version}
    source_dir = Path(os.path.expanduser(expand_template(str(data["source_dir"]), ctx)))
    if not source_dir.is_absolute() and base_dir is not None:
        source_dir = base_dir / source_dir
    install_prefix = Path(os.path.expanduser(expand_template(str(data["install_prefix"]), ctx)))

    recipe = Recipe(name=name, version=version, source_dir=source_dir, install_prefix=install_prefix)
    variants = data.get("variants") or {}
    if not isinstance(variants, dict):
        raise RecipeError("variants must be a mapping of name -> settings", context={"recipe": origin})
    for vname, vdata in variants.items():
        vdata = vdata or {}
        if not isinstance(vdata, dict):
            raise RecipeError("variant settings must be a mapping", context={"recipe": origin, "variant": str(vname)})
        recipe.variant(
            str(vname),
            build_env=_as_str_map(vdata.get("build_env", vdata.get("build_flags")), "build_env", origin),
            configure=_as_str_list(vdata.get("configure", vdata.get("configure_args")), "configure", origin),
            platform=vdata.get("platform"),
        )
    return recipe

def load_recipe(path: Union[str, Path]) -> Recipe:
    p = Path(path)
    try:
        txt = p.read_text(encoding="utf-8")
    except OSError as e:
        raise RecipeError("cannot read recipe", context={"recipe": str(p), "error": str(e)}) from e
    try:
        data = yaml.safe_load(txt)
    except yaml.YAMLError as e:
        raise RecipeError("cannot parse recipe", context={"recipe": str(p), "error": str(e)}) from e
    recipe = recipe_from_dict(data or {}, base_dir=p.parent.resolve(), origin=str(p))
    recipe.origin = p
    logger.debug("loaded recipe %s from %s", recipe.full_name, p)
    return recipe

# -----------------------
# Registry
# -----------------------
class RecipeRegistry:
    def __init__(self):
        self._recipes: Dict[str, Recipe] = {}

    def add(self, recipe: Recipe) -> Recipe:
        if recipe.full_name in self._recipes:
            raise RecipeError("package defined twice", context={
                "package": recipe.full_name,
                "first": str(self._recipes[recipe.full_name].origin or "<define>"),
                "second": str(recipe.origin or "<define>"),
            })
        self._recipes[recipe.full_name] = recipe
        return recipe

    def define(self, name: str, *, source_dir: Union[str, Path], install_prefix: Union[str, Path],
               version: str = "") -> Recipe:
        return self.add(Recipe(name=name, version=version, source_dir=Path(source_dir), install_prefix=Path(install_prefix)))

    def load_file(self, path: Union[str, Path]) -> Recipe:
        return self.add(load_recipe(path))

    def load_dir(self, path: Union[str, Path]) -> List[Recipe]:
        d = Path(path)
        if not d.is_dir():
            logger.debug("recipe dir %s does not exist", d)
            return []
        return [self.load_file(f) for f in sorted(d.iterdir()) if f.suffix in RECIPE_SUFFIXES and f.is_file()]

    def load_paths(self, paths: Sequence[Union[str, Path]]) -> List[Recipe]:
        loaded: List[Recipe] = []
        for p in paths:
            p = Path(os.path.expanduser(str(p)))
            if p.is_dir():
                loaded.extend(self.load_dir(p))
            elif p.is_file():
                loaded.append(self.load_file(p))
            else:
                logger.debug("recipe path %s does not exist", p)
        return loaded

    def get(self, name: str) -> Recipe:
        try:
            return self._recipes[name]
        except KeyError:
            raise RecipeError("unknown package", context={"package": name}) from None

    def names(self) -> List[str]:
        return sorted(self._recipes)

    def __iter__(self) -> Iterator[Recipe]:
        return iter(self._recipes[n] for n in self.names())

    def __len__(self) -> int:
        return len(self._recipes)

    def __contains__(self, name: object) -> bool:
        return name in self._recipes


REGISTRY = RecipeRegistry()

def define(name: str, *, source_dir: Union[str, Path], install_prefix: Union[str, Path], version: str = "") -> Recipe:
    return REGISTRY.define(name, source_dir=source_dir, install_prefix=install_prefix, version=version)

def registry_from_config() -> RecipeRegistry:
    """Recipes defined in-process (define()) plus those found in the configured recipe paths."""
    reg = RecipeRegistry()
    for recipe in REGISTRY:
        reg.add(recipe)
    reg.load_paths(config.get_recipe_paths())
    return reg
