"""rbuild - build package variants with configure/make."""

from rbuild.buildsystem import (
    BuildReport,
    BuildState,
    BuildSystem,
    CommandFailed,
    CommandStep,
    PackageDescriptor,
    Platform,
    Step,
    VariantBuild,
    VariantConfig,
    plan_steps,
    run_variant,
)
from rbuild.errors import BuildError, ConfigError, RecipeError
from rbuild.recipe import Recipe, RecipeRegistry, define, load_recipe

__version__ = "1.0.0"

__all__ = [
    "BuildError",
    "BuildReport",
    "BuildState",
    "BuildSystem",
    "CommandFailed",
    "CommandStep",
    "ConfigError",
    "PackageDescriptor",
    "Platform",
    "Recipe",
    "RecipeError",
    "RecipeRegistry",
    "Step",
    "VariantBuild",
    "VariantConfig",
    "define",
    "load_recipe",
    "plan_steps",
    "run_variant",
]
