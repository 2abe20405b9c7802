# rbuild/buildsystem.py
# -*- coding: utf-8 -*-
"""
buildsystem.py - rbuild build-step runner

API principal:
  run_variant(descriptor, variant)            # raises CommandFailed, returns None
  bs = BuildSystem()                          # defaults from the `build` config section
  report = bs.build_package(descriptor, [variant, ...], keep_going=False, dry_run=False)

Sequence for one variant (autotools, static only):
  1. make clean                      only if <source_dir>/Makefile exists (checked each time)
  2. ./configure --prefix=<platform prefix> --disable-dependency-tracking
                 --enable-shared=no --enable-static=yes <variant configure args...>
  3. make install

Each command runs with cwd=source_dir and os.environ augmented by the variant's
build_env. The first non-zero exit aborts the variant with CommandFailed.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from rbuild import config
from rbuild import process
from rbuild.errors import BuildError
from rbuild.logging import get_logger

logger = get_logger("buildsystem")

MAKEFILE_MARKER = "Makefile"
FIXED_CONFIGURE_FLAGS: Tuple[str, ...] = (
    "--disable-dependency-tracking",
    "--enable-shared=no",
    "--enable-static=yes",
)


class Step(str, Enum):
    CLEAN = "clean"
    CONFIGURE = "configure"
    INSTALL = "install"


class BuildState(str, Enum):
    IDLE = "idle"
    CLEANING = "cleaning"
    CONFIGURING = "configuring"
    INSTALLING = "installing"
    DONE = "done"
    FAILED = "failed"


_STEP_STATE = {
    Step.CLEAN: BuildState.CLEANING,
    Step.CONFIGURE: BuildState.CONFIGURING,
    Step.INSTALL: BuildState.INSTALLING,
}

# --- data model ---
@dataclass(frozen=True)
class PackageDescriptor:
    name: str
    source_dir: Path
    install_prefix: Path

    def __post_init__(self):
        object.__setattr__(self, "source_dir", Path(self.source_dir))
        object.__setattr__(self, "install_prefix", Path(self.install_prefix))


@dataclass(frozen=True)
class Platform:
    name: str
    prefix: Path

    def __post_init__(self):
        object.__setattr__(self, "prefix", Path(self.prefix))


@dataclass(frozen=True)
class VariantConfig:
    name: str
    platform: Platform
    build_env: Mapping[str, str] = field(default_factory=dict)
    configure_args: Tuple[str, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "build_env", {str(k): str(v) for k, v in dict(self.build_env).items()})
        object.__setattr__(self, "configure_args", tuple(str(a) for a in self.configure_args))


@dataclass(frozen=True)
class CommandStep:
    step: Step
    executable: str
    arguments: Tuple[str, ...] = ()

    @property
    def argv(self) -> List[str]:
        return [self.executable, *self.arguments]

    def __str__(self) -> str:
        return " ".join(self.argv)


class CommandFailed(BuildError):
    """A build step exited non-zero (or timed out). Aborts the variant."""

    def __init__(
        self,
        *,
        step: Step,
        exit_code: int,
        package: str,
        variant: str,
        command: str,
        output_tail: str = "",
        timed_out: bool = False,
    ):
        what = "timed out" if timed_out else f"exited with status {exit_code}"
        super().__init__(
            f"{step.value} step of {package} ({variant}) {what}",
            context={
                "package": package,
                "variant": variant,
                "step": step.value,
                "exit_code": str(exit_code),
                "command": command,
                "output": output_tail,
            },
        )
        self.step = step
        self.exit_code = exit_code
        self.package = package
        self.variant = variant
        self.command = command
        self.output_tail = output_tail
        self.timed_out = timed_out


# --- step planning ---
def configure_arguments(variant: VariantConfig) -> Tuple[str, ...]:
    return (f"--prefix={variant.platform.prefix}", *FIXED_CONFIGURE_FLAGS, *variant.configure_args)


def plan_steps(
    descriptor: PackageDescriptor,
    variant: VariantConfig,
    exists: Callable[[Union[str, Path]], bool] = os.path.exists,
) -> List[CommandStep]:
    """Commands for one variant build, in order. The Makefile check happens now, not at definition time."""
    steps: List[CommandStep] = []
    if exists(descriptor.source_dir / MAKEFILE_MARKER):
        steps.append(CommandStep(Step.CLEAN, "make", ("clean",)))
    steps.append(CommandStep(Step.CONFIGURE, "./configure", configure_arguments(variant)))
    steps.append(CommandStep(Step.INSTALL, "make", ("install",)))
    return steps


# --- one variant ---
@dataclass
class VariantBuild:
    """State of a single variant build: Idle -> (Cleaning) -> Configuring -> Installing -> Done | Failed."""

    descriptor: PackageDescriptor
    variant: VariantConfig
    state: BuildState = BuildState.IDLE
    completed: List[CommandStep] = field(default_factory=list)
    error: Optional[CommandFailed] = None

    def run(
        self,
        *,
        runner: Optional[process.CommandRunner] = None,
        exists: Callable[[Union[str, Path]], bool] = os.path.exists,
        timeout: Optional[float] = None,
        log_path: Optional[Path] = None,
        dry_run: bool = False,
    ) -> None:
        if self.state is not BuildState.IDLE:
            raise BuildError("variant build already ran", context={
                "package": self.descriptor.name,
                "variant": self.variant.name,
                "state": self.state.value,
            })
        run = runner or process.run_command
        pkg, vname = self.descriptor.name, self.variant.name
        extra = {"package": pkg, "variant": vname}

        if not self.descriptor.source_dir.is_dir():
            self.state = BuildState.FAILED
            logger.error("%s/%s: source directory %s not found", pkg, vname, self.descriptor.source_dir, extra=extra)
            raise BuildError("source directory not found", context={
                "package": pkg,
                "variant": vname,
                "source_dir": str(self.descriptor.source_dir),
            })

        for step in plan_steps(self.descriptor, self.variant, exists=exists):
            self.state = _STEP_STATE[step.step]
            if dry_run:
                logger.info("[dry-run] %s/%s: would run %s", pkg, vname, step, extra={**extra, "step": step.step.value})
                self.completed.append(step)
                continue
            logger.info("%s/%s: %s: %s", pkg, vname, step.step.value, step, extra={**extra, "step": step.step.value})
            result = run(
                step.argv,
                cwd=self.descriptor.source_dir,
                env_overrides=self.variant.build_env,
                timeout=timeout,
                log_path=log_path,
            )
            if result.returncode != 0:
                self.state = BuildState.FAILED
                self.error = CommandFailed(
                    step=step.step,
                    exit_code=result.returncode,
                    package=pkg,
                    variant=vname,
                    command=str(step),
                    output_tail=result.tail(),
                    timed_out=result.timed_out,
                )
                logger.error("%s/%s: %s failed (rc=%s)", pkg, vname, step.step.value, result.returncode,
                             extra={**extra, "step": step.step.value})
                raise self.error
            self.completed.append(step)

        self.state = BuildState.DONE
        logger.info("%s/%s: done", pkg, vname, extra=extra)


def run_variant(
    descriptor: PackageDescriptor,
    variant: VariantConfig,
    *,
    runner: Optional[process.CommandRunner] = None,
    exists: Callable[[Union[str, Path]], bool] = os.path.exists,
    timeout: Optional[float] = None,
    log_path: Optional[Path] = None,
    dry_run: bool = False,
) -> None:
    """Build one variant of a package. Raises CommandFailed on the first failing step."""
    VariantBuild(descriptor, variant).run(
        runner=runner, exists=exists, timeout=timeout, log_path=log_path, dry_run=dry_run,
    )


# --- several variants ---
@dataclass
class BuildReport:
    package: str
    succeeded: List[str] = field(default_factory=list)
    failed: List[CommandFailed] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ok": self.ok,
            "package": self.package,
            "succeeded": list(self.succeeded),
            "failed": [e.to_dict() for e in self.failed],
            "skipped": list(self.skipped),
        }


class BuildSystem:
    def __init__(
        self,
        *,
        runner: Optional[process.CommandRunner] = None,
        exists: Callable[[Union[str, Path]], bool] = os.path.exists,
        timeout: Optional[float] = None,
        log_dir: Optional[Union[str, Path]] = None,
        base_env: Optional[Mapping[str, str]] = None,
        keep_going: Optional[bool] = None,
    ):
        build_cfg = config.get_build_config()
        self.runner = runner
        self.exists = exists
        self.timeout = timeout if timeout is not None else build_cfg.get("timeout")
        log_dir = log_dir if log_dir is not None else build_cfg.get("log_dir")
        self.log_dir = Path(log_dir) if log_dir else None
        self.base_env: Dict[str, str] = dict(base_env if base_env is not None else build_cfg.get("env") or {})
        self.keep_going = bool(keep_going if keep_going is not None else build_cfg.get("keep_going", False))

    def effective_variant(self, variant: VariantConfig) -> VariantConfig:
        """Config-level build env merged under the variant's own build_env."""
        if not self.base_env:
            return variant
        env = {**self.base_env, **variant.build_env}
        return VariantConfig(variant.name, variant.platform, env, variant.configure_args)

    def log_path_for(self, descriptor: PackageDescriptor, variant: VariantConfig) -> Optional[Path]:
        if not self.log_dir:
            return None
        return self.log_dir / f"{descriptor.name}-{variant.name}.log"

    def build_variant(self, descriptor: PackageDescriptor, variant: VariantConfig, *, dry_run: bool = False) -> VariantBuild:
        vb = VariantBuild(descriptor, self.effective_variant(variant))
        vb.run(
            runner=self.runner,
            exists=self.exists,
            timeout=self.timeout,
            log_path=self.log_path_for(descriptor, variant),
            dry_run=dry_run,
        )
        return vb

    def build_package(
        self,
        descriptor: PackageDescriptor,
        variants: Iterable[VariantConfig],
        *,
        keep_going: Optional[bool] = None,
        dry_run: bool = False,
    ) -> BuildReport:
        """
        Build the variants one after another.
        Without keep_going the first failure stops the package; later variants are reported as skipped.
        """
        keep_going = self.keep_going if keep_going is None else keep_going
        report = BuildReport(package=descriptor.name)
        pending = list(variants)
        logger.info("BuildSystem: building %s (%d variant(s), dry_run=%s, keep_going=%s)",
                    descriptor.name, len(pending), dry_run, keep_going, extra={"package": descriptor.name})
        for i, variant in enumerate(pending):
            try:
                self.build_variant(descriptor, variant, dry_run=dry_run)
            except CommandFailed as e:
                report.failed.append(e)
                if not keep_going:
                    report.skipped.extend(v.name for v in pending[i + 1:])
                    break
            else:
                report.succeeded.append(variant.name)
        if report.skipped:
            logger.warning("%s: skipped variants after failure: %s", descriptor.name, ", ".join(report.skipped),
                           extra={"package": descriptor.name})
        return report

