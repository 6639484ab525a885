# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
rustc invocations for the crates of one build graph node.

A node compiles up to three kinds of crates: its build script, its library
and (for the root package) its binaries. Each is compiled with one `rustc`
call whose `--extern` flags point at the already built libraries of the
node's direct dependencies.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, Sequence

from jettison.backend import Deferred
from jettison.build_graph import (
	BinaryCrate,
	BuildScript,
	DependencyRenames,
	ExtendedRename,
	LibraryCrate,
	SimpleRename,
)
from jettison.errors import GraphResolutionError
from jettison.resolver import BuildOpts
from jettison.version_req import Version, VersionReq

BUILD_SCRIPT_CRATE_NAME = "build_script_build"


class CrateKind(Enum):
	BUILD_SCRIPT = "build"
	LIBRARY = "lib"
	BINARY = "bin"


@dataclass(frozen=True)
class Passthru:
	"""What a dependent may know about an already built derivation."""

	is_proc_macro: bool
	lib_name: str | None
	package_name: str
	version: str

	def to_value(self) -> dict[str, object]:
		value: dict[str, object] = {
			"is_proc_macro": self.is_proc_macro,
			"package_name": self.package_name,
			"version": self.version,
		}
		if self.lib_name is not None:
			value["lib_name"] = self.lib_name
		return value


@dataclass(frozen=True)
class BuiltDerivation:
	handle: Deferred
	passthru: Passthru


@dataclass(frozen=True)
class Crate:
	kind: CrateKind
	# Source path relative to the package root.
	path: str
	# Value of `--crate-name`.
	name: str
	types_arg: str
	is_proc_macro: bool
	dependency_renames: DependencyRenames
	build_opts: BuildOpts

	@classmethod
	def from_library(cls, library: LibraryCrate, renames: DependencyRenames) -> "Crate":
		return cls(
			kind=CrateKind.LIBRARY,
			path=library.path,
			name=library.name,
			types_arg=",".join(f.value for f in library.formats),
			is_proc_macro=library.is_proc_macro,
			dependency_renames=renames,
			build_opts=library.build_opts,
		)

	@classmethod
	def from_binary(cls, binary: BinaryCrate, renames: DependencyRenames) -> "Crate":
		return cls(
			kind=CrateKind.BINARY,
			path=binary.path,
			name=binary.name.replace("-", "_"),
			types_arg="bin",
			is_proc_macro=False,
			dependency_renames=renames,
			build_opts=binary.build_opts,
		)

	@classmethod
	def from_build_script(cls, build_script: BuildScript) -> "Crate":
		return cls(
			kind=CrateKind.BUILD_SCRIPT,
			path=build_script.path,
			name=BUILD_SCRIPT_CRATE_NAME,
			types_arg="bin",
			is_proc_macro=False,
			dependency_renames=build_script.dependency_renames,
			build_opts=build_script.build_opts,
		)

	@property
	def compiled_for_target(self) -> bool:
		# Build scripts and proc-macros run on the build machine.
		if self.kind is CrateKind.BINARY:
			return True
		return self.kind is CrateKind.LIBRARY and not self.is_proc_macro

	@property
	def out_dir(self) -> str:
		return f"target/{self.kind.value}"


def extern_name(renames: DependencyRenames, dep: Passthru) -> str:
	"""Name the dependency is imported under by the depending crate."""
	if dep.lib_name is None:
		raise GraphResolutionError(
			reason_code="NOT_A_LIBRARY",
			message=f"{dep.package_name} {dep.version} is a dependency but has no library target",
			package=dep.package_name,
			version=dep.version,
		)
	rename = renames.get(dep.package_name)
	if isinstance(rename, SimpleRename):
		return rename.name
	if isinstance(rename, ExtendedRename):
		version = Version.parse(dep.version)
		for entry in rename.entries:
			if VersionReq.parse(entry.version_req).matches(version):
				return entry.rename
	return dep.lib_name


def extern_path(dep_out: str, dep: Passthru, *, dll_extension: str) -> str:
	ext = dll_extension if dep.is_proc_macro else "rlib"
	return f"{dep_out}/lib{dep.lib_name}.{ext}"


def rustc_args(
	crate: Crate,
	deps: Sequence[BuiltDerivation],
	*,
	out_path: Callable[[Deferred], str],
	features: Sequence[str],
	edition: str,
	release: bool,
	compile_target: str | None,
	dll_extension: str,
) -> list[str]:
	"""
	Arguments of the `rustc` call compiling `crate`.

	`deps` are the direct dependencies of the crate, in edge order.
	`out_path` turns a dependency's handle into the text of its output path.
	"""
	args = [
		crate.path,
		"--crate-name",
		crate.name,
		"--out-dir",
		crate.out_dir,
		"--edition",
		edition,
		"--cap-lints",
		"allow",
		"--remap-path-prefix",
		"$NIX_BUILD_TOP=/",
		"--color",
		"always",
		"--codegen",
		"opt-level=3" if release else "debuginfo=2",
		"--codegen",
		f"codegen-units={crate.build_opts.codegen_units or 1}",
		"--crate-type",
		crate.types_arg,
	]
	if crate.is_proc_macro:
		args += ["--extern", "proc_macro"]
	for dep in deps:
		name = extern_name(crate.dependency_renames, dep.passthru)
		path = extern_path(out_path(dep.handle), dep.passthru, dll_extension=dll_extension)
		args += ["--extern", f"{name}={path}"]
	if compile_target is not None and crate.compiled_for_target:
		args += ["--target", compile_target]
	for feature in features:
		args += ["--cfg", f'feature="{feature}"']
	args += list(crate.build_opts.extra_rustc_args)
	return args
