# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Interface to the resolution oracle.

Version and feature resolution is not done here. An oracle (see
`jettison.cargo_metadata`) answers questions about an already-resolved
workspace, and its answers are trusted as-is.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, Sequence


class DepKind(Enum):
	NORMAL = "normal"
	BUILD = "build"
	DEVELOPMENT = "dev"


@dataclass(frozen=True)
class PackageId:
	"""
	Opaque identity of a resolved package.

	`key` is the oracle's own identifier (for `cargo metadata`, the package id
	string); only name and version are interpreted here.
	"""

	name: str
	version: str
	key: str = ""

	def __str__(self) -> str:
		return self.key or f"{self.name} {self.version}"


@dataclass(frozen=True)
class DependencyEdge:
	package_id: PackageId
	kind: DepKind
	# Name of the depended-on package.
	package_name: str
	# The key used in the manifest when it differs from the package name.
	name_in_toml: str | None = None
	version_req: str = "*"


@dataclass(frozen=True)
class BuildOpts:
	codegen_units: int | None = None
	extra_rustc_args: tuple[str, ...] = ()

	def to_value(self) -> dict[str, object]:
		return {
			"codegenUnits": self.codegen_units,
			"extraRustcArgs": list(self.extra_rustc_args),
		}


@dataclass(frozen=True)
class LibTarget:
	name: str
	# Relative to the package root.
	path: str
	crate_types: tuple[str, ...] = ("lib",)


@dataclass(frozen=True)
class BinTarget:
	name: str
	path: str
	required_features: tuple[str, ...] = ()


@dataclass(frozen=True)
class PackageMetadata:
	id: PackageId
	edition: str = "2015"
	authors: tuple[str, ...] = ()
	description: str | None = None
	homepage: str | None = None
	license: str | None = None
	license_file: str | None = None
	links: str | None = None
	readme: str | None = None
	repository: str | None = None
	rust_version: str | None = None
	lib: LibTarget | None = None
	bins: tuple[BinTarget, ...] = ()
	# Relative path of the build script, if the package has one.
	build_script: str | None = None
	# Package root for workspace path packages, `None` for vendored ones.
	root: Path | None = None

	@property
	def name(self) -> str:
		return self.id.name

	@property
	def version(self) -> str:
		return self.id.version


class ResolutionOracle(Protocol):
	@property
	def root_id(self) -> PackageId:
		...

	def package(self, pkg_id: PackageId) -> PackageMetadata:
		...

	def deps(self, pkg_id: PackageId) -> Sequence[DependencyEdge]:
		"""Dependency edges of `pkg_id`, already filtered for the platform they are built for."""
		...

	def features(self, pkg_id: PackageId) -> Sequence[str]:
		...

	def profile(self, pkg_id: PackageId, *, for_host: bool) -> BuildOpts:
		"""Build options for `pkg_id`; `for_host` selects build-script/proc-macro settings."""
		...
