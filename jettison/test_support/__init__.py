# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Shared helpers for tests that need a resolved workspace or a lockfile.

`FakeOracle` stands in for `cargo metadata`: tests declare packages and
edges directly and the graph/derivation code sees exactly that.
"""

from __future__ import annotations

from pathlib import Path
from typing import Iterable, Sequence

from jettison.resolver import (
	BinTarget,
	BuildOpts,
	DepKind,
	DependencyEdge,
	LibTarget,
	PackageId,
	PackageMetadata,
)

CHECKSUM = "a" * 64

SERDE_LOCK = """\
# This file is automatically @generated by Cargo.
# It is not intended for manual editing.
version = 3

[[package]]
name = "app"
version = "0.1.0"
dependencies = [
 "serde",
]

[[package]]
name = "serde"
version = "1.0.0"
source = "registry+https://github.com/rust-lang/crates.io-index"
checksum = "abc123"
"""

GIT_LOCK = """\
version = 4

[[package]]
name = "app"
version = "0.1.0"
dependencies = [
 "tool",
 "tool-macros",
]

[[package]]
name = "tool"
version = "0.3.0"
source = "git+https://github.com/u/r.git?branch=main#deadbeef"

[[package]]
name = "tool-macros"
version = "0.3.0"
source = "git+https://github.com/u/r.git?branch=main#deadbeef"
"""


def lock_entry(name: str, version: str, source: str | None = None, checksum: str | None = None) -> str:
	"""Render one `[[package]]` record the way Cargo writes it."""
	lines = ["[[package]]", f'name = "{name}"', f'version = "{version}"']
	if source is not None:
		lines.append(f'source = "{source}"')
	if checksum is not None:
		lines.append(f'checksum = "{checksum}"')
	return "\n".join(lines) + "\n"


def lockfile(*entries: str) -> str:
	return "version = 3\n\n" + "\n".join(entries)


def crates_io_entry(name: str, version: str) -> str:
	return lock_entry(name, version, "registry+https://github.com/rust-lang/crates.io-index", CHECKSUM)


def pkg(
	name: str,
	version: str = "1.0.0",
	*,
	lib: bool = True,
	proc_macro: bool = False,
	bins: Sequence[str | BinTarget] = (),
	build_script: str | None = None,
	root: Path | None = None,
	**attrs: object,
) -> PackageMetadata:
	"""Metadata of a package with the usual Cargo layout (`src/lib.rs`, `src/main.rs`, ...)."""
	lib_target = None
	if lib or proc_macro:
		lib_target = LibTarget(
			name=name.replace("-", "_"),
			path="src/lib.rs",
			crate_types=("proc-macro",) if proc_macro else ("lib",),
		)
	bin_targets = tuple(
		b if isinstance(b, BinTarget) else BinTarget(name=b, path=f"src/bin/{b}.rs")
		for b in bins
	)
	return PackageMetadata(
		id=PackageId(name=name, version=version, key=f"{name} {version}"),
		lib=lib_target,
		bins=bin_targets,
		build_script=build_script,
		root=root,
		**attrs,
	)


def dep(
	target: PackageMetadata,
	kind: DepKind = DepKind.NORMAL,
	*,
	rename: str | None = None,
	req: str = "*",
) -> DependencyEdge:
	return DependencyEdge(
		package_id=target.id,
		kind=kind,
		package_name=target.name,
		name_in_toml=rename,
		version_req=req,
	)


class FakeOracle:
	"""In-memory `ResolutionOracle`; the last added package is the root unless `root` is set."""

	def __init__(self) -> None:
		self._packages: dict[PackageId, PackageMetadata] = {}
		self._deps: dict[PackageId, list[DependencyEdge]] = {}
		self._features: dict[PackageId, tuple[str, ...]] = {}
		self._profiles: dict[tuple[PackageId, bool], BuildOpts] = {}
		self._root: PackageId | None = None
		self.root: PackageId | None = None
		self.deps_calls = 0

	def add(
		self,
		meta: PackageMetadata,
		deps: Iterable[DependencyEdge] = (),
		*,
		features: Sequence[str] = (),
	) -> PackageMetadata:
		self._packages[meta.id] = meta
		self._deps[meta.id] = list(deps)
		self._features[meta.id] = tuple(features)
		self._root = meta.id
		return meta

	def set_profile(self, meta: PackageMetadata, opts: BuildOpts, *, for_host: bool = False) -> None:
		self._profiles[(meta.id, for_host)] = opts

	@property
	def root_id(self) -> PackageId:
		root = self.root if self.root is not None else self._root
		assert root is not None, "no packages added"
		return root

	def package(self, pkg_id: PackageId) -> PackageMetadata:
		return self._packages[pkg_id]

	def deps(self, pkg_id: PackageId) -> list[DependencyEdge]:
		self.deps_calls += 1
		return list(self._deps.get(pkg_id, ()))

	def features(self, pkg_id: PackageId) -> list[str]:
		return list(self._features.get(pkg_id, ()))

	def profile(self, pkg_id: PackageId, *, for_host: bool) -> BuildOpts:
		return self._profiles.get((pkg_id, for_host), BuildOpts())
