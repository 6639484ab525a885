# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Build graph construction.

The graph is a flat list of nodes, one per resolved package, with edges
stored as indices into that list. Packages are inserted depth-first and a
node is only appended once all of its dependencies are in, so:

- every edge points to a lower index,
- the root package is the last node,
- walking `nodes` front to back is a valid build order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Union

from jettison.cargo_lock import SourceId
from jettison.errors import GraphResolutionError
from jettison.resolver import BuildOpts, DepKind, DependencyEdge, PackageId, PackageMetadata, ResolutionOracle

logger = logging.getLogger(__name__)


class LibraryFormat(Enum):
	CDYLIB = "cdylib"
	DYLIB = "dylib"
	LIB = "lib"
	PROC_MACRO = "proc-macro"
	RLIB = "rlib"
	STATICLIB = "staticlib"


@dataclass(frozen=True)
class SimpleRename:
	name: str


@dataclass(frozen=True)
class RenameWithVersion:
	rename: str
	version_req: str


@dataclass(frozen=True)
class ExtendedRename:
	"""Renames of a dependency resolved to several versions, told apart by requirement."""

	entries: tuple[RenameWithVersion, ...]


DependencyRename = Union[SimpleRename, ExtendedRename]

# Keyed by the package name of the dependency.
DependencyRenames = dict[str, DependencyRename]


@dataclass(frozen=True)
class BinaryCrate:
	build_opts: BuildOpts
	name: str
	path: str
	required_features: tuple[str, ...] = ()


@dataclass(frozen=True)
class LibraryCrate:
	build_opts: BuildOpts
	# Crate name of the library; usually the package name with `-` turned into `_`.
	name: str
	# Path of the library's entry point relative to the package root.
	path: str
	formats: tuple[LibraryFormat, ...] = (LibraryFormat.LIB,)

	@property
	def is_proc_macro(self) -> bool:
		return self.formats == (LibraryFormat.PROC_MACRO,)


@dataclass(frozen=True)
class BuildScript:
	build_opts: BuildOpts
	dependency_renames: DependencyRenames
	path: str = "build.rs"


@dataclass(frozen=True)
class PackageAttrs:
	name: str
	version: str
	edition: str = "2015"
	authors: tuple[str, ...] = ()
	description: str | None = None
	features: tuple[str, ...] = ()
	homepage: str | None = None
	license: str | None = None
	license_file: str | None = None
	links: str | None = None
	readme: str | None = None
	repository: str | None = None
	rust_version: str | None = None

	def source_id(self) -> SourceId:
		return SourceId(package_name=self.name, version=self.version)

	def to_value(self) -> dict[str, Any]:
		out: dict[str, Any] = {
			"edition": self.edition,
			"name": self.name,
			"version": self.version,
		}
		if self.authors:
			out["authors"] = list(self.authors)
		if self.features:
			out["features"] = list(self.features)
		optional = {
			"description": self.description,
			"homepage": self.homepage,
			"license": self.license,
			"licenseFile": self.license_file,
			"links": self.links,
			"readme": self.readme,
			"repository": self.repository,
			"rustVersion": self.rust_version,
		}
		out.update({k: v for k, v in optional.items() if v is not None})
		return out


@dataclass(frozen=True)
class BuildGraphNode:
	binaries: tuple[BinaryCrate, ...]
	build_script: BuildScript | None
	dependency_renames: DependencyRenames
	library: LibraryCrate | None
	package_attrs: PackageAttrs
	# Package root of workspace path packages; vendored packages have none.
	package_src: Path | None = None

	def source_id(self) -> SourceId:
		return self.package_attrs.source_id()


@dataclass
class NodeEdges:
	dependencies: list[int] = field(default_factory=list)
	build_dependencies: list[int] = field(default_factory=list)


class BuildGraph:
	"""
	Dependency-ordered build graph of one root package.

	Use `BuildGraph.new`; `insert_package` may be called again afterwards and
	returns the existing index for packages already in the graph.
	"""

	def __init__(self) -> None:
		self.nodes: list[BuildGraphNode] = []
		self.edges: list[NodeEdges] = []
		self._index: dict[PackageId, int] = {}
		# Packages whose dependencies are being inserted, outermost first.
		self._in_progress: list[PackageId] = []

	@classmethod
	def new(cls, root_id: PackageId, oracle: ResolutionOracle) -> "BuildGraph":
		graph = cls()
		graph.insert_package(root_id, oracle)
		logger.info("build graph for %s has %d node(s)", root_id, len(graph.nodes))
		return graph

	@property
	def root(self) -> BuildGraphNode:
		return self.nodes[-1]

	def index_of(self, pkg_id: PackageId) -> int | None:
		return self._index.get(pkg_id)

	def __len__(self) -> int:
		return len(self.nodes)

	def insert_package(self, pkg_id: PackageId, oracle: ResolutionOracle) -> int:
		"""Insert `pkg_id` after all of its dependencies and return its node index."""
		existing = self._index.get(pkg_id)
		if existing is not None:
			return existing
		if pkg_id in self._in_progress:
			cycle = self._in_progress[self._in_progress.index(pkg_id) :] + [pkg_id]
			raise GraphResolutionError(
				reason_code="DEPENDENCY_CYCLE",
				message="dependency cycle: " + " -> ".join(str(p) for p in cycle),
				package=pkg_id.name,
				version=pkg_id.version,
			)

		self._in_progress.append(pkg_id)
		try:
			edges = NodeEdges()
			for dep in oracle.deps(pkg_id):
				if dep.kind is DepKind.DEVELOPMENT:
					continue
				dep_idx = self.insert_package(dep.package_id, oracle)
				target = edges.dependencies if dep.kind is DepKind.NORMAL else edges.build_dependencies
				if dep_idx not in target:
					target.append(dep_idx)
			node = self._make_node(pkg_id, oracle)
		finally:
			self._in_progress.pop()

		idx = len(self.nodes)
		self.nodes.append(node)
		self.edges.append(edges)
		self._index[pkg_id] = idx
		logger.debug("inserted %s as node %d", pkg_id, idx)
		return idx

	def _make_node(self, pkg_id: PackageId, oracle: ResolutionOracle) -> BuildGraphNode:
		meta = oracle.package(pkg_id)
		features = tuple(oracle.features(pkg_id))

		library: LibraryCrate | None = None
		if meta.lib is not None:
			formats = tuple(LibraryFormat(t) for t in meta.lib.crate_types)
			is_proc_macro = formats == (LibraryFormat.PROC_MACRO,)
			library = LibraryCrate(
				build_opts=oracle.profile(pkg_id, for_host=is_proc_macro),
				name=meta.lib.name,
				path=meta.lib.path,
				formats=formats,
			)

		binaries: tuple[BinaryCrate, ...] = ()
		# Only the requested package gets its executables built.
		if pkg_id == oracle.root_id:
			active = set(features)
			binaries = tuple(
				BinaryCrate(
					build_opts=oracle.profile(pkg_id, for_host=False),
					name=b.name,
					path=b.path,
					required_features=b.required_features,
				)
				for b in meta.bins
				if set(b.required_features) <= active
			)

		build_script: BuildScript | None = None
		if meta.build_script is not None:
			build_script = BuildScript(
				build_opts=oracle.profile(pkg_id, for_host=True),
				dependency_renames=dependency_renames(pkg_id, oracle, DepKind.BUILD),
				path=meta.build_script,
			)

		return BuildGraphNode(
			binaries=binaries,
			build_script=build_script,
			dependency_renames=dependency_renames(pkg_id, oracle, DepKind.NORMAL),
			library=library,
			package_attrs=_package_attrs(meta, features),
			package_src=meta.root,
		)

	def to_value(self) -> list[dict[str, Any]]:
		"""JSON-ready export of the graph, one object per node."""
		out: list[dict[str, Any]] = []
		for node, edges in zip(self.nodes, self.edges):
			value: dict[str, Any] = {
				"packageAttrs": node.package_attrs.to_value(),
				"packageSrc": str(node.package_src) if node.package_src is not None else None,
			}
			if node.binaries:
				value["binaries"] = [_binary_value(b) for b in node.binaries]
			if node.library is not None:
				value["library"] = _library_value(node.library)
			if node.dependency_renames:
				value["dependencyRenames"] = renames_to_value(node.dependency_renames)
			if node.build_script is not None:
				script: dict[str, Any] = {
					"buildOpts": node.build_script.build_opts.to_value(),
					"dependencyRenames": renames_to_value(node.build_script.dependency_renames),
					"path": node.build_script.path,
				}
				if edges.build_dependencies:
					script["dependencies"] = list(edges.build_dependencies)
				value["buildScript"] = script
			if edges.dependencies:
				value["dependencies"] = list(edges.dependencies)
			out.append(value)
		return out


def _package_attrs(meta: PackageMetadata, features: tuple[str, ...]) -> PackageAttrs:
	return PackageAttrs(
		name=meta.name,
		version=meta.version,
		edition=meta.edition,
		authors=meta.authors,
		description=meta.description,
		features=features,
		homepage=meta.homepage,
		license=meta.license,
		license_file=meta.license_file,
		links=meta.links,
		readme=meta.readme,
		repository=meta.repository,
		rust_version=meta.rust_version,
	)


def dependency_renames(pkg_id: PackageId, oracle: ResolutionOracle, kind: DepKind) -> DependencyRenames:
	"""
	Rename table of the `kind` dependencies of `pkg_id`.

	Dependencies are grouped by package name. Groups where nothing is renamed
	are left out. When a group resolved to several versions, each version gets
	an entry keyed by its requirement; versions that are not renamed keep
	their library name.
	"""
	groups: dict[str, list[DependencyEdge]] = {}
	for dep in oracle.deps(pkg_id):
		if dep.kind is not kind:
			continue
		group = groups.setdefault(dep.package_name, [])
		if all(d.package_id != dep.package_id for d in group):
			group.append(dep)

	renames: DependencyRenames = {}
	for package_name, group in groups.items():
		if all(d.name_in_toml is None for d in group):
			continue
		entries: list[RenameWithVersion] = []
		for dep in group:
			rename = dep.name_in_toml
			if rename is None:
				rename = _lib_name(dep.package_id, oracle)
			entries.append(RenameWithVersion(rename=rename, version_req=dep.version_req))
		if len(entries) == 1:
			renames[package_name] = SimpleRename(name=entries[0].rename)
		else:
			renames[package_name] = ExtendedRename(entries=tuple(entries))
	return renames


def _lib_name(pkg_id: PackageId, oracle: ResolutionOracle) -> str:
	lib = oracle.package(pkg_id).lib
	if lib is not None:
		return lib.name
	return pkg_id.name.replace("-", "_")


def renames_to_value(renames: DependencyRenames) -> dict[str, Any]:
	out: dict[str, Any] = {}
	for name, rename in sorted(renames.items()):
		if isinstance(rename, SimpleRename):
			out[name] = rename.name
		else:
			out[name] = [{"rename": e.rename, "version_req": e.version_req} for e in rename.entries]
	return out


def _binary_value(b: BinaryCrate) -> dict[str, Any]:
	value: dict[str, Any] = {"buildOpts": b.build_opts.to_value(), "name": b.name, "path": b.path}
	if b.required_features:
		value["requiredFeatures"] = list(b.required_features)
	return value


def _library_value(lib: LibraryCrate) -> dict[str, Any]:
	value: dict[str, Any] = {"buildOpts": lib.build_opts.to_value(), "name": lib.name, "path": lib.path}
	if lib.formats:
		value["formats"] = [f.value for f in lib.formats]
	return value
