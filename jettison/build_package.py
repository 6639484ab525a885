# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Mapping

from jettison.backend import BuildBackend, Deferred
from jettison.build_graph import BuildGraph
from jettison.cargo_metadata import CargoMetadataOracle, MetadataOptions
from jettison.derivation import BuiltNode, CrateOverride, GlobalArgs, build_node
from jettison.errors import GraphResolutionError
from jettison.platform import BuildSettings
from jettison.resolver import ResolutionOracle
from jettison.vendor import VendoredSources, WrapperCache, read_cargo_lock

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildPackageOptions:
	# Workspace directory holding Cargo.toml and Cargo.lock.
	src: Path
	settings: BuildSettings
	package: str | None = None
	features: tuple[str, ...] = ()
	all_features: bool = False
	no_default_features: bool = False
	# Environment packages providing the compiler and the build-script output parser.
	rustc: str = "rustc"
	parse_build_script_output: str = "parse-build-script-output"
	global_overrides: Mapping[str, Any] = field(default_factory=dict)
	crate_overrides: Mapping[str, CrateOverride] = field(default_factory=dict)
	# Realized vendor directory handed to cargo, when one exists on disk.
	vendor_dir: Path | None = None
	metadata_json: Path | None = None


OracleFactory = Callable[[BuildPackageOptions, Deferred], ResolutionOracle]


def cargo_metadata_oracle(opts: BuildPackageOptions, vendor_dir: Deferred) -> ResolutionOracle:
	"""Default oracle: `cargo metadata` over the workspace, resolved offline against the vendor directory."""
	metadata_opts = MetadataOptions(
		manifest_dir=opts.src,
		package=opts.package,
		features=opts.features,
		all_features=opts.all_features,
		no_default_features=opts.no_default_features,
		vendor_dir=opts.vendor_dir,
		metadata_json=opts.metadata_json,
	)
	return CargoMetadataOracle.from_options(metadata_opts, opts.settings)


@dataclass(frozen=True)
class BuildPlan:
	# Binaries (or library) derivation of the requested package.
	root: Deferred
	graph: BuildGraph
	vendored_sources: VendoredSources
	vendor_dir: Deferred
	built: tuple[BuiltNode, ...]


def build_package(
	opts: BuildPackageOptions,
	backend: BuildBackend,
	*,
	oracle_factory: OracleFactory = cargo_metadata_oracle,
	wrappers: WrapperCache | None = None,
) -> BuildPlan:
	"""
	Plan the build of one package of a Cargo workspace.

	Runs the whole pipeline: vendoring, graph construction, then one
	derivation set per graph node in graph order. The first error aborts the
	request.
	"""
	cargo_lock = read_cargo_lock(opts.src / "Cargo.lock")
	vendored = VendoredSources.new(cargo_lock, backend, wrappers=wrappers)
	vendor_dir = vendored.to_dir(backend)

	oracle = oracle_factory(opts, vendor_dir)
	graph = BuildGraph.new(oracle.root_id, oracle)

	args = GlobalArgs(
		backend=backend,
		settings=opts.settings,
		vendored_sources=vendored,
		parse_build_script_output=backend.package(opts.parse_build_script_output),
		rustc=backend.package(opts.rustc),
		global_overrides=opts.global_overrides,
		crate_overrides=opts.crate_overrides,
	)

	built: list[BuiltNode] = []
	for idx, node in enumerate(graph.nodes):
		built.append(build_node(node, idx, graph, built, args))

	root = built[-1].output
	if root is None:
		attrs = graph.root.package_attrs
		raise GraphResolutionError(
			reason_code="NOTHING_TO_BUILD",
			message=f"{attrs.name} {attrs.version} has neither a library nor binaries",
			package=attrs.name,
			version=attrs.version,
		)
	logger.info("planned %d node(s) for %s", len(graph.nodes), graph.root.package_attrs.name)
	return BuildPlan(
		root=root,
		graph=graph,
		vendored_sources=vendored,
		vendor_dir=vendor_dir,
		built=tuple(built),
	)
