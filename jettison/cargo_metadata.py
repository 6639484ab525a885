# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Resolution oracle backed by `cargo metadata`.

Cargo does the resolution (versions, features, platform filtering inputs);
this module only reads its JSON output back. Profiles are not part of that
output, so `[profile.*]` tables are read from the workspace manifest.
"""

from __future__ import annotations

import json
import logging
import os
import subprocess
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

from jettison.cfg_expr import platform_matches
from jettison.errors import GraphResolutionError
from jettison.platform import BuildSettings
from jettison.resolver import (
	BinTarget,
	BuildOpts,
	DepKind,
	DependencyEdge,
	LibTarget,
	PackageId,
	PackageMetadata,
)
from jettison.version_req import Version, VersionReq

logger = logging.getLogger(__name__)

_LIB_KINDS = {"lib", "rlib", "dylib", "cdylib", "staticlib", "proc-macro"}

_DEP_KINDS = {None: DepKind.NORMAL, "normal": DepKind.NORMAL, "build": DepKind.BUILD, "dev": DepKind.DEVELOPMENT}


@dataclass(frozen=True)
class MetadataOptions:
	# Directory holding the workspace's Cargo.toml.
	manifest_dir: Path
	package: str | None = None
	features: tuple[str, ...] = ()
	all_features: bool = False
	no_default_features: bool = False
	# Materialized vendor directory; Cargo resolves against it offline.
	vendor_dir: Path | None = None
	# Previously saved `cargo metadata` output; skips running cargo.
	metadata_json: Path | None = None
	cargo: str | None = None
	env: Mapping[str, str] = field(default_factory=dict)


def cargo_binary(opts: MetadataOptions) -> str:
	if opts.cargo:
		return opts.cargo
	return os.environ.get("JETTISON_CARGO", "cargo")


def cargo_metadata_command(opts: MetadataOptions) -> list[str]:
	cmd = [
		cargo_binary(opts),
		"metadata",
		"--format-version",
		"1",
		"--locked",
		"--offline",
		"--manifest-path",
		str(opts.manifest_dir / "Cargo.toml"),
	]
	if opts.vendor_dir is not None:
		cmd.extend(["--config", str(opts.vendor_dir / ".cargo" / "config.toml")])
	if opts.all_features:
		cmd.append("--all-features")
	if opts.no_default_features:
		cmd.append("--no-default-features")
	if opts.features:
		cmd.extend(["--features", ",".join(opts.features)])
	return cmd


def load_metadata(opts: MetadataOptions) -> dict[str, Any]:
	"""Read saved metadata, or run `cargo metadata` for the workspace."""
	if opts.metadata_json is not None:
		try:
			return json.loads(opts.metadata_json.read_text(encoding="utf-8"))
		except (OSError, ValueError) as err:
			raise GraphResolutionError(
				reason_code="CARGO_METADATA_FAILED",
				message=f"failed to read saved cargo metadata: {err}",
				path=str(opts.metadata_json),
			) from err

	cmd = cargo_metadata_command(opts)
	env = dict(os.environ)
	env.update(opts.env)
	if opts.vendor_dir is not None:
		env["CARGO_HOME"] = str(opts.vendor_dir)
	logger.info("running %s", " ".join(cmd))
	try:
		proc = subprocess.run(cmd, check=False, capture_output=True, text=True, env=env)
	except OSError as err:
		raise GraphResolutionError(
			reason_code="CARGO_METADATA_FAILED",
			message=f"failed to run {cmd[0]}: {err}",
			path=str(opts.manifest_dir),
		) from err
	if proc.returncode != 0:
		stderr = (proc.stderr or "").strip()
		raise GraphResolutionError(
			reason_code="CARGO_METADATA_FAILED",
			message=f"cargo metadata exited with {proc.returncode}: {stderr[-2000:]}",
			path=str(opts.manifest_dir),
		)
	try:
		return json.loads(proc.stdout)
	except ValueError as err:
		raise GraphResolutionError(
			reason_code="CARGO_METADATA_FAILED",
			message=f"cargo metadata printed invalid JSON: {err}",
			path=str(opts.manifest_dir),
		) from err


def load_profiles(workspace_root: Path) -> dict[str, Any]:
	"""The `[profile]` table of the workspace manifest (empty if absent)."""
	manifest = workspace_root / "Cargo.toml"
	try:
		data = tomllib.loads(manifest.read_text(encoding="utf-8"))
	except FileNotFoundError:
		return {}
	except (OSError, tomllib.TOMLDecodeError) as err:
		raise GraphResolutionError(
			reason_code="WORKSPACE_MANIFEST_INVALID",
			message=f"failed to read workspace manifest: {err}",
			path=str(manifest),
		) from err
	profiles = data.get("profile", {})
	return profiles if isinstance(profiles, dict) else {}


def _relative(path: str, root: Path) -> str:
	p = Path(path)
	try:
		return p.relative_to(root).as_posix()
	except ValueError:
		return p.as_posix()


class CargoMetadataOracle:
	"""
	`ResolutionOracle` over the JSON printed by `cargo metadata --format-version 1`.

	Platform-specific dependencies are filtered here: normal dependencies
	against the target platform, build dependencies against the build
	platform.
	"""

	def __init__(
		self,
		metadata: Mapping[str, Any],
		settings: BuildSettings,
		*,
		package: str | None = None,
		profiles: Mapping[str, Any] | None = None,
	) -> None:
		self._settings = settings
		self._packages: dict[str, Mapping[str, Any]] = {p["id"]: p for p in metadata.get("packages", [])}
		resolve = metadata.get("resolve") or {}
		self._nodes: dict[str, Mapping[str, Any]] = {n["id"]: n for n in resolve.get("nodes", [])}
		self._members = set(metadata.get("workspace_members", []))
		self._profiles = profiles or {}
		self._root = self._select_root(package, resolve.get("root"))

	@classmethod
	def from_options(cls, opts: MetadataOptions, settings: BuildSettings) -> "CargoMetadataOracle":
		metadata = load_metadata(opts)
		root = metadata.get("workspace_root")
		profiles = load_profiles(Path(root)) if root else load_profiles(opts.manifest_dir)
		return cls(metadata, settings, package=opts.package, profiles=profiles)

	def _pkg_id(self, key: str) -> PackageId:
		raw = self._packages[key]
		return PackageId(name=raw["name"], version=raw["version"], key=key)

	def _select_root(self, package: str | None, resolve_root: str | None) -> PackageId:
		if package is not None:
			members = [k for k in self._packages if k in self._members]
			others = [k for k in self._packages if k not in self._members]
			for key in members + others:
				if self._packages[key]["name"] == package and key in self._nodes:
					return self._pkg_id(key)
			raise GraphResolutionError(
				reason_code="PACKAGE_NOT_FOUND",
				message=f"package '{package}' is not part of the resolved workspace",
				package=package,
			)
		if resolve_root is None:
			raise GraphResolutionError(
				reason_code="VIRTUAL_MANIFEST",
				message="the workspace has a virtual manifest; name the package to build",
			)
		return self._pkg_id(resolve_root)

	@property
	def root_id(self) -> PackageId:
		return self._root

	def package(self, pkg_id: PackageId) -> PackageMetadata:
		raw = self._packages.get(pkg_id.key)
		if raw is None:
			raise GraphResolutionError(
				reason_code="PACKAGE_NOT_FOUND",
				message=f"{pkg_id} is missing from cargo metadata",
				package=pkg_id.name,
				version=pkg_id.version,
			)
		pkg_root = Path(raw["manifest_path"]).parent
		lib: LibTarget | None = None
		bins: list[BinTarget] = []
		build_script: str | None = None
		for target in raw.get("targets", []):
			kinds = set(target.get("kind", []))
			if kinds & _LIB_KINDS and lib is None:
				lib = LibTarget(
					name=target["name"].replace("-", "_"),
					path=_relative(target["src_path"], pkg_root),
					crate_types=tuple(target.get("crate_types", ["lib"])),
				)
			elif "bin" in kinds:
				bins.append(
					BinTarget(
						name=target["name"],
						path=_relative(target["src_path"], pkg_root),
						required_features=tuple(target.get("required-features", [])),
					)
				)
			elif "custom-build" in kinds:
				build_script = _relative(target["src_path"], pkg_root)
		return PackageMetadata(
			id=pkg_id,
			edition=raw.get("edition", "2015"),
			authors=tuple(raw.get("authors", [])),
			description=raw.get("description"),
			homepage=raw.get("homepage"),
			license=raw.get("license"),
			license_file=raw.get("license_file"),
			links=raw.get("links"),
			readme=raw.get("readme"),
			repository=raw.get("repository"),
			rust_version=raw.get("rust_version"),
			lib=lib,
			bins=tuple(bins),
			build_script=build_script,
			root=pkg_root if raw.get("source") is None else None,
		)

	def deps(self, pkg_id: PackageId) -> list[DependencyEdge]:
		node = self._nodes.get(pkg_id.key, {})
		manifest_deps = self._packages.get(pkg_id.key, {}).get("dependencies", [])
		edges: list[DependencyEdge] = []
		for dep in node.get("deps", []):
			dep_id = self._pkg_id(dep["pkg"])
			kinds: list[DepKind] = []
			for dk in dep.get("dep_kinds", []):
				kind = _DEP_KINDS[dk.get("kind")]
				platform = self._settings.build_platform if kind is DepKind.BUILD else self._settings.target_platform
				if kind not in kinds and platform_matches(dk.get("target"), platform):
					kinds.append(kind)
			for kind in kinds:
				rename, req = _manifest_entry(manifest_deps, dep_id, kind)
				edges.append(
					DependencyEdge(
						package_id=dep_id,
						kind=kind,
						package_name=dep_id.name,
						name_in_toml=rename,
						version_req=req,
					)
				)
		return edges

	def features(self, pkg_id: PackageId) -> list[str]:
		return list(self._nodes.get(pkg_id.key, {}).get("features", []))

	def profile(self, pkg_id: PackageId, *, for_host: bool) -> BuildOpts:
		table = self._profiles.get("release" if self._settings.release else "dev", {})
		layers = [table]
		if for_host:
			layers.append(table.get("build-override", {}))
		per_package = table.get("package", {})
		if pkg_id.key not in self._members:
			layers.append(per_package.get("*", {}))
		layers.append(per_package.get(pkg_id.name, {}))

		codegen_units: int | None = None
		extra: list[str] = []
		for layer in layers:
			if "codegen-units" in layer:
				codegen_units = int(layer["codegen-units"])
			extra.extend(layer.get("rustflags", []))
		return BuildOpts(codegen_units=codegen_units, extra_rustc_args=tuple(extra))


def _manifest_entry(
	manifest_deps: list[Mapping[str, Any]],
	dep_id: PackageId,
	kind: DepKind,
) -> tuple[str | None, str]:
	"""Find the manifest line that produced an edge: its rename and requirement."""
	version = Version.parse(dep_id.version)
	for entry in manifest_deps:
		if entry.get("name") != dep_id.name or _DEP_KINDS[entry.get("kind")] is not kind:
			continue
		req = entry.get("req", "*")
		if VersionReq.parse(req).matches(version):
			return entry.get("rename"), req
	return None, "*"
