# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Derivation assembly.

Each build graph node becomes up to three derivations, created in this order
because each may depend on the previous ones:

- `<name>-<version>-build`: compiles and runs the build script,
- `<name>-<version>-lib`: compiles the library,
- `<name>-<version>-bin`/`-bins`: compiles the binaries (root package only).

Every one of them gets a companion `-deps` derivation that gathers the
compiled direct dependencies (and their native libraries) into a single
directory, linked to `$out/deps` during the configure phase.
"""

from __future__ import annotations

import logging
import re
import shlex
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence, Union

from jettison.backend import BuildBackend, Deferred
from jettison.build_graph import BinaryCrate, BuildGraph, BuildGraphNode, BuildScript, LibraryCrate, PackageAttrs
from jettison.errors import GraphResolutionError
from jettison.node_args import BUILD_SCRIPT_CRATE_NAME, BuiltDerivation, Crate, Passthru, rustc_args
from jettison.platform import BuildSettings
from jettison.vendor import VendoredSources
from jettison.version_req import Version

logger = logging.getLogger(__name__)

# Receives the fully assembled attributes of one derivation, returns the replacement.
CrateOverride = Callable[[dict[str, Any]], Mapping[str, Any]]

_SAFE_SHELL_ARG_RE = re.compile(r"[A-Za-z0-9_./=,:@%+$-]+")


@dataclass(frozen=True)
class BuildScriptDerivation:
	build_script: BuildScript


@dataclass(frozen=True)
class LibraryDerivation:
	library: LibraryCrate
	build_script: Deferred | None = None


@dataclass(frozen=True)
class BinariesDerivation:
	binaries: tuple[BinaryCrate, ...]
	build_script: Deferred | None = None
	library: BuiltDerivation | None = None


DerivationType = Union[BuildScriptDerivation, LibraryDerivation, BinariesDerivation]


def derivation_name_suffix(dtype: DerivationType) -> str:
	if isinstance(dtype, BuildScriptDerivation):
		return "build"
	if isinstance(dtype, LibraryDerivation):
		return "lib"
	return "bins" if len(dtype.binaries) > 1 else "bin"


@dataclass(frozen=True)
class GlobalArgs:
	backend: BuildBackend
	settings: BuildSettings
	vendored_sources: VendoredSources
	# The `parse-build-script-output` tool and the compiler.
	parse_build_script_output: Deferred
	rustc: Deferred
	global_overrides: Mapping[str, Any] = field(default_factory=dict)
	# Keyed by package name.
	crate_overrides: Mapping[str, CrateOverride] = field(default_factory=dict)


@dataclass(frozen=True)
class BuiltNode:
	build_script: Deferred | None = None
	library: BuiltDerivation | None = None
	binaries: Deferred | None = None

	@property
	def output(self) -> Deferred | None:
		"""The derivation a user of this package wants: its binaries, else its library."""
		if self.binaries is not None:
			return self.binaries
		if self.library is not None:
			return self.library.handle
		return None


def shell_arg(arg: str) -> str:
	"""Quote `arg` for a shell command line, leaving `$VAR` expansions live."""
	if _SAFE_SHELL_ARG_RE.fullmatch(arg):
		return arg
	escaped = arg.replace("\\", "\\\\").replace('"', '\\"').replace("`", "\\`")
	return f'"{escaped}"'


def _dq(value: str | None) -> str:
	# Double-quoted shell word with no expansions.
	text = value or ""
	for ch in ("\\", '"', "$", "`"):
		text = text.replace(ch, "\\" + ch)
	return f'"{text}"'


def configure_phase(
	package: PackageAttrs,
	*,
	build_script_out: str | None,
	is_library: bool,
	settings: BuildSettings,
	deps_out: str,
) -> str:
	"""
	Export the environment Cargo gives build scripts and `env!()`, then link
	the dependency directory into `$out/deps`.
	"""
	target = settings.target_platform
	version = Version.parse(package.version)
	release = settings.release
	lines = [
		"runHook preConfigure",
		f"export CARGO_CFG_TARGET_ARCH={target.arch}",
		f"export CARGO_CFG_TARGET_ENDIAN={target.endian}",
		f"export CARGO_CFG_TARGET_ENV={_dq(target.env)}",
		f"export CARGO_CFG_TARGET_FAMILY={_dq(','.join(target.families))}",
		f"export CARGO_CFG_TARGET_HAS_ATOMIC={_dq(','.join(target.has_atomic))}",
		f"export CARGO_CFG_TARGET_OS={target.os}",
		f"export CARGO_CFG_TARGET_POINTER_WIDTH={target.pointer_width}",
		f"export CARGO_CFG_TARGET_VENDOR={target.vendor}",
		f"export CARGO_CFG_PANIC={target.panic}",
	]
	if "unix" in target.families:
		lines.append("export CARGO_CFG_UNIX=1")
	if "windows" in target.families:
		lines.append("export CARGO_CFG_WINDOWS=1")
	lines += [
		"export CARGO_MANIFEST_DIR=$(pwd)",
		f"export CARGO_MANIFEST_LINKS={_dq(package.links)}",
		f"export CARGO_PKG_AUTHORS={_dq(':'.join(package.authors))}",
		f"export CARGO_PKG_DESCRIPTION={shlex.quote(package.description or '')}",
		f"export CARGO_PKG_HOMEPAGE={_dq(package.homepage)}",
		f"export CARGO_PKG_LICENSE={_dq(package.license)}",
		f"export CARGO_PKG_LICENSE_FILE={_dq(package.license_file)}",
		f"export CARGO_PKG_NAME={package.name}",
		f"export CARGO_PKG_README={_dq(package.readme)}",
		f"export CARGO_PKG_REPOSITORY={_dq(package.repository)}",
		f"export CARGO_PKG_RUST_VERSION={_dq(package.rust_version)}",
		f"export CARGO_PKG_VERSION={package.version}",
		f"export CARGO_PKG_VERSION_MAJOR={version.major}",
		f"export CARGO_PKG_VERSION_MINOR={version.minor}",
		f"export CARGO_PKG_VERSION_PATCH={version.patch}",
		f"export CARGO_PKG_VERSION_PRE={_dq('.'.join(version.pre))}",
		f"export DEBUG={'false' if release else 'true'}",
		f"export HOST={settings.build_platform.rustc_target}",
		"export NUM_JOBS=$NIX_BUILD_CORES",
		f"export OPT_LEVEL={3 if release else 0}",
		f"export PROFILE={'release' if release else 'debug'}",
		'export RUSTC="rustc"',
		'export RUSTDOC="rustdoc"',
		f"export TARGET={target.rustc_target}",
	]
	if build_script_out is not None:
		lines.append(f"export OUT_DIR={build_script_out}/out")
		lines.append(f"source {build_script_out}/{'lib.sh' if is_library else 'bin.sh'}")
	lines += [
		"mkdir -p $out",
		f"ln -s {deps_out} $out/deps",
		"runHook postConfigure",
	]
	return "\n".join(lines)


def build_phase(crate_args: Sequence[tuple[Crate, Sequence[str]]]) -> str:
	"""One `rustc` call per crate, each given the shared dependency directory."""
	lines = ["runHook preBuild"]
	for out_dir in dict.fromkeys(crate.out_dir for crate, _ in crate_args):
		lines.append(f"mkdir -p {out_dir}")
	for _crate, args in crate_args:
		cmd = " ".join(["rustc", *(shell_arg(a) for a in args)])
		# Extra flags exported by the build script's lib.sh/bin.sh.
		lines.append(f"{cmd} -L dependency=$out/deps -L native=$out/deps/native ${{EXTRA_RUSTC_ARGS:-}}")
	lines.append("runHook postBuild")
	return "\n".join(lines)


def install_phase(dtype: DerivationType, package: PackageAttrs) -> str:
	lines = ["runHook preInstall"]
	if isinstance(dtype, BuildScriptDerivation):
		lines.append(f"cp target/build/{BUILD_SCRIPT_CRATE_NAME} $out/{BUILD_SCRIPT_CRATE_NAME}")
		for feature in package.features:
			lines.append(f"export CARGO_FEATURE_{feature.upper().replace('-', '_')}=1")
		lines += [
			"export OUT_DIR=$out/out",
			"mkdir -p $OUT_DIR",
			f"$out/{BUILD_SCRIPT_CRATE_NAME} | tee $out/build_script_output.txt",
			"parse-build-script-output \\",
			"  $out/build_script_output.txt \\",
			"  $out/common.sh \\",
			"  $out/lib.sh \\",
			"  $out/bin.sh \\",
			"  EXTRA_RUSTC_ARGS \\",
			f"  {package.name} \\",
			f"  {package.version}",
		]
	elif isinstance(dtype, LibraryDerivation):
		lines.append("cp -r target/lib/. $out")
	else:
		lines.append("mkdir -p $out/bin")
		for binary in dtype.binaries:
			crate_name = binary.name.replace("-", "_")
			lines.append(f"cp target/bin/{crate_name} $out/bin/{shell_arg(binary.name)}")
	lines.append("runHook postInstall")
	return "\n".join(lines)


def make_deps(
	package: PackageAttrs,
	suffix: str,
	direct_deps: Sequence[Deferred],
	args: GlobalArgs,
) -> Deferred:
	"""
	Derivation holding everything rustc needs through `-L`: the direct
	dependencies' libraries, what they themselves collected, and the native
	libraries of the global `buildInputs` override.
	"""
	backend = args.backend
	dll = args.settings.build_platform.dll_extension
	lines = [
		"runHook preInstall",
		"mkdir -p $out",
		"mkdir -p $out/native",
		"shopt -s nullglob",
	]
	for dep in direct_deps:
		out = backend.out_path(dep)
		lines += [
			f"cp -rn {out}/deps/native/. $out/native",
			f"cp -rn {out}/deps/. $out",
			f"for dep in {out}/lib*.{{rlib,{dll}}}; do",
			"  ln -sf $dep $out",
			"done",
		]
	native_inputs = list(args.global_overrides.get("buildInputs", ()))
	for build_input in native_inputs:
		out = backend.out_path(backend.get_lib(build_input))
		lines += [
			f'if [ -d "{out}/lib" ]; then',
			f'  for dep in "{out}/lib"/lib*.{{so,so.*,dylib,a}}; do',
			"    ln -sf $dep $out/native",
			"  done",
			"fi",
			# lib64 is usually a symlink to lib.
			f'if [ -d "{out}/lib64" ] && [ ! -L "{out}/lib64" ]; then',
			f'  for dep in "{out}/lib64"/lib*.{{so,so.*,dylib,a}}; do',
			"    ln -sf $dep $out/native",
			"  done",
			"fi",
		]
	lines.append("runHook postInstall")
	return backend.make_derivation(
		{
			"name": f"{package.name}-{package.version}-{suffix}-deps",
			"buildInputs": [*direct_deps, *native_inputs],
			"installPhase": "\n".join(lines),
			"phases": ["installPhase"],
		}
	)


def apply_overrides(package: PackageAttrs, attrs: dict[str, Any], args: GlobalArgs) -> dict[str, Any]:
	"""Run the override registered for `package`, if any, on the assembled `attrs`."""
	override = args.crate_overrides.get(package.name)
	if override is None:
		return attrs
	result = override(dict(attrs))
	if not isinstance(result, Mapping):
		raise TypeError(
			f"override for {package.name} must return a mapping of attributes, got {type(result).__name__}"
		)
	return dict(result)


def _crates(dtype: DerivationType, node: BuildGraphNode) -> list[Crate]:
	if isinstance(dtype, BuildScriptDerivation):
		return [Crate.from_build_script(dtype.build_script)]
	if isinstance(dtype, LibraryDerivation):
		return [Crate.from_library(dtype.library, node.dependency_renames)]
	return [Crate.from_binary(b, node.dependency_renames) for b in dtype.binaries]


def _build_script_of(dtype: DerivationType) -> Deferred | None:
	if isinstance(dtype, BuildScriptDerivation):
		return None
	return dtype.build_script


def _passthru(dtype: DerivationType, package: PackageAttrs) -> Passthru:
	if isinstance(dtype, LibraryDerivation):
		return Passthru(
			is_proc_macro=dtype.library.is_proc_macro,
			lib_name=dtype.library.name,
			package_name=package.name,
			version=package.version,
		)
	return Passthru(is_proc_macro=False, lib_name=None, package_name=package.name, version=package.version)


def make_derivation(
	dtype: DerivationType,
	node: BuildGraphNode,
	src: Deferred,
	direct_deps: Sequence[BuiltDerivation],
	args: GlobalArgs,
) -> BuiltDerivation:
	backend = args.backend
	settings = args.settings
	package = node.package_attrs
	suffix = derivation_name_suffix(dtype)
	build_script = _build_script_of(dtype)

	deps_drv = make_deps(package, suffix, [d.handle for d in direct_deps], args)
	crate_args = [
		(
			crate,
			rustc_args(
				crate,
				direct_deps,
				out_path=backend.out_path,
				features=package.features,
				edition=package.edition,
				release=settings.release,
				compile_target=settings.compile_target,
				dll_extension=settings.build_platform.dll_extension,
			),
		)
		for crate in _crates(dtype, node)
	]
	passthru = _passthru(dtype, package)

	attrs: dict[str, Any] = {
		"name": f"{package.name}-{package.version}-{suffix}",
		"version": package.version,
		"src": src,
		"configurePhase": configure_phase(
			package,
			build_script_out=backend.out_path(build_script) if build_script is not None else None,
			is_library=isinstance(dtype, LibraryDerivation),
			settings=settings,
			deps_out=backend.out_path(deps_drv),
		),
		"buildPhase": build_phase(crate_args),
		"installPhase": install_phase(dtype, package),
		"dontStrip": True,
		# rlib archives must stay unstripped.
		"stripExclude": ["*.rlib"],
	}
	attrs.update(args.global_overrides)

	# For binaries, `direct_deps` already ends with the package's own library.
	build_inputs: list[Any] = []
	if build_script is not None:
		build_inputs.append(build_script)
	build_inputs.append(deps_drv)
	build_inputs += [d.handle for d in direct_deps]
	attrs["nativeBuildInputs"] = [
		args.parse_build_script_output,
		args.rustc,
		*args.global_overrides.get("nativeBuildInputs", ()),
	]
	attrs["buildInputs"] = [*build_inputs, *args.global_overrides.get("buildInputs", ())]
	attrs["passthru"] = passthru.to_value()

	attrs = apply_overrides(package, attrs, args)
	handle = backend.make_derivation(attrs)
	logger.debug("assembled %s", attrs.get("name"))
	return BuiltDerivation(handle=handle, passthru=passthru)


def node_src(node: BuildGraphNode, args: GlobalArgs) -> Deferred:
	if node.package_src is not None:
		return args.backend.local_path(node.package_src, name=node.package_src.name)
	source_id = node.source_id()
	src = args.vendored_sources.get(source_id)
	if src is None:
		raise GraphResolutionError(
			reason_code="NOT_VENDORED",
			message=f"{source_id} is not a workspace package and is missing from Cargo.lock",
			package=source_id.package_name,
			version=source_id.version,
			source_id=str(source_id),
		)
	return src


def _direct_libraries(
	indices: Sequence[int],
	graph: BuildGraph,
	built: Sequence[BuiltNode],
) -> list[BuiltDerivation]:
	out: list[BuiltDerivation] = []
	for idx in indices:
		library = built[idx].library
		if library is None:
			attrs = graph.nodes[idx].package_attrs
			raise GraphResolutionError(
				reason_code="NOT_A_LIBRARY",
				message=f"{attrs.name} {attrs.version} is a dependency but has no library target",
				package=attrs.name,
				version=attrs.version,
			)
		out.append(library)
	return out


def build_node(
	node: BuildGraphNode,
	idx: int,
	graph: BuildGraph,
	built: Sequence[BuiltNode],
	args: GlobalArgs,
) -> BuiltNode:
	"""
	Assemble the derivations of `graph.nodes[idx]`.

	`built` holds the results for every node before `idx`.
	"""
	edges = graph.edges[idx]
	src = node_src(node, args)

	build_script: Deferred | None = None
	if node.build_script is not None:
		deps = _direct_libraries(edges.build_dependencies, graph, built)
		build_script = make_derivation(BuildScriptDerivation(node.build_script), node, src, deps, args).handle

	normal_deps = _direct_libraries(edges.dependencies, graph, built)

	library: BuiltDerivation | None = None
	if node.library is not None:
		library = make_derivation(LibraryDerivation(node.library, build_script), node, src, normal_deps, args)

	binaries: Deferred | None = None
	if node.binaries:
		# Binaries link against their own package's library.
		bin_deps = normal_deps + ([library] if library is not None else [])
		dtype = BinariesDerivation(node.binaries, build_script, library)
		binaries = make_derivation(dtype, node, src, bin_deps, args).handle

	return BuiltNode(build_script=build_script, library=library, binaries=binaries)
