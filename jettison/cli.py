# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from jettison.backend import RecordingBackend
from jettison.build_graph import BuildGraph
from jettison.build_package import BuildPackageOptions, build_package
from jettison.cargo_metadata import CargoMetadataOracle, MetadataOptions
from jettison.errors import JettisonError
from jettison.nix_expr import render_plan
from jettison.platform import BuildSettings, Platform, load_platform
from jettison.vendor import VendoredSources, read_cargo_lock

DEFAULT_TRIPLE = "x86_64-unknown-linux-gnu"


def _add_workspace_args(p: argparse.ArgumentParser) -> None:
	p.add_argument("workspace", type=Path, nargs="?", default=Path("."), help="Workspace directory (default: .)")
	p.add_argument("--json", action="store_true", help="Emit machine-readable JSON")


def _add_resolution_args(p: argparse.ArgumentParser) -> None:
	p.add_argument("-p", "--package", type=str, default=None, help="Package to build (default: the workspace root)")
	p.add_argument("-F", "--features", action="append", default=[], help="Features to enable (repeatable, comma separated)")
	p.add_argument("--all-features", action="store_true", help="Enable every feature of the selected package")
	p.add_argument("--no-default-features", action="store_true", help="Do not enable the default feature")
	p.add_argument("--target", type=str, default=None, help="Target triple or platform JSON file (default: --build)")
	p.add_argument("--build", type=str, default=DEFAULT_TRIPLE, help=f"Build triple or platform JSON file (default: {DEFAULT_TRIPLE})")
	profile = p.add_mutually_exclusive_group()
	profile.add_argument("--release", dest="release", action="store_true", default=True, help="Optimized build (default)")
	profile.add_argument("--debug", dest="release", action="store_false", help="Unoptimized build with debug info")
	p.add_argument("--vendor-dir", type=Path, default=None, help="Realized vendor directory for cargo to resolve against")
	p.add_argument("--metadata-json", type=Path, default=None, help="Saved `cargo metadata` output (skips running cargo)")


def _build_parser() -> argparse.ArgumentParser:
	p = argparse.ArgumentParser(prog="jettison", description="Plan Nix builds of Rust workspaces, one derivation per crate")
	p.add_argument("-v", "--verbose", action="count", default=0, help="More logging on stderr (-v info, -vv debug)")
	sub = p.add_subparsers(dest="cmd", required=True)

	vendor = sub.add_parser("vendor", help="Plan the vendored sources of a Cargo.lock")
	_add_workspace_args(vendor)
	vendor.add_argument("--config", action="store_true", help="Print the generated .cargo/config.toml instead")

	graph = sub.add_parser("graph", help="Print the build graph of a package")
	_add_workspace_args(graph)
	_add_resolution_args(graph)

	plan = sub.add_parser("plan", help="Print a Nix expression building a package")
	_add_workspace_args(plan)
	_add_resolution_args(plan)
	plan.add_argument("--rustc", type=str, default="rustc", help="Package attribute of the compiler (default: rustc)")
	plan.add_argument(
		"--parse-build-script-output",
		type=str,
		default="parse-build-script-output",
		help="Package attribute of the build script output parser",
	)
	plan.add_argument("--build-input", action="append", default=[], help="Package attribute added to every derivation's buildInputs")
	plan.add_argument(
		"--native-build-input",
		action="append",
		default=[],
		help="Package attribute added to every derivation's nativeBuildInputs",
	)
	plan.add_argument("--out", type=Path, default=None, help="Write the expression here instead of stdout")
	return p


def _platform(value: str) -> Platform:
	path = Path(value)
	if value.endswith(".json") or path.is_file():
		return load_platform(path)
	return Platform.from_triple(value)


def _settings(args: argparse.Namespace) -> BuildSettings:
	build = _platform(args.build)
	target = _platform(args.target) if args.target is not None else build
	return BuildSettings(build_platform=build, target_platform=target, release=bool(args.release))


def _features(raw: list[str]) -> tuple[str, ...]:
	out: list[str] = []
	for item in raw:
		out.extend(f.strip() for f in item.replace(" ", ",").split(",") if f.strip())
	return tuple(out)


def _configure_logging(verbose: int) -> None:
	level = logging.WARNING
	if verbose == 1:
		level = logging.INFO
	elif verbose > 1:
		level = logging.DEBUG
	logging.basicConfig(level=level, stream=sys.stderr, format="%(levelname)s %(name)s: %(message)s")


def _print_json(obj: Any, compact: bool) -> None:
	if compact:
		print(json.dumps(obj, sort_keys=True, separators=(",", ":")))
	else:
		print(json.dumps(obj, indent=2, sort_keys=True))


def _report(err: JettisonError, as_json: bool) -> int:
	if as_json:
		print(json.dumps({"ok": False, "error": err.to_dict()}, sort_keys=True, separators=(",", ":")))
	else:
		print(err.format_human(), file=sys.stderr)
	return 2


def main(argv: list[str] | None = None) -> int:
	p = _build_parser()
	args = p.parse_args(argv)
	_configure_logging(args.verbose)

	if args.cmd == "vendor":
		backend = RecordingBackend()
		try:
			vendored = VendoredSources.new(read_cargo_lock(args.workspace / "Cargo.lock"), backend)
			vendor_dir = vendored.to_dir(backend)
		except JettisonError as err:
			return _report(err, bool(args.json))
		if args.json:
			obj = {
				"ok": True,
				"sources": [str(s.id) for s in vendored.sources],
				"config_toml": vendored.config_toml,
			}
			_print_json(obj, compact=True)
		elif args.config:
			sys.stdout.write(vendored.config_toml)
		else:
			sys.stdout.write(render_plan(backend, vendor_dir))
		return 0

	try:
		settings = _settings(args)
	except (OSError, ValueError) as err:
		p.error(str(err))
		return 2
	features = _features(args.features)

	if args.cmd == "graph":
		opts = MetadataOptions(
			manifest_dir=args.workspace,
			package=args.package,
			features=features,
			all_features=bool(args.all_features),
			no_default_features=bool(args.no_default_features),
			vendor_dir=args.vendor_dir,
			metadata_json=args.metadata_json,
		)
		try:
			oracle = CargoMetadataOracle.from_options(opts, settings)
			graph = BuildGraph.new(oracle.root_id, oracle)
		except JettisonError as err:
			return _report(err, bool(args.json))
		_print_json(graph.to_value(), compact=bool(args.json))
		return 0

	if args.cmd == "plan":
		backend = RecordingBackend()
		global_overrides: dict[str, Any] = {}
		if args.build_input:
			global_overrides["buildInputs"] = [backend.package(a) for a in args.build_input]
		if args.native_build_input:
			global_overrides["nativeBuildInputs"] = [backend.package(a) for a in args.native_build_input]
		opts = BuildPackageOptions(
			src=args.workspace,
			settings=settings,
			package=args.package,
			features=features,
			all_features=bool(args.all_features),
			no_default_features=bool(args.no_default_features),
			rustc=args.rustc,
			parse_build_script_output=args.parse_build_script_output,
			global_overrides=global_overrides,
			vendor_dir=args.vendor_dir,
			metadata_json=args.metadata_json,
		)
		try:
			result = build_package(opts, backend)
		except JettisonError as err:
			return _report(err, bool(args.json))
		expr = render_plan(backend, result.root)
		if args.json:
			obj = {
				"ok": True,
				"root": result.root.name,
				"nodes": len(result.graph),
				"steps": len(backend.steps),
				"expression": expr,
			}
			_print_json(obj, compact=True)
		elif args.out is not None:
			args.out.write_text(expr, encoding="utf-8")
		else:
			sys.stdout.write(expr)
		return 0

	raise AssertionError("unreachable")
