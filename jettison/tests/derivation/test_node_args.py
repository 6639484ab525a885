import pytest

from jettison.backend import Deferred
from jettison.build_graph import (
	BinaryCrate,
	BuildScript,
	ExtendedRename,
	LibraryCrate,
	LibraryFormat,
	RenameWithVersion,
	SimpleRename,
)
from jettison.errors import GraphResolutionError
from jettison.node_args import (
	BuiltDerivation,
	Crate,
	CrateKind,
	Passthru,
	extern_name,
	extern_path,
	rustc_args,
)
from jettison.resolver import BuildOpts


def _lib_dep(index, name, version="1.0.0", *, lib_name=None, proc_macro=False):
	passthru = Passthru(
		is_proc_macro=proc_macro,
		lib_name=lib_name or name.replace("-", "_"),
		package_name=name,
		version=version,
	)
	return BuiltDerivation(handle=Deferred(index=index, op="make_derivation", name=f"{name}-{version}-lib"), passthru=passthru)


def _out(handle: Deferred) -> str:
	return f"/out/{handle.index}"


def _args(crate, deps=(), **kw):
	params = dict(
		out_path=_out,
		features=(),
		edition="2021",
		release=True,
		compile_target=None,
		dll_extension="so",
	)
	params.update(kw)
	return rustc_args(crate, list(deps), **params)


LIB = LibraryCrate(build_opts=BuildOpts(), name="mylib", path="src/lib.rs")


def test_library_argument_order():
	crate = Crate.from_library(LIB, {})
	args = _args(crate, [_lib_dep(3, "serde")], features=("default", "std"))
	assert args == [
		"src/lib.rs",
		"--crate-name",
		"mylib",
		"--out-dir",
		"target/lib",
		"--edition",
		"2021",
		"--cap-lints",
		"allow",
		"--remap-path-prefix",
		"$NIX_BUILD_TOP=/",
		"--color",
		"always",
		"--codegen",
		"opt-level=3",
		"--codegen",
		"codegen-units=1",
		"--crate-type",
		"lib",
		"--extern",
		"serde=/out/3/libserde.rlib",
		"--cfg",
		'feature="default"',
		"--cfg",
		'feature="std"',
	]


def test_debug_build_and_codegen_units():
	lib = LibraryCrate(build_opts=BuildOpts(codegen_units=16, extra_rustc_args=("-Zfoo",)), name="l", path="src/lib.rs")
	args = _args(Crate.from_library(lib, {}), release=False)
	assert "debuginfo=2" in args
	assert "opt-level=3" not in args
	assert "codegen-units=16" in args
	assert args[-1] == "-Zfoo"


def test_proc_macro_library():
	lib = LibraryCrate(build_opts=BuildOpts(), name="derive", path="src/lib.rs", formats=(LibraryFormat.PROC_MACRO,))
	args = _args(Crate.from_library(lib, {}), compile_target="aarch64-unknown-linux-gnu")
	assert args[args.index("--crate-type") + 1] == "proc-macro"
	assert args[args.index("--extern") + 1] == "proc_macro"
	# proc-macros run on the build machine
	assert "--target" not in args


def test_proc_macro_dependency_uses_dll_extension():
	args = _args(Crate.from_library(LIB, {}), [_lib_dep(1, "serde-derive", proc_macro=True)], dll_extension="dylib")
	assert "serde_derive=/out/1/libserde_derive.dylib" in args


def test_cross_compiled_library_gets_target():
	args = _args(Crate.from_library(LIB, {}), compile_target="aarch64-unknown-linux-gnu")
	idx = args.index("--target")
	assert args[idx + 1] == "aarch64-unknown-linux-gnu"


def test_build_script_is_never_cross_compiled():
	script = BuildScript(build_opts=BuildOpts(), dependency_renames={})
	crate = Crate.from_build_script(script)
	assert crate.kind is CrateKind.BUILD_SCRIPT
	assert crate.name == "build_script_build"
	assert crate.out_dir == "target/build"
	args = _args(crate, compile_target="aarch64-unknown-linux-gnu")
	assert args[0] == "build.rs"
	assert "--target" not in args
	assert args[args.index("--crate-type") + 1] == "bin"


def test_binary_crate_name_uses_underscores():
	crate = Crate.from_binary(BinaryCrate(build_opts=BuildOpts(), name="my-tool", path="src/main.rs"), {})
	assert crate.name == "my_tool"
	assert crate.out_dir == "target/bin"
	assert crate.compiled_for_target


def test_extern_names():
	dep = Passthru(is_proc_macro=False, lib_name="foo", package_name="foo", version="2.3.0")
	assert extern_name({}, dep) == "foo"
	assert extern_name({"foo": SimpleRename("bar")}, dep) == "bar"
	renames = {
		"foo": ExtendedRename(
			entries=(
				RenameWithVersion(rename="foo1", version_req="^1"),
				RenameWithVersion(rename="foo2", version_req="^2"),
			)
		)
	}
	assert extern_name(renames, dep) == "foo2"
	old = Passthru(is_proc_macro=False, lib_name="foo", package_name="foo", version="1.4.0")
	assert extern_name(renames, old) == "foo1"
	newest = Passthru(is_proc_macro=False, lib_name="foo", package_name="foo", version="3.0.0")
	assert extern_name(renames, newest) == "foo"


def test_extern_name_needs_a_library():
	dep = Passthru(is_proc_macro=False, lib_name=None, package_name="app", version="0.1.0")
	with pytest.raises(GraphResolutionError, match="NOT_A_LIBRARY"):
		extern_name({}, dep)


def test_extern_path():
	dep = Passthru(is_proc_macro=False, lib_name="foo", package_name="foo", version="1.0.0")
	assert extern_path("/nix/store/x", dep, dll_extension="so") == "/nix/store/x/libfoo.rlib"


def test_renamed_dependencies_in_arguments():
	renames = {"foo": ExtendedRename(entries=(RenameWithVersion("foo1", "^1"), RenameWithVersion("foo2", "^2")))}
	deps = [_lib_dep(1, "foo", "1.0.0"), _lib_dep(2, "foo", "2.0.0")]
	args = _args(Crate.from_library(LIB, renames), deps)
	externs = [args[i + 1] for i, a in enumerate(args) if a == "--extern"]
	assert externs == ["foo1=/out/1/libfoo.rlib", "foo2=/out/2/libfoo.rlib"]
