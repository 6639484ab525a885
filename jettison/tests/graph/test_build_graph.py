from pathlib import Path

import pytest

from jettison.build_graph import (
	BuildGraph,
	ExtendedRename,
	LibraryFormat,
	RenameWithVersion,
	SimpleRename,
	dependency_renames,
)
from jettison.errors import GraphResolutionError
from jettison.resolver import BinTarget, BuildOpts, DepKind
from jettison.test_support import FakeOracle, dep, pkg


def _names(graph: BuildGraph) -> list[str]:
	return [n.package_attrs.name for n in graph.nodes]


def test_chain_is_ordered_dependencies_first():
	oracle = FakeOracle()
	c = oracle.add(pkg("c"))
	b = oracle.add(pkg("b"), [dep(c)])
	a = oracle.add(pkg("a", bins=["a"]), [dep(b)])

	graph = BuildGraph.new(a.id, oracle)

	assert _names(graph) == ["c", "b", "a"]
	assert graph.edges[graph.index_of(a.id)].dependencies == [graph.index_of(b.id)]
	assert graph.edges[graph.index_of(b.id)].dependencies == [graph.index_of(c.id)]
	assert graph.root.package_attrs.name == "a"


def test_edges_point_backwards_in_a_diamond():
	oracle = FakeOracle()
	d = oracle.add(pkg("d"))
	b = oracle.add(pkg("b"), [dep(d)])
	c = oracle.add(pkg("c"), [dep(d)])
	a = oracle.add(pkg("a"), [dep(b), dep(c)])

	graph = BuildGraph.new(a.id, oracle)

	assert len(graph) == 4
	assert _names(graph).count("d") == 1
	for idx, edges in enumerate(graph.edges):
		assert all(e < idx for e in edges.dependencies + edges.build_dependencies)
	assert graph.index_of(a.id) == len(graph) - 1


def test_insert_package_is_idempotent():
	oracle = FakeOracle()
	b = oracle.add(pkg("b"))
	a = oracle.add(pkg("a"), [dep(b)])
	graph = BuildGraph.new(a.id, oracle)
	calls = oracle.deps_calls

	assert graph.insert_package(b.id, oracle) == graph.index_of(b.id)
	assert graph.insert_package(a.id, oracle) == graph.index_of(a.id)
	assert len(graph) == 2
	assert oracle.deps_calls == calls


def test_dev_dependencies_are_ignored():
	oracle = FakeOracle()
	tester = oracle.add(pkg("tester"))
	a = oracle.add(pkg("a"), [dep(tester, DepKind.DEVELOPMENT)])
	graph = BuildGraph.new(a.id, oracle)
	assert _names(graph) == ["a"]


def test_build_dependencies_get_their_own_edges():
	oracle = FakeOracle()
	cc = oracle.add(pkg("cc"))
	libc = oracle.add(pkg("libc"))
	a = oracle.add(pkg("a", build_script="build.rs"), [dep(libc), dep(cc, DepKind.BUILD)])

	graph = BuildGraph.new(a.id, oracle)
	edges = graph.edges[graph.index_of(a.id)]

	assert edges.dependencies == [graph.index_of(libc.id)]
	assert edges.build_dependencies == [graph.index_of(cc.id)]
	assert graph.root.build_script is not None
	assert graph.root.build_script.path == "build.rs"


def test_same_package_as_normal_and_build_dependency():
	oracle = FakeOracle()
	shared = oracle.add(pkg("shared"))
	a = oracle.add(pkg("a", build_script="build.rs"), [dep(shared), dep(shared, DepKind.BUILD), dep(shared)])
	graph = BuildGraph.new(a.id, oracle)
	edges = graph.edges[-1]
	assert edges.dependencies == [0]
	assert edges.build_dependencies == [0]


def test_cycle_is_an_error():
	oracle = FakeOracle()
	a_meta = pkg("a")
	b = oracle.add(pkg("b"), [dep(a_meta)])
	oracle.add(a_meta, [dep(b)])
	with pytest.raises(GraphResolutionError, match="DEPENDENCY_CYCLE") as exc:
		BuildGraph.new(a_meta.id, oracle)
	assert "a 1.0.0 -> b 1.0.0 -> a 1.0.0" in exc.value.message


def test_only_root_binaries_are_built():
	oracle = FakeOracle()
	tool = oracle.add(pkg("tool", bins=["tool-cli"]))
	app = oracle.add(pkg("app", lib=False, bins=["app"]), [dep(tool)])
	graph = BuildGraph.new(app.id, oracle)

	assert graph.nodes[0].binaries == ()
	assert [b.name for b in graph.root.binaries] == ["app"]
	assert graph.root.library is None


def test_binaries_need_their_required_features():
	oracle = FakeOracle()
	gated = BinTarget(name="gated", path="src/bin/gated.rs", required_features=("cli",))
	app = oracle.add(pkg("app", bins=["main", gated]), features=["default"])
	graph = BuildGraph.new(app.id, oracle)
	assert [b.name for b in graph.root.binaries] == ["main"]

	oracle = FakeOracle()
	app = oracle.add(pkg("app", bins=["main", gated]), features=["cli", "default"])
	graph = BuildGraph.new(app.id, oracle)
	assert [b.name for b in graph.root.binaries] == ["main", "gated"]


def test_proc_macro_library_uses_host_profile():
	oracle = FakeOracle()
	derive = oracle.add(pkg("derive", proc_macro=True))
	oracle.set_profile(derive, BuildOpts(codegen_units=16), for_host=False)
	oracle.set_profile(derive, BuildOpts(codegen_units=256), for_host=True)
	a = oracle.add(pkg("a"), [dep(derive)])

	graph = BuildGraph.new(a.id, oracle)
	lib = graph.nodes[0].library
	assert lib.formats == (LibraryFormat.PROC_MACRO,)
	assert lib.is_proc_macro
	assert lib.build_opts.codegen_units == 256


def test_workspace_packages_keep_their_source_dir(tmp_path: Path):
	oracle = FakeOracle()
	a = oracle.add(pkg("a", root=tmp_path))
	graph = BuildGraph.new(a.id, oracle)
	assert graph.root.package_src == tmp_path


def test_single_rename_is_simple():
	oracle = FakeOracle()
	foo = oracle.add(pkg("foo", "1.0.0"))
	a = oracle.add(pkg("a"), [dep(foo, rename="bar", req="^1")])
	assert dependency_renames(a.id, oracle, DepKind.NORMAL) == {"foo": SimpleRename("bar")}


def test_unrenamed_dependency_has_no_entry():
	oracle = FakeOracle()
	foo = oracle.add(pkg("foo"))
	a = oracle.add(pkg("a"), [dep(foo)])
	assert dependency_renames(a.id, oracle, DepKind.NORMAL) == {}


def test_two_versions_of_one_package_are_extended():
	oracle = FakeOracle()
	foo1 = oracle.add(pkg("foo", "1.0.0"))
	foo2 = oracle.add(pkg("foo", "2.1.0"))
	a = oracle.add(pkg("a"), [dep(foo1, rename="foo1", req="^1"), dep(foo2, rename="foo2", req="^2")])

	renames = dependency_renames(a.id, oracle, DepKind.NORMAL)

	assert renames == {
		"foo": ExtendedRename(
			entries=(
				RenameWithVersion(rename="foo1", version_req="^1"),
				RenameWithVersion(rename="foo2", version_req="^2"),
			)
		)
	}


def test_partially_renamed_versions_keep_lib_name():
	oracle = FakeOracle()
	foo1 = oracle.add(pkg("foo", "1.0.0"))
	foo2 = oracle.add(pkg("foo", "2.0.0"))
	a = oracle.add(pkg("a"), [dep(foo1, req="^1"), dep(foo2, rename="foo2", req="^2")])
	(rename,) = dependency_renames(a.id, oracle, DepKind.NORMAL).values()
	assert [e.rename for e in rename.entries] == ["foo", "foo2"]


def test_build_renames_only_see_build_dependencies():
	oracle = FakeOracle()
	foo = oracle.add(pkg("foo"))
	a = oracle.add(pkg("a", build_script="build.rs"), [dep(foo, DepKind.BUILD, rename="foo_build")])
	graph = BuildGraph.new(a.id, oracle)
	assert graph.root.dependency_renames == {}
	assert graph.root.build_script.dependency_renames == {"foo": SimpleRename("foo_build")}


def test_to_value_shape():
	oracle = FakeOracle()
	c = oracle.add(pkg("c"))
	a = oracle.add(
		pkg("a", build_script="build.rs", bins=["a"], edition="2021", description="demo"),
		[dep(c, rename="cee"), dep(c, DepKind.BUILD)],
		features=["default"],
	)
	value = BuildGraph.new(a.id, oracle).to_value()

	assert value[0] == {
		"packageAttrs": {"edition": "2015", "name": "c", "version": "1.0.0"},
		"packageSrc": None,
		"library": {
			"buildOpts": {"codegenUnits": None, "extraRustcArgs": []},
			"formats": ["lib"],
			"name": "c",
			"path": "src/lib.rs",
		},
	}
	root = value[1]
	assert root["packageAttrs"]["features"] == ["default"]
	assert root["packageAttrs"]["description"] == "demo"
	assert root["dependencies"] == [0]
	assert root["dependencyRenames"] == {"c": "cee"}
	assert root["buildScript"]["dependencies"] == [0]
	assert root["binaries"][0]["name"] == "a"
