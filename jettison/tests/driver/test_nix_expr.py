from pathlib import Path

import pytest

from jettison.backend import RecordingBackend, Step, placeholder, split_placeholders
from jettison.nix_expr import render_plan, render_step, render_string, render_value
from jettison.test_support import SERDE_LOCK
from jettison.vendor import VendoredSources


def test_split_placeholders():
	text = f"cp {placeholder(3)}/lib $out && ln -s {placeholder(12)}"
	assert split_placeholders(text) == ["cp ", 3, "/lib $out && ln -s ", 12]
	assert split_placeholders("plain") == ["plain"]
	assert split_placeholders("") == []


def test_single_line_strings():
	assert render_string('say "hi"') == '"say \\"hi\\""'
	assert render_string("${HOME}") == '"\\${HOME}"'
	assert render_string(f"{placeholder(2)}/bin") == '"${s2}/bin"'


def test_multi_line_strings():
	text = f"echo ${{EXTRA:-}}\ncp {placeholder(1)}/x ''quoted''\n"
	rendered = render_string(text)
	assert rendered.startswith("''\n")
	assert rendered.endswith("\n''")
	assert "echo ''${EXTRA:-}" in rendered
	assert "cp ${s1}/x '''quoted'''" in rendered


def test_values():
	backend = RecordingBackend()
	drv = backend.package("rustc")
	assert render_value(drv) == "s0"
	assert render_value(None) == "null"
	assert render_value(True) == "true"
	assert render_value(3) == "3"
	assert render_value([]) == "[ ]"
	assert render_value(["a", drv]) == '[ "a" s0 ]'
	assert render_value({"name": "x", "dontStrip": False}) == '{ name = "x"; dontStrip = false; }'
	assert render_value({"a.b": 1}) == '{ "a.b" = 1; }'
	assert render_value(Path("/ws")) == '"/ws"'


def test_unsupported_value():
	with pytest.raises(TypeError):
		render_value(object())


@pytest.mark.parametrize(
	"step, expected",
	[
		(Step("package", "rustc"), "pkgs.rustc"),
		(Step("package", "rust-bin.stable.rustc"), "pkgs.rust-bin.stable.rustc"),
		(
			Step("fetch_by_checksum", "a-1.0.0.tar.gz", {"url": "https://x/a.crate", "sha256": "abc"}),
			'pkgs.fetchurl { name = "a-1.0.0.tar.gz"; url = "https://x/a.crate"; sha256 = "abc"; }',
		),
		(
			Step("fetch_git", "git-deadbeef", {"url": "https://h/r", "rev": "deadbeef", "submodules": True, "allRefs": True}),
			'builtins.fetchGit { url = "https://h/r"; rev = "deadbeef"; submodules = true; allRefs = true; }',
		),
		(
			Step("local_path", "app", {"path": "/ws/app"}),
			'builtins.path { path = /. + "/ws/app"; name = "app"; }',
		),
		(Step("evaluate_wrapper_script", "w", {"script": "{ x }: x\n"}), "({ x }: x)"),
	],
)
def test_render_step(step, expected):
	assert render_step(step) == expected


def test_unknown_step():
	with pytest.raises(ValueError, match="unknown step"):
		render_step(Step("teleport", "x"))


def test_vendor_plan_renders_as_let_bindings():
	backend = RecordingBackend()
	vendored = VendoredSources.new(SERDE_LOCK, backend)
	root = vendored.to_dir(backend)
	expr = render_plan(backend, root)
	lines = expr.splitlines()

	assert lines[0] == "{ pkgs }:"
	assert lines[1] == "let"
	assert lines[2] == "  s0 = pkgs.runCommandLocal;"
	assert expr.endswith(f"in\ns{root.index}\n")
	assert 'pkgs.linkFarm "vendored-sources" [ { name = "serde-1.0.0"; path = s3; }' in expr
	assert "s3 = s2 { src = s1;" in expr
	assert "pkgs.writeTextFile" in expr
