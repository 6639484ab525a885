import json
from pathlib import Path

from jettison.cli import main
from jettison.test_support import GIT_LOCK, SERDE_LOCK

SERDE = "registry+https://github.com/rust-lang/crates.io-index#serde@1.0.0"


def _workspace(tmp_path: Path) -> Path:
	(tmp_path / "Cargo.lock").write_text(SERDE_LOCK)
	app = f"path+file://{tmp_path}#app@0.1.0"
	serde_root = "/registry/serde-1.0.0"
	metadata = {
		"packages": [
			{
				"id": app,
				"name": "app",
				"version": "0.1.0",
				"source": None,
				"manifest_path": str(tmp_path / "Cargo.toml"),
				"edition": "2021",
				"dependencies": [{"name": "serde", "req": "^1", "kind": None}],
				"targets": [
					{"name": "app", "kind": ["bin"], "crate_types": ["bin"], "src_path": str(tmp_path / "src/main.rs")},
				],
			},
			{
				"id": SERDE,
				"name": "serde",
				"version": "1.0.0",
				"source": "registry+https://github.com/rust-lang/crates.io-index",
				"manifest_path": f"{serde_root}/Cargo.toml",
				"edition": "2018",
				"dependencies": [],
				"targets": [
					{"name": "serde", "kind": ["lib"], "crate_types": ["lib"], "src_path": f"{serde_root}/src/lib.rs"},
				],
			},
		],
		"workspace_members": [app],
		"workspace_root": str(tmp_path),
		"resolve": {
			"root": app,
			"nodes": [
				{"id": app, "features": [], "deps": [{"pkg": SERDE, "dep_kinds": [{"kind": None, "target": None}]}]},
				{"id": SERDE, "features": ["std"], "deps": []},
			],
		},
	}
	path = tmp_path / "metadata.json"
	path.write_text(json.dumps(metadata))
	return path


def test_vendor_prints_config(tmp_path: Path, capsys):
	(tmp_path / "Cargo.lock").write_text(GIT_LOCK)
	assert main(["vendor", str(tmp_path), "--config"]) == 0
	out = capsys.readouterr().out
	assert out.startswith("[source.crates-io]\n")
	assert '[source."git+https://github.com/u/r.git?branch=main"]' in out


def test_vendor_json(tmp_path: Path, capsys):
	(tmp_path / "Cargo.lock").write_text(SERDE_LOCK)
	assert main(["vendor", str(tmp_path), "--json"]) == 0
	obj = json.loads(capsys.readouterr().out)
	assert obj["ok"] is True
	assert obj["sources"] == ["serde-1.0.0"]


def test_vendor_nix_expression(tmp_path: Path, capsys):
	(tmp_path / "Cargo.lock").write_text(SERDE_LOCK)
	assert main(["vendor", str(tmp_path)]) == 0
	out = capsys.readouterr().out
	assert out.startswith("{ pkgs }:\nlet\n")
	assert "pkgs.fetchurl" in out


def test_vendor_error_exit_code(tmp_path: Path, capsys):
	(tmp_path / "Cargo.lock").write_text('[[package]]\nname = "a"\n')
	assert main(["vendor", str(tmp_path)]) == 2
	err = capsys.readouterr().err
	assert err.startswith("[MISSING_FIELD]")


def test_vendor_error_json(tmp_path: Path, capsys):
	assert main(["vendor", str(tmp_path), "--json"]) == 2
	obj = json.loads(capsys.readouterr().out)
	assert obj["ok"] is False
	assert obj["error"]["reason_code"] == "CARGO_LOCK_UNREADABLE"
	assert obj["error"]["kind"] == "VendoringError"


def test_graph_from_saved_metadata(tmp_path: Path, capsys):
	metadata = _workspace(tmp_path)
	assert main(["graph", str(tmp_path), "--metadata-json", str(metadata), "--json"]) == 0
	graph = json.loads(capsys.readouterr().out)
	assert [n["packageAttrs"]["name"] for n in graph] == ["serde", "app"]
	assert graph[1]["dependencies"] == [0]
	assert graph[1]["binaries"][0]["path"] == "src/main.rs"
	assert graph[0]["packageAttrs"]["features"] == ["std"]


def test_graph_unknown_package(tmp_path: Path, capsys):
	metadata = _workspace(tmp_path)
	assert main(["graph", str(tmp_path), "--metadata-json", str(metadata), "-p", "nope"]) == 2
	assert "[PACKAGE_NOT_FOUND]" in capsys.readouterr().err


def test_plan_writes_expression(tmp_path: Path, capsys):
	metadata = _workspace(tmp_path)
	out = tmp_path / "plan.nix"
	argv = [
		"plan",
		str(tmp_path),
		"--metadata-json",
		str(metadata),
		"--build-input",
		"openssl",
		"--target",
		"aarch64-unknown-linux-gnu",
		"--out",
		str(out),
	]
	assert main(argv) == 0
	expr = out.read_text()
	assert expr.startswith("{ pkgs }:\n")
	assert 'name = "app-0.1.0-bin";' in expr
	assert "pkgs.openssl" in expr
	assert "pkgs.lib.getLib" in expr
	assert "--target aarch64-unknown-linux-gnu" in expr
	assert capsys.readouterr().out == ""


def test_plan_json_summary(tmp_path: Path, capsys):
	metadata = _workspace(tmp_path)
	assert main(["plan", str(tmp_path), "--metadata-json", str(metadata), "--json", "--debug"]) == 0
	obj = json.loads(capsys.readouterr().out)
	assert obj["ok"] is True
	assert obj["root"] == "app-0.1.0-bin"
	assert obj["nodes"] == 2
	assert "export DEBUG=true" in obj["expression"]


def test_platform_file(tmp_path: Path, capsys):
	metadata = _workspace(tmp_path)
	platform = tmp_path / "target.json"
	platform.write_text(json.dumps({"config": "riscv64gc-unknown-linux-gnu"}))
	assert main(["plan", str(tmp_path), "--metadata-json", str(metadata), "--target", str(platform)]) == 0
	assert "CARGO_CFG_TARGET_ARCH=riscv64" in capsys.readouterr().out
