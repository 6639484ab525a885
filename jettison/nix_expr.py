# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Nix rendering of a recorded plan.

Every step of a `RecordingBackend` becomes one `let` binding (`s0`, `s1`, ...)
of a function taking `pkgs`. Steps only refer to earlier steps, so the
bindings read top to bottom in dependency order.
"""

from __future__ import annotations

import re
from pathlib import PurePath
from typing import Any

from jettison.backend import Deferred, RecordingBackend, Step, split_placeholders

_IDENT_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_'-]*")


def _binding(index: int) -> str:
	return f"s{index}"


def _attr_name(name: str) -> str:
	if _IDENT_RE.fullmatch(name):
		return name
	return render_string(name)


def render_string(text: str) -> str:
	"""Render `text` as a Nix string, turning output-path placeholders into interpolations."""
	if "\n" in text:
		return _render_indented(text)
	out = ['"']
	for piece in split_placeholders(text):
		if isinstance(piece, int):
			out.append("${" + _binding(piece) + "}")
		else:
			out.append(piece.replace("\\", "\\\\").replace('"', '\\"').replace("${", "\\${"))
	out.append('"')
	return "".join(out)


def _render_indented(text: str) -> str:
	body: list[str] = []
	for piece in split_placeholders(text):
		if isinstance(piece, int):
			body.append("${" + _binding(piece) + "}")
		else:
			body.append(piece.replace("''", "'''").replace("${", "''${"))
	joined = "".join(body)
	indented = "\n".join(("    " + line) if line else "" for line in joined.split("\n"))
	# The closing `''` sits on its own line, which already ends the text with a newline.
	if not joined.endswith("\n"):
		indented += "\n"
	return "''\n" + indented + "''"


def render_value(value: Any) -> str:
	if isinstance(value, Deferred):
		return _binding(value.index)
	if value is None:
		return "null"
	if isinstance(value, bool):
		return "true" if value else "false"
	if isinstance(value, int):
		return str(value)
	if isinstance(value, str):
		return render_string(value)
	if isinstance(value, PurePath):
		return render_string(str(value))
	if isinstance(value, (list, tuple)):
		if not value:
			return "[ ]"
		return "[ " + " ".join(render_value(v) for v in value) + " ]"
	if isinstance(value, dict):
		if not value:
			return "{ }"
		items = " ".join(f"{_attr_name(str(k))} = {render_value(v)};" for k, v in value.items())
		return "{ " + items + " }"
	raise TypeError(f"cannot render {type(value).__name__} as a Nix value")


def render_step(step: Step) -> str:
	args = step.args
	if step.op == "fetch_by_checksum":
		return "pkgs.fetchurl " + render_value({"name": step.name, "url": args["url"], "sha256": args["sha256"]})
	if step.op == "fetch_git":
		return "builtins.fetchGit " + render_value(args)
	if step.op == "materialize_named_directory":
		entries = [{"name": name, "path": drv} for name, drv in args["entries"]]
		return f"pkgs.linkFarm {render_string(step.name)} {render_value(entries)}"
	if step.op == "write_text_file":
		return "pkgs.writeTextFile " + render_value({"name": step.name, "text": args["text"]})
	if step.op == "evaluate_wrapper_script":
		return "(" + args["script"].strip() + ")"
	if step.op == "apply":
		return f"{render_value(args['fn'])} {render_value(args['args'])}"
	if step.op == "local_path":
		return "builtins.path " + f"{{ path = /. + {render_string(args['path'])}; name = {render_string(step.name)}; }}"
	if step.op == "make_derivation":
		return "pkgs.stdenv.mkDerivation " + render_value(args["attrs"])
	if step.op == "package":
		return "pkgs." + ".".join(_attr_name(part) for part in step.name.split("."))
	if step.op == "get_lib":
		return f"pkgs.lib.getLib {render_value(args['drv'])}"
	raise ValueError(f"unknown step kind: {step.op}")


def render_plan(backend: RecordingBackend, root: Deferred) -> str:
	"""Render all recorded steps as `{ pkgs }: let ...; in <root>`."""
	lines = ["{ pkgs }:", "let"]
	for idx, step in enumerate(backend.steps):
		lines.append(f"  {_binding(idx)} = {render_step(step)};")
	lines.append("in")
	lines.append(_binding(root.index))
	return "\n".join(lines) + "\n"
