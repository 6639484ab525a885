# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Build backend interface.

Planning never fetches, copies or compiles anything itself. Every side effect
goes through a `BuildBackend`, which hands back `Deferred` handles to outputs
that only exist once the executor realizes the plan. Handles can be passed to
other backend calls, and `out_path` embeds one in script text.

`RecordingBackend` is the backend used by the CLI and the tests: it records
every call as a step, in call order, so that a step only ever refers to
earlier steps. `jettison.nix_expr` renders the recorded steps as a Nix
expression.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping, Protocol, Sequence

_PLACEHOLDER_RE = re.compile(r"@@jettison:(\d+)@@")


@dataclass(frozen=True)
class Deferred:
	"""Handle to the output of a backend step."""

	index: int
	op: str
	name: str

	def __str__(self) -> str:
		return f"<{self.op} #{self.index} {self.name}>"


class BuildBackend(Protocol):
	def fetch_by_checksum(self, url: str, checksum: str, *, name: str) -> Deferred:
		"""Download `url`, verified against the sha256 `checksum`."""
		...

	def fetch_git(self, url: str, rev: str, *, ref: str | None = None, submodules: bool = True) -> Deferred:
		"""Check out `rev`, searching only `ref` when given and all refs otherwise."""
		...

	def materialize_named_directory(self, name: str, entries: Sequence[tuple[str, Deferred]]) -> Deferred:
		...

	def write_text_file(self, name: str, text: str) -> Deferred:
		...

	def evaluate_wrapper_script(self, name: str, script: str) -> Deferred:
		"""Evaluate `script` (a function of one attribute set) once; use `apply` to call it."""
		...

	def apply(self, fn: Deferred, args: Mapping[str, Any]) -> Deferred:
		...

	def local_path(self, path: Path, *, name: str) -> Deferred:
		"""Import a local directory into the store."""
		...

	def make_derivation(self, attrs: Mapping[str, Any]) -> Deferred:
		...

	def package(self, attr: str) -> Deferred:
		"""Look up a package provided by the environment (e.g. `rustc`)."""
		...

	def get_lib(self, drv: Any) -> Deferred:
		"""The output of `drv` holding its libraries."""
		...

	def out_path(self, handle: Deferred) -> str:
		"""Text standing for the output path of `handle` inside script text."""
		...


@dataclass(frozen=True)
class Step:
	op: str
	name: str
	args: dict[str, Any] = field(default_factory=dict)


def placeholder(index: int) -> str:
	return f"@@jettison:{index}@@"


def split_placeholders(text: str) -> list[str | int]:
	"""
	Split text containing output-path placeholders into literal pieces and
	step indices, in order.
	"""
	out: list[str | int] = []
	pos = 0
	for m in _PLACEHOLDER_RE.finditer(text):
		if m.start() > pos:
			out.append(text[pos : m.start()])
		out.append(int(m.group(1)))
		pos = m.end()
	if pos < len(text):
		out.append(text[pos:])
	return out


class RecordingBackend:
	"""A `BuildBackend` that records every call instead of performing it."""

	def __init__(self) -> None:
		self.steps: list[Step] = []

	def _record(self, op: str, name: str, **args: Any) -> Deferred:
		self.steps.append(Step(op=op, name=name, args=args))
		return Deferred(index=len(self.steps) - 1, op=op, name=name)

	def step(self, handle: Deferred) -> Step:
		return self.steps[handle.index]

	def fetch_by_checksum(self, url: str, checksum: str, *, name: str) -> Deferred:
		return self._record("fetch_by_checksum", name, url=url, sha256=checksum)

	def fetch_git(self, url: str, rev: str, *, ref: str | None = None, submodules: bool = True) -> Deferred:
		args: dict[str, Any] = {"url": url, "rev": rev, "submodules": submodules}
		if ref is None:
			args["allRefs"] = True
		else:
			args["ref"] = ref
		return self._record("fetch_git", f"git-{rev[:8]}", **args)

	def materialize_named_directory(self, name: str, entries: Sequence[tuple[str, Deferred]]) -> Deferred:
		return self._record("materialize_named_directory", name, entries=list(entries))

	def write_text_file(self, name: str, text: str) -> Deferred:
		return self._record("write_text_file", name, text=text)

	def evaluate_wrapper_script(self, name: str, script: str) -> Deferred:
		return self._record("evaluate_wrapper_script", name, script=script)

	def apply(self, fn: Deferred, args: Mapping[str, Any]) -> Deferred:
		name = args.get("name")
		return self._record("apply", name if isinstance(name, str) else fn.name, fn=fn, args=dict(args))

	def local_path(self, path: Path, *, name: str) -> Deferred:
		return self._record("local_path", name, path=str(path))

	def make_derivation(self, attrs: Mapping[str, Any]) -> Deferred:
		name = attrs.get("name")
		return self._record("make_derivation", name if isinstance(name, str) else "derivation", attrs=dict(attrs))

	def package(self, attr: str) -> Deferred:
		return self._record("package", attr)

	def get_lib(self, drv: Any) -> Deferred:
		name = drv.name if isinstance(drv, Deferred) else "lib"
		return self._record("get_lib", name, drv=drv)

	def out_path(self, handle: Deferred) -> str:
		return placeholder(handle.index)
