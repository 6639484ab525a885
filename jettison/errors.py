# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class JettisonError(Exception):
	"""
	A structured, serializable error raised while planning a build.

	Every failure aborts the whole request: there is no partial plan. The
	`reason_code` is stable and meant for tooling; `message` is for humans.
	"""

	reason_code: str
	message: str
	package: str | None = None
	version: str | None = None
	field: str | None = None
	after: str | None = None
	path: str | None = None
	source_id: str | None = None

	def __str__(self) -> str:
		return self.format_human()

	def to_dict(self) -> dict[str, Any]:
		return {
			"kind": type(self).__name__,
			"reason_code": self.reason_code,
			"message": self.message,
			"package": self.package,
			"version": self.version,
			"field": self.field,
			"after": self.after,
			"path": self.path,
			"source_id": self.source_id,
		}

	def format_human(self) -> str:
		parts: list[str] = [f"[{self.reason_code}] {self.message}"]
		if self.package:
			parts.append(f"package=({self.package}, {self.version})")
		if self.field:
			parts.append(f"field={self.field}")
		if self.after:
			parts.append(f"after={self.after}")
		if self.source_id:
			parts.append(f"source_id={self.source_id}")
		if self.path:
			parts.append(f"path={self.path}")
		return " ".join(parts)


@dataclass(frozen=True)
class LockfileParseError(JettisonError):
	"""A `Cargo.lock` record did not have the expected literal structure."""


@dataclass(frozen=True)
class VendoringError(JettisonError):
	"""The lockfile could not be read or one of its sources cannot be vendored."""


@dataclass(frozen=True)
class GraphResolutionError(JettisonError):
	"""The workspace graph handed over by the resolver cannot be planned."""
