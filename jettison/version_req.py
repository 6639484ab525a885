# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Cargo flavoured semantic versions and version requirements.

Only matching is implemented: picking versions is the resolver's job. This is
used to tell apart several resolved versions of the same dependency when a
manifest renames some of them (`foo1 = { package = "foo", version = "1" }`).
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from functools import total_ordering
from pathlib import Path

from lark import Lark, Token, Tree

_GRAMMAR_PATH = Path(__file__).with_name("version_req.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start=["req", "version"],
	propagate_positions=True,
	maybe_placeholders=False,
)

_WILDCARDS = {"*", "x", "X"}


def _pre_key(pre: tuple[str, ...]) -> tuple:
	# A release sorts above all of its pre-releases; numeric identifiers sort
	# below alphanumeric ones.
	if not pre:
		return (1,)
	return (0, tuple((0, int(p), "") if p.isdigit() else (1, 0, p) for p in pre))


@total_ordering
@dataclass(frozen=True)
class Version:
	major: int
	minor: int
	patch: int
	pre: tuple[str, ...] = ()
	build: tuple[str, ...] = ()

	@classmethod
	def parse(cls, text: str) -> "Version":
		tree = _PARSER.parse(text.strip(), start="version")
		raw = _partial_token(tree)
		major, minor, patch, pre, build = _split_partial(raw)
		if major is None or minor is None or patch is None:
			raise ValueError(f"version '{text}' must have major, minor and patch components")
		return cls(major=major, minor=minor, patch=patch, pre=pre, build=build)

	@property
	def is_prerelease(self) -> bool:
		return bool(self.pre)

	def _key(self) -> tuple:
		return (self.major, self.minor, self.patch, _pre_key(self.pre), self.build)

	def __lt__(self, other: object) -> bool:
		if not isinstance(other, Version):
			return NotImplemented
		return self._key() < other._key()

	def __str__(self) -> str:
		out = f"{self.major}.{self.minor}.{self.patch}"
		if self.pre:
			out += "-" + ".".join(self.pre)
		if self.build:
			out += "+" + ".".join(self.build)
		return out


class Op(Enum):
	EXACT = "="
	GREATER = ">"
	GREATER_EQ = ">="
	LESS = "<"
	LESS_EQ = "<="
	TILDE = "~"
	CARET = "^"
	WILDCARD = "*"


@dataclass(frozen=True)
class Comparator:
	op: Op
	major: int
	minor: int | None = None
	patch: int | None = None
	pre: tuple[str, ...] = ()

	def matches(self, ver: Version) -> bool:
		if self.op in (Op.EXACT, Op.WILDCARD):
			return self._matches_exact(ver)
		if self.op is Op.GREATER:
			return self._matches_greater(ver)
		if self.op is Op.GREATER_EQ:
			return self._matches_exact(ver) or self._matches_greater(ver)
		if self.op is Op.LESS:
			return self._matches_less(ver)
		if self.op is Op.LESS_EQ:
			return self._matches_exact(ver) or self._matches_less(ver)
		if self.op is Op.TILDE:
			return self._matches_tilde(ver)
		return self._matches_caret(ver)

	def allows_prerelease_of(self, ver: Version) -> bool:
		"""A pre-release only matches if a comparator names the same release with a pre-release tag."""
		return (
			bool(self.pre)
			and self.major == ver.major
			and self.minor == ver.minor
			and self.patch == ver.patch
		)

	def _pre_ge(self, ver: Version) -> bool:
		return _pre_key(ver.pre) >= _pre_key(self.pre)

	def _matches_exact(self, ver: Version) -> bool:
		if ver.major != self.major:
			return False
		if self.minor is not None and ver.minor != self.minor:
			return False
		if self.patch is not None and ver.patch != self.patch:
			return False
		return ver.pre == self.pre

	def _matches_greater(self, ver: Version) -> bool:
		if ver.major != self.major:
			return ver.major > self.major
		if self.minor is None:
			return False
		if ver.minor != self.minor:
			return ver.minor > self.minor
		if self.patch is None:
			return False
		if ver.patch != self.patch:
			return ver.patch > self.patch
		return _pre_key(ver.pre) > _pre_key(self.pre)

	def _matches_less(self, ver: Version) -> bool:
		if ver.major != self.major:
			return ver.major < self.major
		if self.minor is None:
			return False
		if ver.minor != self.minor:
			return ver.minor < self.minor
		if self.patch is None:
			return False
		if ver.patch != self.patch:
			return ver.patch < self.patch
		return _pre_key(ver.pre) < _pre_key(self.pre)

	def _matches_tilde(self, ver: Version) -> bool:
		if ver.major != self.major:
			return False
		if self.minor is not None and ver.minor != self.minor:
			return False
		if self.patch is not None and ver.patch != self.patch:
			return ver.patch > self.patch
		return self._pre_ge(ver)

	def _matches_caret(self, ver: Version) -> bool:
		if ver.major != self.major:
			return False
		if self.minor is None:
			return True
		if self.patch is None:
			if self.major > 0:
				return ver.minor >= self.minor
			return ver.minor == self.minor
		if self.major > 0:
			if ver.minor != self.minor:
				return ver.minor > self.minor
			if ver.patch != self.patch:
				return ver.patch > self.patch
		elif self.minor > 0:
			if ver.minor != self.minor:
				return False
			if ver.patch != self.patch:
				return ver.patch > self.patch
		elif ver.minor != self.minor or ver.patch != self.patch:
			return False
		return self._pre_ge(ver)


@dataclass(frozen=True)
class VersionReq:
	"""A comma separated conjunction of comparators; no comparators matches any release."""

	comparators: tuple[Comparator, ...] = ()

	@classmethod
	def parse(cls, text: str) -> "VersionReq":
		tree = _PARSER.parse(text.strip(), start="req")
		comparators: list[Comparator] = []
		for node in tree.children:
			cmp = _build_comparator(node)
			if cmp is not None:
				comparators.append(cmp)
		return cls(comparators=tuple(comparators))

	def matches(self, ver: Version) -> bool:
		if not all(cmp.matches(ver) for cmp in self.comparators):
			return False
		if not ver.pre:
			return True
		return any(cmp.allows_prerelease_of(ver) for cmp in self.comparators)


def matches(req: str, version: str) -> bool:
	"""Convenience wrapper over `VersionReq.parse(req).matches(Version.parse(version))`."""
	return VersionReq.parse(req).matches(Version.parse(version))


def _partial_token(tree: Tree) -> str:
	tok = next(c for c in tree.children if isinstance(c, Token) and c.type == "PARTIAL")
	return str(tok)


def _split_partial(
	raw: str,
) -> tuple[int | None, int | None, int | None, tuple[str, ...], tuple[str, ...]]:
	"""
	Split `1.2.3-pre.1+build` into its components.

	Wildcard components come back as `None`, like omitted ones; a number after
	a wildcard is rejected.
	"""
	core, _, build = raw.partition("+")
	core, _, pre = core.partition("-")
	parts: list[int | None] = []
	seen_wildcard = False
	for part in core.split("."):
		if part in _WILDCARDS:
			seen_wildcard = True
			parts.append(None)
			continue
		if seen_wildcard:
			raise ValueError(f"unexpected version component after wildcard in '{raw}'")
		parts.append(int(part))
	while len(parts) < 3:
		parts.append(None)
	pre_parts = tuple(pre.split(".")) if pre else ()
	build_parts = tuple(build.split(".")) if build else ()
	if pre_parts and parts[2] is None:
		raise ValueError(f"pre-release '{pre}' requires a full major.minor.patch version in '{raw}'")
	return parts[0], parts[1], parts[2], pre_parts, build_parts


def _build_comparator(node: Tree) -> Comparator | None:
	op_tok = next((c for c in node.children if isinstance(c, Token) and c.type == "OP"), None)
	raw = _partial_token(node)
	major, minor, patch, pre, _build = _split_partial(raw)
	core = raw.partition("+")[0].partition("-")[0]
	wildcard = any(p in _WILDCARDS for p in core.split("."))
	if major is None:
		# `*` alone places no constraint on releases.
		if op_tok is not None:
			raise ValueError(f"wildcard requirement '{raw}' cannot take an operator")
		return None
	if op_tok is None:
		op = Op.WILDCARD if wildcard else Op.CARET
	else:
		op = Op(str(op_tok))
	return Comparator(op=op, major=major, minor=minor, patch=patch, pre=pre)
