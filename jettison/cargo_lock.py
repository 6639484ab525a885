# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
`Cargo.lock` reader.

This is a cursor over the lockfile text, not a TOML parser: it understands
exactly the `[[package]]` record layout Cargo writes (lockfile versions 3 and
4) and nothing else. Anything that deviates from that literal structure is a
hard error, because a lockfile we misread would silently produce a different
build.

Each record looks like:

	[[package]]
	name = "serde"
	version = "1.0.0"
	source = "registry+https://github.com/rust-lang/crates.io-index"
	checksum = "..."
	dependencies = [
	 "serde_derive",
	]

`source` is absent for workspace path packages and `checksum` is only written
for registry packages. The `dependencies` array is skipped: resolution is not
our job, we only need to know what to fetch.

Records carrying `replace = "..."` are the originals of `[replace]` overrides.
Only the replacement (a separate record) is ever compiled, so they are
skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterator, Union

from jettison.errors import LockfileParseError

logger = logging.getLogger(__name__)

CRATES_IO_GIT_INDEX = "https://github.com/rust-lang/crates.io-index"
CRATES_IO_SPARSE_INDEX = "https://index.crates.io/"

_ENTRY_HEADER = "[[package]]\n"
_NAME_PREFIX = _ENTRY_HEADER + 'name = "'
_VERSION_PREFIX = '\nversion = "'
_SOURCE_PREFIX = '\nsource = "'
_CHECKSUM_PREFIX = '\nchecksum = "'
_REPLACE_PREFIX = "\nreplace = "


class RegistryProtocol(Enum):
	# Git-based index.
	REGISTRY = "registry"
	# HTTP-based sparse index.
	SPARSE = "sparse"


@dataclass(frozen=True)
class CratesIo:
	"""
	Marker for the default registry.

	crates.io archives are always downloaded from a fixed URL template, so
	neither the index protocol nor its URL is kept.
	"""


CRATES_IO = CratesIo()


@dataclass(frozen=True)
class OtherRegistry:
	"""A custom registry; the download template lives in the index's `config.json`."""

	protocol: RegistryProtocol
	url: str


RegistryKind = Union[CratesIo, OtherRegistry]


@dataclass(frozen=True)
class RegistrySource:
	checksum: str
	kind: RegistryKind

	@property
	def is_crates_io(self) -> bool:
		return isinstance(self.kind, CratesIo)


class GitRefKind(Enum):
	BRANCH = "branch"
	TAG = "tag"
	REV = "rev"


@dataclass(frozen=True)
class GitRef:
	kind: GitRefKind
	value: str


@dataclass(frozen=True)
class GitSource:
	url: str
	rev: str
	ref: GitRef | None = None

	def source_url(self) -> str:
		"""The source URL Cargo uses to identify this source (without the revision)."""
		if self.ref is None:
			return f"git+{self.url}"
		return f"git+{self.url}?{self.ref.kind.value}={self.ref.value}"

	def fetch_ref(self) -> str | None:
		"""
		Return the git ref to fetch the revision from.

		`None` means the revision may live on any ref and must be searched for.
		"""
		if self.ref is None:
			return None
		if self.ref.kind is GitRefKind.BRANCH:
			return f"refs/heads/{self.ref.value}"
		if self.ref.kind is GitRefKind.TAG:
			return f"refs/tags/{self.ref.value}"
		return None

	def to_cargo_config_entry(self, replace_with: str) -> str:
		"""
		Render the `.cargo/config.toml` block redirecting this git source to the
		vendored directory source named `replace_with`.
		"""
		lines = [
			"",
			f'[source."{self.source_url()}"]',
			f'git = "{self.url}"',
		]
		if self.ref is not None:
			lines.append(f'{self.ref.kind.value} = "{self.ref.value}"')
		lines.append(f'replace-with = "{replace_with}"')
		return "\n".join(lines) + "\n"


PackageSource = Union[RegistrySource, GitSource]


@dataclass(frozen=True, order=True)
class SourceId:
	"""
	Identity of a package across the lockfile, the vendor directory and the
	build graph. Ordered by name, then by version string.
	"""

	package_name: str
	version: str

	def __str__(self) -> str:
		return f"{self.package_name}-{self.version}"


@dataclass(frozen=True)
class PackageEntry:
	name: str
	version: str
	source: PackageSource | None = None

	@property
	def source_id(self) -> SourceId:
		return SourceId(package_name=self.name, version=self.version)


class _State(Enum):
	START_OF_ENTRY = "start of entry"
	END_OF_NAME = "name"
	END_OF_VERSION = "version"
	END_OF_SOURCE = "source"
	END_OF_CHECKSUM = "checksum"
	END_OF_FILE = "end of file"


def parse_source(raw: str) -> RegistryKind | GitSource:
	"""
	Parse the value of a `source = "..."` field.

	Registry sources return their `RegistryKind`; the checksum is a separate
	field, so the caller pairs them up.
	"""
	protocol, sep, url = raw.partition("+")
	if not sep:
		raise LockfileParseError(
			reason_code="MISSING_SOURCE_PROTOCOL",
			message=f"source '{raw}' has no '<protocol>+' prefix",
			field="source",
		)
	if protocol == "git":
		return _parse_git_source(url)
	if protocol == RegistryProtocol.REGISTRY.value:
		if url == CRATES_IO_GIT_INDEX:
			return CRATES_IO
		return OtherRegistry(protocol=RegistryProtocol.REGISTRY, url=url)
	if protocol == RegistryProtocol.SPARSE.value:
		if url == CRATES_IO_SPARSE_INDEX:
			return CRATES_IO
		return OtherRegistry(protocol=RegistryProtocol.SPARSE, url=url)
	raise LockfileParseError(
		reason_code="INVALID_SOURCE_PROTOCOL",
		message=f"unknown source protocol '{protocol}' (expected registry, sparse or git)",
		field="source",
	)


def _parse_git_source(url: str) -> GitSource:
	# <repo-url>[?<key>=<value>]#<revision>
	base, sep, rev = url.partition("#")
	if not sep or not rev:
		raise LockfileParseError(
			reason_code="MISSING_GIT_REVISION",
			message=f"git source '{url}' is missing its '#<revision>' suffix",
			field="source",
		)
	repo, qmark, query = base.partition("?")
	if not qmark:
		return GitSource(url=repo, rev=rev)
	key, eq, value = query.partition("=")
	kinds = {k.value: k for k in GitRefKind}
	# Cargo percent-encodes `&` inside values, so a raw one means several keys.
	if not eq or key not in kinds or not value or "&" in value:
		raise LockfileParseError(
			reason_code="INVALID_GIT_REF_KEY",
			message=f"git source query '{query}' must be exactly one non-empty branch=, tag= or rev=",
			field="source",
		)
	return GitSource(url=repo, rev=rev, ref=GitRef(kind=kinds[key], value=value))


class CargoLockParser:
	"""
	Single-pass iterator over the `[[package]]` records of a `Cargo.lock`.

	The iterator cannot be restarted. The first error ends it: the error is
	raised from `__next__` and any later call raises `StopIteration`.
	"""

	def __init__(self, src: str) -> None:
		self._src = src
		self._state = _State.START_OF_ENTRY
		if src.startswith(_ENTRY_HEADER):
			self._cursor = 0
		else:
			idx = src.find("\n" + _ENTRY_HEADER)
			if idx == -1:
				self._cursor = len(src)
				self._state = _State.END_OF_FILE
			else:
				self._cursor = idx + 1

	def __iter__(self) -> Iterator[PackageEntry]:
		return self

	def __next__(self) -> PackageEntry:
		while self._state is not _State.END_OF_FILE:
			try:
				entry = self._parse_entry()
			except LockfileParseError:
				self._state = _State.END_OF_FILE
				raise
			if entry is not None:
				return entry
		raise StopIteration

	def _parse_entry(self) -> PackageEntry | None:
		"""Parse one record; `None` means it was a replaced entry and is skipped."""
		self._expect(_NAME_PREFIX, field="name", after="[[package]]")
		name = self._read_quoted("name")
		self._state = _State.END_OF_NAME

		self._expect(_VERSION_PREFIX, field="version", after="name")
		version = self._read_quoted("version")
		self._state = _State.END_OF_VERSION

		location: RegistryKind | GitSource | None = None
		if self._src.startswith(_SOURCE_PREFIX, self._cursor):
			self._cursor += len(_SOURCE_PREFIX)
			location = parse_source(self._read_quoted("source"))
		self._state = _State.END_OF_SOURCE

		source: PackageSource | None = None
		replaced = self._src.startswith(_REPLACE_PREFIX, self._cursor)
		if isinstance(location, GitSource):
			source = location
		elif location is not None and not replaced:
			self._expect(_CHECKSUM_PREFIX, field="checksum", after="source")
			source = RegistrySource(checksum=self._read_quoted("checksum"), kind=location)
			self._state = _State.END_OF_CHECKSUM
			replaced = self._src.startswith(_REPLACE_PREFIX, self._cursor)

		self._advance_to_next_entry()

		if replaced:
			logger.debug("skipping replaced lockfile entry %s %s", name, version)
			return None
		return PackageEntry(name=name, version=version, source=source)

	def _expect(self, prefix: str, *, field: str, after: str) -> None:
		if not self._src.startswith(prefix, self._cursor):
			raise LockfileParseError(
				reason_code="MISSING_FIELD",
				message=f"expected '{field}' field after '{after}' at offset {self._cursor}",
				field=field,
				after=after,
			)
		self._cursor += len(prefix)

	def _read_quoted(self, field: str) -> str:
		# The opening quote is part of the prefix; values never span lines.
		end = self._src.find('"', self._cursor)
		newline = self._src.find("\n", self._cursor)
		if end == -1 or (newline != -1 and newline < end):
			raise LockfileParseError(
				reason_code="MISSING_CLOSING_QUOTE",
				message=f"value of '{field}' at offset {self._cursor} has no closing quote",
				field=field,
			)
		value = self._src[self._cursor : end]
		self._cursor = end + 1
		return value

	def _advance_to_next_entry(self) -> None:
		# Records are separated by a single blank line; whatever follows the last
		# record (`[metadata]`, `[[patch.unused]]`) is not ours to read.
		blank = self._src.find("\n\n", self._cursor)
		if blank == -1:
			self._cursor = len(self._src)
			self._state = _State.END_OF_FILE
			return
		nxt = blank + 2
		if self._src.startswith(_ENTRY_HEADER, nxt):
			self._cursor = nxt
			self._state = _State.START_OF_ENTRY
		else:
			self._cursor = len(self._src)
			self._state = _State.END_OF_FILE


def parse_cargo_lock(src: str) -> list[PackageEntry]:
	"""Parse all records eagerly."""
	return list(CargoLockParser(src))
