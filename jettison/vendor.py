# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Vendoring planner.

Turns the sources recorded in `Cargo.lock` into content-addressed fetches and
lays them out as a Cargo directory source, together with the
`.cargo/config.toml` that redirects crates.io (and every git source) to it.
"""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from jettison.backend import BuildBackend, Deferred
from jettison.cargo_lock import CargoLockParser, GitSource, RegistrySource, SourceId
from jettison.errors import VendoringError

logger = logging.getLogger(__name__)

VENDOR_DIR_NAME = "vendored-sources"

CRATES_IO_DOWNLOAD_URL = "https://static.crates.io/crates/{name}/{name}-{version}.crate"

_EXTRACT_AND_ADD_CHECKSUM = """\
{ src, checksum, name, runCommandLocal }:
runCommandLocal name {} ''
  mkdir -p $out
  tar -xzf ${src} --strip-components 1 -C $out
  echo '{"package":"${checksum}","files":{}}' > $out/.cargo-checksum.json
''
"""

# Git checkouts are read-only; Cargo wants to write into vendored sources.
_ADD_CHECKSUM = """\
{ src, name, runCommandLocal }:
runCommandLocal name {} ''
  cp -r ${src} $out
  chmod +w $out
  echo '{"package":null,"files":{}}' > $out/.cargo-checksum.json
''
"""


class WrapperKind(Enum):
	EXTRACT_AND_ADD_CHECKSUM = "extract-and-add-checksum"
	ADD_CHECKSUM = "add-checksum"


_WRAPPER_SCRIPTS = {
	WrapperKind.EXTRACT_AND_ADD_CHECKSUM: _EXTRACT_AND_ADD_CHECKSUM,
	WrapperKind.ADD_CHECKSUM: _ADD_CHECKSUM,
}


class WrapperCache:
	"""
	Evaluated wrapper scripts, at most one evaluation per `WrapperKind`.

	A cache belongs to one backend; pass the same cache to several
	`VendoredSources.new` calls to share evaluations between them.
	"""

	def __init__(self) -> None:
		self._wrappers: dict[WrapperKind, Deferred] = {}

	def get(self, kind: WrapperKind, backend: BuildBackend) -> Deferred:
		wrapper = self._wrappers.get(kind)
		if wrapper is None:
			wrapper = backend.evaluate_wrapper_script(kind.value, _WRAPPER_SCRIPTS[kind])
			self._wrappers[kind] = wrapper
		return wrapper

	def __len__(self) -> int:
		return len(self._wrappers)


@dataclass(frozen=True)
class VendoredSource:
	id: SourceId
	derivation: Deferred


def _config_header(replace_with: str) -> str:
	return (
		"[source.crates-io]\n"
		f'replace-with = "{replace_with}"\n'
		"\n"
		f"[source.{replace_with}]\n"
		'directory = "."\n'
	)


@dataclass
class VendoredSources:
	# Strictly increasing by `SourceId`.
	sources: list[VendoredSource] = field(default_factory=list)
	config_toml: str = ""

	@classmethod
	def new(
		cls,
		cargo_lock: str,
		backend: BuildBackend,
		*,
		wrappers: WrapperCache | None = None,
	) -> "VendoredSources":
		"""
		Plan the fetch of every non-path package in `cargo_lock`.

		Raises `LockfileParseError` for a malformed lockfile and
		`VendoringError` for sources that cannot be vendored.
		"""
		if wrappers is None:
			wrappers = WrapperCache()
		run_command_local = backend.package("runCommandLocal")
		config = _config_header(VENDOR_DIR_NAME)
		seen_git_sources: set[str] = set()
		collected: list[VendoredSource] = []

		for entry in CargoLockParser(cargo_lock):
			source = entry.source
			if source is None:
				continue
			if isinstance(source, RegistrySource):
				drv = _fetch_registry(entry.name, entry.version, source, backend, wrappers, run_command_local)
			else:
				# Several crates can live in one repository; Cargo rejects a
				# config with the same source table twice.
				url = source.source_url()
				if url not in seen_git_sources:
					seen_git_sources.add(url)
					config += source.to_cargo_config_entry(VENDOR_DIR_NAME)
				drv = _fetch_git(source, backend, wrappers, run_command_local)
			logger.debug("vendoring %s", entry.source_id)
			collected.append(VendoredSource(id=entry.source_id, derivation=drv))

		collected.sort(key=lambda s: s.id)
		for prev, cur in zip(collected, collected[1:]):
			if prev.id == cur.id:
				raise VendoringError(
					reason_code="DUPLICATE_SOURCE_ID",
					message=f"Cargo.lock lists {cur.id} more than once",
					package=cur.id.package_name,
					version=cur.id.version,
					source_id=str(cur.id),
				)
		logger.info("planned %d vendored source(s)", len(collected))
		return cls(sources=collected, config_toml=config)

	def get(self, source_id: SourceId) -> Deferred | None:
		idx = bisect.bisect_left(self.sources, source_id, key=lambda s: s.id)
		if idx < len(self.sources) and self.sources[idx].id == source_id:
			return self.sources[idx].derivation
		return None

	def __len__(self) -> int:
		return len(self.sources)

	def to_dir(self, backend: BuildBackend) -> Deferred:
		"""Lay out the vendored sources as a Cargo directory source."""
		config_drv = backend.write_text_file("config.toml", self.config_toml)
		entries = [(str(s.id), s.derivation) for s in self.sources]
		entries.append((".cargo/config.toml", config_drv))
		return backend.materialize_named_directory(VENDOR_DIR_NAME, entries)


def crates_io_download_url(name: str, version: str) -> str:
	return CRATES_IO_DOWNLOAD_URL.format(name=name, version=version)


def _fetch_registry(
	name: str,
	version: str,
	source: RegistrySource,
	backend: BuildBackend,
	wrappers: WrapperCache,
	run_command_local: Deferred,
) -> Deferred:
	if not source.is_crates_io:
		raise VendoringError(
			reason_code="UNSUPPORTED_REGISTRY",
			message=f"{name} {version} comes from a custom registry, only crates.io is supported",
			package=name,
			version=version,
		)
	archive = backend.fetch_by_checksum(
		crates_io_download_url(name, version),
		source.checksum,
		name=f"{name}-{version}.tar.gz",
	)
	wrap = wrappers.get(WrapperKind.EXTRACT_AND_ADD_CHECKSUM, backend)
	return backend.apply(
		wrap,
		{
			"src": archive,
			"checksum": source.checksum,
			"name": f"{name}-{version}",
			"runCommandLocal": run_command_local,
		},
	)


def _fetch_git(
	source: GitSource,
	backend: BuildBackend,
	wrappers: WrapperCache,
	run_command_local: Deferred,
) -> Deferred:
	checkout = backend.fetch_git(source.url, source.rev, ref=source.fetch_ref(), submodules=True)
	wrap = wrappers.get(WrapperKind.ADD_CHECKSUM, backend)
	return backend.apply(
		wrap,
		{
			"src": checkout,
			"name": f"git-{source.rev[:8]}",
			"runCommandLocal": run_command_local,
		},
	)


def read_cargo_lock(path: Path) -> str:
	try:
		return path.read_text(encoding="utf-8")
	except (OSError, UnicodeDecodeError) as err:
		raise VendoringError(
			reason_code="CARGO_LOCK_UNREADABLE",
			message=f"failed to read Cargo.lock: {err}",
			path=str(path),
		) from err
