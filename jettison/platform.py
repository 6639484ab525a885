# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Platform descriptions.

A `Platform` carries what the generated build scripts need to know about a
machine: the rustc target triple and the `CARGO_CFG_TARGET_*` values build
scripts read. `BuildSettings` pairs the platform compiling the code with the
platform the code will run on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path

_ARCH_ALIASES = {
	"i386": "x86",
	"i586": "x86",
	"i686": "x86",
	"armv6": "arm",
	"armv7": "arm",
	"armv7a": "arm",
	"thumbv6m": "arm",
	"thumbv7em": "arm",
	"thumbv7m": "arm",
	"riscv32gc": "riscv32",
	"riscv32imac": "riscv32",
	"riscv64gc": "riscv64",
	"powerpc64le": "powerpc64",
	"mipsel": "mips",
	"mips64el": "mips64",
	"arm64": "aarch64",
}

_BIG_ENDIAN_ARCHES = {"powerpc", "powerpc64", "s390x", "mips", "mips64", "sparc64"}

_64_BIT_ARCHES = {
	"x86_64",
	"aarch64",
	"powerpc64",
	"riscv64",
	"s390x",
	"mips64",
	"sparc64",
	"loongarch64",
	"wasm64",
}

_OS_ALIASES = {"darwin": "macos"}

# OS components that rustc targets place directly after the arch, with no
# vendor in between (`aarch64-linux-android`, `wasm32-wasip1`).
_VENDORLESS_OSES = {"linux", "none", "wasi", "wasip1", "wasip2", "emscripten", "windows", "cuda"}

_ENV_PREFIXES = ("gnu", "musl", "uclibc", "msvc", "ohos")

# 32-bit arches whose rustc targets still set `target_has_atomic = "64"`.
_ATOMIC_64_ARCHES = {"x86", "wasm32"}


def _split_env(raw_env: str) -> str:
	# `gnueabihf` is env `gnu` with abi `eabihf`.
	for prefix in _ENV_PREFIXES:
		if raw_env.startswith(prefix):
			return prefix
	if raw_env in ("eabi", "eabihf", "elf"):
		return ""
	return raw_env


def _families(arch: str, os_name: str) -> tuple[str, ...]:
	if os_name == "windows":
		return ("windows",)
	if os_name == "emscripten":
		return ("unix", "wasm")
	if arch.startswith("wasm"):
		return ("wasm",)
	if os_name in ("none", "unknown", "cuda"):
		return ()
	return ("unix",)


def _has_atomic(raw_arch: str, arch: str, pointer_width: int) -> tuple[str, ...]:
	if raw_arch == "thumbv6m":
		return ()
	widths = ["8", "16", "32"]
	if pointer_width == 64 or arch in _ATOMIC_64_ARCHES or raw_arch.startswith("arm"):
		widths.append("64")
	widths.append("ptr")
	return tuple(widths)


@dataclass(frozen=True)
class Platform:
	# Nix-style configuration string, e.g. `x86_64-unknown-linux-gnu`.
	config: str
	# The `--target` value passed to rustc.
	rustc_target: str
	arch: str
	os: str
	vendor: str
	env: str
	families: tuple[str, ...]
	endian: str
	pointer_width: int
	has_atomic: tuple[str, ...] = ()
	panic: str = "unwind"

	@classmethod
	def from_triple(cls, triple: str) -> "Platform":
		"""
		Derive a platform from a target triple.

		Accepts `<arch>-<vendor>-<os>[-<env>]` and the vendorless forms rustc
		also uses (`<arch>-<os>[-<env>]`, e.g. `wasm32-wasip1` or
		`aarch64-linux-android`). Raises `ValueError` for anything shorter.
		"""
		parts = triple.split("-")
		if len(parts) < 2 or not all(parts):
			raise ValueError(f"target triple '{triple}' must look like <arch>-<vendor>-<os>[-<env>]")
		raw_arch = parts[0]
		if len(parts) == 2 or parts[1] in _VENDORLESS_OSES:
			vendor, raw_os, raw_env = "unknown", parts[1], "-".join(parts[2:])
		else:
			vendor, raw_os, raw_env = parts[1], parts[2], "-".join(parts[3:])
		arch = _ARCH_ALIASES.get(raw_arch, raw_arch)
		os_name = _OS_ALIASES.get(raw_os, raw_os)
		if raw_env.startswith("android"):
			os_name, raw_env = "android", ""
		env = _split_env(raw_env)
		pointer_width = 64 if arch in _64_BIT_ARCHES else 32
		if raw_env.endswith("x32") or raw_env.endswith("ilp32"):
			pointer_width = 32
		if (arch.startswith("wasm") and os_name != "emscripten") or os_name == "none":
			panic = "abort"
		else:
			panic = "unwind"
		return cls(
			config=triple,
			rustc_target=triple,
			arch=arch,
			os=os_name,
			vendor=vendor,
			env=env,
			families=_families(arch, os_name),
			endian="big" if arch in _BIG_ENDIAN_ARCHES else "little",
			pointer_width=pointer_width,
			has_atomic=_has_atomic(raw_arch, arch, pointer_width),
			panic=panic,
		)

	@property
	def dll_extension(self) -> str:
		if self.os in ("macos", "ios"):
			return "dylib"
		if self.os == "windows":
			return "dll"
		return "so"

	def to_dict(self) -> dict[str, object]:
		return {
			"config": self.config,
			"rustc_target": self.rustc_target,
			"arch": self.arch,
			"os": self.os,
			"vendor": self.vendor,
			"env": self.env,
			"families": list(self.families),
			"endian": self.endian,
			"pointer_width": self.pointer_width,
			"has_atomic": list(self.has_atomic),
			"panic": self.panic,
		}


def load_platform(path: Path) -> Platform:
	"""
	Load a platform description from a JSON file.

	Only `config` is required; the other fields default to what
	`Platform.from_triple(config)` derives and may be overridden one by one.
	"""
	raw = json.loads(path.read_text(encoding="utf-8"))
	if not isinstance(raw, dict) or not isinstance(raw.get("config"), str):
		raise ValueError(f"{path}: platform description must be an object with a string 'config'")
	base = Platform.from_triple(raw.get("rustc_target", raw["config"])).to_dict()
	base["config"] = raw["config"]
	unknown = set(raw) - set(base)
	if unknown:
		raise ValueError(f"{path}: unknown platform fields: {', '.join(sorted(unknown))}")
	base.update(raw)
	for key in ("families", "has_atomic"):
		if not isinstance(base[key], list):
			raise ValueError(f"{path}: '{key}' must be a list of strings")
		base[key] = tuple(base[key])
	return Platform(**base)


@dataclass(frozen=True)
class BuildSettings:
	"""
	Global settings shared by every derivation of a request.

	`build_platform` compiles the code (build scripts and proc-macros run
	there); `target_platform` runs the produced binaries and libraries.
	"""

	build_platform: Platform
	target_platform: Platform
	release: bool = True

	@classmethod
	def native(cls, triple: str, *, release: bool = True) -> "BuildSettings":
		platform = Platform.from_triple(triple)
		return cls(build_platform=platform, target_platform=platform, release=release)

	@property
	def compile_target(self) -> str | None:
		"""The `--target` for rustc, only set when cross-compiling."""
		if self.target_platform.config == self.build_platform.config:
			return None
		return self.target_platform.rustc_target
