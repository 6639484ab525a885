# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""
Evaluation of platform-specific dependency conditions.

Cargo writes the condition of a `[target.<spec>.dependencies]` table verbatim
into `cargo metadata`: either a `cfg(...)` predicate or a plain target triple.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Union

from lark import Lark, Token, Tree

from jettison.platform import Platform

_GRAMMAR_PATH = Path(__file__).with_name("cfg.lark")
_GRAMMAR_SRC = _GRAMMAR_PATH.read_text()

_PARSER = Lark(
	_GRAMMAR_SRC,
	parser="lalr",
	lexer="basic",
	start="start",
	propagate_positions=True,
	maybe_placeholders=False,
)


@dataclass(frozen=True)
class CfgAll:
	preds: tuple["CfgPred", ...]


@dataclass(frozen=True)
class CfgAny:
	preds: tuple["CfgPred", ...]


@dataclass(frozen=True)
class CfgNot:
	pred: "CfgPred"


@dataclass(frozen=True)
class CfgKeyValue:
	key: str
	value: str


@dataclass(frozen=True)
class CfgFlag:
	name: str


CfgPred = Union[CfgAll, CfgAny, CfgNot, CfgKeyValue, CfgFlag]


@dataclass(frozen=True)
class TargetTriple:
	triple: str


def parse_cfg(text: str) -> CfgPred:
	"""Parse a `cfg(...)` expression; lark's `UnexpectedInput` signals malformed text."""
	tree = _PARSER.parse(text)
	return _build_pred(tree.children[0])


def parse_platform_spec(text: str) -> CfgPred | TargetTriple:
	spec = text.strip()
	if spec.startswith("cfg("):
		return parse_cfg(spec)
	return TargetTriple(triple=spec)


def _build_pred(node: Tree | Token) -> CfgPred:
	if isinstance(node, Token):
		raise TypeError(f"unexpected token {node.type} in cfg expression")
	if node.data == "cfg_all":
		return CfgAll(preds=tuple(_build_pred(c) for c in node.children))
	if node.data == "cfg_any":
		return CfgAny(preds=tuple(_build_pred(c) for c in node.children))
	if node.data == "cfg_not":
		return CfgNot(pred=_build_pred(node.children[0]))
	if node.data == "key_value":
		key, value = node.children
		return CfgKeyValue(key=str(key), value=_unquote(str(value)))
	if node.data == "flag":
		return CfgFlag(name=str(node.children[0]))
	raise TypeError(f"unexpected cfg node {node.data}")


def _unquote(raw: str) -> str:
	body = raw[1:-1]
	return body.replace('\\"', '"').replace("\\\\", "\\")


def _platform_values(platform: Platform, key: str) -> set[str]:
	if key == "target_arch":
		return {platform.arch}
	if key == "target_os":
		return {platform.os}
	if key == "target_vendor":
		return {platform.vendor}
	if key == "target_env":
		return {platform.env}
	if key == "target_family":
		return set(platform.families)
	if key == "target_endian":
		return {platform.endian}
	if key == "target_pointer_width":
		return {str(platform.pointer_width)}
	if key == "target_has_atomic":
		return set(platform.has_atomic)
	if key == "panic":
		return {platform.panic}
	return set()


def eval_cfg(pred: CfgPred, platform: Platform) -> bool:
	if isinstance(pred, CfgAll):
		return all(eval_cfg(p, platform) for p in pred.preds)
	if isinstance(pred, CfgAny):
		return any(eval_cfg(p, platform) for p in pred.preds)
	if isinstance(pred, CfgNot):
		return not eval_cfg(pred.pred, platform)
	if isinstance(pred, CfgKeyValue):
		return pred.value in _platform_values(platform, pred.key)
	# Only the family flags are set; `test`, `debug_assertions` and friends
	# never hold while resolving dependencies.
	if pred.name in ("unix", "windows"):
		return pred.name in platform.families
	return False


def platform_matches(spec: str | None, platform: Platform) -> bool:
	"""Whether a dependency declared under `spec` (or unconditionally, for `None`) applies to `platform`."""
	if spec is None:
		return True
	parsed = parse_platform_spec(spec)
	if isinstance(parsed, TargetTriple):
		return parsed.triple == platform.rustc_target
	return eval_cfg(parsed, platform)
