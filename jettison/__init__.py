# vim: set noexpandtab: -*- indent-tabs-mode: t -*-
"""Build planning for Rust workspaces: one Nix derivation per crate."""
