"""Parsing module for the sandboxed module's diagnostics."""

from eget_wasm.parsing.diagnostic import parse_diagnostic

__all__ = ["parse_diagnostic"]
