"""Runtime module providing the Eget entry point."""

from eget_wasm.runtime.client import Eget, detect_system, eget

__all__ = ["Eget", "detect_system", "eget"]
