"""Command-line interface for eget-wasm."""
