"""Entry point for running eget-wasm as a module.

This allows the package to be executed as:
    python -m eget_wasm

It delegates to the CLI main function.
"""

from eget_wasm.cli.main import main

if __name__ == "__main__":
    main()
