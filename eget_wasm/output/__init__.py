"""Output module for placing sandbox results."""

from eget_wasm.output.materializer import OutputMaterializer
from eget_wasm.output.permissions import repair_permissions

__all__ = ["OutputMaterializer", "repair_permissions"]
