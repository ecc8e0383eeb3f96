"""Document model: the units a completion reads from and writes into."""

from nbchat.document.base import Diagnostic, Document, DocumentUnit, UnitKind, UnitOutput
from nbchat.document.notebook import Notebook

__all__ = [
    "Diagnostic",
    "Document",
    "DocumentUnit",
    "Notebook",
    "UnitKind",
    "UnitOutput",
]
