"""
document_store.py - The single text buffer the agent edits, plus its undo history.

Usage:
    from document_store import DocumentStore

    store = DocumentStore()
    store.replace(0, 0, "Hello")
    store.undo()
"""

from dataclasses import dataclass, field


@dataclass
class DocumentStore:
    """Current document text and a stack of prior snapshots.

    Every replace() pushes the text it is about to overwrite, so the top of
    `history` is always the document as it was before the latest edit.
    """

    document: str = ""
    history: list = field(default_factory=list)

    def snapshot(self) -> str:
        return self.document

    def clamp(self, index: int) -> int:
        """Bound an index to [0, len(document)]. Negative means 0, not from-the-end."""
        return max(0, min(int(index), len(self.document)))

    def replace(self, start: int, end: int, content: str) -> str:
        start = self.clamp(start)
        end = max(self.clamp(end), start)

        self.history.append(self.document)
        self.document = self.document[:start] + content + self.document[end:]
        return self.document

    def undo(self) -> str:
        # An empty history resets to an empty document rather than raising.
        self.document = self.history.pop() if self.history else ""
        return self.document

    @property
    def can_undo(self) -> bool:
        return bool(self.history)

    @property
    def depth(self) -> int:
        return len(self.history)

    def __len__(self) -> int:
        return len(self.document)
