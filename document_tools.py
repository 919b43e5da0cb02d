"""
document_tools.py - The three document operations offered to the model.

Each operation is a plain function over a DocumentStore plus a tool
descriptor (name, description, JSON schema) that is rendered for either
provider. execute_tool() is the single dispatch point used by the agent loop.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from document_store import DocumentStore


class ToolArgumentError(ValueError):
    """Raised when a tool call has the wrong shape or names an unknown tool."""

    def __init__(self, message: str, *, tool_name: Optional[str] = None) -> None:
        super().__init__(message)
        self.tool_name = tool_name


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

def get_document(store: DocumentStore, startIndex: Optional[int] = None,
                 endIndex: Optional[int] = None) -> str:
    # Defaults are read at call time so they always track the current length.
    start = store.clamp(0 if startIndex is None else startIndex)
    end = store.clamp(len(store) if endIndex is None else endIndex)
    return store.snapshot()[start:end]


def edit_document(store: DocumentStore, content: str, startIndex: Optional[int] = None,
                  endIndex: Optional[int] = None) -> str:
    start = 0 if startIndex is None else startIndex
    end = len(store) if endIndex is None else endIndex
    return store.replace(start, end, content)


def undo_edit_document(store: DocumentStore) -> str:
    return store.undo()


# ---------------------------------------------------------------------------
# Tool descriptors
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ToolSpec:
    """Provider-neutral description of one callable operation."""
    name: str
    description: str
    properties: dict
    required: tuple = ()

    @property
    def input_schema(self) -> dict:
        return {
            "type": "object",
            "properties": dict(self.properties),
            "required": list(self.required),
        }

    def to_anthropic(self) -> dict:
        return {"name": self.name, "description": self.description, "input_schema": self.input_schema}

    def to_openai(self) -> dict:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


GET_DOCUMENT = ToolSpec(
    name="getDocument",
    description="Get a slice of the document. If arguments are not provided, return the entire document.",
    properties={
        "startIndex": {"type": "integer", "description": "The start index of the slice. Defaults to 0."},
        "endIndex": {
            "type": "integer",
            "description": "The end index of the slice. Defaults to the length of the document.",
        },
    },
)

EDIT_DOCUMENT = ToolSpec(
    name="editDocument",
    description="Edit the document. If arguments are not provided, the entire document will be edited.",
    properties={
        "startIndex": {"type": "integer", "description": "The start index of the edit. Defaults to 0."},
        "endIndex": {
            "type": "integer",
            "description": "The end index of the edit. Defaults to the length of the document.",
        },
        "content": {"type": "string", "description": "The content to edit the document with."},
    },
    required=("content",),
)

UNDO_EDIT_DOCUMENT = ToolSpec(
    name="undoEditDocument",
    description="Undo the last edit to the document.",
    properties={},
)

TOOL_SPECS = (GET_DOCUMENT, EDIT_DOCUMENT, UNDO_EDIT_DOCUMENT)


def anthropic_tools() -> list:
    return [spec.to_anthropic() for spec in TOOL_SPECS]


def openai_tools() -> list:
    return [spec.to_openai() for spec in TOOL_SPECS]


class ToolKind(Enum):
    """Known operations and the progress label shown while each one runs."""
    GET_DOCUMENT = ("getDocument", "Getting document...")
    EDIT_DOCUMENT = ("editDocument", "Editing document...")
    UNDO_EDIT_DOCUMENT = ("undoEditDocument", "Undoing document edit...")
    UNKNOWN = ("", "Thinking...")

    def __init__(self, tool_name: str, label: str) -> None:
        self.tool_name = tool_name
        self.label = label

    @classmethod
    def from_name(cls, name: Optional[str]) -> "ToolKind":
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.tool_name == name:
                return kind
        return cls.UNKNOWN


# ---------------------------------------------------------------------------
# Dispatch
# ---------------------------------------------------------------------------

def _coerce_index(tool_name: str, key: str, value) -> Optional[int]:
    if value is None:
        return None
    # bool is an int subclass; a model sending true/false is a shape error.
    if isinstance(value, bool):
        raise ToolArgumentError(f"{key} must be an integer, got {value!r}", tool_name=tool_name)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    raise ToolArgumentError(f"{key} must be an integer, got {value!r}", tool_name=tool_name)


def _check_keys(spec: ToolSpec, arguments: dict) -> None:
    unexpected = sorted(set(arguments) - set(spec.properties))
    if unexpected:
        raise ToolArgumentError(
            f"Unexpected argument(s) for {spec.name}: {', '.join(unexpected)}", tool_name=spec.name
        )
    missing = [key for key in spec.required if arguments.get(key) is None]
    if missing:
        raise ToolArgumentError(
            f"Missing required argument(s) for {spec.name}: {', '.join(missing)}", tool_name=spec.name
        )


def execute_tool(store: DocumentStore, name: str, arguments: Optional[dict] = None) -> str:
    """
    Run the named operation against the store and return its text result.

    Raises ToolArgumentError for unknown names and malformed arguments.
    Out-of-range indices are clamped, never rejected.
    """
    if arguments is None:
        arguments = {}
    if not isinstance(arguments, dict):
        raise ToolArgumentError(f"Arguments for {name} must be an object", tool_name=name)

    kind = ToolKind.from_name(name)
    if kind is ToolKind.UNKNOWN:
        raise ToolArgumentError(f"Unknown tool: {name}", tool_name=name)

    if kind is ToolKind.GET_DOCUMENT:
        _check_keys(GET_DOCUMENT, arguments)
        return get_document(
            store,
            startIndex=_coerce_index(name, "startIndex", arguments.get("startIndex")),
            endIndex=_coerce_index(name, "endIndex", arguments.get("endIndex")),
        )

    if kind is ToolKind.EDIT_DOCUMENT:
        _check_keys(EDIT_DOCUMENT, arguments)
        content = arguments["content"]
        if not isinstance(content, str):
            raise ToolArgumentError(f"content must be a string, got {type(content).__name__}", tool_name=name)
        return edit_document(
            store,
            content,
            startIndex=_coerce_index(name, "startIndex", arguments.get("startIndex")),
            endIndex=_coerce_index(name, "endIndex", arguments.get("endIndex")),
        )

    _check_keys(UNDO_EDIT_DOCUMENT, arguments)
    return undo_edit_document(store)
