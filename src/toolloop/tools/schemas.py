"""Strict argument models for the built-in tools.

A parsed model instance is the only form in which tool arguments travel past
the dispatch boundary; the model class doubles as the variant tag.
"""

from __future__ import annotations

from typing import Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

SEARCH_NOTES = "search_notes"
FETCH_URL = "fetch_url"
SAVE_NOTE = "save_note"

_STRICT = ConfigDict(extra="forbid", strict=True, frozen=True)


class SearchNotesArgs(BaseModel):
    model_config = _STRICT

    query: str = Field(min_length=1)
    limit: int = Field(ge=1, le=255)

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be blank")
        return value


class FetchUrlArgs(BaseModel):
    model_config = _STRICT

    url: str


class SaveNoteArgs(BaseModel):
    model_config = _STRICT

    title: str
    body: str


ToolArgs = Union[SearchNotesArgs, FetchUrlArgs, SaveNoteArgs]


SEARCH_NOTES_PARAMETERS = {
    "type": "object",
    "properties": {
        "query": {
            "type": "string",
            "minLength": 1,
            "description": "Text to look for (case-insensitive)",
        },
        "limit": {
            "type": "integer",
            "minimum": 1,
            "maximum": 255,
            "description": "Maximum number of notes to return",
        },
    },
    "required": ["query", "limit"],
    "additionalProperties": False,
}

FETCH_URL_PARAMETERS = {
    "type": "object",
    "properties": {
        "url": {"type": "string", "description": "Absolute http(s) URL to fetch"},
    },
    "required": ["url"],
    "additionalProperties": False,
}

SAVE_NOTE_PARAMETERS = {
    "type": "object",
    "properties": {
        "title": {"type": "string", "description": "Note title, used as the file name"},
        "body": {"type": "string", "description": "Markdown body of the note"},
    },
    "required": ["title", "body"],
    "additionalProperties": False,
}
