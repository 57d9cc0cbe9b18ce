"""Bounded error log and schema report shared by the streaming decoders."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, List, Union

from loguru import logger

from ..core.custom_types import ParseError

DEFAULT_MAX_ERRORS = 50


@dataclass
class ErrorLog:
    """Keeps the first `cap` messages; later ones are only counted in `dropped`."""
    cap: int = DEFAULT_MAX_ERRORS
    messages: List[str] = field(default_factory=list)
    dropped: int = 0

    def add(self, error: Union[ParseError, str]):
        message = str(error)
        logger.debug(f"parse.error {message}")
        if len(self.messages) < self.cap:
            self.messages.append(message)
        else:
            self.dropped += 1

    def extend(self, other: "ErrorLog"):
        for message in other.messages:
            self.add(message)
        self.dropped += other.dropped

    def __len__(self) -> int:
        return len(self.messages)

    def __bool__(self) -> bool:
        return bool(self.messages) or self.dropped > 0

    def __iter__(self):
        return iter(self.messages)


@dataclass
class SchemaReport:
    headers: List[str] = field(default_factory=list)
    missing_headers: List[str] = field(default_factory=list)
    sample: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.missing_headers


class SchemaMismatchError(Exception):
    """Required header columns are absent; nothing from the source may be ingested."""

    def __init__(self, missing_columns: List[str], source: str = ""):
        self.missing_columns = list(missing_columns)
        self.source = source
        super().__init__(f"Missing required columns: {', '.join(self.missing_columns)}")
