"""Delta assembly: pulls text fragments out of frames and accumulates them."""

import json
from dataclasses import dataclass
from typing import Any, Optional

from .decoder import Frame


@dataclass(frozen=True)
class Delta:
    """Accumulated content of one response after a fragment was appended."""
    response_id: str
    content: str


def extract_fragment(record: Any) -> Optional[str]:
    """Return ``choices[0].delta.content`` from a completion chunk, if present."""
    try:
        fragment = record["choices"][0]["delta"]["content"]
    except (KeyError, IndexError, TypeError):
        return None
    if not isinstance(fragment, str) or not fragment:
        return None
    return fragment


class DeltaAssembler:
    """Accumulates the text of a single response."""

    def __init__(self, response_id: str):
        self.response_id = response_id
        self._content = ""
        self._fragments = 0
        self._skipped = 0

    @property
    def content(self) -> str:
        return self._content

    @property
    def fragment_count(self) -> int:
        return self._fragments

    def consume(self, frame: Frame) -> Optional[Delta]:
        """Append the fragment carried by ``frame``; ``None`` when it has none."""
        return self._append(extract_fragment(frame.record))

    def assemble(self, payload: str) -> Optional[Delta]:
        """Parse a raw frame payload and append its fragment."""
        try:
            record = json.loads(payload)
        except json.JSONDecodeError:
            self._skipped += 1
            return None
        return self._append(extract_fragment(record))

    def _append(self, fragment: Optional[str]) -> Optional[Delta]:
        if fragment is None:
            self._skipped += 1
            return None
        self._content += fragment
        self._fragments += 1
        return Delta(response_id=self.response_id, content=self._content)


__all__ = ['Delta', 'DeltaAssembler', 'extract_fragment']
