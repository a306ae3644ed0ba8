"""Typed view of the OCR provider's block graph and key/value field extraction.

Textract returns a flat list of blocks linked by relationship edges. Only
three roles matter for form fields:

- ``KEY_VALUE_SET`` blocks tagged ``KEY`` (field labels)
- ``KEY_VALUE_SET`` blocks tagged ``VALUE`` (field contents)
- ``WORD`` blocks carrying the actual text

Everything else (pages, lines, selection elements) is ignored. Malformed
blocks are skipped rather than raised, so a partial response degrades to
fewer fields.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Union

logger = logging.getLogger(__name__)

_KEY_VALUE_SET = "KEY_VALUE_SET"
_WORD = "WORD"


@dataclass(frozen=True)
class Relationship:
    type: str
    ids: tuple[str, ...]


@dataclass(frozen=True)
class WordBlock:
    id: str
    text: str


@dataclass(frozen=True)
class KeyBlock:
    id: str
    relationships: tuple[Relationship, ...]

    def value_id(self) -> str | None:
        for rel in self.relationships:
            if rel.type == "VALUE" and rel.ids:
                return rel.ids[0]
        return None


@dataclass(frozen=True)
class ValueBlock:
    id: str
    relationships: tuple[Relationship, ...]


Block = Union[KeyBlock, ValueBlock, WordBlock]


def _parse_relationships(raw: Any) -> tuple[Relationship, ...]:
    if not isinstance(raw, list):
        return ()
    parsed: list[Relationship] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        rel_type = item.get("Type")
        ids = item.get("Ids")
        if not isinstance(rel_type, str) or not isinstance(ids, list):
            continue
        parsed.append(Relationship(rel_type, tuple(i for i in ids if isinstance(i, str))))
    return tuple(parsed)


def parse_block(raw: Any) -> Block | None:
    """Map one raw provider block to its typed variant, or None if irrelevant/malformed."""
    if not isinstance(raw, dict):
        return None
    block_id = raw.get("Id")
    block_type = raw.get("BlockType")
    if not isinstance(block_id, str) or not isinstance(block_type, str):
        return None

    if block_type == _WORD:
        text = raw.get("Text")
        if not isinstance(text, str):
            return None
        return WordBlock(block_id, text)

    if block_type == _KEY_VALUE_SET:
        entity_types = raw.get("EntityTypes") or []
        relationships = _parse_relationships(raw.get("Relationships"))
        if isinstance(entity_types, list) and "KEY" in entity_types:
            return KeyBlock(block_id, relationships)
        return ValueBlock(block_id, relationships)

    return None


def parse_blocks(raw_blocks: Any) -> dict[str, Block]:
    """Build the id-indexed map of typed blocks."""
    if not isinstance(raw_blocks, list):
        return {}
    index: dict[str, Block] = {}
    skipped = 0
    for raw in raw_blocks:
        block = parse_block(raw)
        if block is None:
            skipped += 1
            continue
        index[block.id] = block
    if skipped:
        logger.debug("Ignored %d non-form or malformed blocks", skipped)
    return index


def block_text(block: KeyBlock | ValueBlock, index: dict[str, Block]) -> str:
    """Join the text of the block's CHILD word blocks in relationship order."""
    words: list[str] = []
    for rel in block.relationships:
        if rel.type != "CHILD":
            continue
        for child_id in rel.ids:
            child = index.get(child_id)
            if isinstance(child, WordBlock):
                words.append(child.text)
    return " ".join(words).strip()


def extract_fields(raw_blocks: Any) -> dict[str, str]:
    """Flatten a block graph into ``{field label: field text}``.

    Keys without a resolvable VALUE relationship are dropped. A key with no
    label text is dropped too instead of being stored under ``""``. When a
    label repeats, the value of the last KEY block in document order wins.
    """
    index = parse_blocks(raw_blocks)
    keys = [block for block in index.values() if isinstance(block, KeyBlock)]

    fields: dict[str, str] = {}
    for key in keys:
        value_id = key.value_id()
        value = index.get(value_id) if value_id else None
        if not isinstance(value, ValueBlock):
            continue
        label = block_text(key, index)
        if not label:
            continue
        fields[label] = block_text(value, index)
    return fields
