"""Document memorization for the knowledge pipeline.

Documents are split into overlapping chunks, each chunk is embedded, and
the chunks are stored in the ``documents`` table where the KNOWLEDGE
provider searches them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional
from uuid import UUID, uuid5

from .errors import DuplicateRecordError
from .logging_utils import log_deterministic
from .model_client import ModelType
from .providers.knowledge import DOCUMENTS_TABLE
from .schemas import Content, Memory

if TYPE_CHECKING:
    from .runtime import AgentContext


DEFAULT_CHUNK_SIZE = 1200
DEFAULT_CHUNK_OVERLAP = 200


def split_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> List[str]:
    """Split on paragraph boundaries into chunks of at most ``chunk_size`` characters.

    Paragraphs longer than a chunk are cut with ``overlap`` characters
    carried into the next piece.
    """

    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    if not 0 <= overlap < chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")

    chunks: List[str] = []
    current = ""
    for paragraph in (p.strip() for p in text.split("\n\n")):
        if not paragraph:
            continue
        while len(paragraph) > chunk_size:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(paragraph[:chunk_size])
            paragraph = paragraph[chunk_size - overlap:]
        candidate = f"{current}\n\n{paragraph}" if current else paragraph
        if len(candidate) > chunk_size:
            chunks.append(current)
            current = paragraph
        else:
            current = candidate
    if current:
        chunks.append(current)
    return chunks


async def memorize_document(
    context: "AgentContext",
    text: str,
    *,
    room_id: Optional[UUID] = None,
    entity_id: Optional[UUID] = None,
    metadata: Optional[Dict[str, object]] = None,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> List[UUID]:
    """Embed and store ``text`` as document chunks. Returns the stored ids.

    Chunk ids are derived from the agent and the chunk text, so memorizing
    the same document twice embeds and stores it once.
    """

    stored: List[UUID] = []
    for index, chunk in enumerate(split_text(text, chunk_size=chunk_size)):
        chunk_id = uuid5(context.agent_id, chunk)
        if await context.store.get_memory_by_id(chunk_id, table_name=DOCUMENTS_TABLE) is not None:
            continue
        embedding = await context.use_model(ModelType.TEXT_EMBEDDING, prompt=chunk)
        memory = Memory(
            id=chunk_id,
            room_id=room_id or context.agent_id,
            entity_id=entity_id or context.agent_id,
            agent_id=context.agent_id,
            content=Content(text=chunk, source="knowledge"),
            embedding=list(embedding),
            metadata={**(metadata or {}), "type": "document", "chunk": index},
        )
        try:
            await context.store.create_memory(memory, DOCUMENTS_TABLE)
        except DuplicateRecordError:
            continue
        stored.append(memory.id)

    log_deterministic(f"Memorized {len(stored)} new document chunk(s)")
    return stored


async def memorize_character_knowledge(context: "AgentContext") -> int:
    """Memorize the plain-text entries of ``character.knowledge``."""
    count = 0
    for entry in context.character.knowledge:
        if isinstance(entry, str) and entry.strip():
            count += len(await memorize_document(context, entry))
    return count
