"""
Chunk persistence for progressive crawls.

The crawler talks to two collaborators: a ``SourceRegistry`` that confirms a
source record still exists, and a ``ChunkStore`` that appends chunked page
text to it. ``FileChunkStore`` implements both on the local filesystem.
"""

import hashlib
import json
import logging
import math
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


DEFAULT_CHUNK_SIZE = 16000
DEFAULT_CHUNK_OVERLAP = 1600
MAX_CHUNKS = 1000

SENTENCE_ENDERS = ('. ', '.\n', '! ', '!\n', '? ', '?\n')


class ChunkStoreError(Exception):
    """Raised when chunks cannot be stored or read."""
    pass


@dataclass
class TextChunk:
    """A window of source text and its character offsets."""
    text: str
    start: int
    end: int


def split_into_chunks(text: str, chunk_size: int = DEFAULT_CHUNK_SIZE,
                      overlap: int = DEFAULT_CHUNK_OVERLAP) -> List[TextChunk]:
    """
    Split text into overlapping chunks.

    A chunk prefers to end at a sentence boundary in the back half of its
    window, then at a word boundary, then at exactly ``chunk_size``.
    """
    if not text:
        return []
    if overlap >= chunk_size:
        raise ValueError("overlap must be smaller than chunk_size")

    chunks: List[TextChunk] = []
    start = 0
    half = chunk_size // 2

    while start < len(text) and len(chunks) < MAX_CHUNKS:
        end = start + chunk_size

        if end < len(text):
            best_break = -1
            for i in range(end, start + half, -1):
                if text.endswith(SENTENCE_ENDERS, start, i):
                    best_break = i
                    break

            if best_break != -1:
                end = best_break
            else:
                last_space = text.rfind(' ', start, end + 1)
                if last_space > start + half:
                    end = last_space
        else:
            end = len(text)

        chunk_text = text[start:end].strip()
        if chunk_text:
            chunks.append(TextChunk(text=chunk_text, start=start, end=end))

        if end >= len(text):
            break
        start = max(end - overlap, start + 1)

    return chunks


def estimate_tokens(text: str) -> int:
    """Rough token estimate: four characters per token."""
    return math.ceil(len(text) / 4)


class SourceRegistry:
    """Answers whether a source record still exists."""

    async def source_exists(self, source_id: str) -> bool:
        raise NotImplementedError


class ChunkStore:
    """Abstract base class for chunk persistence backends."""

    async def append_chunks(self, source_id: str, agent_id: str, project_id: str,
                            content: str, metadata: Optional[Dict[str, Any]] = None,
                            chunk_size: int = DEFAULT_CHUNK_SIZE,
                            chunk_overlap: int = DEFAULT_CHUNK_OVERLAP) -> int:
        """Split ``content`` and append the chunks to a source. Returns the chunk count."""
        raise NotImplementedError

    async def close(self):
        pass


class FileChunkStore(ChunkStore, SourceRegistry):
    """File-based chunk store for development and single-host deployments."""

    def __init__(self, data_directory: str):
        self.data_directory = Path(data_directory)
        self.logger = logging.getLogger(__name__)
        self.stats = {
            'total_chunks': 0,
            'storage_errors': 0,
        }

    async def initialize(self):
        """Create the data directory structure."""
        try:
            (self.data_directory / 'sources').mkdir(parents=True, exist_ok=True)
            self.logger.info(f"File chunk store initialized at {self.data_directory}")
        except OSError as e:
            raise ChunkStoreError(f"Failed to initialize chunk store: {e}")

    def _source_dir(self, source_id: str) -> Path:
        # Hash the id so arbitrary source ids map to safe directory names
        source_hash = hashlib.sha256(source_id.encode('utf-8')).hexdigest()
        return self.data_directory / 'sources' / source_hash[:2] / source_hash

    async def register_source(self, source_id: str, metadata: Optional[Dict[str, Any]] = None):
        source_dir = self._source_dir(source_id)
        try:
            source_dir.mkdir(parents=True, exist_ok=True)
            record = {
                'source_id': source_id,
                'created_at': datetime.now(timezone.utc).isoformat(),
                'metadata': metadata or {},
            }
            with open(source_dir / 'source.json', 'w', encoding='utf-8') as f:
                json.dump(record, f, ensure_ascii=False, indent=2)
        except OSError as e:
            raise ChunkStoreError(f"Failed to register source {source_id}: {e}")

    async def delete_source(self, source_id: str):
        shutil.rmtree(self._source_dir(source_id), ignore_errors=True)

    async def source_exists(self, source_id: str) -> bool:
        return (self._source_dir(source_id) / 'source.json').exists()

    async def append_chunks(self, source_id: str, agent_id: str, project_id: str,
                            content: str, metadata: Optional[Dict[str, Any]] = None,
                            chunk_size: int = DEFAULT_CHUNK_SIZE,
                            chunk_overlap: int = DEFAULT_CHUNK_OVERLAP) -> int:
        chunks = split_into_chunks(content, chunk_size, chunk_overlap)
        if not chunks:
            self.logger.warning(f"No chunks created for source {source_id}")
            return 0

        chunk_file = self._source_dir(source_id) / 'chunks.jsonl'
        try:
            position = self._count_lines(chunk_file)
            with open(chunk_file, 'a', encoding='utf-8') as f:
                for index, chunk in enumerate(chunks):
                    record = {
                        'source_id': source_id,
                        'agent_id': agent_id,
                        'project_id': project_id,
                        'content': chunk.text,
                        'position': position + index,
                        'tokens': estimate_tokens(chunk.text),
                        'metadata': {
                            **(metadata or {}),
                            'chunk_index': index,
                            'total_chunks': len(chunks),
                            'start_char': chunk.start,
                            'end_char': chunk.end,
                        },
                    }
                    f.write(json.dumps(record, ensure_ascii=False) + '\n')
        except OSError as e:
            self.stats['storage_errors'] += 1
            raise ChunkStoreError(f"Failed to store chunks for source {source_id}: {e}")

        self.stats['total_chunks'] += len(chunks)
        self.logger.debug(f"Appended {len(chunks)} chunks to {chunk_file}")
        return len(chunks)

    def _count_lines(self, path: Path) -> int:
        if not path.exists():
            return 0
        with open(path, 'r', encoding='utf-8') as f:
            return sum(1 for _ in f)

    async def get_chunks(self, source_id: str) -> List[Dict[str, Any]]:
        """Return a source's chunks ordered by position."""
        chunk_file = self._source_dir(source_id) / 'chunks.jsonl'
        if not chunk_file.exists():
            return []
        try:
            with open(chunk_file, 'r', encoding='utf-8') as f:
                records = [json.loads(line) for line in f if line.strip()]
        except (OSError, json.JSONDecodeError) as e:
            raise ChunkStoreError(f"Failed to read chunks for source {source_id}: {e}")
        return sorted(records, key=lambda record: record['position'])

    def get_stats(self) -> Dict[str, int]:
        return self.stats.copy()
