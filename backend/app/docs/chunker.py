"""Document chunker - deterministic sliding-window text splitting."""

from backend.app.errors import ConfigurationError

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 200
MIN_CHUNK_CHARS = 10


def validate_chunk_params(size: int, overlap: int) -> None:
    """Raise ConfigurationError unless 0 <= overlap < size."""
    if size <= 0:
        raise ConfigurationError(f"chunk size must be positive, got {size}")
    if overlap < 0 or overlap >= size:
        raise ConfigurationError(
            f"chunk overlap must be in [0, size), got overlap={overlap} size={size}"
        )


def chunk_text(
    text: str,
    size: int = DEFAULT_CHUNK_SIZE,
    overlap: int = DEFAULT_CHUNK_OVERLAP,
) -> list[str]:
    """Split text into fixed-size overlapping windows.

    Pure function with no I/O or randomness.

    Args:
        text: Page text to chunk
        size: Window length in characters (default 1000)
        overlap: Characters shared by consecutive windows (default 200)

    Returns:
        Ordered chunks where:
        - chunk i starts at offset i * (size - overlap)
        - every chunk except the last has length exactly size
        - the last chunk ends at len(text)
        - empty text yields no chunks

    Raises:
        ConfigurationError: If size <= 0, overlap < 0 or overlap >= size.
    """
    validate_chunk_params(size, overlap)

    if not text:
        return []

    stride = size - overlap
    chunks: list[str] = []
    start = 0

    while True:
        end = start + size
        chunks.append(text[start:end])
        # Stop once a window reaches the end; the next would lie inside this one
        if end >= len(text):
            break
        start += stride

    return chunks


def is_embeddable(chunk: str, min_chars: int = MIN_CHUNK_CHARS) -> bool:
    """Return whether a chunk carries enough text to be worth embedding."""
    return len(chunk.strip()) >= min_chars
