"""
TextChunker - Split oversized text while keeping code fences balanced.

A message longer than the limit is split in two: the tail is the last `limit`
characters and the head is everything before it. chunk_oversized() keeps
splitting the head until it fits, so chunks are produced back to front and then
returned front to back.

If a ``` fence is open across the split point the head gets a closing fence and
the tail an opening one, so monospace formatting does not leak over the boundary.
"""
from typing import List, NamedTuple

FENCE = "```"


def has_open_fence(text: str) -> bool:
    """True when text contains an odd number of fence markers."""
    return text.count(FENCE) % 2 == 1


class TextSplit(NamedTuple):
    """Result of split_oversized().

    Attributes:
        head: Leading part (with a closing fence appended if closed_head)
        tail: Last `limit` characters (with an opening fence prepended if reopened_tail)
        closed_head: Whether a fence was appended to head
        reopened_tail: Whether a fence was prepended to tail
    """
    head: str
    tail: str
    closed_head: bool = False
    reopened_tail: bool = False

    def restore(self) -> str:
        """Original text: head + tail without the inserted fences."""
        head = self.head[:-len(FENCE)] if self.closed_head else self.head
        tail = self.tail[len(FENCE):] if self.reopened_tail else self.tail
        return head + tail


def split_oversized(text: str, limit: int) -> TextSplit:
    """Split text that exceeds limit into head and tail.

    Raises:
        ValueError: If limit is not positive or text already fits
    """
    if limit <= 0:
        raise ValueError("limit must be positive")
    if len(text) <= limit:
        raise ValueError(f"text of length {len(text)} does not exceed limit {limit}")

    head = text[:len(text) - limit]
    tail = text[len(text) - limit:]

    closed_head = has_open_fence(head)
    if closed_head:
        head += FENCE

    reopened_tail = has_open_fence(tail)
    if reopened_tail:
        tail = FENCE + tail

    return TextSplit(head, tail, closed_head, reopened_tail)


def chunk_oversized(text: str, limit: int) -> List[str]:
    """Split text into chunks in reading order.

    The last `limit` characters are peeled off repeatedly until the remaining
    head fits. Every chunk except the last fits within limit; the last may carry
    one extra reopened fence.

    Raises:
        ValueError: If limit leaves no room beyond a fence marker
    """
    if limit <= len(FENCE):
        raise ValueError(f"limit must be greater than {len(FENCE)}")

    chunks = []
    while len(text) > limit:
        split = split_oversized(text, limit)
        chunks.append(split.tail)
        text = split.head
    chunks.append(text)
    chunks.reverse()
    return chunks
