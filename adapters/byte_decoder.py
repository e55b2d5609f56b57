"""
byte_decoder.py — Incremental byte-to-text decoder for streamed response bodies

Network chunks can end in the middle of a multi-byte character. The decoder
holds such a tail back and prefixes it to the next chunk, so no character is
dropped or garbled just because it straddles a chunk boundary.
"""

from __future__ import annotations

import codecs
import logging

logger = logging.getLogger("lobai.byte_decoder")

DEFAULT_ENCODING = "utf-8"


class ByteDecoder:
    """Stateful decoder for one stream.

    Genuinely invalid bytes decode to U+FFFD. Incomplete sequences are only
    replaced when the stream ends (``final=True``).
    """

    def __init__(self, encoding: str = DEFAULT_ENCODING):
        self.encoding = encoding
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")

    @property
    def pending(self) -> bytes:
        """Undecoded bytes carried over to the next chunk."""
        return self._decoder.getstate()[0]

    def decode(self, chunk: bytes, final: bool = False) -> str:
        if final:
            leftover = self.pending
            if leftover:
                logger.warning(
                    "Stream ended inside a %s sequence (%d bytes), decoding best effort",
                    self.encoding,
                    len(leftover),
                )
        text = self._decoder.decode(chunk, final)
        if final:
            self._decoder.reset()
        return text

    def reset(self) -> None:
        self._decoder.reset()
