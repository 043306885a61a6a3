"""Streaming decoders for compressed response bodies."""

import zlib
from typing import Callable, Dict, Iterator, Optional

import brotli

from analytics_proxy.exceptions import ContentDecodeError

# Compressed input is fed to decoders in slices of this size, so a reader that
# stops early never pays to decompress the whole body.
CHUNK_SIZE = 16 * 1024

GZIP_MAGIC = b"\x1f\x8b"

Decoder = Callable[[bytes], Iterator[bytes]]


def _chunks(body: bytes) -> Iterator[bytes]:
    for offset in range(0, len(body), CHUNK_SIZE):
        yield body[offset : offset + CHUNK_SIZE]


def _identity(body: bytes) -> Iterator[bytes]:
    return _chunks(body)


def _inflate(encoding: str, decompressor, body: bytes) -> Iterator[bytes]:
    try:
        for chunk in _chunks(body):
            data = decompressor.decompress(chunk)
            if data:
                yield data
        tail = decompressor.flush()
        if tail:
            yield tail
    except zlib.error as e:
        raise ContentDecodeError(encoding, str(e)) from e


def _gzip(body: bytes) -> Iterator[bytes]:
    if not body.startswith(GZIP_MAGIC):
        raise ContentDecodeError("gzip", "invalid header")
    # 16 + MAX_WBITS tells zlib to expect the gzip header and trailer
    return _inflate("gzip", zlib.decompressobj(wbits=16 + zlib.MAX_WBITS), body)


def _deflate(body: bytes) -> Iterator[bytes]:
    # Servers send "deflate" both as a zlib-wrapped stream and as raw deflate.
    # A zlib stream starts with a CMF byte of 0x78 for the default window size.
    wbits = zlib.MAX_WBITS if body[:1] == b"\x78" else -zlib.MAX_WBITS
    return _inflate("deflate", zlib.decompressobj(wbits=wbits), body)


def _brotli_stream(decompressor, body: bytes) -> Iterator[bytes]:
    try:
        for chunk in _chunks(body):
            data = decompressor.process(chunk)
            if data:
                yield data
    except brotli.error as e:
        raise ContentDecodeError("br", str(e)) from e


def _brotli(body: bytes) -> Iterator[bytes]:
    return _brotli_stream(brotli.Decompressor(), body)


DECODERS: Dict[str, Decoder] = {
    "gzip": _gzip,
    "deflate": _deflate,
    "br": _brotli,
}


def decode_body(encoding: Optional[str], body: bytes) -> Iterator[bytes]:
    """Returns an iterator over the decoded content of a response body.

    The decoder is selected by exact match on the Content-Encoding value. Any
    value without a registered decoder (including no encoding at all) passes
    the body through unchanged.

    Raises:
        ContentDecodeError: If the decoder cannot be constructed for the body,
            e.g. a gzip body with a corrupt header. Errors found while
            decompressing are raised lazily from the returned iterator.
    """
    decoder = DECODERS.get(encoding or "", _identity)
    return decoder(body)
