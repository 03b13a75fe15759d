"""Base call decoders for the encodings written by the instruments.

Usage:
    from fcsync.basecalls import open_decoder

    decoder = open_decoder(descriptor)
    for tile in decoder.tiles(lane=1):
        calls = decoder.decode(tile, cycle=1, limit=1000)
"""

from fcsync.basecalls.base import BaseCallDecoder, BaseCalls, TileUnit
from fcsync.basecalls.registry import DecoderRegistry
from fcsync.rundir import RunDescriptor

# Singleton registry
registry = DecoderRegistry()

# Auto-register built-in decoders, in detection order
from fcsync.basecalls import columnar  # noqa: E402, F401
from fcsync.basecalls import compressed  # noqa: E402, F401
from fcsync.basecalls import raw  # noqa: E402, F401


def open_decoder(descriptor: RunDescriptor) -> BaseCallDecoder:
    """Open the decoder matching the base call files of a run directory."""
    return registry.open(descriptor)


__all__ = [
    "BaseCallDecoder",
    "BaseCalls",
    "DecoderRegistry",
    "TileUnit",
    "open_decoder",
    "registry",
]
