"""Decoder for uncompressed per-tile BCL files.

Layout: ``BaseCalls/L00<lane>/C<cycle>.1/s_<lane>_<tile>.bcl``, each file a
little-endian ``uint32`` record count followed by one byte per read.
"""

from __future__ import annotations

from pathlib import Path

from fcsync.basecalls.base import PerTileBclDecoder
from fcsync.basecalls import registry
from fcsync.rundir import basecalls_dir


@registry.register
class RawBclDecoder(PerTileBclDecoder):
    name = "raw"
    description = "Uncompressed BCL, one file per tile and cycle"

    @classmethod
    def detect(cls, run_dir: Path) -> bool:
        return next(basecalls_dir(run_dir).glob("L*/C*.1/s_*_*.bcl"), None) is not None
