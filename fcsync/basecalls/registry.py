"""Decoder registry for discovering and instantiating base call decoders."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Type

from fcsync.basecalls.base import BaseCallDecoder
from fcsync.errors import UnsupportedFormatError
from fcsync.rundir import RunDescriptor

logger = logging.getLogger(__name__)


class DecoderRegistry:
    """Central registry of base call decoders, in detection order."""

    def __init__(self) -> None:
        self._decoders: dict[str, Type[BaseCallDecoder]] = {}

    def register(self, decoder_cls: Type[BaseCallDecoder]) -> Type[BaseCallDecoder]:
        """Register a BaseCallDecoder subclass.

        Can be used as a decorator::

            @registry.register
            class MyDecoder(BaseCallDecoder):
                name = "my_decoder"
                ...
        """
        name = decoder_cls.name
        if not name:
            raise ValueError(f"Decoder class {decoder_cls.__name__} has no name")
        if name in self._decoders:
            logger.warning("Overwriting decoder '%s' in registry", name)
        self._decoders[name] = decoder_cls
        return decoder_cls

    def names(self) -> list[str]:
        return list(self._decoders)

    def detect(self, run_dir: Path) -> Type[BaseCallDecoder]:
        """Return the first decoder whose files are present in ``run_dir``."""
        for name, decoder_cls in self._decoders.items():
            if decoder_cls.detect(run_dir):
                logger.debug("Detected %s base call files in %s", name, run_dir)
                return decoder_cls
        raise UnsupportedFormatError(f"No known base call files found in {run_dir}", run_dir)

    def open(self, descriptor: RunDescriptor) -> BaseCallDecoder:
        """Construct the decoder matching the run directory of ``descriptor``."""
        decoder_cls = self.detect(Path(descriptor.path))
        return decoder_cls(descriptor)
