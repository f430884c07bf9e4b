"""Compression of http payloads."""
from __future__ import annotations

import zlib
from abc import ABC, abstractmethod
from typing import ClassVar


class CompressionError(Exception):
    pass


class AbstractDataCompressor(ABC):
    algorithms = ()

    @staticmethod
    @abstractmethod
    def compress_payload(payload: bytes) -> bytes:
        pass

    @staticmethod
    @abstractmethod
    def decompress_payload(payload: bytes) -> bytes:
        pass


class CompressionHandler:
    """Registry of compression algorithms.

    The transport uses it to decompress response bodies according to their Content-Encoding header.
    """

    available_encodings: ClassVar[list[str]] = []
    handlers: ClassVar[dict[str, type[AbstractDataCompressor]]] = {}

    @classmethod
    def register_handler(cls, handler: type[AbstractDataCompressor]):
        for alg in handler.algorithms:
            if alg.lower() in cls.available_encodings:
                raise ValueError(f'Algorithm {alg} already registered, class = {cls.__name__} ')
        for alg in handler.algorithms:
            cls.available_encodings.append(alg.lower())
            cls.handlers[alg.lower()] = handler

    @classmethod
    def compress_payload(cls, algorithm: str, payload: bytes) -> bytes:
        """Compress payload with the given algorithm.

        :param algorithm: one of strings provided by registered compression handlers
        :param payload: data to compress
        :raises CompressionError: if algorithm is not supported
        """
        return cls.get_handler(algorithm).compress_payload(payload)

    @classmethod
    def decompress_payload(cls, algorithm: str, payload: bytes) -> bytes:
        """Decompress payload with the given algorithm.

        :param algorithm: one of strings provided by registered compression handlers
        :param payload: data to decompress
        :raises CompressionError: if algorithm is not supported or payload is not valid compressed data
        """
        try:
            return cls.get_handler(algorithm).decompress_payload(payload)
        except zlib.error as ex:
            raise CompressionError(f'could not decompress {algorithm} payload: {ex}') from ex

    @classmethod
    def decode_content(cls, content_encoding: str | None, payload: bytes) -> bytes:
        """Undo all encodings listed in a Content-Encoding header value, last applied encoding first.

        An empty header value or "identity" leaves the payload unchanged.
        """
        if not content_encoding:
            return payload
        encodings = [enc.strip().lower() for enc in content_encoding.split(',')]
        for encoding in reversed(encodings):
            if encoding in ('', 'identity'):
                continue
            payload = cls.decompress_payload(encoding, payload)
        return payload

    @classmethod
    def get_handler(cls, algorithm: str) -> type[AbstractDataCompressor]:
        """:param algorithm: one of strings provided by registered compression handlers
        :return: AbstractDataCompressor implementation
        """
        handler = cls.handlers.get(algorithm.lower())
        if not handler:
            txt = f'{algorithm} compression is not supported. Only {cls.available_encodings} are supported.'
            raise CompressionError(txt)
        return handler


class GzipCompressionHandler(AbstractDataCompressor):
    algorithms = ('gzip',)

    @staticmethod
    def compress_payload(payload: bytes) -> bytes:
        if not isinstance(payload, bytes):
            raise TypeError(f'a bytes-like object is required, not "{payload.__class__.__name__}"')
        gzip_compress = zlib.compressobj(zlib.Z_DEFAULT_COMPRESSION, zlib.DEFLATED, 16 + zlib.MAX_WBITS)
        return gzip_compress.compress(payload) + gzip_compress.flush()

    @staticmethod
    def decompress_payload(payload: bytes) -> bytes:
        return zlib.decompress(payload, 16 + zlib.MAX_WBITS)


class DeflateCompressionHandler(AbstractDataCompressor):
    """Http "deflate" is zlib wrapped data, but some servers send a raw deflate stream. Both are accepted."""

    algorithms = ('deflate',)

    @staticmethod
    def compress_payload(payload: bytes) -> bytes:
        if not isinstance(payload, bytes):
            raise TypeError(f'a bytes-like object is required, not "{payload.__class__.__name__}"')
        return zlib.compress(payload)

    @staticmethod
    def decompress_payload(payload: bytes) -> bytes:
        try:
            return zlib.decompress(payload)
        except zlib.error:
            return zlib.decompress(payload, -zlib.MAX_WBITS)


CompressionHandler.register_handler(GzipCompressionHandler)
CompressionHandler.register_handler(DeflateCompressionHandler)
