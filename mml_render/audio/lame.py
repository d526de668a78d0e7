from __future__ import annotations

import sys
from array import array


class CodecError(RuntimeError):
    pass


class LameCodec:
    """MP3 codec session backed by lameenc.

    Blocks arrive as separate left/right int16 arrays. For a mono session only
    the left block is fed to LAME, which is what lame_encode_buffer does with
    one input channel.
    """

    def __init__(self, *, sample_rate: int, channels: int, bitrate: int = 192, quality: int = 2) -> None:
        import lameenc  # type: ignore

        self.channels = int(channels)
        enc = lameenc.Encoder()
        try:
            enc.set_bit_rate(int(bitrate))
            enc.set_in_sample_rate(int(sample_rate))
            enc.set_channels(self.channels)
            enc.set_quality(int(quality))
        except (RuntimeError, ValueError) as e:
            raise CodecError(f"invalid LAME parameters: {e}") from e
        self._enc = enc
        # lameenc opens its stream on the first encode() call.
        self._started = False

    def _pcm(self, left: array, right: array) -> bytes:
        if self.channels == 1:
            pcm = array("h", left)
        else:
            pcm = array("h", bytes(4 * len(left)))
            pcm[0::2] = left
            pcm[1::2] = right
        if sys.byteorder == "big":
            pcm.byteswap()
        return pcm.tobytes()

    def encode(self, left: array, right: array) -> bytes:
        if self._enc is None:
            raise CodecError("codec already closed")
        try:
            data = bytes(self._enc.encode(self._pcm(left, right)))
        except (RuntimeError, ValueError) as e:
            raise CodecError(str(e)) from e
        self._started = True
        return data

    def flush(self) -> bytes:
        """Drain the encoder. A session that never saw a block still yields a valid stream."""
        if self._enc is None:
            raise CodecError("codec already closed")
        try:
            head = b""
            if not self._started:
                head = bytes(self._enc.encode(b""))
                self._started = True
            return head + bytes(self._enc.flush())
        except (RuntimeError, ValueError) as e:
            raise CodecError(str(e)) from e

    def close(self) -> None:
        self._enc = None
