''' Wrapper module exposing :func:`dumps` and :func:`loads` backed by msgspec,
    the same interface as the standard :mod:`json` module except that
    :func:`dumps` always returns bytes. Message bodies on the wire are
    bytes, so there is no reason to round-trip through str.
'''

import msgspec


# One encoder/decoder pair is reused for the life of the process; msgspec
# encoders and decoders are thread-safe.

encoder = msgspec.json.Encoder()
decoder = msgspec.json.Decoder()

dumps = encoder.encode
loads = decoder.decode

EncodeError = msgspec.EncodeError
DecodeError = msgspec.DecodeError

# vim: set expandtab tabstop=8 softtabstop=4 shiftwidth=4 autoindent:
