#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""
CRC16-CCITT as used to sign outbound Switcher frames.

Polynomial 0x1021, initial value 0, MSB-first, no reflection of input or output
(the variant also known as CRC-16/XMODEM).
"""

from __future__ import annotations

CRC16_POLYNOMIAL = 0x1021

def crc16(data: bytes | bytearray | memoryview, initial: int=0) -> int:
    """Returns the 16-bit CRC of a byte sequence.

    >>> hex(crc16(b'123456789'))
    '0x31c3'
    """
    crc = initial
    for byte in data:
        crc ^= byte << 8
        for _ in range(8):
            if crc & 0x8000:
                crc = ((crc << 1) ^ CRC16_POLYNOMIAL) & 0xFFFF
            else:
                crc = (crc << 1) & 0xFFFF
    return crc
