"""Tests for the CRC16 primitive."""

from __future__ import annotations

from switcher_protocol.crc import crc16


class TestCrc16:
    """Tests for crc16."""

    def test_golden_vector(self) -> None:
        """Test the standard check value for CRC-16/XMODEM."""
        assert crc16(b"123456789") == 0x31C3

    def test_empty_input(self) -> None:
        """Test that no input leaves the initial value unchanged."""
        assert crc16(b"") == 0
        assert crc16(b"", initial=0x1234) == 0x1234

    def test_incremental(self) -> None:
        """Test that a CRC can be continued from a previous result."""
        assert crc16(b"56789", initial=crc16(b"1234")) == 0x31C3

    def test_accepts_bytearray(self) -> None:
        """Test that any bytes-like sequence is accepted."""
        assert crc16(bytearray(b"123456789")) == 0x31C3

    def test_result_is_16_bits(self) -> None:
        """Test that the result always fits in 16 bits."""
        for data in (b"\xff" * 64, bytes(range(256)), b"0" * 32):
            assert 0 <= crc16(data) <= 0xFFFF
