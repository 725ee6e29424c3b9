from pico_loader.boot_transport.framer import iter_chunks
from pico_loader.firmware.crc import crc32, image_checksum
from pico_loader.firmware.image import FirmwareImage, Segment


def test_check_value():
    assert crc32(b"123456789") == 0xCBF43926
    assert crc32(b"") == 0


def test_deterministic():
    data = bytes(range(256)) * 4
    assert crc32(data) == crc32(data)


def test_single_bit_flips_are_detected():
    data = bytearray(b"firmware payload \x00\xff" * 8)
    ref = crc32(bytes(data))
    for i in range(len(data)):
        for bit in range(8):
            data[i] ^= 1 << bit
            assert crc32(bytes(data)) != ref
            data[i] ^= 1 << bit


def test_running_crc_matches_whole():
    data = bytes(range(200))
    assert crc32(data[100:], crc32(data[:100])) == crc32(data)


def test_image_checksum_over_chunks():
    image = FirmwareImage((Segment(0, bytes(range(10))), Segment(0x100, b"\xAA" * 7)))
    for size in (1, 3, 4096):
        assert image_checksum(iter_chunks(image, size)) == crc32(b"".join(s.data for s in image.segments))
