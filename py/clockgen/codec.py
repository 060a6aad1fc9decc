'''Conversion between a rational divider a + b/c and the P1/P2/P3 register
fields of a PLL feedback or Multisynth block (AN619 section 3).

    P1[17:0] = 128 * a + floor(128 * b / c) - 512
    P2[19:0] = 128 * b - c * floor(128 * b / c)
    P3[19:0] = c

The floor is taken with integer arithmetic, so the fields are exact for all
20-bit b and c.'''

from .si5351 import FIELD_MAX, R_DIV_MASK, R_DIV_SHIFT

from dataclasses import dataclass

P1_MASK = (1 << 18) - 1
P2_MASK = (1 << 20) - 1
P3_MASK = (1 << 20) - 1

@dataclass(frozen=True)
class PackedFields:
    p1: int
    p2: int
    p3: int

    def __str__(self) -> str:
        return f'P1={self.p1:#07x} P2={self.p2:#07x} P3={self.p3:#07x}'

def compute_fields(a: int, b: int, c: int) -> PackedFields:
    '''Pack a + b/c.  The range of a is the caller's problem.'''
    assert 1 <= c <= FIELD_MAX, c
    assert 0 <= b <= FIELD_MAX, b
    if b == 0:
        return PackedFields(128 * a - 512, 0, c)
    if c == 1:
        # b/c is an integer, so the floor vanishes.
        return PackedFields(128 * a + 128 * b - 512, 128 * b - 128, 1)
    q = 128 * b // c
    return PackedFields(128 * a + q - 512, 128 * b - c * q, c)

def serialize_pll_block(fields: PackedFields) -> bytes:
    p1 = fields.p1 & P1_MASK
    p2 = fields.p2 & P2_MASK
    p3 = fields.p3 & P3_MASK
    return bytes((
        p3 >> 8 & 0xff,
        p3 & 0xff,
        p1 >> 16 & 0x03,
        p1 >> 8 & 0xff,
        p1 & 0xff,
        (p3 >> 16 & 0x0f) << 4 | p2 >> 16 & 0x0f,
        p2 >> 8 & 0xff,
        p2 & 0xff))

def serialize_multisynth_block(base: int, fields: PackedFields,
                               r_div: int = 0) -> bytes:
    '''Return the start register followed by the 8 parameter bytes, with the
    R divider exponent merged into the P1 high byte.'''
    assert 0 <= base <= 255
    assert 0 <= r_div <= 7
    block = bytearray(serialize_pll_block(fields))
    block[2] |= r_div << R_DIV_SHIFT
    return bytes((base,)) + block

def unpack_block(data: bytes | bytearray) -> PackedFields:
    '''Inverse of the serializers.  A 9 byte block is taken to carry the
    start register first.'''
    if len(data) == 9:
        data = data[1:]
    assert len(data) == 8, len(data)
    p3 = (data[5] >> 4) << 16 | data[0] << 8 | data[1]
    p1 = (data[2] & 0x03) << 16 | data[3] << 8 | data[4]
    p2 = (data[5] & 0x0f) << 16 | data[6] << 8 | data[7]
    return PackedFields(p1, p2, p3)

def r_div_of(data: bytes | bytearray) -> int:
    if len(data) == 9:
        data = data[1:]
    return (data[2] & R_DIV_MASK) >> R_DIV_SHIFT

def test_integer_pll() -> None:
    for mult in range(15, 91):
        assert compute_fields(mult, 0, 1) == PackedFields(128 * mult - 512, 0, 1)

def test_integer_ignores_denominator() -> None:
    for c in 1, 2, 3, 1000, FIELD_MAX:
        f = compute_fields(36, 0, c)
        assert f == PackedFields(128 * 36 - 512, 0, c)

def test_fractional() -> None:
    # 24 + 2/3: floor(256/3) = 85.
    assert compute_fields(24, 2, 3) == PackedFields(
        128 * 24 + 85 - 512, 256 - 3 * 85, 3)
    # Simplified form with c == 1.
    assert compute_fields(10, 3, 1) == PackedFields(
        128 * 10 + 384 - 512, 384 - 128, 1)
    # Exact at the 20-bit edge, where a float would round up.
    f = compute_fields(90, FIELD_MAX - 1, FIELD_MAX)
    assert f.p1 == 128 * 90 + 127 - 512
    assert f.p2 == 128 * (FIELD_MAX - 1) - FIELD_MAX * 127

def test_pll_layout() -> None:
    fields = PackedFields(0x2abcd, 0xf1234, 0xe5678)
    assert serialize_pll_block(fields) == bytes.fromhex('56 78 02 ab cd ef 12 34')

def test_multisynth_layout() -> None:
    fields = PackedFields(0x2abcd, 0xf1234, 0xe5678)
    block = serialize_multisynth_block(42, fields, 5)
    assert block == bytes.fromhex('2a 56 78 52 ab cd ef 12 34')
    assert r_div_of(block) == 5

def test_round_trip() -> None:
    for a, b, c in (15, 0, 1), (90, 0xfffff, 0xfffff), (24, 2, 3), \
            (2048, 1, 2), (4, 0, 1), (900, 12345, 0x80000):
        fields = compute_fields(a, b, c)
        assert unpack_block(serialize_pll_block(fields)) == fields
        block = serialize_multisynth_block(50, fields, 7)
        assert unpack_block(block) == fields
        assert r_div_of(block) == 7
