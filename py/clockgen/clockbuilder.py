'''Read register maps exported by ClockBuilder Desktop.

Two export formats are understood.  The register map text file:

    # comments
    Address,Data
    15,00h
    16,4Fh

and the C header, with entries like "{ 15, 0x00 }," or "{ 0x000F, 0x00 },".
Either way we produce the ordered list of (register, value) pairs that
SynthesizerDevice.load_register_map() writes out.'''

from .si5351 import REG_SPREAD_SPECTRUM

import re
import sys

from typing import Iterable, Tuple

RegisterPairs = list[Tuple[int, int]]

# What ClockBuilder emits for a complete configuration.
PREBUILT_RANGES = (range(15, 93), range(REG_SPREAD_SPECTRUM, 171))

# Board check-out configuration for a 25MHz crystal:
#   PLL A = 720MHz (28 + 4/5), PLL B = 900MHz (36)
#   CLK0 = PLL A / 6 = 120MHz, CLK1 = PLL A / 60 = 12MHz,
#   CLK2 = PLL B / (66 + 42/113) = 13.56MHz
SELF_TEST_MAP: RegisterPairs = [
    (15, 0x00),
    # CLK0..CLK7 control, CLK3..7 powered down.
    (16, 0x4f), (17, 0x4f), (18, 0x2f), (19, 0x80),
    (20, 0x80), (21, 0x80), (22, 0x80), (23, 0x80),
    (24, 0x00), (25, 0x00),
    # PLL A.
    (26, 0x00), (27, 0x05), (28, 0x00), (29, 0x0c),
    (30, 0x66), (31, 0x00), (32, 0x00), (33, 0x02),
    # PLL B.
    (34, 0x00), (35, 0x01), (36, 0x00), (37, 0x10),
    (38, 0x00), (39, 0x00), (40, 0x00), (41, 0x00),
    # Multisynth 0.
    (42, 0x00), (43, 0x01), (44, 0x00), (45, 0x01),
    (46, 0x00), (47, 0x00), (48, 0x00), (49, 0x00),
    # Multisynth 1.
    (50, 0x00), (51, 0x01), (52, 0x00), (53, 0x1c),
    (54, 0x00), (55, 0x00), (56, 0x00), (57, 0x00),
    # Multisynth 2.
    (58, 0x00), (59, 0x71), (60, 0x00), (61, 0x1f),
    (62, 0x2f), (63, 0x00), (64, 0x00), (65, 0x41),
    # Multisynth 3..7 and the CLK6/7 dividers, unused.
    *((reg, 0x00) for reg in range(66, 93)),
    # Spread spectrum off, no phase offsets.
    *((reg, 0x00) for reg in range(REG_SPREAD_SPECTRUM, 171)),
]

C_ENTRY_RE = re.compile(
    r'\{\s*(0x[0-9a-f]+|\d+)\s*,\s*(0x[0-9a-f]+|\d+)\s*\}', re.IGNORECASE)
TXT_ENTRY_RE = re.compile(r'(\d+)\s*,\s*([0-9a-f]+)h?$', re.IGNORECASE)

def c_int(s: str) -> int:
    return int(s, 16) if s.lower().startswith('0x') else int(s)

def check_entry(reg: int, value: int, line: str) -> Tuple[int, int]:
    if not 0 <= reg <= 255 or not 0 <= value <= 255:
        raise ValueError(f'Register map entry out of range: {line!r}')
    return reg, value

def parse_register_map(lines: Iterable[str]) -> RegisterPairs:
    result: RegisterPairs = []
    for L in lines:
        line = L.strip()
        if not line or line.startswith('#') or line.startswith('//'):
            continue
        entries = C_ENTRY_RE.findall(line)
        if entries:
            result.extend(check_entry(c_int(r), c_int(v), line)
                          for r, v in entries)
            continue
        if line.lower().replace(' ', '') == 'address,data':
            continue
        m = TXT_ENTRY_RE.match(line)
        if m:
            result.append(
                check_entry(int(m.group(1)), int(m.group(2), 16), line))
            continue
        # C header boiler-plate.
        if line.startswith(('#', '/*', '*', '}', '{')) or line.endswith('{') \
           or line.startswith(('typedef', 'static', 'const', 'unsigned')):
            continue
        raise ValueError(f'Unrecognised register map line: {line!r}')
    return result

def check_coverage(pairs: RegisterPairs) -> list[int]:
    '''Return the registers of a complete configuration missing from pairs.'''
    present = set(reg for reg, _ in pairs)
    return [reg for span in PREBUILT_RANGES for reg in span
            if reg not in present]

def read_register_map(path: str) -> RegisterPairs:
    with open(path) as f:
        pairs = parse_register_map(f)
    missing = check_coverage(pairs)
    if missing:
        print(f'Warning: {path} does not set registers',
              ' '.join(map(str, missing)), file=sys.stderr)
    return pairs

TXT_SAMPLE = '''\
# Si5351A
# Register map export
Address,Data
15,00h
16,4Fh
177,ACh
'''

C_SAMPLE = '''\
#define NUM_REGS_MAX 100
typedef struct Reg_Data {
   unsigned char Reg_Addr;
   unsigned char Reg_Val;
} Reg_Data;

Reg_Data const Reg_Store[NUM_REGS_MAX] = {
{ 15,0x00},
{ 16,0x4F},
{ 0x0095, 0x00 },
};
'''

def test_txt() -> None:
    pairs = parse_register_map(TXT_SAMPLE.splitlines())
    assert pairs == [(15, 0x00), (16, 0x4f), (177, 0xac)]

def test_c_header() -> None:
    pairs = parse_register_map(C_SAMPLE.splitlines())
    assert pairs == [(15, 0x00), (16, 0x4f), (149, 0x00)]

def test_bad_line() -> None:
    for bad in '15,100h', 'what is this', '300,00h':
        try:
            parse_register_map([bad])
            assert False, f'Accepted {bad!r}'
        except ValueError:
            pass

def test_coverage() -> None:
    full = [(r, 0) for span in PREBUILT_RANGES for r in span]
    assert check_coverage(full) == []
    assert check_coverage(full[1:]) == [15]
    assert len(full) == 78 + 22

def test_self_test_map() -> None:
    assert len(SELF_TEST_MAP) == 100
    assert check_coverage(SELF_TEST_MAP) == []
    regs = [reg for reg, _ in SELF_TEST_MAP]
    assert regs == sorted(set(regs))
    # The Multisynth and PLL blocks decode to the documented plan.
    from .codec import compute_fields, unpack_block
    image = bytearray(256)
    for reg, value in SELF_TEST_MAP:
        image[reg] = value
    assert unpack_block(image[26:34]) == compute_fields(28, 4, 5)
    assert unpack_block(image[34:42]) == compute_fields(36, 0, 1)
    assert unpack_block(image[42:50]) == compute_fields(6, 0, 1)
    assert unpack_block(image[50:58]) == compute_fields(60, 0, 1)
    assert unpack_block(image[58:66]) == compute_fields(66, 42, 113)
