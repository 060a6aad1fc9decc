from .clockbuilder import SELF_TEST_MAP, TXT_SAMPLE, check_coverage, \
    parse_register_map
from .codec import PackedFields, compute_fields, r_div_of, unpack_block
from .device import SynthesizerDevice
from .si5351 import FIELD_MAX, PLL, CrystalLoad, CrystalReference, \
    DeviceNotFound, DeviceNotInitialised, InvalidParameter, RDiv, \
    Si5351Error, TransportError
from .transport import FakeTinyUSB, RegisterFile, TinyUSBTransport

import pytest

from typing import Tuple

def fresh() -> Tuple[SynthesizerDevice, RegisterFile]:
    '''An initialised device on an empty register file, log cleared.'''
    rf = RegisterFile()
    dev = SynthesizerDevice(rf)
    dev.initialise()
    rf.log.clear()
    return dev, rf

def bursts(rf: RegisterFile) -> dict[int, bytes]:
    return {reg: data for op, reg, data in rf.log if op == 'burst'}

def test_initialise() -> None:
    rf = RegisterFile(bytes((0x11,)))
    dev = SynthesizerDevice(rf)
    dev.initialise()
    assert dev.initialised
    assert dev.revision == 1
    assert dev.crystal == CrystalReference()
    assert rf.log[0] == ('read', 0, b'\x11')
    assert rf.writes() == [(3, 0xff)] + [(r, 0x80) for r in range(16, 24)] \
        + [(183, 0xc0), (149, 0x00)]

def test_initialise_bad_args() -> None:
    dev = SynthesizerDevice(RegisterFile())
    with pytest.raises(InvalidParameter):
        dev.initialise(0)
    with pytest.raises(InvalidParameter):
        dev.initialise(crystal_load=5)  # type: ignore
    assert not dev.initialised

def test_device_not_found() -> None:
    rf = RegisterFile(fail_registers=[0])
    dev = SynthesizerDevice(rf)
    with pytest.raises(DeviceNotFound):
        dev.initialise()
    assert not dev.initialised
    assert rf.log == []

def test_not_initialised() -> None:
    rf = RegisterFile()
    dev = SynthesizerDevice(rf)
    for op in (lambda: dev.setup_pll_integer(PLL.A, 36),
               lambda: dev.setup_pll(PLL.B, 24, 2, 3),
               lambda: dev.setup_multisynth_integer(0, PLL.A, 8),
               lambda: dev.setup_multisynth(1, PLL.A, 45, 1, 2),
               lambda: dev.setup_r_divider(2, RDiv.DIV_4),
               lambda: dev.enable_outputs(True),
               lambda: dev.load_register_map([(15, 0)])):
        with pytest.raises(DeviceNotInitialised):
            op()
    assert rf.log == []

def test_pll_integer_fields() -> None:
    dev, rf = fresh()
    for mult in range(15, 91):
        for pll in PLL:
            rf.log.clear()
            assert dev.setup_pll_integer(pll, mult) == 25_000_000 * mult
            assert len(rf.log) == 2
            op, reg, data = rf.log[0]
            assert (op, reg) == ('burst', pll.base())
            assert unpack_block(data) == PackedFields(128 * mult - 512, 0, 1)
            assert rf.log[1] == ('write', 177, b'\xa0')

def test_pll_boundaries() -> None:
    dev, rf = fresh()
    for args in (14, 0, 1), (91, 0, 1), (36, FIELD_MAX + 1, FIELD_MAX), \
            (36, 0, 0), (36, 1, FIELD_MAX + 1), (36, -1, 2):
        with pytest.raises(InvalidParameter):
            dev.setup_pll(PLL.A, *args)
    with pytest.raises(InvalidParameter):
        dev.setup_pll(2, 36, 0, 1)  # type: ignore
    assert rf.log == []
    assert dev.pll_freq(PLL.A) is None

    assert dev.setup_pll_integer(PLL.A, 15) == 375_000_000
    assert dev.setup_pll_integer(PLL.B, 90) == 2_250_000_000
    assert dev.setup_pll(PLL.A, 90, FIELD_MAX, FIELD_MAX) == 2_275_000_000

def test_multisynth_boundaries() -> None:
    dev, rf = fresh()
    dev.setup_pll_integer(PLL.A, 36)
    rf.log.clear()
    for channel, div in (0, 3), (0, 2049), (3, 8), (-1, 8):
        with pytest.raises(InvalidParameter):
            dev.setup_multisynth(channel, PLL.A, div, 0, 1)
    for div in 5, 7, 10:
        with pytest.raises(InvalidParameter):
            dev.setup_multisynth_integer(0, PLL.A, div)
    with pytest.raises(InvalidParameter):
        dev.setup_multisynth(0, PLL.A, 10, 1, 0)
    assert rf.log == []

    dev.setup_multisynth(0, PLL.A, 4, 0, 1)
    dev.setup_multisynth(1, PLL.A, 2048, 0, 1)
    for div in 4, 6, 8:
        dev.setup_multisynth_integer(2, PLL.A, div)
    assert dev.output_freq(0) == 225_000_000
    assert dev.output_freq(1) == 439_453
    assert dev.output_freq(2) == 112_500_000

def test_unconfigured_pll() -> None:
    dev, rf = fresh()
    for channel in range(3):
        for pll in PLL:
            with pytest.raises(InvalidParameter):
                dev.setup_multisynth(channel, pll, 45, 1, 2)
    assert rf.log == []

    dev.setup_pll_integer(PLL.A, 36)
    rf.log.clear()
    with pytest.raises(InvalidParameter):
        dev.setup_multisynth_integer(0, PLL.B, 8)
    assert rf.log == []

def test_integer_mode_ignores_denominator() -> None:
    dev, rf = fresh()
    dev.setup_pll_integer(PLL.A, 36)
    rf.log.clear()
    dev.setup_multisynth(0, PLL.A, 10, 0, 1)
    dev.setup_multisynth(1, PLL.A, 10, 0, 1000)
    a = unpack_block(bursts(rf)[42])
    b = unpack_block(bursts(rf)[50])
    assert (a.p1, a.p2) == (b.p1, b.p2) == (128 * 10 - 512, 0)
    assert rf.data[16] == rf.data[17] == 0x4f
    assert dev.output_freq(0) == dev.output_freq(1) == 90_000_000

def test_r_divider_preserved() -> None:
    dev, rf = fresh()
    dev.setup_pll_integer(PLL.A, 36)
    dev.setup_r_divider(1, RDiv.DIV_8)
    assert rf.data[52] >> 4 & 7 == 3
    rf.log.clear()
    # P1 = 127488 puts a bit in the low half of the shared byte.
    dev.setup_multisynth(1, PLL.A, 1000, 0, 1)
    assert r_div_of(bursts(rf)[50]) == 3
    assert rf.data[52] >> 4 & 7 == 3
    assert dev.output_freq(1) == 900_000 >> 3

    # Changing the R divider leaves the P1 bits alone.
    p1_high = rf.data[52] & 0x03
    assert p1_high == 1
    dev.setup_r_divider(1, 0)
    assert rf.data[52] == p1_high
    assert rf.log[-2:] == [('read', 52, bytes((p1_high | 0x30,))),
                           ('write', 52, bytes((p1_high,)))]

def test_r_divider_before_pll() -> None:
    dev, rf = fresh()
    dev.setup_r_divider(2, 7)
    dev.setup_pll(PLL.B, 24, 2, 3)
    dev.setup_multisynth(2, PLL.B, 45, 1, 2)
    assert r_div_of(bursts(rf)[58]) == 7
    assert rf.data[60] >> 4 & 7 == 7
    with pytest.raises(InvalidParameter):
        dev.setup_r_divider(0, 8)
    with pytest.raises(InvalidParameter):
        dev.setup_r_divider(3, 0)

def test_scenario_integer() -> None:
    dev, rf = fresh()
    assert dev.setup_pll_integer(PLL.A, 36) == 900_000_000
    fields = dev.setup_multisynth_integer(0, PLL.A, 8)
    assert fields == PackedFields(512, 0, 1)
    assert dev.output_freq(0) == 112_500_000
    assert [(op, reg) for op, reg, _ in rf.log] == [
        ('burst', 26), ('write', 177), ('burst', 42), ('write', 16)]
    assert unpack_block(bursts(rf)[42]) == fields
    assert rf.data[16] == 0x4f

def test_scenario_fractional() -> None:
    dev, rf = fresh()
    assert dev.setup_pll(PLL.B, 24, 2, 3) == 616_666_666
    assert unpack_block(bursts(rf)[34]) == PackedFields(
        128 * 24 + 85 - 512, 1, 3)
    fields = dev.setup_multisynth(1, PLL.B, 45, 1, 2)
    assert fields == compute_fields(45, 1, 2) == PackedFields(5312, 0, 2)
    assert unpack_block(bursts(rf)[50]) == fields
    # floor(616666666 / 45.5)
    assert dev.output_freq(1) == 13_553_113
    # PLL B source, fractional mode.
    assert rf.data[17] == 0x2f

def test_enable_outputs() -> None:
    dev, rf = fresh()
    dev.enable_outputs(False)
    dev.enable_outputs(True)
    assert rf.log == [('write', 3, b'\xff'), ('write', 3, b'\x00')]

def test_spread_spectrum() -> None:
    dev, rf = fresh()
    rf.data[149] = 0x15
    dev.enable_spread_spectrum(True)
    assert rf.data[149] == 0x95
    dev.enable_spread_spectrum(False)
    assert rf.data[149] == 0x15
    assert [op for op, _, _ in rf.log] == ['read', 'write'] * 2

def test_load_register_map() -> None:
    dev, rf = fresh()
    pairs = parse_register_map(TXT_SAMPLE.splitlines())
    dev.load_register_map(pairs)
    assert rf.writes() == [(3, 0xff)] + pairs + [(177, 0xac), (3, 0x00)]

    rf.log.clear()
    for bad in [(15, 0), (256, 0)], [(15, 0), (16, 0x100)], [(-1, 0)]:
        with pytest.raises(InvalidParameter):
            dev.load_register_map(bad)
    assert rf.log == []

def test_load_register_map_failure() -> None:
    dev, rf = fresh()
    rf.fail_after = 3
    with pytest.raises(TransportError):
        dev.load_register_map([(15, 0), (16, 0x4f), (17, 0x4f)])
    # Left part way, outputs still disabled.
    assert rf.writes() == [(3, 0xff), (15, 0), (16, 0x4f)]

def test_transport_error() -> None:
    dev, rf = fresh()
    rf.fail_registers = {177}
    with pytest.raises(TransportError) as e:
        dev.setup_pll_integer(PLL.A, 36)
    assert isinstance(e.value, Si5351Error)
    assert dev.pll_freq(PLL.A) is None
    with pytest.raises(InvalidParameter):
        dev.setup_multisynth_integer(0, PLL.A, 8)

def test_reinitialise() -> None:
    dev, rf = fresh()
    dev.setup_pll_integer(PLL.A, 36)
    dev.setup_r_divider(0, 3)
    dev.setup_multisynth_integer(0, PLL.A, 8)
    dev.initialise(27_000_000, CrystalLoad.PF8)
    assert dev.crystal == CrystalReference(27_000_000, CrystalLoad.PF8)
    assert rf.data[183] == 0x80
    assert dev.pll_freq(PLL.A) is None
    assert dev.output_freq(0) is None
    assert dev.planner.last_r_divider(0) == 0
    with pytest.raises(InvalidParameter):
        dev.setup_multisynth_integer(0, PLL.A, 8)
    assert dev.setup_pll_integer(PLL.A, 30) == 810_000_000

def test_constructor_crystal() -> None:
    rf = RegisterFile()
    crystal = CrystalReference(27_000_000, CrystalLoad.PF8, 20)
    dev = SynthesizerDevice(rf, crystal)
    dev.initialise()
    assert dev.crystal == crystal
    assert rf.data[183] == 0x80
    assert dev.setup_pll_integer(PLL.A, 30) == 810_000_000

    # Arguments given override, the rest carry over.
    dev.initialise(crystal_load=CrystalLoad.PF6)
    assert dev.crystal == CrystalReference(27_000_000, CrystalLoad.PF6, 20)
    assert rf.data[183] == 0x40

def test_load_self_test_map() -> None:
    dev, rf = fresh()
    assert check_coverage(SELF_TEST_MAP) == []
    dev.load_register_map()
    assert rf.writes() == [(3, 0xff)] + SELF_TEST_MAP + [(177, 0xac), (3, 0)]
    assert list(rf.data[16:19]) == [0x4f, 0x4f, 0x2f]

def test_r_divider_clears_bit_7() -> None:
    dev, rf = fresh()
    rf.data[44] = 0xff
    dev.setup_r_divider(0, RDiv.DIV_4)
    assert rf.data[44] == 0x2f

def test_bool_arguments() -> None:
    dev, rf = fresh()
    with pytest.raises(InvalidParameter):
        dev.setup_r_divider(True, 1)  # type: ignore
    with pytest.raises(InvalidParameter):
        dev.setup_pll(PLL.A, 36, True, 2)  # type: ignore
    assert rf.log == []

def test_over_tiny_usb() -> None:
    chip = RegisterFile()
    dev = SynthesizerDevice(TinyUSBTransport(FakeTinyUSB(chip))) # type: ignore
    dev.initialise()
    dev.setup_pll_integer(PLL.A, 36)
    dev.setup_r_divider(0, 1)
    dev.setup_multisynth_integer(0, PLL.A, 8)
    dev.enable_outputs(True)
    assert unpack_block(chip.data[42:50]) == PackedFields(512, 0, 1)
    assert r_div_of(chip.data[42:50]) == 1
    assert chip.data[16] == 0x4f
    assert chip.data[3] == 0
    assert dev.output_freq(0) == 56_250_000

    # Nothing answering at the Si5351 address.
    usb = FakeTinyUSB(RegisterFile(), address=0x61)
    with pytest.raises(DeviceNotFound):
        SynthesizerDevice(TinyUSBTransport(usb)).initialise() # type: ignore
