'''Si5351 configuration: PLL, Multisynth, R divider and output control.

All parameters are checked before the first register write of an operation.
Multi-byte parameter blocks go out as a single burst.  A TransportError part
way through leaves the chip in an unknown state; initialise again.

Not thread safe.  Serialise access to a SynthesizerDevice externally.'''

from __future__ import annotations

from .codec import PackedFields, compute_fields, serialize_multisynth_block, \
    serialize_pll_block
from .planner import FrequencyPlanner
from .si5351 import CHANNELS, CLK_CONTROL_COUNT, CLK_CONTROL_DEFAULT, \
    CLK_INTEGER_MODE, CLK_PLL_B, CLK_POWER_DOWN, FIELD_MAX, MS_DIV_INTEGER, \
    MS_DIV_MAX, MS_DIV_MIN, MS_PARAM3_KEEP, OUTPUTS_DISABLED, \
    OUTPUTS_ENABLED, PLL, PLL_MULT_MAX, PLL_MULT_MIN, PLL_RESET_A, \
    PLL_RESET_B, PLL_RESET_SOFT, R_DIV_SHIFT, REG_CLK_CONTROL, \
    REG_CRYSTAL_LOAD, REG_DEVICE_STATUS, REG_OUTPUT_ENABLE_CONTROL, \
    REG_PLL_RESET, REG_SPREAD_SPECTRUM, SPREAD_SPECTRUM_ENABLE, STATUS_REVID, \
    CrystalLoad, CrystalReference, DeviceNotFound, DeviceNotInitialised, \
    InvalidParameter, RDiv, TransportError, clk_control_register, \
    multisynth_register, r_div_register
from .clockbuilder import SELF_TEST_MAP
from .transport import Transport

from typing import Iterable, Tuple

RegisterMap = Iterable[Tuple[int, int]]

def check(ok: bool, why: str) -> None:
    if not ok:
        raise InvalidParameter(why)

def check_range(value: int, low: int, high: int, what: str) -> None:
    # bool is an int, but never a sensible register value.
    check(isinstance(value, int) and not isinstance(value, bool)
          and low <= value <= high,
          f'{what} {value!r} is not {low}..{high}')

def check_channel(channel: int) -> None:
    check_range(channel, 0, CHANNELS - 1, 'Channel')

def check_ratio(num: int, denom: int) -> None:
    check_range(num, 0, FIELD_MAX, 'Numerator')
    check_range(denom, 1, FIELD_MAX, 'Denominator')

def check_pll(pll: PLL) -> PLL:
    try:
        return PLL(pll)
    except ValueError:
        raise InvalidParameter(f'No such PLL {pll!r}') from None

class SynthesizerDevice:
    transport: Transport
    crystal: CrystalReference
    planner: FrequencyPlanner
    initialised: bool = False
    revision: int = 0

    def __init__(self, transport: Transport,
                 crystal: CrystalReference = CrystalReference()):
        self.transport = transport
        self.crystal = crystal
        self.planner = FrequencyPlanner(crystal.freq)

    def require_initialised(self) -> None:
        if not self.initialised:
            raise DeviceNotInitialised('Call initialise() first')

    def initialise(self, crystal_freq: int | None = None,
                   crystal_load: CrystalLoad | None = None,
                   crystal_ppm: int | None = None) -> None:
        '''Probe the chip, disable and power down all outputs, set the
        crystal load and forget any previous PLL and channel setup.

        Crystal parameters not given are taken from self.crystal, i.e., the
        constructor argument or the previous initialise().'''
        if crystal_freq is None:
            crystal_freq = self.crystal.freq
        if crystal_load is None:
            crystal_load = self.crystal.load
        if crystal_ppm is None:
            crystal_ppm = self.crystal.ppm
        check(isinstance(crystal_freq, int) and crystal_freq > 0,
              f'Bad crystal frequency {crystal_freq}')
        try:
            crystal_load = CrystalLoad(crystal_load)
        except ValueError:
            raise InvalidParameter(
                f'Bad crystal load {crystal_load!r}') from None

        self.initialised = False
        try:
            status = self.transport.read_byte(REG_DEVICE_STATUS)
        except TransportError as e:
            raise DeviceNotFound(f'No Si5351 responding: {e}') from e
        self.revision = status & STATUS_REVID

        t = self.transport
        t.write_byte(REG_OUTPUT_ENABLE_CONTROL, OUTPUTS_DISABLED)
        for i in range(CLK_CONTROL_COUNT):
            t.write_byte(REG_CLK_CONTROL + i, CLK_POWER_DOWN)
        t.write_byte(REG_CRYSTAL_LOAD, crystal_load)
        self.enable_spread_spectrum(False)

        self.crystal = CrystalReference(crystal_freq, crystal_load, crystal_ppm)
        self.planner = FrequencyPlanner(crystal_freq)
        self.initialised = True

    def setup_pll_integer(self, pll: PLL, mult: int) -> int:
        return self.setup_pll(pll, mult, 0, 1)

    def setup_pll(self, pll: PLL, mult: int, num: int, denom: int) -> int:
        '''Set PLL to crystal * (mult + num/denom).  Returns the resulting
        VCO frequency in Hz.  Use integers (num = 0) where possible, the
        fractional mode adds jitter.'''
        self.require_initialised()
        pll = check_pll(pll)
        check_range(mult, PLL_MULT_MIN, PLL_MULT_MAX, 'PLL multiplier')
        check_ratio(num, denom)

        fields = compute_fields(mult, num, denom)
        self.transport.write_burst(pll.base(), serialize_pll_block(fields))
        # Both PLLs get reset, whichever was changed.
        self.transport.write_byte(REG_PLL_RESET, PLL_RESET_A | PLL_RESET_B)
        return self.planner.record_pll(pll, mult, num, denom)

    def setup_multisynth_integer(self, channel: int, pll: PLL,
                                 div: int) -> PackedFields:
        self.require_initialised()
        check(div in MS_DIV_INTEGER,
              f'Integer Multisynth divider {div} is not one of {MS_DIV_INTEGER}')
        return self.setup_multisynth(channel, pll, div, 0, 1)

    def setup_multisynth(self, channel: int, pll: PLL, div: int,
                         num: int, denom: int) -> PackedFields:
        '''Divide the PLL by div + num/denom onto an output channel and power
        the output up.  The PLL must already be set up.'''
        self.require_initialised()
        check_channel(channel)
        pll = check_pll(pll)
        check_range(div, MS_DIV_MIN, MS_DIV_MAX, 'Multisynth divider')
        check_ratio(num, denom)
        self.planner.require_configured(pll)

        fields = compute_fields(div, num, denom)
        base = multisynth_register(channel)
        block = serialize_multisynth_block(
            base, fields, self.planner.last_r_divider(channel))
        self.transport.write_burst(base, block[1:])

        control = CLK_CONTROL_DEFAULT
        if pll == PLL.B:
            control |= CLK_PLL_B
        if num == 0:
            control |= CLK_INTEGER_MODE
        self.transport.write_byte(clk_control_register(channel), control)

        self.planner.record_multisynth(channel, pll, div, num, denom)
        return fields

    def setup_r_divider(self, channel: int, exponent: RDiv | int) -> None:
        '''Divide the channel output further by 2**exponent.'''
        self.require_initialised()
        check_channel(channel)
        check_range(exponent, 0, 7, 'R divider exponent')

        register = r_div_register(channel)
        value = self.transport.read_byte(register)
        value = value & MS_PARAM3_KEEP | exponent << R_DIV_SHIFT
        self.transport.write_byte(register, value)
        self.planner.record_r_divider(channel, int(exponent))

    def enable_outputs(self, enabled: bool) -> None:
        self.require_initialised()
        self.transport.write_byte(
            REG_OUTPUT_ENABLE_CONTROL,
            OUTPUTS_ENABLED if enabled else OUTPUTS_DISABLED)

    def enable_spread_spectrum(self, enabled: bool) -> None:
        # No initialised check, initialise() uses this.
        value = self.transport.read_byte(REG_SPREAD_SPECTRUM)
        if enabled:
            value |= SPREAD_SPECTRUM_ENABLE
        else:
            value &= ~SPREAD_SPECTRUM_ENABLE
        self.transport.write_byte(REG_SPREAD_SPECTRUM, value)

    def load_register_map(self, pairs: RegisterMap = SELF_TEST_MAP) -> None:
        '''Write a complete register map, e.g., from ClockBuilder, with the
        outputs disabled, then soft reset the PLLs and enable the outputs.
        The default map gives 120MHz, 12MHz and 13.56MHz on CLK0..2.

        The map is written a byte at a time; a failure part way leaves the
        chip partially configured.  The PLL and channel book-keeping is not
        updated.'''
        self.require_initialised()
        pairs = list(pairs)
        for register, value in pairs:
            check(0 <= register <= 255 and 0 <= value <= 255,
                  f'Bad register map entry {register}, {value}')

        t = self.transport
        t.write_byte(REG_OUTPUT_ENABLE_CONTROL, OUTPUTS_DISABLED)
        for register, value in pairs:
            t.write_byte(register, value)
        t.write_byte(REG_PLL_RESET, PLL_RESET_SOFT)
        t.write_byte(REG_OUTPUT_ENABLE_CONTROL, OUTPUTS_ENABLED)

    def pll_freq(self, pll: PLL) -> int | None:
        if not self.planner.is_configured(pll):
            return None
        return self.planner.pll_freq(pll)

    def output_freq(self, channel: int) -> int | None:
        check_channel(channel)
        return self.planner.output_freq(channel)
