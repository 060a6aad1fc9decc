'''Frequency planning for a Si5351 output.

    fOUT = fXTAL * (a + b/c) / (d + e/f)

The PLL (a + b/c) must land the VCO in 600..900MHz and the Multisynth
(d + e/f) is 4, 6 or 8, or a fraction from 8 up to 2048.  Outputs above
150MHz (DIVBY4) and below 500kHz (R divider) are not planned.'''

from __future__ import annotations

from .device import SynthesizerDevice, check_pll
from .plan_tools import Hz, MHz, fraction_to_str, freq_to_str, split_ratio
from .si5351 import CHANNELS, CRYSTAL_25MHZ, FIELD_MAX, MS_DIV_INTEGER, \
    MS_DIV_MAX, OUTPUT_MAX, OUTPUT_MIN, PLL, PLL_MULT_MAX, PLL_MULT_MIN, \
    VCO_MAX, VCO_MIN, InvalidParameter

from dataclasses import dataclass
from fractions import Fraction
from math import ceil, floor
from typing import Tuple

# Smallest divider allowed in fractional mode.
MS_FRACT_MIN = 8

@dataclass
class OutputPlan:
    target: Fraction
    crystal: int
    # PLL feedback ratio a + b/c.
    pll_ratio: Fraction
    # Multisynth ratio d + e/f.
    ms_ratio: Fraction

    def vco(self) -> Fraction:
        return self.crystal * self.pll_ratio

    def freq(self) -> Fraction:
        return self.vco() / self.ms_ratio

    def error(self) -> Fraction:
        return self.freq() - self.target

    def pll_args(self) -> Tuple[int, int, int]:
        return split_ratio(self.pll_ratio)

    def ms_args(self) -> Tuple[int, int, int]:
        return split_ratio(self.ms_ratio)

    def ms_even(self) -> bool:
        return self.ms_ratio.denominator == 1 and self.ms_ratio.numerator % 2 == 0

    def __lt__(self, b: OutputPlan | None) -> bool:
        '''Less is better.  I.e., return True if self is better than b.'''
        if b is None:
            return True
        # Prefer no error!
        a_error = abs(self.error())
        b_error = abs(b.error())
        if a_error != b_error:
            return a_error < b_error
        # Integer modes have less jitter.
        a_int = self.pll_ratio.denominator == 1
        b_int = b.pll_ratio.denominator == 1
        if a_int != b_int:
            return a_int
        if self.ms_even() != b.ms_even():
            return self.ms_even()
        a_int = self.ms_ratio.denominator == 1
        b_int = b.ms_ratio.denominator == 1
        if a_int != b_int:
            return a_int
        # Prefer the VCO high.
        return self.vco() > b.vco()

def pll_ratio_for(vco: Fraction, crystal: int) -> Fraction | None:
    ratio = Fraction(vco, crystal).limit_denominator(FIELD_MAX)
    if not PLL_MULT_MIN <= ratio < PLL_MULT_MAX + 1:
        return None
    if not VCO_MIN <= crystal * ratio <= VCO_MAX:
        return None
    return ratio

def plan_divider(target: Fraction, crystal: int,
                 pll_ratio: Fraction) -> OutputPlan | None:
    ms_ratio = (crystal * pll_ratio / target).limit_denominator(FIELD_MAX)
    if ms_ratio < MS_FRACT_MIN:
        if ms_ratio not in MS_DIV_INTEGER:
            return None
    elif ms_ratio > MS_DIV_MAX:
        return None
    return OutputPlan(target, crystal, pll_ratio, ms_ratio)

def check_target(target: Fraction) -> None:
    if not OUTPUT_MIN <= target <= OUTPUT_MAX:
        raise InvalidParameter(
            f'Output {freq_to_str(target)} is outside '
            f'{freq_to_str(OUTPUT_MIN)} .. {freq_to_str(OUTPUT_MAX)}')

def plan_output(target: Fraction | int, crystal: int = CRYSTAL_25MHZ,
                vco: Fraction | int | None = None) -> OutputPlan:
    '''Find PLL and Multisynth ratios for target.  If vco is given, the PLL
    is fixed (e.g., shared with another output) and only the Multisynth is
    chosen.'''
    target = Fraction(target)
    check_target(target)

    if vco is not None:
        pll_ratio = pll_ratio_for(Fraction(vco), crystal)
        if pll_ratio is None:
            raise InvalidParameter(
                f'VCO {freq_to_str(vco)} is not reachable from '
                f'{freq_to_str(crystal)}')
        plan = plan_divider(target, crystal, pll_ratio)
        if plan is None:
            raise InvalidParameter(
                f'{freq_to_str(target)} is not reachable from VCO '
                f'{freq_to_str(vco)}')
        return plan

    best = None
    low = max(MS_DIV_INTEGER[0], ceil(VCO_MIN / target))
    high = min(MS_DIV_MAX, floor(VCO_MAX / target))
    for div in range(low, high + 1):
        pll_ratio = pll_ratio_for(target * div, crystal)
        if pll_ratio is None:
            continue
        plan = plan_divider(target, crystal, pll_ratio)
        if plan is not None and plan < best:
            best = plan

    if best is None:
        raise InvalidParameter(f'No plan for {freq_to_str(target)}')
    return best

def apply_plan(device: SynthesizerDevice, channel: int, pll: PLL,
               plan: OutputPlan) -> None:
    '''Program the PLL, unless it already has the right ratio, then the
    Multisynth for channel.'''
    if device.crystal.freq != plan.crystal:
        raise InvalidParameter(
            f'Plan is for a {freq_to_str(plan.crystal)} crystal, device has '
            f'{freq_to_str(device.crystal.freq)}')
    pll = check_pll(pll)
    state = device.planner.plls[pll]
    if not state.configured or state.ratio != plan.pll_ratio:
        device.setup_pll(pll, *plan.pll_args())
    device.setup_multisynth(channel, pll, *plan.ms_args())

def report_plan(plan: OutputPlan) -> None:
    print(f'Output {freq_to_str(plan.freq())}', end='')
    if plan.freq() != plan.target:
        print(f' error {freq_to_str(plan.error(), 4)}', end='')
    print()
    print(f'VCO: {freq_to_str(plan.vco())} = {freq_to_str(plan.crystal)} '
          f'* {fraction_to_str(plan.pll_ratio)}')
    print(f'Multisynth: {fraction_to_str(plan.ms_ratio)}')

def report_device(device: SynthesizerDevice) -> None:
    if not device.initialised:
        print('Not initialised')
        return
    crystal = device.crystal
    print(f'Crystal: {freq_to_str(crystal.freq)} ±{crystal.ppm}ppm, '
          f'load {crystal.load.name}')
    for pll in PLL:
        state = device.planner.plls[pll]
        if not state.configured:
            print(f'{pll}: not configured')
            continue
        print(f'{pll}: {freq_to_str(state.freq)} = {freq_to_str(crystal.freq)} '
              f'* {fraction_to_str(state.ratio)}')
    for channel in range(CHANNELS):
        ch = device.planner.channels[channel]
        freq = device.output_freq(channel)
        if freq is None or ch.divider is None:
            print(f'Channel {channel}: not configured')
            continue
        rdiv = f' / {1 << ch.r_div}' if ch.r_div else ''
        print(f'Channel {channel}: {freq_to_str(freq)} = {ch.pll} '
              f'/ {fraction_to_str(ch.divider)}{rdiv}')

def test_integer_plan() -> None:
    p = plan_output(Fraction(225, 2) * MHz)
    assert p.pll_args() == (36, 0, 1)
    assert p.ms_args() == (8, 0, 1)
    assert p.freq() == 112_500_000

def test_even_divider() -> None:
    p = plan_output(10 * MHz)
    assert p.error() == 0
    assert p.pll_ratio.denominator == 1
    assert p.ms_even()
    assert VCO_MIN <= p.vco() <= VCO_MAX

def test_fixed_vco() -> None:
    p = plan_output(13_560_000, vco=900 * MHz)
    assert p.pll_args() == (36, 0, 1)
    assert p.error() == 0
    assert p.ms_ratio == Fraction(22500, 339)

def test_fractional() -> None:
    # 27MHz crystal with an awkward target.
    p = plan_output(Fraction(315, 88) * MHz * 3, crystal=27_000_000)
    assert abs(p.error()) < Hz
    a, b, c = p.pll_args()
    assert PLL_MULT_MIN <= a <= PLL_MULT_MAX and c <= FIELD_MAX

def test_range() -> None:
    for f in OUTPUT_MIN - 1, OUTPUT_MAX + 1, 200 * MHz, 8000:
        try:
            plan_output(f)
            assert False, f'Planned {f}'
        except InvalidParameter:
            pass
    assert plan_output(OUTPUT_MIN).error() == 0
    assert plan_output(OUTPUT_MAX).error() == 0

def test_apply() -> None:
    from .transport import RegisterFile
    dev = SynthesizerDevice(RegisterFile())
    dev.initialise()
    apply_plan(dev, 0, PLL.A, plan_output(10 * MHz))
    apply_plan(dev, 1, PLL.A, plan_output(12 * MHz, vco=dev.pll_freq(PLL.A)))
    assert dev.output_freq(0) == 10 * MHz
    assert dev.output_freq(1) == 12 * MHz
    report_device(dev)

def test_apply_bad_pll() -> None:
    from .transport import RegisterFile
    dev = SynthesizerDevice(RegisterFile())
    dev.initialise()
    try:
        apply_plan(dev, 0, 2, plan_output(10 * MHz)) # type: ignore
        assert False, 'Bad PLL accepted'
    except InvalidParameter:
        pass
