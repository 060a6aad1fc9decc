'''Book-keeping for what has been programmed into the chip.

The two PLLs feed the three Multisynth dividers.  A Multisynth may only be
programmed against a PLL that has already been set up, and the R divider
shares a register byte with the Multisynth parameters, so the last R divider
per channel has to be remembered.'''

from __future__ import annotations

from .si5351 import CHANNELS, PLL, InvalidParameter

from dataclasses import dataclass
from fractions import Fraction

@dataclass
class PLLState:
    configured: bool = False
    # Resulting VCO frequency, rounded down to integer Hz.
    freq: int = 0
    # Multiplier a + b/c relative to the crystal.
    ratio: Fraction = Fraction(0)

@dataclass
class ChannelState:
    # R divider exponent, output divided by 2**r_div.
    r_div: int = 0
    pll: PLL | None = None
    # Multisynth divider d + e/f, None until programmed.
    divider: Fraction | None = None

class FrequencyPlanner:
    crystal: int
    plls: dict[PLL, PLLState]
    channels: list[ChannelState]

    def __init__(self, crystal: int):
        self.crystal = crystal
        self.reset()

    def reset(self) -> None:
        self.plls = {pll: PLLState() for pll in PLL}
        self.channels = [ChannelState() for _ in range(CHANNELS)]

    def record_pll(self, pll: PLL, a: int, b: int, c: int) -> int:
        ratio = a + Fraction(b, c)
        # Integer floor of crystal * (a + b/c).
        freq = (self.crystal * (a * c + b)) // c
        self.plls[pll] = PLLState(True, freq, ratio)
        return freq

    def is_configured(self, pll: PLL) -> bool:
        return self.plls[pll].configured

    def require_configured(self, pll: PLL) -> None:
        if not self.plls[pll].configured:
            raise InvalidParameter(f'{pll} has not been configured')

    def pll_freq(self, pll: PLL) -> int:
        return self.plls[pll].freq

    def record_multisynth(self, channel: int, pll: PLL,
                          a: int, b: int, c: int) -> None:
        self.require_configured(pll)
        ch = self.channels[channel]
        ch.pll = pll
        ch.divider = a + Fraction(b, c)

    def record_r_divider(self, channel: int, exponent: int) -> None:
        assert 0 <= exponent <= 7
        self.channels[channel].r_div = exponent

    def last_r_divider(self, channel: int) -> int:
        return self.channels[channel].r_div

    def output_freq(self, channel: int) -> int | None:
        '''Output frequency in Hz (rounded down), or None if the channel has
        not been programmed.'''
        ch = self.channels[channel]
        if ch.pll is None or ch.divider is None:
            return None
        vco = self.plls[ch.pll].freq
        return int(vco / ch.divider) >> ch.r_div

def test_record_pll() -> None:
    p = FrequencyPlanner(25_000_000)
    assert p.record_pll(PLL.A, 36, 0, 1) == 900_000_000
    assert p.record_pll(PLL.B, 24, 2, 3) == 616_666_666
    assert p.plls[PLL.B].ratio == Fraction(74, 3)

def test_require_configured() -> None:
    p = FrequencyPlanner(25_000_000)
    for pll in PLL:
        try:
            p.require_configured(pll)
            assert False, 'Unconfigured PLL accepted'
        except InvalidParameter:
            pass
    p.record_pll(PLL.A, 20, 0, 1)
    p.require_configured(PLL.A)
    assert not p.is_configured(PLL.B)

def test_output_freq() -> None:
    p = FrequencyPlanner(25_000_000)
    assert p.output_freq(0) is None
    p.record_pll(PLL.A, 36, 0, 1)
    p.record_multisynth(0, PLL.A, 8, 0, 1)
    assert p.output_freq(0) == 112_500_000
    p.record_r_divider(0, 3)
    assert p.output_freq(0) == 112_500_000 >> 3

def test_reset() -> None:
    p = FrequencyPlanner(27_000_000)
    p.record_pll(PLL.A, 30, 0, 1)
    p.record_r_divider(2, 5)
    p.reset()
    assert not p.is_configured(PLL.A)
    assert p.last_r_divider(2) == 0
