from .si5351 import FIELD_MAX

from fractions import Fraction
from typing import Tuple

# Frequencies are in Hz, as int or Fraction.
Hz = 1
kHz = 1000 * Hz
MHz = 1000 * kHz

def str_to_freq(s: str) -> Fraction:
    '''Parse e.g., "10MHz", "32.768k", "315/88" (MHz is the default unit).'''
    s = s.strip().lower()
    for suffix, scale in ('khz', kHz), ('mhz', MHz), ('ghz', 1000 * MHz), \
            ('hz', Hz):
        if s.endswith(suffix):
            break
        if suffix != 'hz' and s.endswith(suffix[0]):
            suffix = suffix[0]
            break
    else:
        suffix = ''
        scale = MHz

    return Fraction(s.removesuffix(suffix).strip()) * scale

FRACTIONS = {
    Fraction(0): '',
    Fraction(1, 3): '⅓',
    Fraction(2, 3): '⅔',
    Fraction(1, 6): '⅙',
    Fraction(5, 6): '⅚',
    Fraction(1, 7): '⅐',
    Fraction(1, 9): '⅑',
}

def freq_to_str(freq: Fraction | int, precision: int = 0) -> str:
    freq = Fraction(freq)
    if freq < 0:
        return '-' + freq_to_str(-freq, precision)
    if freq >= 1000 * MHz:
        scaled = freq / (1000 * MHz)
        suffix = 'GHz'
    elif freq >= MHz:
        scaled = freq / MHz
        suffix = 'MHz'
    elif freq >= kHz:
        scaled = freq / kHz
        suffix = 'kHz'
    else:
        scaled = freq / Hz
        suffix = 'Hz'

    fract = scaled % 1
    if fract in FRACTIONS:
        return f'{int(scaled)}{FRACTIONS[fract]} {suffix}'
    elif precision == 0:
        return f'{float(scaled)} {suffix}'
    else:
        return f'{float(scaled):.{precision}g} {suffix}'

def fraction_to_str(f: Fraction, paren: bool = True) -> str:
    if f.denominator == 1 or f < 1:
        return str(f)
    d = f.denominator
    i = f.numerator // d
    n = f.numerator % d
    if paren:
        return f'({i} + {n}/{d})'
    else:
        return f'{i} + {n}/{d}'

def split_ratio(f: Fraction) -> Tuple[int, int, int]:
    '''Split f into a + b/c with c limited to 20 bits.  The result is
    rounded to the nearest such fraction.'''
    f = Fraction(f).limit_denominator(FIELD_MAX)
    a = f.numerator // f.denominator
    b = f.numerator % f.denominator
    return a, b, f.denominator

def test_str_to_freq() -> None:
    assert str_to_freq('10') == 10 * MHz
    assert str_to_freq('32.768kHz') == 32768 * Hz
    assert str_to_freq('12.5M') == 12_500_000
    assert str_to_freq('315/88') == Fraction(315, 88) * MHz
    assert str_to_freq('1Hz') == 1

def test_freq_to_str() -> None:
    assert freq_to_str(112_500_000) == '112.5 MHz'
    assert freq_to_str(900 * MHz) == '900 MHz'
    assert freq_to_str(Fraction(25_000_000 * 74, 3)) == '616⅔ MHz'
    assert freq_to_str(Fraction(100, 3)) == '33⅓ Hz'
    assert freq_to_str(1_234_567, 4) == '1.235 MHz'

def test_split_ratio() -> None:
    assert split_ratio(Fraction(74, 3)) == (24, 2, 3)
    assert split_ratio(Fraction(36)) == (36, 0, 1)
    a, b, c = split_ratio(Fraction(1, 3 * FIELD_MAX) + 50)
    assert a == 50 and c <= FIELD_MAX
