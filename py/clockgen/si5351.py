'''Si5351 register map, enumerations and errors.

Register numbers and bit positions are from the Si5351 datasheet and AN619.
Only the 3-output (Si5351A 10-MSOP) subset that we drive is described.'''

from dataclasses import dataclass
from enum import IntEnum

class Si5351Error(RuntimeError):
    pass

class DeviceNotFound(Si5351Error):
    pass

class DeviceNotInitialised(Si5351Error):
    pass

class InvalidParameter(Si5351Error):
    pass

class TransportError(Si5351Error):
    pass

# Default I2C address.
ADDRESS = 0x60

REG_DEVICE_STATUS = 0
REG_INTERRUPT_STATUS_STICKY = 1
REG_INTERRUPT_STATUS_MASK = 2
REG_OUTPUT_ENABLE_CONTROL = 3
REG_OEB_PIN_ENABLE_CONTROL = 9
REG_PLL_INPUT_SOURCE = 15

# CLK0..CLK7 control.  Only 0..2 are bonded out, but all eight get powered
# down at start-up.
REG_CLK_CONTROL = 16
CLK_CONTROL_COUNT = 8

REG_PLL_A = 26
REG_PLL_B = 34
PLL_BLOCK_SIZE = 8

REG_MULTISYNTH = (42, 50, 58)
MULTISYNTH_BLOCK_SIZE = 8
# Offset of the byte holding R_DIV, DIVBY4 and P1[17:16].
MULTISYNTH_PARAM3 = 2

REG_SPREAD_SPECTRUM = 149
REG_PLL_RESET = 177
REG_CRYSTAL_LOAD = 183

# Register 0.
STATUS_SYS_INIT = 0x80
STATUS_LOL_B = 0x40
STATUS_LOL_A = 0x20
STATUS_LOS = 0x10
STATUS_REVID = 0x03

# Clock control bits.
CLK_POWER_DOWN = 0x80
CLK_INTEGER_MODE = 0x40
CLK_PLL_B = 0x20
CLK_INVERT = 0x10
CLK_SRC_MULTISYNTH = 0x0c
CLK_DRIVE_8MA = 0x03

# 8mA, sourced from its own Multisynth, not inverted, powered up.
CLK_CONTROL_DEFAULT = CLK_SRC_MULTISYNTH | CLK_DRIVE_8MA

# Register 177.
PLL_RESET_A = 0x80
PLL_RESET_B = 0x20
# What ClockBuilder emits; the low nibble is reserved.
PLL_RESET_SOFT = 0xac

SPREAD_SPECTRUM_ENABLE = 0x80

OUTPUTS_ENABLED = 0x00
OUTPUTS_DISABLED = 0xff

# R_DIV sits at bits 6:4 of Multisynth parameter byte 3.
R_DIV_SHIFT = 4
R_DIV_MASK = 0x07 << R_DIV_SHIFT
# Bits kept when the R divider is rewritten: DIVBY4 and P1[17:16].
MS_PARAM3_KEEP = 0x0f

FIELD_MAX = 0xfffff

PLL_MULT_MIN = 15
PLL_MULT_MAX = 90
MS_DIV_MIN = 4
MS_DIV_MAX = 2048
MS_DIV_INTEGER = (4, 6, 8)

CHANNELS = 3

CRYSTAL_25MHZ = 25_000_000
CRYSTAL_27MHZ = 27_000_000

# Validated output window.  The >150MHz range needs DIVBY4 and the
# <500kHz range needs the R divider; the planner refuses both.
OUTPUT_MIN = 500_000
OUTPUT_MAX = 150_000_000
VCO_MIN = 600_000_000
VCO_MAX = 900_000_000

class PLL(IntEnum):
    A = 0
    B = 1

    def base(self) -> int:
        return PLL_BASE[self]

    def __str__(self) -> str:
        return f'PLL {self.name}'

PLL_BASE = {PLL.A: REG_PLL_A, PLL.B: REG_PLL_B}

class RDiv(IntEnum):
    '''R divider exponent: the output is divided by 2**value.'''
    DIV_1 = 0
    DIV_2 = 1
    DIV_4 = 2
    DIV_8 = 3
    DIV_16 = 4
    DIV_32 = 5
    DIV_64 = 6
    DIV_128 = 7

class CrystalLoad(IntEnum):
    PF6 = 1 << 6
    PF8 = 2 << 6
    PF10 = 3 << 6

@dataclass(frozen=True)
class CrystalReference:
    freq: int = CRYSTAL_25MHZ
    load: CrystalLoad = CrystalLoad.PF10
    ppm: int = 30

def clk_control_register(channel: int) -> int:
    return REG_CLK_CONTROL + channel

def multisynth_register(channel: int) -> int:
    return REG_MULTISYNTH[channel]

def r_div_register(channel: int) -> int:
    return REG_MULTISYNTH[channel] + MULTISYNTH_PARAM3

def test_register_map() -> None:
    assert PLL.A.base() == 26 and PLL.B.base() == 34
    assert [r_div_register(i) for i in range(CHANNELS)] == [44, 52, 60]
    assert [clk_control_register(i) for i in range(CHANNELS)] == [16, 17, 18]
    assert PLL_RESET_A | PLL_RESET_B == 0xa0
    assert CrystalLoad.PF10 == 0xc0
    assert CLK_CONTROL_DEFAULT == 0x0f
