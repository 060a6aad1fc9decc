'''Byte level register access to the Si5351.

Anything providing read_byte, write_byte and write_burst will do.  A burst
write auto-increments the register address for each byte.  Bus failures are
raised as TransportError, nothing is retried here.'''

from __future__ import annotations

from .si5351 import ADDRESS, TransportError

from typing import Iterable, Protocol, Tuple
from smbus2 import SMBus
from usb.core import Device as USBDevice, USBError # pyright: ignore

class Transport(Protocol):
    def read_byte(self, register: int) -> int: ...
    def write_byte(self, register: int, value: int) -> None: ...
    def write_burst(self, register: int, data: bytes | bytearray) -> None: ...

Transaction = Tuple[str, int, bytes]

class RegisterFile:
    '''An in-memory chip image.  Every transaction is appended to log as
    (op, register, bytes).  For testing, every transaction from index
    fail_after on (counting from zero) fails, as does any access to a
    register in fail_registers.'''
    data: bytearray
    log: list[Transaction]
    fail_after: int | None
    fail_registers: set[int]

    def __init__(self, data: bytes | bytearray | None = None,
                 fail_after: int | None = None,
                 fail_registers: Iterable[int] = ()):
        self.data = bytearray(256)
        if data is not None:
            self.data[:len(data)] = data
        self.log = []
        self.fail_after = fail_after
        self.fail_registers = set(fail_registers)

    def check(self, op: str, register: int, length: int = 1) -> None:
        if not (0 <= register and register + length <= len(self.data)):
            raise TransportError(f'{op} R{register} x {length} out of range')
        if self.fail_after is not None and len(self.log) >= self.fail_after:
            raise TransportError(f'{op} R{register} failed')
        if any(r in self.fail_registers
               for r in range(register, register + length)):
            raise TransportError(f'{op} R{register} failed')

    def read_byte(self, register: int) -> int:
        self.check('read', register)
        value = self.data[register]
        self.log.append(('read', register, bytes((value,))))
        return value

    def write_byte(self, register: int, value: int) -> None:
        assert 0 <= value <= 255
        self.check('write', register)
        self.data[register] = value
        self.log.append(('write', register, bytes((value,))))

    def write_burst(self, register: int, data: bytes | bytearray) -> None:
        self.check('burst', register, len(data))
        self.data[register : register + len(data)] = data
        self.log.append(('burst', register, bytes(data)))

    def writes(self) -> list[Tuple[int, int]]:
        '''Every register written, in order, bursts expanded.'''
        result: list[Tuple[int, int]] = []
        for op, register, data in self.log:
            if op != 'read':
                result.extend(enumerate(data, register))
        return result

class SMBusTransport:
    '''Linux i2c-dev access, e.g., SMBusTransport(SMBus(1)).'''
    bus: SMBus
    address: int

    def __init__(self, bus: SMBus | int, address: int = ADDRESS):
        self.bus = SMBus(bus) if isinstance(bus, int) else bus
        self.address = address

    def read_byte(self, register: int) -> int:
        try:
            return self.bus.read_byte_data(self.address, register)
        except OSError as e:
            raise TransportError(f'I2C read of R{register} failed: {e}') from e

    def write_byte(self, register: int, value: int) -> None:
        try:
            self.bus.write_byte_data(self.address, register, value)
        except OSError as e:
            raise TransportError(f'I2C write of R{register} failed: {e}') from e

    def write_burst(self, register: int, data: bytes | bytearray) -> None:
        # SMBus block writes are limited to 32 bytes.
        assert len(data) <= 32
        try:
            self.bus.write_i2c_block_data(self.address, register, list(data))
        except OSError as e:
            raise TransportError(
                f'I2C burst write at R{register} failed: {e}') from e

    def close(self) -> None:
        self.bus.close()


# i2c-tiny-usb adapters: (idVendor, idProduct).
TINY_USB_IDS = ((0x0403, 0xc631), (0x1c40, 0x0534))

# Vendor requests to the interface, host to device and device to host.
REQUEST_OUT = 0x41
REQUEST_IN = 0xc1

CMD_GET_STATUS = 3
CMD_I2C_IO = 4
CMD_I2C_IO_BEGIN = 0x01
CMD_I2C_IO_END = 0x02

# wValue flag for a read message.
I2C_M_RD = 0x01

STATUS_IDLE = 0
STATUS_ADDRESS_ACK = 1
STATUS_ADDRESS_NAK = 2

class TinyUSBTransport:
    '''Si5351 access through an i2c-tiny-usb adapter, e.g.,

        TinyUSBTransport(usb.core.find(idVendor=0x0403, idProduct=0xc631))

    Each I2C message is one vendor control request (wValue the message
    flags, wIndex the slave address), followed by a status request to see
    whether the address was acknowledged.  A register read is a write of the
    register number followed by a read, with the repeated start between.'''
    dev: USBDevice
    address: int
    timeout: int

    def __init__(self, dev: USBDevice, address: int = ADDRESS,
                 timeout: int = 1000):
        self.dev = dev
        self.address = address
        self.timeout = timeout

    def status(self) -> int:
        return bytes(self.dev.ctrl_transfer( # pyright: ignore
            REQUEST_IN, CMD_GET_STATUS, 0, 0, 1, self.timeout))[0]

    def message(self, cmd: int, data: bytes | int) -> bytes:
        '''Send one I2C message.  data is the bytes to write, or the number
        of bytes to read.'''
        try:
            if isinstance(data, int):
                result = bytes(self.dev.ctrl_transfer( # pyright: ignore
                    REQUEST_IN, cmd, I2C_M_RD, self.address, data,
                    self.timeout))
            else:
                self.dev.ctrl_transfer( # pyright: ignore
                    REQUEST_OUT, cmd, 0, self.address, data, self.timeout)
                result = b''
            status = self.status()
        except USBError as e:
            raise TransportError(f'USB I2C transfer failed: {e}') from e
        if status == STATUS_ADDRESS_NAK:
            raise TransportError(f'No acknowledge from {self.address:#04x}')
        return result

    def read_byte(self, register: int) -> int:
        self.message(CMD_I2C_IO | CMD_I2C_IO_BEGIN, bytes((register,)))
        result = self.message(CMD_I2C_IO | CMD_I2C_IO_END, 1)
        if len(result) != 1:
            raise TransportError(f'Short read of R{register}')
        return result[0]

    def write_byte(self, register: int, value: int) -> None:
        self.write_burst(register, bytes((value,)))

    def write_burst(self, register: int, data: bytes | bytearray) -> None:
        self.message(CMD_I2C_IO | CMD_I2C_IO_BEGIN | CMD_I2C_IO_END,
                     bytes((register,)) + bytes(data))

class FakeTinyUSB:
    '''An i2c-tiny-usb adapter with a Si5351 RegisterFile behind it.'''
    chip: RegisterFile
    address: int
    pointer: int = 0
    last_status: int = STATUS_IDLE
    requests: list[Tuple[int, int, int, int, bytes | int]]
    fail: bool = False

    def __init__(self, chip: RegisterFile, address: int = ADDRESS):
        self.chip = chip
        self.address = address
        self.requests = []

    def ctrl_transfer(self, request_type: int, request: int, value: int,
                      index: int, data: bytes | int,
                      timeout: int) -> bytes | int:
        if self.fail:
            raise USBError('Pipe error')
        self.requests.append((request_type, request, value, index, data))
        if request == CMD_GET_STATUS:
            assert request_type == REQUEST_IN
            return bytes((self.last_status,))
        assert request & ~3 == CMD_I2C_IO
        if index != self.address:
            self.last_status = STATUS_ADDRESS_NAK
            return b'' if isinstance(data, int) else 0
        self.last_status = STATUS_ADDRESS_ACK
        if isinstance(data, int):
            assert request_type == REQUEST_IN and value == I2C_M_RD
            result = bytes(self.chip.data[self.pointer:self.pointer + data])
            self.pointer += data
            return result
        assert request_type == REQUEST_OUT and value == 0
        self.pointer = data[0]
        if len(data) > 1:
            self.chip.write_burst(data[0], data[1:])
        return len(data)

def test_register_file() -> None:
    rf = RegisterFile()
    rf.write_byte(3, 0xff)
    rf.write_burst(26, b'\x00\x01\x00\x0e\x00\x00\x00\x00')
    assert rf.read_byte(29) == 0x0e
    assert rf.writes()[:3] == [(3, 0xff), (26, 0), (27, 1)]
    assert [op for op, _, _ in rf.log] == ['write', 'burst', 'read']

def test_register_file_failure() -> None:
    rf = RegisterFile(fail_after=1)
    rf.write_byte(3, 0)
    try:
        rf.write_byte(3, 0xff)
        assert False, 'Injected failure did not happen'
    except TransportError:
        pass
    assert rf.data[3] == 0

    rf = RegisterFile(fail_registers=[44])
    try:
        rf.write_burst(42, bytes(8))
        assert False, 'Injected failure did not happen'
    except TransportError:
        pass
    assert rf.log == []

def test_tiny_usb_write() -> None:
    chip = RegisterFile()
    usb = FakeTinyUSB(chip)
    t = TinyUSBTransport(usb) # type: ignore
    t.write_byte(177, 0xac)
    t.write_burst(26, bytes(range(8)))
    assert usb.requests == [
        (REQUEST_OUT, 7, 0, 0x60, b'\xb1\xac'),
        (REQUEST_IN, CMD_GET_STATUS, 0, 0, 1),
        (REQUEST_OUT, 7, 0, 0x60, b'\x1a' + bytes(range(8))),
        (REQUEST_IN, CMD_GET_STATUS, 0, 0, 1)]
    assert chip.writes() == [(177, 0xac)] + list(enumerate(range(8), 26))

def test_tiny_usb_read() -> None:
    chip = RegisterFile(bytes((0x11, 0x22, 0x33)))
    usb = FakeTinyUSB(chip)
    t = TinyUSBTransport(usb) # type: ignore
    assert t.read_byte(2) == 0x33
    assert [r[:3] for r in usb.requests] == [
        (REQUEST_OUT, CMD_I2C_IO | CMD_I2C_IO_BEGIN, 0),
        (REQUEST_IN, CMD_GET_STATUS, 0),
        (REQUEST_IN, CMD_I2C_IO | CMD_I2C_IO_END, I2C_M_RD),
        (REQUEST_IN, CMD_GET_STATUS, 0)]

def test_tiny_usb_errors() -> None:
    usb = FakeTinyUSB(RegisterFile(), address=0x61)
    t = TinyUSBTransport(usb) # type: ignore
    for op in lambda: t.read_byte(0), lambda: t.write_byte(3, 0):
        try:
            op()
            assert False, 'NAK not reported'
        except TransportError:
            pass

    usb = FakeTinyUSB(RegisterFile())
    usb.fail = True
    try:
        TinyUSBTransport(usb).write_byte(3, 0) # type: ignore
        assert False, 'USB error not reported'
    except TransportError as e:
        assert isinstance(e.__cause__, USBError)

def test_smbus_errors() -> None:
    class Bus:
        def write_byte_data(self, address: int, register: int,
                            value: int) -> None:
            raise OSError(121, 'Remote I/O error')
    try:
        SMBusTransport(Bus(), 0x60).write_byte(3, 0) # type: ignore
        assert False, 'OSError not reported'
    except TransportError as e:
        assert 'R3' in str(e)
