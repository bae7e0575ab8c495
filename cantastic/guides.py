"""Troubleshooting texts shown from the Troubleshooting menu."""

from typing import List, Tuple

CAN_EXPLAINED = """\
CAN (Controller Area Network) is a communication system
originally developed for vehicles, allowing microcontrollers
and devices to communicate with each other over a simple
two-wire twisted pair network. In 3D printing, CAN is used
to connect boards like toolheads and sensors using fewer wires
and enabling high-speed, reliable data transfer."""

WIRING = """\
CAN Bus uses a two-wire system: CAN High (CANH) and CAN Low (CANL).
These wires must be twisted together to reduce interference.
Devices are connected in a straight line (not a star topology).
The two ends of the CAN bus must be terminated with 120Ω resistors.

Example wiring:
  Pi/U2C ---> Toolhead board ---> Optional second device
  [120Ω]----CANH/CANL----[120Ω]"""

KLIPPER_SETUP = """\
To use CAN Bus in Klipper, connect a CAN-enabled board
like an EBB36 or SB2040 to your host (e.g., Raspberry Pi) using
a CAN adapter or a mainboard with built-in CAN support.

Steps overview:
1. Flash the toolhead board with Klipper firmware configured for CAN.
2. Set up the host CAN interface (usually can0) with the correct bitrate.
3. Use Klipper's canbus_query.py script to find the board's UUID.
4. Add a new [mcu] section in printer.cfg using that UUID.

The bitrate configured here must match the bitrate flashed to every MCU."""

COMMON_ISSUES = """\
Having issues getting Klipper to recognize your CAN-connected board?
Here are common problems and how to fix them:

Power Issues:
  - Ensure the toolhead board is powered (some need external 24V).

Bad or Missing Termination:
  - Make sure 120Ω resistors are placed at both ends of the CAN line.

Incorrect Bitrate:
  - Host and device must use the same CAN bitrate (e.g., 1000000).

UUID Not Found:
  - Run: ~/klipper/scripts/canbus_query.py can0
  - Nodes already assigned to a running Klipper do not answer.
  - If nothing appears, check wiring and power again.

Kernel Modules Missing:
  - Run: lsmod | grep can_raw
  - If missing, install can-utils: sudo apt install can-utils

More Than One Configuration Method:
  - Only one of Legacy, Esoterical or Gemini may be installed.
  - Reconfigure from the CAN Bus Configuration menu to clean up the others.

Klipper Config Errors:
  - Check printer.cfg for a correct [mcu] section with 'canbus_uuid:'."""

ABOUT = """\
CANtastic! helps you install, configure, and troubleshoot Klipper
CAN Bus setups. From can-utils to Klipper integration, it's all here.

Originally written by John Mallick for the 3D printing community.
Project page: https://github.com/JMallick1997/CANtastic"""

# (menu label, text) in menu order
GUIDES: List[Tuple[str, str]] = [
    ("CAN Bus Explained", CAN_EXPLAINED),
    ("CAN Bus Wiring Explained", WIRING),
    ("Setting up CAN Bus with Klipper", KLIPPER_SETUP),
    ("Troubleshooting Common CAN Bus Issues", COMMON_ISSUES),
    ("About CANtastic!", ABOUT),
]
