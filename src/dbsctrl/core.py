"""
Core constants for BLE stimulation cap control.
"""

# Node GATT service (16-bit EEE0/EEE1/EEE2 expanded to the base UUID)
NODE_SERVICE_UUID = "0000eee0-0000-1000-8000-00805f9b34fb"
NODE_RX_UUID = "0000eee1-0000-1000-8000-00805f9b34fb"  # write
NODE_TX_UUID = "0000eee2-0000-1000-8000-00805f9b34fb"  # read / notify

# Characteristic length of the node firmware; legacy firmware never reports it
NODE_CHARACTERISTIC_LENGTH = 26

# Default control values
AMPLITUDE_DEFAULT = 0
FREQUENCY_DEFAULT = 130
CAP_ID_DEFAULT = 0

# Amplitude is handled in percent of scale; display shows current into 1 kOhm
AMPLITUDE_MIN = 0
AMPLITUDE_MAX = 100
AMPLITUDE_DISPLAY_FULL_SCALE_UA = 600

FREQUENCY_MIN = 80
FREQUENCY_MAX = 160

CAP_ID_MIN = 0
CAP_ID_MAX = 99

# Operator step sizes
AMPLITUDE_STEP = 1
FREQUENCY_STEP = 5
PULSE_STEP = 30

# Battery calibration (cell voltage at 0% and 100%)
BATTERY_EMPTY_MV = 1400
BATTERY_FULL_MV = 2800

# Seconds after connect / ingest during which value changes are not user edits
SETTLE_DELAY = 1.0

# Seconds to wait for a frame after a request
RECEIVE_TIMEOUT = 3.0

APP_NAME = "Creed DBS Control"

# Application metadata
__version__ = "0.1.0"
__description__ = "CLI and REPL interface for configuring BLE stimulation caps"
