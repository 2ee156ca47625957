"""
Board constants shared by the server and the grid view.
"""

GRID_SIZE = 1000          # cells per side
CELL_SIZE = 20            # world pixels per cell
REFERENCE_CELL_SIZE = 20  # cell size image crop offsets are expressed in

MIN_ZOOM = 0.05
MAX_ZOOM = 20.0
WHEEL_ZOOM_STEP = 0.1
BUTTON_ZOOM_FACTOR = 1.2
FOCUS_MIN_ZOOM = 2.0

PRICE_PER_CELL = 1.00     # BRL
CURRENCY = "BRL"

PAYMENT_WINDOW_SECONDS = 300
STATUS_POLL_SECONDS = 10.0
