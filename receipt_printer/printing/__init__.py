"""
Printing subsystem for Receipt Printer.

This package groups printing-related functionality:

- layout: Fixed-width text layout into aligned, emphasized segments
- commands: ESC/POS byte stream emission with minimal mode changes
- media: QR codes (bitmap or text) and Floyd-Steinberg dithered images
- render: Template -> RenderedPayload pipeline, plus the test page
- dispatch: Ordered delivery methods with per-attempt timeouts
- discovery: OS printer enumeration and selection
- jobs / worker: Job model, queue protocol and the background poller

For convenience, common functions are re-exported for easy import.
"""

from .layout import *
from .commands import *
from .media import *
from .render import *
from .dispatch import *
from .discovery import *
from .jobs import *
from .worker import *
