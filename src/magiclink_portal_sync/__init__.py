"""Magic-link session acquisition and bookings extraction for a third-party portal."""

__version__ = "0.1.0"
