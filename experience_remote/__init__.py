"""Experience Remote - phone-to-desktop remote control relay."""

__version__ = "0.3.0"
