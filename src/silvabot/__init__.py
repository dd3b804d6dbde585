"""silvabot: plugin-driven WhatsApp automation bot."""

__version__ = "3.0.0"
