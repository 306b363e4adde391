"""Concrete transports for the Timer engines."""
