"""Concrete adapters for the interfaces in :mod:`presales_core.interfaces`."""
