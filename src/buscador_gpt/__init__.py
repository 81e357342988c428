"""Buscador GPT: corporate chat client for the Ingtec language-model endpoint."""

__version__ = "0.3.0"
