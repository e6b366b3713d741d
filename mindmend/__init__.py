"""MindMend: an empathetic chat backend with per-user conversation memory."""

__version__ = "0.4.0"
