"""VPS Control - authenticated control panel backend for PM2 and fail2ban."""

__version__ = "1.0.0"
