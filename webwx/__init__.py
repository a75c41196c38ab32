"""
webwx - session core for a QR-login web chat bot.
"""

__version__ = "0.1.0"
__logo__ = "💬"
