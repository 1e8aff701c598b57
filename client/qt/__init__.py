"""
Qt integration for the GPT Toolkit Client.

This package republishes session changes as Qt signals for desktop UI code.
"""

from .session_bridge import SessionSignals

__all__ = ['SessionSignals']
