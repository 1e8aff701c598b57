"""
Authentication package for the GPT Toolkit Client.

This package contains the session manager, which owns the access/refresh token
pair and transparent token refresh, and secure storage for the refresh token.
"""
