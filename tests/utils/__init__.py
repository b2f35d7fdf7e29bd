"""
Test utilities for Luvio Chat.
"""
