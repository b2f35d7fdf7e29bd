"""
Test fixtures for Luvio Chat.
"""
