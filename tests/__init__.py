"""
Test suite for Luvio Chat.
"""
