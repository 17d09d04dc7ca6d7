"""Core components for bootstrap automation.

This module contains the foundational components including AWS client
management and configuration handling.
"""
