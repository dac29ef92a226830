"""Core components for opportunistic routing simulation.

This module contains the fundamental classes and functions for ExOR simulation,
including ExORPacket, Link, Node, and ExORSimulator classes.
"""
