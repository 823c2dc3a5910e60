"""Capabilities used by the stage agents.

``analysis`` holds pure decision functions. The other modules define abstract
services with simulated and LLM-backed implementations.
"""
