"""HITL Relay: question/answer relay between automated agents and a chat channel."""

__version__ = "0.1.0"
