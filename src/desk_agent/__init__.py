"""
desk-agent - tool-using LLM agent loop for OpenAI-compatible APIs.
"""

__version__ = "0.1.0"
