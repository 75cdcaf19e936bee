"""Concrete model adapters."""

from .openai import OpenAIChatModel

__all__ = ["OpenAIChatModel"]
