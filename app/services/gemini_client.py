"""Gemini API client initialization with error handling.

This module provides a cached Gemini client for the application.
Uses the modern google-genai SDK (not google.generativeai).
"""

from functools import lru_cache

from google import genai

from app.config import get_settings


@lru_cache
def get_gemini_client() -> genai.Client:
    """Initialize and return a Gemini API client.

    The client reads the GEMINI_API_KEY from the application settings and is
    created once per process.

    Returns:
        genai.Client: Initialized Gemini client ready for API calls.

    Raises:
        ValueError: If GEMINI_API_KEY is not set in environment.

    Example:
        >>> client = get_gemini_client()
        >>> response = await client.aio.models.generate_content(
        ...     model="gemini-2.5-flash",
        ...     contents="Olá"
        ... )
    """
    settings = get_settings()

    # Settings validation only requires the key for the Gemini backends
    if not settings.gemini_api_key:
        raise ValueError(
            "GEMINI_API_KEY not set in environment. "
            "Please set this variable in your .env file or environment."
        )

    return genai.Client(api_key=settings.gemini_api_key)
