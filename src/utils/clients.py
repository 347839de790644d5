"""Client initialization utilities.

Provides functions for initializing external service clients
(Supabase, OpenAI-compatible classifier) shared by the API and the CLI.
"""

import os

from openai import AsyncOpenAI
from supabase import Client, create_client


def get_supabase_client() -> Client:
    """Create a Supabase client from environment variables.

    Reads:
    - SUPABASE_URL: Supabase project URL
    - SUPABASE_SERVICE_KEY: Supabase service role key

    Returns:
        Supabase client.

    Raises:
        ValueError: If required environment variables are missing.
    """
    supabase_url = os.getenv("SUPABASE_URL")
    supabase_key = os.getenv("SUPABASE_SERVICE_KEY")

    if not supabase_url or not supabase_key:
        raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY environment variables are required")

    return create_client(supabase_url, supabase_key)


def get_service_clients() -> tuple[AsyncOpenAI, Client]:
    """Initialize and return the classifier and Supabase clients.

    Reads configuration from environment variables:
    - CLASSIFIER_BASE_URL: OpenAI-compatible API base URL
    - CLASSIFIER_API_KEY: API key for the content classifier
    - SUPABASE_URL / SUPABASE_SERVICE_KEY: see get_supabase_client()

    Returns:
        Tuple of (AsyncOpenAI classifier client, Supabase client).

    Raises:
        ValueError: If required environment variables are missing.

    Examples:
        >>> classifier_client, supabase = get_service_clients()
    """
    base_url = os.getenv("CLASSIFIER_BASE_URL", "https://api.openai.com/v1")
    api_key = os.getenv("CLASSIFIER_API_KEY")

    if not api_key:
        raise ValueError("CLASSIFIER_API_KEY environment variable is required")

    classifier_client = AsyncOpenAI(base_url=base_url, api_key=api_key)

    return classifier_client, get_supabase_client()
