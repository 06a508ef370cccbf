"""
Supabase client for backend operations
"""
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from supabase import Client, create_client

load_dotenv()
load_dotenv('../.env')  # Also try parent directory

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None
_checked = False


def get_supabase_client() -> Optional[Client]:
    """
    Get or create the Supabase client singleton.

    Returns None when SUPABASE_URL / SUPABASE_SERVICE_KEY are not set; the coach
    services then keep their data in process memory.
    """
    global _supabase_client, _checked

    if not _checked:
        _checked = True
        url = os.getenv("SUPABASE_URL")
        # Service role key: the backend writes sessions and feedback logs
        key = os.getenv("SUPABASE_SERVICE_KEY")

        if not url or not key:
            logger.warning("⚠️ [Supabase] SUPABASE_URL/SUPABASE_SERVICE_KEY not set, using in-memory storage")
            return None

        _supabase_client = create_client(url, key)
        logger.info("✅ [Supabase] Client initialized")

    return _supabase_client
