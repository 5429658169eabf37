"""
Supabase client configuration.

The anon client verifies user tokens; the service-role client writes the
segments, email templates and flows created by the flow compiler.
"""

import os
from supabase import create_client, Client
from dotenv import load_dotenv

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")
SUPABASE_KEY = os.getenv("SUPABASE_KEY")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY")

# Tables written by a compilation, one row per segment/template/flow
SEGMENTS_TABLE = "segments"
EMAIL_TEMPLATES_TABLE = "email_templates"
FLOWS_TABLE = "flows"

_missing = [name for name, value in (("SUPABASE_URL", SUPABASE_URL), ("SUPABASE_KEY", SUPABASE_KEY)) if not value]
if _missing:
    raise ValueError(f"{' and '.join(_missing)} must be set in environment variables")

# Anon key + RLS, used for Auth lookups only
supabase: Client = create_client(SUPABASE_URL, SUPABASE_KEY)

# Service role (bypasses RLS) for flow storage; None without SUPABASE_SERVICE_KEY
supabase_admin: Client = create_client(SUPABASE_URL, SUPABASE_SERVICE_KEY) if SUPABASE_SERVICE_KEY else None
