"""httpx clients for the external systems a tenant stack is built on."""

from .elevenlabs_client import ElevenLabsClient
from .github_client import GitHubClient
from .site_config_client import SiteConfigClient
from .stripe_client import StripeClient
from .supabase_management import SupabaseManagementClient
from .vercel_client import VercelClient

__all__ = [
    "ElevenLabsClient",
    "GitHubClient",
    "SiteConfigClient",
    "StripeClient",
    "SupabaseManagementClient",
    "VercelClient",
]
