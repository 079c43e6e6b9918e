"""OAuth credential loading shared by the Gmail and Drive clients."""

from typing import Optional

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials

from finsync.config.settings import GmailConfig, settings
from finsync.utils.logging import get_logger

logger = get_logger(__name__)

# One token covers both APIs (same user)
SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/drive.file",
]


def load_credentials(config: Optional[GmailConfig] = None) -> Credentials:
    """
    Load the stored OAuth token, refreshing it when expired.

    Args:
        config: Gmail config holding the client secrets and token paths

    Raises:
        RuntimeError: No usable token exists or the refresh failed
    """
    config = config or settings.gmail
    creds: Optional[Credentials] = None

    if config.token_path.exists():
        creds = Credentials.from_authorized_user_file(str(config.token_path), SCOPES)

    if creds and creds.valid:
        return creds

    if not (creds and creds.expired and creds.refresh_token):
        # Cannot run browser-based OAuth in headless environment
        raise RuntimeError(
            "Google token not found or invalid. Generate it on a machine with a browser "
            f"using the client secrets in {config.credentials_path}, then copy it to "
            f"{config.token_path}."
        )

    try:
        creds.refresh(Request())
        logger.info("Google token refreshed")
    except Exception as e:
        logger.error("Failed to refresh Google token", error=str(e))
        raise RuntimeError(
            f"Google token refresh failed. Please sign in again to regenerate {config.token_path}."
        ) from e

    # Save refreshed token
    config.token_path.parent.mkdir(parents=True, exist_ok=True)
    config.token_path.write_text(creds.to_json())
    return creds
