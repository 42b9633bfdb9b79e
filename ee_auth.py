import json
import logging
from collections.abc import Mapping

import ee
import google.oauth2.credentials
import google.oauth2.service_account as sa
from google.auth.transport.requests import Request

logger = logging.getLogger(__name__)

EE_SCOPES = ["https://www.googleapis.com/auth/earthengine"]
TOKEN_URI = "https://oauth2.googleapis.com/token"


class CredentialsError(ValueError):
    """EARTHENGINE_TOKEN could not be turned into Google credentials."""


def load_credentials(token_raw):
    """Build credentials from a service-account or OAuth2 user token (JSON or mapping)."""
    creds_dict = token_raw
    if isinstance(token_raw, str):
        try:
            creds_dict = json.loads(token_raw)
        except json.JSONDecodeError as e:
            raise CredentialsError(f"Could not parse EARTHENGINE_TOKEN as JSON: {e}") from e

    if not isinstance(creds_dict, Mapping):
        raise CredentialsError("EARTHENGINE_TOKEN must be a JSON object.")
    creds_dict = dict(creds_dict)

    # Service account: has 'client_email' and 'private_key'
    if "client_email" in creds_dict and "private_key" in creds_dict:
        logger.info("Using service account %s", creds_dict["client_email"])
        return sa.Credentials.from_service_account_info(creds_dict, scopes=EE_SCOPES)

    # OAuth2 user credentials: has 'refresh_token' and 'client_id'
    if "refresh_token" in creds_dict:
        credentials = google.oauth2.credentials.Credentials(
            token=creds_dict.get("token"),
            refresh_token=creds_dict["refresh_token"],
            token_uri=creds_dict.get("token_uri", TOKEN_URI),
            client_id=creds_dict.get("client_id"),
            client_secret=creds_dict.get("client_secret"),
            scopes=creds_dict.get("scopes", EE_SCOPES),
        )
        if credentials.expired or not credentials.valid:
            logger.info("Refreshing OAuth2 user token")
            credentials.refresh(Request())
        return credentials

    raise CredentialsError("EARTHENGINE_TOKEN is not a recognised credential format.")


def initialize(token_raw=None, project=None):
    """Initialize Earth Engine, falling back to local default credentials without a token."""
    if not token_raw:
        logger.info("No EARTHENGINE_TOKEN configured, using default credentials")
        ee.Initialize(project=project)
        return

    ee.Initialize(load_credentials(token_raw), project=project)
