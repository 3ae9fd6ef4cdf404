"""
Google service account credentials and API clients for Drive and Sheets.

The discovery clients are built once and shared; every request is executed
with its own AuthorizedHttp because httplib2 connections are not thread-safe
and calls run on the starlette thread pool.
"""

import logging
from typing import Any, Optional

import google_auth_httplib2
import httplib2
from google.auth.exceptions import GoogleAuthError
from google.oauth2 import service_account
from googleapiclient.discovery import build

from cosmocard.config import settings
from cosmocard.exceptions import UpstreamError

logger = logging.getLogger(__name__)

SCOPES = [
    "https://www.googleapis.com/auth/drive",
    "https://www.googleapis.com/auth/spreadsheets",
]

# Failures below the HTTP layer: timeouts, sockets, token refresh
TRANSPORT_ERRORS = (httplib2.HttpLib2Error, GoogleAuthError, OSError)


class GoogleClients:
    def __init__(self) -> None:
        self._credentials: Optional[service_account.Credentials] = None
        self._drive: Any = None
        self._sheets: Any = None

    @property
    def credentials(self) -> service_account.Credentials:
        if self._credentials is None:
            info = settings.service_account_info()
            if info is not None:
                self._credentials = service_account.Credentials.from_service_account_info(
                    info, scopes=SCOPES
                )
            elif settings.google_service_account_file:
                self._credentials = service_account.Credentials.from_service_account_file(
                    settings.google_service_account_file, scopes=SCOPES
                )
            else:
                raise UpstreamError(
                    service="google",
                    message="Google service account credentials are not configured",
                )
            logger.info(
                "Loaded Google service account %s",
                getattr(self._credentials, "service_account_email", "unknown"),
            )
        return self._credentials

    def authorized_http(self) -> google_auth_httplib2.AuthorizedHttp:
        return google_auth_httplib2.AuthorizedHttp(
            self.credentials, http=httplib2.Http(timeout=60)
        )

    @property
    def drive(self) -> Any:
        if self._drive is None:
            self._drive = build(
                "drive", "v3", credentials=self.credentials, cache_discovery=False
            )
        return self._drive

    @property
    def sheets(self) -> Any:
        if self._sheets is None:
            self._sheets = build(
                "sheets", "v4", credentials=self.credentials, cache_discovery=False
            )
        return self._sheets


google_clients = GoogleClients()
