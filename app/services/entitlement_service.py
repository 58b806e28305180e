import logging
from dataclasses import dataclass
from typing import Optional

import requests
from sqlmodel import Session

from app.config import settings
from app.services.access_grants import has_grant
from app.services.content_resolver import ContentReference
from app.services.errors import AccessStatusNotFound, EntitlementCheckFailed

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessCheck:
    has_access: bool
    # not owned yet but free: grant directly instead of opening a checkout
    free_acquisition: bool = False


class GrantStoreLookup:
    """Answers from the local Access Grant Store."""

    def __init__(self, session: Session):
        self.session = session

    def has_access(self, user_id: int, ref: ContentReference) -> bool:
        return has_grant(
            self.session, user_id, ref.content_type.value, ref.content_id
        )


class RemoteAccessLookup:
    """
    Answers from a remote ``/{type}/{id}/access-status`` endpoint.

    404 means the endpoint does not exist for this content type and is raised
    as AccessStatusNotFound. Network failures and 5xx become
    EntitlementCheckFailed.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        timeout: int = settings.GATEWAY_TIMEOUT_SECONDS,
        http: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self.http = http or requests.Session()

    def has_access(self, user_id: int, ref: ContentReference) -> bool:
        url = f"{self.base_url}/{ref.content_type.value}/{ref.content_id}/access-status"
        headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}

        try:
            response = self.http.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise EntitlementCheckFailed(f"Access status lookup failed: {e}")

        if response.status_code == 404:
            raise AccessStatusNotFound(f"No access-status endpoint at {url}")

        if response.status_code >= 400:
            raise EntitlementCheckFailed(
                f"Access status lookup returned {response.status_code}"
            )

        return bool(response.json().get("hasAccess"))


class EntitlementChecker:
    def __init__(self, lookup):
        self.lookup = lookup

    def check(self, user_id: Optional[int], ref: ContentReference) -> AccessCheck:
        # no grants exist for anonymous identities
        if user_id is None:
            return AccessCheck(has_access=False)

        try:
            granted = self.lookup.has_access(user_id, ref)
        except AccessStatusNotFound:
            logger.info(
                f"No access-status for {ref.content_type.value}/{ref.content_id}, "
                "falling back to checkout"
            )
            granted = False

        if granted:
            return AccessCheck(has_access=True)

        return AccessCheck(has_access=False, free_acquisition=ref.is_free)


def build_entitlement_checker(session: Session, token: Optional[str] = None) -> EntitlementChecker:
    if settings.ACCESS_STATUS_BASE_URL:
        return EntitlementChecker(RemoteAccessLookup(settings.ACCESS_STATUS_BASE_URL, token))
    return EntitlementChecker(GrantStoreLookup(session))
