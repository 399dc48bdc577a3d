from __future__ import annotations

import uuid
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from quietstats.core.errors import SiteNotFoundError, ValidationError
from quietstats.core.privacy.crypto import FieldCipher
from quietstats.core.privacy.sanitizer import sanitize_text
from quietstats.core.storage.models import Site
from quietstats.core.storage.repository import SiteRepository


class SiteService:
    """
    Site registration and settings.

    The api key is a random uuid stored only as a ciphertext token; the
    plaintext is handed back once, at registration time.
    """

    def __init__(self, *, sites: SiteRepository, cipher: FieldCipher, default_retention_days: int = 30, logger: Any = None):
        self.sites = sites
        self.cipher = cipher
        self.default_retention_days = int(default_retention_days)
        self.logger = logger

    def register(
        self,
        *,
        site_id: str,
        name: str,
        domain: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        retention_days: Optional[int] = None,
    ) -> Site:
        sid = sanitize_text(site_id)
        if not sid:
            raise ValidationError("Site ID is required", field="siteId")
        clean_name = sanitize_text(name)
        if not clean_name:
            raise ValidationError("Site name is required", field="name")
        try:
            site = Site(
                site_id=sid,
                name=clean_name,
                domain=(sanitize_text(domain, max_length=255) or None) if domain else None,
                settings=dict(settings or {}),
                api_key=self.cipher.encrypt(str(uuid.uuid4())),
                retention_days=int(retention_days or self.default_retention_days),
            )
        except PydanticValidationError as e:
            raise ValidationError("Invalid site.", errors=str(e)) from e
        created = self.sites.create_site(site)
        if self.logger:
            self.logger.info(f"Site registered: {created.site_id}")
        return created

    def reveal_api_key(self, site: Site) -> str:
        return self.cipher.decrypt(site.api_key) or ""

    def require(self, site_id: str) -> Site:
        site = self.sites.get_site(site_id)
        if site is None:
            raise SiteNotFoundError("Site not found", site_id=site_id)
        return site

    def get(self, site_id: str) -> Dict[str, Any]:
        return self.require(site_id).public()

    def update(self, site_id: str, changes: Dict[str, Any]) -> Site:
        patch: Dict[str, Any] = {}
        if changes.get("name") is not None:
            patch["name"] = sanitize_text(changes["name"])
        if "domain" in changes:
            patch["domain"] = (sanitize_text(changes["domain"], max_length=255) or None) if changes["domain"] else None
        if changes.get("settings") is not None:
            patch["settings"] = dict(changes["settings"])
        if changes.get("retention_days") is not None:
            patch["retention_days"] = int(changes["retention_days"])
        try:
            updated = self.sites.update_site(site_id, patch)
        except PydanticValidationError as e:
            raise ValidationError("Invalid site settings.", errors=str(e)) from e
        if self.logger:
            self.logger.info(f"Site updated: {site_id} ({', '.join(sorted(patch)) or 'no changes'})")
        return updated

    @staticmethod
    def tracks_ip(site: Site) -> bool:
        return bool((site.settings or {}).get("trackIP", True))
