"""SBOM store (trusted profile analyzer) provider."""

import logging
from abc import ABC, abstractmethod

from pydantic import BaseModel, ConfigDict, Field

from tssc.e2e_orchestrator.errors import NotFoundError, TransientError, UnauthorizedError
from tssc.e2e_orchestrator.http import HttpClient
from tssc.e2e_orchestrator.models.provider_config import TpaConfig
from tssc.e2e_orchestrator.retry import RetryPolicy, log_retry, retry_on_error

logger = logging.getLogger(__name__)

PAGE_SIZE = 100


class SbomComponent(BaseModel):
    """A component described by an SBOM."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    name: str = ""
    version: str = ""
    purl: list[str] = Field(default_factory=list)


class SbomRecord(BaseModel):
    """An SBOM document stored in the SBOM store."""

    model_config = ConfigDict(extra="ignore")

    id: str = ""
    document_id: str = ""
    name: str = ""
    published: str = ""
    sha256: str = ""
    described_by: list[SbomComponent] = Field(default_factory=list)


class SbomStore(ABC):
    """Lookup of SBOM documents uploaded by pipelines."""

    @abstractmethod
    async def search_sbom_by_name_and_doc_id(
        self, name: str, document_id: str
    ) -> SbomRecord | None:
        """Return the SBOM with ``name`` and ``document_id``, or None."""

    @abstractmethod
    async def search_sbom_by_sha256(self, sha256: str) -> SbomRecord | None:
        """Return the SBOM describing an image with digest ``sha256``, or None."""


class TpaClient(SbomStore):
    """SBOM store client authenticating with OIDC client credentials."""

    def __init__(
        self,
        config: TpaConfig,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize client with endpoints and OIDC client."""
        self.config = config
        self.retry_policy = retry_policy or RetryPolicy(
            max_retries=3, min_timeout=1, max_timeout=5, factor=2, jitter=True
        )
        self._http = HttpClient(config.bombastic_api_url, "tpa")
        self._oidc = HttpClient(config.oidc_issuer_url, "tpa-oidc")
        self._token = ""

    async def init_access_token(self) -> None:
        """Fetch a bearer token with the client credentials grant."""
        response = await self._oidc.request(
            "POST",
            "protocol/openid-connect/token",
            data={
                "client_id": self.config.oidc_client_id,
                "client_secret": self.config.oidc_client_secret,
                "grant_type": "client_credentials",
            },
        )
        body = response.json()
        token = body.get("access_token") if isinstance(body, dict) else None
        if not token:
            raise UnauthorizedError("Access token not found in OIDC token response")
        self._token = str(token)

    async def _get_page(self, name: str, offset: int) -> list[dict[str, object]]:
        if not self._token:
            await self.init_access_token()

        params = {"limit": str(PAGE_SIZE), "offset": str(offset)}
        if name:
            params["q"] = name
        try:
            response = await self._http.request(
                "GET",
                "api/v2/sbom",
                params=params,
                headers={"Authorization": f"Bearer {self._token}"},
            )
        except UnauthorizedError as e:
            logger.info("TPA token expired, refreshing")
            await self.init_access_token()
            raise TransientError("TPA token expired", status_code=401) from e

        body = response.json()
        items = body.get("items", []) if isinstance(body, dict) else []
        return items if isinstance(items, list) else []

    async def find_sboms_by_name(self, name: str) -> list[SbomRecord]:
        """Return every SBOM matching ``name``, newest first."""
        logger.info(f"Searching for SBOM with name: {name}")

        async def _search() -> list[SbomRecord]:
            items: list[dict[str, object]] = []
            offset = 0
            while True:
                try:
                    page = await self._get_page(name, offset)
                except NotFoundError:
                    return []
                items.extend(page)
                if len(page) < PAGE_SIZE:
                    break
                offset += PAGE_SIZE
            records = [SbomRecord.model_validate(item) for item in items]
            return sorted(records, key=lambda r: r.published, reverse=True)

        records = await retry_on_error(
            _search, self.retry_policy, log_retry(f"SBOM search for '{name}'")
        )
        logger.info(f"SBOM search for '{name}' found {len(records)} result(s)")
        return records

    async def search_sbom_by_name_and_doc_id(
        self, name: str, document_id: str
    ) -> SbomRecord | None:
        """Return the SBOM with ``name`` and ``document_id``, or None."""
        for record in await self.find_sboms_by_name(name):
            if record.document_id == document_id:
                return record
        logger.info(f"No SBOM found with name {name} and document ID {document_id}")
        return None

    async def search_sbom_by_sha256(self, sha256: str) -> SbomRecord | None:
        """Return the SBOM describing a component whose version holds ``sha256``."""
        if not sha256:
            raise ValueError("SHA256 cannot be empty")
        for record in await self.find_sboms_by_name(""):
            if any(sha256 in component.version for component in record.described_by):
                return record
        logger.info(f"No SBOM found with SHA256: {sha256}")
        return None
