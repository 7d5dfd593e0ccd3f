"""
HTTP client for the Civitai REST API
"""

from dataclasses import dataclass, field
from logging import getLogger
from typing import Optional

import requests
from django.conf import settings
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from civicache.logging import CrawlerLogger
from civicache.serializers import (
    CreatorProfileSerializer,
    ModelSerializer,
    ModelVersionSerializer,
    PageSerializer,
)
from civicache.utils.url import build_url

from .exceptions import QueryFetchError, TransientQueryFetchError

logger = getLogger(__name__)
structured_logger = CrawlerLogger.get_logger(__name__)

RETRY_STATUS_CODES = (429, 500, 502, 503, 504)

#: Listing entries searched for an exact username match
CREATOR_SEARCH_LIMIT = 20


class QuadraticRetry(Retry):
    """
    urllib3 retry policy which waits attempt² × backoff_factor seconds between
    attempts instead of growing exponentially
    """

    def get_backoff_time(self):
        consecutive_errors = len(self.history)
        if consecutive_errors == 0:
            return 0
        return min(
            self.DEFAULT_BACKOFF_MAX, self.backoff_factor * consecutive_errors**2
        )


def requests_retry_session(retries, backoff_factor, session=None):
    session = session or requests.Session()
    retry = QuadraticRetry(
        total=retries,
        read=retries,
        connect=retries,
        status=retries,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=frozenset(["GET"]),
        raise_on_status=False,
    )
    adapter = HTTPAdapter(max_retries=retry)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    return session


@dataclass
class Page:
    """
    One page of a listing: the raw items and the cursor of the next page
    """

    items: list
    next_cursor: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    url: Optional[str] = None

    def __len__(self):
        return len(self.items)


class CivitaiClient:
    def __init__(
        self,
        base_url=None,
        api_key=None,
        timeout=None,
        max_retries=None,
        backoff_factor=None,
        session=None,
    ):
        self.base_url = base_url or settings.CIVITAI_API_BASE_URL
        self.api_key = api_key if api_key is not None else settings.CIVITAI_API_KEY
        self.timeout = timeout or settings.CIVITAI_REQUEST_TIMEOUT
        self.session = requests_retry_session(
            retries=(
                max_retries
                if max_retries is not None
                else settings.CIVITAI_MAX_RETRIES
            ),
            backoff_factor=(
                backoff_factor
                if backoff_factor is not None
                else settings.CIVITAI_RETRY_BACKOFF
            ),
            session=session,
        )
        self.session.headers["User-Agent"] = settings.CIVITAI_USER_AGENT
        if self.api_key:
            self.session.headers["Authorization"] = f"Bearer {self.api_key}"

    def build_url(self, path_segments, params=None):
        return build_url(self.base_url, path_segments, params)

    def get_json(self, url):
        """
        GET a URL and return its decoded JSON body, raising QueryFetchError
        for anything other than a 2xx JSON response
        """

        logger.debug("Requesting %s", url)
        resp = self.session.get(url, timeout=self.timeout)

        if not resp.ok:
            try:
                body = resp.json()
            except ValueError:
                body = resp.text
            structured_logger.warning(
                "Civitai API returned an error response.",
                event_code="civitai_request_failed",
                reason=f"HTTP {resp.status_code}",
                reason_code="http_error",
                url=url,
                status_code=resp.status_code,
            )
            error_class = (
                TransientQueryFetchError
                if resp.status_code in RETRY_STATUS_CODES or resp.status_code >= 500
                else QueryFetchError
            )
            raise error_class(
                f"HTTP {resp.status_code} from {url}",
                status_code=resp.status_code,
                body=body,
                url=url,
            )

        try:
            return resp.json()
        except ValueError as exc:
            raise QueryFetchError(
                f"Response from {url} was not valid JSON: {exc}",
                status_code=resp.status_code,
                body=resp.text,
                url=url,
            ) from exc

    def _validate(self, serializer_class, data, url):
        serializer = serializer_class(data=data)
        if not serializer.is_valid():
            raise QueryFetchError(
                f"Unexpected response shape from {url}",
                body=data,
                errors=serializer.errors,
                url=url,
            )
        return serializer.validated_data

    def fetch_url(self, url):
        data = self._validate(PageSerializer, self.get_json(url), url)

        metadata = dict(data["metadata"])
        next_cursor = metadata.get("nextCursor") or None

        structured_logger.debug(
            "Fetched a page from the Civitai API.",
            event_code="civitai_page_fetched",
            url=url,
            item_count=len(data["items"]),
            next_cursor=next_cursor,
        )
        return Page(data["items"], next_cursor=next_cursor, metadata=metadata, url=url)

    def fetch(self, path, params=None):
        """
        Fetch one page of a listing endpoint, e.g. `fetch("images", {...})`
        """

        if isinstance(path, str):
            path = [path]
        return self.fetch_url(self.build_url(path, params))

    def _get_entity(self, path_segments, serializer_class):
        url = self.build_url(path_segments)
        data = self.get_json(url)
        self._validate(serializer_class, data, url)
        # Callers store the payload verbatim so we return it rather than the
        # validated copy
        return data, url

    def get_model(self, model_id):
        return self._get_entity(["models", model_id], ModelSerializer)

    def get_model_version(self, version_id):
        return self._get_entity(["model-versions", version_id], ModelVersionSerializer)

    def get_model_version_by_hash(self, file_hash):
        return self._get_entity(
            ["model-versions", "by-hash", file_hash], ModelVersionSerializer
        )

    def find_creator(self, username):
        """
        Search the /creators listing for `username`. Returns the entry whose
        username matches ignoring case and the URL searched, or None in place
        of the entry when nothing matches exactly.
        """

        url = self.build_url(
            ["creators"], {"query": username, "limit": CREATOR_SEARCH_LIMIT}
        )
        data = self.get_json(url)
        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            raise QueryFetchError(
                f"Unexpected response shape from {url}", body=data, url=url
            )

        for item in items:
            if not isinstance(item, dict):
                continue
            if str(item.get("username") or "").lower() == username.lower():
                self._validate(CreatorProfileSerializer, item, url)
                return item, url
        return None, url
