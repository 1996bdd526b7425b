# services/store.py
"""
Document store adapters for the promo document.

Both adapters expose the same two calls:
  load(locator)                               -> (document, version_token | None)
  save(locator, document, version_token, msg) -> new version_token

A None token on save means "create"; a stale token raises ConflictError.
Nothing here retries: a conflict goes back to the caller untouched.
"""
import base64
import datetime
import json
import logging
from urllib.parse import quote

import requests
from mongoengine import connect
from mongoengine.errors import NotUniqueError, OperationError
from pymongo.errors import PyMongoError

from models.promo import default_document, normalize_document
from models.promo_store import PromoStore
from services.errors import ConflictError, StoreError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
USER_AGENT = "levpay-proxy"


class GitHubContentsStore:
    """JSON file in a GitHub repository, via the Contents API. Token = blob sha."""

    def __init__(self, owner, repo, branch, token, timeout=15.0, api_root=GITHUB_API):
        self.owner = owner
        self.repo = repo
        self.branch = branch
        self.token = token
        self.timeout = timeout
        self.api_root = api_root.rstrip("/")

    def _require(self):
        missing = []
        if not self.owner:
            missing.append("GH_OWNER")
        if not self.repo:
            missing.append("GH_REPO")
        if not self.branch:
            missing.append("GH_BRANCH")
        if not self.token:
            missing.append("GH_TOKEN")
        if missing:
            raise StoreError("Missing env: " + ", ".join(missing))

    def _headers(self):
        return {
            "Authorization": f"Bearer {self.token}",
            "User-Agent": USER_AGENT,
            "Accept": "application/vnd.github+json",
        }

    def _url(self, locator):
        path = quote(str(locator).lstrip("/"), safe="/")
        return f"{self.api_root}/repos/{self.owner}/{self.repo}/contents/{path}"

    def load(self, locator):
        self._require()
        try:
            resp = requests.get(
                self._url(locator),
                params={"ref": self.branch},
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StoreError(f"GitHub load failed: {e}") from e

        if resp.status_code == 404:
            logger.info("Promo document %s not found, starting from defaults", locator)
            return default_document(), None
        if not resp.ok:
            raise StoreError(f"GitHub load failed: HTTP {resp.status_code} {resp.text[:500]}")

        try:
            payload = resp.json()
        except ValueError as e:
            raise StoreError("GitHub load failed: response is not JSON") from e

        sha = payload.get("sha")
        try:
            raw = json.loads(base64.b64decode(payload.get("content") or "").decode("utf-8"))
        except ValueError:
            # keep the sha so the next save replaces the broken file
            logger.warning("Promo document %s is not valid JSON, using defaults", locator)
            raw = None
        return normalize_document(raw), sha

    def save(self, locator, document, version_token=None, message=None):
        self._require()
        text = json.dumps(document, indent=2, ensure_ascii=False)
        body = {
            "message": message or f"levpay: update {locator}",
            "content": base64.b64encode(text.encode("utf-8")).decode("ascii"),
            "branch": self.branch,
        }
        if version_token:
            body["sha"] = version_token

        try:
            resp = requests.put(
                self._url(locator),
                json=body,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise StoreError(f"GitHub save failed: {e}") from e

        # 409: sha no longer matches; 422 without sha: file was created meanwhile
        if resp.status_code == 409 or (resp.status_code == 422 and not version_token):
            logger.warning("Promo document %s changed since it was loaded", locator)
            raise ConflictError(f"GitHub save conflict: HTTP {resp.status_code}")
        if not resp.ok:
            raise StoreError(f"GitHub save failed: HTTP {resp.status_code} {resp.text[:500]}")

        try:
            payload = resp.json()
        except ValueError:
            payload = {}
        return (payload.get("content") or {}).get("sha")


class MongoDocumentStore:
    """Promo document kept in the promo_store collection. Token = revision number."""

    def load(self, locator):
        try:
            record = PromoStore.objects(locator=locator).first()
        except (OperationError, PyMongoError) as e:
            raise StoreError(f"Mongo load failed: {e}") from e

        if not record:
            logger.info("Promo document %s not found, starting from defaults", locator)
            return default_document(), None

        try:
            raw = json.loads(record.body)
        except ValueError:
            logger.warning("Promo document %s is not valid JSON, using defaults", locator)
            raw = None
        return normalize_document(raw), str(record.version)

    def save(self, locator, document, version_token=None, message=None):
        body = json.dumps(document, ensure_ascii=False)
        now = datetime.datetime.utcnow()
        if message:
            logger.debug("Saving %s: %s", locator, message)

        try:
            if version_token is None:
                try:
                    record = PromoStore(
                        locator=locator, body=body, version=1, updated_at=now
                    ).save(force_insert=True)
                except NotUniqueError as e:
                    raise ConflictError(f"Promo document {locator} already exists") from e
                return str(record.version)

            try:
                expected = int(version_token)
            except (TypeError, ValueError) as e:
                raise ConflictError(f"Invalid version token {version_token!r}") from e

            # conditional update: matches only if nobody saved since our load
            record = PromoStore.objects(locator=locator, version=expected).modify(
                set__body=body,
                inc__version=1,
                set__updated_at=now,
                new=True,
            )
        except (OperationError, PyMongoError) as e:
            raise StoreError(f"Mongo save failed: {e}") from e

        if record is None:
            logger.warning("Promo document %s changed since it was loaded", locator)
            raise ConflictError(f"Promo document {locator} changed since version {version_token}")
        return str(record.version)


def build_store(config):
    if config.store_backend == "mongo":
        connect(host=config.mongo_uri)
        return MongoDocumentStore()
    return GitHubContentsStore(
        owner=config.gh_owner,
        repo=config.gh_repo,
        branch=config.gh_branch,
        token=config.gh_token,
        timeout=config.store_timeout,
    )
