"""Typed client for the Cloudflare v4 control-plane API."""

import base64
import os
import time
from collections.abc import Callable
from types import TracebackType
from typing import Any, Literal, TypeVar

import httpx
from pydantic import BaseModel, ValidationError

from ..common.exceptions import (
    MissingIdentifierError,
    RateLimitedError,
    RemoteNotFoundError,
    RemoteValidationError,
    TransientRemoteError,
    UnauthorizedError,
)
from ..common.logging import get_logger
from .models import (
    AccessApplication,
    AccessPolicy,
    Account,
    DnsRecord,
    DnsRecordSpec,
    TunnelConfiguration,
    TunnelDescriptor,
    Zone,
)
from .retry import RetryPolicy, parse_retry_after

logger = get_logger(__name__)

BASE_URL = "https://api.cloudflare.com/client/v4"

# Error codes the API uses for rejected credentials inside 400 envelopes
AUTH_ERROR_CODES = frozenset({9103, 9106, 9109, 10000})

MAX_PAGES = 100

M = TypeVar("M", bound=BaseModel)


def _parse(model: type[M], data: Any, **extra: Any) -> M:
    """Validate an API result, reporting malformed payloads as RemoteValidationError."""
    if extra and isinstance(data, dict):
        data = {**data, **extra}
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise RemoteValidationError(
            f"Malformed {model.__name__} in API response ({e.error_count()} invalid fields)"
        ) from e


class RemoteStateClient:
    """CRUD façade over tunnels, DNS records and Access resources.

    Transient failures (429, 5xx, transport errors) are retried with
    exponential backoff. DELETE requests get exactly one attempt. Rejected
    credentials raise UnauthorizedError immediately.
    """

    def __init__(
        self,
        api_token: str,
        account_id: str | None,
        zone_id: str | None = None,
        base_url: str = BASE_URL,
        timeout: float = 30.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], None] = time.sleep,
        transport: httpx.BaseTransport | None = None,
    ):
        if not api_token or not api_token.strip():
            raise MissingIdentifierError("API token is required")

        self.account_id = account_id
        self.zone_id = zone_id
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._http = httpx.Client(
            base_url=base_url,
            headers={
                "Authorization": f"Bearer {api_token.strip()}",
                "Content-Type": "application/json",
            },
            timeout=timeout,
            transport=transport,
        )
        logger.debug(
            "RemoteStateClient initialized",
            base_url=base_url,
            account_id=account_id,
            zone_id=zone_id,
        )

    @classmethod
    def from_settings(cls, settings: Any, **kwargs: Any) -> "RemoteStateClient":
        """Build a client from ``Settings`` (token, account, zone, tunables)."""
        settings.require_api()
        kwargs.setdefault("timeout", settings.request_timeout)
        kwargs.setdefault(
            "retry_policy", RetryPolicy(max_attempts=settings.retry_attempts)
        )
        return cls(
            api_token=settings.api_token,
            account_id=settings.account_id,
            zone_id=settings.zone_id,
            **kwargs,
        )

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> "RemoteStateClient":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> Literal[False]:
        self.close()
        return False

    # -- identifiers --------------------------------------------------------

    @staticmethod
    def _require(value: str | None, name: str) -> str:
        if value is None or not str(value).strip():
            raise MissingIdentifierError(f"{name} is required")
        return str(value).strip()

    def _account(self) -> str:
        return self._require(self.account_id, "Account ID")

    def _zone(self, zone_id: str | None = None) -> str:
        return self._require(zone_id or self.zone_id, "Zone ID")

    # -- transport ----------------------------------------------------------

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        retry: bool = True,
    ) -> dict[str, Any]:
        """Send one logical request and return the decoded envelope.

        Raises:
            UnauthorizedError: On 401/403 or an authentication error envelope
            RateLimitedError: When 429 persists past the retry budget
            TransientRemoteError: When 5xx or transport errors persist
            RemoteNotFoundError: On 404
            RemoteValidationError: On other 4xx or an unsuccessful envelope
        """
        attempts = self.retry_policy.max_attempts if retry else 1
        attempt = 0
        while True:
            attempt += 1
            try:
                response = self._http.request(method, path, params=params, json=json)
            except (httpx.TransportError, httpx.DecodingError) as e:
                error: TransientRemoteError | RateLimitedError = TransientRemoteError(
                    f"{method} {path} failed: {e}"
                )
                retry_after = None
            else:
                status = response.status_code
                if status in (401, 403):
                    envelope = self._decode(response)
                    raise UnauthorizedError(
                        self._error_message(envelope, status),
                        status_code=status,
                        errors=envelope.get("errors"),
                    )
                if status == 429:
                    retry_after = parse_retry_after(response.headers.get("Retry-After"))
                    error = RateLimitedError(
                        f"{method} {path} rate limited",
                        retry_after=retry_after,
                        status_code=status,
                    )
                elif RetryPolicy.is_retryable_status(status):
                    retry_after = None
                    error = TransientRemoteError(
                        f"{method} {path} failed with HTTP {status}",
                        status_code=status,
                    )
                else:
                    return self._check_envelope(response, method, path)

            if attempt >= attempts:
                logger.error(
                    "Remote call failed",
                    method=method,
                    path=path,
                    attempts=attempt,
                    error=str(error),
                )
                raise error

            delay = self.retry_policy.delay_for(attempt, retry_after)
            logger.warning(
                "Retrying remote call",
                method=method,
                path=path,
                attempt=attempt,
                delay=round(delay, 3),
                error=str(error),
            )
            self._sleep(delay)

    @staticmethod
    def _decode(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _error_message(envelope: dict[str, Any], status: int) -> str:
        errors = envelope.get("errors") or []
        if errors and isinstance(errors[0], dict):
            first = errors[0]
            return f"Cloudflare API error: {first.get('message')} (code {first.get('code')})"
        return f"Cloudflare API error: HTTP {status}"

    def _check_envelope(
        self, response: httpx.Response, method: str, path: str
    ) -> dict[str, Any]:
        status = response.status_code
        envelope = self._decode(response)
        errors = envelope.get("errors") or []
        codes = {e.get("code") for e in errors if isinstance(e, dict)}

        if codes & AUTH_ERROR_CODES:
            raise UnauthorizedError(
                self._error_message(envelope, status), status_code=status, errors=errors
            )
        if status == 404:
            raise RemoteNotFoundError(
                self._error_message(envelope, status), status_code=status, errors=errors
            )
        if status >= 400 or not envelope.get("success", False):
            raise RemoteValidationError(
                self._error_message(envelope, status), status_code=status, errors=errors
            )

        logger.debug("Remote call succeeded", method=method, path=path, status=status)
        return envelope

    def _result(self, method: str, path: str, **kwargs: Any) -> Any:
        return self._request(method, path, **kwargs).get("result")

    def _paginate(
        self, path: str, params: dict[str, Any] | None = None, per_page: int = 100
    ) -> list[dict[str, Any]]:
        """Collect every page of a list endpoint into one list."""
        items: list[dict[str, Any]] = []
        page = 1
        while True:
            query = dict(params or {})
            query.update({"page": page, "per_page": per_page})
            envelope = self._request("GET", path, params=query)
            batch = envelope.get("result") or []
            items.extend(batch)

            info = envelope.get("result_info") or {}
            total_pages = info.get("total_pages")
            if not batch or total_pages is None or page >= total_pages:
                break
            if page >= MAX_PAGES:
                logger.warning(
                    "Listing truncated", path=path, pages=MAX_PAGES, total_pages=total_pages
                )
                break
            page += 1
        return items

    # -- account discovery --------------------------------------------------

    def verify_token(self) -> bool:
        """Return True if the token is active."""
        try:
            result = self._result("GET", "/user/tokens/verify")
        except UnauthorizedError:
            return False
        return bool(result) and result.get("status") == "active"

    def list_accounts(self) -> list[Account]:
        return [_parse(Account, a) for a in self._paginate("/accounts", per_page=50)]

    def list_zones(self) -> list[Zone]:
        return [_parse(Zone, z) for z in self._paginate("/zones", per_page=50)]

    # -- tunnels ------------------------------------------------------------

    def list_tunnels(self) -> list[TunnelDescriptor]:
        """List tunnels that have not been deleted."""
        path = f"/accounts/{self._account()}/cfd_tunnel"
        return [
            _parse(TunnelDescriptor, t, zone_id=self.zone_id)
            for t in self._paginate(path, params={"is_deleted": "false"}, per_page=50)
        ]

    def get_tunnel(self, tunnel_id: str) -> TunnelDescriptor:
        tunnel_id = self._require(tunnel_id, "Tunnel ID")
        result = self._result("GET", f"/accounts/{self._account()}/cfd_tunnel/{tunnel_id}")
        return _parse(TunnelDescriptor, result, zone_id=self.zone_id)

    def create_tunnel(self, name: str, secret: str | None = None) -> TunnelDescriptor:
        """Create a remotely managed tunnel with a random 32-byte secret."""
        name = self._require(name, "Tunnel name")
        secret = secret or base64.b64encode(os.urandom(32)).decode()
        result = self._result(
            "POST",
            f"/accounts/{self._account()}/cfd_tunnel",
            json={"name": name, "tunnel_secret": secret, "config_src": "cloudflare"},
        )
        tunnel = _parse(TunnelDescriptor, result, zone_id=self.zone_id)
        logger.info("Tunnel created", tunnel_id=tunnel.id, name=name)
        return tunnel

    def delete_tunnel(self, tunnel_id: str) -> None:
        tunnel_id = self._require(tunnel_id, "Tunnel ID")
        self._request(
            "DELETE",
            f"/accounts/{self._account()}/cfd_tunnel/{tunnel_id}",
            retry=False,
        )
        logger.info("Tunnel deleted", tunnel_id=tunnel_id)

    def get_tunnel_token(self, tunnel_id: str) -> str:
        tunnel_id = self._require(tunnel_id, "Tunnel ID")
        result = self._result(
            "GET", f"/accounts/{self._account()}/cfd_tunnel/{tunnel_id}/token"
        )
        if not isinstance(result, str) or not result:
            raise RemoteValidationError(f"Empty token for tunnel {tunnel_id}")
        return result

    def get_tunnel_configuration(self, tunnel_id: str) -> TunnelConfiguration:
        """Fetch the tunnel's remotely stored ingress rules (may be empty)."""
        tunnel_id = self._require(tunnel_id, "Tunnel ID")
        try:
            result = self._result(
                "GET",
                f"/accounts/{self._account()}/cfd_tunnel/{tunnel_id}/configurations",
            )
        except RemoteNotFoundError:
            # Locally managed tunnels have no stored configuration
            return TunnelConfiguration(tunnel_id=tunnel_id)
        if result is not None and not isinstance(result, dict):
            raise RemoteValidationError(f"Malformed configuration for tunnel {tunnel_id}")
        try:
            return TunnelConfiguration.from_result(tunnel_id, result)
        except ValidationError as e:
            raise RemoteValidationError(f"Malformed configuration for tunnel {tunnel_id}") from e

    def put_tunnel_configuration(
        self, tunnel_id: str, configuration: TunnelConfiguration
    ) -> TunnelConfiguration:
        tunnel_id = self._require(tunnel_id, "Tunnel ID")
        result = self._result(
            "PUT",
            f"/accounts/{self._account()}/cfd_tunnel/{tunnel_id}/configurations",
            json=configuration.to_payload(),
        )
        logger.info(
            "Tunnel configuration updated",
            tunnel_id=tunnel_id,
            rules=len(configuration.ingress),
        )
        return TunnelConfiguration.from_result(tunnel_id, result)

    # -- DNS ----------------------------------------------------------------

    def list_dns_records(
        self, zone_id: str | None = None, name: str | None = None
    ) -> list[DnsRecord]:
        params = {"name": name} if name else None
        path = f"/zones/{self._zone(zone_id)}/dns_records"
        return [_parse(DnsRecord, r) for r in self._paginate(path, params=params)]

    def create_dns_record(
        self, record: DnsRecordSpec, zone_id: str | None = None
    ) -> DnsRecord:
        result = self._result(
            "POST", f"/zones/{self._zone(zone_id)}/dns_records", json=record.to_payload()
        )
        logger.info("DNS record created", hostname=record.name, content=record.content)
        return _parse(DnsRecord, result)

    def update_dns_record(
        self, record_id: str, record: DnsRecordSpec, zone_id: str | None = None
    ) -> DnsRecord:
        record_id = self._require(record_id, "DNS record ID")
        result = self._result(
            "PUT",
            f"/zones/{self._zone(zone_id)}/dns_records/{record_id}",
            json=record.to_payload(),
        )
        logger.info("DNS record updated", hostname=record.name, content=record.content)
        return _parse(DnsRecord, result)

    def delete_dns_record(self, record_id: str, zone_id: str | None = None) -> None:
        record_id = self._require(record_id, "DNS record ID")
        self._request(
            "DELETE",
            f"/zones/{self._zone(zone_id)}/dns_records/{record_id}",
            retry=False,
        )
        logger.info("DNS record deleted", record_id=record_id)

    # -- Access -------------------------------------------------------------

    def list_access_apps(self) -> list[AccessApplication]:
        path = f"/accounts/{self._account()}/access/apps"
        return [_parse(AccessApplication, a) for a in self._paginate(path)]

    def create_access_app(self, app: AccessApplication) -> AccessApplication:
        result = self._result(
            "POST", f"/accounts/{self._account()}/access/apps", json=app.to_payload()
        )
        return _parse(AccessApplication, result)

    def delete_access_app(self, app_id: str) -> None:
        app_id = self._require(app_id, "Access application ID")
        self._request(
            "DELETE", f"/accounts/{self._account()}/access/apps/{app_id}", retry=False
        )

    def list_access_policies(self, app_id: str) -> list[AccessPolicy]:
        app_id = self._require(app_id, "Access application ID")
        path = f"/accounts/{self._account()}/access/apps/{app_id}/policies"
        return [_parse(AccessPolicy, p) for p in self._paginate(path)]

    def create_access_policy(self, app_id: str, policy: AccessPolicy) -> AccessPolicy:
        app_id = self._require(app_id, "Access application ID")
        result = self._result(
            "POST",
            f"/accounts/{self._account()}/access/apps/{app_id}/policies",
            json=policy.to_payload(),
        )
        return _parse(AccessPolicy, result)

