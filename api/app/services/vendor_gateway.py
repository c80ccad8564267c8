from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Literal, Mapping, Sequence

import requests

from ..config import DEFAULT_VENDOR_BASE_URL
from ..models import VendorCredentials


logger = logging.getLogger("branchwatch.gateway")


# Fixed portal request markers.
CLIENT_SOURCE_HEADER = "clientSource"
CLIENT_SOURCE = "hcc-web"
USER_AGENT = "Mozilla/5.0 (BranchWatch device monitor) HikCentralConnect/1.0"
DEFAULT_TIMEOUT_S = 30.0

TOKEN_PATH = "/api/hccgw/platform/v1/token/get"
TICKET_LOGIN_PATH = "/hcc/auth/security/v1/ticket/login"
DEVICES_BY_SERIAL_PATH = "/api/hccgw/resource/v1/devices/get"

# Used when the portal omits an expiry; forces a re-login well before most sessions lapse.
DEFAULT_SESSION_TTL = timedelta(hours=1)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# -----------------------------
# Auth variants
# -----------------------------


@dataclass(frozen=True)
class ApiKeyAuth:
    api_key: str
    api_secret: str


@dataclass(frozen=True)
class TicketAuth:
    account: str
    password: str


AuthMode = ApiKeyAuth | TicketAuth


def auth_from_credentials(creds: VendorCredentials) -> AuthMode:
    if creds.auth_mode == "api_key":
        return ApiKeyAuth(api_key=creds.api_key or "", api_secret=creds.api_secret or "")
    return TicketAuth(account=creds.username, password=creds.password)


@dataclass(frozen=True)
class SessionInfo:
    session_token: str
    expires_at: datetime | None
    feature_code: str | None = None
    customer_no: str | None = None


def session_from_credentials(creds: VendorCredentials) -> SessionInfo | None:
    if not creds.session_token:
        return None
    return SessionInfo(
        session_token=creds.session_token,
        expires_at=creds.session_expiry,
        feature_code=creds.feature_code,
        customer_no=creds.customer_no,
    )


FailureKind = Literal["authentication_failed", "vendor_unavailable", "malformed_response"]


@dataclass(frozen=True)
class AuthFailure:
    kind: FailureKind
    message: str


@dataclass(frozen=True)
class VendorError:
    kind: FailureKind
    message: str


@dataclass(frozen=True)
class VendorDevice:
    external_id: str
    name: str
    serial: str
    type: str | None = None
    version: str | None = None
    ip_address: str | None = None
    online_flag: int = 0


def as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_session_valid(session: SessionInfo | None, now: datetime | None = None) -> bool:
    """True iff a token exists and expires strictly in the future."""
    if session is None or not session.session_token or session.expires_at is None:
        return False
    if now is None:
        now = utcnow()
    return as_utc(session.expires_at) > as_utc(now)


# -----------------------------
# Vendor payload mapping
# -----------------------------

# Canonical precedence per field; first non-empty key wins.
EXTERNAL_ID_KEYS = ("deviceId", "id", "devIndexCode", "deviceIndexCode")
NAME_KEYS = ("deviceName", "name", "devName")
SERIAL_KEYS = ("deviceSerial", "serialNo", "serial", "devSerial")
TYPE_KEYS = ("deviceType", "type", "devType", "deviceCategory")
VERSION_KEYS = ("version", "deviceVersion", "firmwareVersion")
IP_KEYS = ("ipAddress", "ip", "deviceIp")
ONLINE_KEYS = ("onlineStatus", "status", "online", "isOnline")

_ONLINE_VALUES = {"1", "true", "online", "yes"}


def _first(raw: Mapping[str, Any], keys: Iterable[str]) -> Any:
    for k in keys:
        v = raw.get(k)
        if v is None:
            continue
        if isinstance(v, str) and not v.strip():
            continue
        return v
    return None


def _opt_str(v: Any) -> str | None:
    if v is None:
        return None
    return str(v).strip() or None


def _online_flag(v: Any) -> int:
    if isinstance(v, bool):
        return 1 if v else 0
    if isinstance(v, (int, float)):
        if not math.isfinite(v):
            return 0
        return 1 if int(v) == 1 else 0
    if isinstance(v, str):
        return 1 if v.strip().lower() in _ONLINE_VALUES else 0
    return 0


def map_vendor_device(raw: Mapping[str, Any]) -> VendorDevice | None:
    """Map one portal device record into the canonical shape.

    Records without any usable identifier (external id or serial) are dropped.
    """

    serial = _opt_str(_first(raw, SERIAL_KEYS))
    external_id = _opt_str(_first(raw, EXTERNAL_ID_KEYS)) or serial
    if external_id is None:
        return None
    serial = serial or external_id
    name = _opt_str(_first(raw, NAME_KEYS)) or serial

    return VendorDevice(
        external_id=external_id,
        name=name,
        serial=serial,
        type=_opt_str(_first(raw, TYPE_KEYS)),
        version=_opt_str(_first(raw, VERSION_KEYS)),
        ip_address=_opt_str(_first(raw, IP_KEYS)),
        online_flag=_online_flag(_first(raw, ONLINE_KEYS)),
    )


def extract_device_records(body: Any) -> list[Mapping[str, Any]] | None:
    """Locate the device list inside a lookup response; None when the shape is unrecognized."""
    if isinstance(body, list):
        return [r for r in body if isinstance(r, Mapping)]
    if not isinstance(body, Mapping):
        return None

    data = body.get("data")
    if isinstance(data, list):
        return [r for r in data if isinstance(r, Mapping)]
    if isinstance(data, Mapping):
        for key in ("device", "deviceList", "list"):
            rows = data.get(key)
            if isinstance(rows, list):
                return [r for r in rows if isinstance(r, Mapping)]
        # A page with zero results may omit the list entirely.
        if "totalCount" in data and not data.get("totalCount"):
            return []
    return None


def _parse_expiry(raw: Any, now: datetime) -> datetime:
    if isinstance(raw, (int, float)) and raw > 0:
        # Portal versions disagree on seconds vs milliseconds.
        seconds = raw / 1000.0 if raw > 10_000_000_000 else float(raw)
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            logger.warning("unusable session expiry from portal", extra={"fields": {"expire_time": raw}})
            return now + DEFAULT_SESSION_TTL
    if isinstance(raw, str) and raw.strip():
        s = raw.strip()
        if s.isdigit():
            return _parse_expiry(int(s), now)
        try:
            return as_utc(datetime.fromisoformat(s.replace("Z", "+00:00")))
        except ValueError:
            pass
    return now + DEFAULT_SESSION_TTL


def _error_code_ok(body: Mapping[str, Any]) -> bool:
    code = body.get("errorCode", body.get("code"))
    if code is None:
        return True
    return str(code) in {"0", "200"}


# -----------------------------
# Gateway
# -----------------------------


class HikConnectGateway:
    """Client for the device-cloud portal.

    One call is one attempt: nothing here retries. Failures never raise past
    this class; they come back as `AuthFailure` values or as an empty device
    list with `last_error` set. A refreshed session lives only on the instance;
    callers persist it.
    """

    def __init__(
        self,
        auth: AuthMode,
        *,
        session: SessionInfo | None = None,
        base_url: str = DEFAULT_VENDOR_BASE_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http: requests.Session | None = None,
    ) -> None:
        self.auth = auth
        self.session = session
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self.http = http or requests.Session()
        self.last_error: VendorError | None = None
        self.session_refreshed = False

    @classmethod
    def from_credentials(
        cls,
        creds: VendorCredentials,
        *,
        base_url: str = DEFAULT_VENDOR_BASE_URL,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        http: requests.Session | None = None,
    ) -> "HikConnectGateway":
        return cls(
            auth_from_credentials(creds),
            session=session_from_credentials(creds),
            base_url=base_url,
            timeout_s=timeout_s,
            http=http,
        )

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            CLIENT_SOURCE_HEADER: CLIENT_SOURCE,
        }
        s = self.session
        if s is not None:
            if isinstance(self.auth, ApiKeyAuth):
                headers["Token"] = s.session_token
            else:
                headers["Authorization"] = f"Bearer {s.session_token}"
                if s.feature_code:
                    headers["featureCode"] = s.feature_code
                if s.customer_no:
                    headers["customNo"] = s.customer_no
        return headers

    def _post(self, path: str, payload: dict[str, Any]) -> requests.Response:
        return self.http.post(
            f"{self.base_url}{path}",
            json=payload,
            headers=self._headers(),
            timeout=self.timeout_s,
        )

    def is_session_valid(self, session: SessionInfo | None = None) -> bool:
        return is_session_valid(self.session if session is None else session)

    def authenticate(self) -> SessionInfo | AuthFailure:
        if isinstance(self.auth, ApiKeyAuth):
            path = TOKEN_PATH
            payload: dict[str, Any] = {"appKey": self.auth.api_key, "secretKey": self.auth.api_secret}
        else:
            path = TICKET_LOGIN_PATH
            payload = {"account": self.auth.account, "password": self.auth.password}

        # Drop any stale token so it is not sent with the login request.
        self.session = None
        try:
            resp = self._post(path, payload)
        except requests.Timeout:
            logger.warning("vendor login timed out (timeout_s=%s)", self.timeout_s)
            return AuthFailure(kind="vendor_unavailable", message="login request timed out")
        except requests.RequestException as e:
            logger.warning("vendor login failed: %s", type(e).__name__)
            return AuthFailure(kind="vendor_unavailable", message=f"login request failed: {type(e).__name__}")

        if resp.status_code in (401, 403):
            return AuthFailure(kind="authentication_failed", message=f"login rejected (HTTP {resp.status_code})")
        if not 200 <= resp.status_code < 300:
            logger.warning("vendor login non-success status=%s", resp.status_code)
            return AuthFailure(kind="vendor_unavailable", message=f"login failed (HTTP {resp.status_code})")

        try:
            body = resp.json()
        except ValueError:
            return AuthFailure(kind="malformed_response", message="login response is not JSON")
        if not isinstance(body, Mapping):
            return AuthFailure(kind="malformed_response", message="login response is not an object")
        if not _error_code_ok(body):
            return AuthFailure(
                kind="authentication_failed",
                message=f"login rejected (errorCode={body.get('errorCode', body.get('code'))})",
            )

        data = body.get("data") if isinstance(body.get("data"), Mapping) else {}
        now = utcnow()
        if isinstance(self.auth, ApiKeyAuth):
            token = _opt_str(data.get("accessToken")) or _opt_str(body.get("accessToken"))
            expiry_raw = data.get("expireTime", body.get("expireTime"))
        else:
            token = (
                _opt_str(body.get("ticket"))
                or _opt_str(body.get("sessionId"))
                or _opt_str(data.get("sessionId"))
                or _opt_str(data.get("ticket"))
            )
            expiry_raw = _first(body, ("expireTime", "sessionExpiry")) or _first(data, ("expireTime", "sessionExpiry"))

        if not token:
            logger.warning("vendor login response missing session token")
            return AuthFailure(kind="authentication_failed", message="login response missing session token")

        info = SessionInfo(
            session_token=token,
            expires_at=_parse_expiry(expiry_raw, now),
            feature_code=_opt_str(_first(body, ("featureCode",)) or _first(data, ("featureCode",))),
            customer_no=_opt_str(_first(body, ("customNo",)) or _first(data, ("customNo",))),
        )
        self.session = info
        self.session_refreshed = True
        logger.info("vendor login succeeded (expires_at=%s)", info.expires_at.isoformat() if info.expires_at else None)
        return info

    def _ensure_session(self) -> bool:
        if self.is_session_valid():
            return True
        result = self.authenticate()
        if isinstance(result, AuthFailure):
            self.last_error = VendorError(kind=result.kind, message=result.message)
            return False
        return True

    def fetch_devices_by_serials(self, serials: Sequence[str]) -> list[VendorDevice]:
        """Batch device lookup. Empty on any failure; check `last_error` to tell failure from absence."""
        self.last_error = None
        wanted = [s.strip() for s in serials if s and s.strip()]
        if not wanted:
            return []

        if not self._ensure_session():
            logger.warning("device lookup skipped; vendor authentication failed")
            return []

        payload = {"pageIndex": 1, "pageSize": max(len(wanted), 1), "filter": {"deviceSerialNos": wanted}}
        try:
            resp = self._post(DEVICES_BY_SERIAL_PATH, payload)
        except requests.Timeout:
            self.last_error = VendorError(kind="vendor_unavailable", message="device lookup timed out")
            logger.warning("device lookup timed out (serials=%s)", len(wanted))
            return []
        except requests.RequestException as e:
            self.last_error = VendorError(
                kind="vendor_unavailable", message=f"device lookup failed: {type(e).__name__}"
            )
            logger.warning("device lookup failed: %s", type(e).__name__)
            return []

        if not 200 <= resp.status_code < 300:
            self.last_error = VendorError(
                kind="vendor_unavailable", message=f"device lookup failed (HTTP {resp.status_code})"
            )
            logger.warning("device lookup non-success status=%s", resp.status_code)
            return []

        try:
            body = resp.json()
        except ValueError:
            self.last_error = VendorError(kind="malformed_response", message="device lookup response is not JSON")
            return []

        if isinstance(body, Mapping) and not _error_code_ok(body):
            self.last_error = VendorError(
                kind="vendor_unavailable",
                message=f"device lookup rejected (errorCode={body.get('errorCode', body.get('code'))})",
            )
            return []

        records = extract_device_records(body)
        if records is None:
            self.last_error = VendorError(kind="malformed_response", message="device list missing from response")
            logger.warning("device lookup response has no recognizable device list")
            return []

        out: list[VendorDevice] = []
        for raw in records:
            mapped = map_vendor_device(raw)
            if mapped is not None:
                out.append(mapped)
        logger.info("device lookup returned %s of %s requested", len(out), len(wanted))
        return out
