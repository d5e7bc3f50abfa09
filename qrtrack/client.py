# qrtrack/client.py

"""
HTTP client for the QRTrack API.

The bearer token lives in an explicit :class:`AuthSession` passed to the
client. ``ApiClient._request`` is the only place that attaches it and the
only place that discards it: any 401 answer clears the session, so the
caller has to authenticate again.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple
from urllib.parse import quote

import requests

from qrtrack.errors import UpstreamError, error_from_payload

DEFAULT_TIMEOUT = 10.0


@dataclass
class AuthSession:
    token: Optional[str] = None
    on_cleared: Optional[Callable[[], None]] = None

    @property
    def authenticated(self) -> bool:
        return bool(self.token)

    def clear(self) -> None:
        had_token = self.token is not None
        self.token = None
        if had_token and self.on_cleared:
            self.on_cleared()


def _path_id(qr_id: str) -> str:
    return quote(qr_id, safe="")


class ApiClient:
    def __init__(
        self,
        base_url: str,
        session: Optional[AuthSession] = None,
        http: Any = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        self.base_url = base_url.rstrip("/")
        self.session = session or AuthSession()
        self.http = http or requests.Session()
        self.timeout = timeout

    def _request(self, method: str, path: str, auth: bool = True, **kwargs):
        headers = dict(kwargs.pop("headers", None) or {})
        if auth and self.session.token:
            headers["Authorization"] = f"Bearer {self.session.token}"
        try:
            resp = self.http.request(
                method, self.base_url + path, headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"Could not reach server: {exc}") from exc

        if resp.status_code < 400:
            return resp

        if resp.status_code == 401:
            self.session.clear()
        content_type = resp.headers.get("content-type", "")
        if "application/json" in content_type:
            payload = resp.json()
        else:
            payload = {"error": f"Server error: {resp.status_code} {resp.text[:200]}".strip()}
        raise error_from_payload(resp.status_code, payload)

    # ---------------------------------------------------------
    # Auth
    # ---------------------------------------------------------
    def register(self, email: str, password: str) -> str:
        resp = self._request("POST", "/auth/register", auth=False, json={"email": email, "password": password})
        self.session.token = resp.json()["token"]
        return self.session.token

    def login(self, email: str, password: str) -> str:
        resp = self._request("POST", "/auth/login", auth=False, json={"email": email, "password": password})
        self.session.token = resp.json()["token"]
        return self.session.token

    def logout(self) -> None:
        self.session.clear()

    def me(self) -> Dict[str, Any]:
        return self._request("GET", "/me").json()

    # ---------------------------------------------------------
    # QR codes
    # ---------------------------------------------------------
    def create_qrcodes(self, records: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return self._request("POST", "/qrcodes", json=records).json()

    def create_qrcode(self, qr_id: str) -> Dict[str, Any]:
        return self._request("POST", "/qrcodes", json={"data": qr_id}).json()[0]

    def generate(self, count: int = 1, label: Optional[str] = None, encode_url: bool = False) -> List[Dict[str, Any]]:
        body: Dict[str, Any] = {"count": count, "encodeUrl": encode_url}
        if label:
            body["label"] = label
        return self._request("POST", "/qrcodes/generate", json=body).json()["qrs"]

    def list_qrcodes(self, page: Optional[int] = None, page_size: Optional[int] = None) -> Tuple[List[Dict[str, Any]], bool]:
        params = {}
        if page is not None:
            params["page"] = page
        if page_size is not None:
            params["pageSize"] = page_size
        data = self._request("GET", "/qrcodes", params=params).json()
        return data["qrs"], data["hasMore"]

    def get_qrcode(self, qr_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/qrcodes/{_path_id(qr_id)}").json()

    def qr_image(self, qr_id: str) -> bytes:
        return self._request("GET", f"/qrcodes/{_path_id(qr_id)}/image").content

    def share(self, qr_id: str) -> str:
        return self._request("POST", f"/qrcodes/{_path_id(qr_id)}/share").json()["shareUrl"]

    def update_status(self, qr_id: str, status: str) -> Dict[str, Any]:
        return self._request("PATCH", f"/qrcodes/{_path_id(qr_id)}/status", json={"status": status}).json()

    def delete_all(self) -> int:
        return self._request("DELETE", "/qrcodes").json()["deletedCount"]

    # ---------------------------------------------------------
    # Scanning
    # ---------------------------------------------------------
    def scan(self, decoded: str, action: Optional[str] = None) -> Dict[str, Any]:
        body: Dict[str, Any] = {"scannedUrl": decoded}
        if action:
            body["action"] = action
        return self._request("POST", "/scan", json=body).json()

    def scan_image(self, image: bytes, action: Optional[str] = None) -> Dict[str, Any]:
        params = {"action": action} if action else {}
        files = {"file": ("scan.png", image, "image/png")}
        return self._request("POST", "/scan/image", params=params, files=files).json()

    def scan_events(self, limit: int = 100, qr_id: Optional[str] = None) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {"limit": limit}
        if qr_id:
            params["qrId"] = qr_id
        return self._request("GET", "/scans", params=params).json()["events"]
