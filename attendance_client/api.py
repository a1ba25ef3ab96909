from __future__ import annotations

from typing import Any

import requests
from pydantic import ValidationError

from .config import Settings
from .credentials import CredentialStore
from .exceptions import (
    AttendanceError,
    AuthenticationError,
    ConfirmationError,
    RequestTimeout,
    RosterUnavailable,
    SessionExpired,
)
from .logger import setup_logger
from .schemas import ConfirmationResponse, EmployeesResponse, LoginResponse, UserPayload
from .types import AuthenticatedUser, ConfirmationRecord, EnrolledIdentity, Roster

LOGIN_PATH = "/api/mobile/login"
EMPLOYEES_PATH = "/api/mobile/employees"
CONFIRM_PATH = "/api/mobile/confirm-attendance"


def _user_from_payload(payload: UserPayload, username: str = "") -> AuthenticatedUser:
    return AuthenticatedUser(
        user_id=str(payload.id) if payload.id is not None else "",
        username=payload.username or username,
        name=payload.name,
        role=payload.role,
    )


class AttendanceApiClient:
    """Client for the attendance server: login, roster fetch and confirmation.

    Every call is bounded by ``request_timeout_seconds``. A 401 on an
    authenticated call clears the stored credentials and raises
    :class:`SessionExpired`.
    """

    def __init__(
        self,
        settings: Settings,
        credentials: CredentialStore,
        session: requests.Session | None = None,
    ) -> None:
        self.settings = settings
        self.credentials = credentials
        self.session = session or requests.Session()
        self.logger = setup_logger(self.__class__.__name__)

    @property
    def is_authenticated(self) -> bool:
        return self.credentials.get_token() is not None

    def _send(
        self,
        method: str,
        path: str,
        error_cls: type[AttendanceError],
        payload: dict[str, Any] | None = None,
        authenticated: bool = True,
    ) -> requests.Response:
        headers = {"Content-Type": "application/json"}
        if authenticated:
            token = self.credentials.get_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"

        url = f"{self.settings.api_base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                json=payload,
                headers=headers,
                timeout=self.settings.request_timeout_seconds,
            )
        except requests.Timeout as exc:
            raise RequestTimeout(
                f"{method} {path} timed out after {self.settings.request_timeout_seconds:g}s"
            ) from exc
        except requests.RequestException as exc:
            raise error_cls(f"Cannot reach server: {exc}") from exc

        if authenticated and resp.status_code == 401:
            self.credentials.clear()
            self.logger.warning("Session expired on %s %s", method, path)
            raise SessionExpired("Session expired. Please login again.")
        return resp

    @staticmethod
    def _body(resp: requests.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _error_message(body: dict[str, Any], default: str) -> str:
        message = body.get("error") or body.get("message")
        return str(message) if message else default

    def login(self, username: str, password: str) -> AuthenticatedUser:
        resp = self._send(
            "POST",
            LOGIN_PATH,
            AuthenticationError,
            payload={"username": username, "password": password},
            authenticated=False,
        )
        body = self._body(resp)
        if not resp.ok:
            raise AuthenticationError(self._error_message(body, "Login failed"))
        try:
            data = LoginResponse.model_validate(body)
        except ValidationError as exc:
            raise AuthenticationError(f"Unexpected login response: {exc}") from exc

        user = _user_from_payload(data.user, username=username)
        self.credentials.store(data.token, user)
        self.logger.info("Logged in as %s", user.username)
        return user

    def logout(self) -> None:
        self.credentials.clear()
        self.logger.info("Logged out")

    def fetch_roster(self) -> Roster:
        resp = self._send("GET", EMPLOYEES_PATH, RosterUnavailable)
        body = self._body(resp)
        if not resp.ok:
            raise RosterUnavailable(self._error_message(body, "Failed to fetch employees"))
        try:
            data = EmployeesResponse.model_validate(body)
        except ValidationError as exc:
            raise RosterUnavailable(f"Unexpected roster response: {exc}") from exc

        identities = tuple(
            EnrolledIdentity.from_descriptors(item.id, item.name, item.descriptors) for item in data.employees
        )
        skipped = sum(1 for identity in identities if not identity.embeddings)
        if skipped:
            self.logger.info("%d employee(s) have no usable face descriptors", skipped)
        return Roster(identities=identities)

    def confirm_attendance(self, identity_id: str) -> ConfirmationRecord:
        resp = self._send("POST", CONFIRM_PATH, ConfirmationError, payload={"userId": identity_id})
        body = self._body(resp)
        if not resp.ok:
            raise ConfirmationError(self._error_message(body, "Failed to mark attendance"))
        try:
            data = ConfirmationResponse.model_validate(body)
        except ValidationError as exc:
            raise ConfirmationError(f"Unexpected confirmation response: {exc}") from exc

        return ConfirmationRecord(
            identity_id=identity_id,
            name=data.user.name or "",
            date=data.date,
            time=data.time,
        )
