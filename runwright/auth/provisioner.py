"""
Authentication state provisioning.

Logs in once before any test runs and persists the resulting session so that
every test context starts pre-authenticated.
"""

import asyncio
import json
import os
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
from urllib.parse import urljoin, urlparse

import aiohttp

from ..core.exceptions import AuthProvisioningError
from ..core.logging_config import get_logger, log_performance
from ..planning.models import AuthSpec, Credentials
from .models import AuthState

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


class LoginFlow(ABC):
    """A procedure that authenticates against the system under test."""

    @abstractmethod
    async def login(self, base_url: str) -> List[Dict[str, Any]]:
        """
        Authenticate and return the session cookies in storage-state form.

        Raises:
            AuthProvisioningError: If the credentials are rejected
        """


class FormLoginFlow(LoginFlow):
    """
    Login by posting a credentials form.

    Success is a redirect away from the login page, which is how a browser
    would observe a completed login.
    """

    def __init__(
        self,
        credentials: Credentials,
        login_path: str = "/login",
        email_field: str = "email",
        password_field: str = "password",
        ready_attempts: int = 3,
        ready_interval: float = 1.0,
    ):
        self.credentials = credentials
        self.login_path = login_path
        self.email_field = email_field
        self.password_field = password_field
        self.ready_attempts = ready_attempts
        self.ready_interval = ready_interval
        self.logger = get_logger(__name__)

    @classmethod
    def from_spec(cls, spec: AuthSpec) -> "FormLoginFlow":
        return cls(
            credentials=spec.credentials,
            login_path=spec.login_path,
            email_field=spec.email_field,
            password_field=spec.password_field,
        )

    def login_url(self, base_url: str) -> str:
        return urljoin(base_url.rstrip("/") + "/", self.login_path.lstrip("/"))

    async def login(self, base_url: str) -> List[Dict[str, Any]]:
        login_url = self.login_url(base_url)
        # unsafe=True keeps cookies issued by IP-address hosts such as 127.0.0.1
        jar = aiohttp.CookieJar(unsafe=True)

        async with aiohttp.ClientSession(cookie_jar=jar) as session:
            await self._wait_for_login_page(session, login_url)

            form = {
                self.email_field: self.credentials.email,
                self.password_field: self.credentials.password,
            }
            async with session.post(login_url, data=form, allow_redirects=False) as response:
                location = response.headers.get("Location", "")
                if response.status not in REDIRECT_STATUSES:
                    raise AuthProvisioningError(
                        f"Login was not accepted (HTTP {response.status})",
                        base_url=base_url,
                    )
                if self._is_login_page(urljoin(login_url, location), login_url):
                    raise AuthProvisioningError(
                        "Login redirected back to the login page; credentials rejected",
                        base_url=base_url,
                    )

        return self._export_cookies(jar, base_url)

    async def _wait_for_login_page(
        self, session: aiohttp.ClientSession, login_url: str
    ) -> None:
        last_error: Optional[Exception] = None
        for attempt in range(1, self.ready_attempts + 1):
            try:
                async with session.get(login_url, allow_redirects=False) as response:
                    if response.status < 500:
                        return
                    last_error = AuthProvisioningError(
                        f"Login page answered HTTP {response.status}"
                    )
            except aiohttp.ClientError as e:
                last_error = e
            self.logger.debug(
                f"Login page not ready (attempt {attempt}/{self.ready_attempts}): {last_error}"
            )
            if attempt < self.ready_attempts:
                await asyncio.sleep(self.ready_interval)

        raise AuthProvisioningError(
            f"Login page {login_url} not reachable: {last_error}",
            base_url=login_url,
        )

    @staticmethod
    def _is_login_page(url: str, login_url: str) -> bool:
        return urlparse(url).path.rstrip("/") == urlparse(login_url).path.rstrip("/")

    @staticmethod
    def _export_cookies(jar: aiohttp.CookieJar, base_url: str) -> List[Dict[str, Any]]:
        default_domain = urlparse(base_url).hostname or ""
        cookies = []
        for morsel in jar:
            cookies.append(
                {
                    "name": morsel.key,
                    "value": morsel.value,
                    "domain": morsel["domain"] or default_domain,
                    "path": morsel["path"] or "/",
                    "expires": -1,
                    "httpOnly": bool(morsel["httponly"]),
                    "secure": bool(morsel["secure"]),
                    "sameSite": (morsel["samesite"] or "Lax").capitalize(),
                }
            )
        return cookies


class AuthStateProvisioner:
    """
    Produces the run's single AuthState.

    The orchestrator calls ``provision`` once, before dispatching any worker.
    Each call overwrites the persisted artifact.
    """

    def __init__(
        self,
        storage_path: Union[str, Path],
        login_flow: LoginFlow,
        timeout_ms: int = 10000,
        run_id: Optional[str] = None,
    ):
        """
        Initialize the provisioner.

        Args:
            storage_path: Fixed location of the session artifact
            login_flow: Procedure that performs the login
            timeout_ms: Deadline for the whole login in milliseconds
            run_id: Run identifier for log correlation
        """
        self.storage_path = Path(storage_path)
        self.login_flow = login_flow
        self.timeout_ms = timeout_ms
        self.logger = get_logger(__name__, run_id=run_id) if run_id else get_logger(__name__)

    async def provision(self, base_url: str) -> AuthState:
        """
        Log in against base_url and persist the session.

        Raises:
            AuthProvisioningError: If login fails or does not finish in time
        """
        started = time.monotonic()
        self.logger.info(
            f"Provisioning authentication state against {base_url}",
            extra={"metadata": {"storage_path": str(self.storage_path)}},
        )

        try:
            cookies = await asyncio.wait_for(
                self.login_flow.login(base_url), timeout=self.timeout_ms / 1000.0
            )
        except asyncio.TimeoutError as e:
            raise AuthProvisioningError(
                f"Login did not complete within {self.timeout_ms}ms",
                base_url=base_url,
                storage_path=str(self.storage_path),
            ) from e
        except AuthProvisioningError as e:
            e.storage_path = str(self.storage_path)
            e.context["storage_path"] = e.storage_path
            raise
        except (aiohttp.ClientError, OSError) as e:
            raise AuthProvisioningError(
                f"Login request failed: {e}",
                base_url=base_url,
                storage_path=str(self.storage_path),
            ) from e

        state = AuthState(
            storage_path=self.storage_path,
            base_url=base_url,
            cookies=cookies,
        )
        self._persist(state)

        log_performance(
            self.logger,
            "auth_provisioning",
            time.monotonic() - started,
            cookies=len(cookies),
        )
        return state

    def _persist(self, state: AuthState) -> None:
        """Write the snapshot atomically, replacing any previous one."""
        temp_path = self.storage_path.with_name(self.storage_path.name + ".tmp")
        try:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(
                json.dumps(state.to_storage_state(), indent=2), encoding="utf-8"
            )
            os.replace(temp_path, self.storage_path)
        except OSError as e:
            raise AuthProvisioningError(
                f"Failed to write authentication state: {e}",
                base_url=state.base_url,
                storage_path=str(self.storage_path),
            ) from e
