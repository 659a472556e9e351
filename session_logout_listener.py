#!/usr/bin/env python3
"""
Session Logout Listener
HTTP endpoint that lets a trusted backend log users out by username,
restricted by an IP filter and an optional shared password

The listener does not create sessions itself: the embedding application
registers its sessions in SESSIONS (or overrides get_session_store) as users
log in, and the endpoint expires them by principal name.
"""

import os
import secrets
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime

import uvicorn
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request, status
from pydantic import BaseModel
from systemd import journal

import ip_filter


SYSLOG_IDENTIFIER = "session-logout-listener"


def log(message: str, priority: int = journal.LOG_INFO) -> None:
    """Send a message to the systemd journal"""
    journal.send(
        f"{SYSLOG_IDENTIFIER}: {message}",
        PRIORITY=priority,
        SYSLOG_IDENTIFIER=SYSLOG_IDENTIFIER,
    )


# =============================================================================
# Configuration
# =============================================================================


@dataclass
class Config:
    """Application configuration"""

    ip_filter: str | None  # None means no IP restriction
    password: str | None  # None means no password check
    port: int
    host: str = "0.0.0.0"

    @property
    def has_ip_filter(self) -> bool:
        """Check if an IP filter is configured (an empty filter still counts)"""
        return self.ip_filter is not None

    @property
    def has_password(self) -> bool:
        """Check if password authentication is configured"""
        return self.password is not None


def get_config() -> Config:
    """Get configuration from environment variables"""
    # An empty filter is kept as-is and denies every caller
    ip_filter_spec = os.environ.get("SESSION_LOGOUT_LISTENER_IP_FILTER")
    password = os.environ.get("SESSION_LOGOUT_LISTENER_PASSWORD")
    host = os.environ.get("SESSION_LOGOUT_LISTENER_HOST", "0.0.0.0")

    port_str = os.environ.get("SESSION_LOGOUT_LISTENER_PORT", "8080")
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError("SESSION_LOGOUT_LISTENER_PORT must be an integer")
    if not 1 <= port <= 65535:
        raise ValueError("SESSION_LOGOUT_LISTENER_PORT must be between 1 and 65535")

    config = Config(
        ip_filter=ip_filter_spec,
        password=password,
        port=port,
        host=host,
    )

    log(
        f"Security config - IP filter: {config.has_ip_filter}, Password: {config.has_password}",
        journal.LOG_INFO,
    )

    return config


# =============================================================================
# Pydantic Models
# =============================================================================


class LogoutResponse(BaseModel):
    status: str
    usernames: list[str]
    sessions_expired: int


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    sessions_count: int


class ErrorResponse(BaseModel):
    detail: str


# =============================================================================
# Sessions
# =============================================================================


@dataclass
class Session:
    id: str
    principal: str | None = None
    valid: bool = True


def truncate_session_id(session_id: str) -> str:
    """Return the first 8 characters of a session ID, safe for logging"""
    return session_id[:8]


class SessionStore:
    """In-process registry of the application's sessions.

    The embedding application calls add() for every authenticated session;
    sessions are looked up and expired by the name of their principal.
    Access is serialized with a lock because sync dependencies run in
    FastAPI's threadpool.
    """

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def add(self, session_id: str, principal: str | None = None) -> Session:
        session = Session(id=session_id, principal=principal)
        with self._lock:
            self._sessions[session_id] = session
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def find_sessions(self) -> list[Session]:
        """Snapshot of all sessions"""
        with self._lock:
            return list(self._sessions.values())

    def expire(self, session_id: str) -> None:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            session.valid = False

    def logout_users(self, usernames: list[str]) -> list[str]:
        """Expire all valid sessions authenticated as one of the usernames.

        Returns the IDs of the expired sessions.
        """
        log("usernames: '" + "', '".join(usernames) + "'", journal.LOG_DEBUG)

        expired = []
        for session in self.find_sessions():
            if not session.valid or session.principal is None:
                continue
            if session.principal not in usernames:
                continue

            self.expire(session.id)
            expired.append(session.id)

            log(
                f"session: id='{truncate_session_id(session.id)}...', principal='{session.principal}'",
                journal.LOG_DEBUG,
            )

        return expired


# =============================================================================
# Request checks
# =============================================================================


def check_remote_addr(remote_addr: str | None, ip_filter_spec: str | None) -> bool:
    """Check if a request has been sent from an allowed remote address.

    No configured filter admits everyone. X-Forwarded-For is not consulted,
    the transport-level peer address is used as-is.
    """
    if ip_filter_spec is None:
        return True

    if remote_addr is None:
        log("No remote address found in request.", journal.LOG_WARNING)
        return False

    if not ip_filter.matches(remote_addr, ip_filter_spec):
        log(
            f"Remote address '{remote_addr}' does not match IP filter.",
            journal.LOG_WARNING,
        )
        return False

    return True


def check_password(request_password: str | None, password: str | None) -> bool:
    """Check if a request contains the configured password"""
    if password is None:
        return True

    if request_password is None:
        log("No password found in request.", journal.LOG_WARNING)
        return False

    if not secrets.compare_digest(request_password.encode(), password.encode()):
        log("Incorrect password.", journal.LOG_WARNING)
        return False

    return True


def parse_usernames(values: list[str] | None) -> list[str]:
    """Return distinct usernames, keeping the order of first appearance"""
    if not values:
        return []
    return list(dict.fromkeys(values))


# =============================================================================
# FastAPI Application
# =============================================================================

# Global config (loaded at startup)
CONFIG: Config | None = None

# Sessions of the running application, populated by the embedding application
SESSIONS = SessionStore()


def init_config() -> Config:
    """Initialize global config from environment variables."""
    global CONFIG
    CONFIG = get_config()
    return CONFIG


def get_session_store() -> SessionStore:
    """Dependency returning the application's session store"""
    return SESSIONS


def security_modes(config: Config) -> list[str]:
    """Describe the active access checks"""
    modes = []
    if config.has_ip_filter:
        modes.append(f"IP filter ({config.ip_filter!r})")
    if config.has_password:
        modes.append("password")
    return modes


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logging"""
    if CONFIG is None:
        raise RuntimeError("CONFIG not initialized. Call init_config() first.")

    modes = security_modes(CONFIG)
    log(
        f"Starting on {CONFIG.host}:{CONFIG.port}, "
        f"security: {' + '.join(modes) if modes else 'NONE'}",
        journal.LOG_INFO,
    )

    yield

    log("Shutting down", journal.LOG_INFO)


FORM_CONTENT_TYPES = ("application/x-www-form-urlencoded", "multipart/form-data")


async def get_parameters(request: Request) -> dict[str, list[str]]:
    """Collect request parameters from the query string and, for POST, the form body.

    Values from both sources are merged per name, query string first, so
    callers may send username and password either way.
    """
    parameters: dict[str, list[str]] = {}
    for name, value in request.query_params.multi_items():
        parameters.setdefault(name, []).append(value)

    content_type = request.headers.get("content-type", "")
    if request.method == "POST" and content_type.startswith(FORM_CONTENT_TYPES):
        form = await request.form()
        for name, value in form.multi_items():
            # Uploaded files are not parameters
            if isinstance(value, str):
                parameters.setdefault(name, []).append(value)

    return parameters


def verify_access(
    request: Request,
    parameters: dict[str, list[str]] = Depends(get_parameters),
) -> None:
    """Verify that the caller may use the logout endpoint.

    Both configured checks must pass:
    - the peer address must match the IP filter (if configured)
    - the password parameter must match (if configured)
    """
    passwords = parameters.get("password")
    password = passwords[0] if passwords else None

    if CONFIG is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server not configured",
        )

    remote_addr = request.client.host if request.client else None

    if not check_remote_addr(remote_addr, CONFIG.ip_filter):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")

    if not check_password(password, CONFIG.password):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(sessions: SessionStore = Depends(get_session_store)):
    """Health check endpoint (no access check)"""
    return HealthResponse(
        status="healthy",
        timestamp=datetime.now().isoformat(),
        sessions_count=len(sessions),
    )


@router.api_route(
    "/session-logout-listener",
    methods=["GET", "POST"],
    response_model=LogoutResponse,
    responses={403: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
    tags=["Sessions"],
)
def session_logout(
    parameters: dict[str, list[str]] = Depends(get_parameters),
    sessions: SessionStore = Depends(get_session_store),
    _: None = Depends(verify_access),
):
    """Log out all sessions of the given usernames.

    Accepts GET and POST; `username` (repeatable) and `password` may come
    from the query string or a form-encoded body.
    """
    usernames = parse_usernames(parameters.get("username"))

    expired = []
    if usernames:
        expired = sessions.logout_users(usernames)

    return LogoutResponse(
        status="OK",
        usernames=usernames,
        sessions_expired=len(expired),
    )


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Session Logout Listener",
        description="HTTP endpoint for logging out user sessions by username",
        version="1.0.0",
        lifespan=lifespan,
    )
    application.include_router(router)
    return application


# Initialize config at module load time (for uvicorn import)
# This may fail on an invalid port, which is expected during testing
try:
    init_config()
except ValueError:
    # Config will be initialized later in main() or tests
    pass

# Create the app instance
app = create_app()


# =============================================================================
# Main Entry Point
# =============================================================================


def main():
    """Start the listener with uvicorn"""
    # Ensure config is loaded
    global CONFIG
    if CONFIG is None:
        CONFIG = get_config()

    uvicorn.run(
        "session_logout_listener:app",
        host=CONFIG.host,
        port=CONFIG.port,
        log_level="info",
        access_log=True,
    )


if __name__ == "__main__":
    main()
