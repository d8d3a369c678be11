import secrets

from flask import Request, session

CSRF_SESSION_KEY = "csrf_token"
# The workspace script reads the token from <meta name="csrf-token"> and sends it here on JSON saves.
CSRF_HEADER = "X-CSRF-Token"
UNSAFE_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def new_token(nbytes: int = 32) -> str:
    """URL-safe random token, used for CSRF and invitation links."""
    return secrets.token_urlsafe(nbytes)


def ensure_csrf_token() -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = new_token()
        session[CSRF_SESSION_KEY] = token
    return token


def _submitted_token(req: Request) -> str | None:
    token = req.headers.get(CSRF_HEADER) or req.form.get(CSRF_SESSION_KEY)
    if token or not req.is_json:
        return token
    body = req.get_json(silent=True)
    if isinstance(body, dict):
        return body.get(CSRF_SESSION_KEY)
    return None


def validate_csrf(req: Request) -> bool:
    submitted = _submitted_token(req)
    expected = session.get(CSRF_SESSION_KEY)
    if not submitted or not expected:
        return False
    return secrets.compare_digest(str(submitted), str(expected))


def needs_csrf_check(req: Request) -> bool:
    if req.method not in UNSAFE_METHODS:
        return False
    # Login and signup are posted before the visitor has a session.
    return not (req.endpoint or "").startswith("auth.")
