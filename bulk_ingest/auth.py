from fastapi import Header

BEARER_PREFIX = "Bearer "


def parse_bearer_token(authorization: str | None) -> str | None:
    """Return the token from an ``Authorization: Bearer`` header, or None.

    A missing or malformed header is not an error here; the pipeline reports it
    as an unauthenticated submission.
    """
    if not authorization or not authorization.startswith(BEARER_PREFIX):
        return None
    token = authorization[len(BEARER_PREFIX) :].strip()
    return token or None


def request_credential(authorization: str | None = Header(default=None, alias="Authorization")) -> str | None:
    return parse_bearer_token(authorization)
