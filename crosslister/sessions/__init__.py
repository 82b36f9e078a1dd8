from crosslister.sessions.types import AuthMaterial, Identity, Session  # noqa: F401
