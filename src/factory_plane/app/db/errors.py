"""Control-database error hierarchy.

Raised by ``SupabaseClient`` for PostgREST error responses. The errors
carry the PostgREST error fields but never the request headers, so they
are safe to log.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class SupabaseError(Exception):
    """A PostgREST request against the control database failed."""

    status_code: int
    message: str
    code: str | None = None
    details: str | None = None
    hint: str | None = None

    def __str__(self) -> str:
        bits: list[str] = [f"{type(self).__name__}(status={self.status_code})", self.message]
        if self.code:
            bits.append(f"code={self.code}")
        if self.details:
            bits.append(f"details={self.details}")
        return " ".join(bits)


class SupabaseAuthError(SupabaseError):
    """401/403: wrong service-role key or a row-level-security denial."""


class SupabaseNotFoundError(SupabaseError):
    """404: the table or route does not exist (migration not applied)."""


class SupabaseConflictError(SupabaseError):
    """409: unique violation, e.g. a second run for the same slug."""
