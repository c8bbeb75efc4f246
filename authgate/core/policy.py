"""Path-prefix access policy applied to every inbound request.

The policy is a plain value: a set of protected prefixes plus the sign-in
entry point. :func:`decide` is pure and total over ``(path, identity?)``.
"""

import enum
from dataclasses import dataclass
from typing import Iterable


class Decision(enum.Enum):
    ALLOW = "allow"
    REDIRECT_TO_SIGN_IN = "redirect_to_sign_in"


def _matches(path: str, prefix: str) -> bool:
    return path.startswith(prefix)


@dataclass(frozen=True)
class AccessPolicy:
    protected_prefixes: tuple[str, ...]
    sign_in_path: str

    @classmethod
    def build(cls, protected_prefixes: Iterable[str], sign_in_path: str) -> "AccessPolicy":
        """Validate and freeze a policy.

        The sign-in path must never fall under a protected prefix; that is
        what keeps an anonymous caller from being redirected forever.
        """
        prefixes = tuple(p for p in protected_prefixes if p)
        if not sign_in_path.startswith("/"):
            raise ValueError("sign_in_path must be an absolute path")
        for prefix in prefixes:
            if not prefix.startswith("/"):
                raise ValueError(f"protected prefix {prefix!r} must start with '/'")
            if _matches(sign_in_path, prefix):
                raise ValueError(
                    f"sign-in path {sign_in_path!r} is covered by protected prefix {prefix!r}"
                )
        return cls(protected_prefixes=prefixes, sign_in_path=sign_in_path)

    def is_protected(self, path: str) -> bool:
        return any(_matches(path, prefix) for prefix in self.protected_prefixes)


def decide(policy: AccessPolicy, path: str, has_identity: bool) -> Decision:
    if policy.is_protected(path) and not has_identity:
        return Decision.REDIRECT_TO_SIGN_IN
    return Decision.ALLOW
