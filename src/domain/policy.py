from dataclasses import dataclass
from typing import Literal

from src.domain.entities import Identity, Manga
from src.domain.errors import AuthenticationError, AuthorizationError, NotFoundError

Action = Literal[
    "manga:create",
    "manga:list_own",
    "manga:list_pending",
    "manga:read",
    "manga:edit",
    "manga:upload",
    "manga:upload_cover",
    "manga:delete",
    "manga:moderate",
]


@dataclass(frozen=True)
class Rule:
    """
    One row of the policy table.

    - public_if_approved: anyone (even anonymous) passes when the item is approved
    - roles: roles that pass regardless of ownership
    - owner: the item's owner passes
    - any_user: any authenticated requester passes
    - conceal: denials are reported as "not found" so existence is not revealed
    """

    roles: frozenset[str] = frozenset()
    owner: bool = False
    any_user: bool = False
    public_if_approved: bool = False
    conceal: bool = False


POLICY_RULES: dict[Action, Rule] = {
    "manga:create": Rule(any_user=True),
    "manga:list_own": Rule(any_user=True),
    "manga:list_pending": Rule(roles=frozenset({"moderator", "admin"})),
    "manga:read": Rule(
        roles=frozenset({"moderator", "admin"}),
        owner=True,
        public_if_approved=True,
        conceal=True,
    ),
    "manga:edit": Rule(roles=frozenset({"admin"}), owner=True),
    "manga:upload": Rule(roles=frozenset({"admin"}), owner=True),
    "manga:upload_cover": Rule(roles=frozenset({"admin"}), owner=True),
    "manga:delete": Rule(roles=frozenset({"moderator", "admin"}), owner=True),
    "manga:moderate": Rule(roles=frozenset({"moderator", "admin"})),
}


@dataclass(frozen=True)
class Decision:
    allowed: bool
    outcome: Literal["allow", "unauthenticated", "forbidden", "not_found"] = "allow"
    reason: str = ""


ALLOW = Decision(allowed=True)


def decide(
    identity: Identity | None,
    action: Action,
    resource: Manga | None = None,
    rules: dict[Action, Rule] = POLICY_RULES,
) -> Decision:
    """
    Pure policy function: (identity-or-none, action, resource) -> decision.

    Order of precedence:
    1. Public read of approved content
    2. Authentication
    3. Role grant
    4. Ownership
    5. Any authenticated user
    """
    rule = rules.get(action)
    if rule is None:
        return Decision(False, "forbidden", f"Unknown action '{action}'")

    if rule.public_if_approved and resource is not None and resource.status == "approved":
        return ALLOW

    if identity is None:
        if rule.conceal:
            return Decision(False, "not_found", "Manga not found")
        return Decision(False, "unauthenticated", "Not authenticated")

    if identity.role in rule.roles:
        return ALLOW

    if rule.owner and resource is not None and resource.is_owned_by(identity.id):
        return ALLOW

    if rule.any_user:
        return ALLOW

    if rule.conceal:
        return Decision(False, "not_found", "Manga not found")
    return Decision(False, "forbidden", f"Not allowed to perform '{action}'")


class PolicyEngine:
    """Thin stateful wrapper so services can take the policy as a dependency."""

    def __init__(self, rules: dict[Action, Rule] | None = None):
        self.rules = rules if rules is not None else POLICY_RULES

    def decide(
        self, identity: Identity | None, action: Action, resource: Manga | None = None
    ) -> Decision:
        return decide(identity, action, resource, self.rules)

    def check_permission(
        self, identity: Identity | None, action: Action, resource: Manga | None = None
    ) -> bool:
        return self.decide(identity, action, resource).allowed

    def enforce(
        self, identity: Identity | None, action: Action, resource: Manga | None = None
    ) -> None:
        """Raise the error matching the decision outcome, or return if allowed."""
        decision = self.decide(identity, action, resource)
        if decision.allowed:
            return
        if decision.outcome == "unauthenticated":
            raise AuthenticationError(decision.reason)
        if decision.outcome == "not_found":
            raise NotFoundError(decision.reason)
        raise AuthorizationError(decision.reason)
