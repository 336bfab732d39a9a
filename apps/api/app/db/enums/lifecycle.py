"""Client lifecycle (product webhook) enums."""

from enum import Enum


class LifecycleEventType(str, Enum):
    """Events reported by the product for a trial user."""

    TRIAL_STARTED = "trial_started"
    PASSWORD_SET = "password_set"
    FIRST_LOGIN = "first_login"
    CALCULATOR_VIEWED = "calculator_viewed"
    CALCULATOR_MODIFIED = "calculator_modified"
    EMBED_SNIPPET_COPIED = "embed_snippet_copied"
    FIRST_LEAD_RECEIVED = "first_lead_received"
    TRIAL_QUALIFIED = "trial_qualified"
    CREDITS_LOW = "credits_low"
    CREDITS_FIRST_USED = "credits_first_used"
    TRIAL_EXPIRING = "trial_expiring"
    PAID_SUBSCRIBED = "paid_subscribed"
    # Deprecated aliases (still accepted)
    TRIAL_ACTIVATED = "trial_activated"
    SNIPPET_INSTALLED = "snippet_installed"


# Events that can complete the activation milestone
ACTIVATION_TRIGGER_EVENTS = frozenset({
    LifecycleEventType.CALCULATOR_MODIFIED,
    LifecycleEventType.FIRST_LEAD_RECEIVED,
})


class ClientStatus(str, Enum):
    """Lead-level client status mirrored from lifecycle events."""

    TRIALING = "trialing"
    PASSWORD_SET = "password_set"
    TRIAL_ACTIVATED = "trial_activated"
    CALCULATOR_VIEWED = "calculator_viewed"
    SNIPPET_COPIED = "snippet_copied"
    SNIPPET_INSTALLED = "snippet_installed"
    TRIAL_QUALIFIED = "trial_qualified"
    CREDITS_LOW = "credits_low"
    PROVEN_LIVE = "proven_live"
    TRIAL_EXPIRING = "trial_expiring"
    PAID = "paid"


class LeadBadge(str, Enum):
    """Lead list badges driven by lifecycle events."""

    TRIAL_AWAITING_ACTIVATION = "trial_awaiting_activation"
    TRIAL_ACTIVATED = "trial_activated"
    TRIAL_CONFIGURED = "trial_configured"
    TRIAL_EMBED_COPIED = "trial_embed_copied"
    TRIAL_LIVE_FIRST_LEAD = "trial_live_first_lead"
    CONVERTED_RECENT = "converted_recent"


EVENT_BADGES: dict[LifecycleEventType, LeadBadge] = {
    LifecycleEventType.TRIAL_STARTED: LeadBadge.TRIAL_AWAITING_ACTIVATION,
    LifecycleEventType.PASSWORD_SET: LeadBadge.TRIAL_ACTIVATED,
    LifecycleEventType.FIRST_LOGIN: LeadBadge.TRIAL_ACTIVATED,
    LifecycleEventType.CALCULATOR_MODIFIED: LeadBadge.TRIAL_CONFIGURED,
    LifecycleEventType.EMBED_SNIPPET_COPIED: LeadBadge.TRIAL_EMBED_COPIED,
    LifecycleEventType.FIRST_LEAD_RECEIVED: LeadBadge.TRIAL_LIVE_FIRST_LEAD,
    LifecycleEventType.PAID_SUBSCRIBED: LeadBadge.CONVERTED_RECENT,
}


class BonusTrigger(str, Enum):
    """Campaign bonus rule triggers."""

    PROVEN_INSTALL = "proven_install"


class BonusState(str, Enum):
    """Pipeline bonus payout state."""

    PENDING = "pending"
    AWARDED = "awarded"
