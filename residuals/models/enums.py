from __future__ import annotations
from enum import Enum


class AssignmentStatus(str, Enum):
    unassigned = "unassigned"
    pending = "pending"
    pending_confirmation = "pending_confirmation"
    confirmed = "confirmed"


# Statuses a "pending" filter matches.
PENDING_STATUSES = (AssignmentStatus.pending.value, AssignmentStatus.pending_confirmation.value)


class PaidStatus(str, Enum):
    unpaid = "unpaid"
    paid = "paid"


class PayoutType(str, Enum):
    residual = "residual"
    upfront = "upfront"
    trueup = "trueup"
    bonus = "bonus"
    clawback = "clawback"
    adjustment = "adjustment"


class ActionType(str, Enum):
    create = "create"
    update = "update"
    delete = "delete"
    reject = "reject"
    bulk_update = "bulk_update"
    bulk_delete = "bulk_delete"
    import_ = "import"
    sync = "sync"
    undo = "undo"
    merge = "merge"
    maintenance = "maintenance"


class EntityType(str, Enum):
    deal = "deal"
    participant = "participant"
    payout = "payout"
    assignment = "assignment"
    event = "event"
    merchant = "merchant"
    participant_merge = "participant_merge"
