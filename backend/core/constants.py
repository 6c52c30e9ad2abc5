"""Constants and enums for the OA workflow service."""

from enum import Enum


class DefinitionStatus(str, Enum):
    """Workflow definition status."""

    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"


class InstanceStatus(str, Enum):
    """Workflow instance status."""

    DRAFT = "draft"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELED = "canceled"
    TERMINATED = "terminated"

    @property
    def is_terminal(self) -> bool:
        return self not in (InstanceStatus.DRAFT, InstanceStatus.PROCESSING)


class NodeType(str, Enum):
    """Type of a node in a definition graph."""

    START = "start"
    APPROVAL = "approval"
    CONDITION = "condition"
    PARALLEL = "parallel"
    SERVICE = "service"
    END = "end"


class AssigneeType(str, Enum):
    """How the actor of an approval node is determined."""

    USER = "user"
    ROLE = "role"
    DEPARTMENT = "department"
    DYNAMIC = "dynamic"
    INITIATOR = "initiator"
    SUPERVISOR = "supervisor"


class NodeInstanceStatus(str, Enum):
    """Status of one executed step."""

    PENDING = "pending"
    PROCESSING = "processing"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"
    TERMINATED = "terminated"


OPEN_NODE_STATUSES = (NodeInstanceStatus.PENDING.value, NodeInstanceStatus.PROCESSING.value)


class Priority(str, Enum):
    """Instance priority."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class WorkflowCategory(str, Enum):
    """Well-known definition categories."""

    LEAVE = "leave"
    OVERTIME = "overtime"
    EXPENSE = "expense"
    GENERIC = "generic"


class DepartmentStatus(str, Enum):
    """Department status."""

    ACTIVE = "active"
    INACTIVE = "inactive"
