"""Definition graph: parsing, validation and routing of a node graph.

A definition's ``node_config`` is a list of nodes:

{
    "nodes": [
        {"id": "start", "type": "start", "name": "Start"},
        {"id": "manager", "type": "approval", "name": "Manager",
         "assignee": {"type": "supervisor"}},
        {"id": "check", "type": "condition", "name": "Long leave?",
         "branches": [{"when": {"field": "days", "op": "gt", "value": 3},
                       "next": "hr"}],
         "default": "end"},
        {"id": "hr", "type": "approval", "name": "HR",
         "assignee": {"type": "role", "id": "admin"}},
        {"id": "end", "type": "end", "name": "End"}
    ]
}

``next`` lists successors explicitly; when omitted the successor is the
following node in list order. Start, condition and service nodes are
routed through automatically; only approval and parallel nodes stop the
instance and produce ledger entries. Completion is graph-based: an
instance is finished when routing reaches an end node.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from core.constants import AssigneeType, NodeType
from core.exceptions import ValidationError

ACTIONABLE_TYPES = (NodeType.APPROVAL, NodeType.PARALLEL)
PASS_THROUGH_TYPES = (NodeType.START, NodeType.CONDITION, NodeType.SERVICE)


@dataclass(frozen=True)
class AssigneeRule:
    """Declared assignee of an approval node."""

    type: AssigneeType
    id: Optional[str] = None
    field: Optional[str] = None
    relative_to: str = "initiator"

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AssigneeRule":
        return cls(
            type=AssigneeType(data["type"]),
            id=str(data["id"]) if data.get("id") is not None else None,
            field=data.get("field"),
            relative_to=data.get("relativeTo", "initiator"),
        )


@dataclass(frozen=True)
class Branch:
    """One guarded edge out of a condition node."""

    when: dict[str, Any]
    next: str


@dataclass(frozen=True)
class Node:
    """A node of the definition graph."""

    id: str
    type: NodeType
    name: str
    assignee: Optional[AssigneeRule] = None
    assignees: tuple[AssigneeRule, ...] = ()
    next: tuple[str, ...] = ()
    branches: tuple[Branch, ...] = ()
    default: Optional[str] = None

    @property
    def is_actionable(self) -> bool:
        return self.type in ACTIONABLE_TYPES

    @property
    def is_end(self) -> bool:
        return self.type == NodeType.END

    def targets(self) -> list[str]:
        """Every node this node may route to."""
        if self.type == NodeType.CONDITION:
            out = [b.next for b in self.branches]
            if self.default:
                out.append(self.default)
            return out
        return list(self.next)


# ─── Condition evaluation ──────────────────────────────────────

_MISSING = object()


def _compare(op: str, left: Any, right: Any) -> bool:
    if op == "exists":
        return left is not _MISSING and left is not None
    if left is _MISSING:
        return False
    try:
        if op == "eq":
            return left == right
        if op == "ne":
            return left != right
        if op == "gt":
            return left > right
        if op == "gte":
            return left >= right
        if op == "lt":
            return left < right
        if op == "lte":
            return left <= right
        if op == "in":
            return left in right
        if op == "not_in":
            return left not in right
    except TypeError:
        # Mismatched types (e.g. "3" > 2) never satisfy a comparison
        return False
    raise ValueError(f"Unsupported condition operator: {op}")


def evaluate_condition(when: dict[str, Any], form_data: dict[str, Any]) -> bool:
    """Evaluate a branch guard against the instance form data.

    Guards are either a single comparison ``{"field", "op", "value"}`` or a
    combination ``{"all": [...]}`` / ``{"any": [...]}``.
    """
    if "all" in when:
        return all(evaluate_condition(w, form_data) for w in when["all"])
    if "any" in when:
        return any(evaluate_condition(w, form_data) for w in when["any"])
    left = form_data.get(when.get("field"), _MISSING)
    return _compare(when.get("op", "eq"), left, when.get("value"))


# ─── Graph ─────────────────────────────────────────────────────

CONDITION_OPS = {"eq", "ne", "gt", "gte", "lt", "lte", "in", "not_in", "exists"}


class DefinitionGraph:
    """Immutable, validated view of a definition's node graph."""

    def __init__(self, nodes: list[Node]):
        self.nodes = nodes
        self._by_id = {n.id: n for n in nodes}

    # ─── Parsing ───────────────────────────────────────────

    @classmethod
    def parse(cls, node_config: Optional[dict[str, Any]]) -> "DefinitionGraph":
        """Parse and validate a ``node_config`` document.

        Raises:
            ValidationError: listing every structural problem found
        """
        if not isinstance(node_config, dict) or not isinstance(node_config.get("nodes"), list):
            raise ValidationError("Invalid workflow graph", ["node_config.nodes must be a list"])

        raw_nodes = node_config["nodes"]
        if not raw_nodes:
            raise ValidationError("Invalid workflow graph", ["node_config.nodes must not be empty"])

        errors: list[str] = []
        nodes: list[Node] = []
        for index, raw in enumerate(raw_nodes):
            try:
                nodes.append(cls._parse_node(raw, raw_nodes, index))
            except (KeyError, TypeError, ValueError) as e:
                errors.append(f"nodes[{index}]: {e}")
        if errors:
            raise ValidationError("Invalid workflow graph", errors)

        graph = cls(nodes)
        errors = graph.validate()
        if errors:
            raise ValidationError("Invalid workflow graph", errors)
        return graph

    @staticmethod
    def _parse_node(raw: dict[str, Any], raw_nodes: list, index: int) -> Node:
        if not isinstance(raw, dict):
            raise TypeError("node must be an object")
        node_type = NodeType(raw["type"])
        node_id = str(raw["id"])

        if "next" in raw:
            nxt = raw["next"]
            next_ids = tuple(str(n) for n in (nxt if isinstance(nxt, list) else [nxt]))
        elif node_type not in (NodeType.END, NodeType.CONDITION) and index + 1 < len(raw_nodes):
            following = raw_nodes[index + 1]
            # A malformed following node is reported on its own index
            next_ids = (str(following.get("id")),) if isinstance(following, dict) else ()
        else:
            next_ids = ()

        assignee = AssigneeRule.from_dict(raw["assignee"]) if raw.get("assignee") else None
        assignees = tuple(AssigneeRule.from_dict(a) for a in raw.get("assignees") or [])
        branches = tuple(
            Branch(when=b["when"], next=str(b["next"])) for b in raw.get("branches") or []
        )
        return Node(
            id=node_id,
            type=node_type,
            name=raw.get("name") or node_id,
            assignee=assignee,
            assignees=assignees,
            next=next_ids,
            branches=branches,
            default=str(raw["default"]) if raw.get("default") is not None else None,
        )

    def validate(self) -> list[str]:
        """Return a list of structural problems (empty when valid)."""
        errors: list[str] = []

        seen: set[str] = set()
        for node in self.nodes:
            if node.id in seen:
                errors.append(f"duplicate node id '{node.id}'")
            seen.add(node.id)

        starts = [n for n in self.nodes if n.type == NodeType.START]
        if len(starts) != 1:
            errors.append("graph must have exactly one start node")
        if not any(n.is_end for n in self.nodes):
            errors.append("graph must have at least one end node")

        for node in self.nodes:
            for target in node.targets():
                if target not in self._by_id:
                    errors.append(f"node '{node.id}' routes to unknown node '{target}'")
            if node.is_end and node.next:
                errors.append(f"end node '{node.id}' must not have successors")
            if node.type not in (NodeType.END, NodeType.CONDITION) and len(node.next) != 1:
                errors.append(f"node '{node.id}' must have exactly one successor")
            if node.type == NodeType.CONDITION:
                if not node.branches and not node.default:
                    errors.append(f"condition node '{node.id}' has no branches")
                for branch in node.branches:
                    errors.extend(self._validate_guard(node.id, branch.when))
            if node.type == NodeType.PARALLEL and not node.assignees:
                errors.append(f"parallel node '{node.id}' needs at least one assignee rule")
            for rule in ([node.assignee] if node.assignee else []) + list(node.assignees):
                errors.extend(self._validate_rule(node.id, rule))

        if errors:
            return errors

        reachable = self._reachable_from(starts[0].id)
        for node in self.nodes:
            if node.id not in reachable:
                errors.append(f"node '{node.id}' is unreachable from the start node")
        if self._has_cycle():
            errors.append("graph must not contain cycles")
        return errors

    @staticmethod
    def _validate_rule(node_id: str, rule: AssigneeRule) -> list[str]:
        if rule.type == AssigneeType.DYNAMIC and not rule.field:
            return [f"node '{node_id}' uses a dynamic assignee without 'field'"]
        if rule.type in (AssigneeType.USER, AssigneeType.ROLE, AssigneeType.DEPARTMENT) and not rule.id:
            return [f"node '{node_id}' assignee of type '{rule.type.value}' needs an id"]
        return []

    @staticmethod
    def _validate_guard(node_id: str, when: Any) -> list[str]:
        if not isinstance(when, dict):
            return [f"condition node '{node_id}' has a non-object guard"]
        # Same precedence as evaluate_condition: "all" wins over "any"
        combinator = "all" if "all" in when else "any" if "any" in when else None
        if combinator:
            subs = when[combinator]
            if not isinstance(subs, list):
                return [f"condition node '{node_id}' needs a list under '{combinator}'"]
            errors = []
            for sub in subs:
                errors.extend(DefinitionGraph._validate_guard(node_id, sub))
            return errors
        if when.get("op", "eq") not in CONDITION_OPS:
            return [f"condition node '{node_id}' uses unsupported operator '{when.get('op')}'"]
        if not when.get("field"):
            return [f"condition node '{node_id}' has a guard without 'field'"]
        return []

    def _reachable_from(self, node_id: str) -> set[str]:
        stack, seen = [node_id], set()
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            stack.extend(self._by_id[current].targets())
        return seen

    def _has_cycle(self) -> bool:
        visiting, done = set(), set()

        def visit(node_id: str) -> bool:
            if node_id in done:
                return False
            if node_id in visiting:
                return True
            visiting.add(node_id)
            if any(visit(t) for t in self._by_id[node_id].targets()):
                return True
            visiting.discard(node_id)
            done.add(node_id)
            return False

        return any(visit(n.id) for n in self.nodes)

    # ─── Queries ───────────────────────────────────────────

    @property
    def start_node(self) -> Node:
        return next(n for n in self.nodes if n.type == NodeType.START)

    def has_node(self, node_id: Optional[str]) -> bool:
        return node_id in self._by_id

    def node(self, node_id: str) -> Node:
        try:
            return self._by_id[node_id]
        except KeyError:
            raise ValidationError(f"Node '{node_id}' does not exist in the workflow graph")

    def successor(self, node_id: str, form_data: dict[str, Any]) -> Node:
        """Route one hop out of ``node_id``."""
        node = self.node(node_id)
        if node.type == NodeType.CONDITION:
            for branch in node.branches:
                if evaluate_condition(branch.when, form_data):
                    return self.node(branch.next)
            if node.default is None:
                raise ValidationError(
                    f"No branch of condition node '{node.id}' matches the form data"
                )
            return self.node(node.default)
        return self.node(node.next[0])

    def next_actionable(self, node_id: str, form_data: dict[str, Any]) -> Optional[Node]:
        """Walk from ``node_id`` to the next approval/parallel node.

        Returns None when routing reaches an end node, meaning the
        instance is complete.
        """
        current = self.successor(node_id, form_data)
        while not current.is_actionable:
            if current.is_end:
                return None
            current = self.successor(current.id, form_data)
        return current

    def first_actionable(self, form_data: dict[str, Any]) -> Optional[Node]:
        return self.next_actionable(self.start_node.id, form_data)
