"""Structural, configuration and security validation of workflow graphs."""

import ipaddress
import re
import socket
from typing import Dict, Iterator, List, Mapping, Optional, Sequence, Tuple
from urllib.parse import unquote, urlsplit

from ..models.core import (
    IssueSeverity, ValidationConfig, ValidationIssue, ValidationResult,
    WorkflowEdge, WorkflowNode
)
from .logging import get_logger

logger = get_logger(__name__)

# Hostnames, or hostname prefixes, that requests must never be sent to
BLOCKED_HOSTS = (
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "169.254.169.254",  # AWS metadata
    "metadata.google.internal",  # GCP metadata
    "10.",
    "172.16.",
    "192.168.",
)

ALLOWED_SCHEMES = ("http", "https")

# Characters an IPv4 literal can be written with in decimal, octal or hex parts
_IPV4_LITERAL = re.compile(r"^[0-9a-fx.]+$")


def canonical_host(hostname: str) -> str:
    """
    Normalize a URL hostname the way browsers resolve it.

    Percent-escapes are decoded and IPv4 literals written in shorthand
    (``127.1``), as a single number (``2130706433``), or with octal or hex
    parts (``0177.0.0.1``, ``0x7f.0.0.1``) become dotted-quad form.
    Other hostnames are returned lower-cased and otherwise unchanged.
    """
    host = unquote(hostname).lower()
    candidate = host[:-1] if host.endswith(".") else host

    if candidate and candidate[0].isdigit() and _IPV4_LITERAL.match(candidate):
        try:
            return str(ipaddress.IPv4Address(socket.inet_aton(candidate)))
        except OSError:
            pass

    return host


def is_url_safe(url: str) -> bool:
    """
    Check that a URL may be requested by a workflow.

    A URL is safe when it parses, has a hostname that is not (and does not
    start with) any entry of :data:`BLOCKED_HOSTS`, and uses http or https.

    Args:
        url: URL to check

    Returns:
        True if the URL is allowed
    """
    try:
        parsed = urlsplit(url)
        hostname = parsed.hostname
    except (ValueError, TypeError, AttributeError):
        return False

    if not hostname:
        return False

    hostname = canonical_host(hostname)
    for blocked in BLOCKED_HOSTS:
        if hostname == blocked or hostname.startswith(blocked):
            return False

    return parsed.scheme in ALLOWED_SCHEMES


def detect_cycles(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> List[List[str]]:
    """
    List the directed cycles found by a depth-first search.

    Roots are tried in ``nodes`` order. When a root's traversal reaches a
    node on its active path it records ``path[index(node):] + [node]`` and
    abandons the rest of that root's traversal.

    Returns:
        One list of node IDs per discovered cycle, first and last entry equal
    """
    graph: Dict[str, List[str]] = {node.id: [] for node in nodes}
    for edge in edges:
        graph.setdefault(edge.source, []).append(edge.target)

    cycles: List[List[str]] = []
    visited = set()

    for root in nodes:
        if root.id in visited:
            continue

        visited.add(root.id)
        path: List[str] = [root.id]
        on_path = {root.id}
        stack: List[Tuple[str, Iterator[str]]] = [(root.id, iter(graph.get(root.id, ())))]

        while stack:
            node_id, neighbors = stack[-1]
            found = None
            advanced = False
            for neighbor_id in neighbors:
                if neighbor_id in on_path:
                    found = neighbor_id
                    break
                if neighbor_id not in visited:
                    visited.add(neighbor_id)
                    on_path.add(neighbor_id)
                    path.append(neighbor_id)
                    stack.append((neighbor_id, iter(graph.get(neighbor_id, ()))))
                    advanced = True
                    break

            if found is not None:
                cycles.append(path[path.index(found):] + [found])
                break
            if not advanced:
                stack.pop()
                on_path.discard(path.pop())

    return cycles


def calculate_score(issues: Sequence[ValidationIssue]) -> int:
    """
    Reduce issues to a score between 0 and 100.

    Errors dominate: any error caps the score at 30. Warnings alone never
    push the score below 60. Info issues do not count.
    """
    error_count = sum(1 for issue in issues if issue.severity == IssueSeverity.ERROR)
    warning_count = sum(1 for issue in issues if issue.severity == IssueSeverity.WARNING)

    if error_count > 0:
        return max(0, 40 - error_count * 10)
    if warning_count > 0:
        return max(60, 90 - warning_count * 10)
    return 100


def get_grade(score: int) -> str:
    """Map a score to a letter grade."""
    if score >= 90:
        return "A"
    if score >= 80:
        return "B"
    if score >= 70:
        return "C"
    if score >= 60:
        return "D"
    return "F"


class GraphValidator:
    """Runs validation rules over a workflow graph."""

    def __init__(self, config: Optional[ValidationConfig] = None):
        """Initialize the validator.

        Args:
            config: Rule switches; defaults enable every check
        """
        self.config = config or ValidationConfig()

    def validate(self, nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> List[ValidationIssue]:
        """
        Validate a workflow graph.

        Every rule runs; an issue from one rule never prevents the others.

        Args:
            nodes: Graph nodes
            edges: Graph edges

        Returns:
            List[ValidationIssue]: Issues in rule order
        """
        issues: List[ValidationIssue] = []

        try:
            if self.config.check_cycles:
                issues.extend(self._check_cycles(nodes, edges))
            issues.extend(self._check_orphans(nodes, edges))
            issues.extend(self._check_start_node(nodes))
            issues.extend(self._check_end_reachable(nodes, edges))
            if self.config.check_configuration:
                issues.extend(self._check_configuration(nodes))
            issues.extend(self._check_unused_outputs(nodes, edges))
            issues.extend(self._check_chain_length(nodes, edges))
        except Exception as e:
            logger.error(f"Unexpected error during graph validation: {str(e)}")
            issues.append(ValidationIssue(
                severity=IssueSeverity.ERROR,
                message=f"Validation error: {str(e)}"
            ))

        if self.config.strict_mode:
            issues = [
                issue.model_copy(update={"severity": IssueSeverity.ERROR})
                if issue.severity == IssueSeverity.WARNING else issue
                for issue in issues
            ]

        logger.debug(f"Validated graph with {len(nodes)} node(s): {len(issues)} issue(s)")
        return issues

    def validate_credentials(
        self,
        credentials: Mapping[str, str],
        nodes: Sequence[WorkflowNode]
    ) -> List[ValidationIssue]:
        """
        Check that every provider the graph uses has a credential.

        Args:
            credentials: Provider name to secret
            nodes: Graph nodes

        Returns:
            List[ValidationIssue]: One error per provider without a credential
        """
        required: Dict[str, None] = {}
        for node in nodes:
            if node.type == "textModel" and node.data.get("model"):
                provider = str(node.data["model"]).split("/")[0]
                required[provider] = None
            if node.type == "imageGeneration":
                required["google"] = None

        issues = []
        for provider in required:
            secret = credentials.get(provider)
            if not secret or not str(secret).strip():
                issues.append(ValidationIssue(
                    severity=IssueSeverity.ERROR,
                    field=provider,
                    message=(
                        f"Missing {provider[:1].upper() + provider[1:]} API key - "
                        f"workflow uses {provider} models but no key is configured"
                    ),
                    suggestion="Add a credential for this provider"
                ))
        return issues

    def analyze(
        self,
        nodes: Sequence[WorkflowNode],
        edges: Sequence[WorkflowEdge],
        credentials: Optional[Mapping[str, str]] = None
    ) -> ValidationResult:
        """
        Validate a graph and score the outcome.

        Credentials are only checked when supplied and ``check_api_keys`` is on.
        """
        issues = self.validate(nodes, edges)
        if credentials is not None and self.config.check_api_keys:
            issues.extend(self.validate_credentials(credentials, nodes))

        score = calculate_score(issues)
        has_errors = any(issue.severity == IssueSeverity.ERROR for issue in issues)
        has_warnings = any(issue.severity == IssueSeverity.WARNING for issue in issues)

        return ValidationResult(
            valid=not has_errors and not has_warnings,
            can_execute=not has_errors,
            score=score,
            grade=get_grade(score),
            issues=issues
        )

    def _check_cycles(self, nodes, edges) -> List[ValidationIssue]:
        return [
            ValidationIssue(
                severity=IssueSeverity.ERROR,
                node_id=cycle[0],
                message=f"Cycle detected - infinite loop found involving nodes: {' -> '.join(cycle)}",
                suggestion="Remove connections that create circular dependencies"
            )
            for cycle in detect_cycles(nodes, edges)
        ]

    def _check_orphans(self, nodes, edges) -> List[ValidationIssue]:
        if len(nodes) <= 1:
            return []
        connected = set()
        for edge in edges:
            connected.add(edge.source)
            connected.add(edge.target)

        return [
            ValidationIssue(
                severity=IssueSeverity.WARNING,
                node_id=node.id,
                message="Orphan node - not connected to the workflow and will not execute",
                suggestion="Connect this node to the workflow or remove it"
            )
            for node in nodes
            if node.id not in connected and node.type != "start"
        ]

    def _check_start_node(self, nodes) -> List[ValidationIssue]:
        if not nodes or any(node.type == "start" for node in nodes):
            return []
        return [ValidationIssue(
            severity=IssueSeverity.WARNING,
            message="No start node - workflow needs an entry point",
            suggestion="Add a start node to define where execution begins"
        )]

    def _check_end_reachable(self, nodes, edges) -> List[ValidationIssue]:
        if len(nodes) <= 1:
            return []
        targets = {edge.target for edge in edges}
        return [
            ValidationIssue(
                severity=IssueSeverity.WARNING,
                node_id=node.id,
                message="Unreachable end node - cannot be reached from any other node",
                suggestion="Connect this node to the workflow or remove it"
            )
            for node in nodes
            if node.type == "end" and node.id not in targets
        ]

    def _check_configuration(self, nodes) -> List[ValidationIssue]:
        issues = []
        for node in nodes:
            data = node.data

            if node.type == "textModel":
                if not data.get("model"):
                    issues.append(ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        node_id=node.id,
                        field="model",
                        message="Text model node requires a model to be selected",
                        suggestion="Select a model in the node configuration"
                    ))

            elif node.type == "httpRequest":
                url = data.get("url")
                if not url:
                    issues.append(ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        node_id=node.id,
                        field="url",
                        message="HTTP request node requires a URL",
                        suggestion="Enter a valid HTTP or HTTPS URL"
                    ))
                elif self.config.check_ssrf and not is_url_safe(str(url)):
                    issues.append(ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        node_id=node.id,
                        field="url",
                        message="Unsafe URL - points to a private network or uses an unsupported protocol",
                        suggestion=(
                            "Only public HTTP/HTTPS endpoints are allowed. "
                            "Avoid localhost, private IPs and metadata endpoints"
                        )
                    ))

            elif node.type == "prompt":
                if not data.get("content") and not data.get("prompt"):
                    issues.append(ValidationIssue(
                        severity=IssueSeverity.WARNING,
                        node_id=node.id,
                        field="content",
                        message="Prompt node has no content",
                        suggestion="Add prompt text or a template"
                    ))

            elif node.type == "conditional":
                if not data.get("condition"):
                    issues.append(ValidationIssue(
                        severity=IssueSeverity.ERROR,
                        node_id=node.id,
                        field="condition",
                        message="Conditional node requires a condition expression",
                        suggestion="Add an expression that evaluates to true or false"
                    ))
        return issues

    def _check_unused_outputs(self, nodes, edges) -> List[ValidationIssue]:
        # Any node no edge points at, entry nodes included
        if len(nodes) <= 1:
            return []
        targets = {edge.target for edge in edges}
        return [
            ValidationIssue(
                severity=IssueSeverity.INFO,
                node_id=node.id,
                message="Node output not connected - result will not be used",
                suggestion="Connect to another node or add an end node"
            )
            for node in nodes
            if node.id not in targets and node.type != "end"
        ]

    def _check_chain_length(self, nodes, edges) -> List[ValidationIssue]:
        lengths = chain_lengths(nodes, edges)
        limit = self.config.max_chain_depth
        return [
            ValidationIssue(
                severity=IssueSeverity.INFO,
                node_id=node.id,
                message=f"Long execution chain detected (>{limit} nodes deep)",
                suggestion="Consider breaking into smaller workflows or adding checkpoints for easier debugging"
            )
            for node in nodes
            if lengths.get(node.id, 0) > limit
        ]


def chain_lengths(nodes: Sequence[WorkflowNode], edges: Sequence[WorkflowEdge]) -> Dict[str, int]:
    """
    Length of the longest chain of incoming edges ending at each node.

    A node without incoming edges has length 1. An edge from a node whose
    length is still being computed (a cycle) contributes nothing.
    """
    incoming: Dict[str, List[str]] = {}
    for edge in edges:
        incoming.setdefault(edge.target, []).append(edge.source)

    lengths: Dict[str, int] = {}
    in_progress = set()

    for node in nodes:
        if node.id in lengths:
            continue

        in_progress.add(node.id)
        stack: List[Tuple[str, Iterator[str]]] = [(node.id, iter(incoming.get(node.id, ())))]
        best: Dict[str, int] = {node.id: 0}

        while stack:
            node_id, sources = stack[-1]
            for source_id in sources:
                if source_id in lengths:
                    best[node_id] = max(best[node_id], lengths[source_id])
                elif source_id not in in_progress:
                    in_progress.add(source_id)
                    best[source_id] = 0
                    stack.append((source_id, iter(incoming.get(source_id, ()))))
                    break
            else:
                stack.pop()
                in_progress.discard(node_id)
                lengths[node_id] = best.pop(node_id) + 1
                if stack:
                    parent_id = stack[-1][0]
                    best[parent_id] = max(best[parent_id], lengths[node_id])

    return lengths


def validate_workflow(
    nodes: Sequence[WorkflowNode],
    edges: Sequence[WorkflowEdge],
    config: Optional[ValidationConfig] = None
) -> List[ValidationIssue]:
    """Validate a graph with a one-off :class:`GraphValidator`."""
    return GraphValidator(config).validate(nodes, edges)


def validate_credentials(credentials: Mapping[str, str], nodes: Sequence[WorkflowNode]) -> List[ValidationIssue]:
    """Check provider credentials with a default :class:`GraphValidator`."""
    return GraphValidator().validate_credentials(credentials, nodes)
