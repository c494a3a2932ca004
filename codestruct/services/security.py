"""Security scanner.

Hybrid scanning: literal-pattern rules matched against raw source lines, plus
tree-aware checks for logging calls that leak credential-derived values.
Nothing is executed or evaluated; everything is lexical or structural.
"""

import logging
import re
from collections import Counter
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Literal

from codestruct.schemas.issue import (
    SECURITY_ISSUE_TYPES,
    Issue,
    IssueSeverity,
    IssueType,
    SecurityMetrics,
)
from codestruct.services.detectors.base import CODE_LANGUAGES, Detector, FileContext, build_issue
from codestruct.services.parser import SourceAST, SourceNode
from codestruct.services.source import CONFIG_LANGUAGE

logger = logging.getLogger(__name__)

RuleScope = Literal["all", "code", "config"]


@dataclass(frozen=True)
class LiteralRule:
    """A regex rule matched line by line.

    ``family`` selects the confidence override key; the named group ``value``,
    when present, holds the text that gets masked and placeholder-filtered.
    """

    rule_id: str
    family: str
    issue_type: IssueType
    severity: IssueSeverity
    confidence: int
    pattern: re.Pattern
    description: str
    scope: RuleScope = "all"


_CREDENTIAL_KEY = (
    r"[\w.-]*(?:password|passwd|pwd|secret|api[_-]?key|apikey|access[_-]?token"
    r"|auth[_-]?token|token|private[_-]?key|client[_-]?secret)"
)

LITERAL_RULES: list[LiteralRule] = [
    # Credentials
    LiteralRule(
        rule_id="credential-assignment",
        family="credentials",
        issue_type=IssueType.HARDCODED_CREDENTIALS,
        severity=IssueSeverity.CRITICAL,
        confidence=92,
        pattern=re.compile(
            rf"""(?i)(?P<key>{_CREDENTIAL_KEY})["']?\s*[:=]\s*(?P<q>["'`])(?P<value>[^"'`\s]{{4,}})(?P=q)"""
        ),
        description="Hardcoded credential",
    ),
    LiteralRule(
        rule_id="config-credential",
        family="credentials",
        issue_type=IssueType.HARDCODED_CREDENTIALS,
        severity=IssueSeverity.CRITICAL,
        confidence=90,
        pattern=re.compile(
            rf"""(?i)^\s*(?:export\s+)?(?P<key>{_CREDENTIAL_KEY})\s*[:=]\s*(?P<value>[^\s"'`#][^\s#]{{3,}})\s*$"""
        ),
        description="Hardcoded credential in configuration",
        scope="config",
    ),
    LiteralRule(
        rule_id="database-url-credentials",
        family="credentials",
        issue_type=IssueType.HARDCODED_CREDENTIALS,
        severity=IssueSeverity.CRITICAL,
        confidence=95,
        pattern=re.compile(
            r"(?i)\b(?:mysql|postgres(?:ql)?|mongodb(?:\+srv)?|redis|amqp|mssql)://[^:\s/@]+:(?P<value>[^@\s/]+)@"
        ),
        description="Database URL with embedded password",
    ),
    # Secrets
    LiteralRule(
        rule_id="aws-access-key",
        family="secrets",
        issue_type=IssueType.HARDCODED_SECRETS,
        severity=IssueSeverity.CRITICAL,
        confidence=95,
        pattern=re.compile(r"\b(?P<value>(?:AKIA|ASIA)[0-9A-Z]{16})\b"),
        description="AWS access key ID",
    ),
    LiteralRule(
        rule_id="private-key-block",
        family="secrets",
        issue_type=IssueType.HARDCODED_SECRETS,
        severity=IssueSeverity.CRITICAL,
        confidence=100,
        pattern=re.compile(r"-----BEGIN (?:RSA |EC |DSA |OPENSSH |ENCRYPTED )?PRIVATE KEY-----"),
        description="Private key material",
    ),
    LiteralRule(
        rule_id="jwt",
        family="secrets",
        issue_type=IssueType.HARDCODED_SECRETS,
        severity=IssueSeverity.CRITICAL,
        confidence=90,
        pattern=re.compile(r"\b(?P<value>eyJ[A-Za-z0-9_-]{8,}\.eyJ[A-Za-z0-9_-]{8,}\.[A-Za-z0-9_-]{8,})"),
        description="JSON Web Token",
    ),
    LiteralRule(
        rule_id="github-token",
        family="secrets",
        issue_type=IssueType.HARDCODED_SECRETS,
        severity=IssueSeverity.CRITICAL,
        confidence=95,
        pattern=re.compile(r"\b(?P<value>gh[pousr]_[A-Za-z0-9]{36,})\b"),
        description="GitHub token",
    ),
    LiteralRule(
        rule_id="slack-token",
        family="secrets",
        issue_type=IssueType.HARDCODED_SECRETS,
        severity=IssueSeverity.CRITICAL,
        confidence=95,
        pattern=re.compile(r"\b(?P<value>xox[baprs]-[A-Za-z0-9-]{10,})\b"),
        description="Slack token",
    ),
    # Weak encryption
    LiteralRule(
        rule_id="weak-hash",
        family="weak_encryption",
        issue_type=IssueType.WEAK_ENCRYPTION,
        severity=IssueSeverity.MEDIUM,
        confidence=80,
        pattern=re.compile(
            r"""(?i)(?:\b(?:hashlib\.)?(?P<value>md5|sha1)\s*\(|createHash\(\s*["'](?:md5|sha1)["']|hashlib\.new\(\s*["'](?:md5|sha1)["'])"""
        ),
        description="Weak hash function",
        scope="code",
    ),
    LiteralRule(
        rule_id="weak-cipher",
        family="weak_encryption",
        issue_type=IssueType.WEAK_ENCRYPTION,
        severity=IssueSeverity.MEDIUM,
        confidence=80,
        pattern=re.compile(
            r"""(?:\b(?P<value>DES|DES3|TripleDES|RC4|ARC4|Blowfish)(?:\.new\b|\s*\()|Cipher\.getInstance\(\s*["'](?:DES|RC4|DESede)|\bMODE_ECB\b)"""
        ),
        description="Weak or broken cipher",
        scope="code",
    ),
    LiteralRule(
        rule_id="insecure-random",
        family="weak_encryption",
        issue_type=IssueType.WEAK_ENCRYPTION,
        severity=IssueSeverity.MEDIUM,
        confidence=80,
        pattern=re.compile(r"\bMath\.random\(\)"),
        description="Non-cryptographic random number generator",
        scope="code",
    ),
    # Hardcoded environment values
    LiteralRule(
        rule_id="hardcoded-url",
        family="hardcoded_values",
        issue_type=IssueType.HARDCODED_VALUES,
        severity=IssueSeverity.LOW,
        confidence=70,
        pattern=re.compile(
            r"""(?P<q>["'])(?P<value>https?://(?!localhost|127\.0\.0\.1|example\.|www\.w3\.org)[^"'\s]+)(?P=q)"""
        ),
        description="Hardcoded URL",
        scope="code",
    ),
    LiteralRule(
        rule_id="hardcoded-ip",
        family="hardcoded_values",
        issue_type=IssueType.HARDCODED_VALUES,
        severity=IssueSeverity.MEDIUM,
        confidence=75,
        pattern=re.compile(
            r"""["'](?P<value>(?!127\.0\.0\.1|0\.0\.0\.0)(?:\d{1,3}\.){3}\d{1,3})(?::\d+)?["']"""
        ),
        description="Hardcoded IP address",
        scope="code",
    ),
    LiteralRule(
        rule_id="infrastructure-setting",
        family="hardcoded_values",
        issue_type=IssueType.HARDCODED_VALUES,
        severity=IssueSeverity.LOW,
        confidence=70,
        pattern=re.compile(
            r"""(?i)\b(?P<key>port|host|hostname|timeout|max_retries|retries|pool_size|batch_size|page_size)\s*[:=]\s*(?P<value>\d{2,}|["'][^"'\s]+["'])"""
        ),
        description="Hardcoded infrastructure setting",
        scope="code",
    ),
]

SENSITIVE_FILE_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("env-file", re.compile(r"^\.env(\.[\w-]+)?$")),
    ("key-material", re.compile(r"\.(pem|key|p12|pfx|keystore|jks|ppk)$", re.IGNORECASE)),
    ("ssh-private-key", re.compile(r"^id_(rsa|dsa|ecdsa|ed25519)$")),
    ("secrets-file", re.compile(r"^secrets?\.(json|ya?ml|toml|env)$", re.IGNORECASE)),
    ("database-dump", re.compile(r"^(backup|dump).*\.(sql|db|dump)$", re.IGNORECASE)),
]

# Templates that document a file rather than hold secrets
_TEMPLATE_SUFFIXES = (".example", ".sample", ".template", ".dist")

_PLACEHOLDER_MARKERS = (
    "example", "sample", "dummy", "placeholder", "changeme", "change-me", "change_me",
    "your_", "your-", "xxx", "todo", "fake", "test", "<", ">", "${", "{{", "%s", "%(",
    "process.env", "os.environ", "getenv",
)

LOG_CALLEE = re.compile(
    r"^(print|console\.(log|info|warn|error|debug|trace)"
    r"|((self|this)\.)?(logger|logging|log|_logger|LOGGER)\.(debug|info|warning|warn|error|critical|exception|log|trace)"
    r"|System\.out\.println)$"
)
SENSITIVE_NAME = re.compile(r"(?i)(password|passwd|pwd|secret|token|api_?key|credential|private_?key)")

CALL_KINDS = {"call", "call_expression"}
STRING_KINDS = {"string", "template_string", "concatenated_string"}
REFERENCE_KINDS = {"identifier", "attribute", "member_expression", "shorthand_property_identifier"}


def mask_value(value: str) -> str:
    """Keep the first and last three characters of a secret."""
    if len(value) <= 6:
        return "*" * len(value)
    return f"{value[:3]}{'*' * (len(value) - 6)}{value[-3:]}"


def is_placeholder(value: str) -> bool:
    lowered = value.lower()
    if any(marker in lowered for marker in _PLACEHOLDER_MARKERS):
        return True
    return len(set(value)) <= 1


def _strip_quotes(text: str) -> str:
    text = text.strip()
    for prefix in ("f", "b", "r", "u", "rb", "br", "fr", "rf"):
        if text.lower().startswith(prefix) and text[len(prefix):][:1] in ("'", '"'):
            text = text[len(prefix):]
            break
    if len(text) >= 2 and text[0] in "'\"`" and text[-1] == text[0]:
        return text[1:-1]
    return text


class SecurityScanner(Detector):
    """Credentials, secrets, sensitive files, weak crypto, unsafe logging and hardcoded values."""

    name = "security"
    issue_types = tuple(sorted(SECURITY_ISSUE_TYPES, key=lambda t: t.value))
    languages = CODE_LANGUAGES | {CONFIG_LANGUAGE}

    def __init__(self, rules: list[LiteralRule] | None = None):
        self.rules = rules if rules is not None else LITERAL_RULES

    def detect(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        issues = self.check_sensitive_file(ast, context)

        skip_secrets = context.is_test and not context.options.scan_test_files_for_secrets
        if not skip_secrets:
            issues.extend(self.scan_lines(ast, context))
            if ast.language in CODE_LANGUAGES:
                issues.extend(self.check_logging_calls(ast, context))
        return issues

    def check_sensitive_file(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        name = PurePosixPath(context.path).name
        if name.endswith(_TEMPLATE_SUFFIXES):
            return []
        for rule_id, pattern in SENSITIVE_FILE_PATTERNS:
            if pattern.search(name):
                return [build_issue(
                    IssueType.SENSITIVE_FILE,
                    IssueSeverity.HIGH,
                    context.options.confidence_for("sensitive_files", 100),
                    ast,
                    1,
                    1,
                    f"Sensitive file '{name}' is committed to the repository",
                    metadata=SecurityMetrics(rule_id=rule_id),
                    excerpt="",
                )]
        return []

    def scan_lines(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        """Apply literal rules to every raw source line."""
        scope: RuleScope = "config" if context.is_config else "code"
        issues = []
        for line_number, line in enumerate(ast.lines, start=1):
            for rule in self.rules:
                if rule.scope not in ("all", scope):
                    continue
                match = rule.pattern.search(line)
                if match is None:
                    continue

                value = match.groupdict().get("value")
                if value is not None:
                    value = _strip_quotes(value)
                    if rule.family in ("credentials", "secrets") and is_placeholder(value):
                        continue

                masked = mask_value(value) if value and rule.family in ("credentials", "secrets") else value
                detail = f": {masked}" if masked else ""
                issues.append(build_issue(
                    rule.issue_type,
                    rule.severity,
                    context.options.confidence_for(rule.family, rule.confidence),
                    ast,
                    line_number,
                    line_number,
                    f"{rule.description} on line {line_number}{detail}",
                    metadata=SecurityMetrics(rule_id=rule.rule_id, masked_value=masked),
                    excerpt=self._redact(line, value, masked).strip(),
                ))
        return issues

    def check_logging_calls(self, ast: SourceAST, context: FileContext) -> list[Issue]:
        """Logging calls whose arguments reference credentials."""
        tainted = self._credential_bindings(ast)
        issues = []

        for node in ast.walk():
            if node.kind not in CALL_KINDS:
                continue
            callee = node.child_by_field("function")
            arguments = node.child_by_field("arguments")
            if callee is None or arguments is None:
                continue
            if not LOG_CALLEE.match("".join(ast.text_of(callee).split())):
                continue

            references = self._references(ast, arguments)
            derived = sorted(ref for ref in references if ref in tainted)
            named = sorted(ref for ref in references if SENSITIVE_NAME.search(ref))
            if not derived and not named:
                continue

            confidence = 90 if derived else 70
            logged = (derived or named)[0]
            issues.append(build_issue(
                IssueType.UNSAFE_LOGGING,
                IssueSeverity.HIGH,
                context.options.confidence_for("unsafe_logging", confidence),
                ast,
                node.start_line,
                node.end_line,
                f"Logging call may expose sensitive value '{logged}'",
                metadata=SecurityMetrics(rule_id="unsafe-logging", credential_derived=bool(derived)),
            ))
        return issues

    def _credential_bindings(self, ast: SourceAST) -> set[str]:
        """Names bound, directly or by copy, to credential-shaped literals."""
        credential_rules = [r for r in self.rules if r.family in ("credentials", "secrets")]
        tainted: set[str] = set()

        for node in ast.walk():
            target, value = self._binding(node)
            if target is None or value is None:
                continue
            name = ast.text_of(target)
            value_text = ast.text_of(value)

            if value.kind in STRING_KINDS:
                literal = _strip_quotes(value_text)
                if is_placeholder(literal) or len(literal) < 4:
                    continue
                statement = f"{name} = {value_text}"
                if SENSITIVE_NAME.search(name) or any(r.pattern.search(statement) for r in credential_rules):
                    tainted.add(name)
            elif value.kind in REFERENCE_KINDS and value_text in tainted:
                tainted.add(name)
        return tainted

    @staticmethod
    def _binding(node: SourceNode) -> tuple[SourceNode | None, SourceNode | None]:
        if node.kind in ("assignment", "assignment_expression"):
            return node.child_by_field("left"), node.child_by_field("right")
        if node.kind == "variable_declarator":
            return node.child_by_field("name"), node.child_by_field("value")
        return None, None

    @staticmethod
    def _references(ast: SourceAST, arguments: SourceNode) -> set[str]:
        references = set()
        for node in arguments.walk():
            if node.kind not in REFERENCE_KINDS or node.field_name == "name":
                continue
            references.add(ast.text_of(node))
        return references

    @staticmethod
    def _redact(line: str, value: str | None, masked: str | None) -> str:
        if value and masked and value != masked:
            return line.replace(value, masked)
        return line


def security_summary(issues: list[Issue]) -> dict:
    """Counts of security findings by type and by severity."""
    security_issues = [issue for issue in issues if issue.type in SECURITY_ISSUE_TYPES]
    by_type = Counter(issue.type.value for issue in security_issues)
    by_severity = Counter(issue.severity.value for issue in security_issues)
    return {
        "total": len(security_issues),
        "by_type": dict(sorted(by_type.items())),
        "by_severity": {s.value: by_severity.get(s.value, 0) for s in IssueSeverity},
    }
