"""Rule-based validation of transformed records."""

import re
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from ..errors import ConfigurationError
from ..models.record import ValidationIssue
from ..models.schema import EntitySetMetadata

logger = logging.getLogger(__name__)

MAX_REPORTED_ISSUES = 50

RuleCheck = Callable[[Any, Dict[str, Any]], Optional[str]]


@dataclass
class ValidationRule:
    """A named check bound to one field."""
    field: str
    rule: str
    check: RuleCheck
    severity: str = "error"
    critical: bool = False

    def apply(self, record: Dict[str, Any], index: int) -> Optional[ValidationIssue]:
        value = record.get(self.field)
        message = self.check(value, record)
        if message is None:
            return None
        return ValidationIssue(
            field=self.field,
            message=message,
            rule=self.rule,
            severity=self.severity,
            value=value,
            record_index=index,
            critical=self.critical,
        )


@dataclass
class ValidationReport:
    """Aggregated outcome of validating a record set."""
    record_count: int = 0
    error_count: int = 0
    warning_count: int = 0
    issues: List[ValidationIssue] = field(default_factory=list)
    critical: bool = False

    @property
    def status(self) -> str:
        if self.critical:
            return "failed"
        if self.error_count:
            return "errors"
        if self.warning_count:
            return "warnings"
        return "passed"

    def add(self, issue: ValidationIssue) -> None:
        if issue.severity == "error":
            self.error_count += 1
        else:
            self.warning_count += 1
        if issue.critical and issue.severity == "error":
            self.critical = True
        self.issues.append(issue)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "recordCount": self.record_count,
            "errorCount": self.error_count,
            "warningCount": self.warning_count,
            "critical": self.critical,
            "errors": [i.to_dict() for i in self.issues[:MAX_REPORTED_ISSUES]],
        }


def _is_blank(value: Any) -> bool:
    return value is None or value == ""


def required(value: Any, record: Dict[str, Any]) -> Optional[str]:
    return "Required field is missing" if _is_blank(value) else None


def max_length(limit: int) -> RuleCheck:
    def check(value: Any, record: Dict[str, Any]) -> Optional[str]:
        if _is_blank(value) or len(str(value)) <= limit:
            return None
        return f"Value exceeds max length of {limit}"
    return check


def pattern(expression: str) -> RuleCheck:
    compiled = re.compile(expression)

    def check(value: Any, record: Dict[str, Any]) -> Optional[str]:
        if _is_blank(value) or compiled.match(str(value)):
            return None
        return f"Value does not match pattern {expression}"
    return check


def allowed_values(values: List[Any]) -> RuleCheck:
    allowed = set(str(v) for v in values)

    def check(value: Any, record: Dict[str, Any]) -> Optional[str]:
        if _is_blank(value) or str(value) in allowed:
            return None
        return f"Invalid value. Must be one of: {sorted(allowed)}"
    return check


def value_range(minimum: Optional[float] = None, maximum: Optional[float] = None) -> RuleCheck:
    def check(value: Any, record: Dict[str, Any]) -> Optional[str]:
        if _is_blank(value):
            return None
        try:
            number = float(value)
        except (TypeError, ValueError):
            return "Value must be numeric"
        if minimum is not None and number < minimum:
            return f"Value below minimum {minimum}"
        if maximum is not None and number > maximum:
            return f"Value above maximum {maximum}"
        return None
    return check


class ValidationRules:
    """Common single-value checks usable as named custom rules."""

    @staticmethod
    def email(value: Any) -> Optional[str]:
        """Validate email format."""
        if _is_blank(value):
            return None
        if not re.match(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$", str(value)):
            return "Invalid email format"
        return None

    @staticmethod
    def country_code(value: Any) -> Optional[str]:
        """Validate ISO 3166-1 alpha-2 country code."""
        if _is_blank(value):
            return None
        if not re.match(r"^[A-Z]{2}$", str(value).upper()):
            return "Country code must be a 2-letter ISO code (e.g., US, GB, DE)"
        return None

    @staticmethod
    def currency_code(value: Any) -> Optional[str]:
        """Validate the shape of an ISO 4217 currency code."""
        if _is_blank(value):
            return None
        if not re.match(r"^[A-Z]{3}$", str(value)):
            return "Currency code must be 3 uppercase letters"
        return None

    @staticmethod
    def iso_date(value: Any) -> Optional[str]:
        """Validate a YYYY-MM-DD date."""
        if _is_blank(value):
            return None
        if not re.match(r"^\d{4}-\d{2}-\d{2}$", str(value)):
            return "Date must be in YYYY-MM-DD format"
        return None

    @staticmethod
    def positive_number(value: Any) -> Optional[str]:
        """Validate a non-negative number."""
        if _is_blank(value):
            return None
        try:
            if float(value) < 0:
                return "Value must not be negative"
        except (ValueError, TypeError):
            return "Value must be numeric"
        return None


class RecordValidator:
    """
    Validator holding a registry of field rules.

    Rules come from config dicts such as::

        {"field": "CompanyCode", "rule": "required", "critical": True}
        {"field": "Name", "rule": "max_length", "max_length": 40, "severity": "warning"}
        {"field": "Country", "rule": "country_code"}
    """

    def __init__(self, rules: Optional[List[Dict[str, Any]]] = None):
        self.rules: List[ValidationRule] = []
        self._custom_validators: Dict[str, Callable[[Any], Optional[str]]] = {
            "email": ValidationRules.email,
            "country_code": ValidationRules.country_code,
            "currency_code": ValidationRules.currency_code,
            "iso_date": ValidationRules.iso_date,
            "positive_number": ValidationRules.positive_number,
        }
        for config in rules or []:
            self.add_rule(config)

    def register_validator(self, name: str, func: Callable[[Any], Optional[str]]) -> None:
        """Register a custom validation function returning an error message or None."""
        self._custom_validators[name] = func

    def add_rule(self, config: Dict[str, Any]) -> ValidationRule:
        """
        Add a rule from its config dict.

        Raises:
            ConfigurationError: If the rule is unknown or lacks parameters
        """
        field_name = config.get("field")
        rule_name = config.get("rule")
        if not field_name or not rule_name:
            raise ConfigurationError("Validation rule needs 'field' and 'rule'", {"rule": config})

        check = self._build_check(rule_name, config)
        rule = ValidationRule(
            field=field_name,
            rule=rule_name,
            check=check,
            severity=config.get("severity", "error"),
            critical=bool(config.get("critical", False)),
        )
        self.rules.append(rule)
        return rule

    def _build_check(self, rule_name: str, config: Dict[str, Any]) -> RuleCheck:
        if rule_name == "required":
            return required
        if rule_name == "max_length":
            return max_length(int(self._param(config, "max_length")))
        if rule_name == "pattern":
            return pattern(self._param(config, "pattern"))
        if rule_name == "allowed_values":
            return allowed_values(self._param(config, "values"))
        if rule_name == "range":
            return value_range(config.get("min"), config.get("max"))
        if rule_name == "custom":
            func = self._param(config, "check")
            return lambda value, record: func(value, record)
        if rule_name in self._custom_validators:
            func = self._custom_validators[rule_name]
            return lambda value, record: func(value)
        raise ConfigurationError(f"Unknown validation rule: {rule_name}", {"field": config.get("field")})

    @staticmethod
    def _param(config: Dict[str, Any], name: str) -> Any:
        if config.get(name) is None:
            raise ConfigurationError(
                f"Validation rule '{config.get('rule')}' requires '{name}'", {"field": config.get("field")}
            )
        return config[name]

    @classmethod
    def from_metadata(cls, metadata: EntitySetMetadata) -> "RecordValidator":
        """Derive required and max-length rules from entity-set metadata."""
        validator = cls()
        for descriptor in metadata.fields:
            if descriptor.is_key:
                validator.add_rule({"field": descriptor.name, "rule": "required", "critical": True})
            elif not descriptor.nullable:
                validator.add_rule({"field": descriptor.name, "rule": "required"})
            if descriptor.max_length:
                validator.add_rule({"field": descriptor.name, "rule": "max_length", "max_length": descriptor.max_length})
        return validator

    def validate_record(self, record: Dict[str, Any], index: int = 0) -> List[ValidationIssue]:
        issues = []
        for rule in self.rules:
            issue = rule.apply(record, index)
            if issue:
                issues.append(issue)
        return issues

    def validate_records(self, records: List[Dict[str, Any]]) -> ValidationReport:
        """Validate every record and aggregate the findings."""
        report = ValidationReport(record_count=len(records))
        for index, record in enumerate(records):
            for issue in self.validate_record(record, index):
                report.add(issue)

        if report.critical:
            logger.error(f"Critical validation rule fired ({report.error_count} errors)")
        elif report.error_count or report.warning_count:
            logger.warning(
                f"Validation found {report.error_count} errors and {report.warning_count} warnings "
                f"in {len(records)} records"
            )
        return report

    def is_valid(self, record: Dict[str, Any]) -> bool:
        """Quick check if a record has no error-severity findings."""
        return not any(i.severity == "error" for i in self.validate_record(record))
