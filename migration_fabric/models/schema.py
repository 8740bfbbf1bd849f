"""Schema models: service metadata, dictionary metadata and field mapping rules."""

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import ConfigurationError


@dataclass
class Property:
    """A structural property of an entity or complex type."""
    name: str
    type: str
    nullable: bool = True
    max_length: Optional[int] = None
    precision: Optional[int] = None
    scale: Optional[int] = None
    ext_annotations: Dict[str, str] = field(default_factory=dict)  # sap:* and other prefixed attributes

    @property
    def label(self) -> Optional[str]:
        return self.ext_annotations.get("sap:label")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nullable": self.nullable,
            "maxLength": self.max_length,
            "precision": self.precision,
            "scale": self.scale,
            "extAnnotations": self.ext_annotations,
        }


@dataclass
class NavigationProperty:
    name: str
    target: Optional[str] = None
    relationship: Optional[str] = None
    from_role: Optional[str] = None
    to_role: Optional[str] = None
    multiplicity: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "target": self.target,
            "relationship": self.relationship,
            "fromRole": self.from_role,
            "toRole": self.to_role,
            "multiplicity": self.multiplicity,
        }


@dataclass
class EntityType:
    """An entity type parsed from a $metadata document."""
    name: str
    namespace: str = ""
    keys: List[str] = field(default_factory=list)
    properties: List[Property] = field(default_factory=list)
    navigation_properties: List[NavigationProperty] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}" if self.namespace else self.name

    def get_property(self, name: str) -> Optional[Property]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "qualifiedName": self.qualified_name,
            "keys": self.keys,
            "properties": [p.to_dict() for p in self.properties],
            "navigationProperties": [n.to_dict() for n in self.navigation_properties],
        }


@dataclass
class EntitySet:
    name: str
    entity_type: str
    ext_annotations: Dict[str, str] = field(default_factory=dict)

    def _flag(self, name: str) -> bool:
        return self.ext_annotations.get(f"sap:{name}") != "false"

    @property
    def creatable(self) -> bool:
        return self._flag("creatable")

    @property
    def updatable(self) -> bool:
        return self._flag("updatable")

    @property
    def deletable(self) -> bool:
        return self._flag("deletable")

    @property
    def pageable(self) -> bool:
        return self._flag("pageable")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "entityType": self.entity_type,
            "creatable": self.creatable,
            "updatable": self.updatable,
            "deletable": self.deletable,
            "pageable": self.pageable,
        }


@dataclass
class ComplexType:
    name: str
    properties: List[Property] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "properties": [p.to_dict() for p in self.properties]}


@dataclass
class AssociationEnd:
    type: Optional[str]
    multiplicity: Optional[str]
    role: Optional[str]


@dataclass
class Association:
    name: str
    ends: List[AssociationEnd] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "ends": [{"type": e.type, "multiplicity": e.multiplicity, "role": e.role} for e in self.ends],
        }


@dataclass
class Parameter:
    name: str
    type: Optional[str] = None
    mode: str = "In"
    nullable: bool = True


@dataclass
class FunctionImport:
    name: str
    return_type: Optional[str] = None
    http_method: str = "GET"
    entity_set: Optional[str] = None
    parameters: List[Parameter] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "returnType": self.return_type,
            "httpMethod": self.http_method,
            "entitySet": self.entity_set,
            "parameters": [{"name": p.name, "type": p.type, "mode": p.mode, "nullable": p.nullable}
                           for p in self.parameters],
        }


@dataclass
class Action:
    name: str
    parameters: List[Parameter] = field(default_factory=list)
    return_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "parameters": [{"name": p.name, "type": p.type} for p in self.parameters],
            "returnType": self.return_type,
        }


@dataclass
class ServiceMetadata:
    """Structured model of a $metadata document."""
    version: str = "v2"
    schemas: List[str] = field(default_factory=list)
    entity_types: List[EntityType] = field(default_factory=list)
    entity_sets: List[EntitySet] = field(default_factory=list)
    complex_types: List[ComplexType] = field(default_factory=list)
    associations: List[Association] = field(default_factory=list)
    function_imports: List[FunctionImport] = field(default_factory=list)
    actions: List[Action] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "schemas": [{"namespace": ns} for ns in self.schemas],
            "entityTypes": [e.to_dict() for e in self.entity_types],
            "entitySets": [e.to_dict() for e in self.entity_sets],
            "complexTypes": [c.to_dict() for c in self.complex_types],
            "associations": [a.to_dict() for a in self.associations],
            "functionImports": [f.to_dict() for f in self.function_imports],
            "actions": [a.to_dict() for a in self.actions],
        }


@dataclass
class FieldDescriptor:
    """Field of an entity set as needed by mapping and validation."""
    name: str
    type: str
    nullable: bool = True
    max_length: Optional[int] = None
    decimals: Optional[int] = None
    is_key: bool = False
    check_table: Optional[str] = None
    conversion_routine: Optional[str] = None
    reference_table: Optional[str] = None
    reference_field: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type,
            "nullable": self.nullable,
            "maxLength": self.max_length,
            "decimals": self.decimals,
            "isKey": self.is_key,
            "checkTable": self.check_table,
            "conversionRoutine": self.conversion_routine,
            "referenceTable": self.reference_table,
            "referenceField": self.reference_field,
        }


@dataclass
class EntitySetMetadata:
    name: str
    keys: List[str] = field(default_factory=list)
    fields: List[FieldDescriptor] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "keys": self.keys, "fields": [f.to_dict() for f in self.fields]}


@dataclass
class FieldInfo:
    """Dictionary field metadata returned by the field-info function."""
    field_name: str
    data_element: str = ""
    domain: str = ""
    data_type: str = ""
    length: int = 0
    decimals: int = 0
    check_table: str = ""
    field_text: str = ""
    conversion_routine: str = ""
    is_key: bool = False
    internal_type: str = ""
    ref_table: str = ""
    ref_field: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fieldName": self.field_name,
            "dataElement": self.data_element,
            "domain": self.domain,
            "dataType": self.data_type,
            "length": self.length,
            "decimals": self.decimals,
            "checkTable": self.check_table,
            "fieldText": self.field_text,
            "conversionRoutine": self.conversion_routine,
            "isKey": self.is_key,
            "internalType": self.internal_type,
            "refTable": self.ref_table,
            "refField": self.ref_field,
        }


class _Missing:
    def __repr__(self) -> str:
        return "MISSING"


MISSING = _Missing()


@dataclass
class MappingRule:
    """
    A declarative field mapping rule.

    Exactly one shape applies:
    - concat: ``sources`` joined with ``separator``
    - rename: ``source`` with optional ``convert``, ``value_map``, ``default``, ``transform``
    - default-only: ``default`` (a value or a callable taking the whole record)
    """
    target: str
    source: Optional[str] = None
    sources: Optional[List[str]] = None
    separator: str = ""
    convert: Optional[Union[str, Callable[..., Any]]] = None
    value_map: Optional[Dict[str, Any]] = None
    default: Any = MISSING
    transform: Optional[Callable[[Any, Dict[str, Any]], Any]] = None

    @property
    def kind(self) -> str:
        if self.sources is not None:
            return "concat"
        if self.source:
            return "rename"
        return "default"

    @property
    def has_default(self) -> bool:
        return self.default is not MISSING

    @property
    def source_fields(self) -> List[str]:
        if self.sources is not None:
            return list(self.sources)
        return [self.source] if self.source else []

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"target": self.target}
        if self.sources is not None:
            result["sources"] = list(self.sources)
            result["separator"] = self.separator
        if self.source:
            result["source"] = self.source
        if isinstance(self.convert, str):
            result["convert"] = self.convert
        if self.value_map is not None:
            result["valueMap"] = self.value_map
        if self.has_default and not callable(self.default):
            result["default"] = self.default
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "MappingRule":
        """Create from a dict accepting camelCase (``valueMap``) or snake_case keys."""
        value_map = data.get("valueMap", data.get("value_map"))
        return cls(
            target=data.get("target", ""),
            source=data.get("source"),
            sources=data.get("sources"),
            separator=data.get("separator") if data.get("separator") is not None else "",
            convert=data.get("convert"),
            value_map={str(k): v for k, v in value_map.items()} if value_map is not None else None,
            default=data["default"] if "default" in data else MISSING,
            transform=data.get("transform"),
        )

    @classmethod
    def from_legacy(cls, shorthand: str) -> "MappingRule":
        """Parse a ``SOURCE->TARGET`` shorthand."""
        if "->" not in shorthand:
            raise ConfigurationError(f"Invalid mapping shorthand: {shorthand}", {"field": "mapping"})
        source, target = (part.strip() for part in shorthand.split("->", 1))
        return cls(target=target, source=source)


def coerce_rules(rules: List[Union[MappingRule, Dict[str, Any], str]]) -> List[MappingRule]:
    """Normalize a list of rule objects, dicts or ``A->B`` strings."""
    coerced = []
    for rule in rules:
        if isinstance(rule, MappingRule):
            coerced.append(rule)
        elif isinstance(rule, str):
            coerced.append(MappingRule.from_legacy(rule))
        else:
            coerced.append(MappingRule.from_dict(rule))
    return coerced
