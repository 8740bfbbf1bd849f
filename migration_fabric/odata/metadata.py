"""
Regex-based $metadata parser.

Handles both EDMX v2 and CSDL v4 documents. The parser does not validate the
document; it extracts structural elements and leaves missing attributes as
``None`` so that malformed input yields a partial model instead of an error.
"""

import logging
import re
from typing import Dict, List, Optional

from ..models.schema import (
    Action,
    Association,
    AssociationEnd,
    ComplexType,
    EntitySet,
    EntitySetMetadata,
    EntityType,
    FieldDescriptor,
    FunctionImport,
    NavigationProperty,
    Parameter,
    Property,
    ServiceMetadata,
)

logger = logging.getLogger(__name__)

_ATTRIBUTE = re.compile(r"([\w:.-]+)\s*=\s*\"([^\"]*)\"")
_SCHEMA = re.compile(r"<Schema\s+([^>]*)>")
_ENTITY_TYPE = re.compile(r"<EntityType\s+([^>]*?)(?:/>|>(.*?)</EntityType>)", re.DOTALL)
_COMPLEX_TYPE = re.compile(r"<ComplexType\s+([^>]*?)(?:/>|>(.*?)</ComplexType>)", re.DOTALL)
_PROPERTY_REF = re.compile(r"<PropertyRef\s+([^>]*?)/?>")
_PROPERTY = re.compile(r"<Property\s+([^>]*?)/?>")
_NAVIGATION = re.compile(r"<NavigationProperty\s+([^>]*?)/?>")
_ENTITY_SET = re.compile(r"<EntitySet\s+([^>]*?)/?>")
_ASSOCIATION = re.compile(r"<Association\s+([^>]*?)>(.*?)</Association>", re.DOTALL)
_END = re.compile(r"<End\s+([^>]*?)/?>")
_FUNCTION_IMPORT = re.compile(r"<FunctionImport\s+([^>]*?)(?:/>|>(.*?)</FunctionImport>)", re.DOTALL)
_ACTION = re.compile(r"<Action\s+([^>]*?)(?:/>|>(.*?)</Action>)", re.DOTALL)
_PARAMETER = re.compile(r"<Parameter\s+([^>]*?)/?>")
_RETURN_TYPE = re.compile(r"<ReturnType\s+([^>]*?)/?>")
_V4_MARKER = re.compile(r"Version=\"4\.0\"")

_CORE_ATTRIBUTES = {"Name", "Type", "Nullable", "MaxLength", "Precision", "Scale"}


def parse_attributes(text: str) -> Dict[str, str]:
    """Tokenize ``name="value"`` pairs; unknown attributes are kept."""
    return {name: value for name, value in _ATTRIBUTE.findall(text or "")}


def _int_or_none(value: Optional[str]) -> Optional[int]:
    if value is None or not value.strip().lstrip("-").isdigit():
        return None
    return int(value)


class MetadataParser:
    """Parse $metadata XML into a ServiceMetadata model."""

    def parse(self, xml: str) -> ServiceMetadata:
        """
        Parse a $metadata document.

        Args:
            xml: Raw $metadata XML text

        Returns:
            ServiceMetadata (empty when the input is empty)
        """
        if not xml or not isinstance(xml, str):
            logger.warning("Empty $metadata document, returning empty model")
            return ServiceMetadata()

        is_v4 = bool(_V4_MARKER.search(xml))
        model = ServiceMetadata(version="v4" if is_v4 else "v2")

        for match in _SCHEMA.finditer(xml):
            namespace = parse_attributes(match.group(1)).get("Namespace")
            if namespace:
                model.schemas.append(namespace)

        namespace = model.schemas[0] if model.schemas else ""
        model.entity_types = self._parse_entity_types(xml, namespace)
        model.entity_sets = self._parse_entity_sets(xml)
        model.complex_types = self._parse_complex_types(xml)
        model.function_imports = self._parse_function_imports(xml)

        if is_v4:
            model.actions = self._parse_actions(xml)
        else:
            model.associations = self._parse_associations(xml)

        logger.debug(
            f"Parsed {model.version} metadata: {len(model.entity_types)} entity types, "
            f"{len(model.entity_sets)} entity sets"
        )
        return model

    def _parse_properties(self, body: str) -> List[Property]:
        properties = []
        for match in _PROPERTY.finditer(body or ""):
            attrs = parse_attributes(match.group(1))
            properties.append(Property(
                name=attrs.get("Name", ""),
                type=attrs.get("Type", ""),
                nullable=attrs.get("Nullable") != "false",
                max_length=_int_or_none(attrs.get("MaxLength")),
                precision=_int_or_none(attrs.get("Precision")),
                scale=_int_or_none(attrs.get("Scale")),
                ext_annotations={k: v for k, v in attrs.items() if k not in _CORE_ATTRIBUTES},
            ))
        return properties

    def _parse_entity_types(self, xml: str, namespace: str) -> List[EntityType]:
        entity_types = []
        for match in _ENTITY_TYPE.finditer(xml):
            attrs = parse_attributes(match.group(1))
            body = match.group(2) or ""

            keys = [parse_attributes(k.group(1)).get("Name", "") for k in _PROPERTY_REF.finditer(body)]
            navigation = []
            for nav in _NAVIGATION.finditer(body):
                nav_attrs = parse_attributes(nav.group(1))
                navigation.append(NavigationProperty(
                    name=nav_attrs.get("Name", ""),
                    target=nav_attrs.get("Type") or nav_attrs.get("ToRole"),
                    relationship=nav_attrs.get("Relationship"),
                    from_role=nav_attrs.get("FromRole"),
                    to_role=nav_attrs.get("ToRole"),
                    multiplicity=nav_attrs.get("Multiplicity"),
                ))

            entity_types.append(EntityType(
                name=attrs.get("Name", ""),
                namespace=namespace,
                keys=keys,
                properties=self._parse_properties(body),
                navigation_properties=navigation,
            ))
        return entity_types

    def _parse_entity_sets(self, xml: str) -> List[EntitySet]:
        sets = []
        for match in _ENTITY_SET.finditer(xml):
            attrs = parse_attributes(match.group(1))
            sets.append(EntitySet(
                name=attrs.get("Name", ""),
                entity_type=attrs.get("EntityType", ""),
                ext_annotations={k: v for k, v in attrs.items() if ":" in k},
            ))
        return sets

    def _parse_complex_types(self, xml: str) -> List[ComplexType]:
        return [
            ComplexType(
                name=parse_attributes(m.group(1)).get("Name", ""),
                properties=self._parse_properties(m.group(2) or ""),
            )
            for m in _COMPLEX_TYPE.finditer(xml)
        ]

    def _parse_associations(self, xml: str) -> List[Association]:
        associations = []
        for match in _ASSOCIATION.finditer(xml):
            ends = []
            for end in _END.finditer(match.group(2)):
                attrs = parse_attributes(end.group(1))
                ends.append(AssociationEnd(
                    type=attrs.get("Type"),
                    multiplicity=attrs.get("Multiplicity"),
                    role=attrs.get("Role"),
                ))
            associations.append(Association(name=parse_attributes(match.group(1)).get("Name", ""), ends=ends))
        return associations

    def _parse_parameters(self, body: str) -> List[Parameter]:
        parameters = []
        for match in _PARAMETER.finditer(body or ""):
            attrs = parse_attributes(match.group(1))
            parameters.append(Parameter(
                name=attrs.get("Name", ""),
                type=attrs.get("Type"),
                mode=attrs.get("Mode", "In"),
                nullable=attrs.get("Nullable") != "false",
            ))
        return parameters

    def _parse_function_imports(self, xml: str) -> List[FunctionImport]:
        imports = []
        for match in _FUNCTION_IMPORT.finditer(xml):
            attrs = parse_attributes(match.group(1))
            imports.append(FunctionImport(
                name=attrs.get("Name", ""),
                return_type=attrs.get("ReturnType"),
                http_method=attrs.get("m:HttpMethod") or attrs.get("HttpMethod") or "GET",
                entity_set=attrs.get("EntitySet"),
                parameters=self._parse_parameters(match.group(2) or ""),
            ))
        return imports

    def _parse_actions(self, xml: str) -> List[Action]:
        actions = []
        for match in _ACTION.finditer(xml):
            body = match.group(2) or ""
            returns = _RETURN_TYPE.search(body)
            actions.append(Action(
                name=parse_attributes(match.group(1)).get("Name", ""),
                parameters=self._parse_parameters(body),
                return_type=parse_attributes(returns.group(1)).get("Type") if returns else None,
            ))
        return actions


def find_entity_type(model: ServiceMetadata, name: str) -> Optional[EntityType]:
    """Find an entity type by simple or namespace-qualified name."""
    for entity_type in model.entity_types:
        if name in (entity_type.name, entity_type.qualified_name):
            return entity_type
    return None


def get_navigation_targets(model: ServiceMetadata, entity_type_name: str) -> List[NavigationProperty]:
    entity_type = find_entity_type(model, entity_type_name)
    return list(entity_type.navigation_properties) if entity_type else []


def to_entity_set_metadata(model: ServiceMetadata, set_name: str) -> Optional[EntitySetMetadata]:
    """
    Project an entity set onto the field descriptors used by mapping and validation.

    ``sap:unit``/``sap:semantics`` style annotations fill in the reference field;
    ``sap:value-list`` marks a check table reference.
    """
    entity_set = next((s for s in model.entity_sets if s.name == set_name), None)
    if not entity_set:
        return None

    entity_type = find_entity_type(model, entity_set.entity_type)
    if not entity_type:
        return EntitySetMetadata(name=set_name)

    fields = []
    for prop in entity_type.properties:
        annotations = prop.ext_annotations
        fields.append(FieldDescriptor(
            name=prop.name,
            type=prop.type,
            nullable=prop.nullable,
            max_length=prop.max_length,
            decimals=prop.scale,
            is_key=prop.name in entity_type.keys,
            check_table=annotations.get("sap:value-list"),
            conversion_routine=annotations.get("sap:display-format"),
            reference_field=annotations.get("sap:unit"),
        ))

    return EntitySetMetadata(name=set_name, keys=list(entity_type.keys), fields=fields)
