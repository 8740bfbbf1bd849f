import pytest

from migration_fabric.odata.metadata import (
    MetadataParser,
    find_entity_type,
    get_navigation_targets,
    parse_attributes,
    to_entity_set_metadata,
)

V2_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="1.0" xmlns:edmx="http://schemas.microsoft.com/ado/2007/06/edmx">
  <edmx:DataServices m:DataServiceVersion="2.0">
    <Schema Namespace="API_BP" xml:lang="en">
      <EntityType Name="A_BusinessPartner" sap:content-version="1">
        <Key><PropertyRef Name="BusinessPartner"/></Key>
        <Property Name="BusinessPartner" Type="Edm.String" Nullable="false" MaxLength="10" sap:label="Business Partner"/>
        <Property Name="CreditLimit" Type="Edm.Decimal" Precision="15" Scale="2" sap:unit="Currency"/>
        <Property Name="Currency" Type="Edm.String" MaxLength="5"/>
        <NavigationProperty Name="to_Address" Relationship="API_BP.assoc_1" FromRole="FromRole" ToRole="ToRole_Address"/>
      </EntityType>
      <Association Name="assoc_1">
        <End Type="API_BP.A_BusinessPartner" Multiplicity="1" Role="FromRole"/>
        <End Type="API_BP.A_Address" Multiplicity="*" Role="ToRole_Address"/>
      </Association>
      <EntityContainer Name="API_BP_Entities" m:IsDefaultEntityContainer="true">
        <EntitySet Name="A_BusinessPartner" EntityType="API_BP.A_BusinessPartner" sap:creatable="false"/>
        <FunctionImport Name="Release" ReturnType="API_BP.A_BusinessPartner" m:HttpMethod="POST">
          <Parameter Name="BusinessPartner" Type="Edm.String" Mode="In"/>
        </FunctionImport>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""

V4_METADATA = """<?xml version="1.0" encoding="utf-8"?>
<edmx:Edmx Version="4.0" xmlns:edmx="http://docs.oasis-open.org/odata/ns/edmx">
  <edmx:DataServices>
    <Schema Namespace="orders.v1" xmlns="http://docs.oasis-open.org/odata/ns/edm">
      <EntityType Name="OrderType">
        <Key><PropertyRef Name="OrderID"/></Key>
        <Property Name="OrderID" Type="Edm.String" Nullable="false" MaxLength="10"/>
        <NavigationProperty Name="_Items" Type="Collection(orders.v1.ItemType)"/>
      </EntityType>
      <ComplexType Name="Amount">
        <Property Name="Value" Type="Edm.Decimal" Precision="15" Scale="2"/>
      </ComplexType>
      <Action Name="Release" IsBound="true">
        <Parameter Name="_it" Type="orders.v1.OrderType" Nullable="false"/>
        <ReturnType Type="orders.v1.OrderType"/>
      </Action>
      <EntityContainer Name="Container">
        <EntitySet Name="Order" EntityType="orders.v1.OrderType"/>
      </EntityContainer>
    </Schema>
  </edmx:DataServices>
</edmx:Edmx>
"""


@pytest.mark.unit
class TestMetadataParser:
    """Test $metadata parsing for both dialects."""

    def test_v2_entity_types(self) -> None:
        model = MetadataParser().parse(V2_METADATA)

        assert model.version == "v2"
        assert model.schemas == ["API_BP"]
        entity_type = model.entity_types[0]
        assert entity_type.qualified_name == "API_BP.A_BusinessPartner"
        assert entity_type.keys == ["BusinessPartner"]
        assert [p.name for p in entity_type.properties] == ["BusinessPartner", "CreditLimit", "Currency"]

        partner = entity_type.get_property("BusinessPartner")
        assert partner.nullable is False
        assert partner.max_length == 10
        assert partner.label == "Business Partner"

        credit = entity_type.get_property("CreditLimit")
        assert (credit.precision, credit.scale) == (15, 2)

    def test_v2_associations_and_function_imports(self) -> None:
        model = MetadataParser().parse(V2_METADATA)

        assert model.associations[0].name == "assoc_1"
        assert [e.multiplicity for e in model.associations[0].ends] == ["1", "*"]
        function = model.function_imports[0]
        assert function.http_method == "POST"
        assert function.parameters[0].name == "BusinessPartner"
        assert model.actions == []

    def test_v2_entity_set_flags(self) -> None:
        entity_set = MetadataParser().parse(V2_METADATA).entity_sets[0]

        assert entity_set.creatable is False
        assert entity_set.updatable is True

    def test_v4_document(self) -> None:
        model = MetadataParser().parse(V4_METADATA)

        assert model.version == "v4"
        assert model.associations == []
        assert model.complex_types[0].properties[0].scale == 2
        action = model.actions[0]
        assert action.return_type == "orders.v1.OrderType"
        assert action.parameters[0].nullable is False
        navigation = get_navigation_targets(model, "OrderType")
        assert navigation[0].target == "Collection(orders.v1.ItemType)"

    def test_empty_document_gives_empty_model(self) -> None:
        model = MetadataParser().parse("")

        assert model.entity_types == []
        assert model.to_dict()["entitySets"] == []

    def test_unknown_attributes_are_kept(self) -> None:
        attrs = parse_attributes('Name="X" sap:filterable="false" custom="1"')
        assert attrs == {"Name": "X", "sap:filterable": "false", "custom": "1"}


@pytest.mark.unit
class TestEntitySetProjection:
    """Test projection of entity sets onto field descriptors."""

    def test_fields_carry_keys_and_units(self) -> None:
        model = MetadataParser().parse(V2_METADATA)
        metadata = to_entity_set_metadata(model, "A_BusinessPartner")

        assert metadata.keys == ["BusinessPartner"]
        fields = {f.name: f for f in metadata.fields}
        assert fields["BusinessPartner"].is_key
        assert fields["CreditLimit"].decimals == 2
        assert fields["CreditLimit"].reference_field == "Currency"

    def test_unknown_set(self) -> None:
        model = MetadataParser().parse(V2_METADATA)
        assert to_entity_set_metadata(model, "Nope") is None
        assert find_entity_type(model, "Nope") is None
