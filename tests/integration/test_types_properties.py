"""
Integration tests for the Type Registry and the Property Catalog.
"""

from __future__ import annotations

import pytest

from crm_double.errors import ConflictError, NotFoundError, ValidationError


def _pets(**overrides) -> dict:
    definition = {
        "name": "pets",
        "labelSingular": "Pet",
        "labelPlural": "Pets",
        "primaryDisplayProperty": "pet_name",
        "properties": [
            {"name": "pet_name", "label": "Pet name", "type": "string"},
            {"name": "age", "label": "Age", "type": "number"},
        ],
        "associatedObjects": ["contacts"],
    }
    definition.update(overrides)
    return definition


class TestTypeRegistry:
    """Resolution, registration and archiving of object types."""

    def test_standard_types_resolve_by_name_and_id(self, engine):
        assert engine.types.resolve("contacts").id == "0-1"
        assert engine.types.resolve("0-2").name == "companies"

    def test_unknown_token_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            engine.types.resolve("spaceships")

    def test_register_assigns_custom_id(self, engine):
        pets = engine.types.register(_pets())
        assert pets.id == "2-1"
        assert pets.is_custom is True
        assert pets.fully_qualified_name == "p0_pets"
        assert engine.types.resolve("pets").id == "2-1"
        assert engine.types.resolve("2-1").name == "pets"

    def test_ids_increase(self, engine):
        engine.types.register(_pets())
        cars = engine.types.register(_pets(name="cars", primaryDisplayProperty=None))
        assert cars.id == "2-2"

    def test_registered_type_gets_properties_and_associations(self, engine, contacts):
        engine.types.register(_pets())
        names = {p.name for p in engine.properties.list("pets")}
        assert {"hs_object_id", "hs_createdate", "hs_lastmodifieddate", "pet_name", "age"} <= names

        pet = engine.records.create("pets", {"pet_name": "Rex", "age": 3})
        spec = engine.associations.associate_default("pets", pet.id, "contacts", contacts[0].id)
        assert spec.association_type_id > 0
        with pytest.raises(ValidationError):
            engine.records.create("pets", {"age": "old"})

    def test_duplicate_name_conflicts(self, engine):
        engine.types.register(_pets())
        with pytest.raises(ConflictError):
            engine.types.register(_pets())

    @pytest.mark.parametrize("name", ["1pets", "pet-s", "", "pets!"])
    def test_malformed_name_is_rejected(self, engine, name):
        with pytest.raises(ValidationError):
            engine.types.register(_pets(name=name))

    def test_primary_display_must_be_declared(self, engine):
        with pytest.raises(ValidationError):
            engine.types.register(_pets(primaryDisplayProperty="nickname"))
        with pytest.raises(NotFoundError):
            engine.types.resolve("pets")

    def test_empty_labels_are_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.types.register(_pets(labelPlural=" "))

    def test_built_in_types_cannot_be_archived(self, engine):
        with pytest.raises(ValidationError):
            engine.types.archive("contacts")

    def test_archive_is_idempotent_and_frees_the_name(self, engine):
        engine.types.register(_pets())
        engine.types.archive("pets")
        engine.types.archive("2-1")
        with pytest.raises(NotFoundError):
            engine.types.resolve("pets")
        assert engine.types.resolve("pets", include_archived=True).archived is True
        again = engine.types.register(_pets())
        assert again.id == "2-2"
        assert engine.types.resolve("pets").id == "2-2"

    def test_update_labels_and_primary_display(self, engine):
        engine.types.register(_pets())
        updated = engine.types.update("pets", {"labelSingular": "Animal", "primaryDisplayProperty": "age"})
        assert updated.label_singular == "Animal"
        assert updated.primary_display_property == "age"
        with pytest.raises(ValidationError):
            engine.types.update("pets", {"primaryDisplayProperty": "nickname"})

    def test_list_hides_archived_types(self, engine):
        engine.types.register(_pets())
        engine.types.archive("pets")
        assert "pets" not in {t.name for t in engine.types.list()}
        assert [t.name for t in engine.types.list(include_archived=True, custom_only=True)] == ["pets"]


class TestPropertyCatalog:
    def test_declare_and_get(self, engine):
        created = engine.properties.declare(
            "contacts", {"name": "favourite_colour", "label": "Favourite colour", "type": "string"}
        )
        assert created.group_name == "contactinformation"
        assert engine.properties.get("contacts", "favourite_colour").label == "Favourite colour"

    def test_duplicate_declaration_conflicts(self, engine):
        with pytest.raises(ConflictError):
            engine.properties.declare("contacts", {"name": "email", "label": "Email", "type": "string"})

    def test_unsupported_type_is_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.properties.declare("contacts", {"name": "blob", "label": "Blob", "type": "binary"})

    def test_archived_property_rejects_writes(self, engine, contacts):
        engine.properties.archive("contacts", "lastname")
        with pytest.raises(ValidationError) as info:
            engine.records.update("contacts", contacts[0].id, {"lastname": "Byron"})
        assert info.value.errors[0].code == "PROPERTY_ARCHIVED"
        with pytest.raises(NotFoundError):
            engine.properties.get("contacts", "lastname")
        assert engine.properties.get("contacts", "lastname", include_archived=True).archived is True

    def test_archive_is_idempotent(self, engine):
        engine.properties.archive("contacts", "lastname")
        engine.properties.archive("contacts", "lastname")

    def test_redeclaring_revives(self, engine):
        engine.properties.archive("contacts", "lastname")
        revived = engine.properties.declare("contacts", {"name": "lastname", "label": "Surname", "type": "string"})
        assert revived.archived is False
        assert revived.label == "Surname"

    def test_update_changes_label_and_options(self, engine):
        engine.properties.declare("deals", {"name": "tier", "label": "Tier", "type": "enumeration"})
        updated = engine.properties.update(
            "deals",
            "tier",
            {"label": "Deal tier", "options": [{"label": "Gold", "value": "gold"}]},
        )
        assert updated.label == "Deal tier"
        assert updated.option_values() == ["gold"]
        with pytest.raises(ValidationError):
            engine.records.create("deals", {"dealname": "x", "tier": "silver"})

    def test_built_in_type_cannot_change(self, engine):
        with pytest.raises(ValidationError):
            engine.properties.update("deals", "amount", {"type": "string"})

    def test_unknown_property_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            engine.properties.update("contacts", "nope", {"label": "Nope"})

    def test_batch_declare_reports_conflicts_per_item(self, engine):
        result = engine.properties.batch_declare(
            "contacts",
            [
                {"name": "shoe_size", "label": "Shoe size", "type": "number"},
                {"name": "email", "label": "Email", "type": "string"},
            ],
        )
        assert [p.name for p in result.results] == ["shoe_size"]
        assert result.errors[0].category == "CONFLICT"
        assert result.errors[0].context == {"name": ["email"]}

    def test_batch_read_and_archive(self, engine):
        read = engine.properties.batch_read("contacts", ["email", "missing"])
        assert [p.name for p in read.results] == ["email"]
        assert read.num_errors == 1
        archived = engine.properties.batch_archive("contacts", ["firstname", "missing"])
        assert archived.num_errors == 1
        assert engine.properties.get("contacts", "firstname", include_archived=True).archived is True


class TestPropertyGroups:
    def test_create_list_and_archive(self, engine):
        engine.properties.create_group("contacts", {"name": "social", "label": "Social", "displayOrder": 5})
        assert "social" in {g.name for g in engine.properties.list_groups("contacts")}
        with pytest.raises(ConflictError):
            engine.properties.create_group("contacts", {"name": "social", "label": "Social"})
        engine.properties.archive_group("contacts", "social")
        assert "social" not in {g.name for g in engine.properties.list_groups("contacts")}
        assert engine.properties.get_group("contacts", "social").archived is True

    def test_declared_property_lands_in_named_group(self, engine):
        engine.properties.create_group("contacts", {"name": "social", "label": "Social"})
        prop = engine.properties.declare(
            "contacts", {"name": "twitter", "label": "Twitter", "type": "string", "groupName": "social"}
        )
        assert prop.group_name == "social"

    def test_unknown_group_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            engine.properties.archive_group("contacts", "nope")
