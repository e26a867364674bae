"""
Integration tests for the Record Store against an in-memory SQLite engine.

Covers CRUD, projection, pagination, archive, merge, value history and the
batch operations.
"""

from __future__ import annotations

import pytest

from crm_double.errors import NotFoundError, ValidationError

DEFAULTS = {"hs_object_id", "hs_createdate", "hs_lastmodifieddate"}


class TestCreateAndGet:
    """Single-record writes and reads."""

    def test_create_returns_every_stored_property(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com", "firstname": "Ada"})
        assert record.properties["email"] == "ada@example.com"
        assert record.properties["hs_object_id"] == record.id
        assert record.properties["hs_createdate"] == record.created_at
        assert record.archived is False

    def test_type_resolves_by_id_as_well_as_name(self, engine):
        record = engine.records.create("0-1", {"email": "ada@example.com"})
        assert engine.records.get("contacts", record.id).id == record.id

    def test_get_without_projection_returns_only_defaults(self, engine):
        record = engine.records.create(
            "contacts", {"email": "ada@example.com", "firstname": "Ada", "lastname": "Lovelace"}
        )
        fetched = engine.records.get("contacts", record.id)
        assert set(fetched.properties) == DEFAULTS
        wire = fetched.model_dump(by_alias=True, exclude_none=True)
        assert set(wire) == {"id", "properties", "createdAt", "updatedAt", "archived"}

    def test_get_with_projection_adds_requested(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com", "firstname": "Ada"})
        fetched = engine.records.get("contacts", record.id, properties=["email", "unknown"])
        assert set(fetched.properties) == DEFAULTS | {"email"}

    def test_projection_accepts_comma_string(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com", "firstname": "Ada"})
        fetched = engine.records.get("contacts", record.id, properties="email, firstname")
        assert fetched.properties["firstname"] == "Ada"

    def test_caller_cannot_override_object_id(self, engine):
        record = engine.records.create("contacts", {"hs_object_id": "999", "email": "ada@example.com"})
        assert record.properties["hs_object_id"] == record.id
        assert record.id != "999"

    def test_caller_cannot_override_modified_dates(self, engine):
        record = engine.records.create(
            "contacts",
            {"email": "ada@example.com", "hs_lastmodifieddate": "1999-01-01T00:00:00.000Z", "lastmodifieddate": "x"},
        )
        assert record.properties["hs_lastmodifieddate"] == record.updated_at
        assert record.properties["lastmodifieddate"] == record.updated_at

    def test_values_are_stringified(self, engine):
        record = engine.records.create("deals", {"dealname": "Big", "amount": 1500})
        assert record.properties["amount"] == "1500"

    def test_get_by_unique_property(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com"})
        fetched = engine.records.get("contacts", "ada@example.com", id_property="email")
        assert fetched.id == record.id

    def test_get_by_unique_property_sees_archived_when_asked(self, engine):
        record = engine.records.create("contacts", {"email": "z@x.com"})
        engine.records.archive("contacts", record.id)
        with pytest.raises(NotFoundError):
            engine.records.get("contacts", "z@x.com", id_property="email")
        fetched = engine.records.get("contacts", "z@x.com", id_property="email", archived=True)
        assert fetched.id == record.id
        assert fetched.archived is True

    def test_get_by_unique_property_prefers_live_record(self, engine):
        old = engine.records.create("contacts", {"email": "z@x.com"})
        engine.records.archive("contacts", old.id)
        new = engine.records.create("contacts", {"email": "z@x.com"})
        fetched = engine.records.get("contacts", "z@x.com", id_property="email", archived=True)
        assert fetched.id == new.id

    def test_get_by_non_unique_property_fails(self, engine):
        engine.records.create("contacts", {"email": "ada@example.com", "firstname": "Ada"})
        with pytest.raises(ValidationError):
            engine.records.get("contacts", "Ada", id_property="firstname")

    @pytest.mark.parametrize("record_id", ["999", "abc", ""])
    def test_get_unknown_id_is_not_found(self, engine, record_id):
        with pytest.raises(NotFoundError):
            engine.records.get("contacts", record_id)

    def test_get_with_wrong_type_is_not_found(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com"})
        with pytest.raises(NotFoundError):
            engine.records.get("companies", record.id)

    def test_unknown_type_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            engine.records.create("spaceships", {"name": "x"})

    def test_type_mismatched_value_is_rejected(self, engine):
        with pytest.raises(ValidationError) as info:
            engine.records.create("deals", {"dealname": "Big", "amount": "lots"})
        assert info.value.errors[0].code == "INVALID_NUMBER"
        assert engine.records.list("deals").results == []

    def test_unknown_properties_are_stored(self, engine):
        record = engine.records.create("contacts", {"favourite_colour": "green"})
        assert record.properties["favourite_colour"] == "green"


class TestUpdate:
    def test_update_overwrites_and_bumps_modified(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com", "firstname": "Ada"})
        updated = engine.records.update("contacts", record.id, {"firstname": "Augusta"})
        assert updated.properties["firstname"] == "Augusta"
        assert updated.properties["email"] == "ada@example.com"
        assert updated.updated_at > record.updated_at
        assert updated.properties["hs_lastmodifieddate"] == updated.updated_at

    def test_update_archived_record_is_not_found(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com"})
        engine.records.archive("contacts", record.id)
        with pytest.raises(NotFoundError):
            engine.records.update("contacts", record.id, {"firstname": "Ada"})

    def test_history_is_newest_first(self, engine):
        record = engine.records.create("contacts", {"firstname": "Ada"})
        engine.records.update("contacts", record.id, {"firstname": "Augusta"})
        fetched = engine.records.get("contacts", record.id, properties_with_history=["firstname"])
        values = [entry.value for entry in fetched.properties_with_history["firstname"]]
        assert values == ["Augusta", "Ada"]
        assert engine.records.history("contacts", record.id, ["firstname"])["firstname"][0].source_type == "API"


class TestArchive:
    def test_archive_twice_is_idempotent(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com"})
        engine.records.archive("contacts", record.id)
        first = engine.records.get("contacts", record.id, archived=True)
        engine.records.archive("contacts", record.id)
        second = engine.records.get("contacts", record.id, archived=True)
        assert first == second
        assert second.archived is True
        assert second.archived_at is not None

    def test_archived_records_are_hidden(self, engine):
        record = engine.records.create("contacts", {"email": "ada@example.com"})
        engine.records.archive("contacts", record.id)
        with pytest.raises(NotFoundError):
            engine.records.get("contacts", record.id)
        assert engine.records.list("contacts").results == []
        assert [r.id for r in engine.records.list("contacts", archived=True).results] == [record.id]

    def test_archive_unknown_is_not_found(self, engine):
        with pytest.raises(NotFoundError):
            engine.records.archive("contacts", "12345")


class TestList:
    def test_cursor_walk_sees_every_record_once(self, engine):
        created = [engine.records.create("contacts", {"email": f"u{i}@x.com"}).id for i in range(7)]
        seen = []
        page = engine.records.list("contacts", limit=3)
        seen.extend(r.id for r in page.results)
        # Inserts between page fetches land after the cursor and are picked up once.
        extra = engine.records.create("contacts", {"email": "late@x.com"}).id
        while page.next_after is not None:
            page = engine.records.list("contacts", limit=3, after=page.next_after)
            seen.extend(r.id for r in page.results)
        assert seen == created + [extra]
        assert len(set(seen)) == len(seen)

    def test_last_page_has_no_cursor(self, engine):
        for i in range(3):
            engine.records.create("contacts", {"email": f"u{i}@x.com"})
        page = engine.records.list("contacts", limit=3)
        assert len(page.results) == 3
        assert page.paging is None

    def test_list_clamps_limit(self, engine):
        page = engine.records.list("contacts", limit=0)
        assert page.results == []

    def test_malformed_cursor_is_rejected(self, engine):
        with pytest.raises(ValidationError):
            engine.records.list("contacts", after="not-a-cursor")


class TestMerge:
    def test_merge_conserves_ids_and_fills_gaps(self, engine):
        primary = engine.records.create("contacts", {"email": "p@x.com", "firstname": ""})
        absorbed = engine.records.create("contacts", {"email": "m@x.com", "firstname": "Mia", "phone": "555"})
        merged = engine.records.merge("contacts", primary.id, absorbed.id)

        assert merged.id == primary.id
        assert merged.properties["email"] == "p@x.com"
        assert merged.properties["firstname"] == "Mia"
        assert merged.properties["phone"] == "555"
        assert absorbed.id in merged.properties["hs_merged_object_ids"].split(";")

        gone = engine.records.get("contacts", absorbed.id, archived=True)
        assert gone.archived is True
        assert gone.merged_into_id == primary.id
        with pytest.raises(NotFoundError):
            engine.records.get("contacts", absorbed.id)

    def test_merge_chains_merged_ids(self, engine):
        a, b, c = (engine.records.create("contacts", {"email": f"{n}@x.com"}) for n in "abc")
        engine.records.merge("contacts", b.id, c.id)
        merged = engine.records.merge("contacts", a.id, b.id)
        assert set(merged.properties["hs_merged_object_ids"].split(";")) == {b.id, c.id}

    def test_merge_into_itself_is_rejected(self, engine):
        record = engine.records.create("contacts", {"email": "a@x.com"})
        with pytest.raises(ValidationError):
            engine.records.merge("contacts", record.id, record.id)

    def test_merge_with_archived_record_is_not_found(self, engine):
        a = engine.records.create("contacts", {"email": "a@x.com"})
        b = engine.records.create("contacts", {"email": "b@x.com"})
        engine.records.archive("contacts", b.id)
        with pytest.raises(NotFoundError):
            engine.records.merge("contacts", a.id, b.id)


class TestBatches:
    def test_oversized_batch_writes_nothing(self, engine):
        inputs = [{"properties": {"email": f"u{i}@x.com"}} for i in range(101)]
        with pytest.raises(ValidationError):
            engine.records.batch_create("contacts", inputs)
        assert engine.records.list("contacts").results == []

    def test_batch_create_reports_items_independently(self, engine):
        result = engine.records.batch_create(
            "deals",
            [
                {"properties": {"dealname": "ok", "amount": "10"}},
                {"properties": {"dealname": "bad", "amount": "ten"}},
                {"properties": {"dealname": "ok too"}},
            ],
        )
        assert [r.properties["dealname"] for r in result.results] == ["ok", "ok too"]
        assert result.num_errors == 1
        assert result.errors[0].category == "VALIDATION_ERROR"
        assert len(engine.records.list("deals").results) == 2

    def test_batch_read_mixes_hits_and_misses(self, engine, contacts):
        result = engine.records.batch_read("contacts", [contacts[0].id, {"id": "999"}], properties=["email"])
        assert [r.properties["email"] for r in result.results] == ["a@x.com"]
        assert result.errors[0].category == "OBJECT_NOT_FOUND"
        assert result.errors[0].context == {"ids": ["999"]}

    def test_batch_update(self, engine, contacts):
        result = engine.records.batch_update(
            "contacts",
            [{"id": contacts[0].id, "properties": {"firstname": "A"}}, {"id": "999", "properties": {}}],
        )
        assert result.results[0].properties["firstname"] == "A"
        assert result.num_errors == 1

    def test_batch_upsert_matches_on_email_by_default(self, engine, contacts):
        result = engine.records.batch_upsert(
            "contacts",
            [
                {"properties": {"email": "a@x.com", "firstname": "Updated"}},
                {"properties": {"email": "new@x.com", "firstname": "New"}},
            ],
        )
        existing, created = result.results
        assert existing.id == contacts[0].id
        assert existing.new is False
        assert existing.properties["firstname"] == "Updated"
        assert created.new is True
        assert created.properties["email"] == "new@x.com"

    def test_batch_upsert_with_explicit_id_property(self, engine, companies):
        result = engine.records.batch_upsert(
            "companies",
            [{"id": "acme.example.com", "properties": {"name": "Acme Corp"}}],
            id_property="domain",
        )
        assert result.results[0].id == companies[0].id
        assert result.results[0].properties["name"] == "Acme Corp"

    def test_batch_upsert_rejects_non_unique_id_property(self, engine):
        with pytest.raises(ValidationError):
            engine.records.batch_upsert("contacts", [{"properties": {"firstname": "A"}}], id_property="firstname")

    def test_batch_archive_is_idempotent(self, engine, contacts):
        ids = [contacts[0].id, contacts[0].id, contacts[1].id]
        result = engine.records.batch_archive("contacts", ids)
        assert result.num_errors == 0
        assert [r.id for r in engine.records.list("contacts").results] == [contacts[2].id]
