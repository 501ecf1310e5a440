"""Tests for the pure permission vocabulary and evaluator."""

import pytest

from edugate.auth.permissions import (
    PermissionResource,
    PermissionType,
    catalog_entries,
    describe,
    format_key,
    grant_keys,
    has_admin_access,
    has_permission,
    is_principal_role,
    sort_key,
)

R = PermissionResource
T = PermissionType


@pytest.mark.unit
class TestPrincipalClassification:
    @pytest.mark.parametrize(
        "role",
        ["Principal", "principal", "PRINCIPAL", "Vice Principal", "principal-assistant"],
    )
    def test_substring_match_is_case_insensitive(self, role):
        """Any role containing "principal" counts, including broad matches."""
        assert is_principal_role(role) is True

    @pytest.mark.parametrize("role", ["Bursar", "Head Teacher", "Registrar", "", None])
    def test_other_roles_are_not_principal(self, role):
        assert is_principal_role(role) is False

    def test_principal_is_allowed_everything(self):
        for resource in R:
            for type_ in T:
                assert has_permission("Principal", [], resource, type_)
                assert has_permission("Vice Principal", [], resource, type_)

    def test_principal_has_admin_access_without_grants(self):
        assert all(has_admin_access("principal-assistant", [], r) for r in R)


@pytest.mark.unit
class TestEvaluator:
    def test_admin_subsumes_read_and_write(self):
        granted = [(R.GRADES, T.ADMIN)]
        assert has_permission("Bursar", granted, R.GRADES, T.READ)
        assert has_permission("Bursar", granted, R.GRADES, T.WRITE)
        assert has_permission("Bursar", granted, R.GRADES, T.ADMIN)

    def test_admin_does_not_leak_to_other_resources(self):
        granted = [(R.GRADES, T.ADMIN)]
        assert not has_permission("Bursar", granted, R.STUDENTS, T.READ)

    def test_exact_grant_only(self):
        granted = [(R.STUDENTS, T.READ)]
        assert has_permission("Bursar", granted, R.STUDENTS, T.READ)
        assert not has_permission("Bursar", granted, R.STUDENTS, T.WRITE)
        assert not has_permission("Bursar", granted, R.STUDENTS, T.ADMIN)

    def test_write_does_not_imply_read(self):
        granted = [(R.CLASSES, T.WRITE)]
        assert not has_permission("Bursar", granted, R.CLASSES, T.READ)

    def test_no_grants_denies_everything(self):
        for resource in R:
            for type_ in T:
                assert not has_permission("Registrar", [], resource, type_)

    def test_has_admin_access_requires_admin_grant(self):
        assert has_admin_access("Bursar", [(R.STAFF, T.ADMIN)], R.STAFF)
        assert not has_admin_access("Bursar", [(R.STAFF, T.WRITE)], R.STAFF)

    def test_accepts_string_values_and_objects(self):
        class Row:
            resource = "STAFF"
            type = "ADMIN"

        assert grant_keys([Row(), ("GRADES", "READ")]) == {
            (R.STAFF, T.ADMIN),
            (R.GRADES, T.READ),
        }
        assert has_permission("Bursar", [Row()], "STAFF", "WRITE")


@pytest.mark.unit
class TestCatalogVocabulary:
    def test_catalog_is_full_cross_product(self):
        entries = catalog_entries()
        assert len(entries) == len(R) * len(T) == 51
        assert len({(r, t) for r, t, _ in entries}) == 51

    def test_descriptions(self):
        assert describe(R.STUDENTS, T.READ) == "Read access to Students"
        assert describe(R.OVERVIEW, T.ADMIN) == "Admin access to Dashboard Overview"

    def test_sort_key_orders_types_read_write_admin(self):
        keys = [(R.STAFF, T.ADMIN), (R.STAFF, T.READ), (R.STAFF, T.WRITE)]
        assert sorted(keys, key=lambda k: sort_key(*k)) == [
            (R.STAFF, T.READ),
            (R.STAFF, T.WRITE),
            (R.STAFF, T.ADMIN),
        ]

    def test_sort_key_orders_resources_by_declaration(self):
        assert sort_key("STUDENTS", "ADMIN") < sort_key("STAFF", "READ") < sort_key("GRADES", "READ")

    def test_values_are_stable_strings(self):
        assert [r.value for r in R][:5] == ["OVERVIEW", "ANALYTICS", "SUBSCRIPTIONS", "STUDENTS", "STAFF"]
        assert [t.value for t in T] == ["READ", "WRITE", "ADMIN"]
        assert format_key(R.STAFF, T.ADMIN) == "STAFF:ADMIN"
