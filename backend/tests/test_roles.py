"""Tests for role normalization and resolution."""

from unittest.mock import AsyncMock

import pytest

from claims_portal.core.exceptions import BackendError
from claims_portal.services.roles import (
    Role,
    RoleResolver,
    extract_role_from_metadata,
    normalize_role,
    normalize_selection,
    route_for,
)


class TestNormalizeRole:
    @pytest.mark.parametrize("value", ["car_company", "Car Company", "car-company", "CAR_COMPANY", " car  company "])
    def test_car_company_spellings(self, value):
        assert normalize_role(value) is Role.car_company

    @pytest.mark.parametrize("value", ["insurance_company", "Insurance Company", "insurance-company"])
    def test_insurance_company_spellings(self, value):
        assert normalize_role(value) is Role.insurance_company

    def test_admin_variants(self):
        assert normalize_role("Admin") is Role.admin
        assert normalize_role("super_admin") is Role.admin

    def test_user_must_match_exactly(self):
        assert normalize_role("user") is Role.user
        assert normalize_role("users") is None

    @pytest.mark.parametrize("value", [None, "", "   ", 42, "manager"])
    def test_unrecognised_values(self, value):
        assert normalize_role(value) is None


class TestMetadataExtraction:
    def test_app_metadata_wins_over_user_metadata(self):
        identity = {
            "app_metadata": {"role": "insurance company"},
            "user_metadata": {"role": "car company"},
        }
        assert extract_role_from_metadata(identity) is Role.insurance_company

    def test_falls_through_keys_in_order(self):
        identity = {"user_metadata": {"role": "unknown", "portalRole": "car-company"}}
        assert extract_role_from_metadata(identity) is Role.car_company

    def test_roles_list_uses_first_entry(self):
        identity = {"app_metadata": {"roles": ["admin", "car_company"]}}
        assert extract_role_from_metadata(identity) is Role.admin

    def test_no_metadata(self):
        assert extract_role_from_metadata({"id": "u1"}) is None


class TestRoutes:
    def test_portal_routes(self):
        assert route_for(Role.car_company) == "/car-company/"
        assert route_for(Role.insurance_company) == "/insurance-company/"
        assert route_for(Role.admin) == "/admin-signup/"

    def test_user_and_missing_roles_have_no_route(self):
        assert route_for(Role.user) is None
        assert route_for(None) is None


class TestNormalizeSelection:
    def test_known_selections(self):
        assert normalize_selection("Car Company") == ("car_company", "car-company")
        assert normalize_selection("insurance_company") == ("insurance_company", "insurance-company")
        assert normalize_selection("ADMIN") == ("admin", "admin")

    def test_unknown_selection_defaults_to_user(self):
        assert normalize_selection("Field  Agent") == ("user", "field-agent")
        assert normalize_selection(None) == ("user", "user")


class TestRoleResolver:
    async def test_metadata_skips_table_lookup(self):
        repository = AsyncMock()
        resolver = RoleResolver(repository)

        role = await resolver.resolve({"id": "u1", "user_metadata": {"role": "car company"}})

        assert role is Role.car_company
        repository.lookup_role.assert_not_called()

    async def test_falls_back_to_profile_tables_in_order(self):
        repository = AsyncMock()
        repository.lookup_role.side_effect = [
            BackendError("relation does not exist"),
            None,
            "Insurance-Company",
        ]
        resolver = RoleResolver(repository)

        role = await resolver.resolve({"id": "u1"})

        assert role is Role.insurance_company
        tables = [call.args[0] for call in repository.lookup_role.await_args_list]
        assert tables == ["profiles", "portal_profiles", "user_profiles"]

    async def test_no_role_anywhere(self):
        repository = AsyncMock()
        repository.lookup_role.return_value = None

        assert await RoleResolver(repository).resolve({"id": "u1"}) is None

    async def test_identity_without_id(self):
        repository = AsyncMock()

        assert await RoleResolver(repository).resolve({}) is None
        repository.lookup_role.assert_not_called()
