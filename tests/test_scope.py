"""
Tests for scope parsing and resolution.
"""
import pytest

from app.core.errors import InvalidScopeError
from app.services.scope import Scope, ScopeType, resolve


class TestParse:
    def test_unknown_scope(self):
        with pytest.raises(InvalidScopeError) as exc:
            Scope.parse("company")
        assert exc.value.details["scope"] == "company"

    @pytest.mark.parametrize("kind", ["team", "user"])
    @pytest.mark.parametrize("entity_id", [None, "", "   "])
    def test_id_required(self, kind, entity_id):
        with pytest.raises(InvalidScopeError):
            Scope.parse(kind, entity_id)

    def test_id_ignored_for_organization(self):
        scope = Scope.parse("organization", "something")
        assert scope == Scope(kind=ScopeType.organization, entity_id="")


class TestResolve:
    @pytest.fixture()
    def org(self, seed):
        seed.team("eng")
        seed.team("empty")
        seed.user("alice", team="eng")
        seed.user("bob", team="eng")
        seed.user("carol", team="eng", active=False)
        seed.user("dave")
        return seed

    def test_organization_active_only(self, db, org):
        users = resolve(db, org.org_id, "organization")
        assert users == {f"{org.org_id}:{n}" for n in ("alice", "bob", "dave")}

    def test_organization_include_inactive(self, db, org):
        users = resolve(db, org.org_id, "organization", include_inactive=True)
        assert f"{org.org_id}:carol" in users
        assert len(users) == 4

    def test_team_returns_all_members(self, db, org):
        users = resolve(db, org.org_id, "team", f"{org.org_id}:eng")
        assert users == {f"{org.org_id}:{n}" for n in ("alice", "bob", "carol")}

    def test_empty_team(self, db, org):
        assert resolve(db, org.org_id, "team", f"{org.org_id}:empty") == frozenset()

    def test_unknown_team(self, db, org):
        with pytest.raises(InvalidScopeError) as exc:
            resolve(db, org.org_id, "team", "nope")
        assert exc.value.details == {"scope": "team", "id": "nope"}

    def test_user(self, db, org):
        user_id = f"{org.org_id}:dave"
        assert resolve(db, org.org_id, Scope.user(user_id)) == {user_id}

    def test_user_from_other_organization(self, db, org, make_seed):
        other = make_seed()
        other.user("eve")
        with pytest.raises(InvalidScopeError):
            resolve(db, org.org_id, "user", f"{other.org_id}:eve")
