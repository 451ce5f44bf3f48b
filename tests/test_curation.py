import pytest

from recipes_api.errors import ConflictError
from recipes_api.models_db import Recipe, RecipeStatus
from recipes_api.models_user_recipes import CurationState, UserRecipe, Visibility
from recipes_api.services import curation
from recipes_api.services.recipes import apply_recipe_changes
from recipes_api.services.timeutil import now_utc

NOW = now_utc()


def test_curation_transition_table():
    assert curation.next_curation_state(None, "submit") is CurationState.pending
    assert curation.next_curation_state(CurationState.rejected, "submit") is CurationState.pending
    assert curation.next_curation_state(CurationState.pending, "approve") is CurationState.approved
    assert curation.next_curation_state(CurationState.pending, "reject") is CurationState.rejected
    with pytest.raises(ConflictError):
        curation.next_curation_state(None, "approve")
    with pytest.raises(ConflictError):
        curation.next_curation_state(CurationState.pending, "submit")


def test_submit_clears_share_link():
    ur = UserRecipe(user_id="u1", title="Pisto", visibility=Visibility.private)
    curation.share(ur, NOW)
    assert ur.share_slug
    curation.submit(ur, NOW)
    assert ur.visibility is Visibility.submitted
    assert ur.share_slug is None
    assert curation.is_locked(ur)
    with pytest.raises(ConflictError):
        curation.share(ur, NOW)


def test_published_version_bumps_only_on_versioned_fields():
    r = Recipe(title="Salad", calories=200, allergens=["mustard"], status=RecipeStatus.published, version=1)
    assert apply_recipe_changes(r, {"title": "Big salad"}, NOW)
    assert r.version == 1
    assert "big salad" in r.search_text.lower()
    assert apply_recipe_changes(r, {"allergens": ["mustard", "eggs"]}, NOW)
    assert r.version == 2
    assert not apply_recipe_changes(r, {"allergens": ["eggs", "mustard"]}, NOW)
    assert r.version == 2


def test_draft_changes_do_not_bump_version():
    r = Recipe(title="Soup", calories=100, status=RecipeStatus.draft, version=1)
    apply_recipe_changes(r, {"calories": 150}, NOW)
    assert r.version == 1
