import pytest

from recipes_api.errors import FilterValidationError
from recipes_api.models_db import Recipe
from recipes_api.schemas import SearchQuery
from recipes_api.services.filters import NumericRange, compile_filters
from recipes_api.services.recipes import refresh_search_text


def _recipe(**kw):
    values = dict(title="Lentil soup", calories=350, protein_g=22, sugar_g=4, sodium_mg=500, fiber_g=9,
                  prep_time_min=10, cook_time_min=15, diet_tags=["vegan", "high_protein"],
                  cuisines=["spanish"], allergens=["celery"])
    values.update(kw)
    r = Recipe(**values)
    refresh_search_text(r)
    return r


def _fields(exc):
    return [p.field for p in exc.value.errors]


def test_tokens_are_normalized():
    p = compile_filters(SearchQuery(diet=["Gluten-Free", "vegan, keto"], cuisine=[" Middle Eastern "]))
    assert p.diets == frozenset({"gluten_free", "vegan", "keto"})
    assert p.cuisines == frozenset({"middle_eastern"})


def test_all_problems_reported_together():
    q = SearchQuery(diet=["carnivore"], cuisine=["martian"], protein_min=-1, calories_min=900, calories_max=100,
                    time_max=-5, sort="random", limit=0, offset=-1)
    with pytest.raises(FilterValidationError) as exc:
        compile_filters(q)
    fields = _fields(exc)
    for f in ("diet", "cuisine", "protein_min", "calories_min", "time_max", "sort", "limit", "offset"):
        assert f in fields
    assert exc.value.status == 400


def test_unknown_tokens_one_problem_each():
    with pytest.raises(FilterValidationError) as exc:
        compile_filters(SearchQuery(allergens=["kryptonite", "unobtainium", "milk"]))
    assert _fields(exc) == ["allergens", "allergens"]


def test_equal_calorie_bounds_are_valid():
    p = compile_filters(SearchQuery(calories_min=300, calories_max=300))
    assert p.range_for("calories") == NumericRange(attr="calories", min=300, max=300)


def test_limit_above_max_is_not_an_error():
    p = compile_filters(SearchQuery(limit=5000))
    assert p.limit == 5000


def test_diets_all_required():
    r = _recipe()
    assert compile_filters(SearchQuery(diet=["vegan"])).matches(r)
    assert compile_filters(SearchQuery(diet=["vegan", "high_protein"])).matches(r)
    assert not compile_filters(SearchQuery(diet=["vegan", "keto"])).matches(r)


def test_cuisines_any_of():
    r = _recipe()
    assert compile_filters(SearchQuery(cuisine=["italian", "spanish"])).matches(r)
    assert not compile_filters(SearchQuery(cuisine=["italian"])).matches(r)


def test_allergens_exclude():
    r = _recipe()
    assert not compile_filters(SearchQuery(allergens=["celery"])).matches(r)
    assert compile_filters(SearchQuery(allergens=["milk", "eggs"])).matches(r)


def test_numeric_bounds_inclusive():
    r = _recipe()
    assert compile_filters(SearchQuery(protein_min=22, sodium_max=500, time_max=25)).matches(r)
    assert not compile_filters(SearchQuery(protein_min=22.5)).matches(r)
    assert not compile_filters(SearchQuery(time_max=24)).matches(r)


def test_missing_saturated_fat_fails_bound():
    r = _recipe(saturated_fat_g=None)
    assert compile_filters(SearchQuery()).matches(r)
    assert not compile_filters(SearchQuery(saturated_fat_max=10)).matches(r)
    assert compile_filters(SearchQuery(saturated_fat_max=10)).matches(_recipe(saturated_fat_g=2))


def test_text_requires_a_shared_term():
    r = _recipe()
    assert compile_filters(SearchQuery(q="Lentejas o lentil")).matches(r)
    assert not compile_filters(SearchQuery(q="chocolate cake")).matches(r)
    # sólo stop words: relevancia neutra, no filtra
    assert compile_filters(SearchQuery(q="the of a")).matches(r)


def test_numbers_given_as_text_are_parsed():
    p = compile_filters(SearchQuery(protein_min="22", sodium_max=" 500.5 ", time_max="25", limit="10", offset="3"))
    assert p.range_for("protein_g") == NumericRange(attr="protein_g", min=22.0)
    assert p.range_for("sodium_mg") == NumericRange(attr="sodium_mg", max=500.5)
    assert (p.time_max, p.limit, p.offset) == (25, 10, 3)


def test_unparseable_numbers_join_the_other_problems():
    q = SearchQuery(calories_min="abc", sugar_max="nan", protein_min=-5, time_max="1.5", diet=["martian"])
    with pytest.raises(FilterValidationError) as exc:
        compile_filters(q)
    assert sorted(_fields(exc)) == ["calories_min", "diet", "protein_min", "sugar_max", "time_max"]
    messages = {p.field: p.message for p in exc.value.errors}
    assert messages["calories_min"] == "must be a number"
    assert messages["time_max"] == "must be an integer"
