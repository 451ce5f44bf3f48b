from datetime import timedelta

from sqlmodel import select

from recipes_api.models_db import HistoryEvent, HistoryKind, SavedRecipe
from recipes_api.services import ledger
from recipes_api.services.ledger import SaveState, ViewOutcome
from recipes_api.services.timeutil import now_utc

NOW = now_utc()


def test_save_transition_table():
    assert ledger.next_save_state(SaveState.absent) is SaveState.saved
    assert ledger.next_save_state(SaveState.saved) is SaveState.absent


def test_view_transition_window():
    assert ledger.view_transition(None, NOW, 3600) is ViewOutcome.recorded
    assert ledger.view_transition(NOW - timedelta(minutes=59), NOW, 3600) is ViewOutcome.collapsed
    assert ledger.view_transition(NOW - timedelta(minutes=60), NOW, 3600) is ViewOutcome.recorded


def test_toggle_is_its_own_inverse(session):
    assert ledger.toggle_save(session, "u1", "r1", NOW) is SaveState.saved
    assert ledger.is_saved(session, "u1", "r1")
    assert ledger.toggle_save(session, "u1", "r1", NOW) is SaveState.absent
    assert not ledger.is_saved(session, "u1", "r1")


def _stale_read(monkeypatch, stale):
    """La primera lectura devuelve un estado ya obsoleto (otro escritor ganó la carrera)."""
    real = ledger.current_save_state
    pending = [stale]

    def fake(session, user_id, recipe_id):
        if pending:
            return pending.pop()
        return real(session, user_id, recipe_id)

    monkeypatch.setattr(ledger, "current_save_state", fake)


def test_lost_insert_race_converges(session, monkeypatch):
    session.add(SavedRecipe(user_id="u1", recipe_id="r1", created_at=NOW))
    session.commit()
    _stale_read(monkeypatch, SaveState.absent)
    assert ledger.toggle_save(session, "u1", "r1", NOW) is SaveState.saved
    rows = session.exec(select(SavedRecipe).where(SavedRecipe.user_id == "u1")).all()
    assert len(rows) == 1


def test_lost_delete_race_converges(session, monkeypatch):
    _stale_read(monkeypatch, SaveState.saved)
    assert ledger.toggle_save(session, "u1", "r1", NOW) is SaveState.absent
    assert not ledger.is_saved(session, "u1", "r1")


def test_views_collapse_within_the_hour(session):
    first, collapsed = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW)
    assert not collapsed
    again, collapsed = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW + timedelta(minutes=30))
    assert collapsed
    assert again.id == first.id
    later, collapsed = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW + timedelta(minutes=61))
    assert not collapsed
    assert later.id != first.id
    assert len(session.exec(select(HistoryEvent)).all()) == 2


def _stale_view(monkeypatch, head, last):
    """El lector ve una cabeza y un último 'viewed' ya superados por otro escritor."""
    real_head, real_last = ledger._view_head, ledger._last_view
    pending = {"head": [head], "last": [last]}

    def fake_head(session, user_id, recipe_id):
        if pending["head"]:
            return pending["head"].pop()
        return real_head(session, user_id, recipe_id)

    def fake_last(session, user_id, recipe_id):
        if pending["last"]:
            return pending["last"].pop()
        return real_last(session, user_id, recipe_id)

    monkeypatch.setattr(ledger, "_view_head", fake_head)
    monkeypatch.setattr(ledger, "_last_view", fake_last)


def test_lost_first_view_race_collapses(session, monkeypatch):
    winner, _ = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW)
    _stale_view(monkeypatch, None, None)
    ev, collapsed = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW + timedelta(seconds=1))
    assert collapsed
    assert ev.id == winner.id
    assert len(session.exec(select(HistoryEvent)).all()) == 1


def test_lost_view_head_move_collapses(session, monkeypatch):
    first, _ = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW)
    winner, _ = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW + timedelta(minutes=61))
    _stale_view(monkeypatch, first.id, first)
    ev, collapsed = ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW + timedelta(minutes=62))
    assert collapsed
    assert ev.id == winner.id
    assert len(session.exec(select(HistoryEvent)).all()) == 2


def test_cooked_never_collapses(session):
    for minutes in (0, 1, 2):
        _, collapsed = ledger.record_event(session, "u1", "r1", HistoryKind.cooked, NOW + timedelta(minutes=minutes))
        assert not collapsed
    assert len(session.exec(select(HistoryEvent)).all()) == 3


def test_views_are_per_user_and_recipe(session):
    ledger.record_event(session, "u1", "r1", HistoryKind.viewed, NOW)
    _, c1 = ledger.record_event(session, "u2", "r1", HistoryKind.viewed, NOW)
    _, c2 = ledger.record_event(session, "u1", "r2", HistoryKind.viewed, NOW)
    assert not c1 and not c2


def test_history_feed_window(session):
    ledger.record_event(session, "u1", "old", HistoryKind.cooked, NOW - timedelta(days=200))
    ledger.record_event(session, "u1", "new", HistoryKind.cooked, NOW - timedelta(days=2))
    feed = ledger.history_feed(session, "u1", NOW, 180, 50, 0)
    assert [e.recipe_id for e in feed] == ["new"]


def test_interaction_weights_decay_and_kind(session):
    ledger.record_event(session, "u1", "viewed-now", HistoryKind.viewed, NOW)
    ledger.record_event(session, "u1", "cooked-now", HistoryKind.cooked, NOW)
    ledger.record_event(session, "u1", "viewed-old", HistoryKind.viewed, NOW - timedelta(days=14))
    w = ledger.interaction_weights(session, "u1", ["viewed-now", "cooked-now", "viewed-old", "never"], NOW, half_life_days=14)
    assert w["cooked-now"] > w["viewed-now"]
    assert abs(w["viewed-old"] - 0.5) < 1e-6
    assert "never" not in w
