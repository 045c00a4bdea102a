"""Tests for the seeded draw engine and session registry."""

from datetime import date

import pytest

from silkspark.draw import (
    DAILY_DISPLAY_COUNT,
    SPREAD_DISPLAY_COUNT,
    DrawSessions,
    DuplicateSelectionError,
    InvalidSelectionError,
    SessionExpiredError,
    daily_seed,
    display_deck,
    init_session,
    resolve_selection,
    resolve_spread,
    spread_seed,
    start_daily_draw,
    start_spread_draw,
)
from silkspark.utils.rng import InvalidSeedError, permutation

DAY = date(2024, 1, 15)

# Recorded outputs for u1 on 2024-01-15.
U1_DAILY_SEED = "102d07b76e15f27c1635557978d8502b5b0a18d59eca05d5ddd0f5dbfead85ae"
U1_DAILY_DISPLAY_DECK = (18, 71, 40, 33, 24, 37, 61)
U1_DAILY_SLOT_3 = ("w12", False)


class TestDailyScenario:
    """u1 on 2024-01-15 with a 78-card catalog and seven face-down cards."""

    def test_display_deck_is_fixed(self):
        """Seven distinct catalog indices, identical on every call."""
        seed = daily_seed("u1", DAY)
        session = init_session("daily", seed, 7)
        assert len(session.display_deck) == 7
        assert len(set(session.display_deck)) == 7
        assert all(0 <= i < 78 for i in session.display_deck)
        assert session.display_deck == init_session("daily", seed, 7).display_deck

    def test_selection_three_is_stable(self):
        """Resolving slot 3 repeatedly always yields the same draw."""
        seed = daily_seed("u1", DAY)
        first = resolve_selection(seed, 3, 7)
        for _ in range(5):
            assert resolve_selection(seed, 3, 7) == first
        assert first.catalog_index == init_session("daily", seed, 7).display_deck[3]

    def test_pinned_values(self):
        """The seed, display deck and slot-3 card match values recorded outside this process."""
        seed = daily_seed("u1", DAY)
        assert seed == U1_DAILY_SEED
        assert init_session("daily", seed, 7).display_deck == U1_DAILY_DISPLAY_DECK
        draw = resolve_selection(seed, 3, 7)
        assert (draw.card.id, draw.is_reversed) == U1_DAILY_SLOT_3
        assert draw.card.name == "Knight of Wands"

    def test_reproducible_from_fresh_inputs(self):
        """Rebuilding the session from scratch gives the same deck; a new day changes it."""
        assert start_daily_draw("u1", DAY) == start_daily_draw("u1", DAY)
        assert start_daily_draw("u1", DAY).display_deck != start_daily_draw("u1", date(2024, 1, 16)).display_deck

    def test_anonymous_users_share_a_daily_seed(self):
        """A missing user id falls back to the shared anonymous seed."""
        assert daily_seed(None, DAY) == daily_seed("anonymous", DAY)
        assert daily_seed(None, DAY) != daily_seed("u1", DAY)

    def test_default_display_counts(self):
        """Daily draws show seven cards and spreads show nine."""
        assert len(start_daily_draw("u1", DAY).display_deck) == DAILY_DISPLAY_COUNT
        assert len(start_spread_draw("u1", "n").display_deck) == SPREAD_DISPLAY_COUNT


class TestResolution:
    def test_out_of_order_resolution_matches_in_order(self):
        """Resolution order never changes which card a slot holds."""
        seed = spread_seed("u1", "nonce-1")
        in_order = [resolve_selection(seed, i) for i in range(9)]
        out_of_order = {i: resolve_selection(seed, i) for i in (8, 2, 5, 0, 7, 1, 3, 6, 4)}
        assert [out_of_order[i] for i in range(9)] == in_order

    def test_full_session_has_no_duplicates(self):
        """Resolving every slot reveals each of the 78 cards once."""
        seed = spread_seed("u1", "nonce-2")
        session = init_session("spread", seed, 78)
        draws = [resolve_selection(seed, i, 78) for i in range(78)]
        ids = [d.card.id for d in draws]
        assert len(set(ids)) == 78
        assert [d.catalog_index for d in draws] == list(session.display_deck)

    def test_orientation_follows_the_card(self):
        """A slot resolves to the permutation entry at that index."""
        seed = spread_seed("u1", "nonce-3")
        order = permutation(seed, 78)
        draw = resolve_selection(seed, 4)
        assert draw.catalog_index == order[4]
        assert isinstance(draw.is_reversed, bool)

    def test_some_cards_reverse(self):
        """Across a full deck some cards come up reversed and some upright."""
        seed = spread_seed("u1", "nonce-4")
        flips = [resolve_selection(seed, i).is_reversed for i in range(78)]
        assert any(flips) and not all(flips)

    def test_display_count_larger_than_catalog_degrades(self):
        """Asking for more cards than exist yields the whole catalog."""
        seed = daily_seed("u1", DAY)
        assert len(display_deck(seed, 500)) == 78
        assert len(init_session("daily", seed, 100).display_deck) == 78

    @pytest.mark.parametrize("index", [-1, 7, 100])
    def test_index_outside_display_deck(self, index):
        """Indices outside the display deck are rejected."""
        with pytest.raises(InvalidSelectionError):
            resolve_selection(daily_seed("u1", DAY), index, 7)

    @pytest.mark.parametrize("index", [True, 1.0, "3", None])
    def test_index_must_be_int(self, index):
        """Non-integer indices, bools included, are rejected."""
        with pytest.raises(InvalidSelectionError):
            resolve_selection(daily_seed("u1", DAY), index, 7)

    def test_display_count_must_be_positive(self):
        """A zero-card display deck is rejected."""
        with pytest.raises(InvalidSelectionError):
            display_deck(daily_seed("u1", DAY), 0)

    @pytest.mark.parametrize("seed", [None, "", "daily:u1:2024-01-15", "0" * 63])
    def test_invalid_seed_fails_fast(self, seed):
        """Missing or malformed seeds raise before any card is resolved."""
        with pytest.raises(InvalidSeedError):
            resolve_selection(seed, 0)
        with pytest.raises(InvalidSeedError):
            display_deck(seed, 7)


class TestSpread:
    def test_positions_follow_selection_order(self):
        """past, present and future follow the order the user picked."""
        seed = spread_seed("u1", "nonce-5")
        draws = resolve_spread(seed, [6, 1, 4])
        assert [d.position for d in draws] == ["past", "present", "future"]
        assert [d.display_index for d in draws] == [6, 1, 4]

    def test_same_slot_same_card_regardless_of_position(self):
        """A slot reveals the same card whichever position it fills."""
        seed = spread_seed("u1", "nonce-5")
        a = resolve_spread(seed, [6, 1, 4])
        b = resolve_spread(seed, [4, 6, 1])
        assert a[0].card == b[1].card
        assert a[0].is_reversed == b[1].is_reversed
        assert b[1].position == "present"

    def test_spread_needs_three_selections(self):
        """A spread resolves exactly three selections."""
        seed = spread_seed("u1", "nonce-5")
        with pytest.raises(InvalidSelectionError):
            resolve_spread(seed, [1, 2])
        with pytest.raises(InvalidSelectionError):
            resolve_spread(seed, [1, 2, 3, 4])

    def test_spread_rejects_duplicates(self):
        """The same slot cannot fill two positions."""
        with pytest.raises(DuplicateSelectionError):
            resolve_spread(spread_seed("u1", "nonce-5"), [2, 2, 3])

    def test_display_count_bounds_spread_indices(self):
        """With a nine-card display deck, index 9 is out of range."""
        seed = spread_seed("u1", "nonce-5")
        with pytest.raises(InvalidSelectionError):
            resolve_spread(seed, [0, 1, SPREAD_DISPLAY_COUNT], SPREAD_DISPLAY_COUNT)
        assert len(resolve_spread(seed, [0, 1, SPREAD_DISPLAY_COUNT])) == 3

    def test_random_nonce_gives_new_spread(self):
        """Omitting the nonce draws a fresh spread each time."""
        assert start_spread_draw("u1").seed != start_spread_draw("u1").seed


class TestDrawSessions:
    """Registry of live sessions per identity."""

    def test_daily_select_completes_session(self):
        """One selection completes a daily session and closes it."""
        sessions = DrawSessions()
        session = sessions.start_daily("u1", DAY)
        draw = sessions.select(session.session_id, 2)
        assert draw.position == "single"
        assert draw == resolve_selection(session.seed, 2, DAILY_DISPLAY_COUNT, "single")
        with pytest.raises(SessionExpiredError):
            sessions.select(session.session_id, 3)

    def test_spread_positions_by_selection_order(self):
        """Session selections are assigned positions in pick order."""
        sessions = DrawSessions()
        session = sessions.start_spread("u1", "n1")
        positions = [sessions.select(session.session_id, i).position for i in (5, 0, 8)]
        assert positions == ["past", "present", "future"]

    def test_duplicate_index_rejected(self):
        """Re-selecting a consumed slot fails and consumes nothing."""
        sessions = DrawSessions()
        session = sessions.start_spread("u1", "n1")
        sessions.select(session.session_id, 5)
        with pytest.raises(DuplicateSelectionError):
            sessions.select(session.session_id, 5)
        assert sessions.consumed(session.session_id) == [5]

    def test_new_session_supersedes_previous(self):
        """Starting a new session expires the identity's previous one."""
        sessions = DrawSessions()
        old = sessions.start_spread("u1", "n1")
        new = sessions.start_spread("u1", "n2")
        with pytest.raises(SessionExpiredError):
            sessions.get(old.session_id)
        assert sessions.get(new.session_id) == new

    def test_identities_are_isolated(self):
        """Sessions for different users do not interfere."""
        sessions = DrawSessions()
        a = sessions.start_spread("u1", "n1")
        b = sessions.start_spread("u2", "n1")
        assert a.seed != b.seed
        assert sessions.get(a.session_id) == a
        assert sessions.get(b.session_id) == b

    def test_selection_outside_session_deck(self):
        """A selection past the session's display deck is rejected without being recorded."""
        sessions = DrawSessions()
        session = sessions.start_daily("u1", DAY)
        with pytest.raises(InvalidSelectionError):
            sessions.select(session.session_id, DAILY_DISPLAY_COUNT)
        assert sessions.consumed(session.session_id) == []
