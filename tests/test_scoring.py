from dailyemoji import scoring


def test_hint_cost_schedule():
    assert [scoring.hint_cost(n) for n in range(3)] == [2000, 5000, 10000]
    assert scoring.hint_cost(3) is None
    assert scoring.hint_cost(-1) is None


def test_compute_score_adds_penalty_to_elapsed():
    assert scoring.compute_score(1_000, 31_000, 2_000) == 32_000
    # deterministic for identical inputs
    assert scoring.compute_score(5, 10, 0) == scoring.compute_score(5, 10, 0)


def test_compute_score_clamps_clock_skew():
    assert scoring.elapsed_ms(10_000, 9_000) == 0
    assert scoring.compute_score(10_000, 9_000, 0) == 0
    assert scoring.compute_score(10_000, 9_000, 5_000) == 5_000


def test_guess_normalization():
    assert scoring.normalize_guess("Half-Life 2!") == "halflife2"
    assert scoring.is_correct_guess("  half life 2 ", "Half-Life 2")
    assert scoring.is_correct_guess("POKEMON: red", "Pokemon Red")
    assert not scoring.is_correct_guess("Half-Life", "Half-Life 2")
    # plain equality after stripping
    assert scoring.is_correct_guess("Pokémon Red", "Pokemon Red") is False
    assert scoring.is_correct_guess("Pokémon Red", "Pokémon: Red")
    assert not scoring.is_correct_guess("", "Doom")
