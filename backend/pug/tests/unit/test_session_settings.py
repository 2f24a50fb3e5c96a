import pytest
from pydantic import ValidationError

from pug.logic.enums import GameMode
from pug.logic.settings import DEFAULT_CAPACITIES, SessionSettings


class TestSessionSettingsDefaults:
    def test_ready_window_defaults(self):
        settings = SessionSettings()
        assert settings.default_ready_seconds == 600
        assert settings.min_ready_seconds == 300
        assert settings.max_ready_seconds == 1800
        assert settings.ready_check_timeout_seconds == 30
        assert settings.map_vote_timeout_seconds == 15

    def test_capacities(self):
        settings = SessionSettings()
        assert settings.capacity(GameMode.BBALL) == 4
        assert settings.capacity(GameMode.ULTIDUO) == 4
        assert settings.capacity(GameMode.SIXES) == 12
        assert settings.capacity(GameMode.HIGHLANDER) == 18
        assert settings.capacity(GameMode.TEST) == 1

    def test_frozen(self):
        settings = SessionSettings()
        with pytest.raises(ValidationError):
            settings.map_vote_timeout_seconds = 1  # type: ignore[misc]


class TestClampReadySeconds:
    @pytest.mark.parametrize(
        ("requested", "expected"),
        [
            (None, 600),
            (60, 300),
            (900, 900),
            (7200, 1800),
        ],
    )
    def test_clamp(self, requested, expected):
        assert SessionSettings().clamp_ready_seconds(requested) == expected


class TestSessionSettingsValidation:
    def test_min_above_max_rejected(self):
        with pytest.raises(ValidationError, match="min_ready_seconds"):
            SessionSettings(min_ready_seconds=100, max_ready_seconds=50)

    def test_missing_mode_capacity_rejected(self):
        capacities = dict(DEFAULT_CAPACITIES)
        del capacities[GameMode.SIXES]
        with pytest.raises(ValidationError, match="capacities missing"):
            SessionSettings(capacities=capacities)

    def test_non_positive_capacity_rejected(self):
        with pytest.raises(ValidationError, match="positive"):
            SessionSettings(capacities={**DEFAULT_CAPACITIES, GameMode.TEST: 0})

    def test_search_attempts_must_be_positive(self):
        with pytest.raises(ValidationError):
            SessionSettings(server_search_attempts=0)
