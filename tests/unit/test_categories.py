"""Tests for category normalization."""

import pytest

from app.core.errors import ValidationError
from app.core.scheduling.categories import (
    AgendaType,
    normalize_agenda_type,
    require_agenda_type,
    synonyms_for,
)


class TestNormalizeAgendaType:
    """Test synonym mapping."""

    @pytest.mark.parametrize(
        "value",
        ["online", "ONLINE", " Online ", "reuniao", "reunião", "Reunião", "video", "vídeo"],
    )
    def test_online_synonyms(self, value):
        assert normalize_agenda_type(value) == AgendaType.ONLINE

    @pytest.mark.parametrize(
        "value",
        ["in_store", "loja", "Loja", "visita", "presencial", "instore"],
    )
    def test_in_store_synonyms(self, value):
        assert normalize_agenda_type(value) == AgendaType.IN_STORE

    @pytest.mark.parametrize("value", [None, "", "  ", "telefone", 42])
    def test_unknown_is_none(self, value):
        assert normalize_agenda_type(value) is None

    def test_enum_passes_through(self):
        assert normalize_agenda_type(AgendaType.IN_STORE) == AgendaType.IN_STORE

    def test_require_raises_for_unknown(self):
        with pytest.raises(ValidationError):
            require_agenda_type("telefone")

    def test_require_returns_canonical(self):
        assert require_agenda_type("loja").value == "in_store"

    def test_synonyms_include_canonical(self):
        for category in AgendaType:
            assert category.value in synonyms_for(category)
