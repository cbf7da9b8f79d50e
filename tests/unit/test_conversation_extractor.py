"""Tests for deterministic booking extraction."""

from datetime import date

import pytest

from app.core.conversation.extractor import (
    ChangeIntent,
    detect_change_intent,
    extract_booking,
    extract_date,
    extract_start,
    extract_time,
    has_relative_date,
    infer_agenda_type,
)
from app.core.scheduling.categories import AgendaType
from app.core.scheduling.timeutil import local_datetime

TODAY = date(2025, 3, 5)


class TestExtractTime:
    """Test time patterns."""

    @pytest.mark.parametrize(
        "text, expected",
        [
            ("às 14:30", (14, 30)),
            ("pode ser 9:00?", (9, 0)),
            ("14h", (14, 0)),
            ("14h30 pode?", (14, 30)),
            ("lá pelas 10 horas", (10, 0)),
            ("às 15", (15, 0)),
            ("as 8h da manhã", (8, 0)),
            ("as 10:30", (10, 30)),
        ],
    )
    def test_times(self, text, expected):
        assert extract_time(text) == expected

    @pytest.mark.parametrize(
        "text",
        ["quero agendar", "25:00", "dia 10/03", "levar as 2 cadeiras na loja dia 12/03"],
    )
    def test_no_time(self, text):
        assert extract_time(text) is None


class TestExtractDate:
    """Test absolute date patterns."""

    def test_full_date(self):
        assert extract_date("dia 10/03/2025", TODAY) == date(2025, 3, 10)

    def test_iso_date(self):
        assert extract_date("2025-03-10 às 14:00", TODAY) == date(2025, 3, 10)

    def test_short_date_upcoming(self):
        assert extract_date("dia 10/03", TODAY) == date(2025, 3, 10)

    def test_short_date_already_past_rolls_over(self):
        assert extract_date("dia 01/03", TODAY) == date(2026, 3, 1)

    def test_impossible_date(self):
        assert extract_date("dia 31/02/2025", TODAY) is None

    def test_relative_words_are_not_dates(self):
        assert extract_date("amanhã às 14h", TODAY) is None


class TestCategoryAndIntent:
    """Test category inference and change intent."""

    def test_infer_online(self):
        assert infer_agenda_type("prefiro reunião por vídeo") == AgendaType.ONLINE

    def test_infer_in_store(self):
        assert infer_agenda_type("vou passar na loja") == AgendaType.IN_STORE

    def test_infer_fallback(self):
        assert infer_agenda_type("dia 10/03 às 14h", "loja") == AgendaType.IN_STORE
        assert infer_agenda_type("dia 10/03 às 14h") is None

    @pytest.mark.parametrize(
        "text", ["amanhã às 10", "pode ser hoje?", "na sexta", "semana que vem", "próxima semana"]
    )
    def test_relative_dates(self, text):
        assert has_relative_date(text) is True

    def test_absolute_date_is_not_relative(self):
        assert has_relative_date("10/03/2025 às 14:00") is False

    def test_change_intent(self):
        assert detect_change_intent("quero cancelar") == ChangeIntent.CANCEL
        assert detect_change_intent("preciso remarcar para 12/03 às 10h") == ChangeIntent.RESCHEDULE
        assert detect_change_intent("cancelar ou remarcar?") == ChangeIntent.CANCEL
        assert detect_change_intent("olá") is None


class TestExtractBooking:
    """Test the combined extraction."""

    def test_complete(self):
        result = extract_booking("Quero uma reunião online dia 10/03/2025 às 14:00", today=TODAY)

        assert result.complete is True
        assert result.start == local_datetime(2025, 3, 10, 14, 0)
        assert result.agenda_type == AgendaType.ONLINE

    def test_missing_category(self):
        result = extract_booking("dia 10/03/2025 às 14:00", today=TODAY)

        assert result.start is not None
        assert result.agenda_type is None
        assert result.complete is False

    def test_missing_time(self):
        result = extract_booking("visita na loja dia 10/03/2025", today=TODAY)

        assert result.has_date is True
        assert result.has_time is False
        assert result.start is None

    def test_extract_start(self):
        assert extract_start("12/03/2025 10h", TODAY) == local_datetime(2025, 3, 12, 10, 0)
        assert extract_start("amanhã 10h", TODAY) is None
